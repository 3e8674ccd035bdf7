# setup.py
from setuptools import setup, find_packages

setup(
    name="site_snapshot",
    version="0.1.0",
    description="Статический snapshot сайта: обход, сохранение файлов и rewrite base path",
    packages=find_packages(exclude=["tests", "tests.*"]),  # автоматически найдёт папку site_snapshot
    install_requires=[
        "aiohttp>=3.9",
        "beautifulsoup4>=4.12",
        "pydantic>=2.5",
        "PyYAML>=6.0",
        "click>=8.1",
    ],
    extras_require={
        "test": [
            "pytest>=7.4",
            "pytest-asyncio>=0.23",
        ],
    },
    entry_points={
        "console_scripts": [
            "site-snapshot=site_snapshot.cli:cli",
        ],
    },
    python_requires=">=3.11",
)
