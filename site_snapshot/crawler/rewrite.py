"""
Base-path URL rewriting for saved HTML.

A snapshot deployed under a sub-path (``/my-app``) needs every internal URL
prefixed with that path. Rewriting works on the raw markup with regular
expressions so that everything except the URL values is written back byte for
byte (quote style, attribute order, whitespace).
"""
from __future__ import annotations

import re
from typing import Callable, Match
from urllib.parse import urljoin, urlsplit, urlunsplit

from .link_extractor import parse_srcset
from .url import is_http_url, origin_of

__all__ = (
    "normalize_base_path",
    "should_rewrite_url",
    "apply_base_path",
    "rewrite_link_urls",
    "rewrite_image_urls",
    "rewrite_script_urls",
    "rewrite_stylesheet_urls",
    "rewrite_iframe_urls",
    "rewrite_media_urls",
    "rewrite_embed_urls",
    "rewrite_css_urls",
    "rewrite_meta_urls",
    "rewrite_html_urls",
)

_SCHEME_RE = re.compile(r"^([a-zA-Z][a-zA-Z0-9+.\-]*):")
_CSS_URL_RE = re.compile(r"""(url\(\s*)(['"]?)([^'")]*?)(\2\s*\))""", re.IGNORECASE)
_STYLE_BLOCK_RE = re.compile(r"(<style\b[^>]*>)(.*?)(</style\s*>)", re.IGNORECASE | re.DOTALL)
_STYLE_ATTR_RE = re.compile(r"""(\sstyle\s*=\s*)(?:"([^"]*)"|'([^']*)')""", re.IGNORECASE)
_META_TAG_RE = re.compile(r"<meta\b[^>]*>", re.IGNORECASE)
_REFRESH_RE = re.compile(r"""http-equiv\s*=\s*["']?refresh""", re.IGNORECASE)
_REFRESH_CONTENT_RE = re.compile(
    r"""(content\s*=\s*["']\s*\d+\s*;\s*url\s*=\s*)([^"'\s>]+)""", re.IGNORECASE
)

Rewriter = Callable[[str], str]


def normalize_base_path(base_path: str | None) -> str:
    """``"app/"`` → ``"/app"``; empty and ``"/"`` → ``""``."""
    stripped = (base_path or "").strip().strip("/")
    return f"/{stripped}" if stripped else ""


def should_rewrite_url(url: str, base_url: str) -> bool:
    """True for URLs that point into the site served at *base_url*."""
    value = (url or "").strip()
    if not value or value.startswith("#"):
        return False
    scheme = _SCHEME_RE.match(value)
    if scheme and scheme.group(1).lower() not in ("http", "https"):
        return False
    try:
        absolute = urljoin(base_url.rstrip("/") + "/", value)
        if not is_http_url(absolute):
            return False
        return origin_of(absolute) == origin_of(base_url)
    except ValueError:
        return False


def apply_base_path(url: str, base_url: str, base_path: str) -> str:
    """Prefix the path of an internal *url* with *base_path*.

    Query and fragment are preserved. Paths already under the prefix are left
    alone. On a parse error the input is returned unchanged.
    """
    prefix = normalize_base_path(base_path)
    if not prefix:
        return url
    try:
        parts = urlsplit(urljoin(base_url.rstrip("/") + "/", url.strip()))
        if not parts.netloc:
            return url
    except ValueError:
        return url
    path = parts.path or "/"
    if path != prefix and not path.startswith(prefix + "/"):
        path = prefix + path
    return urlunsplit(("", "", path, parts.query, parts.fragment))


def _maybe(url: str, base_url: str, base_path: str) -> str:
    if should_rewrite_url(url, base_url):
        return apply_base_path(url, base_url, base_path)
    return url


def _attribute_rewriter(tags: str, attr: str, transform: Rewriter) -> Rewriter:
    pattern = re.compile(
        rf"""(<(?:{tags})\b[^>]*?\s{attr}\s*=\s*)(?:"([^"]*)"|'([^']*)'|([^\s"'>]+))""",
        re.IGNORECASE,
    )

    def _sub(match: Match[str]) -> str:
        head = match.group(1)
        if match.group(2) is not None:
            return f'{head}"{transform(match.group(2))}"'
        if match.group(3) is not None:
            return f"{head}'{transform(match.group(3))}'"
        return f"{head}{transform(match.group(4))}"

    return lambda html: pattern.sub(_sub, html)


def _rewrite_attr(html: str, tags: str, attr: str, base_url: str, base_path: str) -> str:
    return _attribute_rewriter(tags, attr, lambda u: _maybe(u, base_url, base_path))(html)


def _rewrite_srcset(html: str, tags: str, base_url: str, base_path: str) -> str:
    def _transform(value: str) -> str:
        out = value
        for url in parse_srcset(value):
            out = out.replace(url, _maybe(url, base_url, base_path), 1)
        return out

    return _attribute_rewriter(tags, "srcset", _transform)(html)


def rewrite_link_urls(html: str, base_url: str, base_path: str) -> str:
    return _rewrite_attr(html, "a|area", "href", base_url, base_path)


def rewrite_image_urls(html: str, base_url: str, base_path: str) -> str:
    html = _rewrite_attr(html, "img", "src", base_url, base_path)
    return _rewrite_srcset(html, "img|source", base_url, base_path)


def rewrite_script_urls(html: str, base_url: str, base_path: str) -> str:
    return _rewrite_attr(html, "script", "src", base_url, base_path)


def rewrite_stylesheet_urls(html: str, base_url: str, base_path: str) -> str:
    return _rewrite_attr(html, "link", "href", base_url, base_path)


def rewrite_iframe_urls(html: str, base_url: str, base_path: str) -> str:
    return _rewrite_attr(html, "iframe", "src", base_url, base_path)


def rewrite_media_urls(html: str, base_url: str, base_path: str) -> str:
    html = _rewrite_attr(html, "video|audio|source|track", "src", base_url, base_path)
    return _rewrite_attr(html, "video", "poster", base_url, base_path)


def rewrite_embed_urls(html: str, base_url: str, base_path: str) -> str:
    html = _rewrite_attr(html, "embed", "src", base_url, base_path)
    return _rewrite_attr(html, "object", "data", base_url, base_path)


def _rewrite_css(css: str, base_url: str, base_path: str) -> str:
    def _sub(match: Match[str]) -> str:
        return f"{match.group(1)}{match.group(2)}{_maybe(match.group(3), base_url, base_path)}{match.group(4)}"

    return _CSS_URL_RE.sub(_sub, css)


def rewrite_css_urls(html: str, base_url: str, base_path: str) -> str:
    """Rewrite ``url(...)`` inside ``<style>`` blocks and ``style=`` attributes."""

    def _block(match: Match[str]) -> str:
        return match.group(1) + _rewrite_css(match.group(2), base_url, base_path) + match.group(3)

    def _attr(match: Match[str]) -> str:
        if match.group(2) is not None:
            return f'{match.group(1)}"{_rewrite_css(match.group(2), base_url, base_path)}"'
        return f"{match.group(1)}'{_rewrite_css(match.group(3), base_url, base_path)}'"

    html = _STYLE_BLOCK_RE.sub(_block, html)
    return _STYLE_ATTR_RE.sub(_attr, html)


def rewrite_meta_urls(html: str, base_url: str, base_path: str) -> str:
    """Rewrite the target of ``<meta http-equiv="refresh" content="N;url=...">``."""

    def _tag(match: Match[str]) -> str:
        tag = match.group(0)
        if not _REFRESH_RE.search(tag):
            return tag
        return _REFRESH_CONTENT_RE.sub(
            lambda m: m.group(1) + _maybe(m.group(2), base_url, base_path), tag
        )

    return _META_TAG_RE.sub(_tag, html)


_REWRITERS = (
    rewrite_link_urls,
    rewrite_image_urls,
    rewrite_script_urls,
    rewrite_stylesheet_urls,
    rewrite_iframe_urls,
    rewrite_media_urls,
    rewrite_embed_urls,
    rewrite_css_urls,
    rewrite_meta_urls,
)


def rewrite_html_urls(html: str, base_url: str, base_path: str) -> str:
    """Apply every rewriter; a no-op for an empty or root base path."""
    if not normalize_base_path(base_path):
        return html
    for rewriter in _REWRITERS:
        html = rewriter(html, base_url, base_path)
    return html
