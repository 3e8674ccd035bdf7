"""
URL canonicalization helpers shared by the frontier, the link extractor and
the crawler.
"""
from __future__ import annotations

from typing import Optional
from urllib.parse import SplitResult, urljoin, urlsplit, urlunsplit

from site_snapshot.errors import InvalidURLError

__all__ = ("DEFAULT_PORTS", "canonicalize_url", "origin_of", "resolve_url", "is_http_url")

DEFAULT_PORTS = {"http": 80, "https": 443}


def _sort_query(query: str) -> str:
    # stable sort by key only; values and encoding are kept byte for byte
    if not query:
        return ""
    pairs = [p for p in query.split("&") if p]
    pairs.sort(key=lambda pair: pair.partition("=")[0])
    return "&".join(pairs)


def _netloc(parts: SplitResult) -> str:
    host = parts.hostname or ""
    if ":" in host:
        host = f"[{host}]"
    port = parts.port
    netloc = host
    if port is not None and DEFAULT_PORTS.get(parts.scheme.lower()) != port:
        netloc = f"{host}:{port}"
    if parts.username is not None:
        userinfo = parts.username
        if parts.password is not None:
            userinfo += f":{parts.password}"
        netloc = f"{userinfo}@{netloc}"
    return netloc


def canonicalize_url(url: str, base: Optional[str] = None) -> str:
    """Return the canonical absolute form of *url*.

    Lower-cases scheme and host, strips the default port, sorts query
    parameters by key and drops the fragment. Relative input is resolved
    against *base*. Raises :class:`InvalidURLError` when the result is not an
    absolute http(s) URL.
    """
    if not isinstance(url, str):
        raise InvalidURLError(url, "expected a string")
    raw = url.strip()
    if not raw:
        raise InvalidURLError(url, "empty")
    try:
        if base is not None:
            raw = urljoin(base, raw)
        parts = urlsplit(raw)
        scheme = parts.scheme.lower()
        if scheme not in DEFAULT_PORTS:
            raise InvalidURLError(url, "not an absolute http(s) URL")
        if not parts.hostname:
            raise InvalidURLError(url, "missing host")
        netloc = _netloc(parts)
    except ValueError as exc:
        if isinstance(exc, InvalidURLError):
            raise
        raise InvalidURLError(url, str(exc)) from exc
    path = parts.path or "/"
    return urlunsplit((scheme, netloc, path, _sort_query(parts.query), ""))


def origin_of(url: str) -> str:
    """``scheme://host[:port]`` of an absolute URL, default port omitted."""
    parts = urlsplit(url)
    scheme = parts.scheme.lower()
    host = (parts.hostname or "").lower()
    if ":" in host:
        host = f"[{host}]"
    try:
        port = parts.port
    except ValueError:
        port = None
    if port is not None and DEFAULT_PORTS.get(scheme) != port:
        return f"{scheme}://{host}:{port}"
    return f"{scheme}://{host}"


def resolve_url(base: str, href: str) -> str:
    return urljoin(base, href)


def is_http_url(url: str) -> bool:
    try:
        parts = urlsplit(url)
    except ValueError:
        return False
    return parts.scheme.lower() in DEFAULT_PORTS and bool(parts.netloc)
