"""
Link extraction for SiteSnapshot.

:func:`extract_links` is pure: it parses HTML with BeautifulSoup, collects
every link-bearing construct, then resolves and filters the candidates. It
works in two modes:

* absolute mode – a real base URL is known (argument or ``<base href>``);
  results are absolute URLs.
* relative mode – no base is known; candidates are resolved against a
  synthetic origin and returned as root-relative paths. External absolute
  URLs stay absolute.
"""
from __future__ import annotations

import re
from dataclasses import dataclass, replace
from enum import Enum
from typing import Iterable, List, Optional, Union
from urllib.parse import SplitResult, urljoin, urlsplit, urlunsplit

from bs4 import BeautifulSoup
from bs4.element import Tag

from .url import canonicalize_url, is_http_url, origin_of

__all__ = (
    "LinkScope",
    "ExtractOptions",
    "extract_links",
    "collect_candidates",
    "extract_css_urls",
    "parse_srcset",
    "filter_same_origin",
)

SYNTHETIC_ORIGIN = "http://synthetic.localhost"

_CSS_URL_RE = re.compile(r"""url\(\s*(['"]?)([^'")]*?)\1\s*\)""", re.IGNORECASE)
_SCHEME_RE = re.compile(r"^([a-zA-Z][a-zA-Z0-9+.\-]*):")
_REFRESH_URL_RE = re.compile(r"""url\s*=\s*['"]?([^'"]+)""", re.IGNORECASE)

# (tag, attribute) pairs holding a single URL
_URL_ATTRIBUTES = (
    ("a", "href"),
    ("link", "href"),
    ("img", "src"),
    ("script", "src"),
    ("video", "src"),
    ("video", "poster"),
    ("audio", "src"),
    ("iframe", "src"),
    ("embed", "src"),
    ("source", "src"),
    ("track", "src"),
    ("object", "data"),
)
_META_KEYS = frozenset({"og:image", "og:url", "twitter:image", "canonical"})


class LinkScope(str, Enum):
    ALL = "all"
    INTERNAL = "internal"
    EXTERNAL = "external"


@dataclass(frozen=True, slots=True)
class ExtractOptions:
    scope: LinkScope = LinkScope.ALL
    normalize: bool = True
    dedupe: bool = True
    include_data_urls: bool = False
    include_hash_only: bool = False
    respect_base_tag: bool = True
    as_urls: bool = False


def extract_css_urls(css: str) -> List[str]:
    """Return the raw targets of every ``url(...)`` token in *css*."""
    return [m.group(2).strip() for m in _CSS_URL_RE.finditer(css) if m.group(2).strip()]


def parse_srcset(srcset: str) -> List[str]:
    """Split a ``srcset`` list and keep the URL token of each candidate."""
    urls: List[str] = []
    for candidate in srcset.split(","):
        token = candidate.strip().split()
        if token:
            urls.append(token[0])
    return urls


def _attr(tag: Tag, name: str) -> Optional[str]:
    value = tag.get(name)
    if isinstance(value, list):
        value = " ".join(value)
    return value if isinstance(value, str) else None


def collect_candidates(soup: BeautifulSoup) -> List[str]:
    """Gather raw link values from every link-bearing construct, in order."""
    found: List[str] = []

    for tag_name, attr in _URL_ATTRIBUTES:
        for tag in soup.find_all(tag_name):
            value = _attr(tag, attr)
            if value is not None:
                found.append(value)

    for tag in soup.find_all(srcset=True):
        found.extend(parse_srcset(_attr(tag, "srcset") or ""))

    for style in soup.find_all("style"):
        found.extend(extract_css_urls(style.get_text()))
    for tag in soup.find_all(style=True):
        found.extend(extract_css_urls(_attr(tag, "style") or ""))

    for meta in soup.find_all("meta"):
        key = (_attr(meta, "property") or _attr(meta, "name") or "").strip().lower()
        content = _attr(meta, "content")
        if content is None:
            continue
        if key in _META_KEYS:
            found.append(content)
        elif (_attr(meta, "http-equiv") or "").strip().lower() == "refresh":
            match = _REFRESH_URL_RE.search(content)
            if match:
                found.append(match.group(1))

    return found


def _base_from_tag(soup: BeautifulSoup) -> Optional[str]:
    base = soup.find("base", href=True)
    if not isinstance(base, Tag):
        return None
    href = (_attr(base, "href") or "").strip()
    return href if is_http_url(href) else None


def _to_output(absolute: str, relative_mode: bool) -> str:
    if relative_mode and origin_of(absolute) == SYNTHETIC_ORIGIN:
        parts = urlsplit(absolute)
        return urlunsplit(("", "", parts.path or "/", parts.query, parts.fragment))
    return absolute


def extract_links(
    html: str,
    base_url: Optional[str] = None,
    options: Optional[ExtractOptions] = None,
    **overrides,
) -> List[Union[str, SplitResult]]:
    """
    Extract candidate outbound URLs from *html*.

    Options may be passed as an :class:`ExtractOptions` instance, as keyword
    overrides, or both. ``mailto:``, ``javascript:``, ``tel:`` and other
    non-http(s) schemes are dropped; ``data:`` URLs are kept only with
    ``include_data_urls``. The result preserves document order.
    """
    opts = options or ExtractOptions()
    if overrides:
        opts = replace(opts, **overrides)
    scope = LinkScope(opts.scope)

    soup = BeautifulSoup(html or "", "html.parser")
    base = base_url
    if base is None and opts.respect_base_tag:
        base = _base_from_tag(soup)
    relative_mode = base is None
    effective_base = SYNTHETIC_ORIGIN + "/" if relative_mode else base
    base_origin = origin_of(effective_base)

    results: List[str] = []
    for raw in collect_candidates(soup):
        href = raw.strip()
        if not href:
            continue
        if href.startswith("#") and not opts.include_hash_only:
            continue

        scheme = _SCHEME_RE.match(href)
        if scheme and scheme.group(1).lower() not in ("http", "https"):
            if scheme.group(1).lower() == "data" and opts.include_data_urls:
                results.append(href)
            continue

        try:
            absolute = urljoin(effective_base, href)
            if not is_http_url(absolute):
                continue
            if opts.normalize:
                absolute = canonicalize_url(absolute)
            same_origin = origin_of(absolute) == base_origin
        except ValueError:
            continue

        if scope is LinkScope.INTERNAL and not same_origin:
            continue
        if scope is LinkScope.EXTERNAL and same_origin:
            continue
        results.append(_to_output(absolute, relative_mode))

    if opts.dedupe:
        results = list(dict.fromkeys(results))
    if opts.as_urls:
        return [urlsplit(u) for u in results]
    return results


def filter_same_origin(urls: Iterable[str], origin: str) -> List[str]:
    return [u for u in urls if is_http_url(u) and origin_of(u) == origin_of(origin)]
