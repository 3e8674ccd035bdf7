"""
Resource model: one fetched (or pre-built) artifact of the crawl.

A :class:`Resource` is a closed tagged variant. ``kind`` selects the
behaviour of :meth:`Resource.extract_links` and :meth:`Resource.save_to_file`:

* ``HTML``   – a page; links are extracted lazily and cached.
* ``ASSET``  – opaque bytes (images, CSS, fonts, JSON …).
* ``BUNDLE`` – a build-time artifact injected before crawling; never fetched.
"""
from __future__ import annotations

import asyncio
import inspect
import mimetypes
import posixpath
import time
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Any, Awaitable, Callable, Dict, List, Optional, Sequence, Tuple, Union
from urllib.parse import unquote, urljoin, urlsplit

from aiohttp import ClientError, ClientSession, ClientTimeout

from site_snapshot.errors import FetchFailure

from .link_extractor import ExtractOptions, LinkScope, extract_links
from .rewrite import normalize_base_path, rewrite_html_urls

__all__ = (
    "ResourceKind",
    "Attempt",
    "Resource",
    "fetch_resource",
    "resolve_resource",
    "Resolver",
)

_HTML_TYPES = ("text/html", "application/xhtml+xml")
_HTML_SUFFIXES = (".html", ".htm")
_REDIRECT_STATUS = frozenset({301, 302, 303, 307, 308})

Resolver = Callable[[str], Union[Awaitable[Any], Any]]


class ResourceKind(str, Enum):
    HTML = "html"
    ASSET = "asset"
    BUNDLE = "bundle"


@dataclass(frozen=True, slots=True)
class Attempt:
    """One HTTP round trip (redirect hops included)."""

    url: str
    status: int
    elapsed: float

    def is_success(self) -> bool:
        return 200 <= self.status < 300

    def is_redirect(self) -> bool:
        return self.status in _REDIRECT_STATUS


def _is_html_type(content_type: str) -> bool:
    mime = content_type.split(";", 1)[0].strip().lower()
    return mime in _HTML_TYPES


def _charset(content_type: str) -> str:
    """Charset from the Content-Type header; unknown codecs fall back to utf-8."""
    for param in content_type.split(";")[1:]:
        key, _, value = param.partition("=")
        if key.strip().lower() == "charset" and value.strip():
            name = value.strip().strip('"\'')
            try:
                b"".decode(name)
            except LookupError:
                return "utf-8"
            return name
    return "utf-8"


@dataclass(slots=True, eq=False)
class Resource:
    """Fetched content plus the metadata needed to place it on disk."""

    kind: ResourceKind
    url: str
    body: bytes
    content_type: str
    base_url: str
    attempts: Tuple[Attempt, ...] = ()
    sourcemap: Optional[bytes] = None
    _links: Dict[ExtractOptions, List[Any]] = field(default_factory=dict, init=False, repr=False)

    # --------------------------------------------------------------- builders

    @classmethod
    def from_response(
        cls,
        url: str,
        body: bytes,
        content_type: str,
        base_url: str,
        attempts: Sequence[Attempt] = (),
    ) -> Resource:
        kind = ResourceKind.HTML if _is_html_type(content_type or "") else ResourceKind.ASSET
        return cls(kind, url, bytes(body), content_type or "", base_url, tuple(attempts))

    @classmethod
    def bundle(
        cls,
        mount_path: str,
        body: Union[bytes, str],
        base_url: str,
        *,
        sourcemap: Union[bytes, str, None] = None,
        content_type: Optional[str] = None,
    ) -> Resource:
        """Wrap in-memory build output mounted at *mount_path*."""
        if isinstance(body, str):
            body = body.encode("utf-8")
        if isinstance(sourcemap, str):
            sourcemap = sourcemap.encode("utf-8")
        url = urljoin(base_url, mount_path)
        if content_type is None:
            content_type = mimetypes.guess_type(urlsplit(url).path)[0] or "application/javascript"
        return cls(ResourceKind.BUNDLE, url, body, content_type, base_url, (), sourcemap)

    # ------------------------------------------------------------- predicates

    def is_html(self) -> bool:
        return self.kind is ResourceKind.HTML

    def is_asset(self) -> bool:
        return self.kind is not ResourceKind.HTML

    def is_bundle(self) -> bool:
        return self.kind is ResourceKind.BUNDLE

    # -------------------------------------------------------------- content

    @property
    def text(self) -> str:
        if self.kind is not ResourceKind.HTML:
            raise TypeError(f"Cannot get text content from non-HTML resource {self.url}")
        return self.body.decode(_charset(self.content_type), errors="replace")

    @property
    def content_length(self) -> int:
        return len(self.body)

    @property
    def redirect_count(self) -> int:
        return sum(1 for a in self.attempts if a.is_redirect())

    @property
    def final_attempt(self) -> Optional[Attempt]:
        return self.attempts[-1] if self.attempts else None

    @property
    def total_response_time(self) -> float:
        return sum(a.elapsed for a in self.attempts)

    # ---------------------------------------------------------------- links

    def extract_links(self, options: Optional[ExtractOptions] = None, **overrides) -> List[Any]:
        """Links found in this page, resolved against its own URL.

        Non-HTML variants have no outlinks and return an empty list.
        """
        if self.kind is not ResourceKind.HTML:
            return []
        opts = options or ExtractOptions(**overrides)
        if opts not in self._links:
            self._links[opts] = extract_links(self.text, self.url, opts)
        return self._links[opts]

    def internal_links(self) -> List[str]:
        return self.extract_links(ExtractOptions(scope=LinkScope.INTERNAL))

    def external_links(self) -> List[str]:
        return self.extract_links(ExtractOptions(scope=LinkScope.EXTERNAL))

    # --------------------------------------------------------------- output

    def relative_file_path(self, base_path: str = "/") -> str:
        """Path of the output file relative to the output directory."""
        path = unquote(urlsplit(self.url).path) or "/"
        prefix = normalize_base_path(base_path)
        if prefix and (path == prefix or path.startswith(prefix + "/")):
            path = path[len(prefix):] or "/"

        is_dir = path.endswith("/")
        path = posixpath.normpath(path)
        if path in ("/", "."):
            path, is_dir = "", True
        path = path.lstrip("/")

        if self.kind is ResourceKind.HTML:
            if is_dir or not path:
                return posixpath.join(path, "index.html")
            if posixpath.splitext(path)[1].lower() in _HTML_SUFFIXES:
                return path
            return posixpath.join(path, "index.html")

        if is_dir or not path:
            ext = mimetypes.guess_extension(self.content_type.split(";", 1)[0].strip()) or ""
            return posixpath.join(path, "index" + ext)
        return path

    def output_path(self, output_dir: Union[str, Path], base_path: str = "/") -> Path:
        root = Path(output_dir).resolve()
        target = (root / self.relative_file_path(base_path)).resolve()
        if target != root and root not in target.parents:
            raise ValueError(f"Resource {self.url} maps outside of {root}")
        return target

    def _payload(self, base_path: str) -> bytes:
        if self.kind is ResourceKind.HTML and normalize_base_path(base_path):
            html = rewrite_html_urls(self.text, self.base_url, base_path)
            return html.encode(_charset(self.content_type), errors="replace")
        return self.body

    def save_to_file(self, output_dir: Union[str, Path], base_path: str = "/") -> Path:
        """Write the resource under *output_dir*; return the absolute path written."""
        target = self.output_path(output_dir, base_path)
        target.parent.mkdir(parents=True, exist_ok=True)
        target.write_bytes(self._payload(base_path))
        if self.kind is ResourceKind.BUNDLE and self.sourcemap is not None:
            target.with_name(target.name + ".map").write_bytes(self.sourcemap)
        return target

    def to_dict(self) -> Dict[str, Any]:
        return {
            "url": self.url,
            "kind": self.kind.value,
            "baseUrl": self.base_url,
            "contentType": self.content_type,
            "contentLength": self.content_length,
            "isHtml": self.is_html(),
            "redirectCount": self.redirect_count,
            "totalResponseTime": self.total_response_time,
            "attempts": [{"url": a.url, "status": a.status, "elapsed": a.elapsed} for a in self.attempts],
        }


async def fetch_resource(
    session: ClientSession,
    url: str,
    base_url: str,
    *,
    timeout: float = 10.0,
    user_agent: Optional[str] = None,
    max_redirects: int = 10,
) -> Resource:
    """GET *url* (relative input is resolved against *base_url*).

    Redirects are followed by hand so every hop is recorded as an
    :class:`Attempt`. Any network error, timeout or non-2xx final status is
    raised as :class:`FetchFailure`.
    """
    target = urljoin(base_url, url)
    attempts: List[Attempt] = []
    headers = {"User-Agent": user_agent} if user_agent else None
    client_timeout = ClientTimeout(total=timeout)
    try:
        for _ in range(max_redirects + 1):
            started = time.monotonic()
            async with session.get(
                target, allow_redirects=False, timeout=client_timeout, headers=headers
            ) as resp:
                body = await resp.read()
                attempts.append(Attempt(target, resp.status, time.monotonic() - started))
                location = resp.headers.get("Location")
                if resp.status in _REDIRECT_STATUS and location:
                    target = urljoin(target, location)
                    continue
                if not 200 <= resp.status < 300:
                    raise FetchFailure(target, f"HTTP {resp.status} {resp.reason or ''}".strip(), resp.status)
                return Resource.from_response(
                    target, body, resp.headers.get("Content-Type", ""), base_url, attempts
                )
    except asyncio.TimeoutError as exc:
        raise FetchFailure(target, f"Request timeout after {timeout}s") from exc
    except ClientError as exc:
        raise FetchFailure(target, str(exc) or type(exc).__name__) from exc
    raise FetchFailure(target, f"Too many redirects (>{max_redirects})")


def _response_content_type(response: Any) -> str:
    headers = getattr(response, "headers", None) or {}
    return getattr(response, "content_type", None) or headers.get("Content-Type", "") or ""


def _response_body(response: Any) -> bytes:
    body = getattr(response, "body", None)
    if body is None:
        body = getattr(response, "text", None) or b""
    if isinstance(body, str):
        body = body.encode("utf-8")
    return bytes(body)


async def resolve_resource(resolver: Resolver, url: str, base_url: str) -> Resource:
    """Build a resource by asking an in-process *resolver* for the path of *url*.

    The resolver receives ``path?query`` and returns an object with ``status``,
    ``content_type`` (or ``headers["Content-Type"]``) and ``body``/``text``;
    :class:`aiohttp.web.Response` fits.
    """
    target = urljoin(base_url, url)
    parts = urlsplit(target)
    path = parts.path or "/"
    if parts.query:
        path = f"{path}?{parts.query}"
    started = time.monotonic()
    try:
        response = resolver(path)
        if inspect.isawaitable(response):
            response = await response
    except Exception as exc:
        raise FetchFailure(target, f"Resolver error: {exc}") from exc
    if response is None:
        raise FetchFailure(target, "Resolver returned no response")

    status = int(getattr(response, "status", 200))
    attempt = Attempt(target, status, time.monotonic() - started)
    if not 200 <= status < 300:
        raise FetchFailure(target, f"HTTP {status}", status)
    return Resource.from_response(
        target, _response_body(response), _response_content_type(response), base_url, [attempt]
    )
