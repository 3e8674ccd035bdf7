"""Crawl engine: frontier, link extraction, discovery policy, resources, orchestrator."""

from .crawler import RESOLVER_ORIGIN, CrawlStatistics, Crawler, CrawlerState
from .discovery import DiscoveryPolicy
from .frontier import Frontier
from .link_extractor import ExtractOptions, LinkScope, extract_links
from .resource import Attempt, Resource, ResourceKind, fetch_resource, resolve_resource
from .server import Server
from .url import canonicalize_url, origin_of

__all__ = [
    "Attempt",
    "CrawlStatistics",
    "Crawler",
    "CrawlerState",
    "DiscoveryPolicy",
    "ExtractOptions",
    "Frontier",
    "LinkScope",
    "RESOLVER_ORIGIN",
    "Resource",
    "ResourceKind",
    "Server",
    "canonicalize_url",
    "extract_links",
    "fetch_resource",
    "origin_of",
    "resolve_resource",
]
