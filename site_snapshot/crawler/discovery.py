"""
Discovery policy: depth bound and glob ignore-patterns for newly found URLs.
"""
from __future__ import annotations

import re
from typing import Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field, PrivateAttr, StrictStr

__all__ = ("DiscoveryPolicy", "glob_to_regex")


def glob_to_regex(pattern: str) -> str:
    """Translate a glob into an anchored regex: ``*`` → ``.*``, ``?`` → ``.``."""
    parts = []
    for char in pattern:
        if char == "*":
            parts.append(".*")
        elif char == "?":
            parts.append(".")
        else:
            parts.append(re.escape(char))
    return "^" + "".join(parts) + "$"


class DiscoveryPolicy(BaseModel):
    """Immutable discovery rules.

    ``depth`` is the maximum hop count from a seed route (``None`` means
    unbounded). The crawler does the depth accounting; the policy only answers
    :meth:`should_ignore`.
    """

    model_config = ConfigDict(extra="forbid", frozen=True)

    depth: Optional[int] = Field(None, ge=0, strict=True, description="Max hops from a seed route.")
    ignore: List[StrictStr] = Field(default_factory=list, description="Glob patterns matched against URL paths.")

    _regex_cache: Dict[str, re.Pattern[str]] = PrivateAttr(default_factory=dict)

    def _compiled(self, pattern: str) -> re.Pattern[str]:
        if pattern not in self._regex_cache:
            self._regex_cache[pattern] = re.compile(glob_to_regex(pattern), re.DOTALL)
        return self._regex_cache[pattern]

    def should_ignore(self, path: str) -> bool:
        return any(self._compiled(p).match(path) for p in self.ignore)

    def get_depth(self) -> Optional[int]:
        return self.depth

    def allows_depth(self, depth: int) -> bool:
        """True when a URL at *depth* may still be expanded."""
        return self.depth is None or depth < self.depth
