"""Tool access policies."""

import fnmatch
import logging
from typing import Iterable

from keel.core.interfaces import Policy

logger = logging.getLogger(__name__)


class AllowAllPolicy(Policy):
    """Allows every tool."""

    def allow_tool(self, name: str) -> bool:
        return True


class ToolListPolicy(Policy):
    """
    Allow/deny lists of tool name patterns (``fnmatch`` syntax, e.g. ``app/*``).

    A name matching any deny pattern is refused.  When an allow list is given, only names matching
    one of its patterns pass.
    """

    def __init__(self, allow: Iterable[str] | None = None, deny: Iterable[str] = ()):
        self._allow = tuple(allow) if allow is not None else None
        self._deny = tuple(deny)

    def allow_tool(self, name: str) -> bool:
        if any(fnmatch.fnmatchcase(name, pattern) for pattern in self._deny):
            logger.info("Tool '%s' refused by deny list", name)
            return False
        if self._allow is None:
            return True
        allowed = any(fnmatch.fnmatchcase(name, pattern) for pattern in self._allow)
        if not allowed:
            logger.info("Tool '%s' not on the allow list", name)
        return allowed
