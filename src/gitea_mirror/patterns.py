"""Glob-style include/exclude matching for ``owner/repo`` names."""

import re
from functools import lru_cache
from typing import Iterable, List, Optional, Pattern

WILDCARD = "*"


@lru_cache(maxsize=256)
def _compile(pattern: str) -> Pattern[str]:
    # Only '*' is special; everything else (including '?', '[' and '.') is literal
    parts = [re.escape(part) for part in pattern.split(WILDCARD)]
    return re.compile("^" + ".*".join(parts) + "$", re.DOTALL)


def match_pattern(subject: str, pattern: str) -> bool:
    """
    Check whether a subject matches a glob pattern.

    ``*`` matches any run of characters (including none); every other
    character is literal. The match is anchored at both ends.

    Args:
        subject: String to test, usually a repository full name
        pattern: Glob pattern

    Returns:
        True if the whole subject matches the pattern

    Examples:
        >>> match_pattern("foo/bar", "foo/*")
        True
        >>> match_pattern("foo/bar", "baz/*")
        False
        >>> match_pattern("foo/bar", "bar")
        False
    """
    return _compile(pattern).match(subject) is not None


def _is_wildcard_only(patterns: Iterable[str]) -> bool:
    return WILDCARD in patterns


class RepositoryFilter:
    """Applies a configuration's include/exclude pattern lists.

    Exclude always wins over include. An empty include list, or one that
    contains the literal ``"*"``, disables include filtering.
    """

    def __init__(self, include: Optional[List[str]] = None, exclude: Optional[List[str]] = None):
        """
        Initialize RepositoryFilter.

        Args:
            include: Include patterns (default: include everything)
            exclude: Exclude patterns (default: exclude nothing)
        """
        self.include = list(include or [])
        self.exclude = list(exclude or [])

    def is_excluded(self, full_name: str) -> bool:
        return any(match_pattern(full_name, pattern) for pattern in self.exclude)

    def is_included(self, full_name: str) -> bool:
        if not self.include or _is_wildcard_only(self.include):
            return True
        return any(match_pattern(full_name, pattern) for pattern in self.include)

    def allows(self, full_name: str) -> bool:
        """Return True if a repository with this full name should be kept."""
        if self.is_excluded(full_name):
            return False
        return self.is_included(full_name)


def organization_in_scope(
    name: str,
    include_orgs: Optional[List[str]] = None,
    exclude_orgs: Optional[List[str]] = None,
) -> bool:
    """
    Decide whether an organization's repositories should be fetched.

    Organization lists hold exact names. ``exclude_orgs`` wins; a
    non-empty ``include_orgs`` without ``"*"`` requires the name to be
    listed.

    Args:
        name: Organization login
        include_orgs: Organizations to include
        exclude_orgs: Organizations to skip

    Returns:
        True if the organization is in scope
    """
    if exclude_orgs and name in exclude_orgs:
        return False
    if include_orgs and not _is_wildcard_only(include_orgs) and name not in include_orgs:
        return False
    return True
