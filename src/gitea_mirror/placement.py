"""Destination placement: which Gitea owner a mirrored repository lands under."""

from typing import Optional

from .config import MirrorConfig
from .models import Repository


def resolve_destination(repo: Repository, config: MirrorConfig) -> Optional[str]:
    """
    Resolve the destination organization for a repository.

    Evaluated in a fixed precedence order, first match wins:

    1. Starred repository and ``gitea.starred_repos_org`` set → that organization
    2. Repository owned by an organization and
       ``github.preserve_org_structure`` on → the source organization
    3. ``gitea.organization`` set → that organization
    4. Otherwise ``None``: the authenticated Gitea user's own namespace

    Args:
        repo: Repository being mirrored
        config: Active mirror configuration

    Returns:
        Organization name, or None for the personal namespace

    Examples:
        A starred repo owned by ``acme`` with ``starred_repos_org="github"``
        and ``preserve_org_structure=True`` resolves to ``"github"``.
    """
    if repo.is_starred and config.gitea.starred_repos_org:
        return config.gitea.starred_repos_org
    if repo.organization and config.github.preserve_org_structure:
        return repo.organization
    if config.gitea.organization:
        return config.gitea.organization
    return None

