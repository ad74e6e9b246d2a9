"""Reconciles the stored repository inventory with GitHub."""

from typing import Dict, List

from .config import MirrorConfig
from .github_client import GitHubClient
from .logging_config import get_logger, log_context
from .models import Organization, Repository, SyncResult
from .patterns import RepositoryFilter, organization_in_scope
from .store import MirrorStore

logger = get_logger("synchronizer")


class Synchronizer:
    """Refreshes repositories and organizations without mirroring anything."""

    def __init__(self, github_client: GitHubClient, store: MirrorStore):
        """
        Initialize Synchronizer.

        Args:
            github_client: Source provider client
            store: Persistence for repositories and organizations
        """
        self.github_client = github_client
        self.store = store

    def sync(self, config: MirrorConfig) -> SyncResult:
        """
        Fetch candidate repositories, filter them and upsert the survivors.

        Steps:
            1. Collect user repos (unless only_mirror_orgs), starred repos
               (if mirror_starred) and the repos of every in-scope
               organization (if mirror_organizations)
            2. Drop candidates rejected by the include/exclude patterns
            3. Upsert by (full_name, config id): new rows start as pending,
               existing rows only get their descriptive fields refreshed

        Repositories that disappeared upstream are left untouched.

        Args:
            config: Active mirror configuration

        Returns:
            SyncResult with added/updated counts

        Raises:
            AuthenticationError, NetworkError, RateLimitError: From the
                source provider; nothing is written for a failed fetch
        """
        with log_context(config_id=config.id):
            candidates = self._collect_candidates(config)
            repo_filter = RepositoryFilter(config.include, config.exclude)

            added = 0
            updated = 0
            for repo in candidates:
                if not repo_filter.allows(repo.full_name):
                    logger.debug(f"Filtered out {repo.full_name}")
                    continue
                repo.config_id = config.id
                if self.store.upsert_repository(repo):
                    added += 1
                else:
                    updated += 1

            result = SyncResult(added=added, updated=updated)
            logger.info(result.message)
            return result

    def _collect_candidates(self, config: MirrorConfig) -> List[Repository]:
        settings = config.github
        by_name: Dict[str, Repository] = {}

        def add(repos: List[Repository]) -> None:
            for repo in repos:
                existing = by_name.get(repo.full_name)
                if existing is None:
                    by_name[repo.full_name] = repo
                elif repo.is_starred:
                    existing.is_starred = True

        if not settings.only_mirror_orgs:
            add(self.github_client.list_user_repositories(config))

        if settings.mirror_starred:
            add(self.github_client.list_starred_repositories(config))

        if settings.mirror_organizations:
            for org in self.github_client.list_user_organizations():
                if not organization_in_scope(org.name, settings.include_orgs, settings.exclude_orgs):
                    logger.debug(f"Skipping organization {org.name} (not in scope)")
                    continue
                stored = self.store.find_organization(org.name, config.id)
                if stored is not None and not stored.is_included:
                    logger.debug(f"Skipping organization {org.name} (excluded by user)")
                    continue

                org_repos = self.github_client.list_organization_repositories(org.name, config)
                self._record_organization(org, config, len(org_repos))
                add(org_repos)

        return list(by_name.values())

    def _record_organization(self, org: Organization, config: MirrorConfig, count: int) -> None:
        org.config_id = config.id
        org.repository_count = count
        self.store.upsert_organization(org)
