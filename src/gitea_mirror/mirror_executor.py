"""Mirrors one repository into Gitea and records the outcome."""

from datetime import timedelta
from typing import Optional, Tuple

from .config import MirrorConfig
from .exceptions import ProviderError, StorageError
from .gitea_client import GiteaClient
from .github_client import GitHubClient
from .logging_config import get_logger, log_context
from .models import (
    FIRST_MIRROR_FROM,
    IN_FLIGHT,
    RESYNC_FROM,
    LogEntry,
    LogLevel,
    MirrorResult,
    Repository,
    RepositoryStatus,
    utcnow,
)
from .placement import resolve_destination
from .retry import RetryConfig
from .store import MirrorStore

logger = get_logger("mirror_executor")


def should_replicate_issues(config: MirrorConfig, repository: Repository) -> bool:
    """Issues are copied only when enabled, present, and not skipped for starred repos."""
    if not (config.github.mirror_issues and repository.has_issues):
        return False
    return not (repository.is_starred and config.github.skip_starred_issues)


class MirrorExecutor:
    """Performs the mirror (and optional issue replication) of a single repository.

    Failures are isolated: anything that goes wrong while talking to the
    providers marks the repository ``failed`` and lands in the job log,
    and the caller gets a result instead of an exception. Only
    ``StorageError`` escapes, because without the store there is no audit
    trail left to write to.
    """

    def __init__(
        self,
        github_client: GitHubClient,
        gitea_client: GiteaClient,
        store: MirrorStore,
    ):
        """
        Initialize MirrorExecutor.

        Args:
            github_client: Source provider client (clone URLs, issues)
            gitea_client: Destination provider client
            store: Persistence for repository status and job logs
        """
        self.github_client = github_client
        self.gitea_client = gitea_client
        self.store = store
        self._identity: Optional[str] = None

    def _destination_identity(self, identity: Optional[str]) -> str:
        if identity:
            return identity
        if self._identity is None:
            self._identity = self.gitea_client.test_connection()["login"]
        return self._identity

    def mirror_one(
        self,
        config: MirrorConfig,
        repository: Repository,
        job_id: str,
        destination_identity: Optional[str] = None,
    ) -> MirrorResult:
        """
        Mirror one repository and record the outcome in the store.

        A repository that was never mirrored (or failed) goes through
        ``mirroring``; one already mirrored goes through ``syncing`` and
        only asks Gitea to pull new changes. A repository another job is
        working on right now is skipped, unless its claim is older than
        ``config.claim_timeout`` and so was abandoned by a dead process.

        If the attempt ends without an outcome being recorded (the store
        failed, or the process is being interrupted), the claim is
        released so the next job can retry the repository.

        Args:
            config: Active mirror configuration
            repository: Repository to mirror
            job_id: Job whose log receives the outcome
            destination_identity: Login of the Gitea token's user, for
                repositories placed in the personal namespace

        Returns:
            MirrorResult describing the outcome

        Raises:
            StorageError: If the outcome could not be persisted
        """
        name = repository.full_name
        with log_context(job_id=job_id, repository=name):
            current = self.store.get_repository(repository.id)
            resync = current.status in RESYNC_FROM or current.status == RepositoryStatus.SYNCING
            if resync:
                expected, held = RESYNC_FROM, RepositoryStatus.SYNCING
            else:
                expected, held = FIRST_MIRROR_FROM, RepositoryStatus.MIRRORING

            claimed = self.store.claim_repository(
                repository.id,
                expected,
                held,
                stale_before=utcnow() - timedelta(seconds=config.claim_timeout),
            )
            if claimed is None:
                message = f"Skipped repository {name}: already being mirrored by another job"
                logger.warning(message)
                self.store.append_log(
                    job_id, LogEntry(message, LogLevel.WARNING, repository_name=name)
                )
                return MirrorResult(success=False, message=message, repository_name=name, skipped=True)

            if current.status in IN_FLIGHT:
                logger.warning(
                    f"Taking over abandoned {current.status.value} claim on {name} "
                    f"(last update {current.updated_at.isoformat()})"
                )
                restore = RepositoryStatus.MIRRORED if resync else RepositoryStatus.FAILED
            else:
                restore = current.status

            recorded = False
            try:
                result = self._mirror_claimed(config, claimed, resync, job_id, destination_identity)
                recorded = True
                return result
            finally:
                if not recorded:
                    self._release(claimed, held, restore)

    def _mirror_claimed(
        self,
        config: MirrorConfig,
        repository: Repository,
        resync: bool,
        job_id: str,
        destination_identity: Optional[str],
    ) -> MirrorResult:
        name = repository.full_name
        try:
            owner, created = self._mirror(config, repository, resync, destination_identity)
        except StorageError:
            raise
        except Exception as e:
            return self._record_failure(repository, job_id, e)

        # A first mirror that fell back to mirror-sync on 409 still needs its issues
        issues_created = issues_failed = 0
        issues_mirrored = None
        if (
            (created or not resync)
            and not repository.issues_mirrored
            and should_replicate_issues(config, repository)
        ):
            replicated = self._replicate_issues(repository, owner, job_id)
            if replicated is not None:
                issues_created, issues_failed = replicated
                issues_mirrored = True

        message = f"Successfully mirrored repository: {name}"
        self.store.record_outcome(
            repository.id,
            job_id,
            LogEntry(message, LogLevel.SUCCESS, repository_name=name),
            status=RepositoryStatus.SYNCED if resync else RepositoryStatus.MIRRORED,
            error_message=None,
            last_mirrored=utcnow(),
            issues_mirrored=issues_mirrored,
        )
        logger.info(message)
        return MirrorResult(
            success=True,
            message=message,
            repository_name=name,
            issues_created=issues_created,
            issues_failed=issues_failed,
        )

    def _release(
        self, repository: Repository, held: RepositoryStatus, restore: RepositoryStatus
    ) -> None:
        try:
            released = self.store.release_repository(repository.id, held, restore)
        except StorageError as e:
            logger.error(f"Could not release claim on {repository.full_name}: {e}")
            return
        if released:
            logger.warning(f"Released claim on {repository.full_name} without an outcome")

    def _mirror(
        self,
        config: MirrorConfig,
        repository: Repository,
        resync: bool,
        destination_identity: Optional[str],
    ) -> Tuple[str, bool]:
        """Run the forge-side operations.

        Returns:
            (destination owner, whether a new mirror was created)
        """
        organization = resolve_destination(repository, config)
        if organization:
            self.gitea_client.ensure_organization(
                organization,
                visibility=config.gitea.visibility,
                description=f"GitHub organization: {organization}",
            )
        owner = organization or self._destination_identity(destination_identity)

        if resync and self.gitea_client.repository_exists(owner, repository.name):
            logger.info(f"Triggering mirror sync for {owner}/{repository.name}")
            self.gitea_client.trigger_mirror_sync(owner, repository.name)
            return owner, False

        clone_url = repository.clone_url or self.github_client.get_clone_url(repository.full_name)
        try:
            self.gitea_client.mirror_repository(
                clone_url,
                repository.name,
                is_private=repository.is_private,
                owner=organization,
                auth_token=config.github.token if repository.is_private else None,
                auth_username=config.github.username or None,
                description=repository.description,
            )
        except ProviderError as e:
            if getattr(e, "status", None) != 409:
                raise
            logger.info(f"{owner}/{repository.name} already exists in Gitea, syncing instead")
            self.gitea_client.trigger_mirror_sync(owner, repository.name)
            return owner, False

        if config.gitea.wait_for_clone:
            self.gitea_client.wait_for_mirror(
                owner, repository.name, RetryConfig.for_timeout(config.gitea.clone_timeout)
            )
        return owner, True

    def _replicate_issues(
        self, repository: Repository, owner: str, job_id: str
    ) -> Optional[Tuple[int, int]]:
        """Copy every source issue; individual failures become warnings.

        Returns:
            (created, failed) counts, or None if the issues could not be listed
        """
        name = repository.full_name
        try:
            issues = self.github_client.list_issues(repository.owner, repository.name)
        except Exception as e:
            self.store.append_log(
                job_id,
                LogEntry(
                    f"Could not fetch issues for {name}",
                    LogLevel.WARNING,
                    repository_name=name,
                    details=str(e),
                ),
            )
            return None

        created = failed = 0
        for issue in issues:
            try:
                self.gitea_client.create_issue(
                    owner,
                    repository.name,
                    issue.title,
                    issue.body,
                    issue.author,
                    labels=issue.labels,
                    closed=issue.is_closed,
                    source_url=f"{repository.url}/issues/{issue.number}" if repository.url else None,
                )
                created += 1
            except Exception as e:
                failed += 1
                logger.warning(f"Failed to mirror issue #{issue.number} of {name}: {e}")
                self.store.append_log(
                    job_id,
                    LogEntry(
                        f"Failed to mirror issue #{issue.number} of {name}",
                        LogLevel.WARNING,
                        repository_name=name,
                        details=str(e),
                    ),
                )

        if issues:
            self.store.append_log(
                job_id,
                LogEntry(
                    f"Mirrored {created} of {len(issues)} issues for {name}",
                    LogLevel.INFO,
                    repository_name=name,
                ),
            )
        return created, failed

    def _record_failure(self, repository: Repository, job_id: str, error: Exception) -> MirrorResult:
        name = repository.full_name
        cause = str(error) or type(error).__name__
        logger.error(f"Failed to mirror repository {name}: {cause}")
        self.store.record_outcome(
            repository.id,
            job_id,
            LogEntry(
                f"Failed to mirror repository: {name}",
                LogLevel.ERROR,
                repository_name=name,
                details=cause,
            ),
            status=RepositoryStatus.FAILED,
            error_message=cause,
        )
        return MirrorResult(
            success=False,
            message=f"Failed to mirror repository: {cause}",
            repository_name=name,
        )
