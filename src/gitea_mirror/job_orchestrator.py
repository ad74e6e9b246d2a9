"""Creates mirror jobs and runs them in the background."""

import threading
import traceback
from concurrent.futures import Future, ThreadPoolExecutor
from concurrent.futures import wait as wait_futures
from typing import Dict, List, Optional

from .config import MirrorConfig, validate_for_mirroring
from .exceptions import InvalidJobStateError, MirrorError, NotFoundError, StorageError
from .gitea_client import GiteaClient
from .logging_config import get_logger, log_context
from .mirror_executor import MirrorExecutor
from .models import JobStatus, JobSummary, LogEntry, LogLevel, MirrorJob, MirrorResult
from .store import MirrorStore

logger = get_logger("job_orchestrator")

ACTIVE_STATUSES = (JobStatus.PENDING, JobStatus.RUNNING)


class JobOrchestrator:
    """Orchestrates mirror jobs: one background task per job, repositories in sequence.

    ``start_job`` returns as soon as the job row exists. The job itself
    runs on a worker thread: it moves to ``running``, checks that Gitea
    accepts the token, then hands repositories to the executor one at a
    time. Repository failures never abort a batch; the job still ends
    ``completed``. A job only ends ``failed`` when it is cancelled or when
    orchestration itself breaks (preflight failure, storage failure).
    """

    def __init__(
        self,
        executor: MirrorExecutor,
        store: MirrorStore,
        gitea_client: GiteaClient,
        max_workers: int = 4,
    ):
        """
        Initialize JobOrchestrator.

        Args:
            executor: Mirrors individual repositories
            store: Persistence for jobs and repositories
            gitea_client: Destination client, used for the preflight check
            max_workers: Jobs that may run at the same time
        """
        self.executor = executor
        self.store = store
        self.gitea_client = gitea_client
        self._pool = ThreadPoolExecutor(max_workers=max_workers, thread_name_prefix="mirror-job")
        self._lock = threading.Lock()
        self._futures: Dict[str, Future] = {}
        self._cancel_events: Dict[str, threading.Event] = {}

    def start_job(
        self, config: MirrorConfig, repository_ids: Optional[List[str]] = None
    ) -> MirrorJob:
        """
        Create a job and schedule it in the background.

        With exactly one repository id the job mirrors that repository;
        with several it mirrors those; with none it mirrors every
        repository stored for the configuration.

        Args:
            config: Active mirror configuration
            repository_ids: Repositories to mirror (default: all)

        Returns:
            The job as created, in ``pending`` status

        Raises:
            ValidationError: If the configuration lacks URLs or tokens
            NotFoundError: If a repository is unknown or nothing matches
        """
        validate_for_mirroring(config)

        ids = list(repository_ids or [])
        if ids:
            for repository_id in ids:
                repo = self.store.get_repository(repository_id)
                if repo.config_id != config.id:
                    raise NotFoundError(
                        f"Repository {repository_id} does not belong to configuration {config.id}"
                    )
        else:
            ids = [repo.id for repo in self.store.list_repositories(config.id)]
            if not ids:
                raise NotFoundError(
                    f"No repositories to mirror for configuration '{config.name}'; run a sync first"
                )

        job = MirrorJob(
            config_id=config.id,
            repository_id=ids[0] if len(repository_ids or []) == 1 else None,
            log=[LogEntry("Mirror job started", LogLevel.INFO)],
        )
        self.store.create_job(job)

        cancel_event = threading.Event()
        with self._lock:
            self._cancel_events[job.id] = cancel_event
            self._futures[job.id] = self._pool.submit(
                self._run, config, job.id, ids, job.repository_id is not None, cancel_event
            )

        logger.info(f"Scheduled mirror job {job.id} for {len(ids)} repositories")
        return job

    def cancel_job(self, job_id: str) -> MirrorJob:
        """
        Cancel a pending or running job.

        The job is marked ``failed`` right away. A repository that is being
        mirrored at that moment finishes; the rest of a batch is skipped.
        This also reaches a job running in another process that shares
        the state file, which checks the stored status between repositories.

        Raises:
            NotFoundError: If the job does not exist
            InvalidJobStateError: If the job already finished
        """
        entry = LogEntry("Mirror job cancelled by user", LogLevel.INFO)
        if not self.store.transition_job(job_id, JobStatus.FAILED, ACTIVE_STATUSES, entry):
            job = self.store.get_job(job_id)
            raise InvalidJobStateError(
                f"Cannot cancel a job that is not pending or running (status: {job.status.value})",
                job_id=job_id,
                status=job.status.value,
            )

        with self._lock:
            event = self._cancel_events.get(job_id)
        if event is not None:
            event.set()

        logger.info(f"Cancelled mirror job {job_id}")
        return self.store.get_job(job_id)

    def wait(self, job_id: str, timeout: Optional[float] = None) -> MirrorJob:
        """Block until a job's background task ends (or timeout) and return the job."""
        with self._lock:
            future = self._futures.get(job_id)
        if future is not None:
            wait_futures([future], timeout=timeout)
        return self.store.get_job(job_id)

    def shutdown(self, wait: bool = True) -> None:
        self._pool.shutdown(wait=wait)

    def _run(
        self,
        config: MirrorConfig,
        job_id: str,
        repository_ids: List[str],
        single: bool,
        cancel_event: threading.Event,
    ) -> None:
        with log_context(job_id=job_id, config_id=config.id):
            try:
                self._execute(config, job_id, repository_ids, single, cancel_event)
            except Exception as e:
                logger.exception(f"Mirror job {job_id} failed")
                try:
                    self.store.transition_job(
                        job_id,
                        JobStatus.FAILED,
                        ACTIVE_STATUSES,
                        LogEntry(
                            f"Mirroring process failed: {e}",
                            LogLevel.ERROR,
                            details=traceback.format_exc(),
                        ),
                    )
                except StorageError:
                    logger.exception(f"Could not record failure of job {job_id}")
                raise
            finally:
                with self._lock:
                    self._cancel_events.pop(job_id, None)

    def _execute(
        self,
        config: MirrorConfig,
        job_id: str,
        repository_ids: List[str],
        single: bool,
        cancel_event: threading.Event,
    ) -> None:
        if single:
            start_message = "Mirroring single repository"
        else:
            start_message = f"Starting mirroring process for {len(repository_ids)} repositories"

        if not self.store.transition_job(
            job_id, JobStatus.RUNNING, (JobStatus.PENDING,), LogEntry(start_message, LogLevel.INFO)
        ):
            logger.info(f"Mirror job {job_id} was cancelled before it started")
            return

        identity = self._preflight(job_id)
        if identity is None:
            return

        summary = JobSummary()
        result: Optional[MirrorResult] = None
        for repository_id in repository_ids:
            if self._cancelled(job_id, cancel_event):
                logger.info(f"Mirror job {job_id} cancelled, skipping remaining repositories")
                return
            repository = self.store.get_repository(repository_id)
            result = self.executor.mirror_one(config, repository, job_id, identity)
            summary.record(result)

        if single and result is not None:
            final = LogEntry(f"Mirror job completed: {result.message}", LogLevel.INFO)
        else:
            final = LogEntry(summary.message, LogLevel.INFO)
        if not self.store.transition_job(job_id, JobStatus.COMPLETED, (JobStatus.RUNNING,), final):
            logger.info(f"Mirror job {job_id} was cancelled while its last repository ran")
            return
        logger.info(final.message)

    def _cancelled(self, job_id: str, cancel_event: threading.Event) -> bool:
        """Cancellation arrives as the local event or as a status change written by another process."""
        if cancel_event.is_set():
            return True
        return self.store.get_job(job_id).status != JobStatus.RUNNING

    def _preflight(self, job_id: str) -> Optional[str]:
        """Check Gitea credentials once per job; a failure here fails the job."""
        try:
            return self.gitea_client.test_connection()["login"]
        except StorageError:
            raise
        except MirrorError as e:
            logger.error(f"Preflight check failed for job {job_id}: {e}")
            self.store.transition_job(
                job_id,
                JobStatus.FAILED,
                (JobStatus.RUNNING,),
                LogEntry(f"Could not connect to Gitea: {e}", LogLevel.ERROR, details=str(e)),
            )
            return None
