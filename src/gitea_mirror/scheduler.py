"""Periodic sync-then-mirror runs driven by a configuration's schedule."""

import threading
from datetime import datetime
from typing import Callable, Dict, Optional

from .config import MirrorConfig
from .exceptions import MirrorError, NotFoundError, StorageError
from .job_orchestrator import JobOrchestrator
from .logging_config import get_logger, log_context
from .models import MirrorJob, utcnow
from .store import MirrorStore
from .synchronizer import Synchronizer

logger = get_logger("scheduler")


class Scheduler:
    """Runs a sync followed by a batch mirror job whenever a schedule is due.

    The next run time is tracked in memory per configuration, seeded from
    ``schedule.next_run``, so reloading the configuration file between
    polls does not reset it. A new job is not started while the previous
    scheduled job for the same configuration is still active.
    """

    def __init__(self, synchronizer: Synchronizer, orchestrator: JobOrchestrator, store: MirrorStore):
        self.synchronizer = synchronizer
        self.orchestrator = orchestrator
        self.store = store
        self._next_runs: Dict[str, datetime] = {}
        self._last_jobs: Dict[str, str] = {}

    def is_due(self, config: MirrorConfig, now: Optional[datetime] = None) -> bool:
        """Return True if the configuration's schedule wants a run at ``now``."""
        if not (config.is_active and config.schedule.enabled):
            return False
        now = now or utcnow()
        next_run = self._next_runs.get(config.id, config.schedule.next_run)
        return next_run is None or now >= next_run

    def _previous_job_active(self, config: MirrorConfig) -> bool:
        job_id = self._last_jobs.get(config.id)
        if job_id is None:
            return False
        try:
            return not self.store.get_job(job_id).status.is_terminal
        except NotFoundError:
            return False

    def tick(self, config: MirrorConfig, now: Optional[datetime] = None) -> Optional[MirrorJob]:
        """
        Run one scheduled cycle if it is due.

        Updates ``config.schedule.last_run`` and ``next_run`` whenever a
        cycle was attempted, even if it failed, so a broken source does not
        cause a tight retry loop.

        Args:
            config: Active mirror configuration
            now: Current time (default: now)

        Returns:
            The started job, or None if nothing was started
        """
        now = now or utcnow()
        if not self.is_due(config, now):
            return None

        with log_context(config_id=config.id):
            config.schedule.last_run = now
            config.schedule.next_run = config.schedule.compute_next_run(now)
            self._next_runs[config.id] = config.schedule.next_run

            if self._previous_job_active(config):
                logger.warning(
                    f"Previous scheduled job {self._last_jobs[config.id]} still running, skipping this run"
                )
                return None

            try:
                result = self.synchronizer.sync(config)
            except StorageError:
                raise
            except MirrorError as e:
                logger.error(f"Scheduled sync failed: {e}")
                return None
            logger.info(f"Scheduled sync: {result.message}")

            try:
                job = self.orchestrator.start_job(config)
            except NotFoundError as e:
                logger.info(f"Nothing to mirror: {e}")
                return None

            self._last_jobs[config.id] = job.id
            logger.info(f"Scheduled mirror job {job.id} started, next run at {config.schedule.next_run.isoformat()}")
            return job

    def run_forever(
        self,
        load_config: Callable[[], MirrorConfig],
        poll_interval: float = 30.0,
        stop_event: Optional[threading.Event] = None,
    ) -> None:
        """
        Poll the schedule until ``stop_event`` is set.

        Args:
            load_config: Returns the current configuration; called every poll
                so edits to the configuration take effect without a restart
            poll_interval: Seconds between polls
            stop_event: Set to stop the loop (default: run until interrupted)
        """
        stop_event = stop_event or threading.Event()
        logger.info(f"Scheduler started (poll interval {poll_interval}s)")
        while not stop_event.is_set():
            try:
                self.tick(load_config())
            except MirrorError as e:
                logger.error(f"Scheduled run failed: {e}")
            stop_event.wait(poll_interval)
        logger.info("Scheduler stopped")
