"""Persistence for repositories, organizations and mirror jobs.

The core only depends on :class:`MirrorStore`. Two implementations ship:
``InMemoryStore`` (tests, embedding) and ``JsonFileStore`` (CLI), which
keeps one JSON document shared by every process pointed at the same file.

Every mutating method is atomic with respect to the others: a status
claim is a compare-and-swap, and a mirror outcome updates the repository
row and the job log together. For ``JsonFileStore`` this holds across
processes: each operation re-reads the document under a file lock,
applies its change and writes the document back before releasing it.
"""

import copy
import json
import os
import tempfile
import threading
from abc import ABC, abstractmethod
from contextlib import contextmanager
from datetime import datetime
from pathlib import Path
from typing import Any, Dict, Iterable, Iterator, List, Optional, Tuple

from filelock import FileLock, Timeout

from .exceptions import NotFoundError, StorageError
from .logging_config import get_logger
from .models import (
    IN_FLIGHT,
    JobStatus,
    LogEntry,
    MirrorJob,
    Organization,
    Repository,
    RepositoryStatus,
    utcnow,
)

logger = get_logger("store")


class MirrorStore(ABC):
    """Abstract persistence interface used by the mirroring core."""

    # Repositories

    @abstractmethod
    def get_repository(self, repository_id: str) -> Repository:
        """Return a repository.

        Raises:
            NotFoundError: If no repository has this id
        """

    @abstractmethod
    def find_repository(self, full_name: str, config_id: str) -> Optional[Repository]:
        """Return the repository with this full name under a configuration, if any."""

    @abstractmethod
    def list_repositories(self, config_id: str) -> List[Repository]:
        """Return all repositories of a configuration in insertion order."""

    @abstractmethod
    def upsert_repository(self, repository: Repository) -> bool:
        """Insert a repository or refresh its descriptive fields.

        Matches on (full_name, config_id). Existing rows keep their id,
        status, last_mirrored, error_message and issues_mirrored.

        Returns:
            True if a new row was inserted
        """

    @abstractmethod
    def claim_repository(
        self,
        repository_id: str,
        expected: Iterable[RepositoryStatus],
        new_status: RepositoryStatus,
        stale_before: Optional[datetime] = None,
    ) -> Optional[Repository]:
        """Atomically move a repository to new_status if it is in an expected status.

        With ``stale_before``, a repository left in ``mirroring`` or
        ``syncing`` and not touched since that time is taken over as well:
        its previous claimant is presumed dead.

        Returns:
            The updated repository, or None if its status did not match
        """

    @abstractmethod
    def release_repository(
        self, repository_id: str, held: RepositoryStatus, restore: RepositoryStatus
    ) -> bool:
        """Put a claimed repository back to ``restore`` if it is still in ``held``.

        Returns:
            True if the repository was released
        """

    @abstractmethod
    def record_outcome(
        self,
        repository_id: str,
        job_id: str,
        entry: LogEntry,
        status: RepositoryStatus,
        error_message: Optional[str] = None,
        last_mirrored: Optional[datetime] = None,
        issues_mirrored: Optional[bool] = None,
    ) -> Repository:
        """Update a repository's status fields and append to a job log in one step."""

    # Organizations

    @abstractmethod
    def find_organization(self, name: str, config_id: str) -> Optional[Organization]:
        """Return the organization with this name under a configuration, if any."""

    @abstractmethod
    def list_organizations(self, config_id: str) -> List[Organization]:
        """Return all organizations of a configuration."""

    @abstractmethod
    def upsert_organization(self, organization: Organization) -> bool:
        """Insert an organization or refresh it, keeping the user's is_included toggle.

        Returns:
            True if a new row was inserted
        """

    # Jobs

    @abstractmethod
    def create_job(self, job: MirrorJob) -> MirrorJob:
        """Persist a new job."""

    @abstractmethod
    def get_job(self, job_id: str) -> MirrorJob:
        """Return a job.

        Raises:
            NotFoundError: If no job has this id
        """

    @abstractmethod
    def list_jobs(self, config_id: str) -> List[MirrorJob]:
        """Return all jobs of a configuration, oldest first."""

    @abstractmethod
    def append_log(self, job_id: str, entry: LogEntry) -> LogEntry:
        """Append an entry to a job log.

        Timestamps are clamped so they never go backwards within one log.

        Returns:
            The entry as stored
        """

    @abstractmethod
    def transition_job(
        self,
        job_id: str,
        new_status: JobStatus,
        expected: Iterable[JobStatus],
        entry: Optional[LogEntry] = None,
    ) -> bool:
        """Atomically change a job's status if it is in an expected status.

        Sets started_at on the first move to running and completed_at on a
        terminal status; appends ``entry`` in the same step.

        Returns:
            True if the transition happened
        """


class InMemoryStore(MirrorStore):
    """Thread-safe dictionary-backed store."""

    def __init__(self) -> None:
        self._lock = threading.RLock()
        self._repositories: Dict[str, Repository] = {}
        self._organizations: Dict[str, Organization] = {}
        self._jobs: Dict[str, MirrorJob] = {}

    @contextmanager
    def _locked(self, write: bool = False) -> Iterator[None]:
        """Hold the store exclusively for one operation."""
        with self._lock:
            yield

    # Repositories

    def get_repository(self, repository_id: str) -> Repository:
        with self._locked():
            return copy.deepcopy(self._require_repository(repository_id))

    def _require_repository(self, repository_id: str) -> Repository:
        try:
            return self._repositories[repository_id]
        except KeyError:
            raise NotFoundError(f"Repository not found: {repository_id}") from None

    def find_repository(self, full_name: str, config_id: str) -> Optional[Repository]:
        with self._locked():
            for repo in self._repositories.values():
                if repo.full_name == full_name and repo.config_id == config_id:
                    return copy.deepcopy(repo)
        return None

    def list_repositories(self, config_id: str) -> List[Repository]:
        with self._locked():
            return [
                copy.deepcopy(repo)
                for repo in self._repositories.values()
                if repo.config_id == config_id
            ]

    def upsert_repository(self, repository: Repository) -> bool:
        with self._locked(write=True):
            existing = None
            for repo in self._repositories.values():
                if repo.full_name == repository.full_name and repo.config_id == repository.config_id:
                    existing = repo
                    break

            if existing is None:
                self._repositories[repository.id] = copy.deepcopy(repository)
                return True

            for name, value in repository.descriptive_state().items():
                setattr(existing, name, value)
            existing.updated_at = utcnow()
            return False

    def claim_repository(
        self,
        repository_id: str,
        expected: Iterable[RepositoryStatus],
        new_status: RepositoryStatus,
        stale_before: Optional[datetime] = None,
    ) -> Optional[Repository]:
        with self._locked(write=True):
            repo = self._require_repository(repository_id)
            abandoned = (
                stale_before is not None
                and repo.status in IN_FLIGHT
                and repo.updated_at < stale_before
            )
            if repo.status not in tuple(expected) and not abandoned:
                return None
            repo.status = new_status
            repo.updated_at = utcnow()
            return copy.deepcopy(repo)

    def release_repository(
        self, repository_id: str, held: RepositoryStatus, restore: RepositoryStatus
    ) -> bool:
        with self._locked(write=True):
            repo = self._require_repository(repository_id)
            if repo.status != held:
                return False
            repo.status = restore
            repo.updated_at = utcnow()
            return True

    def record_outcome(
        self,
        repository_id: str,
        job_id: str,
        entry: LogEntry,
        status: RepositoryStatus,
        error_message: Optional[str] = None,
        last_mirrored: Optional[datetime] = None,
        issues_mirrored: Optional[bool] = None,
    ) -> Repository:
        with self._locked(write=True):
            repo = self._require_repository(repository_id)
            job = self._require_job(job_id)
            repo.status = status
            repo.error_message = error_message
            if last_mirrored is not None:
                repo.last_mirrored = last_mirrored
            if issues_mirrored is not None:
                repo.issues_mirrored = issues_mirrored
            repo.updated_at = utcnow()
            self._append(job, entry)
            return copy.deepcopy(repo)

    # Organizations

    def find_organization(self, name: str, config_id: str) -> Optional[Organization]:
        with self._locked():
            for org in self._organizations.values():
                if org.name == name and org.config_id == config_id:
                    return copy.deepcopy(org)
        return None

    def list_organizations(self, config_id: str) -> List[Organization]:
        with self._locked():
            return [
                copy.deepcopy(org)
                for org in self._organizations.values()
                if org.config_id == config_id
            ]

    def upsert_organization(self, organization: Organization) -> bool:
        with self._locked(write=True):
            for org in self._organizations.values():
                if org.name == organization.name and org.config_id == organization.config_id:
                    org.type = organization.type
                    org.repository_count = organization.repository_count
                    org.avatar_url = organization.avatar_url
                    org.description = organization.description
                    org.updated_at = utcnow()
                    return False
            self._organizations[organization.id] = copy.deepcopy(organization)
            return True

    # Jobs

    def _require_job(self, job_id: str) -> MirrorJob:
        try:
            return self._jobs[job_id]
        except KeyError:
            raise NotFoundError(f"Mirror job not found: {job_id}") from None

    def _append(self, job: MirrorJob, entry: LogEntry) -> LogEntry:
        stored = copy.deepcopy(entry)
        if job.log and stored.timestamp < job.log[-1].timestamp:
            stored.timestamp = job.log[-1].timestamp
        job.log.append(stored)
        job.updated_at = utcnow()
        return stored

    def create_job(self, job: MirrorJob) -> MirrorJob:
        with self._locked(write=True):
            self._jobs[job.id] = copy.deepcopy(job)
            return copy.deepcopy(job)

    def get_job(self, job_id: str) -> MirrorJob:
        with self._locked():
            return copy.deepcopy(self._require_job(job_id))

    def list_jobs(self, config_id: str) -> List[MirrorJob]:
        with self._locked():
            jobs = [copy.deepcopy(job) for job in self._jobs.values() if job.config_id == config_id]
        return sorted(jobs, key=lambda job: job.created_at)

    def append_log(self, job_id: str, entry: LogEntry) -> LogEntry:
        with self._locked(write=True):
            stored = self._append(self._require_job(job_id), entry)
            return copy.deepcopy(stored)

    def transition_job(
        self,
        job_id: str,
        new_status: JobStatus,
        expected: Iterable[JobStatus],
        entry: Optional[LogEntry] = None,
    ) -> bool:
        with self._locked(write=True):
            job = self._require_job(job_id)
            if job.status not in tuple(expected):
                return False
            now = utcnow()
            job.status = new_status
            if new_status == JobStatus.RUNNING and job.started_at is None:
                job.started_at = now
            if new_status.is_terminal:
                job.completed_at = now
            if entry is not None:
                self._append(job, entry)
            job.updated_at = now
            return True


class JsonFileStore(InMemoryStore):
    """Store persisted as a single JSON document shared between processes.

    Every operation takes ``<state_file>.lock``, re-reads the document if
    another process replaced it, and (for mutations) writes it back
    through a temporary file and an atomic rename before the lock is
    released. A cancel issued by ``gitea-mirror cancel`` is therefore seen
    by the process running the job instead of being overwritten by it.

    If a write fails, the in-memory copy is discarded and re-read from
    disk on the next operation, so memory never drifts from the file.
    """

    def __init__(self, state_file: str, lock_timeout: float = 30.0) -> None:
        """
        Initialize JsonFileStore.

        Args:
            state_file: Path to the JSON file holding all state
            lock_timeout: Seconds to wait for another process to release the file

        Raises:
            StorageError: If the state file exists but cannot be read
        """
        super().__init__()
        self.state_file = Path(state_file)
        try:
            self.state_file.parent.mkdir(parents=True, exist_ok=True)
        except OSError as e:
            raise StorageError(f"Could not create state directory for {self.state_file}: {e}") from e
        self._file_lock = FileLock(f"{self.state_file}.lock", timeout=lock_timeout)
        self._depth = 0
        self._dirty = False
        self._stale = True
        self._loaded_stamp: Optional[Tuple[int, int, int]] = None

        with self._locked():
            pass

    @contextmanager
    def _locked(self, write: bool = False) -> Iterator[None]:
        with self._lock:
            if write:
                self._dirty = True
            if self._depth:
                self._depth += 1
                try:
                    yield
                finally:
                    self._depth -= 1
                return

            self._depth = 1
            try:
                with self._hold_file_lock():
                    self._refresh()
                    try:
                        yield
                        if self._dirty:
                            self._write()
                    except BaseException:
                        if self._dirty:
                            self._stale = True
                        raise
            finally:
                self._depth = 0
                self._dirty = False

    @contextmanager
    def _hold_file_lock(self) -> Iterator[None]:
        try:
            self._file_lock.acquire()
        except Timeout as e:
            raise StorageError(
                f"Timed out waiting for lock on state file {self.state_file}"
            ) from e
        try:
            yield
        finally:
            self._file_lock.release()

    def _disk_stamp(self) -> Optional[Tuple[int, int, int]]:
        try:
            stat = os.stat(self.state_file)
        except FileNotFoundError:
            return None
        except OSError as e:
            raise StorageError(f"Could not stat state file {self.state_file}: {e}") from e
        return (stat.st_ino, stat.st_mtime_ns, stat.st_size)

    def _refresh(self) -> None:
        """Re-read the document if it changed on disk since this process last saw it."""
        stamp = self._disk_stamp()
        if stamp == self._loaded_stamp and not self._stale:
            return

        self._repositories = {}
        self._organizations = {}
        self._jobs = {}
        if stamp is not None:
            self._load()
        self._loaded_stamp = stamp
        self._stale = False

    def _load(self) -> None:
        try:
            with open(self.state_file, "r") as f:
                data = json.load(f)
        except (OSError, ValueError) as e:
            raise StorageError(f"Could not read state file {self.state_file}: {e}") from e

        for item in data.get("repositories", []):
            repo = Repository.from_dict(item)
            self._repositories[repo.id] = repo
        for item in data.get("organizations", []):
            org = Organization.from_dict(item)
            self._organizations[org.id] = org
        for item in data.get("jobs", []):
            job = MirrorJob.from_dict(item)
            self._jobs[job.id] = job

    def _snapshot(self) -> Dict[str, Any]:
        return {
            "repositories": [repo.to_dict() for repo in self._repositories.values()],
            "organizations": [org.to_dict() for org in self._organizations.values()],
            "jobs": [job.to_dict() for job in self._jobs.values()],
        }

    def _write(self) -> None:
        tmp_path = None
        try:
            fd, tmp_path = tempfile.mkstemp(
                dir=str(self.state_file.parent), prefix=".state-", suffix=".json"
            )
            with os.fdopen(fd, "w") as f:
                json.dump(self._snapshot(), f, indent=2)
            os.replace(tmp_path, self.state_file)
            tmp_path = None
        except (OSError, TypeError, ValueError) as e:
            raise StorageError(f"Could not write state file {self.state_file}: {e}") from e
        finally:
            if tmp_path is not None:
                try:
                    os.unlink(tmp_path)
                except OSError as e:
                    logger.warning(f"Could not remove temporary state file {tmp_path}: {e}")
        self._loaded_stamp = self._disk_stamp()
