"""Data model for repositories, organizations and mirror jobs."""

import uuid
from dataclasses import asdict, dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, List, Optional


def utcnow() -> datetime:
    """Return the current time as a timezone-aware UTC datetime."""
    return datetime.now(timezone.utc)


def new_id() -> str:
    """Return a new opaque identifier."""
    return str(uuid.uuid4())


def _dt_to_str(value: Optional[datetime]) -> Optional[str]:
    return value.isoformat() if value is not None else None


def _dt_from_str(value: Optional[str]) -> Optional[datetime]:
    if value is None:
        return None
    parsed = datetime.fromisoformat(value)
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


class RepositoryStatus(str, Enum):
    """Mirror state of a repository.

    pending -> mirroring -> mirrored | failed
    failed -> mirroring (retry)
    mirrored | synced -> syncing -> synced | failed
    """

    PENDING = "pending"
    MIRRORING = "mirroring"
    MIRRORED = "mirrored"
    SYNCING = "syncing"
    SYNCED = "synced"
    FAILED = "failed"


# Statuses from which a mirror attempt may claim the repository
FIRST_MIRROR_FROM = (RepositoryStatus.PENDING, RepositoryStatus.FAILED)
RESYNC_FROM = (RepositoryStatus.MIRRORED, RepositoryStatus.SYNCED)
IN_FLIGHT = (RepositoryStatus.MIRRORING, RepositoryStatus.SYNCING)


class JobStatus(str, Enum):
    """Lifecycle status of a mirror job."""

    PENDING = "pending"
    RUNNING = "running"
    COMPLETED = "completed"
    FAILED = "failed"

    @property
    def is_terminal(self) -> bool:
        return self in (JobStatus.COMPLETED, JobStatus.FAILED)


class LogLevel(str, Enum):
    """Severity of a job log entry."""

    INFO = "info"
    SUCCESS = "success"
    WARNING = "warning"
    ERROR = "error"


class OrganizationType(str, Enum):
    MEMBER = "member"
    PUBLIC = "public"


@dataclass
class Repository:
    """A source repository tracked for mirroring under one configuration."""

    name: str
    full_name: str
    owner: str
    url: str
    config_id: str = ""
    clone_url: str = ""
    organization: Optional[str] = None
    description: str = ""
    is_private: bool = False
    is_fork: bool = False
    has_issues: bool = False
    is_starred: bool = False
    status: RepositoryStatus = RepositoryStatus.PENDING
    last_mirrored: Optional[datetime] = None
    error_message: Optional[str] = None
    issues_mirrored: bool = False
    id: str = field(default_factory=new_id)
    created_at: datetime = field(default_factory=utcnow)
    updated_at: datetime = field(default_factory=utcnow)

    # Fields the synchronizer refreshes on every sync; status fields are left alone
    DESCRIPTIVE_FIELDS = (
        "name",
        "owner",
        "url",
        "clone_url",
        "organization",
        "description",
        "is_private",
        "is_fork",
        "has_issues",
        "is_starred",
    )

    def descriptive_state(self) -> Dict[str, Any]:
        return {name: getattr(self, name) for name in self.DESCRIPTIVE_FIELDS}

    def to_dict(self) -> Dict[str, Any]:
        data = asdict(self)
        data["status"] = self.status.value
        data["last_mirrored"] = _dt_to_str(self.last_mirrored)
        data["created_at"] = _dt_to_str(self.created_at)
        data["updated_at"] = _dt_to_str(self.updated_at)
        return data

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Repository":
        values = dict(data)
        values["status"] = RepositoryStatus(values.get("status", "pending"))
        values["last_mirrored"] = _dt_from_str(values.get("last_mirrored"))
        values["created_at"] = _dt_from_str(values.get("created_at")) or utcnow()
        values["updated_at"] = _dt_from_str(values.get("updated_at")) or utcnow()
        return cls(**values)


@dataclass
class Organization:
    """A source organization whose repositories may be mirrored."""

    name: str
    config_id: str = ""
    type: OrganizationType = OrganizationType.MEMBER
    is_included: bool = True
    repository_count: int = 0
    avatar_url: str = ""
    description: str = ""
    id: str = field(default_factory=new_id)
    created_at: datetime = field(default_factory=utcnow)
    updated_at: datetime = field(default_factory=utcnow)

    def to_dict(self) -> Dict[str, Any]:
        data = asdict(self)
        data["type"] = self.type.value
        data["created_at"] = _dt_to_str(self.created_at)
        data["updated_at"] = _dt_to_str(self.updated_at)
        return data

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Organization":
        values = dict(data)
        values["type"] = OrganizationType(values.get("type", "member"))
        values["created_at"] = _dt_from_str(values.get("created_at")) or utcnow()
        values["updated_at"] = _dt_from_str(values.get("updated_at")) or utcnow()
        return cls(**values)


@dataclass
class LogEntry:
    """One line of a mirror job's audit log."""

    message: str
    level: LogLevel = LogLevel.INFO
    timestamp: datetime = field(default_factory=utcnow)
    repository_name: Optional[str] = None
    details: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        data: Dict[str, Any] = {
            "timestamp": _dt_to_str(self.timestamp),
            "level": self.level.value,
            "message": self.message,
        }
        if self.repository_name is not None:
            data["repository_name"] = self.repository_name
        if self.details is not None:
            data["details"] = self.details
        return data

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "LogEntry":
        return cls(
            message=data["message"],
            level=LogLevel(data.get("level", "info")),
            timestamp=_dt_from_str(data.get("timestamp")) or utcnow(),
            repository_name=data.get("repository_name"),
            details=data.get("details"),
        )


@dataclass
class MirrorJob:
    """One execution attempt of mirroring, with its status and log."""

    config_id: str
    repository_id: Optional[str] = None
    status: JobStatus = JobStatus.PENDING
    started_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None
    log: List[LogEntry] = field(default_factory=list)
    id: str = field(default_factory=new_id)
    created_at: datetime = field(default_factory=utcnow)
    updated_at: datetime = field(default_factory=utcnow)

    def entries(self, level: Optional[LogLevel] = None) -> List[LogEntry]:
        """Return log entries, optionally only those of one level."""
        if level is None:
            return list(self.log)
        return [entry for entry in self.log if entry.level == level]

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "config_id": self.config_id,
            "repository_id": self.repository_id,
            "status": self.status.value,
            "started_at": _dt_to_str(self.started_at),
            "completed_at": _dt_to_str(self.completed_at),
            "created_at": _dt_to_str(self.created_at),
            "updated_at": _dt_to_str(self.updated_at),
            "log": [entry.to_dict() for entry in self.log],
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "MirrorJob":
        return cls(
            id=data["id"],
            config_id=data["config_id"],
            repository_id=data.get("repository_id"),
            status=JobStatus(data.get("status", "pending")),
            started_at=_dt_from_str(data.get("started_at")),
            completed_at=_dt_from_str(data.get("completed_at")),
            created_at=_dt_from_str(data.get("created_at")) or utcnow(),
            updated_at=_dt_from_str(data.get("updated_at")) or utcnow(),
            log=[LogEntry.from_dict(entry) for entry in data.get("log", [])],
        )


@dataclass
class Issue:
    """An issue read from the source provider."""

    number: int
    title: str
    body: str
    state: str
    author: str
    labels: List[str] = field(default_factory=list)
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None
    closed_at: Optional[datetime] = None

    @property
    def is_closed(self) -> bool:
        return self.state == "closed"


@dataclass
class SyncResult:
    """Outcome of one inventory synchronization."""

    added: int
    updated: int

    @property
    def message(self) -> str:
        return f"Synced repositories: {self.added} added, {self.updated} updated"


@dataclass
class MirrorResult:
    """Outcome of mirroring one repository."""

    success: bool
    message: str
    repository_name: str
    skipped: bool = False
    issues_created: int = 0
    issues_failed: int = 0


@dataclass
class JobSummary:
    """Counters accumulated by a batch job."""

    mirrored: int = 0
    failed: int = 0
    skipped: int = 0

    def record(self, result: MirrorResult) -> None:
        if result.skipped:
            self.skipped += 1
        elif result.success:
            self.mirrored += 1
        else:
            self.failed += 1

    @property
    def message(self) -> str:
        text = (
            f"Mirroring process completed. {self.mirrored} repositories mirrored, "
            f"{self.failed} failed."
        )
        if self.skipped:
            text += f" {self.skipped} skipped."
        return text
