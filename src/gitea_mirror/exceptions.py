"""Custom exception hierarchy for gitea-mirror.

This module defines the error taxonomy shared by the provider clients,
the synchronizer, the mirror executor and the job orchestrator.

All exceptions inherit from MirrorError for easy catching and handling.
"""

from typing import Any, Optional


class MirrorError(Exception):
    """Base exception for all gitea-mirror errors.

    All custom exceptions in gitea-mirror inherit from this base class,
    allowing callers to catch all tool-specific errors with a single handler.

    Attributes:
        message: Human-readable error message
        **kwargs: Additional context stored as attributes
    """

    def __init__(self, message: str, **kwargs: Any) -> None:
        """Initialize exception with message and optional context.

        Args:
            message: Human-readable error description
            **kwargs: Additional context (e.g., repository, url, status)
        """
        super().__init__(message)
        self.message = message

        for key, value in kwargs.items():
            setattr(self, key, value)

    def __str__(self) -> str:
        """Return string representation of the error."""
        return self.message


class AuthenticationError(MirrorError):
    """Raised when a provider rejects the configured credentials.

    Fatal for the whole job when raised by the preflight connection test,
    otherwise isolated to the repository being mirrored.

    Common scenarios:
    - Invalid or expired personal access token
    - Token lacks the scopes needed for the operation (HTTP 403)
    """

    pass


class NetworkError(MirrorError):
    """Raised when a provider cannot be reached.

    Covers DNS failures, refused connections and timeouts. Neither the
    provider clients nor the orchestrator retry these.

    Attributes:
        retryable: Whether the caller may safely retry the operation
    """

    def __init__(self, message: str, retryable: bool = False, **kwargs: Any) -> None:
        """Initialize network error.

        Args:
            message: Error description
            retryable: Whether the operation may be retried (default: False)
            **kwargs: Additional context
        """
        super().__init__(message, retryable=retryable, **kwargs)


class RateLimitError(NetworkError):
    """Raised when a provider reports API quota exhaustion.

    Propagated to the caller as a retryable error. The core never waits
    for the quota to reset on its own.

    Attributes:
        reset_at: Epoch seconds when the quota resets, if the provider said so
    """

    def __init__(self, message: str, reset_at: Optional[float] = None, **kwargs: Any) -> None:
        kwargs.setdefault("retryable", True)
        super().__init__(message, reset_at=reset_at, **kwargs)


class NotFoundError(MirrorError):
    """Raised when a requested resource does not exist.

    Used as a control-flow signal when probing the destination forge
    (e.g. does this organization exist yet?) and as a user-visible error
    when a job targets an unknown configuration or repository.
    """

    pass


class ValidationError(MirrorError):
    """Raised when configuration is malformed or incomplete.

    Always raised before any job is created.

    Common scenarios:
    - Missing Gitea URL or token
    - Missing GitHub token
    - Invalid YAML or failed environment variable substitution
    """

    pass


class ProviderError(MirrorError):
    """Raised when a provider API rejects a request for another reason.

    Attributes:
        status: HTTP status code returned by the provider, if any
    """

    def __init__(self, message: str, status: Optional[int] = None, **kwargs: Any) -> None:
        super().__init__(message, status=status, **kwargs)


class StorageError(MirrorError):
    """Raised when the persistence layer fails.

    The one error class allowed to abort a whole job, since the job log
    is the only audit trail of what happened.
    """

    pass


class InvalidJobStateError(MirrorError):
    """Raised when a job operation is not allowed in the job's current status.

    Attributes:
        job_id: Job the operation targeted
        status: Status the job was in
    """

    pass


class ClonePendingError(MirrorError):
    """Raised while the destination forge is still cloning a mirror.

    Only used internally by clone-completion polling, which retries it.
    """

    def __init__(self, message: str, **kwargs: Any) -> None:
        super().__init__(message, retryable=True, **kwargs)
