"""Scheduling error taxonomy.

The recurrence engine and the stores raise these; the view layer turns them
into user-facing messages and never retries destructive operations.
"""


class SchedulingError(Exception):
    """Base class for all booking/scheduling errors."""


class ConfigurationError(SchedulingError):
    """Invalid recurrence rule or end condition."""


class ConflictError(SchedulingError):
    """A write would violate the per-series anchor uniqueness (or a resource is still in use).

    Callers should re-query the window and retry materialization rather than
    trust their in-memory view.
    """


class NotFoundError(SchedulingError):
    """The targeted row no longer exists."""


class ValidationError(SchedulingError):
    """Timing input is invalid (end not after start, non-positive duration)."""


class PermissionDeniedError(SchedulingError):
    """A write was attempted without an authenticated staff session."""
