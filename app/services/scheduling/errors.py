"""
Exceptions raised by the scheduling core.

Configuration errors fail fast before any expansion or assignment runs.
Infrastructure errors propagate to the caller. An empty assignment is a
normal result, not an exception.
"""


class SchedulingError(Exception):
    """Base exception for scheduling operations."""

    def __init__(
        self,
        message: str,
        error_code: str | None = None,
        recoverable: bool = False,
    ):
        super().__init__(message)
        self.error_code = error_code
        self.recoverable = recoverable


class SchedulingConfigurationError(SchedulingError):
    """Invalid definition supplied by the caller; never coerced to a default."""


class InvalidTimezoneError(SchedulingConfigurationError):
    def __init__(self, zone: str):
        super().__init__(f"Unknown timezone: {zone!r}", error_code="invalid_timezone")
        self.zone = zone


class PatternConfigurationError(SchedulingConfigurationError):
    def __init__(self, message: str, pattern_id: str | None = None, field: str | None = None):
        super().__init__(message, error_code="invalid_pattern")
        self.pattern_id = pattern_id
        self.field = field


class PatternNotFoundError(SchedulingError):
    def __init__(self, pattern_id: str):
        super().__init__(f"Recurring pattern not found: {pattern_id}", error_code="not_found")
        self.pattern_id = pattern_id


class AssignmentConfigurationError(SchedulingConfigurationError):
    def __init__(self, message: str, event_type_id: str | None = None):
        super().__init__(message, error_code="invalid_assignment_request")
        self.event_type_id = event_type_id


class AssignmentInfrastructureError(SchedulingError):
    """Team or history data could not be loaded; distinct from 'no candidate'."""

    def __init__(self, message: str, listing_id: str | None = None):
        super().__init__(message, error_code="assignment_infrastructure", recoverable=True)
        self.listing_id = listing_id


class CalendarOracleUnavailable(SchedulingError):
    """External calendar check could not complete. Advisory, not a conflict."""

    def __init__(self, message: str, user_id: str | None = None, provider: str | None = None):
        super().__init__(message, error_code="calendar_degraded", recoverable=True)
        self.user_id = user_id
        self.provider = provider
