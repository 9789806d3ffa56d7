"""
Exceptions raised by booking providers.
"""


class BookingProviderError(Exception):
    """Base exception for booking backend operations."""

    def __init__(
        self,
        message: str,
        error_code: str | None = None,
        recoverable: bool = False,
        provider: str | None = None,
    ):
        super().__init__(message)
        self.error_code = error_code
        self.recoverable = recoverable
        self.provider = provider


class BookingConflictError(BookingProviderError):
    """The team member already holds an overlapping pending or confirmed booking."""

    def __init__(self, team_member_id: str, conflicting_booking_id: str | None = None):
        super().__init__(
            f"Team member {team_member_id} already has an overlapping booking",
            error_code="booking_conflict",
            recoverable=True,
        )
        self.team_member_id = team_member_id
        self.conflicting_booking_id = conflicting_booking_id


class InvalidStatusTransitionError(BookingProviderError):
    def __init__(self, booking_id: str, current: str, target: str):
        super().__init__(
            f"Cannot move booking {booking_id} from {current} to {target}",
            error_code="invalid_status_transition",
        )
        self.booking_id = booking_id
        self.current = current
        self.target = target


class BookingNotFoundError(BookingProviderError):
    def __init__(self, booking_id: str):
        super().__init__(f"Booking not found: {booking_id}", error_code="not_found")
        self.booking_id = booking_id


class UnknownProviderError(BookingProviderError):
    def __init__(self, provider_type: str):
        super().__init__(
            f"Unknown booking provider: {provider_type!r}", error_code="unknown_provider"
        )
        self.provider_type = provider_type
