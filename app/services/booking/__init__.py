"""
Booking providers and the assign-then-create booking flow.
"""

from .errors import (
    BookingConflictError,
    BookingNotFoundError,
    BookingProviderError,
    InvalidStatusTransitionError,
    UnknownProviderError,
)
from .provider import (
    BookingProvider,
    BookingProviderContext,
    BookingResult,
    CreateBookingRequest,
    HealthCheck,
    SyncResult,
)

__all__ = [
    "BookingConflictError",
    "BookingNotFoundError",
    "BookingProvider",
    "BookingProviderContext",
    "BookingProviderError",
    "BookingResult",
    "CreateBookingRequest",
    "HealthCheck",
    "InvalidStatusTransitionError",
    "SyncResult",
    "UnknownProviderError",
]
