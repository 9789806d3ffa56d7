"""
Booking provider registry.

Maps backend identifiers to provider factories so callers ask for
"builtin" or "calcom" and receive a BookingProvider without knowing
which class backs it.
"""

from collections.abc import Callable

from app.infrastructure.observability.logging import get_logger
from app.services.booking.calcom_provider import CalComBookingProvider
from app.services.booking.errors import UnknownProviderError
from app.services.booking.local_provider import LocalBookingProvider
from app.services.booking.provider import BookingProvider

logger = get_logger(__name__)

ProviderFactory = Callable[[], BookingProvider]


class BookingProviderRegistry:
    """Backend id -> factory. Instances are created once per id and reused."""

    def __init__(self):
        self._factories: dict[str, ProviderFactory] = {}
        self._instances: dict[str, BookingProvider] = {}

    def register(self, provider_type: str, factory: ProviderFactory) -> None:
        self._factories[provider_type] = factory
        self._instances.pop(provider_type, None)
        logger.debug("Booking provider registered", provider_type=provider_type)

    def get_provider(self, provider_type: str) -> BookingProvider:
        """
        Return the provider for a backend id.

        Raises:
            UnknownProviderError: no factory registered under that id
        """
        if provider_type not in self._factories:
            raise UnknownProviderError(provider_type)

        if provider_type not in self._instances:
            self._instances[provider_type] = self._factories[provider_type]()
        return self._instances[provider_type]

    def available_providers(self) -> list[str]:
        return sorted(self._factories)

    async def close(self) -> None:
        """Close providers holding HTTP clients."""
        for provider in self._instances.values():
            close = getattr(provider, "close", None)
            if close is not None:
                await close()
        self._instances.clear()


def create_default_registry() -> BookingProviderRegistry:
    registry = BookingProviderRegistry()
    registry.register(LocalBookingProvider.provider_type, LocalBookingProvider)
    registry.register(CalComBookingProvider.provider_type, CalComBookingProvider)
    return registry
