"""
Tests for the booking provider registry.
"""

from unittest.mock import AsyncMock, MagicMock

import pytest

from app.services.booking.calcom_provider import CalComBookingProvider
from app.services.booking.errors import UnknownProviderError
from app.services.booking.local_provider import LocalBookingProvider
from app.services.booking.registry import BookingProviderRegistry, create_default_registry


class TestDefaultRegistry:
    @pytest.mark.asyncio
    async def test_builtin_and_calcom_registered(self):
        registry = create_default_registry()

        assert registry.available_providers() == ["builtin", "calcom"]
        assert isinstance(registry.get_provider("builtin"), LocalBookingProvider)
        assert isinstance(registry.get_provider("calcom"), CalComBookingProvider)

        await registry.close()

    def test_unknown_provider(self):
        registry = create_default_registry()

        with pytest.raises(UnknownProviderError) as exc:
            registry.get_provider("acuity")

        assert exc.value.provider_type == "acuity"
        assert exc.value.error_code == "unknown_provider"


class TestRegistryLifecycle:
    def test_instances_are_reused(self):
        factory = MagicMock(side_effect=lambda: object())
        registry = BookingProviderRegistry()
        registry.register("fake", factory)

        first = registry.get_provider("fake")
        second = registry.get_provider("fake")

        assert first is second
        factory.assert_called_once()

    def test_re_registering_replaces_instance(self):
        registry = BookingProviderRegistry()
        registry.register("fake", lambda: "old")
        assert registry.get_provider("fake") == "old"

        registry.register("fake", lambda: "new")

        assert registry.get_provider("fake") == "new"

    @pytest.mark.asyncio
    async def test_close_closes_http_providers(self):
        closable = MagicMock()
        closable.close = AsyncMock()
        registry = BookingProviderRegistry()
        registry.register("remote", lambda: closable)
        registry.register("local", lambda: object())
        registry.get_provider("remote")
        registry.get_provider("local")

        await registry.close()

        closable.close.assert_awaited_once()
        assert registry.get_provider("remote") is closable
