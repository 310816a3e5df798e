"""Unit tests for the shared marketplace provider registry."""

import pytest

from affhelper.models.order import Platform
from affhelper.providers.registry import get_providers, shutdown_providers


class TestShutdownProviders:
    """Tests for shutdown_providers."""

    @pytest.mark.asyncio
    async def test_providers_are_rebuilt_after_shutdown(self) -> None:
        """Test providers created after shutdown get a fresh HTTP client."""
        before = get_providers()
        assert get_providers() is before

        await shutdown_providers()
        after = get_providers()

        assert after is not before
        assert after[Platform.TIKTOK] is not before[Platform.TIKTOK]
        assert after[Platform.SHOPEE].http is not before[Platform.SHOPEE].http
        assert after[Platform.SHOPEE].http is after[Platform.TIKTOK].http

        await shutdown_providers()
