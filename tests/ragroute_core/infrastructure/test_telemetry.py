"""
Unit tests for telemetry setup.
"""

from unittest.mock import patch

import pytest

from ragroute_core.infrastructure.telemetry import TelemetryService, get_meter, get_tracer


class TestTelemetryService:
    def test_singleton(self):
        assert TelemetryService() is TelemetryService()

    def test_setup_disabled_is_noop(self, fresh_service):
        with patch("ragroute_core.infrastructure.telemetry.settings") as mock_settings:
            mock_settings.ENABLE_TELEMETRY = False

            fresh_service.setup()

        assert fresh_service.enabled is False

    def test_accessors_are_usable_without_setup(self):
        with get_tracer().start_as_current_span("test-span") as span:
            span.set_attribute("k", "v")
        get_meter().create_counter("test.counter").add(1)


# --- Fixtures ---


@pytest.fixture
def fresh_service():
    TelemetryService._instance = None
    yield TelemetryService()
    TelemetryService._instance = None
