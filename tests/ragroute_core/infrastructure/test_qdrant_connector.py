"""
Unit tests for the Qdrant connector.

These tests verify the singleton pattern and connection behavior
of the shared Qdrant client.
"""

from unittest.mock import MagicMock, patch

import pytest


class TestQdrantDatabaseConnector:
    """Tests for the Qdrant client singleton."""

    def test_creates_local_client_when_not_using_cloud(self, mock_qdrant_client):
        """Should create a local Qdrant client when USE_QDRANT_CLOUD is False."""
        from ragroute_core.infrastructure.qdrant import QdrantDatabaseConnector

        with (
            patch("ragroute_core.infrastructure.qdrant.QdrantClient") as mock_client_cls,
            patch("ragroute_core.infrastructure.qdrant.settings") as mock_settings,
        ):
            mock_settings.USE_QDRANT_CLOUD = False
            mock_settings.QDRANT_DATABASE_HOST = "localhost"
            mock_settings.QDRANT_DATABASE_PORT = 6334
            mock_client_cls.return_value = mock_qdrant_client

            client = QdrantDatabaseConnector.get_instance()

            mock_client_cls.assert_called_once_with(host="localhost", port=6334)
            assert client is mock_qdrant_client

    def test_creates_cloud_client_when_using_cloud(self, mock_qdrant_client):
        """Should create a cloud Qdrant client when USE_QDRANT_CLOUD is True."""
        from ragroute_core.infrastructure.qdrant import QdrantDatabaseConnector

        with (
            patch("ragroute_core.infrastructure.qdrant.QdrantClient") as mock_client_cls,
            patch("ragroute_core.infrastructure.qdrant.settings") as mock_settings,
        ):
            mock_settings.USE_QDRANT_CLOUD = True
            mock_settings.QDRANT_CLOUD_URL = "https://cloud.qdrant.io"
            mock_settings.QDRANT_APIKEY = "test-api-key"
            mock_client_cls.return_value = mock_qdrant_client

            QdrantDatabaseConnector.get_instance()

            mock_client_cls.assert_called_once_with(
                url="https://cloud.qdrant.io", api_key="test-api-key"
            )

    def test_returns_same_instance(self, mock_qdrant_client):
        """Should reuse the client across calls."""
        from ragroute_core.infrastructure.qdrant import QdrantDatabaseConnector, get_connection

        with patch("ragroute_core.infrastructure.qdrant.QdrantClient") as mock_client_cls:
            mock_client_cls.return_value = mock_qdrant_client

            first = QdrantDatabaseConnector.get_instance()
            second = get_connection()

            assert first is second
            mock_client_cls.assert_called_once()


# --- Fixtures ---


@pytest.fixture
def mock_qdrant_client():
    """Create a mock Qdrant client and reset the singleton around the test."""
    from ragroute_core.infrastructure.qdrant import QdrantDatabaseConnector

    QdrantDatabaseConnector.reset()
    yield MagicMock()
    QdrantDatabaseConnector.reset()
