"""
Qdrant client connector for ragroute.

Provides a singleton Qdrant client shared by the vector search and chunk
store adapters. Supports both local and cloud deployments.
"""

from loguru import logger
from qdrant_client import QdrantClient
from qdrant_client.http.exceptions import UnexpectedResponse

from ragroute_core.config import settings


class QdrantDatabaseConnector:
    """
    Singleton connector for the Qdrant vector database.

    Usage:
        client = QdrantDatabaseConnector.get_instance()
        client.query_points(collection_name="default", query=vector, limit=20)
    """

    _instance: QdrantClient | None = None

    @classmethod
    def get_instance(cls) -> QdrantClient:
        """
        Get or create the Qdrant client instance.

        Raises:
            UnexpectedResponse: If connection to Qdrant fails.
        """
        if cls._instance is None:
            try:
                if settings.USE_QDRANT_CLOUD:
                    cls._instance = QdrantClient(
                        url=settings.QDRANT_CLOUD_URL,
                        api_key=settings.QDRANT_APIKEY,
                    )
                    uri = settings.QDRANT_CLOUD_URL
                else:
                    cls._instance = QdrantClient(
                        host=settings.QDRANT_DATABASE_HOST,
                        port=settings.QDRANT_DATABASE_PORT,
                    )
                    uri = f"{settings.QDRANT_DATABASE_HOST}:{settings.QDRANT_DATABASE_PORT}"

                logger.info(f"Connected to Qdrant at {uri}")
            except UnexpectedResponse:
                logger.exception(
                    f"Couldn't connect to Qdrant (host={settings.QDRANT_DATABASE_HOST}, "
                    f"port={settings.QDRANT_DATABASE_PORT}, url={settings.QDRANT_CLOUD_URL})"
                )
                raise

        return cls._instance

    @classmethod
    def reset(cls) -> None:
        cls._instance = None


def get_connection() -> QdrantClient:
    """Get the shared Qdrant client."""
    return QdrantDatabaseConnector.get_instance()
