# Connection handles for the triple store and the key-value store
# One manager per run; released on every exit path via open_connections()

from contextlib import contextmanager
from typing import Iterator, Optional

import redis
from redis.connection import ConnectionPool

from store_janitor.graph.client import GraphStoreClient

from .config import Config, Settings, get_config, get_settings
from .errors import StoreConnectionError
from .observability import get_logger

logger = get_logger(__name__)


class ConnectionManager:
    """Manages connections to the graph store and Redis"""

    def __init__(
        self,
        settings: Optional[Settings] = None,
        config: Optional[Config] = None,
    ):
        self.settings = settings or get_settings()
        self.config = config or get_config()
        self._graph_client: Optional[GraphStoreClient] = None
        self._redis_pool: Optional[ConnectionPool] = None
        self._redis_client: Optional[redis.Redis] = None

    # Graph store
    def get_graph_client(self) -> GraphStoreClient:
        """Get or create the graph store client, verifying the repository exists"""
        if self._graph_client is None:
            logger.info(
                "Initializing graph store client",
                url=self.settings.graphdb_url,
                repository=self.settings.graphdb_repository,
            )
            client = GraphStoreClient(
                base_url=self.settings.graphdb_url,
                repository=self.settings.graphdb_repository,
                timeout=self.config.graph_store.timeout,
                graph_iri_base=self.config.graph_store.graph_iri_base,
            )
            try:
                client.check_connection()
            except StoreConnectionError:
                client.close()
                raise
            self._graph_client = client
        return self._graph_client

    def close_graph(self) -> None:
        if self._graph_client:
            logger.info("Closing graph store client")
            self._graph_client.close()
            self._graph_client = None

    # Redis
    def get_redis_client(self) -> redis.Redis:
        """Get or create Redis client"""
        if self._redis_client is None:
            logger.info(
                "Initializing Redis client",
                host=self.settings.redis_host,
                port=self.settings.redis_port,
                db=self.settings.redis_db,
            )
            self._redis_pool = ConnectionPool(
                host=self.settings.redis_host,
                port=self.settings.redis_port,
                password=self.settings.redis_password or None,
                db=self.settings.redis_db,
                decode_responses=True,
                max_connections=10,
                socket_timeout=5,
                socket_connect_timeout=5,
            )
            client = redis.Redis(connection_pool=self._redis_pool)
            try:
                client.ping()
            except redis.exceptions.ConnectionError as e:
                self._redis_pool.disconnect()
                self._redis_pool = None
                raise StoreConnectionError("key-value-store", str(e)) from e
            self._redis_client = client
            logger.info("Redis client initialized successfully")
        return self._redis_client

    def close_redis(self) -> None:
        if self._redis_client:
            logger.info("Closing Redis client")
            self._redis_client.close()
            self._redis_client = None
        if self._redis_pool:
            self._redis_pool.disconnect()
            self._redis_pool = None

    def close_all(self) -> None:
        """Close all connections"""
        try:
            self.close_graph()
        finally:
            self.close_redis()


@contextmanager
def open_connections(
    settings: Optional[Settings] = None,
    config: Optional[Config] = None,
) -> Iterator[ConnectionManager]:
    """
    Scoped connection manager for one run.

    Connections are created lazily on first use and always closed on exit,
    including when the run fails.
    """
    manager = ConnectionManager(settings=settings, config=config)
    try:
        yield manager
    finally:
        manager.close_all()
