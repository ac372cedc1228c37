"""Entry point: wires the clients once and serves the API with uvicorn."""
from contextlib import asynccontextmanager
from dataclasses import dataclass
from typing import Optional

import structlog
import uvicorn
from fastapi import FastAPI

from blockchain.database import DatabaseManager
from blockchain.node_client import NodeClient
from cache.block_window import BlockWindow
from cache.error_queues import ErrorHeightQueues
from cache.monitoring import CacheMonitor
from cache.redis_manager import RedisManager
from config.logging import configure_logging
from config.settings import ExplorerSettings
from .app import create_app
from .fallback import FallbackReader
from .ingest import BlockIngestor
from .service import ExplorerService

logger = structlog.get_logger()


@dataclass
class Components:
    service: ExplorerService
    ingestor: BlockIngestor
    node: NodeClient
    db: DatabaseManager
    redis: Optional[RedisManager] = None


def build_components(settings: ExplorerSettings) -> Components:
    """Construct every client once; the window and the queues share one lock."""
    monitor = CacheMonitor()
    window = BlockWindow(settings.BLOCK_BUFFER, monitor=monitor)
    queues = ErrorHeightQueues(lock=window.lock)
    db = DatabaseManager(settings.DB_URL, settings.NETWORK_TYPE)
    node = NodeClient(settings.NODE_RPC_URL, timeout=settings.TIER_TIMEOUT)
    redis = None
    if settings.REDIS_URL:
        redis = RedisManager(settings.REDIS_URL, default_ttl=settings.VALIDATORS_CACHE_TTL)

    reader = FallbackReader(timeout=settings.TIER_TIMEOUT, monitor=monitor)
    service = ExplorerService(window, db, node, queues, reader, redis=redis)
    ingestor = BlockIngestor(window, db, node, queues, redis=redis,
                             validators_ttl=settings.VALIDATORS_CACHE_TTL)
    return Components(service, ingestor, node, db, redis)


def build_app(settings: ExplorerSettings) -> FastAPI:
    components = build_components(settings)

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        await components.node.start()
        if components.redis:
            await components.redis.connect()
        await components.ingestor.start(settings.MAINTENANCE_INTERVAL, settings.HEAD_POLL_INTERVAL)
        logger.info("explorer_started", network=settings.NETWORK_TYPE.value,
                    block_buffer=settings.BLOCK_BUFFER)
        try:
            yield
        finally:
            await components.ingestor.stop()
            if components.redis:
                await components.redis.disconnect()
            await components.node.close()
            components.db.close()
            logger.info("explorer_stopped")

    return create_app(components.service, settings, lifespan=lifespan)


def main():
    settings = ExplorerSettings()
    configure_logging(settings.LOG_LEVEL)
    uvicorn.run(
        build_app(settings),
        host=settings.API_HOST,
        port=settings.API_PORT,
    )


if __name__ == "__main__":
    main()
