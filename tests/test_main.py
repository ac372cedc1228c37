from fastapi import FastAPI

from config.settings import ExplorerSettings
from explorer.main import build_app, build_components


def test_build_components_shares_one_lock():
    settings = ExplorerSettings(_env_file=None, DB_URL="sqlite:///:memory:", BLOCK_BUFFER=3)
    components = build_components(settings)

    service = components.service
    assert service.window.capacity == 3
    assert service.queues.lock is service.window.lock
    assert components.ingestor.window is service.window
    assert components.redis is None
    assert service.reader.timeout == settings.TIER_TIMEOUT
    components.db.close()


def test_build_components_with_redis():
    settings = ExplorerSettings(_env_file=None, DB_URL="sqlite:///:memory:",
                                REDIS_URL="redis://localhost:6379/0", VALIDATORS_CACHE_TTL=30)
    components = build_components(settings)

    assert components.redis.default_ttl == 30
    assert components.service.redis is components.redis
    assert components.ingestor.validators_ttl == 30
    components.db.close()


def test_build_app():
    settings = ExplorerSettings(_env_file=None, DB_URL="sqlite:///:memory:")
    app = build_app(settings)
    assert isinstance(app, FastAPI)
    assert {route.path for route in app.routes} >= {"/blocks", "/blocks/{block}", "/blocks/error", "/txs/{tx_hash}"}
