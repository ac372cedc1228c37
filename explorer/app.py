import asyncio
import time
from typing import Any, Dict, List, Optional

import structlog
from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse, Response
from prometheus_client import CONTENT_TYPE_LATEST, Counter, Histogram, generate_latest
from slowapi import Limiter
from slowapi.errors import RateLimitExceeded
from slowapi.util import get_remote_address

from blockchain.pagination import Pagination
from cache.errors import BadRequestError, EmptyError, NotFoundError
from config.settings import ExplorerSettings
from .service import ExplorerService

logger = structlog.get_logger()

REQUEST_COUNT = Counter(
    'http_requests_total',
    'Total HTTP requests',
    ['endpoint', 'method', 'status']
)

REQUEST_LATENCY = Histogram(
    'http_request_duration_seconds',
    'HTTP request latency',
    ['endpoint', 'method']
)


def paged(pagination: Pagination, data: List[Any], total: int) -> Dict[str, Any]:
    return {
        "page": pagination.page,
        "limit": pagination.limit,
        "total": total,
        "data": data,
    }


async def _rate_limit_exceeded_handler(request: Request, exc: RateLimitExceeded) -> JSONResponse:
    """Handle rate limit exceeded errors."""
    return JSONResponse(
        status_code=429,
        content={
            "error": "Too many requests",
            "detail": f"Rate limit exceeded: {exc.detail}"
        }
    )


async def _bad_request_handler(request: Request, exc: BadRequestError) -> JSONResponse:
    return JSONResponse(status_code=400, content={"error": "Bad request", "detail": str(exc)})


async def _not_found_handler(request: Request, exc: Exception) -> JSONResponse:
    logger.debug("resource_not_found", path=request.url.path, error=str(exc))
    return JSONResponse(status_code=404, content={"error": "Not found"})


async def _generic_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    """Log unhandled errors; the response never says which backend failed."""
    logger.error("unhandled_exception",
                 error=str(exc),
                 error_type=type(exc).__name__,
                 path=request.url.path)
    return JSONResponse(status_code=500, content={"error": "Internal server error"})


def create_app(service: ExplorerService, settings: Optional[ExplorerSettings] = None,
               lifespan=None) -> FastAPI:
    """Build the explorer API around an already wired service."""
    settings = settings or ExplorerSettings()

    app = FastAPI(
        title="Explorer API",
        description="Blocks, transactions and validators of the chain",
        version="1.0.0",
        lifespan=lifespan,
    )
    app.state.service = service

    # Add rate limiting
    limiter = Limiter(key_func=get_remote_address)
    app.state.limiter = limiter
    app.add_exception_handler(RateLimitExceeded, _rate_limit_exceeded_handler)

    app.add_exception_handler(BadRequestError, _bad_request_handler)
    app.add_exception_handler(NotFoundError, _not_found_handler)
    app.add_exception_handler(EmptyError, _not_found_handler)
    app.add_exception_handler(Exception, _generic_exception_handler)

    # Add CORS middleware
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.CORS_ORIGINS,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    @app.middleware("http")
    async def metrics_middleware(request: Request, call_next):
        start_time = time.time()
        response = await call_next(request)
        route = request.scope.get("route")
        endpoint = getattr(route, "path", "unmatched")
        REQUEST_COUNT.labels(endpoint=endpoint, method=request.method,
                             status=str(response.status_code)).inc()
        REQUEST_LATENCY.labels(endpoint=endpoint, method=request.method).observe(
            time.time() - start_time
        )
        return response

    def pagination_of(page: Optional[str], limit: Optional[str]) -> Pagination:
        return Pagination.from_query(page, limit, settings.DEFAULT_PAGE_LIMIT, settings.MAX_PAGE_LIMIT)

    rate = settings.RATE_LIMIT

    @app.get("/ping")
    async def ping():
        return {"status": "ok"}

    @app.get("/blocks")
    @limiter.limit(rate)
    async def blocks(request: Request, page: Optional[str] = None, limit: Optional[str] = None):
        """Latest blocks, newest first."""
        pagination = pagination_of(page, limit)
        data, total = await asyncio.wait_for(service.blocks(pagination), settings.AGGREGATE_TIMEOUT)
        return paged(pagination, data, total)

    @app.get("/blocks/error")
    @limiter.limit(rate)
    async def persistent_error_blocks(request: Request):
        """Heights the ingestion pipeline failed to process."""
        return {"data": service.persistent_error_blocks()}

    @app.get("/blocks/proposer/{address}")
    @limiter.limit(rate)
    async def blocks_by_proposer(request: Request, address: str,
                                 page: Optional[str] = None, limit: Optional[str] = None):
        pagination = pagination_of(page, limit)
        data, total = await asyncio.wait_for(
            service.blocks_by_proposer(address, pagination), settings.AGGREGATE_TIMEOUT
        )
        return paged(pagination, data, total)

    @app.get("/blocks/{block}")
    @limiter.limit(rate)
    async def block(request: Request, block: str):
        """Block by hash (0x-prefixed) or by height."""
        return {"data": await service.block(block)}

    @app.get("/block/{block}/txs")
    @limiter.limit(rate)
    async def block_txs(request: Request, block: str,
                        page: Optional[str] = None, limit: Optional[str] = None):
        pagination = pagination_of(page, limit)
        data, total = await service.block_txs(block, pagination)
        return paged(pagination, data, total)

    @app.get("/txs")
    @limiter.limit(rate)
    async def txs(request: Request, page: Optional[str] = None, limit: Optional[str] = None):
        """Latest transactions across blocks."""
        pagination = pagination_of(page, limit)
        data, total = await asyncio.wait_for(service.txs(pagination), settings.AGGREGATE_TIMEOUT)
        return paged(pagination, data, total)

    @app.get("/txs/{tx_hash}")
    @limiter.limit(rate)
    async def tx(request: Request, tx_hash: str):
        return {"data": await service.tx(tx_hash)}

    @app.get("/addresses/{address}/txs")
    @limiter.limit(rate)
    async def address_txs(request: Request, address: str,
                          page: Optional[str] = None, limit: Optional[str] = None):
        pagination = pagination_of(page, limit)
        data, total = await asyncio.wait_for(
            service.address_txs(address, pagination), settings.AGGREGATE_TIMEOUT
        )
        return paged(pagination, data, total)

    @app.get("/validators")
    @limiter.limit(rate)
    async def validators(request: Request):
        return {"data": await service.validators()}

    @app.get("/metrics")
    async def metrics():
        return Response(generate_latest(), media_type=CONTENT_TYPE_LATEST)

    return app
