from typing import List, Optional

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict

from blockchain.types import NetworkType


class ExplorerSettings(BaseSettings):
    """Configuration for the explorer backend, read from the environment or .env."""

    model_config = SettingsConfigDict(env_file=".env", extra="ignore")

    # Network
    NETWORK_TYPE: NetworkType = NetworkType.MAINNET
    API_HOST: str = "0.0.0.0"
    API_PORT: int = 8000

    # Durable store
    DB_URL: str = Field(
        default="sqlite:///data/explorer.db",
        description="SQLAlchemy database URL"
    )

    # Redis cache (validators snapshot)
    REDIS_URL: Optional[str] = None
    VALIDATORS_CACHE_TTL: int = 600  # seconds

    # Live node
    NODE_RPC_URL: str = "http://localhost:8545"

    # Block window
    BLOCK_BUFFER: int = Field(default=50, ge=1, description="Blocks kept in the window")

    # Timeouts
    TIER_TIMEOUT: float = Field(default=2.0, gt=0, description="Per-tier deadline in seconds")
    AGGREGATE_TIMEOUT: float = Field(default=2.0, gt=0, description="Deadline of list endpoints")

    # Pagination
    DEFAULT_PAGE_LIMIT: int = Field(default=10, ge=1)
    MAX_PAGE_LIMIT: int = Field(default=100, ge=1)

    # API
    RATE_LIMIT: str = "60/minute"
    CORS_ORIGINS: List[str] = ["http://localhost:3000"]

    # Ingestion
    HEAD_POLL_INTERVAL: float = Field(default=1.0, gt=0, description="Seconds between node head polls")
    MAINTENANCE_INTERVAL: float = Field(default=30.0, gt=0, description="Seconds between queue passes")

    # Monitoring
    LOG_LEVEL: str = "INFO"
