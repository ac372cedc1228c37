"""
Core helpers for the explorer cache tier.

Holds the composite key layout used by the index and the record codec used
by the block window. Records are stored serialized so that the window keeps
lightweight summaries and a corrupted entry is detected on read.
"""
from typing import Type, TypeVar

import structlog
from pydantic import BaseModel, ValidationError

from .errors import StoreError

logger = structlog.get_logger()

M = TypeVar('M', bound=BaseModel)

KEY_BLOCK_BY_HEIGHT = "#block#height#{height}"
KEY_BLOCK_BY_HASH = "#block#hash#{hash}"
KEY_TX_OF_BLOCK_BY_NONCE = "#block#index#{height}#tx#nonce#{nonce}"
KEY_TX_OF_BLOCK_BY_HASH = "#block#index#{height}#tx#hash#{hash}"
KEY_TX_BY_HASH = "#tx#{hash}"
KEY_VALIDATORS = "#validators"


def encode_record(model: BaseModel) -> str:
    """Serialize a model for storage in the window."""
    try:
        return model.model_dump_json(by_alias=True)
    except (TypeError, ValueError) as e:
        raise StoreError(f"cannot encode {type(model).__name__}: {e}") from e


def decode_record(raw: str, model: Type[M]) -> M:
    """Deserialize a stored record, raising StoreError when it is corrupted."""
    try:
        return model.model_validate_json(raw)
    except ValidationError as e:
        logger.debug("record_decode_failed", model=model.__name__, error=str(e))
        raise StoreError(f"cannot decode {model.__name__} record") from e
