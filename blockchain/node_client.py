"""JSON-RPC client for the chain node, the last tier of every read."""
import itertools
from typing import Any, Optional

import aiohttp
import structlog

from cache.errors import NotFoundError
from .types import Block, Receipt, Transaction, Validators

logger = structlog.get_logger()


class NodeError(Exception):
    """The node answered with a JSON-RPC error or an unexpected response."""

    def __init__(self, method: str, message: str, code: Optional[int] = None):
        self.method = method
        self.code = code
        super().__init__(f"{method}: {message}")


class NodeClient:
    """Async JSON-RPC client.

    Args:
        rpc_url: HTTP endpoint of the node
        timeout: Total deadline of a single request in seconds
        session: Optional aiohttp session to use instead of creating one
    """

    def __init__(self, rpc_url: str, timeout: float = 5.0, session: Optional[aiohttp.ClientSession] = None):
        self.rpc_url = rpc_url
        self.timeout = timeout
        self.session = session
        self._ids = itertools.count(1)

    async def start(self):
        if self.session is None:
            self.session = aiohttp.ClientSession(
                timeout=aiohttp.ClientTimeout(total=self.timeout)
            )
            logger.info("node_client_started", rpc_url=self.rpc_url)

    async def close(self):
        if self.session:
            await self.session.close()
            self.session = None
            logger.info("node_client_closed")

    async def call(self, method: str, *params: Any) -> Any:
        """Send one JSON-RPC request and return its ``result``.

        Raises:
            NotFoundError: If the node returned a null result
            NodeError: If the node returned an error or a non-200 status
        """
        if self.session is None:
            await self.start()

        payload = {
            "jsonrpc": "2.0",
            "id": next(self._ids),
            "method": method,
            "params": list(params),
        }
        async with self.session.post(self.rpc_url, json=payload) as response:
            if response.status != 200:
                raise NodeError(method, f"node returned status {response.status}")
            body = await response.json()

        error = body.get("error")
        if error:
            logger.warning("node_rpc_error", method=method, error=error)
            if isinstance(error, dict):
                raise NodeError(method, error.get("message", "unknown error"), error.get("code"))
            raise NodeError(method, str(error))

        result = body.get("result")
        if result is None:
            raise NotFoundError(f"{method}{list(params)} returned no result")
        return result

    async def block_number(self) -> int:
        """Height of the newest block known to the node."""
        result = await self.call("kai_blockNumber")
        if isinstance(result, str):
            return int(result, 0)
        return int(result)

    async def block_by_hash(self, block_hash: str) -> Block:
        return Block.model_validate(await self.call("kai_getBlockByHash", block_hash))

    async def block_by_height(self, height: int) -> Block:
        return Block.model_validate(await self.call("kai_getBlockByNumber", height))

    async def get_transaction(self, tx_hash: str) -> Transaction:
        return Transaction.model_validate(await self.call("tx_getTransaction", tx_hash))

    async def get_transaction_receipt(self, tx_hash: str) -> Receipt:
        return Receipt.model_validate(await self.call("tx_getTransactionReceipt", tx_hash))

    async def validators(self) -> Validators:
        result = await self.call("kai_validators", True)
        if isinstance(result, list):
            return Validators(total_validators=len(result), validators=result)
        return Validators.model_validate(result)
