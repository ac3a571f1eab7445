"""
RPC client for fetching blocks, transactions and receipts from a Tempo node.

Supports:
- Multiple RPC endpoints (round-robin)
- Parallel fetching with semaphore
- Automatic retries with backoff for transport failures
- Typed contract reads (eth_call + ABI decoding)
"""

import asyncio
from typing import Any, Optional

import aiohttp
import structlog
from eth_abi import decode
from eth_abi.exceptions import DecodingError
from eth_utils import function_signature_to_4byte_selector

logger = structlog.get_logger()

DEFAULT_RPC_URL = "https://rpc.testnet.tempo.xyz"


class RPCError(Exception):
    """
    RPC call failed.

    `status` and `headers` are set for HTTP-level failures (e.g. 429 with a
    Retry-After header), `code` for JSON-RPC error payloads.
    """

    def __init__(
        self,
        message: str,
        status: Optional[int] = None,
        headers: Optional[dict] = None,
        code: Optional[int] = None,
    ):
        super().__init__(message)
        self.status = status
        self.headers = headers or {}
        self.code = code


class RPCClient:
    """
    Async JSON-RPC client for Tempo (EVM-compatible) nodes.

    Features:
    - Connection pooling via aiohttp
    - Round-robin across multiple endpoints
    - Retry with exponential backoff on transport errors and 5xx
    - Rate limit (429) and JSON-RPC errors are raised immediately so
      callers can apply their own policy
    """

    def __init__(
        self,
        endpoints: list[str],
        max_concurrent: int = 10,
        timeout: int = 10,
        max_retries: int = 3,
    ):
        if not endpoints:
            raise ValueError("At least one RPC endpoint is required")
        self.endpoints = endpoints
        self.max_concurrent = max_concurrent
        self.timeout = aiohttp.ClientTimeout(total=timeout)
        self.max_retries = max_retries

        self._semaphore = asyncio.Semaphore(max_concurrent)
        self._request_id = 0
        self._endpoint_index = 0
        self._session: Optional[aiohttp.ClientSession] = None

    async def __aenter__(self):
        self._session = aiohttp.ClientSession(timeout=self.timeout)
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        if self._session:
            await self._session.close()
            self._session = None

    def _next_endpoint(self) -> str:
        """Round-robin endpoint selection."""
        endpoint = self.endpoints[self._endpoint_index]
        self._endpoint_index = (self._endpoint_index + 1) % len(self.endpoints)
        return endpoint

    def _next_request_id(self) -> int:
        self._request_id += 1
        return self._request_id

    async def _call(self, method: str, params: list[Any]) -> Any:
        """Make a single RPC call with retries."""
        if self._session is None:
            raise RPCError("RPCClient used outside of its async context")

        last_error = None

        for attempt in range(self.max_retries):
            endpoint = self._next_endpoint()
            payload = {
                "jsonrpc": "2.0",
                "method": method,
                "params": params,
                "id": self._next_request_id(),
            }

            try:
                async with self._semaphore:
                    async with self._session.post(endpoint, json=payload) as resp:
                        if resp.status == 429:
                            raise RPCError(
                                f"HTTP 429: {await resp.text()}",
                                status=429,
                                headers=dict(resp.headers),
                            )
                        if resp.status >= 500:
                            raise aiohttp.ClientResponseError(
                                resp.request_info,
                                resp.history,
                                status=resp.status,
                                message=await resp.text(),
                            )
                        if resp.status != 200:
                            raise RPCError(
                                f"HTTP {resp.status}: {await resp.text()}",
                                status=resp.status,
                                headers=dict(resp.headers),
                            )

                        try:
                            data = await resp.json(content_type=None)
                        except ValueError as e:
                            raise RPCError(f"Invalid JSON-RPC response body: {e}") from e
                        if not isinstance(data, dict):
                            raise RPCError(f"Invalid JSON-RPC response: {data!r}")

                        if "error" in data:
                            error = data["error"] or {}
                            raise RPCError(
                                f"RPC error: {error}",
                                code=error.get("code") if isinstance(error, dict) else None,
                            )

                        return data.get("result")

            except (aiohttp.ClientError, asyncio.TimeoutError) as e:
                last_error = e
                if attempt == self.max_retries - 1:
                    break
                wait_time = 2 ** attempt  # 1, 2, 4 seconds
                logger.warning(
                    "RPC call failed, retrying",
                    method=method,
                    attempt=attempt + 1,
                    max_retries=self.max_retries,
                    wait_time=wait_time,
                    error=str(e),
                )
                await asyncio.sleep(wait_time)

        raise RPCError(f"RPC call failed after {self.max_retries} retries: {last_error}")

    async def get_block_number(self) -> int:
        """Get the latest block number."""
        result = await self._call("eth_blockNumber", [])
        return int(result, 16)

    async def get_block(
        self,
        number: Optional[int] = None,
        block_hash: Optional[str] = None,
        full_transactions: bool = True,
    ) -> Optional[dict]:
        """Get block by number or by hash. Returns None if the node doesn't know it.

        Args:
            number: Block number to fetch
            block_hash: Block hash to fetch (used when number is None)
            full_transactions: If True, include full tx objects. If False, just hashes.
        """
        if number is not None:
            return await self._call("eth_getBlockByNumber", [hex(number), full_transactions])
        if block_hash is not None:
            return await self._call("eth_getBlockByHash", [block_hash, full_transactions])
        raise ValueError("Either number or block_hash is required")

    async def get_transaction(self, tx_hash: str) -> Optional[dict]:
        return await self._call("eth_getTransactionByHash", [tx_hash])

    async def get_transaction_receipt(self, tx_hash: str) -> Optional[dict]:
        return await self._call("eth_getTransactionReceipt", [tx_hash])

    async def get_code(self, address: str) -> str:
        """Get deployed bytecode at address ("0x" for accounts without code)."""
        result = await self._call("eth_getCode", [address, "latest"])
        return result or "0x"

    async def call(self, address: str, data: str) -> str:
        """eth_call against the latest block."""
        result = await self._call("eth_call", [{"to": address, "data": data}, "latest"])
        return result or "0x"

    async def read_contract(self, address: str, signature: str, output_type: str) -> Any:
        """
        Call a no-argument view function and decode its single return value.

        Args:
            address: Contract address
            signature: Function signature, e.g. "decimals()"
            output_type: ABI type of the return value, e.g. "uint8"

        Raises:
            RPCError: the call reverted, or returned data that doesn't decode
        """
        selector = "0x" + function_signature_to_4byte_selector(signature).hex()
        result = await self.call(address, selector)

        if result in ("", "0x"):
            raise RPCError(f"{signature} returned no data at {address}")
        try:
            raw = bytes.fromhex(result[2:] if result.startswith("0x") else result)
            (value,) = decode([output_type], raw)
        except (DecodingError, ValueError) as e:
            raise RPCError(f"Could not decode {signature} at {address}: {e}") from e
        return value
