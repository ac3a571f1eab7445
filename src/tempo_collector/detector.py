"""
Stablecoin detector: finds new token contracts among the addresses a block touches.

An address is recorded as a stablecoin the first time it is seen with
meaningful bytecode and working decimals(), symbol() and totalSupply()
read functions.
"""

import asyncio
from typing import Any, Optional

import structlog

from .models import ZERO_ADDRESS, has_meaningful_bytecode
from .rpc import RPCClient
from .storage import StablecoinStore

logger = structlog.get_logger()

# (signature, ABI output type) for the minimal token interface
TOKEN_DETECTION_CALLS = (
    ("decimals()", "uint8"),
    ("symbol()", "string"),
    ("totalSupply()", "uint256"),
)


class StablecoinDetector:
    """
    Detects and records token contracts.

    Features:
    - At most `concurrency` addresses investigated at once
    - Each read call bounded by `call_timeout`; failures degrade to "no value"
    - One address failing never fails its siblings
    """

    def __init__(
        self,
        rpc: RPCClient,
        store: StablecoinStore,
        concurrency: int = 10,
        call_timeout: float = 5.0,
    ):
        self.rpc = rpc
        self.store = store
        self.concurrency = concurrency
        self.call_timeout = call_timeout

    async def _is_contract(self, address: str) -> bool:
        try:
            code = await asyncio.wait_for(self.rpc.get_code(address), timeout=self.call_timeout)
        except Exception as e:
            logger.debug("Code lookup failed", address=address, error=str(e))
            return False
        return has_meaningful_bytecode(code)

    async def _read(self, address: str, signature: str, output_type: str) -> Optional[Any]:
        try:
            return await asyncio.wait_for(
                self.rpc.read_contract(address, signature, output_type),
                timeout=self.call_timeout,
            )
        except Exception as e:
            logger.debug("Token read failed", address=address, function=signature, error=str(e))
            return None

    async def _is_token(self, address: str) -> bool:
        """All three detection reads must return a value; partial success is not a token."""
        values = await asyncio.gather(
            *(self._read(address, signature, output_type) for signature, output_type in TOKEN_DETECTION_CALLS)
        )
        return all(value is not None for value in values)

    async def check_and_ingest_address(
        self,
        address: str,
        block_number: Optional[int],
        block_timestamp: Optional[int] = None,
    ) -> bool:
        """
        Check a single address and record it if it's a token we haven't seen.

        Returns True if this call created a new stablecoin row. When a
        concurrent check of the same address inserted it first, the
        conflict is a no-op and this returns False.
        """
        address = address.lower()

        if address == ZERO_ADDRESS:
            return False

        if await self.store.exists(address):
            return False

        if not await self._is_contract(address):
            return False

        if not await self._is_token(address):
            return False

        inserted = await self.store.insert_if_absent(address, block_number, block_timestamp)
        if inserted:
            logger.info("Detected new stablecoin", address=address, block_number=block_number)
        return inserted

    async def check_and_ingest_addresses(
        self,
        addresses: list[str],
        block_number: Optional[int],
        block_timestamp: Optional[int] = None,
    ) -> int:
        """
        Check many addresses, returning the number of new stablecoins recorded.

        Addresses are deduplicated and the zero address dropped before any
        chain or store call is made.
        """
        unique_addresses = sorted(
            {address.lower() for address in addresses if address} - {ZERO_ADDRESS}
        )
        if not unique_addresses:
            return 0

        semaphore = asyncio.Semaphore(self.concurrency)

        async def check(address: str) -> bool:
            async with semaphore:
                return await self.check_and_ingest_address(address, block_number, block_timestamp)

        results = await asyncio.gather(
            *(check(address) for address in unique_addresses),
            return_exceptions=True,
        )

        ingested = 0
        for address, result in zip(unique_addresses, results):
            if isinstance(result, BaseException):
                logger.warning("Stablecoin check failed", address=address, error=str(result))
            elif result:
                ingested += 1

        return ingested
