"""
Block ingestion: fetch a block, persist its transactions, then update stablecoins.

Lifecycle of one ingest_block call:
1. Parse the block identifier (number or hash)
2. Fetch the block, its transactions and receipts
3. Normalize and upsert all transactions atomically (fatal on failure)
4. Detect new stablecoins (failure logged, not raised)
5. Aggregate stablecoin stats from the receipts (failure logged, not raised)
"""

import asyncio
from typing import Optional, Union

import structlog
from pydantic import BaseModel, Field

from .detector import StablecoinDetector
from .models import IngestBlockResult, StablecoinBlockStats, to_int
from .processor import TransactionProcessor, candidate_addresses
from .rpc import RPCClient, RPCError
from .stats import StablecoinStatsAggregator
from .storage import TransactionStore

logger = structlog.get_logger()


class IngestionError(Exception):
    """Base class for errors reported to the caller of an ingestion."""


class InvalidBlockIdentifier(IngestionError):
    pass


class BlockNotFound(IngestionError):
    pass


class TransactionNotFound(IngestionError):
    pass


def parse_block_identifier(block_id: str) -> Union[int, str]:
    """
    Parse a block identifier.

    A non-negative decimal integer is a block number, a "0x" string is a
    block hash. Anything else raises InvalidBlockIdentifier.
    """
    block_id = (block_id or "").strip()
    if block_id.isascii() and block_id.isdigit():
        return int(block_id)
    if block_id[:2].lower() == "0x" and len(block_id) > 2:
        return block_id.lower()
    raise InvalidBlockIdentifier(
        f"Invalid block identifier {block_id!r}. Must be a block number or block hash (0x...)"
    )


def transaction_hashes(block: dict) -> list[str]:
    """Transaction hashes of a block, whether it lists hashes or full transaction objects."""
    hashes = []
    for tx in block.get("transactions") or []:
        if isinstance(tx, str):
            hashes.append(tx)
        elif isinstance(tx, dict) and tx.get("hash"):
            hashes.append(tx["hash"])
    return hashes


class TransactionInspection(BaseModel):
    """Stablecoin view of a single transaction, computed without updating counters."""
    hash: str
    block_number: int
    from_address: Optional[str] = None
    to_address: Optional[str] = None
    fee_token: Optional[str] = None
    stablecoins_detected: int = 0
    stats: list[StablecoinBlockStats] = Field(default_factory=list)


class BlockIngestor:
    """
    Coordinates block ingestion.

    Every call is independent and safe to repeat for the same block:
    transactions are upserted by hash and stablecoins are inserted once.
    """

    def __init__(
        self,
        rpc: RPCClient,
        transactions: TransactionStore,
        detector: StablecoinDetector,
        aggregator: StablecoinStatsAggregator,
        processor: Optional[TransactionProcessor] = None,
    ):
        self.rpc = rpc
        self.transactions = transactions
        self.detector = detector
        self.aggregator = aggregator
        self.processor = processor or TransactionProcessor()

    async def _fetch_block(self, block_id: str) -> dict:
        identifier = parse_block_identifier(block_id)
        if isinstance(identifier, int):
            block = await self.rpc.get_block(number=identifier, full_transactions=True)
        else:
            block = await self.rpc.get_block(block_hash=identifier, full_transactions=True)
        if not block:
            raise BlockNotFound(f"Block not found: {block_id}")
        return block

    async def _fetch_receipt(self, tx_hash: str) -> Optional[dict]:
        try:
            return await self.rpc.get_transaction_receipt(tx_hash)
        except RPCError as e:
            logger.warning("Receipt fetch failed", tx_hash=tx_hash, error=str(e))
            return None

    async def _fetch_transactions(self, block: dict, hashes: list[str]) -> tuple[list[dict], list[Optional[dict]]]:
        """Fetch full transaction bodies and receipts for every hash concurrently."""
        embedded = {
            tx["hash"]: tx
            for tx in block.get("transactions") or []
            if isinstance(tx, dict) and tx.get("hash")
        }

        fetched, receipts = await asyncio.gather(
            asyncio.gather(*(self.rpc.get_transaction(h) for h in hashes)),
            asyncio.gather(*(self._fetch_receipt(h) for h in hashes)),
        )

        transactions = []
        for tx_hash, tx in zip(hashes, fetched):
            tx = tx or embedded.get(tx_hash)
            if tx is None:
                raise TransactionNotFound(f"Transaction not found: {tx_hash}")
            transactions.append(tx)

        return transactions, list(receipts)

    async def _detect_stablecoins(self, addresses: list[str], block_number: int, timestamp: int) -> None:
        if not addresses:
            return
        try:
            detected = await self.detector.check_and_ingest_addresses(addresses, block_number, timestamp)
            if detected:
                logger.info("Stablecoins detected", block_number=block_number, count=detected)
        except Exception as e:
            logger.error("Stablecoin detection failed", block_number=block_number, error=str(e))

    async def _update_stats(self, receipts: list[dict], block_number: int) -> None:
        if not receipts:
            return
        try:
            stats = await self.aggregator.calculate_stablecoin_stats(receipts, block_number)
            if stats:
                await self.aggregator.update_stablecoin_stats(stats, block_number)
        except Exception as e:
            logger.error("Stablecoin stats update failed", block_number=block_number, error=str(e))

    async def ingest_block(self, block_id: str) -> IngestBlockResult:
        """
        Ingest all transactions of a block.

        Args:
            block_id: Block number (decimal string) or block hash (0x...)

        Raises:
            InvalidBlockIdentifier: block_id is neither a number nor a hash
            BlockNotFound: the node doesn't know the block
            TransactionNotFound: a referenced transaction couldn't be fetched
        """
        block = await self._fetch_block(block_id)

        block_number = to_int(block.get("number"), 0)
        block_hash = block.get("hash") or ""
        timestamp = to_int(block.get("timestamp"), 0)

        hashes = transaction_hashes(block)
        if not hashes:
            logger.debug("Block has no transactions", block_number=block_number)
            return IngestBlockResult(
                block_number=block_number,
                block_hash=block_hash,
                transactions_ingested=0,
                timestamp=timestamp,
            )

        transactions, receipts = await self._fetch_transactions(block, hashes)
        records = self.processor.process_many(transactions, receipts, timestamp)

        # Critical path: nothing below runs if this raises
        await self.transactions.upsert_batch(records)

        await self._detect_stablecoins(candidate_addresses(records), block_number, timestamp)
        await self._update_stats([r for r in receipts if r is not None], block_number)

        logger.info(
            "Ingested block",
            block_number=block_number,
            block_hash=block_hash,
            tx_count=len(records),
        )

        return IngestBlockResult(
            block_number=block_number,
            block_hash=block_hash,
            transactions_ingested=len(records),
            timestamp=timestamp,
        )

    async def inspect_transaction(self, tx_hash: str) -> TransactionInspection:
        """
        Detect stablecoins touched by one transaction and compute its stats.

        Counters are not updated; this is a read-only preview apart from
        recording newly detected stablecoins.

        Raises:
            TransactionNotFound: the transaction or its receipt is missing
        """
        tx, receipt = await asyncio.gather(
            self.rpc.get_transaction(tx_hash),
            self._fetch_receipt(tx_hash),
        )
        if not tx:
            raise TransactionNotFound(f"Transaction not found: {tx_hash}")
        if not receipt:
            raise TransactionNotFound(f"Transaction receipt not found: {tx_hash}")

        block_number = to_int(receipt.get("blockNumber"), 0)
        block = await self.rpc.get_block(number=block_number, full_transactions=False)
        timestamp = to_int(block.get("timestamp")) if block else None

        record = self.processor.process(tx, receipt, timestamp)
        detected = 0
        addresses = candidate_addresses([record])
        if addresses:
            try:
                detected = await self.detector.check_and_ingest_addresses(addresses, block_number, timestamp)
            except Exception as e:
                logger.error("Stablecoin detection failed", tx_hash=tx_hash, error=str(e))

        stats = await self.aggregator.calculate_stablecoin_stats([receipt], block_number)

        return TransactionInspection(
            hash=record.hash,
            block_number=block_number,
            from_address=record.from_address,
            to_address=record.to_address,
            fee_token=receipt.get("feeToken"),
            stablecoins_detected=detected,
            stats=list(stats.values()),
        )
