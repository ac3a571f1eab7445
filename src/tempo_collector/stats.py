"""
Stablecoin statistics: transfer and fee-payment volume per known stablecoin.
"""

import re
from typing import Any, Optional

import structlog
from eth_utils import keccak

from .models import ParsedLog, ParsedReceipt, StablecoinBlockStats
from .storage import StablecoinStore

logger = structlog.get_logger()

# keccak256("Transfer(address,address,uint256)")
TRANSFER_EVENT_SIGNATURE = "0x" + keccak(text="Transfer(address,address,uint256)").hex()

_UINT256_WORD = re.compile(r"[0-9a-fA-F]{64}")


def is_transfer_event(log: ParsedLog, stablecoin_addresses: set[str]) -> bool:
    """Check if a log is a Transfer event emitted by a known stablecoin."""
    if log.address not in stablecoin_addresses:
        return False
    if not log.topics:
        return False
    return log.topics[0].lower() == TRANSFER_EVENT_SIGNATURE


def extract_transfer_amount(log: ParsedLog) -> Optional[int]:
    """
    Transferred amount from a Transfer log.

    Transfer(address indexed from, address indexed to, uint256 value):
    the value is the first 32-byte word of data. Returns None when the data
    is shorter than one word or the word isn't 64 plain hex digits.
    """
    data = log.data
    if not data or data[:2].lower() != "0x":
        return None
    word = data[2:66]
    if not _UINT256_WORD.fullmatch(word):
        return None
    return int(word, 16)


class StablecoinStatsAggregator:
    """
    Computes per-block stablecoin activity and merges it into the cumulative counters.

    Aggregation is additive: applying the same block's receipts twice counts
    them twice. Callers that re-ingest blocks own that guard.
    """

    def __init__(self, store: StablecoinStore):
        self.store = store

    async def calculate_stablecoin_stats(
        self,
        receipts: list[Any],
        block_number: int,
    ) -> dict[str, StablecoinBlockStats]:
        """
        Count Transfer events and fee payments per known stablecoin.

        Args:
            receipts: Raw receipts; None entries and malformed fields are tolerated
            block_number: Block the receipts belong to

        Returns:
            Stats keyed by lowercase stablecoin address, only for addresses
            with activity in these receipts
        """
        stablecoin_addresses = await self.store.list_addresses()
        if not stablecoin_addresses:
            return {}

        stats = {address: StablecoinBlockStats(address=address) for address in stablecoin_addresses}

        for raw_receipt in receipts:
            if not raw_receipt:
                continue

            receipt = ParsedReceipt.from_raw(raw_receipt)

            for log in receipt.logs:
                if not is_transfer_event(log, stablecoin_addresses):
                    continue
                stat = stats[log.address]
                stat.transfer_count += 1
                amount = extract_transfer_amount(log)
                if amount is not None:
                    stat.transfer_volume += amount
                else:
                    logger.debug(
                        "Transfer without decodable amount",
                        stablecoin=log.address,
                        block_number=block_number,
                    )

            if receipt.fee_token and receipt.fee_token in stablecoin_addresses:
                stat = stats[receipt.fee_token]
                stat.fee_payment_count += 1
                if receipt.gas_used is not None and receipt.effective_gas_price is not None:
                    stat.fee_volume += receipt.gas_used * receipt.effective_gas_price

        return {address: stat for address, stat in stats.items() if stat.has_activity}

    async def update_stablecoin_stats(
        self,
        stats: dict[str, StablecoinBlockStats],
        block_number: int,
    ) -> None:
        """Add a block's stats to the stored totals in one atomic batch."""
        if not stats:
            return

        updated = await self.store.apply_stats(stats, block_number)
        logger.info(
            "Updated stablecoin stats",
            block_number=block_number,
            stablecoins=updated,
            transfers=sum(s.transfer_count for s in stats.values()),
            fee_payments=sum(s.fee_payment_count for s in stats.values()),
        )
