"""
Transaction processor: transforms raw RPC transactions and receipts into TransactionRecords.

Tempo serves several transaction types (legacy, EIP-1559, Tempo native) and
not all of them carry every field, so every field read here has a default.
"""

from typing import Optional

import structlog

from .models import (
    TransactionRecord,
    TransactionStatus,
    lower_or_none,
    serialize_for_storage,
    to_int,
)

logger = structlog.get_logger()

_SUCCESS_STATUSES = {"0x1", "1", "success"}
_FAILED_STATUSES = {"0x0", "0", "reverted", "failed"}


def receipt_status(receipt: Optional[dict]) -> Optional[TransactionStatus]:
    """
    Map a receipt status to TransactionStatus.

    Raw nodes report "0x1"/"0x0" (EIP-658), some clients report
    "success"/"reverted". Anything else, including pre-Byzantium receipts
    without a status, is unknown (None).
    """
    if not receipt:
        return None
    status = receipt.get("status")
    if isinstance(status, bool):
        return None
    if isinstance(status, int):
        status = str(status)
    if not isinstance(status, str):
        return None
    status = status.lower()
    if status in _SUCCESS_STATUSES:
        return TransactionStatus.SUCCESS
    if status in _FAILED_STATUSES:
        return TransactionStatus.FAILED
    return None


class TransactionProcessor:
    """
    Transforms raw transaction + receipt pairs into TransactionRecords.

    Handles:
    - Missing input/value/gasPrice on simple transfers and native Tempo txs
    - Contract creation (to = None, contractAddress from receipt)
    - Transactions without a receipt (block number 0, unknown status)
    """

    def process(
        self,
        tx: dict,
        receipt: Optional[dict] = None,
        block_timestamp: Optional[int] = None,
    ) -> TransactionRecord:
        """
        Process a single transaction and its optional receipt.

        Args:
            tx: Raw transaction from eth_getTransactionByHash or a full block body
            receipt: Raw receipt from eth_getTransactionReceipt, if available
            block_timestamp: Block timestamp in seconds

        Returns:
            TransactionRecord. Never raises on missing optional fields.
        """
        receipt = receipt if isinstance(receipt, dict) else None

        return TransactionRecord(
            hash=str(tx.get("hash", "")).lower(),
            block_number=to_int(receipt.get("blockNumber"), 0) if receipt else 0,
            block_hash=receipt.get("blockHash") if receipt else None,
            transaction_index=to_int(receipt.get("transactionIndex")) if receipt else None,
            from_address=lower_or_none(tx.get("from")) or "",
            to_address=lower_or_none(tx.get("to")),
            contract_address=lower_or_none(receipt.get("contractAddress")) if receipt else None,
            value=to_int(tx.get("value"), 0),
            input=tx.get("input") or "0x",
            nonce=to_int(tx.get("nonce"), 0),
            gas=to_int(tx.get("gas"), 0),
            gas_price=to_int(tx.get("gasPrice"), 0),
            gas_used=to_int(receipt.get("gasUsed")) if receipt else None,
            status=receipt_status(receipt),
            timestamp=block_timestamp,
            raw_transaction=serialize_for_storage(tx),
            raw_receipt=serialize_for_storage(receipt) if receipt else None,
        )

    def process_many(
        self,
        transactions: list[dict],
        receipts: list[Optional[dict]],
        block_timestamp: Optional[int] = None,
    ) -> list[TransactionRecord]:
        """Process transactions paired positionally with their receipts."""
        records = []
        for index, tx in enumerate(transactions):
            receipt = receipts[index] if index < len(receipts) else None
            if receipt is None:
                logger.debug("Transaction without receipt", tx_hash=tx.get("hash"))
            records.append(self.process(tx, receipt, block_timestamp))
        return records


def candidate_addresses(records: list[TransactionRecord]) -> list[str]:
    """Addresses worth checking for stablecoin detection: created contracts and call targets."""
    addresses = []
    for record in records:
        if record.contract_address:
            addresses.append(record.contract_address)
        if record.to_address:
            addresses.append(record.to_address)
    return addresses
