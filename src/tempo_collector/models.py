"""
Core data structures passed between the collector stages.

Design principles:
- Integers stay arbitrary precision (Python int) until the storage boundary
- Raw chain data is parsed once, at the edge, into explicit optional fields
- Models are serializable to JSON for the CLI and for raw snapshots
"""

import re
from enum import Enum
from typing import Any, Optional

import orjson
from pydantic import BaseModel, Field


ZERO_ADDRESS = "0x0000000000000000000000000000000000000000"

_HEX_DIGITS = re.compile(r"[0-9a-fA-F]*")
_DECIMAL_DIGITS = re.compile(r"[0-9]+")


class TransactionStatus(str, Enum):
    SUCCESS = "success"
    FAILED = "failed"


def to_int(value: Any, default: Optional[int] = None) -> Optional[int]:
    """
    Convert a chain value to int without raising.

    Accepts non-negative ints, "0x" hex strings and plain decimal digit
    strings. Anything else (None, negatives, signs, underscores, other
    types) returns `default`.
    """
    if value is None or isinstance(value, bool):
        return default
    if isinstance(value, int):
        return value if value >= 0 else default
    if isinstance(value, str):
        if value[:2].lower() == "0x":
            digits = value[2:]
            if not _HEX_DIGITS.fullmatch(digits):
                return default
            return int(digits, 16) if digits else 0
        if _DECIMAL_DIGITS.fullmatch(value):
            return int(value)
    return default


def lower_or_none(value: Any) -> Optional[str]:
    if isinstance(value, str) and value:
        return value.lower()
    return None


def serialize_for_storage(obj: Any) -> Any:
    """Deep copy of a raw chain object with every int coerced to a decimal string."""
    if isinstance(obj, bool) or obj is None:
        return obj
    if isinstance(obj, int):
        return str(obj)
    if isinstance(obj, dict):
        return {str(k): serialize_for_storage(v) for k, v in obj.items()}
    if isinstance(obj, (list, tuple)):
        return [serialize_for_storage(v) for v in obj]
    return obj


class TransactionRecord(BaseModel):
    """
    Canonical transaction row.

    `to_address` is None for contract creations, in which case
    `contract_address` carries the created contract.
    """
    hash: str
    block_number: int = 0
    block_hash: Optional[str] = None
    transaction_index: Optional[int] = None
    from_address: str
    to_address: Optional[str] = Field(default=None, description="Recipient. None for contract creation")
    contract_address: Optional[str] = None
    value: int = 0
    input: str = "0x"
    nonce: int = 0
    gas: int = 0
    gas_price: int = 0
    gas_used: Optional[int] = None
    status: Optional[TransactionStatus] = Field(default=None, description="None when the receipt status is unknown")
    timestamp: Optional[int] = Field(default=None, description="Block timestamp, seconds since epoch")
    raw_transaction: Optional[dict] = None
    raw_receipt: Optional[dict] = None


class StablecoinRecord(BaseModel):
    address: str
    first_seen_block: Optional[int] = None
    first_seen_timestamp: Optional[int] = None
    transfer_count: int = 0
    transfer_volume: int = 0
    fee_payment_count: int = 0
    fee_volume: int = 0
    last_activity_block: Optional[int] = None


class StablecoinBlockStats(BaseModel):
    """Counters for one stablecoin over one batch of receipts."""
    address: str
    transfer_count: int = 0
    transfer_volume: int = 0
    fee_payment_count: int = 0
    fee_volume: int = 0

    @property
    def has_activity(self) -> bool:
        return self.transfer_count > 0 or self.fee_payment_count > 0


class ParsedLog(BaseModel):
    address: str = ""
    topics: list[str] = Field(default_factory=list)
    data: str = "0x"

    @classmethod
    def from_raw(cls, raw: Any) -> "ParsedLog":
        if not isinstance(raw, dict):
            return cls()
        topics = raw.get("topics")
        data = raw.get("data")
        return cls(
            address=lower_or_none(raw.get("address")) or "",
            topics=[str(t) for t in topics] if isinstance(topics, list) else [],
            data=data if isinstance(data, str) else "0x",
        )


class ParsedReceipt(BaseModel):
    """
    The subset of a receipt the stats aggregator reads.

    Receipts come from different endpoints and transaction types, so every
    field is optional and defaulted here rather than in the aggregation loop.
    """
    fee_token: Optional[str] = None
    gas_used: Optional[int] = None
    effective_gas_price: Optional[int] = None
    logs: list[ParsedLog] = Field(default_factory=list)

    @classmethod
    def from_raw(cls, raw: Any) -> "ParsedReceipt":
        if not isinstance(raw, dict):
            return cls()
        logs = raw.get("logs")
        return cls(
            fee_token=lower_or_none(raw.get("feeToken")),
            gas_used=to_int(raw.get("gasUsed")),
            effective_gas_price=to_int(raw.get("effectiveGasPrice")),
            logs=[ParsedLog.from_raw(log) for log in logs] if isinstance(logs, list) else [],
        )


class IngestBlockResult(BaseModel):
    block_number: int
    block_hash: str
    transactions_ingested: int
    timestamp: int

    def to_json(self) -> bytes:
        return orjson.dumps(self.model_dump())


class CleanupResult(BaseModel):
    deleted_count: int = 0
    enabled: bool = Field(default=True, description="False when the sweep was disabled by a non-positive TTL")


def has_meaningful_bytecode(code: Optional[str], min_bytes: int = 3) -> bool:
    """
    Check if account code looks like a deployed contract.

    - None, "" or "0x" = no code (EOA or empty account)
    - fewer than `min_bytes` bytes = precompile-like stub
    """
    if not code or code == "0x":
        return False
    hex_body = code[2:] if code[:2].lower() == "0x" else code
    return len(hex_body) // 2 >= min_bytes
