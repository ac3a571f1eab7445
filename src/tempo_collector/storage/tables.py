"""
SQLAlchemy tables for collected transactions and detected stablecoins.

Integers that can exceed 64 bits (value, gas price, volumes) are stored as
decimal text. Everything else uses BIGINT.
"""

from datetime import datetime, timezone
from typing import Optional

from sqlalchemy import JSON, BigInteger, DateTime, Index, Integer, String, Text
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class Base(DeclarativeBase):
    pass


class TransactionModel(Base):
    __tablename__ = "transactions"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    hash: Mapped[str] = mapped_column(String(66), nullable=False, unique=True)
    block_number: Mapped[int] = mapped_column(BigInteger, nullable=False)
    block_hash: Mapped[Optional[str]] = mapped_column(String(66), nullable=True)
    transaction_index: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    from_address: Mapped[str] = mapped_column("from", String(42), nullable=False)
    to_address: Mapped[Optional[str]] = mapped_column("to", String(42), nullable=True)
    contract_address: Mapped[Optional[str]] = mapped_column(String(42), nullable=True)
    value: Mapped[str] = mapped_column(Text, nullable=False)
    input: Mapped[str] = mapped_column(Text, nullable=False, default="0x")
    nonce: Mapped[int] = mapped_column(BigInteger, nullable=False)
    gas: Mapped[int] = mapped_column(BigInteger, nullable=False)
    gas_price: Mapped[str] = mapped_column(Text, nullable=False)
    gas_used: Mapped[Optional[int]] = mapped_column(BigInteger, nullable=True)
    status: Mapped[Optional[str]] = mapped_column(String(16), nullable=True)
    timestamp: Mapped[Optional[int]] = mapped_column(BigInteger, nullable=True)
    raw_transaction: Mapped[Optional[dict]] = mapped_column(JSON, nullable=True)
    raw_receipt: Mapped[Optional[dict]] = mapped_column(JSON, nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, default=utcnow)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=utcnow, onupdate=utcnow
    )

    __table_args__ = (
        Index("transactions_block_number_idx", "block_number"),
        Index("transactions_from_idx", "from"),
        Index("transactions_to_idx", "to"),
        Index("transactions_block_hash_idx", "block_hash"),
        Index("transactions_timestamp_idx", "timestamp"),
    )


class StablecoinModel(Base):
    __tablename__ = "stablecoins"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    address: Mapped[str] = mapped_column(String(42), nullable=False, unique=True)
    first_seen_block: Mapped[Optional[int]] = mapped_column(BigInteger, nullable=True)
    first_seen_timestamp: Mapped[Optional[int]] = mapped_column(BigInteger, nullable=True)
    transfer_count: Mapped[int] = mapped_column(BigInteger, nullable=False, default=0)
    transfer_volume: Mapped[str] = mapped_column(Text, nullable=False, default="0")
    fee_payment_count: Mapped[int] = mapped_column(BigInteger, nullable=False, default=0)
    fee_volume: Mapped[str] = mapped_column(Text, nullable=False, default="0")
    last_activity_block: Mapped[Optional[int]] = mapped_column(BigInteger, nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, default=utcnow)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=utcnow, onupdate=utcnow
    )

    __table_args__ = (
        Index("stablecoins_first_seen_block_idx", "first_seen_block"),
        Index("stablecoins_last_activity_block_idx", "last_activity_block"),
    )
