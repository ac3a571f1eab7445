"""
Transaction store: idempotent upsert-by-hash persistence of TransactionRecords.
"""

from typing import Optional

import structlog
from sqlalchemy import delete, func, or_, select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from ..models import TransactionRecord, TransactionStatus
from .database import dialect_insert
from .tables import TransactionModel, utcnow

logger = structlog.get_logger()

transactions_table = TransactionModel.__table__

# Columns overwritten when an already-stored hash is ingested again
_MUTABLE_COLUMNS = (
    "block_number",
    "block_hash",
    "transaction_index",
    "from",
    "to",
    "contract_address",
    "value",
    "input",
    "nonce",
    "gas",
    "gas_price",
    "gas_used",
    "status",
    "timestamp",
    "raw_transaction",
    "raw_receipt",
)


def record_to_row(record: TransactionRecord) -> dict:
    """Column values for a record. Big integers become decimal strings here and nowhere else."""
    return {
        "hash": record.hash,
        "block_number": record.block_number,
        "block_hash": record.block_hash,
        "transaction_index": record.transaction_index,
        "from": record.from_address,
        "to": record.to_address,
        "contract_address": record.contract_address,
        "value": str(record.value),
        "input": record.input,
        "nonce": record.nonce,
        "gas": record.gas,
        "gas_price": str(record.gas_price),
        "gas_used": record.gas_used,
        "status": record.status.value if record.status else None,
        "timestamp": record.timestamp,
        "raw_transaction": record.raw_transaction,
        "raw_receipt": record.raw_receipt,
    }


def model_to_record(model: TransactionModel) -> TransactionRecord:
    return TransactionRecord(
        hash=model.hash,
        block_number=model.block_number,
        block_hash=model.block_hash,
        transaction_index=model.transaction_index,
        from_address=model.from_address,
        to_address=model.to_address,
        contract_address=model.contract_address,
        value=int(model.value),
        input=model.input,
        nonce=model.nonce,
        gas=model.gas,
        gas_price=int(model.gas_price),
        gas_used=model.gas_used,
        status=TransactionStatus(model.status) if model.status else None,
        timestamp=model.timestamp,
        raw_transaction=model.raw_transaction,
        raw_receipt=model.raw_receipt,
    )


class TransactionStore:
    """
    Persists TransactionRecords keyed on their unique hash.

    Re-ingesting a hash overwrites the stored row, so repeated ingestion of
    the same block never creates duplicates.
    """

    def __init__(self, session_factory: async_sessionmaker[AsyncSession]):
        self.session_factory = session_factory

    async def _upsert(self, session: AsyncSession, record: TransactionRecord) -> None:
        now = utcnow()
        stmt = dialect_insert(session, transactions_table).values(
            **record_to_row(record), created_at=now, updated_at=now
        )
        stmt = stmt.on_conflict_do_update(
            index_elements=["hash"],
            set_={
                **{column: stmt.excluded[column] for column in _MUTABLE_COLUMNS},
                "updated_at": now,
            },
        )
        await session.execute(stmt)

    async def upsert_one(self, record: TransactionRecord) -> None:
        async with self.session_factory() as session:
            async with session.begin():
                await self._upsert(session, record)

    async def upsert_batch(self, records: list[TransactionRecord]) -> None:
        """
        Upsert every record in one database transaction.

        Either all records are applied or none are: any storage error rolls
        the whole batch back and propagates.
        """
        if not records:
            return

        async with self.session_factory() as session:
            async with session.begin():
                for record in records:
                    await self._upsert(session, record)

        logger.debug("Upserted transactions", count=len(records))

    async def get(self, tx_hash: str) -> Optional[TransactionRecord]:
        async with self.session_factory() as session:
            result = await session.execute(
                select(TransactionModel).where(TransactionModel.hash == tx_hash.lower())
            )
            model = result.scalar_one_or_none()
            return model_to_record(model) if model else None

    async def list_for_address(self, address: str, limit: int = 20) -> list[TransactionRecord]:
        """Most recent transactions sent from or to an address."""
        address = address.lower()
        async with self.session_factory() as session:
            result = await session.execute(
                select(TransactionModel)
                .where(
                    or_(
                        TransactionModel.from_address == address,
                        TransactionModel.to_address == address,
                    )
                )
                .order_by(TransactionModel.block_number.desc(), TransactionModel.transaction_index.desc())
                .limit(limit)
            )
            return [model_to_record(m) for m in result.scalars()]

    async def count(self) -> int:
        async with self.session_factory() as session:
            result = await session.execute(select(func.count()).select_from(TransactionModel))
            return result.scalar_one()

    async def delete_expired_batch(self, cutoff: int, batch_size: int) -> int:
        """Delete up to batch_size rows with a timestamp older than cutoff. Returns rows deleted."""
        expired_ids = (
            select(TransactionModel.id)
            .where(TransactionModel.timestamp.is_not(None))
            .where(TransactionModel.timestamp < cutoff)
            .limit(batch_size)
        )
        async with self.session_factory() as session:
            async with session.begin():
                result = await session.execute(
                    delete(TransactionModel)
                    .where(TransactionModel.id.in_(expired_ids))
                    .execution_options(synchronize_session=False)
                )
                return result.rowcount or 0
