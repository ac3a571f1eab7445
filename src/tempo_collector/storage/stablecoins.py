"""
Stablecoin store: first-seen records and cumulative counters per token address.
"""

from typing import Optional

import structlog
from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from ..models import StablecoinBlockStats, StablecoinRecord
from .database import dialect_insert
from .tables import StablecoinModel, utcnow

logger = structlog.get_logger()


def model_to_record(model: StablecoinModel) -> StablecoinRecord:
    return StablecoinRecord(
        address=model.address,
        first_seen_block=model.first_seen_block,
        first_seen_timestamp=model.first_seen_timestamp,
        transfer_count=model.transfer_count,
        transfer_volume=int(model.transfer_volume or "0"),
        fee_payment_count=model.fee_payment_count,
        fee_volume=int(model.fee_volume or "0"),
        last_activity_block=model.last_activity_block,
    )


class StablecoinStore:
    """
    Persists detected stablecoins.

    Invariants:
    - first_seen_block / first_seen_timestamp are written once, on insert
    - counters and volumes only ever grow
    """

    def __init__(self, session_factory: async_sessionmaker[AsyncSession]):
        self.session_factory = session_factory

    async def exists(self, address: str) -> bool:
        async with self.session_factory() as session:
            result = await session.execute(
                select(StablecoinModel.id).where(StablecoinModel.address == address.lower())
            )
            return result.first() is not None

    async def get(self, address: str) -> Optional[StablecoinRecord]:
        async with self.session_factory() as session:
            result = await session.execute(
                select(StablecoinModel).where(StablecoinModel.address == address.lower())
            )
            model = result.scalar_one_or_none()
            return model_to_record(model) if model else None

    async def list_addresses(self) -> set[str]:
        async with self.session_factory() as session:
            result = await session.execute(select(StablecoinModel.address))
            return {address.lower() for address in result.scalars()}

    async def list_all(self) -> list[StablecoinRecord]:
        async with self.session_factory() as session:
            result = await session.execute(
                select(StablecoinModel).order_by(StablecoinModel.first_seen_block)
            )
            return [model_to_record(m) for m in result.scalars()]

    async def insert_if_absent(
        self,
        address: str,
        first_seen_block: Optional[int],
        first_seen_timestamp: Optional[int],
    ) -> bool:
        """
        Insert a stablecoin unless the address is already stored.

        Returns True if this call created the row. A concurrent insert of the
        same address makes this a no-op returning False, never an error.
        """
        now = utcnow()
        async with self.session_factory() as session:
            async with session.begin():
                stmt = dialect_insert(session, StablecoinModel.__table__).values(
                    address=address.lower(),
                    first_seen_block=first_seen_block,
                    first_seen_timestamp=first_seen_timestamp,
                    transfer_count=0,
                    transfer_volume="0",
                    fee_payment_count=0,
                    fee_volume="0",
                    created_at=now,
                    updated_at=now,
                )
                stmt = stmt.on_conflict_do_nothing(index_elements=["address"])
                result = await session.execute(stmt)
                return (result.rowcount or 0) > 0

    async def apply_stats(self, stats: dict[str, StablecoinBlockStats], block_number: int) -> int:
        """
        Add one batch of per-stablecoin stats to the cumulative counters.

        All addresses are updated in a single transaction. Counts are
        incremented in SQL; volumes are decimal text, so each row is read
        under a row lock (FOR UPDATE, where the database supports it) and
        the new total is written back in the same transaction.

        Returns the number of stablecoin rows updated.
        """
        if not stats:
            return 0

        updated = 0
        async with self.session_factory() as session:
            async with session.begin():
                for address in sorted(stats):
                    stat = stats[address]
                    result = await session.execute(
                        select(StablecoinModel.transfer_volume, StablecoinModel.fee_volume)
                        .where(StablecoinModel.address == address)
                        .with_for_update()
                    )
                    row = result.first()
                    if row is None:
                        logger.warning("Stats for unknown stablecoin skipped", address=address)
                        continue

                    transfer_volume = int(row.transfer_volume or "0") + stat.transfer_volume
                    fee_volume = int(row.fee_volume or "0") + stat.fee_volume

                    await session.execute(
                        update(StablecoinModel)
                        .where(StablecoinModel.address == address)
                        .values(
                            transfer_count=StablecoinModel.transfer_count + stat.transfer_count,
                            transfer_volume=str(transfer_volume),
                            fee_payment_count=StablecoinModel.fee_payment_count + stat.fee_payment_count,
                            fee_volume=str(fee_volume),
                            last_activity_block=block_number,
                            updated_at=utcnow(),
                        )
                        .execution_options(synchronize_session=False)
                    )
                    updated += 1

        return updated
