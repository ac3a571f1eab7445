"""
Retention sweeper: deletes transactions older than the configured TTL.
"""

import time
from typing import Optional

import structlog

from .models import CleanupResult
from .storage import TransactionStore

logger = structlog.get_logger()

SECONDS_PER_DAY = 86400


class RetentionSweeper:
    """
    Deletes expired transaction rows in bounded batches.

    Each batch is its own database transaction, so an interrupted sweep
    simply resumes on the next run. Rows without a timestamp are never
    deleted.
    """

    def __init__(self, transactions: TransactionStore, batch_size: int = 1000):
        self.transactions = transactions
        self.batch_size = batch_size

    async def cleanup_expired(self, ttl_days: float, now: Optional[float] = None) -> CleanupResult:
        if ttl_days <= 0:
            logger.info("Retention sweep disabled", ttl_days=ttl_days)
            return CleanupResult(deleted_count=0, enabled=False)

        now = time.time() if now is None else now
        cutoff = int(now - ttl_days * SECONDS_PER_DAY)

        deleted_total = 0
        while True:
            deleted = await self.transactions.delete_expired_batch(cutoff, self.batch_size)
            deleted_total += deleted
            if deleted < self.batch_size:
                break

        logger.info("Retention sweep complete", ttl_days=ttl_days, cutoff=cutoff, deleted=deleted_total)
        return CleanupResult(deleted_count=deleted_total, enabled=True)
