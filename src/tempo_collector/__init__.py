"""
Collector package for Tempo blocks, transactions and stablecoins.
"""

from .detector import StablecoinDetector
from .ingestion import (
    BlockIngestor,
    BlockNotFound,
    IngestionError,
    InvalidBlockIdentifier,
    TransactionNotFound,
)
from .models import (
    CleanupResult,
    IngestBlockResult,
    StablecoinBlockStats,
    StablecoinRecord,
    TransactionRecord,
    TransactionStatus,
)
from .processor import TransactionProcessor
from .retention import RetentionSweeper
from .rpc import RPCClient, RPCError
from .stats import StablecoinStatsAggregator

__all__ = [
    "BlockIngestor",
    "BlockNotFound",
    "CleanupResult",
    "IngestBlockResult",
    "IngestionError",
    "InvalidBlockIdentifier",
    "RPCClient",
    "RPCError",
    "RetentionSweeper",
    "StablecoinBlockStats",
    "StablecoinDetector",
    "StablecoinRecord",
    "StablecoinStatsAggregator",
    "TransactionNotFound",
    "TransactionProcessor",
    "TransactionRecord",
    "TransactionStatus",
]
