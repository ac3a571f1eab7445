"""
Relational storage for transactions and stablecoins.
"""

from .database import create_engine, create_session_factory, init_db
from .stablecoins import StablecoinStore
from .tables import Base, StablecoinModel, TransactionModel
from .transactions import TransactionStore

__all__ = [
    "Base",
    "StablecoinModel",
    "StablecoinStore",
    "TransactionModel",
    "TransactionStore",
    "create_engine",
    "create_session_factory",
    "init_db",
]
