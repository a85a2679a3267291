"""Ledger module for copy-trade positions."""

from copytrader.ledger.database import close_db, get_engine, get_session_factory, init_db
from copytrader.ledger.models import Base, BuyTransaction, SellTransaction
from copytrader.ledger.repository import LedgerRepository, TradeLedger

__all__ = [
    # Models
    "Base",
    "BuyTransaction",
    "SellTransaction",
    # Database
    "get_engine",
    "get_session_factory",
    "init_db",
    "close_db",
    "LedgerRepository",
    "TradeLedger",
]
