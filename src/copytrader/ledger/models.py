"""SQLAlchemy models for the trade ledger.

Prices are native units per whole token. USD prices are reference values
captured at trade time and may be missing.
"""

from datetime import datetime
from decimal import Decimal
from typing import Optional

from sqlalchemy import BigInteger, DateTime, Numeric, String, func
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column


class Base(DeclarativeBase):
    """Base class for all models."""

    pass


class BuyTransaction(Base):
    """Opened position."""

    __tablename__ = "buys"

    id: Mapped[int] = mapped_column(primary_key=True, autoincrement=True)
    chain: Mapped[str] = mapped_column(String(20), nullable=False)
    contract_address: Mapped[str] = mapped_column(String(42), unique=True, nullable=False, index=True)
    token_name: Mapped[str] = mapped_column(String(255), nullable=False)
    ticker: Mapped[str] = mapped_column(String(50), nullable=False)
    entry_price: Mapped[Decimal] = mapped_column(Numeric(36, 18), nullable=False)
    entry_price_usd: Mapped[Optional[Decimal]] = mapped_column(Numeric(36, 18), nullable=True)
    quantity: Mapped[Decimal] = mapped_column(Numeric(36, 18), nullable=False)
    time_of_entry: Mapped[int] = mapped_column(BigInteger, nullable=False)  # unix seconds
    tx_hash: Mapped[str] = mapped_column(String(66), unique=True, nullable=False, index=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now()
    )

    def __repr__(self) -> str:
        return f"<BuyTransaction {self.ticker} {self.contract_address} @ {self.entry_price}>"


class SellTransaction(Base):
    """Closed position."""

    __tablename__ = "sells"

    id: Mapped[int] = mapped_column(primary_key=True, autoincrement=True)
    chain: Mapped[str] = mapped_column(String(20), nullable=False)
    contract_address: Mapped[str] = mapped_column(String(42), unique=True, nullable=False, index=True)
    exit_price: Mapped[Decimal] = mapped_column(Numeric(36, 18), nullable=False)
    exit_price_usd: Mapped[Optional[Decimal]] = mapped_column(Numeric(36, 18), nullable=True)
    quantity: Mapped[Decimal] = mapped_column(Numeric(36, 18), nullable=False)
    time_of_exit: Mapped[int] = mapped_column(BigInteger, nullable=False)  # unix seconds
    tx_hash: Mapped[str] = mapped_column(String(66), unique=True, nullable=False, index=True)
    pnl: Mapped[Decimal] = mapped_column(Numeric(36, 18), nullable=False)  # native units
    pnl_usd: Mapped[Optional[Decimal]] = mapped_column(Numeric(36, 18), nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now()
    )

    def __repr__(self) -> str:
        return f"<SellTransaction {self.contract_address} @ {self.exit_price} pnl={self.pnl}>"
