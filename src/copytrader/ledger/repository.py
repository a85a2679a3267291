"""Repository for trade ledger operations.

``LedgerRepository`` holds the queries against one session.
``TradeLedger`` owns the sessions and enforces the ledger rules: one buy
and at most one sell per contract, unique transaction hashes, no sell
without an open buy. Writes for one contract are serialized; reads are not.
"""

import logging
import time
from decimal import Decimal
from typing import Optional, Union

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from copytrader.abi import checksum
from copytrader.errors import DuplicateContract, DuplicateHash, NoOpenPosition, RecordNotFound
from copytrader.ledger.models import BuyTransaction, SellTransaction
from copytrader.utils.locks import KeyedLock

logger = logging.getLogger(__name__)


def normalize_hash(tx_hash: str) -> str:
    tx_hash = tx_hash.lower()
    return tx_hash if tx_hash.startswith("0x") else "0x" + tx_hash


class LedgerRepository:
    """Queries for buy and sell rows."""

    def __init__(self, session: AsyncSession):
        self.session = session

    # Buy operations
    async def get_buy_by_contract(self, contract_address: str) -> Optional[BuyTransaction]:
        stmt = select(BuyTransaction).where(BuyTransaction.contract_address == contract_address)
        result = await self.session.execute(stmt)
        return result.scalar_one_or_none()

    async def get_buy_by_hash(self, tx_hash: str) -> Optional[BuyTransaction]:
        stmt = select(BuyTransaction).where(BuyTransaction.tx_hash == tx_hash)
        result = await self.session.execute(stmt)
        return result.scalar_one_or_none()

    async def add_buy(self, buy: BuyTransaction) -> BuyTransaction:
        self.session.add(buy)
        await self.session.flush()
        return buy

    # Sell operations
    async def get_sell_by_contract(self, contract_address: str) -> Optional[SellTransaction]:
        stmt = select(SellTransaction).where(SellTransaction.contract_address == contract_address)
        result = await self.session.execute(stmt)
        return result.scalar_one_or_none()

    async def get_sell_by_hash(self, tx_hash: str) -> Optional[SellTransaction]:
        stmt = select(SellTransaction).where(SellTransaction.tx_hash == tx_hash)
        result = await self.session.execute(stmt)
        return result.scalar_one_or_none()

    async def add_sell(self, sell: SellTransaction) -> SellTransaction:
        self.session.add(sell)
        await self.session.flush()
        return sell

    # Positions
    async def hash_exists(self, tx_hash: str) -> bool:
        return (await self.get_buy_by_hash(tx_hash)) is not None or (
            await self.get_sell_by_hash(tx_hash)
        ) is not None

    async def get_open_positions(self) -> list[BuyTransaction]:
        """Buys without a matching sell, oldest first."""
        closed = select(SellTransaction.contract_address)
        stmt = (
            select(BuyTransaction)
            .where(BuyTransaction.contract_address.not_in(closed))
            .order_by(BuyTransaction.time_of_entry, BuyTransaction.id)
        )
        result = await self.session.execute(stmt)
        return list(result.scalars().all())


class TradeLedger:
    """Append-only record of copy-trade positions."""

    def __init__(self, session_factory: async_sessionmaker[AsyncSession], lock_timeout: float = 30.0):
        self.session_factory = session_factory
        self._locks = KeyedLock(name="ledger", timeout=lock_timeout)

    async def record_buy(
        self,
        *,
        chain: str,
        contract_address: str,
        token_name: str,
        ticker: str,
        entry_price: Decimal,
        quantity: Decimal,
        tx_hash: str,
        entry_price_usd: Optional[Decimal] = None,
        time_of_entry: Optional[int] = None,
    ) -> BuyTransaction:
        """Record an opened position.

        Raises:
            DuplicateContract: If the contract already has a buy
            DuplicateHash: If the hash is already recorded
        """
        contract = checksum(contract_address)
        tx_hash = normalize_hash(tx_hash)

        async with self._locks.hold(contract, operation="record_buy"):
            async with self.session_factory() as session:
                repo = LedgerRepository(session)
                if await repo.get_buy_by_contract(contract) is not None:
                    raise DuplicateContract(
                        "Contract already has a buy on record", contract=contract, tx_hash=tx_hash
                    )
                if await repo.hash_exists(tx_hash):
                    raise DuplicateHash("Transaction hash already recorded", tx_hash=tx_hash)

                buy = BuyTransaction(
                    chain=chain,
                    contract_address=contract,
                    token_name=token_name,
                    ticker=ticker,
                    entry_price=Decimal(entry_price),
                    entry_price_usd=entry_price_usd,
                    quantity=Decimal(quantity),
                    time_of_entry=time_of_entry if time_of_entry is not None else int(time.time()),
                    tx_hash=tx_hash,
                )
                try:
                    await repo.add_buy(buy)
                    await session.commit()
                except IntegrityError as e:
                    await session.rollback()
                    raise DuplicateHash("Buy violates a unique constraint", tx_hash=tx_hash) from e

        logger.info(f"Recorded buy {ticker} {contract} qty={quantity} @ {entry_price} ({tx_hash})")
        return buy

    async def record_sell(
        self,
        *,
        chain: str,
        contract_address: str,
        exit_price: Decimal,
        quantity: Decimal,
        tx_hash: str,
        exit_price_usd: Optional[Decimal] = None,
        time_of_exit: Optional[int] = None,
    ) -> SellTransaction:
        """Record a closed position with its profit and loss.

        Raises:
            NoOpenPosition: If there is no buy, or the position is already closed
            DuplicateHash: If the hash is already recorded
        """
        contract = checksum(contract_address)
        tx_hash = normalize_hash(tx_hash)

        async with self._locks.hold(contract, operation="record_sell"):
            async with self.session_factory() as session:
                repo = LedgerRepository(session)
                buy = await repo.get_buy_by_contract(contract)
                if buy is None:
                    raise NoOpenPosition("No buy on record for contract", contract=contract)
                if await repo.get_sell_by_contract(contract) is not None:
                    raise NoOpenPosition("Position already closed", contract=contract)
                if await repo.hash_exists(tx_hash):
                    raise DuplicateHash("Transaction hash already recorded", tx_hash=tx_hash)

                exit_price = Decimal(exit_price)
                quantity = Decimal(quantity)
                pnl = (exit_price - buy.entry_price) * quantity
                pnl_usd = None
                if exit_price_usd is not None and buy.entry_price_usd is not None:
                    pnl_usd = (Decimal(exit_price_usd) - buy.entry_price_usd) * quantity

                sell = SellTransaction(
                    chain=chain,
                    contract_address=contract,
                    exit_price=exit_price,
                    exit_price_usd=exit_price_usd,
                    quantity=quantity,
                    time_of_exit=time_of_exit if time_of_exit is not None else int(time.time()),
                    tx_hash=tx_hash,
                    pnl=pnl,
                    pnl_usd=pnl_usd,
                )
                try:
                    await repo.add_sell(sell)
                    await session.commit()
                except IntegrityError as e:
                    await session.rollback()
                    raise DuplicateHash("Sell violates a unique constraint", tx_hash=tx_hash) from e

        logger.info(f"Recorded sell {contract} qty={quantity} @ {exit_price} pnl={pnl} ({tx_hash})")
        return sell

    async def find_by_contract(self, contract_address: str) -> BuyTransaction:
        """Get the buy for a contract.

        Raises:
            RecordNotFound: If no buy exists
        """
        contract = checksum(contract_address)
        async with self.session_factory() as session:
            buy = await LedgerRepository(session).get_buy_by_contract(contract)
        if buy is None:
            raise RecordNotFound("No buy for contract", contract=contract)
        return buy

    async def find_sell_by_contract(self, contract_address: str) -> SellTransaction:
        """Get the sell for a contract.

        Raises:
            RecordNotFound: If no sell exists
        """
        contract = checksum(contract_address)
        async with self.session_factory() as session:
            sell = await LedgerRepository(session).get_sell_by_contract(contract)
        if sell is None:
            raise RecordNotFound("No sell for contract", contract=contract)
        return sell

    async def find_by_hash(self, tx_hash: str) -> Union[BuyTransaction, SellTransaction]:
        """Get the buy or sell recorded under a transaction hash.

        Raises:
            RecordNotFound: If neither table has the hash
        """
        tx_hash = normalize_hash(tx_hash)
        async with self.session_factory() as session:
            repo = LedgerRepository(session)
            record = await repo.get_buy_by_hash(tx_hash) or await repo.get_sell_by_hash(tx_hash)
        if record is None:
            raise RecordNotFound("No record for transaction hash", tx_hash=tx_hash)
        return record

    async def has_open_position(self, contract_address: str) -> bool:
        contract = checksum(contract_address)
        async with self.session_factory() as session:
            repo = LedgerRepository(session)
            return (await repo.get_buy_by_contract(contract)) is not None and (
                await repo.get_sell_by_contract(contract)
            ) is None

    async def open_positions(self) -> list[BuyTransaction]:
        """Buys without a matching sell."""
        async with self.session_factory() as session:
            return await LedgerRepository(session).get_open_positions()
