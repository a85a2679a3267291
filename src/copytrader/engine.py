"""Trade engine: turns copy-trade signals into on-chain swaps.

BUY:  quote [wrapper, token] -> swapExactETHForTokens -> record buy
SELL: open position check -> balance check -> allowance -> quote
      [token, wrapper] -> swapExactTokensForETH -> record sell

Under the ``wait`` confirmation policy the ledger row is written once the
receipt is in. Under ``submit`` the outcome is returned as soon as the
node accepts the transaction and ``settle`` records it later.
"""

import asyncio
import logging
from dataclasses import dataclass, replace
from decimal import Decimal
from enum import Enum
from typing import Optional, Sequence, Union
from uuid import uuid4

from pydantic import BaseModel, ConfigDict, Field, field_validator

from copytrader import abi
from copytrader.chains import ChainConfig, ChainRegistry
from copytrader.errors import (
    ConfirmationTimeout,
    CopyTradeError,
    InsufficientBalance,
    InvalidAmount,
    NoOpenPosition,
    SwapReverted,
)
from copytrader.ledger import BuyTransaction, SellTransaction, TradeLedger
from copytrader.routing import Quote, QuoteEstimator
from copytrader.signing import DEFAULT_ACCOUNT
from copytrader.swap import ConfirmationStatus, SubmittedTransaction, SwapExecutor
from copytrader.tokens import TokenInfo, TokenReader

logger = logging.getLogger(__name__)


class Direction(str, Enum):
    """Side of the copied trade."""

    BUY = "buy"
    SELL = "sell"


class TradeSignal(BaseModel):
    """
    Immutable trade signal from a tracked wallet.

    Represents an action to copy: "wallet X bought token T on chain C".
    ``amount`` is in whole native units for a BUY and whole token units for
    a SELL.
    """

    model_config = ConfigDict(frozen=True)

    chain: str = Field(..., description="Registered chain name")
    direction: Direction = Field(..., description="BUY or SELL")
    token_address: str = Field(..., description="Token contract address")
    amount: Decimal = Field(..., description="Amount to spend (BUY) or sell (SELL)", gt=0)
    slippage: Decimal = Field(default=Decimal("1.0"), description="Tolerance in percent", ge=0, lt=100)
    account: str = Field(default=DEFAULT_ACCOUNT, description="Signing account reference")
    signal_id: str = Field(default_factory=lambda: uuid4().hex, description="Correlation id")

    @field_validator("chain")
    @classmethod
    def normalize_chain(cls, v: str) -> str:
        return v.strip().lower()


class OutcomeStatus(str, Enum):
    """How far a signal got."""

    SUBMITTED = "submitted"  # accepted by the node, not yet recorded
    CONFIRMED = "confirmed"  # mined successfully and recorded


@dataclass
class TradeOutcome:
    """Result of executing one signal."""

    signal: TradeSignal
    status: OutcomeStatus
    token: TokenInfo
    quote: Quote
    transaction: SubmittedTransaction
    approval: Optional[SubmittedTransaction] = None
    record: Optional[Union[BuyTransaction, SellTransaction]] = None

    @property
    def tx_hash(self) -> str:
        return self.transaction.tx_hash


class TradeEngine:
    """Executes copy-trade signals end to end."""

    def __init__(
        self,
        registry: ChainRegistry,
        tokens: TokenReader,
        estimator: QuoteEstimator,
        executor: SwapExecutor,
        ledger: TradeLedger,
        confirmation_policy: str = "wait",
    ):
        if confirmation_policy not in ("wait", "submit"):
            raise ValueError(f"Unknown confirmation policy: {confirmation_policy}")
        self.registry = registry
        self.tokens = tokens
        self.estimator = estimator
        self.executor = executor
        self.ledger = ledger
        self.confirmation_policy = confirmation_policy

    @property
    def waits_for_receipt(self) -> bool:
        return self.confirmation_policy == "wait"

    async def execute(self, signal: TradeSignal) -> TradeOutcome:
        """Execute one signal.

        Raises:
            CopyTradeError: With ``stage`` naming the failed step
        """
        config = self.registry.resolve(signal.chain)
        token = abi.checksum(signal.token_address)
        logger.info(
            f"Signal {signal.signal_id}: {signal.direction.value} {signal.amount} "
            f"{token} on {config.name} (slippage {signal.slippage}%)"
        )

        if signal.direction == Direction.BUY:
            outcome = await self._buy(config, token, signal)
        else:
            outcome = await self._sell(config, token, signal)

        if self.waits_for_receipt:
            outcome.record = await self._record(outcome)
            outcome.status = OutcomeStatus.CONFIRMED
        logger.info(f"Signal {signal.signal_id} {outcome.status.value}: {outcome.tx_hash}")
        return outcome

    async def execute_many(
        self, signals: Sequence[TradeSignal]
    ) -> list[Union[TradeOutcome, CopyTradeError]]:
        """Execute signals concurrently, one worker each.

        Engine errors are returned in place of the outcome. Any other
        exception is raised once every worker has finished.
        """
        results = await asyncio.gather(
            *(self.execute(signal) for signal in signals), return_exceptions=True
        )
        for signal, result in zip(signals, results):
            if isinstance(result, CopyTradeError):
                logger.error(f"Signal {signal.signal_id} failed: {result}")
            elif isinstance(result, BaseException):
                raise result
        return list(results)

    async def settle(self, outcome: TradeOutcome) -> TradeOutcome:
        """Confirm a submitted outcome and record it.

        Raises:
            ConfirmationTimeout: If the transaction is still pending
            SwapReverted: If the transaction failed on-chain
        """
        if outcome.status == OutcomeStatus.CONFIRMED:
            return outcome

        status = await self.executor.confirm(outcome.transaction.chain, outcome.tx_hash)
        if status == ConfirmationStatus.PENDING:
            raise ConfirmationTimeout(
                "Transaction still pending", chain=outcome.transaction.chain, tx_hash=outcome.tx_hash
            )
        if status == ConfirmationStatus.REVERTED:
            raise SwapReverted(
                f"{outcome.transaction.function} reverted on-chain",
                chain=outcome.transaction.chain,
                tx_hash=outcome.tx_hash,
            )

        record = await self._record(outcome)
        return replace(outcome, status=OutcomeStatus.CONFIRMED, record=record)

    async def _buy(self, config: ChainConfig, token: str, signal: TradeSignal) -> TradeOutcome:
        info = await self.tokens.get_info(config.name, token)
        amount_in = int(signal.amount.scaleb(config.native_decimals))
        if amount_in <= 0:
            raise InvalidAmount(f"Amount {signal.amount} rounds to zero wei", chain=config.name)

        quote = await self.estimator.estimate(
            config.name, [config.wrapped_native_address, token], amount_in, signal.slippage
        )
        transaction = await self.executor.swap_native_for_token(
            config.name,
            signal.account,
            token,
            amount_in,
            quote.minimum_out,
            wait=self.waits_for_receipt,
        )
        return TradeOutcome(
            signal=signal,
            status=OutcomeStatus.SUBMITTED,
            token=info,
            quote=quote,
            transaction=transaction,
        )

    async def _sell(self, config: ChainConfig, token: str, signal: TradeSignal) -> TradeOutcome:
        if not await self.ledger.has_open_position(token):
            raise NoOpenPosition("No open position to sell", chain=config.name, contract=token)

        info = await self.tokens.get_info(config.name, token)
        amount_in = info.to_units(signal.amount)
        if amount_in <= 0:
            raise InvalidAmount(f"Amount {signal.amount} rounds to zero units", chain=config.name)

        owner = self.executor.address_of(signal.account)
        balance = await self.tokens.balance_of(config.name, token, owner)
        if balance < amount_in:
            raise InsufficientBalance(
                f"Balance {info.from_units(balance)} {info.symbol} below {signal.amount}",
                chain=config.name,
                token=token,
                account=owner,
            )

        approval = await self.executor.ensure_allowance(
            config.name, signal.account, token, config.router_address, amount_in
        )
        quote = await self.estimator.estimate(
            config.name, [token, config.wrapped_native_address], amount_in, signal.slippage
        )
        transaction = await self.executor.swap_token_for_native(
            config.name,
            signal.account,
            token,
            amount_in,
            minimum_out=quote.minimum_out,
            wait=self.waits_for_receipt,
        )
        return TradeOutcome(
            signal=signal,
            status=OutcomeStatus.SUBMITTED,
            token=info,
            quote=quote,
            transaction=transaction,
            approval=approval,
        )

    async def _record(self, outcome: TradeOutcome) -> Union[BuyTransaction, SellTransaction]:
        info, quote = outcome.token, outcome.quote
        if outcome.signal.direction == Direction.BUY:
            return await self.ledger.record_buy(
                chain=info.chain,
                contract_address=info.address,
                token_name=info.name,
                ticker=info.symbol,
                entry_price=quote.native_price,
                entry_price_usd=quote.reference_usd_price,
                quantity=info.from_units(quote.expected_out),
                tx_hash=outcome.tx_hash,
            )
        return await self.ledger.record_sell(
            chain=info.chain,
            contract_address=info.address,
            exit_price=quote.native_price,
            exit_price_usd=quote.reference_usd_price,
            quantity=info.from_units(quote.amount_in),
            tx_hash=outcome.tx_hash,
        )
