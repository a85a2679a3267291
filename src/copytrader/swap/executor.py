"""Swap execution against a Uniswap-V2-style router.

Every transaction follows the same protocol:

1. Encode call data
2. Simulate with ``eth_estimateGas`` (a revert stops here, no nonce used)
3. Read the gas price fresh
4. Reserve a nonce
5. Sign with EIP-155 replay protection
6. Broadcast with a bounded timeout
7. Commit, release or burn the nonce depending on the broadcast outcome

Only read-only calls are retried. A broadcast is never repeated with a new
nonce; an outcome-unknown broadcast can be resent as the identical signed
payload through ``rebroadcast``.
"""

import asyncio
import logging
import time
from dataclasses import dataclass, field
from decimal import Decimal
from enum import Enum
from typing import Callable, Optional

from copytrader import abi
from copytrader.chains import ChainConfig, ChainRegistry
from copytrader.errors import (
    ApprovalFailed,
    BroadcastFailure,
    ConfirmationTimeout,
    InvalidAmount,
    NonceConflict,
    SimulationReverted,
    SimulationUnavailable,
    SwapReverted,
    UnboundedSlippage,
)
from copytrader.rpc import ChainClient, Receipt, RPCError, RPCUnavailable
from copytrader.signing import Keyring
from copytrader.swap.nonce import NonceSequencer
from copytrader.tokens import TokenReader
from copytrader.utils.retry import retry_read

logger = logging.getLogger(__name__)

# Node answers meaning the nonce is already taken on-chain or in the mempool
NONCE_ERRORS = ("nonce too low", "replacement transaction underpriced", "already been used")
ALREADY_KNOWN = ("already known", "known transaction", "already imported")


class ConfirmationStatus(str, Enum):
    """On-chain state of a submitted transaction."""

    SUCCESS = "success"
    REVERTED = "reverted"
    PENDING = "pending"


@dataclass
class PendingTransaction:
    """Signed transaction awaiting a broadcast outcome."""

    chain: str
    account: str
    nonce: int
    raw_transaction: bytes
    tx_hash: str
    function: str
    submitted_at: float = field(default_factory=time.time)


@dataclass
class SubmittedTransaction:
    """Transaction accepted by the node."""

    chain: str
    account: str
    nonce: int
    tx_hash: str
    function: str
    submitted_at: float = field(default_factory=time.time)
    receipt: Optional[Receipt] = None

    @property
    def confirmed(self) -> bool:
        return self.receipt is not None

    @property
    def succeeded(self) -> bool:
        return self.receipt is not None and self.receipt.succeeded


def _matches(error: RPCError, needles: tuple[str, ...]) -> bool:
    message = (error.message or "").lower()
    return any(needle in message for needle in needles)


def _validate_units(name: str, value, allow_zero: bool = False) -> int:
    if not isinstance(value, int) or isinstance(value, bool):
        raise InvalidAmount(f"{name} must be an integer amount of smallest units, got {value!r}")
    if value < 0 or (value == 0 and not allow_zero):
        raise InvalidAmount(f"{name} must be positive, got {value}")
    return value


class SwapExecutor:
    """Signs, simulates and broadcasts approvals and swaps."""

    def __init__(
        self,
        registry: ChainRegistry,
        nonces: NonceSequencer,
        keyring: Keyring,
        tokens: TokenReader,
        deadline_seconds: int = 600,
        gas_limit_multiplier: float = 1.2,
        broadcast_timeout: float = 15.0,
        confirmation_timeout: float = 120.0,
        poll_interval: float = 2.0,
        read_retries: int = 3,
        retry_backoff: float = 1.0,
        clock: Callable[[], float] = time.time,
    ):
        self.registry = registry
        self.nonces = nonces
        self.keyring = keyring
        self.tokens = tokens
        self.deadline_seconds = deadline_seconds
        self.gas_limit_multiplier = gas_limit_multiplier
        self.broadcast_timeout = broadcast_timeout
        self.confirmation_timeout = confirmation_timeout
        self.poll_interval = poll_interval
        self.read_retries = read_retries
        self.retry_backoff = retry_backoff
        self.clock = clock

    def address_of(self, account: str) -> str:
        """Address of the signing account behind an account reference."""
        return self.keyring.get(account).address

    # ======================
    # Operations
    # ======================

    async def approve(
        self, chain: str, account: str, token: str, spender: str, amount: int
    ) -> SubmittedTransaction:
        """Approve ``spender`` for ``amount`` of ``token`` and wait until mined.

        Raises:
            ApprovalFailed: If the approval receipt reports failure
        """
        _validate_units("Approval amount", amount, allow_zero=True)
        token_address = abi.checksum(token)
        data = abi.encode_call(abi.APPROVE, abi.checksum(spender), amount)

        submitted = await self._submit(chain, account, token_address, data, 0, "approve")
        submitted.receipt = await self.wait_for_confirmation(chain, submitted.tx_hash)
        if not submitted.receipt.succeeded:
            raise ApprovalFailed(
                "Approval transaction failed",
                chain=submitted.chain,
                account=submitted.account,
                token=token_address,
                tx_hash=submitted.tx_hash,
            )
        logger.info(f"Token approval confirmed: {submitted.tx_hash}")
        return submitted

    async def ensure_allowance(
        self, chain: str, account: str, token: str, spender: str, amount: int
    ) -> Optional[SubmittedTransaction]:
        """Approve ``spender`` only if its allowance is below ``amount``."""
        owner = self.address_of(account)
        current = await self.tokens.allowance(chain, token, owner, spender)
        if current >= amount:
            logger.debug(f"Allowance {current} for {spender} covers {amount}, no approval needed")
            return None
        logger.info(f"Allowance {current} for {spender} below {amount}, approving")
        return await self.approve(chain, account, token, spender, amount)

    async def swap_native_for_token(
        self,
        chain: str,
        account: str,
        token: str,
        amount_in: int,
        minimum_out: int,
        wait: bool = False,
    ) -> SubmittedTransaction:
        """Swap exactly ``amount_in`` wei of the native asset for ``token``.

        Args:
            chain: Registered chain name
            account: Signing account reference
            token: Token to buy
            amount_in: Native amount in wei, sent as the transaction value
            minimum_out: Minimum token output in smallest units
            wait: Block until the receipt is available

        Raises:
            SwapReverted: If waiting and the swap failed on-chain
        """
        config = self.registry.resolve(chain)
        _validate_units("Amount in", amount_in)
        _validate_units("Minimum out", minimum_out, allow_zero=True)
        recipient = self.address_of(account)

        path = [config.wrapped_native_address, abi.checksum(token)]
        data = abi.encode_call(
            abi.SWAP_EXACT_ETH_FOR_TOKENS, minimum_out, path, recipient, self._deadline()
        )
        submitted = await self._submit(
            config.name, account, config.router_address, data, amount_in, "swapExactETHForTokens"
        )
        if wait:
            await self._confirm_swap(submitted)
        return submitted

    async def swap_token_for_native(
        self,
        chain: str,
        account: str,
        token: str,
        amount_in: int,
        minimum_out: Optional[int] = None,
        allow_unbounded_slippage: bool = False,
        wait: bool = False,
    ) -> SubmittedTransaction:
        """Swap exactly ``amount_in`` units of ``token`` for the native asset.

        The router must already be approved for ``amount_in``.

        Raises:
            UnboundedSlippage: If no minimum is given without explicit opt-in
            SwapReverted: If waiting and the swap failed on-chain
        """
        config = self.registry.resolve(chain)
        _validate_units("Amount in", amount_in)
        if minimum_out is None:
            if not allow_unbounded_slippage:
                raise UnboundedSlippage(
                    "Refusing to sell without a minimum output",
                    chain=config.name,
                    token=token,
                )
            logger.warning(f"Selling {token} on {config.name} with no minimum output")
            minimum_out = 0
        _validate_units("Minimum out", minimum_out, allow_zero=True)
        recipient = self.address_of(account)

        path = [abi.checksum(token), config.wrapped_native_address]
        data = abi.encode_call(
            abi.SWAP_EXACT_TOKENS_FOR_ETH, amount_in, minimum_out, path, recipient, self._deadline()
        )
        submitted = await self._submit(
            config.name, account, config.router_address, data, 0, "swapExactTokensForETH"
        )
        if wait:
            await self._confirm_swap(submitted)
        return submitted

    async def confirm(self, chain: str, tx_hash: str) -> ConfirmationStatus:
        """Query the current status of a transaction.

        Raises:
            ConfirmationTimeout: If the receipt cannot be read
        """
        receipt = await self._get_receipt(chain, tx_hash)
        if receipt is None:
            return ConfirmationStatus.PENDING
        return ConfirmationStatus.SUCCESS if receipt.succeeded else ConfirmationStatus.REVERTED

    async def wait_for_confirmation(
        self, chain: str, tx_hash: str, timeout: Optional[float] = None
    ) -> Receipt:
        """Poll until a receipt exists.

        Returns:
            The receipt, successful or not

        Raises:
            ConfirmationTimeout: If no receipt appears within the timeout
        """
        timeout = self.confirmation_timeout if timeout is None else timeout
        loop = asyncio.get_running_loop()
        start_time = loop.time()

        while True:
            try:
                receipt = await self._get_receipt(chain, tx_hash)
            except ConfirmationTimeout as e:
                logger.warning(f"Receipt read failed for {tx_hash}, retrying: {e}")
                receipt = None
            if receipt is not None:
                return receipt

            if loop.time() - start_time >= timeout:
                raise ConfirmationTimeout(
                    f"Transaction not confirmed after {timeout}s", chain=chain, tx_hash=tx_hash
                )
            await asyncio.sleep(self.poll_interval)

    async def rebroadcast(self, pending: PendingTransaction) -> SubmittedTransaction:
        """Resend the identical signed payload of an outcome-unknown broadcast.

        The nonce was burned when the outcome became unknown, so nothing is
        reserved or released here.

        Raises:
            BroadcastFailure: If the node rejects or cannot be reached
        """
        client = self.registry.client(pending.chain)
        try:
            tx_hash = await asyncio.wait_for(
                client.send_raw_transaction(pending.raw_transaction), timeout=self.broadcast_timeout
            )
        except RPCError as e:
            if _matches(e, ALREADY_KNOWN + NONCE_ERRORS):
                logger.info(f"Rebroadcast of {pending.tx_hash}: node reports it landed ({e.message})")
                return self._submitted(pending, pending.tx_hash)
            raise BroadcastFailure(
                f"Rebroadcast rejected: {e.message}",
                pending=pending,
                chain=pending.chain,
                nonce=pending.nonce,
                tx_hash=pending.tx_hash,
            ) from e
        except Exception as e:
            raise BroadcastFailure(
                f"Rebroadcast outcome unknown: {e!r}",
                outcome_unknown=True,
                pending=pending,
                chain=pending.chain,
                nonce=pending.nonce,
                tx_hash=pending.tx_hash,
            ) from e

        logger.info(f"Rebroadcast {pending.function} {tx_hash} (nonce {pending.nonce})")
        return self._submitted(pending, tx_hash)

    # ======================
    # Protocol
    # ======================

    def _deadline(self) -> int:
        return int(self.clock()) + self.deadline_seconds

    async def _confirm_swap(self, submitted: SubmittedTransaction) -> None:
        submitted.receipt = await self.wait_for_confirmation(submitted.chain, submitted.tx_hash)
        if not submitted.receipt.succeeded:
            raise SwapReverted(
                f"{submitted.function} reverted on-chain",
                chain=submitted.chain,
                account=submitted.account,
                tx_hash=submitted.tx_hash,
            )

    async def _get_receipt(self, chain: str, tx_hash: str) -> Optional[Receipt]:
        client = self.registry.client(chain)
        try:
            return await retry_read(
                lambda: client.get_transaction_receipt(tx_hash),
                attempts=self.read_retries,
                backoff=self.retry_backoff,
                description="eth_getTransactionReceipt",
            )
        except (RPCUnavailable, RPCError) as e:
            raise ConfirmationTimeout(
                f"Receipt unavailable: {e}", chain=chain, tx_hash=tx_hash
            ) from e

    async def _submit(
        self, chain: str, account: str, to: str, data: bytes, value: int, function: str
    ) -> SubmittedTransaction:
        config = self.registry.resolve(chain)
        signer = self.keyring.get(account)
        client = self.registry.client(config.name)
        sender = signer.address

        call = {"from": sender, "to": to, "value": value, "data": abi.to_hex_data(data)}
        gas = await self._simulate(config, client, call, function)
        gas_price = await self._gas_price(config, client, function)

        nonce = await self.nonces.reserve(config.name, sender)
        try:
            tx = {
                "nonce": nonce,
                "to": to,
                "value": value,
                "gas": gas,
                "gasPrice": gas_price,
                "data": call["data"],
                "chainId": config.chain_id,
            }
            signed = await signer.sign_transaction(tx)
        except BaseException:
            # Never broadcast, including cancellation before the send
            self.nonces.release(config.name, sender, nonce)
            raise

        pending = PendingTransaction(
            chain=config.name,
            account=sender,
            nonce=nonce,
            raw_transaction=signed.raw_transaction,
            tx_hash=signed.tx_hash,
            function=function,
        )
        return await self._broadcast(client, pending)

    async def _simulate(self, config: ChainConfig, client: ChainClient, call: dict, function: str) -> int:
        try:
            estimate = await retry_read(
                lambda: client.estimate_gas(call),
                attempts=self.read_retries,
                backoff=self.retry_backoff,
                description=f"eth_estimateGas {function}",
            )
        except RPCError as e:
            reason = abi.decode_revert_reason(e.data) or e.message
            logger.warning(f"{function} simulation reverted on {config.name}: {reason}")
            raise SimulationReverted(
                f"{function} would revert: {reason}",
                revert_reason=reason,
                chain=config.name,
                account=call["from"],
                function=function,
            ) from e
        except RPCUnavailable as e:
            raise SimulationUnavailable(
                f"Gas estimate unavailable: {e}", chain=config.name, function=function
            ) from e
        return int(Decimal(estimate) * Decimal(str(self.gas_limit_multiplier)))

    async def _gas_price(self, config: ChainConfig, client: ChainClient, function: str) -> int:
        try:
            return await retry_read(
                client.gas_price,
                attempts=self.read_retries,
                backoff=self.retry_backoff,
                description="eth_gasPrice",
            )
        except (RPCUnavailable, RPCError) as e:
            raise SimulationUnavailable(
                f"Gas price unavailable: {e}", chain=config.name, function=function
            ) from e

    async def _broadcast(self, client: ChainClient, pending: PendingTransaction) -> SubmittedTransaction:
        context = {
            "chain": pending.chain,
            "account": pending.account,
            "function": pending.function,
            "nonce": pending.nonce,
        }
        try:
            tx_hash = await asyncio.wait_for(
                client.send_raw_transaction(pending.raw_transaction), timeout=self.broadcast_timeout
            )
        except RPCError as e:
            if _matches(e, ALREADY_KNOWN):
                logger.info(f"Node already knows {pending.tx_hash}, treating as accepted")
                self.nonces.commit(pending.chain, pending.account, pending.nonce)
                return self._submitted(pending, pending.tx_hash)
            if _matches(e, NONCE_ERRORS):
                self.nonces.burn(pending.chain, pending.account, pending.nonce)
                self.nonces.invalidate(pending.chain, pending.account)
                raise NonceConflict(f"Node rejected nonce: {e.message}", **context) from e
            self.nonces.release(pending.chain, pending.account, pending.nonce)
            raise BroadcastFailure(f"Node rejected transaction: {e.message}", **context) from e
        except (RPCUnavailable, asyncio.TimeoutError) as e:
            self.nonces.burn(pending.chain, pending.account, pending.nonce)
            logger.error(f"Broadcast outcome unknown for {pending.tx_hash}: {e}")
            raise BroadcastFailure(
                f"Broadcast outcome unknown: {e}",
                outcome_unknown=True,
                pending=pending,
                tx_hash=pending.tx_hash,
                **context,
            ) from e
        except asyncio.CancelledError:
            self.nonces.burn(pending.chain, pending.account, pending.nonce)
            logger.error(f"Broadcast cancelled for {pending.tx_hash}, nonce {pending.nonce} burned")
            raise
        except Exception as e:
            # Unexpected client failure, the payload may have reached the node
            self.nonces.burn(pending.chain, pending.account, pending.nonce)
            logger.exception(f"Broadcast failed unexpectedly for {pending.tx_hash}")
            raise BroadcastFailure(
                f"Broadcast outcome unknown: {e!r}",
                outcome_unknown=True,
                pending=pending,
                tx_hash=pending.tx_hash,
                **context,
            ) from e

        self.nonces.commit(pending.chain, pending.account, pending.nonce)
        if tx_hash.lower() != pending.tx_hash.lower():
            logger.warning(f"Node returned hash {tx_hash}, expected {pending.tx_hash}")
        logger.info(f"Broadcast {pending.function} on {pending.chain}: {tx_hash} (nonce {pending.nonce})")
        return self._submitted(pending, tx_hash)

    @staticmethod
    def _submitted(pending: PendingTransaction, tx_hash: str) -> SubmittedTransaction:
        return SubmittedTransaction(
            chain=pending.chain,
            account=pending.account,
            nonce=pending.nonce,
            tx_hash=tx_hash,
            function=pending.function,
            submitted_at=pending.submitted_at,
        )
