"""Quote estimation against a Uniswap-V2-style router.

The router's read-only ``getAmountsOut`` is simulated with ``eth_call`` for
every quote, so the expected output reflects current pool reserves. The
minimum output derived from it is what protects the swap when it lands
later at a worse price.
"""

import logging
from decimal import Decimal, localcontext
from typing import Optional

from copytrader import abi
from copytrader.chains import ChainConfig, ChainRegistry
from copytrader.errors import (
    InsufficientLiquidity,
    InvalidAddress,
    InvalidAmount,
    QuoteUnavailable,
)
from copytrader.routing.base import Quote, minimum_output, validate_slippage
from copytrader.routing.prices import CoinGeckoPriceFeed
from copytrader.rpc import RPCError, RPCUnavailable
from copytrader.tokens import TokenReader
from copytrader.utils.retry import retry_read

logger = logging.getLogger(__name__)


class QuoteEstimator:
    """Produces slippage-bounded quotes for single-hop swaps."""

    def __init__(
        self,
        registry: ChainRegistry,
        tokens: TokenReader,
        price_feed: Optional[CoinGeckoPriceFeed] = None,
        read_retries: int = 3,
        retry_backoff: float = 1.0,
    ):
        self.registry = registry
        self.tokens = tokens
        self.price_feed = price_feed
        self.read_retries = read_retries
        self.retry_backoff = retry_backoff

    async def estimate(self, chain: str, path: list[str], amount_in: int, slippage) -> Quote:
        """Quote a swap of ``amount_in`` along ``path``.

        Args:
            chain: Registered chain name
            path: [token_in, token_out], one side being the wrapped native token
            amount_in: Input amount in smallest units
            slippage: Tolerance in percent

        Raises:
            InvalidAmount: If amount_in is not positive
            InvalidSlippage: If slippage is outside [0, 100)
            InsufficientLiquidity: If the pool is missing or yields nothing
            QuoteUnavailable: If the router cannot be reached
        """
        config = self.registry.resolve(chain)
        tolerance = validate_slippage(slippage)
        if not isinstance(amount_in, int) or isinstance(amount_in, bool) or amount_in <= 0:
            raise InvalidAmount(f"Amount in must be a positive integer, got {amount_in!r}", chain=config.name)

        token_in, token_out = self._validate_path(config, path)

        if config.factory_address:
            await self._check_pair(config, token_in, token_out)

        amounts = await self._get_amounts_out(config, amount_in, [token_in, token_out])
        expected_out = amounts[-1]
        if expected_out <= 0:
            raise InsufficientLiquidity(
                "Router quoted zero output",
                chain=config.name,
                path=f"{token_in}->{token_out}",
            )

        is_buy = token_in == config.wrapped_native_address
        token = token_out if is_buy else token_in
        info = await self.tokens.get_info(config.name, token)

        with localcontext() as ctx:
            ctx.prec = 40
            native_units = Decimal(amount_in if is_buy else expected_out).scaleb(-config.native_decimals)
            token_units = Decimal(expected_out if is_buy else amount_in).scaleb(-info.decimals)
            native_price = native_units / token_units

        usd_price = await self._reference_usd_price(config, native_price)

        quote = Quote(
            chain=config.name,
            path=[token_in, token_out],
            amount_in=amount_in,
            expected_out=expected_out,
            minimum_out=minimum_output(expected_out, tolerance),
            slippage=tolerance,
            native_price=native_price,
            reference_usd_price=usd_price,
        )
        logger.info(
            f"Quote {config.name} {token_in}->{token_out}: in={amount_in} "
            f"expected={quote.expected_out} min={quote.minimum_out} ({tolerance}%)"
        )
        return quote

    def _validate_path(self, config: ChainConfig, path: list[str]) -> tuple[str, str]:
        if len(path) != 2:
            raise InvalidAddress(f"Path must have exactly two tokens, got {len(path)}", chain=config.name)
        token_in, token_out = (abi.checksum(address) for address in path)
        if token_in == token_out:
            raise InvalidAddress(f"Path tokens must differ: {token_in}", chain=config.name)
        if config.wrapped_native_address not in (token_in, token_out):
            raise InvalidAddress(
                "Path must include the wrapped native token",
                chain=config.name,
                wrapped_native=config.wrapped_native_address,
            )
        return token_in, token_out

    async def _read(self, config: ChainConfig, to: str, data: bytes, description: str) -> bytes:
        client = self.registry.client(config.name)
        tx = {"to": to, "data": abi.to_hex_data(data)}
        try:
            return await retry_read(
                lambda: client.call(tx),
                attempts=self.read_retries,
                backoff=self.retry_backoff,
                description=description,
            )
        except RPCUnavailable as e:
            raise QuoteUnavailable(f"{description} unavailable: {e}", chain=config.name) from e

    async def _check_pair(self, config: ChainConfig, token_in: str, token_out: str) -> None:
        try:
            raw = await self._read(
                config, config.factory_address, abi.encode_call(abi.GET_PAIR, token_in, token_out), "getPair"
            )
            (pair,) = abi.decode_result(["address"], raw)
        except (RPCError, ValueError) as e:
            raise QuoteUnavailable(f"Factory getPair failed: {e}", chain=config.name) from e

        if int(pair, 16) == 0:
            raise InsufficientLiquidity(
                "No pool for pair",
                chain=config.name,
                path=f"{token_in}->{token_out}",
            )

    async def _get_amounts_out(self, config: ChainConfig, amount_in: int, path: list[str]) -> list[int]:
        try:
            raw = await self._read(
                config, config.router_address, abi.encode_call(abi.GET_AMOUNTS_OUT, amount_in, path), "getAmountsOut"
            )
        except RPCError as e:
            reason = abi.decode_revert_reason(e.data) or e.message
            raise InsufficientLiquidity(
                f"getAmountsOut reverted: {reason}",
                chain=config.name,
                path=f"{path[0]}->{path[-1]}",
            ) from e

        try:
            (amounts,) = abi.decode_result(["uint256[]"], raw)
        except ValueError as e:
            raise QuoteUnavailable(f"Malformed getAmountsOut result: {e}", chain=config.name) from e
        if len(amounts) != len(path):
            raise QuoteUnavailable(f"getAmountsOut returned {len(amounts)} amounts", chain=config.name)
        return [int(amount) for amount in amounts]

    async def _reference_usd_price(self, config: ChainConfig, native_price: Decimal) -> Optional[Decimal]:
        if self.price_feed is None:
            return None
        native_usd = await self.price_feed.get_usd_price(config.price_feed_id)
        if native_usd is None:
            return None
        return native_price * native_usd
