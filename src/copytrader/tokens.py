"""ERC-20 token reads: metadata, balances and allowances."""

import logging
from dataclasses import dataclass
from decimal import Decimal

from copytrader import abi
from copytrader.chains import ChainRegistry
from copytrader.errors import InvalidAddress, QuoteError, QuoteUnavailable
from copytrader.rpc import RPCError, RPCUnavailable
from copytrader.utils.retry import retry_read

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class TokenInfo:
    """Static token metadata."""

    chain: str
    address: str
    name: str
    symbol: str
    decimals: int

    def to_units(self, amount: Decimal) -> int:
        """Whole tokens -> smallest units, truncated."""
        return int(Decimal(amount).scaleb(self.decimals))

    def from_units(self, units: int) -> Decimal:
        """Smallest units -> whole tokens."""
        return Decimal(units).scaleb(-self.decimals)


class TokenReader:
    """Reads ERC-20 state through the registered chain clients.

    Metadata never changes for a deployed token, so it is cached per
    (chain, address). Balances and allowances are always read fresh.
    """

    def __init__(self, registry: ChainRegistry, read_retries: int = 3, retry_backoff: float = 1.0):
        self.registry = registry
        self.read_retries = read_retries
        self.retry_backoff = retry_backoff
        self._metadata: dict[tuple[str, str], TokenInfo] = {}

    async def _call(self, chain: str, token: str, data: bytes, description: str) -> bytes:
        client = self.registry.client(chain)
        tx = {"to": token, "data": abi.to_hex_data(data)}
        try:
            return await retry_read(
                lambda: client.call(tx),
                attempts=self.read_retries,
                backoff=self.retry_backoff,
                description=description,
            )
        except RPCUnavailable as e:
            raise QuoteUnavailable(f"{description} unavailable: {e}", chain=chain, token=token) from e
        except RPCError as e:
            raise QuoteError(f"{description} reverted: {e}", chain=chain, token=token) from e

    async def _read_uint(self, chain: str, token: str, data: bytes, description: str) -> int:
        raw = await self._call(chain, token, data, description)
        try:
            (value,) = abi.decode_result(["uint256"], raw)
        except ValueError as e:
            raise QuoteError(f"{description} returned no value", chain=chain, token=token) from e
        return int(value)

    async def get_info(self, chain: str, token: str) -> TokenInfo:
        """Get token name, symbol and decimals (cached).

        Raises:
            InvalidAddress: If the address does not behave like an ERC-20 token
        """
        config = self.registry.resolve(chain)
        address = abi.checksum(token)
        key = (config.name, address)
        if key in self._metadata:
            return self._metadata[key]

        try:
            decimals = await self._read_uint(config.name, address, abi.encode_call(abi.DECIMALS), "decimals")
        except QuoteUnavailable:
            raise
        except QuoteError as e:
            raise InvalidAddress(f"Not an ERC-20 token: {address}", chain=config.name) from e

        # Name and symbol are cosmetic, some tokens do not implement them
        symbol = await self._read_text(config.name, address, abi.SYMBOL)
        name = await self._read_text(config.name, address, abi.NAME)

        info = TokenInfo(
            chain=config.name,
            address=address,
            name=name or address,
            symbol=symbol or "???",
            decimals=decimals,
        )
        self._metadata[key] = info
        logger.debug(f"Token metadata {config.name}:{address}: {info.symbol} ({info.decimals} decimals)")
        return info

    async def _read_text(self, chain: str, token: str, signature: str) -> str:
        try:
            raw = await self._call(chain, token, abi.encode_call(signature), signature)
        except QuoteUnavailable:
            raise
        except QuoteError as e:
            logger.debug(f"{signature} unreadable for {token}: {e}")
            return ""
        return abi.decode_text(raw) if raw else ""

    async def balance_of(self, chain: str, token: str, owner: str) -> int:
        """Token balance of an address in smallest units."""
        config = self.registry.resolve(chain)
        return await self._read_uint(
            config.name,
            abi.checksum(token),
            abi.encode_call(abi.BALANCE_OF, abi.checksum(owner)),
            "balanceOf",
        )

    async def allowance(self, chain: str, token: str, owner: str, spender: str) -> int:
        """Amount ``spender`` may transfer from ``owner`` in smallest units."""
        config = self.registry.resolve(chain)
        return await self._read_uint(
            config.name,
            abi.checksum(token),
            abi.encode_call(abi.ALLOWANCE, abi.checksum(owner), abi.checksum(spender)),
            "allowance",
        )

    def clear_cache(self) -> None:
        self._metadata.clear()
