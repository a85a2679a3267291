"""Chain configuration and registry.

Each supported chain pairs immutable static parameters (chain id, RPC
endpoint, Uniswap-V2-style router/factory, wrapped native token) with a
connected ``ChainClient``. The registry is filled once at startup and is
read-only afterwards.
"""

import logging
from dataclasses import dataclass, replace
from typing import Optional

from copytrader.abi import checksum
from copytrader.config import Settings
from copytrader.errors import AlreadyRegistered, ChainIdMismatch, UnknownChain
from copytrader.rpc import ChainClient, HttpJsonRpcClient, Web3ChainClient

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ChainConfig:
    """Configuration for a blockchain."""

    name: str
    chain_id: int
    rpc_url: str
    router_address: str
    factory_address: Optional[str]
    wrapped_native_address: str

    native_symbol: str = "ETH"
    price_feed_id: str = "ethereum"  # CoinGecko asset id of the native asset
    native_decimals: int = 18

    def __post_init__(self):
        object.__setattr__(self, "name", self.name.lower())
        object.__setattr__(self, "router_address", checksum(self.router_address))
        object.__setattr__(self, "wrapped_native_address", checksum(self.wrapped_native_address))
        if self.factory_address:
            object.__setattr__(self, "factory_address", checksum(self.factory_address))


# ======================
# Chain Presets
# ======================

PRESET_CHAINS: dict[str, ChainConfig] = {
    # Base - Uniswap V2
    "base": ChainConfig(
        name="base",
        chain_id=8453,
        rpc_url="https://mainnet.base.org",
        router_address="0x4752ba5DBc23f44D87826276BF6Fd6b1C372aD24",
        factory_address="0x8909Dc15e40173Ff4699343b6eB8132c65e18eC6",
        wrapped_native_address="0x4200000000000000000000000000000000000006",  # WETH
    ),
    # Ethereum - Uniswap V2
    "ethereum": ChainConfig(
        name="ethereum",
        chain_id=1,
        rpc_url="https://eth.llamarpc.com",
        router_address="0x7a250d5630B4cF539739dF2C5dAcb4c659F2488D",
        factory_address="0x5C69bEe701ef814a2B6a3EDD4B1652CB9cc5aA6f",
        wrapped_native_address="0xC02aaA39b223FE8D0A0e5C4F27eAD9083C756Cc2",  # WETH
    ),
    # BNB Smart Chain - PancakeSwap V2
    "bsc": ChainConfig(
        name="bsc",
        chain_id=56,
        rpc_url="https://bsc-dataseed.binance.org",
        router_address="0x10ED43C718714eb63d5aA57B78B54704E256024E",
        factory_address="0xcA143Ce32Fe78f1f7019d7d551a6402fC5350c73",
        wrapped_native_address="0xbb4CdB9CBd36B01bD1cBaEBF2De08d9173bc095c",  # WBNB
        native_symbol="BNB",
        price_feed_id="binancecoin",
    ),
}


class ChainRegistry:
    """Lookup table of registered chains and their clients."""

    def __init__(self):
        self._configs: dict[str, ChainConfig] = {}
        self._clients: dict[str, ChainClient] = {}

    def register(self, config: ChainConfig, client: ChainClient) -> None:
        """Register a chain.

        Raises:
            AlreadyRegistered: If the name is taken
        """
        if config.name in self._configs:
            raise AlreadyRegistered(f"Chain already registered: {config.name}", chain=config.name)
        self._configs[config.name] = config
        self._clients[config.name] = client
        logger.info(f"Registered chain {config.name} (chain id {config.chain_id})")

    def resolve(self, name: str) -> ChainConfig:
        """Get configuration for a chain name.

        Raises:
            UnknownChain: If the chain is not registered
        """
        config = self._configs.get(name.lower()) if isinstance(name, str) else None
        if config is None:
            raise UnknownChain(f"Unsupported chain: {name}", chain=name)
        return config

    def client(self, name: str) -> ChainClient:
        """Get the node client for a chain name."""
        return self._clients[self.resolve(name).name]

    def names(self) -> list[str]:
        return list(self._configs)

    def __contains__(self, name: str) -> bool:
        return isinstance(name, str) and name.lower() in self._configs

    async def verify(self) -> None:
        """Check every RPC endpoint reports the configured chain id.

        A mismatch means every transaction signed for that chain would be
        invalid on-chain.

        Raises:
            ChainIdMismatch: On the first mismatching chain
        """
        for name, config in self._configs.items():
            reported = await self._clients[name].chain_id()
            if reported != config.chain_id:
                raise ChainIdMismatch(
                    f"RPC endpoint reports chain id {reported}, expected {config.chain_id}",
                    chain=name,
                    rpc_url=config.rpc_url,
                )
            logger.info(f"Verified chain {name}: chain id {reported}")

    async def close(self) -> None:
        """Close every registered client."""
        for client in self._clients.values():
            await client.close()


def create_client(rpc_url: str, settings: Settings) -> ChainClient:
    """Create a chain client for the configured transport."""
    transport = settings.rpc_transport.lower()
    if transport == "web3":
        return Web3ChainClient(rpc_url, timeout=settings.rpc_timeout)
    if transport == "httpx":
        return HttpJsonRpcClient(rpc_url, timeout=settings.rpc_timeout)
    raise ValueError(f"Unknown rpc transport: {settings.rpc_transport}")


def build_registry(settings: Settings) -> ChainRegistry:
    """Register the enabled preset chains with settings overrides applied.

    Raises:
        UnknownChain: If an enabled chain has no preset
    """
    registry = ChainRegistry()
    for name in settings.chain_names:
        preset = PRESET_CHAINS.get(name)
        if preset is None:
            raise UnknownChain(f"No preset for enabled chain: {name}", chain=name)
        config = replace(
            preset,
            rpc_url=settings.get_rpc_url(name) or preset.rpc_url,
            **settings.get_address_overrides(name),
        )
        registry.register(config, create_client(config.rpc_url, settings))
    return registry
