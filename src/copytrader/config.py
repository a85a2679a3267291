"""Application configuration using pydantic-settings.

Chain endpoints, signing key, ledger database and the execution policy
(timeouts, retries, deadlines, confirmation behaviour) are all read from
the environment or a local ``.env`` file.
"""

from decimal import Decimal
from functools import lru_cache
from typing import Optional

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # ======================
    # Environment
    # ======================
    environment: str = Field(default="development", description="Runtime environment")
    debug: bool = Field(default=False, description="Enable debug logging and SQL echo")
    log_level: str = Field(default="INFO", description="Root log level when debug is off")

    # ======================
    # Database
    # ======================
    database_url: str = Field(
        default="sqlite+aiosqlite:///./data/copytrader.db",
        description="Trade ledger database URL",
    )

    # ======================
    # Signing
    # ======================
    private_key: Optional[str] = Field(
        default=None, description="Hex private key of the copy-trading wallet"
    )

    # ======================
    # Chains
    # ======================
    enabled_chains: str = Field(
        default="base", description="Comma-separated list of chain names to register"
    )
    base_rpc_url: str = Field(default="https://mainnet.base.org", description="Base RPC URL")
    eth_rpc_url: str = Field(default="https://eth.llamarpc.com", description="Ethereum RPC URL")
    bsc_rpc_url: str = Field(
        default="https://bsc-dataseed.binance.org", description="BSC RPC URL"
    )

    # Base deployment overrides (Uniswap V2 on Base by default)
    uniswap_base_router: Optional[str] = Field(default=None, description="Router on Base")
    uniswap_base_factory: Optional[str] = Field(default=None, description="Factory on Base")
    weth_base_address: Optional[str] = Field(default=None, description="WETH on Base")

    rpc_transport: str = Field(
        default="httpx", description="Chain client adapter: 'httpx' or 'web3'"
    )
    rpc_timeout: float = Field(default=15.0, description="Timeout for a single RPC call (s)")
    read_retries: int = Field(default=3, description="Attempts for read-only RPC calls")
    retry_backoff: float = Field(default=1.0, description="Linear backoff between read retries (s)")
    lock_timeout: float = Field(default=30.0, description="Max wait for a nonce lock (s)")

    # ======================
    # Price feed
    # ======================
    price_feed_url: str = Field(
        default="https://api.coingecko.com/api/v3", description="CoinGecko-compatible API"
    )
    price_feed_timeout: float = Field(default=10.0, description="Price feed request timeout (s)")

    # ======================
    # Execution policy
    # ======================
    swap_deadline_seconds: int = Field(
        default=600, description="Router deadline window after submission (10 minutes)"
    )
    gas_limit_multiplier: float = Field(
        default=1.2, description="Headroom applied on top of eth_estimateGas"
    )
    confirmation_policy: str = Field(
        default="wait", description="'wait' for receipts or 'submit' and settle later"
    )
    confirmation_timeout: float = Field(default=120.0, description="Receipt wait timeout (s)")
    confirmation_poll_interval: float = Field(default=2.0, description="Receipt poll interval (s)")
    default_slippage: Decimal = Field(
        default=Decimal("1.0"), description="Default slippage tolerance in percent"
    )

    @property
    def is_production(self) -> bool:
        """Check if running in production environment."""
        return self.environment.lower() == "production"

    @property
    def has_wallet(self) -> bool:
        """Check if a signing key is configured."""
        return bool(self.private_key)

    @property
    def chain_names(self) -> list[str]:
        """Parse enabled chains into a list of lowercase names."""
        return [name.strip().lower() for name in self.enabled_chains.split(",") if name.strip()]

    def get_rpc_url(self, chain: str) -> str:
        """Get RPC URL for a specific chain."""
        rpc_map = {
            "base": self.base_rpc_url,
            "ethereum": self.eth_rpc_url,
            "bsc": self.bsc_rpc_url,
        }
        return rpc_map.get(chain.lower(), "")

    def get_address_overrides(self, chain: str) -> dict[str, str]:
        """Router/factory/wrapper overrides configured for a chain."""
        if chain.lower() != "base":
            return {}
        overrides = {
            "router_address": self.uniswap_base_router,
            "factory_address": self.uniswap_base_factory,
            "wrapped_native_address": self.weth_base_address,
        }
        return {key: value for key, value in overrides.items() if value}

    def get_safe_dict(self) -> dict:
        """Return settings dict with secrets redacted."""
        return {
            "environment": self.environment,
            "debug": self.debug,
            "database_url": self._redact_url(self.database_url),
            "private_key": "***" if self.private_key else "(not set)",
            "chains": {name: {"rpc": self.get_rpc_url(name)} for name in self.chain_names},
            "rpc": {
                "transport": self.rpc_transport,
                "timeout": self.rpc_timeout,
                "read_retries": self.read_retries,
            },
            "execution": {
                "deadline_seconds": self.swap_deadline_seconds,
                "gas_limit_multiplier": self.gas_limit_multiplier,
                "confirmation_policy": self.confirmation_policy,
                "default_slippage": str(self.default_slippage),
            },
        }

    @staticmethod
    def _redact_url(url: str) -> str:
        """Redact sensitive parts of database URL."""
        if "://" in url and "@" in url:
            proto, rest = url.split("://", 1)
            if "@" in rest:
                creds, host = rest.rsplit("@", 1)
                if ":" in creds:
                    user, _ = creds.split(":", 1)
                    return f"{proto}://{user}:***@{host}"
        return url


@lru_cache
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()
