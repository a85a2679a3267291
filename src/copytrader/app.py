"""Application wiring.

Builds the engine graph from ``Settings``: chain registry, keyring, token
reader, quote estimator, nonce sequencer, swap executor and ledger.
Signal intake is up to the embedding process.
"""

import logging
from typing import Optional

from copytrader.chains import ChainRegistry, build_registry
from copytrader.config import Settings, get_settings
from copytrader.engine import TradeEngine
from copytrader.ledger import TradeLedger
from copytrader.ledger.database import close_db, get_engine, get_session_factory, init_db
from copytrader.routing import CoinGeckoPriceFeed, QuoteEstimator
from copytrader.signing import Keyring
from copytrader.swap import NonceSequencer, SwapExecutor
from copytrader.tokens import TokenReader

logger = logging.getLogger(__name__)


def configure_logging(settings: Settings) -> None:
    """Install the root log handler."""
    if settings.debug:
        log_level = logging.DEBUG
    else:
        log_level = getattr(logging, settings.log_level.upper(), logging.INFO)
    logging.basicConfig(
        level=log_level,
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    )


class Application:
    """Owns the engine and every resource it holds open."""

    def __init__(self, settings: Optional[Settings] = None):
        self.settings = settings or get_settings()
        self.registry: Optional[ChainRegistry] = None
        self.price_feed: Optional[CoinGeckoPriceFeed] = None
        self.engine: Optional[TradeEngine] = None

    async def start(self, verify_chains: bool = True) -> TradeEngine:
        """Build the engine, initialize the ledger and check chain ids."""
        settings = self.settings
        logger.info("Starting copytrader...")
        logger.info(f"Environment: {settings.environment}")
        logger.debug(f"Settings: {settings.get_safe_dict()}")

        await init_db(get_engine(settings))
        logger.info("Database initialized")

        self.registry = build_registry(settings)
        if verify_chains:
            await self.registry.verify()

        keyring = Keyring.from_settings(settings)
        tokens = TokenReader(
            self.registry,
            read_retries=settings.read_retries,
            retry_backoff=settings.retry_backoff,
        )
        self.price_feed = CoinGeckoPriceFeed(settings.price_feed_url, timeout=settings.price_feed_timeout)
        estimator = QuoteEstimator(
            self.registry,
            tokens,
            price_feed=self.price_feed,
            read_retries=settings.read_retries,
            retry_backoff=settings.retry_backoff,
        )
        nonces = NonceSequencer(
            self.registry,
            lock_timeout=settings.lock_timeout,
            read_retries=settings.read_retries,
            retry_backoff=settings.retry_backoff,
        )
        executor = SwapExecutor(
            self.registry,
            nonces,
            keyring,
            tokens,
            deadline_seconds=settings.swap_deadline_seconds,
            gas_limit_multiplier=settings.gas_limit_multiplier,
            broadcast_timeout=settings.rpc_timeout,
            confirmation_timeout=settings.confirmation_timeout,
            poll_interval=settings.confirmation_poll_interval,
            read_retries=settings.read_retries,
            retry_backoff=settings.retry_backoff,
        )
        ledger = TradeLedger(get_session_factory(), lock_timeout=settings.lock_timeout)

        self.engine = TradeEngine(
            self.registry,
            tokens,
            estimator,
            executor,
            ledger,
            confirmation_policy=settings.confirmation_policy,
        )
        logger.info(f"Engine ready on chains: {', '.join(self.registry.names())}")
        return self.engine

    async def stop(self) -> None:
        """Close chain clients and database connections."""
        logger.info("Shutting down...")
        if self.registry is not None:
            await self.registry.close()
        if self.price_feed is not None:
            await self.price_feed.close()
        await close_db()
        logger.info("Shutdown complete")
