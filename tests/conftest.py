"""Pytest configuration and fixtures."""

import asyncio
import os
from typing import AsyncGenerator, Callable, Optional
from unittest.mock import AsyncMock

import pytest
import pytest_asyncio
from eth_abi import decode, encode
from eth_utils import keccak
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from web3 import Web3

# Set test environment
os.environ["ENVIRONMENT"] = "test"
os.environ["DATABASE_URL"] = "sqlite+aiosqlite:///:memory:"
os.environ["PRIVATE_KEY"] = ""

from copytrader import abi
from copytrader.chains import PRESET_CHAINS, ChainRegistry
from copytrader.engine import TradeEngine
from copytrader.ledger import Base, TradeLedger
from copytrader.routing import QuoteEstimator
from copytrader.rpc import ChainClient, Receipt, RPCError
from copytrader.signing import Keyring, LocalSigner
from copytrader.swap import NonceSequencer, SwapExecutor
from copytrader.tokens import TokenReader

# Hardhat development account #0
TEST_PRIVATE_KEY = "0xac0974bec39a17e36ba4a4b4d238ff944bacb478cbed5efcae784d7bf4f2ff80"
TEST_ADDRESS = "0xf39Fd6e51aad88F6F4ce6aB8827279cffFb92266"

BASE = PRESET_CHAINS["base"]
WETH = BASE.wrapped_native_address
ROUTER = BASE.router_address
TOKEN = Web3.to_checksum_address("0x" + "a" * 40)
OTHER_TOKEN = Web3.to_checksum_address("0x" + "b" * 40)
PAIR = Web3.to_checksum_address("0x" + "c" * 40)

ONE = 10**18
# Tokens per native unit in the default pool
DEFAULT_RATE = 10_000


def revert_data(reason: str) -> str:
    """Error(string) revert payload as hex."""
    return abi.to_hex_data(abi.ERROR_STRING_SELECTOR + encode(["string"], [reason]))


def decode_call(signature: str, data: str) -> tuple:
    """Decode hex call data for a known signature."""
    raw = bytes.fromhex(data[2:])
    assert raw[:4] == abi.selector(signature)
    return tuple(decode(abi.argument_types(signature), raw[4:]))


class FakeChainClient(ChainClient):
    """In-memory chain with a Uniswap-V2-style router and ERC-20 tokens.

    Every method yields to the event loop once so concurrent callers
    interleave the way they would against a real node.
    """

    def __init__(self, chain_id: int = 8453):
        self._chain_id = chain_id
        self.pending_nonce = 0
        self.gas_estimate = 150_000
        self.gas_price_wei = 1_000_000_000

        self.tokens: dict[str, dict] = {}
        self.missing_pairs: set[frozenset] = set()
        self.amounts_out: Callable[[int, list[str]], int] = self._default_amounts_out
        self.quote_revert: Optional[str] = None

        self.simulation_revert: Optional[str] = None
        self.send_error: Optional[Exception] = None
        self.send_hook: Optional[Callable[[], None]] = None
        self.auto_mine = True
        self.mine_status = 1

        self.calls: list[dict] = []
        self.estimates: list[dict] = []
        self.sent: list[bytes] = []
        self.receipts: dict[str, Receipt] = {}
        self.nonce_reads = 0
        self.closed = False

        self.add_token(TOKEN, name="Token A", symbol="AAA")

    # Scenario helpers

    def add_token(self, address: str, name: str = "Token", symbol: str = "TKN", decimals: int = 18):
        self.tokens[address.lower()] = {
            "name": name,
            "symbol": symbol,
            "decimals": decimals,
            "balances": {},
            "allowances": {},
        }

    def set_balance(self, token: str, owner: str, amount: int):
        self.tokens[token.lower()]["balances"][owner.lower()] = amount

    def set_allowance(self, token: str, owner: str, spender: str, amount: int):
        self.tokens[token.lower()]["allowances"][(owner.lower(), spender.lower())] = amount

    @staticmethod
    def _default_amounts_out(amount_in: int, path: list[str]) -> int:
        if path[0].lower() == WETH.lower():
            return amount_in * DEFAULT_RATE
        return amount_in // DEFAULT_RATE

    # ChainClient

    async def chain_id(self) -> int:
        await asyncio.sleep(0)
        return self._chain_id

    async def call(self, tx: dict, block: str = "latest") -> bytes:
        await asyncio.sleep(0)
        self.calls.append(tx)
        data = bytes.fromhex(tx["data"][2:])
        selector, args = data[:4], data[4:]
        to = tx["to"].lower()

        if selector == abi.selector(abi.GET_AMOUNTS_OUT):
            amount_in, path = decode(["uint256", "address[]"], args)
            if self.quote_revert:
                raise RPCError(
                    f"execution reverted: {self.quote_revert}", code=3, data=revert_data(self.quote_revert)
                )
            return encode(["uint256[]"], [[amount_in, self.amounts_out(amount_in, list(path))]])

        if selector == abi.selector(abi.GET_PAIR):
            token_a, token_b = decode(["address", "address"], args)
            if frozenset((token_a.lower(), token_b.lower())) in self.missing_pairs:
                return encode(["address"], [abi.ZERO_ADDRESS])
            return encode(["address"], [PAIR])

        token = self.tokens.get(to)
        if token is None:
            # Not a contract
            return b""

        if selector == abi.selector(abi.DECIMALS):
            return encode(["uint8"], [token["decimals"]])
        if selector == abi.selector(abi.SYMBOL):
            return encode(["string"], [token["symbol"]])
        if selector == abi.selector(abi.NAME):
            return encode(["string"], [token["name"]])
        if selector == abi.selector(abi.BALANCE_OF):
            (owner,) = decode(["address"], args)
            return encode(["uint256"], [token["balances"].get(owner.lower(), 0)])
        if selector == abi.selector(abi.ALLOWANCE):
            owner, spender = decode(["address", "address"], args)
            return encode(["uint256"], [token["allowances"].get((owner.lower(), spender.lower()), 0)])
        raise RPCError("execution reverted", code=3)

    async def estimate_gas(self, tx: dict) -> int:
        await asyncio.sleep(0)
        self.estimates.append(tx)
        if self.simulation_revert:
            raise RPCError(
                f"execution reverted: {self.simulation_revert}",
                code=3,
                data=revert_data(self.simulation_revert),
            )
        return self.gas_estimate

    async def gas_price(self) -> int:
        await asyncio.sleep(0)
        return self.gas_price_wei

    async def get_transaction_count(self, address: str, block: str = "pending") -> int:
        await asyncio.sleep(0)
        self.nonce_reads += 1
        return self.pending_nonce

    async def send_raw_transaction(self, raw_transaction: bytes) -> str:
        await asyncio.sleep(0)
        if self.send_hook is not None:
            self.send_hook()
        if self.send_error is not None:
            raise self.send_error
        self.sent.append(raw_transaction)
        tx_hash = "0x" + keccak(raw_transaction).hex()
        if self.auto_mine:
            self.receipts[tx_hash] = Receipt(
                tx_hash=tx_hash, status=self.mine_status, block_number=1, gas_used=100_000
            )
        return tx_hash

    async def get_transaction_receipt(self, tx_hash: str) -> Optional[Receipt]:
        await asyncio.sleep(0)
        return self.receipts.get(tx_hash)

    async def close(self) -> None:
        self.closed = True


@pytest.fixture
def fake_client() -> FakeChainClient:
    return FakeChainClient()


@pytest.fixture
def registry(fake_client) -> ChainRegistry:
    registry = ChainRegistry()
    registry.register(BASE, fake_client)
    return registry


@pytest.fixture
def keyring() -> Keyring:
    keyring = Keyring()
    keyring.add("default", LocalSigner(TEST_PRIVATE_KEY))
    return keyring


@pytest.fixture
def tokens(registry) -> TokenReader:
    return TokenReader(registry, read_retries=2, retry_backoff=0)


@pytest.fixture
def price_feed() -> AsyncMock:
    feed = AsyncMock()
    feed.get_usd_price = AsyncMock(return_value=None)
    return feed


@pytest.fixture
def estimator(registry, tokens, price_feed) -> QuoteEstimator:
    return QuoteEstimator(registry, tokens, price_feed=price_feed, read_retries=2, retry_backoff=0)


@pytest.fixture
def nonces(registry) -> NonceSequencer:
    return NonceSequencer(registry, lock_timeout=5, read_retries=2, retry_backoff=0)


@pytest.fixture
def executor(registry, nonces, keyring, tokens) -> SwapExecutor:
    return SwapExecutor(
        registry,
        nonces,
        keyring,
        tokens,
        broadcast_timeout=1.0,
        confirmation_timeout=0.05,
        poll_interval=0.01,
        read_retries=2,
        retry_backoff=0,
    )


@pytest_asyncio.fixture
async def db_engine(tmp_path):
    """Create a file-backed SQLite engine so concurrent sessions share state."""
    engine = create_async_engine(
        f"sqlite+aiosqlite:///{tmp_path / 'ledger.db'}",
        echo=False,
    )

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    yield engine

    await engine.dispose()


@pytest.fixture
def session_factory(db_engine) -> async_sessionmaker[AsyncSession]:
    return async_sessionmaker(
        bind=db_engine,
        class_=AsyncSession,
        expire_on_commit=False,
    )


@pytest_asyncio.fixture
async def db_session(session_factory) -> AsyncGenerator[AsyncSession, None]:
    async with session_factory() as session:
        yield session


@pytest.fixture
def ledger(session_factory) -> TradeLedger:
    return TradeLedger(session_factory, lock_timeout=5)


@pytest.fixture
def engine(registry, tokens, estimator, executor, ledger) -> TradeEngine:
    return TradeEngine(registry, tokens, estimator, executor, ledger)
