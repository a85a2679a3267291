"""Chain client capability interface.

The engine depends only on this set of node capabilities. Any transport
that can answer them (raw JSON-RPC over HTTP, web3.py, a test double) is
substitutable.
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Any, Optional


class RPCError(Exception):
    """Node answered with a JSON-RPC error object.

    The answer is definitive: the request reached the node and was refused
    (a revert during eth_call / eth_estimateGas, a rejected raw transaction).
    """

    def __init__(self, message: str, code: Optional[int] = None, data: Any = None):
        super().__init__(message)
        self.message = message
        self.code = code
        self.data = data

    def __str__(self):
        if self.code is not None:
            return f"RPC error {self.code}: {self.message}"
        return f"RPC error: {self.message}"


class RPCUnavailable(Exception):
    """Node could not be reached or gave no usable answer (transient)."""

    pass


class RPCTimeout(RPCUnavailable):
    """Request exceeded the client's timeout. The outcome is unknown."""

    pass


@dataclass
class Receipt:
    """Mined transaction receipt."""

    tx_hash: str
    status: int  # 1 = success, 0 = reverted
    block_number: Optional[int] = None
    gas_used: Optional[int] = None

    @property
    def succeeded(self) -> bool:
        return self.status == 1


class ChainClient(ABC):
    """Abstract base class for blockchain node clients.

    Transaction dicts use the JSON-RPC field names (``from``, ``to``,
    ``value``, ``data``) with integer values and 0x-prefixed hex data.
    """

    @abstractmethod
    async def chain_id(self) -> int:
        """Chain id reported by the node (eth_chainId)."""
        pass

    @abstractmethod
    async def call(self, tx: dict, block: str = "latest") -> bytes:
        """Execute a read-only call (eth_call) and return the raw result."""
        pass

    @abstractmethod
    async def estimate_gas(self, tx: dict) -> int:
        """Simulate a transaction and return its gas usage (eth_estimateGas)."""
        pass

    @abstractmethod
    async def gas_price(self) -> int:
        """Current gas price in wei (eth_gasPrice)."""
        pass

    @abstractmethod
    async def get_transaction_count(self, address: str, block: str = "pending") -> int:
        """Transaction count of an address (eth_getTransactionCount)."""
        pass

    @abstractmethod
    async def send_raw_transaction(self, raw_transaction: bytes) -> str:
        """Broadcast a signed transaction and return its hash (eth_sendRawTransaction)."""
        pass

    @abstractmethod
    async def get_transaction_receipt(self, tx_hash: str) -> Optional[Receipt]:
        """Receipt of a mined transaction, None while pending (eth_getTransactionReceipt)."""
        pass

    async def close(self) -> None:
        """Release transport resources."""
        return None
