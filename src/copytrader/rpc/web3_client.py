"""Chain client backed by web3.py's async provider."""

import asyncio
import logging
from typing import Any, Awaitable, Optional

import aiohttp
from web3 import AsyncWeb3
from web3.exceptions import ContractLogicError, TransactionNotFound, Web3Exception

from copytrader.rpc.base import ChainClient, Receipt, RPCError, RPCTimeout, RPCUnavailable

logger = logging.getLogger(__name__)


def _error_payload(error: Exception) -> Optional[dict]:
    """Extract a JSON-RPC error object from a web3 exception, if any."""
    rpc_response = getattr(error, "rpc_response", None)
    if isinstance(rpc_response, dict) and isinstance(rpc_response.get("error"), dict):
        return rpc_response["error"]
    if error.args and isinstance(error.args[0], dict):
        return error.args[0]
    return None


def _hex(value: Any) -> str:
    if isinstance(value, (bytes, bytearray)):
        return "0x" + bytes(value).hex()
    text = str(value)
    return text if text.startswith("0x") else "0x" + text


class Web3ChainClient(ChainClient):
    """Chain client using ``AsyncWeb3`` over ``AsyncHTTPProvider``."""

    def __init__(self, rpc_url: str, timeout: float = 15.0, w3: Optional[AsyncWeb3] = None):
        self.rpc_url = rpc_url
        self.timeout = timeout
        self._w3 = w3
        self._owns_provider = w3 is None

    @property
    def web3(self) -> AsyncWeb3:
        """Lazy load web3 instance."""
        if self._w3 is None:
            self._w3 = AsyncWeb3(
                AsyncWeb3.AsyncHTTPProvider(
                    self.rpc_url,
                    request_kwargs={"timeout": aiohttp.ClientTimeout(total=self.timeout)},
                )
            )
        return self._w3

    async def _guard(self, method: str, awaitable: Awaitable) -> Any:
        """Await a web3 call and translate its failures."""
        try:
            return await awaitable
        except TransactionNotFound:
            raise
        except ContractLogicError as e:
            raise RPCError(getattr(e, "message", None) or str(e), code=3, data=getattr(e, "data", None)) from e
        except asyncio.TimeoutError as e:
            raise RPCTimeout(f"{method} timed out after {self.timeout}s") from e
        except aiohttp.ClientError as e:
            raise RPCUnavailable(f"{method} transport error: {e}") from e
        except (Web3Exception, ValueError) as e:
            payload = _error_payload(e)
            if payload is None:
                raise RPCUnavailable(f"{method} failed: {e}") from e
            raise RPCError(
                payload.get("message", str(e)),
                code=payload.get("code"),
                data=payload.get("data"),
            ) from e

    async def chain_id(self) -> int:
        return int(await self._guard("eth_chainId", self.web3.eth.chain_id))

    async def call(self, tx: dict, block: str = "latest") -> bytes:
        return bytes(await self._guard("eth_call", self.web3.eth.call(tx, block)))

    async def estimate_gas(self, tx: dict) -> int:
        return int(await self._guard("eth_estimateGas", self.web3.eth.estimate_gas(tx)))

    async def gas_price(self) -> int:
        return int(await self._guard("eth_gasPrice", self.web3.eth.gas_price))

    async def get_transaction_count(self, address: str, block: str = "pending") -> int:
        return int(
            await self._guard(
                "eth_getTransactionCount", self.web3.eth.get_transaction_count(address, block)
            )
        )

    async def send_raw_transaction(self, raw_transaction: bytes) -> str:
        tx_hash = await self._guard(
            "eth_sendRawTransaction", self.web3.eth.send_raw_transaction(raw_transaction)
        )
        return _hex(tx_hash)

    async def get_transaction_receipt(self, tx_hash: str) -> Optional[Receipt]:
        try:
            receipt = await self._guard(
                "eth_getTransactionReceipt", self.web3.eth.get_transaction_receipt(tx_hash)
            )
        except TransactionNotFound:
            return None
        if receipt is None:
            return None
        return Receipt(
            tx_hash=tx_hash,
            status=int(receipt["status"]),
            block_number=receipt.get("blockNumber"),
            gas_used=receipt.get("gasUsed"),
        )

    async def close(self) -> None:
        if not self._owns_provider or self._w3 is None:
            return
        disconnect = getattr(self._w3.provider, "disconnect", None)
        if disconnect is not None:
            await disconnect()
