"""Raw JSON-RPC chain client over httpx."""

import itertools
import logging
from typing import Any, Optional

import httpx

from copytrader.rpc.base import ChainClient, Receipt, RPCError, RPCTimeout, RPCUnavailable

logger = logging.getLogger(__name__)


def _to_hex(value: int) -> str:
    return hex(int(value))


def _from_hex(value: Optional[str]) -> int:
    if not value:
        return 0
    return int(value, 16)


def _encode_tx(tx: dict) -> dict:
    """Convert a transaction dict to JSON-RPC wire form."""
    encoded = {}
    for key in ("from", "to", "data"):
        if tx.get(key) is not None:
            encoded[key] = tx[key]
    for key in ("value", "gas", "gasPrice"):
        if tx.get(key) is not None:
            encoded[key] = _to_hex(tx[key])
    return encoded


class HttpJsonRpcClient(ChainClient):
    """Chain client speaking JSON-RPC over HTTP.

    A single ``httpx.AsyncClient`` is kept for the lifetime of the client;
    every request is bounded by ``timeout``.
    """

    def __init__(
        self,
        rpc_url: str,
        timeout: float = 15.0,
        client: Optional[httpx.AsyncClient] = None,
    ):
        self.rpc_url = rpc_url
        self.timeout = timeout
        self._client = client or httpx.AsyncClient(timeout=timeout)
        self._ids = itertools.count(1)

    async def _request(self, method: str, params: list) -> Any:
        payload = {
            "jsonrpc": "2.0",
            "method": method,
            "params": params,
            "id": next(self._ids),
        }

        try:
            response = await self._client.post(self.rpc_url, json=payload)
        except httpx.TimeoutException as e:
            raise RPCTimeout(f"{method} timed out after {self.timeout}s") from e
        except httpx.TransportError as e:
            raise RPCUnavailable(f"{method} transport error: {e}") from e

        if response.status_code != 200:
            raise RPCUnavailable(f"{method} returned HTTP {response.status_code}")

        try:
            data = response.json()
        except ValueError as e:
            raise RPCUnavailable(f"{method} returned a non-JSON body") from e

        if not isinstance(data, dict):
            raise RPCUnavailable(f"{method} returned a {type(data).__name__}, not a JSON-RPC object")

        if data.get("error"):
            error = data["error"]
            logger.debug(f"{method} error: {error}")
            if not isinstance(error, dict):
                raise RPCError(str(error))
            raise RPCError(
                error.get("message", "unknown error"),
                code=error.get("code"),
                data=error.get("data"),
            )

        if "result" not in data:
            raise RPCUnavailable(f"{method} response has neither result nor error")
        return data["result"]

    async def chain_id(self) -> int:
        return _from_hex(await self._request("eth_chainId", []))

    async def call(self, tx: dict, block: str = "latest") -> bytes:
        result = await self._request("eth_call", [_encode_tx(tx), block])
        return bytes.fromhex((result or "0x")[2:])

    async def estimate_gas(self, tx: dict) -> int:
        return _from_hex(await self._request("eth_estimateGas", [_encode_tx(tx)]))

    async def gas_price(self) -> int:
        return _from_hex(await self._request("eth_gasPrice", []))

    async def get_transaction_count(self, address: str, block: str = "pending") -> int:
        return _from_hex(await self._request("eth_getTransactionCount", [address, block]))

    async def send_raw_transaction(self, raw_transaction: bytes) -> str:
        return await self._request("eth_sendRawTransaction", ["0x" + bytes(raw_transaction).hex()])

    async def get_transaction_receipt(self, tx_hash: str) -> Optional[Receipt]:
        result = await self._request("eth_getTransactionReceipt", [tx_hash])
        if result is None:
            return None
        return Receipt(
            tx_hash=result.get("transactionHash", tx_hash),
            status=_from_hex(result.get("status")),
            block_number=_from_hex(result.get("blockNumber")),
            gas_used=_from_hex(result.get("gasUsed")),
        )

    async def close(self) -> None:
        await self._client.aclose()
