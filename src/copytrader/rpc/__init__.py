"""Blockchain node clients.

Adapters:
- HttpJsonRpcClient: raw JSON-RPC over httpx
- Web3ChainClient: web3.py AsyncWeb3
"""

from copytrader.rpc.base import ChainClient, Receipt, RPCError, RPCTimeout, RPCUnavailable
from copytrader.rpc.jsonrpc import HttpJsonRpcClient
from copytrader.rpc.web3_client import Web3ChainClient

__all__ = [
    "ChainClient",
    "Receipt",
    "RPCError",
    "RPCTimeout",
    "RPCUnavailable",
    "HttpJsonRpcClient",
    "Web3ChainClient",
]
