"""ABI encoding helpers for router and ERC-20 calls.

Only the handful of functions the engine touches are described here, by
canonical signature. Selectors are derived from the signature so call data
never depends on a full contract ABI.
"""

import logging
from typing import Any, Optional

from eth_abi import decode, encode
from eth_abi.exceptions import DecodingError, EncodingError
from eth_utils import function_signature_to_4byte_selector
from web3 import Web3

from copytrader.errors import ABIEncodingFailure, InvalidAddress

logger = logging.getLogger(__name__)

ZERO_ADDRESS = "0x0000000000000000000000000000000000000000"
MAX_UINT256 = 2**256 - 1

# Uniswap V2 style router
SWAP_EXACT_ETH_FOR_TOKENS = "swapExactETHForTokens(uint256,address[],address,uint256)"
SWAP_EXACT_TOKENS_FOR_ETH = "swapExactTokensForETH(uint256,uint256,address[],address,uint256)"
GET_AMOUNTS_OUT = "getAmountsOut(uint256,address[])"

# Uniswap V2 style factory
GET_PAIR = "getPair(address,address)"

# ERC-20
APPROVE = "approve(address,uint256)"
ALLOWANCE = "allowance(address,address)"
BALANCE_OF = "balanceOf(address)"
DECIMALS = "decimals()"
SYMBOL = "symbol()"
NAME = "name()"

# Error(string) revert payload selector
ERROR_STRING_SELECTOR = bytes.fromhex("08c379a0")


def checksum(address: str) -> str:
    """Validate an address and return its checksummed form."""
    if not isinstance(address, str) or not Web3.is_address(address):
        raise InvalidAddress(f"Invalid address: {address!r}")
    return Web3.to_checksum_address(address)


def argument_types(signature: str) -> list[str]:
    """Argument types of a canonical function signature."""
    inner = signature[signature.index("(") + 1 : signature.rindex(")")]
    return [part for part in inner.split(",") if part]


def selector(signature: str) -> bytes:
    """4-byte function selector."""
    return function_signature_to_4byte_selector(signature)


def encode_call(signature: str, *args: Any) -> bytes:
    """Encode call data for a function.

    Raises:
        ABIEncodingFailure: If the arguments do not fit the signature
    """
    types = argument_types(signature)
    try:
        if len(types) != len(args):
            raise ValueError(f"expected {len(types)} arguments, got {len(args)}")
        return selector(signature) + encode(types, list(args))
    except (EncodingError, TypeError, ValueError, OverflowError) as e:
        raise ABIEncodingFailure(f"Could not encode {signature}: {e}", function=signature) from e


def to_hex_data(data: bytes) -> str:
    """0x-prefixed hex form of call data."""
    return "0x" + bytes(data).hex()


def decode_result(types: list[str], data: bytes) -> tuple:
    """Decode the return data of a call.

    Raises:
        ValueError: If the data does not match the types
    """
    try:
        return tuple(decode(types, bytes(data)))
    except (DecodingError, TypeError, ValueError, OverflowError) as e:
        raise ValueError(f"Could not decode {types} from {len(data)} bytes: {e}") from e


def decode_text(data: bytes) -> str:
    """Decode a string return value, tolerating legacy bytes32 tokens."""
    try:
        (value,) = decode_result(["string"], data)
        return value
    except ValueError:
        pass
    raw = bytes(data)[:32].rstrip(b"\x00")
    return raw.decode("utf-8", errors="replace")


def decode_revert_reason(data: Any) -> Optional[str]:
    """Extract the reason from an ``Error(string)`` revert payload."""
    if data is None:
        return None
    if isinstance(data, dict):
        data = data.get("data")
    if isinstance(data, str):
        try:
            data = bytes.fromhex(data[2:] if data.startswith("0x") else data)
        except ValueError:
            return None
    if not isinstance(data, (bytes, bytearray)) or not bytes(data).startswith(ERROR_STRING_SELECTOR):
        return None
    try:
        (reason,) = decode_result(["string"], bytes(data)[4:])
    except ValueError:
        return None
    return reason
