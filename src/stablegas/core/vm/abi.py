"""
Call-data helpers using Ethereum ABI encoding.

Contracts talk to each other through encoded call data: a 4-byte selector
(keccak-256 of the function signature) followed by ABI-encoded arguments.
Reverts carry the Solidity ``Error(string)`` payload unless a contract
supplies its own bytes.
"""

from __future__ import annotations

from functools import lru_cache
from typing import Any, Iterable, Optional, Sequence, Tuple

from eth_abi import decode, encode
from eth_abi.exceptions import DecodingError
from eth_utils import is_hex_address

from ..crypto_utils import keccak256

ZERO_ADDRESS = "0x" + "0" * 40

# bytes4(keccak256("Error(string)"))
ERROR_SELECTOR = bytes.fromhex("08c379a0")


@lru_cache(maxsize=None)
def function_selector(signature: str) -> bytes:
    """Return the 4-byte selector for a canonical signature like ``transfer(address,uint256)``."""
    return keccak256(signature.encode())[:4]


@lru_cache(maxsize=None)
def signature_arg_types(signature: str) -> Tuple[str, ...]:
    """Split the argument list out of a canonical signature."""
    start = signature.index("(")
    inner = signature[start + 1:-1]
    if not inner:
        return ()
    return tuple(part.strip() for part in inner.split(","))


def encode_call(signature: str, *args: Any) -> bytes:
    """Build call data for ``signature`` with positional ``args``."""
    arg_types = signature_arg_types(signature)
    if len(arg_types) != len(args):
        raise ValueError(
            f"{signature} takes {len(arg_types)} arguments, got {len(args)}"
        )
    return function_selector(signature) + encode(list(arg_types), list(args))


def decode_arguments(arg_types: Sequence[str], payload: bytes) -> Tuple[Any, ...]:
    """Decode ABI-encoded arguments (call data without the selector)."""
    if not arg_types:
        return ()
    return tuple(decode(list(arg_types), payload))


def encode_return(return_types: Sequence[str], value: Any) -> bytes:
    if not return_types:
        return b""
    if len(return_types) == 1:
        return encode(list(return_types), [value])
    return encode(list(return_types), list(value))


def decode_return(return_types: Sequence[str], data: bytes) -> Any:
    values = decode(list(return_types), data)
    if len(return_types) == 1:
        return values[0]
    return values


def encode_revert_reason(message: str) -> bytes:
    return ERROR_SELECTOR + encode(["string"], [message])


def decode_revert_reason(data: bytes) -> Optional[str]:
    """Return the ``Error(string)`` message in ``data``, or None for custom payloads."""
    if not data or data[:4] != ERROR_SELECTOR:
        return None
    try:
        return decode(["string"], data[4:])[0]
    except (DecodingError, UnicodeDecodeError):
        return None


def interface_id(signatures: Iterable[str]) -> bytes:
    """ERC-165 interface identifier: XOR of all member selectors."""
    value = 0
    for signature in signatures:
        value ^= int.from_bytes(function_selector(signature), "big")
    return value.to_bytes(4, "big")


def normalize_address(address: Optional[str]) -> str:
    """Lowercase an address; the null identity normalizes to the zero address."""
    if not address:
        return ZERO_ADDRESS
    return address.lower()


def is_null_address(address: Optional[str]) -> bool:
    return normalize_address(address) == ZERO_ADDRESS


def is_valid_address(address: Optional[str]) -> bool:
    return bool(address) and is_hex_address(address)
