"""Execution primitives shared by all contracts: error taxonomy and call-data encoding."""

from .abi import (
    ZERO_ADDRESS,
    decode_revert_reason,
    encode_call,
    encode_revert_reason,
    function_selector,
    interface_id,
    is_null_address,
    normalize_address,
)
from .exceptions import (
    AddressOccupiedError,
    AuthorizationError,
    BelowMinimumBalanceError,
    ContractValidationError,
    InsufficientAllowanceError,
    InsufficientBalanceError,
    InsufficientFundsError,
    InvalidSignatureError,
    InvalidTemplateError,
    MalformedSignatureError,
    MissingPublicKeyError,
    NonceError,
    ReentrancyError,
    SettlementError,
    SignatureError,
    SubCallError,
    VMExecutionError,
)

__all__ = [
    "ZERO_ADDRESS",
    "decode_revert_reason",
    "encode_call",
    "encode_revert_reason",
    "function_selector",
    "interface_id",
    "is_null_address",
    "normalize_address",
    "VMExecutionError",
    "AuthorizationError",
    "ContractValidationError",
    "AddressOccupiedError",
    "InvalidTemplateError",
    "InsufficientFundsError",
    "InsufficientBalanceError",
    "InsufficientAllowanceError",
    "BelowMinimumBalanceError",
    "SubCallError",
    "ReentrancyError",
    "SettlementError",
    "SignatureError",
    "MalformedSignatureError",
    "InvalidSignatureError",
    "MissingPublicKeyError",
    "NonceError",
]
