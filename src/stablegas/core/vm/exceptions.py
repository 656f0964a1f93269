"""
Contract execution exception hierarchy.

Every failure raised by a contract derives from VMExecutionError. Each error
carries a revert payload so that a caller observing a failed sub-call sees
exactly what the callee produced, the same way an EVM caller sees returndata
from a reverted frame.
"""

from __future__ import annotations

from typing import Any, Dict, Optional

from .abi import decode_revert_reason, encode_revert_reason


class VMExecutionError(Exception):
    """Base exception for contract execution failures.

    Attributes:
        message: Human-readable error description
        details: Additional context about the error
        revert_data: Payload surfaced to the calling frame
    """

    def __init__(
        self,
        message: str,
        details: Optional[Dict[str, Any]] = None,
        revert_data: Optional[bytes] = None,
    ) -> None:
        super().__init__(message)
        self.message = message
        self.details = details or {}
        self.revert_data = (
            revert_data if revert_data is not None else encode_revert_reason(message)
        )


# ==================== Authorization Errors ====================


class AuthorizationError(VMExecutionError):
    """Raised when the caller lacks the identity required for an operation."""
    pass


# ==================== Validation Errors ====================


class ContractValidationError(VMExecutionError):
    """Raised on null addresses, zero amounts, bad array shapes or out-of-bound policy values."""
    pass


class AddressOccupiedError(ContractValidationError):
    """Raised when deploying to an address that already holds a contract."""
    pass


class InvalidTemplateError(ContractValidationError):
    """Raised when an account template does not expose the account interface."""
    pass


# ==================== Insufficiency Errors ====================


class InsufficientFundsError(VMExecutionError):
    """Base class for balance and allowance shortfalls."""

    def __init__(self, message: str, required: int = 0, available: int = 0, **kwargs: Any) -> None:
        super().__init__(message, **kwargs)
        self.required = required
        self.available = available


class InsufficientBalanceError(InsufficientFundsError):
    """Raised when a balance is below the amount an operation needs."""
    pass


class InsufficientAllowanceError(InsufficientFundsError):
    """Raised when an approved allowance is below the amount an operation needs."""
    pass


class BelowMinimumBalanceError(InsufficientFundsError):
    """Raised when a balance is below a sponsor's minimum."""
    pass


# ==================== Call Errors ====================


class SubCallError(VMExecutionError):
    """Raised when an invoked external call fails.

    The revert payload of the failed callee is carried unchanged so that it can
    bubble through any number of frames.
    """

    def __init__(self, revert_data: bytes, target: str = "", **kwargs: Any) -> None:
        reason = decode_revert_reason(revert_data)
        message = reason if reason is not None else "call reverted"
        super().__init__(message, revert_data=revert_data, **kwargs)
        self.target = target


class ReentrancyError(VMExecutionError):
    """Raised when a guarded operation is entered while already in progress."""
    pass


class SettlementError(VMExecutionError):
    """Raised when a sponsor cannot collect the settlement amount."""
    pass


# ==================== Signature Errors ====================


class SignatureError(VMExecutionError):
    """Base exception for signature verification failures."""
    pass


class MalformedSignatureError(SignatureError):
    """
    Raised when signature format is invalid.

    The signature data itself is malformed (wrong length, invalid encoding,
    missing data). This is never silently ignored.
    """
    pass


class InvalidSignatureError(SignatureError):
    """Raised when a well-formed signature was not produced by the owner key."""
    pass


class MissingPublicKeyError(SignatureError):
    """Raised when no owner public key is registered for verification."""
    pass


class NonceError(VMExecutionError):
    """Raised when an operation nonce does not match the replay counter."""
    pass
