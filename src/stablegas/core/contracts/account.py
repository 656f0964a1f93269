"""
Delegated-execution smart account.

A SmartAccount acts for exactly one owner identity. It can:
- Execute single calls (all-or-nothing) or batches (per-item isolation)
- Pay a fee in the settlement token through its own transfer path
- Validate relayed UserOperations (replay counter + owner signature)
- Estimate fees in the settlement token from its configured exchange rate

Security features:
- Explicit caller identity on every state-changing operation
- One-time initialization
- Re-entrancy guard shared by all execution paths
- Replay counter consumed once per validated operation
"""

from __future__ import annotations

import logging
from contextlib import contextmanager
from dataclasses import dataclass, field
from typing import Iterator, List, Optional, Sequence

from eth_abi import encode

from ..chain_state import CallResult
from ..crypto_utils import keccak256, owner_address, signature_matches_owner
from ..vm.abi import (
    ZERO_ADDRESS,
    decode_return,
    encode_call,
    encode_revert_reason,
    interface_id,
    is_null_address,
    normalize_address,
)
from ..vm.exceptions import (
    AuthorizationError,
    ContractValidationError,
    InsufficientBalanceError,
    InvalidSignatureError,
    MalformedSignatureError,
    MissingPublicKeyError,
    NonceError,
    ReentrancyError,
    SubCallError,
)
from .base import TRANSIENT, Contract, external
from .fee_converter import FeeConfig, FeeConverter

logger = logging.getLogger(__name__)

SIG_VALIDATION_SUCCESS = 0

ERC165_INTERFACE_ID = bytes.fromhex("01ffc9a7")

ACCOUNT_INTERFACE_SIGNATURES = (
    "execute(address,uint256,bytes)",
    "executeBatch(address[],uint256[],bytes[])",
    "executeFeeTransfer(address,uint256,uint256)",
    "estimateFee()",
    "updateExchangeRate(uint256)",
    "updateSponsorPayee(address)",
    "transferOwnership(address)",
)
ACCOUNT_INTERFACE_ID = interface_id(ACCOUNT_INTERFACE_SIGNATURES)


@dataclass
class Call:
    """One target call inside an operation."""
    target: str
    value: int = 0
    data: bytes = b""


@dataclass
class UserOperation:
    """
    A user's intent, relayed and optionally fee-sponsored.

    The gas fields bound the worst-case native cost the relay may front.
    """

    sender: str
    nonce: int
    calls: List[Call] = field(default_factory=list)
    call_gas_limit: int = 200_000
    verification_gas_limit: int = 100_000
    pre_verification_gas: int = 50_000
    max_fee_per_gas: int = 1_000_000_000  # 1 Gwei
    paymaster: str = ""
    signature: bytes = b""

    def max_gas(self) -> int:
        return self.call_gas_limit + self.verification_gas_limit + self.pre_verification_gas

    def max_cost(self) -> int:
        return self.max_gas() * self.max_fee_per_gas

    def pack(self) -> bytes:
        """ABI-encode every field except the signature."""
        return encode(
            [
                "address", "uint256", "address[]", "uint256[]", "bytes[]",
                "uint256", "uint256", "uint256", "uint256", "address",
            ],
            [
                normalize_address(self.sender),
                self.nonce,
                [normalize_address(c.target) for c in self.calls],
                [c.value for c in self.calls],
                [bytes(c.data) for c in self.calls],
                self.call_gas_limit,
                self.verification_gas_limit,
                self.pre_verification_gas,
                self.max_fee_per_gas,
                normalize_address(self.paymaster),
            ],
        )

    def hash(self, entry_point: str, chain_id: int) -> bytes:
        """
        Get the hash the owner signs.

        Binds the relay address and chain id to prevent cross-relay and
        cross-chain replay.
        """
        return keccak256(
            encode(
                ["bytes32", "address", "uint256"],
                [keccak256(self.pack()), normalize_address(entry_point), chain_id],
            )
        )


@dataclass
class SmartAccount(Contract):
    """
    Single-owner delegated-execution account.

    Deployed uninitialized by the factory and initialized exactly once. The
    owner and the bound entry point may execute; only the owner manages
    configuration and direct fee transfers.
    """

    owner: str = ZERO_ADDRESS
    owner_public_key: str = ""  # 64-byte hex public key for relayed signatures

    # Replay counter
    nonce: int = 0

    fee_config: FeeConfig = field(default_factory=FeeConfig)

    # Bound relay endpoint
    entry_point: str = ZERO_ADDRESS

    _entered: bool = field(default=False, repr=False, compare=False, metadata=TRANSIENT)

    def __post_init__(self) -> None:
        super().__post_init__()
        self.owner = normalize_address(self.owner)
        self.entry_point = normalize_address(self.entry_point)

    @property
    def is_initialized(self) -> bool:
        return not is_null_address(self.owner)

    def clone(self) -> "SmartAccount":
        """New uninitialized account sharing this template's behaviour and relay binding."""
        return type(self)(entry_point=self.entry_point)

    # ==================== Initialization ====================

    def initialize(
        self,
        owner: str,
        fee_config: Optional[FeeConfig] = None,
        owner_public_key: str = "",
    ) -> bool:
        """
        Set the owner once.

        Args:
            owner: The sole authorizing identity
            fee_config: Settlement token, payee and rate supplied by deployment
            owner_public_key: Optional key for relayed signature checks

        Returns:
            True if initialized now, False if it already was (no-op)

        Raises:
            ContractValidationError: If owner is the null identity
        """
        owner_norm = normalize_address(owner)
        if is_null_address(owner_norm):
            raise ContractValidationError("Owner cannot be the zero address")

        if self.is_initialized:
            logger.debug(
                "Account already initialized",
                extra={"event": "account.initialize_skipped", "account": self.address[:10]}
            )
            return False

        if owner_public_key:
            self._require_key_matches(owner_norm, owner_public_key)

        self.owner = owner_norm
        self.owner_public_key = owner_public_key
        if fee_config is not None:
            self.fee_config = FeeConfig(**fee_config.to_dict())

        self._emit("AccountInitialized", owner=owner_norm, entry_point=self.entry_point)
        logger.info(
            "Account initialized",
            extra={
                "event": "account.initialized",
                "account": self.address[:10],
                "owner": owner_norm[:10],
            }
        )
        return True

    # ==================== Execution ====================

    @external("execute(address,uint256,bytes)", returns=("bytes",))
    def execute(self, caller: str, target: str, value: int, data: bytes) -> bytes:
        """
        Perform exactly one call on behalf of the owner.

        An ExecutionPerformed event is recorded whether or not the call
        succeeds. On failure the call's effects are rolled back and its
        revert payload is raised unchanged.

        Returns:
            Return data of the call

        Raises:
            AuthorizationError: If caller is neither owner nor entry point
            ContractValidationError: If target is the zero address
            SubCallError: If the call fails
            ReentrancyError: If an execution is already in progress
        """
        self._require_owner_or_entry_point(caller)
        target_norm = normalize_address(target)
        if is_null_address(target_norm):
            raise ContractValidationError("Target cannot be the zero address")

        with self._non_reentrant():
            result = self._call(target_norm, value, data)
            self._emit(
                "ExecutionPerformed",
                target=target_norm,
                value=value,
                payload=bytes(data),
                success=result.success,
            )

        if not result.success:
            logger.warning(
                "Account call failed",
                extra={
                    "event": "account.execute_failed",
                    "account": self.address[:10],
                    "target": target_norm[:10],
                    "value": value,
                }
            )
            raise SubCallError(result.return_data, target=target_norm)

        logger.debug(
            "Account executed call",
            extra={
                "event": "account.execute",
                "account": self.address[:10],
                "target": target_norm[:10],
                "value": value,
            }
        )
        return result.return_data

    def execute_batch(
        self,
        caller: str,
        targets: Sequence[str],
        values: Sequence[int],
        datas: Sequence[bytes],
    ) -> List[CallResult]:
        """
        Execute multiple calls, isolating each one.

        Array shape and null targets are checked before anything runs. After
        that, a failing item is recorded and the remaining items still run.

        Returns:
            One CallResult per item, in order
        """
        self._require_owner_or_entry_point(caller)

        if len(targets) != len(values) or len(targets) != len(datas):
            raise ContractValidationError("Batch arrays length mismatch")
        if not targets:
            raise ContractValidationError("Batch cannot be empty")

        normalized = [normalize_address(t) for t in targets]
        for index, target in enumerate(normalized):
            if is_null_address(target):
                raise ContractValidationError(
                    f"Batch target {index} cannot be the zero address",
                    details={"index": index},
                )

        results: List[CallResult] = []
        with self._non_reentrant():
            for target, value, data in zip(normalized, values, datas):
                result = self._call(target, value, data)
                self._emit(
                    "ExecutionPerformed",
                    target=target,
                    value=value,
                    payload=bytes(data),
                    success=result.success,
                )
                results.append(result)

        failed = sum(1 for r in results if not r.success)
        logger.info(
            "Account executed batch",
            extra={
                "event": "account.execute_batch",
                "account": self.address[:10],
                "items": len(results),
                "failed": failed,
            }
        )
        return results

    @external("executeBatch(address[],uint256[],bytes[])", returns=("bool[]", "bytes[]"))
    def _execute_batch_encoded(self, caller, targets, values, datas):
        results = self.execute_batch(caller, list(targets), list(values), list(datas))
        return [r.success for r in results], [r.return_data for r in results]

    # ==================== Fee Payment ====================

    @external("executeFeeTransfer(address,uint256,uint256)", returns=("bool",))
    def execute_fee_transfer(self, caller: str, recipient: str, amount: int, fee_amount: int) -> bool:
        """
        Transfer settlement tokens and pay a fee to the sponsor payee.

        The fee leg is skipped when the fee is zero, no payee is configured,
        or the payee is the owner. Both legs succeed together or not at all.

        Raises:
            AuthorizationError: If caller is not the owner
            ContractValidationError: If recipient is null or amount is zero
            InsufficientBalanceError: If balance < amount + fee_amount
            SubCallError: If a token transfer fails
        """
        self._require_owner(caller)
        recipient_norm = normalize_address(recipient)
        if is_null_address(recipient_norm):
            raise ContractValidationError("Recipient cannot be the zero address")
        if amount <= 0:
            raise ContractValidationError("Amount must be greater than zero")
        if fee_amount < 0:
            raise ContractValidationError("Fee amount cannot be negative")

        token = self.fee_config.settlement_token
        if is_null_address(token):
            raise ContractValidationError("Settlement token not configured")

        with self._non_reentrant():
            required = amount + fee_amount
            balance = self._token_balance(token)
            if balance < required:
                logger.warning(
                    "Fee transfer rejected: insufficient balance",
                    extra={
                        "event": "account.fee_transfer_rejected",
                        "account": self.address[:10],
                        "required": required,
                        "balance": balance,
                    }
                )
                raise InsufficientBalanceError(
                    f"Insufficient token balance ({balance} < {required})",
                    required=required,
                    available=balance,
                )

            payee = self.fee_config.sponsor_payee
            charge_fee = fee_amount > 0 and not is_null_address(payee) and payee != self.owner

            with self._require_chain().atomic():
                self._token_transfer(token, recipient_norm, amount)
                if charge_fee:
                    self._token_transfer(token, payee, fee_amount)

            self._emit(
                "FeeTransferPerformed",
                recipient=recipient_norm,
                amount=amount,
                fee_amount=fee_amount if charge_fee else 0,
            )

        logger.info(
            "Fee transfer performed",
            extra={
                "event": "account.fee_transfer",
                "account": self.address[:10],
                "recipient": recipient_norm[:10],
                "amount": amount,
                "fee_amount": fee_amount if charge_fee else 0,
            }
        )
        return True

    @external("estimateFee()", returns=("uint256",), view=True)
    def estimate_fee(self) -> int:
        """
        Reference fee in settlement-token units; an estimate, not a quote.

        Returns 0 while no exchange rate is configured.
        """
        if self.fee_config.exchange_rate == 0:
            return 0
        return FeeConverter(self.fee_config.exchange_rate).estimate()

    # ==================== Configuration ====================

    @external("updateExchangeRate(uint256)", returns=("bool",))
    def update_exchange_rate(self, caller: str, new_rate: int) -> bool:
        self._require_owner(caller)
        if new_rate <= 0:
            raise ContractValidationError("Exchange rate must be positive")

        old_rate = self.fee_config.exchange_rate
        self.fee_config.exchange_rate = new_rate
        self._emit("ExchangeRateUpdated", old_rate=old_rate, new_rate=new_rate)
        return True

    @external("updateSponsorPayee(address)", returns=("bool",))
    def update_sponsor_payee(self, caller: str, new_payee: str) -> bool:
        self._require_owner(caller)
        payee_norm = normalize_address(new_payee)
        if is_null_address(payee_norm):
            raise ContractValidationError("Sponsor payee cannot be the zero address")

        old_payee = self.fee_config.sponsor_payee
        self.fee_config.sponsor_payee = payee_norm
        self._emit("SponsorPayeeUpdated", old_payee=old_payee, new_payee=payee_norm)
        return True

    @external("transferOwnership(address)", returns=("bool",))
    def transfer_ownership(self, caller: str, new_owner: str) -> bool:
        """
        Hand the account to a new owner.

        A registered public key belongs to the previous owner and is dropped.
        """
        self._require_owner(caller)
        new_owner_norm = normalize_address(new_owner)
        if is_null_address(new_owner_norm):
            raise ContractValidationError("New owner cannot be the zero address")
        if new_owner_norm == self.owner:
            raise ContractValidationError("New owner is the current owner")

        previous = self.owner
        self.owner = new_owner_norm
        self.owner_public_key = ""
        self._emit("OwnershipTransferred", previous_owner=previous, new_owner=new_owner_norm)

        logger.info(
            "Account ownership transferred",
            extra={
                "event": "account.ownership_transferred",
                "account": self.address[:10],
                "previous_owner": previous[:10],
                "new_owner": new_owner_norm[:10],
            }
        )
        return True

    def register_owner_key(self, caller: str, public_key: str) -> bool:
        """Register the owner's public key for relayed operations (owner only)."""
        self._require_owner(caller)
        self._require_key_matches(self.owner, public_key)
        self.owner_public_key = public_key
        return True

    # ==================== Relay Validation ====================

    def validate_user_op(self, caller: str, user_op: UserOperation, user_op_hash: bytes) -> int:
        """
        Check a relayed operation and consume its nonce.

        Raises:
            AuthorizationError: If caller is not the bound entry point
            NonceError: If the nonce does not equal the replay counter
            SignatureError: If the owner signature does not verify
        """
        self._require_entry_point(caller)
        if normalize_address(user_op.sender) != self.address:
            raise ContractValidationError("Operation sender is not this account")

        if user_op.nonce != self.nonce:
            logger.warning(
                "UserOp rejected: nonce mismatch",
                extra={
                    "event": "account.nonce_mismatch",
                    "account": self.address[:10],
                    "expected": self.nonce,
                    "got": user_op.nonce,
                }
            )
            raise NonceError(f"Invalid nonce: expected {self.nonce}, got {user_op.nonce}")

        self._validate_signature(user_op_hash, user_op.signature)
        self.nonce += 1
        return SIG_VALIDATION_SUCCESS

    def get_nonce(self) -> int:
        return self.nonce

    @external("supportsInterface(bytes4)", returns=("bool",), view=True)
    def supports_interface(self, interface_id: bytes) -> bool:
        return bytes(interface_id) in (ACCOUNT_INTERFACE_ID, ERC165_INTERFACE_ID)

    # ==================== Internal ====================

    def _validate_signature(self, hash_: bytes, signature: bytes) -> None:
        """
        Verify the owner's ECDSA signature over the operation hash.

        Raises:
            MissingPublicKeyError: If no owner key is registered
            MalformedSignatureError: If the signature is not 64 bytes
            InvalidSignatureError: If verification fails
        """
        if not self.owner_public_key:
            raise MissingPublicKeyError(f"Account {self.address[:16]} has no public key registered")
        if not signature or len(signature) != 64:
            raise MalformedSignatureError(
                f"Signature must be 64 bytes, got {len(signature) if signature else 0} bytes"
            )

        try:
            is_valid = signature_matches_owner(self.owner_public_key, bytes(hash_), bytes(signature))
        except ValueError as e:
            raise MalformedSignatureError(f"Invalid signature format: {e}") from e

        if not is_valid:
            logger.warning(
                "Signature validation failed: invalid signature",
                extra={
                    "event": "account.signature_validation_failed",
                    "account": self.address[:16],
                    "reason": "ecdsa_verification_failed",
                }
            )
            raise InvalidSignatureError(f"Signature does not match owner of account {self.address[:16]}")

    def _require_key_matches(self, owner: str, public_key: str) -> None:
        try:
            derived = owner_address(public_key)
        except ValueError as e:
            raise ContractValidationError(f"Invalid public key: {e}") from e
        if derived != owner:
            raise ContractValidationError("Public key does not belong to the owner")

    def _token_balance(self, token: str) -> int:
        result = self._call(token, 0, encode_call("balanceOf(address)", self.address))
        if not result.success:
            raise SubCallError(result.return_data, target=token)
        if not result.return_data:
            raise ContractValidationError("Settlement token returned no data")
        return decode_return(("uint256",), result.return_data)

    def _token_transfer(self, token: str, to: str, amount: int) -> None:
        result = self._call(token, 0, encode_call("transfer(address,uint256)", to, amount))
        if not result.success:
            raise SubCallError(result.return_data, target=token)
        if result.return_data and not decode_return(("bool",), result.return_data):
            raise SubCallError(encode_revert_reason("Token transfer returned false"), target=token)

    @contextmanager
    def _non_reentrant(self) -> Iterator[None]:
        if self._entered:
            logger.warning(
                "Re-entrant call rejected",
                extra={"event": "account.reentrancy_rejected", "account": self.address[:10]}
            )
            raise ReentrancyError("Account operation already in progress")
        self._entered = True
        try:
            yield
        finally:
            self._entered = False

    def _require_owner(self, caller: str) -> None:
        if not self.is_initialized or normalize_address(caller) != self.owner:
            raise AuthorizationError("Caller is not owner")

    def _require_entry_point(self, caller: str) -> None:
        if is_null_address(self.entry_point) or normalize_address(caller) != self.entry_point:
            raise AuthorizationError("Caller is not entry point")

    def _require_owner_or_entry_point(self, caller: str) -> None:
        caller_norm = normalize_address(caller)
        if self.is_initialized and caller_norm == self.owner:
            return
        if not is_null_address(self.entry_point) and caller_norm == self.entry_point:
            return
        raise AuthorizationError("Caller is not owner or entry point")
