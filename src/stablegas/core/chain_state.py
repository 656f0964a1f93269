"""
In-memory execution substrate.

Holds native-currency balances and deployed contracts, and routes calls
between them. Every routed call is atomic: a snapshot of all contract storage
and native balances is taken before dispatch and restored if the callee
raises, so a failed sub-call leaves no partial state behind. The substrate is
strictly sequential; there is no concurrent access to guard against.
"""

from __future__ import annotations

import logging
from contextlib import contextmanager
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any, Dict, Iterator, Optional

from .vm.abi import encode_revert_reason, is_null_address, normalize_address
from .vm.exceptions import (
    AddressOccupiedError,
    ContractValidationError,
    InsufficientBalanceError,
    VMExecutionError,
)

if TYPE_CHECKING:
    from .contracts.base import Contract

logger = logging.getLogger(__name__)

# Matches the EVM call stack limit
MAX_CALL_DEPTH = 1024


@dataclass
class CallResult:
    """Outcome of one routed call."""
    success: bool
    return_data: bytes = b""


@dataclass
class StateSnapshot:
    """Point-in-time copy of everything a call can mutate."""
    native_balances: Dict[str, int]
    contracts: Dict[str, "Contract"]
    contract_states: Dict[str, Dict[str, Any]]


@dataclass
class ChainState:
    """
    Ledger of native balances and deployed contracts.

    Contracts reference each other by address and reach each other only
    through ``call``, which gives each sub-call its own rollback scope.
    """

    chain_id: int = 1
    native_balances: Dict[str, int] = field(default_factory=dict)
    contracts: Dict[str, "Contract"] = field(default_factory=dict)
    max_call_depth: int = MAX_CALL_DEPTH
    _depth: int = field(default=0, repr=False)

    # ==================== Deployment ====================

    def deploy(self, contract: "Contract", address: Optional[str] = None) -> "Contract":
        """
        Place a contract at an address.

        Raises:
            ContractValidationError: If the address is null
            AddressOccupiedError: If a contract already lives at the address
        """
        target = normalize_address(address or contract.address)
        if is_null_address(target):
            raise ContractValidationError("Cannot deploy to the zero address")
        if target in self.contracts:
            raise AddressOccupiedError(
                f"Address {target} already holds a contract",
                details={"address": target},
            )

        contract.address = target
        contract.chain = self
        self.contracts[target] = contract

        logger.debug(
            "Contract deployed",
            extra={
                "event": "chain.deploy",
                "address": target[:10],
                "contract_type": type(contract).__name__,
            }
        )
        return contract

    def get_contract(self, address: str) -> Optional["Contract"]:
        return self.contracts.get(normalize_address(address))

    def has_code(self, address: str) -> bool:
        return normalize_address(address) in self.contracts

    # ==================== Native Currency ====================

    def balance_of(self, address: str) -> int:
        return self.native_balances.get(normalize_address(address), 0)

    def fund(self, address: str, amount: int) -> None:
        """Credit native currency out of thin air (genesis allocation / faucet)."""
        if amount < 0:
            raise ContractValidationError("Funding amount cannot be negative")
        key = normalize_address(address)
        self.native_balances[key] = self.native_balances.get(key, 0) + amount

    def transfer_native(self, sender: str, recipient: str, amount: int) -> None:
        if amount < 0:
            raise ContractValidationError("Transfer amount cannot be negative")
        sender_key = normalize_address(sender)
        recipient_key = normalize_address(recipient)
        available = self.native_balances.get(sender_key, 0)
        if available < amount:
            raise InsufficientBalanceError(
                f"Native balance too low ({available} < {amount})",
                required=amount,
                available=available,
            )
        self.native_balances[sender_key] = available - amount
        self.native_balances[recipient_key] = self.native_balances.get(recipient_key, 0) + amount

    # ==================== Atomicity ====================

    def snapshot(self) -> StateSnapshot:
        return StateSnapshot(
            native_balances=dict(self.native_balances),
            contracts=dict(self.contracts),
            contract_states={
                address: contract.snapshot_state()
                for address, contract in self.contracts.items()
            },
        )

    def restore(self, snapshot: StateSnapshot) -> None:
        self.native_balances = dict(snapshot.native_balances)
        self.contracts = dict(snapshot.contracts)
        for address, state in snapshot.contract_states.items():
            self.contracts[address].restore_state(state)

    @contextmanager
    def atomic(self) -> Iterator[None]:
        """Run a block all-or-nothing: any exception restores the prior state."""
        snapshot = self.snapshot()
        try:
            yield
        except BaseException:
            self.restore(snapshot)
            raise

    # ==================== Calls ====================

    def call(self, caller: str, target: str, value: int = 0, data: bytes = b"") -> CallResult:
        """
        Route a call from ``caller`` to ``target``.

        Contract failures are turned into a failed CallResult carrying the
        callee's revert payload, with all effects of the call rolled back.
        Calls to addresses without code only move value.
        """
        target_key = normalize_address(target)
        if self._depth >= self.max_call_depth:
            return CallResult(False, encode_revert_reason("Max call depth exceeded"))

        snapshot = self.snapshot()
        self._depth += 1
        try:
            if value:
                self.transfer_native(caller, target_key, value)
            contract = self.contracts.get(target_key)
            return_data = contract.handle_call(caller, value, data) if contract else b""
        except VMExecutionError as e:
            self.restore(snapshot)
            logger.debug(
                "Call reverted",
                extra={
                    "event": "chain.call_reverted",
                    "caller": normalize_address(caller)[:10],
                    "target": target_key[:10],
                    "error": e.message,
                }
            )
            return CallResult(False, e.revert_data)
        except Exception:
            self.restore(snapshot)
            raise
        finally:
            self._depth -= 1

        return CallResult(True, return_data)
