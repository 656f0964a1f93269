"""
Contract base class.

Provides what every deployed contract shares: an address, an append-only
event log, state snapshots for call rollback, and selector-based dispatch of
encoded call data to methods marked with ``@external``.
"""

from __future__ import annotations

import copy
import time
from dataclasses import dataclass, field, fields
from typing import TYPE_CHECKING, Any, ClassVar, Dict, List, Optional, Tuple

from eth_abi.exceptions import DecodingError

from ..crypto_utils import keccak256
from ..vm.abi import (
    decode_arguments,
    encode_return,
    function_selector,
    signature_arg_types,
)
from ..vm.exceptions import ContractValidationError, VMExecutionError

if TYPE_CHECKING:
    from ..chain_state import CallResult, ChainState

# Field metadata flag: excluded from call rollback snapshots
TRANSIENT = {"snapshot": False}


@dataclass(frozen=True)
class AbiFunction:
    """ABI description attached to an externally callable method."""
    signature: str
    returns: Tuple[str, ...] = ()
    view: bool = False

    @property
    def arg_types(self) -> Tuple[str, ...]:
        return signature_arg_types(self.signature)


def external(signature: str, returns: Tuple[str, ...] = (), view: bool = False):
    """
    Expose a method to encoded calls.

    Non-view methods receive the calling address as their first argument;
    view methods receive only the decoded arguments.
    """
    def decorator(fn):
        fn.__abi__ = AbiFunction(signature, tuple(returns), view)
        return fn
    return decorator


@dataclass
class ContractEvent:
    """Represents an emitted contract event."""

    name: str
    args: Dict[str, Any] = field(default_factory=dict)
    timestamp: float = field(default_factory=time.time)


@dataclass
class Contract:
    """Base for everything that can be deployed on a ChainState."""

    address: str = ""
    chain: Optional["ChainState"] = field(default=None, repr=False, compare=False, metadata=TRANSIENT)
    events: List[ContractEvent] = field(default_factory=list, repr=False, compare=False)

    _dispatch: ClassVar[Dict[bytes, Tuple[str, AbiFunction]]] = {}

    def __init_subclass__(cls, **kwargs: Any) -> None:
        super().__init_subclass__(**kwargs)
        table: Dict[bytes, Tuple[str, AbiFunction]] = {}
        for klass in reversed(cls.__mro__):
            for name, member in vars(klass).items():
                abi = getattr(member, "__abi__", None)
                if isinstance(abi, AbiFunction):
                    table[function_selector(abi.signature)] = (name, abi)
        cls._dispatch = table

    def __post_init__(self) -> None:
        if not self.address:
            addr_hash = keccak256(
                f"{type(self).__name__}:{id(self)}:{time.time_ns()}".encode()
            )
            self.address = f"0x{addr_hash[-20:].hex()}"
        self.address = self.address.lower()

    # ==================== Dispatch ====================

    def handle_call(self, caller: str, value: int, data: bytes) -> bytes:
        """
        Decode call data and invoke the matching external method.

        Empty call data is a plain value transfer.

        Raises:
            VMExecutionError: On unknown selectors, undecodable arguments, or
                any failure inside the invoked method
        """
        if not data:
            self.receive(caller, value)
            return b""
        if len(data) < 4:
            raise ContractValidationError("Call data shorter than a selector")

        entry = self._dispatch.get(bytes(data[:4]))
        if entry is None:
            raise VMExecutionError(f"Unknown function selector 0x{bytes(data[:4]).hex()}")

        name, abi = entry
        try:
            args = decode_arguments(abi.arg_types, bytes(data[4:]))
        except DecodingError as e:
            raise ContractValidationError(f"Malformed arguments for {abi.signature}: {e}") from e

        method = getattr(self, name)
        result = method(*args) if abi.view else method(caller, *args)
        return encode_return(abi.returns, result)

    def receive(self, caller: str, value: int) -> None:
        """Accept plain value transfers."""

    def supports_interface(self, interface_id: bytes) -> bool:
        return False

    # ==================== Snapshots ====================

    def snapshot_state(self) -> Dict[str, Any]:
        return {
            f.name: copy.deepcopy(getattr(self, f.name))
            for f in fields(self)
            if f.metadata.get("snapshot", True)
        }

    def restore_state(self, state: Dict[str, Any]) -> None:
        for name, value in state.items():
            setattr(self, name, copy.deepcopy(value))

    # ==================== Helpers ====================

    def _emit(self, name: str, **args: Any) -> ContractEvent:
        event = ContractEvent(name=name, args=args)
        self.events.append(event)
        return event

    def _require_chain(self) -> "ChainState":
        if self.chain is None:
            raise VMExecutionError(f"Contract {self.address[:10]} is not deployed")
        return self.chain

    def _call(self, target: str, value: int = 0, data: bytes = b"") -> "CallResult":
        """Call another contract with this contract as the caller."""
        return self._require_chain().call(self.address, target, value, data)

    def events_named(self, name: str) -> List[ContractEvent]:
        return [event for event in self.events if event.name == name]
