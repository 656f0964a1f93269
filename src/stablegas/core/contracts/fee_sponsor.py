"""
Token fee sponsor (ERC-4337 style paymaster).

Fronts the native cost of relayed operations and recoups it in the
settlement token. Works in two phases driven by the trusted relay:

1. validate: before execution, convert the worst-case cost to tokens and
   check the sender can cover it (balance, minimum balance, allowance).
   Nothing moves.
2. settle: after execution, convert the actual cost and pull
   min(actual, validated) from the sender. Skipped when the operation
   reverted; the sponsor absorbs that cost.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import TYPE_CHECKING, Optional

from ..vm.abi import (
    ZERO_ADDRESS,
    decode_return,
    encode_call,
    encode_revert_reason,
    is_null_address,
    normalize_address,
)
from ..vm.exceptions import (
    AuthorizationError,
    BelowMinimumBalanceError,
    ContractValidationError,
    InsufficientAllowanceError,
    InsufficientBalanceError,
    SettlementError,
    SubCallError,
)
from .base import Contract, external
from .fee_converter import MAX_MARKUP_BPS, convert

if TYPE_CHECKING:
    from ..chain_state import CallResult

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class SponsorContext:
    """What validate hands the relay for settlement."""
    sender: str
    required_amount: int
    max_cost: int


@dataclass
class FeeSponsor(Contract):
    """
    Sponsor that is reimbursed in a single settlement token.

    Policy (rate, markup, minimum balance) is owned by ``owner``; the two
    protocol phases may only be driven by ``entry_point``.
    """

    owner: str = ZERO_ADDRESS
    entry_point: str = ZERO_ADDRESS
    settlement_token: str = ZERO_ADDRESS

    # Token units per native unit, scaled by 10**18
    exchange_rate: int = 0
    markup_bps: int = 0
    minimum_balance: int = 0

    # Tokens collected through settlement and not yet withdrawn
    held_balance: int = 0

    # Statistics
    total_sponsored: int = 0
    total_charged: int = 0

    def __post_init__(self) -> None:
        super().__post_init__()
        self.owner = normalize_address(self.owner)
        self.entry_point = normalize_address(self.entry_point)
        self.settlement_token = normalize_address(self.settlement_token)
        if self.exchange_rate < 0:
            raise ContractValidationError("Exchange rate cannot be negative")
        if self.markup_bps < 0 or self.markup_bps > MAX_MARKUP_BPS:
            raise ContractValidationError(f"Markup cannot exceed {MAX_MARKUP_BPS} basis points")
        if self.minimum_balance < 0:
            raise ContractValidationError("Minimum balance cannot be negative")

    # ==================== Conversion ====================

    @external("calculateAmount(uint256)", returns=("uint256",), view=True)
    def calculate_amount(self, cost: int) -> int:
        """Token amount charged for a native cost, markup included."""
        return convert(cost, self.exchange_rate, self.markup_bps)

    # ==================== Protocol Phases ====================

    def validate(self, caller: str, sender: str, max_cost: int) -> SponsorContext:
        """
        Agree to sponsor an operation with worst-case cost ``max_cost``.

        Args:
            caller: Must be the entry point
            sender: Account that will be charged
            max_cost: Worst-case native cost

        Returns:
            Context to pass back to settle

        Raises:
            InsufficientBalanceError: Balance below the required amount
            BelowMinimumBalanceError: Balance below the sponsor minimum
            InsufficientAllowanceError: Allowance below the required amount
        """
        self._require_entry_point(caller)
        sender_norm = normalize_address(sender)
        if is_null_address(sender_norm):
            raise ContractValidationError("Sender cannot be the zero address")

        required = self.calculate_amount(max_cost)
        balance = self._token_view("balanceOf(address)", sender_norm)

        if balance < required:
            self._log_rejection(sender_norm, "insufficient_balance", required, balance)
            raise InsufficientBalanceError(
                f"Token balance too low for sponsorship ({balance} < {required})",
                required=required,
                available=balance,
            )
        if balance < self.minimum_balance:
            self._log_rejection(sender_norm, "below_minimum_balance", self.minimum_balance, balance)
            raise BelowMinimumBalanceError(
                f"Token balance below sponsor minimum ({balance} < {self.minimum_balance})",
                required=self.minimum_balance,
                available=balance,
            )

        allowance = self._token_view("allowance(address,address)", sender_norm, self.address)
        if allowance < required:
            self._log_rejection(sender_norm, "insufficient_allowance", required, allowance)
            raise InsufficientAllowanceError(
                f"Token allowance too low for sponsorship ({allowance} < {required})",
                required=required,
                available=allowance,
            )

        logger.debug(
            "Sponsor validated operation",
            extra={
                "event": "sponsor.validate",
                "sender": sender_norm[:10],
                "max_cost": max_cost,
                "required_amount": required,
            }
        )
        return SponsorContext(sender=sender_norm, required_amount=required, max_cost=max_cost)

    def settle(self, caller: str, context: SponsorContext, actual_cost: int, reverted: bool) -> None:
        """
        Charge the sender for the actual cost.

        Never charges more than was validated. When the operation reverted
        nothing is charged.

        Raises:
            SettlementError: If the token pull fails; the sponsor keeps the loss
        """
        self._require_entry_point(caller)

        if reverted:
            self.total_sponsored += 1
            logger.info(
                "Settlement skipped: operation reverted",
                extra={
                    "event": "sponsor.settle_skipped",
                    "sender": context.sender[:10],
                    "actual_cost": actual_cost,
                }
            )
            return

        amount = min(self.calculate_amount(actual_cost), context.required_amount)
        if amount == 0:
            self.total_sponsored += 1
            return

        result = self._call(
            self.settlement_token,
            0,
            encode_call("transferFrom(address,address,uint256)", context.sender, self.address, amount),
        )
        revert_data = self._transfer_failure(result)
        if revert_data is not None:
            logger.error(
                "Settlement failed: token pull rejected",
                extra={
                    "event": "sponsor.settle_failed",
                    "sender": context.sender[:10],
                    "amount": amount,
                }
            )
            error = SubCallError(revert_data, target=self.settlement_token)
            raise SettlementError(
                f"Could not collect {amount} from {context.sender}: {error.message}",
                details={"sender": context.sender, "amount": amount},
                revert_data=revert_data,
            )

        self.held_balance += amount
        self.total_sponsored += 1
        self.total_charged += amount
        self._emit("FeeCharged", sender=context.sender, amount=amount)

        logger.info(
            "Sponsor charged fee",
            extra={
                "event": "sponsor.fee_charged",
                "sender": context.sender[:10],
                "actual_cost": actual_cost,
                "amount": amount,
            }
        )

    # ==================== Administration ====================

    @external("setExchangeRate(uint256)", returns=("bool",))
    def set_exchange_rate(self, caller: str, new_rate: int) -> bool:
        self._require_owner(caller)
        if new_rate <= 0:
            raise ContractValidationError("Exchange rate must be positive")

        old_rate = self.exchange_rate
        self.exchange_rate = new_rate
        self._emit("ExchangeRateUpdated", old_rate=old_rate, new_rate=new_rate)
        logger.info(
            "Sponsor exchange rate updated",
            extra={"event": "sponsor.rate_updated", "old_rate": old_rate, "new_rate": new_rate}
        )
        return True

    @external("setMarkup(uint256)", returns=("bool",))
    def set_markup(self, caller: str, markup_bps: int) -> bool:
        self._require_owner(caller)
        if markup_bps < 0 or markup_bps > MAX_MARKUP_BPS:
            raise ContractValidationError(f"Markup cannot exceed {MAX_MARKUP_BPS} basis points")

        old_markup = self.markup_bps
        self.markup_bps = markup_bps
        self._emit("MarkupUpdated", old_markup=old_markup, new_markup=markup_bps)
        return True

    @external("setMinimumBalance(uint256)", returns=("bool",))
    def set_minimum_balance(self, caller: str, minimum_balance: int) -> bool:
        self._require_owner(caller)
        if minimum_balance < 0:
            raise ContractValidationError("Minimum balance cannot be negative")

        old_minimum = self.minimum_balance
        self.minimum_balance = minimum_balance
        self._emit("MinimumBalanceUpdated", old_minimum=old_minimum, new_minimum=minimum_balance)
        return True

    @external("withdraw(address,uint256)", returns=("bool",))
    def withdraw(self, caller: str, to: str, amount: int) -> bool:
        """Send collected tokens to ``to`` (owner only)."""
        self._require_owner(caller)
        to_norm = normalize_address(to)
        if is_null_address(to_norm):
            raise ContractValidationError("Withdraw recipient cannot be the zero address")
        if amount <= 0:
            raise ContractValidationError("Withdraw amount must be greater than zero")
        if amount > self.held_balance:
            raise InsufficientBalanceError(
                f"Insufficient held balance ({self.held_balance} < {amount})",
                required=amount,
                available=self.held_balance,
            )

        result = self._call(
            self.settlement_token, 0, encode_call("transfer(address,uint256)", to_norm, amount)
        )
        revert_data = self._transfer_failure(result)
        if revert_data is not None:
            raise SubCallError(revert_data, target=self.settlement_token)

        self.held_balance -= amount
        self._emit("Withdrawn", to=to_norm, amount=amount)
        logger.info(
            "Sponsor withdrawal",
            extra={"event": "sponsor.withdraw", "to": to_norm[:10], "amount": amount}
        )
        return True

    # ==================== Internal ====================

    @staticmethod
    def _transfer_failure(result: CallResult) -> Optional[bytes]:
        """Revert data for a token transfer that reverted or returned false, else None."""
        if not result.success:
            return result.return_data
        if result.return_data and not decode_return(("bool",), result.return_data):
            return encode_revert_reason("Token transfer returned false")
        return None

    def _token_view(self, signature: str, *args: str) -> int:
        if is_null_address(self.settlement_token):
            raise ContractValidationError("Settlement token not configured")
        result = self._call(self.settlement_token, 0, encode_call(signature, *args))
        if not result.success:
            raise SubCallError(result.return_data, target=self.settlement_token)
        if not result.return_data:
            raise ContractValidationError("Settlement token returned no data")
        return decode_return(("uint256",), result.return_data)

    def _log_rejection(self, sender: str, reason: str, required: int, available: int) -> None:
        logger.warning(
            "Sponsorship rejected",
            extra={
                "event": "sponsor.validation_failed",
                "sender": sender[:10],
                "reason": reason,
                "required": required,
                "available": available,
            }
        )

    def _require_owner(self, caller: str) -> None:
        if is_null_address(self.owner) or normalize_address(caller) != self.owner:
            raise AuthorizationError("Caller is not sponsor owner")

    def _require_entry_point(self, caller: str) -> None:
        if is_null_address(self.entry_point) or normalize_address(caller) != self.entry_point:
            raise AuthorizationError("Caller is not entry point")
