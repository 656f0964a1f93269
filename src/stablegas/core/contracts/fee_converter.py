"""
Native-cost to settlement-token conversion.

Native cost is an 18-decimal fixed-point amount. The exchange rate is
settlement-token units per native unit, scaled by 10**18. The settlement token
has 6 decimals, so the converted amount is rescaled by 10**12 at the end.

    raw         = native_cost * exchange_rate // 10**18
    with_markup = raw * (10000 + markup_bps) // 10000
    result      = with_markup // 10**12

Every division floors. Sub-unit remainders are never charged, so the payer is
always rounded in its own favour.
"""

from __future__ import annotations

from dataclasses import dataclass

from ..vm.abi import ZERO_ADDRESS, normalize_address
from ..vm.exceptions import ContractValidationError

RATE_SCALE = 10**18
BASIS_POINTS = 10_000
MAX_MARKUP_BPS = 5_000
NATIVE_DECIMALS = 18
SETTLEMENT_DECIMALS = 6
DECIMAL_RESCALE = 10 ** (NATIVE_DECIMALS - SETTLEMENT_DECIMALS)

# Reference values for pre-flight estimates, not the real upcoming cost
ESTIMATE_GAS_UNITS = 100_000
ESTIMATE_GAS_PRICE = 20 * 10**9  # 20 Gwei


def convert(native_cost: int, exchange_rate: int, markup_bps: int = 0) -> int:
    """
    Convert a native cost into settlement-token units.

    Args:
        native_cost: Cost in 18-decimal native units
        exchange_rate: Token units per native unit, scaled by 10**18
        markup_bps: Margin in basis points, at most MAX_MARKUP_BPS

    Returns:
        Amount in 6-decimal settlement-token units, floored

    Raises:
        ContractValidationError: If any input is out of bounds
    """
    if native_cost < 0:
        raise ContractValidationError("Native cost cannot be negative")
    if exchange_rate <= 0:
        raise ContractValidationError("Exchange rate must be positive")
    if markup_bps < 0 or markup_bps > MAX_MARKUP_BPS:
        raise ContractValidationError(
            f"Markup must be between 0 and {MAX_MARKUP_BPS} basis points"
        )

    raw = native_cost * exchange_rate // RATE_SCALE
    with_markup = raw * (BASIS_POINTS + markup_bps) // BASIS_POINTS
    return with_markup // DECIMAL_RESCALE


@dataclass(frozen=True)
class FeeConverter:
    """A conversion policy: fixed rate and markup."""

    exchange_rate: int
    markup_bps: int = 0

    def __post_init__(self) -> None:
        # Fail at construction rather than at first use
        convert(0, self.exchange_rate, self.markup_bps)

    def convert(self, native_cost: int) -> int:
        return convert(native_cost, self.exchange_rate, self.markup_bps)

    def estimate(self) -> int:
        """Convert the reference cost used for pre-flight estimates."""
        return self.convert(ESTIMATE_GAS_UNITS * ESTIMATE_GAS_PRICE)


@dataclass
class FeeConfig:
    """
    Per-account fee settings.

    settlement_token: token the account pays fees in
    sponsor_payee: receiver of fees paid through the account's own path
    exchange_rate: token units per native unit, scaled by 10**18
    """

    settlement_token: str = ZERO_ADDRESS
    sponsor_payee: str = ZERO_ADDRESS
    exchange_rate: int = 0

    def __post_init__(self) -> None:
        self.settlement_token = normalize_address(self.settlement_token)
        self.sponsor_payee = normalize_address(self.sponsor_payee)
        if self.exchange_rate < 0:
            raise ContractValidationError("Exchange rate cannot be negative")

    def to_dict(self) -> dict:
        return {
            "settlement_token": self.settlement_token,
            "sponsor_payee": self.sponsor_payee,
            "exchange_rate": self.exchange_rate,
        }
