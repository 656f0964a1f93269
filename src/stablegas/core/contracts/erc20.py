"""
ERC20 settlement token.

Fees are paid in this token. It implements the EIP-20 surface the fee
protocol relies on (balances, allowances, transfer, transferFrom) plus
owner minting and holder burning. Defaults to 6 decimals, like the
stable-value tokens it stands in for.

Security features:
- Zero address checks
- Balance underflow prevention
- Allowance validation
- 256-bit range checks on amounts
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Dict

from ..vm.abi import ZERO_ADDRESS, normalize_address
from ..vm.exceptions import (
    AuthorizationError,
    ContractValidationError,
    InsufficientAllowanceError,
    InsufficientBalanceError,
)
from .base import Contract, external

logger = logging.getLogger(__name__)

UINT256_MAX = 2**256 - 1


@dataclass
class ERC20Token(Contract):
    """
    Fungible token with in-memory balances and allowances.

    Every state-changing method takes the calling address first (msg.sender)
    and either returns True or raises; there are no partial transfers.
    """

    name: str = "USD Coin"
    symbol: str = "USDC"
    decimals: int = 6
    total_supply: int = 0

    # Owner (for minting permissions)
    owner: str = ""

    balances: Dict[str, int] = field(default_factory=dict)
    allowances: Dict[str, Dict[str, int]] = field(default_factory=dict)

    def __post_init__(self) -> None:
        super().__post_init__()
        self.owner = normalize_address(self.owner)

    # ==================== View Functions ====================

    @external("balanceOf(address)", returns=("uint256",), view=True)
    def balance_of(self, account: str) -> int:
        return self.balances.get(normalize_address(account), 0)

    @external("allowance(address,address)", returns=("uint256",), view=True)
    def allowance(self, owner: str, spender: str) -> int:
        return self.allowances.get(normalize_address(owner), {}).get(normalize_address(spender), 0)

    # ==================== State-Changing Functions ====================

    @external("transfer(address,uint256)", returns=("bool",))
    def transfer(self, sender: str, recipient: str, amount: int) -> bool:
        """
        Transfer tokens from sender to recipient.

        Raises:
            ContractValidationError: If recipient is zero or amount invalid
            InsufficientBalanceError: If sender balance is too low
        """
        sender_norm = normalize_address(sender)
        recipient_norm = normalize_address(recipient)
        self._validate_address(recipient_norm, "recipient")
        self._validate_amount(amount)

        self._move(sender_norm, recipient_norm, amount)

        logger.debug(
            "ERC20 transfer",
            extra={
                "event": "erc20.transfer",
                "token": self.symbol,
                "from": sender_norm[:10],
                "to": recipient_norm[:10],
                "amount": amount,
            }
        )
        return True

    @external("approve(address,uint256)", returns=("bool",))
    def approve(self, owner: str, spender: str, amount: int) -> bool:
        owner_norm = normalize_address(owner)
        spender_norm = normalize_address(spender)
        self._validate_address(spender_norm, "spender")
        self._validate_amount(amount)

        self.allowances.setdefault(owner_norm, {})[spender_norm] = amount
        self._emit("Approval", owner=owner_norm, spender=spender_norm, value=amount)
        return True

    @external("transferFrom(address,address,uint256)", returns=("bool",))
    def transfer_from(self, spender: str, from_addr: str, to_addr: str, amount: int) -> bool:
        """
        Transfer tokens using an allowance granted by ``from_addr`` to ``spender``.

        Raises:
            InsufficientAllowanceError: If the allowance is too low
            InsufficientBalanceError: If the holder balance is too low
        """
        spender_norm = normalize_address(spender)
        from_norm = normalize_address(from_addr)
        to_norm = normalize_address(to_addr)
        self._validate_address(to_norm, "recipient")
        self._validate_amount(amount)

        current_allowance = self.allowance(from_norm, spender_norm)
        if current_allowance < amount:
            raise InsufficientAllowanceError(
                f"ERC20: insufficient allowance ({current_allowance} < {amount})",
                required=amount,
                available=current_allowance,
            )

        self._move(from_norm, to_norm, amount)

        # Unlimited approvals are never decremented
        if current_allowance != UINT256_MAX:
            self.allowances.setdefault(from_norm, {})[spender_norm] = current_allowance - amount
        return True

    # ==================== Minting & Burning ====================

    @external("mint(address,uint256)", returns=("bool",))
    def mint(self, minter: str, to: str, amount: int) -> bool:
        """Mint new tokens (owner only)."""
        if normalize_address(minter) != self.owner:
            raise AuthorizationError("ERC20: caller is not owner")

        to_norm = normalize_address(to)
        self._validate_address(to_norm, "recipient")
        self._validate_amount(amount)

        self.total_supply += amount
        self.balances[to_norm] = self.balances.get(to_norm, 0) + amount
        self._emit("Transfer", sender=ZERO_ADDRESS, recipient=to_norm, value=amount)

        logger.info(
            "ERC20 mint",
            extra={
                "event": "erc20.mint",
                "token": self.symbol,
                "to": to_norm[:10],
                "amount": amount,
                "new_supply": self.total_supply,
            }
        )
        return True

    @external("burn(uint256)", returns=("bool",))
    def burn(self, holder: str, amount: int) -> bool:
        holder_norm = normalize_address(holder)
        self._validate_amount(amount)

        balance = self.balances.get(holder_norm, 0)
        if balance < amount:
            raise InsufficientBalanceError(
                f"ERC20: burn amount exceeds balance ({amount} > {balance})",
                required=amount,
                available=balance,
            )
        self.balances[holder_norm] = balance - amount
        self.total_supply -= amount
        self._emit("Transfer", sender=holder_norm, recipient=ZERO_ADDRESS, value=amount)
        return True

    # ==================== Helpers ====================

    def _move(self, from_addr: str, to_addr: str, amount: int) -> None:
        balance = self.balances.get(from_addr, 0)
        if balance < amount:
            raise InsufficientBalanceError(
                f"ERC20: transfer amount exceeds balance ({amount} > {balance})",
                required=amount,
                available=balance,
            )
        self.balances[from_addr] = balance - amount
        self.balances[to_addr] = self.balances.get(to_addr, 0) + amount
        self._emit("Transfer", sender=from_addr, recipient=to_addr, value=amount)

    def _validate_address(self, address: str, field_name: str) -> None:
        if address == ZERO_ADDRESS:
            raise ContractValidationError(f"ERC20: {field_name} is zero address")

    def _validate_amount(self, amount: int) -> None:
        if amount < 0:
            raise ContractValidationError("ERC20: amount cannot be negative")
        if amount > UINT256_MAX:
            raise ContractValidationError("ERC20: amount exceeds uint256")
