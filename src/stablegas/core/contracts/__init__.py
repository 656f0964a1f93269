"""
StableGas contracts.

This module provides the fee protocol contract implementations:
- SmartAccount: Delegated-execution account with token fee payments
- FeeSponsor: Sponsor reimbursed in the settlement token
- FeeConverter: Native cost to settlement-token conversion
- AccountFactory: Deterministic account deployment
- EntryPoint: Reference operation relay
- ERC20Token: Settlement token
"""

from .account import (
    ACCOUNT_INTERFACE_ID,
    Call,
    SmartAccount,
    UserOperation,
)
from .account_factory import AccountFactory
from .base import Contract, ContractEvent, external
from .entry_point import ENTRY_POINT_ADDRESS, EntryPoint, OperationResult
from .erc20 import ERC20Token
from .fee_converter import FeeConfig, FeeConverter, convert
from .fee_sponsor import FeeSponsor, SponsorContext

__all__ = [
    # Base
    "Contract",
    "ContractEvent",
    "external",
    # Token
    "ERC20Token",
    # Fees
    "FeeConfig",
    "FeeConverter",
    "convert",
    "FeeSponsor",
    "SponsorContext",
    # Accounts
    "ACCOUNT_INTERFACE_ID",
    "Call",
    "SmartAccount",
    "UserOperation",
    "AccountFactory",
    # Relay
    "ENTRY_POINT_ADDRESS",
    "EntryPoint",
    "OperationResult",
]
