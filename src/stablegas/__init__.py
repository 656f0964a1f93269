"""
StableGas - Fee sponsorship and delegated execution

Lets an account holder pay transaction fees in a stable-value settlement
token instead of the chain's native currency.

Main Components:
- Accounts: Single-owner smart accounts with call execution and fee transfers
- Sponsorship: Sponsor that fronts native gas and settles in the token
- Factory: Deterministic (CREATE2) account deployment
- Relay: Reference EntryPoint bundling and charging operations

For the full behaviour, see: SPEC_FULL.md and DESIGN.md
"""

__version__ = "0.1.0"
__author__ = "StableGas Development Team"

__all__ = []
