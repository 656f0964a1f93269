"""
StableGas Core Module

Core functionality for the fee sponsorship protocol including:
- In-memory chain state with per-call rollback
- Contract implementations (account, sponsor, factory, relay, token)
- Fee conversion arithmetic
- Configuration and structured logging
"""

__all__ = []
