"""
StableGas Deployment Configuration

Supports testnet and mainnet with separate defaults.

Contracts never read the environment themselves; these helpers build the
values a deployment passes in (the factory's default FeeConfig, sponsor
policy, chain id).

SECURITY NOTICE:
- Fee addresses and the exchange rate MUST be set explicitly on mainnet
- A wrong exchange rate mis-prices every sponsored operation
- Malformed values are rejected on every network
"""

from __future__ import annotations

import logging
import os
from dataclasses import dataclass
from enum import Enum
from typing import Optional

from .contracts.fee_converter import MAX_MARKUP_BPS, RATE_SCALE, FeeConfig
from .vm.abi import ZERO_ADDRESS, is_valid_address

logger = logging.getLogger(__name__)


class NetworkType(Enum):
    TESTNET = "testnet"
    MAINNET = "mainnet"


class ConfigurationError(Exception):
    """Raised when required configuration is missing or invalid."""
    pass


def get_network() -> NetworkType:
    value = os.getenv("STABLEGAS_NETWORK", "testnet").strip().lower()
    try:
        return NetworkType(value)
    except ValueError:
        raise ConfigurationError(
            f"STABLEGAS_NETWORK must be 'testnet' or 'mainnet', got {value!r}"
        ) from None


def _get_required_address(env_var: str, network: NetworkType) -> str:
    """Get a required address from environment, with mainnet enforcement.

    On mainnet, missing addresses raise ConfigurationError.
    On testnet, missing addresses fall back to the zero address with a warning.
    """
    value = os.getenv(env_var, "").strip()
    if value:
        if not is_valid_address(value):
            raise ConfigurationError(f"{env_var} is not a valid address: {value!r}")
        return value.lower()

    if network is NetworkType.MAINNET:
        raise ConfigurationError(f"CRITICAL: {env_var} environment variable required for mainnet.")

    logger.warning(
        "%s not set, using the zero address for testnet. "
        "Set this environment variable for production.",
        env_var,
        extra={"event": "config.address_defaulted", "env_var": env_var}
    )
    return ZERO_ADDRESS


def _get_int(
    env_var: str,
    default: Optional[int],
    network: NetworkType,
    minimum: int = 0,
    maximum: Optional[int] = None,
) -> int:
    """Parse an integer setting. A default of None makes it required on mainnet."""
    raw = os.getenv(env_var, "").strip()
    if not raw:
        if default is None:
            if network is NetworkType.MAINNET:
                raise ConfigurationError(f"CRITICAL: {env_var} environment variable required for mainnet.")
            raise ConfigurationError(f"{env_var} has no default")
        return default

    try:
        value = int(raw)
    except ValueError:
        raise ConfigurationError(f"{env_var} must be an integer, got {raw!r}") from None

    if value < minimum or (maximum is not None and value > maximum):
        bound = f"[{minimum}, {maximum}]" if maximum is not None else f">= {minimum}"
        raise ConfigurationError(f"{env_var} must be {bound}, got {value}")
    return value


class TestnetConfig:
    """Testnet Configuration (for local testing before mainnet)"""

    NETWORK_TYPE = NetworkType.TESTNET
    CHAIN_ID = 11155111

    # 2000 settlement units per native unit
    DEFAULT_EXCHANGE_RATE = 2000 * RATE_SCALE
    DEFAULT_MARKUP_BPS = 1000
    DEFAULT_MINIMUM_BALANCE = 0

    LOG_LEVEL = "DEBUG"


class MainnetConfig:
    """Mainnet Configuration (production deployment)"""

    NETWORK_TYPE = NetworkType.MAINNET
    CHAIN_ID = 1

    # Pricing must be supplied explicitly
    DEFAULT_EXCHANGE_RATE = None
    DEFAULT_MARKUP_BPS = 500
    DEFAULT_MINIMUM_BALANCE = 1_000_000  # 1 unit of a 6-decimal token

    LOG_LEVEL = "INFO"


def get_config(network: Optional[NetworkType] = None):
    network = network or get_network()
    return MainnetConfig if network is NetworkType.MAINNET else TestnetConfig


@dataclass(frozen=True)
class SponsorSettings:
    """Policy a FeeSponsor is deployed with."""
    settlement_token: str
    exchange_rate: int
    markup_bps: int
    minimum_balance: int


def load_fee_defaults(network: Optional[NetworkType] = None) -> FeeConfig:
    """
    Build the FeeConfig the factory hands to new accounts.

    Raises:
        ConfigurationError: On malformed values, or missing values on mainnet
    """
    network = network or get_network()
    config = get_config(network)
    fee_config = FeeConfig(
        settlement_token=_get_required_address("STABLEGAS_SETTLEMENT_TOKEN", network),
        sponsor_payee=_get_required_address("STABLEGAS_SPONSOR_PAYEE", network),
        exchange_rate=_get_int("STABLEGAS_EXCHANGE_RATE", config.DEFAULT_EXCHANGE_RATE, network, minimum=1),
    )
    logger.info(
        "Fee defaults loaded",
        extra={"event": "config.fee_defaults_loaded", "network": network.value, **fee_config.to_dict()}
    )
    return fee_config


def load_sponsor_settings(network: Optional[NetworkType] = None) -> SponsorSettings:
    network = network or get_network()
    config = get_config(network)
    return SponsorSettings(
        settlement_token=_get_required_address("STABLEGAS_SETTLEMENT_TOKEN", network),
        exchange_rate=_get_int("STABLEGAS_EXCHANGE_RATE", config.DEFAULT_EXCHANGE_RATE, network, minimum=1),
        markup_bps=_get_int(
            "STABLEGAS_MARKUP_BPS", config.DEFAULT_MARKUP_BPS, network, maximum=MAX_MARKUP_BPS
        ),
        minimum_balance=_get_int("STABLEGAS_MINIMUM_BALANCE", config.DEFAULT_MINIMUM_BALANCE, network),
    )


def get_chain_id(network: Optional[NetworkType] = None) -> int:
    network = network or get_network()
    return _get_int("STABLEGAS_CHAIN_ID", get_config(network).CHAIN_ID, network, minimum=1)


def get_log_level(network: Optional[NetworkType] = None) -> str:
    level = os.getenv("STABLEGAS_LOG_LEVEL", "").strip().upper()
    if level:
        if level not in ("DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"):
            raise ConfigurationError(f"STABLEGAS_LOG_LEVEL is not a log level: {level!r}")
        return level
    return get_config(network).LOG_LEVEL


def get_log_file() -> Optional[str]:
    return os.getenv("STABLEGAS_LOG_FILE", "").strip() or None


# Select config based on network
NETWORK = os.getenv("STABLEGAS_NETWORK", "testnet")  # Default to testnet for safety
Config = MainnetConfig if NETWORK.strip().lower() == "mainnet" else TestnetConfig

__all__ = [
    "Config",
    "ConfigurationError",
    "NetworkType",
    "TestnetConfig",
    "MainnetConfig",
    "SponsorSettings",
    "get_config",
    "get_network",
    "get_chain_id",
    "get_log_level",
    "get_log_file",
    "load_fee_defaults",
    "load_sponsor_settings",
]
