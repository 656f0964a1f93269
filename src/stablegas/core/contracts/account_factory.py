"""
Factory for deploying smart accounts at deterministic addresses.

Addresses follow CREATE2: they depend on the factory address, a salt derived
from (owner, salt), and the hash of an EIP-1167 minimal-proxy creation code
that embeds the current template. The same inputs always give the same
address, so accounts can be funded before they exist (counterfactual
deployment).
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Dict, List, Sequence

from eth_abi import encode
from eth_abi.exceptions import DecodingError

from ..crypto_utils import keccak256
from ..vm.abi import (
    ZERO_ADDRESS,
    decode_return,
    encode_call,
    is_null_address,
    normalize_address,
)
from ..vm.exceptions import (
    AddressOccupiedError,
    AuthorizationError,
    ContractValidationError,
    InvalidTemplateError,
)
from .account import ACCOUNT_INTERFACE_ID, SmartAccount
from .base import Contract
from .fee_converter import FeeConfig

logger = logging.getLogger(__name__)

# EIP-1167 minimal proxy creation code, split around the 20-byte template address
PROXY_INIT_PREFIX = bytes.fromhex("3d602d80600a3d3981f3363d3d373d3d3d363d73")
PROXY_INIT_SUFFIX = bytes.fromhex("5af43d82803e903d91602b57fd5bf3")

MAX_SALT = 2**256 - 1


def proxy_init_code(template: str) -> bytes:
    """Creation code of a minimal proxy delegating to ``template``."""
    return PROXY_INIT_PREFIX + bytes.fromhex(normalize_address(template)[2:]) + PROXY_INIT_SUFFIX


def create2_address(deployer: str, salt: bytes, init_code_hash: bytes) -> str:
    """keccak256(0xff ++ deployer ++ salt ++ init_code_hash)[12:]"""
    digest = keccak256(
        b"\xff" + bytes.fromhex(normalize_address(deployer)[2:]) + salt + init_code_hash
    )
    return "0x" + digest[12:].hex()


@dataclass
class AccountFactory(Contract):
    """
    Deploys, initializes and records smart accounts.

    The registry is append-only: an address marked deployed is never removed.
    """

    owner: str = ZERO_ADDRESS
    template: str = ZERO_ADDRESS

    # Supplied by deployment configuration, handed to every new account
    default_fee_config: FeeConfig = field(default_factory=FeeConfig)

    accounts_by_owner: Dict[str, List[str]] = field(default_factory=dict)
    deployed: Dict[str, bool] = field(default_factory=dict)

    def __post_init__(self) -> None:
        super().__post_init__()
        self.owner = normalize_address(self.owner)
        self.template = normalize_address(self.template)

    # ==================== Address Derivation ====================

    def derive_address(self, owner: str, salt: int) -> str:
        """
        Get deterministic address without deploying.

        Depends on the current template; after a template update the same
        (owner, salt) maps to a new address.
        """
        self._validate_salt(salt)
        combined_salt = keccak256(encode(["address", "uint256"], [normalize_address(owner), salt]))
        return create2_address(self.address, combined_salt, keccak256(proxy_init_code(self.template)))

    # ==================== Deployment ====================

    def create_account(self, owner: str, salt: int, owner_public_key: str = "") -> str:
        """
        Deploy and initialize an account for ``owner``.

        Args:
            owner: Account owner address
            salt: Salt for deterministic address
            owner_public_key: Optional 64-byte hex key for relayed signatures

        Returns:
            Address of the new account

        Raises:
            ContractValidationError: If owner is the zero address
            AddressOccupiedError: If the derived address is already deployed
            InvalidTemplateError: If the template is not a deployed account
        """
        owner_norm = normalize_address(owner)
        if is_null_address(owner_norm):
            raise ContractValidationError("Owner cannot be the zero address")

        chain = self._require_chain()
        template = chain.get_contract(self.template)
        if not isinstance(template, SmartAccount):
            raise InvalidTemplateError(f"Template {self.template} is not a deployed account")

        address = self.derive_address(owner_norm, salt)
        if chain.has_code(address):
            raise AddressOccupiedError(
                f"Account {address} already deployed",
                details={"address": address, "owner": owner_norm, "salt": salt},
            )

        with chain.atomic():
            account = chain.deploy(template.clone(), address)
            account.initialize(owner_norm, self.default_fee_config, owner_public_key)
            self.accounts_by_owner.setdefault(owner_norm, []).append(address)
            self.deployed[address] = True
            self._emit("AccountCreated", account=address, owner=owner_norm, salt=salt)

        logger.info(
            "Account created",
            extra={
                "event": "factory.account_created",
                "owner": owner_norm[:10],
                "address": address[:10],
                "salt": salt,
                "has_pubkey": bool(owner_public_key),
            }
        )
        return address

    def create_if_needed(self, owner: str, salt: int, owner_public_key: str = "") -> str:
        """Return the derived address, deploying only if nothing lives there yet."""
        address = self.derive_address(owner, salt)
        if self._require_chain().has_code(address):
            return address
        return self.create_account(owner, salt, owner_public_key)

    def create_batch(self, owners: Sequence[str], salts: Sequence[int]) -> List[str]:
        """
        Create several accounts, all or nothing.

        Raises:
            ContractValidationError: On length mismatch or empty input
            VMExecutionError: Whatever the first failing creation raised; no
                account from the batch remains deployed
        """
        if len(owners) != len(salts):
            raise ContractValidationError("Owners and salts length mismatch")
        if not owners:
            raise ContractValidationError("Batch cannot be empty")

        with self._require_chain().atomic():
            addresses = [self.create_account(owner, salt) for owner, salt in zip(owners, salts)]

        logger.info(
            "Account batch created",
            extra={"event": "factory.batch_created", "count": len(addresses)}
        )
        return addresses

    # ==================== Template Management ====================

    def update_template(self, caller: str, new_template: str) -> bool:
        """
        Swap the implementation new accounts are cloned from (owner only).

        The candidate must report the account interface through
        supportsInterface; any failure of that check rejects it.
        """
        if is_null_address(self.owner) or normalize_address(caller) != self.owner:
            raise AuthorizationError("Caller is not factory owner")

        template_norm = normalize_address(new_template)
        if is_null_address(template_norm):
            raise ContractValidationError("Template cannot be the zero address")
        if not self._supports_account_interface(template_norm):
            logger.warning(
                "Template rejected",
                extra={"event": "factory.template_rejected", "template": template_norm[:10]}
            )
            raise InvalidTemplateError(f"Template {template_norm} does not support the account interface")

        old_template = self.template
        self.template = template_norm
        self._emit("TemplateUpdated", old_template=old_template, new_template=template_norm)

        logger.info(
            "Factory template updated",
            extra={
                "event": "factory.template_updated",
                "old_template": old_template[:10],
                "new_template": template_norm[:10],
            }
        )
        return True

    # ==================== Registry ====================

    def is_valid_account(self, address: str) -> bool:
        return self.deployed.get(normalize_address(address), False)

    def get_accounts(self, owner: str) -> List[str]:
        return list(self.accounts_by_owner.get(normalize_address(owner), []))

    # ==================== Internal ====================

    def _supports_account_interface(self, template: str) -> bool:
        chain = self._require_chain()
        if not chain.has_code(template):
            return False
        result = self._call(template, 0, encode_call("supportsInterface(bytes4)", ACCOUNT_INTERFACE_ID))
        if not result.success or not result.return_data:
            return False
        try:
            return bool(decode_return(("bool",), result.return_data))
        except DecodingError:
            return False

    def _validate_salt(self, salt: int) -> None:
        if salt < 0 or salt > MAX_SALT:
            raise ContractValidationError("Salt must fit in 256 bits")
