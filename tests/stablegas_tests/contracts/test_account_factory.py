"""
Tests for deterministic account deployment.
"""

import pytest

from stablegas.core.contracts import AccountFactory, SmartAccount
from stablegas.core.contracts.account_factory import (
    PROXY_INIT_PREFIX,
    PROXY_INIT_SUFFIX,
    create2_address,
    proxy_init_code,
)
from stablegas.core.crypto_utils import keccak256
from stablegas.core.vm.abi import ZERO_ADDRESS
from stablegas.core.vm.exceptions import (
    AddressOccupiedError,
    AuthorizationError,
    ContractValidationError,
    InvalidTemplateError,
)

from conftest import EXCHANGE_RATE, FACTORY_OWNER, OWNER, PAYEE, STRANGER

OTHER_OWNER = "0x" + "bb" * 20


class TestAddressDerivation:
    """Tests for CREATE2 address derivation."""

    def test_proxy_init_code_embeds_template(self):
        template = "0x" + "cd" * 20
        code = proxy_init_code(template)

        assert code.startswith(PROXY_INIT_PREFIX)
        assert code.endswith(PROXY_INIT_SUFFIX)
        assert code[len(PROXY_INIT_PREFIX):-len(PROXY_INIT_SUFFIX)] == bytes.fromhex("cd" * 20)

    def test_create2_address(self):
        # EIP-1014 example 0: deployer 0x0, salt 0, init code 0x00
        address = create2_address(ZERO_ADDRESS, b"\x00" * 32, keccak256(b"\x00"))
        assert address == "0x4d1a2e2bb4f88f0250f26ffff098b0b30b26bf38"

    def test_derivation_is_deterministic(self, factory):
        assert factory.derive_address(OWNER, 7) == factory.derive_address(OWNER, 7)

    def test_derivation_depends_on_owner_and_salt(self, factory):
        addresses = {
            factory.derive_address(OWNER, 0),
            factory.derive_address(OWNER, 1),
            factory.derive_address(OTHER_OWNER, 0),
        }
        assert len(addresses) == 3

    def test_derivation_is_case_insensitive(self, factory):
        assert factory.derive_address("0x" + "AB" * 20, 0) == factory.derive_address("0x" + "ab" * 20, 0)

    @pytest.mark.parametrize("salt", [-1, 2**256])
    def test_salt_out_of_range(self, factory, salt):
        with pytest.raises(ContractValidationError):
            factory.derive_address(OWNER, salt)


class TestCreateAccount:
    """Tests for account deployment."""

    def test_creates_at_derived_address(self, chain, factory, entry_point):
        expected = factory.derive_address(OWNER, 3)

        address = factory.create_account(OWNER, 3)

        assert address == expected
        account = chain.get_contract(address)
        assert isinstance(account, SmartAccount)
        assert account.owner == OWNER
        assert account.entry_point == entry_point.address

    def test_account_receives_default_fee_config(self, chain, factory, token):
        account = chain.get_contract(factory.create_account(OWNER, 0))

        assert account.fee_config.settlement_token == token.address
        assert account.fee_config.sponsor_payee == PAYEE
        assert account.fee_config.exchange_rate == EXCHANGE_RATE

    def test_fee_config_not_shared(self, chain, factory):
        account = chain.get_contract(factory.create_account(OWNER, 0))

        account.update_exchange_rate(OWNER, 1)

        assert factory.default_fee_config.exchange_rate == EXCHANGE_RATE

    def test_registry_and_event(self, factory):
        address = factory.create_account(OWNER, 0)

        assert factory.is_valid_account(address)
        assert factory.get_accounts(OWNER) == [address]
        assert factory.events_named("AccountCreated")[-1].args == {
            "account": address,
            "owner": OWNER,
            "salt": 0,
        }

    def test_unknown_address_not_valid(self, factory, counter):
        assert not factory.is_valid_account(factory.derive_address(OWNER, 0))
        assert not factory.is_valid_account(counter.address)
        assert factory.get_accounts(OWNER) == []

    def test_occupied_address_rejected(self, factory):
        factory.create_account(OWNER, 0)

        with pytest.raises(AddressOccupiedError):
            factory.create_account(OWNER, 0)
        assert len(factory.get_accounts(OWNER)) == 1

    def test_null_owner_rejected(self, factory):
        with pytest.raises(ContractValidationError):
            factory.create_account(ZERO_ADDRESS, 0)

    def test_non_account_template_rejected(self, chain, counter):
        factory = chain.deploy(AccountFactory(owner=FACTORY_OWNER, template=counter.address))
        with pytest.raises(InvalidTemplateError):
            factory.create_account(OWNER, 0)

    def test_create_if_needed_deploys_once(self, chain, factory):
        first = factory.create_if_needed(OWNER, 9)
        second = factory.create_if_needed(OWNER, 9)

        assert first == second
        assert factory.get_accounts(OWNER) == [first]
        assert len(factory.events_named("AccountCreated")) == 1


class TestCreateBatch:
    """Tests for all-or-nothing batch creation."""

    def test_creates_all(self, factory):
        addresses = factory.create_batch([OWNER, OTHER_OWNER], [0, 0])

        assert len(addresses) == 2
        assert all(factory.is_valid_account(a) for a in addresses)

    def test_failure_creates_nothing(self, chain, factory):
        first_address = factory.derive_address(OWNER, 0)

        with pytest.raises(AddressOccupiedError):
            factory.create_batch([OWNER, OTHER_OWNER, OWNER], [0, 0, 0])

        assert not chain.has_code(first_address)
        assert not factory.is_valid_account(first_address)
        assert factory.get_accounts(OWNER) == []
        assert factory.get_accounts(OTHER_OWNER) == []
        assert factory.events_named("AccountCreated") == []

    def test_length_mismatch_rejected(self, factory):
        with pytest.raises(ContractValidationError):
            factory.create_batch([OWNER], [0, 1])

    def test_empty_batch_rejected(self, factory):
        with pytest.raises(ContractValidationError):
            factory.create_batch([], [])


class TestUpdateTemplate:
    """Tests for template management."""

    def test_update_to_valid_template(self, chain, factory, template, entry_point):
        new_template = chain.deploy(SmartAccount(entry_point=entry_point.address))
        before = factory.derive_address(OWNER, 0)

        assert factory.update_template(FACTORY_OWNER, new_template.address)

        assert factory.template == new_template.address
        assert factory.derive_address(OWNER, 0) != before
        assert factory.events_named("TemplateUpdated")[-1].args == {
            "old_template": template.address,
            "new_template": new_template.address,
        }

    def test_existing_accounts_survive_update(self, chain, factory, entry_point):
        address = factory.create_account(OWNER, 0)
        new_template = chain.deploy(SmartAccount(entry_point=entry_point.address))

        factory.update_template(FACTORY_OWNER, new_template.address)

        assert factory.is_valid_account(address)
        assert chain.has_code(address)

    def test_only_owner(self, chain, factory, entry_point):
        new_template = chain.deploy(SmartAccount(entry_point=entry_point.address))
        with pytest.raises(AuthorizationError):
            factory.update_template(STRANGER, new_template.address)

    def test_contract_without_interface_rejected(self, factory, template, counter):
        with pytest.raises(InvalidTemplateError):
            factory.update_template(FACTORY_OWNER, counter.address)
        assert factory.template == template.address

    def test_address_without_code_rejected(self, factory):
        with pytest.raises(InvalidTemplateError):
            factory.update_template(FACTORY_OWNER, STRANGER)

    def test_null_template_rejected(self, factory):
        with pytest.raises(ContractValidationError):
            factory.update_template(FACTORY_OWNER, ZERO_ADDRESS)
