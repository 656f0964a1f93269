"""
Tests for the ERC20 settlement token.
"""

import pytest

from stablegas.core.contracts import ERC20Token
from stablegas.core.contracts.erc20 import UINT256_MAX
from stablegas.core.vm.abi import ZERO_ADDRESS, decode_return, encode_call
from stablegas.core.vm.exceptions import (
    AuthorizationError,
    ContractValidationError,
    InsufficientAllowanceError,
    InsufficientBalanceError,
)

from conftest import OWNER, RECIPIENT, STRANGER, TOKEN_OWNER


@pytest.fixture
def funded_token(token):
    token.mint(TOKEN_OWNER, OWNER, 1_000)
    return token


class TestMintAndBurn:

    def test_mint(self, token):
        assert token.mint(TOKEN_OWNER, OWNER, 500)
        assert token.balance_of(OWNER) == 500
        assert token.total_supply == 500

    def test_mint_owner_only(self, token):
        with pytest.raises(AuthorizationError):
            token.mint(STRANGER, STRANGER, 1)

    def test_mint_to_zero_address(self, token):
        with pytest.raises(ContractValidationError):
            token.mint(TOKEN_OWNER, ZERO_ADDRESS, 1)

    def test_burn(self, funded_token):
        funded_token.burn(OWNER, 400)
        assert funded_token.balance_of(OWNER) == 600
        assert funded_token.total_supply == 600

    def test_burn_above_balance(self, funded_token):
        with pytest.raises(InsufficientBalanceError):
            funded_token.burn(OWNER, 1_001)


class TestTransfer:

    def test_transfer(self, funded_token):
        assert funded_token.transfer(OWNER, RECIPIENT, 300)
        assert funded_token.balance_of(OWNER) == 700
        assert funded_token.balance_of(RECIPIENT) == 300
        assert funded_token.events_named("Transfer")[-1].args == {
            "sender": OWNER,
            "recipient": RECIPIENT,
            "value": 300,
        }

    def test_transfer_above_balance(self, funded_token):
        with pytest.raises(InsufficientBalanceError) as exc_info:
            funded_token.transfer(OWNER, RECIPIENT, 1_001)
        assert exc_info.value.available == 1_000
        assert funded_token.balance_of(OWNER) == 1_000

    @pytest.mark.parametrize("recipient,amount", [(ZERO_ADDRESS, 1), (RECIPIENT, -1), (RECIPIENT, 2**256)])
    def test_invalid_transfer(self, funded_token, recipient, amount):
        with pytest.raises(ContractValidationError):
            funded_token.transfer(OWNER, recipient, amount)

    def test_mixed_case_addresses_share_balance(self, token):
        token.mint(TOKEN_OWNER, "0x" + "ab" * 20, 10)
        token.transfer("0x" + "AB" * 20, RECIPIENT, 1)
        assert token.balance_of("0x" + "aB" * 20) == 9


class TestAllowance:

    def test_approve_and_transfer_from(self, funded_token):
        funded_token.approve(OWNER, STRANGER, 500)

        funded_token.transfer_from(STRANGER, OWNER, RECIPIENT, 200)

        assert funded_token.balance_of(RECIPIENT) == 200
        assert funded_token.allowance(OWNER, STRANGER) == 300

    def test_transfer_from_above_allowance(self, funded_token):
        funded_token.approve(OWNER, STRANGER, 100)
        with pytest.raises(InsufficientAllowanceError):
            funded_token.transfer_from(STRANGER, OWNER, RECIPIENT, 101)
        assert funded_token.balance_of(OWNER) == 1_000

    def test_unlimited_allowance_not_decremented(self, funded_token):
        funded_token.approve(OWNER, STRANGER, UINT256_MAX)
        funded_token.transfer_from(STRANGER, OWNER, RECIPIENT, 10)
        assert funded_token.allowance(OWNER, STRANGER) == UINT256_MAX

    def test_zero_transfer_from_without_any_approval(self, funded_token):
        # STRANGER has never approved anyone
        assert funded_token.transfer_from(OWNER, STRANGER, RECIPIENT, 0)

        assert funded_token.allowance(STRANGER, OWNER) == 0
        assert funded_token.balance_of(RECIPIENT) == 0


class TestEncodedCalls:
    """The token as seen by other contracts through the chain."""

    def test_transfer_through_call(self, chain, funded_token):
        result = chain.call(OWNER, funded_token.address, 0, encode_call("transfer(address,uint256)", RECIPIENT, 10))

        assert result.success
        assert decode_return(("bool",), result.return_data) is True
        assert funded_token.balance_of(RECIPIENT) == 10

    def test_balance_view_through_call(self, chain, funded_token):
        result = chain.call(STRANGER, funded_token.address, 0, encode_call("balanceOf(address)", OWNER))
        assert decode_return(("uint256",), result.return_data) == 1_000

    def test_failed_call_rolls_back(self, chain, funded_token):
        result = chain.call(OWNER, funded_token.address, 0, encode_call("transfer(address,uint256)", RECIPIENT, 5_000))

        assert not result.success
        assert funded_token.balance_of(OWNER) == 1_000

    def test_allowance_changes_only_through_approve(self, chain, funded_token):
        result = chain.call(
            OWNER, funded_token.address, 0, encode_call("increaseAllowance(address,uint256)", STRANGER, 50)
        )

        assert not result.success
        assert funded_token.allowance(OWNER, STRANGER) == 0

    def test_token_defaults(self):
        token = ERC20Token()
        assert token.decimals == 6
        assert token.symbol == "USDC"
