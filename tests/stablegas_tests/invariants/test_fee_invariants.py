"""
Fee Invariant Tests using Property-Based Testing

These tests check properties of the conversion and settlement arithmetic that
must hold for every input, not just the hand-picked examples in the unit
tests: conversion is monotone and never rounds against the payer, a markup
never lowers a charge, a sponsor never collects more than it validated, and
token supply is conserved through fee payments.
"""

import pytest
from hypothesis import given, settings, strategies as st

from stablegas.core.chain_state import ChainState
from stablegas.core.contracts import (
    EntryPoint,
    ERC20Token,
    FeeConfig,
    FeeSponsor,
    SmartAccount,
)
from stablegas.core.contracts.fee_converter import DECIMAL_RESCALE, MAX_MARKUP_BPS, RATE_SCALE, convert
from stablegas.core.vm.exceptions import ContractValidationError

OWNER = "0x" + "11" * 20
RECIPIENT = "0x" + "22" * 20
PAYEE = "0x" + "33" * 20
TOKEN_OWNER = "0x" + "88" * 20

native_costs = st.integers(min_value=0, max_value=10**24)
exchange_rates = st.integers(min_value=1, max_value=10**24)
markups = st.integers(min_value=0, max_value=MAX_MARKUP_BPS)


def _deploy_sponsor(markup_bps: int):
    """Fresh chain with a sponsor and a holder that approved it generously."""
    chain = ChainState()
    entry_point = chain.deploy(EntryPoint())
    token = chain.deploy(ERC20Token(owner=TOKEN_OWNER))
    sponsor = chain.deploy(
        FeeSponsor(
            owner=TOKEN_OWNER,
            entry_point=entry_point.address,
            settlement_token=token.address,
            exchange_rate=2000 * 10**18,
            markup_bps=markup_bps,
        )
    )
    token.mint(TOKEN_OWNER, OWNER, 10**30)
    token.approve(OWNER, sponsor.address, 10**30)
    return entry_point, token, sponsor


class TestConversionInvariants:
    """Property-based tests for native-to-token conversion."""

    @given(exchange_rates, markups)
    @settings(max_examples=200)
    def test_zero_cost_converts_to_zero(self, rate: int, markup: int):
        assert convert(0, rate, markup) == 0

    @given(native_costs, native_costs, exchange_rates, markups)
    @settings(max_examples=500)
    def test_monotone_in_cost(self, a: int, b: int, rate: int, markup: int):
        low, high = sorted((a, b))
        assert convert(low, rate, markup) <= convert(high, rate, markup)

    @given(native_costs, exchange_rates, markups)
    @settings(max_examples=500)
    def test_markup_never_lowers_charge(self, cost: int, rate: int, markup: int):
        assert convert(cost, rate, markup) >= convert(cost, rate, 0)

    @given(native_costs, exchange_rates, markups)
    @settings(max_examples=500)
    def test_never_rounds_against_payer(self, cost: int, rate: int, markup: int):
        """The floored result never exceeds the exact rational amount."""
        result = convert(cost, rate, markup)
        exact_numerator = cost * rate * (10_000 + markup)
        exact_denominator = RATE_SCALE * 10_000 * DECIMAL_RESCALE
        assert result * exact_denominator <= exact_numerator

    @given(native_costs, exchange_rates)
    @settings(max_examples=200)
    def test_out_of_range_markup_rejected(self, cost: int, rate: int):
        with pytest.raises(ContractValidationError):
            convert(cost, rate, MAX_MARKUP_BPS + 1)


class TestSettlementInvariants:
    """Property-based tests for two-phase sponsorship."""

    @given(
        max_cost=st.integers(min_value=0, max_value=10**18),
        actual_cost=st.integers(min_value=0, max_value=2 * 10**18),
        markup=markups,
        reverted=st.booleans(),
    )
    @settings(max_examples=100, deadline=None)
    def test_charge_bounded_by_validated_amount(self, max_cost, actual_cost, markup, reverted):
        entry_point, token, sponsor = _deploy_sponsor(markup)
        before = token.balance_of(OWNER)

        context = sponsor.validate(entry_point.address, OWNER, max_cost)
        sponsor.settle(entry_point.address, context, actual_cost, reverted)

        charged = before - token.balance_of(OWNER)
        assert 0 <= charged <= context.required_amount
        assert charged == sponsor.held_balance
        if reverted:
            assert charged == 0

    @given(
        amount=st.integers(min_value=1, max_value=10**12),
        fee=st.integers(min_value=0, max_value=10**12),
    )
    @settings(max_examples=100, deadline=None)
    def test_fee_transfer_conserves_supply(self, amount, fee):
        chain = ChainState()
        entry_point = chain.deploy(EntryPoint())
        token = chain.deploy(ERC20Token(owner=TOKEN_OWNER))
        account = chain.deploy(SmartAccount(entry_point=entry_point.address))
        account.initialize(
            OWNER,
            FeeConfig(settlement_token=token.address, sponsor_payee=PAYEE, exchange_rate=2000 * 10**18),
        )
        token.mint(TOKEN_OWNER, account.address, 3 * 10**12)

        account.execute_fee_transfer(OWNER, RECIPIENT, amount, fee)

        balances = [token.balance_of(a) for a in (account.address, RECIPIENT, PAYEE)]
        assert sum(balances) == token.total_supply == 3 * 10**12
        assert balances[1] == amount
        assert balances[2] == fee
