"""
Shared fixtures: an in-memory chain with a settlement token, relay, account
template, factory, sponsor, and a few purpose-built call targets.
"""

import sys
from dataclasses import dataclass, field
from pathlib import Path
from typing import Set

import pytest

# Make the src layout importable without an installed package
project_root = Path(__file__).resolve().parents[2]
sys.path.insert(0, str(project_root / "src"))

from stablegas.core.chain_state import ChainState
from stablegas.core.contracts import (
    AccountFactory,
    ERC20Token,
    EntryPoint,
    FeeConfig,
    FeeSponsor,
    SmartAccount,
)
from stablegas.core.contracts.base import Contract, external
from stablegas.core.crypto_utils import owner_address, owner_keypair_from_seed
from stablegas.core.vm.abi import encode_call
from stablegas.core.vm.exceptions import SubCallError, VMExecutionError

OWNER = "0x" + "11" * 20
RECIPIENT = "0x" + "22" * 20
PAYEE = "0x" + "33" * 20
SPONSOR_OWNER = "0x" + "44" * 20
FACTORY_OWNER = "0x" + "55" * 20
BUNDLER = "0x" + "66" * 20
BENEFICIARY = "0x" + "77" * 20
TOKEN_OWNER = "0x" + "88" * 20
STRANGER = "0x" + "99" * 20

EXCHANGE_RATE = 2000 * 10**18
SPONSOR_MARKUP_BPS = 1000


@dataclass
class Counter(Contract):
    """Call target that counts, reverts on request, and accepts value."""

    count: int = 0
    last_caller: str = ""
    received: int = 0

    @external("increment(uint256)", returns=("uint256",))
    def increment(self, caller, amount):
        self.count += amount
        self.last_caller = caller.lower()
        return self.count

    @external("fail(string)")
    def fail(self, caller, reason):
        # Mutate first so tests can see the rollback
        self.count += 1000
        raise VMExecutionError(reason)

    @external("failCustom(bytes)")
    def fail_custom(self, caller, payload):
        raise VMExecutionError("custom failure", revert_data=bytes(payload))

    def receive(self, caller, value):
        self.received += value


@dataclass
class ReentrantOwner(Contract):
    """Owner contract that calls back into its account while being executed."""

    account: str = ""
    counter: str = ""

    @external("attack()")
    def attack(self, caller):
        payload = encode_call(
            "execute(address,uint256,bytes)",
            self.counter,
            0,
            encode_call("increment(uint256)", 1),
        )
        result = self._call(self.account, 0, payload)
        if not result.success:
            raise SubCallError(result.return_data, target=self.account)


@dataclass
class BlockingToken(ERC20Token):
    """Settlement token that refuses to credit blocked addresses."""

    blocked: Set[str] = field(default_factory=set)

    def _move(self, from_addr, to_addr, amount):
        if to_addr in self.blocked:
            raise VMExecutionError("recipient blocked")
        super()._move(from_addr, to_addr, amount)


@dataclass
class FalseToken(ERC20Token):
    """Settlement token that reports failed transfers by returning False."""

    @external("transfer(address,uint256)", returns=("bool",))
    def transfer(self, sender, recipient, amount):
        return False

    @external("transferFrom(address,address,uint256)", returns=("bool",))
    def transfer_from(self, spender, from_addr, to_addr, amount):
        return False


@pytest.fixture
def chain():
    return ChainState(chain_id=31337)


@pytest.fixture
def entry_point(chain):
    return chain.deploy(EntryPoint())


@pytest.fixture
def token(chain):
    return chain.deploy(ERC20Token(owner=TOKEN_OWNER))


@pytest.fixture
def fee_config(token):
    return FeeConfig(
        settlement_token=token.address,
        sponsor_payee=PAYEE,
        exchange_rate=EXCHANGE_RATE,
    )


@pytest.fixture
def template(chain, entry_point):
    return chain.deploy(SmartAccount(entry_point=entry_point.address))


@pytest.fixture
def factory(chain, template, fee_config):
    return chain.deploy(
        AccountFactory(
            owner=FACTORY_OWNER,
            template=template.address,
            default_fee_config=fee_config,
        )
    )


@pytest.fixture
def account(chain, factory):
    return chain.get_contract(factory.create_account(OWNER, 0))


@pytest.fixture
def owner_keys():
    """(private_hex, public_hex, address) of a deterministic owner key."""
    private_hex, public_hex = owner_keypair_from_seed(b"stablegas-owner")
    return private_hex, public_hex, owner_address(public_hex)


@pytest.fixture
def keyed_account(chain, factory, owner_keys):
    """Account whose owner registered a public key for relayed operations."""
    _, public_hex, owner_address = owner_keys
    return chain.get_contract(factory.create_account(owner_address, 1, public_hex))


@pytest.fixture
def sponsor(chain, entry_point, token):
    return chain.deploy(
        FeeSponsor(
            owner=SPONSOR_OWNER,
            entry_point=entry_point.address,
            settlement_token=token.address,
            exchange_rate=EXCHANGE_RATE,
            markup_bps=SPONSOR_MARKUP_BPS,
        )
    )


@pytest.fixture
def counter(chain):
    return chain.deploy(Counter())


@pytest.fixture
def reentrant_owner(chain, factory, counter):
    attacker = chain.deploy(ReentrantOwner(counter=counter.address))
    attacker.account = factory.create_account(attacker.address, 0)
    return attacker


@pytest.fixture
def blocking_token(chain):
    return chain.deploy(BlockingToken(owner=TOKEN_OWNER))


@pytest.fixture
def false_token(chain):
    return chain.deploy(FalseToken(owner=TOKEN_OWNER))
