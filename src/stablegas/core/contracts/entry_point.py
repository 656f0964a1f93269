"""
Operation relay (ERC-4337 style EntryPoint).

The trusted relay that accounts and sponsors bind to. For each UserOperation:
1. Validate with the account (nonce, owner signature) and, when sponsored,
   with the sponsor; check the payer's native deposit covers the worst case
2. Execute the operation's calls through the account
3. Charge the payer's deposit for the actual cost and pay the beneficiary
4. Let the sponsor settle in its token

One operation failing never aborts the others in the bundle.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Dict, List, Optional, Sequence, Tuple

from ..vm.abi import ZERO_ADDRESS, is_null_address, normalize_address
from ..vm.exceptions import (
    ContractValidationError,
    InsufficientBalanceError,
    InsufficientFundsError,
    SettlementError,
    VMExecutionError,
)
from .account import SmartAccount, UserOperation
from .base import Contract
from .fee_sponsor import FeeSponsor, SponsorContext

logger = logging.getLogger(__name__)

# Canonical ERC-4337 v0.6 EntryPoint address
ENTRY_POINT_ADDRESS = "0x5ff137d4b0fdcd49dca30c7cf57e578a026d2789"


@dataclass
class OperationResult:
    """Outcome of one relayed operation."""
    success: bool
    sender: str = ""
    op_hash: bytes = b""
    payer: str = ""
    actual_gas_used: int = 0
    actual_cost: int = 0
    settled: bool = False
    call_results: List[bool] = field(default_factory=list)
    error: str = ""


@dataclass
class EntryPoint(Contract):
    """
    Reference relay holding native deposits for gas prepayment.

    Deposits are native currency held at the relay's own address, keyed by
    the payer (an account or a sponsor).
    """

    address: str = ENTRY_POINT_ADDRESS

    deposits: Dict[str, int] = field(default_factory=dict)

    # ==================== Main Entry Point ====================

    def handle_ops(
        self,
        caller: str,
        ops: Sequence[UserOperation],
        beneficiary: str,
    ) -> List[OperationResult]:
        """
        Handle a bundle of UserOperations.

        Args:
            caller: Bundler submitting the operations
            ops: Operations, processed in order
            beneficiary: Receives the native cost of every operation

        Returns:
            One OperationResult per operation
        """
        beneficiary_norm = normalize_address(beneficiary)
        if is_null_address(beneficiary_norm):
            raise ContractValidationError("Beneficiary cannot be the zero address")

        results = []
        for op in ops:
            try:
                results.append(self._handle_single_op(op, beneficiary_norm))
            except VMExecutionError as e:
                logger.warning(
                    "UserOp failed",
                    extra={
                        "event": "entrypoint.op_failed",
                        "bundler": normalize_address(caller)[:10],
                        "sender": normalize_address(op.sender)[:10],
                        "error": e.message,
                        "error_type": type(e).__name__,
                    }
                )
                results.append(OperationResult(
                    success=False,
                    sender=normalize_address(op.sender),
                    error=e.message,
                ))

        return results

    def _handle_single_op(self, op: UserOperation, beneficiary: str) -> OperationResult:
        """Handle a single UserOperation."""
        chain = self._require_chain()
        sender = normalize_address(op.sender)
        account = chain.get_contract(sender)
        if not isinstance(account, SmartAccount):
            raise ContractValidationError(f"Account {sender} not found")

        op_hash = op.hash(self.address, chain.chain_id)
        max_cost = op.max_cost()

        # 1. Validation; a rejection leaves no trace (nonce included)
        with chain.atomic():
            account.validate_user_op(self.address, op, op_hash)
            sponsor, context = self._validate_sponsor(op, max_cost)
            payer = sponsor.address if sponsor else sender
            deposit = self.deposits.get(payer, 0)
            if deposit < max_cost:
                raise InsufficientFundsError(
                    f"Deposit of {payer} too low ({deposit} < {max_cost})",
                    required=max_cost,
                    available=deposit,
                )

        # 2. Execution
        success, call_results, error = self._execute(account, op)

        # 3. Gas accounting, simplified: half the call limit is assumed spent
        gas_used = op.pre_verification_gas + op.verification_gas_limit + op.call_gas_limit // 2
        actual_cost = min(gas_used * op.max_fee_per_gas, max_cost)
        self.deposits[payer] -= actual_cost
        chain.transfer_native(self.address, beneficiary, actual_cost)

        # 4. Sponsor settlement
        settled = False
        if sponsor is not None:
            settled = self._settle(sponsor, context, actual_cost, reverted=not success)

        self._emit(
            "UserOperationEvent",
            op_hash=op_hash,
            sender=sender,
            paymaster=normalize_address(op.paymaster),
            nonce=op.nonce,
            success=success,
            actual_cost=actual_cost,
        )

        logger.info(
            "UserOp processed",
            extra={
                "event": "entrypoint.op_processed",
                "sender": sender[:10],
                "success": success,
                "gas_used": gas_used,
                "actual_cost": actual_cost,
                "sponsored": sponsor is not None,
            }
        )

        return OperationResult(
            success=success,
            sender=sender,
            op_hash=op_hash,
            payer=payer,
            actual_gas_used=gas_used,
            actual_cost=actual_cost,
            settled=settled,
            call_results=call_results,
            error=error,
        )

    def _validate_sponsor(
        self, op: UserOperation, max_cost: int
    ) -> Tuple[Optional[FeeSponsor], Optional[SponsorContext]]:
        if is_null_address(op.paymaster):
            return None, None

        sponsor = self._require_chain().get_contract(op.paymaster)
        if not isinstance(sponsor, FeeSponsor):
            raise ContractValidationError(f"Sponsor {normalize_address(op.paymaster)} not found")
        return sponsor, sponsor.validate(self.address, op.sender, max_cost)

    def _execute(self, account: SmartAccount, op: UserOperation) -> Tuple[bool, List[bool], str]:
        """Run the operation's calls; a single call reverts as a whole, a batch per item."""
        if not op.calls:
            return True, [], ""

        try:
            if len(op.calls) == 1:
                call = op.calls[0]
                account.execute(self.address, call.target, call.value, call.data)
                return True, [True], ""

            results = account.execute_batch(
                self.address,
                [c.target for c in op.calls],
                [c.value for c in op.calls],
                [c.data for c in op.calls],
            )
            return True, [r.success for r in results], ""
        except VMExecutionError as e:
            logger.warning(
                "UserOp execution failed",
                extra={
                    "event": "entrypoint.execution_failed",
                    "sender": account.address[:10],
                    "error": e.message,
                    "error_type": type(e).__name__,
                }
            )
            return False, [False] * len(op.calls), e.message

    def _settle(
        self, sponsor: FeeSponsor, context: SponsorContext, actual_cost: int, reverted: bool
    ) -> bool:
        chain = self._require_chain()
        try:
            with chain.atomic():
                sponsor.settle(self.address, context, actual_cost, reverted)
        except SettlementError as e:
            # The operation stays executed; the sponsor absorbs the cost
            logger.error(
                "Sponsor settlement failed",
                extra={
                    "event": "entrypoint.settlement_failed",
                    "sponsor": sponsor.address[:10],
                    "sender": context.sender[:10],
                    "error": e.message,
                }
            )
            return False
        return not reverted

    # ==================== Deposit Management ====================

    def receive(self, caller: str, value: int) -> None:
        """Plain value sent to the relay is deposited for the sender."""
        if value:
            self._credit(normalize_address(caller), value)

    def deposit_to(self, caller: str, account: str, amount: int) -> bool:
        """Move ``amount`` of the caller's native currency into ``account``'s deposit."""
        account_norm = normalize_address(account)
        if is_null_address(account_norm):
            raise ContractValidationError("Deposit account cannot be the zero address")
        if amount <= 0:
            raise ContractValidationError("Deposit amount must be greater than zero")

        chain = self._require_chain()
        with chain.atomic():
            chain.transfer_native(caller, self.address, amount)
            self._credit(account_norm, amount)
        return True

    def withdraw_to(self, caller: str, withdraw_address: str, amount: int) -> bool:
        """Withdraw from the caller's own deposit."""
        caller_norm = normalize_address(caller)
        to_norm = normalize_address(withdraw_address)
        if is_null_address(to_norm):
            raise ContractValidationError("Withdraw address cannot be the zero address")

        current = self.deposits.get(caller_norm, 0)
        if amount > current:
            raise InsufficientBalanceError(
                f"Insufficient deposit ({current} < {amount})",
                required=amount,
                available=current,
            )

        self.deposits[caller_norm] = current - amount
        self._require_chain().transfer_native(self.address, to_norm, amount)
        self._emit("Withdrawn", account=caller_norm, to=to_norm, amount=amount)
        logger.info(
            "Deposit withdrawn",
            extra={"event": "entrypoint.withdraw", "account": caller_norm[:10], "amount": amount}
        )
        return True

    def balance_of(self, account: str) -> int:
        """Get deposit balance."""
        return self.deposits.get(normalize_address(account), 0)

    def get_nonce(self, sender: str) -> int:
        account = self._require_chain().get_contract(sender)
        if isinstance(account, SmartAccount):
            return account.get_nonce()
        return 0

    # ==================== Internal ====================

    def _credit(self, account: str, amount: int) -> None:
        self.deposits[account] = self.deposits.get(account, 0) + amount
        self._emit("Deposited", account=account, amount=amount)
        logger.debug(
            "Deposit credited",
            extra={"event": "entrypoint.deposit", "account": account[:10], "amount": amount}
        )
