"""
fees.py - Protocol Fee Policy

The fee policy is a singleton unit (FEE_POLICY) whose state holds:
    - lender_fee: share of accrued interest taken by the protocol, in bps
    - borrower_fee: share of drawn debt taken at origination, in bps
    - fee_recipient: wallet receiving both
    - owner: the only wallet allowed to change the above

Setters are pure functions returning a PendingTransaction, like every other
protocol operation, so fee changes are logged and atomic.
"""

from __future__ import annotations
from dataclasses import dataclass
from typing import Any, Dict

from .core import (
    LedgerView, PendingTransaction, Unit, UnitStateChange,
    TransactionOrigin, OriginType,
    FeeTooHigh, Unauthorized,
    FEE_POLICY_SYMBOL, PROTOCOL_WALLET, UNIT_TYPE_FEE_POLICY,
    MAX_LENDER_FEE, MAX_BORROWER_FEE, DEFAULT_LENDER_FEE, DEFAULT_BORROWER_FEE,
    build_transaction, check_caller, _freeze_state,
)


@dataclass(frozen=True, slots=True)
class FeePolicy:
    """Immutable snapshot of the protocol fee configuration."""
    owner: str
    fee_recipient: str
    lender_fee: int = DEFAULT_LENDER_FEE
    borrower_fee: int = DEFAULT_BORROWER_FEE

    def __post_init__(self):
        validate_lender_fee(self.lender_fee)
        validate_borrower_fee(self.borrower_fee)
        if not self.owner or not self.fee_recipient:
            raise ValueError("owner and fee_recipient are required")


def validate_lender_fee(fee: int) -> None:
    if fee < 0 or fee > MAX_LENDER_FEE:
        raise FeeTooHigh(f"lender fee {fee} bps outside [0, {MAX_LENDER_FEE}]")


def validate_borrower_fee(fee: int) -> None:
    if fee < 0 or fee > MAX_BORROWER_FEE:
        raise FeeTooHigh(f"borrower fee {fee} bps outside [0, {MAX_BORROWER_FEE}]")


def to_state_dict(policy: FeePolicy) -> Dict[str, Any]:
    return {
        'owner': policy.owner,
        'fee_recipient': policy.fee_recipient,
        'lender_fee': policy.lender_fee,
        'borrower_fee': policy.borrower_fee,
    }


def from_state_dict(state: Dict[str, Any]) -> FeePolicy:
    return FeePolicy(
        owner=state['owner'],
        fee_recipient=state['fee_recipient'],
        lender_fee=state['lender_fee'],
        borrower_fee=state['borrower_fee'],
    )


def create_fee_policy_unit(policy: FeePolicy) -> Unit:
    """Create the FEE_POLICY unit holding policy."""
    return Unit(
        symbol=FEE_POLICY_SYMBOL,
        name="Protocol fee policy",
        unit_type=UNIT_TYPE_FEE_POLICY,
        _frozen_state=_freeze_state(to_state_dict(policy)),
    )


def load_fee_policy(view: LedgerView) -> FeePolicy:
    return from_state_dict(view.get_unit_state(FEE_POLICY_SYMBOL))


def _compute_policy_update(
    view: LedgerView,
    caller: str,
    event_type: str,
    **updates: Any,
) -> PendingTransaction:
    old_state = view.get_unit_state(FEE_POLICY_SYMBOL)
    if caller != old_state['owner']:
        raise Unauthorized(f"{caller} is not the protocol owner")
    new_state = {**old_state, **updates}
    return build_transaction(
        view,
        [],
        [UnitStateChange(unit=FEE_POLICY_SYMBOL, old_state=old_state, new_state=new_state)],
        origin=TransactionOrigin(OriginType.USER_ACTION, caller, FEE_POLICY_SYMBOL, event_type),
    )


def compute_set_lender_fee(view: LedgerView, caller: str, fee: int) -> PendingTransaction:
    """
    Set the protocol's share of accrued interest.

    Raises:
        FeeTooHigh: If fee > MAX_LENDER_FEE
        Unauthorized: If caller is not the owner
    """
    validate_lender_fee(fee)
    return _compute_policy_update(view, caller, "SET_LENDER_FEE", lender_fee=fee)


def compute_set_borrower_fee(view: LedgerView, caller: str, fee: int) -> PendingTransaction:
    """
    Set the origination fee charged on drawn debt.

    Raises:
        FeeTooHigh: If fee > MAX_BORROWER_FEE
        Unauthorized: If caller is not the owner
    """
    validate_borrower_fee(fee)
    return _compute_policy_update(view, caller, "SET_BORROWER_FEE", borrower_fee=fee)


def compute_set_fee_recipient(
    view: LedgerView,
    caller: str,
    fee_recipient: str,
    custody_wallet: str = PROTOCOL_WALLET,
) -> PendingTransaction:
    """
    Redirect protocol fees and interest to fee_recipient.

    Raises:
        ValueError: If fee_recipient is empty
        Unauthorized: If caller is not the owner, or fee_recipient is a reserved wallet
    """
    if not fee_recipient:
        raise ValueError("fee_recipient cannot be empty")
    check_caller(fee_recipient, custody_wallet)
    return _compute_policy_update(view, caller, "SET_FEE_RECIPIENT", fee_recipient=fee_recipient)
