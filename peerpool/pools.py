"""
pools.py - Lending Pools

A Pool is a pot of lendable tokens configured by one lender for one
(loan token, collateral token) pair. At most one pool exists per triple: the
pool id is a SHA-256 digest of (lender, loan_token, collateral_token).

Pools are state-only ledger units (symbol POOL_<id>). The tokens themselves
sit in the custody wallet; pool_balance is the pool's claim on them.

=== FIELDS ===

    lender             owner of the pool
    loan_token         token lent out
    collateral_token   token borrowers lock up
    min_loan_size      smallest debt a borrower may draw (> 0)
    pool_balance       undrawn tokens available to borrowers
    max_loan_ratio     max debt per unit collateral, scaled by 1e18 (> 0)
    auction_length     refinancing auction window in seconds
    interest_rate      annualized rate in bps
    outstanding_loans  debt currently drawn from the pool

outstanding_loans is owned by loan issuance, repayment, seizure and auction
settlement. A configuration update must echo the stored value back; any other
value is rejected.

=== OPERATIONS ===

Each returns a PendingTransaction for Ledger.execute():
    compute_set_pool(view, caller, pool)
    compute_add_to_pool(view, caller, pool_id, amount)
    compute_remove_from_pool(view, caller, pool_id, amount)
    compute_update_max_loan_ratio(view, caller, pool_id, max_loan_ratio)
    compute_update_interest_rate(view, caller, pool_id, interest_rate)

Checks on caller-supplied parameters run before any pool state is read.
"""

from __future__ import annotations
from dataclasses import dataclass, replace
from decimal import Decimal
import hashlib
import json
from typing import Any, Dict, List

from .core import (
    LedgerView, Move, PendingTransaction, StagedState, Unit,
    TransactionOrigin, OriginType,
    PoolConfig, PoolNotFound, Unauthorized, UnitNotRegistered,
    MAX_AUCTION_LENGTH, MAX_INTEREST_RATE, PROTOCOL_WALLET, UNIT_TYPE_POOL,
    append_move, check_caller, _freeze_state,
)


@dataclass(frozen=True, slots=True)
class Pool:
    """Immutable snapshot of a pool's configuration and balances."""
    lender: str
    loan_token: str
    collateral_token: str
    min_loan_size: Decimal
    pool_balance: Decimal
    max_loan_ratio: Decimal
    auction_length: int
    interest_rate: int
    outstanding_loans: Decimal = Decimal("0")

    def __post_init__(self):
        """Convert numeric values to Decimal to ensure type consistency."""
        for name in ('min_loan_size', 'pool_balance', 'max_loan_ratio', 'outstanding_loans'):
            value = getattr(self, name)
            if not isinstance(value, Decimal):
                object.__setattr__(self, name, Decimal(str(value)))

    @property
    def pool_id(self) -> str:
        return pool_id(self.lender, self.loan_token, self.collateral_token)

    @property
    def symbol(self) -> str:
        return pool_symbol(self.pool_id)


def pool_id(lender: str, loan_token: str, collateral_token: str) -> str:
    """Deterministic identity of the pool for (lender, loan_token, collateral_token)."""
    payload = json.dumps([lender, loan_token, collateral_token])
    return hashlib.sha256(payload.encode()).hexdigest()


def pool_symbol(pid: str) -> str:
    return f"POOL_{pid}"


def to_state_dict(pool: Pool) -> Dict[str, Any]:
    return {
        'lender': pool.lender,
        'loan_token': pool.loan_token,
        'collateral_token': pool.collateral_token,
        'min_loan_size': pool.min_loan_size,
        'pool_balance': pool.pool_balance,
        'max_loan_ratio': pool.max_loan_ratio,
        'auction_length': pool.auction_length,
        'interest_rate': pool.interest_rate,
        'outstanding_loans': pool.outstanding_loans,
    }


def from_state_dict(state: Dict[str, Any]) -> Pool:
    return Pool(**state)


def create_pool_unit(pool: Pool) -> Unit:
    """Create the state-only unit that records pool."""
    return Unit(
        symbol=pool.symbol,
        name=f"Pool: {pool.lender} lends {pool.loan_token} against {pool.collateral_token}",
        unit_type=UNIT_TYPE_POOL,
        _frozen_state=_freeze_state(to_state_dict(pool)),
    )


def get_pool(view: LedgerView, pid: str) -> Pool:
    """
    Load a pool by id.

    Raises:
        PoolNotFound: If no pool has this id
    """
    try:
        return from_state_dict(view.get_unit_state(pool_symbol(pid)))
    except UnitNotRegistered:
        raise PoolNotFound(f"Pool {pid} not found") from None


def list_pools(view: LedgerView) -> List[Pool]:
    return [
        from_state_dict(view.get_unit_state(symbol))
        for symbol in view.list_units()
        if symbol.startswith("POOL_")
    ]


def read_staged_pool(staged: StagedState, pid: str) -> Pool:
    """Load a pool through a StagedState overlay."""
    try:
        return from_state_dict(staged.read(pool_symbol(pid)))
    except UnitNotRegistered:
        raise PoolNotFound(f"Pool {pid} not found") from None


def write_staged_pool(staged: StagedState, pool: Pool) -> None:
    staged.write(pool.symbol, to_state_dict(pool))


# =============================================================================
# VALIDATION
# =============================================================================

def validate_pool_config(pool: Pool) -> None:
    """
    Check the bounds of a submitted pool configuration.

    Only looks at the submitted values, never at ledger state.

    Raises:
        PoolConfig: On any bound violation
    """
    if pool.min_loan_size <= 0:
        raise PoolConfig("min_loan_size must be non-zero")
    if pool.max_loan_ratio <= 0:
        raise PoolConfig("max_loan_ratio must be non-zero")
    if pool.auction_length <= 0 or pool.auction_length > MAX_AUCTION_LENGTH:
        raise PoolConfig(f"auction_length must be in (0, {MAX_AUCTION_LENGTH}]")
    if pool.interest_rate < 0 or pool.interest_rate > MAX_INTEREST_RATE:
        raise PoolConfig(f"interest_rate must be in [0, {MAX_INTEREST_RATE}]")
    if pool.pool_balance < 0:
        raise PoolConfig("pool_balance cannot be negative")
    if pool.outstanding_loans < 0:
        raise PoolConfig("outstanding_loans cannot be negative")


def _check_precision(view: LedgerView, token_symbol: str, amount: Decimal) -> None:
    if view.get_unit(token_symbol).round(amount) != amount:
        raise PoolConfig(f"{amount} exceeds {token_symbol} precision")


def _origin(caller: str, symbol: str, event_type: str) -> TransactionOrigin:
    return TransactionOrigin(OriginType.USER_ACTION, caller, symbol, event_type)


# =============================================================================
# OPERATIONS
# =============================================================================

def compute_set_pool(
    view: LedgerView,
    caller: str,
    pool: Pool,
    custody_wallet: str = PROTOCOL_WALLET,
) -> PendingTransaction:
    """
    Create a pool, or overwrite the configuration of an existing one.

    The balance difference between the submitted and stored configuration is
    pulled from the caller (top-up) or pushed back to the caller (drawdown).

    Raises:
        PoolConfig: Bound violation, or outstanding_loans differs from the stored value
        Unauthorized: If caller is not pool.lender, or is a reserved wallet
    """
    validate_pool_config(pool)
    check_caller(caller, custody_wallet)
    if caller != pool.lender:
        raise Unauthorized(f"{caller} cannot configure a pool lent by {pool.lender}")

    _check_precision(view, pool.loan_token, pool.pool_balance)
    view.get_unit(pool.collateral_token)

    staged = StagedState(view)
    if staged.exists(pool.symbol):
        current = read_staged_pool(staged, pool.pool_id)
        if pool.outstanding_loans != current.outstanding_loans:
            raise PoolConfig(
                f"outstanding_loans {pool.outstanding_loans} does not match "
                f"stored {current.outstanding_loans}"
            )
        write_staged_pool(staged, pool)
        current_balance = current.pool_balance
    else:
        if pool.outstanding_loans != 0:
            raise PoolConfig("a new pool cannot have outstanding loans")
        staged.create(create_pool_unit(pool))
        current_balance = Decimal("0")

    moves: List[Move] = []
    contract_id = f"set_pool:{pool.pool_id[:16]}"
    if pool.pool_balance > current_balance:
        append_move(moves, pool.pool_balance - current_balance, pool.loan_token,
                    caller, custody_wallet, contract_id)
    else:
        append_move(moves, current_balance - pool.pool_balance, pool.loan_token,
                    custody_wallet, caller, contract_id)

    return staged.build(moves, _origin(caller, pool.symbol, "SET_POOL"))


def _compute_owner_update(
    view: LedgerView,
    caller: str,
    pid: str,
    event_type: str,
    **changes: Any,
) -> PendingTransaction:
    staged = StagedState(view)
    pool = read_staged_pool(staged, pid)
    if caller != pool.lender:
        raise Unauthorized(f"{caller} is not the lender of pool {pid}")
    write_staged_pool(staged, replace(pool, **changes))
    return staged.build([], _origin(caller, pool.symbol, event_type))


def compute_add_to_pool(
    view: LedgerView,
    caller: str,
    pid: str,
    amount: Decimal,
    custody_wallet: str = PROTOCOL_WALLET,
) -> PendingTransaction:
    """
    Top up a pool's balance from its lender.

    Raises:
        PoolConfig: If amount is zero or negative
        Unauthorized: If caller is not the pool's lender, or is a reserved wallet
    """
    if amount <= 0:
        raise PoolConfig("amount must be non-zero")
    check_caller(caller, custody_wallet)
    staged = StagedState(view)
    pool = read_staged_pool(staged, pid)
    if caller != pool.lender:
        raise Unauthorized(f"{caller} is not the lender of pool {pid}")
    _check_precision(view, pool.loan_token, amount)

    write_staged_pool(staged, replace(pool, pool_balance=pool.pool_balance + amount))
    moves: List[Move] = []
    append_move(moves, amount, pool.loan_token, caller, custody_wallet, f"add_to_pool:{pid[:16]}")
    return staged.build(moves, _origin(caller, pool.symbol, "ADD_TO_POOL"))


def compute_remove_from_pool(
    view: LedgerView,
    caller: str,
    pid: str,
    amount: Decimal,
    custody_wallet: str = PROTOCOL_WALLET,
) -> PendingTransaction:
    """
    Withdraw undrawn balance from a pool back to its lender.

    Raises:
        PoolConfig: If amount is zero or exceeds the pool balance
        Unauthorized: If caller is not the pool's lender, or is a reserved wallet
    """
    if amount <= 0:
        raise PoolConfig("amount must be non-zero")
    check_caller(caller, custody_wallet)
    staged = StagedState(view)
    pool = read_staged_pool(staged, pid)
    if caller != pool.lender:
        raise Unauthorized(f"{caller} is not the lender of pool {pid}")
    if amount > pool.pool_balance:
        raise PoolConfig(f"cannot remove {amount}, pool balance is {pool.pool_balance}")
    _check_precision(view, pool.loan_token, amount)

    write_staged_pool(staged, replace(pool, pool_balance=pool.pool_balance - amount))
    moves: List[Move] = []
    append_move(moves, amount, pool.loan_token, custody_wallet, caller, f"remove_from_pool:{pid[:16]}")
    return staged.build(moves, _origin(caller, pool.symbol, "REMOVE_FROM_POOL"))


def compute_update_max_loan_ratio(
    view: LedgerView,
    caller: str,
    pid: str,
    max_loan_ratio: Decimal,
) -> PendingTransaction:
    if max_loan_ratio <= 0:
        raise PoolConfig("max_loan_ratio must be non-zero")
    return _compute_owner_update(
        view, caller, pid, "UPDATE_MAX_LOAN_RATIO", max_loan_ratio=max_loan_ratio
    )


def compute_update_interest_rate(
    view: LedgerView,
    caller: str,
    pid: str,
    interest_rate: int,
) -> PendingTransaction:
    if interest_rate < 0 or interest_rate > MAX_INTEREST_RATE:
        raise PoolConfig(f"interest_rate must be in [0, {MAX_INTEREST_RATE}]")
    return _compute_owner_update(
        view, caller, pid, "UPDATE_INTEREST_RATE", interest_rate=interest_rate
    )
