"""
loans.py - Loans Drawn From Pools

=== LOAN MODEL ===

A Loan is one borrower's collateralized debt position, owned by exactly one
pool at a time (identified by lender + token pair). Loans are state-only
ledger units (symbol LOAN_<id>); ids come from the LOAN_BOOK unit and are
handed out in order. Loans are never deleted: repayment and seizure mark them
closed with zero debt and collateral.

Interest accrues simply from start_timestamp on debt. Whenever a loan changes
hands (auction buy, hand-over, refinance) the accrued interest is settled and
start_timestamp resets.

=== AUCTION STATE ===

    Idle()                       not in an auction
    UnderAuction(start, length)  auction opened at start, open until
                                 start + length seconds (inclusive)

An UnderAuction loan past its window stays UnderAuction: it can no longer be
bought, but its lender can seize the collateral.

=== OPERATIONS ===

Each returns one PendingTransaction covering a whole batch, so a failure in
any item aborts the batch:
    compute_borrow(view, caller, requests)
    compute_repay(view, caller, loan_ids)
    compute_start_auction(view, caller, loan_ids)
    compute_seize_loan(view, caller, loan_ids)
    compute_give_loan(view, caller, loan_ids, pool_ids)
    compute_refinance(view, caller, refinances)

The auction buy lives in auction.py and shares settle_rehome() with
compute_give_loan.
"""

from __future__ import annotations
from dataclasses import dataclass, replace
from datetime import datetime, timedelta
from decimal import Decimal
from enum import Enum
from typing import Any, Dict, List, Optional, Sequence, Tuple, Union

from .core import (
    LedgerView, Move, PendingTransaction, StagedState, Unit,
    TransactionOrigin, OriginType,
    AuctionNotEnded, AuctionNotStarted, AuctionStarted, AuctionTooShort,
    LoanClosed, LoanNotFound, LoanTooLarge, LoanTooSmall, RateTooHigh, RatioTooHigh,
    TokenMismatch, Unauthorized, UnitNotRegistered,
    BPS_DENOMINATOR, LOAN_BOOK_SYMBOL, PROTOCOL_WALLET,
    UNIT_TYPE_LOAN, UNIT_TYPE_LOAN_BOOK,
    append_move, check_caller, _freeze_state,
)
from .fees import FeePolicy, load_fee_policy
from .interest import (
    calculate_borrower_fee, calculate_interest, calculate_loan_ratio,
    elapsed_seconds, quantize_down,
)
from .pools import Pool, pool_id, read_staged_pool, write_staged_pool


# =============================================================================
# TYPES
# =============================================================================

class LoanStatus(str, Enum):
    """Lifecycle status of a loan."""
    ACTIVE = "active"
    REPAID = "repaid"
    SEIZED = "seized"


@dataclass(frozen=True, slots=True)
class Idle:
    """Loan is not being auctioned."""


@dataclass(frozen=True, slots=True)
class UnderAuction:
    """Loan was put up for auction at start for length seconds."""
    start: datetime
    length: int

    @property
    def end(self) -> datetime:
        return self.start + timedelta(seconds=self.length)


AuctionState = Union[Idle, UnderAuction]

IDLE = Idle()


@dataclass(frozen=True, slots=True)
class Loan:
    """Immutable snapshot of a loan."""
    loan_id: int
    lender: str
    borrower: str
    loan_token: str
    collateral_token: str
    debt: Decimal
    collateral: Decimal
    interest_rate: int
    start_timestamp: datetime
    auction_length: int
    auction: AuctionState = IDLE
    status: LoanStatus = LoanStatus.ACTIVE

    def __post_init__(self):
        """Convert numeric values to Decimal to ensure type consistency."""
        if not isinstance(self.debt, Decimal):
            object.__setattr__(self, 'debt', Decimal(str(self.debt)))
        if not isinstance(self.collateral, Decimal):
            object.__setattr__(self, 'collateral', Decimal(str(self.collateral)))

    @property
    def pool_id(self) -> str:
        """Id of the pool that currently owns the loan."""
        return pool_id(self.lender, self.loan_token, self.collateral_token)

    @property
    def symbol(self) -> str:
        return loan_symbol(self.loan_id)

    def is_under_auction(self, now: datetime) -> bool:
        return isinstance(self.auction, UnderAuction) and now <= self.auction.end


@dataclass(frozen=True, slots=True)
class Borrow:
    """One borrow request: draw debt from a pool against collateral."""
    pool_id: str
    debt: Decimal
    collateral: Decimal


@dataclass(frozen=True, slots=True)
class Refinance:
    """Move a loan to pool_id with new debt and collateral amounts."""
    loan_id: int
    pool_id: str
    debt: Decimal
    collateral: Decimal


# =============================================================================
# STATE ADAPTERS
# =============================================================================

def loan_symbol(loan_id: int) -> str:
    return f"LOAN_{loan_id}"


def to_state_dict(loan: Loan) -> Dict[str, Any]:
    auction = None
    if isinstance(loan.auction, UnderAuction):
        auction = {'start': loan.auction.start, 'length': loan.auction.length}
    return {
        'loan_id': loan.loan_id,
        'lender': loan.lender,
        'borrower': loan.borrower,
        'loan_token': loan.loan_token,
        'collateral_token': loan.collateral_token,
        'debt': loan.debt,
        'collateral': loan.collateral,
        'interest_rate': loan.interest_rate,
        'start_timestamp': loan.start_timestamp,
        'auction_length': loan.auction_length,
        'auction': auction,
        'status': loan.status.value,
    }


def from_state_dict(state: Dict[str, Any]) -> Loan:
    raw_auction = state.get('auction')
    auction: AuctionState = IDLE
    if raw_auction is not None:
        auction = UnderAuction(start=raw_auction['start'], length=raw_auction['length'])
    return Loan(
        loan_id=state['loan_id'],
        lender=state['lender'],
        borrower=state['borrower'],
        loan_token=state['loan_token'],
        collateral_token=state['collateral_token'],
        debt=state['debt'],
        collateral=state['collateral'],
        interest_rate=state['interest_rate'],
        start_timestamp=state['start_timestamp'],
        auction_length=state['auction_length'],
        auction=auction,
        status=LoanStatus(state['status']),
    )


def create_loan_unit(loan: Loan) -> Unit:
    return Unit(
        symbol=loan.symbol,
        name=f"Loan {loan.loan_id}: {loan.borrower} owes {loan.loan_token}",
        unit_type=UNIT_TYPE_LOAN,
        _frozen_state=_freeze_state(to_state_dict(loan)),
    )


def create_loan_book_unit() -> Unit:
    """Create the LOAN_BOOK unit that hands out loan ids."""
    return Unit(
        symbol=LOAN_BOOK_SYMBOL,
        name="Loan book",
        unit_type=UNIT_TYPE_LOAN_BOOK,
        _frozen_state=_freeze_state({'next_loan_id': 0}),
    )


def get_loan(view: LedgerView, loan_id: int) -> Loan:
    """
    Load a loan by id.

    Raises:
        LoanNotFound: If no loan has this id
    """
    try:
        return from_state_dict(view.get_unit_state(loan_symbol(loan_id)))
    except UnitNotRegistered:
        raise LoanNotFound(f"Loan {loan_id} not found") from None


def list_loans(view: LedgerView) -> List[Loan]:
    """All loans in id order, closed ones included."""
    next_id = view.get_unit_state(LOAN_BOOK_SYMBOL)['next_loan_id']
    return [get_loan(view, loan_id) for loan_id in range(next_id)]


def created_loan_ids(pending: PendingTransaction) -> List[int]:
    """Ids of the loans a pending transaction would create, in creation order."""
    return [
        int(unit.symbol[len("LOAN_"):])
        for unit in pending.units_to_create
        if unit.unit_type == UNIT_TYPE_LOAN
    ]


def read_staged_loan(staged: StagedState, loan_id: int) -> Loan:
    """Load an active loan through a StagedState overlay."""
    try:
        loan = from_state_dict(staged.read(loan_symbol(loan_id)))
    except UnitNotRegistered:
        raise LoanNotFound(f"Loan {loan_id} not found") from None
    if loan.status != LoanStatus.ACTIVE:
        raise LoanClosed(f"Loan {loan_id} is {loan.status.value}")
    return loan


def write_staged_loan(staged: StagedState, loan: Loan) -> None:
    staged.write(loan.symbol, to_state_dict(loan))


# =============================================================================
# PURE HELPERS
# =============================================================================

def loan_interest(view: LedgerView, loan: Loan, lender_fee: int) -> Tuple[Decimal, Decimal]:
    """(lender_interest, protocol_interest) accrued on loan as of view.current_time."""
    return calculate_interest(
        loan.debt,
        loan.interest_rate,
        elapsed_seconds(loan.start_timestamp, view.current_time),
        lender_fee,
        view.get_unit(loan.loan_token).decimal_places,
    )


def get_loan_debt(view: LedgerView, loan_id: int) -> Decimal:
    """Debt plus all interest accrued so far: what it takes to close the loan now."""
    loan = get_loan(view, loan_id)
    if loan.status != LoanStatus.ACTIVE:
        return Decimal("0")
    lender_interest, protocol_interest = loan_interest(view, loan, load_fee_policy(view).lender_fee)
    return loan.debt + lender_interest + protocol_interest


def _check_amount(view: LedgerView, token_symbol: str, amount: Decimal) -> None:
    if view.get_unit(token_symbol).round(amount) != amount:
        raise ValueError(f"{amount} exceeds {token_symbol} precision")


def check_tokens(loan: Loan, pool: Pool) -> None:
    if pool.loan_token != loan.loan_token or pool.collateral_token != loan.collateral_token:
        raise TokenMismatch(
            f"pool lends {pool.loan_token}/{pool.collateral_token}, "
            f"loan {loan.loan_id} is {loan.loan_token}/{loan.collateral_token}"
        )


def _origin(caller: str, event_type: str, symbol: Optional[str] = None) -> TransactionOrigin:
    return TransactionOrigin(OriginType.USER_ACTION, caller, symbol, event_type)


def settle_rehome(
    staged: StagedState,
    loan: Loan,
    target_pool_id: str,
    lender_interest: Decimal,
    protocol_interest: Decimal,
    policy: FeePolicy,
    moves: List[Move],
    custody_wallet: str,
    contract_id: str,
) -> Loan:
    """
    Move loan into target pool, settling accrued interest.

    The old pool gets its principal back plus the lender's interest; the
    target pool funds principal plus all interest and takes it on as the new
    debt; the protocol's interest leaves custody for the fee recipient.
    Reads pools after each write, so re-homing into the same pool nets out.

    Preconditions (checked by callers): target pool matches tokens and can
    fund the total debt.
    """
    total_debt = loan.debt + lender_interest + protocol_interest

    old_pool = read_staged_pool(staged, loan.pool_id)
    write_staged_pool(staged, replace(
        old_pool,
        pool_balance=old_pool.pool_balance + loan.debt + lender_interest,
        outstanding_loans=old_pool.outstanding_loans - loan.debt,
    ))

    new_pool = read_staged_pool(staged, target_pool_id)
    write_staged_pool(staged, replace(
        new_pool,
        pool_balance=new_pool.pool_balance - total_debt,
        outstanding_loans=new_pool.outstanding_loans + total_debt,
    ))

    append_move(moves, protocol_interest, loan.loan_token,
                custody_wallet, policy.fee_recipient, contract_id)

    rehomed = replace(
        loan,
        lender=new_pool.lender,
        interest_rate=new_pool.interest_rate,
        auction_length=new_pool.auction_length,
        start_timestamp=staged.view.current_time,
        auction=IDLE,
        debt=total_debt,
    )
    write_staged_loan(staged, rehomed)
    return rehomed


# =============================================================================
# ISSUANCE
# =============================================================================

def compute_borrow(
    view: LedgerView,
    caller: str,
    requests: Sequence[Borrow],
    custody_wallet: str = PROTOCOL_WALLET,
) -> PendingTransaction:
    """
    Draw a batch of loans.

    For each request the borrower receives debt minus the borrower fee, the
    fee recipient receives the fee, and the collateral moves into custody.
    The pool balance drops by the full debt and outstanding_loans rises by it.

    Raises:
        LoanTooSmall: debt below the pool's min_loan_size
        RatioTooHigh: debt * 1e18 / collateral above the pool's max_loan_ratio
        LoanTooLarge: pool balance below debt
        PoolNotFound: unknown pool id
        Unauthorized: caller is a reserved wallet
    """
    if not requests:
        raise ValueError("no borrow requests")
    check_caller(caller, custody_wallet)
    for request in requests:
        if request.debt <= 0:
            raise LoanTooSmall("debt must be positive")
        if request.collateral <= 0:
            raise RatioTooHigh("collateral must be positive")

    policy = load_fee_policy(view)
    staged = StagedState(view)
    book = staged.read(LOAN_BOOK_SYMBOL)
    moves: List[Move] = []

    for request in requests:
        pool = read_staged_pool(staged, request.pool_id)
        _check_amount(view, pool.loan_token, request.debt)
        _check_amount(view, pool.collateral_token, request.collateral)
        if request.debt < pool.min_loan_size:
            raise LoanTooSmall(f"debt {request.debt} below minimum {pool.min_loan_size}")
        if calculate_loan_ratio(request.debt, request.collateral) > pool.max_loan_ratio:
            raise RatioTooHigh(f"ratio exceeds pool maximum {pool.max_loan_ratio}")
        if pool.pool_balance < request.debt:
            raise LoanTooLarge(f"pool balance {pool.pool_balance} below debt {request.debt}")

        loan_id = book['next_loan_id']
        book['next_loan_id'] = loan_id + 1
        contract_id = f"borrow:{loan_id}"

        fee = calculate_borrower_fee(
            request.debt, policy.borrower_fee, view.get_unit(pool.loan_token).decimal_places
        )
        append_move(moves, request.debt - fee, pool.loan_token, custody_wallet, caller, contract_id)
        append_move(moves, fee, pool.loan_token, custody_wallet, policy.fee_recipient, contract_id)
        append_move(moves, request.collateral, pool.collateral_token, caller, custody_wallet, contract_id)

        write_staged_pool(staged, replace(
            pool,
            pool_balance=pool.pool_balance - request.debt,
            outstanding_loans=pool.outstanding_loans + request.debt,
        ))
        staged.create(create_loan_unit(Loan(
            loan_id=loan_id,
            lender=pool.lender,
            borrower=caller,
            loan_token=pool.loan_token,
            collateral_token=pool.collateral_token,
            debt=request.debt,
            collateral=request.collateral,
            interest_rate=pool.interest_rate,
            start_timestamp=view.current_time,
            auction_length=pool.auction_length,
        )))

    staged.write(LOAN_BOOK_SYMBOL, book)
    return staged.build(moves, _origin(caller, "BORROW"))


# =============================================================================
# REPAYMENT
# =============================================================================

def compute_repay(
    view: LedgerView,
    caller: str,
    loan_ids: Sequence[int],
    custody_wallet: str = PROTOCOL_WALLET,
) -> PendingTransaction:
    """
    Repay loans in full and release their collateral.

    The borrower pays debt plus all accrued interest into custody; the pool
    is credited debt plus lender interest and the protocol interest is passed
    on to the fee recipient.

    Raises:
        Unauthorized: If caller is not the borrower, or is a reserved wallet
        LoanClosed: If a loan is already repaid or seized
    """
    if not loan_ids:
        raise ValueError("no loans to repay")
    check_caller(caller, custody_wallet)
    policy = load_fee_policy(view)
    staged = StagedState(view)
    moves: List[Move] = []

    for loan_id in loan_ids:
        loan = read_staged_loan(staged, loan_id)
        if caller != loan.borrower:
            raise Unauthorized(f"{caller} is not the borrower of loan {loan_id}")
        lender_interest, protocol_interest = loan_interest(view, loan, policy.lender_fee)
        contract_id = f"repay:{loan_id}"

        pool = read_staged_pool(staged, loan.pool_id)
        write_staged_pool(staged, replace(
            pool,
            pool_balance=pool.pool_balance + loan.debt + lender_interest,
            outstanding_loans=pool.outstanding_loans - loan.debt,
        ))

        append_move(moves, loan.debt + lender_interest + protocol_interest, loan.loan_token,
                    caller, custody_wallet, contract_id)
        append_move(moves, protocol_interest, loan.loan_token,
                    custody_wallet, policy.fee_recipient, contract_id)
        append_move(moves, loan.collateral, loan.collateral_token, custody_wallet, caller, contract_id)

        write_staged_loan(staged, replace(
            loan, debt=Decimal("0"), collateral=Decimal("0"), auction=IDLE, status=LoanStatus.REPAID,
        ))

    return staged.build(moves, _origin(caller, "REPAY"))


# =============================================================================
# AUCTION START AND SEIZURE
# =============================================================================

def compute_start_auction(
    view: LedgerView,
    caller: str,
    loan_ids: Sequence[int],
) -> PendingTransaction:
    """
    Put loans up for a refinancing auction starting now.

    Raises:
        Unauthorized: If caller is not the loan's lender
        AuctionStarted: If the loan is not idle
    """
    if not loan_ids:
        raise ValueError("no loans to auction")
    staged = StagedState(view)
    for loan_id in loan_ids:
        loan = read_staged_loan(staged, loan_id)
        if caller != loan.lender:
            raise Unauthorized(f"{caller} is not the lender of loan {loan_id}")
        if not isinstance(loan.auction, Idle):
            raise AuctionStarted(f"Loan {loan_id} auction started at {loan.auction.start}")
        write_staged_loan(staged, replace(
            loan, auction=UnderAuction(start=view.current_time, length=loan.auction_length),
        ))
    return staged.build([], _origin(caller, "START_AUCTION"))


def compute_seize_loan(
    view: LedgerView,
    caller: str,
    loan_ids: Sequence[int],
    custody_wallet: str = PROTOCOL_WALLET,
) -> PendingTransaction:
    """
    Claim the collateral of loans whose auction ended without a buyer.

    The protocol takes lender_fee bps of the collateral; the rest goes to
    the lender. The pool writes the debt off its outstanding_loans.

    Raises:
        Unauthorized: If caller is not the loan's lender, or is a reserved wallet
        AuctionNotStarted: If the loan was never put up for auction
        AuctionNotEnded: If the auction window is still open
    """
    if not loan_ids:
        raise ValueError("no loans to seize")
    check_caller(caller, custody_wallet)
    policy = load_fee_policy(view)
    staged = StagedState(view)
    moves: List[Move] = []
    now = view.current_time

    for loan_id in loan_ids:
        loan = read_staged_loan(staged, loan_id)
        if caller != loan.lender:
            raise Unauthorized(f"{caller} is not the lender of loan {loan_id}")
        if not isinstance(loan.auction, UnderAuction):
            raise AuctionNotStarted(f"Loan {loan_id} is not in an auction")
        if now <= loan.auction.end:
            raise AuctionNotEnded(f"Loan {loan_id} auction runs until {loan.auction.end}")

        protocol_share = quantize_down(
            loan.collateral * policy.lender_fee / BPS_DENOMINATOR,
            view.get_unit(loan.collateral_token).decimal_places,
        )
        contract_id = f"seize:{loan_id}"
        append_move(moves, protocol_share, loan.collateral_token,
                    custody_wallet, policy.fee_recipient, contract_id)
        append_move(moves, loan.collateral - protocol_share, loan.collateral_token,
                    custody_wallet, loan.lender, contract_id)

        pool = read_staged_pool(staged, loan.pool_id)
        write_staged_pool(staged, replace(
            pool, outstanding_loans=pool.outstanding_loans - loan.debt,
        ))
        write_staged_loan(staged, replace(
            loan, debt=Decimal("0"), collateral=Decimal("0"), status=LoanStatus.SEIZED,
        ))

    return staged.build(moves, _origin(caller, "SEIZE_LOAN"))


# =============================================================================
# HAND-OVER AND REFINANCE
# =============================================================================

def compute_give_loan(
    view: LedgerView,
    caller: str,
    loan_ids: Sequence[int],
    pool_ids: Sequence[str],
    custody_wallet: str = PROTOCOL_WALLET,
) -> PendingTransaction:
    """
    Hand loans over to other pools without an auction.

    The receiving pool must be at least as good for the borrower: no higher
    rate, no shorter auction window, and room for the ratio.

    Raises:
        Unauthorized: If caller is not the loan's lender, or is a reserved wallet
        AuctionStarted: If the loan is under auction
        TokenMismatch: If the pool's token pair differs
        LoanTooLarge: If the pool cannot fund debt plus interest
        RatioTooHigh: If the new debt breaches the pool's ratio
        RateTooHigh: If the pool charges more than the loan
        AuctionTooShort: If the pool's auction window is shorter
    """
    if len(loan_ids) != len(pool_ids):
        raise ValueError("loan_ids and pool_ids must have the same length")
    if not loan_ids:
        raise ValueError("no loans to give")
    check_caller(caller, custody_wallet)
    policy = load_fee_policy(view)
    staged = StagedState(view)
    moves: List[Move] = []

    for loan_id, target in zip(loan_ids, pool_ids):
        loan = read_staged_loan(staged, loan_id)
        if caller != loan.lender:
            raise Unauthorized(f"{caller} is not the lender of loan {loan_id}")
        if loan.is_under_auction(view.current_time):
            raise AuctionStarted(f"Loan {loan_id} is under auction")
        pool = read_staged_pool(staged, target)
        check_tokens(loan, pool)

        lender_interest, protocol_interest = loan_interest(view, loan, policy.lender_fee)
        total_debt = loan.debt + lender_interest + protocol_interest
        if pool.pool_balance < total_debt:
            raise LoanTooLarge(f"pool balance {pool.pool_balance} below debt {total_debt}")
        if calculate_loan_ratio(total_debt, loan.collateral) > pool.max_loan_ratio:
            raise RatioTooHigh(f"ratio exceeds pool maximum {pool.max_loan_ratio}")
        if pool.interest_rate > loan.interest_rate:
            raise RateTooHigh(f"pool rate {pool.interest_rate} above loan rate {loan.interest_rate}")
        if pool.auction_length < loan.auction_length:
            raise AuctionTooShort(
                f"pool auction length {pool.auction_length} below loan's {loan.auction_length}"
            )

        settle_rehome(staged, loan, target, lender_interest, protocol_interest,
                      policy, moves, custody_wallet, f"give_loan:{loan_id}")

    return staged.build(moves, _origin(caller, "GIVE_LOAN"))


def compute_refinance(
    view: LedgerView,
    caller: str,
    refinances: Sequence[Refinance],
    custody_wallet: str = PROTOCOL_WALLET,
) -> PendingTransaction:
    """
    Move loans to new pools with new debt and collateral, at the borrower's request.

    The old pool is paid principal plus lender interest. If the new debt is
    smaller than what is owed the borrower pays the difference; if larger the
    borrower receives the surplus less the borrower fee. Collateral is topped
    up from or released to the borrower.

    Raises:
        Unauthorized: If caller is not the borrower, or is a reserved wallet
        TokenMismatch: If the pool's token pair differs
        LoanTooSmall: New debt below the pool's minimum
        RatioTooHigh: New debt against new collateral breaches the pool's ratio
        LoanTooLarge: Pool cannot fund the new debt
    """
    if not refinances:
        raise ValueError("no refinances")
    check_caller(caller, custody_wallet)
    for refinance in refinances:
        if refinance.debt <= 0:
            raise LoanTooSmall("debt must be positive")
        if refinance.collateral <= 0:
            raise RatioTooHigh("collateral must be positive")

    policy = load_fee_policy(view)
    staged = StagedState(view)
    moves: List[Move] = []
    now = view.current_time

    for refinance in refinances:
        loan = read_staged_loan(staged, refinance.loan_id)
        if caller != loan.borrower:
            raise Unauthorized(f"{caller} is not the borrower of loan {loan.loan_id}")
        pool = read_staged_pool(staged, refinance.pool_id)
        check_tokens(loan, pool)
        _check_amount(view, loan.loan_token, refinance.debt)
        _check_amount(view, loan.collateral_token, refinance.collateral)
        if refinance.debt < pool.min_loan_size:
            raise LoanTooSmall(f"debt {refinance.debt} below minimum {pool.min_loan_size}")
        if calculate_loan_ratio(refinance.debt, refinance.collateral) > pool.max_loan_ratio:
            raise RatioTooHigh(f"ratio exceeds pool maximum {pool.max_loan_ratio}")

        lender_interest, protocol_interest = loan_interest(view, loan, policy.lender_fee)
        debt_to_pay = loan.debt + lender_interest + protocol_interest
        contract_id = f"refinance:{loan.loan_id}"

        old_pool = read_staged_pool(staged, loan.pool_id)
        write_staged_pool(staged, replace(
            old_pool,
            pool_balance=old_pool.pool_balance + loan.debt + lender_interest,
            outstanding_loans=old_pool.outstanding_loans - loan.debt,
        ))

        pool = read_staged_pool(staged, refinance.pool_id)
        if pool.pool_balance < refinance.debt:
            raise LoanTooLarge(f"pool balance {pool.pool_balance} below debt {refinance.debt}")
        write_staged_pool(staged, replace(
            pool,
            pool_balance=pool.pool_balance - refinance.debt,
            outstanding_loans=pool.outstanding_loans + refinance.debt,
        ))

        if debt_to_pay > refinance.debt:
            append_move(moves, debt_to_pay - refinance.debt, loan.loan_token,
                        caller, custody_wallet, contract_id)
        else:
            surplus = refinance.debt - debt_to_pay
            fee = calculate_borrower_fee(
                surplus, policy.borrower_fee, view.get_unit(loan.loan_token).decimal_places
            )
            append_move(moves, surplus - fee, loan.loan_token, custody_wallet, caller, contract_id)
            append_move(moves, fee, loan.loan_token, custody_wallet, policy.fee_recipient, contract_id)
        append_move(moves, protocol_interest, loan.loan_token,
                    custody_wallet, policy.fee_recipient, contract_id)

        if refinance.collateral > loan.collateral:
            append_move(moves, refinance.collateral - loan.collateral, loan.collateral_token,
                        caller, custody_wallet, contract_id)
        else:
            append_move(moves, loan.collateral - refinance.collateral, loan.collateral_token,
                        custody_wallet, caller, contract_id)

        write_staged_loan(staged, replace(
            loan,
            lender=pool.lender,
            debt=refinance.debt,
            collateral=refinance.collateral,
            interest_rate=pool.interest_rate,
            auction_length=pool.auction_length,
            start_timestamp=now,
            auction=IDLE,
        ))

    return staged.build(moves, _origin(caller, "REFINANCE"))
