"""
auction.py - Dutch-Auction Refinancing

A lender who wants out of a loan puts it up for auction (see
loans.compute_start_auction). While the auction runs, any pool lending the
same token pair may take the loan over, provided its rate is at or below a
ceiling that rises linearly from 0 at the start to MAX_INTEREST_RATE when the
window closes:

    ceiling = MAX_INTEREST_RATE * elapsed // auction_length

The borrower is never worse off than the auction allows, and the old lender is
paid principal plus its share of accrued interest out of the buyer's pool.

If the window closes without a buyer the old lender may seize the collateral.
The buy window includes its last second; seizure starts the second after.
"""

from __future__ import annotations
from typing import List

from .core import (
    LedgerView, Move, PendingTransaction, StagedState,
    TransactionOrigin, OriginType,
    AuctionEnded, AuctionNotStarted, PoolTooSmall, RateTooHigh, Unauthorized,
    PROTOCOL_WALLET, check_caller,
)
from .fees import load_fee_policy
from .interest import current_auction_rate, elapsed_seconds
from .loans import (
    UnderAuction, loan_interest, loan_symbol, read_staged_loan, settle_rehome, check_tokens,
)
from .pools import read_staged_pool


def compute_buy_loan(
    view: LedgerView,
    caller: str,
    loan_id: int,
    pid: str,
    custody_wallet: str = PROTOCOL_WALLET,
) -> PendingTransaction:
    """
    Take over an auctioned loan into pool pid.

    PURE FUNCTION - reads view, returns the whole settlement as one
    PendingTransaction:
        1. old pool:  pool_balance += debt + lender_interest
                      outstanding_loans -= debt
        2. new pool:  pool_balance -= debt + lender_interest + protocol_interest
                      outstanding_loans += the same total
        3. protocol_interest moves from custody to the fee recipient
        4. loan:      lender, interest_rate and auction_length from the new
                      pool; debt = total; start_timestamp = now; Idle

    Args:
        view: Read-only ledger access
        caller: Wallet submitting the bid; must be the lender of pid
        loan_id: Loan under auction
        pid: Id of the pool taking the loan over
        custody_wallet: Wallet holding pool balances

    Raises:
        LoanNotFound / LoanClosed: Unknown or closed loan
        AuctionNotStarted: Loan is not under auction
        AuctionEnded: Auction window has closed
        PoolNotFound: Unknown pool
        Unauthorized: Caller is not the lender of pid, or is a reserved wallet
        TokenMismatch: Pool lends a different token pair
        RateTooHigh: Pool rate above the current ceiling
        PoolTooSmall: Pool balance below the loan's total debt
    """
    check_caller(caller, custody_wallet)
    policy = load_fee_policy(view)
    staged = StagedState(view)
    now = view.current_time

    loan = read_staged_loan(staged, loan_id)
    if not isinstance(loan.auction, UnderAuction):
        raise AuctionNotStarted(f"Loan {loan_id} is not in an auction")
    if now > loan.auction.end:
        raise AuctionEnded(f"Loan {loan_id} auction ended at {loan.auction.end}")

    ceiling = current_auction_rate(
        elapsed_seconds(loan.auction.start, now), loan.auction.length
    )

    pool = read_staged_pool(staged, pid)
    if caller != pool.lender:
        raise Unauthorized(f"{caller} is not the lender of pool {pid}")
    check_tokens(loan, pool)
    if pool.interest_rate > ceiling:
        raise RateTooHigh(f"pool rate {pool.interest_rate} above auction ceiling {ceiling}")

    lender_interest, protocol_interest = loan_interest(view, loan, policy.lender_fee)
    total_debt = loan.debt + lender_interest + protocol_interest
    if pool.pool_balance < total_debt:
        raise PoolTooSmall(f"pool balance {pool.pool_balance} below debt {total_debt}")

    moves: List[Move] = []
    settle_rehome(staged, loan, pid, lender_interest, protocol_interest,
                  policy, moves, custody_wallet, f"buy_loan:{loan_id}")

    return staged.build(moves, TransactionOrigin(
        OriginType.USER_ACTION, caller, loan_symbol(loan_id), "BUY_LOAN",
    ))
