"""
lender.py - Lending Protocol Facade

Binds the pure compute_* functions to a live Ledger. Each call computes one
PendingTransaction against the ledger, stamps it with the ledger's sequence
number and executes it. Nothing is applied unless the whole call succeeds.

Failures surface as exceptions:
    - the compute function raises a LedgerError subclass for protocol
      violations (Unauthorized, RatioTooHigh, AuctionEnded, ...)
    - TransferFailed if the ledger refuses the transaction (insufficient
      balance, stale state, duplicate intent)

Example:
    ledger = Ledger("main", verbose=False)
    ledger.register_unit(token("USDC", "USD Coin", decimal_places=6))
    ledger.register_unit(token("WETH", "Wrapped Ether"))
    lender = Lender(ledger, owner="governance", fee_recipient="treasury")

    pid = lender.set_pool("alice", Pool(
        lender="alice", loan_token="USDC", collateral_token="WETH",
        min_loan_size=Decimal("100"), pool_balance=Decimal("10000"),
        max_loan_ratio=Decimal("2000e18"), auction_length=86400,
        interest_rate=1000,
    ))
    [loan_id] = lender.borrow("bob", [Borrow(pid, Decimal("1000"), Decimal("1"))])
"""

from __future__ import annotations
from collections import defaultdict
from decimal import Decimal
from typing import Dict, List, Optional, Sequence

from .core import (
    PendingTransaction, ExecuteResult, TransferFailed,
    DEFAULT_BORROWER_FEE, DEFAULT_LENDER_FEE, FEE_POLICY_SYMBOL,
    LOAN_BOOK_SYMBOL, PROTOCOL_WALLET, SYSTEM_WALLET,
    check_caller,
)
from .ledger import Ledger
from .fees import (
    FeePolicy, create_fee_policy_unit, load_fee_policy,
    compute_set_borrower_fee, compute_set_fee_recipient, compute_set_lender_fee,
)
from .pools import (
    Pool, get_pool, list_pools,
    compute_add_to_pool, compute_remove_from_pool, compute_set_pool,
    compute_update_interest_rate, compute_update_max_loan_ratio,
)
from .loans import (
    Borrow, Loan, LoanStatus, Refinance,
    create_loan_book_unit, created_loan_ids, get_loan, get_loan_debt, list_loans,
    compute_borrow, compute_give_loan, compute_refinance, compute_repay,
    compute_seize_loan, compute_start_auction,
)
from .auction import compute_buy_loan


class Lender:
    """
    Pooled lending protocol running on a Ledger.

    On construction registers the FEE_POLICY and LOAN_BOOK units and the
    custody and fee recipient wallets, unless they already exist. Every
    other wallet that calls in must already be registered.

    Thread Safety:
        Not thread-safe. Calls are expected to be serialized by the host.
    """

    def __init__(
        self,
        ledger: Ledger,
        owner: str,
        fee_recipient: str,
        lender_fee: int = DEFAULT_LENDER_FEE,
        borrower_fee: int = DEFAULT_BORROWER_FEE,
        custody_wallet: str = PROTOCOL_WALLET,
    ):
        """
        Attach the protocol to ledger.

        A ledger that already carries a FEE_POLICY unit must carry this same
        policy; change fees on a live protocol with the set_* methods.

        Args:
            ledger: Token ledger holding balances and protocol units
            owner: Wallet allowed to change the fee policy
            fee_recipient: Wallet receiving protocol interest and fees
            lender_fee: Protocol share of accrued interest, bps
            borrower_fee: Origination fee on drawn debt, bps
            custody_wallet: Wallet holding pool balances and collateral

        Raises:
            FeeTooHigh: If a fee is out of bounds
            Unauthorized: If fee_recipient is the system or custody wallet
            ValueError: If custody_wallet is the system wallet, or the ledger
                already holds a different fee policy
        """
        if custody_wallet == SYSTEM_WALLET:
            raise ValueError("custody wallet cannot be the system wallet")
        check_caller(fee_recipient, custody_wallet)
        self.ledger = ledger
        self.custody_wallet = custody_wallet

        policy = FeePolicy(owner=owner, fee_recipient=fee_recipient,
                           lender_fee=lender_fee, borrower_fee=borrower_fee)
        if FEE_POLICY_SYMBOL in ledger.units:
            existing = load_fee_policy(ledger)
            if existing != policy:
                raise ValueError(f"ledger already holds fee policy {existing}")
        else:
            ledger.register_unit(create_fee_policy_unit(policy))
        ledger.ensure_wallet(custody_wallet)
        ledger.ensure_wallet(fee_recipient)
        if LOAN_BOOK_SYMBOL not in ledger.units:
            ledger.register_unit(create_loan_book_unit())

    def _submit(self, pending: PendingTransaction) -> PendingTransaction:
        pending = pending.with_nonce(self.ledger.next_sequence)
        result = self.ledger.execute(pending)
        if result != ExecuteResult.APPLIED:
            raise TransferFailed(
                f"{pending.origin.event_type} by {pending.origin.source_id}: {result.value}"
            )
        return pending

    # ========================================================================
    # FEE POLICY
    # ========================================================================

    def fee_policy(self) -> FeePolicy:
        return load_fee_policy(self.ledger)

    def set_lender_fee(self, caller: str, fee: int) -> None:
        self._submit(compute_set_lender_fee(self.ledger, caller, fee))

    def set_borrower_fee(self, caller: str, fee: int) -> None:
        self._submit(compute_set_borrower_fee(self.ledger, caller, fee))

    def set_fee_recipient(self, caller: str, fee_recipient: str) -> None:
        self.ledger.ensure_wallet(fee_recipient)
        self._submit(compute_set_fee_recipient(self.ledger, caller, fee_recipient, self.custody_wallet))

    # ========================================================================
    # POOLS
    # ========================================================================

    def set_pool(self, caller: str, pool: Pool) -> str:
        """Create or reconfigure pool; returns its id."""
        self._submit(compute_set_pool(self.ledger, caller, pool, self.custody_wallet))
        return pool.pool_id

    def add_to_pool(self, caller: str, pool_id: str, amount: Decimal) -> None:
        self._submit(compute_add_to_pool(self.ledger, caller, pool_id, amount, self.custody_wallet))

    def remove_from_pool(self, caller: str, pool_id: str, amount: Decimal) -> None:
        self._submit(compute_remove_from_pool(self.ledger, caller, pool_id, amount, self.custody_wallet))

    def update_max_loan_ratio(self, caller: str, pool_id: str, max_loan_ratio: Decimal) -> None:
        self._submit(compute_update_max_loan_ratio(self.ledger, caller, pool_id, max_loan_ratio))

    def update_interest_rate(self, caller: str, pool_id: str, interest_rate: int) -> None:
        self._submit(compute_update_interest_rate(self.ledger, caller, pool_id, interest_rate))

    def get_pool(self, pool_id: str) -> Pool:
        return get_pool(self.ledger, pool_id)

    def list_pools(self) -> List[Pool]:
        return list_pools(self.ledger)

    # ========================================================================
    # LOANS
    # ========================================================================

    def borrow(self, caller: str, requests: Sequence[Borrow]) -> List[int]:
        """Draw a batch of loans; returns the new loan ids in request order."""
        pending = self._submit(compute_borrow(self.ledger, caller, requests, self.custody_wallet))
        return created_loan_ids(pending)

    def repay(self, caller: str, loan_ids: Sequence[int]) -> None:
        self._submit(compute_repay(self.ledger, caller, loan_ids, self.custody_wallet))

    def start_auction(self, caller: str, loan_ids: Sequence[int]) -> None:
        self._submit(compute_start_auction(self.ledger, caller, loan_ids))

    def seize_loan(self, caller: str, loan_ids: Sequence[int]) -> None:
        self._submit(compute_seize_loan(self.ledger, caller, loan_ids, self.custody_wallet))

    def give_loan(self, caller: str, loan_ids: Sequence[int], pool_ids: Sequence[str]) -> None:
        self._submit(compute_give_loan(self.ledger, caller, loan_ids, pool_ids, self.custody_wallet))

    def refinance(self, caller: str, refinances: Sequence[Refinance]) -> None:
        self._submit(compute_refinance(self.ledger, caller, refinances, self.custody_wallet))

    def get_loan(self, loan_id: int) -> Loan:
        return get_loan(self.ledger, loan_id)

    def get_loan_debt(self, loan_id: int) -> Decimal:
        return get_loan_debt(self.ledger, loan_id)

    def list_loans(self) -> List[Loan]:
        return list_loans(self.ledger)

    # ========================================================================
    # AUCTION
    # ========================================================================

    def buy_loan(self, caller: str, loan_id: int, pool_id: str) -> None:
        self._submit(compute_buy_loan(self.ledger, caller, loan_id, pool_id, self.custody_wallet))

    def zap_buy_loan(self, caller: str, pool: Pool, loan_id: int) -> str:
        """
        Configure pool and buy loan_id into it, as a single unit.

        Runs as two ledger transactions; if the buy fails the ledger is
        restored to its state before the call and the error re-raised.
        """
        savepoint = self.ledger.clone()
        try:
            pool_id = self.set_pool(caller, pool)
            self.buy_loan(caller, loan_id, pool_id)
        except Exception:
            self.ledger.restore(savepoint)
            raise
        return pool_id

    # ========================================================================
    # CUSTODY CHECKS
    # ========================================================================

    def expected_custody(self) -> Dict[str, Decimal]:
        """Per token: undrawn pool balances plus collateral locked in active loans."""
        expected: Dict[str, Decimal] = defaultdict(lambda: Decimal("0"))
        for pool in self.list_pools():
            expected[pool.loan_token] += pool.pool_balance
        for loan in self.list_loans():
            if loan.status == LoanStatus.ACTIVE:
                expected[loan.collateral_token] += loan.collateral
        return dict(expected)

    def verify_custody(self, tokens: Optional[Sequence[str]] = None) -> Dict[str, object]:
        """
        Check the custody wallet holds exactly what pools and loans claim.

        Returns:
            Dict with keys:
            - 'valid': bool - True if every token matches
            - 'discrepancies': List[Dict] - token, held, expected per mismatch
        """
        expected = self.expected_custody()
        symbols = sorted(set(tokens or ()) | set(expected))
        discrepancies = []
        for symbol in symbols:
            held = self.ledger.get_balance(self.custody_wallet, symbol)
            want = expected.get(symbol, Decimal("0"))
            if held != want:
                discrepancies.append({'token': symbol, 'held': held, 'expected': want})
        return {'valid': not discrepancies, 'discrepancies': discrepancies}
