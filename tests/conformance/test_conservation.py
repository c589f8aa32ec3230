"""
Conservation Law Conformance Tests

INVARIANT: The custody wallet holds exactly what the books say it holds.

    ∀ token t, at all times:
        balance(custody, t) = Σ pool.pool_balance      (pools lending t)
                            + Σ loan.collateral        (active loans locking t)

and every token still sums to zero against SYSTEM_WALLET across all wallets.
Settlements move value between pools, lenders, borrowers and the fee
recipient; they never create or destroy it.
"""

import pytest
from hypothesis import given, settings, HealthCheck
from hypothesis import strategies as st
from decimal import Decimal

from peerpool import Borrow, LedgerError, LoanStatus, PROTOCOL_WALLET, SYSTEM_WALLET, Unauthorized

from tests.protocol_setup import BORROWERS, LENDERS, advance, make_pool, new_protocol, snapshot


# =============================================================================
# STRATEGIES
# =============================================================================

amounts = st.integers(min_value=100, max_value=3000).map(Decimal)

actions = st.one_of(
    st.tuples(st.just("advance"), st.integers(min_value=1, max_value=40 * 86400)),
    st.tuples(st.just("borrow"), st.sampled_from(BORROWERS), amounts, st.integers(1, 5)),
    st.tuples(st.just("repay"), st.integers(0, 7)),
    st.tuples(st.just("auction"), st.integers(0, 7)),
    st.tuples(st.just("buy"), st.integers(0, 7)),
    st.tuples(st.just("seize"), st.integers(0, 7)),
    st.tuples(st.just("add"), st.sampled_from(LENDERS), amounts),
    st.tuples(st.just("remove"), st.sampled_from(LENDERS), amounts),
)


def _apply(protocol, pools, action):
    """Run one action; protocol rejections are expected and ignored."""
    kind = action[0]
    loans = protocol.list_loans()
    if kind == "advance":
        advance(protocol.ledger, action[1])
        return
    if kind == "borrow":
        _, borrower, debt, collateral = action
        lender = LENDERS[int(debt) % 2]
        protocol.borrow(borrower, [Borrow(pools[lender], debt, Decimal(collateral))])
        return
    if kind in ("add", "remove"):
        _, lender, amount = action
        op = protocol.add_to_pool if kind == "add" else protocol.remove_from_pool
        op(lender, pools[lender], amount)
        return
    if not loans:
        return
    loan = loans[action[1] % len(loans)]
    if kind == "repay":
        protocol.repay(loan.borrower, [loan.loan_id])
    elif kind == "auction":
        protocol.start_auction(loan.lender, [loan.loan_id])
    elif kind == "seize":
        protocol.seize_loan(loan.lender, [loan.loan_id])
    elif kind == "buy":
        challenger = LENDERS[1] if loan.lender == LENDERS[0] else LENDERS[0]
        protocol.buy_loan(challenger, loan.loan_id, pools[challenger])


def _setup():
    protocol = new_protocol()
    pools = {
        "alice": protocol.set_pool("alice", make_pool("alice", interest_rate=1000)),
        "bob": protocol.set_pool("bob", make_pool("bob", interest_rate=300)),
    }
    return protocol, pools


class TestConservationProperties:

    @given(st.lists(actions, min_size=1, max_size=25))
    @settings(max_examples=40, deadline=None, suppress_health_check=[HealthCheck.too_slow])
    def test_custody_matches_books(self, sequence):
        """
        PROPERTY: After any sequence of operations, custody equals the books.
        """
        protocol, pools = _setup()
        for action in sequence:
            try:
                _apply(protocol, pools, action)
            except LedgerError:
                pass
            result = protocol.verify_custody(["USDC", "WETH"])
            assert result['valid'], result['discrepancies']
            assert protocol.ledger.verify_double_entry()['valid']

    @given(st.lists(actions, min_size=1, max_size=25))
    @settings(max_examples=40, deadline=None, suppress_health_check=[HealthCheck.too_slow])
    def test_outstanding_matches_active_debt(self, sequence):
        """
        PROPERTY: Each pool's outstanding_loans is the debt of the active loans it owns.
        """
        protocol, pools = _setup()
        for action in sequence:
            try:
                _apply(protocol, pools, action)
            except LedgerError:
                pass
        for lender, pid in pools.items():
            owned = sum(
                (l.debt for l in protocol.list_loans()
                 if l.status == LoanStatus.ACTIVE and l.lender == lender),
                Decimal("0"),
            )
            assert protocol.get_pool(pid).outstanding_loans == owned


class TestConservationExamples:

    def test_total_usdc_is_constant_across_a_buy(self, protocol, pool_a, pool_b, auctioned_loan):
        ledger = protocol.ledger
        supply = ledger.total_supply("USDC")
        advance(ledger, 43200)
        protocol.buy_loan("bob", auctioned_loan, pool_b)
        assert ledger.total_supply("USDC") == supply

    def test_buy_moves_only_the_protocol_share_out_of_custody(self, protocol, pool_a, pool_b, auctioned_loan):
        ledger = protocol.ledger
        advance(ledger, 43200)
        before = ledger.get_balance("protocol", "USDC")
        treasury = ledger.get_balance("treasury", "USDC")
        protocol.buy_loan("bob", auctioned_loan, pool_b)
        paid = ledger.get_balance("treasury", "USDC") - treasury
        assert before - ledger.get_balance("protocol", "USDC") == paid

    @pytest.mark.parametrize("wallet", [PROTOCOL_WALLET, SYSTEM_WALLET])
    def test_reserved_wallet_cannot_book_unbacked_balance(self, protocol, pool_a, wallet):
        before = snapshot(protocol.ledger)
        with pytest.raises(Unauthorized):
            protocol.set_pool(wallet, make_pool(wallet, balance="5000"))
        with pytest.raises(Unauthorized):
            protocol.add_to_pool(wallet, pool_a, Decimal("5000"))
        assert snapshot(protocol.ledger) == before
        assert protocol.verify_custody()['valid']
