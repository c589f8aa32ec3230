"""
Atomicity Conformance Tests

INVARIANT: An operation either applies completely or leaves no trace.

    ∀ operation op, ∀ ledger state S:
        op(S) raises  ⟹  state after == S   (balances, pools, loans, fee policy)

Batch operations (borrow, repay, start_auction, seize_loan, give_loan,
refinance) fail as a whole when any item fails. zap_buy_loan spans two
ledger transactions and rolls back both.
"""

import pytest
from hypothesis import given, settings, HealthCheck
from hypothesis import strategies as st
from decimal import Decimal

from peerpool import (
    Borrow, Refinance, LedgerError, Unauthorized, LoanNotFound, LoanTooSmall, RateTooHigh,
    ExecuteResult, MAX_INTEREST_RATE, compute_borrow,
)

from tests.protocol_setup import ONE_DAY, advance, make_pool, new_protocol, snapshot


class TestAtomicityProperties:

    @given(
        good=st.integers(min_value=1, max_value=4),
        bad_position=st.integers(min_value=0, max_value=4),
    )
    @settings(max_examples=30, deadline=None, suppress_health_check=[HealthCheck.too_slow])
    def test_borrow_batch_with_one_bad_item_applies_nothing(self, good, bad_position):
        """
        PROPERTY: A borrow batch containing one undersized request changes nothing.
        """
        protocol = new_protocol()
        pid = protocol.set_pool("alice", make_pool("alice"))
        requests = [Borrow(pid, Decimal("200"), Decimal("1")) for _ in range(good)]
        requests.insert(min(bad_position, good), Borrow(pid, Decimal("1"), Decimal("1")))
        before = snapshot(protocol.ledger)

        with pytest.raises(LoanTooSmall):
            protocol.borrow("carol", requests)

        assert snapshot(protocol.ledger) == before
        assert protocol.list_loans() == []

    @given(n_loans=st.integers(min_value=1, max_value=4), days=st.integers(min_value=0, max_value=400))
    @settings(max_examples=30, deadline=None, suppress_health_check=[HealthCheck.too_slow])
    def test_repay_batch_with_foreign_loan_applies_nothing(self, n_loans, days):
        """
        PROPERTY: Repaying someone else's loan aborts the caller's whole batch.
        """
        protocol = new_protocol()
        pid = protocol.set_pool("alice", make_pool("alice"))
        own = protocol.borrow("carol", [Borrow(pid, Decimal("150"), Decimal("1"))] * n_loans)
        [foreign] = protocol.borrow("dave", [Borrow(pid, Decimal("150"), Decimal("1"))])
        advance(protocol.ledger, days * ONE_DAY)
        before = snapshot(protocol.ledger)

        with pytest.raises(Unauthorized):
            protocol.repay("carol", own + [foreign])

        assert snapshot(protocol.ledger) == before

    @given(elapsed=st.integers(min_value=0, max_value=ONE_DAY + 100), rate=st.integers(0, MAX_INTEREST_RATE))
    @settings(max_examples=50, deadline=None, suppress_health_check=[HealthCheck.too_slow])
    def test_buy_is_all_or_nothing(self, elapsed, rate):
        """
        PROPERTY: buy_loan either re-homes the loan or changes nothing.
        """
        protocol = new_protocol()
        pool_a = protocol.set_pool("alice", make_pool("alice"))
        pool_b = protocol.set_pool("bob", make_pool("bob", interest_rate=rate))
        [loan_id] = protocol.borrow("carol", [Borrow(pool_a, Decimal("1000"), Decimal("1"))])
        protocol.start_auction("alice", [loan_id])
        advance(protocol.ledger, elapsed)
        before = snapshot(protocol.ledger)

        try:
            protocol.buy_loan("bob", loan_id, pool_b)
        except LedgerError:
            assert snapshot(protocol.ledger) == before
            assert protocol.get_loan(loan_id).lender == "alice"
        else:
            assert protocol.get_loan(loan_id).lender == "bob"
        assert protocol.verify_custody()['valid']

    @given(rate=st.integers(min_value=0, max_value=100000), elapsed=st.integers(0, 2 * ONE_DAY))
    @settings(max_examples=50, deadline=None, suppress_health_check=[HealthCheck.too_slow])
    def test_zap_buy_is_all_or_nothing(self, rate, elapsed):
        """
        PROPERTY: A failed zap_buy_loan leaves no pool behind.
        """
        protocol = new_protocol()
        pool_a = protocol.set_pool("alice", make_pool("alice"))
        [loan_id] = protocol.borrow("carol", [Borrow(pool_a, Decimal("1000"), Decimal("1"))])
        protocol.start_auction("alice", [loan_id])
        advance(protocol.ledger, elapsed)
        before = snapshot(protocol.ledger)

        try:
            protocol.zap_buy_loan("bob", make_pool("bob", interest_rate=rate), loan_id)
        except LedgerError:
            assert snapshot(protocol.ledger) == before
            assert len(protocol.list_pools()) == 1
        else:
            assert len(protocol.list_pools()) == 2
            assert protocol.get_loan(loan_id).lender == "bob"


class TestAtomicityExamples:

    def test_stale_pending_is_rejected_and_not_logged(self, protocol, pool_a):
        ledger = protocol.ledger
        pending = compute_borrow(ledger, "carol", [Borrow(pool_a, Decimal("1000"), Decimal("1"))])
        log_length = len(ledger.transaction_log)
        # a second borrow takes loan id 0 first
        ledger.execute(compute_borrow(
            ledger, "carol", [Borrow(pool_a, Decimal("1000"), Decimal("1"))]
        ).with_nonce(ledger.next_sequence))
        assert ledger.execute(pending) == ExecuteResult.REJECTED
        assert len(ledger.transaction_log) == log_length + 1

    def test_give_loan_batch_with_bad_target(self, protocol, pool_a, pool_b):
        loans = protocol.borrow("carol", [Borrow(pool_a, Decimal("500"), Decimal("1"))] * 2)
        pricey = protocol.set_pool("dave", make_pool("dave", balance="5000", interest_rate=5000))
        before = snapshot(protocol.ledger)
        with pytest.raises(RateTooHigh):
            protocol.give_loan("alice", loans, [pool_b, pricey])
        assert snapshot(protocol.ledger) == before

    def test_refinance_batch_with_missing_loan(self, protocol, pool_a, pool_b, loan):
        before = snapshot(protocol.ledger)
        with pytest.raises(LoanNotFound):
            protocol.refinance("carol", [
                Refinance(loan, pool_b, Decimal("1000"), Decimal("1")),
                Refinance(99, pool_b, Decimal("1000"), Decimal("1")),
            ])
        assert snapshot(protocol.ledger) == before
