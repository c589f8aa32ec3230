"""
Bounds Conformance Tests

INVARIANT: A loan's terms are always within what its owning pool accepts,
and only loan settlement can move a pool's outstanding_loans.

    After buy_loan(loan, pool) at elapsed e:
        loan.interest_rate  = pool.interest_rate <= ceiling(e)
        loan.auction_length = pool.auction_length
        loan.lender         = pool.lender

    set_pool(pool') with pool'.outstanding_loans != stored  ⟹  PoolConfig
"""

import pytest
from hypothesis import given, settings, assume, HealthCheck
from hypothesis import strategies as st
from dataclasses import replace
from decimal import Decimal

from peerpool import (
    Borrow, Idle, PoolConfig, RateTooHigh, MAX_AUCTION_LENGTH, MAX_INTEREST_RATE,
    current_auction_rate,
)

from tests.protocol_setup import ONE_DAY, advance, make_pool, new_protocol, snapshot


class TestLoanTermsProperties:

    @given(
        elapsed=st.integers(min_value=0, max_value=ONE_DAY),
        rate=st.integers(min_value=0, max_value=MAX_INTEREST_RATE),
        length=st.integers(min_value=1, max_value=MAX_AUCTION_LENGTH),
    )
    @settings(max_examples=60, deadline=None, suppress_health_check=[HealthCheck.too_slow])
    def test_bought_loan_takes_pool_terms(self, elapsed, rate, length):
        """
        PROPERTY: A successful buy never leaves the loan above the auction ceiling,
        and the loan adopts the buying pool's rate and auction length.
        """
        protocol = new_protocol()
        pool_a = protocol.set_pool("alice", make_pool("alice"))
        pool_b = protocol.set_pool("bob", make_pool("bob", interest_rate=rate, auction_length=length))
        [loan_id] = protocol.borrow("carol", [Borrow(pool_a, Decimal("1000"), Decimal("1"))])
        protocol.start_auction("alice", [loan_id])
        advance(protocol.ledger, elapsed)
        ceiling = current_auction_rate(elapsed, ONE_DAY)

        if rate > ceiling:
            with pytest.raises(RateTooHigh):
                protocol.buy_loan("bob", loan_id, pool_b)
            return

        protocol.buy_loan("bob", loan_id, pool_b)
        record = protocol.get_loan(loan_id)
        assert record.interest_rate == rate <= ceiling
        assert record.auction_length == length
        assert record.lender == "bob"
        assert record.auction == Idle()

    @given(forged=st.decimals(min_value=Decimal("0"), max_value=Decimal("100000"), places=6))
    @settings(max_examples=60, deadline=None, suppress_health_check=[HealthCheck.too_slow])
    def test_outstanding_loans_cannot_be_forged(self, forged):
        """
        PROPERTY: set_pool rejects any outstanding_loans other than the stored value.
        """
        protocol = new_protocol()
        pid = protocol.set_pool("alice", make_pool("alice"))
        protocol.borrow("carol", [Borrow(pid, Decimal("1000"), Decimal("1"))])
        stored = protocol.get_pool(pid)
        assume(forged != stored.outstanding_loans)
        before = snapshot(protocol.ledger)

        with pytest.raises(PoolConfig):
            protocol.set_pool("alice", replace(stored, outstanding_loans=forged))

        assert snapshot(protocol.ledger) == before

    @given(st.integers(min_value=1, max_value=5), st.integers(min_value=0, max_value=365))
    @settings(max_examples=30, deadline=None, suppress_health_check=[HealthCheck.too_slow])
    def test_loans_respect_pool_ratio(self, n_loans, days):
        """
        PROPERTY: Every active loan drawn from a pool is within its max_loan_ratio.
        """
        protocol = new_protocol()
        pid = protocol.set_pool("alice", make_pool("alice", max_loan_ratio="500e18"))
        for i in range(n_loans):
            protocol.borrow("carol", [Borrow(pid, Decimal(100 + 50 * i), Decimal("1"))])
            advance(protocol.ledger, days * ONE_DAY)
        limit = protocol.get_pool(pid).max_loan_ratio
        for record in protocol.list_loans():
            assert record.debt * Decimal("1e18") / record.collateral <= limit


class TestBoundsExamples:

    def test_reconfigure_with_stored_outstanding(self, protocol, pool_a, loan):
        stored = protocol.get_pool(pool_a)
        protocol.set_pool("alice", replace(stored, interest_rate=700))
        assert protocol.get_pool(pool_a).interest_rate == 700
        assert protocol.get_pool(pool_a).outstanding_loans == Decimal("1000")

    def test_new_pool_cannot_start_with_outstanding(self, protocol):
        with pytest.raises(PoolConfig):
            protocol.set_pool("bob", make_pool("bob", outstanding_loans="1"))
