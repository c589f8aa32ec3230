"""
test_refinancing_lifecycle.py - End-to-end loan lifecycles

Scenarios:
- Loan bought halfway through its auction by a cheaper pool
- Challenger too early with a high rate
- Challenger after the auction closed, followed by seizure
- Long lifecycle across repeated auctions, refinance and repayment,
  with custody and double-entry checks after every step
"""

import pytest
from decimal import Decimal

from peerpool import (
    Borrow, Idle, Refinance, LoanStatus, Lender,
    AuctionEnded, RateTooHigh,
    calculate_interest, current_auction_rate,
)
from tests.protocol_setup import ONE_DAY, advance, make_pool, new_ledger, snapshot


def _scenario_pool(lender, rate, balance="1000"):
    return make_pool(
        lender, loan_token="DAI", collateral_token="WETH",
        balance=balance, min_loan_size="1", max_loan_ratio="2e18",
        auction_length=ONE_DAY, interest_rate=rate,
    )


@pytest.fixture
def scenario():
    """Pool A at 1000 bps with a 500 DAI loan against 250 WETH, auction started at t0."""
    protocol = Lender(new_ledger(), owner="governance", fee_recipient="treasury")
    pool_a = protocol.set_pool("alice", _scenario_pool("alice", 1000))
    [loan_id] = protocol.borrow("carol", [Borrow(pool_a, Decimal("500"), Decimal("250"))])
    pool = protocol.get_pool(pool_a)
    assert pool.pool_balance == Decimal("500")
    assert pool.outstanding_loans == Decimal("500")
    protocol.start_auction("alice", [loan_id])
    return protocol, pool_a, loan_id


def assert_books_balance(protocol):
    assert protocol.verify_custody()['valid']
    assert protocol.ledger.verify_double_entry()['valid']


class TestAuctionScenarios:

    def test_cheaper_pool_buys_at_half_window(self, scenario):
        protocol, pool_a, loan_id = scenario
        t0 = protocol.ledger.current_time
        pool_b = protocol.set_pool("bob", _scenario_pool("bob", 500))

        advance(protocol.ledger, 43200)
        assert current_auction_rate(43200, ONE_DAY) == 50000
        protocol.buy_loan("bob", loan_id, pool_b)

        record = protocol.get_loan(loan_id)
        assert record.lender == "bob"
        assert record.interest_rate == 500
        assert record.start_timestamp > t0
        assert record.auction == Idle()

        lender_interest, protocol_interest = calculate_interest(
            Decimal("500"), 1000, 43200, 1000, 18
        )
        a, b = protocol.get_pool(pool_a), protocol.get_pool(pool_b)
        assert a.pool_balance == Decimal("1000") + lender_interest
        assert a.outstanding_loans == Decimal("0")
        assert b.outstanding_loans == Decimal("500") + lender_interest + protocol_interest
        assert_books_balance(protocol)

    def test_expensive_pool_one_second_in(self, scenario):
        protocol, pool_a, loan_id = scenario
        pool_b = protocol.set_pool("bob", _scenario_pool("bob", 50000))
        advance(protocol.ledger, 1)
        before = snapshot(protocol.ledger)

        with pytest.raises(RateTooHigh):
            protocol.buy_loan("bob", loan_id, pool_b)

        assert snapshot(protocol.ledger) == before
        assert protocol.get_loan(loan_id).lender == "alice"

    def test_challenge_after_window_then_seize(self, scenario):
        protocol, pool_a, loan_id = scenario
        pool_b = protocol.set_pool("bob", _scenario_pool("bob", 500))
        advance(protocol.ledger, ONE_DAY + 1)

        with pytest.raises(AuctionEnded):
            protocol.buy_loan("bob", loan_id, pool_b)

        protocol.seize_loan("alice", [loan_id])
        assert protocol.ledger.get_balance("alice", "WETH") == Decimal("225")
        assert protocol.ledger.get_balance("treasury", "WETH") == Decimal("25")
        assert protocol.get_loan(loan_id).status == LoanStatus.SEIZED
        assert protocol.get_pool(pool_a).outstanding_loans == Decimal("0")
        assert_books_balance(protocol)


class TestLongLifecycle:

    def test_loan_passes_through_three_lenders(self, protocol, pool_a, pool_b):
        ledger = protocol.ledger
        [loan_id] = protocol.borrow("carol", [Borrow(pool_a, Decimal("1000"), Decimal("1"))])
        assert_books_balance(protocol)

        # alice exits to bob through an auction after 30 days
        advance(ledger, 30 * ONE_DAY)
        protocol.start_auction("alice", [loan_id])
        advance(ledger, 600)
        protocol.buy_loan("bob", loan_id, pool_b)
        assert protocol.get_loan(loan_id).lender == "bob"
        assert_books_balance(protocol)

        # bob hands the loan to dave's cheaper, longer pool
        pool_d = protocol.set_pool("dave", make_pool(
            "dave", balance="5000", interest_rate=400, auction_length=2 * ONE_DAY,
        ))
        advance(ledger, 10 * ONE_DAY)
        protocol.give_loan("bob", [loan_id], [pool_d])
        record = protocol.get_loan(loan_id)
        assert (record.lender, record.interest_rate) == ("dave", 400)
        assert_books_balance(protocol)

        # carol refinances back into alice's pool with more collateral
        advance(ledger, 5 * ONE_DAY)
        debt_now = protocol.get_loan_debt(loan_id)
        protocol.refinance("carol", [Refinance(loan_id, pool_a, Decimal("1200"), Decimal("2"))])
        record = protocol.get_loan(loan_id)
        assert (record.lender, record.debt, record.collateral) == ("alice", Decimal("1200"), Decimal("2"))
        assert debt_now > Decimal("1000")
        assert_books_balance(protocol)

        # and finally repays
        advance(ledger, 90 * ONE_DAY)
        protocol.repay("carol", [loan_id])
        assert protocol.get_loan(loan_id).status == LoanStatus.REPAID
        for pool in protocol.list_pools():
            assert pool.outstanding_loans == Decimal("0")
        assert_books_balance(protocol)

    def test_lenders_earn_interest(self, protocol, pool_a, pool_b):
        ledger = protocol.ledger
        [loan_id] = protocol.borrow("carol", [Borrow(pool_a, Decimal("1000"), Decimal("1"))])
        advance(ledger, 182 * ONE_DAY)
        protocol.start_auction("alice", [loan_id])
        advance(ledger, ONE_DAY // 2)
        protocol.buy_loan("bob", loan_id, pool_b)
        advance(ledger, 182 * ONE_DAY)
        protocol.repay("carol", [loan_id])

        assert protocol.get_pool(pool_a).pool_balance > Decimal("10000")
        assert protocol.get_pool(pool_b).pool_balance > Decimal("10000")
        assert ledger.get_balance("treasury", "USDC") > Decimal("5")
        assert_books_balance(protocol)

    def test_every_operation_is_logged(self, protocol, pool_a, pool_b):
        ledger = protocol.ledger
        start = len(ledger.transaction_log)
        [loan_id] = protocol.borrow("carol", [Borrow(pool_a, Decimal("1000"), Decimal("1"))])
        protocol.start_auction("alice", [loan_id])
        advance(ledger, 43200)
        protocol.buy_loan("bob", loan_id, pool_b)

        events = [tx.origin.event_type for tx in ledger.transaction_log[start:]]
        assert events == ["BORROW", "START_AUCTION", "BUY_LOAN"]
        assert ledger.transaction_log[-1].origin.source_id == "bob"
