"""
conftest.py - Shared pytest fixtures for peerpool tests

Provides common fixtures used across unit, functional and conformance tests:
- Funded ledgers with USDC, WETH and DAI
- A Lender protocol bound to the ledger
- Pools for two lenders and an outstanding loan
"""

import pytest
from decimal import Decimal

from peerpool import Borrow

from tests.protocol_setup import (
    make_pool, new_ledger, new_protocol,
)


# =============================================================================
# BASIC FIXTURES
# =============================================================================

@pytest.fixture
def ledger():
    """Funded ledger without the lending protocol attached."""
    return new_ledger()


@pytest.fixture
def protocol():
    """Lender protocol: owner 'governance', fees to 'treasury', default fee rates."""
    return new_protocol()


# =============================================================================
# POOL AND LOAN FIXTURES
# =============================================================================

@pytest.fixture
def pool_a(protocol):
    """alice lends 10000 USDC against WETH at 1000 bps, one-day auctions."""
    return protocol.set_pool("alice", make_pool("alice"))


@pytest.fixture
def pool_b(protocol):
    """bob lends 10000 USDC against WETH at 500 bps, one-day auctions."""
    return protocol.set_pool("bob", make_pool("bob", interest_rate=500))


@pytest.fixture
def loan(protocol, pool_a):
    """carol owes 1000 USDC to pool_a against 1 WETH."""
    [loan_id] = protocol.borrow("carol", [Borrow(pool_a, Decimal("1000"), Decimal("1"))])
    return loan_id


@pytest.fixture
def auctioned_loan(protocol, loan):
    """loan, put up for auction by alice at the current time."""
    protocol.start_auction("alice", [loan])
    return loan
