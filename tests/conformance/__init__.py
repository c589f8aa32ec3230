"""
Conformance Test Suite

This suite defines the NORMATIVE behavior of the lending protocol.
Any compliant implementation MUST pass these tests.

The tests are organized by invariant:
1. test_conservation.py - Custody and double-entry accounting
2. test_atomicity.py - All-or-nothing operations
3. test_auction_monotonicity.py - Shape of the auction rate ceiling
4. test_idempotency.py - Pure interest accrual and intent handling
5. test_bounds.py - Loan terms bounded by the accepting pool, protected outstanding_loans

These tests use hypothesis for property-based testing.
"""
