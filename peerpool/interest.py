"""
interest.py - Interest Accrual and Auction Rate Math

Simple (non-compounding) interest on a loan's debt, split between the lender
and the protocol, and the linear rate ceiling of the refinancing auction.

Exact functions work on Decimal amounts and integer bps/seconds and are what
the protocol settles with. The *_schedule functions are numpy-vectorized float
projections over many elapsed times, for quoting and analysis only.

Formulas:
    total_interest    = debt * rate_bps * elapsed / 10000 / SECONDS_PER_YEAR
    protocol_interest = total_interest * lender_fee_bps / 10000
    lender_interest   = total_interest - protocol_interest
    auction_ceiling   = MAX_INTEREST_RATE * elapsed // auction_length

Rounding:
    total_interest and protocol_interest are quantized DOWN to the token's
    precision; lender_interest is the exact remainder, so the two shares
    always add back to total_interest.
"""

from __future__ import annotations
from datetime import datetime
from decimal import Decimal, ROUND_DOWN
from typing import Optional, Tuple, Union

import numpy as np

from .core import (
    BPS_DENOMINATOR, SECONDS_PER_YEAR, LOAN_RATIO_PRECISION, MAX_INTEREST_RATE,
    RatioTooHigh,
)


# Type alias for scalar or array inputs
Numeric = Union[int, float, np.ndarray]


def quantize_down(value: Decimal, decimal_places: Optional[int]) -> Decimal:
    """Round value toward zero at decimal_places (unchanged if None)."""
    if decimal_places is None:
        return value
    return value.quantize(Decimal(10) ** -decimal_places, rounding=ROUND_DOWN)


def elapsed_seconds(start: datetime, now: datetime) -> int:
    """Whole seconds from start to now, never negative."""
    return max(0, int((now - start).total_seconds()))


# ============================================================================
# EXACT SETTLEMENT MATH
# ============================================================================

def calculate_interest(
    debt: Decimal,
    interest_rate: int,
    elapsed: int,
    lender_fee: int,
    decimal_places: Optional[int] = None,
) -> Tuple[Decimal, Decimal]:
    """
    Accrued interest on debt over elapsed seconds, split by the fee policy.

    PURE FUNCTION - same inputs always give the same split.

    Args:
        debt: Outstanding debt the interest accrues on
        interest_rate: Annualized rate in bps
        elapsed: Seconds since the loan's start timestamp
        lender_fee: Protocol share of interest in bps
        decimal_places: Loan token precision (None = no quantization)

    Returns:
        (lender_interest, protocol_interest)

    Example:
        1000 USDC at 1000 bps for 365 days, 10% lender fee
        total = 100, protocol = 10, lender = 90
    """
    zero = Decimal("0")
    if debt <= 0 or interest_rate <= 0 or elapsed <= 0:
        return zero, zero
    total = quantize_down(
        debt * interest_rate * elapsed / (BPS_DENOMINATOR * SECONDS_PER_YEAR),
        decimal_places,
    )
    protocol = quantize_down(total * lender_fee / BPS_DENOMINATOR, decimal_places)
    return total - protocol, protocol


def calculate_borrower_fee(debt: Decimal, borrower_fee: int, decimal_places: Optional[int] = None) -> Decimal:
    """Origination fee on debt, rounded down."""
    if debt <= 0:
        return Decimal("0")
    return quantize_down(debt * borrower_fee / BPS_DENOMINATOR, decimal_places)


def calculate_loan_ratio(debt: Decimal, collateral: Decimal) -> Decimal:
    """
    Debt per unit of collateral, scaled by 1e18 and floored.

    Raises:
        RatioTooHigh: If collateral is not positive (unbounded ratio)
    """
    if collateral <= 0:
        raise RatioTooHigh("collateral must be positive")
    return (debt * LOAN_RATIO_PRECISION / collateral).to_integral_value(rounding=ROUND_DOWN)


def current_auction_rate(elapsed: int, auction_length: int) -> int:
    """
    Rate ceiling of a Dutch auction elapsed seconds after it started.

    Rises linearly from 0 at the start to MAX_INTEREST_RATE at auction_length.
    """
    if auction_length <= 0:
        raise ValueError(f"auction_length must be positive, got {auction_length}")
    return MAX_INTEREST_RATE * max(0, elapsed) // auction_length


def earliest_eligible_elapsed(interest_rate: int, auction_length: int) -> int:
    """
    First whole second at which a pool charging interest_rate clears the ceiling.

    Returns a value greater than auction_length if the rate never qualifies.
    """
    if auction_length <= 0:
        raise ValueError(f"auction_length must be positive, got {auction_length}")
    if interest_rate <= 0:
        return 0
    return -(-interest_rate * auction_length // MAX_INTEREST_RATE)


# ============================================================================
# VECTORIZED PROJECTIONS
# ============================================================================

def auction_rate_schedule(elapsed: Numeric, auction_length: int) -> np.ndarray:
    """
    Auction ceiling at each elapsed time (vectorized current_auction_rate).

    Raises:
        ValueError: If auction_length is not positive or any elapsed is negative
    """
    if auction_length <= 0:
        raise ValueError(f"auction_length must be positive, got {auction_length}")
    e = np.asarray(elapsed, dtype=np.int64)
    if np.any(e < 0):
        raise ValueError("elapsed must be non-negative")
    return (MAX_INTEREST_RATE * e) // auction_length


def interest_schedule(
    debt: float,
    interest_rate: int,
    elapsed: Numeric,
    lender_fee: int,
) -> Tuple[np.ndarray, np.ndarray]:
    """
    Projected (lender_interest, protocol_interest) at each elapsed time.

    Float approximation of calculate_interest without quantization.
    """
    e = np.asarray(elapsed, dtype=np.float64)
    if np.any(e < 0):
        raise ValueError("elapsed must be non-negative")
    total = float(debt) * interest_rate * e / BPS_DENOMINATOR / SECONDS_PER_YEAR
    protocol = total * lender_fee / BPS_DENOMINATOR
    return total - protocol, protocol
