"""
protocol_setup.py - Builders shared by fixtures and property tests

Hypothesis tests cannot take function-scoped fixtures, so the ledger and
protocol set-up lives here as plain functions and conftest.py wraps them.
"""

from __future__ import annotations
from datetime import datetime, timedelta
from decimal import Decimal
from typing import Any, Dict, Tuple

from peerpool import (
    Ledger, Lender, Pool, Move, SYSTEM_WALLET, build_transaction, token,
)


START = datetime(2025, 1, 1)
ONE_DAY = 86400

LENDERS = ("alice", "bob")
BORROWERS = ("carol", "dave")


def mint(ledger: Ledger, wallet: str, symbol: str, amount) -> None:
    """Issue tokens to wallet from SYSTEM_WALLET."""
    ledger.execute(build_transaction(ledger, [
        Move(Decimal(str(amount)), symbol, SYSTEM_WALLET, wallet, f"mint:{ledger.next_sequence}")
    ]))


def advance(ledger: Ledger, seconds: int) -> None:
    ledger.advance_time(ledger.current_time + timedelta(seconds=seconds))


def make_pool(
    lender: str,
    loan_token: str = "USDC",
    collateral_token: str = "WETH",
    balance="10000",
    min_loan_size="100",
    max_loan_ratio="2000e18",
    auction_length: int = ONE_DAY,
    interest_rate: int = 1000,
    outstanding_loans="0",
) -> Pool:
    return Pool(
        lender=lender,
        loan_token=loan_token,
        collateral_token=collateral_token,
        min_loan_size=Decimal(str(min_loan_size)),
        pool_balance=Decimal(str(balance)),
        max_loan_ratio=Decimal(str(max_loan_ratio)),
        auction_length=auction_length,
        interest_rate=interest_rate,
        outstanding_loans=Decimal(str(outstanding_loans)),
    )


def new_ledger() -> Ledger:
    """
    Ledger with USDC (6 dp), WETH and DAI (18 dp).

    Lenders alice and bob hold 100k USDC and 100k DAI each; borrowers carol
    and dave hold 10k USDC, 10k DAI and 1000 WETH each.
    """
    ledger = Ledger("test", START, verbose=False)
    ledger.register_unit(token("USDC", "USD Coin", decimal_places=6))
    ledger.register_unit(token("WETH", "Wrapped Ether"))
    ledger.register_unit(token("DAI", "Dai Stablecoin"))
    for wallet in LENDERS:
        ledger.register_wallet(wallet)
        mint(ledger, wallet, "USDC", "100000")
        mint(ledger, wallet, "DAI", "100000")
    for wallet in BORROWERS:
        ledger.register_wallet(wallet)
        mint(ledger, wallet, "USDC", "10000")
        mint(ledger, wallet, "DAI", "10000")
        mint(ledger, wallet, "WETH", "1000")
    return ledger


def new_protocol() -> Lender:
    return Lender(new_ledger(), owner="governance", fee_recipient="treasury")


def snapshot(ledger: Ledger) -> Tuple[Dict[Tuple[str, str], Decimal], Dict[str, Any]]:
    """Every non-zero balance and every unit state, for before/after comparison."""
    balances = {
        (wallet, symbol): qty
        for wallet in sorted(ledger.registered_wallets)
        for symbol, qty in ledger.get_wallet_balances(wallet).items()
        if qty != 0
    }
    states = {symbol: ledger.get_unit_state(symbol) for symbol in ledger.list_units()}
    return balances, states
