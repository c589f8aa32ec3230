"""
peerpool - Peer-Pooled Lending Ledger

Lenders fund pools of one token against another, borrowers draw collateralized
loans from them, and lenders exit loans through a Dutch auction on the
interest rate in which other pools can take them over.

Usage:
    from decimal import Decimal
    from peerpool import (
        Ledger, Lender, Pool, Borrow, Move, token, build_transaction, SYSTEM_WALLET,
    )

    ledger = Ledger("main", verbose=False)
    ledger.register_unit(token("USDC", "USD Coin", decimal_places=6))
    ledger.register_unit(token("WETH", "Wrapped Ether"))
    ledger.register_wallet("alice")
    ledger.register_wallet("bob")

    # Fund wallets via SYSTEM_WALLET (proper issuance)
    ledger.execute(build_transaction(ledger, [
        Move(Decimal("10000"), "USDC", SYSTEM_WALLET, "alice", "mint"),
        Move(Decimal("10"), "WETH", SYSTEM_WALLET, "bob", "mint"),
    ]))

    lender = Lender(ledger, owner="governance", fee_recipient="treasury")
    pid = lender.set_pool("alice", Pool(
        lender="alice", loan_token="USDC", collateral_token="WETH",
        min_loan_size=Decimal("100"), pool_balance=Decimal("10000"),
        max_loan_ratio=Decimal("2000e18"), auction_length=86400,
        interest_rate=1000,
    ))
    [loan_id] = lender.borrow("bob", [Borrow(pid, Decimal("1000"), Decimal("1"))])
"""

# Core types
from .core import (
    LedgerView,
    Move,
    Transaction,
    PendingTransaction,
    TransactionOrigin,
    OriginType,
    StagedState,
    build_transaction,
    append_move,
    check_caller,
    Unit,
    UnitStateChange,
    ExecuteResult,
    token,
    # Errors
    LedgerError,
    UnitNotRegistered,
    WalletNotRegistered,
    TransferFailed,
    Unauthorized,
    PoolConfig,
    FeeTooHigh,
    PoolNotFound,
    LoanNotFound,
    LoanClosed,
    LoanTooSmall,
    LoanTooLarge,
    RatioTooHigh,
    TokenMismatch,
    AuctionStarted,
    AuctionNotStarted,
    AuctionEnded,
    AuctionNotEnded,
    AuctionTooShort,
    RateTooHigh,
    PoolTooSmall,
    # Constants
    SYSTEM_WALLET,
    PROTOCOL_WALLET,
    UNIT_TYPE_TOKEN,
    UNIT_TYPE_POOL,
    UNIT_TYPE_LOAN,
    UNIT_TYPE_FEE_POLICY,
    UNIT_TYPE_LOAN_BOOK,
    FEE_POLICY_SYMBOL,
    LOAN_BOOK_SYMBOL,
    MAX_INTEREST_RATE,
    MAX_AUCTION_LENGTH,
    MAX_LENDER_FEE,
    MAX_BORROWER_FEE,
    DEFAULT_LENDER_FEE,
    DEFAULT_BORROWER_FEE,
    BPS_DENOMINATOR,
    SECONDS_PER_YEAR,
    LOAN_RATIO_PRECISION,
)

# Ledger
from .ledger import Ledger

# Interest and auction math
from .interest import (
    calculate_interest,
    calculate_borrower_fee,
    calculate_loan_ratio,
    current_auction_rate,
    earliest_eligible_elapsed,
    elapsed_seconds,
    auction_rate_schedule,
    interest_schedule,
)

# Fee policy
from .fees import (
    FeePolicy,
    load_fee_policy,
    compute_set_lender_fee,
    compute_set_borrower_fee,
    compute_set_fee_recipient,
)

# Pools
from .pools import (
    Pool,
    pool_id,
    pool_symbol,
    get_pool,
    list_pools,
    compute_set_pool,
    compute_add_to_pool,
    compute_remove_from_pool,
    compute_update_max_loan_ratio,
    compute_update_interest_rate,
)

# Loans
from .loans import (
    Loan,
    LoanStatus,
    Idle,
    UnderAuction,
    Borrow,
    Refinance,
    loan_symbol,
    get_loan,
    get_loan_debt,
    list_loans,
    compute_borrow,
    compute_repay,
    compute_start_auction,
    compute_seize_loan,
    compute_give_loan,
    compute_refinance,
)

# Auction
from .auction import compute_buy_loan

# Facade
from .lender import Lender


__all__ = [
    # Core
    'LedgerView', 'Move', 'Transaction', 'PendingTransaction', 'TransactionOrigin', 'OriginType',
    'StagedState', 'build_transaction', 'append_move', 'check_caller',
    'Unit', 'UnitStateChange', 'ExecuteResult', 'token',
    # Errors
    'LedgerError', 'UnitNotRegistered', 'WalletNotRegistered', 'TransferFailed',
    'Unauthorized', 'PoolConfig', 'FeeTooHigh', 'PoolNotFound', 'LoanNotFound', 'LoanClosed',
    'LoanTooSmall', 'LoanTooLarge', 'RatioTooHigh', 'TokenMismatch',
    'AuctionStarted', 'AuctionNotStarted', 'AuctionEnded', 'AuctionNotEnded', 'AuctionTooShort',
    'RateTooHigh', 'PoolTooSmall',
    # Constants
    'SYSTEM_WALLET', 'PROTOCOL_WALLET',
    'UNIT_TYPE_TOKEN', 'UNIT_TYPE_POOL', 'UNIT_TYPE_LOAN', 'UNIT_TYPE_FEE_POLICY', 'UNIT_TYPE_LOAN_BOOK',
    'FEE_POLICY_SYMBOL', 'LOAN_BOOK_SYMBOL',
    'MAX_INTEREST_RATE', 'MAX_AUCTION_LENGTH', 'MAX_LENDER_FEE', 'MAX_BORROWER_FEE',
    'DEFAULT_LENDER_FEE', 'DEFAULT_BORROWER_FEE',
    'BPS_DENOMINATOR', 'SECONDS_PER_YEAR', 'LOAN_RATIO_PRECISION',
    # Ledger
    'Ledger',
    # Interest
    'calculate_interest', 'calculate_borrower_fee', 'calculate_loan_ratio',
    'current_auction_rate', 'earliest_eligible_elapsed', 'elapsed_seconds',
    'auction_rate_schedule', 'interest_schedule',
    # Fees
    'FeePolicy', 'load_fee_policy',
    'compute_set_lender_fee', 'compute_set_borrower_fee', 'compute_set_fee_recipient',
    # Pools
    'Pool', 'pool_id', 'pool_symbol', 'get_pool', 'list_pools',
    'compute_set_pool', 'compute_add_to_pool', 'compute_remove_from_pool',
    'compute_update_max_loan_ratio', 'compute_update_interest_rate',
    # Loans
    'Loan', 'LoanStatus', 'Idle', 'UnderAuction', 'Borrow', 'Refinance',
    'loan_symbol', 'get_loan', 'get_loan_debt', 'list_loans',
    'compute_borrow', 'compute_repay', 'compute_start_auction', 'compute_seize_loan',
    'compute_give_loan', 'compute_refinance',
    # Auction
    'compute_buy_loan',
    # Facade
    'Lender',
]
