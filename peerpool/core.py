"""
Core types and pure functions for the pooled lending ledger.

This module provides the foundational data structures and protocols:
1. Protocols: LedgerView for read-only ledger access
2. Immutable data structures: Move, PendingTransaction, Transaction, Unit
3. Exceptions: LedgerError and the lending protocol's error taxonomy
4. Protocol constants: rate, fee and auction bounds
5. StagedState: copy-on-read changeset used to build one atomic transaction
6. Unit factories: token()

All functions in this module are pure and operate on read-only views.
No function can mutate ledger state directly.
"""

from __future__ import annotations
from dataclasses import dataclass, field, replace
from datetime import datetime
from decimal import Decimal, ROUND_HALF_EVEN, ROUND_DOWN, getcontext
from enum import Enum
import copy
import hashlib
from typing import (
    Dict, List, Set, Optional, Any, Protocol,
    Tuple, FrozenSet, runtime_checkable,
)


# ============================================================================
# DECIMAL CONTEXT CONFIGURATION
# ============================================================================
#
# Token amounts carry up to 18 decimal places and interest is computed as
# debt * rate * seconds before dividing, so intermediate products need
# headroom. Every amount that lands in a balance is quantized to the token's
# decimal_places first.
#
# PRECONDITION: No other code should modify the global Decimal context.
#
_LEDGER_DECIMAL_CONTEXT = getcontext()
_LEDGER_DECIMAL_CONTEXT.prec = 50
_LEDGER_DECIMAL_CONTEXT.rounding = ROUND_HALF_EVEN


# ============================================================================
# CONSTANTS
# ============================================================================

# Reserved wallet for token issuance. Exempt from balance validation.
SYSTEM_WALLET = "system"

# Custody wallet holding every pool balance and all locked collateral.
PROTOCOL_WALLET = "protocol"

# Unit type constants
UNIT_TYPE_TOKEN = "TOKEN"
UNIT_TYPE_POOL = "POOL"
UNIT_TYPE_LOAN = "LOAN"
UNIT_TYPE_FEE_POLICY = "FEE_POLICY"
UNIT_TYPE_LOAN_BOOK = "LOAN_BOOK"

# Well-known symbols for the singleton protocol units
FEE_POLICY_SYMBOL = "FEE_POLICY"
LOAN_BOOK_SYMBOL = "LOAN_BOOK"

# Protocol bounds
MAX_INTEREST_RATE = 100000          # bps APR (1000%)
MAX_AUCTION_LENGTH = 3 * 24 * 3600  # seconds
MAX_LENDER_FEE = 5000               # bps of accrued interest
MAX_BORROWER_FEE = 500              # bps of drawn debt
DEFAULT_LENDER_FEE = 1000
DEFAULT_BORROWER_FEE = 50

BPS_DENOMINATOR = 10000
SECONDS_PER_YEAR = 365 * 24 * 3600
LOAN_RATIO_PRECISION = 10 ** 18

DEFAULT_TOKEN_DECIMALS = 18

# Quantities with absolute value below this threshold are treated as zero.
QUANTITY_EPSILON = Decimal("1e-18")

DECIMAL_ROUNDING = {
    'TOKEN': ROUND_DOWN,
}


# ============================================================================
# TYPE ALIASES
# ============================================================================

# Mapping from wallet ID to quantity held by that wallet for a specific unit.
Positions = Dict[str, Decimal]

# Mapping from unit symbol to quantity held in a single wallet.
BalanceMap = Dict[str, Decimal]

# Internal state for a unit: pool configuration, loan terms, fee policy, etc.
UnitState = Dict[str, Any]


# ============================================================================
# PROTOCOLS
# ============================================================================

@runtime_checkable
class LedgerView(Protocol):
    """
    Read-only interface to ledger state.

    Pool, loan and fee computations take a LedgerView so they can be run
    against the live Ledger or against tests.fake_view.FakeView. Functions
    accepting a LedgerView declare their read-only intent.
    """

    @property
    def current_time(self) -> datetime:
        """Return the current logical time of the ledger."""
        ...

    def get_balance(self, wallet_id: str, unit_symbol: str) -> Decimal:
        """Return the balance of a unit in a wallet (zero if none)."""
        ...

    def get_unit_state(self, unit_symbol: str) -> UnitState:
        """Return a copy of the unit's internal state."""
        ...

    def get_positions(self, unit_symbol: str) -> Positions:
        """Return all non-zero positions for a unit across all wallets."""
        ...

    def list_wallets(self) -> Set[str]:
        """Return the set of all registered wallet IDs."""
        ...

    def list_units(self) -> List[str]:
        """Return all registered unit symbols, sorted."""
        ...

    def get_unit(self, symbol: str) -> 'Unit':
        """Return the Unit object for a given symbol."""
        ...


# ============================================================================
# ENUMS
# ============================================================================

class ExecuteResult(Enum):
    """
    Outcome of a transaction execution attempt.

    APPLIED: Transaction was validated and applied to the ledger.
    ALREADY_APPLIED: Transaction ID was previously processed (idempotent behavior).
    REJECTED: Transaction failed validation (insufficient funds, stale state,
              duplicate unit creation).
    """
    APPLIED = "applied"
    ALREADY_APPLIED = "already_applied"
    REJECTED = "rejected"


class OriginType(Enum):
    """Classification of where a transaction originated."""
    USER_ACTION = "user_action"           # Lender, borrower or owner call
    SYSTEM = "system"                     # Issuance, initial setup


# ============================================================================
# EXCEPTIONS
# ============================================================================

class LedgerError(Exception):
    """Base exception for all ledger-related errors."""
    pass


class UnitNotRegistered(LedgerError):
    """Raised when attempting to operate on a unit that has not been registered with the ledger."""
    pass


class WalletNotRegistered(LedgerError):
    """Raised when attempting to operate on a wallet that has not been registered with the ledger."""
    pass


class TransferFailed(LedgerError):
    """Raised when the token ledger refuses the transfers of an operation."""
    pass


class Unauthorized(LedgerError):
    """Caller is not the lender, borrower or owner of the resource."""
    pass


class PoolConfig(LedgerError):
    """Structural pool parameter violation."""
    pass


class FeeTooHigh(LedgerError):
    """Fee policy bound violation."""
    pass


class PoolNotFound(LedgerError):
    pass


class LoanNotFound(LedgerError):
    pass


class LoanClosed(LedgerError):
    """The loan was already repaid or seized."""
    pass


class LoanTooSmall(LedgerError):
    pass


class LoanTooLarge(LedgerError):
    """The pool cannot fund the requested debt."""
    pass


class RatioTooHigh(LedgerError):
    pass


class TokenMismatch(LedgerError):
    pass


class AuctionStarted(LedgerError):
    pass


class AuctionNotStarted(LedgerError):
    pass


class AuctionEnded(LedgerError):
    pass


class AuctionNotEnded(LedgerError):
    pass


class AuctionTooShort(LedgerError):
    pass


class RateTooHigh(LedgerError):
    """Pool rate is above the current auction ceiling or the loan's rate."""
    pass


class PoolTooSmall(LedgerError):
    """Challenging pool cannot absorb the loan's total debt."""
    pass


# ============================================================================
# TRANSACTION ORIGIN
# ============================================================================

@dataclass(frozen=True, slots=True)
class TransactionOrigin:
    """
    Immutable record of a transaction's origin for audit purposes.

    Attributes:
        origin_type: Classification of the origin source
        source_id: Calling wallet
        unit_symbol: Primary unit the call acted on (if applicable)
        event_type: Operation name (e.g., "BORROW", "BUY_LOAN")
        nonce: Ledger sequence the call was submitted at; two identical calls
               made at different points in the log get different intent ids
    """
    origin_type: OriginType
    source_id: str
    unit_symbol: Optional[str] = None
    event_type: Optional[str] = None
    nonce: int = 0

    def __repr__(self) -> str:
        parts = [f"{self.origin_type.value}:{self.source_id}"]
        if self.unit_symbol:
            parts.append(f"unit={self.unit_symbol}")
        if self.event_type:
            parts.append(f"event={self.event_type}")
        parts.append(f"nonce={self.nonce}")
        return f"Origin({', '.join(parts)})"


# ============================================================================
# UNIT STATE CHANGE
# ============================================================================

@dataclass(frozen=True, slots=True)
class UnitStateChange:
    """
    Record of a unit state change.

    old_state is the state the change was computed from. The ledger refuses
    to apply the change if the unit's current state differs from it.

    Attributes:
        unit: Symbol of the unit whose state changed
        old_state: Complete state before the change
        new_state: Complete state after the change
    """
    unit: str
    old_state: Any
    new_state: Any

    def changed_fields(self) -> Dict[str, Tuple[Any, Any]]:
        """Map each field that differs to its (old_value, new_value)."""
        old = self.old_state if isinstance(self.old_state, dict) else {}
        new = self.new_state if isinstance(self.new_state, dict) else {}
        changes = {}
        for key in set(old.keys()) | set(new.keys()):
            old_val = old.get(key)
            new_val = new.get(key)
            if old_val != new_val:
                changes[key] = (old_val, new_val)
        return changes


# ============================================================================
# CORE DATA STRUCTURES
# ============================================================================

@dataclass(frozen=True, slots=True)
class Move:
    """
    A single token transfer between two wallets.

    Attributes:
        quantity: The amount to transfer (must be finite and non-zero).
        unit_symbol: The token being transferred.
        source: The wallet ID from which value is debited.
        dest: The wallet ID to which value is credited.
        contract_id: Identifier of the operation generating this move.
        metadata: Optional additional information about the move.
    """
    quantity: Decimal
    unit_symbol: str
    source: str
    dest: str
    contract_id: str
    metadata: Optional[Dict[str, Any]] = None

    def __post_init__(self):
        if not self.source or not self.source.strip():
            raise ValueError("Move source cannot be empty")
        if not self.dest or not self.dest.strip():
            raise ValueError("Move dest cannot be empty")
        if not self.unit_symbol or not self.unit_symbol.strip():
            raise ValueError("Move unit_symbol cannot be empty")
        if not self.contract_id or not self.contract_id.strip():
            raise ValueError("Move contract_id cannot be empty")
        if not isinstance(self.quantity, Decimal):
            raise ValueError(f"Move quantity must be Decimal, got {type(self.quantity)}")
        if self.quantity.is_infinite() or self.quantity.is_nan():
            raise ValueError(f"Move quantity must be finite, got {self.quantity}")
        if abs(self.quantity) < QUANTITY_EPSILON:
            raise ValueError("Move quantity is effectively zero")
        if self.source == self.dest:
            raise ValueError("Source and dest must be different")

    def __repr__(self) -> str:
        return f"Move({self.quantity} {self.unit_symbol}: {self.source}→{self.dest})"


def append_move(
    moves: List[Move],
    quantity: Decimal,
    unit_symbol: str,
    source: str,
    dest: str,
    contract_id: str,
) -> None:
    """
    Append a transfer to moves, skipping zero amounts.

    Fees and interest legitimately round to zero; a zero-value transfer is a
    no-op rather than an error. A non-zero transfer from a wallet to itself
    is rejected by Move.
    """
    if quantity <= 0:
        return
    moves.append(Move(quantity, unit_symbol, source, dest, contract_id))


def check_caller(caller: str, custody_wallet: str = PROTOCOL_WALLET) -> None:
    """
    Reject the issuance and custody wallets as lenders, borrowers and fee
    recipients.

    Raises:
        Unauthorized: If caller is SYSTEM_WALLET or custody_wallet
    """
    if caller in (SYSTEM_WALLET, custody_wallet):
        raise Unauthorized(f"{caller} is a reserved wallet")


def _normalize_decimal(d: Decimal) -> str:
    """
    Normalize a Decimal to a canonical string representation.

    Decimal("1.0") and Decimal("1.00") both become "1".
    """
    normalized = d.normalize()
    if normalized == normalized.to_integral_value():
        return str(int(normalized))
    return format(normalized, 'f')


def _canonicalize(value: Any) -> str:
    """
    Produce a canonical string representation of a value for hashing.

    Independent of dict insertion order and Decimal representation.
    """
    if value is None:
        return "null"
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, Decimal):
        return f"D:{_normalize_decimal(value)}"
    if isinstance(value, (int, float)):
        return f"N:{value}"
    if isinstance(value, str):
        return f"S:{value}"
    if isinstance(value, datetime):
        return f"T:{value.isoformat()}"
    if isinstance(value, dict):
        items = sorted(value.items(), key=lambda kv: str(kv[0]))
        serialized = ",".join(f"{_canonicalize(k)}:{_canonicalize(v)}" for k, v in items)
        return f"{{{serialized}}}"
    if isinstance(value, (list, tuple)):
        serialized = ",".join(_canonicalize(item) for item in value)
        return f"[{serialized}]"
    return f"R:{repr(value)}"


def _compute_intent_id(
    moves: Tuple[Move, ...],
    state_changes: Tuple[UnitStateChange, ...],
    origin: TransactionOrigin,
    units_to_create: Tuple['Unit', ...] = ()
) -> str:
    """
    Compute a deterministic content hash for a transaction's intent.

    Based solely on the semantic content of the transaction, never on
    execution metadata. Used for idempotency checking.
    """
    sorted_moves = tuple(sorted(
        moves,
        key=lambda m: (_normalize_decimal(m.quantity), m.unit_symbol, m.source, m.dest, m.contract_id)
    ))

    content_parts = [f"origin:{origin.origin_type.value}:{origin.source_id}:{origin.nonce}"]
    if origin.unit_symbol:
        content_parts.append(f"unit:{origin.unit_symbol}")
    if origin.event_type:
        content_parts.append(f"event:{origin.event_type}")

    for unit in sorted(units_to_create, key=lambda u: u.symbol):
        content_parts.append(f"unit_create:{unit.symbol}|{unit.unit_type}|{_canonicalize(unit.state)}")

    for m in sorted_moves:
        qty = _normalize_decimal(m.quantity)
        content_parts.append(f"move:{qty}|{m.unit_symbol}|{m.source}|{m.dest}|{m.contract_id}")

    for sc in sorted(state_changes, key=lambda s: s.unit):
        old_canonical = _canonicalize(sc.old_state)
        new_canonical = _canonicalize(sc.new_state)
        content_parts.append(f"state_change:{sc.unit}|{old_canonical}|{new_canonical}")

    content = "|".join(content_parts)
    return hashlib.sha256(content.encode()).hexdigest()[:16]


@dataclass(frozen=True, slots=True)
class PendingTransaction:
    """
    A transaction specification before execution - represents INTENT.

    Produced by the compute_* functions and submitted to Ledger.execute().
    Carries every effect of one protocol call: token moves, pool and loan
    state changes, and new pool or loan units.

    Attributes:
        moves: Tuple of token transfers between wallets
        state_changes: Tuple of unit state changes (with old_state and new_state)
        units_to_create: Tuple of Unit objects to register
        origin: Who/what created this transaction and why
        timestamp: When this pending transaction was created
        intent_id: Content-addressable hash of the transaction intent (auto-computed)
    """
    moves: Tuple[Move, ...]
    state_changes: Tuple[UnitStateChange, ...]
    origin: TransactionOrigin
    timestamp: datetime
    units_to_create: Tuple['Unit', ...] = ()
    intent_id: str = field(default="")

    def __post_init__(self):
        if not self.intent_id:
            computed_id = _compute_intent_id(
                self.moves, self.state_changes, self.origin, self.units_to_create
            )
            object.__setattr__(self, 'intent_id', computed_id)

    def is_empty(self) -> bool:
        """Return True if this pending transaction has no moves, no state deltas, and no units to create."""
        return not self.moves and not self.state_changes and not self.units_to_create

    def with_nonce(self, nonce: int) -> PendingTransaction:
        """Return a copy stamped with nonce, with its intent_id recomputed."""
        return replace(self, origin=replace(self.origin, nonce=nonce), intent_id="")

    def __repr__(self) -> str:
        return f"PendingTransaction({len(self.moves)} moves, {len(self.state_changes)} deltas, {self.origin})"


def build_transaction(
    view: LedgerView,
    moves: List[Move],
    state_changes: Optional[List[UnitStateChange]] = None,
    origin: Optional[TransactionOrigin] = None,
    units_to_create: Optional[Tuple['Unit', ...]] = None,
) -> PendingTransaction:
    """
    Build a PendingTransaction from moves and state deltas.

    State changes are deep-copied so later mutation of the caller's dicts
    cannot alter the pending transaction.

    Example:
        moves = [Move(Decimal("100"), "USDC", "alice", "protocol", "add_to_pool")]
        old_state = view.get_unit_state(symbol)
        new_state = {**old_state, "pool_balance": old_state["pool_balance"] + 100}
        changes = [UnitStateChange(unit=symbol, old_state=old_state, new_state=new_state)]
        return build_transaction(view, moves, changes)
    """
    if origin is None:
        origin = TransactionOrigin(
            origin_type=OriginType.SYSTEM,
            source_id=SYSTEM_WALLET,
        )

    copied_changes: Tuple[UnitStateChange, ...] = ()
    if state_changes:
        copied_changes = tuple(
            UnitStateChange(
                unit=sc.unit,
                old_state=copy.deepcopy(sc.old_state),
                new_state=copy.deepcopy(sc.new_state),
            )
            for sc in state_changes
        )

    return PendingTransaction(
        moves=tuple(moves),
        state_changes=copied_changes,
        origin=origin,
        timestamp=view.current_time,
        units_to_create=units_to_create or (),
    )


@dataclass(frozen=True, slots=True)
class Transaction:
    """
    An executed, immutable record of ledger state changes - represents FACT.

    Attributes:
        moves: Tuple of token transfers between wallets
        state_changes: Tuple of unit state changes (with old_state and new_state)
        origin: Who/what created this transaction and why
        timestamp: When the PendingTransaction was created
        intent_id: Content hash from PendingTransaction (for idempotency)
        exec_id: Unique execution identifier (ledger + sequence + time)
        ledger_name: Name of the ledger that executed this
        execution_time: When this was executed and logged
        sequence_number: Monotonic sequence within the ledger (for ordering)
        contract_ids: Set of contract IDs from moves (auto-populated)
    """
    moves: Tuple[Move, ...]
    state_changes: Tuple[UnitStateChange, ...]
    origin: TransactionOrigin
    timestamp: datetime
    intent_id: str
    exec_id: str
    ledger_name: str
    execution_time: datetime
    sequence_number: int
    units_to_create: Tuple['Unit', ...] = ()
    contract_ids: FrozenSet[str] = None

    def __post_init__(self):
        if not self.moves and not self.state_changes and not self.units_to_create:
            raise ValueError("Transaction must have moves, state_changes, or units_to_create")
        if self.contract_ids is None:
            object.__setattr__(
                self, 'contract_ids',
                frozenset(m.contract_id for m in self.moves)
            )

    def __repr__(self) -> str:
        w = 100  # Inner content width
        bar = "─" * w

        def pad(text: str) -> str:
            if len(text) > w:
                return text[:w-3] + "..."
            return text + " " * (w - len(text))

        lines = [
            "",
            f"┌{bar}┐",
            f"│{pad(' Transaction: ' + self.exec_id)}│",
            f"├{bar}┤",
            f"│{pad('   intent_id      : ' + self.intent_id)}│",
            f"│{pad('   execution_time : ' + str(self.execution_time))}│",
            f"│{pad('   sequence       : ' + str(self.sequence_number))}│",
            f"│{pad('   origin         : ' + str(self.origin))}│",
        ]
        if self.units_to_create:
            lines.append(f"├{bar}┤")
            lines.append(f"│{pad(' Units Created (' + str(len(self.units_to_create)) + '):')}│")
            for unit in self.units_to_create:
                lines.append(f"│{pad('   ' + unit.symbol + ' (' + unit.name + ')')}│")
        lines.append(f"├{bar}┤")
        lines.append(f"│{pad(' Moves (' + str(len(self.moves)) + '):')}│")
        for i, move in enumerate(self.moves):
            move_str = f"   [{i}] {move.quantity} {move.unit_symbol}: {move.source} → {move.dest}"
            lines.append(f"│{pad(move_str)}│")
        if self.state_changes:
            lines.append(f"├{bar}┤")
            lines.append(f"│{pad(' State Changes (' + str(len(self.state_changes)) + '):')}│")
            for sc in self.state_changes:
                lines.append(f"│{pad('   [' + sc.unit + ']')}│")
                for field_name, (old_val, new_val) in sc.changed_fields().items():
                    lines.append(f"│{pad(f'      {field_name}: {old_val!r} → {new_val!r}')}│")
        lines.append(f"└{bar}┘")
        return "\n".join(lines)


def _freeze_state(state: Optional[UnitState]) -> Tuple[Tuple[str, Any], ...]:
    """Convert a mutable state dict to a tuple of (key, value) pairs sorted by key."""
    if not state:
        return ()
    return tuple(sorted(state.items()))


def _thaw_state(frozen_state: Tuple[Tuple[str, Any], ...]) -> UnitState:
    return copy.deepcopy(dict(frozen_state))


@dataclass(frozen=True, slots=True)
class Unit:
    """
    Definition of a unit in the ledger: a token, or a state-only record
    (pool, loan, fee policy, loan book).

    Attributes:
        symbol: Short identifier for the unit (e.g., "USDC", "POOL_3fa1...").
        name: Human-readable name for the unit.
        unit_type: TOKEN, POOL, LOAN, FEE_POLICY or LOAN_BOOK.
        min_balance: Minimum allowed balance in any wallet.
        max_balance: Maximum allowed balance in any wallet.
        decimal_places: Number of decimal places for rounding (None = no rounding).
        _frozen_state: Internal frozen state representation (tuple of key-value pairs).
    """
    symbol: str
    name: str
    unit_type: str
    min_balance: Decimal = Decimal("0")
    max_balance: Decimal = Decimal("Infinity")
    decimal_places: Optional[int] = None
    _frozen_state: Tuple[Tuple[str, Any], ...] = field(default_factory=tuple)

    @property
    def state(self) -> UnitState:
        """Return the unit's state as a fresh mutable dictionary."""
        return _thaw_state(self._frozen_state)

    def round(self, value: Decimal) -> Decimal:
        """
        Round a value to this unit's decimal precision using quantize.

        Returns the value unchanged if decimal_places is None.
        """
        if self.decimal_places is None:
            return value
        if not isinstance(value, Decimal):
            value = Decimal(str(value))
        quantizer = Decimal(10) ** -self.decimal_places
        rounding_mode = DECIMAL_ROUNDING.get(self.unit_type, ROUND_HALF_EVEN)
        return value.quantize(quantizer, rounding=rounding_mode)


# ============================================================================
# STAGED STATE
# ============================================================================

class StagedState:
    """
    Copy-on-read overlay of unit states used to assemble one transaction.

    Every read snapshots the unit's state as of the view; writes land in the
    overlay, so a batch that touches the same pool twice sees its own earlier
    effects. build() turns the overlay into a PendingTransaction whose state
    changes carry the snapshot as old_state.

    Example:
        staged = StagedState(view)
        pool = staged.read("POOL_ab12")
        pool["pool_balance"] -= debt
        staged.write("POOL_ab12", pool)
        return staged.build(moves, origin)
    """

    def __init__(self, view: LedgerView):
        self.view = view
        self._original: Dict[str, UnitState] = {}
        self._current: Dict[str, UnitState] = {}
        self._order: List[str] = []
        self._created: Dict[str, Unit] = {}

    def exists(self, symbol: str) -> bool:
        return symbol in self._current or symbol in self.view.list_units()

    def read(self, symbol: str) -> UnitState:
        """
        Return a copy of the staged state for symbol.

        Raises:
            UnitNotRegistered: If the unit exists neither in the overlay nor the view
        """
        if symbol not in self._current:
            if symbol not in self.view.list_units():
                raise UnitNotRegistered(f"Unit {symbol} not registered")
            state = self.view.get_unit_state(symbol)
            self._original[symbol] = copy.deepcopy(state)
            self._current[symbol] = state
            self._order.append(symbol)
        return copy.deepcopy(self._current[symbol])

    def write(self, symbol: str, state: UnitState) -> None:
        if symbol not in self._current:
            raise LedgerError(f"Unit {symbol} must be read before it is written")
        self._current[symbol] = copy.deepcopy(state)

    def create(self, unit: Unit) -> None:
        """Stage a new unit; its state is readable and writable from now on."""
        if self.exists(unit.symbol):
            raise LedgerError(f"Unit {unit.symbol} already exists")
        self._created[unit.symbol] = unit
        self._current[unit.symbol] = unit.state
        self._order.append(unit.symbol)

    def state_changes(self) -> List[UnitStateChange]:
        changes = []
        for symbol in self._order:
            if symbol in self._created:
                continue
            if self._current[symbol] != self._original[symbol]:
                changes.append(UnitStateChange(
                    unit=symbol,
                    old_state=self._original[symbol],
                    new_state=self._current[symbol],
                ))
        return changes

    def units_to_create(self) -> Tuple[Unit, ...]:
        return tuple(
            replace(unit, _frozen_state=_freeze_state(self._current[symbol]))
            for symbol, unit in self._created.items()
        )

    def build(self, moves: List[Move], origin: TransactionOrigin) -> PendingTransaction:
        return build_transaction(
            self.view, moves, self.state_changes(), origin, self.units_to_create()
        )


# ============================================================================
# UNIT FACTORIES
# ============================================================================

def token(symbol: str, name: str, decimal_places: int = DEFAULT_TOKEN_DECIMALS) -> Unit:
    """
    Create a fungible token unit.

    Balances cannot go negative: a transfer from a wallet that does not hold
    enough of the token is rejected by the ledger.

    Args:
        symbol: Token symbol (e.g., "USDC", "WETH").
        name: Full name of the token.
        decimal_places: Token precision (default: 18).
    """
    return Unit(
        symbol=symbol,
        name=name,
        unit_type=UNIT_TYPE_TOKEN,
        decimal_places=decimal_places,
        min_balance=Decimal("0"),
    )
