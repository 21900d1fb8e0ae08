"""Business logic core for Trade Ledger.

This module holds the pieces every ledger component shares: the runtime
context wrapping configuration and the live workbook, the typed error
taxonomy, cached record lookups, validation helpers, and the ``ChangeSet``
machinery that turns record writes plus aggregate deltas into one atomic unit
handed to the Data Access Layer (DAL).

Ledger components never write aggregates directly. They describe the records
they create or remove and the signed deltas they apply to customer balances,
account balances, and stock quantities; :func:`commit_changes` resolves those
deltas against the current aggregates, enforces the non-negativity and
overdraft rules, and commits the whole unit or nothing.
"""

from __future__ import annotations

import uuid
from dataclasses import dataclass, field
from datetime import UTC, date, datetime
from decimal import ROUND_HALF_UP, Decimal, InvalidOperation
from pathlib import Path
from typing import Any, Callable, Dict, List, Optional, Sequence, Set, Tuple

from openpyxl.workbook import Workbook

from . import data_manager, log
from .constants import EXPECTED_SCHEMA_VERSION, SheetName


class BusinessRuleViolation(Exception):
    """Raised when a requested operation violates a domain constraint."""


class NotFoundError(BusinessRuleViolation):
    """Raised when a referenced customer, account, location, or record is unknown."""

    def __init__(self, kind: str, identifier: str) -> None:
        super().__init__(f"Unknown {kind}: {identifier}")
        self.kind = kind
        self.identifier = identifier


class InsufficientStockError(BusinessRuleViolation):
    """Raised when a movement would drive a location's quantity below zero."""

    def __init__(self, stock_id: str, location: str, available: int, requested: int) -> None:
        super().__init__(
            f"Insufficient stock at '{location}': available {available}, requested {requested}"
        )
        self.stock_id = stock_id
        self.location = location
        self.available = available
        self.requested = requested


class InsufficientFundsError(BusinessRuleViolation):
    """Raised when a debit would overdraw an account while overdrafts are disabled."""

    def __init__(self, account_id: str, name: str, available: Decimal, requested: Decimal) -> None:
        super().__init__(
            f"Insufficient funds in '{name}': available {available}, requested {requested}"
        )
        self.account_id = account_id
        self.name = name
        self.available = available
        self.requested = requested


class InvalidTransferError(BusinessRuleViolation):
    """Raised when a transfer names the same source and destination or a non-positive amount."""


class InvalidAmountError(BusinessRuleViolation, ValueError):
    """Raised when an amount or quantity is non-positive or not numeric."""


class ConsistencyViolationError(BusinessRuleViolation):
    """Raised when a record needed to reverse an event cannot be located."""


_ENTITY_LABELS: Dict[SheetName, str] = {
    SheetName.CUSTOMERS: "customer",
    SheetName.ACCOUNTS: "account",
    SheetName.STOCKS: "stock location",
    SheetName.PRODUCTS: "product",
    SheetName.TRANSACTIONS: "transaction",
    SheetName.ACCOUNT_TRANSACTIONS: "account transaction",
    SheetName.STOCK_EVENTS: "stock event",
    SheetName.PURCHASES: "purchase",
    SheetName.REMINDERS: "reminder",
    SheetName.NOTES: "note",
}


@dataclass(frozen=True)
class RuntimeContext:
    """Container for configuration and workbook references used by the ledgers."""

    settings: data_manager.ConfigSettings
    workbook: Workbook
    _cache: Dict[str, Dict[str, Any]] = field(default_factory=dict, repr=False, compare=False)


@dataclass
class ChangeSet:
    """Accumulate record writes and aggregate deltas for one atomic unit.

    ``deltas`` is keyed by ``(sheet, record key, field name)`` so that a
    reversal and a re-application touching the same aggregate collapse into a
    single net adjustment.
    """

    operations: List[data_manager.WriteOp] = field(default_factory=list)
    deltas: Dict[Tuple[SheetName, str, str], Any] = field(default_factory=dict)

    def create(self, kind: SheetName, record: Any) -> None:
        self.operations.append(data_manager.WriteOp.create(kind, record))

    def update(self, kind: SheetName, key: str, **field_values: Any) -> None:
        self.operations.append(data_manager.WriteOp.update(kind, key, field_values))

    def delete(self, kind: SheetName, key: str) -> None:
        self.operations.append(data_manager.WriteOp.delete(kind, key))

    def adjust(self, kind: SheetName, key: str, field_name: str, delta: Any) -> None:
        slot = (kind, key, field_name)
        self.deltas[slot] = self.deltas.get(slot, 0) + delta

    def pending(self, kind: SheetName, key: str, field_name: str) -> Any:
        return self.deltas.get((kind, key, field_name), 0)

    def touched_kinds(self) -> Set[SheetName]:
        kinds = {op.kind for op in self.operations}
        kinds.update(kind for kind, _, _ in self.deltas)
        return kinds


def _resolve_timestamp(candidate: Optional[datetime]) -> datetime:
    """Return ``candidate`` or the current UTC datetime."""

    return candidate if candidate is not None else datetime.now(UTC)


def resolve_date(candidate: Optional[date]) -> date:
    """Return ``candidate`` or today's date in UTC.

    Commands carry an optional business date; when the caller leaves it out
    the event is dated today so projections by date range stay meaningful.
    """

    return candidate if candidate is not None else _resolve_timestamp(None).date()


def generate_record_id(prefix: str, *, when: Optional[datetime] = None) -> str:
    """Generate a sortable record identifier.

    Args:
        prefix (str): Designator for the record kind, for example ``"T"`` for
            customer transactions or ``"E"`` for stock events.
        when (datetime | None): Timestamp used for the sortable part. Defaults
            to the current UTC time.

    Returns:
        str: Identifier formed as ``{prefix}{YYYYMMDDHHMMSSffffff}{XXXX}``.

    The random suffix keeps the two legs of a pair distinct even when they
    are generated within the same microsecond.
    """

    when = when or _resolve_timestamp(None)
    return f"{prefix}{when.strftime('%Y%m%d%H%M%S%f')}{uuid.uuid4().hex[:4].upper()}"


def to_decimal(value: Any) -> Decimal:
    """Parse ``value`` as a finite :class:`~decimal.Decimal` without rounding.

    Raises:
        InvalidAmountError: If ``value`` cannot be interpreted as a number.
    """

    if isinstance(value, bool):
        raise InvalidAmountError(f"Amount must be numeric: {value!r}")
    try:
        amount = value if isinstance(value, Decimal) else Decimal(str(value))
    except (InvalidOperation, ValueError) as exc:
        log.error("Monetary value is not numeric: %r", value)
        raise InvalidAmountError(f"Amount must be numeric: {value!r}") from exc
    if not amount.is_finite():
        raise InvalidAmountError(f"Amount must be finite: {value!r}")
    return amount


def to_money(value: Any) -> Decimal:
    """Normalise ``value`` into a two-place :class:`~decimal.Decimal`.

    Raises:
        InvalidAmountError: If ``value`` cannot be interpreted as a number.
    """

    return to_decimal(value).quantize(Decimal("0.01"), rounding=ROUND_HALF_UP)


def require_positive_money(amount: Any, *, label: str = "Amount") -> Decimal:
    """Validate that a monetary value is strictly positive and return it normalised.

    Raises:
        InvalidAmountError: If ``amount`` is not numeric or not greater than
            zero.
    """

    value = to_money(amount)
    if value <= Decimal("0"):
        log.error("%s validation failed: %s", label, amount)
        raise InvalidAmountError(f"{label} must be greater than zero")
    return value


def require_positive_quantity(quantity: Any) -> int:
    """Validate that a unit quantity is a strictly positive whole number.

    Raises:
        InvalidAmountError: If ``quantity`` is not an integer or is zero or
            negative.
    """

    if isinstance(quantity, bool) or not isinstance(quantity, int):
        log.error("Quantity is not a whole number: %r", quantity)
        raise InvalidAmountError(f"Quantity must be a whole number: {quantity!r}")
    if quantity <= 0:
        log.error("Quantity validation failed: %s", quantity)
        raise InvalidAmountError("Quantity must be greater than zero")
    return quantity


def _get_cache_bucket(context: RuntimeContext, name: str) -> Dict[str, Any]:
    """Return a mutable cache bucket dedicated to the supplied name."""

    bucket = context._cache.get(name)
    if bucket is None:
        log.debug("Initializing cache bucket '%s'", name)
        bucket = {}
        context._cache[name] = bucket
    return bucket


def _invalidate_cache(context: RuntimeContext, *names: str) -> None:
    """Evict one or more cache buckets after mutating workbook state."""

    if not names:
        return

    log.debug("Invalidating cache buckets: %s", ", ".join(names))

    for name in names:
        context._cache.pop(name, None)


def _ensure_records_cache(context: RuntimeContext, kind: SheetName) -> Dict[str, Any]:
    """Populate the cache bucket for ``kind`` on demand.

    Each bucket stores the full record list in sheet order under ``all`` and a
    primary key lookup under ``by_id``.
    """

    bucket = _get_cache_bucket(context, kind.value)
    if "all" not in bucket:
        key_field = data_manager.SHEET_SCHEMAS[kind].key_field
        records = list(data_manager.iter_records(context.workbook, kind))
        bucket["all"] = records
        bucket["by_id"] = {getattr(record, key_field): record for record in records}
        log.debug("Populated %s cache with %d entries", kind.value, len(records))
    return bucket


def list_records(context: RuntimeContext, kind: SheetName) -> List[Any]:
    """Return a shallow copy of every cached record of ``kind`` in sheet order."""

    return list(_ensure_records_cache(context, kind)["all"])


def get_record(context: RuntimeContext, kind: SheetName, key: str) -> Any:
    """Resolve one record of ``kind`` by primary key.

    Raises:
        NotFoundError: If the workbook holds no record with ``key``.
    """

    cache = _ensure_records_cache(context, kind)
    try:
        return cache["by_id"][key]
    except KeyError as exc:
        label = _ENTITY_LABELS[kind]
        log.warning("Lookup failed for %s '%s'", label, key)
        raise NotFoundError(label, key) from exc


def find_record(context: RuntimeContext, kind: SheetName, key: Optional[str]) -> Optional[Any]:
    """Return the record of ``kind`` with ``key`` or ``None`` when absent."""

    if key is None:
        return None
    return _ensure_records_cache(context, kind)["by_id"].get(key)


def get_customer(context: RuntimeContext, customer_id: str) -> data_manager.CustomerRow:
    """Return the customer or raise :class:`NotFoundError`."""
    return get_record(context, SheetName.CUSTOMERS, customer_id)


def get_account(context: RuntimeContext, account_id: str) -> data_manager.AccountRow:
    """Return the account or raise :class:`NotFoundError`."""
    return get_record(context, SheetName.ACCOUNTS, account_id)


def get_stock(context: RuntimeContext, stock_id: str) -> data_manager.StockRow:
    """Return the tracked stock location or raise :class:`NotFoundError`."""
    return get_record(context, SheetName.STOCKS, stock_id)


def get_product(context: RuntimeContext, product_id: str) -> data_manager.ProductRow:
    """Return the catalogue product or raise :class:`NotFoundError`."""
    return get_record(context, SheetName.PRODUCTS, product_id)


def require_product(context: RuntimeContext, product_id: Optional[str]) -> None:
    """Validate an optional product reference against the catalogue."""

    if product_id is not None:
        get_product(context, product_id)


def find_stock_by_location(context: RuntimeContext, location: str) -> Optional[data_manager.StockRow]:
    """Return the tracked stock row named ``location`` or ``None``."""

    for stock in list_records(context, SheetName.STOCKS):
        if stock.location == location:
            return stock
    return None


def is_direct_location(context: RuntimeContext, location: Optional[str]) -> bool:
    """Tell whether ``location`` bypasses stock tracking entirely."""

    if location is None or not location.strip():
        return True
    return location.strip() in context.settings.direct_locations


def resolve_stock_location(context: RuntimeContext, location: Optional[str]) -> Optional[data_manager.StockRow]:
    """Map a sale location onto a tracked stock row.

    Args:
        context (RuntimeContext): Runtime context providing workbook access.
        location (str | None): Stock identifier, stock location name, or one
            of the configured direct pseudo-locations.

    Returns:
        StockRow | None: The tracked location, or ``None`` when the location
            is blank or a direct pseudo-location.

    Raises:
        NotFoundError: If ``location`` is neither tracked nor direct.
    """

    if is_direct_location(context, location):
        return None
    candidate = (location or "").strip()
    stock = find_record(context, SheetName.STOCKS, candidate)
    if stock is None:
        stock = find_stock_by_location(context, candidate)
    if stock is None:
        log.warning("Location '%s' is neither tracked nor direct", candidate)
        raise NotFoundError("stock location", candidate)
    return stock


def read_aggregate(context: RuntimeContext, kind: SheetName, key: str) -> Any:
    """Read a Customer, Account, or Stock row straight from the workbook.

    Raises:
        NotFoundError: If the aggregate row does not exist.
    """

    try:
        return data_manager.read_aggregate(context.workbook, kind, key)
    except KeyError as exc:
        label = _ENTITY_LABELS[kind]
        log.warning("Aggregate lookup failed for %s '%s'", label, key)
        raise NotFoundError(label, key) from exc


def projected_value(context: RuntimeContext, changes: ChangeSet, kind: SheetName, key: str, field_name: str) -> Any:
    """Return an aggregate field as it would read once ``changes`` commit."""

    current = getattr(read_aggregate(context, kind, key), field_name)
    return current + changes.pending(kind, key, field_name)


def _check_aggregate(context: RuntimeContext, kind: SheetName, row: Any, field_name: str, new_value: Any, delta: Any) -> None:
    if kind is SheetName.STOCKS and field_name == "quantity" and new_value < 0:
        log.warning(
            "Rejected movement at '%s': quantity %s would become %s",
            row.location,
            row.quantity,
            new_value,
        )
        raise InsufficientStockError(row.stock_id, row.location, row.quantity, -delta)
    if (
        kind is SheetName.ACCOUNTS
        and field_name == "balance"
        and delta < 0
        and new_value < 0
        and not context.settings.allow_overdraft
    ):
        log.warning(
            "Rejected debit on '%s': balance %s would become %s",
            row.name,
            row.balance,
            new_value,
        )
        raise InsufficientFundsError(row.account_id, row.name, row.balance, -delta)


def commit_changes(
    context: RuntimeContext,
    changes: ChangeSet,
    *,
    writer: Callable[[Workbook, Sequence[data_manager.WriteOp]], None] = data_manager.commit_unit,
) -> None:
    """Resolve aggregate deltas and commit ``changes`` as one atomic unit.

    Each non-zero delta is applied to the aggregate's current value read from
    the workbook. Stock quantities may never go below zero, and account
    balances may not go below zero when overdrafts are disabled. Validation
    happens before any write, so a rejected change leaves every aggregate
    untouched.

    Args:
        context (RuntimeContext): Runtime context providing workbook access.
        changes (ChangeSet): Record writes and deltas to commit.
        writer (Callable): DAL entry point receiving the final operation list.
            Defaults to :func:`data_manager.commit_unit`; compound commands
            pass the matching ``record_*`` unit so its shape is checked.

    Raises:
        NotFoundError: If a delta targets a missing aggregate.
        InsufficientStockError: If a stock quantity would become negative.
        InsufficientFundsError: If a debit would overdraw an account while
            overdrafts are disabled.
    """

    aggregate_ops: List[data_manager.WriteOp] = []
    for (kind, key, field_name), delta in changes.deltas.items():
        if delta == 0:
            continue
        row = read_aggregate(context, kind, key)
        new_value = getattr(row, field_name) + delta
        _check_aggregate(context, kind, row, field_name, new_value, delta)
        aggregate_ops.append(data_manager.WriteOp.update(kind, key, {field_name: new_value}))

    try:
        writer(context.workbook, [*changes.operations, *aggregate_ops])
    finally:
        _invalidate_cache(context, *(kind.value for kind in changes.touched_kinds()))


def load_runtime_context(config_path: Optional[Path] = None) -> RuntimeContext:
    """Load configuration settings and a live workbook for the ledgers.

    Args:
        config_path (Path | None): Optional override path for the configuration
            file. When omitted the data layer performs its upward search from
            the current working directory.

    Returns:
        RuntimeContext: Fully populated context ready for ledger commands.

    Raises:
        FileNotFoundError: If the configuration file or workbook cannot be
            located.
        KeyError: When mandatory configuration options are missing.
    """
    located_config = data_manager.find_config_file(config_path)
    resolved_config = Path(located_config).expanduser().resolve()
    parser = data_manager.read_config(resolved_config)
    settings = data_manager.parse_settings(parser, base_path=resolved_config.parent)
    workbook = data_manager.open_workbook(settings.data_file)
    log.info("Loaded runtime context for workbook '%s'", settings.data_file)
    return RuntimeContext(settings=settings, workbook=workbook)


def ensure_schema_version(context: RuntimeContext) -> None:
    """Validate workbook compatibility before mutating state.

    Raises:
        RuntimeError: If the schema version declared in the configuration does
            not match ``EXPECTED_SCHEMA_VERSION``.
    """
    if context.settings.schema_version != EXPECTED_SCHEMA_VERSION:
        log.error(
            "Workbook schema mismatch: expected %s, found %s",
            EXPECTED_SCHEMA_VERSION,
            context.settings.schema_version,
        )
        raise RuntimeError(
            "Workbook schema mismatch: expected %s, found %s"
            % (EXPECTED_SCHEMA_VERSION, context.settings.schema_version)
        )

    log.debug("Schema version '%s' validated", context.settings.schema_version)


def persist_context(context: RuntimeContext) -> None:
    """Persist any in-memory workbook changes to the configured data file."""
    data_manager.save_workbook(
        context.workbook,
        destination=context.settings.data_file,
    )
    log.info("Persisted workbook '%s'", context.settings.data_file)


def refresh_context(context: RuntimeContext) -> RuntimeContext:
    """Reload the workbook to discard unsaved modifications.

    Returns:
        RuntimeContext: Fresh context with a newly opened workbook and an
            empty cache.

    Raises:
        FileNotFoundError: If the backing workbook cannot be reloaded.
    """
    workbook = data_manager.refresh_workbook(context.settings.data_file)
    log.info("Reloaded workbook '%s'", context.settings.data_file)
    return RuntimeContext(settings=context.settings, workbook=workbook)


def add_product(context: RuntimeContext, *, product_id: str, name: str, category: Optional[str] = None) -> data_manager.ProductRow:
    """Register a product or supplier brand in the catalogue.

    Raises:
        BusinessRuleViolation: If ``product_id`` is blank or already used.
    """
    product_id = product_id.strip()
    if not product_id or not name.strip():
        raise BusinessRuleViolation("Product id and name are required")
    if find_record(context, SheetName.PRODUCTS, product_id) is not None:
        log.warning("Duplicate product id '%s'", product_id)
        raise BusinessRuleViolation(f"Product '{product_id}' already exists")

    product = data_manager.ProductRow(product_id=product_id, name=name.strip(), category=category)
    changes = ChangeSet()
    changes.create(SheetName.PRODUCTS, product)
    commit_changes(context, changes)
    log.info("Registered product '%s' (%s)", product_id, product.name)
    return product


def list_products(context: RuntimeContext) -> List[data_manager.ProductRow]:
    """Return the product catalogue in sheet order."""
    return list_records(context, SheetName.PRODUCTS)


# Sheets whose rows may point at a catalogue entry, with the referencing fields.
_PRODUCT_REFERENCES: Tuple[Tuple[SheetName, Tuple[str, ...]], ...] = (
    (SheetName.STOCKS, ("product_id",)),
    (SheetName.TRANSACTIONS, ("product_id",)),
    (SheetName.STOCK_EVENTS, ("product_id",)),
    (SheetName.PURCHASES, ("product_id", "supplier_id")),
)


def delete_product(context: RuntimeContext, product_id: str) -> None:
    """Remove a product or supplier brand from the catalogue.

    Args:
        context (RuntimeContext): Runtime context providing workbook access.
        product_id (str): Catalogue identifier to remove.

    Raises:
        NotFoundError: If the product is unknown.
        BusinessRuleViolation: If a stock location, sale, stock event, or
            purchase still references the product.
    """
    get_product(context, product_id)
    for kind, field_names in _PRODUCT_REFERENCES:
        for record in list_records(context, kind):
            if any(getattr(record, name) == product_id for name in field_names):
                log.warning("Product '%s' still referenced from %s", product_id, kind.value)
                raise BusinessRuleViolation(
                    f"Product '{product_id}' is still referenced by {kind.value} records"
                )

    changes = ChangeSet()
    changes.delete(SheetName.PRODUCTS, product_id)
    commit_changes(context, changes)
    log.info("Deleted product '%s'", product_id)
