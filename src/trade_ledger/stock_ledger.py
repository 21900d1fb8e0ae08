"""Stock ledger: per-location quantities and the movements that change them.

Every movement is recorded as a :class:`~trade_ledger.data_manager.StockEventRow`
carrying a signed ``quantity_change``. Loads, dumps, and the incoming leg of a
transfer are positive; the outgoing leg of a transfer and sale deductions are
negative. Summing the changes recorded for a location therefore always yields
``quantity - initial_quantity``, and the undo delta of any event is simply its
negated change.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import date
from decimal import Decimal
from typing import List, Optional, Tuple

from . import data_manager, log
from .constants import (
    DEFAULT_STOCK_THRESHOLD,
    PurchaseOrigin,
    SheetName,
    StockEventType,
    StockStatus,
)
from .core_logic import (
    BusinessRuleViolation,
    ChangeSet,
    InvalidAmountError,
    InvalidTransferError,
    RuntimeContext,
    commit_changes,
    find_record,
    find_stock_by_location,
    generate_record_id,
    get_stock,
    list_records,
    read_aggregate,
    require_positive_quantity,
    require_product,
    resolve_date,
)


@dataclass(frozen=True)
class LoadStockCommand:
    """User intent for receiving goods into a tracked location."""

    stock_id: str
    quantity: int
    product_id: Optional[str] = None
    sub_category: Optional[str] = None
    date: Optional[date] = None
    notes: Optional[str] = None


@dataclass(frozen=True)
class TransferStockCommand:
    """User intent for moving units between two tracked locations."""

    from_stock_id: str
    to_stock_id: str
    quantity: int
    date: Optional[date] = None
    notes: Optional[str] = None


@dataclass(frozen=True)
class DumpStockCommand:
    """User intent for dumping supplier goods into a tracked location.

    ``stock_id`` names the destination. ``source_location`` is a free-text
    label for where the goods came from; it is never decremented.
    """

    stock_id: str
    quantity: int
    product_id: Optional[str] = None
    sub_category: Optional[str] = None
    source_location: Optional[str] = None
    date: Optional[date] = None
    notes: Optional[str] = None


def stock_status(stock: data_manager.StockRow) -> StockStatus:
    """Derive the status of a location from its quantity and threshold."""

    return StockStatus.LOW if stock.quantity < stock.threshold else StockStatus.NORMAL


def add_stock_location(
    context: RuntimeContext,
    *,
    location: str,
    quantity: int = 0,
    threshold: int = DEFAULT_STOCK_THRESHOLD,
    product_id: Optional[str] = None,
    stock_id: Optional[str] = None,
) -> data_manager.StockRow:
    """Register a tracked stock location.

    The starting quantity is stored as ``initial_quantity`` so later events
    can be reconciled against it.

    Raises:
        BusinessRuleViolation: If the location name or id is already in use.
        InvalidAmountError: If ``quantity`` or ``threshold`` is negative.
        NotFoundError: If ``product_id`` is not in the catalogue.
    """

    location = location.strip()
    if not location:
        raise BusinessRuleViolation("Location name is required")
    if location in context.settings.direct_locations:
        log.warning("Refused to track direct location '%s'", location)
        raise BusinessRuleViolation(f"'{location}' is a direct location and cannot hold stock")
    if find_stock_by_location(context, location) is not None:
        log.warning("Duplicate stock location '%s'", location)
        raise BusinessRuleViolation(f"Stock location '{location}' already exists")
    for value, label in ((quantity, "Quantity"), (threshold, "Threshold")):
        if isinstance(value, bool) or not isinstance(value, int) or value < 0:
            raise InvalidAmountError(f"{label} must be a non-negative whole number")
    require_product(context, product_id)

    stock_id = stock_id or generate_record_id("S")
    if find_record(context, SheetName.STOCKS, stock_id) is not None:
        raise BusinessRuleViolation(f"Stock id '{stock_id}' already exists")

    stock = data_manager.StockRow(
        stock_id=stock_id,
        location=location,
        quantity=quantity,
        threshold=threshold,
        initial_quantity=quantity,
        product_id=product_id,
    )
    changes = ChangeSet()
    changes.create(SheetName.STOCKS, stock)
    commit_changes(context, changes)
    log.info("Registered stock location '%s' with %d units", location, quantity)
    return stock


def set_threshold(context: RuntimeContext, stock_id: str, threshold: int) -> data_manager.StockRow:
    """Change the low-stock threshold of a location."""

    get_stock(context, stock_id)
    if isinstance(threshold, bool) or not isinstance(threshold, int) or threshold < 0:
        raise InvalidAmountError("Threshold must be a non-negative whole number")
    changes = ChangeSet()
    changes.update(SheetName.STOCKS, stock_id, threshold=threshold)
    commit_changes(context, changes)
    log.info("Threshold for stock '%s' set to %d", stock_id, threshold)
    return read_aggregate(context, SheetName.STOCKS, stock_id)


def has_history(context: RuntimeContext, stock_id: str) -> bool:
    """Tell whether any event or sale still references ``stock_id``."""

    if any(event.stock_id == stock_id for event in list_records(context, SheetName.STOCK_EVENTS)):
        return True
    return any(row.stock_id == stock_id for row in list_records(context, SheetName.TRANSACTIONS))


def remove_stock_location(context: RuntimeContext, stock_id: str) -> None:
    """Delete a location that has never been used.

    Raises:
        NotFoundError: If ``stock_id`` is unknown.
        BusinessRuleViolation: If events or sales still reference it.
    """

    stock = get_stock(context, stock_id)
    if has_history(context, stock_id):
        log.warning("Refused to remove stock '%s': history exists", stock.location)
        raise BusinessRuleViolation(
            f"Stock location '{stock.location}' has recorded history and cannot be removed"
        )
    changes = ChangeSet()
    changes.delete(SheetName.STOCKS, stock_id)
    commit_changes(context, changes)
    log.info("Removed stock location '%s'", stock.location)


def stock_history(context: RuntimeContext, stock_id: str) -> List[data_manager.StockEventRow]:
    """Return every event recorded against ``stock_id`` ordered by date."""

    get_stock(context, stock_id)
    events = [event for event in list_records(context, SheetName.STOCK_EVENTS) if event.stock_id == stock_id]
    return sorted(events, key=lambda event: (event.date_iso, event.event_id))


def reverse_event(changes: ChangeSet, event: data_manager.StockEventRow) -> None:
    """Queue the undo delta of ``event`` on its location."""

    changes.adjust(SheetName.STOCKS, event.stock_id, "quantity", -event.quantity_change)


def plan_load(
    context: RuntimeContext,
    changes: ChangeSet,
    command: LoadStockCommand,
    *,
    event_id: str,
) -> data_manager.StockEventRow:
    """Contribute a load event and its quantity increase to ``changes``."""

    quantity = require_positive_quantity(command.quantity)
    stock = get_stock(context, command.stock_id)
    require_product(context, command.product_id)
    event = data_manager.StockEventRow(
        event_id=event_id,
        stock_id=stock.stock_id,
        event_type=StockEventType.LOAD.value,
        quantity_change=quantity,
        from_location=None,
        to_location=stock.location,
        product_id=command.product_id or stock.product_id,
        sub_category=command.sub_category,
        linked_event_id=None,
        linked_transaction_id=None,
        purchase_id=None,
        date_iso=resolve_date(command.date).isoformat(),
        notes=command.notes,
    )
    changes.create(SheetName.STOCK_EVENTS, event)
    changes.adjust(SheetName.STOCKS, stock.stock_id, "quantity", quantity)
    return event


def load(context: RuntimeContext, command: LoadStockCommand) -> data_manager.StockEventRow:
    """Receive ``command.quantity`` units into a tracked location.

    Returns:
        StockEventRow: The recorded load event.

    Raises:
        NotFoundError: If the location or product is unknown.
        InvalidAmountError: If the quantity is not a positive whole number.
    """

    changes = ChangeSet()
    event = plan_load(context, changes, command, event_id=generate_record_id("E"))
    commit_changes(context, changes)
    log.info("Loaded %d units into '%s'", event.quantity_change, event.to_location)
    return event


def plan_transfer(
    context: RuntimeContext,
    changes: ChangeSet,
    command: TransferStockCommand,
    *,
    out_event_id: str,
    in_event_id: str,
) -> Tuple[data_manager.StockEventRow, data_manager.StockEventRow]:
    """Contribute both legs of a stock transfer to ``changes``.

    Raises:
        InvalidTransferError: If source and destination match or the quantity
            is not a positive whole number.
        NotFoundError: If either location is unknown.
    """

    if command.from_stock_id == command.to_stock_id:
        log.warning("Rejected stock transfer within '%s'", command.from_stock_id)
        raise InvalidTransferError("Source and destination locations must differ")
    try:
        quantity = require_positive_quantity(command.quantity)
    except InvalidAmountError as exc:
        raise InvalidTransferError(str(exc)) from exc
    source = get_stock(context, command.from_stock_id)
    destination = get_stock(context, command.to_stock_id)

    date_iso = resolve_date(command.date).isoformat()
    outgoing = data_manager.StockEventRow(
        event_id=out_event_id,
        stock_id=source.stock_id,
        event_type=StockEventType.TRANSFER.value,
        quantity_change=-quantity,
        from_location=source.location,
        to_location=destination.location,
        product_id=source.product_id,
        sub_category=None,
        linked_event_id=in_event_id,
        linked_transaction_id=None,
        purchase_id=None,
        date_iso=date_iso,
        notes=command.notes,
    )
    incoming = data_manager.StockEventRow(
        event_id=in_event_id,
        stock_id=destination.stock_id,
        event_type=StockEventType.TRANSFER.value,
        quantity_change=quantity,
        from_location=source.location,
        to_location=destination.location,
        product_id=source.product_id,
        sub_category=None,
        linked_event_id=out_event_id,
        linked_transaction_id=None,
        purchase_id=None,
        date_iso=date_iso,
        notes=command.notes,
    )
    changes.create(SheetName.STOCK_EVENTS, outgoing)
    changes.create(SheetName.STOCK_EVENTS, incoming)
    changes.adjust(SheetName.STOCKS, source.stock_id, "quantity", -quantity)
    changes.adjust(SheetName.STOCKS, destination.stock_id, "quantity", quantity)
    return outgoing, incoming


def transfer(
    context: RuntimeContext, command: TransferStockCommand
) -> Tuple[data_manager.StockEventRow, data_manager.StockEventRow]:
    """Move units between two tracked locations as one atomic unit.

    Returns:
        tuple[StockEventRow, StockEventRow]: The outgoing and incoming legs.

    Raises:
        InvalidTransferError: If source and destination match or the quantity
            is not positive.
        NotFoundError: If either location is unknown.
        InsufficientStockError: If the source holds fewer units than
            requested. Neither location changes.
    """

    changes = ChangeSet()
    legs = plan_transfer(
        context,
        changes,
        command,
        out_event_id=generate_record_id("E"),
        in_event_id=generate_record_id("E"),
    )
    commit_changes(context, changes, writer=data_manager.record_stock_transfer_pair)
    log.info(
        "Transferred %d units from '%s' to '%s'",
        legs[1].quantity_change,
        legs[0].from_location,
        legs[0].to_location,
    )
    return legs


def plan_dump(
    context: RuntimeContext,
    changes: ChangeSet,
    command: DumpStockCommand,
    *,
    event_id: str,
    purchase_id: str,
) -> Tuple[data_manager.StockEventRow, data_manager.PurchaseRow]:
    """Contribute a dump event and its zero-cost purchase card to ``changes``."""

    quantity = require_positive_quantity(command.quantity)
    destination = get_stock(context, command.stock_id)
    require_product(context, command.product_id)
    product_id = command.product_id or destination.product_id
    date_iso = resolve_date(command.date).isoformat()

    event = data_manager.StockEventRow(
        event_id=event_id,
        stock_id=destination.stock_id,
        event_type=StockEventType.DUMP.value,
        quantity_change=quantity,
        from_location=command.source_location,
        to_location=destination.location,
        product_id=product_id,
        sub_category=command.sub_category,
        linked_event_id=None,
        linked_transaction_id=None,
        purchase_id=purchase_id,
        date_iso=date_iso,
        notes=command.notes,
    )
    purchase = data_manager.PurchaseRow(
        purchase_id=purchase_id,
        supplier_id=product_id,
        product_id=product_id,
        quantity=quantity,
        unit=context.settings.default_unit,
        unit_price=Decimal("0.00"),
        original_price=None,
        total=Decimal("0.00"),
        category=command.sub_category,
        account_id=None,
        origin=PurchaseOrigin.DUMP.value,
        linked_record_id=event_id,
        date_iso=date_iso,
        notes=command.notes,
    )
    changes.create(SheetName.STOCK_EVENTS, event)
    changes.create(SheetName.PURCHASES, purchase)
    changes.adjust(SheetName.STOCKS, destination.stock_id, "quantity", quantity)
    return event, purchase


def dump(
    context: RuntimeContext, command: DumpStockCommand
) -> Tuple[data_manager.StockEventRow, data_manager.PurchaseRow]:
    """Dump supplier goods into a tracked location.

    Only the destination is incremented. A zero-cost purchase card flagged as
    a dump is written alongside the event so the delivery shows up in
    purchase history without affecting cost totals.

    Returns:
        tuple[StockEventRow, PurchaseRow]: The dump event and its card.

    Raises:
        NotFoundError: If the destination or product is unknown.
        InvalidAmountError: If the quantity is not a positive whole number.
    """

    changes = ChangeSet()
    result = plan_dump(
        context,
        changes,
        command,
        event_id=generate_record_id("E"),
        purchase_id=generate_record_id("P"),
    )
    commit_changes(context, changes)
    log.info("Dumped %d units into '%s'", result[0].quantity_change, result[0].to_location)
    return result


def deduct_for_sale(
    context: RuntimeContext,
    changes: ChangeSet,
    stock_id: str,
    quantity: int,
    *,
    event_id: str,
    transaction_id: str,
    product_id: Optional[str] = None,
    sub_category: Optional[str] = None,
    date_iso: str,
) -> data_manager.StockEventRow:
    """Contribute a sale deduction linked to ``transaction_id`` to ``changes``.

    The quantity check happens when the enclosing unit commits, so a sale
    that would drive the location negative is rejected as a whole.
    """

    quantity = require_positive_quantity(quantity)
    stock = get_stock(context, stock_id)
    event = data_manager.StockEventRow(
        event_id=event_id,
        stock_id=stock.stock_id,
        event_type=StockEventType.SALE_DEDUCTION.value,
        quantity_change=-quantity,
        from_location=stock.location,
        to_location=None,
        product_id=product_id or stock.product_id,
        sub_category=sub_category,
        linked_event_id=None,
        linked_transaction_id=transaction_id,
        purchase_id=None,
        date_iso=date_iso,
        notes=None,
    )
    changes.create(SheetName.STOCK_EVENTS, event)
    changes.adjust(SheetName.STOCKS, stock.stock_id, "quantity", -quantity)
    return event


def restore_for_sale(context: RuntimeContext, changes: ChangeSet, stock_id: str, quantity: int) -> bool:
    """Queue the return of ``quantity`` units to ``stock_id`` if it is still tracked.

    Returns:
        bool: ``False`` when the location no longer exists and nothing was
            queued.
    """

    if find_record(context, SheetName.STOCKS, stock_id) is None:
        log.info("Stock '%s' no longer tracked; skipping restore of %d units", stock_id, quantity)
        return False
    changes.adjust(SheetName.STOCKS, stock_id, "quantity", quantity)
    return True


def list_stocks(context: RuntimeContext) -> List[data_manager.StockRow]:
    """Return every tracked location.

    Args:
        context (RuntimeContext): Runtime context providing workbook access.

    Returns:
        List[StockRow]: Locations in sheet order; use :func:`stock_status`
            for the derived low/normal flag.
    """

    return list_records(context, SheetName.STOCKS)


def low_stock(context: RuntimeContext) -> List[data_manager.StockRow]:
    """Return the locations currently below their threshold."""

    return [stock for stock in list_stocks(context) if stock_status(stock) is StockStatus.LOW]
