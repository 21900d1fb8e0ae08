"""Supplier purchases.

Monetary purchases are history records: they carry the supplier, the product,
and ``total = quantity * unit_price`` for cost reporting. Receiving the goods
into a location is a separate stock load, and paying the supplier is a
separate account entry, so recording a purchase never moves an aggregate.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import date
from decimal import Decimal
from typing import Optional

from . import data_manager, log
from .constants import PurchaseOrigin, SheetName
from .core_logic import (
    ChangeSet,
    RuntimeContext,
    commit_changes,
    generate_record_id,
    get_account,
    require_positive_money,
    require_positive_quantity,
    require_product,
    resolve_date,
    to_money,
)


@dataclass(frozen=True)
class PurchaseCommand:
    """User intent for recording goods bought from a supplier."""

    product_id: str
    quantity: int
    unit_price: Decimal
    supplier_id: Optional[str] = None
    unit: Optional[str] = None
    original_price: Optional[Decimal] = None
    category: Optional[str] = None
    account_id: Optional[str] = None
    date: Optional[date] = None
    notes: Optional[str] = None


def plan_purchase(
    context: RuntimeContext,
    changes: ChangeSet,
    command: PurchaseCommand,
    *,
    purchase_id: str,
) -> data_manager.PurchaseRow:
    """Validate ``command`` and contribute the purchase row to ``changes``.

    Raises:
        NotFoundError: If the product, supplier, or account is unknown.
        InvalidAmountError: If quantity or unit price is not positive.
    """

    quantity = require_positive_quantity(command.quantity)
    unit_price = require_positive_money(command.unit_price, label="Unit price")
    require_product(context, command.product_id)
    require_product(context, command.supplier_id)
    if command.account_id is not None:
        get_account(context, command.account_id)

    purchase = data_manager.PurchaseRow(
        purchase_id=purchase_id,
        supplier_id=command.supplier_id,
        product_id=command.product_id,
        quantity=quantity,
        unit=command.unit or context.settings.default_unit,
        unit_price=unit_price,
        original_price=to_money(command.original_price) if command.original_price is not None else None,
        total=to_money(unit_price * quantity),
        category=command.category,
        account_id=command.account_id,
        origin=PurchaseOrigin.PURCHASE.value,
        linked_record_id=None,
        date_iso=resolve_date(command.date).isoformat(),
        notes=command.notes,
    )
    changes.create(SheetName.PURCHASES, purchase)
    return purchase


def record_purchase(context: RuntimeContext, command: PurchaseCommand) -> data_manager.PurchaseRow:
    """Record a monetary purchase.

    Returns:
        PurchaseRow: The persisted purchase with its computed total.
    """

    changes = ChangeSet()
    purchase = plan_purchase(context, changes, command, purchase_id=generate_record_id("P"))
    commit_changes(context, changes)
    log.info(
        "Recorded purchase '%s' of %d units of '%s' totalling %s",
        purchase.purchase_id,
        purchase.quantity,
        purchase.product_id,
        purchase.total,
    )
    return purchase
