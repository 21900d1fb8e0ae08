"""Customer ledger: credit sales, payments, and discounts.

A customer's balance is positive while the customer owes the business.
Transactions store a signed amount (sales positive, payments and discounts
negative) so the balance always equals the opening balance plus the sum of
the customer's rows.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import date
from decimal import Decimal
from typing import List, Optional

from . import account_ledger, data_manager, log, stock_ledger
from .constants import DISCOUNT_CAP_RATIO, PurchaseOrigin, SheetName, TransactionType
from .core_logic import (
    BusinessRuleViolation,
    ChangeSet,
    InvalidAmountError,
    RuntimeContext,
    commit_changes,
    find_record,
    generate_record_id,
    get_customer,
    get_record,
    list_records,
    projected_value,
    read_aggregate,
    require_positive_money,
    require_positive_quantity,
    require_product,
    resolve_date,
    resolve_stock_location,
    to_decimal,
    to_money,
)


DEFAULT_DISCOUNT_CATEGORY = "General"


@dataclass(frozen=True)
class SaleCommand:
    """User intent for selling goods to a customer on credit.

    ``location`` accepts a stock id, a tracked location name, a direct
    pseudo-location, or ``None`` for a direct sale.
    """

    customer_id: str
    quantity: int
    unit_price: Decimal
    location: Optional[str] = None
    product_id: Optional[str] = None
    sub_category: Optional[str] = None
    unit: Optional[str] = None
    date: Optional[date] = None
    notes: Optional[str] = None


@dataclass(frozen=True)
class PaymentCommand:
    """User intent for recording money received from a customer."""

    customer_id: str
    amount: Decimal
    account_id: str
    date: Optional[date] = None
    notes: Optional[str] = None


@dataclass(frozen=True)
class DiscountCommand:
    """User intent for forgiving part of a customer's balance.

    Exactly one of ``amount`` or ``percent`` must be given.
    """

    customer_id: str
    amount: Optional[Decimal] = None
    percent: Optional[Decimal] = None
    category: Optional[str] = None
    date: Optional[date] = None
    notes: Optional[str] = None


def add_customer(
    context: RuntimeContext,
    *,
    name: str,
    phone: Optional[str] = None,
    category: Optional[str] = None,
    opening_balance: Decimal = Decimal("0.00"),
    customer_id: Optional[str] = None,
    when: Optional[date] = None,
) -> data_manager.CustomerRow:
    """Register a customer with an optional opening balance.

    Raises:
        BusinessRuleViolation: If the name is blank or the id is already used.
    """

    name = name.strip()
    if not name:
        raise BusinessRuleViolation("Customer name is required")
    opening = to_money(opening_balance)
    customer_id = customer_id or generate_record_id("C")
    if find_record(context, SheetName.CUSTOMERS, customer_id) is not None:
        log.warning("Duplicate customer id '%s'", customer_id)
        raise BusinessRuleViolation(f"Customer id '{customer_id}' already exists")

    customer = data_manager.CustomerRow(
        customer_id=customer_id,
        name=name,
        phone=phone,
        category=category,
        opening_balance=opening,
        balance=opening,
        created_date=resolve_date(when).isoformat(),
    )
    changes = ChangeSet()
    changes.create(SheetName.CUSTOMERS, customer)
    commit_changes(context, changes)
    log.info("Registered customer '%s' with opening balance %s", name, opening)
    return customer


def update_customer_details(
    context: RuntimeContext,
    customer_id: str,
    *,
    name: Optional[str] = None,
    phone: Optional[str] = None,
    category: Optional[str] = None,
) -> data_manager.CustomerRow:
    """Edit contact details. Balances are never touched here."""

    get_customer(context, customer_id)
    field_values = {}
    if name is not None:
        if not name.strip():
            raise BusinessRuleViolation("Customer name is required")
        field_values["name"] = name.strip()
    if phone is not None:
        field_values["phone"] = phone
    if category is not None:
        field_values["category"] = category
    if field_values:
        changes = ChangeSet()
        changes.update(SheetName.CUSTOMERS, customer_id, **field_values)
        commit_changes(context, changes)
        log.info("Updated details of customer '%s': %s", customer_id, ", ".join(field_values))
    return read_aggregate(context, SheetName.CUSTOMERS, customer_id)


def list_customers(context: RuntimeContext) -> List[data_manager.CustomerRow]:
    """Return every registered customer in sheet order."""

    return list_records(context, SheetName.CUSTOMERS)


def customer_balance(context: RuntimeContext, customer_id: str) -> Decimal:
    """Read the stored balance of a customer.

    Raises:
        NotFoundError: If the customer is unknown.
    """

    return read_aggregate(context, SheetName.CUSTOMERS, customer_id).balance


def plan_sale(
    context: RuntimeContext,
    changes: ChangeSet,
    command: SaleCommand,
    *,
    transaction_id: str,
) -> data_manager.TransactionRow:
    """Contribute a sale and its stock or purchase-card side effect to ``changes``.

    Raises:
        NotFoundError: If the customer, product, or location is unknown.
        InvalidAmountError: If quantity or unit price is not positive.
    """

    quantity = require_positive_quantity(command.quantity)
    unit_price = require_positive_money(command.unit_price, label="Unit price")
    customer = get_customer(context, command.customer_id)
    require_product(context, command.product_id)
    stock = resolve_stock_location(context, command.location)
    amount = to_money(unit_price * quantity)
    date_iso = resolve_date(command.date).isoformat()
    unit = command.unit or context.settings.default_unit

    purchase_id = None
    if stock is not None:
        stock_ledger.deduct_for_sale(
            context,
            changes,
            stock.stock_id,
            quantity,
            event_id=generate_record_id("E"),
            transaction_id=transaction_id,
            product_id=command.product_id,
            sub_category=command.sub_category,
            date_iso=date_iso,
        )
    elif command.product_id is not None:
        purchase_id = generate_record_id("P")
        changes.create(
            SheetName.PURCHASES,
            data_manager.PurchaseRow(
                purchase_id=purchase_id,
                supplier_id=command.product_id,
                product_id=command.product_id,
                quantity=quantity,
                unit=unit,
                unit_price=Decimal("0.00"),
                original_price=unit_price,
                total=Decimal("0.00"),
                category=command.sub_category,
                account_id=None,
                origin=PurchaseOrigin.DIRECT_SALE.value,
                linked_record_id=transaction_id,
                date_iso=date_iso,
                notes=f"Direct sale to {customer.name}",
            ),
        )

    transaction = data_manager.TransactionRow(
        transaction_id=transaction_id,
        customer_id=customer.customer_id,
        transaction_type=TransactionType.SALE.value,
        amount=amount,
        date_iso=date_iso,
        quantity=quantity,
        unit=unit,
        unit_price=unit_price,
        location=command.location,
        stock_id=stock.stock_id if stock is not None else None,
        product_id=command.product_id,
        sub_category=command.sub_category,
        account_id=None,
        discount_category=None,
        purchase_id=purchase_id,
        notes=command.notes,
    )
    changes.create(SheetName.TRANSACTIONS, transaction)
    changes.adjust(SheetName.CUSTOMERS, customer.customer_id, "balance", amount)
    return transaction


def apply_sale(context: RuntimeContext, command: SaleCommand) -> data_manager.TransactionRow:
    """Record a credit sale.

    The customer balance grows by ``quantity * unit_price``. A sale against a
    tracked location deducts the units there; a direct sale that names a
    product leaves a zero-cost purchase card instead.

    Returns:
        TransactionRow: The persisted sale.

    Raises:
        NotFoundError: If the customer, product, or location is unknown.
        InvalidAmountError: If quantity or unit price is not positive.
        InsufficientStockError: If the location holds fewer units than sold.
    """

    changes = ChangeSet()
    transaction = plan_sale(context, changes, command, transaction_id=generate_record_id("T"))
    commit_changes(context, changes, writer=data_manager.record_sale_with_side_effects)
    log.info(
        "Recorded sale '%s' of %d units for customer '%s' totalling %s",
        transaction.transaction_id,
        transaction.quantity,
        transaction.customer_id,
        transaction.amount,
    )
    return transaction


def plan_payment(
    context: RuntimeContext,
    changes: ChangeSet,
    command: PaymentCommand,
    *,
    transaction_id: str,
    entry_id: str,
) -> data_manager.TransactionRow:
    """Contribute a payment and its linked account credit to ``changes``."""

    amount = require_positive_money(command.amount)
    customer = get_customer(context, command.customer_id)
    date_iso = resolve_date(command.date).isoformat()
    account_ledger.credit_from_payment(
        context,
        changes,
        command.account_id,
        amount,
        entry_id=entry_id,
        transaction_id=transaction_id,
        description=f"Payment from {customer.name}",
        date_iso=date_iso,
        notes=command.notes,
    )
    transaction = data_manager.TransactionRow(
        transaction_id=transaction_id,
        customer_id=customer.customer_id,
        transaction_type=TransactionType.PAYMENT.value,
        amount=-amount,
        date_iso=date_iso,
        quantity=0,
        unit=None,
        unit_price=Decimal("0.00"),
        location=None,
        stock_id=None,
        product_id=None,
        sub_category=None,
        account_id=command.account_id,
        discount_category=None,
        purchase_id=None,
        notes=command.notes,
    )
    changes.create(SheetName.TRANSACTIONS, transaction)
    changes.adjust(SheetName.CUSTOMERS, customer.customer_id, "balance", -amount)
    return transaction


def apply_payment(context: RuntimeContext, command: PaymentCommand) -> data_manager.TransactionRow:
    """Record a customer payment and credit the receiving account.

    Raises:
        NotFoundError: If the customer or account is unknown.
        InvalidAmountError: If ``amount`` is not positive.
    """

    changes = ChangeSet()
    transaction = plan_payment(
        context,
        changes,
        command,
        transaction_id=generate_record_id("T"),
        entry_id=generate_record_id("F"),
    )
    commit_changes(context, changes, writer=data_manager.record_payment_with_side_effects)
    log.info(
        "Recorded payment '%s' of %s from customer '%s' into account '%s'",
        transaction.transaction_id,
        -transaction.amount,
        transaction.customer_id,
        transaction.account_id,
    )
    return transaction


def _requested_discount(command: DiscountCommand, outstanding: Decimal) -> Decimal:
    if (command.amount is None) == (command.percent is None):
        raise InvalidAmountError("Provide exactly one of a discount amount or percentage")
    if command.percent is not None:
        percent = to_decimal(command.percent)
        if percent <= 0 or percent > 100:
            log.error("Discount percentage out of range: %s", command.percent)
            raise InvalidAmountError("Discount percentage must be greater than 0 and at most 100")
        return to_money(outstanding * percent / Decimal("100"))
    return require_positive_money(command.amount, label="Discount amount")


def plan_discount(
    context: RuntimeContext,
    changes: ChangeSet,
    command: DiscountCommand,
    *,
    transaction_id: str,
) -> data_manager.TransactionRow:
    """Contribute a capped discount to ``changes``.

    The cap is a fifth of the balance as it stands with ``changes`` applied,
    so an edit measures against the balance without the discount being
    replaced.

    Raises:
        InvalidAmountError: If neither or both of amount and percent are set,
            or the value is out of range.
        BusinessRuleViolation: If nothing is left to discount.
    """

    customer = get_customer(context, command.customer_id)
    outstanding = projected_value(context, changes, SheetName.CUSTOMERS, customer.customer_id, "balance")
    requested = _requested_discount(command, outstanding)
    cap = to_money(outstanding * DISCOUNT_CAP_RATIO) if outstanding > 0 else Decimal("0.00")
    value = min(requested, cap)
    if value <= 0:
        log.warning("Rejected discount for '%s': outstanding balance is %s", customer.customer_id, outstanding)
        raise BusinessRuleViolation(f"Customer '{customer.name}' has no outstanding balance to discount")
    if value < requested:
        log.warning("Discount for '%s' clamped from %s to %s", customer.customer_id, requested, value)

    transaction = data_manager.TransactionRow(
        transaction_id=transaction_id,
        customer_id=customer.customer_id,
        transaction_type=TransactionType.PAYMENT.value,
        amount=-value,
        date_iso=resolve_date(command.date).isoformat(),
        quantity=0,
        unit=None,
        unit_price=Decimal("0.00"),
        location=None,
        stock_id=None,
        product_id=None,
        sub_category=None,
        account_id=None,
        discount_category=command.category or DEFAULT_DISCOUNT_CATEGORY,
        purchase_id=None,
        notes=command.notes,
    )
    changes.create(SheetName.TRANSACTIONS, transaction)
    changes.adjust(SheetName.CUSTOMERS, customer.customer_id, "balance", -value)
    return transaction


def apply_discount(context: RuntimeContext, command: DiscountCommand) -> data_manager.TransactionRow:
    """Forgive part of a customer's balance, capped at 20% of it.

    Returns:
        TransactionRow: The discount, stored as a negative payment tagged with
            its discount category. No account is touched.
    """

    changes = ChangeSet()
    transaction = plan_discount(context, changes, command, transaction_id=generate_record_id("T"))
    commit_changes(context, changes)
    log.info(
        "Recorded discount '%s' of %s for customer '%s'",
        transaction.transaction_id,
        -transaction.amount,
        transaction.customer_id,
    )
    return transaction


def reverse(context: RuntimeContext, transaction_id: str) -> None:
    """Delete a customer transaction and undo every effect it had."""

    from .reconciliation import delete_transaction

    delete_transaction(context, transaction_id)


def edit(context: RuntimeContext, transaction_id: str, command) -> data_manager.TransactionRow:
    """Replace a customer transaction with ``command`` in one atomic step."""

    from .reconciliation import edit_transaction

    return edit_transaction(context, transaction_id, command)


def update_notes(context: RuntimeContext, transaction_id: str, notes: Optional[str]) -> data_manager.TransactionRow:
    """Change the notes of a transaction, the only field editable in place."""

    get_record(context, SheetName.TRANSACTIONS, transaction_id)
    changes = ChangeSet()
    changes.update(SheetName.TRANSACTIONS, transaction_id, notes=notes)
    commit_changes(context, changes)
    log.info("Updated notes on transaction '%s'", transaction_id)
    return get_record(context, SheetName.TRANSACTIONS, transaction_id)
