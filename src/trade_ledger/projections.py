"""Read-only projections and reports over the ledger history.

Nothing in this module writes to the workbook. Query helpers return typed row
dataclasses; report helpers return plain dictionaries (or lists of them) so
they can be printed, tested, or handed to :mod:`trade_ledger.exporter`
without further conversion.
"""

from __future__ import annotations

from collections import defaultdict
from datetime import date, timedelta
from decimal import Decimal
from typing import Any, Callable, Dict, Iterable, List, Mapping, Optional, Sequence

from . import data_manager, log
from .constants import (
    ACCOUNT_ENTRY_SIGNS,
    FUND_ENTRY_TYPES,
    AccountTransactionType,
    PurchaseOrigin,
    SheetName,
    TransactionType,
)
from .core_logic import RuntimeContext, get_customer, list_records, resolve_date
from .stock_ledger import stock_status


ZERO = Decimal("0.00")
UNKNOWN_PRODUCT = "Unknown Product"
ACTIVITY_WINDOW_DAYS = 30


def _in_range(date_iso: str, start: Optional[date], end: Optional[date]) -> bool:
    if start is not None and date_iso < start.isoformat():
        return False
    if end is not None and date_iso > end.isoformat():
        return False
    return True


def transaction_label(transaction: data_manager.TransactionRow) -> str:
    """Return ``sale``, ``payment``, or ``discount`` for display."""

    if transaction.is_discount:
        return TransactionType.DISCOUNT.value
    return transaction.transaction_type


def query_transactions(
    context: RuntimeContext,
    *,
    customer_id: Optional[str] = None,
    start: Optional[date] = None,
    end: Optional[date] = None,
    kind: Optional[TransactionType] = None,
    location: Optional[str] = None,
    product_id: Optional[str] = None,
) -> List[data_manager.TransactionRow]:
    """Filter customer transactions; results are ordered by date then id.

    ``kind`` distinguishes discounts from cash payments even though both are
    stored with the ``payment`` type.
    """

    rows = [
        row
        for row in list_records(context, SheetName.TRANSACTIONS)
        if (customer_id is None or row.customer_id == customer_id)
        and _in_range(row.date_iso, start, end)
        and (kind is None or transaction_label(row) == kind.value)
        and (location is None or row.location == location or row.stock_id == location)
        and (product_id is None or row.product_id == product_id)
    ]
    return sorted(rows, key=lambda row: (row.date_iso, row.transaction_id))


def query_account_entries(
    context: RuntimeContext,
    *,
    account_id: Optional[str] = None,
    start: Optional[date] = None,
    end: Optional[date] = None,
    entry_types: Optional[Iterable[AccountTransactionType]] = None,
) -> List[data_manager.AccountTransactionRow]:
    """Filter account entries by account, date range, and entry type.

    Args:
        context (RuntimeContext): Runtime context providing workbook access.
        account_id (str | None): Restrict to one account.
        start (date | None): Inclusive lower date bound.
        end (date | None): Inclusive upper date bound.
        entry_types (Iterable[AccountTransactionType] | None): Entry types to
            keep; every type when omitted.

    Returns:
        List[AccountTransactionRow]: Matching entries ordered by date then id.
    """

    allowed = {entry_type.value for entry_type in entry_types} if entry_types is not None else None
    rows = [
        row
        for row in list_records(context, SheetName.ACCOUNT_TRANSACTIONS)
        if (account_id is None or row.account_id == account_id)
        and _in_range(row.date_iso, start, end)
        and (allowed is None or row.entry_type in allowed)
    ]
    return sorted(rows, key=lambda row: (row.date_iso, row.entry_id))


def fund_log(
    context: RuntimeContext,
    *,
    account_id: Optional[str] = None,
    start: Optional[date] = None,
    end: Optional[date] = None,
) -> List[data_manager.AccountTransactionRow]:
    """Return add/remove/transfer entries; expenses and payments are left out."""

    return query_account_entries(context, account_id=account_id, start=start, end=end, entry_types=FUND_ENTRY_TYPES)


def query_purchases(
    context: RuntimeContext,
    *,
    start: Optional[date] = None,
    end: Optional[date] = None,
    product_id: Optional[str] = None,
    include_cards: bool = True,
) -> List[data_manager.PurchaseRow]:
    """Filter purchases. ``include_cards=False`` keeps monetary purchases only."""

    rows = [
        row
        for row in list_records(context, SheetName.PURCHASES)
        if _in_range(row.date_iso, start, end)
        and (product_id is None or row.product_id == product_id)
        and (include_cards or row.origin == PurchaseOrigin.PURCHASE.value)
    ]
    return sorted(rows, key=lambda row: (row.date_iso, row.purchase_id))


def query_stock_events(
    context: RuntimeContext,
    *,
    stock_id: Optional[str] = None,
    start: Optional[date] = None,
    end: Optional[date] = None,
) -> List[data_manager.StockEventRow]:
    """Filter stock events by location and date range.

    Args:
        context (RuntimeContext): Runtime context providing workbook access.
        stock_id (str | None): Restrict to one tracked location.
        start (date | None): Inclusive lower date bound.
        end (date | None): Inclusive upper date bound.

    Returns:
        List[StockEventRow]: Matching events ordered by date then id.
    """

    rows = [
        row
        for row in list_records(context, SheetName.STOCK_EVENTS)
        if (stock_id is None or row.stock_id == stock_id) and _in_range(row.date_iso, start, end)
    ]
    return sorted(rows, key=lambda row: (row.date_iso, row.event_id))


def stock_overview(context: RuntimeContext) -> List[Dict[str, Any]]:
    """Return every tracked location with its derived status."""

    return [
        {
            "stock_id": stock.stock_id,
            "location": stock.location,
            "quantity": stock.quantity,
            "threshold": stock.threshold,
            "status": stock_status(stock).value,
        }
        for stock in list_records(context, SheetName.STOCKS)
    ]


def low_stock_report(context: RuntimeContext) -> List[Dict[str, Any]]:
    """Return the rows of :func:`stock_overview` whose quantity is below threshold."""

    return [row for row in stock_overview(context) if row["status"] == "low"]


def customer_statement(
    context: RuntimeContext,
    customer_id: str,
    *,
    start: Optional[date] = None,
    end: Optional[date] = None,
) -> List[Dict[str, Any]]:
    """Build a statement with a running balance.

    The first row carries the balance brought forward: the opening balance
    plus every transaction dated before ``start``.

    Raises:
        NotFoundError: If the customer is unknown.
    """

    customer = get_customer(context, customer_id)
    history = query_transactions(context, customer_id=customer_id)
    balance = customer.opening_balance + sum(
        (row.amount for row in history if start is not None and row.date_iso < start.isoformat()),
        ZERO,
    )
    statement: List[Dict[str, Any]] = [
        {
            "date": start.isoformat() if start is not None else customer.created_date,
            "transaction_id": None,
            "type": "opening",
            "description": "Balance brought forward",
            "debit": ZERO,
            "credit": ZERO,
            "balance": balance,
        }
    ]
    for row in history:
        if not _in_range(row.date_iso, start, end):
            continue
        balance += row.amount
        if row.is_sale:
            description = f"{row.quantity} {row.unit or ''} @ {row.unit_price}".strip()
        elif row.is_discount:
            description = f"Discount ({row.discount_category})"
        else:
            description = f"Payment to {row.account_id}"
        statement.append(
            {
                "date": row.date_iso,
                "transaction_id": row.transaction_id,
                "type": transaction_label(row),
                "description": description,
                "debit": row.amount if row.amount > 0 else ZERO,
                "credit": -row.amount if row.amount < 0 else ZERO,
                "balance": balance,
            }
        )
    return statement


def customer_wise_summary(
    context: RuntimeContext,
    *,
    start: Optional[date] = None,
    end: Optional[date] = None,
) -> List[Dict[str, Any]]:
    """Summarise sales, payments, and discounts per active customer.

    Customers without activity in the range are left out. Rows are ordered by
    total sales, largest first.
    """

    totals: Dict[str, Dict[str, Decimal]] = defaultdict(lambda: {"sales": ZERO, "payments": ZERO, "discounts": ZERO})
    for row in query_transactions(context, start=start, end=end):
        bucket = totals[row.customer_id]
        if row.is_sale:
            bucket["sales"] += row.amount
        elif row.is_discount:
            bucket["discounts"] += -row.amount
        else:
            bucket["payments"] += -row.amount

    summary = []
    for customer in list_records(context, SheetName.CUSTOMERS):
        if customer.customer_id not in totals:
            continue
        bucket = totals[customer.customer_id]
        summary.append(
            {
                "customer_id": customer.customer_id,
                "name": customer.name,
                "phone": customer.phone or "",
                "category": customer.category or "Individual",
                "total_sales": bucket["sales"],
                "total_payments": bucket["payments"],
                "total_discounts": bucket["discounts"],
                "balance": customer.balance,
            }
        )
    return sorted(summary, key=lambda row: row["total_sales"], reverse=True)


def monthly_business_summary(
    context: RuntimeContext,
    *,
    start: Optional[date] = None,
    end: Optional[date] = None,
) -> List[Dict[str, Any]]:
    """Total sales, cash collections, and discounts per calendar month."""

    months: Dict[str, Dict[str, Any]] = {}
    for row in query_transactions(context, start=start, end=end):
        month = row.date_iso[:7]
        bucket = months.setdefault(month, {"month": month, "sales": ZERO, "collections": ZERO, "discounts": ZERO})
        if row.is_sale:
            bucket["sales"] += row.amount
        elif row.is_discount:
            bucket["discounts"] += -row.amount
        else:
            bucket["collections"] += -row.amount
    return [months[key] for key in sorted(months)]


def account_collection_summary(
    context: RuntimeContext,
    *,
    start: Optional[date] = None,
    end: Optional[date] = None,
) -> List[Dict[str, Any]]:
    """Customer payments received per account, largest first."""

    collected: Dict[str, Decimal] = defaultdict(lambda: ZERO)
    for entry in query_account_entries(context, start=start, end=end, entry_types=[AccountTransactionType.PAYMENT]):
        collected[entry.account_id] += entry.amount
    rows = [
        {"account_id": account.account_id, "account": account.name, "collections": collected[account.account_id]}
        for account in list_records(context, SheetName.ACCOUNTS)
        if collected.get(account.account_id, ZERO) > 0
    ]
    return sorted(rows, key=lambda row: row["collections"], reverse=True)


def transaction_report(
    context: RuntimeContext,
    *,
    start: Optional[date] = None,
    end: Optional[date] = None,
) -> List[Dict[str, Any]]:
    """Every customer transaction in range, newest first."""

    names = {customer.customer_id: customer.name for customer in list_records(context, SheetName.CUSTOMERS)}
    rows = [
        {
            "transaction_id": row.transaction_id,
            "date": row.date_iso,
            "name": names.get(row.customer_id, row.customer_id),
            "type": transaction_label(row),
            "amount": row.amount,
            "quantity": row.quantity or None,
            "sub_category": row.sub_category,
            "location": row.location,
            "notes": row.notes or "",
        }
        for row in query_transactions(context, start=start, end=end)
    ]
    return sorted(rows, key=lambda row: (row["date"], row["transaction_id"]), reverse=True)


def _product_label(context: RuntimeContext, row: data_manager.TransactionRow) -> str:
    if row.sub_category:
        return row.sub_category
    if row.product_id:
        products = {product.product_id: product.name for product in list_records(context, SheetName.PRODUCTS)}
        return products.get(row.product_id, row.product_id)
    return UNKNOWN_PRODUCT


def item_sale_summary(
    context: RuntimeContext,
    *,
    start: Optional[date] = None,
    end: Optional[date] = None,
) -> List[Dict[str, Any]]:
    """Units sold per product label, alphabetically."""

    grouped: Dict[str, Dict[str, Any]] = {}
    for row in query_transactions(context, start=start, end=end, kind=TransactionType.SALE):
        label = _product_label(context, row)
        bucket = grouped.setdefault(label, {"product": label, "quantity": 0, "unit": row.unit or context.settings.default_unit})
        bucket["quantity"] += row.quantity
    return [grouped[key] for key in sorted(grouped)]


def item_report_by_party(
    context: RuntimeContext,
    *,
    start: Optional[date] = None,
    end: Optional[date] = None,
) -> List[Dict[str, Any]]:
    """Units and amounts sold per customer and product label."""

    names = {customer.customer_id: customer.name for customer in list_records(context, SheetName.CUSTOMERS)}
    grouped: Dict[tuple, Dict[str, Any]] = {}
    for row in query_transactions(context, start=start, end=end, kind=TransactionType.SALE):
        party = names.get(row.customer_id, row.customer_id)
        label = _product_label(context, row)
        bucket = grouped.setdefault(
            (party, label),
            {
                "party": party,
                "product": label,
                "quantity": 0,
                "amount": ZERO,
                "unit": row.unit or context.settings.default_unit,
            },
        )
        bucket["quantity"] += row.quantity
        bucket["amount"] += row.amount
    return [grouped[key] for key in sorted(grouped)]


def customer_activity(
    context: RuntimeContext,
    *,
    today: Optional[date] = None,
    category: Optional[str] = None,
    window_days: int = ACTIVITY_WINDOW_DAYS,
) -> List[Dict[str, Any]]:
    """Classify customers as active when they transacted within the window.

    Active customers come first, then by days since their last transaction;
    customers who never transacted come last.
    """

    today = resolve_date(today)
    window_start = (today - timedelta(days=window_days)).isoformat()
    history: Dict[str, List[str]] = defaultdict(list)
    for row in list_records(context, SheetName.TRANSACTIONS):
        history[row.customer_id].append(row.date_iso)

    rows = []
    for customer in list_records(context, SheetName.CUSTOMERS):
        if category is not None and customer.category != category:
            continue
        dates = history.get(customer.customer_id, [])
        last = max(dates) if dates else None
        rows.append(
            {
                "customer_id": customer.customer_id,
                "name": customer.name,
                "category": customer.category or "Individual",
                "balance": customer.balance,
                "last_transaction_date": last,
                "days_since_last_transaction": (today - date.fromisoformat(last)).days if last else None,
                "is_active": last is not None and last >= window_start,
                "recent_transactions": sum(1 for value in dates if window_start <= value <= today.isoformat()),
                "total_transactions": len(dates),
            }
        )

    def _order(row: Mapping[str, Any]) -> tuple:
        days = row["days_since_last_transaction"]
        return (not row["is_active"], days is None, days if days is not None else 0)

    return sorted(rows, key=_order)


def _average(total: Decimal, units: int) -> Decimal:
    if units == 0:
        return ZERO
    return (total / units).quantize(Decimal("0.01"))


def profit_loss(
    context: RuntimeContext,
    *,
    start: Optional[date] = None,
    end: Optional[date] = None,
) -> Dict[str, Any]:
    """Compare sales revenue with monetary purchase cost.

    Dump and direct-sale cards carry no cost and are excluded from the
    purchase side.
    """

    sales = query_transactions(context, start=start, end=end, kind=TransactionType.SALE)
    purchases = query_purchases(context, start=start, end=end, include_cards=False)
    sales_units = sum(row.quantity for row in sales)
    sales_revenue = sum((row.amount for row in sales), ZERO)
    purchase_units = sum(row.quantity for row in purchases)
    purchase_cost = sum((row.total for row in purchases), ZERO)
    avg_selling = _average(sales_revenue, sales_units)
    avg_cost = _average(purchase_cost, purchase_units)
    profit_per_unit = avg_selling - avg_cost
    margin = ZERO
    if avg_selling > 0:
        margin = (profit_per_unit / avg_selling * 100).quantize(Decimal("0.01"))
    summary = {
        "total_sales_units": sales_units,
        "total_sales_revenue": sales_revenue,
        "avg_selling_price": avg_selling,
        "total_purchase_units": purchase_units,
        "total_purchase_cost": purchase_cost,
        "avg_cost_price": avg_cost,
        "profit_per_unit": profit_per_unit,
        "profit_margin_percent": margin,
        "total_profit": (profit_per_unit * sales_units).quantize(Decimal("0.01")),
    }
    log.debug("Calculated profit summary: %s", summary)
    return summary


def expense_report(
    context: RuntimeContext,
    *,
    start: Optional[date] = None,
    end: Optional[date] = None,
) -> List[Dict[str, Any]]:
    """Expense totals per category, largest first."""

    totals: Dict[str, Dict[str, Any]] = {}
    for entry in query_account_entries(context, start=start, end=end, entry_types=[AccountTransactionType.EXPENSE]):
        label = entry.category or "General"
        bucket = totals.setdefault(label, {"category": label, "count": 0, "total": ZERO})
        bucket["count"] += 1
        bucket["total"] += entry.amount
    return sorted(totals.values(), key=lambda row: row["total"], reverse=True)


def reconcile(context: RuntimeContext) -> List[Dict[str, Any]]:
    """Recompute every aggregate from history and list the mismatches.

    An empty list means every customer balance, account balance, and stock
    quantity agrees with the records behind it.
    """

    customer_totals: Dict[str, Decimal] = defaultdict(lambda: ZERO)
    for row in list_records(context, SheetName.TRANSACTIONS):
        customer_totals[row.customer_id] += row.amount
    account_totals: Dict[str, Decimal] = defaultdict(lambda: ZERO)
    for entry in list_records(context, SheetName.ACCOUNT_TRANSACTIONS):
        account_totals[entry.account_id] += ACCOUNT_ENTRY_SIGNS[AccountTransactionType(entry.entry_type)] * entry.amount
    stock_totals: Dict[str, int] = defaultdict(int)
    for event in list_records(context, SheetName.STOCK_EVENTS):
        stock_totals[event.stock_id] += event.quantity_change

    mismatches: List[Dict[str, Any]] = []

    def _check(kind: SheetName, key: str, field_name: str, stored: Any, expected: Any) -> None:
        if stored != expected:
            mismatches.append(
                {"sheet": kind.value, "key": key, "field": field_name, "stored": stored, "expected": expected}
            )

    for customer in list_records(context, SheetName.CUSTOMERS):
        expected = customer.opening_balance + customer_totals[customer.customer_id]
        _check(SheetName.CUSTOMERS, customer.customer_id, "balance", customer.balance, expected)
    for account in list_records(context, SheetName.ACCOUNTS):
        _check(SheetName.ACCOUNTS, account.account_id, "balance", account.balance, account_totals[account.account_id])
    for stock in list_records(context, SheetName.STOCKS):
        expected_quantity = stock.initial_quantity + stock_totals[stock.stock_id]
        _check(SheetName.STOCKS, stock.stock_id, "quantity", stock.quantity, expected_quantity)
        if stock.quantity < 0:
            _check(SheetName.STOCKS, stock.stock_id, "non_negative", stock.quantity, 0)

    if mismatches:
        log.warning("Reconciliation found %d mismatches", len(mismatches))
    else:
        log.info("Reconciliation clean")
    return mismatches


REPORTS: Mapping[str, Callable[..., Any]] = {
    "customer-summary": customer_wise_summary,
    "monthly-summary": monthly_business_summary,
    "collections": account_collection_summary,
    "transactions": transaction_report,
    "item-sales": item_sale_summary,
    "item-by-party": item_report_by_party,
    "profit-loss": profit_loss,
    "expenses": expense_report,
}


def run_report(
    context: RuntimeContext,
    name: str,
    *,
    start: Optional[date] = None,
    end: Optional[date] = None,
) -> Any:
    """Run a date-ranged report by name.

    Raises:
        KeyError: If ``name`` is not a known report.
    """

    try:
        builder = REPORTS[name]
    except KeyError as exc:
        raise KeyError(f"Unknown report: {name}") from exc
    return builder(context, start=start, end=end)


def report_names() -> Sequence[str]:
    """Return the report names accepted by :func:`run_report`, sorted."""
    return sorted(REPORTS)
