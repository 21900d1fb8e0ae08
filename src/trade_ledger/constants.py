"""Enumerations shared across Trade Ledger modules.

Centralises domain constants so that the data access layer (DAL), the ledger
components, and the presentation layer rely on a single source of truth for
record types, sheet names, and policy values.
"""

from __future__ import annotations

from decimal import Decimal
from enum import Enum


# Central schema version expected by all layers when validating workbooks.
EXPECTED_SCHEMA_VERSION = "1.0.0"

# Largest share of the outstanding balance a single discount may forgive.
DISCOUNT_CAP_RATIO = Decimal("0.20")

# Locations that never map onto a tracked stock row.
DEFAULT_DIRECT_LOCATIONS: tuple[str, ...] = ("Direct", "Company Goddam")

DEFAULT_UNIT = "BAG"
DEFAULT_STOCK_THRESHOLD = 100
CURRENCY_SYMBOL = "₹"
EXPENSE_DESCRIPTION_PREFIX = "Expense: "


class TransactionType(str, Enum):
    """Enumerate customer-scoped transaction types."""

    SALE = "sale"
    PAYMENT = "payment"
    DISCOUNT = "discount"


class AccountTransactionType(str, Enum):
    """Enumerate account-scoped entry types."""

    ADD_FUNDS = "add-funds"
    REMOVE_FUNDS = "remove-funds"
    TRANSFER_IN = "transfer-in"
    TRANSFER_OUT = "transfer-out"
    EXPENSE = "expense"
    PAYMENT = "payment"


# Direction each entry type moves an account balance; amounts are stored unsigned.
ACCOUNT_ENTRY_SIGNS: dict[AccountTransactionType, int] = {
    AccountTransactionType.ADD_FUNDS: 1,
    AccountTransactionType.TRANSFER_IN: 1,
    AccountTransactionType.PAYMENT: 1,
    AccountTransactionType.REMOVE_FUNDS: -1,
    AccountTransactionType.TRANSFER_OUT: -1,
    AccountTransactionType.EXPENSE: -1,
}

# Entry types shown in generic "fund transaction" views.
FUND_ENTRY_TYPES: tuple[AccountTransactionType, ...] = (
    AccountTransactionType.ADD_FUNDS,
    AccountTransactionType.REMOVE_FUNDS,
    AccountTransactionType.TRANSFER_IN,
    AccountTransactionType.TRANSFER_OUT,
)


class StockEventType(str, Enum):
    """Enumerate stock movements recorded against a location."""

    LOAD = "load"
    TRANSFER = "transfer"
    DUMP = "dump"
    SALE_DEDUCTION = "sale-deduction"


class StockStatus(str, Enum):
    """Derived stock level indicator."""

    LOW = "low"
    NORMAL = "normal"


class PurchaseOrigin(str, Enum):
    """Distinguish monetary purchases from zero-cost bookkeeping cards."""

    PURCHASE = "purchase"
    DUMP = "dump"
    DIRECT_SALE = "direct-sale"


class ReminderStatus(str, Enum):
    """Lifecycle of a payment reminder."""

    ACTIVE = "active"
    COMPLETED = "completed"


class SheetName(str, Enum):
    """Enumerate the workbook sheet names managed by the DAL."""

    CUSTOMERS = "Customers"
    ACCOUNTS = "Accounts"
    STOCKS = "Stocks"
    PRODUCTS = "Products"
    TRANSACTIONS = "Transactions"
    ACCOUNT_TRANSACTIONS = "AccountTransactions"
    STOCK_EVENTS = "StockEvents"
    PURCHASES = "Purchases"
    REMINDERS = "Reminders"
    NOTES = "Notes"


# Sheets whose rows hold running aggregates rather than history.
AGGREGATE_SHEETS: tuple[SheetName, ...] = (
    SheetName.CUSTOMERS,
    SheetName.ACCOUNTS,
    SheetName.STOCKS,
)


__all__ = [
    "EXPECTED_SCHEMA_VERSION",
    "DISCOUNT_CAP_RATIO",
    "DEFAULT_DIRECT_LOCATIONS",
    "DEFAULT_UNIT",
    "DEFAULT_STOCK_THRESHOLD",
    "CURRENCY_SYMBOL",
    "EXPENSE_DESCRIPTION_PREFIX",
    "TransactionType",
    "AccountTransactionType",
    "ACCOUNT_ENTRY_SIGNS",
    "FUND_ENTRY_TYPES",
    "StockEventType",
    "StockStatus",
    "PurchaseOrigin",
    "ReminderStatus",
    "SheetName",
    "AGGREGATE_SHEETS",
]
