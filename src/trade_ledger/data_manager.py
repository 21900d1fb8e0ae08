"""Data access layer for Trade Ledger.

This module provides low-level helpers that read from and write to the
ledger workbook. Business logic belongs elsewhere.

The public API is designed around four responsibilities:

1. Configuration handling: finding and parsing ``config.ini``.
2. Workbook lifecycle: opening, validating, and persisting the Excel file.
3. Record operations: creating, reading, updating, and deleting typed rows on
   the sheet that owns each record kind.
4. Atomic units: applying a batch of record operations so that either all of
   them land in the workbook or none of them do.
"""


from __future__ import annotations

import configparser
from contextlib import contextmanager
from dataclasses import dataclass
from decimal import Decimal
from pathlib import Path
from typing import Any, Callable, Dict, Iterable, Iterator, List, Mapping, Optional, Sequence, Tuple

from openpyxl.workbook import Workbook
from openpyxl.worksheet.worksheet import Worksheet
import openpyxl

from . import log
from .constants import (
    AGGREGATE_SHEETS,
    DEFAULT_DIRECT_LOCATIONS,
    DEFAULT_UNIT,
    AccountTransactionType,
    PurchaseOrigin,
    SheetName,
    StockEventType,
    TransactionType,
)


CONFIG_FILE_NAME = "config.ini"


@dataclass(frozen=True)
class ConfigSettings:
    """Typed representation of the ``config.ini`` settings we care about."""

    data_file: Path
    business_name: str
    schema_version: str
    allow_overdraft: bool = True
    direct_locations: Tuple[str, ...] = DEFAULT_DIRECT_LOCATIONS
    default_unit: str = DEFAULT_UNIT


@dataclass(frozen=True)
class CustomerRow:
    """In-memory view of a row from the ``Customers`` sheet."""

    customer_id: str
    name: str
    phone: Optional[str]
    category: Optional[str]
    opening_balance: Decimal
    balance: Decimal
    created_date: str


@dataclass(frozen=True)
class AccountRow:
    """In-memory view of a row from the ``Accounts`` sheet."""

    account_id: str
    name: str
    balance: Decimal
    created_date: str


@dataclass(frozen=True)
class StockRow:
    """In-memory view of a row from the ``Stocks`` sheet."""

    stock_id: str
    location: str
    quantity: int
    threshold: int
    initial_quantity: int
    product_id: Optional[str]


@dataclass(frozen=True)
class ProductRow:
    """In-memory view of a row from the ``Products`` sheet."""

    product_id: str
    name: str
    category: Optional[str]


@dataclass(frozen=True)
class TransactionRow:
    """In-memory view of a row from the ``Transactions`` sheet.

    ``amount`` is signed: sales are positive, payments and discounts are
    negative, so a customer's balance is its opening balance plus the sum of
    its rows.
    """

    transaction_id: str
    customer_id: str
    transaction_type: str
    amount: Decimal
    date_iso: str
    quantity: int
    unit: Optional[str]
    unit_price: Decimal
    location: Optional[str]
    stock_id: Optional[str]
    product_id: Optional[str]
    sub_category: Optional[str]
    account_id: Optional[str]
    discount_category: Optional[str]
    purchase_id: Optional[str]
    notes: Optional[str]

    @property
    def is_discount(self) -> bool:
        return (
            self.transaction_type == TransactionType.DISCOUNT.value
            or self.discount_category is not None
        )

    @property
    def is_sale(self) -> bool:
        return self.transaction_type == TransactionType.SALE.value

    @property
    def is_cash_payment(self) -> bool:
        return self.transaction_type == TransactionType.PAYMENT.value and not self.is_discount


@dataclass(frozen=True)
class AccountTransactionRow:
    """In-memory view of a row from the ``AccountTransactions`` sheet.

    ``amount`` is always an unsigned magnitude; the direction is implied by
    ``entry_type``.
    """

    entry_id: str
    account_id: str
    entry_type: str
    amount: Decimal
    description: str
    category: Optional[str]
    related_account_id: Optional[str]
    linked_entry_id: Optional[str]
    linked_transaction_id: Optional[str]
    date_iso: str
    notes: Optional[str]


@dataclass(frozen=True)
class StockEventRow:
    """In-memory view of a row from the ``StockEvents`` sheet."""

    event_id: str
    stock_id: str
    event_type: str
    quantity_change: int
    from_location: Optional[str]
    to_location: Optional[str]
    product_id: Optional[str]
    sub_category: Optional[str]
    linked_event_id: Optional[str]
    linked_transaction_id: Optional[str]
    purchase_id: Optional[str]
    date_iso: str
    notes: Optional[str]


@dataclass(frozen=True)
class PurchaseRow:
    """In-memory view of a row from the ``Purchases`` sheet."""

    purchase_id: str
    supplier_id: Optional[str]
    product_id: Optional[str]
    quantity: int
    unit: Optional[str]
    unit_price: Decimal
    original_price: Optional[Decimal]
    total: Decimal
    category: Optional[str]
    account_id: Optional[str]
    origin: str
    linked_record_id: Optional[str]
    date_iso: str
    notes: Optional[str]

    @property
    def is_dump(self) -> bool:
        return self.origin == PurchaseOrigin.DUMP.value


@dataclass(frozen=True)
class ReminderRow:
    """In-memory view of a row from the ``Reminders`` sheet."""

    reminder_id: str
    customer_id: str
    amount: Decimal
    due_date_iso: str
    status: str
    notes: Optional[str]
    created_date: str
    completed_date: Optional[str]


@dataclass(frozen=True)
class NoteRow:
    """In-memory view of a row from the ``Notes`` sheet."""

    note_id: str
    title: str
    content: Optional[str]
    created_at: str
    updated_at: str


def _read_text(raw: object) -> str:
    return str(raw) if raw is not None else ""


def _read_optional_text(raw: object) -> Optional[str]:
    if raw is None or raw == "":
        return None
    return str(raw)


def _read_money(raw: object) -> Decimal:
    return Decimal(str(raw)) if raw is not None else Decimal("0.00")


def _read_optional_money(raw: object) -> Optional[Decimal]:
    return Decimal(str(raw)) if raw is not None else None


def _read_int(raw: object) -> int:
    return int(Decimal(str(raw))) if raw is not None else 0


@dataclass(frozen=True)
class SheetColumn:
    """Bind a worksheet header to a row dataclass field and its reader."""

    header: str
    field: str
    reader: Callable[[object], Any]


@dataclass(frozen=True)
class SheetSchema:
    """Describe how one record kind is laid out on its worksheet."""

    row_type: type
    key_field: str
    columns: Tuple[SheetColumn, ...]

    @property
    def headers(self) -> List[str]:
        return [column.header for column in self.columns]

    @property
    def key_header(self) -> str:
        for column in self.columns:
            if column.field == self.key_field:
                return column.header
        raise KeyError(f"Key field not mapped: {self.key_field}")


SHEET_SCHEMAS: Mapping[SheetName, SheetSchema] = {
    SheetName.CUSTOMERS: SheetSchema(
        CustomerRow,
        "customer_id",
        (
            SheetColumn("CustomerID", "customer_id", _read_text),
            SheetColumn("Name", "name", _read_text),
            SheetColumn("Phone", "phone", _read_optional_text),
            SheetColumn("Category", "category", _read_optional_text),
            SheetColumn("OpeningBalance", "opening_balance", _read_money),
            SheetColumn("Balance", "balance", _read_money),
            SheetColumn("CreatedDate", "created_date", _read_text),
        ),
    ),
    SheetName.ACCOUNTS: SheetSchema(
        AccountRow,
        "account_id",
        (
            SheetColumn("AccountID", "account_id", _read_text),
            SheetColumn("Name", "name", _read_text),
            SheetColumn("Balance", "balance", _read_money),
            SheetColumn("CreatedDate", "created_date", _read_text),
        ),
    ),
    SheetName.STOCKS: SheetSchema(
        StockRow,
        "stock_id",
        (
            SheetColumn("StockID", "stock_id", _read_text),
            SheetColumn("Location", "location", _read_text),
            SheetColumn("Quantity", "quantity", _read_int),
            SheetColumn("Threshold", "threshold", _read_int),
            SheetColumn("InitialQuantity", "initial_quantity", _read_int),
            SheetColumn("ProductID", "product_id", _read_optional_text),
        ),
    ),
    SheetName.PRODUCTS: SheetSchema(
        ProductRow,
        "product_id",
        (
            SheetColumn("ProductID", "product_id", _read_text),
            SheetColumn("Name", "name", _read_text),
            SheetColumn("Category", "category", _read_optional_text),
        ),
    ),
    SheetName.TRANSACTIONS: SheetSchema(
        TransactionRow,
        "transaction_id",
        (
            SheetColumn("TransactionID", "transaction_id", _read_text),
            SheetColumn("CustomerID", "customer_id", _read_text),
            SheetColumn("Type", "transaction_type", _read_text),
            SheetColumn("Amount", "amount", _read_money),
            SheetColumn("Date", "date_iso", _read_text),
            SheetColumn("Quantity", "quantity", _read_int),
            SheetColumn("Unit", "unit", _read_optional_text),
            SheetColumn("UnitPrice", "unit_price", _read_money),
            SheetColumn("Location", "location", _read_optional_text),
            SheetColumn("StockID", "stock_id", _read_optional_text),
            SheetColumn("ProductID", "product_id", _read_optional_text),
            SheetColumn("SubCategory", "sub_category", _read_optional_text),
            SheetColumn("AccountID", "account_id", _read_optional_text),
            SheetColumn("DiscountCategory", "discount_category", _read_optional_text),
            SheetColumn("PurchaseID", "purchase_id", _read_optional_text),
            SheetColumn("Notes", "notes", _read_optional_text),
        ),
    ),
    SheetName.ACCOUNT_TRANSACTIONS: SheetSchema(
        AccountTransactionRow,
        "entry_id",
        (
            SheetColumn("EntryID", "entry_id", _read_text),
            SheetColumn("AccountID", "account_id", _read_text),
            SheetColumn("Type", "entry_type", _read_text),
            SheetColumn("Amount", "amount", _read_money),
            SheetColumn("Description", "description", _read_text),
            SheetColumn("Category", "category", _read_optional_text),
            SheetColumn("RelatedAccountID", "related_account_id", _read_optional_text),
            SheetColumn("LinkedEntryID", "linked_entry_id", _read_optional_text),
            SheetColumn("LinkedTransactionID", "linked_transaction_id", _read_optional_text),
            SheetColumn("Date", "date_iso", _read_text),
            SheetColumn("Notes", "notes", _read_optional_text),
        ),
    ),
    SheetName.STOCK_EVENTS: SheetSchema(
        StockEventRow,
        "event_id",
        (
            SheetColumn("EventID", "event_id", _read_text),
            SheetColumn("StockID", "stock_id", _read_text),
            SheetColumn("Type", "event_type", _read_text),
            SheetColumn("QuantityChange", "quantity_change", _read_int),
            SheetColumn("FromLocation", "from_location", _read_optional_text),
            SheetColumn("ToLocation", "to_location", _read_optional_text),
            SheetColumn("ProductID", "product_id", _read_optional_text),
            SheetColumn("SubCategory", "sub_category", _read_optional_text),
            SheetColumn("LinkedEventID", "linked_event_id", _read_optional_text),
            SheetColumn("LinkedTransactionID", "linked_transaction_id", _read_optional_text),
            SheetColumn("PurchaseID", "purchase_id", _read_optional_text),
            SheetColumn("Date", "date_iso", _read_text),
            SheetColumn("Notes", "notes", _read_optional_text),
        ),
    ),
    SheetName.PURCHASES: SheetSchema(
        PurchaseRow,
        "purchase_id",
        (
            SheetColumn("PurchaseID", "purchase_id", _read_text),
            SheetColumn("SupplierID", "supplier_id", _read_optional_text),
            SheetColumn("ProductID", "product_id", _read_optional_text),
            SheetColumn("Quantity", "quantity", _read_int),
            SheetColumn("Unit", "unit", _read_optional_text),
            SheetColumn("UnitPrice", "unit_price", _read_money),
            SheetColumn("OriginalPrice", "original_price", _read_optional_money),
            SheetColumn("Total", "total", _read_money),
            SheetColumn("Category", "category", _read_optional_text),
            SheetColumn("AccountID", "account_id", _read_optional_text),
            SheetColumn("Origin", "origin", _read_text),
            SheetColumn("LinkedRecordID", "linked_record_id", _read_optional_text),
            SheetColumn("Date", "date_iso", _read_text),
            SheetColumn("Notes", "notes", _read_optional_text),
        ),
    ),
    SheetName.REMINDERS: SheetSchema(
        ReminderRow,
        "reminder_id",
        (
            SheetColumn("ReminderID", "reminder_id", _read_text),
            SheetColumn("CustomerID", "customer_id", _read_text),
            SheetColumn("Amount", "amount", _read_money),
            SheetColumn("DueDate", "due_date_iso", _read_text),
            SheetColumn("Status", "status", _read_text),
            SheetColumn("Notes", "notes", _read_optional_text),
            SheetColumn("CreatedDate", "created_date", _read_text),
            SheetColumn("CompletedDate", "completed_date", _read_optional_text),
        ),
    ),
    SheetName.NOTES: SheetSchema(
        NoteRow,
        "note_id",
        (
            SheetColumn("NoteID", "note_id", _read_text),
            SheetColumn("Title", "title", _read_text),
            SheetColumn("Content", "content", _read_optional_text),
            SheetColumn("CreatedAt", "created_at", _read_text),
            SheetColumn("UpdatedAt", "updated_at", _read_text),
        ),
    ),
}

# Header layout per worksheet, consumed by the workbook bootstrap.
SHEET_COLUMNS: Mapping[str, Sequence[str]] = {
    kind.value: schema.headers for kind, schema in SHEET_SCHEMAS.items()
}


@dataclass(frozen=True)
class WriteOp:
    """One record-level write inside an atomic unit.

    ``action`` is one of ``"create"``, ``"update"``, or ``"delete"``. Creates
    carry a ``record``; updates carry ``field_values`` keyed by dataclass
    field name; deletes only need ``key``.
    """

    action: str
    kind: SheetName
    key: Optional[str] = None
    record: Any = None
    field_values: Optional[Mapping[str, Any]] = None

    @classmethod
    def create(cls, kind: SheetName, record: Any) -> "WriteOp":
        key = getattr(record, SHEET_SCHEMAS[kind].key_field)
        return cls(action="create", kind=kind, key=key, record=record)

    @classmethod
    def update(cls, kind: SheetName, key: str, field_values: Mapping[str, Any]) -> "WriteOp":
        return cls(action="update", kind=kind, key=key, field_values=dict(field_values))

    @classmethod
    def delete(cls, kind: SheetName, key: str) -> "WriteOp":
        return cls(action="delete", kind=kind, key=key)


def find_config_file(explicit_path: Optional[Path] = None) -> Path:
    """Locate the configuration file that controls how the data layer behaves.

    If the caller provides ``explicit_path`` the value is returned immediately
    without any verification. Otherwise the function walks up from the
    current working directory toward the filesystem root looking for a file
    named ``CONFIG_FILE_NAME``; the first match is authoritative.

    Args:
        explicit_path (Path | None): Optional path to use instead of performing
            the upward search.

    Returns:
        Path: The path provided by the caller or the discovered configuration
            file.

    Raises:
        FileNotFoundError: If no ``CONFIG_FILE_NAME`` exists in the current
            directory or any of its parents.
    """

    if explicit_path:
        return explicit_path

    current = Path.cwd()
    for p in (current, *current.parents):
        candidate = p / CONFIG_FILE_NAME
        if candidate.exists():
            return candidate

    raise FileNotFoundError(
        f"Configuration file not found: {CONFIG_FILE_NAME}")


def read_config(config_path: Path) -> configparser.ConfigParser:
    """Load ``config.ini`` and return a populated ``ConfigParser`` instance.

    Args:
        config_path (Path): Path to the configuration file, relative or
            absolute. ``~`` is expanded before the existence check.

    Returns:
        configparser.ConfigParser: Parser holding the raw configuration data.
            Validation of required entries happens in :func:`parse_settings`.

    Raises:
        FileNotFoundError: If ``config_path`` does not exist.
    """

    config_path = config_path.expanduser().resolve()
    if not config_path.exists():
        raise FileNotFoundError(f"Configuration file not found: {config_path}")

    parser = configparser.ConfigParser()
    parser.read(config_path, encoding="utf-8")
    return parser


def parse_settings(parser: configparser.ConfigParser, *, base_path: Optional[Path] = None) -> ConfigSettings:
    """Convert a ``ConfigParser`` into strongly typed :class:`ConfigSettings`.

    The ``[System]`` section is mandatory. The ``[Ledger]`` section is
    optional and falls back to the package defaults: overdrafts allowed,
    ``Direct`` and ``Company Goddam`` treated as untracked locations, and
    ``BAG`` as the default unit.

    Args:
        parser (configparser.ConfigParser): Parsed configuration data.
        base_path (Path | None): Directory used to anchor a relative
            ``DataFile`` entry. Defaults to :func:`Path.cwd`.

    Returns:
        ConfigSettings: Immutable settings container with a resolved data file
            path.

    Raises:
        KeyError: If a required ``[System]`` entry is missing.
        ValueError: If ``AllowOverdraft`` is not a boolean literal.
    """

    try:
        data_file_raw = parser.get("System", "DataFile")
        business_name = parser.get("System", "BusinessName")
        schema_version = parser.get("System", "SchemaVersion")
    except (configparser.NoSectionError, configparser.NoOptionError) as exc:
        raise KeyError(f"Missing required configuration entry: {exc}") from exc

    allow_overdraft = parser.getboolean("Ledger", "AllowOverdraft", fallback=True)
    direct_raw = parser.get("Ledger", "DirectLocations", fallback=None)
    if direct_raw is None:
        direct_locations = DEFAULT_DIRECT_LOCATIONS
    else:
        direct_locations = tuple(part.strip() for part in direct_raw.split(",") if part.strip())
    default_unit = parser.get("Ledger", "DefaultUnit", fallback=DEFAULT_UNIT)

    data_file_path = Path(data_file_raw)
    if not data_file_path.is_absolute():
        if base_path is None:
            base_path = Path.cwd()
        data_file_path = (base_path / data_file_path).resolve()

    return ConfigSettings(
        data_file=data_file_path,
        business_name=business_name,
        schema_version=schema_version,
        allow_overdraft=allow_overdraft,
        direct_locations=direct_locations,
        default_unit=default_unit,
    )


def open_workbook(data_file: Path) -> Workbook:
    """Open the ledger workbook and return a live ``openpyxl`` workbook.

    Args:
        data_file (Path): Filesystem path to the workbook file.

    Returns:
        Workbook: ``openpyxl`` workbook instance backed by the provided file.

    Raises:
        FileNotFoundError: If ``data_file`` does not exist after expansion and
            resolution.
    """

    data_file = Path(data_file).expanduser().resolve()
    if not data_file.exists():
        raise FileNotFoundError(f"Workbook not found: {data_file}")

    return openpyxl.load_workbook(data_file)


def save_workbook(workbook: Workbook, destination: Path) -> None:
    """Persist the workbook to disk, creating parent directories on demand."""

    dest = Path(destination).expanduser().resolve()
    dest.parent.mkdir(parents=True, exist_ok=True)
    workbook.save(dest)


def refresh_workbook(data_file: Path) -> Workbook:
    """Reload the workbook from disk, discarding any unsaved in-memory changes."""

    return open_workbook(data_file)


def _sheet(workbook: Workbook, kind: SheetName) -> Worksheet:
    return workbook[kind.value]


def _header_map(sheet: Worksheet) -> Dict[Any, int]:
    return {cell.value: idx + 1 for idx, cell in enumerate(sheet[1])}


def _next_row(sheet: Worksheet) -> int:
    """Return the first row index after the last non-empty row."""

    row_idx = sheet.max_row
    while row_idx > 1:
        values = [cell.value for cell in sheet[row_idx]]
        if any(value is not None for value in values):
            break
        row_idx -= 1
    return row_idx + 1


def _write_row(sheet: Worksheet, row_idx: int, values: Sequence[object]) -> None:
    for col_idx, value in enumerate(values, start=1):
        sheet.cell(row=row_idx, column=col_idx, value=value)


def serialize_record(kind: SheetName, record: Any) -> List[object]:
    """Convert a row dataclass into its worksheet column ordering.

    Args:
        kind (SheetName): Sheet the record belongs to.
        record: Dataclass instance matching ``SHEET_SCHEMAS[kind].row_type``.

    Returns:
        list[object]: Cell values in header order. Decimals are kept as
            :class:`~decimal.Decimal` so precision survives until save.

    Raises:
        TypeError: If ``record`` is not of the row type registered for
            ``kind``.
    """

    schema = SHEET_SCHEMAS[kind]
    if not isinstance(record, schema.row_type):
        raise TypeError(
            f"Expected {schema.row_type.__name__} for sheet '{kind.value}', got {type(record).__name__}"
        )
    return [getattr(record, column.field) for column in schema.columns]


def deserialize_record(kind: SheetName, raw_row: Sequence[object]) -> Any:
    """Convert a raw worksheet row into the row dataclass for ``kind``.

    Numeric money columns become :class:`~decimal.Decimal`, quantity columns
    become ``int``, and blank optional text columns become ``None``. Rows that
    are shorter than the header (trailing blanks trimmed by Excel) are padded.
    """

    schema = SHEET_SCHEMAS[kind]
    padded = list(raw_row) + [None] * (len(schema.columns) - len(raw_row))
    values = {
        column.field: column.reader(raw)
        for column, raw in zip(schema.columns, padded)
    }
    return schema.row_type(**values)


def iter_records(workbook: Workbook, kind: SheetName) -> Iterable[Any]:
    """Stream typed records from the worksheet that owns ``kind``.

    The generator skips the header row and rows whose cells are all ``None``.

    Args:
        workbook (Workbook): Workbook containing the sheet.
        kind (SheetName): Record kind to read.

    Yields:
        Row dataclass instances in sheet order.
    """

    sheet = _sheet(workbook, kind)
    for raw in sheet.iter_rows(min_row=2, values_only=True):
        if any(cell is not None for cell in raw):
            yield deserialize_record(kind, raw)


def locate_row(workbook: Workbook, sheet_name: str, key_column: str, key_value: str) -> Optional[int]:
    """Find a row by matching a key value within the specified worksheet.

    Args:
        workbook (Workbook): Workbook providing access to ``sheet_name``.
        sheet_name (str): Name of the worksheet to search.
        key_column (str): Header title identifying the lookup column.
        key_value (str): Value to match within the key column.

    Returns:
        int | None: 1-based Excel row index when a match is found, otherwise
            ``None``.

    Raises:
        KeyError: If ``key_column`` is not present in the worksheet header.
    """

    sheet = workbook[sheet_name]
    header_map = _header_map(sheet)
    if key_column not in header_map:
        raise KeyError(f"Unknown column: {key_column}")

    key_col_index = header_map[key_column]

    for row_idx, row in enumerate(sheet.iter_rows(min_row=2, values_only=True), start=2):
        if len(row) < key_col_index:
            continue
        cell_value = row[key_col_index - 1]
        if cell_value is not None and str(cell_value) == key_value:
            return row_idx

    return None


def create_record(workbook: Workbook, kind: SheetName, record: Any) -> str:
    """Append ``record`` to the sheet for ``kind`` and return its key.

    Raises:
        ValueError: If a row with the same key already exists.
    """

    schema = SHEET_SCHEMAS[kind]
    key = str(getattr(record, schema.key_field))
    if locate_row(workbook, kind.value, schema.key_header, key) is not None:
        raise ValueError(f"Duplicate {kind.value} key: {key}")

    sheet = _sheet(workbook, kind)
    _write_row(sheet, _next_row(sheet), serialize_record(kind, record))
    return key


def update_record(workbook: Workbook, kind: SheetName, key: str, *, field_values: Mapping[str, Any]) -> None:
    """Update selected fields of an existing record in place.

    ``field_values`` is keyed by row dataclass field name. Only the listed
    fields are written; other columns stay untouched.

    Raises:
        KeyError: If the record or any referenced field cannot be found.
    """

    schema = SHEET_SCHEMAS[kind]
    row_index = locate_row(workbook, kind.value, schema.key_header, key)
    if row_index is None:
        raise KeyError(f"{kind.value} record not found: {key}")

    columns_by_field = {
        column.field: idx for idx, column in enumerate(schema.columns, start=1)
    }
    sheet = _sheet(workbook, kind)
    for field_name, value in field_values.items():
        if field_name not in columns_by_field:
            raise KeyError(f"Unknown {kind.value} field: {field_name}")
        sheet.cell(row=row_index, column=columns_by_field[field_name], value=value)


def delete_record(workbook: Workbook, kind: SheetName, key: str) -> None:
    """Remove the row holding ``key`` from the sheet for ``kind``.

    Raises:
        KeyError: If no row carries ``key``.
    """

    schema = SHEET_SCHEMAS[kind]
    row_index = locate_row(workbook, kind.value, schema.key_header, key)
    if row_index is None:
        raise KeyError(f"{kind.value} record not found: {key}")
    _sheet(workbook, kind).delete_rows(row_index)


def read_record(workbook: Workbook, kind: SheetName, key: str) -> Any:
    """Read one record straight from the worksheet, bypassing any cache.

    Raises:
        KeyError: If no row carries ``key``.
    """

    schema = SHEET_SCHEMAS[kind]
    row_index = locate_row(workbook, kind.value, schema.key_header, key)
    if row_index is None:
        raise KeyError(f"{kind.value} record not found: {key}")
    sheet = _sheet(workbook, kind)
    raw = [cell.value for cell in sheet[row_index]]
    return deserialize_record(kind, raw)


def read_aggregate(workbook: Workbook, kind: SheetName, key: str) -> Any:
    """Return the current snapshot of a Customer, Account, or Stock row.

    Aggregates are always read from the worksheet so the value reflects the
    latest committed unit.

    Raises:
        ValueError: If ``kind`` is not an aggregate sheet.
        KeyError: If no row carries ``key``.
    """

    if kind not in AGGREGATE_SHEETS:
        raise ValueError(f"{kind.value} does not hold aggregates")
    return read_record(workbook, kind, key)


def _restore_sheet(sheet: Worksheet, rows: Sequence[Tuple[object, ...]]) -> None:
    if sheet.max_row >= 2:
        sheet.delete_rows(2, sheet.max_row - 1)
    for row_idx, values in enumerate(rows, start=2):
        _write_row(sheet, row_idx, values)


@contextmanager
def atomic(workbook: Workbook, kinds: Iterable[SheetName]) -> Iterator[None]:
    """Snapshot the listed sheets and restore them if the block raises.

    Only data rows are captured; header rows are never rewritten. The
    exception is re-raised after the restore so callers still see the
    original failure.
    """

    snapshots: Dict[SheetName, List[Tuple[object, ...]]] = {}
    for kind in kinds:
        sheet = _sheet(workbook, kind)
        snapshots[kind] = [tuple(row) for row in sheet.iter_rows(min_row=2, values_only=True)]
    try:
        yield
    except Exception:
        for kind, rows in snapshots.items():
            _restore_sheet(_sheet(workbook, kind), rows)
        log.warning(
            "Rolled back partial write on sheets: %s",
            ", ".join(kind.value for kind in snapshots),
        )
        raise


def _apply_op(workbook: Workbook, op: WriteOp) -> None:
    if op.action == "create":
        create_record(workbook, op.kind, op.record)
    elif op.action == "update":
        update_record(workbook, op.kind, str(op.key), field_values=op.field_values or {})
    elif op.action == "delete":
        delete_record(workbook, op.kind, str(op.key))
    else:
        raise ValueError(f"Unsupported write action: {op.action}")


def commit_unit(workbook: Workbook, operations: Sequence[WriteOp]) -> None:
    """Apply ``operations`` in order as a single all-or-nothing unit.

    Args:
        workbook (Workbook): Workbook to mutate.
        operations (Sequence[WriteOp]): Record writes to apply.

    Raises:
        KeyError: If an update or delete targets a missing record. The sheets
            touched by the unit are restored before the error propagates.
        ValueError: If a create collides with an existing key.
    """

    if not operations:
        return
    kinds = list(dict.fromkeys(op.kind for op in operations))
    with atomic(workbook, kinds):
        for op in operations:
            _apply_op(workbook, op)
    log.debug("Committed unit of %d operations on %s", len(operations), [k.value for k in kinds])


def _creates(operations: Sequence[WriteOp], kind: SheetName) -> List[Any]:
    return [op.record for op in operations if op.action == "create" and op.kind == kind]


def record_sale_with_side_effects(workbook: Workbook, operations: Sequence[WriteOp]) -> None:
    """Commit a sale with its balance update and stock or purchase-card effects.

    Raises:
        ValueError: If the unit does not create exactly one sale transaction.
    """

    created = _creates(operations, SheetName.TRANSACTIONS)
    if len(created) != 1 or created[0].transaction_type != TransactionType.SALE.value:
        raise ValueError("A sale unit must create exactly one sale transaction")
    commit_unit(workbook, operations)


def record_payment_with_side_effects(workbook: Workbook, operations: Sequence[WriteOp]) -> None:
    """Commit a customer payment together with its account credit.

    Raises:
        ValueError: If the unit does not pair one payment transaction with one
            linked account entry.
    """

    transactions = _creates(operations, SheetName.TRANSACTIONS)
    entries = _creates(operations, SheetName.ACCOUNT_TRANSACTIONS)
    if len(transactions) != 1 or len(entries) != 1:
        raise ValueError("A payment unit must create one transaction and one account entry")
    if entries[0].linked_transaction_id != transactions[0].transaction_id:
        raise ValueError("Payment account entry is not linked to its transaction")
    if entries[0].entry_type != AccountTransactionType.PAYMENT.value:
        raise ValueError("Payment account entry must be of type 'payment'")
    commit_unit(workbook, operations)


def record_transfer_pair(workbook: Workbook, operations: Sequence[WriteOp]) -> None:
    """Commit the two legs of a fund transfer.

    Raises:
        ValueError: If the unit does not create two account entries that
            reference each other as transfer-out and transfer-in.
    """

    entries = _creates(operations, SheetName.ACCOUNT_TRANSACTIONS)
    types = sorted(entry.entry_type for entry in entries)
    expected = sorted([AccountTransactionType.TRANSFER_IN.value, AccountTransactionType.TRANSFER_OUT.value])
    if len(entries) != 2 or types != expected:
        raise ValueError("A transfer unit must create one transfer-out and one transfer-in entry")
    first, second = entries
    if first.linked_entry_id != second.entry_id or second.linked_entry_id != first.entry_id:
        raise ValueError("Transfer legs must reference each other")
    commit_unit(workbook, operations)


def record_stock_transfer_pair(workbook: Workbook, operations: Sequence[WriteOp]) -> None:
    """Commit the deduction and addition legs of a stock transfer.

    Raises:
        ValueError: If the unit does not create two linked transfer events
            whose quantity changes cancel out.
    """

    events = _creates(operations, SheetName.STOCK_EVENTS)
    if len(events) != 2 or any(event.event_type != StockEventType.TRANSFER.value for event in events):
        raise ValueError("A stock transfer unit must create exactly two transfer events")
    first, second = events
    if first.linked_event_id != second.event_id or second.linked_event_id != first.event_id:
        raise ValueError("Stock transfer legs must reference each other")
    if first.quantity_change + second.quantity_change != 0:
        raise ValueError("Stock transfer legs must cancel out")
    commit_unit(workbook, operations)

