"""Command-line entry points for the Trade Ledger toolkit.

All orchestration in this module is limited to argparse wiring, translating
command-line arguments into the command objects consumed by the ledgers, and
printing results. Keeping the CLI thin ensures the same parser configuration
can be reused by tests, scripts, or any alternative front-end.
"""

from __future__ import annotations

import argparse
from dataclasses import dataclass, replace
from datetime import date
from pathlib import Path
from typing import Any, Callable, Dict, Iterable, Mapping, MutableMapping, Optional, Sequence

from . import (
    account_ledger,
    core_logic,
    customer_ledger,
    exporter,
    log,
    notes,
    projections,
    purchases,
    reconciliation,
    reminders,
    stock_ledger,
)
from .constants import DEFAULT_STOCK_THRESHOLD, ReminderStatus


@dataclass(frozen=True)
class CommandSpec:
    """Describe how a CLI sub-command is configured and executed."""

    name: str
    help_text: str
    register: Callable[[argparse._SubParsersAction[argparse.ArgumentParser]], argparse.ArgumentParser]
    execute: Callable[[core_logic.RuntimeContext, argparse.Namespace], int]
    mutates: bool = True


DELETE_KINDS = ("transaction", "account-entry", "stock-event", "purchase", "reminder", "note", "product")


def build_parser() -> argparse.ArgumentParser:
    """Construct the top-level CLI argument parser."""
    parser = argparse.ArgumentParser(
        prog="trade-ledger",
        description="Command-line tools for the Trade Ledger workbook.",
    )
    parser.add_argument(
        "--config",
        type=Path,
        default=None,
        help="Optional path to config.ini (defaults to a search upward from the working directory).",
    )
    return parser


def configure_subcommands(
    parser: argparse.ArgumentParser,
) -> Mapping[str, CommandSpec]:
    """Wire all CLI sub-commands onto the supplied parser."""
    subparsers = parser.add_subparsers(dest="command", required=True, title="commands")
    write_specs = register_write_commands(subparsers)
    read_specs = register_read_commands(subparsers)
    return build_command_table([*write_specs.values(), *read_specs.values()])


def _spec(
    name: str,
    help_text: str,
    arguments: Callable[[argparse.ArgumentParser], None],
    execute: Callable[[core_logic.RuntimeContext, argparse.Namespace], int],
) -> CommandSpec:
    def registrar(action: argparse._SubParsersAction[argparse.ArgumentParser]) -> argparse.ArgumentParser:
        parser = action.add_parser(name, help=help_text)
        arguments(parser)
        parser.set_defaults(command=name)
        return parser

    return CommandSpec(name=name, help_text=help_text, register=registrar, execute=execute)


def _add_date(parser: argparse.ArgumentParser, flag: str = "--date", help_text: str = "ISO date (defaults to today).") -> None:
    parser.add_argument(flag, type=date.fromisoformat, default=None, help=help_text)


def _add_range(parser: argparse.ArgumentParser) -> None:
    _add_date(parser, "--start", "Inclusive ISO start date.")
    _add_date(parser, "--end", "Inclusive ISO end date.")


def register_write_commands(
    subparsers: argparse._SubParsersAction[argparse.ArgumentParser],
) -> Dict[str, CommandSpec]:
    """Declare mutating CLI commands such as sales and transfers."""
    specs = {
        "add-customer": register_add_customer_command(),
        "add-account": register_add_account_command(),
        "add-stock": register_add_stock_command(),
        "add-product": register_add_product_command(),
        "sale": register_sale_command(),
        "payment": register_payment_command(),
        "discount": register_discount_command(),
        "load-stock": register_load_stock_command(),
        "transfer-stock": register_transfer_stock_command(),
        "dump-stock": register_dump_stock_command(),
        "add-funds": register_funds_command("add-funds", "Credit funds to an account.", run_add_funds),
        "remove-funds": register_funds_command("remove-funds", "Debit funds from an account.", run_remove_funds),
        "transfer-funds": register_transfer_funds_command(),
        "expense": register_expense_command(),
        "purchase": register_purchase_command(),
        "reminder": register_reminder_command(),
        "complete-reminder": register_complete_reminder_command(),
        "delete": register_delete_command(),
        "edit-sale": register_edit_sale_command(),
        "edit-payment": register_edit_payment_command(),
        "edit-entry": register_edit_entry_command(),
        "edit-stock-event": register_edit_stock_event_command(),
        "edit-discount": register_edit_discount_command(),
        "edit-purchase": register_edit_purchase_command(),
        "update-notes": register_update_notes_command(),
        "update-customer": register_update_customer_command(),
        "set-threshold": register_set_threshold_command(),
        "remove-stock": register_remove_stock_command(),
        "update-reminder": register_update_reminder_command(),
        "note": register_note_command(),
        "update-note": register_update_note_command(),
    }
    for spec in specs.values():
        spec.register(subparsers)
    return specs


def register_read_commands(
    subparsers: argparse._SubParsersAction[argparse.ArgumentParser],
) -> Dict[str, CommandSpec]:
    """Declare read-only CLI commands such as statements and reports."""
    specs = {
        "customers": register_customers_command(),
        "accounts": register_accounts_command(),
        "stock": register_stock_command(),
        "statement": register_statement_command(),
        "fund-log": register_fund_log_command(),
        "purchases": register_purchases_command(),
        "reminders": register_reminders_command(),
        "notes": register_notes_command(),
        "products": register_products_command(),
        "report": register_report_command(),
        "reconcile": register_reconcile_command(),
        "export": register_export_command(),
    }
    specs = {name: replace(spec, mutates=False) for name, spec in specs.items()}
    for spec in specs.values():
        spec.register(subparsers)
    return specs


def register_add_customer_command() -> CommandSpec:
    """Register the parser and executor for ``add-customer``."""

    def arguments(parser: argparse.ArgumentParser) -> None:
        parser.add_argument("--name", required=True)
        parser.add_argument("--customer-id", default=None)
        parser.add_argument("--phone", default=None)
        parser.add_argument("--category", default=None)
        parser.add_argument("--opening-balance", default="0")

    return _spec("add-customer", "Register a customer in the Customers sheet.", arguments, run_add_customer)


def register_add_account_command() -> CommandSpec:
    """Register the parser and executor for ``add-account``."""

    def arguments(parser: argparse.ArgumentParser) -> None:
        parser.add_argument("--name", required=True)
        parser.add_argument("--account-id", default=None)
        parser.add_argument("--opening-balance", default="0")

    return _spec("add-account", "Register a cash account.", arguments, run_add_account)


def register_add_stock_command() -> CommandSpec:
    """Register the parser and executor for ``add-stock``."""

    def arguments(parser: argparse.ArgumentParser) -> None:
        parser.add_argument("--location", required=True)
        parser.add_argument("--stock-id", default=None)
        parser.add_argument("--quantity", type=int, default=0)
        parser.add_argument("--threshold", type=int, default=DEFAULT_STOCK_THRESHOLD)
        parser.add_argument("--product-id", default=None)

    return _spec("add-stock", "Register a tracked stock location.", arguments, run_add_stock)


def register_add_product_command() -> CommandSpec:
    """Register the parser and executor for ``add-product``."""

    def arguments(parser: argparse.ArgumentParser) -> None:
        parser.add_argument("--product-id", required=True)
        parser.add_argument("--name", required=True)
        parser.add_argument("--category", default=None)

    return _spec("add-product", "Register a product or supplier brand.", arguments, run_add_product)


def _sale_arguments(parser: argparse.ArgumentParser) -> None:
    parser.add_argument("--customer-id", required=True)
    parser.add_argument("--quantity", type=int, required=True)
    parser.add_argument("--unit-price", required=True)
    parser.add_argument("--location", default=None, help="Stock id, location name, or a direct location.")
    parser.add_argument("--product-id", default=None)
    parser.add_argument("--sub-category", default=None)
    parser.add_argument("--unit", default=None)
    _add_date(parser)
    parser.add_argument("--notes", default=None)


def _payment_arguments(parser: argparse.ArgumentParser) -> None:
    parser.add_argument("--customer-id", required=True)
    parser.add_argument("--amount", required=True)
    parser.add_argument("--account-id", required=True)
    _add_date(parser)
    parser.add_argument("--notes", default=None)


def register_sale_command() -> CommandSpec:
    """Register the parser and executor for ``sale``."""
    return _spec("sale", "Record a credit sale to a customer.", _sale_arguments, run_sale)


def register_payment_command() -> CommandSpec:
    """Register the parser and executor for ``payment``."""
    return _spec("payment", "Record a customer payment into an account.", _payment_arguments, run_payment)


def _discount_arguments(parser: argparse.ArgumentParser) -> None:
    parser.add_argument("--customer-id", required=True)
    value = parser.add_mutually_exclusive_group(required=True)
    value.add_argument("--amount", default=None)
    value.add_argument("--percent", default=None)
    parser.add_argument("--category", default=None)
    _add_date(parser)
    parser.add_argument("--notes", default=None)


def register_discount_command() -> CommandSpec:
    """Register the parser and executor for ``discount``."""
    return _spec("discount", "Forgive part of a customer's balance (capped at 20%).", _discount_arguments, run_discount)


def register_load_stock_command() -> CommandSpec:
    """Register the parser and executor for ``load-stock``."""

    def arguments(parser: argparse.ArgumentParser) -> None:
        parser.add_argument("--stock-id", required=True)
        parser.add_argument("--quantity", type=int, required=True)
        parser.add_argument("--product-id", default=None)
        parser.add_argument("--sub-category", default=None)
        _add_date(parser)
        parser.add_argument("--notes", default=None)

    return _spec("load-stock", "Receive units into a tracked location.", arguments, run_load_stock)


def register_transfer_stock_command() -> CommandSpec:
    """Register the parser and executor for ``transfer-stock``."""

    def arguments(parser: argparse.ArgumentParser) -> None:
        parser.add_argument("--from-stock-id", required=True)
        parser.add_argument("--to-stock-id", required=True)
        parser.add_argument("--quantity", type=int, required=True)
        _add_date(parser)
        parser.add_argument("--notes", default=None)

    return _spec("transfer-stock", "Move units between two tracked locations.", arguments, run_transfer_stock)


def register_dump_stock_command() -> CommandSpec:
    """Register the parser and executor for ``dump-stock``."""

    def arguments(parser: argparse.ArgumentParser) -> None:
        parser.add_argument("--stock-id", required=True, help="Destination location.")
        parser.add_argument("--quantity", type=int, required=True)
        parser.add_argument("--product-id", default=None)
        parser.add_argument("--sub-category", default=None)
        parser.add_argument("--source-location", default=None)
        _add_date(parser)
        parser.add_argument("--notes", default=None)

    return _spec("dump-stock", "Dump supplier goods into a tracked location.", arguments, run_dump_stock)


def register_funds_command(
    name: str,
    help_text: str,
    execute: Callable[[core_logic.RuntimeContext, argparse.Namespace], int],
) -> CommandSpec:
    """Register ``add-funds`` or ``remove-funds``."""

    def arguments(parser: argparse.ArgumentParser) -> None:
        parser.add_argument("--account-id", required=True)
        parser.add_argument("--amount", required=True)
        parser.add_argument("--description", default=None)
        _add_date(parser)
        parser.add_argument("--notes", default=None)

    return _spec(name, help_text, arguments, execute)


def register_transfer_funds_command() -> CommandSpec:
    """Register the parser and executor for ``transfer-funds``."""

    def arguments(parser: argparse.ArgumentParser) -> None:
        parser.add_argument("--from-account-id", required=True)
        parser.add_argument("--to-account-id", required=True)
        parser.add_argument("--amount", required=True)
        parser.add_argument("--description", default=None)
        _add_date(parser)
        parser.add_argument("--notes", default=None)

    return _spec("transfer-funds", "Move funds between two accounts.", arguments, run_transfer_funds)


def register_expense_command() -> CommandSpec:
    """Register the parser and executor for ``expense``."""

    def arguments(parser: argparse.ArgumentParser) -> None:
        parser.add_argument("--account-id", required=True)
        parser.add_argument("--amount", required=True)
        parser.add_argument("--category", required=True)
        parser.add_argument("--description", default=None)
        _add_date(parser)
        parser.add_argument("--notes", default=None)

    return _spec("expense", "Record a business expense paid from an account.", arguments, run_expense)


def register_purchase_command() -> CommandSpec:
    """Register the parser and executor for ``purchase``."""

    def arguments(parser: argparse.ArgumentParser) -> None:
        parser.add_argument("--product-id", required=True)
        parser.add_argument("--quantity", type=int, required=True)
        parser.add_argument("--unit-price", required=True)
        parser.add_argument("--supplier-id", default=None)
        parser.add_argument("--unit", default=None)
        parser.add_argument("--original-price", default=None)
        parser.add_argument("--category", default=None)
        parser.add_argument("--account-id", default=None)
        _add_date(parser)
        parser.add_argument("--notes", default=None)

    return _spec("purchase", "Record goods bought from a supplier.", arguments, run_purchase)


def register_reminder_command() -> CommandSpec:
    """Register the parser and executor for ``reminder``."""

    def arguments(parser: argparse.ArgumentParser) -> None:
        parser.add_argument("--customer-id", required=True)
        parser.add_argument("--amount", required=True)
        parser.add_argument("--due-date", type=date.fromisoformat, required=True)
        parser.add_argument("--notes", default=None)

    return _spec("reminder", "Schedule a payment reminder.", arguments, run_reminder)


def register_complete_reminder_command() -> CommandSpec:
    """Register the parser and executor for ``complete-reminder``."""

    def arguments(parser: argparse.ArgumentParser) -> None:
        parser.add_argument("--reminder-id", required=True)

    return _spec("complete-reminder", "Mark a reminder as completed.", arguments, run_complete_reminder)


def register_delete_command() -> CommandSpec:
    """Register the parser and executor for ``delete``."""

    def arguments(parser: argparse.ArgumentParser) -> None:
        parser.add_argument("--kind", choices=DELETE_KINDS, required=True)
        parser.add_argument("--id", dest="record_id", required=True)

    return _spec("delete", "Delete a record and undo its effects.", arguments, run_delete)


def register_edit_sale_command() -> CommandSpec:
    """Register the parser and executor for ``edit-sale``."""

    def arguments(parser: argparse.ArgumentParser) -> None:
        parser.add_argument("--transaction-id", required=True)
        _sale_arguments(parser)

    return _spec("edit-sale", "Replace a sale with corrected values.", arguments, run_edit_sale)


def register_edit_payment_command() -> CommandSpec:
    """Register the parser and executor for ``edit-payment``."""

    def arguments(parser: argparse.ArgumentParser) -> None:
        parser.add_argument("--transaction-id", required=True)
        _payment_arguments(parser)

    return _spec("edit-payment", "Replace a payment with corrected values.", arguments, run_edit_payment)


def register_edit_entry_command() -> CommandSpec:
    """Register the parser and executor for ``edit-entry``."""

    def arguments(parser: argparse.ArgumentParser) -> None:
        parser.add_argument("--entry-id", required=True)
        parser.add_argument("--amount", default=None)
        parser.add_argument("--description", default=None)
        parser.add_argument("--category", default=None)
        _add_date(parser, help_text="New ISO date (keeps the stored date when omitted).")
        parser.add_argument("--notes", default=None)

    return _spec("edit-entry", "Correct an account entry.", arguments, run_edit_entry)


def register_edit_stock_event_command() -> CommandSpec:
    """Register the parser and executor for ``edit-stock-event``."""

    def arguments(parser: argparse.ArgumentParser) -> None:
        parser.add_argument("--event-id", required=True)
        parser.add_argument("--quantity", type=int, default=None)
        parser.add_argument("--sub-category", default=None)
        _add_date(parser, help_text="New ISO date (keeps the stored date when omitted).")
        parser.add_argument("--notes", default=None)

    return _spec("edit-stock-event", "Correct a load, transfer, or dump.", arguments, run_edit_stock_event)


def register_edit_discount_command() -> CommandSpec:
    """Register the parser and executor for ``edit-discount``."""

    def arguments(parser: argparse.ArgumentParser) -> None:
        parser.add_argument("--transaction-id", required=True)
        _discount_arguments(parser)

    return _spec("edit-discount", "Replace a discount with corrected values.", arguments, run_edit_discount)


def register_edit_purchase_command() -> CommandSpec:
    """Register the parser and executor for ``edit-purchase``."""

    def arguments(parser: argparse.ArgumentParser) -> None:
        parser.add_argument("--purchase-id", required=True)
        parser.add_argument("--quantity", type=int, default=None)
        parser.add_argument("--unit-price", default=None)
        parser.add_argument("--original-price", default=None)
        parser.add_argument("--category", default=None)
        _add_date(parser, help_text="New ISO date (keeps the stored date when omitted).")
        parser.add_argument("--notes", default=None)

    return _spec("edit-purchase", "Correct a purchase or dump card.", arguments, run_edit_purchase)


def register_update_notes_command() -> CommandSpec:
    """Register the parser and executor for ``update-notes``."""

    def arguments(parser: argparse.ArgumentParser) -> None:
        parser.add_argument("--transaction-id", required=True)
        parser.add_argument("--notes", required=True, help="Replacement notes; pass an empty string to clear.")

    return _spec("update-notes", "Change the notes of a customer transaction.", arguments, run_update_notes)


def register_update_customer_command() -> CommandSpec:
    """Register the parser and executor for ``update-customer``."""

    def arguments(parser: argparse.ArgumentParser) -> None:
        parser.add_argument("--customer-id", required=True)
        parser.add_argument("--name", default=None)
        parser.add_argument("--phone", default=None)
        parser.add_argument("--category", default=None)

    return _spec("update-customer", "Edit a customer's contact details.", arguments, run_update_customer)


def register_set_threshold_command() -> CommandSpec:
    """Register the parser and executor for ``set-threshold``."""

    def arguments(parser: argparse.ArgumentParser) -> None:
        parser.add_argument("--stock-id", required=True)
        parser.add_argument("--threshold", type=int, required=True)

    return _spec("set-threshold", "Change the low-stock threshold of a location.", arguments, run_set_threshold)


def register_remove_stock_command() -> CommandSpec:
    """Register the parser and executor for ``remove-stock``."""

    def arguments(parser: argparse.ArgumentParser) -> None:
        parser.add_argument("--stock-id", required=True)

    return _spec("remove-stock", "Remove a location that has no history.", arguments, run_remove_stock)


def register_update_reminder_command() -> CommandSpec:
    """Register the parser and executor for ``update-reminder``."""

    def arguments(parser: argparse.ArgumentParser) -> None:
        parser.add_argument("--reminder-id", required=True)
        parser.add_argument("--amount", default=None)
        parser.add_argument("--due-date", type=date.fromisoformat, default=None)
        parser.add_argument("--notes", default=None)

    return _spec("update-reminder", "Change the amount, due date, or notes of a reminder.", arguments, run_update_reminder)


def register_note_command() -> CommandSpec:
    """Register the parser and executor for ``note``."""

    def arguments(parser: argparse.ArgumentParser) -> None:
        parser.add_argument("--title", required=True)
        parser.add_argument("--content", default=None)

    return _spec("note", "Pin a note to the notes board.", arguments, run_note)


def register_update_note_command() -> CommandSpec:
    """Register the parser and executor for ``update-note``."""

    def arguments(parser: argparse.ArgumentParser) -> None:
        parser.add_argument("--note-id", required=True)
        parser.add_argument("--title", default=None)
        parser.add_argument("--content", default=None)

    return _spec("update-note", "Change the title or content of a note.", arguments, run_update_note)


def register_customers_command() -> CommandSpec:
    """Register the parser and executor for ``customers``."""
    return _spec("customers", "List customers and balances.", lambda parser: None, run_customers)


def register_accounts_command() -> CommandSpec:
    """Register the parser and executor for ``accounts``."""
    return _spec("accounts", "List accounts and balances.", lambda parser: None, run_accounts)


def register_stock_command() -> CommandSpec:
    """Register the parser and executor for ``stock``."""

    def arguments(parser: argparse.ArgumentParser) -> None:
        parser.add_argument("--low", action="store_true", help="Only show locations below threshold.")

    return _spec("stock", "Show stock per location with status.", arguments, run_stock)


def register_statement_command() -> CommandSpec:
    """Register the parser and executor for ``statement``."""

    def arguments(parser: argparse.ArgumentParser) -> None:
        parser.add_argument("--customer-id", required=True)
        _add_range(parser)

    return _spec("statement", "Print a customer statement with running balance.", arguments, run_statement)


def register_fund_log_command() -> CommandSpec:
    """Register the parser and executor for ``fund-log``."""

    def arguments(parser: argparse.ArgumentParser) -> None:
        parser.add_argument("--account-id", default=None)
        _add_range(parser)

    return _spec("fund-log", "List add, remove, and transfer entries.", arguments, run_fund_log)


def register_purchases_command() -> CommandSpec:
    """Register the parser and executor for ``purchases``."""

    def arguments(parser: argparse.ArgumentParser) -> None:
        parser.add_argument("--product-id", default=None)
        parser.add_argument("--monetary-only", action="store_true")
        _add_range(parser)

    return _spec("purchases", "List purchases and zero-cost cards.", arguments, run_purchases)


def register_reminders_command() -> CommandSpec:
    """Register the parser and executor for ``reminders``."""

    def arguments(parser: argparse.ArgumentParser) -> None:
        parser.add_argument("--status", choices=[status.value for status in ReminderStatus], default=None)
        parser.add_argument("--customer-id", default=None)

    return _spec("reminders", "List payment reminders.", arguments, run_reminders)


def register_notes_command() -> CommandSpec:
    """Register the parser and executor for ``notes``."""
    return _spec("notes", "List notes, most recently updated first.", lambda parser: None, run_notes)


def register_products_command() -> CommandSpec:
    """Register the parser and executor for ``products``."""
    return _spec("products", "List the product catalogue.", lambda parser: None, run_products)


def register_report_command() -> CommandSpec:
    """Register the parser and executor for ``report``."""

    def arguments(parser: argparse.ArgumentParser) -> None:
        parser.add_argument("--name", choices=projections.report_names(), required=True)
        _add_range(parser)

    return _spec("report", "Run a date-ranged business report.", arguments, run_report)


def register_reconcile_command() -> CommandSpec:
    """Register the parser and executor for ``reconcile``."""
    return _spec("reconcile", "Recompute aggregates from history and list mismatches.", lambda parser: None, run_reconcile)


def register_export_command() -> CommandSpec:
    """Register the parser and executor for ``export``."""

    def arguments(parser: argparse.ArgumentParser) -> None:
        parser.add_argument("--name", choices=projections.report_names(), required=True)
        parser.add_argument("--output", type=Path, required=True)
        _add_range(parser)

    return _spec("export", "Export a report to an .xlsx file.", arguments, run_export)


def load_runtime_context(config_path: Optional[Path] = None) -> core_logic.RuntimeContext:
    """Resolve the runtime context for CLI operations."""
    context = core_logic.load_runtime_context(config_path)
    core_logic.ensure_schema_version(context)
    return context


def dispatch_command(
    context: core_logic.RuntimeContext,
    args: argparse.Namespace,
    command_table: Mapping[str, CommandSpec],
) -> int:
    """Dispatch the parsed arguments to the configured executor."""
    if not hasattr(args, "command") or args.command is None:
        raise KeyError("No command specified")
    spec = command_table.get(args.command)
    if spec is None:
        raise KeyError(f"Unknown command: {args.command}")
    return spec.execute(context, args)


def build_command_table(
    specs: Iterable[CommandSpec],
) -> MutableMapping[str, CommandSpec]:
    """Build an index of command specifications keyed by command name."""
    table: Dict[str, CommandSpec] = {}
    for spec in specs:
        if spec.name in table:
            raise ValueError(f"Duplicate command name: {spec.name}")
        table[spec.name] = spec
    return table


def translate_sale(args: argparse.Namespace) -> customer_ledger.SaleCommand:
    """Translate CLI args into a sale command object."""
    return customer_ledger.SaleCommand(
        customer_id=args.customer_id,
        quantity=args.quantity,
        unit_price=core_logic.to_money(args.unit_price),
        location=args.location,
        product_id=args.product_id,
        sub_category=args.sub_category,
        unit=args.unit,
        date=args.date,
        notes=args.notes,
    )


def translate_payment(args: argparse.Namespace) -> customer_ledger.PaymentCommand:
    """Translate CLI args into a payment command object."""
    return customer_ledger.PaymentCommand(
        customer_id=args.customer_id,
        amount=core_logic.to_money(args.amount),
        account_id=args.account_id,
        date=args.date,
        notes=args.notes,
    )


def translate_discount(args: argparse.Namespace) -> customer_ledger.DiscountCommand:
    """Translate CLI args into a discount command object."""
    return customer_ledger.DiscountCommand(
        customer_id=args.customer_id,
        amount=core_logic.to_money(args.amount) if args.amount is not None else None,
        percent=core_logic.to_decimal(args.percent) if args.percent is not None else None,
        category=args.category,
        date=args.date,
        notes=args.notes,
    )


def translate_purchase(args: argparse.Namespace) -> purchases.PurchaseCommand:
    """Translate CLI args into a purchase command object."""
    return purchases.PurchaseCommand(
        product_id=args.product_id,
        quantity=args.quantity,
        unit_price=core_logic.to_money(args.unit_price),
        supplier_id=args.supplier_id,
        unit=args.unit,
        original_price=core_logic.to_money(args.original_price) if args.original_price is not None else None,
        category=args.category,
        account_id=args.account_id,
        date=args.date,
        notes=args.notes,
    )


def _print_rows(rows: Sequence[Mapping[str, Any]]) -> None:
    if not rows:
        print("(no rows)")
        return
    headers = list(rows[0].keys())
    print("\t".join(headers))
    for row in rows:
        print("\t".join("" if row.get(key) is None else str(row.get(key)) for key in headers))


def _print_record(prefix: str, record: Any) -> None:
    print(f"{prefix}: {record}")


def run_add_customer(context: core_logic.RuntimeContext, args: argparse.Namespace) -> int:
    """Execute the add-customer workflow."""
    customer = customer_ledger.add_customer(
        context,
        name=args.name,
        phone=args.phone,
        category=args.category,
        opening_balance=core_logic.to_money(args.opening_balance),
        customer_id=args.customer_id,
    )
    print(f"Customer {customer.customer_id} ({customer.name}) balance {customer.balance}")
    return 0


def run_add_account(context: core_logic.RuntimeContext, args: argparse.Namespace) -> int:
    """Execute the add-account workflow."""
    account = account_ledger.add_account(
        context,
        name=args.name,
        opening_balance=core_logic.to_money(args.opening_balance),
        account_id=args.account_id,
    )
    print(f"Account {account.account_id} ({account.name}) balance {account.balance}")
    return 0


def run_add_stock(context: core_logic.RuntimeContext, args: argparse.Namespace) -> int:
    """Execute the add-stock workflow."""
    stock = stock_ledger.add_stock_location(
        context,
        location=args.location,
        quantity=args.quantity,
        threshold=args.threshold,
        product_id=args.product_id,
        stock_id=args.stock_id,
    )
    print(f"Stock {stock.stock_id} ({stock.location}) quantity {stock.quantity}")
    return 0


def run_add_product(context: core_logic.RuntimeContext, args: argparse.Namespace) -> int:
    """Execute the add-product workflow."""
    product = core_logic.add_product(context, product_id=args.product_id, name=args.name, category=args.category)
    print(f"Product {product.product_id} ({product.name})")
    return 0


def run_sale(context: core_logic.RuntimeContext, args: argparse.Namespace) -> int:
    """Execute the sale workflow."""
    transaction = customer_ledger.apply_sale(context, translate_sale(args))
    balance = customer_ledger.customer_balance(context, transaction.customer_id)
    print(f"Sale {transaction.transaction_id} amount {transaction.amount}; balance {balance}")
    return 0


def run_payment(context: core_logic.RuntimeContext, args: argparse.Namespace) -> int:
    """Execute the payment workflow."""
    transaction = customer_ledger.apply_payment(context, translate_payment(args))
    balance = customer_ledger.customer_balance(context, transaction.customer_id)
    print(f"Payment {transaction.transaction_id} amount {-transaction.amount}; balance {balance}")
    return 0


def run_discount(context: core_logic.RuntimeContext, args: argparse.Namespace) -> int:
    """Execute the discount workflow."""
    transaction = customer_ledger.apply_discount(context, translate_discount(args))
    balance = customer_ledger.customer_balance(context, transaction.customer_id)
    print(f"Discount {transaction.transaction_id} amount {-transaction.amount}; balance {balance}")
    return 0


def run_load_stock(context: core_logic.RuntimeContext, args: argparse.Namespace) -> int:
    """Execute the load-stock workflow."""
    event = stock_ledger.load(
        context,
        stock_ledger.LoadStockCommand(
            stock_id=args.stock_id,
            quantity=args.quantity,
            product_id=args.product_id,
            sub_category=args.sub_category,
            date=args.date,
            notes=args.notes,
        ),
    )
    _print_record("Loaded", event.event_id)
    return 0


def run_transfer_stock(context: core_logic.RuntimeContext, args: argparse.Namespace) -> int:
    """Execute the transfer-stock workflow."""
    outgoing, incoming = stock_ledger.transfer(
        context,
        stock_ledger.TransferStockCommand(
            from_stock_id=args.from_stock_id,
            to_stock_id=args.to_stock_id,
            quantity=args.quantity,
            date=args.date,
            notes=args.notes,
        ),
    )
    print(f"Transfer {outgoing.event_id} -> {incoming.event_id}")
    return 0


def run_dump_stock(context: core_logic.RuntimeContext, args: argparse.Namespace) -> int:
    """Execute the dump-stock workflow."""
    event, purchase = stock_ledger.dump(
        context,
        stock_ledger.DumpStockCommand(
            stock_id=args.stock_id,
            quantity=args.quantity,
            product_id=args.product_id,
            sub_category=args.sub_category,
            source_location=args.source_location,
            date=args.date,
            notes=args.notes,
        ),
    )
    print(f"Dump {event.event_id} with card {purchase.purchase_id}")
    return 0


def run_add_funds(context: core_logic.RuntimeContext, args: argparse.Namespace) -> int:
    """Execute the add-funds workflow."""
    entry = account_ledger.add_funds(
        context,
        args.account_id,
        core_logic.to_money(args.amount),
        description=args.description,
        when=args.date,
        notes=args.notes,
    )
    _print_record("Entry", entry.entry_id)
    return 0


def run_remove_funds(context: core_logic.RuntimeContext, args: argparse.Namespace) -> int:
    """Execute the remove-funds workflow."""
    entry = account_ledger.remove_funds(
        context,
        args.account_id,
        core_logic.to_money(args.amount),
        description=args.description,
        when=args.date,
        notes=args.notes,
    )
    _print_record("Entry", entry.entry_id)
    return 0


def run_transfer_funds(context: core_logic.RuntimeContext, args: argparse.Namespace) -> int:
    """Execute the transfer-funds workflow."""
    outgoing, incoming = account_ledger.transfer_funds(
        context,
        args.from_account_id,
        args.to_account_id,
        core_logic.to_money(args.amount),
        description=args.description,
        when=args.date,
        notes=args.notes,
    )
    print(f"Transfer {outgoing.entry_id} -> {incoming.entry_id}")
    return 0


def run_expense(context: core_logic.RuntimeContext, args: argparse.Namespace) -> int:
    """Execute the expense workflow."""
    entry = account_ledger.debit_for_expense(
        context,
        args.account_id,
        core_logic.to_money(args.amount),
        args.category,
        description=args.description,
        when=args.date,
        notes=args.notes,
    )
    _print_record("Expense", entry.entry_id)
    return 0


def run_purchase(context: core_logic.RuntimeContext, args: argparse.Namespace) -> int:
    """Execute the purchase workflow."""
    purchase = purchases.record_purchase(context, translate_purchase(args))
    print(f"Purchase {purchase.purchase_id} total {purchase.total}")
    return 0


def run_reminder(context: core_logic.RuntimeContext, args: argparse.Namespace) -> int:
    """Execute the reminder workflow."""
    reminder = reminders.add_reminder(
        context,
        customer_id=args.customer_id,
        amount=core_logic.to_money(args.amount),
        due_date=args.due_date,
        notes=args.notes,
    )
    _print_record("Reminder", reminder.reminder_id)
    return 0


def run_complete_reminder(context: core_logic.RuntimeContext, args: argparse.Namespace) -> int:
    """Execute the complete-reminder workflow."""
    reminders.complete_reminder(context, args.reminder_id)
    _print_record("Completed", args.reminder_id)
    return 0


_DELETERS: Mapping[str, Callable[[core_logic.RuntimeContext, str], None]] = {
    "transaction": reconciliation.delete_transaction,
    "account-entry": reconciliation.delete_account_entry,
    "stock-event": reconciliation.delete_stock_event,
    "purchase": reconciliation.delete_purchase,
    "reminder": reminders.delete_reminder,
    "note": notes.delete_note,
    "product": core_logic.delete_product,
}


def run_delete(context: core_logic.RuntimeContext, args: argparse.Namespace) -> int:
    """Execute the delete workflow for the selected record kind."""
    _DELETERS[args.kind](context, args.record_id)
    print(f"Deleted {args.kind} {args.record_id}")
    return 0


def run_edit_sale(context: core_logic.RuntimeContext, args: argparse.Namespace) -> int:
    """Execute the edit-sale workflow."""
    transaction = reconciliation.edit_transaction(context, args.transaction_id, translate_sale(args))
    print(f"Sale {transaction.transaction_id} amount {transaction.amount}")
    return 0


def run_edit_payment(context: core_logic.RuntimeContext, args: argparse.Namespace) -> int:
    """Execute the edit-payment workflow."""
    transaction = reconciliation.edit_transaction(context, args.transaction_id, translate_payment(args))
    print(f"Payment {transaction.transaction_id} amount {-transaction.amount}")
    return 0


def run_edit_entry(context: core_logic.RuntimeContext, args: argparse.Namespace) -> int:
    """Execute the edit-entry workflow."""
    entry = reconciliation.edit_account_entry(
        context,
        args.entry_id,
        amount=core_logic.to_money(args.amount) if args.amount is not None else None,
        description=args.description,
        category=args.category,
        when=args.date,
        notes=args.notes,
    )
    print(f"Entry {entry.entry_id} amount {entry.amount}")
    return 0


def run_edit_stock_event(context: core_logic.RuntimeContext, args: argparse.Namespace) -> int:
    """Execute the edit-stock-event workflow."""
    event = reconciliation.edit_stock_event(
        context,
        args.event_id,
        quantity=args.quantity,
        sub_category=args.sub_category,
        when=args.date,
        notes=args.notes,
    )
    print(f"Event {event.event_id} change {event.quantity_change}")
    return 0


def run_edit_discount(context: core_logic.RuntimeContext, args: argparse.Namespace) -> int:
    """Execute the edit-discount workflow."""
    transaction = reconciliation.edit_transaction(context, args.transaction_id, translate_discount(args))
    print(f"Discount {transaction.transaction_id} amount {-transaction.amount}")
    return 0


def run_edit_purchase(context: core_logic.RuntimeContext, args: argparse.Namespace) -> int:
    """Execute the edit-purchase workflow."""
    purchase = reconciliation.edit_purchase(
        context,
        args.purchase_id,
        quantity=args.quantity,
        unit_price=core_logic.to_money(args.unit_price) if args.unit_price is not None else None,
        original_price=core_logic.to_money(args.original_price) if args.original_price is not None else None,
        category=args.category,
        when=args.date,
        notes=args.notes,
    )
    print(f"Purchase {purchase.purchase_id} total {purchase.total}")
    return 0


def run_update_notes(context: core_logic.RuntimeContext, args: argparse.Namespace) -> int:
    """Execute the update-notes workflow."""
    customer_ledger.update_notes(context, args.transaction_id, args.notes or None)
    _print_record("Updated notes", args.transaction_id)
    return 0


def run_update_customer(context: core_logic.RuntimeContext, args: argparse.Namespace) -> int:
    """Execute the update-customer workflow."""
    customer = customer_ledger.update_customer_details(
        context,
        args.customer_id,
        name=args.name,
        phone=args.phone,
        category=args.category,
    )
    print(f"Customer {customer.customer_id} ({customer.name})")
    return 0


def run_set_threshold(context: core_logic.RuntimeContext, args: argparse.Namespace) -> int:
    """Execute the set-threshold workflow."""
    stock = stock_ledger.set_threshold(context, args.stock_id, args.threshold)
    print(f"Stock {stock.stock_id} threshold {stock.threshold} ({stock_ledger.stock_status(stock).value})")
    return 0


def run_remove_stock(context: core_logic.RuntimeContext, args: argparse.Namespace) -> int:
    """Execute the remove-stock workflow."""
    stock_ledger.remove_stock_location(context, args.stock_id)
    _print_record("Removed", args.stock_id)
    return 0


def run_update_reminder(context: core_logic.RuntimeContext, args: argparse.Namespace) -> int:
    """Execute the update-reminder workflow."""
    reminder = reminders.update_reminder(
        context,
        args.reminder_id,
        amount=core_logic.to_money(args.amount) if args.amount is not None else None,
        due_date=args.due_date,
        notes=args.notes,
    )
    print(f"Reminder {reminder.reminder_id} amount {reminder.amount} due {reminder.due_date_iso}")
    return 0


def run_note(context: core_logic.RuntimeContext, args: argparse.Namespace) -> int:
    """Execute the note workflow."""
    note = notes.add_note(context, title=args.title, content=args.content)
    _print_record("Note", note.note_id)
    return 0


def run_update_note(context: core_logic.RuntimeContext, args: argparse.Namespace) -> int:
    """Execute the update-note workflow."""
    note = notes.update_note(context, args.note_id, title=args.title, content=args.content)
    _print_record("Note", note.note_id)
    return 0


def run_customers(context: core_logic.RuntimeContext, args: argparse.Namespace) -> int:
    """Execute the customers workflow."""
    _print_rows(
        [
            {"customer_id": row.customer_id, "name": row.name, "category": row.category, "balance": row.balance}
            for row in customer_ledger.list_customers(context)
        ]
    )
    return 0


def run_accounts(context: core_logic.RuntimeContext, args: argparse.Namespace) -> int:
    """Execute the accounts workflow."""
    _print_rows(
        [
            {"account_id": row.account_id, "name": row.name, "balance": row.balance}
            for row in account_ledger.list_accounts(context)
        ]
    )
    return 0


def run_stock(context: core_logic.RuntimeContext, args: argparse.Namespace) -> int:
    """Execute the stock workflow."""
    rows = projections.low_stock_report(context) if args.low else projections.stock_overview(context)
    _print_rows(rows)
    return 0


def run_statement(context: core_logic.RuntimeContext, args: argparse.Namespace) -> int:
    """Execute the statement workflow."""
    _print_rows(projections.customer_statement(context, args.customer_id, start=args.start, end=args.end))
    return 0


def run_fund_log(context: core_logic.RuntimeContext, args: argparse.Namespace) -> int:
    """Execute the fund-log workflow."""
    entries = projections.fund_log(context, account_id=args.account_id, start=args.start, end=args.end)
    _print_rows(
        [
            {
                "entry_id": entry.entry_id,
                "date": entry.date_iso,
                "account_id": entry.account_id,
                "type": entry.entry_type,
                "amount": entry.amount,
                "description": entry.description,
            }
            for entry in entries
        ]
    )
    return 0


def run_purchases(context: core_logic.RuntimeContext, args: argparse.Namespace) -> int:
    """Execute the purchases workflow."""
    rows = projections.query_purchases(
        context,
        start=args.start,
        end=args.end,
        product_id=args.product_id,
        include_cards=not args.monetary_only,
    )
    _print_rows(
        [
            {
                "purchase_id": row.purchase_id,
                "date": row.date_iso,
                "product_id": row.product_id,
                "quantity": row.quantity,
                "total": row.total,
                "origin": row.origin,
            }
            for row in rows
        ]
    )
    return 0


def run_reminders(context: core_logic.RuntimeContext, args: argparse.Namespace) -> int:
    """Execute the reminders workflow."""
    status = ReminderStatus(args.status) if args.status else None
    _print_rows(
        [
            {
                "reminder_id": row.reminder_id,
                "customer_id": row.customer_id,
                "amount": row.amount,
                "due_date": row.due_date_iso,
                "status": row.status,
            }
            for row in reminders.list_reminders(context, status=status, customer_id=args.customer_id)
        ]
    )
    return 0


def run_notes(context: core_logic.RuntimeContext, args: argparse.Namespace) -> int:
    """Execute the notes workflow."""
    _print_rows(
        [
            {"note_id": row.note_id, "title": row.title, "updated_at": row.updated_at, "content": row.content}
            for row in notes.list_notes(context)
        ]
    )
    return 0


def run_products(context: core_logic.RuntimeContext, args: argparse.Namespace) -> int:
    """Execute the products workflow."""
    _print_rows(
        [
            {"product_id": row.product_id, "name": row.name, "category": row.category}
            for row in core_logic.list_products(context)
        ]
    )
    return 0


def run_report(context: core_logic.RuntimeContext, args: argparse.Namespace) -> int:
    """Execute the report workflow."""
    result = projections.run_report(context, args.name, start=args.start, end=args.end)
    _print_rows(exporter.normalise_rows(result))
    return 0


def run_reconcile(context: core_logic.RuntimeContext, args: argparse.Namespace) -> int:
    """Execute the reconcile workflow."""
    mismatches = projections.reconcile(context)
    if not mismatches:
        print("All aggregates agree with history.")
        return 0
    _print_rows(mismatches)
    return 4


def run_export(context: core_logic.RuntimeContext, args: argparse.Namespace) -> int:
    """Execute the export workflow."""
    result = projections.run_report(context, args.name, start=args.start, end=args.end)
    path = exporter.export_rows(result, args.output, sheet_title=args.name, title=context.settings.business_name)
    print(f"Exported {args.name} to {path}")
    return 0


def handle_cli_error(error: Exception) -> int:
    """Convert raised exceptions into user-friendly exit codes."""
    if isinstance(error, core_logic.BusinessRuleViolation):
        log.error("%s", error)
        return 2
    if isinstance(error, FileNotFoundError):
        log.error("%s", error)
        return 3
    log.error("%s", error)
    return 1


def persist_workbook(context: core_logic.RuntimeContext) -> None:
    """Persist workbook changes after successful execution."""
    try:
        core_logic.persist_context(context)
    except PermissionError as error:
        raise RuntimeError(str(error)) from error


def main(argv: Sequence[str] | None = None) -> int:
    """CLI entry point that orchestrates parsing and execution."""
    parser = build_parser()
    command_table = configure_subcommands(parser)
    args = parser.parse_args(argv)
    try:
        context = load_runtime_context(getattr(args, "config", None))
        exit_code = dispatch_command(context, args, command_table)
        if exit_code == 0 and command_table[args.command].mutates:
            persist_workbook(context)
        return exit_code
    except Exception as error:  # pragma: no cover - centralised error handler tested separately
        return handle_cli_error(error)
