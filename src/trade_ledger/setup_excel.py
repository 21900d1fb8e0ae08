"""Bootstrap an empty ledger workbook.

Runs as the ``trade-ledger-setup`` console script or as a library call from
tests. Sheet layouts come from :data:`trade_ledger.data_manager.SHEET_COLUMNS`
so the bootstrap and the readers share one schema. An optional ``[Setup]``
section in ``config.ini`` names starter accounts and stock locations, which
are written with zero balances and no history.
"""

from __future__ import annotations

import argparse
from dataclasses import dataclass, field
from decimal import Decimal
from pathlib import Path
from typing import Mapping, Optional, Sequence, Tuple
import sys

import openpyxl
from openpyxl.styles import Font
from openpyxl.utils import get_column_letter

from . import data_manager, log
from .constants import DEFAULT_STOCK_THRESHOLD, SheetName
from .core_logic import generate_record_id, resolve_date
from .data_manager import SHEET_COLUMNS


SETUP_SECTION = "Setup"
MIN_COLUMN_WIDTH = 12


def _split_names(raw: str) -> Tuple[str, ...]:
    return tuple(name.strip() for name in raw.split(",") if name.strip())


@dataclass(frozen=True)
class SetupSettings:
    """What the bootstrap needs from ``config.ini``."""

    data_file: Path
    business_name: str
    accounts: Tuple[str, ...] = field(default_factory=tuple)
    locations: Tuple[str, ...] = field(default_factory=tuple)


def load_settings(config_path: Path) -> SetupSettings:
    """Read the bootstrap settings from ``config_path``.

    ``DataFile`` is anchored to the config directory exactly as the ledger
    itself anchors it.

    Raises:
        FileNotFoundError: If the config file is missing.
        KeyError: If a ``[System]`` entry is missing.
    """

    parser = data_manager.read_config(config_path)
    settings = data_manager.parse_settings(parser, base_path=Path(config_path).expanduser().resolve().parent)
    accounts: Tuple[str, ...] = ()
    locations: Tuple[str, ...] = ()
    if parser.has_section(SETUP_SECTION):
        accounts = _split_names(parser.get(SETUP_SECTION, "Accounts", fallback=""))
        locations = _split_names(parser.get(SETUP_SECTION, "Locations", fallback=""))
    return SetupSettings(
        data_file=settings.data_file,
        business_name=settings.business_name,
        accounts=accounts,
        locations=locations,
    )


def create_master_workbook(
    destination: Path,
    *,
    sheet_columns: Mapping[str, Sequence[str]] = SHEET_COLUMNS,
    overwrite: bool = False,
) -> Path:
    """Create an empty ledger workbook at ``destination``.

    Every sheet gets a bold, frozen header row and no data.

    Raises:
        FileExistsError: If ``destination`` exists and ``overwrite`` is
            ``False``.
    """

    destination = Path(destination).expanduser().resolve()
    if destination.exists() and not overwrite:
        raise FileExistsError(f"Refusing to overwrite existing ledger workbook: {destination}")

    workbook = openpyxl.Workbook()
    workbook.remove(workbook.active)
    bold_font = Font(bold=True)

    for sheet_name, columns in sheet_columns.items():
        worksheet = workbook.create_sheet(title=sheet_name)
        worksheet.append(list(columns))
        for column_index, column_name in enumerate(columns, start=1):
            worksheet.cell(row=1, column=column_index).font = bold_font
            worksheet.column_dimensions[get_column_letter(column_index)].width = max(
                MIN_COLUMN_WIDTH, len(column_name) + 2
            )
        worksheet.freeze_panes = "A2"

    data_manager.save_workbook(workbook, destination)
    log.info("Created ledger workbook '%s' with %d sheets", destination, len(sheet_columns))
    return destination


def seed_starter_records(
    data_file: Path,
    *,
    accounts: Sequence[str] = (),
    locations: Sequence[str] = (),
) -> int:
    """Add empty accounts and stock locations to a fresh workbook.

    Returns:
        int: Number of rows written.
    """

    if not accounts and not locations:
        return 0
    workbook = data_manager.open_workbook(data_file)
    today = resolve_date(None).isoformat()
    for name in accounts:
        data_manager.create_record(
            workbook,
            SheetName.ACCOUNTS,
            data_manager.AccountRow(
                account_id=generate_record_id("A"),
                name=name,
                balance=Decimal("0.00"),
                created_date=today,
            ),
        )
    for name in locations:
        data_manager.create_record(
            workbook,
            SheetName.STOCKS,
            data_manager.StockRow(
                stock_id=generate_record_id("S"),
                location=name,
                quantity=0,
                threshold=DEFAULT_STOCK_THRESHOLD,
                initial_quantity=0,
                product_id=None,
            ),
        )
    data_manager.save_workbook(workbook, data_file)
    written = len(accounts) + len(locations)
    log.info("Seeded %d starter records into '%s'", written, data_file)
    return written


def run_from_config(config_path: Path, *, overwrite: bool = False) -> Path:
    """Create, and optionally seed, the workbook named by ``config_path``."""

    settings = load_settings(config_path)
    destination = create_master_workbook(settings.data_file, overwrite=overwrite)
    seed_starter_records(destination, accounts=settings.accounts, locations=settings.locations)
    return destination


def parse_args(argv: Optional[Sequence[str]] = None) -> argparse.Namespace:
    """Parse ``trade-ledger-setup`` arguments."""
    parser = argparse.ArgumentParser(
        prog="trade-ledger-setup",
        description="Create an empty Trade Ledger workbook",
    )
    parser.add_argument(
        "--config",
        type=Path,
        default=None,
        help="Path to config.ini (default: search upward from the current directory)",
    )
    parser.add_argument(
        "--force",
        action="store_true",
        help="Replace the workbook if it already exists.",
    )
    return parser.parse_args(argv)


def main(argv: Optional[Sequence[str]] = None) -> int:
    """Entry point for ``trade-ledger-setup``."""

    args = parse_args(argv)
    try:
        config_path = data_manager.find_config_file(args.config)
        output_path = run_from_config(config_path, overwrite=args.force)
    except FileExistsError as exc:
        log.error("%s", exc)
        print(f"[ERROR] {exc}\nRun with --force to replace it.", file=sys.stderr)
        return 1
    except (FileNotFoundError, KeyError, OSError) as exc:
        log.error("Setup failed: %s", exc)
        print(f"[ERROR] {exc}", file=sys.stderr)
        return 1

    print(f"Created ledger workbook at '{output_path}'.")
    return 0


if __name__ == "__main__":  # pragma: no cover - exercised via manual runs
    sys.exit(main())
