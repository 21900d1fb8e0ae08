"""Shared pytest fixtures and utilities for Trade Ledger tests."""

from __future__ import annotations

import argparse
import sys
import uuid
from dataclasses import dataclass
from datetime import UTC, date, datetime
from decimal import Decimal
from pathlib import Path
from typing import Callable, Iterator
from unittest.mock import Mock

import pytest

# Tests run against the src tree directly.
PROJECT_ROOT = Path(__file__).resolve().parents[1]
SRC_DIR = PROJECT_ROOT / "src"

if str(SRC_DIR) not in sys.path:
    sys.path.insert(0, str(SRC_DIR))

from trade_ledger import (  # noqa: E402
    account_ledger,
    cli,
    constants,
    core_logic,
    customer_ledger,
    stock_ledger,
)
from trade_ledger.setup_excel import create_master_workbook  # noqa: E402

DEFAULT_SCHEMA_VERSION = constants.EXPECTED_SCHEMA_VERSION
BUSINESS_DATE = date(2024, 3, 15)
_CONFIG_TEMPLATE = (
    "[System]\n"
    "DataFile = {data_file}\n"
    "BusinessName = {business_name}\n"
    "SchemaVersion = {schema_version}\n\n"
    "[Ledger]\n"
    "AllowOverdraft = {allow_overdraft}\n"
    "DirectLocations = Direct, Company Goddam\n"
    "DefaultUnit = BAG\n"
)


@dataclass(frozen=True)
class ConfigBundle:
    """Container bundling together config metadata for tests."""

    directory: Path
    config_path: Path
    workbook_path: Path
    schema_version: str
    business_name: str


@pytest.fixture(scope="session", autouse=True)
def _restore_sys_path() -> Iterator[None]:
    """Put sys.path back the way the session found it."""

    original = sys.path.copy()
    try:
        yield
    finally:
        sys.path[:] = original


@pytest.fixture
def workbook_factory(tmp_path: Path) -> Callable[..., Path]:
    """Factory that creates an initialized ledger workbook in a temp folder."""

    def _create_workbook(*, subdir: str | None = None, filename: str = "ledger.xlsx") -> Path:
        base_dir = tmp_path if subdir is None else tmp_path / subdir
        base_dir.mkdir(parents=True, exist_ok=True)
        workbook_path = base_dir / filename
        create_master_workbook(workbook_path, overwrite=True)
        return workbook_path

    return _create_workbook


@pytest.fixture
def master_workbook_path(workbook_factory: Callable[..., Path]) -> Path:
    """Return a fresh ledger workbook ready for use in a test."""

    return workbook_factory(subdir=f"workbook_{uuid.uuid4().hex}")


@pytest.fixture
def config_factory(tmp_path: Path, workbook_factory: Callable[..., Path]) -> Callable[..., ConfigBundle]:
    """Build a config.ini plus its workbook in a fresh folder per call."""

    def _create_config(
        *,
        make_relative: bool = False,
        business_name: str = "Test Traders",
        schema_version: str = DEFAULT_SCHEMA_VERSION,
        allow_overdraft: bool = True,
    ) -> ConfigBundle:
        bundle_id = uuid.uuid4().hex
        bundle_dir = tmp_path / f"bundle_{bundle_id}"
        bundle_dir.mkdir(parents=True, exist_ok=True)
        workbook_path = workbook_factory(subdir=f"bundle_{bundle_id}")
        data_file_entry = workbook_path.name if make_relative else str(workbook_path)
        config_path = bundle_dir / "config.ini"
        config_path.write_text(
            _CONFIG_TEMPLATE.format(
                data_file=data_file_entry,
                business_name=business_name,
                schema_version=schema_version,
                allow_overdraft="true" if allow_overdraft else "false",
            ),
            encoding="utf-8",
        )
        return ConfigBundle(
            directory=bundle_dir,
            config_path=config_path,
            workbook_path=workbook_path,
            schema_version=schema_version,
            business_name=business_name,
        )

    return _create_config


@pytest.fixture
def config_file(config_factory: Callable[..., ConfigBundle]) -> Path:
    """Path to a default config with overdrafts allowed."""

    return config_factory().config_path


@pytest.fixture
def runtime_context(config_file: Path) -> core_logic.RuntimeContext:
    """Context over an empty ledger workbook."""

    context = core_logic.load_runtime_context(config_file)
    core_logic.ensure_schema_version(context)
    return context


@pytest.fixture
def strict_context(config_factory: Callable[..., ConfigBundle]) -> core_logic.RuntimeContext:
    """Runtime context with overdrafts disabled."""

    context = core_logic.load_runtime_context(config_factory(allow_overdraft=False).config_path)
    core_logic.ensure_schema_version(context)
    return context


def seed_ledger(context: core_logic.RuntimeContext) -> core_logic.RuntimeContext:
    """Populate a context with one customer, two accounts, a product, and two locations.

    Starting state: customer ``C1`` owes nothing, account ``A1`` (Cash) holds
    1000.00, account ``A2`` (Bank) holds nothing, ``S1`` (Godown A) holds 100
    units and ``S2`` (Shop) holds 10.
    """

    core_logic.add_product(context, product_id="BR1", name="Brand One", category="Cement")
    customer_ledger.add_customer(
        context,
        name="Ravi Traders",
        phone="9800000000",
        category="Dealer",
        customer_id="C1",
        when=BUSINESS_DATE,
    )
    account_ledger.add_account(context, name="Cash", opening_balance=Decimal("1000"), account_id="A1", when=BUSINESS_DATE)
    account_ledger.add_account(context, name="Bank", account_id="A2", when=BUSINESS_DATE)
    stock_ledger.add_stock_location(
        context, location="Godown A", quantity=100, threshold=20, product_id="BR1", stock_id="S1"
    )
    stock_ledger.add_stock_location(context, location="Shop", quantity=10, threshold=20, stock_id="S2")
    return context


@pytest.fixture
def seeded_context(runtime_context: core_logic.RuntimeContext) -> core_logic.RuntimeContext:
    return seed_ledger(runtime_context)


@pytest.fixture
def seeded_strict_context(strict_context: core_logic.RuntimeContext) -> core_logic.RuntimeContext:
    return seed_ledger(strict_context)


@pytest.fixture
def set_fixed_datetime(monkeypatch: pytest.MonkeyPatch) -> Callable[[datetime], datetime]:
    """Patch ``core_logic.datetime`` to return a predetermined moment."""

    def _apply(moment: datetime) -> datetime:
        class _FixedDateTime:
            @staticmethod
            def now(tz=None):
                assert tz is UTC
                return moment

        monkeypatch.setattr(core_logic, "datetime", _FixedDateTime)
        return moment

    return _apply


# ---------------------------------------------------------------------------
# CLI layer fixtures
# ---------------------------------------------------------------------------


@pytest.fixture
def cli_parser() -> argparse.ArgumentParser:
    """Top-level ``trade-ledger`` parser with no sub-commands yet."""

    return cli.build_parser()


@pytest.fixture
def subparsers_action(
    cli_parser: argparse.ArgumentParser,
) -> argparse._SubParsersAction[argparse.ArgumentParser]:
    return cli_parser.add_subparsers(dest="command")


@pytest.fixture
def command_table_entry() -> tuple[str, cli.CommandSpec]:
    """A ``ping`` command whose executor is a mock returning 0."""

    spec = cli.CommandSpec(
        name="ping",
        help_text="Reply without touching the ledger.",
        register=lambda subparsers: subparsers.add_parser("ping"),
        execute=Mock(name="run_ping", return_value=0),
    )
    return spec.name, spec


@pytest.fixture
def command_spec_iterable() -> list[cli.CommandSpec]:
    """Three read-only specs named after ledger listings."""

    return [
        cli.CommandSpec(name, f"List {name}.", lambda subparsers, name=name: subparsers.add_parser(name), Mock(return_value=0))
        for name in ("customers", "accounts", "stock")
    ]
