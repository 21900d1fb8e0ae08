"""Unit tests for the data access layer."""

from __future__ import annotations

from decimal import Decimal
from pathlib import Path

import openpyxl
import pytest

from trade_ledger import constants, data_manager
from trade_ledger.constants import SheetName


def _customer(customer_id: str = "C1", balance: str = "0.00") -> data_manager.CustomerRow:
    return data_manager.CustomerRow(
        customer_id=customer_id,
        name="Ravi Traders",
        phone=None,
        category="Dealer",
        opening_balance=Decimal("0.00"),
        balance=Decimal(balance),
        created_date="2024-03-15",
    )


def _payment_pair(*, linked: bool = True):
    transaction = data_manager.TransactionRow(
        transaction_id="T1",
        customer_id="C1",
        transaction_type=constants.TransactionType.PAYMENT.value,
        amount=Decimal("-50.00"),
        date_iso="2024-03-15",
        quantity=0,
        unit=None,
        unit_price=Decimal("0.00"),
        location=None,
        stock_id=None,
        product_id=None,
        sub_category=None,
        account_id="A1",
        discount_category=None,
        purchase_id=None,
        notes=None,
    )
    entry = data_manager.AccountTransactionRow(
        entry_id="F1",
        account_id="A1",
        entry_type=constants.AccountTransactionType.PAYMENT.value,
        amount=Decimal("50.00"),
        description="Payment from Ravi Traders",
        category=None,
        related_account_id=None,
        linked_entry_id=None,
        linked_transaction_id="T1" if linked else "T-OTHER",
        date_iso="2024-03-15",
        notes=None,
    )
    return transaction, entry


@pytest.fixture
def workbook(master_workbook_path: Path):
    return data_manager.open_workbook(master_workbook_path)


def test_find_config_file_respects_explicit_path(config_file: Path):
    """Supplying an explicit path should be treated as the winning answer."""

    assert data_manager.find_config_file(config_file) == config_file


def test_find_config_file_discovers_in_parent_directory(tmp_path, monkeypatch):
    """config.ini is found by walking up from a nested folder."""
    config_file = tmp_path / "config.ini"
    config_file.write_text("[System]\nDataFile=ledger.xlsx\n")
    nested = tmp_path / "a" / "b"
    nested.mkdir(parents=True)
    monkeypatch.chdir(nested)

    assert data_manager.find_config_file() == config_file


def test_find_config_file_raises_when_missing(tmp_path, monkeypatch):
    """FileNotFoundError when no folder above holds a config."""
    monkeypatch.chdir(tmp_path)
    with pytest.raises(FileNotFoundError):
        data_manager.find_config_file()


def test_read_config_loads_sections(config_file: Path):
    """Both config sections are parsed."""
    parser = data_manager.read_config(config_file)
    assert parser.get("System", "BusinessName") == "Test Traders"
    assert parser.get("Ledger", "DefaultUnit") == "BAG"


def test_read_config_missing_file_raises(tmp_path):
    """Reading a missing config raises FileNotFoundError."""
    with pytest.raises(FileNotFoundError):
        data_manager.read_config(tmp_path / "not_there.ini")


def test_parse_settings_resolves_relative_paths(config_factory):
    """Relative DataFile entries should be anchored to the config location."""

    bundle = config_factory(make_relative=True)
    parser = data_manager.read_config(bundle.config_path)
    settings = data_manager.parse_settings(parser, base_path=bundle.config_path.parent)

    assert settings.data_file == bundle.workbook_path.resolve()
    assert settings.business_name == "Test Traders"
    assert settings.schema_version == constants.EXPECTED_SCHEMA_VERSION


def test_parse_settings_reads_ledger_section(config_factory):
    """Ledger options override the defaults."""
    bundle = config_factory(allow_overdraft=False)
    settings = data_manager.parse_settings(data_manager.read_config(bundle.config_path))

    assert settings.allow_overdraft is False
    assert settings.direct_locations == ("Direct", "Company Goddam")
    assert settings.default_unit == "BAG"


def test_parse_settings_defaults_without_ledger_section(tmp_path):
    """Defaults apply when the Ledger section is absent."""
    config_path = tmp_path / "config.ini"
    config_path.write_text(
        "[System]\nDataFile = ledger.xlsx\nBusinessName = Shop\nSchemaVersion = 1.0.0\n"
    )
    settings = data_manager.parse_settings(data_manager.read_config(config_path), base_path=tmp_path)

    assert settings.allow_overdraft is True
    assert settings.direct_locations == constants.DEFAULT_DIRECT_LOCATIONS
    assert settings.default_unit == constants.DEFAULT_UNIT
    assert settings.data_file == (tmp_path / "ledger.xlsx").resolve()


def test_parse_settings_missing_system_entry_raises(tmp_path):
    """A missing System entry raises KeyError."""
    config_path = tmp_path / "config.ini"
    config_path.write_text("[System]\nDataFile = ledger.xlsx\n")

    with pytest.raises(KeyError):
        data_manager.parse_settings(data_manager.read_config(config_path))


def test_open_workbook_missing_file_raises(tmp_path):
    """Opening a missing workbook raises FileNotFoundError."""
    with pytest.raises(FileNotFoundError):
        data_manager.open_workbook(tmp_path / "missing.xlsx")


def test_bootstrap_headers_match_schemas(master_workbook_path: Path):
    """A fresh workbook has one sheet per schema with matching headers."""
    workbook = openpyxl.load_workbook(master_workbook_path)

    assert set(workbook.sheetnames) == {kind.value for kind in SheetName}
    for kind, schema in data_manager.SHEET_SCHEMAS.items():
        headers = [cell.value for cell in workbook[kind.value][1]]
        assert headers == schema.headers


def test_create_and_read_record(workbook):
    """A created row reads back as the same record."""
    key = data_manager.create_record(workbook, SheetName.CUSTOMERS, _customer(balance="12.50"))

    assert key == "C1"
    stored = data_manager.read_record(workbook, SheetName.CUSTOMERS, "C1")
    assert stored.balance == Decimal("12.50")
    assert stored.phone is None


def test_create_record_rejects_duplicate_key(workbook):
    """Creating a second row with the same key fails."""
    data_manager.create_record(workbook, SheetName.CUSTOMERS, _customer())

    with pytest.raises(ValueError):
        data_manager.create_record(workbook, SheetName.CUSTOMERS, _customer())


def test_serialize_record_rejects_wrong_row_type():
    """Rows of another sheet's type cannot be serialized."""
    with pytest.raises(TypeError):
        data_manager.serialize_record(SheetName.ACCOUNTS, _customer())


def test_deserialize_record_pads_short_rows():
    """Missing trailing cells fall back to defaults."""
    row = data_manager.deserialize_record(SheetName.STOCKS, ("S1", "Godown A", 5))

    assert row.quantity == 5
    assert row.threshold == 0
    assert row.product_id is None


def test_update_record_writes_selected_fields(workbook):
    """Only the named fields change."""
    data_manager.create_record(workbook, SheetName.CUSTOMERS, _customer())
    data_manager.update_record(workbook, SheetName.CUSTOMERS, "C1", field_values={"balance": Decimal("99.00")})

    stored = data_manager.read_record(workbook, SheetName.CUSTOMERS, "C1")
    assert stored.balance == Decimal("99.00")
    assert stored.name == "Ravi Traders"


def test_update_record_rejects_unknown_field_and_key(workbook):
    """Unknown fields and keys are refused."""
    data_manager.create_record(workbook, SheetName.CUSTOMERS, _customer())

    with pytest.raises(KeyError):
        data_manager.update_record(workbook, SheetName.CUSTOMERS, "C1", field_values={"nope": 1})
    with pytest.raises(KeyError):
        data_manager.update_record(workbook, SheetName.CUSTOMERS, "C404", field_values={"balance": 1})


def test_delete_record_removes_row(workbook):
    """Deleted rows are gone from the sheet."""
    data_manager.create_record(workbook, SheetName.CUSTOMERS, _customer("C1"))
    data_manager.create_record(workbook, SheetName.CUSTOMERS, _customer("C2"))

    data_manager.delete_record(workbook, SheetName.CUSTOMERS, "C1")

    remaining = [row.customer_id for row in data_manager.iter_records(workbook, SheetName.CUSTOMERS)]
    assert remaining == ["C2"]
    with pytest.raises(KeyError):
        data_manager.delete_record(workbook, SheetName.CUSTOMERS, "C1")


def test_read_aggregate_rejects_history_sheets(workbook):
    """History sheets have no aggregate to read."""
    with pytest.raises(ValueError):
        data_manager.read_aggregate(workbook, SheetName.TRANSACTIONS, "T1")


def test_commit_unit_rolls_back_on_failure(workbook):
    """A failing unit leaves every sheet as it was."""
    data_manager.create_record(workbook, SheetName.CUSTOMERS, _customer("C1", balance="10.00"))
    operations = [
        data_manager.WriteOp.update(SheetName.CUSTOMERS, "C1", {"balance": Decimal("20.00")}),
        data_manager.WriteOp.create(SheetName.CUSTOMERS, _customer("C2")),
        data_manager.WriteOp.delete(SheetName.CUSTOMERS, "C404"),
    ]

    with pytest.raises(KeyError):
        data_manager.commit_unit(workbook, operations)

    rows = list(data_manager.iter_records(workbook, SheetName.CUSTOMERS))
    assert [row.customer_id for row in rows] == ["C1"]
    assert rows[0].balance == Decimal("10.00")


def test_record_payment_with_side_effects_requires_link(workbook):
    """The account entry must point back at its payment."""
    transaction, entry = _payment_pair(linked=False)
    operations = [
        data_manager.WriteOp.create(SheetName.TRANSACTIONS, transaction),
        data_manager.WriteOp.create(SheetName.ACCOUNT_TRANSACTIONS, entry),
    ]

    with pytest.raises(ValueError):
        data_manager.record_payment_with_side_effects(workbook, operations)
    assert list(data_manager.iter_records(workbook, SheetName.TRANSACTIONS)) == []


def test_record_payment_with_side_effects_commits_pair(workbook):
    """Payment and account entry are written together."""
    transaction, entry = _payment_pair()
    data_manager.record_payment_with_side_effects(
        workbook,
        [
            data_manager.WriteOp.create(SheetName.TRANSACTIONS, transaction),
            data_manager.WriteOp.create(SheetName.ACCOUNT_TRANSACTIONS, entry),
        ],
    )

    assert data_manager.read_record(workbook, SheetName.ACCOUNT_TRANSACTIONS, "F1").linked_transaction_id == "T1"


def test_record_transfer_pair_requires_cross_links(workbook):
    """Transfer legs must reference each other."""
    def _leg(entry_id, entry_type, linked):
        return data_manager.AccountTransactionRow(
            entry_id=entry_id,
            account_id="A1",
            entry_type=entry_type,
            amount=Decimal("5.00"),
            description="Transfer",
            category=None,
            related_account_id="A2",
            linked_entry_id=linked,
            linked_transaction_id=None,
            date_iso="2024-03-15",
            notes=None,
        )

    operations = [
        data_manager.WriteOp.create(
            SheetName.ACCOUNT_TRANSACTIONS, _leg("F1", constants.AccountTransactionType.TRANSFER_OUT.value, "F2")
        ),
        data_manager.WriteOp.create(
            SheetName.ACCOUNT_TRANSACTIONS, _leg("F2", constants.AccountTransactionType.TRANSFER_IN.value, "F9")
        ),
    ]

    with pytest.raises(ValueError):
        data_manager.record_transfer_pair(workbook, operations)


def test_save_and_refresh_round_trip(workbook, master_workbook_path: Path):
    """Saved changes survive a reload from disk."""
    data_manager.create_record(workbook, SheetName.CUSTOMERS, _customer(balance="7.25"))
    data_manager.save_workbook(workbook, master_workbook_path)

    reloaded = data_manager.refresh_workbook(master_workbook_path)
    stored = data_manager.read_record(reloaded, SheetName.CUSTOMERS, "C1")
    assert stored.balance == Decimal("7.25")
