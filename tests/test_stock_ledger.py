"""Tests for stock locations, loads, transfers, and dumps."""

from __future__ import annotations

from datetime import date

import pytest

from trade_ledger import core_logic, stock_ledger
from trade_ledger.constants import PurchaseOrigin, SheetName, StockEventType, StockStatus


def _quantity(context, stock_id: str) -> int:
    return core_logic.read_aggregate(context, SheetName.STOCKS, stock_id).quantity


def test_add_stock_location_records_initial_quantity(runtime_context):
    """The starting quantity is kept as the initial quantity."""
    stock = stock_ledger.add_stock_location(runtime_context, location="Yard", quantity=40, stock_id="S7")

    assert stock.initial_quantity == 40
    assert stock.threshold == 100
    assert _quantity(runtime_context, "S7") == 40


@pytest.mark.parametrize("location", ["Direct", "Company Goddam", "Godown A"])
def test_add_stock_location_refuses_direct_and_duplicate_names(seeded_context, location):
    """Direct and duplicate location names are refused."""
    with pytest.raises(core_logic.BusinessRuleViolation):
        stock_ledger.add_stock_location(seeded_context, location=location)


def test_add_stock_location_refuses_negative_values(runtime_context):
    """Negative quantities and thresholds are refused."""
    with pytest.raises(core_logic.InvalidAmountError):
        stock_ledger.add_stock_location(runtime_context, location="Yard", quantity=-1)
    with pytest.raises(core_logic.InvalidAmountError):
        stock_ledger.add_stock_location(runtime_context, location="Yard", threshold=-5)


def test_stock_status_compares_against_threshold(seeded_context):
    """Below the threshold is low, otherwise normal."""
    assert stock_ledger.stock_status(core_logic.get_stock(seeded_context, "S1")) is StockStatus.NORMAL
    assert stock_ledger.stock_status(core_logic.get_stock(seeded_context, "S2")) is StockStatus.LOW
    assert [stock.stock_id for stock in stock_ledger.low_stock(seeded_context)] == ["S2"]


def test_set_threshold_updates_status(seeded_context):
    """A new threshold changes the reported status."""
    stock = stock_ledger.set_threshold(seeded_context, "S2", 5)

    assert stock.threshold == 5
    assert stock_ledger.low_stock(seeded_context) == []


def test_load_increments_quantity(seeded_context):
    """Loading adds units to the location."""
    event = stock_ledger.load(
        seeded_context,
        stock_ledger.LoadStockCommand(stock_id="S2", quantity=15, sub_category="PPC", date=date(2024, 3, 18)),
    )

    assert _quantity(seeded_context, "S2") == 25
    assert event.event_type == StockEventType.LOAD.value
    assert event.quantity_change == 15
    assert event.to_location == "Shop"
    assert event.date_iso == "2024-03-18"


def test_load_rejects_non_positive_quantity(seeded_context):
    """Loads must be positive."""
    with pytest.raises(core_logic.InvalidAmountError):
        stock_ledger.load(seeded_context, stock_ledger.LoadStockCommand(stock_id="S1", quantity=0))


def test_transfer_moves_units_between_locations(seeded_context):
    """Transfers move units without changing the total."""
    outgoing, incoming = stock_ledger.transfer(
        seeded_context, stock_ledger.TransferStockCommand(from_stock_id="S1", to_stock_id="S2", quantity=30)
    )

    assert _quantity(seeded_context, "S1") == 70
    assert _quantity(seeded_context, "S2") == 40
    assert outgoing.quantity_change == -30
    assert incoming.quantity_change == 30
    assert outgoing.linked_event_id == incoming.event_id
    assert incoming.linked_event_id == outgoing.event_id
    assert outgoing.from_location == incoming.from_location == "Godown A"
    assert outgoing.to_location == incoming.to_location == "Shop"


def test_transfer_beyond_source_quantity_changes_nothing(seeded_context):
    """Moving more than the source holds fails cleanly."""
    with pytest.raises(core_logic.InsufficientStockError):
        stock_ledger.transfer(
            seeded_context, stock_ledger.TransferStockCommand(from_stock_id="S2", to_stock_id="S1", quantity=11)
        )

    assert _quantity(seeded_context, "S1") == 100
    assert _quantity(seeded_context, "S2") == 10
    assert core_logic.list_records(seeded_context, SheetName.STOCK_EVENTS) == []


@pytest.mark.parametrize("source, destination, quantity", [("S1", "S1", 5), ("S1", "S2", 0), ("S1", "S2", -3)])
def test_transfer_rejects_invalid_requests(seeded_context, source, destination, quantity):
    """Malformed transfer requests are refused."""
    with pytest.raises(core_logic.InvalidTransferError):
        stock_ledger.transfer(
            seeded_context,
            stock_ledger.TransferStockCommand(from_stock_id=source, to_stock_id=destination, quantity=quantity),
        )


def test_transfer_to_unknown_location_raises_not_found(seeded_context):
    """Unknown destinations raise NotFoundError."""
    with pytest.raises(core_logic.NotFoundError):
        stock_ledger.transfer(
            seeded_context, stock_ledger.TransferStockCommand(from_stock_id="S1", to_stock_id="S404", quantity=1)
        )


def test_dump_increments_destination_and_writes_zero_cost_card(seeded_context):
    """A dump adds units and a zero-cost purchase card."""
    event, card = stock_ledger.dump(
        seeded_context,
        stock_ledger.DumpStockCommand(
            stock_id="S2", quantity=50, product_id="BR1", source_location="Plant", date=date(2024, 3, 19)
        ),
    )

    assert _quantity(seeded_context, "S2") == 60
    assert _quantity(seeded_context, "S1") == 100
    assert event.event_type == StockEventType.DUMP.value
    assert event.from_location == "Plant"
    assert event.purchase_id == card.purchase_id
    assert card.origin == PurchaseOrigin.DUMP.value
    assert card.total == 0
    assert card.linked_record_id == event.event_id
    assert card.supplier_id == "BR1"
    assert card.unit == "BAG"
    assert core_logic.get_record(seeded_context, SheetName.PURCHASES, card.purchase_id).is_dump


def test_remove_stock_location_requires_empty_history(seeded_context):
    """Only locations without history can be removed."""
    stock_ledger.load(seeded_context, stock_ledger.LoadStockCommand(stock_id="S1", quantity=1))

    with pytest.raises(core_logic.BusinessRuleViolation):
        stock_ledger.remove_stock_location(seeded_context, "S1")

    stock_ledger.remove_stock_location(seeded_context, "S2")
    assert [stock.stock_id for stock in stock_ledger.list_stocks(seeded_context)] == ["S1"]


def test_stock_history_is_ordered_by_date(seeded_context):
    """History comes back oldest first."""
    stock_ledger.load(seeded_context, stock_ledger.LoadStockCommand(stock_id="S1", quantity=1, date=date(2024, 3, 20)))
    stock_ledger.load(seeded_context, stock_ledger.LoadStockCommand(stock_id="S1", quantity=2, date=date(2024, 3, 10)))

    history = stock_ledger.stock_history(seeded_context, "S1")

    assert [event.quantity_change for event in history] == [2, 1]
