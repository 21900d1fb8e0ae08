"""End-to-end trading day exercised across every ledger, then reloaded from disk."""

from __future__ import annotations

from datetime import date
from decimal import Decimal

import pytest

from trade_ledger import (
    account_ledger,
    core_logic,
    customer_ledger,
    projections,
    reconciliation,
    stock_ledger,
)
from trade_ledger.constants import AccountTransactionType, SheetName, TransactionType

DAY = date(2024, 3, 20)


def _balance(context, customer_id="RAVI"):
    return customer_ledger.customer_balance(context, customer_id)


def _funds(context, account_id):
    return account_ledger.account_balance(context, account_id)


def _quantity(context, stock_id):
    return core_logic.read_aggregate(context, SheetName.STOCKS, stock_id).quantity


@pytest.fixture
def shop_context(runtime_context):
    core_logic.add_product(runtime_context, product_id="JSW", name="JSW Cement")
    customer_ledger.add_customer(runtime_context, name="Ravi", customer_id="RAVI", when=DAY)
    account_ledger.add_account(runtime_context, name="A.R", account_id="AR", when=DAY)
    account_ledger.add_account(runtime_context, name="ABDUL", account_id="ABDUL", opening_balance=Decimal("1000"), when=DAY)
    stock_ledger.add_stock_location(runtime_context, location="Shop1", quantity=100, stock_id="SHOP1")
    stock_ledger.add_stock_location(runtime_context, location="Shop2", quantity=50, stock_id="SHOP2")
    return runtime_context


@pytest.fixture
def traded_context(shop_context):
    """Scenarios one to five applied in order."""

    customer_ledger.apply_sale(
        shop_context,
        customer_ledger.SaleCommand(customer_id="RAVI", quantity=10, unit_price=Decimal("520"), location="Shop1", date=DAY),
    )
    customer_ledger.apply_payment(
        shop_context, customer_ledger.PaymentCommand(customer_id="RAVI", amount=Decimal("2000"), account_id="AR", date=DAY)
    )
    customer_ledger.apply_discount(
        shop_context, customer_ledger.DiscountCommand(customer_id="RAVI", percent=Decimal("10"), date=DAY)
    )
    account_ledger.transfer_funds(shop_context, "AR", "ABDUL", Decimal("500"), when=DAY)
    stock_ledger.dump(
        shop_context,
        stock_ledger.DumpStockCommand(stock_id="SHOP2", quantity=20, product_id="JSW", sub_category="G.V", date=DAY),
    )
    return shop_context


def test_scenario_sale_against_tracked_location(shop_context):
    """A tracked sale moves stock and balance."""
    customer_ledger.apply_sale(
        shop_context,
        customer_ledger.SaleCommand(customer_id="RAVI", quantity=10, unit_price=Decimal("520"), location="Shop1"),
    )

    assert _balance(shop_context) == Decimal("5200.00")
    assert _quantity(shop_context, "SHOP1") == 90


def test_scenarios_compose_to_expected_state(traded_context):
    """Each scenario ends in its expected state."""
    assert _balance(traded_context) == Decimal("2880.00")
    assert _funds(traded_context, "AR") == Decimal("1500.00")
    assert _funds(traded_context, "ABDUL") == Decimal("1500.00")
    assert _quantity(traded_context, "SHOP1") == 90
    assert _quantity(traded_context, "SHOP2") == 70

    transfers = [
        entry
        for entry in core_logic.list_records(traded_context, SheetName.ACCOUNT_TRANSACTIONS)
        if entry.entry_type in (AccountTransactionType.TRANSFER_OUT.value, AccountTransactionType.TRANSFER_IN.value)
    ]
    assert len(transfers) == 2
    assert {entry.linked_entry_id for entry in transfers} == {entry.entry_id for entry in transfers}

    (card,) = core_logic.list_records(traded_context, SheetName.PURCHASES)
    assert card.is_dump
    assert card.total == 0


def test_discount_in_scenario_was_not_clamped(traded_context):
    """The scenario discount stays within the cap."""
    (discount,) = projections.query_transactions(traded_context, kind=TransactionType.DISCOUNT)

    assert discount.amount == Decimal("-320.00")


def test_aggregates_match_history_after_reload(traded_context):
    """Aggregates agree with history after a reload."""
    core_logic.persist_context(traded_context)
    reloaded = core_logic.refresh_context(traded_context)

    assert projections.reconcile(reloaded) == []
    assert _balance(reloaded) == Decimal("2880.00")
    assert _quantity(reloaded, "SHOP2") == 70


def test_identical_edit_leaves_aggregates_unchanged(traded_context):
    """Re-applying a sale unchanged leaves aggregates alone."""
    (sale,) = projections.query_transactions(traded_context, kind=TransactionType.SALE)
    before = (_balance(traded_context), _quantity(traded_context, "SHOP1"))

    reconciliation.edit_transaction(
        traded_context,
        sale.transaction_id,
        customer_ledger.SaleCommand(customer_id="RAVI", quantity=10, unit_price=Decimal("520"), location="Shop1"),
    )

    assert (_balance(traded_context), _quantity(traded_context, "SHOP1")) == before
    assert projections.reconcile(traded_context) == []


def test_deleting_sale_restores_pre_sale_values(shop_context):
    """Deleting a sale restores the earlier values."""
    sale = customer_ledger.apply_sale(
        shop_context,
        customer_ledger.SaleCommand(customer_id="RAVI", quantity=7, unit_price=Decimal("99.99"), location="SHOP1"),
    )

    reconciliation.delete_transaction(shop_context, sale.transaction_id)

    assert _balance(shop_context) == Decimal("0.00")
    assert _quantity(shop_context, "SHOP1") == 100


def test_transfers_conserve_totals(traded_context):
    """Transfers keep totals unchanged."""
    stock_before = _quantity(traded_context, "SHOP1") + _quantity(traded_context, "SHOP2")
    funds_before = _funds(traded_context, "AR") + _funds(traded_context, "ABDUL")

    stock_ledger.transfer(
        traded_context, stock_ledger.TransferStockCommand(from_stock_id="SHOP2", to_stock_id="SHOP1", quantity=70)
    )
    account_ledger.transfer_funds(traded_context, "ABDUL", "AR", Decimal("1499.99"))

    assert _quantity(traded_context, "SHOP1") + _quantity(traded_context, "SHOP2") == stock_before
    assert _quantity(traded_context, "SHOP2") == 0
    assert _funds(traded_context, "AR") + _funds(traded_context, "ABDUL") == funds_before


def test_failed_commands_leave_no_trace(traded_context):
    """Failed commands leave nothing behind."""
    snapshot = (
        _balance(traded_context),
        _funds(traded_context, "AR"),
        _quantity(traded_context, "SHOP1"),
        len(core_logic.list_records(traded_context, SheetName.TRANSACTIONS)),
    )

    with pytest.raises(core_logic.InsufficientStockError):
        customer_ledger.apply_sale(
            traded_context,
            customer_ledger.SaleCommand(customer_id="RAVI", quantity=91, unit_price=Decimal("1"), location="Shop1"),
        )
    with pytest.raises(core_logic.InvalidTransferError):
        account_ledger.transfer_funds(traded_context, "AR", "AR", Decimal("1"))
    with pytest.raises(core_logic.NotFoundError):
        customer_ledger.apply_payment(
            traded_context, customer_ledger.PaymentCommand(customer_id="RAVI", amount=Decimal("1"), account_id="NOPE")
        )

    assert snapshot == (
        _balance(traded_context),
        _funds(traded_context, "AR"),
        _quantity(traded_context, "SHOP1"),
        len(core_logic.list_records(traded_context, SheetName.TRANSACTIONS)),
    )
    assert projections.reconcile(traded_context) == []
