"""Tests for credit sales, payments, and discounts."""

from __future__ import annotations

from datetime import date
from decimal import Decimal

import pytest

from trade_ledger import account_ledger, core_logic, customer_ledger, stock_ledger
from trade_ledger.constants import PurchaseOrigin, SheetName, StockEventType, TransactionType

SALE_DATE = date(2024, 3, 20)


def _sale(**overrides) -> customer_ledger.SaleCommand:
    values = {
        "customer_id": "C1",
        "quantity": 10,
        "unit_price": Decimal("250"),
        "location": "S1",
        "product_id": "BR1",
        "date": SALE_DATE,
    }
    values.update(overrides)
    return customer_ledger.SaleCommand(**values)


def _records(context, kind):
    return core_logic.list_records(context, kind)


# ---------------------------------------------------------------------------
# Customers
# ---------------------------------------------------------------------------


def test_add_customer_records_opening_balance(runtime_context):
    """The opening balance becomes the starting balance."""
    customer = customer_ledger.add_customer(
        runtime_context, name="  Mehta Stores ", opening_balance=Decimal("500"), customer_id="C9"
    )

    assert customer.name == "Mehta Stores"
    assert customer_ledger.customer_balance(runtime_context, "C9") == Decimal("500.00")
    assert core_logic.get_customer(runtime_context, "C9").opening_balance == Decimal("500.00")


def test_add_customer_rejects_duplicate_id_and_blank_name(seeded_context):
    """Duplicate ids and blank names are refused."""
    with pytest.raises(core_logic.BusinessRuleViolation):
        customer_ledger.add_customer(seeded_context, name="Other", customer_id="C1")
    with pytest.raises(core_logic.BusinessRuleViolation):
        customer_ledger.add_customer(seeded_context, name="   ")


def test_update_customer_details_leaves_balance_alone(seeded_context):
    """Contact details change without touching the balance."""
    customer_ledger.apply_sale(seeded_context, _sale(quantity=1))

    updated = customer_ledger.update_customer_details(seeded_context, "C1", phone="9811111111", category="Retail")

    assert updated.phone == "9811111111"
    assert updated.category == "Retail"
    assert updated.balance == Decimal("250.00")


# ---------------------------------------------------------------------------
# Sales
# ---------------------------------------------------------------------------


def test_stock_backed_sale_deducts_location_and_raises_balance(seeded_context):
    """A tracked sale moves stock and balance together."""
    sale = customer_ledger.apply_sale(seeded_context, _sale())

    assert sale.amount == Decimal("2500.00")
    assert sale.stock_id == "S1"
    assert sale.unit == "BAG"
    assert customer_ledger.customer_balance(seeded_context, "C1") == Decimal("2500.00")
    assert core_logic.read_aggregate(seeded_context, SheetName.STOCKS, "S1").quantity == 90

    (event,) = _records(seeded_context, SheetName.STOCK_EVENTS)
    assert event.event_type == StockEventType.SALE_DEDUCTION.value
    assert event.quantity_change == -10
    assert event.linked_transaction_id == sale.transaction_id
    assert event.date_iso == "2024-03-20"


def test_sale_resolves_location_by_name(seeded_context):
    """A sale may name its location instead of its id."""
    customer_ledger.apply_sale(seeded_context, _sale(location="Shop", quantity=4, product_id=None))

    assert core_logic.read_aggregate(seeded_context, SheetName.STOCKS, "S2").quantity == 6


def test_direct_sale_with_product_leaves_purchase_card(seeded_context):
    """A direct sale of a product leaves a zero-cost card."""
    sale = customer_ledger.apply_sale(seeded_context, _sale(location="Direct", quantity=30))

    assert core_logic.read_aggregate(seeded_context, SheetName.STOCKS, "S1").quantity == 100
    assert _records(seeded_context, SheetName.STOCK_EVENTS) == []
    (card,) = _records(seeded_context, SheetName.PURCHASES)
    assert card.origin == PurchaseOrigin.DIRECT_SALE.value
    assert card.unit_price == Decimal("0.00")
    assert card.total == Decimal("0.00")
    assert card.original_price == Decimal("250.00")
    assert card.linked_record_id == sale.transaction_id
    assert card.quantity == 30
    assert sale.purchase_id == card.purchase_id


def test_direct_sale_without_product_has_no_side_effects(seeded_context):
    """A direct sale without a product touches only the balance."""
    sale = customer_ledger.apply_sale(seeded_context, _sale(location=None, product_id=None))

    assert sale.purchase_id is None
    assert _records(seeded_context, SheetName.PURCHASES) == []
    assert _records(seeded_context, SheetName.STOCK_EVENTS) == []
    assert customer_ledger.customer_balance(seeded_context, "C1") == Decimal("2500.00")


def test_company_goddam_is_a_direct_location(seeded_context):
    """Company Goddam is configured as direct."""
    customer_ledger.apply_sale(seeded_context, _sale(location="Company Goddam"))

    assert core_logic.read_aggregate(seeded_context, SheetName.STOCKS, "S1").quantity == 100
    assert len(_records(seeded_context, SheetName.PURCHASES)) == 1


def test_sale_exceeding_stock_changes_nothing(seeded_context):
    """Overselling raises and leaves the ledger unchanged."""
    with pytest.raises(core_logic.InsufficientStockError):
        customer_ledger.apply_sale(seeded_context, _sale(location="S2", quantity=11, product_id=None))

    assert core_logic.read_aggregate(seeded_context, SheetName.STOCKS, "S2").quantity == 10
    assert customer_ledger.customer_balance(seeded_context, "C1") == Decimal("0.00")
    assert _records(seeded_context, SheetName.TRANSACTIONS) == []
    assert _records(seeded_context, SheetName.STOCK_EVENTS) == []


def test_sale_of_entire_stock_leaves_zero(seeded_context):
    """Selling every unit leaves the location empty."""
    customer_ledger.apply_sale(seeded_context, _sale(location="S2", quantity=10, product_id=None))

    assert core_logic.read_aggregate(seeded_context, SheetName.STOCKS, "S2").quantity == 0


@pytest.mark.parametrize(
    "overrides, error",
    [
        ({"quantity": 0}, core_logic.InvalidAmountError),
        ({"unit_price": Decimal("0")}, core_logic.InvalidAmountError),
        ({"customer_id": "C404"}, core_logic.NotFoundError),
        ({"location": "Nowhere"}, core_logic.NotFoundError),
        ({"product_id": "BR404"}, core_logic.NotFoundError),
    ],
)
def test_sale_validation_errors(seeded_context, overrides, error):
    """Invalid sales are refused and nothing is written."""
    with pytest.raises(error):
        customer_ledger.apply_sale(seeded_context, _sale(**overrides))
    assert _records(seeded_context, SheetName.TRANSACTIONS) == []


# ---------------------------------------------------------------------------
# Payments
# ---------------------------------------------------------------------------


def test_payment_credits_account_and_reduces_balance(seeded_context):
    """A payment lowers the balance and funds the account."""
    customer_ledger.apply_sale(seeded_context, _sale())
    payment = customer_ledger.apply_payment(
        seeded_context,
        customer_ledger.PaymentCommand(customer_id="C1", amount=Decimal("1000"), account_id="A2", date=SALE_DATE),
    )

    assert payment.amount == Decimal("-1000.00")
    assert payment.transaction_type == TransactionType.PAYMENT.value
    assert customer_ledger.customer_balance(seeded_context, "C1") == Decimal("1500.00")
    assert account_ledger.account_balance(seeded_context, "A2") == Decimal("1000.00")

    entries = [row for row in _records(seeded_context, SheetName.ACCOUNT_TRANSACTIONS) if row.account_id == "A2"]
    assert len(entries) == 1
    assert entries[0].linked_transaction_id == payment.transaction_id
    assert entries[0].description == "Payment from Ravi Traders"


def test_payment_may_exceed_balance(seeded_context):
    """Customers may pay more than they owe."""
    customer_ledger.apply_payment(
        seeded_context, customer_ledger.PaymentCommand(customer_id="C1", amount=Decimal("75"), account_id="A1")
    )

    assert customer_ledger.customer_balance(seeded_context, "C1") == Decimal("-75.00")


def test_payment_to_unknown_account_writes_nothing(seeded_context):
    """An unknown account leaves no half-written payment."""
    with pytest.raises(core_logic.NotFoundError):
        customer_ledger.apply_payment(
            seeded_context, customer_ledger.PaymentCommand(customer_id="C1", amount=Decimal("5"), account_id="A404")
        )

    assert _records(seeded_context, SheetName.TRANSACTIONS) == []
    assert customer_ledger.customer_balance(seeded_context, "C1") == Decimal("0.00")


# ---------------------------------------------------------------------------
# Discounts
# ---------------------------------------------------------------------------


@pytest.fixture
def owing_context(seeded_context):
    customer_ledger.apply_sale(seeded_context, _sale(quantity=4))
    assert customer_ledger.customer_balance(seeded_context, "C1") == Decimal("1000.00")
    return seeded_context


def test_discount_is_capped_at_a_fifth_of_the_balance(owing_context):
    """Large discounts are clamped to a fifth of the balance."""
    discount = customer_ledger.apply_discount(
        owing_context, customer_ledger.DiscountCommand(customer_id="C1", amount=Decimal("300"))
    )

    assert discount.amount == Decimal("-200.00")
    assert discount.transaction_type == TransactionType.PAYMENT.value
    assert discount.discount_category == customer_ledger.DEFAULT_DISCOUNT_CATEGORY
    assert discount.account_id is None
    assert customer_ledger.customer_balance(owing_context, "C1") == Decimal("800.00")


def test_discount_within_cap_is_applied_in_full(owing_context):
    """Small discounts are applied as asked."""
    customer_ledger.apply_discount(
        owing_context,
        customer_ledger.DiscountCommand(customer_id="C1", amount=Decimal("150"), category="Festival"),
    )

    assert customer_ledger.customer_balance(owing_context, "C1") == Decimal("850.00")


def test_percentage_discount_uses_current_balance(owing_context):
    """Percent discounts are taken from the current balance."""
    discount = customer_ledger.apply_discount(
        owing_context, customer_ledger.DiscountCommand(customer_id="C1", percent=Decimal("10"))
    )

    assert discount.amount == Decimal("-100.00")


def test_percentage_discount_keeps_fractional_percent(owing_context):
    """Only the discount value is rounded, not the percentage."""
    discount = customer_ledger.apply_discount(
        owing_context, customer_ledger.DiscountCommand(customer_id="C1", percent=Decimal("12.345"))
    )

    assert discount.amount == Decimal("-123.45")


def test_percentage_discount_is_capped_too(owing_context):
    """Percent discounts obey the same cap."""
    discount = customer_ledger.apply_discount(
        owing_context, customer_ledger.DiscountCommand(customer_id="C1", percent=Decimal("50"))
    )

    assert discount.amount == Decimal("-200.00")


def test_discount_never_touches_accounts(owing_context):
    """Discounts change no account."""
    before = {row.account_id: row.balance for row in account_ledger.list_accounts(owing_context)}

    customer_ledger.apply_discount(owing_context, customer_ledger.DiscountCommand(customer_id="C1", amount=Decimal("10")))

    after = {row.account_id: row.balance for row in account_ledger.list_accounts(owing_context)}
    assert before == after


def test_discount_rejected_without_outstanding_balance(seeded_context):
    """Nothing owed means nothing to discount."""
    with pytest.raises(core_logic.BusinessRuleViolation):
        customer_ledger.apply_discount(
            seeded_context, customer_ledger.DiscountCommand(customer_id="C1", amount=Decimal("10"))
        )
    assert _records(seeded_context, SheetName.TRANSACTIONS) == []


@pytest.mark.parametrize(
    "amount, percent",
    [(None, None), (Decimal("10"), Decimal("5")), (None, Decimal("0")), (None, Decimal("101"))],
)
def test_discount_requires_exactly_one_valid_value(owing_context, amount, percent):
    """Exactly one of amount or percent must be given."""
    with pytest.raises(core_logic.InvalidAmountError):
        customer_ledger.apply_discount(
            owing_context, customer_ledger.DiscountCommand(customer_id="C1", amount=amount, percent=percent)
        )


# ---------------------------------------------------------------------------
# In-place notes and delegation
# ---------------------------------------------------------------------------


def test_update_notes_only_changes_notes(seeded_context):
    """Editing notes leaves every other field alone."""
    sale = customer_ledger.apply_sale(seeded_context, _sale(quantity=1))

    updated = customer_ledger.update_notes(seeded_context, sale.transaction_id, "Delivered by truck")

    assert updated.notes == "Delivered by truck"
    assert updated.amount == sale.amount


def test_reverse_delegates_to_reconciliation(seeded_context):
    """Reversal is handled by the reconciliation module."""
    sale = customer_ledger.apply_sale(seeded_context, _sale(quantity=3))

    customer_ledger.reverse(seeded_context, sale.transaction_id)

    assert customer_ledger.customer_balance(seeded_context, "C1") == Decimal("0.00")
    assert core_logic.read_aggregate(seeded_context, SheetName.STOCKS, "S1").quantity == 100


def test_edit_delegates_to_reconciliation(seeded_context):
    """Edits are handled by the reconciliation module."""
    sale = customer_ledger.apply_sale(seeded_context, _sale(quantity=3))

    replacement = customer_ledger.edit(seeded_context, sale.transaction_id, _sale(quantity=5))

    assert replacement.transaction_id == sale.transaction_id
    assert stock_ledger.list_stocks(seeded_context)[0].quantity == 95
