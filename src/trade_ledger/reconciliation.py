"""Edit and delete engine for recorded history.

Every record kind knows its own undo delta: a customer transaction gives back
its signed amount, an account entry gives back its signed effect, and a stock
event gives back its ``quantity_change``. Deleting a record queues that delta
and removes the record together with whatever it owns (the account side of a
payment, the deduction behind a stock-backed sale, the card behind a dump).
Editing queues the same reversal and then re-plans the record from the
corrected values into the same :class:`~trade_ledger.core_logic.ChangeSet`,
keeping the original identifier. Both paths commit one unit, so nothing ever
observes a reversed-but-not-reapplied state and overlapping deltas simply net
out.
"""

from __future__ import annotations

import dataclasses
from datetime import date
from decimal import Decimal
from typing import Optional, Tuple, Union

from . import account_ledger, customer_ledger, data_manager, log, stock_ledger
from .constants import (
    EXPENSE_DESCRIPTION_PREFIX,
    AccountTransactionType,
    PurchaseOrigin,
    SheetName,
    StockEventType,
)
from .core_logic import (
    BusinessRuleViolation,
    ChangeSet,
    ConsistencyViolationError,
    RuntimeContext,
    commit_changes,
    find_record,
    generate_record_id,
    get_record,
    list_records,
    require_positive_money,
    require_positive_quantity,
    to_money,
)


CustomerCommand = Union[
    customer_ledger.SaleCommand,
    customer_ledger.PaymentCommand,
    customer_ledger.DiscountCommand,
]


def _find_sale_deduction(context: RuntimeContext, transaction_id: str) -> Optional[data_manager.StockEventRow]:
    for event in list_records(context, SheetName.STOCK_EVENTS):
        if (
            event.linked_transaction_id == transaction_id
            and event.event_type == StockEventType.SALE_DEDUCTION.value
        ):
            return event
    return None


def _find_payment_entry(context: RuntimeContext, transaction_id: str) -> Optional[data_manager.AccountTransactionRow]:
    for entry in list_records(context, SheetName.ACCOUNT_TRANSACTIONS):
        if (
            entry.linked_transaction_id == transaction_id
            and entry.entry_type == AccountTransactionType.PAYMENT.value
        ):
            return entry
    return None


def _keep_date(command, date_iso: str):
    """Default an edit's date to the date of the record it replaces."""

    if command.date is None:
        return dataclasses.replace(command, date=date.fromisoformat(date_iso))
    return command


def _plan_transaction_removal(context: RuntimeContext, changes: ChangeSet, transaction: data_manager.TransactionRow) -> None:
    """Queue the reversal and removal of a customer transaction and what it owns.

    Raises:
        ConsistencyViolationError: If a stock-backed sale has lost its
            deduction event while its location is still tracked, or a payment
            has lost its account entry.
    """

    changes.adjust(SheetName.CUSTOMERS, transaction.customer_id, "balance", -transaction.amount)
    changes.delete(SheetName.TRANSACTIONS, transaction.transaction_id)

    if transaction.is_sale:
        event = _find_sale_deduction(context, transaction.transaction_id)
        if transaction.stock_id is not None:
            tracked = find_record(context, SheetName.STOCKS, transaction.stock_id) is not None
            if tracked and event is None:
                log.error("Sale '%s' has no stock deduction event", transaction.transaction_id)
                raise ConsistencyViolationError(
                    f"Stock deduction for sale '{transaction.transaction_id}' is missing"
                )
            if tracked:
                stock_ledger.restore_for_sale(context, changes, transaction.stock_id, -event.quantity_change)
            else:
                log.info(
                    "Location '%s' of sale '%s' is no longer tracked; stock not restored",
                    transaction.location,
                    transaction.transaction_id,
                )
        if event is not None:
            changes.delete(SheetName.STOCK_EVENTS, event.event_id)
        if transaction.purchase_id is not None:
            if find_record(context, SheetName.PURCHASES, transaction.purchase_id) is None:
                log.warning(
                    "Purchase card '%s' of sale '%s' already removed",
                    transaction.purchase_id,
                    transaction.transaction_id,
                )
            else:
                changes.delete(SheetName.PURCHASES, transaction.purchase_id)
    elif transaction.is_cash_payment:
        entry = _find_payment_entry(context, transaction.transaction_id)
        if entry is None:
            log.error("Payment '%s' has no account entry", transaction.transaction_id)
            raise ConsistencyViolationError(
                f"Account entry for payment '{transaction.transaction_id}' is missing"
            )
        account_ledger.reverse_entry(changes, entry)
        changes.delete(SheetName.ACCOUNT_TRANSACTIONS, entry.entry_id)


def delete_transaction(context: RuntimeContext, transaction_id: str) -> None:
    """Delete a customer transaction and undo all of its effects atomically.

    A sale gives its amount back to the customer and its units back to the
    location (when still tracked). A payment gives back both the customer
    balance and the account credit. A discount gives back the forgiven value.

    Raises:
        NotFoundError: If ``transaction_id`` is unknown.
        ConsistencyViolationError: If a linked record needed for the reversal
            is missing.
    """

    transaction = get_record(context, SheetName.TRANSACTIONS, transaction_id)
    changes = ChangeSet()
    _plan_transaction_removal(context, changes, transaction)
    commit_changes(context, changes)
    log.info(
        "Deleted %s '%s' of customer '%s'",
        transaction.transaction_type,
        transaction_id,
        transaction.customer_id,
    )


def edit_transaction(context: RuntimeContext, transaction_id: str, command: CustomerCommand) -> data_manager.TransactionRow:
    """Replace a customer transaction with corrected values as one unit.

    The command kind must match the stored transaction: a sale is edited with
    a :class:`~trade_ledger.customer_ledger.SaleCommand`, a payment with a
    :class:`~trade_ledger.customer_ledger.PaymentCommand`, and a discount
    with a :class:`~trade_ledger.customer_ledger.DiscountCommand`. When the
    command carries no date the original date is kept.

    Returns:
        TransactionRow: The replacement, stored under the original id.

    Raises:
        BusinessRuleViolation: If the command kind does not match.
        InsufficientStockError: If the corrected sale needs more units than
            the location holds once the original deduction is given back.
    """

    transaction = get_record(context, SheetName.TRANSACTIONS, transaction_id)
    if transaction.is_sale:
        expected = customer_ledger.SaleCommand
    elif transaction.is_discount:
        expected = customer_ledger.DiscountCommand
    else:
        expected = customer_ledger.PaymentCommand
    if not isinstance(command, expected):
        log.warning("Rejected edit of '%s' with %s", transaction_id, type(command).__name__)
        raise BusinessRuleViolation(
            f"Transaction '{transaction_id}' must be edited with a {expected.__name__}"
        )
    command = _keep_date(command, transaction.date_iso)

    changes = ChangeSet()
    _plan_transaction_removal(context, changes, transaction)
    if isinstance(command, customer_ledger.SaleCommand):
        replacement = customer_ledger.plan_sale(context, changes, command, transaction_id=transaction_id)
    elif isinstance(command, customer_ledger.DiscountCommand):
        replacement = customer_ledger.plan_discount(context, changes, command, transaction_id=transaction_id)
    else:
        replacement = customer_ledger.plan_payment(
            context,
            changes,
            command,
            transaction_id=transaction_id,
            entry_id=generate_record_id("F"),
        )
    commit_changes(context, changes)
    log.info("Edited %s '%s'", replacement.transaction_type, transaction_id)
    return replacement


def _transfer_legs(
    context: RuntimeContext, entry: data_manager.AccountTransactionRow
) -> Tuple[data_manager.AccountTransactionRow, data_manager.AccountTransactionRow]:
    sibling = find_record(context, SheetName.ACCOUNT_TRANSACTIONS, entry.linked_entry_id)
    if sibling is None:
        log.error("Transfer entry '%s' has no sibling leg", entry.entry_id)
        raise ConsistencyViolationError(f"Sibling of transfer entry '{entry.entry_id}' is missing")
    if entry.entry_type == AccountTransactionType.TRANSFER_OUT.value:
        return entry, sibling
    return sibling, entry


def _refuse_payment_entry(entry: data_manager.AccountTransactionRow, action: str) -> None:
    if entry.entry_type == AccountTransactionType.PAYMENT.value:
        log.warning("Refused to %s payment entry '%s' directly", action, entry.entry_id)
        raise BusinessRuleViolation(
            f"Entry '{entry.entry_id}' belongs to payment '{entry.linked_transaction_id}'; "
            f"{action} the payment instead"
        )


def delete_account_entry(context: RuntimeContext, entry_id: str) -> None:
    """Delete an account entry and undo its balance effect.

    Deleting either leg of a transfer removes both legs.

    Raises:
        NotFoundError: If ``entry_id`` is unknown.
        BusinessRuleViolation: If the entry is the account side of a customer
            payment.
        ConsistencyViolationError: If a transfer leg has lost its sibling.
    """

    entry = get_record(context, SheetName.ACCOUNT_TRANSACTIONS, entry_id)
    _refuse_payment_entry(entry, "delete")

    changes = ChangeSet()
    entries = [entry]
    if entry.entry_type in (AccountTransactionType.TRANSFER_IN.value, AccountTransactionType.TRANSFER_OUT.value):
        entries = list(_transfer_legs(context, entry))
    for item in entries:
        account_ledger.reverse_entry(changes, item)
        changes.delete(SheetName.ACCOUNT_TRANSACTIONS, item.entry_id)
    commit_changes(context, changes)
    log.info("Deleted %s entry '%s'", entry.entry_type, entry_id)


def _description_for_edit(entry: data_manager.AccountTransactionRow, description: Optional[str]) -> Optional[str]:
    """Keep a custom description; let a default one be regenerated."""

    if description is not None:
        return description
    entry_type = AccountTransactionType(entry.entry_type)
    if entry_type is AccountTransactionType.EXPENSE:
        defaulted = f"{EXPENSE_DESCRIPTION_PREFIX}{entry.category or 'General'}"
        return None if entry.description == defaulted else entry.description
    if entry_type in account_ledger.DEFAULT_DESCRIPTIONS and entry.description == account_ledger.default_description(
        entry_type, entry.amount
    ):
        return None
    return entry.description


def edit_account_entry(
    context: RuntimeContext,
    entry_id: str,
    *,
    amount: Optional[Decimal] = None,
    description: Optional[str] = None,
    category: Optional[str] = None,
    when: Optional[date] = None,
    notes: Optional[str] = None,
) -> data_manager.AccountTransactionRow:
    """Correct an account entry in one unit, keeping its id.

    Editing one leg of a transfer rewrites both legs with the new amount.
    Omitted arguments keep their stored values.

    Returns:
        AccountTransactionRow: The replacement entry.

    Raises:
        BusinessRuleViolation: If the entry is the account side of a customer
            payment.
        InsufficientFundsError: If overdrafts are disabled and the correction
            would overdraw an account.
    """

    entry = get_record(context, SheetName.ACCOUNT_TRANSACTIONS, entry_id)
    _refuse_payment_entry(entry, "edit")

    value = require_positive_money(amount) if amount is not None else entry.amount
    date_iso = when.isoformat() if when is not None else entry.date_iso
    notes = notes if notes is not None else entry.notes
    entry_type = AccountTransactionType(entry.entry_type)

    changes = ChangeSet()
    if entry_type in (AccountTransactionType.TRANSFER_IN, AccountTransactionType.TRANSFER_OUT):
        outgoing, incoming = _transfer_legs(context, entry)
        for item in (outgoing, incoming):
            account_ledger.reverse_entry(changes, item)
            changes.delete(SheetName.ACCOUNT_TRANSACTIONS, item.entry_id)
        legs = account_ledger.plan_transfer(
            context,
            changes,
            outgoing.account_id,
            incoming.account_id,
            value,
            out_entry_id=outgoing.entry_id,
            in_entry_id=incoming.entry_id,
            date_iso=date_iso,
            description=_description_for_edit(entry, description),
            notes=notes,
        )
        commit_changes(context, changes, writer=data_manager.record_transfer_pair)
        replacement = legs[0] if entry_id == outgoing.entry_id else legs[1]
    else:
        account_ledger.reverse_entry(changes, entry)
        changes.delete(SheetName.ACCOUNT_TRANSACTIONS, entry_id)
        replacement = account_ledger.plan_entry(
            context,
            changes,
            entry_id=entry_id,
            account_id=entry.account_id,
            entry_type=entry_type,
            amount=value,
            date_iso=date_iso,
            description=_description_for_edit(entry, description),
            category=category if category is not None else entry.category,
            notes=notes,
        )
        commit_changes(context, changes)
    log.info("Edited %s entry '%s'", entry.entry_type, entry_id)
    return replacement


def _transfer_events(
    context: RuntimeContext, event: data_manager.StockEventRow
) -> Tuple[data_manager.StockEventRow, data_manager.StockEventRow]:
    sibling = find_record(context, SheetName.STOCK_EVENTS, event.linked_event_id)
    if sibling is None:
        log.error("Transfer event '%s' has no sibling leg", event.event_id)
        raise ConsistencyViolationError(f"Sibling of transfer event '{event.event_id}' is missing")
    if event.quantity_change < 0:
        return event, sibling
    return sibling, event


def _refuse_sale_deduction(event: data_manager.StockEventRow, action: str) -> None:
    if event.event_type == StockEventType.SALE_DEDUCTION.value:
        log.warning("Refused to %s sale deduction '%s' directly", action, event.event_id)
        raise BusinessRuleViolation(
            f"Event '{event.event_id}' belongs to sale '{event.linked_transaction_id}'; "
            f"{action} the sale instead"
        )


def _plan_event_removal(context: RuntimeContext, changes: ChangeSet, event: data_manager.StockEventRow) -> None:
    events = [event]
    if event.event_type == StockEventType.TRANSFER.value:
        events = list(_transfer_events(context, event))
    for item in events:
        stock_ledger.reverse_event(changes, item)
        changes.delete(SheetName.STOCK_EVENTS, item.event_id)
    if event.event_type == StockEventType.DUMP.value and event.purchase_id is not None:
        if find_record(context, SheetName.PURCHASES, event.purchase_id) is None:
            log.warning("Purchase card '%s' of dump '%s' already removed", event.purchase_id, event.event_id)
        else:
            changes.delete(SheetName.PURCHASES, event.purchase_id)


def delete_stock_event(context: RuntimeContext, event_id: str) -> None:
    """Delete a stock movement and undo its quantity change.

    Deleting either leg of a transfer removes both legs. Deleting a dump also
    removes its purchase card and takes the dumped units back out of the
    destination.

    Raises:
        NotFoundError: If ``event_id`` is unknown.
        BusinessRuleViolation: If the event is the deduction behind a sale.
        ConsistencyViolationError: If a transfer leg has lost its sibling.
        InsufficientStockError: If undoing the event would leave a location
            below zero.
    """

    event = get_record(context, SheetName.STOCK_EVENTS, event_id)
    _refuse_sale_deduction(event, "delete")
    changes = ChangeSet()
    _plan_event_removal(context, changes, event)
    commit_changes(context, changes)
    log.info("Deleted %s event '%s'", event.event_type, event_id)


def edit_stock_event(
    context: RuntimeContext,
    event_id: str,
    *,
    quantity: Optional[int] = None,
    sub_category: Optional[str] = None,
    when: Optional[date] = None,
    notes: Optional[str] = None,
) -> data_manager.StockEventRow:
    """Correct a load, transfer, or dump in one unit, keeping its id.

    Omitted arguments keep their stored values. For a transfer the returned
    row is the leg named by ``event_id``.

    Raises:
        BusinessRuleViolation: If the event is the deduction behind a sale.
        InsufficientStockError: If the correction would leave a location
            below zero.
    """

    event = get_record(context, SheetName.STOCK_EVENTS, event_id)
    _refuse_sale_deduction(event, "edit")

    new_quantity = require_positive_quantity(quantity) if quantity is not None else abs(event.quantity_change)
    new_date = when or date.fromisoformat(event.date_iso)
    new_notes = notes if notes is not None else event.notes
    new_sub_category = sub_category if sub_category is not None else event.sub_category

    changes = ChangeSet()
    _plan_event_removal(context, changes, event)
    writer = data_manager.commit_unit
    if event.event_type == StockEventType.LOAD.value:
        replacement = stock_ledger.plan_load(
            context,
            changes,
            stock_ledger.LoadStockCommand(
                stock_id=event.stock_id,
                quantity=new_quantity,
                product_id=event.product_id,
                sub_category=new_sub_category,
                date=new_date,
                notes=new_notes,
            ),
            event_id=event_id,
        )
    elif event.event_type == StockEventType.TRANSFER.value:
        outgoing, incoming = _transfer_events(context, event)
        legs = stock_ledger.plan_transfer(
            context,
            changes,
            stock_ledger.TransferStockCommand(
                from_stock_id=outgoing.stock_id,
                to_stock_id=incoming.stock_id,
                quantity=new_quantity,
                date=new_date,
                notes=new_notes,
            ),
            out_event_id=outgoing.event_id,
            in_event_id=incoming.event_id,
        )
        replacement = legs[0] if event_id == outgoing.event_id else legs[1]
        writer = data_manager.record_stock_transfer_pair
    else:
        replacement, _ = stock_ledger.plan_dump(
            context,
            changes,
            stock_ledger.DumpStockCommand(
                stock_id=event.stock_id,
                quantity=new_quantity,
                product_id=event.product_id,
                sub_category=new_sub_category,
                source_location=event.from_location,
                date=new_date,
                notes=new_notes,
            ),
            event_id=event_id,
            purchase_id=event.purchase_id or generate_record_id("P"),
        )
    commit_changes(context, changes, writer=writer)
    log.info("Edited %s event '%s'", event.event_type, event_id)
    return replacement


def _dump_event_for(context: RuntimeContext, purchase: data_manager.PurchaseRow) -> data_manager.StockEventRow:
    event = find_record(context, SheetName.STOCK_EVENTS, purchase.linked_record_id)
    if event is None:
        log.error("Dump card '%s' has no stock event", purchase.purchase_id)
        raise ConsistencyViolationError(f"Dump event for purchase '{purchase.purchase_id}' is missing")
    return event


def _refuse_direct_sale_card(purchase: data_manager.PurchaseRow) -> None:
    if purchase.origin == PurchaseOrigin.DIRECT_SALE.value:
        log.warning("Refused to edit direct-sale card '%s'", purchase.purchase_id)
        raise BusinessRuleViolation(
            f"Purchase '{purchase.purchase_id}' mirrors sale '{purchase.linked_record_id}'; edit the sale instead"
        )


def delete_purchase(context: RuntimeContext, purchase_id: str) -> None:
    """Delete a purchase record.

    A dump card is deleted together with its dump event, and the dumped
    units are taken back out of the destination. A direct-sale card is
    detached from its sale. A monetary purchase is simply removed.

    Raises:
        NotFoundError: If ``purchase_id`` is unknown.
        ConsistencyViolationError: If a dump card has lost its event.
        InsufficientStockError: If the destination no longer holds the
            dumped units.
    """

    purchase = get_record(context, SheetName.PURCHASES, purchase_id)
    if purchase.is_dump:
        event = _dump_event_for(context, purchase)
        delete_stock_event(context, event.event_id)
        return

    changes = ChangeSet()
    changes.delete(SheetName.PURCHASES, purchase_id)
    if purchase.origin == PurchaseOrigin.DIRECT_SALE.value and purchase.linked_record_id is not None:
        if find_record(context, SheetName.TRANSACTIONS, purchase.linked_record_id) is not None:
            changes.update(SheetName.TRANSACTIONS, purchase.linked_record_id, purchase_id=None)
    commit_changes(context, changes)
    log.info("Deleted %s purchase '%s'", purchase.origin, purchase_id)


def edit_purchase(
    context: RuntimeContext,
    purchase_id: str,
    *,
    quantity: Optional[int] = None,
    unit_price: Optional[Decimal] = None,
    original_price: Optional[Decimal] = None,
    category: Optional[str] = None,
    when: Optional[date] = None,
    notes: Optional[str] = None,
) -> data_manager.PurchaseRow:
    """Correct a purchase record, keeping its id.

    A dump card is corrected through its dump event so the destination
    quantity follows. Monetary purchases have their total recomputed.

    Raises:
        BusinessRuleViolation: If the card mirrors a direct sale or a price
            is given for a dump card.
    """

    purchase = get_record(context, SheetName.PURCHASES, purchase_id)
    _refuse_direct_sale_card(purchase)
    if purchase.is_dump:
        if unit_price is not None or original_price is not None:
            raise BusinessRuleViolation("Dump cards carry no cost")
        event = _dump_event_for(context, purchase)
        edit_stock_event(
            context,
            event.event_id,
            quantity=quantity,
            sub_category=category,
            when=when,
            notes=notes,
        )
        return get_record(context, SheetName.PURCHASES, purchase_id)

    new_quantity = require_positive_quantity(quantity) if quantity is not None else purchase.quantity
    new_price = require_positive_money(unit_price, label="Unit price") if unit_price is not None else purchase.unit_price
    field_values = {
        "quantity": new_quantity,
        "unit_price": new_price,
        "total": to_money(new_price * new_quantity),
        "date_iso": when.isoformat() if when is not None else purchase.date_iso,
    }
    if original_price is not None:
        field_values["original_price"] = to_money(original_price)
    if category is not None:
        field_values["category"] = category
    if notes is not None:
        field_values["notes"] = notes
    changes = ChangeSet()
    changes.update(SheetName.PURCHASES, purchase_id, **field_values)
    commit_changes(context, changes)
    log.info("Edited purchase '%s'", purchase_id)
    return get_record(context, SheetName.PURCHASES, purchase_id)
