"""Payment reminders for customers.

Reminders are a follow-up list only; creating, completing, or deleting one
never changes a balance.
"""

from __future__ import annotations

from datetime import date
from decimal import Decimal
from typing import List, Optional

from . import data_manager, log
from .constants import ReminderStatus, SheetName
from .core_logic import (
    BusinessRuleViolation,
    ChangeSet,
    RuntimeContext,
    commit_changes,
    generate_record_id,
    get_customer,
    get_record,
    list_records,
    require_positive_money,
    resolve_date,
)


def add_reminder(
    context: RuntimeContext,
    *,
    customer_id: str,
    amount: Decimal,
    due_date: date,
    notes: Optional[str] = None,
    when: Optional[date] = None,
) -> data_manager.ReminderRow:
    """Schedule a payment reminder for a customer.

    Raises:
        NotFoundError: If the customer is unknown.
        InvalidAmountError: If ``amount`` is not positive.
    """

    value = require_positive_money(amount)
    get_customer(context, customer_id)
    reminder = data_manager.ReminderRow(
        reminder_id=generate_record_id("R"),
        customer_id=customer_id,
        amount=value,
        due_date_iso=due_date.isoformat(),
        status=ReminderStatus.ACTIVE.value,
        notes=notes,
        created_date=resolve_date(when).isoformat(),
        completed_date=None,
    )
    changes = ChangeSet()
    changes.create(SheetName.REMINDERS, reminder)
    commit_changes(context, changes)
    log.info("Added reminder '%s' for customer '%s' due %s", reminder.reminder_id, customer_id, reminder.due_date_iso)
    return reminder


def complete_reminder(context: RuntimeContext, reminder_id: str, *, when: Optional[date] = None) -> data_manager.ReminderRow:
    """Mark an active reminder as completed.

    Raises:
        NotFoundError: If the reminder is unknown.
        BusinessRuleViolation: If it is already completed.
    """

    reminder = get_record(context, SheetName.REMINDERS, reminder_id)
    if reminder.status == ReminderStatus.COMPLETED.value:
        log.warning("Reminder '%s' already completed", reminder_id)
        raise BusinessRuleViolation(f"Reminder '{reminder_id}' is already completed")
    changes = ChangeSet()
    changes.update(
        SheetName.REMINDERS,
        reminder_id,
        status=ReminderStatus.COMPLETED.value,
        completed_date=resolve_date(when).isoformat(),
    )
    commit_changes(context, changes)
    log.info("Completed reminder '%s'", reminder_id)
    return get_record(context, SheetName.REMINDERS, reminder_id)


def update_reminder(
    context: RuntimeContext,
    reminder_id: str,
    *,
    amount: Optional[Decimal] = None,
    due_date: Optional[date] = None,
    notes: Optional[str] = None,
) -> data_manager.ReminderRow:
    """Change the amount, due date, or notes of a reminder.

    Raises:
        NotFoundError: If the reminder is unknown.
        InvalidAmountError: If ``amount`` is given but not positive.
    """

    get_record(context, SheetName.REMINDERS, reminder_id)
    field_values = {}
    if amount is not None:
        field_values["amount"] = require_positive_money(amount)
    if due_date is not None:
        field_values["due_date_iso"] = due_date.isoformat()
    if notes is not None:
        field_values["notes"] = notes
    if field_values:
        changes = ChangeSet()
        changes.update(SheetName.REMINDERS, reminder_id, **field_values)
        commit_changes(context, changes)
        log.info("Updated reminder '%s'", reminder_id)
    return get_record(context, SheetName.REMINDERS, reminder_id)


def delete_reminder(context: RuntimeContext, reminder_id: str) -> None:
    """Remove a reminder whatever its status.

    Args:
        context (RuntimeContext): Runtime context providing workbook access.
        reminder_id (str): Reminder to remove.

    Raises:
        NotFoundError: If the reminder is unknown.
    """

    get_record(context, SheetName.REMINDERS, reminder_id)
    changes = ChangeSet()
    changes.delete(SheetName.REMINDERS, reminder_id)
    commit_changes(context, changes)
    log.info("Deleted reminder '%s'", reminder_id)


def list_reminders(
    context: RuntimeContext,
    *,
    status: Optional[ReminderStatus] = None,
    customer_id: Optional[str] = None,
) -> List[data_manager.ReminderRow]:
    """Return reminders ordered by due date, optionally filtered."""

    reminders = [
        reminder
        for reminder in list_records(context, SheetName.REMINDERS)
        if (status is None or reminder.status == status.value)
        and (customer_id is None or reminder.customer_id == customer_id)
    ]
    return sorted(reminders, key=lambda reminder: (reminder.due_date_iso, reminder.reminder_id))


def due_reminders(context: RuntimeContext, *, on: Optional[date] = None) -> List[data_manager.ReminderRow]:
    """Return active reminders due on or before ``on`` (default today)."""

    cutoff = resolve_date(on).isoformat()
    return [
        reminder
        for reminder in list_reminders(context, status=ReminderStatus.ACTIVE)
        if reminder.due_date_iso <= cutoff
    ]
