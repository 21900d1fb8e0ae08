"""Account ledger: named cash accounts and the entries that move their balances.

Entry amounts are stored as unsigned magnitudes. The direction of each entry
type lives in :data:`~trade_ledger.constants.ACCOUNT_ENTRY_SIGNS`, so the
balance of an account is always the signed sum of its entries.
"""

from __future__ import annotations

from datetime import date
from decimal import Decimal
from typing import List, Optional, Tuple

from . import data_manager, log
from .constants import (
    ACCOUNT_ENTRY_SIGNS,
    CURRENCY_SYMBOL,
    EXPENSE_DESCRIPTION_PREFIX,
    AccountTransactionType,
    SheetName,
)
from .core_logic import (
    BusinessRuleViolation,
    ChangeSet,
    InvalidAmountError,
    InvalidTransferError,
    RuntimeContext,
    commit_changes,
    find_record,
    generate_record_id,
    get_account,
    list_records,
    read_aggregate,
    require_positive_money,
    resolve_date,
    to_money,
)


DEFAULT_DESCRIPTIONS = {
    AccountTransactionType.ADD_FUNDS: "Added Funds",
    AccountTransactionType.REMOVE_FUNDS: "Removed Funds",
    AccountTransactionType.TRANSFER_OUT: "Transfer Out",
    AccountTransactionType.TRANSFER_IN: "Transfer In",
}


def default_description(entry_type: AccountTransactionType, amount: Decimal) -> str:
    """Build the description used when the caller supplies none."""

    return f"{DEFAULT_DESCRIPTIONS[entry_type]} - {CURRENCY_SYMBOL}{amount}"


def signed_amount(entry: data_manager.AccountTransactionRow) -> Decimal:
    """Return the balance effect of ``entry``."""

    return ACCOUNT_ENTRY_SIGNS[AccountTransactionType(entry.entry_type)] * entry.amount


def reverse_entry(changes: ChangeSet, entry: data_manager.AccountTransactionRow) -> None:
    """Queue the undo delta of ``entry`` on its account."""

    changes.adjust(SheetName.ACCOUNTS, entry.account_id, "balance", -signed_amount(entry))


def add_account(
    context: RuntimeContext,
    *,
    name: str,
    opening_balance: Decimal = Decimal("0.00"),
    account_id: Optional[str] = None,
    when: Optional[date] = None,
) -> data_manager.AccountRow:
    """Register a cash account.

    A positive opening balance is recorded as an ``add-funds`` entry so the
    balance always equals the signed sum of the account's entries.

    Raises:
        BusinessRuleViolation: If the name or id is already in use.
        InvalidAmountError: If ``opening_balance`` is negative.
    """

    name = name.strip()
    if not name:
        raise BusinessRuleViolation("Account name is required")
    if any(account.name == name for account in list_accounts(context)):
        log.warning("Duplicate account name '%s'", name)
        raise BusinessRuleViolation(f"Account '{name}' already exists")
    opening = to_money(opening_balance)
    if opening < 0:
        raise InvalidAmountError("Opening balance cannot be negative")

    account_id = account_id or generate_record_id("A")
    if find_record(context, SheetName.ACCOUNTS, account_id) is not None:
        raise BusinessRuleViolation(f"Account id '{account_id}' already exists")

    created = resolve_date(when).isoformat()
    account = data_manager.AccountRow(
        account_id=account_id,
        name=name,
        balance=opening,
        created_date=created,
    )
    changes = ChangeSet()
    changes.create(SheetName.ACCOUNTS, account)
    if opening > 0:
        changes.create(
            SheetName.ACCOUNT_TRANSACTIONS,
            _entry(
                entry_id=generate_record_id("F"),
                account_id=account_id,
                entry_type=AccountTransactionType.ADD_FUNDS,
                amount=opening,
                description="Opening Balance",
                date_iso=created,
            ),
        )
    commit_changes(context, changes)
    log.info("Registered account '%s' with opening balance %s", name, opening)
    return account


def list_accounts(context: RuntimeContext) -> List[data_manager.AccountRow]:
    """Return every account in sheet order.

    Args:
        context (RuntimeContext): Runtime context providing workbook access.

    Returns:
        List[AccountRow]: Accounts with their current balances.
    """

    return list_records(context, SheetName.ACCOUNTS)


def _entry(
    *,
    entry_id: str,
    account_id: str,
    entry_type: AccountTransactionType,
    amount: Decimal,
    description: str,
    date_iso: str,
    category: Optional[str] = None,
    related_account_id: Optional[str] = None,
    linked_entry_id: Optional[str] = None,
    linked_transaction_id: Optional[str] = None,
    notes: Optional[str] = None,
) -> data_manager.AccountTransactionRow:
    return data_manager.AccountTransactionRow(
        entry_id=entry_id,
        account_id=account_id,
        entry_type=entry_type.value,
        amount=amount,
        description=description,
        category=category,
        related_account_id=related_account_id,
        linked_entry_id=linked_entry_id,
        linked_transaction_id=linked_transaction_id,
        date_iso=date_iso,
        notes=notes,
    )


def plan_entry(
    context: RuntimeContext,
    changes: ChangeSet,
    *,
    entry_id: str,
    account_id: str,
    entry_type: AccountTransactionType,
    amount: Decimal,
    date_iso: str,
    description: Optional[str] = None,
    category: Optional[str] = None,
    notes: Optional[str] = None,
    linked_transaction_id: Optional[str] = None,
) -> data_manager.AccountTransactionRow:
    """Contribute a single-account entry and its balance delta to ``changes``.

    Raises:
        NotFoundError: If ``account_id`` is unknown.
        InvalidAmountError: If ``amount`` is not positive.
    """

    value = require_positive_money(amount)
    get_account(context, account_id)
    if not description:
        if entry_type is AccountTransactionType.EXPENSE:
            description = f"{EXPENSE_DESCRIPTION_PREFIX}{category or 'General'}"
        elif entry_type in DEFAULT_DESCRIPTIONS:
            description = default_description(entry_type, value)
        else:
            description = entry_type.value
    elif entry_type is AccountTransactionType.EXPENSE and not description.startswith(EXPENSE_DESCRIPTION_PREFIX):
        description = f"{EXPENSE_DESCRIPTION_PREFIX}{description}"

    entry = _entry(
        entry_id=entry_id,
        account_id=account_id,
        entry_type=entry_type,
        amount=value,
        description=description,
        date_iso=date_iso,
        category=category,
        linked_transaction_id=linked_transaction_id,
        notes=notes,
    )
    changes.create(SheetName.ACCOUNT_TRANSACTIONS, entry)
    changes.adjust(SheetName.ACCOUNTS, account_id, "balance", ACCOUNT_ENTRY_SIGNS[entry_type] * value)
    return entry


def _post(
    context: RuntimeContext,
    entry_type: AccountTransactionType,
    account_id: str,
    amount: Decimal,
    *,
    description: Optional[str],
    category: Optional[str],
    when: Optional[date],
    notes: Optional[str],
) -> data_manager.AccountTransactionRow:
    changes = ChangeSet()
    entry = plan_entry(
        context,
        changes,
        entry_id=generate_record_id("F"),
        account_id=account_id,
        entry_type=entry_type,
        amount=amount,
        date_iso=resolve_date(when).isoformat(),
        description=description,
        category=category,
        notes=notes,
    )
    commit_changes(context, changes)
    log.info("Recorded %s of %s on account '%s'", entry_type.value, entry.amount, account_id)
    return entry


def add_funds(
    context: RuntimeContext,
    account_id: str,
    amount: Decimal,
    *,
    description: Optional[str] = None,
    when: Optional[date] = None,
    notes: Optional[str] = None,
) -> data_manager.AccountTransactionRow:
    """Credit ``amount`` to an account.

    Raises:
        NotFoundError: If the account is unknown.
        InvalidAmountError: If ``amount`` is not positive.
    """

    return _post(
        context,
        AccountTransactionType.ADD_FUNDS,
        account_id,
        amount,
        description=description,
        category=None,
        when=when,
        notes=notes,
    )


def remove_funds(
    context: RuntimeContext,
    account_id: str,
    amount: Decimal,
    *,
    description: Optional[str] = None,
    when: Optional[date] = None,
    notes: Optional[str] = None,
) -> data_manager.AccountTransactionRow:
    """Debit ``amount`` from an account.

    Raises:
        NotFoundError: If the account is unknown.
        InvalidAmountError: If ``amount`` is not positive.
        InsufficientFundsError: If overdrafts are disabled and the balance
            would go negative.
    """

    return _post(
        context,
        AccountTransactionType.REMOVE_FUNDS,
        account_id,
        amount,
        description=description,
        category=None,
        when=when,
        notes=notes,
    )


def debit_for_expense(
    context: RuntimeContext,
    account_id: str,
    amount: Decimal,
    category: str,
    *,
    description: Optional[str] = None,
    when: Optional[date] = None,
    notes: Optional[str] = None,
) -> data_manager.AccountTransactionRow:
    """Record a business expense paid from an account.

    Expense entries carry a category and an ``Expense: `` description prefix.
    They count towards the balance but are left out of fund views.
    """

    return _post(
        context,
        AccountTransactionType.EXPENSE,
        account_id,
        amount,
        description=description,
        category=category,
        when=when,
        notes=notes,
    )


def credit_from_payment(
    context: RuntimeContext,
    changes: ChangeSet,
    account_id: str,
    amount: Decimal,
    *,
    entry_id: str,
    transaction_id: str,
    description: str,
    date_iso: str,
    notes: Optional[str] = None,
) -> data_manager.AccountTransactionRow:
    """Contribute the account side of a customer payment to ``changes``."""

    return plan_entry(
        context,
        changes,
        entry_id=entry_id,
        account_id=account_id,
        entry_type=AccountTransactionType.PAYMENT,
        amount=amount,
        date_iso=date_iso,
        description=description,
        linked_transaction_id=transaction_id,
        notes=notes,
    )


def plan_transfer(
    context: RuntimeContext,
    changes: ChangeSet,
    from_account_id: str,
    to_account_id: str,
    amount: Decimal,
    *,
    out_entry_id: str,
    in_entry_id: str,
    date_iso: str,
    description: Optional[str] = None,
    notes: Optional[str] = None,
) -> Tuple[data_manager.AccountTransactionRow, data_manager.AccountTransactionRow]:
    """Contribute both legs of a fund transfer to ``changes``.

    Raises:
        InvalidTransferError: If the accounts match or ``amount`` is not
            positive.
        NotFoundError: If either account is unknown.
    """

    if from_account_id == to_account_id:
        log.warning("Rejected fund transfer within account '%s'", from_account_id)
        raise InvalidTransferError("Source and destination accounts must differ")
    try:
        value = require_positive_money(amount)
    except InvalidAmountError as exc:
        raise InvalidTransferError(str(exc)) from exc
    source = get_account(context, from_account_id)
    destination = get_account(context, to_account_id)

    outgoing = _entry(
        entry_id=out_entry_id,
        account_id=source.account_id,
        entry_type=AccountTransactionType.TRANSFER_OUT,
        amount=value,
        description=description or default_description(AccountTransactionType.TRANSFER_OUT, value),
        date_iso=date_iso,
        related_account_id=destination.account_id,
        linked_entry_id=in_entry_id,
        notes=notes,
    )
    incoming = _entry(
        entry_id=in_entry_id,
        account_id=destination.account_id,
        entry_type=AccountTransactionType.TRANSFER_IN,
        amount=value,
        description=description or default_description(AccountTransactionType.TRANSFER_IN, value),
        date_iso=date_iso,
        related_account_id=source.account_id,
        linked_entry_id=out_entry_id,
        notes=notes,
    )
    changes.create(SheetName.ACCOUNT_TRANSACTIONS, outgoing)
    changes.create(SheetName.ACCOUNT_TRANSACTIONS, incoming)
    changes.adjust(SheetName.ACCOUNTS, source.account_id, "balance", -value)
    changes.adjust(SheetName.ACCOUNTS, destination.account_id, "balance", value)
    return outgoing, incoming


def transfer_funds(
    context: RuntimeContext,
    from_account_id: str,
    to_account_id: str,
    amount: Decimal,
    *,
    description: Optional[str] = None,
    when: Optional[date] = None,
    notes: Optional[str] = None,
) -> Tuple[data_manager.AccountTransactionRow, data_manager.AccountTransactionRow]:
    """Move ``amount`` between two accounts as one atomic unit.

    Returns:
        tuple[AccountTransactionRow, AccountTransactionRow]: The transfer-out
            and transfer-in entries, each referencing the other.

    Raises:
        InvalidTransferError: If the accounts match or ``amount`` is not
            positive.
        NotFoundError: If either account is unknown.
        InsufficientFundsError: If overdrafts are disabled and the source
            would go negative.
    """

    changes = ChangeSet()
    legs = plan_transfer(
        context,
        changes,
        from_account_id,
        to_account_id,
        amount,
        out_entry_id=generate_record_id("F"),
        in_entry_id=generate_record_id("F"),
        date_iso=resolve_date(when).isoformat(),
        description=description,
        notes=notes,
    )
    commit_changes(context, changes, writer=data_manager.record_transfer_pair)
    log.info(
        "Transferred %s from account '%s' to '%s'",
        legs[0].amount,
        from_account_id,
        to_account_id,
    )
    return legs


def account_balance(context: RuntimeContext, account_id: str) -> Decimal:
    """Return the committed balance of an account."""

    return read_aggregate(context, SheetName.ACCOUNTS, account_id).balance
