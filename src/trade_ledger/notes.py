"""Free-form notes board kept alongside the ledger.

Notes carry a title and optional content; they reference no customer,
account, or stock row and never change an aggregate.
"""

from __future__ import annotations

from datetime import UTC, datetime
from typing import List, Optional

from . import data_manager, log
from .constants import SheetName
from .core_logic import (
    BusinessRuleViolation,
    ChangeSet,
    RuntimeContext,
    commit_changes,
    generate_record_id,
    get_record,
    list_records,
)


def _stamp(when: Optional[datetime]) -> str:
    moment = when if when is not None else datetime.now(UTC)
    return moment.isoformat(timespec="seconds")


def _require_title(title: str) -> str:
    cleaned = title.strip()
    if not cleaned:
        log.warning("Rejected note with a blank title")
        raise BusinessRuleViolation("Note title is required")
    return cleaned


def add_note(
    context: RuntimeContext,
    *,
    title: str,
    content: Optional[str] = None,
    when: Optional[datetime] = None,
) -> data_manager.NoteRow:
    """Pin a new note to the board.

    Args:
        context (RuntimeContext): Runtime context providing workbook access.
        title (str): Short heading; must not be blank.
        content (str | None): Body text.
        when (datetime | None): Creation moment. Defaults to now (UTC).

    Returns:
        NoteRow: The stored note, with ``created_at == updated_at``.

    Raises:
        BusinessRuleViolation: If ``title`` is blank.
    """

    stamp = _stamp(when)
    note = data_manager.NoteRow(
        note_id=generate_record_id("N"),
        title=_require_title(title),
        content=content,
        created_at=stamp,
        updated_at=stamp,
    )
    changes = ChangeSet()
    changes.create(SheetName.NOTES, note)
    commit_changes(context, changes)
    log.info("Added note '%s' (%s)", note.note_id, note.title)
    return note


def update_note(
    context: RuntimeContext,
    note_id: str,
    *,
    title: Optional[str] = None,
    content: Optional[str] = None,
    when: Optional[datetime] = None,
) -> data_manager.NoteRow:
    """Change the title or content of a note and bump ``updated_at``.

    Raises:
        NotFoundError: If the note is unknown.
        BusinessRuleViolation: If ``title`` is given but blank.
    """

    get_record(context, SheetName.NOTES, note_id)
    field_values = {"updated_at": _stamp(when)}
    if title is not None:
        field_values["title"] = _require_title(title)
    if content is not None:
        field_values["content"] = content
    changes = ChangeSet()
    changes.update(SheetName.NOTES, note_id, **field_values)
    commit_changes(context, changes)
    log.info("Updated note '%s'", note_id)
    return get_record(context, SheetName.NOTES, note_id)


def delete_note(context: RuntimeContext, note_id: str) -> None:
    """Remove a note.

    Raises:
        NotFoundError: If the note is unknown.
    """

    get_record(context, SheetName.NOTES, note_id)
    changes = ChangeSet()
    changes.delete(SheetName.NOTES, note_id)
    commit_changes(context, changes)
    log.info("Deleted note '%s'", note_id)


def list_notes(context: RuntimeContext) -> List[data_manager.NoteRow]:
    """Return notes, most recently updated first."""

    return sorted(
        list_records(context, SheetName.NOTES),
        key=lambda note: (note.updated_at, note.note_id),
        reverse=True,
    )
