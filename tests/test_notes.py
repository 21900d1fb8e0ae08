"""Tests for the notes board."""

from __future__ import annotations

from datetime import UTC, datetime
from decimal import Decimal

import pytest

from trade_ledger import core_logic, customer_ledger, notes
from trade_ledger.constants import SheetName

MORNING = datetime(2024, 3, 15, 9, 0, tzinfo=UTC)
NOON = datetime(2024, 3, 15, 12, 0, tzinfo=UTC)
EVENING = datetime(2024, 3, 15, 18, 30, tzinfo=UTC)


def test_add_note_stamps_created_and_updated(seeded_context):
    """A new note starts with equal created and updated stamps."""
    note = notes.add_note(seeded_context, title="  Call Ravi ", content="About March dues", when=MORNING)

    assert note.note_id.startswith("N")
    assert note.title == "Call Ravi"
    assert note.created_at == note.updated_at == "2024-03-15T09:00:00+00:00"
    assert core_logic.get_record(seeded_context, SheetName.NOTES, note.note_id) == note
    assert customer_ledger.customer_balance(seeded_context, "C1") == Decimal("0.00")


def test_add_note_requires_title(seeded_context):
    """Blank titles are refused and nothing is stored."""
    with pytest.raises(core_logic.BusinessRuleViolation):
        notes.add_note(seeded_context, title="   ")
    assert notes.list_notes(seeded_context) == []


def test_update_note_changes_fields_and_bumps_updated_at(seeded_context):
    """Updating keeps the creation stamp and moves the update stamp."""
    note = notes.add_note(seeded_context, title="Godown", content="Check roof", when=MORNING)

    updated = notes.update_note(seeded_context, note.note_id, content="Roof fixed", when=NOON)

    assert updated.title == "Godown"
    assert updated.content == "Roof fixed"
    assert updated.created_at == note.created_at
    assert updated.updated_at == "2024-03-15T12:00:00+00:00"
    with pytest.raises(core_logic.BusinessRuleViolation):
        notes.update_note(seeded_context, note.note_id, title="")


def test_list_notes_orders_by_most_recent_update(seeded_context):
    """The most recently touched note comes first."""
    first = notes.add_note(seeded_context, title="First", when=MORNING)
    second = notes.add_note(seeded_context, title="Second", when=NOON)

    assert [note.note_id for note in notes.list_notes(seeded_context)] == [second.note_id, first.note_id]

    notes.update_note(seeded_context, first.note_id, title="First again", when=EVENING)

    assert [note.note_id for note in notes.list_notes(seeded_context)] == [first.note_id, second.note_id]


def test_delete_note(seeded_context):
    """Deleted notes are gone and cannot be deleted twice."""
    note = notes.add_note(seeded_context, title="Temporary", when=MORNING)

    notes.delete_note(seeded_context, note.note_id)

    assert notes.list_notes(seeded_context) == []
    with pytest.raises(core_logic.NotFoundError):
        notes.delete_note(seeded_context, note.note_id)
    with pytest.raises(core_logic.NotFoundError):
        notes.update_note(seeded_context, note.note_id, title="Back")
