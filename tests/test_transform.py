from datetime import date, datetime

import pytest
import pytz

from conftest import entry_row, habit_row
from core.models import NewHabit, ToggleEntry, ValidationError
from core.transform import (
    TransformError, entry_from_row, entry_insert_payload, entry_update_payload,
    habit_from_row, habit_insert_payload, habit_soft_delete_payload
)

def test_habit_from_row_parses_timestamps():
    habit = habit_from_row(habit_row("h1", created_at="2025-07-01T08:00:00.123Z"))

    assert habit.id == "h1"
    assert habit.category == "smoking"
    assert habit.created_at == datetime(2025, 7, 1, 8, 0, 0, 123000, tzinfo=pytz.utc)
    assert habit.description is None
    assert habit.is_active

def test_habit_from_row_defaults_optional_fields():
    row = habit_row("h1")
    del row["description"]
    del row["is_custom"]

    habit = habit_from_row(row)

    assert habit.description is None
    assert habit.is_custom is False

def test_habit_from_row_rejects_unknown_category():
    with pytest.raises(TransformError):
        habit_from_row(habit_row("h1", category="gambling"))

def test_habit_from_row_rejects_bad_timestamp():
    with pytest.raises(TransformError):
        habit_from_row(habit_row("h1", created_at="yesterday"))

def test_entry_from_row_parses_date():
    entry = entry_from_row(entry_row("e1", day="2025-07-10", notes=""))

    assert entry.date == date(2025, 7, 10)
    assert entry.completed is True
    assert entry.notes is None
    assert not entry.is_temporary

def test_entry_from_row_missing_field():
    row = entry_row("e1")
    del row["habit_id"]

    with pytest.raises(TransformError):
        entry_from_row(row)

def test_habit_insert_payload():
    start = datetime(2025, 7, 10, tzinfo=pytz.utc)
    new_habit = NewHabit(name="  No soda ", category="junk-food", color="#f97316", icon="🥤",
                         description="", start_date=start)

    payload = habit_insert_payload("user-1", new_habit)

    assert payload["user_id"] == "user-1"
    assert payload["name"] == "No soda"
    assert payload["description"] is None
    assert payload["start_date"] == "2025-07-10T00:00:00+00:00"
    assert payload["is_active"] is True
    assert "id" not in payload

def test_new_habit_validates_name():
    with pytest.raises(ValidationError):
        NewHabit(name="   ", category="smoking", color="#000", icon="x")

def test_soft_delete_payload():
    assert habit_soft_delete_payload() == {"is_active": False}

def test_entry_payloads():
    now = datetime(2025, 7, 10, 21, 15, tzinfo=pytz.utc)
    toggle = ToggleEntry(habit_id="h1", date=date(2025, 7, 10), completed=True, notes="tough day")

    insert = entry_insert_payload("user-1", toggle, now)
    update = entry_update_payload(toggle, now)

    assert insert == {
        "habit_id": "h1",
        "user_id": "user-1",
        "date": "2025-07-10",
        "completed": True,
        "timestamp": "2025-07-10T21:15:00+00:00",
        "notes": "tough day"
    }
    assert update == {
        "completed": True,
        "timestamp": "2025-07-10T21:15:00+00:00",
        "notes": "tough day"
    }
