"""
Wire rows <-> entities.

Rows come from the backend in snake_case with string timestamps; entities
carry parsed dates. Everything here is pure.
"""

from datetime import datetime
from typing import Any, Dict, Mapping, Optional

from pydantic import BaseModel, ValidationError as PydanticValidationError, field_validator

from core.models import Habit, HabitEntry, NewHabit, ToggleEntry, ValidationError
from utils.datetime_utils import format_date, parse_date, parse_timestamp, utcnow

class TransformError(ValueError):
    """A wire row could not be turned into an entity"""
    pass

# ===== WIRE MODELS =====

class HabitRow(BaseModel):
    id: str
    user_id: str
    name: str
    category: str
    color: str
    icon: str
    is_custom: bool = False
    description: Optional[str] = None
    created_at: str
    updated_at: str
    start_date: str
    is_active: bool = True

    @field_validator('created_at', 'updated_at', 'start_date')
    @classmethod
    def validate_timestamp(cls, v):
        parse_timestamp(v)
        return v

class EntryRow(BaseModel):
    id: str
    habit_id: str
    user_id: str
    date: str
    completed: bool
    timestamp: str
    notes: Optional[str] = None

    @field_validator('date')
    @classmethod
    def validate_date(cls, v):
        parse_date(v)
        return v

    @field_validator('timestamp')
    @classmethod
    def validate_timestamp(cls, v):
        parse_timestamp(v)
        return v

# ===== ROW -> ENTITY =====

def habit_from_row(row: Mapping[str, Any]) -> Habit:
    try:
        parsed = HabitRow.model_validate(dict(row))
        return Habit(
            id=parsed.id,
            user_id=parsed.user_id,
            name=parsed.name,
            category=parsed.category,
            color=parsed.color,
            icon=parsed.icon,
            is_custom=parsed.is_custom,
            created_at=parse_timestamp(parsed.created_at),
            updated_at=parse_timestamp(parsed.updated_at),
            start_date=parse_timestamp(parsed.start_date),
            is_active=parsed.is_active,
            description=parsed.description or None
        )
    except (PydanticValidationError, ValidationError, ValueError) as e:
        raise TransformError(f"Invalid habit row {row.get('id')!r}: {e}") from e

def entry_from_row(row: Mapping[str, Any]) -> HabitEntry:
    try:
        parsed = EntryRow.model_validate(dict(row))
        return HabitEntry(
            id=parsed.id,
            habit_id=parsed.habit_id,
            user_id=parsed.user_id,
            date=parse_date(parsed.date),
            completed=parsed.completed,
            timestamp=parse_timestamp(parsed.timestamp),
            notes=parsed.notes or None
        )
    except (PydanticValidationError, ValueError) as e:
        raise TransformError(f"Invalid entry row {row.get('id')!r}: {e}") from e

# ===== ENTITY -> PAYLOAD =====

def habit_insert_payload(user_id: str, habit: NewHabit) -> Dict[str, Any]:
    return {
        "user_id": user_id,
        "name": habit.name,
        "category": habit.category,
        "color": habit.color,
        "icon": habit.icon,
        "is_custom": habit.is_custom,
        "description": habit.description or None,
        "start_date": habit.start_date.isoformat(),
        "is_active": habit.is_active
    }

def habit_soft_delete_payload() -> Dict[str, Any]:
    return {"is_active": False}

def entry_insert_payload(user_id: str, toggle: ToggleEntry,
                         now: Optional[datetime] = None) -> Dict[str, Any]:
    return {
        "habit_id": toggle.habit_id,
        "user_id": user_id,
        "date": format_date(toggle.date),
        "completed": toggle.completed,
        "timestamp": (now or utcnow()).isoformat(),
        "notes": toggle.notes or None
    }

def entry_update_payload(toggle: ToggleEntry, now: Optional[datetime] = None) -> Dict[str, Any]:
    return {
        "completed": toggle.completed,
        "timestamp": (now or utcnow()).isoformat(),
        "notes": toggle.notes or None
    }
