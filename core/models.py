#!/usr/bin/env python3
# -*- coding: utf-8 -*-
"""
Restrain Yourself v1.0 - Core Data Models
Habit entities, derived statistics and optimistic mutations

Version: 1.0.0
Date: 2025-07-10
"""

import uuid
from datetime import datetime, date
from typing import Dict, Optional, Union, Any, ClassVar
from dataclasses import dataclass, field, replace
from enum import Enum
import logging

from utils.datetime_utils import utcnow, format_date

logger = logging.getLogger(__name__)

# Sentinel prefix of records that exist only locally
TEMP_ID_PREFIX = "temp-"

# ===== ENUMS =====

class HabitCategory(Enum):
    """Habit categories"""
    SMOKING = "smoking"
    DRINKING = "drinking"
    ADULT_CONTENT = "adult-content"
    SOCIAL_MEDIA = "social-media"
    JUNK_FOOD = "junk-food"
    CUSTOM = "custom"

class MutationType(Enum):
    """Kinds of optimistic mutations"""
    TOGGLE_ENTRY = "toggle_entry"
    ADD_HABIT = "add_habit"
    REMOVE_HABIT = "remove_habit"

# ===== VALIDATION HELPERS =====

class ValidationError(Exception):
    """Invalid entity data"""
    pass

def validate_text(text: str, min_length: int = 1, max_length: int = 1000, field_name: str = "text") -> str:
    """Validate text fields"""
    if not isinstance(text, str):
        raise ValidationError(f"{field_name} must be a string")

    text = text.strip()
    if len(text) < min_length:
        raise ValidationError(f"{field_name} must contain at least {min_length} characters")

    if len(text) > max_length:
        raise ValidationError(f"{field_name} must contain at most {max_length} characters")

    return text

def validate_enum_value(value: str, enum_class: type, field_name: str = "value") -> str:
    """Validate enum values"""
    try:
        enum_class(value)
        return value
    except ValueError:
        valid_values = [e.value for e in enum_class]
        raise ValidationError(f"{field_name} must be one of: {valid_values}")

def new_temp_id(kind: str = "entry") -> str:
    """Identifier for a record not yet confirmed by the backend"""
    return f"{TEMP_ID_PREFIX}{kind}-{uuid.uuid4().hex}"

def is_temp_id(record_id: str) -> bool:
    return record_id.startswith(TEMP_ID_PREFIX)

# ===== ENTITIES =====

@dataclass
class Habit:
    """A tracked behaviour goal owned by one user"""
    id: str
    user_id: str
    name: str
    category: str
    color: str
    icon: str
    is_custom: bool
    created_at: datetime
    updated_at: datetime
    start_date: datetime
    is_active: bool = True
    description: Optional[str] = None

    def __post_init__(self):
        self.name = validate_text(self.name, min_length=1, max_length=100, field_name="name")
        self.category = validate_enum_value(self.category, HabitCategory, "category")

        if self.description is not None:
            self.description = validate_text(self.description, min_length=0, max_length=500,
                                             field_name="description") or None

    @property
    def is_temporary(self) -> bool:
        return is_temp_id(self.id)

    @property
    def category_enum(self) -> HabitCategory:
        return HabitCategory(self.category)

@dataclass
class NewHabit:
    """User-supplied fields of a habit about to be created"""
    name: str
    category: str
    color: str
    icon: str
    is_custom: bool = False
    description: Optional[str] = None
    start_date: datetime = field(default_factory=utcnow)
    is_active: bool = True

    def __post_init__(self):
        self.name = validate_text(self.name, min_length=1, max_length=100, field_name="name")
        self.category = validate_enum_value(self.category, HabitCategory, "category")

    def to_habit(self, habit_id: str, user_id: str, now: Optional[datetime] = None) -> Habit:
        now = now or utcnow()
        return Habit(
            id=habit_id,
            user_id=user_id,
            name=self.name,
            category=self.category,
            color=self.color,
            icon=self.icon,
            is_custom=self.is_custom,
            created_at=now,
            updated_at=now,
            start_date=self.start_date,
            is_active=self.is_active,
            description=self.description or None
        )

@dataclass
class HabitEntry:
    """One day's completion record for one habit"""
    id: str
    habit_id: str
    user_id: str
    date: date
    completed: bool
    timestamp: datetime
    notes: Optional[str] = None

    @property
    def is_temporary(self) -> bool:
        return is_temp_id(self.id)

    @property
    def date_key(self) -> str:
        return format_date(self.date)

    def matches(self, habit_id: str, day: date) -> bool:
        return self.habit_id == habit_id and self.date == day

@dataclass
class HabitStats:
    """Statistics derived from confirmed entries"""
    habit_id: str
    current_streak: int = 0
    longest_streak: int = 0
    total_days: int = 0
    success_rate: float = 0.0
    last_completed: Optional[date] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "habit_id": self.habit_id,
            "current_streak": self.current_streak,
            "longest_streak": self.longest_streak,
            "total_days": self.total_days,
            "success_rate": round(self.success_rate, 2),
            "last_completed": format_date(self.last_completed) if self.last_completed else None
        }

@dataclass
class TodayStats:
    completed: int = 0
    total: int = 0
    percentage: float = 0.0

# ===== MUTATIONS =====

@dataclass(frozen=True)
class ToggleEntry:
    """Mark a habit as completed (or not) on a given day"""
    type: ClassVar[MutationType] = MutationType.TOGGLE_ENTRY
    habit_id: str
    date: date
    completed: bool
    notes: Optional[str] = None

    @property
    def target_key(self) -> str:
        return f"{self.type.value}-{self.habit_id}-{format_date(self.date)}"

    @property
    def status_key(self) -> str:
        return f"toggle-{self.habit_id}"

@dataclass(frozen=True)
class AddHabit:
    """Create a habit; the temporary id stands in until confirmation"""
    type: ClassVar[MutationType] = MutationType.ADD_HABIT
    habit: NewHabit
    temp_id: str

    @property
    def target_key(self) -> str:
        return f"{self.type.value}-{self.temp_id}"

    @property
    def status_key(self) -> str:
        return "add_habit"

@dataclass(frozen=True)
class RemoveHabit:
    """Soft-delete a habit"""
    type: ClassVar[MutationType] = MutationType.REMOVE_HABIT
    habit_id: str

    @property
    def target_key(self) -> str:
        return f"{self.type.value}-{self.habit_id}"

    @property
    def status_key(self) -> str:
        return f"remove_habit-{self.habit_id}"

Mutation = Union[ToggleEntry, AddHabit, RemoveHabit]

@dataclass(frozen=True)
class OptimisticUpdate:
    """A local mutation not yet confirmed by the backend"""
    id: str
    mutation: Mutation
    timestamp: datetime = field(default_factory=utcnow)
    retry_count: int = 0

    @property
    def type(self) -> MutationType:
        return self.mutation.type

    @property
    def target_key(self) -> str:
        return self.mutation.target_key

    @property
    def status_key(self) -> str:
        return self.mutation.status_key

    def with_retry(self, retry_count: int) -> "OptimisticUpdate":
        return replace(self, retry_count=retry_count)

    @classmethod
    def create(cls, mutation: Mutation) -> "OptimisticUpdate":
        return cls(id=f"{mutation.type.value}-{uuid.uuid4().hex}", mutation=mutation)
