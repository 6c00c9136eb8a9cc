"""
In-memory habit and entry collections shared by the ledger,
the live listener and the synchronization engine.
"""

import logging
from datetime import date
from typing import Iterable, List, Optional

from core.models import Habit, HabitEntry

logger = logging.getLogger(__name__)

class SyncState:
    """Locally held collections, newest first"""

    def __init__(self):
        self.habits: List[Habit] = []
        self.entries: List[HabitEntry] = []

    # ===== HABITS =====

    def set_habits(self, habits: Iterable[Habit]):
        self.habits = list(habits)

    def find_habit(self, habit_id: str) -> Optional[Habit]:
        return next((h for h in self.habits if h.id == habit_id), None)

    def prepend_habit(self, habit: Habit):
        self.habits.insert(0, habit)

    def upsert_habit(self, habit: Habit) -> bool:
        """Replace by id in place, otherwise prepend. Returns True if replaced."""
        for index, existing in enumerate(self.habits):
            if existing.id == habit.id:
                self.habits[index] = habit
                return True
        self.prepend_habit(habit)
        return False

    def replace_habit(self, old_id: str, habit: Habit) -> bool:
        """Swap a record (usually a placeholder) for its confirmed counterpart"""
        if old_id != habit.id and self.find_habit(habit.id) is not None:
            # Confirmed record already arrived through the live channel
            return self.remove_habit(old_id) is not None
        for index, existing in enumerate(self.habits):
            if existing.id == old_id:
                self.habits[index] = habit
                return True
        return False

    def update_habit(self, habit: Habit) -> bool:
        for index, existing in enumerate(self.habits):
            if existing.id == habit.id:
                self.habits[index] = habit
                return True
        return False

    def remove_habit(self, habit_id: str) -> Optional[Habit]:
        for index, existing in enumerate(self.habits):
            if existing.id == habit_id:
                return self.habits.pop(index)
        return None

    def restore_habit(self, habit: Habit):
        """Put a removed habit back, ordered by creation time (newest first)"""
        if self.find_habit(habit.id) is not None:
            return
        self.habits.append(habit)
        self.habits.sort(key=lambda h: h.created_at, reverse=True)

    # ===== ENTRIES =====

    def set_entries(self, entries: Iterable[HabitEntry]):
        self.entries = list(entries)

    def find_entry(self, habit_id: str, day: date) -> Optional[HabitEntry]:
        return next((e for e in self.entries if e.matches(habit_id, day)), None)

    def find_entry_index(self, habit_id: str, day: date) -> int:
        for index, entry in enumerate(self.entries):
            if entry.matches(habit_id, day):
                return index
        return -1

    def prepend_entry(self, entry: HabitEntry):
        self.entries.insert(0, entry)

    def put_entry(self, entry: HabitEntry):
        """Overwrite the entry for the same (habit, day) in place, or prepend"""
        index = self.find_entry_index(entry.habit_id, entry.date)
        if index >= 0:
            self.entries[index] = entry
        else:
            self.prepend_entry(entry)

    def upsert_entry(self, entry: HabitEntry) -> bool:
        """Merge a confirmed entry.

        Matches by id first, then by (habit, day) so a placeholder or a
        duplicate for the same day is replaced in place rather than kept
        alongside. Returns True if an existing record was replaced.
        """
        for index, existing in enumerate(self.entries):
            if existing.id == entry.id:
                self.entries[index] = entry
                self._drop_day_duplicates(entry, keep=index)
                return True
        index = self.find_entry_index(entry.habit_id, entry.date)
        if index >= 0:
            self.entries[index] = entry
            self._drop_day_duplicates(entry, keep=index)
            return True
        self.prepend_entry(entry)
        return False

    def update_entry(self, entry: HabitEntry) -> bool:
        for index, existing in enumerate(self.entries):
            if existing.id == entry.id:
                self.entries[index] = entry
                return True
        return False

    def remove_entry(self, entry_id: str) -> Optional[HabitEntry]:
        for index, existing in enumerate(self.entries):
            if existing.id == entry_id:
                return self.entries.pop(index)
        return None

    def confirmed_entries(self) -> List[HabitEntry]:
        return [e for e in self.entries if not e.is_temporary]

    def _drop_day_duplicates(self, entry: HabitEntry, keep: int):
        self.entries = [
            e for i, e in enumerate(self.entries)
            if i == keep or not e.matches(entry.habit_id, entry.date)
        ]

    def clear(self):
        self.habits = []
        self.entries = []
