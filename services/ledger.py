# services/ledger.py

import logging
from dataclasses import dataclass, replace
from datetime import datetime
from typing import Callable, Dict, List, Optional, Union

from core.models import (
    AddHabit, Habit, HabitEntry, OptimisticUpdate, RemoveHabit, ToggleEntry, new_temp_id
)
from core.state import SyncState
from utils.datetime_utils import utcnow

logger = logging.getLogger(__name__)

Snapshot = Optional[Union[Habit, HabitEntry]]

@dataclass
class LedgerRecord:
    """An applied update and the state it replaced (None: nothing existed)"""
    update: OptimisticUpdate
    snapshot: Snapshot

class OptimisticLedger:
    """
    Mutations applied locally but not yet confirmed by the backend.

    Holds at most one record per target key: a newer update for the same
    target supersedes the older record and inherits its snapshot, so a
    revert always returns to the last confirmed state.
    """

    def __init__(self, state: SyncState, user_id: str, clock: Callable[[], datetime] = utcnow):
        self.state = state
        self.user_id = user_id
        self._clock = clock
        self._records: Dict[str, LedgerRecord] = {}
        self._by_target: Dict[str, str] = {}

    # ===== APPLY / COMMIT / REVERT =====

    def apply(self, update: OptimisticUpdate) -> LedgerRecord:
        """Reflect the update in local state immediately"""
        prior = self._pop_target(update.target_key)
        mutation = update.mutation

        if isinstance(mutation, ToggleEntry):
            snapshot = self._apply_toggle(mutation)
        elif isinstance(mutation, AddHabit):
            self.state.prepend_habit(mutation.habit.to_habit(mutation.temp_id, self.user_id, self._clock()))
            snapshot = None
        elif isinstance(mutation, RemoveHabit):
            snapshot = self.state.remove_habit(mutation.habit_id)
        else:
            raise TypeError(f"Unknown mutation {mutation!r}")

        if prior is not None:
            snapshot = prior.snapshot
            logger.debug(f"🔁 {prior.update.id} superseded by {update.id}")

        record = LedgerRecord(update=update, snapshot=snapshot)
        self._records[update.id] = record
        self._by_target[update.target_key] = update.id
        return record

    def commit(self, update_id: str) -> bool:
        """Forget a confirmed update. False if it is no longer tracked."""
        record = self._records.pop(update_id, None)
        if record is None:
            return False
        self._drop_target(record)
        return True

    def revert(self, update_id: str) -> Optional[LedgerRecord]:
        """Forget a failed update and restore its snapshot"""
        record = self._records.pop(update_id, None)
        if record is None:
            return None
        self._drop_target(record)

        mutation = record.update.mutation
        if isinstance(mutation, ToggleEntry):
            if record.snapshot is not None:
                self.state.put_entry(record.snapshot)
            else:
                current = self.state.find_entry(mutation.habit_id, mutation.date)
                if current is not None and current.is_temporary:
                    self.state.remove_entry(current.id)
        elif isinstance(mutation, AddHabit):
            self.state.remove_habit(mutation.temp_id)
        elif isinstance(mutation, RemoveHabit) and record.snapshot is not None:
            self.state.restore_habit(record.snapshot)

        logger.info(f"↩️ Reverted {record.update.type.value} ({record.update.target_key})")
        return record

    def reapply(self):
        """Overlay every pending update on freshly loaded collections"""
        for record in list(self._records.values()):
            mutation = record.update.mutation
            if isinstance(mutation, ToggleEntry):
                self._apply_toggle(mutation)
            elif isinstance(mutation, AddHabit):
                if self.state.find_habit(mutation.temp_id) is None:
                    self.state.prepend_habit(
                        mutation.habit.to_habit(mutation.temp_id, self.user_id, record.update.timestamp)
                    )
            elif isinstance(mutation, RemoveHabit):
                self.state.remove_habit(mutation.habit_id)

    # ===== QUERIES =====

    def get(self, update_id: str) -> Optional[LedgerRecord]:
        return self._records.get(update_id)

    def pending_add(self, temp_id: str) -> Optional[LedgerRecord]:
        """Unconfirmed creation behind a placeholder habit"""
        for record in self._records.values():
            mutation = record.update.mutation
            if isinstance(mutation, AddHabit) and mutation.temp_id == temp_id:
                return record
        return None

    def updates(self) -> List[OptimisticUpdate]:
        return [record.update for record in self._records.values()]

    def clear(self):
        self._records.clear()
        self._by_target.clear()

    def __contains__(self, update_id: str) -> bool:
        return update_id in self._records

    def __len__(self) -> int:
        return len(self._records)

    # ===== INTERNALS =====

    def _apply_toggle(self, toggle: ToggleEntry) -> Snapshot:
        existing = self.state.find_entry(toggle.habit_id, toggle.date)
        now = self._clock()

        if existing is not None:
            self.state.put_entry(replace(
                existing,
                completed=toggle.completed,
                timestamp=now,
                notes=toggle.notes if toggle.notes is not None else existing.notes
            ))
        else:
            self.state.prepend_entry(HabitEntry(
                id=new_temp_id("entry"),
                habit_id=toggle.habit_id,
                user_id=self.user_id,
                date=toggle.date,
                completed=toggle.completed,
                timestamp=now,
                notes=toggle.notes
            ))

        return existing

    def _pop_target(self, target_key: str) -> Optional[LedgerRecord]:
        update_id = self._by_target.pop(target_key, None)
        if update_id is None:
            return None
        return self._records.pop(update_id, None)

    def _drop_target(self, record: LedgerRecord):
        key = record.update.target_key
        if self._by_target.get(key) == record.update.id:
            del self._by_target[key]
