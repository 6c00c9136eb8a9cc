#!/usr/bin/env python3
# -*- coding: utf-8 -*-
"""
Restrain Yourself v1.0 - Backend Interface
Row-level CRUD and change subscriptions for habits and habit entries

Version: 1.0.0
Date: 2025-07-10
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Callable, Dict, List, Optional

HABITS_TABLE = "habits"
ENTRIES_TABLE = "habit_entries"

# ===== EXCEPTIONS =====

class BackendError(Exception):
    """Base error of the persistence backend"""
    pass

class BackendConnectionError(BackendError):
    """The backend could not be reached"""
    pass

class BackendResponseError(BackendError):
    """The backend answered with an error"""

    def __init__(self, status: int, message: str):
        super().__init__(f"HTTP {status}: {message}")
        self.status = status
        self.message = message

class SubscriptionError(BackendError):
    """A change subscription could not be established"""
    pass

# ===== CHANGE EVENTS =====

class ChangeType(Enum):
    INSERT = "INSERT"
    UPDATE = "UPDATE"
    DELETE = "DELETE"

@dataclass
class ChangeEvent:
    """A row change pushed by the backend"""
    table: str
    type: ChangeType
    new: Dict[str, Any] = field(default_factory=dict)
    old: Dict[str, Any] = field(default_factory=dict)

    @property
    def record_id(self) -> Optional[str]:
        return (self.new or self.old).get("id")

ChangeCallback = Callable[[ChangeEvent], None]

class Subscription(ABC):
    """Handle of an active change subscription"""

    @abstractmethod
    async def unsubscribe(self) -> None:
        ...

# ===== BACKEND =====

class HabitBackend(ABC):
    """Persistence and live-update backend.

    Every read and write is scoped to the owning user. Rows are plain
    dictionaries in wire format (snake_case keys, ISO strings).
    """

    @abstractmethod
    async def fetch_habits(self, user_id: str) -> List[Dict[str, Any]]:
        """Active habits, newest first"""

    @abstractmethod
    async def fetch_entries(self, user_id: str) -> List[Dict[str, Any]]:
        """All entries, most recent date first"""

    @abstractmethod
    async def insert_habit(self, payload: Dict[str, Any]) -> Dict[str, Any]:
        ...

    @abstractmethod
    async def update_habit(self, habit_id: str, user_id: str, changes: Dict[str, Any]) -> Dict[str, Any]:
        ...

    @abstractmethod
    async def insert_entry(self, payload: Dict[str, Any]) -> Dict[str, Any]:
        ...

    @abstractmethod
    async def update_entry(self, entry_id: str, user_id: str, changes: Dict[str, Any]) -> Dict[str, Any]:
        ...

    @abstractmethod
    async def subscribe(self, table: str, user_id: str, callback: ChangeCallback) -> Subscription:
        ...

    async def ping(self) -> bool:
        """Reachability probe"""
        return True

    async def close(self) -> None:
        pass
