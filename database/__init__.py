"""
Persistence backends: the abstract interface and the Supabase implementation
"""

from .backend import (
    ENTRIES_TABLE,
    HABITS_TABLE,
    BackendConnectionError,
    BackendError,
    BackendResponseError,
    ChangeEvent,
    ChangeType,
    HabitBackend,
    Subscription,
    SubscriptionError
)

__all__ = [
    'ENTRIES_TABLE',
    'HABITS_TABLE',
    'BackendConnectionError',
    'BackendError',
    'BackendResponseError',
    'ChangeEvent',
    'ChangeType',
    'HabitBackend',
    'Subscription',
    'SubscriptionError'
]
