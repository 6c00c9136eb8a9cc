#!/usr/bin/env python3
# -*- coding: utf-8 -*-
"""
Restrain Yourself v1.0 - Core Package
Entities, local state, row transforms and statistics

Version: 1.0.0
Date: 2025-07-10
"""

from .models import (
    TEMP_ID_PREFIX,
    HabitCategory,
    MutationType,
    ValidationError,
    Habit,
    NewHabit,
    HabitEntry,
    HabitStats,
    TodayStats,
    ToggleEntry,
    AddHabit,
    RemoveHabit,
    Mutation,
    OptimisticUpdate,
    new_temp_id,
    is_temp_id
)

from .state import SyncState

from .transform import TransformError

__all__ = [
    # Entities
    'TEMP_ID_PREFIX',
    'HabitCategory',
    'Habit',
    'NewHabit',
    'HabitEntry',
    'HabitStats',
    'TodayStats',
    'ValidationError',
    'new_temp_id',
    'is_temp_id',

    # Mutations
    'MutationType',
    'ToggleEntry',
    'AddHabit',
    'RemoveHabit',
    'Mutation',
    'OptimisticUpdate',

    # State
    'SyncState',
    'TransformError'
]
