"""
Streak and completion statistics.

Only confirmed entries count: placeholders are unconfirmed state, not history.
"""

from datetime import date, timedelta
from typing import Dict, Iterable, List

from core.models import Habit, HabitEntry, HabitStats, TodayStats

def _confirmed_for(entries: Iterable[HabitEntry], habit_id: str) -> List[HabitEntry]:
    return sorted(
        (e for e in entries if e.habit_id == habit_id and not e.is_temporary),
        key=lambda e: e.date
    )

def current_streak(entries: Iterable[HabitEntry], habit_id: str, today: date) -> int:
    """Consecutive completed days ending today"""
    by_day: Dict[date, HabitEntry] = {e.date: e for e in _confirmed_for(entries, habit_id)}

    streak = 0
    check_date = today
    while True:
        entry = by_day.get(check_date)
        if entry is None or not entry.completed:
            break
        streak += 1
        check_date -= timedelta(days=1)

    return streak

def longest_streak(entries: Iterable[HabitEntry], habit_id: str) -> int:
    """Longest run of completed calendar days"""
    completed_dates = sorted({e.date for e in _confirmed_for(entries, habit_id) if e.completed})

    if not completed_dates:
        return 0

    max_streak = 1
    streak = 1

    for i in range(1, len(completed_dates)):
        if completed_dates[i] == completed_dates[i - 1] + timedelta(days=1):
            streak += 1
            max_streak = max(max_streak, streak)
        else:
            streak = 1

    return max_streak

def calculate_habit_stats(entries: Iterable[HabitEntry], habit_id: str, today: date) -> HabitStats:
    entries = list(entries)
    habit_entries = _confirmed_for(entries, habit_id)
    completed = [e for e in habit_entries if e.completed]
    total_days = len(habit_entries)

    return HabitStats(
        habit_id=habit_id,
        current_streak=current_streak(entries, habit_id, today),
        longest_streak=longest_streak(entries, habit_id),
        total_days=total_days,
        success_rate=(len(completed) / total_days * 100) if total_days > 0 else 0.0,
        last_completed=max((e.date for e in completed), default=None)
    )

def calculate_today_stats(entries: Iterable[HabitEntry], habits: Iterable[Habit], today: date) -> TodayStats:
    habit_ids = {h.id for h in habits}
    completed_today = {
        e.habit_id for e in entries
        if e.date == today and e.completed and not e.is_temporary and e.habit_id in habit_ids
    }
    total = len(habit_ids)

    return TodayStats(
        completed=len(completed_today),
        total=total,
        percentage=(len(completed_today) / total * 100) if total > 0 else 0.0
    )
