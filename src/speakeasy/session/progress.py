"""
Daily practice progress and streak tracking.

The tracker is plain state plus two operations; persistence goes through
a small JSON store port.
"""

from __future__ import annotations

import json
import logging
from datetime import date, timedelta
from pathlib import Path
from typing import Protocol

from pydantic import BaseModel, Field

logger = logging.getLogger(__name__)


class DailyProgress(BaseModel):
    """Persisted daily progress counters."""

    daily_goal: int = Field(default=15, gt=0, description="Daily practice goal in minutes")
    today_minutes: int = Field(default=0, ge=0, description="Minutes practiced today")
    streak: int = Field(default=0, ge=0, description="Consecutive days with practice")
    last_activity_date: date | None = Field(default=None, description="Last day with any practice")

    @property
    def progress_percentage(self) -> float:
        return min(self.today_minutes / self.daily_goal, 1.0)


class ProgressStore(Protocol):
    def load(self) -> DailyProgress: ...

    def save(self, progress: DailyProgress) -> None: ...


class JsonProgressStore:
    """Stores DailyProgress as a JSON document."""

    def __init__(self, path: str | Path) -> None:
        self._path = Path(path)

    def load(self) -> DailyProgress:
        if not self._path.exists():
            return DailyProgress()
        try:
            return DailyProgress.model_validate_json(self._path.read_text(encoding="utf-8"))
        except ValueError as e:
            logger.warning(f"Ignoring unreadable progress file {self._path}: {e}")
            return DailyProgress()

    def save(self, progress: DailyProgress) -> None:
        self._path.parent.mkdir(parents=True, exist_ok=True)
        self._path.write_text(
            json.dumps(progress.model_dump(mode="json"), indent=2),
            encoding="utf-8",
        )


class ProgressTracker:
    """Applies practice minutes to daily progress and maintains the streak."""

    def __init__(self, progress: DailyProgress | None = None, *, store: ProgressStore | None = None) -> None:
        self._store = store
        if progress is None:
            progress = store.load() if store is not None else DailyProgress()
        self._progress = progress

    @property
    def progress(self) -> DailyProgress:
        return self._progress.model_copy()

    def record_practice(self, minutes: int, *, today: date | None = None) -> DailyProgress:
        """
        Add practiced minutes for today.

        Minutes left over from an earlier day are dropped first. The first
        practice of a calendar day credits the streak: it grows by one after
        practice yesterday and restarts at one after a longer gap.

        Args:
            minutes: Whole minutes practiced.
            today: Current calendar day (defaults to the local date).

        Returns:
            The updated progress.
        """
        today = today or date.today()
        p = self._reset_if_needed(self._progress, today)
        updates: dict = {
            "today_minutes": p.today_minutes + max(0, minutes),
            "last_activity_date": today,
        }
        last = p.last_activity_date
        if last is None:
            updates["streak"] = max(p.streak, 1)
        elif last < today:
            updates["streak"] = p.streak + 1 if today - last == timedelta(days=1) else 1
        if "streak" in updates:
            logger.info(f"[PROGRESS] streak credited streak={updates['streak']}")
        self._progress = p.model_copy(update=updates)
        self._persist()
        return self.progress

    def roll_over(self, *, today: date | None = None) -> DailyProgress:
        """
        Start a new day: reset today's counter and break a lapsed streak.

        A streak survives only if there was practice yesterday or today.
        """
        today = today or date.today()
        p = self._reset_if_needed(self._progress, today)
        if p.last_activity_date not in (today, today - timedelta(days=1)) and p.streak:
            p = p.model_copy(update={"streak": 0})
        if p != self._progress:
            self._progress = p
            self._persist()
        return self.progress

    def update_daily_goal(self, minutes: int) -> DailyProgress:
        self._progress = DailyProgress.model_validate({**self._progress.model_dump(), "daily_goal": minutes})
        self._persist()
        return self.progress

    @staticmethod
    def _reset_if_needed(p: DailyProgress, today: date) -> DailyProgress:
        if p.last_activity_date is not None and p.last_activity_date != today and p.today_minutes:
            return p.model_copy(update={"today_minutes": 0})
        return p

    def _persist(self) -> None:
        if self._store is not None:
            self._store.save(self._progress)
