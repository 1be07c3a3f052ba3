"""
Daily slot generation.

Spreads N uploads over the next 24 hours: evenly spaced base offsets,
each shifted by a random whole-minute jitter. Offsets already taken in the
same call are pushed forward in 5-minute steps until free.
"""
from __future__ import annotations

import random
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone

from viral_machine.settings import get_settings

MINUTES_PER_DAY = 24 * 60
COLLISION_STEP_MINUTES = 5


@dataclass(frozen=True)
class ScheduleSlot:
    slot_index: int
    scheduled_at: datetime
    minutes_from_now: int


def base_interval_minutes(videos_per_day: int) -> float:
    return MINUTES_PER_DAY / videos_per_day


def random_jitter(base_minutes: int, jitter_minutes: int, rng: random.Random | None = None) -> int:
    """``base_minutes`` shifted uniformly within [-jitter, +jitter]."""
    rng = rng or random
    return base_minutes + rng.randint(-jitter_minutes, jitter_minutes)


def generate_schedule_slots(
    videos_per_day: int | None = None,
    *,
    jitter_minutes: int | None = None,
    now: datetime | None = None,
    rng: random.Random | None = None,
) -> list[ScheduleSlot]:
    """Generate ``videos_per_day`` slots sorted by ``scheduled_at``.

    Args:
        videos_per_day: number of slots (defaults to VIDEOS_PER_DAY)
        jitter_minutes: max absolute jitter (defaults to SCHEDULE_JITTER_MINUTES)
        now: reference time, timezone-aware (defaults to UTC now)
        rng: random source, for reproducible runs

    Raises:
        ValueError: if videos_per_day < 1
    """
    settings = get_settings()
    if videos_per_day is None:
        videos_per_day = settings.videos_per_day
    if jitter_minutes is None:
        jitter_minutes = settings.schedule_jitter_minutes
    if videos_per_day < 1:
        raise ValueError(f"videos_per_day must be >= 1, got {videos_per_day}")

    now = now or datetime.now(timezone.utc)
    interval = base_interval_minutes(videos_per_day)

    used: set[int] = set()
    slots: list[ScheduleSlot] = []
    for i in range(videos_per_day):
        minutes = max(0, random_jitter(int(i * interval), jitter_minutes, rng))
        while minutes in used:
            minutes += COLLISION_STEP_MINUTES
        used.add(minutes)
        slots.append(ScheduleSlot(
            slot_index=i,
            scheduled_at=now + timedelta(minutes=minutes),
            minutes_from_now=minutes,
        ))

    return sorted(slots, key=lambda s: s.scheduled_at)
