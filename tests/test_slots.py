import random
from datetime import datetime, timedelta, timezone

import pytest

from viral_machine.services.slots import (
    base_interval_minutes,
    generate_schedule_slots,
    random_jitter,
)

NOW = datetime(2026, 1, 1, 12, 0, tzinfo=timezone.utc)


@pytest.mark.parametrize("videos_per_day", list(range(1, 51)))
def test_slot_count_matches_request(videos_per_day):
    slots = generate_schedule_slots(videos_per_day, jitter_minutes=15, now=NOW, rng=random.Random(videos_per_day))
    assert len(slots) == videos_per_day


@pytest.mark.parametrize("seed", range(25))
def test_fifteen_per_day_gaps_stay_near_base_interval(seed):
    slots = generate_schedule_slots(15, jitter_minutes=15, now=NOW, rng=random.Random(seed))
    gaps = [
        (b.scheduled_at - a.scheduled_at).total_seconds() / 60
        for a, b in zip(slots, slots[1:])
    ]
    assert all(60 < gap < 130 for gap in gaps), gaps


@pytest.mark.parametrize("videos_per_day", [2, 15, 30, 48, 50])
def test_scheduled_times_are_unique_and_sorted(videos_per_day):
    for seed in range(10):
        slots = generate_schedule_slots(videos_per_day, jitter_minutes=15, now=NOW, rng=random.Random(seed))
        times = [s.scheduled_at for s in slots]
        assert len(set(times)) == len(times)
        assert times == sorted(times)


def test_offsets_never_fall_before_now():
    for seed in range(50):
        slots = generate_schedule_slots(15, jitter_minutes=15, now=NOW, rng=random.Random(seed))
        assert slots[0].scheduled_at >= NOW
        assert all(s.minutes_from_now >= 0 for s in slots)


def test_slots_span_one_day():
    slots = generate_schedule_slots(15, jitter_minutes=15, now=NOW, rng=random.Random(7))
    assert slots[-1].scheduled_at - NOW <= timedelta(minutes=14 * 96 + 15)
    assert [s.minutes_from_now for s in slots] == [
        int((s.scheduled_at - NOW).total_seconds() // 60) for s in slots
    ]


def test_zero_jitter_is_evenly_spaced():
    slots = generate_schedule_slots(4, jitter_minutes=0, now=NOW)
    assert [s.minutes_from_now for s in slots] == [0, 360, 720, 1080]


def test_invalid_count_raises():
    with pytest.raises(ValueError):
        generate_schedule_slots(0, now=NOW)


def test_defaults_come_from_settings():
    slots = generate_schedule_slots(now=NOW, rng=random.Random(1))
    assert len(slots) == 15


def test_helpers():
    assert base_interval_minutes(15) == 96
    rng = random.Random(3)
    for _ in range(100):
        assert 81 <= random_jitter(96, 15, rng) <= 111
