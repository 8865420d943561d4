"""Tests for sleep and water tracking."""

from __future__ import annotations

from datetime import UTC, date, datetime, timedelta

import pytest

from aide.errors import ValidationError
from aide.health import HealthTracker, _night_hours
from aide.models import SleepLogKind

USER = 42
DAY = datetime(2026, 3, 15, tzinfo=UTC)


class _Clock:
    """Settable clock for the tracker."""

    def __init__(self, now: datetime):
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def at(self, days: int, hour: int, minute: int = 0) -> None:
        self.now = DAY + timedelta(days=days, hours=hour, minutes=minute)


@pytest.fixture
def clock():
    return _Clock(DAY + timedelta(hours=9))


@pytest.fixture
def tracker(stores, clock):
    return HealthTracker(stores.health, goal_ml=2000, timezone="UTC", clock=clock)


# ── Water ────────────────────────────────────────────────────────────


class TestWater:
    async def test_logs_add_up_for_today(self, tracker):
        await tracker.log_water(USER, 250)
        stats = await tracker.log_water(USER, 500)
        assert stats.today_ml == 750
        assert stats.remaining_ml == 1250
        assert stats.percent == 38

    async def test_week_has_seven_days_ending_today(self, tracker):
        stats = await tracker.water_stats(USER)
        assert [d.day for d in stats.week] == [
            date(2026, 3, 9) + timedelta(days=i) for i in range(7)
        ]
        assert all(d.total_ml == 0 for d in stats.week)

    async def test_yesterday_counts_in_week_only(self, tracker, clock):
        clock.at(-1, 20)
        await tracker.log_water(USER, 1000)
        await tracker.log_water(USER, 1000)
        clock.at(0, 9)

        stats = await tracker.water_stats(USER)
        assert stats.today_ml == 0
        assert stats.week[-2].total_ml == 2000
        assert stats.week[-2].met_goal is True
        assert stats.week[-1].met_goal is False

    async def test_goal_reached(self, tracker):
        await tracker.log_water(USER, 1000)
        stats = await tracker.log_water(USER, 1000)
        assert stats.remaining_ml == 0
        assert stats.percent == 100

    @pytest.mark.parametrize("amount", [0, -250, 2500])
    async def test_rejects_unreasonable_amounts(self, tracker, amount):
        with pytest.raises(ValidationError):
            await tracker.log_water(USER, amount)
        assert (await tracker.water_stats(USER)).today_ml == 0

    async def test_days_follow_local_timezone(self, stores, clock):
        # 02:00 UTC on the 15th is still the 14th in Sao Paulo.
        tracker = HealthTracker(
            stores.health, goal_ml=2000, timezone="America/Sao_Paulo", clock=clock,
        )
        clock.at(0, 2)
        await tracker.log_water(USER, 500)
        clock.at(0, 15)
        stats = await tracker.water_stats(USER)
        assert stats.today_ml == 0
        assert stats.week[-2].total_ml == 500

    async def test_users_are_separate(self, tracker):
        await tracker.log_water(USER, 500)
        assert (await tracker.water_stats(USER + 1)).today_ml == 0


# ── Sleep ────────────────────────────────────────────────────────────


class TestGoodMorningGoodNight:
    async def test_good_morning_reports_night_length(self, tracker, clock):
        clock.at(-1, 23)
        await tracker.good_night(USER)
        clock.at(0, 7, 30)
        report = await tracker.good_morning(USER)
        assert report.slept_hours == pytest.approx(8.5)
        assert report.at.hour == 7

    async def test_good_morning_without_bedtime(self, tracker):
        report = await tracker.good_morning(USER)
        assert report.slept_hours is None

    async def test_bedtime_too_long_ago_is_not_a_night(self, tracker, clock):
        clock.at(-2, 23)
        await tracker.good_night(USER)
        clock.at(0, 7)
        assert (await tracker.good_morning(USER)).slept_hours is None

    async def test_good_night_reports_time_awake(self, tracker, clock):
        clock.at(0, 7)
        await tracker.good_morning(USER)
        clock.at(0, 23)
        report = await tracker.good_night(USER)
        assert report.awake_hours == pytest.approx(16)

    async def test_good_night_without_wake_today(self, tracker, clock):
        clock.at(-1, 7)
        await tracker.good_morning(USER)
        clock.at(0, 23)
        assert (await tracker.good_night(USER)).awake_hours is None


class TestSleepStats:
    async def test_no_logs(self, tracker):
        stats = await tracker.sleep_stats(USER)
        assert stats.last_night_hours is None
        assert stats.average_hours is None
        assert len(stats.week) == 7
        assert all(night.hours is None for night in stats.week)

    async def test_last_night_and_average(self, tracker, clock):
        clock.at(-2, 23)
        await tracker.good_night(USER)
        clock.at(-1, 7)
        await tracker.good_morning(USER)
        clock.at(-1, 23, 30)
        await tracker.good_night(USER)
        clock.at(0, 5, 30)
        await tracker.good_morning(USER)
        clock.at(0, 9)

        stats = await tracker.sleep_stats(USER)
        assert stats.last_night_hours == pytest.approx(6)
        assert stats.week[-1].hours == pytest.approx(6)
        assert stats.week[-2].hours == pytest.approx(8)
        assert stats.average_hours == pytest.approx(7)

    async def test_summary_combines_both(self, tracker, clock):
        await tracker.log_water(USER, 250)
        summary = await tracker.summary(USER)
        assert summary.water.today_ml == 250
        assert summary.sleep.last_night_hours is None


class TestNightHours:
    def test_pairs_first_wake_with_latest_bedtime(self):
        logs = [
            (SleepLogKind.SLEEP, DAY - timedelta(hours=3)),
            (SleepLogKind.SLEEP, DAY - timedelta(hours=1)),
            (SleepLogKind.WAKE, DAY + timedelta(hours=6)),
            (SleepLogKind.WAKE, DAY + timedelta(hours=8)),
        ]
        assert _night_hours(logs, DAY.date(), UTC) == pytest.approx(7)

    def test_wake_without_bedtime(self):
        logs = [(SleepLogKind.WAKE, DAY + timedelta(hours=6))]
        assert _night_hours(logs, DAY.date(), UTC) is None
