"""Sleep and hydration tracking.

The user reports two kinds of sleep event ("good morning" = woke up,
"good night" = going to sleep) and glasses of water.  ``HealthTracker``
records them and turns the raw logs into the numbers the cards show: today's
water against the daily goal, the last seven days of each, the average
night.  Days are calendar days in ``TIMEZONE``.
"""

from __future__ import annotations

import logging
from collections.abc import Callable
from dataclasses import dataclass, field
from datetime import UTC, date, datetime, time, timedelta
from zoneinfo import ZoneInfo

from aide.config import TIMEZONE, WATER_GOAL_ML
from aide.errors import ValidationError
from aide.models import SleepLogKind
from aide.services.health_store import SqliteHealthStore

logger = logging.getLogger(__name__)

# Amounts offered as buttons on the water card.
WATER_AMOUNTS_ML = (250, 500, 1000)
MAX_WATER_LOG_ML = 2000

WEEK_DAYS = 7
# A wake-up further than this from the previous "good night" is not one night.
MAX_NIGHT = timedelta(hours=18)


def _utcnow() -> datetime:
    return datetime.now(UTC)


def _hours(delta: timedelta) -> float:
    return delta.total_seconds() / 3600


@dataclass
class WaterDay:
    day: date
    total_ml: int
    met_goal: bool


@dataclass
class WaterStats:
    today_ml: int
    goal_ml: int
    week: list[WaterDay] = field(default_factory=list)

    @property
    def remaining_ml(self) -> int:
        return max(0, self.goal_ml - self.today_ml)

    @property
    def percent(self) -> int:
        return round(self.today_ml * 100 / self.goal_ml) if self.goal_ml else 0


@dataclass
class SleepNight:
    """The night ending on the morning of *day*."""

    day: date
    hours: float | None = None


@dataclass
class SleepStats:
    last_night_hours: float | None
    average_hours: float | None
    week: list[SleepNight] = field(default_factory=list)


@dataclass
class WakeReport:
    at: datetime
    slept_hours: float | None = None


@dataclass
class BedtimeReport:
    at: datetime
    awake_hours: float | None = None


@dataclass
class HealthSummary:
    sleep: SleepStats
    water: WaterStats


class HealthTracker:
    """Records sleep and water events and computes the stats shown to the user."""

    def __init__(
        self,
        store: SqliteHealthStore,
        *,
        goal_ml: int = WATER_GOAL_ML,
        timezone: str = TIMEZONE,
        clock: Callable[[], datetime] = _utcnow,
    ):
        self._store = store
        self._goal_ml = goal_ml
        self._tz = ZoneInfo(timezone)
        self._clock = clock

    # ── Water ────────────────────────────────────────────────────────

    async def log_water(self, user_id: int, amount_ml: int) -> WaterStats:
        if not 0 < amount_ml <= MAX_WATER_LOG_ML:
            raise ValidationError(f"Cannot log {amount_ml}ml of water at once")
        await self._store.log_water(user_id, amount_ml, self._clock())
        return await self.water_stats(user_id)

    async def water_stats(self, user_id: int) -> WaterStats:
        days = self._last_days()
        logs = await self._store.water_since(user_id, self._start_of(days[0]))

        totals = dict.fromkeys(days, 0)
        for logged_at, amount_ml in logs:
            day = self._local_date(logged_at)
            if day in totals:
                totals[day] += amount_ml

        week = [WaterDay(day, totals[day], totals[day] >= self._goal_ml) for day in days]
        return WaterStats(today_ml=totals[days[-1]], goal_ml=self._goal_ml, week=week)

    # ── Sleep ────────────────────────────────────────────────────────

    async def good_morning(self, user_id: int) -> WakeReport:
        """Record a wake-up and report how long the user slept."""
        now = self._clock()
        last_sleep = await self._store.last_sleep_log(user_id, SleepLogKind.SLEEP)
        await self._store.log_sleep(user_id, SleepLogKind.WAKE, now)

        slept = None
        if last_sleep is not None and timedelta(0) < now - last_sleep <= MAX_NIGHT:
            slept = _hours(now - last_sleep)
        return WakeReport(at=now.astimezone(self._tz), slept_hours=slept)

    async def good_night(self, user_id: int) -> BedtimeReport:
        """Record going to sleep and report how long the user was up today."""
        now = self._clock()
        last_wake = await self._store.last_sleep_log(user_id, SleepLogKind.WAKE)
        await self._store.log_sleep(user_id, SleepLogKind.SLEEP, now)

        awake = None
        if last_wake is not None and self._local_date(last_wake) == self._local_date(now):
            awake = _hours(now - last_wake)
        return BedtimeReport(at=now.astimezone(self._tz), awake_hours=awake)

    async def sleep_stats(self, user_id: int) -> SleepStats:
        days = self._last_days()
        # One extra day so the first night's bedtime is included.
        logs = await self._store.sleep_since(user_id, self._start_of(days[0] - timedelta(days=1)))

        week = [SleepNight(day, _night_hours(logs, day, self._tz)) for day in days]
        known = [night.hours for night in week if night.hours is not None]
        average = sum(known) / len(known) if known else None

        last_night = None
        last_sleep = await self._store.last_sleep_log(user_id, SleepLogKind.SLEEP)
        last_wake = await self._store.last_sleep_log(user_id, SleepLogKind.WAKE)
        if last_sleep and last_wake and timedelta(0) < last_wake - last_sleep <= MAX_NIGHT:
            last_night = _hours(last_wake - last_sleep)

        return SleepStats(last_night_hours=last_night, average_hours=average, week=week)

    async def summary(self, user_id: int) -> HealthSummary:
        return HealthSummary(
            sleep=await self.sleep_stats(user_id),
            water=await self.water_stats(user_id),
        )

    # ── Internal ─────────────────────────────────────────────────────

    def _local_date(self, moment: datetime) -> date:
        return moment.astimezone(self._tz).date()

    def _last_days(self) -> list[date]:
        today = self._local_date(self._clock())
        return [today - timedelta(days=offset) for offset in range(WEEK_DAYS - 1, -1, -1)]

    def _start_of(self, day: date) -> datetime:
        return datetime.combine(day, time.min, tzinfo=self._tz).astimezone(UTC)


def _night_hours(
    logs: list[tuple[SleepLogKind, datetime]], day: date, tz: ZoneInfo,
) -> float | None:
    """Hours slept before the first wake-up on *day*, if it can be paired.

    The bedtime is the latest "good night" before that wake-up and no more
    than ``MAX_NIGHT`` earlier.
    """
    wake = next(
        (at for kind, at in logs if kind == SleepLogKind.WAKE and at.astimezone(tz).date() == day),
        None,
    )
    if wake is None:
        return None

    bedtimes = [
        at for kind, at in logs
        if kind == SleepLogKind.SLEEP and timedelta(0) < wake - at <= MAX_NIGHT
    ]
    if not bedtimes:
        return None
    return _hours(wake - max(bedtimes))
