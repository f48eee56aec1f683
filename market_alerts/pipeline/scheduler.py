"""Wall-clock scheduling of poll cycles.

Regular ticks follow the configured cadence and only start a cycle inside
the operating window. The window-open and window-close triggers fire once per
operating day at the window bounds regardless of that gate. At most one
cycle runs at a time: a tick that finds a cycle in flight is dropped.
"""

import threading
from datetime import datetime, timezone
from typing import Callable, List, Optional, Sequence

import schedule

from market_alerts.core.logger import logger
from market_alerts.core.market_hours import in_operating_window, is_trading_day, to_local
from market_alerts.models.datatypes import (
    TRIGGER_MANUAL, TRIGGER_REGULAR, TRIGGER_WINDOW_CLOSE, TRIGGER_WINDOW_OPEN,
)
from market_alerts.pipeline.engine import CycleResult, MonitorEngine

IDLE = "idle"
RUNNING = "running"

_DAY_NAMES = {
    "mon": "monday", "tue": "tuesday", "wed": "wednesday", "thu": "thursday",
    "fri": "friday", "sat": "saturday", "sun": "sunday",
}


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class MonitorScheduler:
    """Drives a MonitorEngine from the clock.

    Args:
        engine: Runs one cycle per accepted tick.
        interval_minutes: Regular cadence.
        tz_name: Exchange timezone for the window and boundary triggers.
        window_days: Operating weekdays as three-letter names.
        window_start: Window open, ``HH:MM`` exchange time.
        window_end: Window close, ``HH:MM`` exchange time (inclusive).
        holidays: Closed dates as ``YYYY-MM-DD``.
        clock: Source of "now" for the window check.
        scheduler: ``schedule.Scheduler`` to register jobs on; a private one
            when omitted.
    """

    def __init__(
        self,
        engine: MonitorEngine,
        interval_minutes: int = 5,
        tz_name: str = "Asia/Kolkata",
        window_days: Sequence[str] = ("mon", "tue", "wed", "thu", "fri"),
        window_start: str = "09:00",
        window_end: str = "16:00",
        holidays: Sequence[str] = (),
        clock: Callable[[], datetime] = _utcnow,
        scheduler: Optional[schedule.Scheduler] = None,
    ) -> None:
        self.engine = engine
        self.interval_minutes = int(interval_minutes)
        self.tz_name = tz_name
        self.window_days = list(window_days)
        self.window_start = window_start
        self.window_end = window_end
        self.holidays = list(holidays)
        self._clock = clock
        self._scheduler = scheduler or schedule.Scheduler()
        self._lock = threading.Lock()
        self._state = IDLE

    @classmethod
    def from_settings(cls, engine: MonitorEngine, settings) -> "MonitorScheduler":
        return cls(
            engine=engine,
            interval_minutes=settings.interval_minutes,
            tz_name=settings.timezone,
            window_days=settings.window_days,
            window_start=settings.window_start,
            window_end=settings.window_end,
            holidays=settings.holidays,
        )

    @property
    def state(self) -> str:
        return self._state

    @property
    def jobs(self) -> List[schedule.Job]:
        return list(self._scheduler.jobs)

    def in_window(self) -> bool:
        return in_operating_window(
            self._clock(), self.tz_name, self.window_days,
            self.window_start, self.window_end, self.holidays,
        )

    def tick(self, trigger: str = TRIGGER_REGULAR) -> Optional[CycleResult]:
        """
        Start one cycle unless gated out or another cycle is in flight.

        Regular ticks are gated by the operating window; boundary and manual
        triggers are not. Exceptions escaping the cycle are logged and absorbed.

        Returns:
            Optional[CycleResult]: None when the tick was skipped or the cycle raised.
        """
        if trigger == TRIGGER_REGULAR and not self.in_window():
            logger.debug("MonitorScheduler: outside operating window, tick skipped")
            return None

        if not self._lock.acquire(blocking=False):
            logger.warning(f"MonitorScheduler: cycle still running, {trigger} tick dropped")
            return None

        self._state = RUNNING
        try:
            return self.engine.run_cycle(trigger)
        except Exception as exc:
            logger.error(f"MonitorScheduler: {trigger} cycle raised: {exc}", exc_info=True)
            return None
        finally:
            self._state = IDLE
            self._lock.release()

    def register_jobs(self) -> List[schedule.Job]:
        """Register the regular cadence and the two boundary triggers."""
        self._scheduler.clear()

        if 60 % self.interval_minutes == 0:
            # Clock-aligned, like a */N cron minute field
            for minute in range(0, 60, self.interval_minutes):
                self._scheduler.every().hour.at(f":{minute:02d}").do(self.tick, TRIGGER_REGULAR)
        else:
            self._scheduler.every(self.interval_minutes).minutes.do(self.tick, TRIGGER_REGULAR)

        for day in self.window_days:
            for at, trigger in ((self.window_start, TRIGGER_WINDOW_OPEN),
                                (self.window_end, TRIGGER_WINDOW_CLOSE)):
                getattr(self._scheduler.every(), _DAY_NAMES[day]).at(at, self.tz_name).do(
                    self._boundary_tick, trigger
                )

        logger.info(
            f"MonitorScheduler: registered {len(self._scheduler.jobs)} jobs "
            f"(every {self.interval_minutes} min, window {self.window_start}-{self.window_end} "
            f"{self.tz_name}, days {','.join(self.window_days)})"
        )
        return self.jobs

    def run_forever(self, stop_event: threading.Event, poll_seconds: float = 1.0) -> None:
        """Block running due jobs until stop_event is set."""
        if not self._scheduler.jobs:
            self.register_jobs()
        logger.info("MonitorScheduler: daemon started")
        while not stop_event.is_set():
            try:
                self._scheduler.run_pending()
            except Exception as exc:
                logger.error(f"MonitorScheduler: job runner raised: {exc}", exc_info=True)
            stop_event.wait(poll_seconds)
        logger.info("MonitorScheduler: daemon stopped")

    def run_now(self) -> Optional[CycleResult]:
        return self.tick(TRIGGER_MANUAL)

    def _boundary_tick(self, trigger: str) -> Optional[CycleResult]:
        local = to_local(self._clock(), self.tz_name)
        if not is_trading_day(local, self.window_days, self.holidays):
            logger.info(f"MonitorScheduler: {local:%Y-%m-%d} is a holiday, {trigger} skipped")
            return None
        return self.tick(trigger)
