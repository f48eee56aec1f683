"""Monitor engine: runs one poll cycle end to end.

Flow per cycle:
  1. Fetch:    NSEMarketDataFetcher.fetch_instruments (session handled inside)
  2. Classify: detector.classify against threshold_pct
  3. Decide:   alert outcome from fetch success, movement and live-delivery flag
  4. Store:    one PollRecord appended to the SampleStore
  5. Dispatch: only when the outcome is dispatched; per-recipient isolation

Every cycle produces exactly one PollRecord, including failed fetches. The
alert outcome is settled before the write, so delivery failures after it
never change what was stored.
"""

from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Callable, Dict, List, Optional, Sequence

from market_alerts.core.logger import logger
from market_alerts.core.market_hours import market_session
from market_alerts.models.datatypes import (
    ALERT_FETCH_FAILED, ALERT_NO_MOVEMENT, ALERT_SIGNIFICANT_MOVEMENT,
    ALERT_SUPPRESSED_NON_LIVE, TRIGGER_REGULAR, AlertOutcome, Aggregation,
    FetchOutcome, NotificationAttempt, PollRecord, Recipient,
)
from market_alerts.pipeline.detector import classify
from market_alerts.pipeline.dispatcher import NotificationDispatcher
from market_alerts.pipeline.store import SampleStore
from market_alerts.providers.base import MarketDataProvider, NotificationChannel
from market_alerts.providers.channels import channels_from_env
from market_alerts.providers.market import NSEMarketDataFetcher
from market_alerts.providers.session import SessionManager


@dataclass
class CycleResult:
    """What one cycle produced: the record, its delivery attempts and whether it was stored."""
    record: PollRecord
    attempts: List[NotificationAttempt] = field(default_factory=list)
    stored: bool = False


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class MonitorEngine:
    """Orchestrates fetch, classification, persistence and dispatch.

    Args:
        fetcher: Market data source.
        store: Append-only sample store.
        dispatcher: Notification fan-out.
        recipients: Contacts alerted on significant movement.
        threshold_pct: Gain/loss threshold in percent.
        live_delivery: When False, alerts are recorded as suppressed and not sent.
        tz_name: Exchange timezone, used for the session label.
        trading_days: Weekdays the exchange trades.
        holidays: Closed dates as ``YYYY-MM-DD``.
        data_source: Source label stored on every record.
        clock: Source of the poll timestamp.
    """

    def __init__(
        self,
        fetcher: MarketDataProvider,
        store: SampleStore,
        dispatcher: NotificationDispatcher,
        recipients: Sequence[Recipient] = (),
        threshold_pct: float = 0.5,
        live_delivery: bool = False,
        tz_name: str = "Asia/Kolkata",
        trading_days: Sequence[str] = ("mon", "tue", "wed", "thu", "fri"),
        holidays: Sequence[str] = (),
        data_source: str = "NSE",
        clock: Callable[[], datetime] = _utcnow,
    ) -> None:
        self.fetcher = fetcher
        self.store = store
        self.dispatcher = dispatcher
        self.recipients = list(recipients)
        self.threshold_pct = threshold_pct
        self.live_delivery = live_delivery
        self.tz_name = tz_name
        self.trading_days = list(trading_days)
        self.holidays = list(holidays)
        self.data_source = data_source
        self._clock = clock

    @classmethod
    def from_settings(
        cls,
        settings,
        channels: Optional[Dict[str, NotificationChannel]] = None,
        http=None,
    ) -> "MonitorEngine":
        """Wire the production session, fetcher, store and channels from settings."""
        session = SessionManager.from_settings(settings, http=http)
        fetcher = NSEMarketDataFetcher.from_settings(settings, session, http=http)
        store = SampleStore(settings.db_path, cache_ttl_seconds=settings.cache_ttl_seconds)
        if channels is None:
            channels = channels_from_env(timeout=settings.notify_timeout)
        dispatcher = NotificationDispatcher.from_settings(settings, channels)
        return cls(
            fetcher=fetcher,
            store=store,
            dispatcher=dispatcher,
            recipients=settings.recipients,
            threshold_pct=settings.threshold_pct,
            live_delivery=settings.live_delivery,
            tz_name=settings.timezone,
            trading_days=settings.window_days,
            holidays=settings.holidays,
            data_source=settings.data_source,
        )

    # ── public ────────────────────────────────────────────────────────────────

    def run_cycle(self, trigger: str = TRIGGER_REGULAR) -> CycleResult:
        """Run one poll cycle.

        Args:
            trigger: What started the cycle (regular, window-open, window-close, manual).

        Returns:
            CycleResult: The stored record and any delivery attempts.
        """
        polled_at = self._clock()
        logger.info(f"MonitorEngine: cycle started ({trigger})")

        outcome = self.fetcher.fetch_instruments()
        aggregation = classify(outcome.samples if outcome.success else [], self.threshold_pct)
        alert = self._decide(outcome, aggregation)
        record = self._build_record(polled_at, trigger, outcome, aggregation, alert)

        stored = self.store.record(record)

        attempts: List[NotificationAttempt] = []
        if alert.dispatched:
            attempts = self.dispatcher.dispatch(aggregation, self.recipients, polled_at)

        logger.info(
            f"MonitorEngine: cycle finished ({trigger}): session={record.market_session}, "
            f"stocks={record.total_stocks}, gainers={record.gainers}, losers={record.losers}, "
            f"alert={alert.reason}, stored={stored}"
        )
        return CycleResult(record=record, attempts=attempts, stored=stored)

    # ── internal ──────────────────────────────────────────────────────────────

    def _decide(self, outcome: FetchOutcome, aggregation: Aggregation) -> AlertOutcome:
        if not outcome.success:
            return AlertOutcome(dispatched=False, reason=ALERT_FETCH_FAILED)
        if not aggregation.should_alert:
            return AlertOutcome(dispatched=False, reason=ALERT_NO_MOVEMENT)
        if not self.live_delivery:
            logger.info(
                f"MonitorEngine: {aggregation.gainer_count} gainers / "
                f"{aggregation.loser_count} losers, delivery suppressed (non-live)"
            )
            return AlertOutcome(dispatched=False, reason=ALERT_SUPPRESSED_NON_LIVE)
        return AlertOutcome(dispatched=True, reason=ALERT_SIGNIFICANT_MOVEMENT)

    def _build_record(
        self,
        polled_at: datetime,
        trigger: str,
        outcome: FetchOutcome,
        aggregation: Aggregation,
        alert: AlertOutcome,
    ) -> PollRecord:
        samples = list(outcome.samples) if outcome.success else []
        return PollRecord(
            timestamp=polled_at,
            market_session=market_session(
                polled_at, self.tz_name, self.trading_days, self.holidays,
            ),
            trigger=trigger,
            samples=samples,
            total_stocks=len(samples),
            gainers=aggregation.gainer_count,
            losers=aggregation.loser_count,
            unchanged=aggregation.unchanged_count,
            total_volume=aggregation.total_volume,
            avg_volume=aggregation.avg_volume,
            market_sentiment=aggregation.sentiment,
            threshold_pct=self.threshold_pct,
            api_response=outcome,
            alert=alert,
            index_change_pct=outcome.index_change_pct if outcome.success else None,
            data_source=self.data_source,
        )
