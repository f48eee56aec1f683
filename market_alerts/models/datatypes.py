"""Data structures for the market monitoring cycle."""

from dataclasses import dataclass, field
from datetime import datetime
from typing import Dict, List, Optional

# Fetch failure reasons
REASON_AUTH = "auth"
REASON_TRANSIENT = "transient"

# Alert outcome reasons
ALERT_SIGNIFICANT_MOVEMENT = "significant-movement"
ALERT_SUPPRESSED_NON_LIVE = "suppressed (non-live)"
ALERT_NO_MOVEMENT = "no-significant-movement"
ALERT_FETCH_FAILED = "fetch-failed"

# Cycle triggers
TRIGGER_REGULAR = "regular"
TRIGGER_WINDOW_OPEN = "window-open"
TRIGGER_WINDOW_CLOSE = "window-close"
TRIGGER_MANUAL = "manual"

# Session freshness
SESSION_VALID = "valid"
SESSION_UNKNOWN = "unknown"
SESSION_EXPIRED = "expired"


@dataclass(frozen=True)
class Sample:
    """
    One instrument's quote as returned by a single poll.
    """
    symbol: str
    last_price: float
    change: float
    p_change: float
    previous_close: float
    open: float
    day_high: float
    day_low: float
    total_traded_volume: float
    total_traded_value: float


@dataclass
class FetchOutcome:
    """
    Result of one data request, successful or not.

    A reachable source that returns no rows is ``success=True`` with an empty
    ``samples`` list.
    """
    success: bool
    samples: List[Sample] = field(default_factory=list)
    latency_ms: float = 0.0
    error_message: Optional[str] = None
    reason: Optional[str] = None  # "auth" | "transient" on failure
    index_change_pct: Optional[float] = None


@dataclass
class Aggregation:
    """
    Movement classification of one poll's samples against a threshold.

    ``gainers``, ``losers`` and ``unchanged`` keep the input order of the
    samples, so rendering is deterministic for a given fetch.
    """
    threshold_pct: float
    gainers: List[Sample]
    losers: List[Sample]
    unchanged: List[Sample]
    sentiment: str
    total_volume: float
    avg_volume: float

    @property
    def total(self) -> int:
        return len(self.gainers) + len(self.losers) + len(self.unchanged)

    @property
    def gainer_count(self) -> int:
        return len(self.gainers)

    @property
    def loser_count(self) -> int:
        return len(self.losers)

    @property
    def unchanged_count(self) -> int:
        return len(self.unchanged)

    @property
    def should_alert(self) -> bool:
        return bool(self.gainers or self.losers)


@dataclass(frozen=True)
class AlertOutcome:
    """Whether a notification was dispatched for a poll, and why."""
    dispatched: bool
    reason: str


@dataclass
class PollRecord:
    """
    The persisted, append-only record of one poll cycle.
    """
    timestamp: datetime
    market_session: str
    trigger: str
    samples: List[Sample]
    total_stocks: int
    gainers: int
    losers: int
    unchanged: int
    total_volume: float
    avg_volume: float
    market_sentiment: str
    threshold_pct: float
    api_response: FetchOutcome
    alert: AlertOutcome
    index_change_pct: Optional[float] = None
    data_source: str = "NSE"
    record_id: Optional[int] = None

    @property
    def should_alert(self) -> bool:
        return (self.gainers + self.losers) > 0


@dataclass
class SessionContext:
    """
    Authentication material for the market-data source.

    Never persisted. ``state`` is ``valid`` right after acquisition and moves
    to ``expired`` once the source rejects it or it outlives its TTL.
    """
    cookies: Dict[str, str]
    headers: Dict[str, str]
    acquired_at: float
    state: str = SESSION_UNKNOWN


@dataclass(frozen=True)
class Recipient:
    """A configured contact address on one delivery channel."""
    channel: str  # "email" | "sms" | "whatsapp"
    address: str
    name: Optional[str] = None


@dataclass
class AlertMessage:
    """
    Channel variants of one rendered alert.

    Attributes:
        subject: Email subject line.
        text: Plain-text body.
        html: Rich HTML body.
        short: Compact body for SMS.
        chat: Body with chat markup (``*bold*``) for messaging APIs.
    """
    subject: str
    text: str
    html: str
    short: str
    chat: str


@dataclass
class NotificationAttempt:
    """Outcome of delivering one message to one recipient. Logged, never stored."""
    recipient: Recipient
    channel: str
    message: str
    delivered: bool
    reason: Optional[str] = None
