"""Configuration module for loading monitor settings and environment variables."""

import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, List, Optional

import yaml
from dotenv import load_dotenv

from market_alerts.models.datatypes import Recipient

# Load environment variables from .env file
load_dotenv()

CHANNELS = ("email", "sms", "whatsapp")
WEEKDAYS = ("mon", "tue", "wed", "thu", "fri", "sat", "sun")

_TRUTHY = {"1", "true", "yes", "on"}


def load_config(config_path: str | Path = "config.yaml") -> Dict[str, Any]:
    """
    Load configuration from the specified YAML file.

    Args:
        config_path (str | Path): Path to the configuration file. Defaults to "config.yaml".

    Returns:
        Dict[str, Any]: A dictionary containing the configuration settings.
    """
    config_file = Path(config_path)
    if not config_file.exists():
        raise FileNotFoundError(f"Configuration file not found at {config_path}")

    with open(config_file, "r", encoding="utf-8") as file:
        config_data = yaml.safe_load(file)

    if not config_data:
        raise ValueError(f"Configuration file {config_path} is empty or invalid.")

    return config_data


@dataclass
class MonitorSettings:
    """Typed view of config.yaml with a default for every option."""

    # Cadence and operating window
    interval_minutes: int = 5
    timezone: str = "Asia/Kolkata"
    window_days: List[str] = field(default_factory=lambda: ["mon", "tue", "wed", "thu", "fri"])
    window_start: str = "09:00"
    window_end: str = "16:00"
    holidays: List[str] = field(default_factory=list)

    # Detection and delivery
    threshold_pct: float = 0.5
    live_delivery: bool = False
    recipients: List[Recipient] = field(default_factory=list)
    max_workers: int = 8

    # Source
    base_url: str = "https://www.nseindia.com"
    bootstrap_url: str = "https://www.nseindia.com/market-data/pre-open-market-cm-and-emerge-market"
    data_path: str = "/api/market-data-pre-open"
    query_key: str = "NIFTY"
    query_param: str = "key"
    data_source: str = "NSE"
    required_cookies: List[str] = field(default_factory=list)
    session_ttl_seconds: float = 900.0

    # Timeouts (seconds)
    session_timeout: float = 10.0
    fetch_timeout: float = 15.0
    notify_timeout: float = 20.0

    # Retry bounds
    session_attempts: int = 3
    session_backoff_seconds: float = 5.0
    auth_refresh_retries: int = 1

    # Storage
    db_path: str = "output/market_data.db"
    cache_ttl_seconds: float = 60.0
    output_dir: str = "output"

    @classmethod
    def from_config(cls, config: Optional[Dict[str, Any]] = None) -> "MonitorSettings":
        """
        Build settings from a parsed config dict, filling in defaults.

        Args:
            config (Optional[Dict[str, Any]]): Output of :func:`load_config`.

        Returns:
            MonitorSettings: The normalised settings.

        Raises:
            ValueError: On an unknown channel or weekday, a negative threshold
                        or a non-positive interval.
        """
        config = config or {}
        defaults = cls()
        window = config.get("operating_window", {}) or {}
        source = config.get("source", {}) or {}
        timeouts = config.get("timeouts", {}) or {}
        retries = config.get("retries", {}) or {}
        storage = config.get("storage", {}) or {}
        dispatch = config.get("dispatch", {}) or {}

        live = bool(config.get("live_delivery", defaults.live_delivery))
        env_live = os.getenv("LIVE_DELIVERY")
        if env_live is not None and env_live.strip():
            live = env_live.strip().lower() in _TRUTHY

        settings = cls(
            interval_minutes=int(config.get("interval_minutes", defaults.interval_minutes)),
            timezone=str(config.get("timezone", defaults.timezone)),
            window_days=[str(d).lower()[:3] for d in window.get("days", defaults.window_days)],
            window_start=_hhmm(window.get("start", defaults.window_start)),
            window_end=_hhmm(window.get("end", defaults.window_end)),
            holidays=[str(d) for d in config.get("holidays", []) or []],
            threshold_pct=float(config.get("threshold_pct", defaults.threshold_pct)),
            live_delivery=live,
            recipients=_parse_recipients(config.get("recipients", []) or []),
            max_workers=int(dispatch.get("max_workers", defaults.max_workers)),
            base_url=str(source.get("base_url", defaults.base_url)).rstrip("/"),
            bootstrap_url=str(source.get("bootstrap_url", defaults.bootstrap_url)),
            data_path=str(source.get("data_path", defaults.data_path)),
            query_key=str(source.get("query_key", defaults.query_key)),
            query_param=str(source.get("query_param", defaults.query_param)),
            data_source=str(source.get("data_source", defaults.data_source)),
            required_cookies=list(source.get("required_cookies", []) or []),
            session_ttl_seconds=float(source.get("session_ttl_seconds", defaults.session_ttl_seconds)),
            session_timeout=float(timeouts.get("session", defaults.session_timeout)),
            fetch_timeout=float(timeouts.get("fetch", defaults.fetch_timeout)),
            notify_timeout=float(timeouts.get("notify", defaults.notify_timeout)),
            session_attempts=int(retries.get("session_attempts", defaults.session_attempts)),
            session_backoff_seconds=float(
                retries.get("session_backoff_seconds", defaults.session_backoff_seconds)
            ),
            auth_refresh_retries=int(retries.get("auth_refresh_retries", defaults.auth_refresh_retries)),
            db_path=str(storage.get("db_path", defaults.db_path)),
            cache_ttl_seconds=float(storage.get("cache_ttl_seconds", defaults.cache_ttl_seconds)),
            output_dir=str(config.get("output_dir", defaults.output_dir)),
        )
        settings._validate()
        return settings

    def _validate(self) -> None:
        if self.interval_minutes <= 0:
            raise ValueError(f"interval_minutes must be positive, got {self.interval_minutes}")
        if self.threshold_pct < 0:
            raise ValueError(f"threshold_pct must not be negative, got {self.threshold_pct}")
        if self.session_attempts < 1:
            raise ValueError(f"retries.session_attempts must be at least 1, got {self.session_attempts}")
        unknown_days = [d for d in self.window_days if d not in WEEKDAYS]
        if unknown_days:
            raise ValueError(f"Unknown operating_window days: {unknown_days}")


def _hhmm(value: Any) -> str:
    """Normalise a window bound to HH:MM.

    YAML 1.1 reads an unquoted ``16:00`` as the base-60 integer 960.
    """
    if isinstance(value, int):
        return f"{value // 60:02d}:{value % 60:02d}"
    return str(value)


def _parse_recipients(raw: List[Dict[str, Any]]) -> List[Recipient]:
    """Turn the ``recipients`` list from config.yaml into Recipient objects."""
    recipients: List[Recipient] = []
    for entry in raw:
        channel = str(entry.get("channel", "")).lower().strip()
        address = str(entry.get("address", "")).strip()
        if channel not in CHANNELS:
            raise ValueError(f"Unknown recipient channel {channel!r} (expected one of {CHANNELS})")
        if not address:
            raise ValueError(f"Recipient on channel {channel!r} has no address")
        recipients.append(Recipient(channel=channel, address=address, name=entry.get("name")))
    return recipients
