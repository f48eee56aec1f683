"""SQLite-backed sample store: the poll-record write path and its read queries.

Every poll cycle appends exactly one row to ``poll_records`` plus one row per
sample to ``samples``, in a single transaction. Nothing is updated or deleted
afterwards. The read side serves the reporting layer and offline training:
raw records by time range, flattened per-sample training rows, per-symbol
series, index volatility, summary statistics and bulk export.
"""

import sqlite3
from contextlib import closing
from datetime import datetime, timedelta, timezone
from pathlib import Path
from typing import Any, Callable, Dict, List, Optional, Sequence

import pandas as pd

from market_alerts.core.cache import TTLCache
from market_alerts.core.errors import StorageFailure
from market_alerts.core.logger import logger
from market_alerts.models.datatypes import (
    AlertOutcome, FetchOutcome, PollRecord, Sample,
)

EXPORT_FORMATS = ("csv", "jsonl", "json")

_SCHEMA = """
CREATE TABLE IF NOT EXISTS poll_records (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    timestamp TEXT NOT NULL,
    market_session TEXT NOT NULL,
    poll_trigger TEXT NOT NULL,
    total_stocks INTEGER NOT NULL,
    gainers INTEGER NOT NULL,
    losers INTEGER NOT NULL,
    unchanged INTEGER NOT NULL,
    total_volume REAL NOT NULL,
    avg_volume REAL NOT NULL,
    market_sentiment TEXT NOT NULL,
    threshold_pct REAL NOT NULL,
    index_change_pct REAL,
    alert_sent INTEGER NOT NULL,
    alert_reason TEXT NOT NULL,
    data_source TEXT NOT NULL,
    api_success INTEGER NOT NULL,
    api_response_time_ms REAL,
    api_error_message TEXT,
    api_error_reason TEXT,
    created_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP
);
CREATE INDEX IF NOT EXISTS idx_poll_timestamp ON poll_records (timestamp);
CREATE INDEX IF NOT EXISTS idx_poll_session ON poll_records (market_session, timestamp);
CREATE INDEX IF NOT EXISTS idx_poll_alert ON poll_records (alert_sent, timestamp);

CREATE TABLE IF NOT EXISTS samples (
    record_id INTEGER NOT NULL REFERENCES poll_records (id),
    position INTEGER NOT NULL,
    symbol TEXT NOT NULL,
    last_price REAL NOT NULL,
    change REAL NOT NULL,
    p_change REAL NOT NULL,
    previous_close REAL NOT NULL,
    open REAL NOT NULL,
    day_high REAL NOT NULL,
    day_low REAL NOT NULL,
    total_traded_volume REAL NOT NULL,
    total_traded_value REAL NOT NULL,
    PRIMARY KEY (record_id, position)
);
CREATE INDEX IF NOT EXISTS idx_samples_symbol ON samples (symbol, record_id);
CREATE INDEX IF NOT EXISTS idx_samples_pchange ON samples (p_change);
"""

_SAMPLE_COLUMNS = (
    "symbol", "last_price", "change", "p_change", "previous_close", "open",
    "day_high", "day_low", "total_traded_volume", "total_traded_value",
)

_TRAINING_SQL = """
SELECT p.timestamp AS timestamp,
       p.market_session AS market_session,
       s.symbol AS symbol,
       s.last_price AS last_price,
       s.change AS change,
       s.p_change AS p_change,
       s.total_traded_volume AS volume,
       s.day_high AS high,
       s.day_low AS low,
       s.open AS open,
       s.previous_close AS previous_close,
       p.index_change_pct AS index_change_pct,
       p.market_sentiment AS market_sentiment,
       p.total_volume AS total_volume
FROM poll_records p
JOIN samples s ON s.record_id = p.id
"""


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _iso(moment: datetime) -> str:
    """Fixed-width UTC ISO-8601 so stored timestamps sort lexicographically."""
    if moment.tzinfo is None:
        moment = moment.replace(tzinfo=timezone.utc)
    return moment.astimezone(timezone.utc).isoformat(timespec="microseconds")


class SampleStore:
    """Append-only SQLite store for poll records.

    Args:
        db_path: Path to the SQLite database file (parent is created).
        cache_ttl_seconds: Lifetime of memoised read-query results.
        clock: Source of "now" for trailing-window queries.
    """

    def __init__(
        self,
        db_path: str = "output/market_data.db",
        cache_ttl_seconds: float = 60.0,
        clock: Callable[[], datetime] = _utcnow,
    ) -> None:
        self.db_path = Path(db_path)
        self.db_path.parent.mkdir(parents=True, exist_ok=True)
        self._clock = clock
        self._cache = TTLCache(ttl_seconds=cache_ttl_seconds)
        self._init_db()

    def _get_connection(self) -> sqlite3.Connection:
        """Get a connection to the SQLite database."""
        conn = sqlite3.connect(self.db_path, check_same_thread=False, timeout=10.0)
        conn.row_factory = sqlite3.Row
        return conn

    def _init_db(self) -> None:
        """Create the tables and indexes if they don't exist."""
        with closing(self._get_connection()) as conn, conn:
            conn.executescript(_SCHEMA)

    # ── write path ────────────────────────────────────────────────────────────

    def record(self, record: PollRecord) -> bool:
        """
        Append one poll record and its samples in a single transaction.

        Args:
            record (PollRecord): The cycle's record. ``record_id`` is filled in
                                 on success.

        Returns:
            bool: True once durably written. Storage errors are logged and
            reported as False; they never propagate.
        """
        try:
            record_id = self._insert(record)
        except (sqlite3.Error, TypeError, ValueError) as exc:
            failure = StorageFailure(
                f"could not persist poll record at {_iso(record.timestamp)}: {exc}"
            )
            logger.error(f"SampleStore: {failure}")
            return False

        record.record_id = record_id
        self._cache.clear()
        logger.info(
            f"SampleStore: stored record #{record_id} "
            f"({record.total_stocks} samples, success={record.api_response.success}, "
            f"alert={record.alert.reason})"
        )
        return True

    def _insert(self, record: PollRecord) -> int:
        api = record.api_response
        with closing(self._get_connection()) as conn, conn:
            cursor = conn.execute(
                """
                INSERT INTO poll_records (
                    timestamp, market_session, poll_trigger, total_stocks,
                    gainers, losers, unchanged, total_volume, avg_volume,
                    market_sentiment, threshold_pct, index_change_pct,
                    alert_sent, alert_reason, data_source, api_success,
                    api_response_time_ms, api_error_message, api_error_reason
                ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
                """,
                (
                    _iso(record.timestamp), record.market_session, record.trigger,
                    record.total_stocks, record.gainers, record.losers,
                    record.unchanged, record.total_volume, record.avg_volume,
                    record.market_sentiment, record.threshold_pct,
                    record.index_change_pct, int(record.alert.dispatched),
                    record.alert.reason, record.data_source, int(api.success),
                    api.latency_ms, api.error_message, api.reason,
                ),
            )
            record_id = int(cursor.lastrowid)
            conn.executemany(
                f"""
                INSERT INTO samples (record_id, position, {", ".join(_SAMPLE_COLUMNS)})
                VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
                """,
                [
                    (record_id, position) + tuple(getattr(s, col) for col in _SAMPLE_COLUMNS)
                    for position, s in enumerate(record.samples)
                ],
            )
        return record_id

    # ── read path ─────────────────────────────────────────────────────────────

    def records_between(self, start: datetime, end: datetime, limit: int = 100) -> List[PollRecord]:
        """
        Return raw poll records with ``start <= timestamp <= end``, newest first.

        Args:
            start (datetime): Inclusive lower bound.
            end (datetime): Inclusive upper bound.
            limit (int): Maximum number of records.
        """
        with closing(self._get_connection()) as conn:
            rows = conn.execute(
                """
                SELECT * FROM poll_records
                WHERE timestamp >= ? AND timestamp <= ?
                ORDER BY timestamp DESC, id DESC
                LIMIT ?
                """,
                (_iso(start), _iso(end), int(limit)),
            ).fetchall()
            return [self._row_to_record(conn, row) for row in rows]

    def training_data(
        self,
        start: Optional[datetime] = None,
        end: Optional[datetime] = None,
        symbols: Optional[Sequence[str]] = None,
        min_abs_change: Optional[float] = None,
        market_session: Optional[str] = None,
    ) -> pd.DataFrame:
        """
        One row per (poll, sample), newest first, for model training.

        Args:
            start: Inclusive lower bound; defaults to 30 days before now.
            end: Inclusive upper bound; defaults to now.
            symbols: Restrict to these symbols (case-insensitive).
            min_abs_change: Keep samples whose absolute percent change is at least this.
            market_session: Restrict to one session label.

        Returns:
            pd.DataFrame: Columns ``timestamp, market_session, symbol, last_price,
            change, p_change, volume, high, low, open, previous_close,
            index_change_pct, market_sentiment, total_volume``.
        """
        now = self._clock()
        start = start or now - timedelta(days=30)
        end = end or now
        clauses = ["p.timestamp >= ?", "p.timestamp <= ?"]
        params: List[Any] = [_iso(start), _iso(end)]
        if market_session:
            clauses.append("p.market_session = ?")
            params.append(market_session)
        if symbols:
            clauses.append(f"UPPER(s.symbol) IN ({', '.join('?' for _ in symbols)})")
            params.extend(s.upper() for s in symbols)
        if min_abs_change is not None:
            clauses.append("ABS(s.p_change) >= ?")
            params.append(abs(float(min_abs_change)))

        sql = f"{_TRAINING_SQL} WHERE {' AND '.join(clauses)} ORDER BY p.timestamp DESC, s.position"
        key = f"training:{params}"
        return self._cache.get_or_compute(key, lambda: self._frame(sql, params)).copy()

    def stock_time_series(self, symbol: str, days: int = 30) -> pd.DataFrame:
        """
        Price history of one symbol over a trailing window, oldest first.

        Returns:
            pd.DataFrame: Columns ``timestamp, price, change, volume, high, low``.
        """
        cutoff = self._clock() - timedelta(days=days)
        sql = """
            SELECT p.timestamp AS timestamp,
                   s.last_price AS price,
                   s.p_change AS change,
                   s.total_traded_volume AS volume,
                   s.day_high AS high,
                   s.day_low AS low
            FROM poll_records p
            JOIN samples s ON s.record_id = p.id
            WHERE UPPER(s.symbol) = ? AND p.timestamp >= ?
            ORDER BY p.timestamp ASC
        """
        params = [symbol.upper(), _iso(cutoff)]
        key = f"series:{symbol.upper()}:{days}"
        return self._cache.get_or_compute(key, lambda: self._frame(sql, params)).copy()

    def market_volatility(self, days: int = 30) -> Dict[str, Any]:
        """
        Descriptive statistics of the index percent change over a trailing window.

        Returns:
            Dict with ``avg_change``, ``std_dev`` (population), ``max_change``,
            ``min_change`` and ``count``. Statistics are None when no record in
            the window carries an index change.
        """
        def compute() -> Dict[str, Any]:
            cutoff = self._clock() - timedelta(days=days)
            frame = self._frame(
                """
                SELECT index_change_pct FROM poll_records
                WHERE timestamp >= ? AND index_change_pct IS NOT NULL
                """,
                [_iso(cutoff)],
            )
            series = frame["index_change_pct"].astype(float)
            if series.empty:
                return {"avg_change": None, "std_dev": None, "max_change": None,
                        "min_change": None, "count": 0}
            return {
                "avg_change": float(series.mean()),
                "std_dev": float(series.std(ddof=0)),
                "max_change": float(series.max()),
                "min_change": float(series.min()),
                "count": int(series.count()),
            }

        return dict(self._cache.get_or_compute(f"volatility:{days}", compute))

    def market_stats(self, days: int = 7) -> Dict[str, Any]:
        """
        Poll-level overview and the ten best symbols by average percent change.

        Returns:
            Dict with ``overview`` (data points, averages per poll, alerts sent,
            API success rate, average response time, sessions seen) and
            ``top_performers`` (list of per-symbol dicts).
        """
        def compute() -> Dict[str, Any]:
            cutoff = [_iso(self._clock() - timedelta(days=days))]
            polls = self._frame("SELECT * FROM poll_records WHERE timestamp >= ?", cutoff)
            movers = self._frame(
                """
                SELECT s.symbol, s.p_change, s.total_traded_volume
                FROM poll_records p JOIN samples s ON s.record_id = p.id
                WHERE p.timestamp >= ?
                """,
                cutoff,
            )

            overview: Dict[str, Any] = {"total_data_points": int(len(polls))}
            if not polls.empty:
                overview.update({
                    "avg_stocks_per_poll": float(polls["total_stocks"].mean()),
                    "avg_gainers": float(polls["gainers"].mean()),
                    "avg_losers": float(polls["losers"].mean()),
                    "total_alerts_sent": int(polls["alert_sent"].sum()),
                    "api_success_rate": float(polls["api_success"].mean()),
                    "avg_response_time_ms": _nan_to_none(polls["api_response_time_ms"].mean()),
                    "market_sessions": sorted(polls["market_session"].unique().tolist()),
                })

            top: List[Dict[str, Any]] = []
            if not movers.empty:
                grouped = (
                    movers.groupby("symbol")
                    .agg(
                        avg_change=("p_change", "mean"),
                        max_gain=("p_change", "max"),
                        max_loss=("p_change", "min"),
                        avg_volume=("total_traded_volume", "mean"),
                        data_points=("p_change", "count"),
                    )
                    .sort_values("avg_change", ascending=False)
                    .head(10)
                    .reset_index()
                )
                top = grouped.to_dict(orient="records")
            return {"overview": overview, "top_performers": top}

        return dict(self._cache.get_or_compute(f"stats:{days}", compute))

    def export(
        self,
        fmt: str,
        days: int = 30,
        symbols: Optional[Sequence[str]] = None,
        path: Optional[str] = None,
    ) -> str:
        """
        Serialise the trailing window of training rows.

        Args:
            fmt (str): ``csv``, ``jsonl`` (one JSON object per line) or ``json``.
            days (int): Trailing window in days.
            symbols (Optional[Sequence[str]]): Restrict to these symbols.
            path (Optional[str]): When given, the export is also written there.

        Returns:
            str: The serialised export.
        """
        if fmt not in EXPORT_FORMATS:
            raise ValueError(f"Supported formats: {', '.join(EXPORT_FORMATS)} (got {fmt!r})")

        frame = self.training_data(start=self._clock() - timedelta(days=days), symbols=symbols)
        if fmt == "csv":
            content = frame.to_csv(index=False)
        elif fmt == "jsonl":
            content = frame.to_json(orient="records", lines=True, date_format="iso")
            if content and not content.endswith("\n"):
                content += "\n"
        else:
            content = frame.to_json(orient="records", date_format="iso")

        if path:
            out = Path(path)
            out.parent.mkdir(parents=True, exist_ok=True)
            out.write_text(content, encoding="utf-8")
            logger.info(f"SampleStore: exported {len(frame)} rows as {fmt} → {out}")
        return content

    # ── internal ──────────────────────────────────────────────────────────────

    def _frame(self, sql: str, params: Sequence[Any]) -> pd.DataFrame:
        with closing(self._get_connection()) as conn:
            frame = pd.read_sql_query(sql, conn, params=list(params))
        if "timestamp" in frame.columns:
            frame["timestamp"] = pd.to_datetime(frame["timestamp"], utc=True)
        return frame

    def _row_to_record(self, conn: sqlite3.Connection, row: sqlite3.Row) -> PollRecord:
        sample_rows = conn.execute(
            f"SELECT {', '.join(_SAMPLE_COLUMNS)} FROM samples WHERE record_id = ? ORDER BY position",
            (row["id"],),
        ).fetchall()
        samples = [Sample(**{col: r[col] for col in _SAMPLE_COLUMNS}) for r in sample_rows]
        return PollRecord(
            timestamp=datetime.fromisoformat(row["timestamp"]),
            market_session=row["market_session"],
            trigger=row["poll_trigger"],
            samples=samples,
            total_stocks=row["total_stocks"],
            gainers=row["gainers"],
            losers=row["losers"],
            unchanged=row["unchanged"],
            total_volume=row["total_volume"],
            avg_volume=row["avg_volume"],
            market_sentiment=row["market_sentiment"],
            threshold_pct=row["threshold_pct"],
            api_response=FetchOutcome(
                success=bool(row["api_success"]),
                samples=samples,
                latency_ms=row["api_response_time_ms"] or 0.0,
                error_message=row["api_error_message"],
                reason=row["api_error_reason"],
                index_change_pct=row["index_change_pct"],
            ),
            alert=AlertOutcome(dispatched=bool(row["alert_sent"]), reason=row["alert_reason"]),
            index_change_pct=row["index_change_pct"],
            data_source=row["data_source"],
            record_id=row["id"],
        )


def _nan_to_none(value: Any) -> Optional[float]:
    return None if pd.isna(value) else float(value)
