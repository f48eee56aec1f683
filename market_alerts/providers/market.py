"""Market data integration via the NSE India JSON API."""

import json
import math
import time
from typing import Any, Callable, Dict, List, Optional, Tuple

import requests

from market_alerts.core.errors import AuthFailure, TransientFetchError
from market_alerts.core.logger import logger
from market_alerts.models.datatypes import (
    REASON_AUTH, REASON_TRANSIENT, FetchOutcome, Sample,
)
from market_alerts.providers.base import MarketDataProvider, SessionProvider

# Status codes NSE answers with once its session cookies are stale
_AUTH_REJECTION_CODES = (401, 403)


class NSEMarketDataFetcher(MarketDataProvider):
    """Samples the pre-open (or index) snapshot for one NSE index key.

    One request is outstanding at a time. A rejected session is refreshed and
    the request repeated ``auth_refresh_retries`` times; network failures are
    not retried here, the next scheduled cycle is the retry.
    """

    def __init__(
        self,
        session: SessionProvider,
        base_url: str = "https://www.nseindia.com",
        data_path: str = "/api/market-data-pre-open",
        default_query: str = "NIFTY",
        query_param: str = "key",
        timeout: float = 15.0,
        auth_refresh_retries: int = 1,
        http=None,
        clock: Callable[[], float] = time.perf_counter,
    ) -> None:
        self.session = session
        self.url = f"{base_url.rstrip('/')}/{data_path.lstrip('/')}"
        self.default_query = default_query
        self.query_param = query_param
        self.timeout = timeout
        self.auth_refresh_retries = auth_refresh_retries
        self._http = http or requests.Session()
        self._clock = clock

    @classmethod
    def from_settings(cls, settings, session: SessionProvider, http=None) -> "NSEMarketDataFetcher":
        return cls(
            session=session,
            base_url=settings.base_url,
            data_path=settings.data_path,
            default_query=settings.query_key,
            query_param=settings.query_param,
            timeout=settings.fetch_timeout,
            auth_refresh_retries=settings.auth_refresh_retries,
            http=http,
        )

    def fetch_instruments(self, query: Optional[str] = None) -> FetchOutcome:
        """
        Fetch one snapshot and classify the response.

        Args:
            query (Optional[str]): Index key, e.g. ``"NIFTY"``. Defaults to the
                                   configured key.

        Returns:
            FetchOutcome: ``success=False`` with ``reason="auth"`` when the
            session could not be (re)established, ``reason="transient"`` on
            network, timeout or payload errors. Latency is always filled in.
        """
        query = query or self.default_query
        started = self._clock()
        try:
            samples, index_change = self._fetch_with_refresh(query)
        except AuthFailure as exc:
            latency = _elapsed_ms(started, self._clock())
            logger.error(f"NSEMarketDataFetcher: AUTH_FAILURE for {query}: {exc}")
            return FetchOutcome(
                success=False, latency_ms=latency,
                error_message=str(exc) or REASON_AUTH, reason=REASON_AUTH,
            )
        except TransientFetchError as exc:
            latency = _elapsed_ms(started, self._clock())
            logger.error(f"NSEMarketDataFetcher: INFRA_FAILURE for {query}: {exc}")
            return FetchOutcome(
                success=False, latency_ms=latency,
                error_message=str(exc), reason=REASON_TRANSIENT,
            )

        latency = _elapsed_ms(started, self._clock())
        if not samples:
            logger.warning(f"NSEMarketDataFetcher: source returned no rows for {query}")
        else:
            logger.info(
                f"NSEMarketDataFetcher: {len(samples)} instruments for {query} "
                f"in {latency:.0f} ms"
            )
        return FetchOutcome(
            success=True, samples=samples,
            latency_ms=latency, index_change_pct=index_change,
        )

    # ── internal ──────────────────────────────────────────────────────────────

    def _fetch_with_refresh(self, query: str) -> Tuple[List[Sample], Optional[float]]:
        """Issue the request, refreshing the session on rejection."""
        attempts = self.auth_refresh_retries + 1
        for attempt in range(1, attempts + 1):
            ctx = self.session.ensure_valid_session()
            try:
                resp = self._http.get(
                    self.url,
                    params={self.query_param: query},
                    headers=ctx.headers,
                    cookies=ctx.cookies,
                    timeout=self.timeout,
                )
            except requests.RequestException as exc:
                raise TransientFetchError(f"{type(exc).__name__}: {exc}") from exc

            if resp.status_code in _AUTH_REJECTION_CODES:
                logger.warning(
                    f"NSEMarketDataFetcher: HTTP {resp.status_code} for {query} "
                    f"(attempt {attempt}/{attempts}), forcing session refresh"
                )
                self.session.invalidate()
                continue

            if not 200 <= resp.status_code < 300:
                raise TransientFetchError(f"HTTP {resp.status_code}: {resp.text[:200]}")

            return parse_payload(resp.text, query)

        raise AuthFailure(f"data request rejected after {attempts} session(s)")


def parse_payload(body: str, query: str = "") -> Tuple[List[Sample], Optional[float]]:
    """
    Parse an NSE response body into samples and the index-level change.

    Args:
        body (str): Raw response text.
        query (str): Index key, used to recognise the index's own row.

    Returns:
        Tuple of ``(samples, index_change_pct)``. An empty body or an empty
        ``data`` list yields ``([], None)``.

    Raises:
        TransientFetchError: If the body is not JSON or ``data`` is not a list.
    """
    if not body or not body.strip():
        return [], None
    try:
        payload = json.loads(body)
    except json.JSONDecodeError as exc:
        raise TransientFetchError(f"undecodable payload: {exc}") from exc

    if isinstance(payload, list):
        rows, meta = payload, {}
    elif isinstance(payload, dict):
        rows = payload.get("data") or []
        meta = payload.get("metadata") or {}
    else:
        return [], None
    if not isinstance(rows, list):
        raise TransientFetchError(f"unexpected payload shape: data is {type(rows).__name__}")

    samples: List[Sample] = []
    index_change = _num(meta.get("percChange")) if isinstance(meta, dict) else None
    for row in rows:
        if not isinstance(row, dict):
            continue
        if _is_index_row(row, query):
            if index_change is None:
                index_change = _num(row.get("pChange"))
            continue
        try:
            sample = _row_to_sample(row)
        except (TypeError, ValueError, AttributeError) as exc:
            logger.warning(f"parse_payload: skipped malformed row ({exc}) {str(row)[:120]}")
            continue
        if sample is None:
            logger.warning(f"parse_payload: skipped unparseable row {str(row)[:120]}")
            continue
        samples.append(sample)

    if index_change is None and samples:
        # Pre-open payloads carry no index row; equal-weight mean of constituents
        index_change = round(sum(s.p_change for s in samples) / len(samples), 4)
    return samples, index_change


def _is_index_row(row: Dict[str, Any], query: str) -> bool:
    """Index endpoints list the index itself first with priority 1."""
    if row.get("priority") == 1:
        return True
    symbol = str(row.get("symbol", "")).upper()
    return bool(query) and symbol == query.upper() and "metadata" not in row


def _row_to_sample(row: Dict[str, Any]) -> Optional[Sample]:
    """Map one pre-open (``metadata``-wrapped) or index (flat) row to a Sample."""
    meta = row.get("metadata") if isinstance(row.get("metadata"), dict) else row
    detail = row.get("detail")
    detail = detail.get("preOpenMarket") if isinstance(detail, dict) else None
    if not isinstance(detail, dict):
        detail = {}

    symbol = meta.get("symbol")
    p_change = _num(meta.get("pChange"))
    last_price = _num(meta.get("lastPrice"))
    if not symbol or p_change is None or last_price is None:
        return None

    return Sample(
        symbol=str(symbol),
        last_price=last_price,
        change=_num(meta.get("change"), 0.0),
        p_change=p_change,
        previous_close=_num(meta.get("previousClose"), 0.0),
        open=_first_num(meta.get("open"), meta.get("iep"), detail.get("IEP"), default=last_price),
        day_high=_first_num(meta.get("dayHigh"), default=last_price),
        day_low=_first_num(meta.get("dayLow"), default=last_price),
        total_traded_volume=_first_num(
            meta.get("totalTradedVolume"), meta.get("finalQuantity"),
            detail.get("totalTradedVolume"), default=0.0,
        ),
        total_traded_value=_first_num(
            meta.get("totalTradedValue"), meta.get("totalTurnover"), default=0.0,
        ),
    )


def _num(value: Any, default: Optional[float] = None) -> Optional[float]:
    """Coerce NSE numeric fields (numbers, ``"1,234.5"``, ``"-"``) to float.

    NaN and infinities count as missing.
    """
    if value is None or isinstance(value, bool):
        return default
    if isinstance(value, (int, float)):
        result = float(value)
    else:
        text = str(value).replace(",", "").strip()
        if not text or text == "-":
            return default
        try:
            result = float(text)
        except ValueError:
            return default
    return result if math.isfinite(result) else default


def _first_num(*values: Any, default: float) -> float:
    for value in values:
        parsed = _num(value)
        if parsed is not None:
            return parsed
    return default


def _elapsed_ms(started: float, finished: float) -> float:
    return round((finished - started) * 1000.0, 2)
