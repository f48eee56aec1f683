"""Tests for one end-to-end poll cycle."""
from market_alerts.core.retry import RetryPolicy
from market_alerts.models.datatypes import (
    ALERT_FETCH_FAILED, ALERT_NO_MOVEMENT, ALERT_SIGNIFICANT_MOVEMENT,
    ALERT_SUPPRESSED_NON_LIVE, REASON_AUTH, REASON_TRANSIENT, TRIGGER_MANUAL,
    FetchOutcome, Recipient,
)
from market_alerts.core.market_hours import IN_SESSION, PRE_MARKET
from market_alerts.pipeline.dispatcher import NotificationDispatcher
from market_alerts.pipeline.engine import MonitorEngine
from market_alerts.providers.market import NSEMarketDataFetcher
from market_alerts.providers.session import SessionManager
from tests.fakes import (
    FakeHttp, FakeResponse, FixedClock, RecordingChannel, StaticSession, StubFetcher, ist,
    make_sample,
)

NOW = ist(2026, 10, 19, 10, 0)
RECIPIENTS = [Recipient("email", "bad@example.com"), Recipient("email", "good@example.com")]


def scenario_outcome():
    samples = [make_sample("AAA", 0.6), make_sample("BBB", -0.6), make_sample("CCC", 0.0)]
    return FetchOutcome(success=True, samples=samples, latency_ms=80.0, index_change_pct=0.0)


def make_engine(store, fetcher, live=False, channel=None, clock=None):
    channel = channel or RecordingChannel("email", failing=["bad@example.com"])
    return MonitorEngine(
        fetcher=fetcher,
        store=store,
        dispatcher=NotificationDispatcher({"email": channel}),
        recipients=RECIPIENTS,
        threshold_pct=0.5,
        live_delivery=live,
        clock=clock or FixedClock(NOW),
    ), channel


def test_zero_rows_records_success_without_alert(store):
    engine, channel = make_engine(store, StubFetcher(FetchOutcome(success=True, samples=[])), live=True)

    result = engine.run_cycle()

    record = result.record
    assert record.api_response.success is True
    assert record.total_stocks == 0
    assert record.should_alert is False
    assert record.alert.reason == ALERT_NO_MOVEMENT
    assert result.stored is True
    assert channel.sent == []


def test_timeout_records_failure_without_alert(store):
    outcome = FetchOutcome(success=False, latency_ms=15001.0,
                           error_message="Timeout: read timed out", reason=REASON_TRANSIENT)
    engine, channel = make_engine(store, StubFetcher(outcome), live=True)

    result = engine.run_cycle()

    assert result.record.api_response.success is False
    assert result.record.api_response.error_message
    assert result.record.alert.dispatched is False
    assert result.record.alert.reason == ALERT_FETCH_FAILED
    assert result.attempts == []
    assert store.records_between(NOW, NOW)[0].api_response.reason == REASON_TRANSIENT


def test_non_live_deployment_suppresses_dispatch(store):
    engine, channel = make_engine(store, StubFetcher(scenario_outcome()), live=False)

    result = engine.run_cycle()

    assert result.record.should_alert is True
    assert result.record.alert.dispatched is False
    assert result.record.alert.reason == ALERT_SUPPRESSED_NON_LIVE
    assert result.attempts == []
    assert channel.sent == []


def test_live_alert_stays_dispatched_when_one_recipient_fails(store):
    engine, channel = make_engine(store, StubFetcher(scenario_outcome()), live=True)

    result = engine.run_cycle()

    assert result.record.alert.dispatched is True
    assert result.record.alert.reason == ALERT_SIGNIFICANT_MOVEMENT
    assert [a.delivered for a in result.attempts] == [False, True]
    assert channel.sent == [RECIPIENTS[1]]
    [stored] = store.records_between(NOW, NOW)
    assert stored.alert.dispatched is True
    assert (stored.gainers, stored.losers, stored.unchanged) == (1, 1, 1)


def test_record_carries_session_label_and_trigger(store):
    engine, _ = make_engine(store, StubFetcher(scenario_outcome()), clock=FixedClock(ist(2026, 10, 19, 9, 5)))

    record = engine.run_cycle(TRIGGER_MANUAL).record

    assert record.market_session == PRE_MARKET
    assert record.trigger == TRIGGER_MANUAL
    assert record.index_change_pct == 0.0
    assert record.market_sentiment == "neutral"


def test_session_failure_is_recorded_as_auth(store):
    session = SessionManager(
        bootstrap_url="https://nse.test/page",
        base_url="https://nse.test",
        policy=RetryPolicy(max_attempts=3, base_delay=5.0),
        http=FakeHttp([FakeResponse(503), FakeResponse(503), FakeResponse(503)]),
        sleep=lambda _: None,
    )
    data_http = FakeHttp([])
    fetcher = NSEMarketDataFetcher(session=session, base_url="https://nse.test", http=data_http)
    engine, channel = make_engine(store, fetcher, live=True)

    result = engine.run_cycle()

    assert result.stored is True
    assert result.record.api_response.success is False
    assert result.record.api_response.reason == REASON_AUTH
    assert result.record.market_session == IN_SESSION
    assert data_http.calls == []
    assert channel.sent == []


def test_storage_failure_does_not_stop_dispatch(store, monkeypatch):
    monkeypatch.setattr(store, "record", lambda record: False)
    engine, channel = make_engine(store, StubFetcher(scenario_outcome()), live=True)

    result = engine.run_cycle()

    assert result.stored is False
    assert len(result.attempts) == 2


def test_malformed_payload_is_recorded_as_transient(store):
    fetcher = NSEMarketDataFetcher(session=StaticSession(), http=FakeHttp([FakeResponse(200, {"data": 5})]))
    engine, channel = make_engine(store, fetcher, live=True)

    result = engine.run_cycle()

    assert result.stored is True
    assert result.record.api_response.success is False
    assert result.record.api_response.reason == REASON_TRANSIENT
    assert channel.sent == []


def test_non_finite_row_does_not_lose_the_record(store):
    body = (
        '{"data": ['
        '{"metadata": {"symbol": "AAA", "lastPrice": 10, "pChange": 0.9}},'
        '{"metadata": {"symbol": "BBB", "lastPrice": NaN, "pChange": NaN}}'
        ']}'
    )
    fetcher = NSEMarketDataFetcher(session=StaticSession(), http=FakeHttp([FakeResponse(200, body)]))
    engine, _ = make_engine(store, fetcher)

    result = engine.run_cycle()

    assert result.stored is True
    [stored] = store.records_between(NOW, NOW)
    assert stored.total_stocks == 1
    assert stored.gainers == 1
    assert stored.index_change_pct == 0.9
