"""Tests for SessionManager bootstrap, reuse and refresh."""
import pytest
import requests

from market_alerts.core.errors import AuthFailure
from market_alerts.core.retry import RetryPolicy
from market_alerts.models.datatypes import SESSION_EXPIRED, SESSION_VALID
from market_alerts.providers.session import SessionManager
from tests.fakes import FakeHttp, FakeResponse

BOOTSTRAP = "https://www.nseindia.com/market-data/pre-open-market-cm-and-emerge-market"


class Clock:
    def __init__(self):
        self.now = 1000.0

    def __call__(self):
        return self.now


def make_manager(responses, **kwargs):
    http = FakeHttp(responses)
    sleeps = []
    clock = Clock()
    manager = SessionManager(
        bootstrap_url=BOOTSTRAP,
        base_url="https://www.nseindia.com",
        policy=RetryPolicy(max_attempts=3, base_delay=5.0),
        ttl_seconds=900,
        http=http,
        sleep=sleeps.append,
        clock=clock,
        **kwargs,
    )
    return manager, http, sleeps, clock


def ok(cookies=None):
    return FakeResponse(200, "<html></html>", cookies=cookies or {"nsit": "a", "nseappid": "b"})


def test_acquires_session_with_cookies_and_origin_headers():
    manager, http, _, _ = make_manager([ok()])

    ctx = manager.ensure_valid_session()

    assert ctx.state == SESSION_VALID
    assert ctx.cookies == {"nsit": "a", "nseappid": "b"}
    assert ctx.headers["Referer"] == "https://www.nseindia.com/"
    assert "User-Agent" in ctx.headers
    assert http.calls[0]["url"] == BOOTSTRAP
    assert http.calls[0]["timeout"] == 10.0


def test_three_failed_attempts_raise_auth_failure():
    manager, http, sleeps, _ = make_manager([FakeResponse(503), FakeResponse(503), FakeResponse(503)])

    with pytest.raises(AuthFailure):
        manager.ensure_valid_session()

    assert manager.acquisitions == 3
    assert sleeps == [5.0, 10.0]


def test_network_errors_surface_as_auth_failure():
    errors = [requests.ConnectionError("refused") for _ in range(3)]
    manager, _, _, _ = make_manager(errors)

    with pytest.raises(AuthFailure, match="refused"):
        manager.ensure_valid_session()


def test_recovers_on_a_later_attempt():
    manager, _, sleeps, _ = make_manager([FakeResponse(503), ok()])

    assert manager.ensure_valid_session().state == SESSION_VALID
    assert sleeps == [5.0]


def test_valid_session_is_reused_within_ttl():
    manager, http, _, clock = make_manager([ok()])

    first = manager.ensure_valid_session()
    clock.now += 899
    second = manager.ensure_valid_session()

    assert first is second
    assert len(http.calls) == 1


def test_session_refreshed_after_ttl():
    manager, http, _, clock = make_manager([ok(), ok({"nsit": "fresh"})])

    first = manager.ensure_valid_session()
    clock.now += 900
    second = manager.ensure_valid_session()

    assert first.state == SESSION_EXPIRED
    assert second.cookies == {"nsit": "fresh"}
    assert len(http.calls) == 2


def test_invalidate_forces_reacquisition():
    manager, http, _, _ = make_manager([ok(), ok()])

    manager.ensure_valid_session()
    manager.invalidate()
    assert manager.context.state == SESSION_EXPIRED

    manager.ensure_valid_session()
    assert len(http.calls) == 2


def test_missing_required_cookie_counts_as_failure():
    responses = [ok({"other": "x"}) for _ in range(3)]
    manager, _, _, _ = make_manager(responses, required_cookies=["nsit"])

    with pytest.raises(AuthFailure, match="nsit"):
        manager.ensure_valid_session()


def test_response_without_cookies_falls_back_to_session_jar():
    manager, http, _, _ = make_manager([FakeResponse(200, "", cookies={})])
    http.cookies["nsit"] = "from-jar"

    assert manager.ensure_valid_session().cookies == {"nsit": "from-jar"}


class ClosingHttp(FakeHttp):
    opened = []

    def __init__(self, responses):
        super().__init__(responses)
        self.closed = False
        ClosingHttp.opened.append(self)

    def __enter__(self):
        return self

    def __exit__(self, *exc):
        self.closed = True
        return False


def test_owned_http_session_is_closed_after_each_attempt(monkeypatch):
    ClosingHttp.opened.clear()
    queued = [[FakeResponse(503)], [ok()]]
    monkeypatch.setattr(
        "market_alerts.providers.session.requests.Session", lambda: ClosingHttp(queued.pop(0))
    )
    manager = SessionManager(
        bootstrap_url=BOOTSTRAP,
        base_url="https://www.nseindia.com",
        policy=RetryPolicy(max_attempts=3, base_delay=5.0),
        sleep=lambda _: None,
    )

    ctx = manager.ensure_valid_session()

    assert ctx.state == SESSION_VALID
    assert len(ClosingHttp.opened) == 2
    assert all(http.closed for http in ClosingHttp.opened)
