import pytest

from market_alerts.pipeline.store import SampleStore


@pytest.fixture(autouse=True)
def _no_live_delivery_env(monkeypatch):
    """Keep a developer's .env from switching tests into live delivery."""
    monkeypatch.delenv("LIVE_DELIVERY", raising=False)


@pytest.fixture
def store(tmp_path):
    return SampleStore(str(tmp_path / "market_data.db"), cache_ttl_seconds=60)
