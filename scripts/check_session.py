"""
Live check: bootstraps an NSE session, runs one fetch and the detector, and
prints what a cycle would see. Nothing is stored and no alert is sent.

Run with:
    PYTHONPATH=. python scripts/check_session.py [--query NIFTY]
"""

import argparse
import sys
from dotenv import load_dotenv

load_dotenv()

from market_alerts.core.config import MonitorSettings, load_config
from market_alerts.core.errors import AuthFailure
from market_alerts.pipeline.detector import classify
from market_alerts.providers.market import NSEMarketDataFetcher
from market_alerts.providers.session import SessionManager

DIVIDER = "=" * 70


def main() -> int:
    parser = argparse.ArgumentParser(description="Check NSE session bootstrap and one fetch")
    parser.add_argument("--config", default="config.yaml")
    parser.add_argument("--query", default=None, help="Index key, defaults to source.query_key")
    args = parser.parse_args()

    settings = MonitorSettings.from_config(load_config(args.config))
    session = SessionManager.from_settings(settings)
    fetcher = NSEMarketDataFetcher.from_settings(settings, session)

    print(f"\n{DIVIDER}")
    print(f"  Session check  |  {settings.bootstrap_url}")
    print(DIVIDER)
    try:
        ctx = session.ensure_valid_session()
    except AuthFailure as exc:
        print(f"  SESSION  : FAILED ({exc})")
        return 1
    print(f"  SESSION  : {ctx.state}, cookies={sorted(ctx.cookies)}")

    outcome = fetcher.fetch_instruments(args.query)
    print(f"  FETCH    : success={outcome.success} latency={outcome.latency_ms:.0f} ms")
    if not outcome.success:
        print(f"  ERROR    : [{outcome.reason}] {outcome.error_message}")
        return 1

    agg = classify(outcome.samples, settings.threshold_pct)
    print(f"  SAMPLES  : {agg.total}  index change={outcome.index_change_pct}")
    print(f"  SPLIT    : {agg.gainer_count} up / {agg.loser_count} down / "
          f"{agg.unchanged_count} flat @ ±{settings.threshold_pct:g}%  ({agg.sentiment})")

    print(f"\n{'─'*70}")
    for s in agg.gainers + agg.losers:
        print(f"  {s.symbol:12}  {s.p_change:+7.2f}%  {s.last_price:>12,.2f}")
    print()
    return 0


if __name__ == "__main__":
    sys.exit(main())
