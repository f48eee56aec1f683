"""Market monitor entry point.

Usage:
    python run_monitor.py            # scheduler daemon (SIGINT/SIGTERM to stop)
    python run_monitor.py --now      # one manual cycle, then exit

Loads config.yaml, wires the session, fetcher, store and channels, and either
runs the scheduler until signalled or runs a single cycle and reports the
result to stdout and the monitor log.
"""

import argparse
import signal
import sys
import threading
from dotenv import load_dotenv

load_dotenv()  # must precede market_alerts imports so env vars are available at module load

from market_alerts.core.config import MonitorSettings, load_config  # noqa: E402
from market_alerts.core.logger import logger  # noqa: E402
from market_alerts.pipeline.engine import MonitorEngine  # noqa: E402
from market_alerts.pipeline.scheduler import MonitorScheduler  # noqa: E402


def parse_args(argv=None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="NSE market movement monitor")
    parser.add_argument("--config", default="config.yaml", help="Path to config.yaml")
    parser.add_argument("--now", action="store_true", help="Run one manual cycle and exit")
    return parser.parse_args(argv)


def main(argv=None) -> int:
    """Run the monitor. Returns 0 on success, 1 on failure."""
    args = parse_args(argv)
    try:
        settings = MonitorSettings.from_config(load_config(args.config))
    except (FileNotFoundError, ValueError) as exc:
        logger.error(f"run_monitor: failed to load config: {exc}")
        print(f"ERROR: {exc}", file=sys.stderr)
        return 1

    try:
        engine = MonitorEngine.from_settings(settings)
    except Exception as exc:
        logger.error(f"run_monitor: could not build engine: {exc}", exc_info=True)
        print(f"ERROR: startup failed: {exc}", file=sys.stderr)
        return 1

    scheduler = MonitorScheduler.from_settings(engine, settings)
    mode = "LIVE" if settings.live_delivery else "DRY-RUN (alerts suppressed)"
    logger.info(f"run_monitor: delivery mode {mode}, {len(settings.recipients)} recipient(s)")

    if args.now:
        result = scheduler.run_now()
        if result is None or not result.stored:
            print("ERROR: cycle did not store a poll record, see output/monitor.log", file=sys.stderr)
            return 1
        record = result.record
        delivered = sum(1 for a in result.attempts if a.delivered)
        print(
            f"SUCCESS: record #{record.record_id} [{record.market_session}] "
            f"{record.total_stocks} stocks, {record.gainers} gainers, {record.losers} losers, "
            f"alert={record.alert.reason}, delivered {delivered}/{len(result.attempts)}"
        )
        return 0

    stop = threading.Event()

    def _shutdown(signum, _frame):
        logger.info(f"run_monitor: received signal {signum}, stopping")
        stop.set()

    signal.signal(signal.SIGINT, _shutdown)
    signal.signal(signal.SIGTERM, _shutdown)

    scheduler.register_jobs()
    print(f"Monitor running ({mode}); press Ctrl+C to stop")
    scheduler.run_forever(stop)
    return 0


if __name__ == "__main__":
    sys.exit(main())
