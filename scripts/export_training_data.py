"""
Bulk export of the sample store for model training.

Writes one row per (poll, sample) over a trailing window in csv, jsonl or json,
and prints the index volatility summary for the same window.

Run with:
    PYTHONPATH=. python scripts/export_training_data.py --format jsonl --days 30 \
        --symbols RELIANCE TCS --out output/training.jsonl
"""

import argparse
import sys
from dotenv import load_dotenv

load_dotenv()

from market_alerts.core.config import MonitorSettings, load_config
from market_alerts.pipeline.store import EXPORT_FORMATS, SampleStore


def main() -> int:
    parser = argparse.ArgumentParser(description="Export stored market samples")
    parser.add_argument("--config", default="config.yaml")
    parser.add_argument("--format", choices=EXPORT_FORMATS, default="csv")
    parser.add_argument("--days", type=int, default=30)
    parser.add_argument("--symbols", nargs="*", default=None)
    parser.add_argument("--out", default=None, help="Output file, defaults to output/training_data.<format>")
    args = parser.parse_args()

    settings = MonitorSettings.from_config(load_config(args.config))
    store = SampleStore(settings.db_path, cache_ttl_seconds=settings.cache_ttl_seconds)
    out = args.out or f"{settings.output_dir}/training_data.{args.format}"

    content = store.export(args.format, days=args.days, symbols=args.symbols, path=out)
    vol = store.market_volatility(days=args.days)

    print(f"SUCCESS: {len(content.encode('utf-8'))} bytes written to {out}")
    if vol["count"]:
        print(
            f"Index change over {args.days}d: mean {vol['avg_change']:+.3f}%, "
            f"std {vol['std_dev']:.3f}, range [{vol['min_change']:+.2f}%, {vol['max_change']:+.2f}%] "
            f"across {vol['count']} polls"
        )
    else:
        print(f"No index change recorded in the last {args.days} days")
    return 0


if __name__ == "__main__":
    sys.exit(main())
