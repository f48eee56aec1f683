"""Store validator: integrity checks over a sample store database.

Checks:
  1. Every record partitions its samples: gainers + losers + unchanged == total_stocks
     == number of stored sample rows
  2. Failed fetches carry an error message and no samples
  3. Alerts were dispatched only for successful fetches with at least one mover
  4. Alert reasons agree with the dispatched flag

Usage:
    python -m market_alerts.pipeline.validator output/market_data.db
"""

import sqlite3
import sys
from contextlib import closing
from pathlib import Path
from typing import List, Tuple

from market_alerts.models.datatypes import ALERT_SIGNIFICANT_MOVEMENT


def validate(db_path: str) -> Tuple[bool, List[str]]:
    """Run all validation checks against db_path.

    Args:
        db_path: Path to the SQLite file written by ``SampleStore``.

    Returns:
        Tuple of ``(passed: bool, messages: list[str])``.
        ``messages`` contains PASS/FAIL lines for each check.
    """
    messages: List[str] = []
    passed = True

    # ── load ──────────────────────────────────────────────────────────────────
    if not Path(db_path).exists():
        return False, [f"FAIL  database not found: {db_path}"]
    try:
        with closing(sqlite3.connect(db_path)) as conn:
            conn.row_factory = sqlite3.Row
            rows = conn.execute(
                """
                SELECT p.*, (SELECT COUNT(*) FROM samples s WHERE s.record_id = p.id) AS sample_rows
                FROM poll_records p ORDER BY p.id
                """
            ).fetchall()
    except sqlite3.Error as exc:
        return False, [f"FAIL  could not read store: {exc}"]

    if not rows:
        return False, ["FAIL  store holds no poll records"]
    messages.append(f"INFO  {len(rows)} poll records")

    # ── check 1: partition ────────────────────────────────────────────────────
    bad_partition = [
        r["id"] for r in rows
        if not (r["gainers"] + r["losers"] + r["unchanged"] == r["total_stocks"] == r["sample_rows"])
    ]
    if not bad_partition:
        messages.append("PASS  gainers + losers + unchanged == total_stocks for all records")
    else:
        messages.append(f"FAIL  partition broken in {len(bad_partition)} records: {bad_partition[:5]}")
        passed = False

    # ── check 2: failed fetches ───────────────────────────────────────────────
    bad_failures = [
        r["id"] for r in rows
        if not r["api_success"] and (not (r["api_error_message"] or "").strip() or r["sample_rows"])
    ]
    if not bad_failures:
        messages.append("PASS  failed fetches carry an error message and no samples")
    else:
        messages.append(f"FAIL  malformed failed fetches: {bad_failures[:5]}")
        passed = False

    # ── check 3: dispatched only with movers ──────────────────────────────────
    bad_alerts = [
        r["id"] for r in rows
        if r["alert_sent"] and (not r["api_success"] or r["gainers"] + r["losers"] == 0)
    ]
    if not bad_alerts:
        messages.append("PASS  alerts dispatched only on significant movement")
    else:
        messages.append(f"FAIL  alerts without movement: {bad_alerts[:5]}")
        passed = False

    # ── check 4: reason agrees with flag ──────────────────────────────────────
    bad_reasons = [
        r["id"] for r in rows
        if bool(r["alert_sent"]) != (r["alert_reason"] == ALERT_SIGNIFICANT_MOVEMENT)
    ]
    if not bad_reasons:
        messages.append("PASS  alert reasons match dispatched flags")
    else:
        messages.append(f"FAIL  alert reason mismatch: {bad_reasons[:5]}")
        passed = False

    return passed, messages


def main(argv: List[str] = None) -> int:
    argv = sys.argv[1:] if argv is None else argv
    if not argv:
        print("Usage: python -m market_alerts.pipeline.validator <path_to_db>")
        return 1
    passed, messages = validate(argv[0])
    for msg in messages:
        print(msg)
    if passed:
        print("\nVALIDATION PASSED ✓")
        return 0
    else:
        print("\nVALIDATION FAILED ✗")
        return 1


if __name__ == "__main__":
    sys.exit(main())
