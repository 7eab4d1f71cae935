#!/usr/bin/env python3
"""
rxgate Audit Chain Verifier

Verifies that the audit_events ledger has not been tampered with by
recomputing each event hash and checking hash-chain linkage, in ledger order.

Usage:
    python tools/verify_audit_chain.py --db PATH [--resource ID] [--json]

Exit codes:
    0  PASS  - ledger is intact
    1  FAIL  - tampering or chain break detected
    2  ERROR - missing database, missing columns, or query error
"""

import argparse
import json
import os
import sqlite3
import sys
from typing import Any, Dict, List, Optional, Set

# Allow running as `python tools/verify_audit_chain.py` from a checkout
_REPO_ROOT = os.path.dirname(os.path.dirname(os.path.abspath(__file__)))
if _REPO_ROOT not in sys.path:
    sys.path.insert(0, _REPO_ROOT)

from rxgate.app.db.ledger_hashing import HASH_POLICY, ORDERING  # noqa: E402
from rxgate.app.services.audit_log import verify_event_rows  # noqa: E402

_REQUIRED_COLUMNS: Set[str] = {
    "seq",
    "event_id",
    "occurred_at_utc",
    "resource_type",
    "resource_id",
    "action",
    "detail_json",
    "prev_event_hash",
    "event_hash",
}


def fetch_events(db_path: str) -> List[Dict[str, Any]]:
    """
    Read every audit event in ledger order.

    Raises:
        ValueError: If audit_events lacks a required column
    """
    conn = sqlite3.connect(db_path)
    conn.row_factory = sqlite3.Row
    try:
        columns = {row[1] for row in conn.execute("PRAGMA table_info(audit_events)")}
        missing = _REQUIRED_COLUMNS - columns
        if missing:
            raise ValueError(f"Missing columns in audit_events: {sorted(missing)}")

        rows = conn.execute(
            f"""
            SELECT event_id, occurred_at_utc, resource_type, resource_id,
                   action, detail_json, prev_event_hash, event_hash
            FROM audit_events
            ORDER BY {ORDERING}
            """
        ).fetchall()
        return [dict(row) for row in rows]
    finally:
        conn.close()


def verify(db_path: str, resource_id: Optional[str] = None) -> Dict[str, Any]:
    """
    Verify the full chain; optionally report only one resource's events.

    The chain is always verified end to end since every event links to its
    predecessor regardless of resource. --resource narrows the report.
    """
    base: Dict[str, Any] = {
        "ordering": ORDERING,
        "hash_policy": HASH_POLICY,
        "total_events": 0,
        "failure": None,
        "valid": False,
        "errors": [],
    }

    try:
        events = fetch_events(db_path)
    except (ValueError, sqlite3.Error) as exc:
        return {**base, "status": "ERROR", "error": str(exc)}

    result = verify_event_rows(events)
    errors = result["errors"]
    if resource_id:
        ids = {e["event_id"] for e in events if e["resource_id"] == resource_id}
        errors = [e for e in errors if e["event_id"] in ids]

    first_failure = None
    if errors:
        first_failure = {
            "index": errors[0]["index"],
            "reason": errors[0]["error"],
            "event_id": errors[0]["event_id"],
        }

    return {
        **base,
        "status": "PASS" if not errors else "FAIL",
        "valid": not errors,
        "total_events": result["total_events"],
        "failure": first_failure,
        "errors": errors,
    }


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        description="Verify rxgate audit ledger integrity",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Exit codes:
  0  PASS  - ledger intact
  1  FAIL  - tampering or chain break detected
  2  ERROR - configuration / schema / query error
""",
    )
    parser.add_argument(
        "--db",
        default=os.environ.get("RXGATE_DB_PATH", "/tmp/rxgate.db"),
        help="Path to SQLite database (default: $RXGATE_DB_PATH or /tmp/rxgate.db)",
    )
    parser.add_argument(
        "--resource",
        default="",
        help="Only report failures for events on this resource id",
    )
    parser.add_argument(
        "--json",
        dest="json_output",
        action="store_true",
        help="Output indented JSON to stdout",
    )
    return parser


def main(argv: Optional[List[str]] = None) -> int:
    args = _build_parser().parse_args(argv)

    if not os.path.isfile(args.db):
        sys.stderr.write(f"ERROR: Database not found: {args.db}\n")
        return 2

    result = verify(args.db, args.resource or None)
    print(json.dumps(result, indent=2 if args.json_output else None))

    status = result["status"]
    if status == "PASS":
        return 0
    if status == "ERROR":
        return 2
    return 1


if __name__ == "__main__":
    sys.exit(main())
