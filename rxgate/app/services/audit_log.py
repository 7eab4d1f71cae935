"""
Append-only audit log.

Every security- or compliance-relevant action in the pipeline goes through
AuditLog.record(). Events are written to the audit_events table as a hash
chain (see db/ledger_hashing.py) and mirrored as one JSON line on the
``rxgate.audit`` logger. Error-class entries go to the separate
``rxgate.audit.errors`` logger only.

A failed write raises AuditWriteError. Callers must let it propagate: an
action that cannot be audited is reported as failed.
"""

import json
import logging
import sqlite3
from typing import Any, Dict, List, Optional

from rxgate.app.db.ledger_hashing import compute_event_hash
from rxgate.app.db.migrate import get_connection
from rxgate.app.errors import AuditWriteError
from rxgate.app.models import AuditEvent
from rxgate.app.services.ids import generate_uuid7, utc_timestamp

audit_logger = logging.getLogger("rxgate.audit")
error_logger = logging.getLogger("rxgate.audit.errors")


class AuditLog:
    def record(self, event: AuditEvent) -> AuditEvent:
        """
        Append an event to the ledger.

        Returns:
            The stored event with event_id, timestamp and hashes filled in

        Raises:
            AuditWriteError: If the event could not be durably written
        """
        event_id = generate_uuid7()
        timestamp = utc_timestamp()
        detail_json = json.dumps(event.detail, sort_keys=True, default=str)

        try:
            conn = get_connection()
        except sqlite3.Error as e:
            raise AuditWriteError(f"Audit store unavailable: {e}", action=event.action)

        try:
            # Chain head read and insert must not interleave with another writer
            conn.execute("BEGIN IMMEDIATE")
            row = conn.execute(
                "SELECT event_hash FROM audit_events ORDER BY seq DESC LIMIT 1"
            ).fetchone()
            prev_event_hash = row["event_hash"] if row else None

            event_hash = compute_event_hash(
                prev_event_hash,
                timestamp,
                event.resource_type,
                event.resource_id,
                event.action,
                detail_json,
            )

            conn.execute(
                """
                INSERT INTO audit_events (
                    event_id, occurred_at_utc, actor_id, resource_type,
                    resource_id, action, detail_json, prev_event_hash, event_hash
                ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?)
                """,
                (
                    event_id,
                    timestamp,
                    event.actor_id,
                    event.resource_type,
                    event.resource_id,
                    event.action,
                    detail_json,
                    prev_event_hash,
                    event_hash,
                ),
            )
            conn.execute("COMMIT")
        except sqlite3.Error as e:
            if conn.in_transaction:
                conn.execute("ROLLBACK")
            raise AuditWriteError(
                f"Audit write failed: {e}",
                action=event.action,
                resource_id=event.resource_id,
            )
        finally:
            conn.close()

        stored = event.model_copy(
            update={
                "event_id": event_id,
                "timestamp": timestamp,
                "prev_event_hash": prev_event_hash,
                "event_hash": event_hash,
            }
        )
        audit_logger.info(
            json.dumps(
                {
                    "action": stored.action,
                    "actingIdentity": stored.actor_id,
                    "resourceType": stored.resource_type,
                    "resourceId": stored.resource_id,
                    "detail": stored.detail,
                    "timestamp": stored.timestamp,
                },
                sort_keys=True,
                default=str,
            )
        )
        return stored

    def record_error(self, error: BaseException, context: Dict[str, Any]) -> None:
        """Write an error-class entry, with full context, to the error stream."""
        error_logger.error(
            json.dumps(
                {
                    "error": type(error).__name__,
                    "message": str(error),
                    "context": context,
                    "timestamp": utc_timestamp(),
                },
                sort_keys=True,
                default=str,
            ),
            exc_info=error,
        )

    def list_events(
        self,
        resource_id: Optional[str] = None,
        action: Optional[str] = None,
        limit: int = 1000,
    ) -> List[AuditEvent]:
        """Read events in ledger order (export and test tooling)."""
        clauses = []
        params: List[Any] = []
        if resource_id:
            clauses.append("resource_id = ?")
            params.append(resource_id)
        if action:
            clauses.append("action = ?")
            params.append(action)
        where = f"WHERE {' AND '.join(clauses)}" if clauses else ""
        params.append(limit)

        conn = get_connection()
        try:
            cursor = conn.execute(
                f"SELECT * FROM audit_events {where} ORDER BY seq ASC LIMIT ?",
                params,
            )
            return [
                AuditEvent(
                    event_id=row["event_id"],
                    action=row["action"],
                    actor_id=row["actor_id"],
                    resource_type=row["resource_type"],
                    resource_id=row["resource_id"],
                    detail=json.loads(row["detail_json"]),
                    timestamp=row["occurred_at_utc"],
                    prev_event_hash=row["prev_event_hash"],
                    event_hash=row["event_hash"],
                )
                for row in cursor.fetchall()
            ]
        finally:
            conn.close()

    def verify_chain(self) -> Dict[str, Any]:
        """Recompute every event hash and check chain linkage."""
        conn = get_connection()
        try:
            events = conn.execute(
                """
                SELECT event_id, occurred_at_utc, resource_type, resource_id,
                       action, detail_json, prev_event_hash, event_hash
                FROM audit_events
                ORDER BY seq ASC
                """
            ).fetchall()
        finally:
            conn.close()

        return verify_event_rows([dict(row) for row in events])


def verify_event_rows(events: List[Dict[str, Any]]) -> Dict[str, Any]:
    """Verify a list of audit_events rows already in ledger order."""
    errors = []
    previous_hash = None
    for i, event in enumerate(events):
        computed_hash = compute_event_hash(
            event["prev_event_hash"],
            event["occurred_at_utc"],
            event["resource_type"],
            event["resource_id"],
            event["action"],
            event["detail_json"],
        )
        if computed_hash != event["event_hash"]:
            errors.append(
                {
                    "event_id": event["event_id"],
                    "index": i,
                    "error": "Hash mismatch",
                    "expected": event["event_hash"],
                    "computed": computed_hash,
                }
            )

        if event["prev_event_hash"] != previous_hash:
            errors.append(
                {
                    "event_id": event["event_id"],
                    "index": i,
                    "error": "Chain break",
                    "prev_hash": event["prev_event_hash"],
                    "expected": previous_hash,
                }
            )
        previous_hash = event["event_hash"]

    return {
        "valid": len(errors) == 0,
        "total_events": len(events),
        "errors": errors,
    }
