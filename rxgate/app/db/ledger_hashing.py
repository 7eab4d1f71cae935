"""
Single-source canonical hashing for the audit ledger.

The writer (services/audit_log.py) and the verifier
(tools/verify_audit_chain.py) both import from here so the two can never
canonicalize differently.

Hash policy
-----------
  input  = (prev_event_hash or '') + occurred_at_utc + resource_type
          + resource_id + action + detail_json
  digest = SHA-256(input.encode("utf-8")).hexdigest()

Ordering used by the verifier
-----------------------------
  ORDER BY seq ASC
"""

import hashlib
from typing import Optional

HASH_POLICY = (
    "SHA-256(prev_event_hash||occurred_at_utc||resource_type"
    "||resource_id||action||detail_json)"
)
ORDERING = "seq ASC"


def hash_content(content: str) -> str:
    """Hash a UTF-8 string with SHA-256 and return the hex digest."""
    return hashlib.sha256(content.encode("utf-8")).hexdigest()


def compute_event_hash(
    prev_event_hash: Optional[str],
    occurred_at_utc: str,
    resource_type: str,
    resource_id: str,
    action: str,
    detail_json: str,
) -> str:
    """Compute the canonical hash for one audit event."""
    hash_input = (
        f"{prev_event_hash or ''}"
        f"{occurred_at_utc}"
        f"{resource_type}"
        f"{resource_id}"
        f"{action}"
        f"{detail_json}"
    )
    return hash_content(hash_input)
