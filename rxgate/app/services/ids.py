"""
Identifier and timestamp helpers.

Record ids are UUIDv7 (RFC 9562): a 48-bit millisecond timestamp followed by
random bits, so ids sort in creation order. Timestamps are ISO 8601 UTC with
a trailing 'Z'.
"""

import os
import time
import uuid
from datetime import datetime, timezone


def generate_uuid7() -> str:
    """Generate a UUIDv7 string."""
    timestamp_ms = int(time.time() * 1000) & 0xFFFFFFFFFFFF
    rand = int.from_bytes(os.urandom(10), byteorder="big")

    value = timestamp_ms << 80 | rand
    # version 7 in bits 48-51, variant 0b10 in bits 64-65
    value = (value & ~(0xF << 76)) | (0x7 << 76)
    value = (value & ~(0x3 << 62)) | (0x2 << 62)
    return str(uuid.UUID(int=value))


def utc_timestamp() -> str:
    """Current UTC time in ISO 8601 format."""
    return datetime.now(timezone.utc).isoformat().replace("+00:00", "Z")


def parse_timestamp(value: str) -> datetime:
    """
    Parse an ISO 8601 date or datetime into an aware UTC datetime.

    Naive values are taken to be UTC. Raises ValueError when unparseable.
    """
    parsed = datetime.fromisoformat(value.strip().replace("Z", "+00:00"))
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed.astimezone(timezone.utc)
