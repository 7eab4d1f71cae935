"""
Signing key registry for prescription signatures.

Keys are ECDSA P-256, stored in the signing_keys table with an in-memory
cache. Exactly one key is 'active' at a time; rotated keys keep their public
half so prescriptions signed under them still verify by key_id.
"""

import base64
import json
import threading
from typing import Dict, List, Optional

from cryptography.hazmat.primitives import serialization
from cryptography.hazmat.primitives.asymmetric import ec

from rxgate.app.db.migrate import get_connection
from rxgate.app.services.ids import generate_uuid7, utc_timestamp


def _b64url(data: bytes) -> str:
    return base64.urlsafe_b64encode(data).decode("utf-8").rstrip("=")


def public_key_to_jwk(public_key: ec.EllipticCurvePublicKey, key_id: str) -> Dict[str, str]:
    numbers = public_key.public_numbers()
    return {
        "kty": "EC",
        "crv": "P-256",
        "x": _b64url(numbers.x.to_bytes(32, byteorder="big")),
        "y": _b64url(numbers.y.to_bytes(32, byteorder="big")),
        "use": "sig",
        "kid": key_id,
    }


def jwk_to_public_key(jwk: Dict[str, str]) -> ec.EllipticCurvePublicKey:
    """Convert a JWK to a cryptography public key object."""
    if jwk.get("kty") != "EC" or jwk.get("crv") != "P-256":
        raise ValueError("Only EC P-256 keys are supported")

    def b64url_decode(s: str) -> bytes:
        return base64.urlsafe_b64decode(s + "=" * (-len(s) % 4))

    x = int.from_bytes(b64url_decode(jwk["x"]), byteorder="big")
    y = int.from_bytes(b64url_decode(jwk["y"]), byteorder="big")
    return ec.EllipticCurvePublicNumbers(x, y, ec.SECP256R1()).public_key()


class KeyRegistry:
    """
    Registry of prescription signing keys.

    In production the private half would live in a KMS; here keys are kept in
    the database and cached per process.
    """

    def __init__(self):
        self._cache: Dict[str, Dict] = {}
        # Guards key generation only; signing itself never takes this lock
        self._generate_lock = threading.Lock()

    def get_active_key(self) -> Optional[Dict]:
        """
        Get the active signing key.

        Returns:
            Dictionary with key_id, private_key, public_jwk, status;
            None if no active key exists
        """
        for key_data in self._cache.values():
            if key_data["status"] == "active":
                return key_data

        conn = get_connection()
        try:
            row = conn.execute(
                """
                SELECT key_id, private_key_pem, public_jwk_json, status
                FROM signing_keys
                WHERE status = 'active'
                ORDER BY created_at_utc DESC
                LIMIT 1
                """
            ).fetchone()
        finally:
            conn.close()

        if not row:
            return None
        return self._cache_row(row)

    def get_key_by_id(self, key_id: str) -> Optional[Dict]:
        """Get a specific key (verification of older signatures)."""
        if key_id in self._cache:
            return self._cache[key_id]

        conn = get_connection()
        try:
            row = conn.execute(
                """
                SELECT key_id, private_key_pem, public_jwk_json, status
                FROM signing_keys
                WHERE key_id = ?
                """,
                (key_id,),
            ).fetchone()
        finally:
            conn.close()

        if not row:
            return None
        return self._cache_row(row)

    def list_public_keys(self) -> List[Dict]:
        conn = get_connection()
        try:
            cursor = conn.execute(
                """
                SELECT key_id, public_jwk_json, status
                FROM signing_keys
                ORDER BY created_at_utc DESC
                """
            )
            return [
                {
                    "key_id": row["key_id"],
                    "jwk": json.loads(row["public_jwk_json"]),
                    "status": row["status"],
                }
                for row in cursor
            ]
        finally:
            conn.close()

    def generate_key(self) -> str:
        """Generate and store a new active key pair; returns its key_id."""
        private_key = ec.generate_private_key(ec.SECP256R1())
        private_key_pem = private_key.private_bytes(
            encoding=serialization.Encoding.PEM,
            format=serialization.PrivateFormat.PKCS8,
            encryption_algorithm=serialization.NoEncryption(),
        ).decode("utf-8")

        key_id = f"key-{generate_uuid7()}"
        public_jwk = public_key_to_jwk(private_key.public_key(), key_id)

        conn = get_connection()
        try:
            conn.execute(
                """
                INSERT INTO signing_keys (
                    key_id, private_key_pem, public_jwk_json, status, created_at_utc
                ) VALUES (?, ?, ?, 'active', ?)
                """,
                (key_id, private_key_pem, json.dumps(public_jwk, sort_keys=True), utc_timestamp()),
            )
        finally:
            conn.close()

        self._cache.clear()
        return key_id

    def rotate_key(self) -> str:
        """Retire the active key and generate a new one."""
        conn = get_connection()
        try:
            conn.execute("UPDATE signing_keys SET status = 'rotated' WHERE status = 'active'")
        finally:
            conn.close()

        self._cache.clear()
        return self.generate_key()

    def ensure_active_key(self) -> Dict:
        key = self.get_active_key()
        if key:
            return key

        with self._generate_lock:
            key = self.get_active_key()
            if key:
                return key
            self.generate_key()
        return self.get_active_key()

    def _cache_row(self, row) -> Dict:
        private_key = None
        if row["private_key_pem"]:
            private_key = serialization.load_pem_private_key(
                row["private_key_pem"].encode("utf-8"), password=None
            )
        key_data = {
            "key_id": row["key_id"],
            "private_key": private_key,
            "public_jwk": json.loads(row["public_jwk_json"]),
            "status": row["status"],
        }
        self._cache[row["key_id"]] = key_data
        return key_data
