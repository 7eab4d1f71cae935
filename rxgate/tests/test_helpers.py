"""
Test helpers for rxgate security testing.

Provides utilities for generating JWT tokens and one-time codes for
authenticated test requests.
"""

from datetime import datetime, timedelta, timezone
from typing import Optional

from jose import jwt

from rxgate.app import config
from rxgate.app.security.auth import generate_totp

TOTP_SECRET = "JBSWY3DPEHPK3PXPJBSWY3DPEHPK3PXP"
PASSWORD = "correct horse battery staple"


def generate_test_jwt(
    sub: str,
    role: str = "doctor",
    expires_in_seconds: int = 3600,
    secret_key: Optional[str] = None,
    algorithm: Optional[str] = None,
) -> str:
    """
    Generate a JWT for a seeded identity.

    Args:
        sub: Identity id (staff_id or patient_id)
        role: Informational claim; the server resolves the real role
        expires_in_seconds: Token validity duration (negative for expired)
        secret_key: Signing secret (uses the configured one if not provided)
        algorithm: JWT algorithm (uses the configured one if not provided)
    """
    now = datetime.now(timezone.utc)
    payload = {
        "sub": sub,
        "role": role,
        "iat": int(now.timestamp()),
        "exp": int((now + timedelta(seconds=expires_in_seconds)).timestamp()),
    }
    return jwt.encode(
        payload,
        secret_key or config.JWT_SECRET_KEY,
        algorithm=algorithm or config.JWT_ALGORITHM,
    )


def generate_expired_jwt(sub: str) -> str:
    """JWT that expired an hour ago."""
    return generate_test_jwt(sub, expires_in_seconds=-3600)


def generate_malformed_jwt() -> str:
    return "malformed.jwt.token"


def create_auth_headers(sub: Optional[str] = None, token: Optional[str] = None) -> dict:
    """Authorization header for a subject, or for a pre-built token."""
    if token is None:
        token = generate_test_jwt(sub)
    return {"Authorization": f"Bearer {token}"}


def current_otp() -> str:
    """One-time code for TOTP_SECRET at the current time."""
    return generate_totp(TOTP_SECRET)


def prescription_payload(patient_id: str, *medications, **overrides) -> dict:
    """Valid create body; defaults to a single non-interacting medication."""
    body = {
        "patient": patient_id,
        "medications": list(medications)
        or [{"name": "Amoxicillin", "dosage": "500mg", "frequency": "three times daily"}],
        "diagnosis": "Acute otitis media",
        "expiryDate": (datetime.now(timezone.utc) + timedelta(days=30)).date().isoformat(),
    }
    body.update(overrides)
    return body


WARFARIN = {"name": "Warfarin", "dosage": "5mg", "frequency": "daily"}
ASPIRIN = {"name": "Aspirin", "dosage": "81mg", "frequency": "daily"}
