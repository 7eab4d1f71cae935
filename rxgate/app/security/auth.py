"""
Authentication gateway for the prescription pipeline.

AuthGateway is a value constructed with its signing secret and an identity
store and held on app.state; request handlers reach it through the FastAPI
dependencies at the bottom of this module.

Security Principles:
1. Every protected request carries a bearer JWT (HS256 by default)
2. Signature and expiry are always verified; 'sub' is required
3. Role and status come from the identity store, never from token claims
4. Only 'active' identities pass authorization
5. Step-up (TOTP) is opt-in per identity and checked before any read or
   mutation of a step-up-protected resource

Roles:
- doctor: issues and sends prescriptions, reads any prescription
- pharmacist: sends and reads any prescription
- patient: reads own prescriptions only
- superAdmin, admin, nurse, labTechnician: no prescription access
"""

import base64
import binascii
import time
from datetime import datetime, timezone
from typing import Iterable, Optional, Protocol

import bcrypt
from cryptography.hazmat.primitives.hashes import SHA1
from cryptography.hazmat.primitives.twofactor import InvalidToken
from cryptography.hazmat.primitives.twofactor.totp import TOTP
from fastapi import Depends, Request
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from jose import JWTError, jwt

from rxgate.app import config
from rxgate.app.errors import Forbidden, StepUpFailed, Unauthenticated, Unauthorized
from rxgate.app.models import Identity, Role, StaffStatus


class IdentityStore(Protocol):
    def get_identity(self, identity_id: str) -> Optional[Identity]:
        ...

    def get_by_employee_id(self, employee_id: str) -> Optional[Identity]:
        ...


def hash_password(password: str) -> str:
    """bcrypt hash for a staff credential."""
    return bcrypt.hashpw(password.encode("utf-8"), bcrypt.gensalt()).decode("utf-8")


def _decode_totp_secret(secret: str) -> bytes:
    normalized = secret.replace(" ", "").upper()
    normalized += "=" * (-len(normalized) % 8)
    return base64.b32decode(normalized)


def _totp(secret: str) -> TOTP:
    return TOTP(
        _decode_totp_secret(secret),
        config.TOTP_DIGITS,
        SHA1(),
        config.TOTP_STEP_SECONDS,
        enforce_key_length=False,
    )


def generate_totp(secret: str, at: Optional[float] = None) -> str:
    """Current one-time code for a base32 secret (enrolment and tests)."""
    at = time.time() if at is None else at
    return _totp(secret).generate(int(at)).decode("ascii")


class AuthGateway:
    def __init__(
        self,
        identity_store: IdentityStore,
        secret_key: str = config.JWT_SECRET_KEY,
        algorithm: str = config.JWT_ALGORITHM,
        token_ttl_seconds: int = config.TOKEN_TTL_SECONDS,
    ):
        self.identity_store = identity_store
        self.secret_key = secret_key
        self.algorithm = algorithm
        self.token_ttl_seconds = token_ttl_seconds

    def decode_jwt(self, token: str) -> dict:
        """
        Decode and validate a JWT.

        Raises:
            Unauthenticated: If the token is malformed, badly signed or expired
        """
        try:
            return jwt.decode(
                token,
                self.secret_key,
                algorithms=[self.algorithm],
                options={
                    "verify_signature": True,
                    "verify_exp": True,
                    "require_exp": True,
                    "require_sub": True,
                },
            )
        except JWTError as e:
            raise Unauthenticated(f"Token validation failed: {e}")

    def authenticate(self, token: Optional[str]) -> Identity:
        """
        Resolve a bearer token to an Identity.

        Raises:
            Unauthenticated: Missing/invalid token or unknown subject
        """
        if not token:
            raise Unauthenticated("Authentication token is missing")

        payload = self.decode_jwt(token)
        sub = payload.get("sub")
        if not sub:
            raise Unauthenticated("Token missing 'sub' claim")

        identity = self.identity_store.get_identity(str(sub))
        if identity is None:
            raise Unauthenticated("Token subject does not resolve to a known identity")
        return identity

    def authorize(self, identity: Optional[Identity], allowed_roles: Iterable[Role]) -> None:
        """
        Require an active identity holding one of the allowed roles.

        Raises:
            Unauthorized: No identity present
            Forbidden: Inactive/suspended identity or role not allowed
        """
        if identity is None:
            raise Unauthorized("Unauthorized")

        if identity.status != StaffStatus.ACTIVE:
            raise Forbidden(f"Identity status '{identity.status.value}' is not active")

        allowed = {Role(r) for r in allowed_roles}
        if identity.role not in allowed:
            raise Forbidden(
                f"Role '{identity.role.value}' not permitted; requires one of "
                f"{sorted(r.value for r in allowed)}"
            )

    def require_step_up(
        self, identity: Identity, code: Optional[str], at: Optional[float] = None
    ) -> None:
        """
        Validate a TOTP code for identities that enabled a second factor.

        Identities without a second factor pass through. Codes from one step
        before or after the current one are accepted to absorb clock skew.

        Raises:
            StepUpFailed: Missing or invalid code, or unusable secret
        """
        if not identity.two_factor_enabled:
            return

        if not code or not identity.two_factor_secret:
            raise StepUpFailed("2FA verification failed")

        try:
            totp = _totp(identity.two_factor_secret)
        except (binascii.Error, ValueError):
            raise StepUpFailed("2FA verification failed")

        now = time.time() if at is None else at
        token = code.strip().encode("ascii", errors="replace")
        for offset in range(-config.TOTP_WINDOW, config.TOTP_WINDOW + 1):
            try:
                totp.verify(token, int(now + offset * config.TOTP_STEP_SECONDS))
                return
            except InvalidToken:
                continue

        raise StepUpFailed("2FA verification failed")

    def issue_token(self, identity: Identity, expires_in_seconds: Optional[int] = None) -> str:
        """Create a signed access token for an identity."""
        now = datetime.now(timezone.utc)
        ttl = expires_in_seconds if expires_in_seconds is not None else self.token_ttl_seconds
        payload = {
            "sub": identity.id,
            "role": identity.role.value,
            "iat": int(now.timestamp()),
            "exp": int(now.timestamp()) + ttl,
        }
        return jwt.encode(payload, self.secret_key, algorithm=self.algorithm)

    def login(self, employee_id: str, password: str) -> str:
        """
        Exchange staff credentials for an access token.

        Status is not checked here; inactive staff obtain a token but fail
        every authorization.

        Raises:
            Unauthenticated: Unknown employee or wrong password
        """
        identity = self.identity_store.get_by_employee_id(employee_id)
        if identity is None or not identity.credential_hash:
            raise Unauthenticated("Invalid credentials")

        if not bcrypt.checkpw(password.encode("utf-8"), identity.credential_hash.encode("utf-8")):
            raise Unauthenticated("Invalid credentials")

        return self.issue_token(identity)


# ---------------------------------------------------------------------------
# FastAPI dependencies
# ---------------------------------------------------------------------------

security = HTTPBearer(auto_error=False)


def get_auth_gateway(request: Request) -> AuthGateway:
    return request.app.state.services.auth


def get_current_identity(
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(security),
    gateway: AuthGateway = Depends(get_auth_gateway),
) -> Identity:
    """Authenticate the bearer token on the request."""
    token = credentials.credentials if credentials else None
    return gateway.authenticate(token)


def require_role(*roles: Role):
    """
    Dependency factory for role-based access control.

    Usage:
        @router.post("/prescriptions")
        def create_prescription(identity: Identity = Depends(require_role(Role.DOCTOR))):
            ...
    """

    def role_checker(
        identity: Identity = Depends(get_current_identity),
        gateway: AuthGateway = Depends(get_auth_gateway),
    ) -> Identity:
        gateway.authorize(identity, roles)
        return identity

    return role_checker
