"""
Token endpoint.

Staff exchange employee id and password for a bearer JWT. Patient-portal
tokens are issued by the external portal with the same secret.
"""

from fastapi import APIRouter, Depends

from rxgate.app.models import TokenRequest, TokenResponse
from rxgate.app.security.auth import AuthGateway, get_auth_gateway

router = APIRouter(prefix="/v1/auth", tags=["auth"])


@router.post("/token", response_model=TokenResponse)
def issue_token(
    credentials: TokenRequest,
    gateway: AuthGateway = Depends(get_auth_gateway),
) -> TokenResponse:
    token = gateway.login(credentials.employee_id, credentials.password)
    return TokenResponse(access_token=token, expires_in=gateway.token_ttl_seconds)
