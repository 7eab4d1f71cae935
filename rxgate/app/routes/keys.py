"""
Public key endpoints for prescription signature verification.

Pharmacies and auditors fetch the JWK named by a signature's key_id to check
a prescription offline. Private material never leaves the registry.
"""

from typing import Any, Dict, List

from fastapi import APIRouter, Request

from rxgate.app.errors import NotFound

router = APIRouter(prefix="/v1/keys", tags=["keys"])


@router.get("")
def list_public_keys(request: Request) -> List[Dict[str, Any]]:
    """
    List all signing keys, active and rotated.

    Returns list of keys with key_id, jwk, and status.
    """
    return request.app.state.services.keys.list_public_keys()


@router.get("/{key_id}")
def get_public_key(key_id: str, request: Request) -> Dict[str, Any]:
    """
    Get a specific public key by key_id.

    Returns JWK public key object only (not wrapped).
    """
    key = request.app.state.services.keys.get_key_by_id(key_id)
    if not key:
        raise NotFound(f"Key not found: {key_id}")
    return key["public_jwk"]
