"""
Digital signatures for issued prescriptions.

A prescription is signed once, at issue time, over the canonical JSON of its
immutable content (patient, prescriber, medications, diagnosis, dates).

Signature Format:
- Algorithm: ECDSA with SHA-256 (P-256 curve)
- Message: canonical JSON (c14n v1) of the signed content plus signer id
  and signing timestamp
- Encoding: Base64 of DER-encoded signature
"""

import base64
from typing import Any, Dict, Optional

from cryptography.exceptions import InvalidSignature
from cryptography.hazmat.primitives import hashes
from cryptography.hazmat.primitives.asymmetric import ec

from rxgate.app.models import DigitalSignature, Identity, Prescription
from rxgate.app.services.c14n import json_c14n_v1
from rxgate.app.services.hashing import sha256_hex
from rxgate.app.services.ids import utc_timestamp
from rxgate.app.services.key_registry import KeyRegistry, jwk_to_public_key

ALGORITHM = "ECDSA_SHA_256"


def _signing_message(content: Dict[str, Any], signer_id: str, signed_at: str) -> bytes:
    return json_c14n_v1(
        {
            "content": content,
            "signer_id": signer_id,
            "signed_at": signed_at,
        }
    )


class PrescriptionSigner:
    def __init__(self, registry: Optional[KeyRegistry] = None):
        self.registry = registry or KeyRegistry()

    def sign(self, prescription: Prescription, signer: Identity) -> DigitalSignature:
        """Produce the signature record for a prescription."""
        key_data = self.registry.ensure_active_key()
        content = prescription.signed_content()
        signed_at = utc_timestamp()

        signature = key_data["private_key"].sign(
            _signing_message(content, signer.id, signed_at),
            ec.ECDSA(hashes.SHA256()),
        )

        return DigitalSignature(
            signer_id=signer.id,
            signed_at=signed_at,
            key_id=key_data["key_id"],
            algorithm=ALGORITHM,
            content_hash=sha256_hex(json_c14n_v1(content)),
            signature=base64.b64encode(signature).decode("utf-8"),
        )

    def verify(self, prescription: Prescription) -> bool:
        """
        Check a prescription's signature against its current content.

        Returns False for unsigned prescriptions, unknown keys, or any
        content change since signing.
        """
        record = prescription.digital_signature
        if record is None or record.algorithm != ALGORITHM:
            return False

        key_data = self.registry.get_key_by_id(record.key_id)
        if not key_data:
            return False

        try:
            public_key = jwk_to_public_key(key_data["public_jwk"])
            public_key.verify(
                base64.b64decode(record.signature),
                _signing_message(
                    prescription.signed_content(), record.signer_id, record.signed_at
                ),
                ec.ECDSA(hashes.SHA256()),
            )
            return True
        except (InvalidSignature, ValueError, KeyError):
            return False
