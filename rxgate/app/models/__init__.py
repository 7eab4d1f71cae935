"""
Pydantic models for the rxgate service.
"""

from rxgate.app.models.prescriptions import (
    AuditEvent,
    DigitalSignature,
    DocumentHandle,
    Identity,
    Interaction,
    MedicationEntry,
    Patient,
    Prescription,
    PrescriptionCreateRequest,
    PrescriptionStatus,
    Role,
    StaffStatus,
    StepUpRequest,
    TokenRequest,
    TokenResponse,
)

__all__ = [
    "AuditEvent",
    "DigitalSignature",
    "DocumentHandle",
    "Identity",
    "Interaction",
    "MedicationEntry",
    "Patient",
    "Prescription",
    "PrescriptionCreateRequest",
    "PrescriptionStatus",
    "Role",
    "StaffStatus",
    "StepUpRequest",
    "TokenRequest",
    "TokenResponse",
]
