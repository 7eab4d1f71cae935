"""
Domain models for prescription issuance.

Identity and Patient are owned by external staff/patient management; this
service only reads them. Prescription is owned here and is immutable apart
from status, signature and document attachment.
"""

from enum import Enum
from pathlib import Path
from typing import Any, Dict, List, Optional, Tuple

from pydantic import BaseModel, ConfigDict, Field


class Role(str, Enum):
    SUPER_ADMIN = "superAdmin"
    ADMIN = "admin"
    DOCTOR = "doctor"
    NURSE = "nurse"
    PHARMACIST = "pharmacist"
    LAB_TECHNICIAN = "labTechnician"
    # Patient-portal identities resolved from the patients table
    PATIENT = "patient"


class StaffStatus(str, Enum):
    ACTIVE = "active"
    INACTIVE = "inactive"
    SUSPENDED = "suspended"


class PrescriptionStatus(str, Enum):
    ACTIVE = "active"
    COMPLETED = "completed"
    CANCELLED = "cancelled"


class Identity(BaseModel):
    """
    Acting identity resolved from a bearer token.

    The role and status come from the identity store, never from token claims.
    """

    id: str
    role: Role
    first_name: str
    last_name: str
    email: Optional[str] = None
    employee_id: Optional[str] = None
    credential_hash: Optional[str] = Field(default=None, repr=False)
    two_factor_secret: Optional[str] = Field(default=None, repr=False)
    two_factor_enabled: bool = False
    status: StaffStatus = StaffStatus.ACTIVE

    @property
    def full_name(self) -> str:
        return f"{self.first_name} {self.last_name}"

    def public_view(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "employee_id": self.employee_id,
            "role": self.role.value,
            "first_name": self.first_name,
            "last_name": self.last_name,
        }


class Patient(BaseModel):
    id: str
    mrn: str
    first_name: str
    last_name: str
    date_of_birth: Optional[str] = None
    email: Optional[str] = None
    phone: Optional[str] = None
    ssn: Optional[str] = Field(default=None, repr=False)
    insurance_policy_number: Optional[str] = Field(default=None, repr=False)

    @property
    def full_name(self) -> str:
        return f"{self.first_name} {self.last_name}"

    def public_view(self) -> Dict[str, Any]:
        """Patient fields safe to return with a prescription."""
        return {
            "id": self.id,
            "mrn": self.mrn,
            "first_name": self.first_name,
            "last_name": self.last_name,
            "date_of_birth": self.date_of_birth,
            "email": self.email,
        }


class MedicationEntry(BaseModel):
    model_config = ConfigDict(frozen=True)

    name: str = Field(..., description="Drug name")
    dosage: str = Field(..., description="Dose per administration, e.g. '5mg'")
    frequency: str = Field(..., description="Administration frequency, e.g. 'daily'")
    duration: Optional[str] = None
    instructions: Optional[str] = None
    contraindications: Tuple[str, ...] = ()


class PrescriptionCreateRequest(BaseModel):
    """Request body for POST /v1/prescriptions."""

    model_config = ConfigDict(populate_by_name=True)

    patient: str = Field(..., description="Patient identifier")
    medications: List[MedicationEntry] = Field(..., description="Ordered medication entries")
    diagnosis: str = Field(..., description="Diagnosis text")
    expiry_date: str = Field(..., alias="expiryDate", description="ISO-8601 expiry date")


class TokenRequest(BaseModel):
    employee_id: str = Field(..., min_length=1)
    password: str = Field(..., min_length=1)


class TokenResponse(BaseModel):
    access_token: str
    token_type: str = "bearer"
    expires_in: int


class StepUpRequest(BaseModel):
    """Optional body for reads that may require a second factor."""

    model_config = ConfigDict(populate_by_name=True)

    otp: Optional[str] = Field(default=None, alias="token", description="Time-based one-time code")


class DigitalSignature(BaseModel):
    model_config = ConfigDict(frozen=True)

    signer_id: str
    signed_at: str
    key_id: str
    algorithm: str
    content_hash: str
    signature: str


class Prescription(BaseModel):
    """Persisted prescription record."""

    model_config = ConfigDict(frozen=True)

    id: str
    patient_id: str
    doctor_id: str
    medications: Tuple[MedicationEntry, ...]
    diagnosis: str
    issue_date: str
    expiry_date: str
    status: PrescriptionStatus = PrescriptionStatus.ACTIVE
    digital_signature: Optional[DigitalSignature] = None
    document_url: Optional[str] = None
    created_at: str
    last_modified: str

    @property
    def is_issued(self) -> bool:
        """A record without a document reference is not yet issued."""
        return self.document_url is not None

    def signed_content(self) -> Dict[str, Any]:
        """Fields covered by the digital signature (the immutable part)."""
        return {
            "prescription_id": self.id,
            "patient_id": self.patient_id,
            "doctor_id": self.doctor_id,
            "medications": [
                {
                    "name": m.name,
                    "dosage": m.dosage,
                    "frequency": m.frequency,
                    "duration": m.duration,
                    "instructions": m.instructions,
                    "contraindications": list(m.contraindications),
                }
                for m in self.medications
            ],
            "diagnosis": self.diagnosis,
            "issue_date": self.issue_date,
            "expiry_date": self.expiry_date,
        }


class Interaction(BaseModel):
    model_config = ConfigDict(frozen=True)

    drugs: Tuple[str, str]
    severity: str = "unknown"
    description: str = ""


class DocumentHandle(BaseModel):
    """
    A rendered prescription document.

    sha256 and size are known only when the bytes were just produced; a handle
    for an already stored document carries just its locator.
    """

    model_config = ConfigDict(frozen=True)

    locator: str
    filename: str
    sha256: Optional[str] = None
    size: Optional[int] = None

    @classmethod
    def for_stored(cls, locator: str) -> "DocumentHandle":
        return cls(locator=locator, filename=Path(locator).name)


class AuditEvent(BaseModel):
    """One append-only audit ledger entry."""

    model_config = ConfigDict(frozen=True)

    action: str
    actor_id: Optional[str]
    resource_type: str
    resource_id: str
    detail: Dict[str, Any] = Field(default_factory=dict)
    timestamp: Optional[str] = None
    event_id: Optional[str] = None
    prev_event_hash: Optional[str] = None
    event_hash: Optional[str] = None
