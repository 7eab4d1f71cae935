"""
Prescription issuance workflow.

States:
    Draft               payload validated, nothing persisted
    InteractionChecked  passed the interaction gate
    Issued              persisted, signed, document reference attached
    Delivered           observed only through 'prescription_sent' audit events

Validation and the interaction gate run before anything is written, so a
rejected request leaves no record. Once a prescription passes the gate it is
kept even if document generation later fails; such a record has no
document_url, is reported to the caller as a retryable RenderError, and can
be completed with regenerate_document().
"""

import logging
from typing import Any, Dict, Mapping, Optional, Union

import pydantic

from rxgate.app.db import records
from rxgate.app.db.migrate import get_connection
from rxgate.app.errors import (
    Forbidden,
    InteractionDetected,
    NotFound,
    NotReady,
    RenderError,
    ValidationError,
)
from rxgate.app.models import (
    AuditEvent,
    DocumentHandle,
    Identity,
    Patient,
    Prescription,
    PrescriptionCreateRequest,
    Role,
    StaffStatus,
)
from rxgate.app.security.auth import AuthGateway
from rxgate.app.services.audit_log import AuditLog
from rxgate.app.services.delivery import DeliveryService
from rxgate.app.services.ids import generate_uuid7, parse_timestamp, utc_timestamp
from rxgate.app.services.interactions import InteractionChecker
from rxgate.app.services.prescription_pdf import DocumentGenerator
from rxgate.app.services.signer import PrescriptionSigner

logger = logging.getLogger(__name__)

RESOURCE_TYPE = "Prescription"
CREATE_ROLES = {Role.DOCTOR}
SEND_ROLES = {Role.DOCTOR, Role.PHARMACIST}
# Broad clinical roles that may read any prescription
READ_ROLES = {Role.DOCTOR, Role.PHARMACIST}


def validate_payload(
    payload: Union[PrescriptionCreateRequest, Mapping[str, Any]],
    now: Optional[str] = None,
) -> PrescriptionCreateRequest:
    """
    Check a create payload beyond its schema.

    The expiry date must fall strictly after ``now``, which create() also
    stamps as the issue date. Defaults to the current time.

    Raises:
        ValidationError: With one entry per failing field
    """
    if not isinstance(payload, PrescriptionCreateRequest):
        try:
            payload = PrescriptionCreateRequest.model_validate(payload)
        except pydantic.ValidationError as e:
            raise ValidationError(
                "Request validation failed",
                details=[
                    {
                        "field": " -> ".join(str(loc) for loc in err["loc"]),
                        "type": err["type"],
                        "message": err["msg"],
                    }
                    for err in e.errors()
                ],
            )

    problems = []
    if not payload.patient.strip():
        problems.append({"field": "patient", "message": "Patient is required"})
    if not payload.medications:
        problems.append({"field": "medications", "message": "At least one medication is required"})
    for i, medication in enumerate(payload.medications):
        for field in ("name", "dosage", "frequency"):
            if not getattr(medication, field).strip():
                problems.append(
                    {"field": f"medications -> {i} -> {field}", "message": f"{field} is required"}
                )
    if not payload.diagnosis.strip():
        problems.append({"field": "diagnosis", "message": "Diagnosis is required"})

    try:
        expiry = parse_timestamp(payload.expiry_date)
        if expiry <= parse_timestamp(now or utc_timestamp()):
            problems.append({"field": "expiryDate", "message": "Expiry date must be in the future"})
    except ValueError:
        problems.append({"field": "expiryDate", "message": "Expiry date must be ISO-8601"})

    if problems:
        raise ValidationError("Request validation failed", details=problems)
    return payload


class PrescriptionWorkflow:
    def __init__(
        self,
        auth: AuthGateway,
        checker: InteractionChecker,
        documents: DocumentGenerator,
        signer: PrescriptionSigner,
        delivery: DeliveryService,
        audit: AuditLog,
    ):
        self.auth = auth
        self.checker = checker
        self.documents = documents
        self.signer = signer
        self.delivery = delivery
        self.audit = audit

    # ------------------------------------------------------------------
    # create
    # ------------------------------------------------------------------

    def create(
        self,
        payload: Union[PrescriptionCreateRequest, Mapping[str, Any]],
        identity: Identity,
    ) -> Prescription:
        """
        Validate, gate, persist, sign and render a new prescription.

        Raises:
            Forbidden: Acting identity is not an active doctor
            ValidationError: Malformed payload or unknown patient
            InteractionDetected: Interaction gate triggered; nothing persisted
            RenderError: Record persisted without a document; retry later
        """
        self.auth.authorize(identity, CREATE_ROLES)
        now = utc_timestamp()
        request = validate_payload(payload, now)

        patient = self._load_patient(request.patient)
        if patient is None:
            raise ValidationError(
                "Request validation failed",
                details=[{"field": "patient", "message": "Unknown patient"}],
            )

        interactions = self.checker.check(request.medications)
        if interactions:
            logger.info(
                "Interaction gate blocked prescription by %s (%d interactions)",
                identity.id,
                len(interactions),
            )
            raise InteractionDetected(interactions)

        prescription = Prescription(
            id=generate_uuid7(),
            patient_id=patient.id,
            doctor_id=identity.id,
            medications=tuple(request.medications),
            diagnosis=request.diagnosis.strip(),
            issue_date=now,
            expiry_date=parse_timestamp(request.expiry_date).isoformat().replace("+00:00", "Z"),
            created_at=now,
            last_modified=now,
        )

        conn = get_connection()
        try:
            records.insert_prescription(conn, prescription)
        finally:
            conn.close()

        prescription = self._sign(prescription, identity)
        prescription = self._issue_document(prescription, identity, patient)

        self.audit.record(
            AuditEvent(
                action="prescription_created",
                actor_id=identity.id,
                resource_type=RESOURCE_TYPE,
                resource_id=prescription.id,
                detail={"patient_id": patient.id, "medication_count": len(prescription.medications)},
            )
        )
        return prescription

    # ------------------------------------------------------------------
    # fetch
    # ------------------------------------------------------------------

    def fetch(
        self, prescription_id: str, identity: Identity, otp: Optional[str] = None
    ) -> Dict[str, Any]:
        """
        Read a prescription with patient and prescriber expanded.

        Raises:
            StepUpFailed: Second factor enabled and code missing or invalid
            NotFound: No such prescription
            Forbidden: Not a clinical reader and not the patient
        """
        self.auth.require_step_up(identity, otp)
        if identity.status != StaffStatus.ACTIVE:
            raise Forbidden(f"Identity status '{identity.status.value}' is not active")

        prescription, patient, doctor = self._load_bundle(prescription_id)

        can_access = identity.role in READ_ROLES or identity.id == prescription.patient_id
        if not can_access:
            raise Forbidden("Access denied")

        # Recorded on every successful read; never deduplicated
        self.audit.record(
            AuditEvent(
                action="prescription_accessed",
                actor_id=identity.id,
                resource_type=RESOURCE_TYPE,
                resource_id=prescription.id,
            )
        )
        return expand(prescription, patient, doctor)

    # ------------------------------------------------------------------
    # send
    # ------------------------------------------------------------------

    def send(self, prescription_id: str, identity: Identity) -> Dict[str, Any]:
        """
        Deliver the prescription document to the patient's address.

        Raises:
            Forbidden: Acting identity is not an active doctor or pharmacist
            NotFound: No such prescription
            NotReady: No document has been generated yet
            DeliveryError: Transport failure or unusable address
        """
        self.auth.authorize(identity, SEND_ROLES)

        prescription, patient, _ = self._load_bundle(prescription_id)
        if not prescription.is_issued:
            raise NotReady("Prescription document has not been generated")

        handle = DocumentHandle.for_stored(prescription.document_url)
        recipient = patient.email
        self.delivery.deliver(handle, recipient)

        self.audit.record(
            AuditEvent(
                action="prescription_sent",
                actor_id=identity.id,
                resource_type=RESOURCE_TYPE,
                resource_id=prescription.id,
                detail={"method": "email", "recipient": recipient},
            )
        )
        return {"message": "Prescription sent successfully", "recipient": recipient}

    # ------------------------------------------------------------------
    # regenerate
    # ------------------------------------------------------------------

    def regenerate_document(self, prescription_id: str, identity: Identity) -> Prescription:
        """
        Render the document for a prescription left without one.

        Raises:
            Forbidden: Acting identity is not an active doctor
            NotFound: No such prescription
            RenderError: Rendering failed again
        """
        self.auth.authorize(identity, CREATE_ROLES)

        prescription, patient, doctor = self._load_bundle(prescription_id)
        if prescription.digital_signature is None:
            prescription = self._sign(prescription, doctor)
        prescription = self._issue_document(prescription, doctor, patient)

        self.audit.record(
            AuditEvent(
                action="prescription_document_generated",
                actor_id=identity.id,
                resource_type=RESOURCE_TYPE,
                resource_id=prescription.id,
                detail={"document_url": prescription.document_url},
            )
        )
        return prescription

    # ------------------------------------------------------------------
    # internals
    # ------------------------------------------------------------------

    def _sign(self, prescription: Prescription, signer: Identity) -> Prescription:
        signature = self.signer.sign(prescription, signer)
        touched = utc_timestamp()
        conn = get_connection()
        try:
            records.attach_signature(conn, prescription.id, signature, touched)
        finally:
            conn.close()
        return prescription.model_copy(
            update={"digital_signature": signature, "last_modified": touched}
        )

    def _issue_document(
        self, prescription: Prescription, prescriber: Identity, patient: Patient
    ) -> Prescription:
        try:
            handle = self.documents.render(prescription, prescriber, patient)
        except RenderError as e:
            self.audit.record_error(
                e,
                {"operation": "render", "prescription_id": prescription.id},
            )
            raise

        touched = utc_timestamp()
        conn = get_connection()
        try:
            records.attach_document(conn, prescription.id, handle.locator, touched)
        finally:
            conn.close()
        return prescription.model_copy(
            update={"document_url": handle.locator, "last_modified": touched}
        )

    def _load_patient(self, patient_id: str) -> Optional[Patient]:
        conn = get_connection()
        try:
            return records.get_patient(conn, patient_id)
        finally:
            conn.close()

    def _load_bundle(self, prescription_id: str):
        conn = get_connection()
        try:
            prescription = records.get_prescription(conn, prescription_id)
            if prescription is None:
                raise NotFound("Prescription not found")
            patient = records.get_patient(conn, prescription.patient_id)
            doctor = records.get_staff(conn, prescription.doctor_id)
        finally:
            conn.close()
        return prescription, patient, doctor


def expand(
    prescription: Prescription, patient: Optional[Patient], doctor: Optional[Identity]
) -> Dict[str, Any]:
    """Serialize a prescription with its patient and prescriber inlined."""
    body = prescription.model_dump(mode="json")
    body["patient"] = patient.public_view() if patient else None
    body["doctor"] = doctor.public_view() if doctor else None
    return body
