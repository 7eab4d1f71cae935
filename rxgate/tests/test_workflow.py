"""
PrescriptionWorkflow tests at the service layer.

HTTP status mapping is covered in test_prescription_endpoints.py; these tests
check state transitions, persistence and audit side effects directly.
"""

import pydantic
import pytest

from rxgate.app.db import records
from rxgate.app.db.migrate import get_connection
from rxgate.app.errors import (
    AuditWriteError,
    Forbidden,
    InteractionDetected,
    InteractionSourceError,
    NotFound,
    NotReady,
    RenderError,
    StepUpFailed,
    ValidationError,
)
from rxgate.app.models import Prescription
from rxgate.app.security.auth import generate_totp
from rxgate.app.services.interactions import InteractionChecker
from rxgate.app.services.workflow import validate_payload
from rxgate.tests.test_helpers import ASPIRIN, TOTP_SECRET, WARFARIN, prescription_payload


def identity(services, identity_id):
    return services.auth.identity_store.get_identity(identity_id)


def prescription_count():
    conn = get_connection()
    try:
        return conn.execute("SELECT COUNT(*) FROM prescriptions").fetchone()[0]
    finally:
        conn.close()


def store_unissued(services, people):
    """Persist a signed-less, document-less prescription as after a failed render."""
    created = services.workflow.create(
        prescription_payload(people["patient"]), identity(services, people["doctor"])
    )
    conn = get_connection()
    try:
        conn.execute(
            "UPDATE prescriptions SET document_url = NULL WHERE prescription_id = ?",
            (created.id,),
        )
    finally:
        conn.close()
    return created.id


class FailingGenerator:
    def render(self, prescription, prescriber, patient):
        raise RenderError("disk full", prescription_id=prescription.id)


class TestValidatePayload:
    def test_accepts_valid_payload(self):
        request = validate_payload(prescription_payload("patient-1"))
        assert request.patient == "patient-1"
        assert request.medications[0].name == "Amoxicillin"

    def test_accepts_snake_case_expiry(self):
        body = prescription_payload("patient-1")
        body["expiry_date"] = body.pop("expiryDate")
        assert validate_payload(body).expiry_date == body["expiry_date"]

    @pytest.mark.parametrize(
        "overrides, field",
        [
            ({"medications": []}, "medications"),
            ({"diagnosis": "   "}, "diagnosis"),
            ({"expiryDate": "2001-01-01"}, "expiryDate"),
            ({"expiryDate": "someday"}, "expiryDate"),
            (
                {"medications": [{"name": "Amoxicillin", "dosage": "", "frequency": "daily"}]},
                "medications -> 0 -> dosage",
            ),
        ],
    )
    def test_rejects_invalid_fields(self, overrides, field):
        with pytest.raises(ValidationError) as exc_info:
            validate_payload(prescription_payload("patient-1", **overrides))
        assert field in [d["field"] for d in exc_info.value.details]

    def test_missing_field_reported_without_values(self):
        body = prescription_payload("patient-1")
        del body["diagnosis"]
        with pytest.raises(ValidationError) as exc_info:
            validate_payload(body)
        assert exc_info.value.details[0]["field"] == "diagnosis"
        assert "input" not in exc_info.value.details[0]

    def test_expiry_must_be_after_the_given_issue_time(self):
        issued_at = "2030-06-01T12:00:00Z"

        with pytest.raises(ValidationError):
            validate_payload(prescription_payload("patient-1", expiryDate=issued_at), now=issued_at)

        later = validate_payload(
            prescription_payload("patient-1", expiryDate="2030-06-01T12:00:01Z"), now=issued_at
        )
        assert later.expiry_date == "2030-06-01T12:00:01Z"


class TestCreate:
    def test_create_issues_signed_documented_prescription(self, services, people):
        doctor = identity(services, people["doctor"])

        created = services.workflow.create(prescription_payload(people["patient"]), doctor)

        assert created.doctor_id == doctor.id
        assert created.patient_id == people["patient"]
        assert created.is_issued
        assert created.digital_signature.signer_id == doctor.id
        assert services.workflow.signer.verify(created)

        conn = get_connection()
        try:
            stored = records.get_prescription(conn, created.id)
        finally:
            conn.close()
        assert stored == created

        events = services.audit.list_events(resource_id=created.id)
        assert [e.action for e in events] == ["prescription_created"]
        assert events[0].actor_id == doctor.id

    def test_expiry_checked_against_the_issue_date(self, services, people, monkeypatch):
        issued_at = "2030-06-01T12:00:00Z"
        monkeypatch.setattr("rxgate.app.services.workflow.utc_timestamp", lambda: issued_at)
        doctor = identity(services, people["doctor"])

        with pytest.raises(ValidationError):
            services.workflow.create(
                prescription_payload(people["patient"], expiryDate=issued_at), doctor
            )
        assert prescription_count() == 0

        created = services.workflow.create(
            prescription_payload(people["patient"], expiryDate="2030-06-02"), doctor
        )
        assert created.issue_date == issued_at
        assert created.created_at == issued_at

    def test_interaction_blocks_and_persists_nothing(self, services, people):
        doctor = identity(services, people["doctor"])

        with pytest.raises(InteractionDetected) as exc_info:
            services.workflow.create(
                prescription_payload(people["patient"], WARFARIN, ASPIRIN), doctor
            )

        assert len(exc_info.value.interactions) == 1
        assert prescription_count() == 0
        assert services.audit.list_events() == []

    @pytest.mark.parametrize("who", ["pharmacist", "nurse", "suspended_doctor"])
    def test_non_doctor_forbidden(self, services, people, who):
        with pytest.raises(Forbidden):
            services.workflow.create(
                prescription_payload(people["patient"]), identity(services, people[who])
            )
        assert prescription_count() == 0

    def test_unknown_patient_is_validation_error(self, services, people):
        with pytest.raises(ValidationError):
            services.workflow.create(
                prescription_payload("no-such-patient"), identity(services, people["doctor"])
            )

    def test_interaction_source_failure_fails_closed(self, services, people):
        class Down:
            def query(self, a, b):
                raise ConnectionError("interaction database unreachable")

        services.workflow.checker = InteractionChecker(Down())
        with pytest.raises(InteractionSourceError):
            services.workflow.create(
                prescription_payload(
                    people["patient"],
                    {"name": "Amoxicillin", "dosage": "500mg", "frequency": "daily"},
                    {"name": "Ibuprofen", "dosage": "200mg", "frequency": "daily"},
                ),
                identity(services, people["doctor"]),
            )
        assert prescription_count() == 0

    def test_render_failure_keeps_record_without_document(self, services, people):
        real = services.workflow.documents
        services.workflow.documents = FailingGenerator()
        doctor = identity(services, people["doctor"])

        with pytest.raises(RenderError) as exc_info:
            services.workflow.create(prescription_payload(people["patient"]), doctor)

        prescription_id = exc_info.value.context["prescription_id"]
        conn = get_connection()
        try:
            stored = records.get_prescription(conn, prescription_id)
        finally:
            conn.close()
        assert stored is not None
        assert stored.document_url is None
        assert stored.digital_signature is not None

        # Retry path completes the record
        services.workflow.documents = real
        regenerated = services.workflow.regenerate_document(prescription_id, doctor)
        assert regenerated.is_issued
        actions = [e.action for e in services.audit.list_events(resource_id=prescription_id)]
        assert actions == ["prescription_document_generated"]


class TestFetch:
    @pytest.fixture
    def issued(self, services, people):
        return services.workflow.create(
            prescription_payload(people["patient"]), identity(services, people["doctor"])
        )

    @pytest.mark.parametrize("who", ["doctor", "pharmacist", "patient"])
    def test_permitted_readers(self, services, people, issued, who):
        body = services.workflow.fetch(issued.id, identity(services, people[who]))

        assert body["id"] == issued.id
        assert body["patient"]["mrn"] == "MRN-0001"
        assert "ssn" not in body["patient"]
        assert body["doctor"]["last_name"] == "House"

    @pytest.mark.parametrize("who", ["other_patient", "nurse"])
    def test_unrelated_reader_forbidden(self, services, people, issued, who):
        with pytest.raises(Forbidden):
            services.workflow.fetch(issued.id, identity(services, people[who]))

    def test_every_read_audited(self, services, people, issued):
        reader = identity(services, people["pharmacist"])
        services.workflow.fetch(issued.id, reader)
        services.workflow.fetch(issued.id, reader)

        accessed = services.audit.list_events(
            resource_id=issued.id, action="prescription_accessed"
        )
        assert len(accessed) == 2
        assert accessed[0].event_id != accessed[1].event_id

    def test_step_up_required_for_enrolled_identity(self, services, people, issued):
        reader = identity(services, people["doctor_2fa"])

        with pytest.raises(StepUpFailed):
            services.workflow.fetch(issued.id, reader)
        with pytest.raises(StepUpFailed):
            services.workflow.fetch(issued.id, reader, otp="000000x")

        body = services.workflow.fetch(issued.id, reader, otp=generate_totp(TOTP_SECRET))
        assert body["id"] == issued.id

    def test_audit_write_failure_propagates(self, services, people, issued, monkeypatch):
        def unavailable(event):
            raise AuditWriteError("audit store unavailable", action=event.action)

        monkeypatch.setattr(services.workflow.audit, "record", unavailable)

        with pytest.raises(AuditWriteError):
            services.workflow.fetch(issued.id, identity(services, people["pharmacist"]))

    def test_step_up_checked_before_existence(self, services, people):
        with pytest.raises(StepUpFailed):
            services.workflow.fetch("missing", identity(services, people["doctor_2fa"]))

    def test_missing_prescription(self, services, people):
        with pytest.raises(NotFound):
            services.workflow.fetch("missing", identity(services, people["doctor"]))


class TestSend:
    def test_send_delivers_to_patient_and_audits(self, services, people, transport):
        doctor = identity(services, people["doctor"])
        issued = services.workflow.create(prescription_payload(people["patient"]), doctor)

        result = services.workflow.send(issued.id, identity(services, people["pharmacist"]))

        assert result["recipient"] == "jane.doe@example.com"
        assert [m["To"] for m in transport.outbox] == ["jane.doe@example.com"]
        sent = services.audit.list_events(resource_id=issued.id, action="prescription_sent")
        assert len(sent) == 1
        assert sent[0].detail == {"method": "email", "recipient": "jane.doe@example.com"}

    def test_delivers_the_stored_document(self, services, people, transport):
        issued = services.workflow.create(
            prescription_payload(people["patient"]), identity(services, people["doctor"])
        )

        services.workflow.send(issued.id, identity(services, people["doctor"]))

        attachment = next(transport.outbox[0].iter_attachments())
        assert attachment.get_filename() == f"prescription_{issued.id}.pdf"
        assert attachment.get_content().startswith(b"%PDF")

    def test_audit_write_failure_propagates(self, services, people, transport, monkeypatch):
        issued = services.workflow.create(
            prescription_payload(people["patient"]), identity(services, people["doctor"])
        )

        def unavailable(event):
            raise AuditWriteError("audit store unavailable", action=event.action)

        monkeypatch.setattr(services.workflow.audit, "record", unavailable)

        with pytest.raises(AuditWriteError):
            services.workflow.send(issued.id, identity(services, people["pharmacist"]))

    def test_send_without_document_is_not_ready(self, services, people, transport):
        prescription_id = store_unissued(services, people)

        with pytest.raises(NotReady):
            services.workflow.send(prescription_id, identity(services, people["doctor"]))
        assert transport.outbox == []

    def test_patient_cannot_send(self, services, people):
        issued = services.workflow.create(
            prescription_payload(people["patient"]), identity(services, people["doctor"])
        )
        with pytest.raises(Forbidden):
            services.workflow.send(issued.id, identity(services, people["patient"]))

    def test_missing_prescription(self, services, people):
        with pytest.raises(NotFound):
            services.workflow.send("missing", identity(services, people["doctor"]))


def test_prescription_model_is_immutable(services, people):
    issued = services.workflow.create(
        prescription_payload(people["patient"]), identity(services, people["doctor"])
    )
    assert isinstance(issued, Prescription)
    with pytest.raises(pydantic.ValidationError):
        issued.diagnosis = "something else"
