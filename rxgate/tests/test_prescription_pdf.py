"""
Document generation tests: layout content, determinism, failure mapping.
"""

import pytest

from rxgate.app import config
from rxgate.app.errors import RenderError
from rxgate.app.models import (
    DigitalSignature,
    Identity,
    MedicationEntry,
    Patient,
    Prescription,
    Role,
)
from rxgate.app.services.prescription_pdf import (
    DocumentGenerator,
    build_document_lines,
    generate_prescription_pdf,
)


@pytest.fixture
def doctor():
    return Identity(id="staff-1", role=Role.DOCTOR, first_name="Gregory", last_name="House")


@pytest.fixture
def patient():
    return Patient(id="patient-1", mrn="MRN-1", first_name="Jane", last_name="Doe")


@pytest.fixture
def prescription():
    return Prescription(
        id="rx-0001",
        patient_id="patient-1",
        doctor_id="staff-1",
        medications=(
            MedicationEntry(
                name="Amoxicillin",
                dosage="500mg",
                frequency="three times daily",
                instructions="Take with food",
            ),
            MedicationEntry(name="Ibuprofen", dosage="200mg", frequency="as needed"),
        ),
        diagnosis="Acute otitis media",
        issue_date="2030-03-04T10:00:00Z",
        expiry_date="2030-04-04T00:00:00Z",
        created_at="2030-03-04T10:00:00Z",
        last_modified="2030-03-04T10:00:00Z",
    )


@pytest.fixture
def signed(prescription):
    return prescription.model_copy(
        update={
            "digital_signature": DigitalSignature(
                signer_id="staff-1",
                signed_at="2030-03-04T10:00:01Z",
                key_id="key-1",
                algorithm="ECDSA_SHA_256",
                content_hash="0" * 64,
                signature="c2ln",
            )
        }
    )


def test_layout_lines(signed, doctor, patient):
    lines = build_document_lines(signed, doctor, patient)

    assert lines == [
        config.INSTITUTION_NAME,
        "Date: 2030-03-04",
        "Patient: Jane Doe",
        "Doctor: Dr. Gregory House",
        "Prescribed Medications:",
        "- Amoxicillin: 500mg, three times daily | Instructions: Take with food",
        "- Ibuprofen: 200mg, as needed",
        "Digitally signed by Dr. House",
        "2030-03-04T10:00:01Z",
    ]


def test_unsigned_prescription_has_no_signature_block(prescription, doctor, patient):
    lines = build_document_lines(prescription, doctor, patient)
    assert not any(line.startswith("Digitally signed") for line in lines)


def test_pdf_is_deterministic(signed, doctor, patient):
    first = generate_prescription_pdf(signed, doctor, patient)
    second = generate_prescription_pdf(signed, doctor, patient)

    assert first.startswith(b"%PDF")
    assert first == second


def test_render_writes_file_keyed_by_id(tmp_path, signed, doctor, patient):
    generator = DocumentGenerator(str(tmp_path))

    handle = generator.render(signed, doctor, patient)

    path = tmp_path / "prescription_rx-0001.pdf"
    assert handle.locator == str(path)
    assert handle.filename == "prescription_rx-0001.pdf"
    assert path.read_bytes()[:4] == b"%PDF"
    assert handle.size == path.stat().st_size
    assert not list(tmp_path.glob("*.tmp"))


def test_render_failure_is_retryable_render_error(tmp_path, signed, doctor, patient):
    blocker = tmp_path / "not-a-directory"
    blocker.write_text("x")
    generator = DocumentGenerator(str(blocker / "documents"))

    with pytest.raises(RenderError) as exc_info:
        generator.render(signed, doctor, patient)

    body = exc_info.value.to_detail()
    assert body["error"] == "render_failed"
    assert body["prescription_id"] == "rx-0001"
    assert body["retryable"] is True
