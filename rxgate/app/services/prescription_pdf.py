"""
Prescription PDF Generation Service

Renders an issued prescription into a fixed-layout PDF with ReportLab and
stores it under a filename keyed by the prescription id. Documents are built
in invariant mode, so the bytes depend only on the prescription, prescriber
and patient.
"""

from io import BytesIO
from pathlib import Path
from typing import List, Optional
from xml.sax.saxutils import escape

from reportlab.lib import colors
from reportlab.lib.enums import TA_CENTER
from reportlab.lib.pagesizes import letter
from reportlab.lib.styles import ParagraphStyle, getSampleStyleSheet
from reportlab.lib.units import inch
from reportlab.platypus import Paragraph, SimpleDocTemplate, Spacer

from rxgate.app import config
from rxgate.app.errors import RenderError
from rxgate.app.models import DocumentHandle, Identity, Patient, Prescription, Role
from rxgate.app.services.hashing import sha256_hex
from rxgate.app.services.ids import parse_timestamp


def prescriber_display_name(prescriber: Identity) -> str:
    """Doctors are shown with the 'Dr.' prefix; other roles by name only."""
    if prescriber.role == Role.DOCTOR:
        return f"Dr. {prescriber.first_name} {prescriber.last_name}"
    return prescriber.full_name


def _format_date(ts: str) -> str:
    try:
        return parse_timestamp(ts).strftime("%Y-%m-%d")
    except ValueError:
        return ts


def medication_line(medication) -> str:
    line = f"- {medication.name}: {medication.dosage}, {medication.frequency}"
    if medication.instructions:
        line += f" | Instructions: {medication.instructions}"
    return line


def signature_lines(prescription: Prescription, prescriber: Identity) -> List[str]:
    """Signature block, empty for unsigned prescriptions."""
    signature = prescription.digital_signature
    if signature is None:
        return []
    signer = f"Dr. {prescriber.last_name}" if prescriber.role == Role.DOCTOR else prescriber.full_name
    return [
        f"Digitally signed by {signer}",
        signature.signed_at,
    ]


def build_document_lines(
    prescription: Prescription, prescriber: Identity, patient: Patient
) -> List[str]:
    """Text content of the document, in layout order."""
    lines = [
        config.INSTITUTION_NAME,
        f"Date: {_format_date(prescription.issue_date)}",
        f"Patient: {patient.full_name}",
        f"Doctor: {prescriber_display_name(prescriber)}",
        "Prescribed Medications:",
    ]
    lines.extend(medication_line(m) for m in prescription.medications)
    lines.extend(signature_lines(prescription, prescriber))
    return lines


def generate_prescription_pdf(
    prescription: Prescription, prescriber: Identity, patient: Patient
) -> bytes:
    """
    Build the PDF bytes for a prescription.

    Returns:
        PDF bytes
    """
    buffer = BytesIO()

    doc = SimpleDocTemplate(
        buffer,
        pagesize=letter,
        rightMargin=72,
        leftMargin=72,
        topMargin=72,
        bottomMargin=18,
        title=f"Prescription {prescription.id}",
        invariant=1,
    )

    story = []
    styles = getSampleStyleSheet()

    title_style = ParagraphStyle(
        "Letterhead",
        parent=styles["Heading1"],
        fontSize=20,
        textColor=colors.HexColor("#1a1a1a"),
        spaceAfter=24,
        alignment=TA_CENTER,
        fontName="Helvetica-Bold",
    )

    heading_style = ParagraphStyle(
        "Section",
        parent=styles["Heading2"],
        fontSize=14,
        textColor=colors.HexColor("#2c5282"),
        spaceAfter=12,
        spaceBefore=20,
        fontName="Helvetica-Bold",
    )

    body_style = ParagraphStyle(
        "Body",
        parent=styles["Normal"],
        fontSize=12,
        spaceAfter=6,
        fontName="Helvetica",
    )

    signature_style = ParagraphStyle(
        "Signature",
        parent=styles["Normal"],
        fontSize=10,
        textColor=colors.grey,
        fontName="Helvetica",
    )

    header, date_line, patient_line, doctor_line, heading = build_document_lines(
        prescription, prescriber, patient
    )[:5]

    story.append(Paragraph(escape(header), title_style))
    for line in (date_line, patient_line, doctor_line):
        story.append(Paragraph(escape(line), body_style))

    story.append(Paragraph(escape(heading), heading_style))
    for medication in prescription.medications:
        story.append(Paragraph(escape(medication_line(medication)), body_style))

    block = signature_lines(prescription, prescriber)
    if block:
        story.append(Spacer(1, 0.5 * inch))
        for line in block:
            story.append(Paragraph(escape(line), signature_style))

    doc.build(story)

    pdf_bytes = buffer.getvalue()
    buffer.close()
    return pdf_bytes


class DocumentGenerator:
    """Renders prescriptions and stores the resulting artifacts."""

    def __init__(self, output_dir: Optional[str] = None):
        self.output_dir = Path(output_dir or config.DOCUMENT_DIR)

    def document_path(self, prescription_id: str) -> Path:
        return self.output_dir / f"prescription_{prescription_id}.pdf"

    def render(
        self, prescription: Prescription, prescriber: Identity, patient: Patient
    ) -> DocumentHandle:
        """
        Render and persist the prescription document.

        Raises:
            RenderError: If the PDF cannot be built or written (retryable)
        """
        try:
            pdf_bytes = generate_prescription_pdf(prescription, prescriber, patient)
        except Exception as e:
            raise RenderError(
                f"PDF rendering failed: {e}", prescription_id=prescription.id
            )

        path = self.document_path(prescription.id)
        try:
            self.output_dir.mkdir(parents=True, exist_ok=True)
            # Write-then-rename so readers never see a partial file
            tmp_path = path.with_suffix(".pdf.tmp")
            tmp_path.write_bytes(pdf_bytes)
            tmp_path.replace(path)
        except OSError as e:
            raise RenderError(
                f"Cannot write document {path}: {e}", prescription_id=prescription.id
            )

        return DocumentHandle(
            locator=str(path),
            filename=path.name,
            sha256=sha256_hex(pdf_bytes),
            size=len(pdf_bytes),
        )
