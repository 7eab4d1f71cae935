"""
Prescription endpoints.

Security Model:
- JWT authentication required on every endpoint
- Issuing and regenerating documents: doctor
- Sending: doctor or pharmacist
- Reading: doctor, pharmacist, or the patient the prescription belongs to;
  identities with a second factor must include a current one-time code
"""

from typing import Any, Dict, Optional

from fastapi import APIRouter, Body, Depends, Request, status

from rxgate.app.models import (
    Identity,
    PrescriptionCreateRequest,
    Role,
    StepUpRequest,
)
from rxgate.app.security.auth import get_current_identity, require_role
from rxgate.app.services.workflow import PrescriptionWorkflow

router = APIRouter(prefix="/v1/prescriptions", tags=["prescriptions"])


def get_workflow(request: Request) -> PrescriptionWorkflow:
    return request.app.state.services.workflow


@router.post("", status_code=status.HTTP_201_CREATED)
def create_prescription(
    payload: PrescriptionCreateRequest,
    identity: Identity = Depends(require_role(Role.DOCTOR)),
    workflow: PrescriptionWorkflow = Depends(get_workflow),
) -> Dict[str, Any]:
    """
    Issue a prescription.

    Blocked with 400 and the interaction list when any pair of medications
    interacts; nothing is stored in that case. A 500 'render_failed' body
    carries the prescription_id of a stored record whose document can be
    regenerated.
    """
    prescription = workflow.create(payload, identity)
    return prescription.model_dump(mode="json")


@router.get("/{prescription_id}")
def get_prescription(
    prescription_id: str,
    step_up: Optional[StepUpRequest] = Body(default=None),
    identity: Identity = Depends(get_current_identity),
    workflow: PrescriptionWorkflow = Depends(get_workflow),
) -> Dict[str, Any]:
    """Read a prescription with patient and prescriber expanded."""
    otp = step_up.otp if step_up else None
    return workflow.fetch(prescription_id, identity, otp)


@router.post("/{prescription_id}/send")
def send_prescription(
    prescription_id: str,
    identity: Identity = Depends(require_role(Role.DOCTOR, Role.PHARMACIST)),
    workflow: PrescriptionWorkflow = Depends(get_workflow),
) -> Dict[str, Any]:
    """Email the prescription document to the patient."""
    return workflow.send(prescription_id, identity)


@router.post("/{prescription_id}/document")
def regenerate_document(
    prescription_id: str,
    identity: Identity = Depends(require_role(Role.DOCTOR)),
    workflow: PrescriptionWorkflow = Depends(get_workflow),
) -> Dict[str, Any]:
    """Generate the document for a prescription stored without one."""
    prescription = workflow.regenerate_document(prescription_id, identity)
    return prescription.model_dump(mode="json")
