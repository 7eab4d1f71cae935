"""
Error taxonomy for the prescription pipeline.

Every failure the pipeline can produce is an RxGateError carrying the HTTP
status it maps to and a stable machine-readable error code. The FastAPI
exception handlers in main.py turn these into response bodies; services raise
them without knowing anything about HTTP.
"""

from typing import Any, Dict, List, Optional


class RxGateError(Exception):
    """Base class for pipeline failures."""

    status_code = 500
    error = "internal_error"
    # 5xx messages are never shown to clients verbatim
    public_message = "An error occurred processing your request"

    def __init__(self, message: Optional[str] = None, **context: Any):
        super().__init__(message or self.public_message)
        self.message = message or self.public_message
        self.context = context

    def to_detail(self) -> Dict[str, Any]:
        """Client-safe response body."""
        if self.status_code >= 500:
            return {"error": self.error, "message": self.public_message}
        return {"error": self.error, "message": self.message}


class Unauthenticated(RxGateError):
    status_code = 401
    error = "unauthenticated"


class Unauthorized(RxGateError):
    """No identity was attached to the request at all."""

    status_code = 401
    error = "unauthorized"


class StepUpFailed(RxGateError):
    status_code = 401
    error = "step_up_failed"


class Forbidden(RxGateError):
    status_code = 403
    error = "forbidden"


class ValidationError(RxGateError):
    status_code = 400
    error = "validation_error"

    def __init__(self, message: str, details: Optional[List[Dict[str, Any]]] = None):
        super().__init__(message)
        self.details = details or []

    def to_detail(self) -> Dict[str, Any]:
        body = super().to_detail()
        if self.details:
            body["details"] = self.details
        return body


class InteractionDetected(RxGateError):
    status_code = 400
    error = "interaction_detected"

    def __init__(self, interactions: List[Any]):
        super().__init__("Potential drug interactions detected")
        self.interactions = interactions

    def to_detail(self) -> Dict[str, Any]:
        body = super().to_detail()
        body["interactions"] = [i.model_dump() for i in self.interactions]
        return body


class NotFound(RxGateError):
    status_code = 404
    error = "not_found"


class NotReady(RxGateError):
    """Prescription has no generated document yet."""

    status_code = 409
    error = "not_ready"


class RenderError(RxGateError):
    """Document generation failed; safe for the caller to retry."""

    error = "render_failed"
    public_message = "Prescription document could not be generated; retry later"

    def to_detail(self) -> Dict[str, Any]:
        body = super().to_detail()
        if "prescription_id" in self.context:
            body["prescription_id"] = self.context["prescription_id"]
            body["retryable"] = True
        return body


class DeliveryError(RxGateError):
    error = "delivery_failed"
    public_message = "Prescription could not be delivered"


class InteractionSourceError(RxGateError):
    error = "interaction_source_unavailable"
    public_message = "Drug interaction check is unavailable"


class AuditWriteError(RxGateError):
    error = "audit_write_failed"
