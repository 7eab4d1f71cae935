"""
Health check endpoints.
"""

from fastapi import APIRouter

from rxgate.app.db.migrate import check_db_security

router = APIRouter()


@router.get("/healthz")
async def health_check():
    """Liveness probe."""
    return {"ok": True}


@router.get("/v1/health/status")
def health_status():
    """Readiness details: database presence and hardening."""
    db = check_db_security()
    return {
        "status": "healthy" if db["db_exists"] else "degraded",
        "service": "rxgate",
        "database": db,
    }
