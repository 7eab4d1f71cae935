"""
Pytest configuration for rxgate tests.

This file is loaded by pytest before any test modules are imported.

The environment variables are set at module level (not in pytest_configure)
because they need to be available before any modules are imported during
pytest's collection phase: rxgate.app.config reads them once at import.
"""

import os
import tempfile

os.environ["ENV"] = "TEST"
os.environ.setdefault("JWT_SECRET_KEY", "test-secret-key")
os.environ.setdefault(
    "RXGATE_DOCUMENT_DIR", os.path.join(tempfile.gettempdir(), "rxgate-test-documents")
)

import pytest
from fastapi.testclient import TestClient

from rxgate.app.db import migrate as migrate_module
from rxgate.app.db import records
from rxgate.app.db.migrate import ensure_schema, get_connection
from rxgate.app.main import build_services, create_app
from rxgate.app.models import Role, StaffStatus
from rxgate.app.security.auth import hash_password
from rxgate.app.services.delivery import InMemoryTransport
from rxgate.app.services.interactions import StaticInteractionSource
from rxgate.tests.test_helpers import PASSWORD, TOTP_SECRET


@pytest.fixture
def temp_db(tmp_path, monkeypatch):
    """Fresh migrated SQLite database for one test.

    TestClient in newer starlette versions does not run the app lifespan
    unless used as a context manager, so the schema is applied here.
    """
    db_path = tmp_path / "rxgate.db"
    monkeypatch.setattr(migrate_module, "get_db_path", lambda: db_path)
    ensure_schema()
    return db_path


@pytest.fixture
def interaction_source():
    return StaticInteractionSource(
        [
            {
                "drugs": ["Warfarin", "Aspirin"],
                "severity": "major",
                "description": "Increased risk of bleeding",
            }
        ]
    )


@pytest.fixture
def transport():
    return InMemoryTransport()


@pytest.fixture
def services(temp_db, tmp_path, interaction_source, transport):
    return build_services(
        interaction_source=interaction_source,
        transport=transport,
        document_dir=str(tmp_path / "documents"),
    )


@pytest.fixture
def client(services):
    return TestClient(create_app(services))


@pytest.fixture
def people(temp_db):
    """Seed one identity per relevant role plus two patients."""
    password_hash = hash_password(PASSWORD)
    conn = get_connection()
    try:
        ids = {
            "doctor": records.create_staff(
                conn, "EMP-D1", "Gregory", "House", "house@example.org",
                Role.DOCTOR, password_hash,
            ),
            "doctor_2fa": records.create_staff(
                conn, "EMP-D2", "Lisa", "Cuddy", "cuddy@example.org",
                Role.DOCTOR, password_hash,
                two_factor_secret=TOTP_SECRET, two_factor_enabled=True,
            ),
            "suspended_doctor": records.create_staff(
                conn, "EMP-D3", "John", "Kildare", "kildare@example.org",
                Role.DOCTOR, password_hash, status=StaffStatus.SUSPENDED,
            ),
            "pharmacist": records.create_staff(
                conn, "EMP-P1", "Ruth", "Lane", "lane@example.org",
                Role.PHARMACIST, password_hash,
            ),
            "nurse": records.create_staff(
                conn, "EMP-N1", "Carla", "Espinosa", "espinosa@example.org",
                Role.NURSE, password_hash,
            ),
            "patient": records.create_patient(
                conn, "MRN-0001", "Jane", "Doe",
                email="jane.doe@example.com", date_of_birth="1980-04-02",
                ssn="123-45-6789", insurance_policy_number="POL-998877",
            ),
            "other_patient": records.create_patient(
                conn, "MRN-0002", "Richard", "Roe", email="richard.roe@example.com",
            ),
            "unreachable_patient": records.create_patient(
                conn, "MRN-0003", "Baby", "Doe",
            ),
        }
    finally:
        conn.close()
    return ids
