"""Baseline: prescription issuance schema

Revision ID: b3f1c2d4e5a6
Revises:
Create Date: 2026-10-17 00:00:00.000000

Creates the tables read and written by the issuance pipeline:
- staff, patients: identity and contact data owned by external management,
  mirrored here so the pipeline can resolve identities and addresses
- prescriptions: issued prescriptions (medications/signature as canonical JSON)
- audit_events: append-only, hash-chained audit ledger
- signing_keys: ECDSA P-256 keys used for prescription signatures

Key design rules that MUST NOT change:
  - audit_events is append-only (UPDATE / DELETE rejected by trigger on SQLite)
  - event_hash is computed over: prev_event_hash || occurred_at_utc ||
    resource_type || resource_id || action || detail_json
  - detail stored as TEXT (not JSONB) to keep hash canonicalization stable
"""

from typing import Sequence, Union

import sqlalchemy as sa
from alembic import op

# revision identifiers, used by Alembic.
revision: str = "b3f1c2d4e5a6"
down_revision: Union[str, Sequence[str], None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    op.create_table(
        "staff",
        sa.Column("staff_id", sa.Text, primary_key=True),
        sa.Column("employee_id", sa.Text, nullable=False, unique=True),
        sa.Column("first_name", sa.Text, nullable=False),
        sa.Column("last_name", sa.Text, nullable=False),
        sa.Column("email", sa.Text, nullable=False, unique=True),
        sa.Column("role", sa.Text, nullable=False),
        sa.Column("password_hash", sa.Text, nullable=False),
        sa.Column("two_factor_secret", sa.Text),
        sa.Column("two_factor_enabled", sa.Integer, nullable=False, server_default="0"),
        sa.Column("status", sa.Text, nullable=False, server_default="active"),
        sa.Column("created_at_utc", sa.Text, nullable=False),
    )

    op.create_table(
        "patients",
        sa.Column("patient_id", sa.Text, primary_key=True),
        sa.Column("mrn", sa.Text, nullable=False, unique=True),
        sa.Column("first_name", sa.Text, nullable=False),
        sa.Column("last_name", sa.Text, nullable=False),
        sa.Column("date_of_birth", sa.Text),
        sa.Column("email", sa.Text),
        sa.Column("phone", sa.Text),
        # Fernet tokens, encrypted by the persistence adapter
        sa.Column("ssn_enc", sa.Text),
        sa.Column("insurance_policy_enc", sa.Text),
        sa.Column("created_at_utc", sa.Text, nullable=False),
    )

    op.create_table(
        "prescriptions",
        sa.Column("prescription_id", sa.Text, primary_key=True),
        sa.Column("patient_id", sa.Text, nullable=False),
        sa.Column("doctor_id", sa.Text, nullable=False),
        sa.Column("medications_json", sa.Text, nullable=False),
        sa.Column("diagnosis", sa.Text, nullable=False),
        sa.Column("issue_date", sa.Text, nullable=False),
        sa.Column("expiry_date", sa.Text, nullable=False),
        sa.Column("status", sa.Text, nullable=False, server_default="active"),
        sa.Column("signature_json", sa.Text),
        sa.Column("document_url", sa.Text),
        sa.Column("created_at_utc", sa.Text, nullable=False),
        sa.Column("last_modified_utc", sa.Text, nullable=False),
        sa.ForeignKeyConstraint(["patient_id"], ["patients.patient_id"]),
        sa.ForeignKeyConstraint(["doctor_id"], ["staff.staff_id"]),
    )
    op.create_index("idx_prescriptions_patient", "prescriptions", ["patient_id"])
    op.create_index("idx_prescriptions_doctor", "prescriptions", ["doctor_id"])

    op.create_table(
        "audit_events",
        sa.Column("seq", sa.Integer, primary_key=True, autoincrement=True),
        sa.Column("event_id", sa.Text, nullable=False, unique=True),
        sa.Column("occurred_at_utc", sa.Text, nullable=False),
        sa.Column("actor_id", sa.Text),
        sa.Column("resource_type", sa.Text, nullable=False),
        sa.Column("resource_id", sa.Text, nullable=False),
        sa.Column("action", sa.Text, nullable=False),
        sa.Column("detail_json", sa.Text, nullable=False),
        sa.Column("prev_event_hash", sa.Text),
        sa.Column("event_hash", sa.Text, nullable=False),
    )
    op.create_index(
        "idx_audit_events_resource", "audit_events", ["resource_type", "resource_id"]
    )
    op.create_index("idx_audit_events_action", "audit_events", ["action"])
    op.create_index("idx_audit_events_actor", "audit_events", ["actor_id"])

    op.create_table(
        "signing_keys",
        sa.Column("key_id", sa.Text, primary_key=True),
        sa.Column("private_key_pem", sa.Text),
        sa.Column("public_jwk_json", sa.Text, nullable=False),
        sa.Column("status", sa.Text, nullable=False),
        sa.Column("created_at_utc", sa.Text, nullable=False),
    )
    op.create_index("idx_signing_keys_status", "signing_keys", ["status"])

    if op.get_bind().dialect.name == "sqlite":
        op.execute(
            """
            CREATE TRIGGER audit_events_no_update
            BEFORE UPDATE ON audit_events
            BEGIN
                SELECT RAISE(ABORT, 'audit_events is append-only');
            END
            """
        )
        op.execute(
            """
            CREATE TRIGGER audit_events_no_delete
            BEFORE DELETE ON audit_events
            BEGIN
                SELECT RAISE(ABORT, 'audit_events is append-only');
            END
            """
        )


def downgrade() -> None:
    if op.get_bind().dialect.name == "sqlite":
        op.execute("DROP TRIGGER IF EXISTS audit_events_no_delete")
        op.execute("DROP TRIGGER IF EXISTS audit_events_no_update")
    op.drop_table("signing_keys")
    op.drop_table("audit_events")
    op.drop_table("prescriptions")
    op.drop_table("patients")
    op.drop_table("staff")
