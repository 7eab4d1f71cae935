"""
Record operations for staff, patients and prescriptions.

Plain functions over a sqlite3 connection, in the same shape for every
table. Sensitive patient fields are encrypted here, explicitly, on the way in
and decrypted on the way out. Staff and patient writers exist only so the
issuance pipeline has identities to resolve; their management is external.
"""

import json
import sqlite3
from typing import Optional

from rxgate.app.db.migrate import get_connection
from rxgate.app.models import (
    DigitalSignature,
    Identity,
    MedicationEntry,
    Patient,
    Prescription,
    PrescriptionStatus,
    Role,
    StaffStatus,
)
from rxgate.app.services.c14n import json_c14n_v1
from rxgate.app.services.field_crypto import decrypt_field, encrypt_field
from rxgate.app.services.ids import generate_uuid7, utc_timestamp


# ============================================================================
# STAFF
# ============================================================================


def create_staff(
    conn: sqlite3.Connection,
    employee_id: str,
    first_name: str,
    last_name: str,
    email: str,
    role: Role,
    password_hash: str,
    two_factor_secret: Optional[str] = None,
    two_factor_enabled: bool = False,
    status: StaffStatus = StaffStatus.ACTIVE,
    staff_id: Optional[str] = None,
) -> str:
    """Insert a staff member and return its id."""
    staff_id = staff_id or generate_uuid7()
    conn.execute(
        """
        INSERT INTO staff (
            staff_id, employee_id, first_name, last_name, email, role,
            password_hash, two_factor_secret, two_factor_enabled, status,
            created_at_utc
        ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
        """,
        (
            staff_id,
            employee_id,
            first_name,
            last_name,
            email,
            Role(role).value,
            password_hash,
            two_factor_secret,
            1 if two_factor_enabled else 0,
            StaffStatus(status).value,
            utc_timestamp(),
        ),
    )
    return staff_id


def _staff_from_row(row: sqlite3.Row) -> Identity:
    return Identity(
        id=row["staff_id"],
        employee_id=row["employee_id"],
        role=Role(row["role"]),
        first_name=row["first_name"],
        last_name=row["last_name"],
        email=row["email"],
        credential_hash=row["password_hash"],
        two_factor_secret=row["two_factor_secret"],
        two_factor_enabled=bool(row["two_factor_enabled"]),
        status=StaffStatus(row["status"]),
    )


def get_staff(conn: sqlite3.Connection, staff_id: str) -> Optional[Identity]:
    row = conn.execute("SELECT * FROM staff WHERE staff_id = ?", (staff_id,)).fetchone()
    return _staff_from_row(row) if row else None


def get_staff_by_employee_id(
    conn: sqlite3.Connection, employee_id: str
) -> Optional[Identity]:
    row = conn.execute(
        "SELECT * FROM staff WHERE employee_id = ?", (employee_id,)
    ).fetchone()
    return _staff_from_row(row) if row else None


# ============================================================================
# PATIENTS
# ============================================================================


def create_patient(
    conn: sqlite3.Connection,
    mrn: str,
    first_name: str,
    last_name: str,
    email: Optional[str] = None,
    phone: Optional[str] = None,
    date_of_birth: Optional[str] = None,
    ssn: Optional[str] = None,
    insurance_policy_number: Optional[str] = None,
    patient_id: Optional[str] = None,
) -> str:
    """Insert a patient, encrypting SSN and policy number, and return its id."""
    patient_id = patient_id or generate_uuid7()
    conn.execute(
        """
        INSERT INTO patients (
            patient_id, mrn, first_name, last_name, date_of_birth, email,
            phone, ssn_enc, insurance_policy_enc, created_at_utc
        ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
        """,
        (
            patient_id,
            mrn,
            first_name,
            last_name,
            date_of_birth,
            email,
            phone,
            encrypt_field(ssn),
            encrypt_field(insurance_policy_number),
            utc_timestamp(),
        ),
    )
    return patient_id


def get_patient(conn: sqlite3.Connection, patient_id: str) -> Optional[Patient]:
    row = conn.execute(
        "SELECT * FROM patients WHERE patient_id = ?", (patient_id,)
    ).fetchone()
    if not row:
        return None
    return Patient(
        id=row["patient_id"],
        mrn=row["mrn"],
        first_name=row["first_name"],
        last_name=row["last_name"],
        date_of_birth=row["date_of_birth"],
        email=row["email"],
        phone=row["phone"],
        ssn=decrypt_field(row["ssn_enc"]),
        insurance_policy_number=decrypt_field(row["insurance_policy_enc"]),
    )


# ============================================================================
# PRESCRIPTIONS
# ============================================================================


def _medications_json(medications) -> str:
    return json_c14n_v1([m.model_dump(mode="json") for m in medications]).decode("utf-8")


def insert_prescription(conn: sqlite3.Connection, prescription: Prescription) -> None:
    conn.execute(
        """
        INSERT INTO prescriptions (
            prescription_id, patient_id, doctor_id, medications_json,
            diagnosis, issue_date, expiry_date, status, signature_json,
            document_url, created_at_utc, last_modified_utc
        ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
        """,
        (
            prescription.id,
            prescription.patient_id,
            prescription.doctor_id,
            _medications_json(prescription.medications),
            prescription.diagnosis,
            prescription.issue_date,
            prescription.expiry_date,
            prescription.status.value,
            None,
            None,
            prescription.created_at,
            prescription.last_modified,
        ),
    )


def get_prescription(
    conn: sqlite3.Connection, prescription_id: str
) -> Optional[Prescription]:
    row = conn.execute(
        "SELECT * FROM prescriptions WHERE prescription_id = ?", (prescription_id,)
    ).fetchone()
    if not row:
        return None

    signature = None
    if row["signature_json"]:
        signature = DigitalSignature(**json.loads(row["signature_json"]))

    return Prescription(
        id=row["prescription_id"],
        patient_id=row["patient_id"],
        doctor_id=row["doctor_id"],
        medications=tuple(
            MedicationEntry(**m) for m in json.loads(row["medications_json"])
        ),
        diagnosis=row["diagnosis"],
        issue_date=row["issue_date"],
        expiry_date=row["expiry_date"],
        status=PrescriptionStatus(row["status"]),
        digital_signature=signature,
        document_url=row["document_url"],
        created_at=row["created_at_utc"],
        last_modified=row["last_modified_utc"],
    )


def attach_signature(
    conn: sqlite3.Connection,
    prescription_id: str,
    signature: DigitalSignature,
    last_modified: str,
) -> None:
    """Attach the signature record; a prescription is signed at most once."""
    cursor = conn.execute(
        """
        UPDATE prescriptions
        SET signature_json = ?, last_modified_utc = ?
        WHERE prescription_id = ? AND signature_json IS NULL
        """,
        (
            json_c14n_v1(signature.model_dump()).decode("utf-8"),
            last_modified,
            prescription_id,
        ),
    )
    if cursor.rowcount != 1:
        raise sqlite3.IntegrityError(
            f"Prescription {prescription_id} missing or already signed"
        )


def attach_document(
    conn: sqlite3.Connection,
    prescription_id: str,
    document_url: str,
    last_modified: str,
) -> None:
    conn.execute(
        """
        UPDATE prescriptions
        SET document_url = ?, last_modified_utc = ?
        WHERE prescription_id = ?
        """,
        (document_url, last_modified, prescription_id),
    )


# ============================================================================
# IDENTITY STORE
# ============================================================================


class SqliteIdentityStore:
    """
    Resolves token subjects to identities.

    Staff are looked up first; a subject that matches a patient id resolves
    to a patient-portal identity (role 'patient', no second factor).
    """

    def get_identity(self, identity_id: str) -> Optional[Identity]:
        conn = get_connection()
        try:
            staff = get_staff(conn, identity_id)
            if staff:
                return staff

            row = conn.execute(
                "SELECT patient_id, first_name, last_name, email FROM patients "
                "WHERE patient_id = ?",
                (identity_id,),
            ).fetchone()
            if not row:
                return None
            return Identity(
                id=row["patient_id"],
                role=Role.PATIENT,
                first_name=row["first_name"],
                last_name=row["last_name"],
                email=row["email"],
            )
        finally:
            conn.close()

    def get_by_employee_id(self, employee_id: str) -> Optional[Identity]:
        conn = get_connection()
        try:
            return get_staff_by_employee_id(conn, employee_id)
        finally:
            conn.close()
