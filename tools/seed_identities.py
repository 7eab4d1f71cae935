#!/usr/bin/env python3
"""
seed_identities.py

Creates staff and patient records so the issuance pipeline can be exercised
locally. Staff and patient management proper lives outside rxgate; this is
only a bootstrap.

Usage:
  python tools/seed_identities.py staff --employee-id EMP-1 --role doctor \
      --first-name Gregory --last-name House --email house@example.org
  python tools/seed_identities.py patient --mrn MRN-1 \
      --first-name Jane --last-name Doe --email jane.doe@example.com

Staff passwords are read from RXGATE_SEED_PASSWORD (never from argv).
--totp enrols a second factor and prints its base32 secret once.
--token prints a bearer token for the new identity.
"""

import argparse
import base64
import os
import sys

_REPO_ROOT = os.path.dirname(os.path.dirname(os.path.abspath(__file__)))
if _REPO_ROOT not in sys.path:
    sys.path.insert(0, _REPO_ROOT)

from rxgate.app.db import records  # noqa: E402
from rxgate.app.db.migrate import ensure_schema, get_connection  # noqa: E402
from rxgate.app.models import Role  # noqa: E402
from rxgate.app.security.auth import AuthGateway, hash_password  # noqa: E402


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Seed rxgate identities")
    sub = parser.add_subparsers(dest="kind", required=True)

    staff = sub.add_parser("staff")
    staff.add_argument("--employee-id", required=True)
    staff.add_argument("--role", required=True, choices=[r.value for r in Role if r != Role.PATIENT])
    staff.add_argument("--first-name", required=True)
    staff.add_argument("--last-name", required=True)
    staff.add_argument("--email", required=True)
    staff.add_argument("--totp", action="store_true", help="Enable a TOTP second factor")

    patient = sub.add_parser("patient")
    patient.add_argument("--mrn", required=True)
    patient.add_argument("--first-name", required=True)
    patient.add_argument("--last-name", required=True)
    patient.add_argument("--email")
    patient.add_argument("--date-of-birth")

    for p in (staff, patient):
        p.add_argument("--token", action="store_true", help="Print a bearer token")
    return parser


def main(argv=None) -> int:
    args = _build_parser().parse_args(argv)
    ensure_schema()

    conn = get_connection()
    try:
        if args.kind == "staff":
            password = os.environ.get("RXGATE_SEED_PASSWORD")
            if not password:
                print("ERROR: set RXGATE_SEED_PASSWORD", file=sys.stderr)
                return 2
            secret = base64.b32encode(os.urandom(20)).decode("ascii") if args.totp else None
            identity_id = records.create_staff(
                conn,
                args.employee_id,
                args.first_name,
                args.last_name,
                args.email,
                Role(args.role),
                hash_password(password),
                two_factor_secret=secret,
                two_factor_enabled=bool(secret),
            )
            if secret:
                print(f"totp_secret: {secret}")
        else:
            identity_id = records.create_patient(
                conn,
                args.mrn,
                args.first_name,
                args.last_name,
                email=args.email,
                date_of_birth=args.date_of_birth,
            )
    finally:
        conn.close()

    print(f"id: {identity_id}")
    if args.token:
        gateway = AuthGateway(records.SqliteIdentityStore())
        print(f"token: {gateway.issue_token(gateway.identity_store.get_identity(identity_id))}")
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
