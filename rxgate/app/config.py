"""
Runtime configuration for the rxgate service.

All values come from the environment and are read once at import time.
"""

import os

# JWT
JWT_SECRET_KEY = os.getenv("JWT_SECRET_KEY", "dev-secret-key-change-in-production")
JWT_ALGORITHM = os.getenv("JWT_ALGORITHM", "HS256")
TOKEN_TTL_SECONDS = int(os.getenv("RXGATE_TOKEN_TTL_SECONDS", "3600"))

# TOTP step-up
TOTP_DIGITS = 6
TOTP_STEP_SECONDS = 30
TOTP_WINDOW = 1  # accepted steps either side of the current one

# Documents
DOCUMENT_DIR = os.getenv("RXGATE_DOCUMENT_DIR", "/tmp/rxgate/prescriptions")
INSTITUTION_NAME = os.getenv("RXGATE_INSTITUTION_NAME", "Hospital Management System")

# Drug interaction table (JSON list of {"drugs": [a, b], "severity", "description"})
INTERACTIONS_PATH = os.getenv("RXGATE_INTERACTIONS_PATH")

# Fernet key for patient field encryption (urlsafe base64, 32 bytes)
FIELD_KEY = os.getenv("RXGATE_FIELD_KEY")

# Mail transport
SMTP_HOST = os.getenv("RXGATE_SMTP_HOST", "localhost")
SMTP_PORT = int(os.getenv("RXGATE_SMTP_PORT", "587"))
SMTP_USER = os.getenv("RXGATE_SMTP_USER")
SMTP_PASSWORD = os.getenv("RXGATE_SMTP_PASSWORD")
SMTP_SENDER = os.getenv("RXGATE_SMTP_SENDER", "prescriptions@localhost")
SMTP_STARTTLS = os.getenv("RXGATE_SMTP_STARTTLS", "1") == "1"
SMTP_TIMEOUT_SECONDS = float(os.getenv("RXGATE_SMTP_TIMEOUT", "10"))

# Logging
AUDIT_LOG_PATH = os.getenv("RXGATE_AUDIT_LOG")
ERROR_LOG_PATH = os.getenv("RXGATE_ERROR_LOG")
LOG_LEVEL = os.getenv("RXGATE_LOG_LEVEL", "INFO")
