"""
config.py - Device Service Configuration
"""

import os
import secrets

# ─────────────────────────────────────────────
# STORAGE
# ─────────────────────────────────────────────
DATA_DIR        = os.environ.get("HEARTID_DATA_DIR", os.path.join(os.path.expanduser("~"), ".heartid"))
DB_PATH         = os.environ.get("HEARTID_DB_PATH", os.path.join(DATA_DIR, "heartid.db"))
TEMPLATE_FILE   = "template.json"
DEVICE_KEY_FILE = "device.key"
SALT_FILE       = "device.salt"

# When set, the template key is derived from this passphrase instead of a
# random key file.
PASSPHRASE = os.environ.get("HEARTID_PASSPHRASE")

# ─────────────────────────────────────────────
# DECISION POLICY
# ─────────────────────────────────────────────
SECURITY_LEVEL  = os.environ.get("HEARTID_SECURITY_LEVEL", "MEDIUM")
MAX_FAILURES    = int(os.environ.get("HEARTID_MAX_FAILURES", "3"))
LOCKOUT_MINUTES = tuple(
    int(m) for m in os.environ.get("HEARTID_LOCKOUT_MINUTES", "10,20,40,90,360,1440,2880").split(",")
    if m.strip()
)
RETRY_BAND      = float(os.environ.get("HEARTID_RETRY_BAND", "0.20"))

# ─────────────────────────────────────────────
# JWT CONFIG (authentication grants)
# ─────────────────────────────────────────────
JWT_SECRET_KEY = os.environ.get("JWT_SECRET", secrets.token_hex(32))
JWT_ALGORITHM  = os.environ.get("JWT_ALGORITHM", "HS256")
JWT_EXPIRY_SEC = int(os.environ.get("JWT_EXPIRY_SEC", "120"))
GRANT_SCOPE    = "heartid-grant"
NONCE_TTL_SEC  = int(os.environ.get("NONCE_TTL_SEC", "60"))

# ─────────────────────────────────────────────
# SERVER
# ─────────────────────────────────────────────
SERVER_HOST = os.environ.get("HEARTID_HOST", "127.0.0.1")
SERVER_PORT = int(os.environ.get("HEARTID_PORT", "5000"))
DEBUG       = os.environ.get("HEARTID_DEBUG", "0") == "1"

# ─────────────────────────────────────────────
# TLS - set HEARTID_USE_HTTPS=1 and provide a certificate pair
# ─────────────────────────────────────────────
USE_HTTPS = os.environ.get("HEARTID_USE_HTTPS", "0") == "1"
CERT_FILE = os.environ.get("HEARTID_CERT_FILE", os.path.join(DATA_DIR, "certs", "server.crt"))
KEY_FILE  = os.environ.get("HEARTID_KEY_FILE", os.path.join(DATA_DIR, "certs", "server.key"))
