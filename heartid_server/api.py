"""
api.py - Flask Device Service

Exposes the authentication engine on the local device:

  POST /api/enroll          capture → template (encrypted at rest)
  POST /api/authenticate    capture → decision (+ single-use grant token)
  POST /api/grant/redeem    exchange a grant once
  GET  /api/status          enrollment + lockout status
  DELETE /api/profile       forget the enrolled profile
  GET  /api/logs            audit trail (never biometric data)
"""

import os
import time
import uuid
import logging
import threading
from functools import wraps

from flask import Flask, request, jsonify, g, has_request_context
import jwt as pyjwt

from heartid_common.errors import StoreError
from heartid_common.models import LockoutPolicy, SecurityLevel, samples_from_dicts
from heartid_common.utils import format_remaining, mask_sensitive
from heartid_engine.crypto import FileCredentialStore, PassphraseCredentialStore
from heartid_engine.service import AuthenticationService
from heartid_engine.store import TemplateStore
from heartid_server import database as db
from heartid_server.config import (
    DATA_DIR, TEMPLATE_FILE, DEVICE_KEY_FILE, SALT_FILE, PASSPHRASE,
    SECURITY_LEVEL, MAX_FAILURES, LOCKOUT_MINUTES, RETRY_BAND,
    JWT_SECRET_KEY, JWT_ALGORITHM, JWT_EXPIRY_SEC, GRANT_SCOPE, NONCE_TTL_SEC,
    SERVER_HOST, SERVER_PORT, CERT_FILE, KEY_FILE, DEBUG, USE_HTTPS,
)

logger = logging.getLogger("heartid_api")

app = Flask(__name__)
app.config["HEARTID_DATA_DIR"] = DATA_DIR

used_nonces: dict = {}
_nonce_lock = threading.Lock()

_services: dict = {}
_services_lock = threading.Lock()
# One lock per data dir; serialises read-decide-write of the persisted AttemptState.
_attempt_locks: dict = {}

ERROR_STATUS = {
    "locked_out": 423,
    "not_enrolled": 404,
    "template_corrupted": 409,
    "unsupported_template": 409,
    "validation_failed": 422,
    "storage_failure": 503,
}


# ─── SERVICE WIRING ───────────────────────────────────────────────────────────

def _result_detail(result):
    return getattr(result, "reason", None) or getattr(result, "message", None)


def _audit_listener(event: dict):
    """Turn engine events into audit rows."""
    kind = event["type"]
    ip = client_ip() if has_request_context() else ""
    now = int(time.time())
    if kind == "enrollment.completed":
        db.log_event("enroll", now, outcome="enrolled", client_ip=ip)
    elif kind == "enrollment.failed":
        db.log_event("enroll_rejected", now, outcome=event["code"],
                     detail=event["message"], client_ip=ip)
    elif kind == "authentication.completed":
        result = event["result"]
        db.log_event(f"auth_{result.status}", now,
                     outcome=getattr(result, "code", result.status),
                     confidence=getattr(result, "confidence", None),
                     detail=_result_detail(result), client_ip=ip)
    elif kind == "profile.cleared":
        db.log_event("reset", now, outcome="cleared", client_ip=ip)


def _build_service(data_dir: str) -> AuthenticationService:
    if PASSPHRASE:
        credentials = PassphraseCredentialStore(PASSPHRASE.encode(), os.path.join(data_dir, SALT_FILE))
    else:
        credentials = FileCredentialStore(os.path.join(data_dir, DEVICE_KEY_FILE))
    store = TemplateStore(os.path.join(data_dir, TEMPLATE_FILE), credentials)
    policy = LockoutPolicy(
        max_failures=MAX_FAILURES,
        periods=tuple(m * 60.0 for m in LOCKOUT_MINUTES),
        retry_band=RETRY_BAND,
    )
    service = AuthenticationService(store, policy)
    service.subscribe(_audit_listener)
    logger.info(f"Authentication service ready (data dir: {data_dir})")
    return service


def get_service() -> AuthenticationService:
    data_dir = app.config["HEARTID_DATA_DIR"]
    with _services_lock:
        if data_dir not in _services:
            _services[data_dir] = _build_service(data_dir)
        return _services[data_dir]


def attempt_lock() -> threading.Lock:
    data_dir = app.config["HEARTID_DATA_DIR"]
    with _services_lock:
        return _attempt_locks.setdefault(data_dir, threading.Lock())


# ─── HELPERS ──────────────────────────────────────────────────────────────────

def _purge_expired_nonces():
    now = time.time()
    expired = [k for k, v in used_nonces.items() if v < now]
    for k in expired:
        del used_nonces[k]


def _issue_token(subject: str, **claims) -> str:
    now = int(time.time())
    payload = {
        "sub": subject,
        "iat": now,
        "exp": now + JWT_EXPIRY_SEC,
        "nonce": str(uuid.uuid4()),
        "scope": GRANT_SCOPE,
        **claims,
    }
    return pyjwt.encode(payload, JWT_SECRET_KEY, algorithm=JWT_ALGORITHM)


def _verify_token(token: str) -> dict:
    payload = pyjwt.decode(token, JWT_SECRET_KEY, algorithms=[JWT_ALGORITHM])
    if payload.get("scope") != GRANT_SCOPE:
        raise ValueError("Token is not an authentication grant.")
    nonce = payload.get("nonce", "")
    with _nonce_lock:
        _purge_expired_nonces()
        if nonce in used_nonces:
            raise ValueError("Replay detected: grant already redeemed.")
        used_nonces[nonce] = payload["exp"] + NONCE_TTL_SEC
    return payload


def require_jwt(f):
    @wraps(f)
    def decorated(*args, **kwargs):
        auth_header = request.headers.get("Authorization", "")
        if not auth_header.startswith("Bearer "):
            return jsonify({"error": "Missing or malformed Authorization header"}), 401
        token = auth_header[7:]
        try:
            g.grant = _verify_token(token)
        except pyjwt.ExpiredSignatureError:
            return jsonify({"error": "Token expired"}), 401
        except (pyjwt.InvalidTokenError, ValueError) as e:
            return jsonify({"error": f"Token invalid: {str(e)}"}), 401
        return f(*args, **kwargs)
    return decorated


def client_ip() -> str:
    return request.remote_addr or ""


def _json_body():
    data = request.get_json(force=True, silent=True)
    return data if isinstance(data, dict) else None


def _parse_samples(data: dict):
    items = data.get("samples")
    if not isinstance(items, list):
        raise ValueError("samples must be a list of {value, offset} objects")
    try:
        return samples_from_dicts(items)
    except (KeyError, TypeError, ValueError) as e:
        raise ValueError(f"malformed sample: {e}") from e


def _parse_level(data: dict) -> SecurityLevel:
    name = data.get("security_level") or SECURITY_LEVEL
    if not isinstance(name, str):
        raise ValueError("security_level must be a string")
    return SecurityLevel.from_name(name)


def _http_status(result) -> int:
    if result.status == "error":
        return ERROR_STATUS.get(result.code, 500)
    return 200


# ─── API ROUTES ───────────────────────────────────────────────────────────────

@app.route("/api/health", methods=["GET"])
def health():
    return jsonify({"status": "ok", "timestamp": int(time.time())}), 200


@app.route("/api/status", methods=["GET"])
def status():
    now = time.time()
    state = db.load_attempt_state()
    info = get_service().status(state, now)
    info["security_level"] = SECURITY_LEVEL.upper()
    if info["locked"]:
        info["lockout_remaining"] = format_remaining(info["locked_until"] - now)
    return jsonify(info), 200


@app.route("/api/enroll", methods=["POST"])
def enroll():
    data = _json_body()
    if data is None:
        return jsonify({"error": "JSON object body required"}), 400
    try:
        samples = _parse_samples(data)
    except ValueError as e:
        return jsonify({"error": str(e)}), 400
    logger.debug(f"[ENROLL] request {mask_sensitive(data)}")

    service = get_service()
    with attempt_lock():
        state = db.load_attempt_state()
        result = service.enroll(samples, state=state)
        if result.success:
            db.save_attempt_state(result.state, int(time.time()))

    body = result.to_dict()
    if result.success:
        logger.info(f"[ENROLL] Template stored from {client_ip()}")
        return jsonify(body), 201
    if result.code == "locked_out":
        body["locked_until"] = state.lockout_until
    logger.info(f"[ENROLL] Rejected ({result.code}) from {client_ip()}")
    return jsonify(body), ERROR_STATUS.get(result.code, 500)


@app.route("/api/authenticate", methods=["POST"])
def authenticate():
    data = _json_body()
    if data is None:
        return jsonify({"error": "JSON object body required"}), 400
    try:
        samples = _parse_samples(data)
        level = _parse_level(data)
    except ValueError as e:
        return jsonify({"error": str(e)}), 400
    logger.debug(f"[AUTH] request {mask_sensitive(data)}")

    service = get_service()
    now = time.time()
    with attempt_lock():
        state = db.load_attempt_state()
        outcome = service.authenticate(samples, state, level, now)
        if outcome.state != state:
            db.save_attempt_state(outcome.state, int(now))

    body = outcome.to_dict()
    body["security_level"] = level.name
    result = outcome.result
    if result.is_approved:
        body["grant"] = _issue_token(db.DEFAULT_SLOT, outcome="approved")
        body["expires_in"] = JWT_EXPIRY_SEC
    logger.info(f"[AUTH] {result.status.upper()} ({level.name}) from {client_ip()}")
    return jsonify(body), _http_status(result)


@app.route("/api/grant/redeem", methods=["POST"])
@require_jwt
def redeem_grant():
    grant = g.grant
    logger.info(f"[GRANT] Redeemed for '{grant['sub']}' from {client_ip()}")
    return jsonify({
        "outcome": grant.get("outcome"),
        "sub": grant["sub"],
        "issued_at": grant.get("iat"),
    }), 200


@app.route("/api/profile", methods=["DELETE"])
def delete_profile():
    now = time.time()
    with attempt_lock():
        state = db.load_attempt_state()
        if state.is_locked(now):
            return jsonify({
                "error": "Profile cannot be cleared during a lockout",
                "code": "locked_out",
                "locked_until": state.lockout_until,
            }), 423
        try:
            get_service().reset()
        except StoreError as e:
            logger.error(f"[DELETE] Could not clear profile: {e}")
            return jsonify({"error": str(e), "code": e.code}), ERROR_STATUS.get(e.code, 500)
        db.delete_attempt_state()
    logger.info(f"[DELETE] Profile removed from {client_ip()}")
    return jsonify({"message": "Enrolled profile deleted"}), 200


@app.route("/api/logs", methods=["GET"])
def audit_logs():
    event_type = request.args.get("event_type")
    try:
        limit = int(request.args.get("limit", 50))
    except ValueError:
        return jsonify({"error": "limit must be an integer"}), 400
    limit = max(1, min(limit, 500))
    logs = db.get_auth_logs(event_type=event_type, limit=limit)
    return jsonify({"logs": logs, "count": len(logs)}), 200


# ─── ERROR HANDLERS ───────────────────────────────────────────────────────────

@app.errorhandler(404)
def not_found(e):
    return jsonify({"error": "Endpoint not found"}), 404


@app.errorhandler(405)
def method_not_allowed(e):
    return jsonify({"error": "Method not allowed"}), 405


@app.errorhandler(500)
def internal(e):
    logger.exception("Internal server error")
    return jsonify({"error": "Internal server error"}), 500


# ─── STARTUP ──────────────────────────────────────────────────────────────────

def main():
    logging.basicConfig(
        level=logging.DEBUG if DEBUG else logging.INFO,
        format="[%(asctime)s] [%(levelname)s] %(name)s - %(message)s",
        datefmt="%H:%M:%S",
    )
    db.init_db()
    ssl_context = None
    if USE_HTTPS and os.path.exists(CERT_FILE) and os.path.exists(KEY_FILE):
        ssl_context = (CERT_FILE, KEY_FILE)
        protocol = "https"
        logger.info(f"TLS enabled - using {CERT_FILE}")
    else:
        protocol = "http"
        logger.info("Running in HTTP mode")

    logger.info(f"API health check: {protocol}://{SERVER_HOST}:{SERVER_PORT}/api/health")
    app.run(host=SERVER_HOST, port=SERVER_PORT, ssl_context=ssl_context, debug=DEBUG)


if __name__ == "__main__":
    main()
