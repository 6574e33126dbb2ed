"""
client_app.py - Client Application Interface
Captures heart-rate samples and drives the device service.

Usage:
  heartid enroll  --user alice
  heartid auth    --user alice --level HIGH
  heartid auth    --replay recording.csv
  heartid status | reset | logs
  heartid redeem  <grant>
"""

import os
import sys
import argparse
import logging

import requests

from heartid_client.capture import ReplayCaptureSource, SimulatedHeartRateSource
from heartid_common.errors import CaptureError
from heartid_common.utils import format_timestamp, pretty_json

logger = logging.getLogger(__name__)

SERVER_URL = os.environ.get("HEARTID_SERVER_URL", "http://127.0.0.1:5000")
ENROLL_SECONDS = 300
AUTH_SECONDS = 120
REQUEST_TIMEOUT = 10

# Presentation per result status; the engine results carry no UI data.
RESULT_STYLE = {
    "approved": ("🟢", "AUTHENTICATION APPROVED"),
    "denied":   ("🔴", "AUTHENTICATION DENIED"),
    "retry":    ("🟡", "PLEASE TRY AGAIN"),
    "error":    ("⛔", "AUTHENTICATION ERROR"),
    "pending":  ("⏳", "AUTHENTICATING"),
}


class ServiceUnavailable(Exception):
    """The device service could not be reached."""


# ──────────────────────────────────────────────
# HTTP HELPERS
# ──────────────────────────────────────────────
def _request(method: str, path: str, **kwargs) -> requests.Response:
    try:
        return requests.request(method, f"{SERVER_URL}{path}", timeout=REQUEST_TIMEOUT, **kwargs)
    except requests.exceptions.ConnectionError as e:
        logger.error("=" * 55)
        logger.error("CANNOT CONNECT TO SERVICE at %s", SERVER_URL)
        logger.error("Make sure the device service is running first:")
        logger.error("  heartid-server")
        logger.error("=" * 55)
        raise ServiceUnavailable(str(e)) from e


def make_source(user_id: str, replay: str = None):
    if replay:
        return ReplayCaptureSource(replay)
    return SimulatedHeartRateSource(user_id)


def capture_samples(source, duration: float):
    """Capture locally; a sensor failure is reported as a retry, not sent to the service."""
    try:
        return source.capture(duration)
    except CaptureError as e:
        emoji, title = RESULT_STYLE["retry"]
        logger.warning(f"{emoji} {title}: capture {e.kind} ({e})")
        return None


# ──────────────────────────────────────────────
# ENROLLMENT
# ──────────────────────────────────────────────
def enroll(source, duration: float = ENROLL_SECONDS) -> dict:
    logger.info("=" * 55)
    logger.info("ENROLLMENT")
    logger.info("=" * 55)

    samples = capture_samples(source, duration)
    if samples is None:
        return {"success": False, "code": "capture_failed"}
    logger.info(f"✔ {len(samples)} samples captured")

    resp = _request("POST", "/api/enroll", json={"samples": [s.to_dict() for s in samples]})
    body = resp.json()
    validation = body.get("validation") or {}
    if body.get("success"):
        logger.info(f"✔ Enrolled (capture quality {validation.get('quality_score', 0):.0%})")
    else:
        logger.warning(f"✘ Enrollment rejected: {body.get('message') or body.get('error')}")
    for tip in validation.get("recommendations", []):
        logger.info(f"   • {tip}")
    logger.info("=" * 55)
    return body


# ──────────────────────────────────────────────
# AUTHENTICATION
# ──────────────────────────────────────────────
def report_result(body: dict):
    result = body.get("result") or {"status": "error", "message": body.get("error", "unknown")}
    status = result.get("status", "error")
    emoji, title = RESULT_STYLE.get(status, RESULT_STYLE["error"])

    logger.info("-" * 55)
    if status == "approved":
        logger.info(f"{emoji} {title}")
        logger.info(f"   Confidence : {result['confidence']:.1%}")
        if body.get("grant"):
            logger.info(f"   Grant      : valid {body.get('expires_in')}s, single use")
    else:
        logger.warning(f"{emoji} {title}")
        detail = result.get("reason") or result.get("message")
        if detail:
            logger.warning(f"   {detail}")
        if result.get("locked_until"):
            logger.warning(f"   Locked until {format_timestamp(result['locked_until'])}")
    logger.info("=" * 55)


def authenticate(source, duration: float = AUTH_SECONDS, level: str = None) -> dict:
    logger.info("=" * 55)
    logger.info("AUTHENTICATION")
    logger.info("=" * 55)

    samples = capture_samples(source, duration)
    if samples is None:
        body = {"result": {"status": "retry", "message": "Capture failed - please try again"}}
        report_result(body)
        return body
    logger.info(f"✔ {len(samples)} samples captured")

    payload = {"samples": [s.to_dict() for s in samples]}
    if level:
        payload["security_level"] = level
    body = _request("POST", "/api/authenticate", json=payload).json()
    report_result(body)
    return body


# ──────────────────────────────────────────────
# PROFILE & AUDIT
# ──────────────────────────────────────────────
def status() -> dict:
    body = _request("GET", "/api/status").json()
    print(pretty_json(body))
    return body


def reset() -> dict:
    body = _request("DELETE", "/api/profile").json()
    logger.info(body.get("message") or body.get("error"))
    return body


def show_logs(limit: int = 20) -> dict:
    body = _request("GET", "/api/logs", params={"limit": limit}).json()
    for entry in body.get("logs", []):
        conf = f" {entry['confidence']:.1%}" if entry.get("confidence") is not None else ""
        print(f"{format_timestamp(entry['timestamp'])}  {entry['event_type']:<16} "
              f"{entry.get('outcome') or '':<20}{conf}")
    return body


def redeem(grant: str) -> dict:
    resp = _request("POST", "/api/grant/redeem", headers={"Authorization": f"Bearer {grant}"})
    body = resp.json()
    if resp.ok:
        logger.info(f"✔ Grant accepted ({body.get('outcome')})")
    else:
        logger.warning(f"✘ Grant refused: {body.get('error')}")
    return body


# ──────────────────────────────────────────────
# CLI
# ──────────────────────────────────────────────
def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="HeartID heart-rate authentication client")
    sub = parser.add_subparsers(dest="cmd")

    p_enroll = sub.add_parser("enroll", help="Enroll the device owner")
    p_enroll.add_argument("--user", default="owner", help="simulated wearer")
    p_enroll.add_argument("--replay", help="JSON/CSV recording to use instead of the simulator")
    p_enroll.add_argument("--duration", type=float, default=ENROLL_SECONDS)

    p_auth = sub.add_parser("auth", help="Authenticate against the enrolled profile")
    p_auth.add_argument("--user", default="owner", help="simulated wearer")
    p_auth.add_argument("--replay", help="JSON/CSV recording to use instead of the simulator")
    p_auth.add_argument("--duration", type=float, default=AUTH_SECONDS)
    p_auth.add_argument("--level", choices=["LOW", "MEDIUM", "HIGH", "MAXIMUM"])

    sub.add_parser("status", help="Show enrollment and lockout status")
    sub.add_parser("reset", help="Delete the enrolled profile")

    p_logs = sub.add_parser("logs", help="Show the audit trail")
    p_logs.add_argument("--limit", type=int, default=20)

    p_redeem = sub.add_parser("redeem", help="Redeem an authentication grant")
    p_redeem.add_argument("grant")
    return parser


def main(argv=None) -> int:
    logging.basicConfig(
        level=logging.INFO,
        format="[%(asctime)s] [%(levelname)s] %(message)s",
        datefmt="%H:%M:%S",
    )
    parser = build_parser()
    args, unknown = parser.parse_known_args(argv)
    if unknown:
        logger.error("Unrecognized arguments ignored: %s", unknown)

    try:
        if args.cmd == "enroll":
            body = enroll(make_source(args.user, args.replay), args.duration)
            return 0 if body.get("success") else 1
        elif args.cmd == "auth":
            body = authenticate(make_source(args.user, args.replay), args.duration, args.level)
            return 0 if body.get("result", {}).get("status") == "approved" else 1
        elif args.cmd == "status":
            status()
        elif args.cmd == "reset":
            reset()
        elif args.cmd == "logs":
            show_logs(args.limit)
        elif args.cmd == "redeem":
            body = redeem(args.grant)
            return 0 if body.get("outcome") == "approved" else 1
        else:
            parser.print_help()
    except ServiceUnavailable:
        return 2
    except ValueError as e:
        logger.error(str(e))
        return 2
    return 0


if __name__ == "__main__":
    sys.exit(main())
