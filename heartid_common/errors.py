"""
errors.py - Error Taxonomy
Common: typed failures raised inside the engine and converted to results at its edge
"""


class HeartIDError(Exception):
    """Base class for every HeartID failure."""
    code = "error"


class ValidationFailure(HeartIDError):
    """Captured samples failed the quality gates."""
    code = "validation_failed"

    def __init__(self, result):
        super().__init__(result.error_message or "Capture failed validation")
        self.result = result


class ExtractionFailure(HeartIDError):
    code = "extraction_failure"


class InsufficientData(ExtractionFailure):
    """No finite readings to extract features from."""
    code = "insufficient_data"


# ─────────────────────────────────────────────
# TEMPLATE STORE
# ─────────────────────────────────────────────
class StoreError(HeartIDError):
    code = "storage_failure"


class NotFound(StoreError):
    """No profile is enrolled on this device."""
    code = "not_enrolled"


class Corrupted(StoreError):
    """Stored record failed its integrity check; re-enrollment required."""
    code = "template_corrupted"


class UnsupportedVersion(StoreError):
    code = "unsupported_template"

    def __init__(self, version):
        super().__init__(f"Unsupported template version: {version!r}")
        self.version = version


class IOFailure(StoreError):
    code = "storage_failure"


# ─────────────────────────────────────────────
# CAPTURE COLLABORATOR
# ─────────────────────────────────────────────
class CaptureError(HeartIDError):
    """Raised by capture sources. ``kind`` is one of KINDS."""
    code = "capture_failed"
    KINDS = ("denied", "unavailable", "timeout")

    def __init__(self, kind: str, message: str = ""):
        if kind not in self.KINDS:
            raise ValueError(f"Unknown capture error kind: {kind!r}")
        super().__init__(message or f"Capture {kind}")
        self.kind = kind
