"""
models.py - Shared Data Models
Common: heart-rate samples, feature vectors, templates, results and attempt state
"""

from dataclasses import dataclass, field, asdict
from enum import Enum
from typing import ClassVar, List, Optional
import time


# ─────────────────────────────────────────────
# RAW CAPTURE
# ─────────────────────────────────────────────
@dataclass(frozen=True)
class HeartRateSample:
    value: float       # BPM
    offset: float      # seconds since capture start

    def to_dict(self):
        return asdict(self)

    @staticmethod
    def from_dict(d: dict) -> "HeartRateSample":
        return HeartRateSample(value=float(d["value"]), offset=float(d["offset"]))


# Ordered, time-ascending list of readings from one capture.
SampleSequence = List[HeartRateSample]


def samples_from_values(values, interval: float = 1.0) -> SampleSequence:
    """Build an evenly spaced SampleSequence from bare BPM values."""
    return [HeartRateSample(float(v), i * interval) for i, v in enumerate(values)]


def samples_from_dicts(items: list) -> SampleSequence:
    return [HeartRateSample.from_dict(item) for item in items]


@dataclass
class ValidationResult:
    is_valid: bool
    quality_score: float
    sample_count: int
    average_rate: float
    error_message: Optional[str] = None
    recommendations: List[str] = field(default_factory=list)
    hrv_quality: Optional[float] = None     # None when the capture is too short for HRV

    def to_dict(self):
        return asdict(self)


# ─────────────────────────────────────────────
# FEATURES & TEMPLATE
# ─────────────────────────────────────────────
@dataclass(frozen=True)
class TemporalFeatures:
    mean: float
    std_dev: float
    variance: float


@dataclass(frozen=True)
class FrequencyFeatures:
    dominant_frequency: float   # Hz
    spectral_centroid: float    # Hz
    spectral_rolloff: float     # Hz


@dataclass(frozen=True)
class MorphologicalFeatures:
    skewness: float
    kurtosis: float             # excess kurtosis
    entropy: float              # bits


@dataclass(frozen=True)
class HRVFeatures:
    """
    Time-domain heart-rate variability of one capture. Intervals are in
    milliseconds. All zeros when there were too few usable RR intervals.
    """
    mean_rr: float = 0.0
    sdnn: float = 0.0
    rmssd: float = 0.0
    sdsd: float = 0.0
    nn50: int = 0
    pnn50: float = 0.0
    triangular_index: float = 0.0
    stress_index: float = 0.0
    interval_count: int = 0

    @property
    def is_empty(self) -> bool:
        return self.interval_count == 0

    @property
    def variability_index(self) -> float:
        """Weighted 0-100 summary of RMSSD, SDNN and pNN50."""
        return (min(self.rmssd / 100.0, 1.0) * 0.5
                + min(self.sdnn / 150.0, 1.0) * 0.3
                + min(self.pnn50 / 0.5, 1.0) * 0.2) * 100.0

    def to_dict(self):
        return asdict(self)


@dataclass(frozen=True)
class FeatureVector:
    temporal: TemporalFeatures
    frequency: FrequencyFeatures
    morphological: MorphologicalFeatures
    version: int = 1

    def to_dict(self):
        return asdict(self)

    @staticmethod
    def from_dict(d: dict) -> "FeatureVector":
        return FeatureVector(
            temporal=TemporalFeatures(**d["temporal"]),
            frequency=FrequencyFeatures(**d["frequency"]),
            morphological=MorphologicalFeatures(**d["morphological"]),
            version=int(d["version"]),
        )


@dataclass(frozen=True)
class BiometricTemplate:
    feature_vector: FeatureVector
    raw_pattern_digest: str
    version: int = 1
    created_at: float = field(default_factory=time.time)

    def to_dict(self):
        return {
            "feature_vector": self.feature_vector.to_dict(),
            "raw_pattern_digest": self.raw_pattern_digest,
            "version": self.version,
            "created_at": self.created_at,
        }

    @staticmethod
    def from_dict(d: dict) -> "BiometricTemplate":
        return BiometricTemplate(
            feature_vector=FeatureVector.from_dict(d["feature_vector"]),
            raw_pattern_digest=d["raw_pattern_digest"],
            version=int(d["version"]),
            created_at=float(d["created_at"]),
        )


@dataclass(frozen=True)
class UserProfile:
    template: BiometricTemplate
    enrolled_at: float = field(default_factory=time.time)
    last_authenticated_at: Optional[float] = None

    def to_dict(self):
        return {
            "template": self.template.to_dict(),
            "enrolled_at": self.enrolled_at,
            "last_authenticated_at": self.last_authenticated_at,
        }

    @staticmethod
    def from_dict(d: dict) -> "UserProfile":
        last = d.get("last_authenticated_at")
        return UserProfile(
            template=BiometricTemplate.from_dict(d["template"]),
            enrolled_at=float(d["enrolled_at"]),
            last_authenticated_at=float(last) if last is not None else None,
        )


@dataclass(frozen=True)
class MatchResult:
    confidence: float
    temporal: float
    frequency: float
    morphological: float

    @property
    def subscores(self) -> dict:
        return {
            "temporal": self.temporal,
            "frequency": self.frequency,
            "morphological": self.morphological,
        }


# ─────────────────────────────────────────────
# POLICY
# ─────────────────────────────────────────────
class SecurityLevel(Enum):
    """Approval threshold per named policy; the threshold is the enum value."""
    LOW = 0.60
    MEDIUM = 0.75
    HIGH = 0.85
    MAXIMUM = 0.90

    @property
    def threshold(self) -> float:
        return self.value

    @staticmethod
    def from_name(name: str) -> "SecurityLevel":
        try:
            return SecurityLevel[name.strip().upper()]
        except KeyError:
            raise ValueError(f"Unknown security level: {name!r}") from None


# Escalating lockout periods, in minutes.
DEFAULT_LOCKOUT_MINUTES = (10, 20, 40, 90, 360, 1440, 2880)


@dataclass(frozen=True)
class LockoutPolicy:
    max_failures: int = 3
    periods: tuple = tuple(m * 60.0 for m in DEFAULT_LOCKOUT_MINUTES)  # seconds
    retry_band: float = 0.20

    def __post_init__(self):
        if self.max_failures < 1:
            raise ValueError("max_failures must be at least 1")
        if not self.periods:
            raise ValueError("at least one lockout period is required")
        if any(p <= 0 for p in self.periods):
            raise ValueError("lockout periods must be positive")
        if not 0.0 <= self.retry_band <= 1.0:
            raise ValueError("retry_band must be within [0, 1]")


@dataclass(frozen=True)
class AttemptState:
    consecutive_failures: int = 0
    lockout_until: Optional[float] = None
    lockout_period_index: int = 0

    def is_locked(self, now: float) -> bool:
        return self.lockout_until is not None and self.lockout_until > now

    def to_dict(self):
        return asdict(self)

    @staticmethod
    def from_dict(d: dict) -> "AttemptState":
        until = d.get("lockout_until")
        return AttemptState(
            consecutive_failures=int(d.get("consecutive_failures", 0)),
            lockout_until=float(until) if until is not None else None,
            lockout_period_index=int(d.get("lockout_period_index", 0)),
        )


# ─────────────────────────────────────────────
# AUTHENTICATION RESULTS (tagged union)
# ─────────────────────────────────────────────
class AuthenticationResult:
    """Base of the result variants. ``status`` is the tag."""
    status: ClassVar[str] = ""

    @property
    def is_approved(self) -> bool:
        return self.status == "approved"

    def to_dict(self) -> dict:
        return {"status": self.status, **asdict(self)}


@dataclass(frozen=True)
class Approved(AuthenticationResult):
    confidence: float
    status: ClassVar[str] = "approved"


@dataclass(frozen=True)
class Denied(AuthenticationResult):
    reason: str
    status: ClassVar[str] = "denied"


@dataclass(frozen=True)
class Retry(AuthenticationResult):
    message: str
    status: ClassVar[str] = "retry"


@dataclass(frozen=True)
class Error(AuthenticationResult):
    message: str
    code: str = "error"
    locked_until: Optional[float] = None
    status: ClassVar[str] = "error"

    @property
    def is_lockout(self) -> bool:
        return self.code == "locked_out"


@dataclass(frozen=True)
class Pending(AuthenticationResult):
    """Transient progress marker; published on the event channel only."""
    status: ClassVar[str] = "pending"
