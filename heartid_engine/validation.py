"""
validation.py - Capture Quality Validation

Scores a raw heart-rate capture before it is used for enrollment or
matching. Pure functions; nothing here touches storage or the clock.
"""

import math
import logging
from enum import Enum
from typing import Optional

import numpy as np

from heartid_common.models import HRVFeatures, SampleSequence, ValidationResult
from heartid_engine.features import hrv_features

logger = logging.getLogger(__name__)

# ─────────────────────────────────────────────
# CONSTANTS
# ─────────────────────────────────────────────
PLAUSIBLE_RANGE = (40.0, 200.0)     # BPM; outside → sensor error
RESTING_RANGE = (50.0, 150.0)       # BPM; full range score
VARIABILITY_BAND = (2.0, 25.0)      # stdDev, exclusive bounds
FULL_COUNT = 300                    # samples for a full count score
OUTLIER_RATIO_WARN = 0.25

COUNT_WEIGHT = 0.4
RANGE_WEIGHT = 0.3
VARIABILITY_WEIGHT = 0.3

HEALTHY_RMSSD = (20.0, 100.0)       # ms
HEALTHY_PNN50 = (0.05, 0.5)
HEALTHY_HRV_INDEX = (5.0, 50.0)


class Operation(Enum):
    """Operation-specific gates: (minimum finite samples, quality floor)."""
    ENROLL = (100, 0.6)
    AUTHENTICATE = (100, 0.5)

    @property
    def min_samples(self) -> int:
        return self.value[0]

    @property
    def quality_floor(self) -> float:
        return self.value[1]


def quality_score(count: int, mean: float, std_dev: float) -> float:
    count_score = min(count / FULL_COUNT, 1.0)
    range_score = 1.0 if RESTING_RANGE[0] <= mean <= RESTING_RANGE[1] else 0.5
    variability_score = 1.0 if VARIABILITY_BAND[0] < std_dev < VARIABILITY_BAND[1] else 0.5
    return (count_score * COUNT_WEIGHT
            + range_score * RANGE_WEIGHT
            + variability_score * VARIABILITY_WEIGHT)


def hrv_assessment(hrv: HRVFeatures):
    """
    Score an HRV summary in [0.5, 1.0] and collect advisory notes.
    Never used as a gate.
    """
    score = 0.5
    notes = []
    if HEALTHY_RMSSD[0] <= hrv.rmssd <= HEALTHY_RMSSD[1]:
        score += 0.2
    elif hrv.rmssd < 10.0:
        notes.append("Very low heart rate variability detected - relax and breathe normally")
    if HEALTHY_PNN50[0] <= hrv.pnn50 <= HEALTHY_PNN50[1]:
        score += 0.15
    elif hrv.pnn50 < 0.02:
        notes.append("Low parasympathetic activity detected")
    if HEALTHY_HRV_INDEX[0] <= hrv.variability_index <= HEALTHY_HRV_INDEX[1]:
        score += 0.15
    else:
        notes.append("Unusual heart rate variability pattern")
    if hrv.rmssd > 0 and hrv.pnn50 > 0:
        score += 0.1
    return min(score, 1.0), notes


def _dedupe(items):
    seen = set()
    return [x for x in items if not (x in seen or seen.add(x))]


def validate(samples: SampleSequence,
             operation: Operation = Operation.AUTHENTICATE,
             min_samples: Optional[int] = None,
             quality_floor: Optional[float] = None) -> ValidationResult:
    """
    Validate one capture.

    Gates (any failure → is_valid=False):
      - fewer finite readings than the operation minimum
      - every reading outside PLAUSIBLE_RANGE
      - mean outside PLAUSIBLE_RANGE
      - quality score not above the operation floor
    Soft issues only add recommendations.
    """
    min_samples = operation.min_samples if min_samples is None else min_samples
    quality_floor = operation.quality_floor if quality_floor is None else quality_floor

    raw = [s.value for s in samples]
    values = np.array([v for v in raw if isinstance(v, (int, float)) and math.isfinite(v)],
                      dtype=np.float64)
    count = int(values.size)
    invalid = len(raw) - count

    if count == 0:
        return ValidationResult(
            is_valid=False,
            quality_score=0.0,
            sample_count=0,
            average_rate=0.0,
            error_message="No heart rate data captured",
            recommendations=["Ensure proper sensor contact", "Increase sensor contact time"],
        )

    mean = float(values.mean())
    std_dev = float(values.std()) if np.ptp(values) > 0 else 0.0
    quality = quality_score(count, mean, std_dev)

    errors = []
    recommendations = []

    if invalid:
        recommendations.append("Sensor reported invalid readings - clean the sensor and retry")

    if count < min_samples:
        errors.append(f"Insufficient data captured ({count} samples, need at least {min_samples})")
        recommendations.extend(["Increase sensor contact time", "Keep the sensor in continuous contact"])

    lo, hi = PLAUSIBLE_RANGE
    in_band = (values >= lo) & (values <= hi)
    if not in_band.any():
        errors.append(f"All heart rate readings outside {lo:.0f}-{hi:.0f} BPM")
        recommendations.extend(["Check sensor placement", "Ensure skin contact"])
    elif 1.0 - in_band.mean() > OUTLIER_RATIO_WARN:
        recommendations.append("Improve sensor contact for stable readings")

    if not lo <= mean <= hi:
        errors.append(f"Average heart rate {mean:.1f} BPM outside {lo:.0f}-{hi:.0f} BPM")
        recommendations.append("Check that the sensor is reading your pulse")
    elif not RESTING_RANGE[0] <= mean <= RESTING_RANGE[1]:
        recommendations.append("Unusual heart rate detected - rest for a moment before capturing")

    if std_dev <= VARIABILITY_BAND[0]:
        recommendations.append("Signal looks flat - ensure the sensor is touching the skin")
    elif std_dev >= VARIABILITY_BAND[1]:
        recommendations.append("Hold still during capture to reduce noise")

    hrv = hrv_features(values)
    hrv_quality = None
    if not hrv.is_empty:
        hrv_quality, notes = hrv_assessment(hrv)
        recommendations.extend(notes)

    if quality <= quality_floor:
        errors.append(f"Capture quality too low ({quality:.0%} <= {quality_floor:.0%})")
        recommendations.append("Extend capture duration and stay still")

    result = ValidationResult(
        is_valid=not errors,
        quality_score=quality,
        sample_count=count,
        average_rate=mean,
        error_message=errors[0] if errors else None,
        recommendations=_dedupe(recommendations),
        hrv_quality=hrv_quality,
    )
    logger.debug(
        f"Validation ({operation.name}) → count={count}, mean={mean:.1f}, "
        f"std={std_dev:.2f}, quality={quality:.2f}, hrv_quality={hrv_quality}, "
        f"valid={result.is_valid}"
    )
    return result
