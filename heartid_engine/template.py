"""
template.py - Template Utilities

Provides helpers for:
  - Building a versioned BiometricTemplate from a capture
  - Converting feature families to numpy arrays
  - Scoring a live FeatureVector against the stored one (MatchResult)
"""

import json
import time
import logging

import numpy as np

from heartid_common.models import (
    SampleSequence,
    FeatureVector,
    BiometricTemplate,
    MatchResult,
)
from heartid_engine.crypto import sha256_hash
from heartid_engine.features import extract, FEATURE_VERSION

logger = logging.getLogger(__name__)

# ─────────────────────────────────────────────
# WEIGHTS & SCALES
# ─────────────────────────────────────────────
TEMPORAL_WEIGHT      = 0.40
FREQUENCY_WEIGHT     = 0.35
MORPHOLOGICAL_WEIGHT = 0.25

# Per-feature denominator floors so that near-zero features (skewness of a
# symmetric signal, spectrum of a flat one) do not blow up relative differences.
TEMPORAL_FLOORS      = np.array([1.0, 1.0, 1.0])       # BPM, BPM, BPM²
FREQUENCY_FLOORS     = np.array([0.01, 0.01, 0.01])    # Hz
MORPHOLOGICAL_FLOORS = np.array([1.0, 1.0, 0.5])       # -, -, bits

DIGEST_PRECISION = 1    # decimal places kept before hashing raw samples


# ─────────────────────────────────────────────
# CONVERSION HELPERS
# ─────────────────────────────────────────────
def temporal_array(v: FeatureVector) -> np.ndarray:
    t = v.temporal
    return np.array([t.mean, t.std_dev, t.variance], dtype=np.float64)


def frequency_array(v: FeatureVector) -> np.ndarray:
    f = v.frequency
    return np.array([f.dominant_frequency, f.spectral_centroid, f.spectral_rolloff], dtype=np.float64)


def morphological_array(v: FeatureVector) -> np.ndarray:
    m = v.morphological
    return np.array([m.skewness, m.kurtosis, m.entropy], dtype=np.float64)


# ─────────────────────────────────────────────
# TEMPLATE CREATION
# ─────────────────────────────────────────────
def pattern_digest(samples: SampleSequence) -> str:
    """
    One-way digest of the quantised capture. Lets two templates be told
    apart without keeping the raw series.
    """
    quantised = [round(s.value, DIGEST_PRECISION) for s in samples]
    return sha256_hash(json.dumps(quantised).encode())


def build_template(samples: SampleSequence, created_at: float = None) -> BiometricTemplate:
    """Extract features from *samples* and wrap them in a template envelope."""
    vector = extract(samples)
    return BiometricTemplate(
        feature_vector=vector,
        raw_pattern_digest=pattern_digest(samples),
        version=FEATURE_VERSION,
        created_at=time.time() if created_at is None else created_at,
    )


# ─────────────────────────────────────────────
# SIMILARITY
# ─────────────────────────────────────────────
def relative_similarity(a: np.ndarray, b: np.ndarray, floors: np.ndarray) -> np.ndarray:
    """
    Element-wise ``1 - |a-b| / max(|a|, |b|, floor)`` clipped to [0, 1].
    Identical finite inputs score exactly 1.0; non-finite pairs score 0.
    """
    scale = np.maximum(np.maximum(np.abs(a), np.abs(b)), floors)
    with np.errstate(invalid="ignore"):
        sim = 1.0 - np.abs(a - b) / scale
    sim = np.where(np.isfinite(sim), sim, 0.0)
    return np.clip(sim, 0.0, 1.0)


def family_score(a: np.ndarray, b: np.ndarray, floors: np.ndarray) -> float:
    return float(relative_similarity(a, b, floors).mean())


def compare(stored: FeatureVector, live: FeatureVector) -> MatchResult:
    """
    Score *live* against *stored*.

    confidence = 0.40·temporal + 0.35·frequency + 0.25·morphological,
    with every subscore in [0, 1]; compare(v, v) == 1.0.
    """
    temporal = family_score(temporal_array(stored), temporal_array(live), TEMPORAL_FLOORS)
    frequency = family_score(frequency_array(stored), frequency_array(live), FREQUENCY_FLOORS)
    morphological = family_score(morphological_array(stored), morphological_array(live), MORPHOLOGICAL_FLOORS)

    confidence = (TEMPORAL_WEIGHT * temporal
                  + FREQUENCY_WEIGHT * frequency
                  + MORPHOLOGICAL_WEIGHT * morphological)
    confidence = min(1.0, max(0.0, confidence))

    logger.info(
        f"Comparison → temporal={temporal:.3f}, frequency={frequency:.3f}, "
        f"morphological={morphological:.3f} → confidence={confidence:.3f}"
    )
    return MatchResult(
        confidence=confidence,
        temporal=temporal,
        frequency=frequency,
        morphological=morphological,
    )
