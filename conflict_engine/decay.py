"""
Decay Function Library

Pure numeric helpers shared by every aggregator. No I/O, no state.

GUARANTEES:
- decay() is monotonically non-increasing in elapsed time
- decay() never returns NaN and saturates to 0.0 for huge elapsed times
- clamp() output is always within [lo, hi]
- soft_limit() is monotonic and stays within [-1, 1]
"""

from __future__ import annotations
import math
from typing import Iterable, Optional, Sequence

import numpy as np


# Below this factor the result is indistinguishable from zero for [0,1] state
_MIN_FACTOR = 1e-12


def decay_factor(elapsed_seconds: float, half_life_seconds: float) -> float:
    """Multiplier 2^(-elapsed/half_life); 1.0 for non-positive elapsed."""
    if half_life_seconds <= 0:
        raise ValueError(f"half_life_seconds must be positive, got {half_life_seconds}")
    if elapsed_seconds <= 0 or math.isnan(elapsed_seconds):
        return 1.0
    exponent = elapsed_seconds / half_life_seconds
    if exponent > 1000:
        return 0.0
    factor = math.pow(2.0, -exponent)
    return factor if factor >= _MIN_FACTOR else 0.0


def decay(value: float, elapsed_seconds: float, half_life_seconds: float) -> float:
    """Exponential half-life decay of value over elapsed seconds."""
    return value * decay_factor(elapsed_seconds, half_life_seconds)


def clamp(x: float, lo: float = 0.0, hi: float = 1.0) -> float:
    if lo > hi:
        raise ValueError(f"clamp bounds inverted: {lo} > {hi}")
    if x is None or math.isnan(x):
        return lo
    return max(lo, min(hi, x))


def clamp_unit(x: float) -> float:
    return clamp(x, 0.0, 1.0)


def clamp_signed(x: float) -> float:
    return clamp(x, -1.0, 1.0)


def soft_limit(x: float, scale: float = 1.0) -> float:
    """tanh(x / scale): near-linear for small x, approaches +/-1 without clipping."""
    if scale <= 0:
        raise ValueError(f"scale must be positive, got {scale}")
    if x is None or math.isnan(x):
        return 0.0
    return math.tanh(x / scale)


def weighted_blend(
    current: float,
    incoming: float,
    current_weight: float,
    incoming_weight: float
) -> float:
    """
    Weighted mean of current and incoming.

    Returns incoming when both weights are zero.
    """
    total = current_weight + incoming_weight
    if total <= 0:
        return incoming
    return (current * current_weight + incoming * incoming_weight) / total


def saturating_add(current: float, bump: float) -> float:
    """Move current toward 1.0 by the fraction bump of the remaining gap."""
    bump = clamp_unit(bump)
    return clamp_unit(current + bump * (1.0 - current))


def smoothing_alpha(alpha: float, elapsed_seconds: float, reference_seconds: float) -> float:
    """
    Time-scaled EMA factor.

    Equals alpha after one reference interval, 0 at zero elapsed, and
    composes so that two short steps equal one long step.
    """
    if elapsed_seconds <= 0:
        return 0.0
    if reference_seconds <= 0:
        return alpha
    return 1.0 - math.pow(1.0 - alpha, elapsed_seconds / reference_seconds)


def weighted_mean(values: Sequence[float], weights: Optional[Sequence[float]] = None) -> float:
    """Weighted mean; falls back to the plain mean for zero total weight."""
    if len(values) == 0:
        return 0.0
    arr = np.asarray(values, dtype=float)
    if weights is None:
        return float(arr.mean())
    w = np.asarray(weights, dtype=float)
    if w.sum() <= 0:
        return float(arr.mean())
    return float(np.average(arr, weights=w))


def variance(values: Sequence[float]) -> float:
    if len(values) < 2:
        return 0.0
    return float(np.var(np.asarray(values, dtype=float)))


def shannon_entropy(labels: Iterable[str], max_categories: Optional[int] = None) -> float:
    """
    Shannon entropy of a label multiset, normalised to [0, 1].

    The normaliser is log2 of max_categories when given, else of the
    number of distinct labels.
    """
    counts = {}
    for label in labels:
        counts[label] = counts.get(label, 0) + 1
    if len(counts) < 2:
        return 0.0
    p = np.asarray(list(counts.values()), dtype=float)
    p = p / p.sum()
    entropy = float(-(p * np.log2(p)).sum())
    categories = max(len(counts), max_categories or 0)
    return clamp_unit(entropy / math.log2(categories))
