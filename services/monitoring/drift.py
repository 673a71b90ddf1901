"""
Two-sample drift statistics.

The Kolmogorov-Smirnov statistic is the largest vertical distance between
the empirical CDFs of the reference and current samples. The p-value uses
the asymptotic Kolmogorov series truncated to its leading term,
``2 * exp(-2 * lambda^2)`` with ``lambda = D * sqrt(n*m / (n+m))``, clipped to
[0.001, 1].
"""

from dataclasses import dataclass
from typing import List, Sequence

import numpy as np

MIN_P_VALUE = 0.001
DEFAULT_BINS = 10


@dataclass
class DriftStatistics:
    drift_score: float
    p_value: float
    reference_distribution: List[float]
    current_distribution: List[float]
    bin_edges: List[float]


def ks_statistic(current: Sequence[float], reference: Sequence[float]) -> float:
    if len(current) == 0 or len(reference) == 0:
        return 0.0

    current_sorted = np.sort(np.asarray(current, dtype=float))
    reference_sorted = np.sort(np.asarray(reference, dtype=float))
    points = np.concatenate([current_sorted, reference_sorted])

    current_cdf = np.searchsorted(current_sorted, points, side="right") / len(current_sorted)
    reference_cdf = np.searchsorted(reference_sorted, points, side="right") / len(reference_sorted)
    return float(np.max(np.abs(current_cdf - reference_cdf)))


def ks_p_value(statistic: float, n: int, m: int) -> float:
    if n == 0 or m == 0:
        return 1.0
    effective = np.sqrt(n * m / (n + m))
    value = 2.0 * np.exp(-2.0 * (statistic * effective) ** 2)
    return float(np.clip(value, MIN_P_VALUE, 1.0))


def histograms(current: Sequence[float], reference: Sequence[float], bins: int = DEFAULT_BINS):
    """Normalized histograms of both samples over their shared range."""
    combined = np.concatenate([np.asarray(current, dtype=float), np.asarray(reference, dtype=float)])
    if combined.size == 0:
        return [0.0] * bins, [0.0] * bins, [0.0] * (bins + 1)

    low, high = float(combined.min()), float(combined.max())
    if low == high:
        high = low + 1.0
    edges = np.linspace(low, high, bins + 1)

    def _normalized(sample) -> List[float]:
        counts, _ = np.histogram(np.asarray(sample, dtype=float), bins=edges)
        total = counts.sum()
        return (counts / total).tolist() if total else [0.0] * bins

    return _normalized(current), _normalized(reference), edges.tolist()


def compute_drift(current: Sequence[float], reference: Sequence[float], bins: int = DEFAULT_BINS) -> DriftStatistics:
    statistic = ks_statistic(current, reference)
    current_hist, reference_hist, edges = histograms(current, reference, bins)
    return DriftStatistics(
        drift_score=statistic,
        p_value=ks_p_value(statistic, len(current), len(reference)),
        reference_distribution=reference_hist,
        current_distribution=current_hist,
        bin_edges=edges,
    )
