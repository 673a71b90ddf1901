from __future__ import annotations
from typing import List, Sequence, Tuple

import numpy as np
from scipy import stats

Z_95 = 1.96


def mean_and_interval(values: Sequence[float]) -> Tuple[float, List[float]]:
    """Mean with a normal-approximation 95% interval (population std)."""
    data = np.asarray(values, dtype=float)
    mean = float(data.mean())
    margin = Z_95 * float(data.std()) / np.sqrt(len(data))
    return mean, [mean - margin, mean + margin]


def pooled_t_test(sample: Sequence[float], control: Sequence[float]) -> Tuple[float, float]:
    """
    Two-sample Student t-test with pooled variance.

    Returns (t statistic, two-sided p-value). Samples with fewer than two
    values give (0.0, 1.0). When both samples have zero variance the p-value
    is 0.0 if the means differ and 1.0 otherwise; the statistic is undefined
    there and reported as 0.0.
    """
    a = np.asarray(sample, dtype=float)
    b = np.asarray(control, dtype=float)
    n1, n2 = len(a), len(b)
    if n1 < 2 or n2 < 2:
        return 0.0, 1.0

    mean_diff = float(a.mean() - b.mean())
    pooled_var = ((n1 - 1) * a.var(ddof=1) + (n2 - 1) * b.var(ddof=1)) / (n1 + n2 - 2)
    if pooled_var == 0:
        if mean_diff == 0:
            return 0.0, 1.0
        return 0.0, 0.0

    t_stat = mean_diff / np.sqrt(pooled_var * (1.0 / n1 + 1.0 / n2))
    p_value = 2 * stats.t.sf(abs(t_stat), df=n1 + n2 - 2)
    return float(t_stat), float(p_value)


def percent_improvement(value: float, baseline: float) -> float:
    if baseline == 0:
        return 0.0
    return (value - baseline) / baseline * 100.0
