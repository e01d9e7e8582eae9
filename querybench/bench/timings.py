from __future__ import annotations

from dataclasses import dataclass

import numpy as np


@dataclass(frozen=True)
class TimingStatistics:
    count: int
    min: float
    max: float
    mean: float
    standard_deviation: float
    relative_standard_deviation: float


class TimingAccumulator:
    """Collects elapsed-time samples (ms) and derives population statistics on read."""

    def __init__(self) -> None:
        self._samples: list[float] = []

    def push(self, elapsed_ms: float) -> None:
        self._samples.append(float(elapsed_ms))

    @property
    def count(self) -> int:
        return len(self._samples)

    def min(self) -> float:
        return float(np.min(self._values()))

    def max(self) -> float:
        return float(np.max(self._values()))

    def mean(self) -> float:
        values = self._values()
        # Summation rounding can push the mean a ulp outside [min, max].
        return float(np.clip(np.mean(values), np.min(values), np.max(values)))

    def standard_deviation(self) -> float:
        return float(np.std(self._values(), ddof=0))

    def relative_standard_deviation(self) -> float:
        """Standard deviation over mean; 0.0 when the mean is zero."""
        mean = self.mean()
        if mean == 0:
            return 0.0
        return self.standard_deviation() / mean

    def statistics(self) -> TimingStatistics:
        return TimingStatistics(
            count=self.count,
            min=self.min(),
            max=self.max(),
            mean=self.mean(),
            standard_deviation=self.standard_deviation(),
            relative_standard_deviation=self.relative_standard_deviation(),
        )

    def _values(self) -> np.ndarray:
        if not self._samples:
            raise ValueError("no timing samples have been pushed")
        return np.asarray(self._samples, dtype=float)


__all__ = ["TimingAccumulator", "TimingStatistics"]
