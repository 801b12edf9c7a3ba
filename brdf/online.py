"""
Streaming mean estimator for Monte Carlo samples.

Single pass, O(1) per sample, Welford update. Batches and partial
estimators are folded in with the weighted (Chan et al.) merge, which gives
the same mean as feeding the samples one by one.
"""

import numpy as np


class OnlineMean:

    def __init__(self):
        self.count = 0
        self._mean = 0.0
        self._m2 = 0.0

    def add_sample(self, x):
        self.count += 1
        delta = x - self._mean
        self._mean += delta / self.count
        self._m2 += delta * (x - self._mean)

    def add_samples(self, xs):
        xs = np.asarray(xs, dtype=float).ravel()
        if xs.size == 0:
            return
        batch_mean = float(np.mean(xs))
        batch_m2 = float(np.sum((xs - batch_mean) ** 2))
        self._combine(xs.size, batch_mean, batch_m2)

    def merge(self, other):
        self._combine(other.count, other._mean, other._m2)

    def _combine(self, n, mean, m2):
        if n == 0:
            return
        total = self.count + n
        delta = mean - self._mean
        self._mean += delta * n / total
        self._m2 += m2 + delta * delta * self.count * n / total
        self.count = total

    def mean(self):
        return self._mean

    def variance(self):
        """Unbiased sample variance, 0 with fewer than two samples."""
        if self.count < 2:
            return 0.0
        return self._m2 / (self.count - 1)

    def standard_error(self):
        if self.count < 2:
            return 0.0
        return float(np.sqrt(self.variance() / self.count))

    def __repr__(self):
        return f"OnlineMean(count={self.count}, mean={self._mean})"
