"""
Histogram aggregation engine.

Implements:
- Fixed-width histograms over [e_min, e_max) with silent out-of-range drops
- A named set of channels sharing identical bin edges ("true" / "smeared")
- Normalization options: raw / unit-area
- A chi-square consistency test between two histograms

License: MIT
"""

from __future__ import annotations

from enum import Enum
from typing import Dict, Iterable, Optional, Sequence, Tuple

import numpy as np
import pandas as pd
from scipy import stats

from .errors import ConfigurationError

TRUE = "true"
SMEARED = "smeared"


class Normalization(str, Enum):
    RAW = "raw"
    UNIT_AREA = "unit_area"


def _validate_binning(n_bins: int, e_min: float, e_max: float) -> None:
    if int(n_bins) <= 0:
        raise ConfigurationError("n_bins must be positive")
    if not float(e_max) > float(e_min):
        raise ConfigurationError("Upper energy must be greater than lower energy.")


class Histogram:
    """
    Uniform-width histogram over [e_min, e_max).

    Counts are stored as floats so that expected-count histograms can be built
    with ``from_counts``. ``fills`` counts every Fill call, including values
    that were dropped for falling outside the domain.
    """

    def __init__(self, n_bins: int, e_min: float, e_max: float, *, name: str = TRUE):
        _validate_binning(n_bins, e_min, e_max)
        self.name = name
        self.n_bins = int(n_bins)
        self.e_min = float(e_min)
        self.e_max = float(e_max)
        self.edges = np.linspace(self.e_min, self.e_max, self.n_bins + 1)
        self._counts = np.zeros(self.n_bins, dtype=float)
        self.fills = 0

    @classmethod
    def from_counts(cls, edges: Sequence[float], counts: Sequence[float], *, name: str = TRUE) -> "Histogram":
        """Build a histogram from stored (or expected) bin contents."""
        edges = np.asarray(edges, dtype=float)
        counts = np.asarray(counts, dtype=float)
        if edges.ndim != 1 or counts.shape != (edges.size - 1,):
            raise ConfigurationError("counts must have exactly one entry per bin")
        if np.any(counts < 0):
            raise ConfigurationError("bin counts must be non-negative")
        hist = cls(counts.size, edges[0], edges[-1], name=name)
        if not np.allclose(edges, hist.edges, rtol=1e-9, atol=0.0):
            raise ConfigurationError("bin edges must be uniformly spaced")
        hist._counts = counts.copy()
        return hist

    @property
    def bin_width(self) -> float:
        return (self.e_max - self.e_min) / self.n_bins

    @property
    def centers(self) -> np.ndarray:
        return 0.5 * (self.edges[:-1] + self.edges[1:])

    @property
    def counts(self) -> np.ndarray:
        return self._counts.copy()

    @property
    def entries(self) -> float:
        """Sum of in-range bin contents."""
        return float(self._counts.sum())

    def fill(self, value: float) -> None:
        """Increment the bin containing value; drop values outside [e_min, e_max)."""
        self.fills += 1
        value = float(value)
        if not (self.e_min <= value < self.e_max):
            return
        index = min(int(np.searchsorted(self.edges, value, side="right")) - 1, self.n_bins - 1)
        self._counts[index] += 1.0

    def fill_many(self, values: Iterable[float]) -> None:
        """Vectorized equivalent of calling ``fill`` for each value."""
        values = np.asarray(values, dtype=float).ravel()
        self.fills += values.size
        # np.histogram closes the last bin on the right; the upper edge is excluded here.
        inside = values[(values >= self.e_min) & (values < self.e_max)]
        counts, _ = np.histogram(inside, bins=self.edges)
        self._counts += counts

    def normalized(self, normalization: Normalization = Normalization.RAW) -> Tuple[np.ndarray, str]:
        """Return (values, y_label) for the requested normalization."""
        y = self._counts.copy()

        if normalization == Normalization.RAW:
            return y, "Counts"

        if normalization == Normalization.UNIT_AREA:
            s = float(y.sum())
            if s > 0:
                return y / s, "Normalized counts (Σ = 1)"
            return y, "Normalized counts (Σ = 1)"

        raise ValueError(f"Unknown normalization: {normalization}")

    def to_dataframe(self, normalization: Normalization = Normalization.RAW) -> pd.DataFrame:
        values, _ = self.normalized(normalization)
        return pd.DataFrame(
            {
                "Energy_eV": self.centers,
                "Counts": self._counts.copy(),
                "Norm": values,
            }
        )

    def __repr__(self) -> str:
        return (
            f"Histogram(name={self.name!r}, n_bins={self.n_bins}, "
            f"e_min={self.e_min}, e_max={self.e_max}, entries={self.entries:g})"
        )


class HistogramSet:
    """Named histogram channels with identical bin edges; the single writer of bin counts."""

    def __init__(self, n_bins: int, e_min: float, e_max: float, names: Sequence[str] = (TRUE,)):
        _validate_binning(n_bins, e_min, e_max)
        if not names:
            raise ConfigurationError("at least one histogram channel is required")
        self._histograms: Dict[str, Histogram] = {
            name: Histogram(n_bins, e_min, e_max, name=name) for name in names
        }

    @classmethod
    def from_histograms(cls, histograms: Iterable[Histogram]) -> "HistogramSet":
        histograms = list(histograms)
        if not histograms:
            raise ConfigurationError("at least one histogram channel is required")
        first = histograms[0]
        hs = cls(first.n_bins, first.e_min, first.e_max, names=[h.name for h in histograms])
        for h in histograms:
            if h.n_bins != first.n_bins or not np.allclose(h.edges, first.edges):
                raise ConfigurationError("all channels must share the same bin edges")
            hs._histograms[h.name] = h
        return hs

    @property
    def names(self) -> Tuple[str, ...]:
        return tuple(self._histograms)

    @property
    def edges(self) -> np.ndarray:
        return next(iter(self._histograms.values())).edges

    def __getitem__(self, histogram_id: str) -> Histogram:
        return self._histograms[histogram_id]

    def __contains__(self, histogram_id: str) -> bool:
        return histogram_id in self._histograms

    def fill(self, histogram_id: str, value: float) -> None:
        self._histograms[histogram_id].fill(value)

    def fill_many(self, histogram_id: str, values: Iterable[float]) -> None:
        self._histograms[histogram_id].fill_many(values)

    def to_dataframe(self, normalization: Normalization = Normalization.RAW) -> pd.DataFrame:
        """One row per bin, one column per channel."""
        first = next(iter(self._histograms.values()))
        data = {"Energy_eV": first.centers}
        for name, hist in self._histograms.items():
            data[f"{name}_counts"], _ = hist.normalized(normalization)
        return pd.DataFrame(data)


def compare_histograms(
    a: Histogram,
    b: Histogram,
    *,
    min_content: Optional[float] = None,
) -> Tuple[float, int, float]:
    """
    Chi-square consistency test between two unweighted histograms.

    Totals may differ; only the shapes are compared. Bins empty in both
    histograms (or with a combined content below ``min_content``) are skipped.

    Returns (chi_square, ndf, p_value).
    """
    if a.n_bins != b.n_bins or not np.allclose(a.edges, b.edges):
        raise ConfigurationError("histograms must share the same bin edges")

    x = a.counts
    y = b.counts
    total_x = x.sum()
    total_y = y.sum()
    if total_x <= 0 or total_y <= 0:
        raise ValueError("cannot compare empty histograms")

    combined = x + y
    used = combined > (0.0 if min_content is None else float(min_content))
    x = x[used]
    y = y[used]
    diff = np.sqrt(total_y / total_x) * x - np.sqrt(total_x / total_y) * y
    chi_square = float(np.sum(diff * diff / (x + y)))
    ndf = int(used.sum()) - 1
    if ndf <= 0:
        raise ValueError("not enough populated bins to compare histograms")
    return chi_square, ndf, float(stats.chi2.sf(chi_square, ndf))
