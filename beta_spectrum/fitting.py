"""
Chi-square fitting of a spectrum model to a binned histogram.

The model is any callable ``model(energies, **params) -> counts`` that is
vectorized over a NumPy array of energies (BetaSpectrum qualifies). Each bin
is predicted either by evaluating the model at the bin center or by
integrating it over the bin with Gauss-Legendre quadrature.

The chi-square uses sigma^2 = max(counts, 1), so empty bins enter with unit
variance. Parameters can be fixed; free parameters are optimized with
scipy.optimize.least_squares and their uncertainties come from (J^T J)^-1.

A fit that does not converge is returned with FitStatus.FAILED rather than
as a best-effort estimate.

License: MIT
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import Callable, Dict, Iterable, Mapping, Optional, Tuple

import numpy as np
from scipy import optimize, stats

from .errors import ConfigurationError
from .spectrum import Histogram

logger = logging.getLogger(__name__)

# Gauss-Legendre points per bin when integrating the model.
DEFAULT_QUADRATURE_POINTS = 8

SpectrumModel = Callable[..., np.ndarray]


class FitStatus(str, Enum):
    CONVERGED = "converged"
    FAILED = "failed"


@dataclass(frozen=True)
class FitResult:
    """Fitted parameters, their standard errors and the goodness of fit."""
    status: FitStatus
    parameters: Dict[str, float]
    uncertainties: Dict[str, float]
    chi_square: float
    degrees_of_freedom: int
    fixed: Tuple[str, ...] = ()
    message: str = ""
    n_evaluations: int = 0
    covariance: Optional[np.ndarray] = field(default=None, repr=False, compare=False)

    @property
    def converged(self) -> bool:
        return self.status == FitStatus.CONVERGED

    @property
    def reduced_chi_square(self) -> float:
        if self.degrees_of_freedom <= 0:
            return float("nan")
        return self.chi_square / self.degrees_of_freedom

    @property
    def p_value(self) -> float:
        if self.degrees_of_freedom <= 0 or not np.isfinite(self.chi_square):
            return float("nan")
        return float(stats.chi2.sf(self.chi_square, self.degrees_of_freedom))

    def summary(self) -> str:
        lines = [f"Status: {self.status.value} ({self.message})" if self.message else f"Status: {self.status.value}"]
        for name, value in self.parameters.items():
            tag = " (fixed)" if name in self.fixed else f" +/- {self.uncertainties[name]:.6g}"
            lines.append(f"  {name} = {value:.6g}{tag}")
        lines.append(f"ChiSq / ndf = {self.chi_square:.6g} / {self.degrees_of_freedom}")
        return "\n".join(lines)


def _bin_mask(histogram: Histogram, fit_range: Optional[Tuple[float, float]]) -> np.ndarray:
    centers = histogram.centers
    if fit_range is None:
        return np.ones(centers.size, dtype=bool)
    lo, hi = (float(v) for v in fit_range)
    if hi <= lo:
        raise ConfigurationError("fit range upper bound must be greater than lower bound")
    return (centers >= lo) & (centers <= hi)


def _bin_predictor(
    histogram: Histogram,
    mask: np.ndarray,
    model: SpectrumModel,
    *,
    integrate: bool,
    quadrature_points: int,
) -> Callable[[Mapping[str, float]], np.ndarray]:
    """Return params -> predicted content of each selected bin."""
    lows = histogram.edges[:-1][mask]
    highs = histogram.edges[1:][mask]

    if not integrate:
        centers = 0.5 * (lows + highs)
        return lambda params: np.asarray(model(centers, **params), dtype=float)

    nodes, weights = np.polynomial.legendre.leggauss(int(quadrature_points))
    half = 0.5 * (highs - lows)
    mid = 0.5 * (highs + lows)
    points = mid[:, None] + half[:, None] * nodes[None, :]

    def predict(params: Mapping[str, float]) -> np.ndarray:
        values = np.asarray(model(points.ravel(), **params), dtype=float).reshape(points.shape)
        return half * (values @ weights)

    return predict


def guess_normalization(
    histogram: Histogram,
    model: SpectrumModel,
    params: Mapping[str, float],
    *,
    scale: str = "normalization",
    fit_range: Optional[Tuple[float, float]] = None,
    integrate: bool = False,
) -> float:
    """Linear scale that matches the model's total to the observed counts."""
    mask = _bin_mask(histogram, fit_range)
    predict = _bin_predictor(histogram, mask, model, integrate=integrate, quadrature_points=DEFAULT_QUADRATURE_POINTS)
    trial = dict(params)
    trial[scale] = 1.0
    expected = float(np.sum(predict(trial)))
    if not expected > 0:
        raise ValueError("model predicts no counts in the fit range")
    return float(histogram.counts[mask].sum()) / expected


def fit_histogram(
    histogram: Histogram,
    model: SpectrumModel,
    initial_params: Mapping[str, float],
    *,
    fixed: Iterable[str] = (),
    fit_range: Optional[Tuple[float, float]] = None,
    bounds: Optional[Mapping[str, Tuple[float, float]]] = None,
    integrate: bool = False,
    quadrature_points: int = DEFAULT_QUADRATURE_POINTS,
    max_nfev: Optional[int] = None,
) -> FitResult:
    """
    Fit model to histogram by chi-square minimization.

    Parameters
    ----------
    histogram:
        Binned data; it is only read.
    model:
        Vectorized callable taking energies and keyword parameters.
    initial_params:
        Starting value for every model parameter (fixed ones keep this value).
    fixed:
        Names of parameters excluded from the optimization.
    fit_range:
        (low, high) energy window; bins whose centers fall inside are used.
    bounds:
        Optional {name: (low, high)} limits for free parameters.
    integrate:
        Predict bin contents by integrating the model over each bin.
    max_nfev:
        Limit on model evaluations; hitting it yields FitStatus.FAILED.
    """
    params = {name: float(value) for name, value in initial_params.items()}
    fixed = tuple(fixed)
    unknown = [name for name in fixed if name not in params]
    if unknown:
        raise ConfigurationError(f"Fixed parameters without a value: {unknown}")
    free = [name for name in params if name not in fixed]
    bounds = dict(bounds or {})
    unknown = [name for name in bounds if name not in params]
    if unknown:
        raise ConfigurationError(f"Bounds given for unknown parameters: {unknown}")

    mask = _bin_mask(histogram, fit_range)
    observed = histogram.counts[mask]
    n_bins = int(mask.sum())
    ndf = n_bins - len(free)
    if ndf <= 0:
        raise ConfigurationError(f"{n_bins} bins in the fit range cannot constrain {len(free)} free parameters")

    sigma = np.sqrt(np.maximum(observed, 1.0))
    predict = _bin_predictor(histogram, mask, model, integrate=integrate, quadrature_points=quadrature_points)

    def full_params(x: np.ndarray) -> Dict[str, float]:
        current = dict(params)
        current.update(zip(free, (float(v) for v in x)))
        return current

    def residuals(x: np.ndarray) -> np.ndarray:
        return (observed - predict(full_params(x))) / sigma

    if not free:
        chi_square = float(np.sum(residuals(np.empty(0)) ** 2))
        status = FitStatus.CONVERGED if np.isfinite(chi_square) else FitStatus.FAILED
        return FitResult(
            status=status,
            parameters=params,
            uncertainties={name: 0.0 for name in params},
            chi_square=chi_square,
            degrees_of_freedom=ndf,
            fixed=fixed,
            message="all parameters fixed",
            n_evaluations=1,
        )

    lower = np.array([bounds.get(name, (-np.inf, np.inf))[0] for name in free], dtype=float)
    upper = np.array([bounds.get(name, (-np.inf, np.inf))[1] for name in free], dtype=float)
    x0 = np.clip(np.array([params[name] for name in free], dtype=float), lower, upper)

    # Optimize in units of the starting values so that parameters of very
    # different magnitude (e.g. m_nu ~ 1, C ~ 1e-10) get sensible steps.
    scale = np.where(x0 != 0.0, np.abs(x0), 1.0)

    res = optimize.least_squares(
        lambda z: residuals(z * scale),
        x0 / scale,
        bounds=(lower / scale, upper / scale),
        method="trf",
        x_scale="jac",
        max_nfev=max_nfev,
    )

    x = res.x * scale
    chi_square = float(np.sum(res.fun ** 2))
    fitted = full_params(x)

    try:
        covariance = np.linalg.inv(res.jac.T @ res.jac) * np.outer(scale, scale)
        errors = np.sqrt(np.abs(np.diag(covariance)))
    except np.linalg.LinAlgError:
        logger.warning("Singular fit matrix; parameter uncertainties are undefined.")
        covariance = None
        errors = np.full(len(free), np.inf)

    uncertainties = {name: 0.0 for name in fixed}
    uncertainties.update(zip(free, (float(e) for e in errors)))

    converged = res.status > 0 and np.isfinite(chi_square) and np.all(np.isfinite(x))
    status = FitStatus.CONVERGED if converged else FitStatus.FAILED
    if converged:
        logger.info("Fit converged: chi2/ndf = %.4g/%d (%s)", chi_square, ndf, res.message)
    else:
        logger.warning("Fit did not converge: %s", res.message)

    return FitResult(
        status=status,
        parameters=fitted,
        uncertainties={name: uncertainties[name] for name in params},
        chi_square=chi_square,
        degrees_of_freedom=ndf,
        fixed=fixed,
        message=str(res.message),
        n_evaluations=int(res.nfev),
        covariance=covariance,
    )
