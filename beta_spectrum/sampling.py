"""
Acceptance-rejection (Von Neumann) sampling of the beta decay spectrum.

A candidate energy T is drawn uniformly from [lower_limit, Q) together with
u ~ U[0, 1); the candidate is accepted iff u <= N(T) / (h * N(Q/2)).
The constant h only changes the sampling efficiency, never the accepted
distribution, as long as h * N(Q/2) bounds N on the interval.

Candidates are drawn in NumPy batches from one shared generator. Accepted
energies are produced in draw order and the sequence stops exactly at the
requested event count, so a seeded generator reproduces the same events.

License: MIT
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from enum import Enum
from typing import Callable, Iterator, Optional

import numpy as np

from .config import DEFAULT_MAX_DRAWS_PER_EVENT, SimulationConfig
from .errors import ConfigurationError, SamplingStarvationError
from .physics import BetaSpectrum
from .spectrum import SMEARED, TRUE, HistogramSet

logger = logging.getLogger(__name__)

DEFAULT_BATCH_SIZE = 65_536
DEFAULT_ENVELOPE_GRID = 10_001

ProgressCallback = Callable[[float], None]


class SamplerState(str, Enum):
    SAMPLING = "sampling"
    DONE = "done"


class RejectionSampler:
    """Draws electron kinetic energies distributed as N(T_e) on a bounded interval."""

    def __init__(
        self,
        spectrum: BetaSpectrum,
        *,
        envelope_scale: float,
        neutrino_mass: float,
        rng: np.random.Generator,
        lower_limit: float = 0.0,
        upper_limit: Optional[float] = None,
        max_draws: Optional[int] = None,
        batch_size: int = DEFAULT_BATCH_SIZE,
    ):
        q = spectrum.q_value
        upper = q if upper_limit is None else float(upper_limit)
        if not 0 <= lower_limit < upper <= q:
            raise ConfigurationError(f"Sampling interval [{lower_limit}, {upper}) must lie within [0, Q = {q:.6g}]")
        if not envelope_scale > 0:
            raise ConfigurationError("envelope_scale must be positive")
        if int(batch_size) <= 0:
            raise ConfigurationError("batch_size must be positive")

        self.spectrum = spectrum
        self.envelope_scale = float(envelope_scale)
        self.neutrino_mass = float(neutrino_mass)
        self.lower_limit = float(lower_limit)
        self.upper_limit = upper
        self.max_draws = max_draws
        self.batch_size = int(batch_size)
        self._rng = rng

        # Fixed reference point: N(Q/2) approximates the mode of the density.
        self.envelope = self.envelope_scale * spectrum.decay_density(q / 2.0, self.neutrino_mass, 1.0)
        if not self.envelope > 0:
            raise ConfigurationError("The envelope h * N(Q/2) must be positive; check neutrino_mass against Q.")

        self.state = SamplerState.SAMPLING
        self.accepted = 0
        self.draws = 0

    @property
    def acceptance_rate(self) -> float:
        return self.accepted / self.draws if self.draws > 0 else 0.0

    def acceptance_threshold(self, kinetic_energy):
        """Acceptance probability bound p(T) = N(T) / (h * N(Q/2))."""
        return self.spectrum.decay_density(kinetic_energy, self.neutrino_mass, 1.0) / self.envelope

    def max_acceptance_ratio(self, n_grid: int = DEFAULT_ENVELOPE_GRID) -> float:
        """Largest p(T) on a uniform grid over the sampling interval."""
        grid = np.linspace(self.lower_limit, self.upper_limit, int(n_grid))
        return float(np.max(self.acceptance_threshold(grid)))

    def minimum_envelope_scale(self, n_grid: int = DEFAULT_ENVELOPE_GRID) -> float:
        """Smallest h for which the envelope bounds N on the interval."""
        return self.max_acceptance_ratio(n_grid) * self.envelope_scale

    def envelope_is_valid(self, n_grid: int = DEFAULT_ENVELOPE_GRID) -> bool:
        return self.max_acceptance_ratio(n_grid) <= 1.0

    def iter_batches(self, n_events: int) -> Iterator[np.ndarray]:
        """
        Yield arrays of accepted energies until n_events have been accepted.

        Rejected candidates are never yielded. Raises SamplingStarvationError
        when the draw bound is exhausted first.
        """
        n_events = int(n_events)
        if n_events <= 0:
            raise ConfigurationError("n_events must be positive")
        limit = int(self.max_draws) if self.max_draws is not None else DEFAULT_MAX_DRAWS_PER_EVENT * n_events

        self.state = SamplerState.SAMPLING
        self.accepted = 0
        self.draws = 0

        while self.accepted < n_events:
            size = min(self.batch_size, limit - self.draws)
            if size <= 0:
                raise SamplingStarvationError(
                    f"Accepted {self.accepted}/{n_events} events after {self.draws} draws; "
                    f"increase max_draws or lower envelope_scale (h = {self.envelope_scale:g})."
                )

            candidates = self._rng.uniform(self.lower_limit, self.upper_limit, size)
            u = self._rng.uniform(0.0, 1.0, size)
            hits = np.flatnonzero(u <= self.acceptance_threshold(candidates))

            remaining = n_events - self.accepted
            if hits.size >= remaining:
                hits = hits[:remaining]
                # Draws after the last needed acceptance are discarded, not counted.
                self.draws += int(hits[-1]) + 1
            else:
                self.draws += size

            self.accepted += hits.size
            if self.accepted >= n_events:
                self.state = SamplerState.DONE
            if hits.size:
                yield candidates[hits]

    def accepted_energies(self, n_events: int) -> Iterator[float]:
        """Lazy sequence of accepted energies, one float at a time."""
        for batch in self.iter_batches(n_events):
            for value in batch:
                yield float(value)


@dataclass(frozen=True)
class SimulationResult:
    """Outcome of one simulation run."""
    config: SimulationConfig
    histograms: HistogramSet
    accepted: int
    draws: int
    q_value: float

    @property
    def acceptance_rate(self) -> float:
        return self.accepted / self.draws if self.draws > 0 else 0.0


def _progress_milestones(step: float) -> np.ndarray:
    count = int(np.ceil(1.0 / step - 1e-9))
    return np.minimum(np.arange(1, count + 1) * step, 1.0)


def simulate_spectrum(
    config: SimulationConfig,
    *,
    rng: Optional[np.random.Generator] = None,
    on_progress: Optional[ProgressCallback] = None,
    batch_size: int = DEFAULT_BATCH_SIZE,
) -> SimulationResult:
    """
    Generate config.n_events accepted events and histogram them.

    The true energy of every accepted event is filled into the "true"
    channel. With a resolution set, a Gaussian-smeared energy is drawn from
    the same generator and filled into the "smeared" channel; smeared values
    outside the histogram domain are dropped.

    on_progress receives completion fractions at each progress_step milestone.
    It is purely observational.
    """
    config.validate()
    spectrum = config.spectrum
    if rng is None:
        rng = np.random.default_rng(config.seed)

    lower, upper = config.sampling_interval
    sampler = RejectionSampler(
        spectrum,
        envelope_scale=config.envelope_scale,
        neutrino_mass=config.neutrino_mass,
        rng=rng,
        lower_limit=lower,
        upper_limit=upper,
        max_draws=config.draw_limit,
        batch_size=batch_size,
    )

    ratio = sampler.max_acceptance_ratio()
    if ratio > 1.0:
        msg = (
            f"N(T) exceeds the envelope by a factor {ratio:.3g} on [{lower:g}, {upper:g}); "
            f"use envelope_scale >= {sampler.minimum_envelope_scale():.3g} for an unbiased spectrum."
        )
        if config.strict_envelope:
            raise ConfigurationError(msg)
        logger.warning(msg)

    smear = config.resolution is not None
    e_min, e_max = config.histogram_domain
    names = (TRUE, SMEARED) if smear else (TRUE,)
    histograms = HistogramSet(config.n_bins, e_min, e_max, names=names)

    milestones = _progress_milestones(config.progress_step)
    next_milestone = 0

    logger.info(
        "Generating %d events (Q = %.6g eV, interval [%.6g, %.6g), h = %g)",
        config.n_events, spectrum.q_value, lower, upper, config.envelope_scale,
    )

    for batch in sampler.iter_batches(config.n_events):
        histograms.fill_many(TRUE, batch)
        if smear:
            histograms.fill_many(SMEARED, rng.normal(batch, config.resolution))

        if on_progress is not None:
            fraction = sampler.accepted / config.n_events
            while next_milestone < milestones.size and fraction >= milestones[next_milestone] - 1e-12:
                on_progress(float(milestones[next_milestone]))
                next_milestone += 1

    logger.info(
        "Accepted %d events in %d draws (acceptance %.4g)",
        sampler.accepted, sampler.draws, sampler.acceptance_rate,
    )

    return SimulationResult(
        config=config,
        histograms=histograms,
        accepted=sampler.accepted,
        draws=sampler.draws,
        q_value=spectrum.q_value,
    )
