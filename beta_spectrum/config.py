"""
Configuration for beta decay simulation runs.

Edit the transition presets here to add isotopes.

Important:
- Every run-time input (transition, event target, envelope scale, binning,
  seed, ...) lives in an immutable SimulationConfig that is validated before
  any random draws are made.
- The analysis drivers historically used the tritium endpoint measured by
  KATRIN instead of the mass-difference Q-value; it is kept as
  REFERENCE_Q_VALUE_EV.

License: MIT
"""

from __future__ import annotations

from dataclasses import dataclass, replace
from typing import Optional, Tuple

from .errors import ConfigurationError
from .physics import DEFAULT_CONSTANTS, BetaSpectrum, NuclearTransition, PhysicalConstants

# Tritium endpoint (eV) used as an external reference value.
REFERENCE_Q_VALUE_EV = 18590.0

# Draws allowed per requested event before a run is declared starved.
DEFAULT_MAX_DRAWS_PER_EVENT = 10_000

TRANSITIONS = {
    "H-3": {
        "transition": NuclearTransition(z_initial=1, mass_initial=3.0160492, z_final=2, mass_final=3.0160293),
        "info": "Tritium -> Helium-3 (beta minus), endpoint about 18.6 keV.",
    },
    "C-14": {
        "transition": NuclearTransition(z_initial=6, mass_initial=14.0032420, z_final=7, mass_final=14.0030740),
        "info": "Carbon-14 -> Nitrogen-14 (beta minus), endpoint about 156 keV.",
    },
    "C-11": {
        "transition": NuclearTransition(z_initial=6, mass_initial=11.0114336, z_final=5, mass_final=11.0093054),
        "info": "Carbon-11 -> Boron-11 (beta plus), endpoint about 960 keV.",
    },
}


def get_transition(name: str, *, q_value_override: Optional[float] = None) -> NuclearTransition:
    """Look up a preset transition, optionally replacing its Q-value."""
    try:
        transition = TRANSITIONS[name]["transition"]
    except KeyError:
        raise ConfigurationError(
            f"Unknown transition '{name}'. Known transitions: {sorted(TRANSITIONS)}"
        ) from None
    if q_value_override is not None:
        transition = replace(transition, q_value_override=float(q_value_override))
    return transition


@dataclass(frozen=True)
class SimulationConfig:
    """
    Inputs of one simulation run.

    Parameters
    ----------
    transition:
        Nuclear transition to simulate.
    n_events:
        Number of accepted events to generate.
    envelope_scale:
        Efficiency constant h; the envelope is h * N(Q/2).
    neutrino_mass:
        Neutrino rest mass (eV) used for generation.
    resolution:
        Detector resolution (eV, Gaussian sigma). None disables the smeared channel.
    lower_limit:
        Lower bound of the sampling interval [lower_limit, Q).
    e_min, e_max:
        Histogram domain. If either is None, the sampling interval is used.
    n_bins:
        Number of histogram bins.
    seed:
        Seed of the run's random generator.
    max_draws:
        Bound on candidate draws; defaults to DEFAULT_MAX_DRAWS_PER_EVENT * n_events.
    strict_envelope:
        Raise instead of warning when N exceeds the envelope on the interval.
    progress_step:
        Completion fraction between two progress callbacks.
    """
    transition: NuclearTransition
    n_events: int
    envelope_scale: float
    neutrino_mass: float = DEFAULT_CONSTANTS.neutrino_mass
    resolution: Optional[float] = None
    lower_limit: float = 0.0
    e_min: Optional[float] = None
    e_max: Optional[float] = None
    n_bins: int = 100
    seed: Optional[int] = None
    max_draws: Optional[int] = None
    strict_envelope: bool = False
    progress_step: float = 0.1
    constants: PhysicalConstants = DEFAULT_CONSTANTS

    @property
    def spectrum(self) -> BetaSpectrum:
        return BetaSpectrum(self.transition, self.constants)

    @property
    def q_value(self) -> float:
        return self.transition.q_value(self.constants)

    @property
    def sampling_interval(self) -> Tuple[float, float]:
        return float(self.lower_limit), self.q_value

    @property
    def histogram_domain(self) -> Tuple[float, float]:
        if self.e_min is None or self.e_max is None:
            return self.sampling_interval
        return float(self.e_min), float(self.e_max)

    @property
    def draw_limit(self) -> int:
        if self.max_draws is not None:
            return int(self.max_draws)
        return DEFAULT_MAX_DRAWS_PER_EVENT * int(self.n_events)

    def validate(self) -> None:
        """Raise ConfigurationError for any invalid input."""
        q = self.spectrum.q_value
        if int(self.n_events) <= 0:
            raise ConfigurationError("n_events must be positive")
        if int(self.n_bins) <= 0:
            raise ConfigurationError("n_bins must be positive")
        if not self.envelope_scale > 0:
            raise ConfigurationError("envelope_scale must be positive")
        if self.neutrino_mass < 0:
            raise ConfigurationError("neutrino_mass must be >= 0")
        if self.resolution is not None and self.resolution < 0:
            raise ConfigurationError("resolution must be >= 0")
        if self.lower_limit < 0 or self.lower_limit >= q:
            raise ConfigurationError(f"lower_limit must lie in [0, Q) with Q = {q:.6g} eV")
        if (self.e_min is None) != (self.e_max is None):
            raise ConfigurationError("Provide BOTH e_min and e_max, or neither.")
        e_min, e_max = self.histogram_domain
        if e_min >= e_max:
            raise ConfigurationError("e_max must be > e_min")
        if self.max_draws is not None and int(self.max_draws) <= 0:
            raise ConfigurationError("max_draws must be positive")
        if not 0 < self.progress_step <= 1:
            raise ConfigurationError("progress_step must lie in (0, 1]")
