"""
Beta decay physics model.

Implements:
- Physical constants (all energies in eV)
- Nuclear transitions with charge validation and Q-value computation
- The Fermi function F(Z, T_e) with overflow-free limits
- The unnormalized decay-rate density N(T_e; m_nu, C)

All functions are pure and vectorized over NumPy arrays. Scalar input returns
a Python float.

License: MIT
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Dict, Optional, Tuple

import numpy as np

from .errors import ConfigurationError

# Energies below ENERGY_FLOOR * m_e are evaluated at the floor so the
# Coulomb correction stays finite at T_e = 0.
ENERGY_FLOOR = 1e-15


@dataclass(frozen=True)
class PhysicalConstants:
    """Physical constants in one consistent energy unit (eV)."""
    pi: float = 3.14159265
    alpha: float = 1.0 / 137
    proton_mass: float = 938.272046e6
    neutron_mass: float = 939.5654133e6
    electron_mass: float = 0.510998910e6
    neutrino_mass: float = 0.2
    amu_energy: float = 931.5e6


DEFAULT_CONSTANTS = PhysicalConstants()


@dataclass(frozen=True)
class NuclearTransition:
    """
    Initial and final nucleus of a single-electron beta decay.

    Masses are atomic masses in amu. ``q_value_override`` (eV) replaces the
    mass-difference Q-value with an externally measured endpoint.
    """
    z_initial: int
    mass_initial: float
    z_final: int
    mass_final: float
    q_value_override: Optional[float] = None

    def __post_init__(self) -> None:
        if self.charge not in (-1, 1):
            raise ConfigurationError(
                f"Transition Z {self.z_initial} -> {self.z_final} is not a single-electron "
                f"beta decay (charge {self.charge}, expected -1 or +1)."
            )

    @property
    def charge(self) -> int:
        return int(self.z_initial) - int(self.z_final)

    @property
    def is_beta_minus(self) -> bool:
        return self.charge == -1

    def q_value(self, constants: PhysicalConstants = DEFAULT_CONSTANTS) -> float:
        """Maximum electron kinetic energy (eV)."""
        if self.q_value_override is not None:
            return float(self.q_value_override)
        q = constants.amu_energy * (self.mass_initial - self.mass_final)
        if self.charge == 1:
            q -= 2.0 * constants.electron_mass
        return float(q)


def _as_result(values: np.ndarray):
    """Return a float for 0-d arrays, the array otherwise."""
    if values.ndim == 0:
        return float(values)
    return values


def _x_over_one_minus_exp(x: np.ndarray) -> np.ndarray:
    """Evaluate x / (1 - exp(-x)) without overflow; the value at x = 0 is 1."""
    with np.errstate(over="ignore", invalid="ignore", divide="ignore", under="ignore"):
        positive = x / -np.expm1(-x)
        negative = -x * np.exp(x) / -np.expm1(x)
        return np.where(x > 0, positive, np.where(x < 0, negative, 1.0))


def fermi_factor(
    z: int,
    kinetic_energy,
    charge: int,
    *,
    constants: PhysicalConstants = DEFAULT_CONSTANTS,
):
    """
    Coulomb correction F(Z, T_e) = 2*pi*eta / (1 - exp(-2*pi*eta)).

    eta = -charge * alpha * Z * (T_e + m_e) / sqrt(2 * T_e * m_e), so electrons
    (charge = -1) are enhanced and positrons (charge = +1) are suppressed.
    As T_e -> 0, F -> 2*pi*|eta| for electrons and F -> 0 for positrons.
    """
    m_e = constants.electron_mass
    t = np.maximum(np.asarray(kinetic_energy, dtype=float), ENERGY_FLOOR * m_e)
    eta = -charge * constants.alpha * z * (t + m_e) / np.sqrt(2.0 * t * m_e)
    return _as_result(_x_over_one_minus_exp(2.0 * constants.pi * eta))


def decay_density(
    kinetic_energy,
    neutrino_mass: float,
    normalization: float = 1.0,
    *,
    q_value: float,
    z: int,
    charge: int,
    constants: PhysicalConstants = DEFAULT_CONSTANTS,
):
    """
    Unnormalized beta decay rate N(T_e).

    N = C * p * E * (Q - T) * sqrt((Q - T)^2 - m_nu^2) * F(Z, T)
    with p = sqrt(T^2 + 2 T m_e) and E = T + m_e.

    Returns exactly 0 outside 0 <= T_e <= Q - |m_nu|. Never raises.
    """
    m_e = constants.electron_mass
    t = np.asarray(kinetic_energy, dtype=float)
    residual = q_value - t
    allowed = (t >= 0.0) & (residual >= abs(neutrino_mass))

    t_eval = np.maximum(np.where(allowed, t, 0.0), ENERGY_FLOOR * m_e)
    residual = np.where(allowed, q_value - t_eval, 0.0)
    momentum = np.sqrt(t_eval * t_eval + 2.0 * t_eval * m_e)
    neutrino_momentum = np.sqrt(np.maximum(residual * residual - neutrino_mass * neutrino_mass, 0.0))
    coulomb = np.asarray(fermi_factor(z, t_eval, charge, constants=constants))

    values = normalization * momentum * (t_eval + m_e) * residual * neutrino_momentum * coulomb
    return _as_result(np.where(allowed, values, 0.0))


@dataclass(frozen=True)
class BetaSpectrum:
    """
    Decay-rate model bound to one transition.

    Instances are immutable, so several transitions can be simulated in the
    same process. Calling the instance evaluates the density and makes it
    usable as a fit model with parameters ``neutrino_mass`` and
    ``normalization``.
    """
    transition: NuclearTransition
    constants: PhysicalConstants = DEFAULT_CONSTANTS
    parameter_names = ("neutrino_mass", "normalization")

    def __post_init__(self) -> None:
        q = self.transition.q_value(self.constants)
        if not q > 0:
            raise ConfigurationError(f"Transition is not energetically allowed (Q = {q} eV).")

    @property
    def q_value(self) -> float:
        return self.transition.q_value(self.constants)

    @property
    def charge(self) -> int:
        return self.transition.charge

    @property
    def default_bounds(self) -> Dict[str, Tuple[float, float]]:
        return {"neutrino_mass": (0.0, np.inf), "normalization": (0.0, np.inf)}

    def fermi_factor(self, kinetic_energy):
        # Coulomb term uses the initial-nucleus Z.
        return fermi_factor(self.transition.z_initial, kinetic_energy, self.charge, constants=self.constants)

    def decay_density(self, kinetic_energy, neutrino_mass: float, normalization: float = 1.0):
        return decay_density(
            kinetic_energy,
            neutrino_mass,
            normalization,
            q_value=self.q_value,
            z=self.transition.z_initial,
            charge=self.charge,
            constants=self.constants,
        )

    def __call__(self, kinetic_energy, neutrino_mass: float, normalization: float = 1.0):
        return self.decay_density(kinetic_energy, neutrino_mass, normalization)
