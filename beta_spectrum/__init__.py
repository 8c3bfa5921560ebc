"""
Beta Spectrum Builder - Core Package

This package contains reusable, testable building blocks for:
- Evaluating the beta decay rate N(T_e) and the Fermi function
- Sampling electron kinetic energies by acceptance-rejection
- Building binned true and resolution-smeared spectra
- Fitting the spectrum model back to a histogram (neutrino mass, normalization)
- Persisting histograms as CSV and exporting PNG images

The command-line drivers in `scripts/` use this package as their backend.

License: MIT
"""

from .config import REFERENCE_Q_VALUE_EV, TRANSITIONS, SimulationConfig, get_transition
from .errors import BetaSpectrumError, ConfigurationError, SamplingStarvationError
from .export import read_histograms, spectrum_to_png_bytes, write_histograms
from .fitting import FitResult, FitStatus, fit_histogram, guess_normalization
from .physics import BetaSpectrum, NuclearTransition, PhysicalConstants, decay_density, fermi_factor
from .sampling import RejectionSampler, SamplerState, SimulationResult, simulate_spectrum
from .spectrum import Histogram, HistogramSet, Normalization, compare_histograms

__all__ = [
    "REFERENCE_Q_VALUE_EV",
    "TRANSITIONS",
    "SimulationConfig",
    "get_transition",
    "BetaSpectrumError",
    "ConfigurationError",
    "SamplingStarvationError",
    "read_histograms",
    "spectrum_to_png_bytes",
    "write_histograms",
    "FitResult",
    "FitStatus",
    "fit_histogram",
    "guess_normalization",
    "BetaSpectrum",
    "NuclearTransition",
    "PhysicalConstants",
    "decay_density",
    "fermi_factor",
    "RejectionSampler",
    "SamplerState",
    "SimulationResult",
    "simulate_spectrum",
    "Histogram",
    "HistogramSet",
    "Normalization",
    "compare_histograms",
]
