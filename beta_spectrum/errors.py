"""
Exception types raised by the beta spectrum package.

Configuration problems are detected before any random draws are made.
Numerical edge cases inside the sampling loop never raise; they are handled
by returning zero or limit values.

License: MIT
"""


class BetaSpectrumError(Exception):
    """Base class for all package errors."""


class ConfigurationError(BetaSpectrumError, ValueError):
    """Invalid run configuration (transition, binning, event target, ...)."""


class SamplingStarvationError(BetaSpectrumError, RuntimeError):
    """The draw bound was exhausted before the target event count was reached."""
