import numpy as np
import pytest
from scipy import integrate

from beta_spectrum.config import REFERENCE_Q_VALUE_EV, SimulationConfig, get_transition
from beta_spectrum.errors import ConfigurationError
from beta_spectrum.fitting import FitStatus, fit_histogram, guess_normalization
from beta_spectrum.physics import BetaSpectrum
from beta_spectrum.sampling import RejectionSampler, simulate_spectrum
from beta_spectrum.spectrum import TRUE, Histogram

TRANSITION = get_transition("H-3", q_value_override=REFERENCE_Q_VALUE_EV)
SPECTRUM = BetaSpectrum(TRANSITION)
Q = SPECTRUM.q_value
WINDOW = 25.0


def _expected_histogram(neutrino_mass, n_expected, n_bins=100):
    """Histogram holding the exact expected counts (no fluctuations)."""
    empty = Histogram(n_bins, Q - WINDOW, Q)
    shape = SPECTRUM(empty.centers, neutrino_mass, 1.0)
    normalization = n_expected / shape.sum()
    return Histogram.from_counts(empty.edges, normalization * shape), normalization


def _fit_both(hist, m_start):
    params = {"neutrino_mass": m_start, "normalization": 1.0}
    params["normalization"] = guess_normalization(hist, SPECTRUM, params)
    return fit_histogram(hist, SPECTRUM, params, bounds=SPECTRUM.default_bounds)


def _tight_envelope(neutrino_mass):
    sampler = RejectionSampler(
        SPECTRUM,
        envelope_scale=1.0,
        neutrino_mass=neutrino_mass,
        rng=np.random.default_rng(0),
        lower_limit=Q - WINDOW,
    )
    return 1.1 * sampler.minimum_envelope_scale()


def test_recovers_parameters_from_expected_counts():
    hist, normalization = _expected_histogram(2.0, 1e6)
    result = _fit_both(hist, m_start=1.0)

    assert result.converged
    assert result.status == FitStatus.CONVERGED
    assert result.parameters["neutrino_mass"] == pytest.approx(2.0, abs=1e-2)
    assert result.parameters["normalization"] == pytest.approx(normalization, rel=1e-3)
    assert result.chi_square < 1e-3
    assert result.degrees_of_freedom == 98
    assert result.uncertainties["neutrino_mass"] > 0


def test_uncertainty_shrinks_as_inverse_sqrt_of_events():
    small, _ = _expected_histogram(2.0, 1e5)
    large, _ = _expected_histogram(2.0, 4e5)
    r_small = _fit_both(small, m_start=1.5)
    r_large = _fit_both(large, m_start=1.5)

    assert r_small.converged and r_large.converged
    ratio_m = r_small.uncertainties["neutrino_mass"] / r_large.uncertainties["neutrino_mass"]
    assert ratio_m == pytest.approx(2.0, rel=0.05)

    rel_small = r_small.uncertainties["normalization"] / r_small.parameters["normalization"]
    rel_large = r_large.uncertainties["normalization"] / r_large.parameters["normalization"]
    assert rel_small / rel_large == pytest.approx(2.0, rel=0.05)


def test_fit_normalization_on_simulated_spectrum():
    n_events = 100_000
    config = SimulationConfig(
        transition=TRANSITION,
        n_events=n_events,
        envelope_scale=_tight_envelope(0.2),
        neutrino_mass=0.2,
        lower_limit=Q - WINDOW,
        seed=7,
    )
    hist = simulate_spectrum(config).histograms[TRUE]

    params = {"neutrino_mass": 0.2, "normalization": 1.0}
    params["normalization"] = guess_normalization(hist, SPECTRUM, params, integrate=True)
    result = fit_histogram(hist, SPECTRUM, params, fixed=["neutrino_mass"], integrate=True)

    area, _ = integrate.quad(lambda t: SPECTRUM(t, 0.2), Q - WINDOW, Q, points=[Q - 0.2], limit=200)
    expected = n_events / area

    assert result.converged
    assert result.parameters["neutrino_mass"] == 0.2
    assert result.uncertainties["neutrino_mass"] == 0.0
    sigma = result.uncertainties["normalization"]
    assert abs(result.parameters["normalization"] - expected) < 4 * sigma
    assert result.reduced_chi_square < 1.5


def test_fit_neutrino_mass_on_simulated_spectrum():
    config = SimulationConfig(
        transition=TRANSITION,
        n_events=200_000,
        envelope_scale=_tight_envelope(5.0),
        neutrino_mass=5.0,
        lower_limit=Q - WINDOW,
        seed=21,
    )
    hist = simulate_spectrum(config).histograms[TRUE]

    params = {"neutrino_mass": 3.0, "normalization": 1.0}
    params["normalization"] = guess_normalization(hist, SPECTRUM, params, integrate=True)
    result = fit_histogram(hist, SPECTRUM, params, integrate=True, bounds=SPECTRUM.default_bounds)

    assert result.converged
    sigma = result.uncertainties["neutrino_mass"]
    assert 0 < sigma < 1.0
    assert abs(result.parameters["neutrino_mass"] - 5.0) < 5 * sigma


def test_non_convergence_is_reported():
    hist, normalization = _expected_histogram(2.0, 1e6)
    params = {"neutrino_mass": 10.0, "normalization": 3 * normalization}
    result = fit_histogram(hist, SPECTRUM, params, bounds=SPECTRUM.default_bounds, max_nfev=1)

    assert result.status == FitStatus.FAILED
    assert not result.converged


def test_fit_does_not_mutate_histogram():
    hist, normalization = _expected_histogram(2.0, 1e5)
    before = hist.counts
    _fit_both(hist, m_start=1.0)
    assert np.array_equal(before, hist.counts)


def test_all_parameters_fixed():
    hist, normalization = _expected_histogram(2.0, 1e5)
    params = {"neutrino_mass": 2.0, "normalization": normalization}
    result = fit_histogram(hist, SPECTRUM, params, fixed=params.keys())

    assert result.converged
    assert result.chi_square == pytest.approx(0.0, abs=1e-9)
    assert result.degrees_of_freedom == 100
    assert result.uncertainties == {"neutrino_mass": 0.0, "normalization": 0.0}


def test_fit_range_selects_bins():
    hist, normalization = _expected_histogram(2.0, 1e5)
    params = {"neutrino_mass": 2.0, "normalization": normalization}
    result = fit_histogram(hist, SPECTRUM, params, fixed=["neutrino_mass"], fit_range=(Q - 10.0, Q))
    assert result.degrees_of_freedom == 40 - 1
    assert result.parameters["normalization"] == pytest.approx(normalization, rel=1e-6)


def test_invalid_fit_setup_raises():
    hist, normalization = _expected_histogram(2.0, 1e5)
    params = {"neutrino_mass": 2.0, "normalization": normalization}

    with pytest.raises(ConfigurationError):
        fit_histogram(hist, SPECTRUM, params, fixed=["mass"])
    with pytest.raises(ConfigurationError):
        fit_histogram(hist, SPECTRUM, params, bounds={"mass": (0, 1)})
    with pytest.raises(ConfigurationError):
        # a single bin cannot constrain two free parameters
        fit_histogram(hist, SPECTRUM, params, fit_range=(Q - 10.2, Q - 10.0))
    with pytest.raises(ConfigurationError):
        fit_histogram(hist, SPECTRUM, params, fit_range=(Q, Q - 10.0))


def test_summary_lists_parameters():
    hist, normalization = _expected_histogram(2.0, 1e5)
    params = {"neutrino_mass": 2.0, "normalization": normalization}
    result = fit_histogram(hist, SPECTRUM, params, fixed=["neutrino_mass"])
    text = result.summary()
    assert "neutrino_mass = 2 (fixed)" in text
    assert "normalization" in text
    assert "ChiSq / ndf" in text
