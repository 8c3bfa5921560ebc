import itertools
import logging
from unittest.mock import MagicMock

import numpy as np
import pytest

from beta_spectrum.config import REFERENCE_Q_VALUE_EV, SimulationConfig, get_transition
from beta_spectrum.errors import ConfigurationError, SamplingStarvationError
from beta_spectrum.physics import BetaSpectrum, NuclearTransition
from beta_spectrum.sampling import RejectionSampler, SamplerState, simulate_spectrum
from beta_spectrum.spectrum import SMEARED, TRUE, compare_histograms

REFERENCE = get_transition("H-3", q_value_override=REFERENCE_Q_VALUE_EV)
Q_REF = REFERENCE.q_value()
WINDOW = 25.0


def _window_config(**kwargs) -> SimulationConfig:
    params = dict(
        transition=REFERENCE,
        n_events=2000,
        envelope_scale=2e-5,
        lower_limit=Q_REF - WINDOW,
        seed=1,
    )
    params.update(kwargs)
    return SimulationConfig(**params)


def _minimum_h(transition=REFERENCE, lower_limit=Q_REF - WINDOW) -> float:
    sampler = RejectionSampler(
        BetaSpectrum(transition),
        envelope_scale=1.0,
        neutrino_mass=0.2,
        rng=np.random.default_rng(0),
        lower_limit=lower_limit,
    )
    return sampler.minimum_envelope_scale()


def test_invalid_charge_rejected_before_any_draw():
    rng = MagicMock()
    with pytest.raises(ConfigurationError):
        config = SimulationConfig(
            transition=NuclearTransition(z_initial=2, mass_initial=4.0026, z_final=2, mass_final=4.0026),
            n_events=10,
            envelope_scale=1.0,
        )
        simulate_spectrum(config, rng=rng)
    rng.uniform.assert_not_called()


def test_invalid_config_rejected_before_any_draw():
    rng = MagicMock()
    with pytest.raises(ConfigurationError):
        simulate_spectrum(_window_config(n_events=0), rng=rng)
    with pytest.raises(ConfigurationError):
        simulate_spectrum(_window_config(n_bins=-5), rng=rng)
    rng.uniform.assert_not_called()
    rng.normal.assert_not_called()


@pytest.mark.parametrize("seed", [0, 1, 2, 3, 4])
def test_fill_count_equals_accepted_count(seed):
    result = simulate_spectrum(_window_config(seed=seed))
    true = result.histograms[TRUE]

    assert result.accepted == 2000
    assert true.fills == result.accepted
    assert true.entries == result.accepted
    assert result.draws >= result.accepted


def test_acceptance_rate_falls_with_envelope_scale():
    h = 1.2 * _minimum_h()
    low = simulate_spectrum(_window_config(envelope_scale=h, seed=5))
    high = simulate_spectrum(_window_config(envelope_scale=10 * h, seed=5))

    assert high.acceptance_rate < low.acceptance_rate
    assert low.acceptance_rate / high.acceptance_rate == pytest.approx(10.0, rel=0.25)


@pytest.mark.parametrize("seed", [11, 12, 13])
def test_envelope_scale_does_not_change_shape(seed):
    h = 1.5 * _minimum_h()
    a = simulate_spectrum(_window_config(envelope_scale=h, n_events=20_000, n_bins=25, seed=seed))
    b = simulate_spectrum(_window_config(envelope_scale=10 * h, n_events=20_000, n_bins=25, seed=seed + 100))

    _, ndf, p_value = compare_histograms(a.histograms[TRUE], b.histograms[TRUE], min_content=10)
    assert ndf > 10
    assert p_value > 1e-3


def test_envelope_validity():
    spectrum = BetaSpectrum(REFERENCE)
    rng = np.random.default_rng(0)

    # Over [0, Q) the density peaks well below Q/2, so h = 1 is not an envelope
    assert not RejectionSampler(spectrum, envelope_scale=1.0, neutrino_mass=0.2, rng=rng).envelope_is_valid()
    assert RejectionSampler(spectrum, envelope_scale=10.0, neutrino_mass=0.2, rng=rng).envelope_is_valid()

    # Near the endpoint a tiny h suffices
    window = RejectionSampler(
        spectrum, envelope_scale=2e-5, neutrino_mass=0.2, rng=rng, lower_limit=Q_REF - WINDOW
    )
    assert window.envelope_is_valid()
    assert window.max_acceptance_ratio() <= 1.0


def test_invalid_envelope_warns_or_raises(caplog):
    config = SimulationConfig(transition=REFERENCE, n_events=100, envelope_scale=1.0, seed=3)
    with caplog.at_level(logging.WARNING, logger="beta_spectrum"):
        result = simulate_spectrum(config)
    assert result.accepted == 100
    assert "exceeds the envelope" in caplog.text

    strict = SimulationConfig(transition=REFERENCE, n_events=100, envelope_scale=1.0, strict_envelope=True)
    with pytest.raises(ConfigurationError):
        simulate_spectrum(strict)


def test_tritium_scenario_peak_between_half_q_and_q():
    transition = get_transition("H-3")
    q = transition.q_value()
    config = SimulationConfig(
        transition=transition,
        n_events=100_000,
        envelope_scale=0.00002,
        lower_limit=q - WINDOW,
        n_bins=100,
        seed=2016,
    )
    result = simulate_spectrum(config)
    true = result.histograms[TRUE]

    peak = int(np.argmax(true.counts))
    assert q / 2 < true.centers[peak] < q
    assert true.edges[peak + 1] <= q
    # density vanishes at the endpoint
    assert true.counts[-1] < true.counts[peak]
    assert result.q_value == pytest.approx(q)


def test_starvation_raises():
    config = _window_config(envelope_scale=1e6, n_events=10, max_draws=5000)
    with pytest.raises(SamplingStarvationError):
        simulate_spectrum(config)


def test_same_seed_reproduces_spectrum():
    a = simulate_spectrum(_window_config(seed=42))
    b = simulate_spectrum(_window_config(seed=42))
    c = simulate_spectrum(_window_config(seed=43))

    assert np.array_equal(a.histograms[TRUE].counts, b.histograms[TRUE].counts)
    assert a.draws == b.draws
    assert not np.array_equal(a.histograms[TRUE].counts, c.histograms[TRUE].counts)


def test_accepted_energies_iterator():
    sampler = RejectionSampler(
        BetaSpectrum(REFERENCE),
        envelope_scale=2e-5,
        neutrino_mass=0.2,
        rng=np.random.default_rng(7),
        lower_limit=Q_REF - WINDOW,
    )
    assert sampler.state == SamplerState.SAMPLING

    energies = list(sampler.accepted_energies(500))
    assert len(energies) == 500
    assert all(isinstance(e, float) for e in energies)
    assert min(energies) >= Q_REF - WINDOW
    assert max(energies) < Q_REF
    assert sampler.state == SamplerState.DONE
    assert sampler.accepted == 500
    assert 0 < sampler.acceptance_rate <= 1


def test_accepted_energies_are_lazy():
    sampler = RejectionSampler(
        BetaSpectrum(REFERENCE),
        envelope_scale=2e-5,
        neutrino_mass=0.2,
        rng=np.random.default_rng(7),
        lower_limit=Q_REF - WINDOW,
        batch_size=64,
    )
    first = list(itertools.islice(sampler.accepted_energies(500), 10))
    assert len(first) == 10
    assert sampler.accepted < 500
    assert sampler.state == SamplerState.SAMPLING


def test_progress_callback_is_observational():
    seen = []
    with_progress = simulate_spectrum(_window_config(seed=9), on_progress=seen.append)
    without = simulate_spectrum(_window_config(seed=9))

    assert len(seen) == 10
    assert seen == sorted(seen)
    assert seen[-1] == pytest.approx(1.0)
    assert np.array_equal(with_progress.histograms[TRUE].counts, without.histograms[TRUE].counts)


def test_smearing_fills_second_channel():
    result = simulate_spectrum(_window_config(resolution=1.0, n_events=5000, seed=4))
    true = result.histograms[TRUE]
    smeared = result.histograms[SMEARED]

    assert true.entries == result.accepted
    assert smeared.fills == result.accepted
    # smeared values pushed below Q - 25 or above Q are dropped
    assert 0 < smeared.entries < result.accepted


def test_wide_smearing_keeps_true_events():
    result = simulate_spectrum(_window_config(resolution=1e4, n_events=1000, seed=4))
    assert result.histograms[TRUE].entries == 1000
    assert result.histograms[SMEARED].entries < 100


def test_no_smeared_channel_without_resolution():
    result = simulate_spectrum(_window_config())
    assert SMEARED not in result.histograms
