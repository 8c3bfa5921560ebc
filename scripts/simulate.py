#!/usr/bin/env python3
"""
Beta Spectrum Builder - Toy Monte Carlo generator (CLI)

Generates a beta decay electron spectrum by acceptance-rejection sampling and
writes the "true" (and optionally "smeared") histograms to one CSV per run.

Output
------
  <out>/<run_name>.csv   (histograms + '#' metadata lines)
  <out>/<run_name>.png   (optional, static image of the true spectrum)

How to run
------
python scripts/simulate.py --transition H-3 --q-value 18590 \
  --events 1e7 --h 2e-5 --window 25 --resolution 1 \
  --run-name tritium_sim --out out/ --png --verbose

Notes
-----
- --window W samples in [Q - W, Q); --lower-limit sets the bound directly.
- The envelope scale h only changes efficiency; a warning is printed when
  h * N(Q/2) does not bound N on the sampling interval.

License: MIT
"""

from __future__ import annotations

import argparse
import logging
import sys
from pathlib import Path

# -------------------------------------------------------------------------
# Make imports robust:
# Add the repository root to sys.path so `import beta_spectrum` works
# regardless of how/where the script is invoked.
# -------------------------------------------------------------------------
REPO_ROOT = Path(__file__).resolve().parents[1]
if str(REPO_ROOT) not in sys.path:
    sys.path.insert(0, str(REPO_ROOT))

from beta_spectrum.config import TRANSITIONS, SimulationConfig, get_transition  # noqa: E402
from beta_spectrum.errors import BetaSpectrumError  # noqa: E402
from beta_spectrum.export import spectrum_to_png_bytes, write_histograms  # noqa: E402
from beta_spectrum.logging_config import setup_logging  # noqa: E402
from beta_spectrum.physics import NuclearTransition  # noqa: E402
from beta_spectrum.sampling import simulate_spectrum  # noqa: E402
from beta_spectrum.spectrum import TRUE  # noqa: E402

logger = logging.getLogger("beta_spectrum.scripts.simulate")


def _err(msg: str, code: int = 1) -> None:
    """Print an error message to stderr and exit with a non-zero code."""
    print(f"ERROR: {msg}", file=sys.stderr)
    raise SystemExit(code)


def build_transition(args: argparse.Namespace) -> NuclearTransition:
    """Resolve the transition from a preset name or explicit nuclei."""
    explicit = [args.z_initial, args.mass_initial, args.z_final, args.mass_final]
    if any(v is not None for v in explicit):
        if any(v is None for v in explicit):
            _err("Provide all of --z-initial, --mass-initial, --z-final, --mass-final.")
        return NuclearTransition(
            z_initial=args.z_initial,
            mass_initial=args.mass_initial,
            z_final=args.z_final,
            mass_final=args.mass_final,
            q_value_override=args.q_value,
        )
    return get_transition(args.transition, q_value_override=args.q_value)


def main() -> None:
    ap = argparse.ArgumentParser(description="Generate a beta decay electron spectrum (toy Monte Carlo).")

    ap.add_argument("--transition", default="H-3", help=f"Preset transition: {', '.join(TRANSITIONS)}.")
    ap.add_argument("--z-initial", type=int, default=None, help="Atomic number of the initial nucleus.")
    ap.add_argument("--mass-initial", type=float, default=None, help="Isotope mass of the initial nucleus (amu).")
    ap.add_argument("--z-final", type=int, default=None, help="Atomic number of the final nucleus.")
    ap.add_argument("--mass-final", type=float, default=None, help="Isotope mass of the final nucleus (amu).")
    ap.add_argument("--q-value", type=float, default=None, help="Override the Q-value (eV), e.g. 18590.")

    ap.add_argument("--events", type=float, default=1e5, help="Number of accepted events.")
    ap.add_argument("--h", type=float, default=1.0, help="Envelope scale h (efficiency constant).")
    ap.add_argument("--m-nu", type=float, default=0.2, help="Neutrino mass used for generation (eV).")
    ap.add_argument("--resolution", type=float, default=None, help="Detector resolution (eV); enables smearing.")

    ap.add_argument("--window", type=float, default=None, help="Sample only in [Q - window, Q) (eV).")
    ap.add_argument("--lower-limit", type=float, default=None, help="Lower bound of the sampling interval (eV).")
    ap.add_argument("--n-bins", type=int, default=100, help="Number of histogram bins.")
    ap.add_argument("--seed", type=int, default=None, help="RNG seed for reproducibility.")
    ap.add_argument("--max-draws", type=int, default=None, help="Bound on candidate draws.")
    ap.add_argument("--strict-envelope", action="store_true", help="Abort if h * N(Q/2) does not bound N.")

    ap.add_argument("--run-name", required=True, help="Run name; output is <out>/<run-name>.csv.")
    ap.add_argument("--out", type=Path, default=Path("out"), help="Output directory.")
    ap.add_argument("--png", action="store_true", help="Also write a PNG of the true spectrum.")
    ap.add_argument("--verbose", action="store_true", help="Print progress info.")
    args = ap.parse_args()

    setup_logging(logging.INFO if args.verbose else logging.WARNING)

    if args.window is not None and args.lower_limit is not None:
        _err("Provide either --window or --lower-limit, not both.")

    try:
        transition = build_transition(args)
        q = transition.q_value()
        if args.window is not None:
            lower = q - args.window
        elif args.lower_limit is not None:
            lower = args.lower_limit
        else:
            lower = 0.0

        config = SimulationConfig(
            transition=transition,
            n_events=int(args.events),
            envelope_scale=args.h,
            neutrino_mass=args.m_nu,
            resolution=args.resolution,
            lower_limit=lower,
            n_bins=args.n_bins,
            seed=args.seed,
            max_draws=args.max_draws,
            strict_envelope=args.strict_envelope,
            progress_step=0.01,
        )
        config.validate()
    except BetaSpectrumError as e:
        _err(str(e))

    def on_progress(fraction: float) -> None:
        logger.info("Current progress: %.0f%%", 100.0 * fraction)
        if abs(fraction * 10 - round(fraction * 10)) < 1e-9:
            logger.info("-----")

    print(f"(Generating {config.n_events} events...)")
    print(f"Q = {config.q_value:.6g} eV")

    try:
        result = simulate_spectrum(config, on_progress=on_progress)
    except BetaSpectrumError as e:
        _err(str(e))

    metadata = {
        "q_value_eV": result.q_value,
        "z_initial": transition.z_initial,
        "z_final": transition.z_final,
        "n_events": config.n_events,
        "draws": result.draws,
        "envelope_scale": config.envelope_scale,
        "neutrino_mass_eV": config.neutrino_mass,
        "resolution_eV": config.resolution,
        "seed": config.seed,
    }
    csv_path = write_histograms(args.out, args.run_name, result.histograms, metadata)

    if args.png:
        png_path = args.out / f"{args.run_name}.png"
        png_path.write_bytes(
            spectrum_to_png_bytes(result.histograms[TRUE], title=f"Beta spectrum - {args.run_name}")
        )
        logger.info("Wrote %s", png_path)

    print(
        f"Done. Accepted {result.accepted} events in {result.draws} draws "
        f"(acceptance {result.acceptance_rate:.4g}). Histograms: {csv_path}"
    )


if __name__ == "__main__":
    main()
