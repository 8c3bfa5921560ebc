#!/usr/bin/env python3
"""
Beta Spectrum Builder - spectrum fitter (CLI)

Reads histograms written by scripts/simulate.py and fits N(T_e; m_nu, C) to
one channel by chi-square minimization.

How to run
------
python scripts/fit.py --input out/tritium_sim.csv --histogram true \
  --fit-min 18565 --fit-max 18589.8 --m-nu 0.2 --fix-m-nu --png --verbose

Notes
-----
- The transition is rebuilt from the Q-value and Z values stored in the file.
- Without --norm the normalization starts from the ratio of observed to
  predicted counts.

License: MIT
"""

from __future__ import annotations

import argparse
import logging
import sys
from pathlib import Path

REPO_ROOT = Path(__file__).resolve().parents[1]
if str(REPO_ROOT) not in sys.path:
    sys.path.insert(0, str(REPO_ROOT))

from beta_spectrum.errors import BetaSpectrumError  # noqa: E402
from beta_spectrum.export import read_histograms, spectrum_to_png_bytes  # noqa: E402
from beta_spectrum.fitting import fit_histogram, guess_normalization  # noqa: E402
from beta_spectrum.logging_config import setup_logging  # noqa: E402
from beta_spectrum.physics import BetaSpectrum, NuclearTransition  # noqa: E402


def _err(msg: str, code: int = 1) -> None:
    """Print error and exit with non-zero status."""
    print(f"ERROR: {msg}", file=sys.stderr)
    raise SystemExit(code)


def spectrum_from_metadata(meta: dict) -> BetaSpectrum:
    """Rebuild the fit model from the metadata lines of a run file."""
    try:
        q = float(meta["q_value_eV"])
        z_initial = int(meta["z_initial"])
        z_final = int(meta["z_final"])
    except (KeyError, ValueError):
        _err("Run file lacks q_value_eV / z_initial / z_final metadata.")
    # Masses are irrelevant once the Q-value is fixed.
    transition = NuclearTransition(z_initial, 0.0, z_final, 0.0, q_value_override=q)
    return BetaSpectrum(transition)


def main() -> None:
    ap = argparse.ArgumentParser(description="Fit the beta decay spectrum model to a stored histogram.")
    ap.add_argument("--input", required=True, type=Path, help="Run CSV written by simulate.py.")
    ap.add_argument("--histogram", default="true", help="Channel to fit (true, smeared).")
    ap.add_argument("--fit-min", type=float, default=None, help="Lower edge of the fit range (eV).")
    ap.add_argument("--fit-max", type=float, default=None, help="Upper edge of the fit range (eV).")
    ap.add_argument("--m-nu", type=float, default=1.0, help="Initial neutrino mass (eV).")
    ap.add_argument("--norm", type=float, default=None, help="Initial normalization C.")
    ap.add_argument("--fix-m-nu", action="store_true", help="Keep the neutrino mass fixed.")
    ap.add_argument("--fix-norm", action="store_true", help="Keep the normalization fixed.")
    ap.add_argument("--integrate", action="store_true", help="Integrate the model over each bin.")
    ap.add_argument("--png", action="store_true", help="Write <input>.fit.png with the fitted curve.")
    ap.add_argument("--verbose", action="store_true", help="Print fit progress info.")
    args = ap.parse_args()

    setup_logging(logging.INFO if args.verbose else logging.WARNING)

    if (args.fit_min is None) ^ (args.fit_max is None):
        _err("Provide BOTH --fit-min and --fit-max, or neither (for the full histogram).")
    fit_range = None if args.fit_min is None else (args.fit_min, args.fit_max)

    try:
        histograms, meta = read_histograms(args.input)
    except (OSError, ValueError) as e:
        _err(f"Failed to read '{args.input}': {e}")

    if args.histogram not in histograms:
        _err(f"Histogram '{args.histogram}' not in file. Available: {list(histograms.names)}")
    hist = histograms[args.histogram]
    spectrum = spectrum_from_metadata(meta)

    params = {"neutrino_mass": args.m_nu, "normalization": args.norm}
    fixed = [name for name, flag in (("neutrino_mass", args.fix_m_nu), ("normalization", args.fix_norm)) if flag]

    try:
        if params["normalization"] is None:
            params["normalization"] = guess_normalization(
                hist, spectrum, params, fit_range=fit_range, integrate=args.integrate
            )
        result = fit_histogram(
            hist,
            spectrum,
            params,
            fixed=fixed,
            fit_range=fit_range,
            bounds={k: v for k, v in spectrum.default_bounds.items() if k not in fixed},
            integrate=args.integrate,
        )
    except (BetaSpectrumError, ValueError) as e:
        _err(str(e))

    print(result.summary())

    if args.png:
        png_path = args.input.with_suffix(".fit.png")
        png_path.write_bytes(
            spectrum_to_png_bytes(
                hist,
                title=f"Fit - {meta.get('run', args.input.stem)} ({args.histogram})",
                fit=result,
                model=spectrum,
                integrated=args.integrate,
            )
        )
        print(f"Plot: {png_path}")

    if not result.converged:
        raise SystemExit(2)


if __name__ == "__main__":
    main()
