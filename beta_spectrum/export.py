"""
Persistence and export helpers for simulated spectra.

Histogram sets are stored as one CSV file per run name:

    # Beta Spectrum Builder - histograms
    # run=<run name>
    # q_value_eV=...
    ...
    bin_index,e_low_eV,e_high_eV,e_center_eV,true_counts[,smeared_counts]

The '#' lines hold key=value metadata and are skipped by
pd.read_csv(path, comment="#"). A separate static PNG export is provided for
reporting.

License: MIT
"""

from __future__ import annotations

import io
from pathlib import Path
from typing import Dict, Mapping, Optional, Tuple

import matplotlib.pyplot as plt
import numpy as np
import pandas as pd

from .errors import ConfigurationError
from .fitting import FitResult, SpectrumModel
from .spectrum import Histogram, HistogramSet

_HEADER = "# Beta Spectrum Builder - histograms\n"
_BIN_COLS = ["bin_index", "e_low_eV", "e_high_eV", "e_center_eV"]
_COUNT_SUFFIX = "_counts"


def histograms_to_dataframe(histograms: HistogramSet) -> pd.DataFrame:
    edges = histograms.edges
    data = {
        "bin_index": np.arange(edges.size - 1),
        "e_low_eV": edges[:-1],
        "e_high_eV": edges[1:],
        "e_center_eV": 0.5 * (edges[:-1] + edges[1:]),
    }
    for name in histograms.names:
        data[f"{name}{_COUNT_SUFFIX}"] = histograms[name].counts
    return pd.DataFrame(data)


def histograms_to_csv_bytes(histograms: HistogramSet, metadata: Optional[Mapping[str, object]] = None) -> bytes:
    """Serialize a histogram set (with metadata comment lines) to UTF-8 CSV bytes."""
    buf = io.StringIO()
    buf.write(_HEADER)
    for key, value in (metadata or {}).items():
        buf.write(f"# {key}={'' if value is None else value}\n")
    histograms_to_dataframe(histograms).to_csv(buf, index=False, float_format="%.17g")
    return buf.getvalue().encode("utf-8")


def run_path(out_dir: Path, run_name: str) -> Path:
    return Path(out_dir) / f"{run_name}.csv"


def write_histograms(
    out_dir: Path,
    run_name: str,
    histograms: HistogramSet,
    metadata: Optional[Mapping[str, object]] = None,
) -> Path:
    """Write the run's histograms to <out_dir>/<run_name>.csv and return the path."""
    path = run_path(out_dir, run_name)
    path.parent.mkdir(parents=True, exist_ok=True)
    meta = {"run": run_name}
    meta.update(metadata or {})
    path.write_bytes(histograms_to_csv_bytes(histograms, meta))
    return path


def _read_metadata(path: Path) -> Dict[str, str]:
    meta: Dict[str, str] = {}
    with path.open("r", encoding="utf-8") as f:
        for line in f:
            if not line.startswith("#"):
                break
            key, sep, value = line[1:].strip().partition("=")
            if sep:
                meta[key.strip()] = value.strip()
    return meta


def read_histograms(path: Path) -> Tuple[HistogramSet, Dict[str, str]]:
    """Load a histogram set and its metadata written by write_histograms."""
    path = Path(path)
    if not path.exists():
        raise FileNotFoundError(str(path))
    df = pd.read_csv(path, comment="#")

    missing = set(_BIN_COLS) - set(df.columns)
    if missing:
        raise ValueError(f"Histogram CSV missing columns: {sorted(missing)}")
    names = [c[: -len(_COUNT_SUFFIX)] for c in df.columns if c.endswith(_COUNT_SUFFIX)]
    if not names:
        raise ValueError("Histogram CSV has no '<name>_counts' columns")
    if df.empty:
        raise ConfigurationError("Histogram CSV has no bins")

    df = df.sort_values("bin_index")
    edges = np.append(df["e_low_eV"].to_numpy(dtype=float), float(df["e_high_eV"].iloc[-1]))
    histograms = HistogramSet.from_histograms(
        Histogram.from_counts(edges, df[f"{name}{_COUNT_SUFFIX}"].to_numpy(dtype=float), name=name)
        for name in names
    )
    return histograms, _read_metadata(path)


def spectrum_to_png_bytes(
    histogram: Histogram,
    *,
    title: str,
    x_label: str = "E_e [eV]",
    y_label: str = "Intensity",
    fit: Optional[FitResult] = None,
    model: Optional[SpectrumModel] = None,
    integrated: bool = False,
    dpi: int = 150,
) -> bytes:
    """
    Render the histogram to PNG bytes, optionally overlaying a fitted model.

    The fitted curve is the model evaluated at the fit's parameters on a fine
    grid across the histogram domain; pass integrated=True for fits made with
    integrate=True so the curve is scaled by the bin width.
    """
    fig, ax = plt.subplots()
    ax.stairs(histogram.counts, histogram.edges, fill=True, color="tab:blue", alpha=0.6, label=histogram.name)

    if fit is not None and model is not None:
        grid = np.linspace(histogram.e_min, histogram.e_max, 1000)
        curve = np.asarray(model(grid, **fit.parameters), dtype=float)
        if integrated:
            curve = curve * histogram.bin_width
        ax.plot(grid, curve, color="red", label="fit")
        ax.text(
            0.99,
            0.99,
            fit.summary(),
            transform=ax.transAxes,
            ha="right",
            va="top",
            fontsize=7,
            family="monospace",
        )

    ax.set_xlabel(x_label)
    ax.set_ylabel(y_label)
    ax.set_title(title)
    ax.legend(loc="lower left", fontsize=8)

    fig.tight_layout()
    buf = io.BytesIO()
    fig.savefig(buf, format="png", dpi=dpi, bbox_inches="tight")
    plt.close(fig)
    buf.seek(0)
    return buf.read()
