# scrnaseq_qc/visualization/plotting.py

import scanpy as sc
import logging
from matplotlib.colors import Normalize
import matplotlib.pyplot as plt
import numpy as np
from pathlib import Path

from ..analysis.qc import CellMetrics, FilterThresholds, METRIC_COLUMNS
from ..data.matrix import CountMatrix

log = logging.getLogger(__name__)

DEFAULT_QC_KEYS = list(METRIC_COLUMNS.values())
SUPPORTED_FORMATS = ("png", "pdf", "svg")

# Column -> (FilterThresholds attribute, plot on log10 x-axis)
_KEY_SETTINGS = {
    "n_genes_by_counts": ("min_features", True),
    "total_counts": ("min_umi", True),
    "pct_counts_mt": ("max_mito_percent", False),
    "log10_genes_per_umi": ("min_log10_genes_per_umi", False),
}


def _check_common_args(output_dir, file_format: str) -> Path:
    if not output_dir:
        raise ValueError("output_dir must be provided")
    if file_format not in SUPPORTED_FORMATS:
        raise ValueError(f"file_format must be one of {SUPPORTED_FORMATS}, got '{file_format}'")
    out = Path(output_dir)
    out.mkdir(parents=True, exist_ok=True)
    return out


def _check_keys(keys: list[str] | None) -> list[str]:
    if keys is None:
        return DEFAULT_QC_KEYS[:]
    if not isinstance(keys, list) or not keys:
        raise ValueError("keys must be non-empty list")
    unknown = [k for k in keys if k not in _KEY_SETTINGS]
    if unknown:
        raise ValueError(f"Unknown QC keys: {unknown}. Valid keys: {DEFAULT_QC_KEYS}")
    return keys


def _save_figure(fig, plot_type: str, output_path: Path, dpi: int) -> Path:
    """Saves and closes a matplotlib figure, re-raising failures as RuntimeError."""
    try:
        fig.savefig(output_path, dpi=dpi, bbox_inches="tight")
        log.info(f"Saved {plot_type} plot to {output_path}")
        return output_path
    except Exception as e:
        msg = f"Failed to save {plot_type} plot to {output_path}: {e}"
        log.error(msg, exc_info=True)
        raise RuntimeError(msg) from e
    finally:
        plt.close(fig)


def plot_qc_density(
    metrics: CellMetrics,
    output_dir: str,
    keys: list[str] | None = None,
    thresholds: FilterThresholds | None = None,
    file_prefix: str = "qc_density",
    file_format: str = "png",
    dpi: int = 150,
) -> Path:
    """
    Plots the distribution of each QC metric as a density panel.

    Count metrics use a log10 x-axis. If `thresholds` is given, the active
    cutoff of each metric is drawn as a dashed vertical line. Undefined
    (NaN) values are left out.

    Returns:
        Path of the written figure.
    """
    if not isinstance(metrics, CellMetrics):
        raise TypeError("metrics must be a CellMetrics instance")
    keys = _check_keys(keys)
    out = _check_common_args(output_dir, file_format)

    table = metrics.to_frame()
    log.info(f"Generating QC density plots for: {', '.join(keys)}")

    fig, axes = plt.subplots(1, len(keys), figsize=(4 * len(keys), 3.5), squeeze=False)
    for ax, key in zip(axes[0], keys):
        threshold_attr, log_scale = _KEY_SETTINGS[key]
        values = table[key].to_numpy(dtype=float)
        values = values[np.isfinite(values)]
        if log_scale:
            values = values[values > 0]

        if values.size == 0:
            log.warning(f"No finite values to plot for '{key}'.")
            ax.text(0.5, 0.5, "no data", ha="center", va="center", transform=ax.transAxes)
        else:
            lo, hi = values.min(), values.max()
            if log_scale:
                bins = np.geomspace(lo, hi if hi > lo else lo * 10, 50)
                ax.set_xscale("log")
            else:
                bins = np.linspace(lo, hi if hi > lo else lo + 1, 50)
            ax.hist(values, bins=bins, density=True, histtype="stepfilled", alpha=0.4, color="C0")
            ax.hist(values, bins=bins, density=True, histtype="step", color="C0")

        if thresholds is not None:
            cutoff = getattr(thresholds, threshold_attr)
            if cutoff is not None and (not log_scale or cutoff > 0):
                ax.axvline(cutoff, color="C3", linestyle="--", linewidth=1)

        ax.set_xlabel(key)
        ax.set_ylabel("density")
    fig.suptitle(f"QC metrics ({len(metrics)} cells)")

    return _save_figure(fig, "density", out / f"{file_prefix}.{file_format}", dpi)


def plot_qc_violin(
    matrix: CountMatrix,
    metrics: CellMetrics,
    output_dir: str,
    keys: list[str] | None = None,
    file_prefix: str = "qc_violin",
    file_format: str = "png",
    dpi: int = 150,
    **kwargs
) -> Path:
    """Generates and saves scanpy violin plots for QC metrics."""
    if not isinstance(matrix, CountMatrix):
        raise TypeError("matrix must be a CountMatrix")
    if not isinstance(metrics, CellMetrics):
        raise TypeError("metrics must be a CellMetrics instance")
    if not metrics.cell_ids.equals(matrix.cell_ids):
        raise ValueError("metrics do not describe the cells of matrix")
    keys = _check_keys(keys)
    out = _check_common_args(output_dir, file_format)
    if len(metrics) == 0:
        raise ValueError("Cannot draw violin plots for an empty cell population")

    log.info(f"Generating QC violin plots for: {', '.join(keys)}")
    # Plotting-only AnnData; metrics are attached to this throwaway copy
    adata = matrix.to_anndata(obs=metrics.to_frame())
    try:
        sc.pl.violin(adata, keys=keys, jitter=0.4, multi_panel=True, rotation=90, show=False, **kwargs)
    except Exception as e:
        msg = f"Failed during Scanpy plot generation for violin: {e}"
        log.error(msg, exc_info=True)
        plt.close("all")
        raise RuntimeError(msg) from e
    return _save_figure(plt.gcf(), "violin", out / f"{file_prefix}.{file_format}", dpi)


def plot_genes_vs_umi(
    metrics: CellMetrics,
    output_dir: str,
    thresholds: FilterThresholds | None = None,
    file_prefix: str = "qc_genes_vs_umi",
    file_format: str = "png",
    dpi: int = 150,
) -> Path:
    """Scatter of UMI count against detected genes per cell, coloured by mitochondrial percentage."""
    if not isinstance(metrics, CellMetrics):
        raise TypeError("metrics must be a CellMetrics instance")
    out = _check_common_args(output_dir, file_format)

    shown = (metrics.umi_count > 0) & (metrics.feature_count > 0)
    fig, ax = plt.subplots(figsize=(5, 4))
    if shown.any():
        points = ax.scatter(
            metrics.umi_count[shown],
            metrics.feature_count[shown],
            c=np.nan_to_num(metrics.mito_percent[shown]),
            cmap="viridis",
            s=4,
            norm=Normalize(vmin=0, vmax=max(float(np.nanmax(metrics.mito_percent[shown])), 1.0)),
        )
        fig.colorbar(points, ax=ax, label="pct_counts_mt")
        ax.set_xscale("log")
        ax.set_yscale("log")
    else:
        log.warning("No cells with counts to plot.")

    if thresholds is not None:
        if thresholds.min_umi is not None and thresholds.min_umi > 0:
            ax.axvline(thresholds.min_umi, color="C3", linestyle="--", linewidth=1)
        if thresholds.min_features is not None and thresholds.min_features > 0:
            ax.axhline(thresholds.min_features, color="C3", linestyle="--", linewidth=1)

    ax.set_xlabel("total_counts")
    ax.set_ylabel("n_genes_by_counts")
    return _save_figure(fig, "scatter", out / f"{file_prefix}.{file_format}", dpi)
