# scrnaseq_qc/analysis/qc.py

import logging
import numbers
from dataclasses import dataclass, field

import numpy as np
import pandas as pd
import scanpy as sc

from ..data.matrix import CountMatrix
from ..errors import ValidationError

log = logging.getLogger(__name__)

# CellMetrics attribute -> column name used in exported tables (scanpy naming where one exists)
METRIC_COLUMNS = {
    "feature_count": "n_genes_by_counts",
    "umi_count": "total_counts",
    "mito_percent": "pct_counts_mt",
    "log10_genes_per_umi": "log10_genes_per_umi",
}


@dataclass(frozen=True)
class FilterThresholds:
    """
    Cutoffs for one QC run.

    Cell cutoffs are strict: a cell is kept only if
    feature_count > min_features, umi_count > min_umi,
    log10_genes_per_umi > min_log10_genes_per_umi and
    mito_percent < max_mito_percent. Set a cell cutoff to None to disable it.
    Gene support is inclusive: a gene is kept if it is detected in
    at least `min_cells` of the surviving cells.
    """
    min_features: float | None = 200
    min_umi: float | None = 500
    min_log10_genes_per_umi: float | None = 0.8
    max_mito_percent: float | None = 5.0
    min_cells: int = 10

    def __post_init__(self):
        for name in ("min_features", "min_umi", "min_log10_genes_per_umi", "max_mito_percent"):
            value = getattr(self, name)
            if value is None:
                continue
            if isinstance(value, bool) or not isinstance(value, numbers.Real):
                raise ValidationError(f"{name} must be a number or None, got {value!r}.")
            if not np.isfinite(value):
                raise ValidationError(f"{name} must be finite, got {value!r}.")
        if self.max_mito_percent is not None and not 0 <= self.max_mito_percent <= 100:
            raise ValidationError(f"max_mito_percent ({self.max_mito_percent}) must be between 0 and 100.")
        _check_min_cells(self.min_cells)


def _check_min_cells(min_cells) -> None:
    if isinstance(min_cells, bool) or not isinstance(min_cells, numbers.Integral) or min_cells < 0:
        raise ValidationError(f"min_cells must be a non-negative integer, got {min_cells!r}.")


def _frozen_array(values, dtype) -> np.ndarray:
    array = np.array(values, dtype=dtype, copy=True)
    array.flags.writeable = False
    return array


@dataclass(frozen=True, eq=False)
class CellMetrics:
    """
    Per-cell QC metrics, in the cell order of the matrix they were computed from.

    mito_percent is NaN for cells with no counts; log10_genes_per_umi is NaN
    when feature_count <= 1 or umi_count <= 1. Such cells are flagged in
    `undefined` and never pass the cell filter.
    """
    cell_ids: pd.Index
    feature_count: np.ndarray
    umi_count: np.ndarray
    mito_percent: np.ndarray
    log10_genes_per_umi: np.ndarray

    def __post_init__(self):
        n_cells = len(self.cell_ids)
        object.__setattr__(self, "cell_ids", pd.Index(self.cell_ids).astype(str))
        for name, dtype in (
            ("feature_count", np.int64),
            ("umi_count", np.int64),
            ("mito_percent", np.float64),
            ("log10_genes_per_umi", np.float64),
        ):
            array = _frozen_array(getattr(self, name), dtype)
            if array.shape != (n_cells,):
                raise ValidationError(
                    f"Metric '{name}' has shape {array.shape}, expected ({n_cells},)."
                )
            object.__setattr__(self, name, array)

    def __len__(self) -> int:
        return len(self.cell_ids)

    @property
    def undefined(self) -> np.ndarray:
        """Boolean mask of cells with an undefined mito_percent or log10_genes_per_umi."""
        return ~(np.isfinite(self.mito_percent) & np.isfinite(self.log10_genes_per_umi))

    def subset(self, cell_ids) -> "CellMetrics":
        """Returns the metrics of the given cells, in the order given."""
        wanted = pd.Index(list(cell_ids)).astype(str)
        positions = self.cell_ids.get_indexer(wanted)
        if np.any(positions < 0):
            missing = wanted[positions < 0].tolist()
            raise ValidationError(f"Unknown cell identifiers ({len(missing)}): {missing[:5]}")
        return CellMetrics(
            cell_ids=wanted,
            feature_count=self.feature_count[positions],
            umi_count=self.umi_count[positions],
            mito_percent=self.mito_percent[positions],
            log10_genes_per_umi=self.log10_genes_per_umi[positions],
        )

    def to_frame(self) -> pd.DataFrame:
        """Returns the metrics as a DataFrame indexed by cell id."""
        return pd.DataFrame(
            {column: getattr(self, attr) for attr, column in METRIC_COLUMNS.items()},
            index=self.cell_ids.copy(),
        )


def compute_cell_metrics(matrix: CountMatrix, mito_prefix: str = "MT-") -> CellMetrics:
    """
    Calculates per-cell QC metrics using scanpy.

    The metrics are computed on a temporary AnnData copy; nothing is attached
    to `matrix`.

    Args:
        matrix: Raw counts (genes x cells).
        mito_prefix: Case-sensitive prefix identifying mitochondrial genes.
                     Defaults to "MT-" (human). Use "mt-" for mouse.

    Returns:
        A CellMetrics record with one entry per cell of `matrix`.

    Raises:
        TypeError: If `matrix` is not a CountMatrix.
        ValidationError: If `mito_prefix` is not a non-empty string.
        RuntimeError: If scanpy fails to compute the metrics.
    """
    if not isinstance(matrix, CountMatrix):
        raise TypeError("Input must be a CountMatrix.")
    if not isinstance(mito_prefix, str) or not mito_prefix:
        raise ValidationError(f"mito_prefix must be a non-empty string, got {mito_prefix!r}.")

    log.info(f"Calculating QC metrics. Identifying mitochondrial genes with prefix: '{mito_prefix}'")
    is_mito = np.asarray(matrix.gene_ids.str.startswith(mito_prefix), dtype=bool)
    n_mt_genes = int(is_mito.sum())
    if n_mt_genes > 0:
        log.info(f"Found {n_mt_genes} mitochondrial genes.")
    else:
        log.warning(f"No mitochondrial genes found using prefix '{mito_prefix}'. "
                    f"Mitochondrial percentages will be zero.")

    n_cells = matrix.n_cells
    if n_cells == 0 or matrix.n_genes == 0:
        feature_count = np.zeros(n_cells, dtype=np.int64)
        umi_count = np.zeros(n_cells, dtype=np.int64)
        mito_counts = np.zeros(n_cells, dtype=np.float64)
    else:
        adata = matrix.to_anndata()
        qc_vars = []
        if n_mt_genes > 0:
            adata.var["mt"] = is_mito
            qc_vars = ["mt"]
        try:
            obs_metrics, _ = sc.pp.calculate_qc_metrics(
                adata,
                qc_vars=qc_vars,
                percent_top=None,
                log1p=False,
                inplace=False,
            )
        except Exception as e:
            log.error(f"Error calculating QC metrics: {e}", exc_info=True)
            raise RuntimeError(f"Failed to calculate QC metrics: {e}") from e

        feature_count = obs_metrics["n_genes_by_counts"].to_numpy(dtype=np.int64)
        umi_count = np.rint(obs_metrics["total_counts"].to_numpy(dtype=np.float64)).astype(np.int64)
        if qc_vars:
            mito_counts = obs_metrics["total_counts_mt"].to_numpy(dtype=np.float64)
        else:
            mito_counts = np.zeros(n_cells, dtype=np.float64)

    with np.errstate(divide="ignore", invalid="ignore"):
        mito_percent = np.where(umi_count > 0, 100.0 * mito_counts / umi_count, np.nan)
        log10_genes_per_umi = np.where(
            (feature_count > 1) & (umi_count > 1),
            np.log10(feature_count) / np.log10(umi_count),
            np.nan,
        )

    metrics = CellMetrics(
        cell_ids=matrix.cell_ids,
        feature_count=feature_count,
        umi_count=umi_count,
        mito_percent=mito_percent,
        log10_genes_per_umi=log10_genes_per_umi,
    )

    n_undefined = int(metrics.undefined.sum())
    if n_undefined:
        log.warning(f"{n_undefined} of {n_cells} cells have undefined QC metrics "
                    f"(zero counts or <= 1 detected gene); they will be filtered out.")
    log.info("Finished QC metrics calculation step.")
    return metrics


def select_cells(metrics: CellMetrics, thresholds: FilterThresholds | None = None) -> pd.Index:
    """
    Returns the ids of cells passing every QC cutoff, in their original order.

    All cutoffs are strict inequalities and are combined with logical AND.
    Cells with undefined metrics are always excluded. An empty metrics
    table yields an empty index.
    """
    if not isinstance(metrics, CellMetrics):
        raise TypeError("metrics must be a CellMetrics instance.")
    thresholds = thresholds if thresholds is not None else FilterThresholds()

    n_start = len(metrics)
    if n_start == 0:
        log.info("No cells to filter.")
        return metrics.cell_ids[:0]

    keep = ~metrics.undefined
    log.info(f"Starting filtering with {n_start} cells. "
             f"Cells with defined metrics: {int(keep.sum())}")

    cutoffs = (
        ("min_features", thresholds.min_features, metrics.feature_count, np.greater),
        ("min_umi", thresholds.min_umi, metrics.umi_count, np.greater),
        ("min_log10_genes_per_umi", thresholds.min_log10_genes_per_umi, metrics.log10_genes_per_umi, np.greater),
        ("max_mito_percent", thresholds.max_mito_percent, metrics.mito_percent, np.less),
    )
    for name, value, values, compare in cutoffs:
        if value is None:
            continue
        with np.errstate(invalid="ignore"):
            keep &= compare(values, value)
        log.info(f"Applied filter: {name} = {value}. Cells remaining: {int(keep.sum())}")

    kept = metrics.cell_ids[keep]
    log.info(f"Filtering complete. Kept {len(kept)} cells out of {n_start} ({len(kept)/n_start*100:.2f}%).")
    return kept


def filter_cells_qc(
    matrix: CountMatrix,
    metrics: CellMetrics,
    thresholds: FilterThresholds | None = None,
) -> CountMatrix:
    """
    Filters cells based on previously computed QC metrics.

    Args:
        matrix: The raw counts the metrics were computed from.
        metrics: Output of `compute_cell_metrics(matrix, ...)`.
        thresholds: Cutoffs to apply. Defaults to FilterThresholds().

    Returns:
        A new CountMatrix with only the kept cells; every gene is retained.

    Raises:
        ValidationError: If `metrics` does not describe the cells of `matrix`.
    """
    if not isinstance(matrix, CountMatrix):
        raise TypeError("Input must be a CountMatrix.")
    if not isinstance(metrics, CellMetrics):
        raise TypeError("metrics must be a CellMetrics instance.")
    if not metrics.cell_ids.equals(matrix.cell_ids):
        raise ValidationError(
            "CellMetrics do not match the matrix cells. Run compute_cell_metrics on this matrix first."
        )
    kept = select_cells(metrics, thresholds)
    return matrix.subset(cells=kept)


def select_genes(matrix: CountMatrix, min_cells: int = 10) -> pd.Index:
    """
    Returns the ids of genes detected (count > 0) in at least `min_cells` cells.

    Run this on the cell-filtered matrix: support is counted over whatever
    cells `matrix` holds, so genes seen only in discarded cells must already
    be gone from it.
    """
    if not isinstance(matrix, CountMatrix):
        raise TypeError("Input must be a CountMatrix.")
    _check_min_cells(min_cells)

    if matrix.n_cells == 0 or matrix.n_genes == 0:
        cells_per_gene = np.zeros(matrix.n_genes, dtype=np.int64)
        keep = cells_per_gene >= min_cells
    else:
        adata = matrix.to_anndata()
        try:
            gene_subset, cells_per_gene = sc.pp.filter_genes(adata, min_cells=min_cells, inplace=False)
        except Exception as e:
            log.error(f"Error computing gene support: {e}", exc_info=True)
            raise RuntimeError(f"Failed to compute gene support: {e}") from e
        keep = np.asarray(gene_subset, dtype=bool)

    kept = matrix.gene_ids[keep]
    log.info(f"Applied filter: min_cells = {min_cells} over {matrix.n_cells} cells. "
             f"Kept {len(kept)} genes out of {matrix.n_genes}.")
    if len(kept) == 0 and matrix.n_genes > 0:
        log.warning(f"No genes are detected in at least {min_cells} cells.")
    return kept


def filter_genes_qc(matrix: CountMatrix, min_cells: int = 10) -> CountMatrix:
    """Returns a new CountMatrix keeping only genes with enough cell support."""
    kept = select_genes(matrix, min_cells=min_cells)
    return matrix.subset(genes=kept)


@dataclass(frozen=True, eq=False)
class QCResult:
    """Outputs of one QC run, for reporting and persistence."""
    metrics: CellMetrics
    kept_cells: pd.Index
    kept_genes: pd.Index
    filtered: CountMatrix
    thresholds: FilterThresholds = field(default_factory=FilterThresholds)


def run_qc(
    matrix: CountMatrix,
    thresholds: FilterThresholds | None = None,
    mito_prefix: str = "MT-",
) -> QCResult:
    """
    Runs metric calculation, cell filtering and then gene filtering.

    Gene support is computed only over the cells that survive the cell
    filter.
    """
    thresholds = thresholds if thresholds is not None else FilterThresholds()
    metrics = compute_cell_metrics(matrix, mito_prefix=mito_prefix)
    cell_filtered = filter_cells_qc(matrix, metrics, thresholds)
    kept_genes = select_genes(cell_filtered, min_cells=thresholds.min_cells)
    filtered = cell_filtered.subset(genes=kept_genes)
    log.info(f"QC complete. Final matrix: {filtered.n_cells} cells x {filtered.n_genes} genes "
             f"(from {matrix.n_cells} cells x {matrix.n_genes} genes).")
    return QCResult(
        metrics=metrics,
        kept_cells=cell_filtered.cell_ids,
        kept_genes=kept_genes,
        filtered=filtered,
        thresholds=thresholds,
    )
