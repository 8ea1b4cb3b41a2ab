# scrnaseq_qc/data/writer.py

import logging
from pathlib import Path

from ..analysis.qc import QCResult

log = logging.getLogger(__name__)


def save_filtered(result: QCResult, output_dir: str, prefix: str = "scrnaseq_qc") -> tuple[Path, Path]:
    """
    Writes the outputs of a QC run to `output_dir`.

    Files:
        <prefix>_filtered.h5ad: kept cells x kept genes, gzip-compressed, with
            the kept cells' metrics as obs columns.
        <prefix>_cell_metrics.csv: metrics of every input cell plus a boolean
            'kept' column.

    Returns:
        The (h5ad path, csv path) pair.
    """
    if not isinstance(result, QCResult):
        raise TypeError("result must be a QCResult")
    out = Path(output_dir)
    out.mkdir(parents=True, exist_ok=True)

    metrics_table = result.metrics.to_frame()
    metrics_table["kept"] = metrics_table.index.isin(result.kept_cells)
    csv_path = out / f"{prefix}_cell_metrics.csv"
    metrics_table.to_csv(csv_path, index_label="cell_id")
    log.info(f"Cell metrics table saved to: {csv_path}")

    h5ad_path = out / f"{prefix}_filtered.h5ad"
    adata = result.filtered.to_anndata(obs=metrics_table.drop(columns="kept"))
    try:
        adata.write_h5ad(h5ad_path, compression="gzip")
    except Exception as e:
        log.error(f"Failed to save filtered AnnData: {e}", exc_info=True)
        raise
    log.info(f"Filtered AnnData object saved to: {h5ad_path}")
    return h5ad_path, csv_path
