# scrnaseq_qc/__init__.py

from .errors import ValidationError
from .data.matrix import CountMatrix
from .analysis.qc import (
    CellMetrics,
    FilterThresholds,
    QCResult,
    compute_cell_metrics,
    select_cells,
    filter_cells_qc,
    select_genes,
    filter_genes_qc,
    run_qc,
)

__version__ = "0.1.0"
