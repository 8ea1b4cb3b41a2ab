# scrnaseq_qc/agent.py

import logging
from pathlib import Path

from .data.loader import load_data
from .data.writer import save_filtered
from .analysis.qc import (
    FilterThresholds,
    QCResult,
    run_qc,
)
from .visualization.plotting import (
    plot_qc_density,
    plot_qc_violin,
    plot_genes_vs_umi,
)

log = logging.getLogger(__name__)


class QCWorkflow:
    """Orchestrates loading, QC metric calculation, cell and gene filtering, plotting and saving."""
    def __init__(self, params):
        """Initializes the workflow orchestrator."""
        required_attrs = ['input_path', 'output_dir', 'output_prefix']
        for attr in required_attrs:
            if not hasattr(params, attr):
                raise ValueError(f"Initialization failed: Missing required parameter '{attr}'.")

        self.params = params
        self.output_dir = Path(self.params.output_dir)
        self.prefix = self.params.output_prefix
        self.thresholds = FilterThresholds(
            min_features=getattr(params, 'min_features', 200),
            min_umi=getattr(params, 'min_umi', 500),
            min_log10_genes_per_umi=getattr(params, 'min_log10_genes_per_umi', 0.8),
            max_mito_percent=getattr(params, 'max_mito_percent', 5.0),
            min_cells=getattr(params, 'min_cells', 10),
        )
        self.mito_prefix = getattr(params, 'mito_prefix', "MT-")
        self.run_plots = getattr(params, 'run_plots', True)
        self.allow_empty = getattr(params, 'allow_empty', False)

        self.matrix = None
        self.metrics = None
        self.result = None
        log.info("QCWorkflow initialized.")
        log.debug(f"Workflow parameters: {vars(self.params)}")

    def run(self) -> QCResult:
        """Executes the QC pipeline sequentially and returns its result."""
        log.info(f"Starting workflow run: {self.prefix}")
        try:
            self._setup_environment()   # Step 0
            self._load_data()           # Step 1
            self._run_qc()              # Step 2
            self._check_survivors()     # Step 3
            self._plot_results()        # Step 4
            self._save_results()        # Step 5
            log.info(f"Workflow run '{self.prefix}' completed successfully.")
            return self.result
        except Exception as e:
            log.error(f"Workflow run '{self.prefix}' failed: {e}", exc_info=True)
            raise

    def _setup_environment(self):
        log.debug("Setting up environment...")
        try:
            self.output_dir.mkdir(parents=True, exist_ok=True)
            log.info(f"Output directory set to: {self.output_dir}")
        except OSError as e:
            log.error(f"Failed to create output directory '{self.output_dir}': {e}")
            raise

    def _load_data(self):
        log.info("Step 1: Loading data...")
        self.matrix = load_data(self.params.input_path)
        log.info(f"Loaded data: {self.matrix.n_cells} cells x {self.matrix.n_genes} genes.")

    def _run_qc(self):
        """Computes metrics, filters cells then genes, and plots pre-filter distributions."""
        if self.matrix is None: raise RuntimeError("Matrix not loaded before running QC.")
        log.info("Step 2: Running QC (metrics, cell filter, gene filter)...")
        self.result = run_qc(self.matrix, self.thresholds, mito_prefix=self.mito_prefix)
        self.metrics = self.result.metrics

        if self.run_plots and len(self.metrics) > 0:
            log.info("Plotting QC distributions (pre-filtering)...")
            self._plot_distributions(self.matrix, self.metrics, "prefilt")

    def _check_survivors(self):
        if self.result is None: raise RuntimeError("QC must run before checking its result.")
        log.info("Step 3: Checking filtering outcome...")
        filtered = self.result.filtered
        if filtered.n_cells == 0:
            if not self.allow_empty:
                raise ValueError("All cells filtered out!")
            log.warning("All cells filtered out; continuing because allow_empty is set.")
        log.info(f"Kept {filtered.n_cells} / {self.matrix.n_cells} cells and "
                 f"{filtered.n_genes} / {self.matrix.n_genes} genes.")

    def _plot_results(self):
        """Plots post-filter distributions of the surviving cells."""
        if self.result is None: raise RuntimeError("No QC result available for plotting.")
        if not self.run_plots:
            log.info("Skipping plots as requested.")
            return
        if self.result.filtered.n_cells == 0:
            log.warning("No cells left after filtering. Skipping post-filter plots.")
            return
        log.info("Step 4: Plotting QC distributions (post-filtering)...")
        # Cell filtering keeps every gene, so the pre-filter metrics of the kept cells still hold
        kept_metrics = self.metrics.subset(self.result.kept_cells)
        self._plot_distributions(self.matrix.subset(cells=self.result.kept_cells), kept_metrics, "postfilt")

    def _plot_distributions(self, matrix, metrics, stage):
        plot_kwargs = dict(
            output_dir=str(self.output_dir),
            file_format=getattr(self.params, 'plot_format', "png"),
            dpi=getattr(self.params, 'plot_dpi', 150),
        )
        try:
            plot_qc_density(metrics, thresholds=self.thresholds,
                            file_prefix=f"{self.prefix}_qc_density_{stage}", **plot_kwargs)
        except Exception as e: log.error(f"Failed generating QC density plot: {e}", exc_info=True)
        try:
            plot_qc_violin(matrix, metrics, file_prefix=f"{self.prefix}_qc_violin_{stage}", **plot_kwargs)
        except Exception as e: log.error(f"Failed generating QC violin plot: {e}", exc_info=True)
        try:
            plot_genes_vs_umi(metrics, thresholds=self.thresholds,
                              file_prefix=f"{self.prefix}_genes_vs_umi_{stage}", **plot_kwargs)
        except Exception as e: log.error(f"Failed generating genes vs UMI plot: {e}", exc_info=True)

    def _save_results(self):
        if self.result is None: raise RuntimeError("No QC result to save.")
        log.info("Step 5: Saving filtered matrix and metrics...")
        save_filtered(self.result, str(self.output_dir), prefix=self.prefix)
