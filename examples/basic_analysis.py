"""
Example script demonstrating basic usage of scrnaseq_qc
"""

from scrnaseq_qc.data.loader import load_data
from scrnaseq_qc.data.writer import save_filtered
from scrnaseq_qc.analysis.qc import FilterThresholds, run_qc
from scrnaseq_qc.visualization.plotting import plot_qc_density, plot_genes_vs_umi

def main():
    # Load data (10x directory or .h5ad)
    matrix = load_data("path/to/filtered_feature_bc_matrix/")

    # QC: metrics, then cell filtering, then gene filtering over the surviving cells
    thresholds = FilterThresholds(
        min_features=200,
        min_umi=500,
        min_log10_genes_per_umi=0.8,
        max_mito_percent=5.0,
        min_cells=10
    )
    result = run_qc(matrix, thresholds, mito_prefix="MT-")

    # Distributions before filtering
    plot_qc_density(result.metrics, output_dir="qc_plots", thresholds=thresholds)
    plot_genes_vs_umi(result.metrics, output_dir="qc_plots", thresholds=thresholds)

    # Save results
    save_filtered(result, "qc_output", prefix="sample1")

if __name__ == "__main__":
    main()
