# tests/test_plotting.py

import pytest
import numpy as np

from scrnaseq_qc.analysis.qc import FilterThresholds, compute_cell_metrics
from scrnaseq_qc.data.matrix import CountMatrix
from scrnaseq_qc.visualization.plotting import (
    plot_qc_density,
    plot_qc_violin,
    plot_genes_vs_umi,
)


# --- Fixtures ---

@pytest.fixture(scope="module")
def metrics(poisson_matrix):
    return compute_cell_metrics(poisson_matrix, mito_prefix="MT-")


# == Density Plot Tests ==

def test_plot_qc_density_success(metrics, tmp_path):
    output_dir = tmp_path / "density"
    path = plot_qc_density(metrics, output_dir=str(output_dir), thresholds=FilterThresholds(),
                           file_prefix="test_density", dpi=50)
    assert output_dir.is_dir()
    assert path == output_dir / "test_density.png"
    assert path.is_file() and path.stat().st_size > 0


def test_plot_qc_density_subset_of_keys(metrics, tmp_path):
    path = plot_qc_density(metrics, output_dir=str(tmp_path), keys=["pct_counts_mt"], file_format="pdf")
    assert path.suffix == ".pdf"
    assert path.is_file()


def test_plot_qc_density_with_undefined_values(make_matrix, make_column, tmp_path):
    matrix = make_matrix({"ok": make_column(250, 600, mito=6), "empty": {"G0": 0}})
    path = plot_qc_density(compute_cell_metrics(matrix), output_dir=str(tmp_path), dpi=50)
    assert path.is_file()


def test_plot_qc_density_empty_population(tmp_path):
    matrix = CountMatrix(counts=np.zeros((2, 0), dtype=int), gene_ids=["G0", "G1"], cell_ids=[])
    path = plot_qc_density(compute_cell_metrics(matrix), output_dir=str(tmp_path), dpi=50)
    assert path.is_file()


def test_plot_qc_density_invalid_args(metrics, tmp_path):
    with pytest.raises(TypeError):
        plot_qc_density("not metrics", output_dir=str(tmp_path))
    with pytest.raises(ValueError, match="Unknown QC keys"):
        plot_qc_density(metrics, output_dir=str(tmp_path), keys=["bogus"])
    with pytest.raises(ValueError, match="keys must be non-empty list"):
        plot_qc_density(metrics, output_dir=str(tmp_path), keys=[])
    with pytest.raises(ValueError, match="file_format"):
        plot_qc_density(metrics, output_dir=str(tmp_path), file_format="gif")
    with pytest.raises(ValueError, match="output_dir must be provided"):
        plot_qc_density(metrics, output_dir="")


# == Violin Plot Tests ==

def test_plot_qc_violin_success(poisson_matrix, metrics, tmp_path):
    output_dir = tmp_path / "violin"
    path = plot_qc_violin(poisson_matrix, metrics, output_dir=str(output_dir),
                          keys=["n_genes_by_counts", "total_counts"], file_prefix="test_violin", dpi=50)
    assert path == output_dir / "test_violin.png"
    assert path.is_file() and path.stat().st_size > 0


def test_plot_qc_violin_mismatched_metrics(make_matrix, make_column, metrics, tmp_path):
    other = make_matrix({"A": make_column(250, 600, mito=6)})
    with pytest.raises(ValueError, match="do not describe"):
        plot_qc_violin(other, metrics, output_dir=str(tmp_path))


def test_plot_qc_violin_invalid_input(metrics, tmp_path):
    with pytest.raises(TypeError):
        plot_qc_violin("not a matrix", metrics, output_dir=str(tmp_path))


# == Scatter Plot Tests ==

def test_plot_genes_vs_umi_success(metrics, tmp_path):
    path = plot_genes_vs_umi(metrics, output_dir=str(tmp_path / "scatter"),
                             thresholds=FilterThresholds(), file_format="svg", dpi=50)
    assert path.name == "qc_genes_vs_umi.svg"
    assert path.is_file() and path.stat().st_size > 0


def test_plot_genes_vs_umi_invalid_input(tmp_path):
    with pytest.raises(TypeError):
        plot_genes_vs_umi({"total_counts": [1, 2]}, output_dir=str(tmp_path))
