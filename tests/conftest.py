# tests/conftest.py

import matplotlib
matplotlib.use("Agg")

import numpy as np
import pytest

from scrnaseq_qc.data.matrix import CountMatrix


def matrix_from_columns(columns: dict) -> CountMatrix:
    """Builds a CountMatrix from {cell_id: {gene_id: count}}; genes are ordered by first appearance."""
    gene_ids = []
    for counts in columns.values():
        for gene in counts:
            if gene not in gene_ids:
                gene_ids.append(gene)
    row = {gene: i for i, gene in enumerate(gene_ids)}
    dense = np.zeros((len(gene_ids), len(columns)), dtype=np.int64)
    for j, counts in enumerate(columns.values()):
        for gene, value in counts.items():
            dense[row[gene], j] = value
    return CountMatrix(counts=dense, gene_ids=gene_ids, cell_ids=list(columns))


def qc_column(n_features: int, umi: int, mito: int = 0) -> dict:
    """
    One cell's counts with exactly `n_features` detected genes, `umi` total
    counts and `mito` counts on gene 'MT-1'. Gene 'G0' takes the remainder.
    """
    column = {}
    n_nuclear = n_features
    if mito > 0:
        column["MT-1"] = mito
        n_nuclear -= 1
    remainder = umi - mito - (n_nuclear - 1)
    assert remainder >= 1, "impossible column"
    column["G0"] = remainder
    for i in range(1, n_nuclear):
        column[f"G{i}"] = 1
    return column


@pytest.fixture
def make_matrix():
    return matrix_from_columns


@pytest.fixture
def make_column():
    return qc_column


@pytest.fixture(scope="module")
def poisson_matrix() -> CountMatrix:
    """400 genes (10 mitochondrial) x 60 cells with sequencing depth increasing across cells."""
    rng = np.random.default_rng(0)
    n_genes, n_cells = 400, 60
    depth = np.linspace(0.05, 2.0, n_cells)
    counts = rng.poisson(lam=np.broadcast_to(depth, (n_genes, n_cells)))
    gene_ids = [f"MT-{i}" for i in range(10)] + [f"GENE{i}" for i in range(n_genes - 10)]
    cell_ids = [f"CELL{j:03d}" for j in range(n_cells)]
    return CountMatrix(counts=counts, gene_ids=gene_ids, cell_ids=cell_ids)
