# tests/test_loader.py

import pytest
import anndata as ad
import numpy as np
import scipy.io
import scipy.sparse as sp

from scrnaseq_qc.data.loader import load_data
from scrnaseq_qc.data.matrix import CountMatrix
from scrnaseq_qc.errors import ValidationError

GENE_SYMBOLS = ["MT-CO1", "ACTB", "DUP", "DUP"]
BARCODES = ["AAAC-1", "AAAG-1", "AAAT-1"]
COUNTS = np.array([  # genes x cells
    [3, 0, 1],
    [10, 4, 0],
    [0, 2, 2],
    [1, 0, 5],
])


# --- Fixtures ---

@pytest.fixture
def tenx_dir(tmp_path):
    """Writes a small 10x (legacy, uncompressed) MTX directory."""
    path = tmp_path / "filtered_gene_bc_matrices"
    path.mkdir()
    scipy.io.mmwrite(str(path / "matrix.mtx"), sp.coo_matrix(COUNTS))
    with open(path / "genes.tsv", "w") as f:
        for i, symbol in enumerate(GENE_SYMBOLS):
            f.write(f"ENSG{i:05d}\t{symbol}\n")
    with open(path / "barcodes.tsv", "w") as f:
        f.write("\n".join(BARCODES) + "\n")
    return path


@pytest.fixture
def h5ad_path(tmp_path):
    adata = ad.AnnData(X=sp.csr_matrix(COUNTS.T.astype(np.float32)))
    adata.obs_names = BARCODES
    adata.var_names = ["MT-CO1", "ACTB", "GAPDH", "B2M"]
    path = tmp_path / "counts.h5ad"
    adata.write_h5ad(path)
    return path


# --- Test Functions ---

def test_load_10x_dir_success(tenx_dir):
    matrix = load_data(str(tenx_dir))
    assert isinstance(matrix, CountMatrix)
    assert matrix.shape == (4, 3)
    assert list(matrix.cell_ids) == BARCODES
    assert not matrix.gene_ids.has_duplicates
    assert "ACTB" in matrix.gene_ids
    assert matrix.counts.sum() == COUNTS.sum()


def test_load_h5ad_success(h5ad_path):
    matrix = load_data(str(h5ad_path))
    assert isinstance(matrix, CountMatrix)
    assert matrix.shape == (4, 3)
    np.testing.assert_array_equal(matrix.counts.toarray(), COUNTS)
    assert list(matrix.gene_ids) == ["MT-CO1", "ACTB", "GAPDH", "B2M"]


def test_load_h5ad_layer(tmp_path):
    adata = ad.AnnData(X=np.zeros((3, 4), dtype=np.float32), layers={"counts": COUNTS.T.astype(np.float32)})
    adata.obs_names = BARCODES
    adata.var_names = ["A", "B", "C", "D"]
    path = tmp_path / "layered.h5ad"
    adata.write_h5ad(path)
    matrix = load_data(str(path), layer="counts")
    np.testing.assert_array_equal(matrix.counts.toarray(), COUNTS)


def test_load_h5ad_negative_counts_raises(tmp_path):
    adata = ad.AnnData(X=-np.ones((2, 2), dtype=np.float32))
    adata.obs_names = ["c1", "c2"]
    adata.var_names = ["g1", "g2"]
    path = tmp_path / "negative.h5ad"
    adata.write_h5ad(path)
    with pytest.raises(ValidationError, match="negative"):
        load_data(str(path))


def test_load_h5ad_duplicate_barcodes_raises(tmp_path):
    adata = ad.AnnData(X=np.ones((2, 2), dtype=np.float32))
    adata.obs_names = ["c1", "c1"]
    adata.var_names = ["g1", "g2"]
    path = tmp_path / "duplicated.h5ad"
    adata.write_h5ad(path)
    with pytest.raises(ValidationError, match="Duplicate cell identifiers"):
        load_data(str(path))


def test_load_invalid_path_raises_error(tmp_path):
    with pytest.raises(FileNotFoundError):
        load_data(str(tmp_path / "non_existent_dir" / "non_existent_file.h5ad"))


def test_load_wrong_file_type_raises_error(tmp_path):
    readme = tmp_path / "README.md"
    readme.write_text("not a matrix")
    with pytest.raises(ValueError, match="Unrecognized file format"):
        load_data(str(readme))


def test_load_single_mtx_file_raises_error(tenx_dir):
    with pytest.raises(ValueError, match="ambiguous"):
        load_data(str(tenx_dir / "matrix.mtx"))


def test_load_empty_dir_raises_error(tmp_path):
    empty = tmp_path / "empty"
    empty.mkdir()
    with pytest.raises((FileNotFoundError, ValueError)):
        load_data(str(empty))


def test_load_non_string_path_raises_error():
    with pytest.raises(TypeError):
        load_data(12345)
