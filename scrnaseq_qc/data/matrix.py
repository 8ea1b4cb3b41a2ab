# scrnaseq_qc/data/matrix.py

import logging
from dataclasses import dataclass
from typing import Iterable

import anndata as ad
import numpy as np
import pandas as pd
import scipy.sparse as sp

from ..errors import ValidationError

log = logging.getLogger(__name__)


def _as_id_index(ids, kind: str) -> pd.Index:
    """Coerces an identifier sequence to a string Index and rejects duplicates."""
    if ids is None:
        raise ValidationError(f"{kind} identifiers must be provided.")
    index = pd.Index(ids).astype(str)
    if index.has_duplicates:
        dupes = index[index.duplicated()].unique().tolist()
        raise ValidationError(
            f"Duplicate {kind} identifiers found ({len(dupes)} distinct): {dupes[:5]}"
        )
    return index


def _check_numeric_dtype(dtype) -> None:
    if not (np.issubdtype(dtype, np.integer) or np.issubdtype(dtype, np.floating)):
        raise ValidationError(f"Count matrix must hold numeric counts, got dtype '{dtype}'.")


def _canonical_counts(counts) -> sp.csr_matrix:
    """Returns a private CSR copy of `counts` with explicit zeros removed."""
    if sp.issparse(counts):
        _check_numeric_dtype(counts.dtype)
        matrix = sp.csr_matrix(counts, copy=True)
    else:
        dense = np.asarray(counts)
        if dense.ndim != 2:
            raise ValidationError(f"Count matrix must be 2-dimensional, got {dense.ndim} dimension(s).")
        # scipy.sparse cannot hold object or string arrays
        _check_numeric_dtype(dense.dtype)
        matrix = sp.csr_matrix(dense)

    values = matrix.data
    if values.size:
        if np.issubdtype(values.dtype, np.floating):
            if not np.all(np.isfinite(values)):
                raise ValidationError("Count matrix contains non-finite values (NaN or inf).")
            if not np.all(values == np.round(values)):
                raise ValidationError("Count matrix contains non-integer values; raw counts are required.")
        if np.any(values < 0):
            raise ValidationError(f"Count matrix contains {int(np.sum(values < 0))} negative value(s).")

    matrix.eliminate_zeros()
    matrix.sort_indices()
    return matrix


@dataclass(frozen=True, eq=False)
class CountMatrix:
    """
    Immutable genes x cells matrix of raw transcript counts.

    The constructor validates its inputs and keeps a private canonical copy of
    the counts, so later changes to the caller's arrays do not leak in. All
    operations that reduce the matrix return a new CountMatrix.

    Attributes:
        counts: Sparse CSR matrix of shape (n_genes, n_cells).
        gene_ids: Unique gene identifiers, one per row.
        cell_ids: Unique cell identifiers (barcodes), one per column.

    Raises:
        ValidationError: On dimension mismatches, duplicate identifiers, or
                         negative / non-integer / non-finite counts.
    """
    counts: sp.csr_matrix
    gene_ids: pd.Index
    cell_ids: pd.Index

    def __post_init__(self):
        counts = _canonical_counts(self.counts)
        gene_ids = _as_id_index(self.gene_ids, "gene")
        cell_ids = _as_id_index(self.cell_ids, "cell")

        n_genes, n_cells = counts.shape
        if len(gene_ids) != n_genes:
            raise ValidationError(
                f"Number of gene identifiers ({len(gene_ids)}) does not match matrix rows ({n_genes})."
            )
        if len(cell_ids) != n_cells:
            raise ValidationError(
                f"Number of cell identifiers ({len(cell_ids)}) does not match matrix columns ({n_cells})."
            )

        object.__setattr__(self, "counts", counts)
        object.__setattr__(self, "gene_ids", gene_ids)
        object.__setattr__(self, "cell_ids", cell_ids)

    @property
    def shape(self) -> tuple[int, int]:
        return self.counts.shape

    @property
    def n_genes(self) -> int:
        return self.counts.shape[0]

    @property
    def n_cells(self) -> int:
        return self.counts.shape[1]

    def __repr__(self) -> str:
        return f"CountMatrix(n_genes={self.n_genes}, n_cells={self.n_cells}, nnz={self.counts.nnz})"

    def _positions(self, labels: Iterable, index: pd.Index, kind: str) -> np.ndarray:
        wanted = pd.Index(list(labels)).astype(str)
        positions = index.get_indexer(wanted)
        if np.any(positions < 0):
            missing = wanted[positions < 0].tolist()
            raise ValidationError(f"Unknown {kind} identifiers ({len(missing)}): {missing[:5]}")
        return positions

    def subset(self, cells: Iterable | None = None, genes: Iterable | None = None) -> "CountMatrix":
        """
        Returns a new CountMatrix restricted to the given cell and/or gene ids.

        Rows and columns appear in the order the ids are given. Passing None
        keeps every cell (or gene).
        """
        counts = self.counts
        gene_ids, cell_ids = self.gene_ids, self.cell_ids
        if genes is not None:
            gene_pos = self._positions(genes, self.gene_ids, "gene")
            counts = counts[gene_pos, :]
            gene_ids = self.gene_ids[gene_pos]
        if cells is not None:
            cell_pos = self._positions(cells, self.cell_ids, "cell")
            counts = counts[:, cell_pos]
            cell_ids = self.cell_ids[cell_pos]
        return CountMatrix(counts=counts, gene_ids=gene_ids, cell_ids=cell_ids)

    def equals(self, other: "CountMatrix") -> bool:
        """True if both matrices hold the same ids in the same order and the same counts."""
        if not isinstance(other, CountMatrix) or self.shape != other.shape:
            return False
        if not (self.gene_ids.equals(other.gene_ids) and self.cell_ids.equals(other.cell_ids)):
            return False
        return (self.counts != other.counts).nnz == 0

    def to_anndata(self, obs: pd.DataFrame | None = None) -> ad.AnnData:
        """
        Builds a new cells x genes AnnData object from a copy of the counts.

        Args:
            obs: Optional per-cell table indexed by cell id; it is aligned to
                 this matrix's cell order.
        """
        obs_df = pd.DataFrame(index=self.cell_ids.copy())
        if obs is not None:
            obs_df = obs.reindex(self.cell_ids).copy()
        var_df = pd.DataFrame(index=self.gene_ids.copy())
        return ad.AnnData(X=self.counts.T.tocsr(copy=True), obs=obs_df, var=var_df)

    @classmethod
    def from_anndata(cls, adata: ad.AnnData, layer: str | None = None) -> "CountMatrix":
        """
        Creates a CountMatrix from a cells x genes AnnData object.

        Args:
            adata: Annotated data matrix holding raw counts.
            layer: Layer to read counts from. Defaults to None (use adata.X).
        """
        if not isinstance(adata, ad.AnnData):
            raise TypeError("Input must be an AnnData object.")
        if layer is not None:
            if layer not in adata.layers:
                raise KeyError(f"Layer '{layer}' not found in adata.layers.")
            X = adata.layers[layer]
        else:
            X = adata.X
        counts = X.T if sp.issparse(X) else np.asarray(X).T
        log.debug(f"Converting AnnData with shape {adata.shape} to CountMatrix.")
        return cls(counts=counts, gene_ids=adata.var_names, cell_ids=adata.obs_names)
