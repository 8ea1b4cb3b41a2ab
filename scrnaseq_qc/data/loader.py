# scrnaseq_qc/data/loader.py

import scanpy as sc
import anndata as ad
import os
import logging

from .matrix import CountMatrix

log = logging.getLogger(__name__)


def _read_anndata(expanded_path: str, cache: bool) -> ad.AnnData:
    # 10x MTX directory (matrix.mtx[.gz], features.tsv[.gz] or genes.tsv[.gz], barcodes.tsv[.gz])
    if os.path.isdir(expanded_path):
        log.info("Detected directory, attempting to load as 10x MTX format.")
        adata = sc.read_10x_mtx(
            expanded_path,
            var_names='gene_symbols',
            cache=cache
        )
        log.info(f"Successfully loaded 10x MTX data. Shape: {adata.shape}")
        return adata

    if os.path.isfile(expanded_path) and expanded_path.lower().endswith(".h5ad"):
        log.info("Detected .h5ad file, attempting to load.")
        adata = sc.read_h5ad(expanded_path)
        log.info(f"Successfully loaded .h5ad file. Shape: {adata.shape}")
        return adata

    if os.path.isfile(expanded_path) and expanded_path.lower().endswith((".mtx", ".mtx.gz")):
        raise ValueError(
            "Loading a single .mtx file is ambiguous. Please provide the path to the directory "
            "containing matrix.mtx.gz, features.tsv.gz, and barcodes.tsv.gz."
        )

    raise ValueError(
        f"Unrecognized file format or path type: {expanded_path}. "
        "Expecting a directory (for 10x MTX) or an .h5ad file."
    )


def load_data(data_path: str, cache: bool = False, layer: str | None = None) -> CountMatrix:
    """
    Loads a single-cell count matrix into a CountMatrix.

    Supports:
        - 10x Genomics MTX directory (matrix.mtx.gz, features.tsv.gz / genes.tsv.gz, barcodes.tsv.gz)
        - AnnData (.h5ad) file holding raw counts

    Duplicate gene symbols are made unique (e.g. 'GENE', 'GENE-1') before the
    matrix is built, since CountMatrix requires unique identifiers. Duplicate
    cell barcodes are not renamed; they raise a ValidationError.

    Args:
        data_path: Path to the data file or directory.
        cache: Whether to use scanpy's cache when reading 10x data. Defaults to False.
        layer: For .h5ad input, the layer holding raw counts. Defaults to None (use X).

    Returns:
        A validated CountMatrix (genes x cells).

    Raises:
        TypeError: If data_path is not a string.
        FileNotFoundError: If the data_path (or a required file inside it) does not exist.
        ValueError: If the data format is not recognized or loading fails.
        ValidationError: If the counts are invalid or cell barcodes are duplicated.
    """
    log.info(f"Attempting to load data from: {data_path}")

    if not isinstance(data_path, str):
        raise TypeError(f"Expected data_path to be a string, but got {type(data_path)}")

    expanded_path = os.path.expanduser(data_path)
    if not os.path.exists(expanded_path):
        raise FileNotFoundError(f"Data path not found: {expanded_path}")

    try:
        adata = _read_anndata(expanded_path, cache)
        adata.var_names_make_unique()
        matrix = CountMatrix.from_anndata(adata, layer=layer)
    except ValueError:
        # Includes ValidationError from CountMatrix and our own format errors
        raise
    except FileNotFoundError as e:
        log.error(f"File not found during loading process: {e}")
        raise FileNotFoundError(f"Required file missing within {expanded_path}: {e}") from e
    except Exception as e:
        log.error(f"Failed to load data from {expanded_path}: {e}", exc_info=True)
        raise ValueError(f"An error occurred during data loading: {e}") from e

    log.info(f"Loaded {matrix!r}")
    return matrix
