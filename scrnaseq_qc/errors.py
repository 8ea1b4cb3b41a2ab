# scrnaseq_qc/errors.py


class ValidationError(ValueError):
    """Raised when a count matrix, metrics table or threshold set is malformed."""
