"""
Pipeline Errors
===============

Every failure in the pipeline is fatal: there are no retries and no
partial results. Each error also derives from the closest builtin so
callers catching ``FileNotFoundError`` / ``ValueError`` keep working.
"""


class PipelineError(Exception):
    """Base class for all data-quality and schema failures."""


class SourceUnavailable(PipelineError, FileNotFoundError):
    """An input file is missing or cannot be read."""


class SchemaMismatch(PipelineError, ValueError):
    """A table lacks expected columns, or a column holds values outside its domain."""

    def __init__(self, table: str, missing=(), detail: str = None):
        self.table = table
        self.missing = sorted(missing)
        if detail is None:
            detail = f"is missing columns: {self.missing}"
        super().__init__(f"Table '{table}' {detail}")


class KeyCoercionError(PipelineError, ValueError):
    """An identifier cannot be parsed into an integer join key."""


class EmptyJoinResult(PipelineError, ValueError):
    """A join or filter left no rows to model."""


class DegenerateSplit(PipelineError, ValueError):
    """The train proportion leaves one of the partitions empty."""
