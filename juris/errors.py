"""Error taxonomy for the ingestion pipeline.

Per-record errors are caught by the pipeline driver and never abort a run;
``ConfigurationError`` is the only error that is fatal, and it is raised
at startup before any record is processed.
"""
from __future__ import annotations


class IngestionError(Exception):
    """Base class for ingestion failures."""
    retryable: bool = False


class ConfigurationError(IngestionError):
    """Raised when required external-service settings are missing."""
    pass


class ValidationError(IngestionError):
    """Raised when a record is missing a required field."""
    pass


class MissingKeyError(ValidationError):
    """Raised when raw input carries no case identifier (rol)."""
    pass


class EmptyTextError(ValidationError):
    """Raised when a record has no full text and cannot be persisted."""
    pass


class DuplicateError(IngestionError):
    """Raised when a natural key is already stored."""

    def __init__(self, natural_key: str) -> None:
        super().__init__(f"Decision {natural_key} already stored")
        self.natural_key = natural_key


class TransientFetchError(IngestionError):
    """Network or timeout failure on a detail page or embedding call."""
    retryable = True


class FetchError(IngestionError):
    """Raised when the source site refuses a request (non-retryable 4xx)."""
    pass


class DetailNotFoundError(FetchError):
    """Raised when a detail page no longer exists upstream."""
    pass


class StoreError(IngestionError):
    """Raised when the store fails for a reason other than uniqueness."""
    pass
