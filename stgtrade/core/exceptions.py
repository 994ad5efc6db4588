"""Error taxonomy for the research pipeline."""
from typing import Optional


class PipelineError(Exception):
    """Base exception for pipeline and gateway errors."""

    def __init__(self, message: str, status_code: Optional[int] = None):
        super().__init__(message)
        self.status_code = status_code


class CredentialMissingError(PipelineError):
    """No usable API credential; the caller must reconfigure before retrying."""

    pass


class QuotaExhaustedError(PipelineError):
    """Provider-side daily quota reached. Not retryable."""

    pass


class MalformedResponseError(PipelineError):
    """Response could not be parsed into the expected shape."""

    pass
