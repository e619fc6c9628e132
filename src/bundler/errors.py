"""Bundler error taxonomy.

Where each one may surface:
  ValidationError, GuardrailViolation     before any network mutation
  SizeLimitExceeded, ResourceUnavailable  before submission
  SubmissionDropped, TransportError       during/after submission; chain state
                                          must be re-read, never assumed
"""


class BundlerError(Exception):
    pass


class ValidationError(BundlerError):
    """Bad operator input (non-numeric amount, missing session field, ...)."""


class SizeLimitExceeded(BundlerError):
    """An envelope or bundle breaks a hard ledger/relay size limit."""

    def __init__(self, message: str, *, measured: int | None = None, limit: int | None = None) -> None:
        super().__init__(message)
        self.measured = measured
        self.limit = limit


class ResourceUnavailable(BundlerError):
    """An account (usually the lookup table) is not visible after bounded polling."""


class GuardrailViolation(BundlerError):
    """A sell request exceeds the per-bundle supply cap."""

    def __init__(self, message: str, *, requested: int = 0, cap: int = 0) -> None:
        super().__init__(message)
        self.requested = requested
        self.cap = cap


class SubmissionDropped(BundlerError):
    """Relay dropped the bundle (no leader in time). Retryable with a fresh blockhash."""


class TransportError(BundlerError):
    """RPC or relay transport failure. Not retried automatically."""
