"""Domain error taxonomy.

Services raise these; main.py renders them through one exception handler
into the shared ErrorResponse envelope.
"""


class CRMError(Exception):
    status_code = 500

    def __init__(self, message: str = ""):
        super().__init__(message)
        self.message = message or self.__class__.__name__


class ConflictError(CRMError):
    """A second active run, or a transition from a terminal state."""
    status_code = 409


class ForbiddenError(CRMError):
    """Cross-owner access to a run, candidate, proposal, thread or project."""
    status_code = 403


class NotFoundError(CRMError):
    status_code = 404


class StaleProposalError(CRMError):
    """Resolving a proposal that is expired or already resolved."""
    status_code = 409


class ProviderError(CRMError):
    """Retryable mailbox failure: rate limit, timeout or transient network error."""
    status_code = 503


class ProviderFatalError(CRMError):
    """Terminal mailbox failure: revoked credentials or a malformed request."""
    status_code = 502


class ScorerError(CRMError):
    """Per-candidate classification failure. Never fatal to a batch."""
    status_code = 502


class ProviderNotFoundError(ProviderFatalError):
    """The mailbox no longer has the requested message."""
    status_code = 404
