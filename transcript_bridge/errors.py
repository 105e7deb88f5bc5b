"""
Error taxonomy for the notification pipeline.

Every failure that can end processing of a notification is one of these.
Only KeyUnavailable affects more than a single notification, and even that
fails individual requests rather than the service.
"""

from typing import Optional


class PipelineError(Exception):
    """Base class for pipeline failures. `code` is stable and safe to log."""

    code = "PIPELINE_ERROR"

    def __init__(self, message: str, *, detail: Optional[str] = None):
        self.message = message
        self.detail = detail
        super().__init__(message)

    def to_dict(self):
        return {"code": self.code, "message": self.message, "detail": self.detail}


class KeyUnavailable(PipelineError):
    """No usable private key could be obtained from the certificate container."""

    code = "KEY_UNAVAILABLE"


class DecryptionFailed(PipelineError):
    """The envelope could not be decrypted. Dropped, never retried."""

    code = "DECRYPTION_FAILED"

    def __init__(self, message: str, *, reason: str = "DECRYPTION_FAILED", detail: Optional[str] = None):
        super().__init__(message, detail=detail)
        self.reason = reason


class CertificateMismatch(DecryptionFailed):
    """The envelope was encrypted for a different certificate than ours."""

    code = "CERTIFICATE_MISMATCH"

    def __init__(self, expected_thumbprint: str, actual_thumbprint: str):
        super().__init__(
            "Envelope was encrypted for a different certificate",
            reason="CERTIFICATE_MISMATCH",
            detail=f"envelope={expected_thumbprint} local={actual_thumbprint}",
        )
        self.expected_thumbprint = expected_thumbprint
        self.actual_thumbprint = actual_thumbprint


class PayloadUnparseable(PipelineError):
    """Decrypted text held no recoverable record."""

    code = "PAYLOAD_UNPARSEABLE"


class EnrichmentFailed(PipelineError):
    """An enrichment collaborator call failed or timed out."""

    code = "ENRICHMENT_FAILED"


class IssueFilingFailed(PipelineError):
    """The issue tracker rejected or did not answer the filing request."""

    code = "ISSUE_FILING_FAILED"


class IssueAlreadyFiled(IssueFilingFailed):
    """The latest summary already has an issue, or one is being filed for it."""

    code = "ISSUE_ALREADY_FILED"
