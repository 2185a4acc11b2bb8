# app/core/errors.py

from __future__ import annotations

from typing import Optional


class ServiceError(Exception):
    """
    Base for failures that are rendered to the caller as {"error": message}.
    `message` is the public text; the exception's str() may carry more detail for logs.
    """

    status_code: int = 500
    message: str = "Internal server error."

    def __init__(self, detail: Optional[str] = None, *, message: Optional[str] = None) -> None:
        if message is not None:
            self.message = message
        super().__init__(detail or self.message)


class QuotaExceeded(ServiceError):
    status_code = 403

    def __init__(self, *, used: int, limit: int) -> None:
        self.used = used
        self.limit = limit
        super().__init__(
            f"used={used} limit={limit}",
            message=f"Monthly limit reached ({limit} feedbacks).",
        )


class UploadMissing(ServiceError):
    status_code = 400
    message = "No audio file uploaded."


class UploadInvalid(ServiceError):
    status_code = 400
    message = "Invalid upload."

    def __init__(self, message: str, *, status_code: int = 400) -> None:
        self.status_code = status_code
        super().__init__(message, message=message)


class UpstreamServiceError(ServiceError, RuntimeError):
    """Transcription or feedback generation failed; never charged against the quota."""

    status_code = 500
    message = "Server error during speech grading."


class LedgerStoreError(Exception):
    """Ledger document could not be read or written. Never shown to callers."""


class LedgerReadError(LedgerStoreError):
    pass


class LedgerWriteError(LedgerStoreError):
    pass
