from __future__ import annotations

from typing import Optional


class ApiError(Exception):
    """
    The single error shape that crosses the client boundary.

    status is the HTTP status (or a synthetic one for local failures); code and
    reason are copied from the upstream envelope when present. message is safe to
    show to an end user; detail (URLs, transport exception names) is for logs only.
    """

    def __init__(
        self,
        message: str,
        status: int,
        *,
        code: Optional[int] = None,
        reason: Optional[str] = None,
        detail: Optional[str] = None,
    ) -> None:
        super().__init__(message)
        self.message = message
        self.status = int(status)
        self.code = code
        self.reason = reason
        self.detail = detail

    def __repr__(self) -> str:
        extra = f", detail={self.detail!r}" if self.detail else ""
        return f"{type(self).__name__}(status={self.status}, reason={self.reason!r}, message={self.message!r}{extra})"


class ApiTimeoutError(ApiError):
    def __init__(self, path: str) -> None:
        super().__init__("API timeout.", 504, reason="timeout", detail=f"timeout: {path}")


class ApiNetworkError(ApiError):
    def __init__(self, detail: str) -> None:
        super().__init__("service unreachable.", 503, reason="network_error", detail=detail)


class UnexpectedPayloadError(ApiError):
    def __init__(self, message: str, status: int, *, detail: Optional[str] = None) -> None:
        super().__init__(message, status, reason="unexpected_payload", detail=detail)


class InputValidationError(ApiError):
    def __init__(self, message: str) -> None:
        super().__init__(message, 400, reason="validation_failed")


class AuthRequiredError(ApiError):
    def __init__(self, message: str = "login required.") -> None:
        super().__init__(message, 401, reason="unauthorized")


class PermissionDeniedError(ApiError):
    def __init__(self, message: str) -> None:
        super().__init__(message, 403, reason="forbidden")


class OrphanMergeJobError(ApiError):
    """
    A merge job was created but the apply step failed. The job is left pending
    server-side; job_id lets the caller resume it from the pending-jobs view.
    """

    def __init__(self, job_id: str, cause: ApiError) -> None:
        super().__init__(
            f"merge job {job_id} was created but not applied: {cause.message}",
            cause.status,
            code=cause.code,
            reason=cause.reason,
            detail=cause.detail,
        )
        self.job_id = job_id
        self.cause = cause


# Statuses that suggest a wrong base URL or route prefix rather than a real answer.
FAILOVER_STATUSES = frozenset({404, 405, 502, 503})


def is_failover_eligible(err: BaseException) -> bool:
    """
    True when the next endpoint candidate may succeed where this one failed.
    Timeouts, transport failures, unparsable payloads and a narrow set of HTTP
    statuses qualify; everything else is a real answer from the service.
    """
    if isinstance(err, (ApiTimeoutError, ApiNetworkError, UnexpectedPayloadError)):
        return True
    if isinstance(err, (InputValidationError, AuthRequiredError, PermissionDeniedError, OrphanMergeJobError)):
        return False
    if isinstance(err, ApiError):
        return err.status in FAILOVER_STATUSES
    return False
