"""Custom exceptions for Reviewsync services."""

from typing import Any, Optional


class ReviewSyncError(Exception):
    """Base class for recoverable errors raised by Reviewsync services."""


class TransportError(ReviewSyncError):
    """Raised on a network failure or an HTTP error unrelated to CSRF auth.

    Transport errors are never retried by the session client; they surface to
    the caller as-is.

    Attributes:
        status_code: HTTP status code, or None for connection-level failures
        code: OData error code from the response body, if any
        message: Human-readable error message
    """

    def __init__(
        self,
        message: str,
        status_code: Optional[int] = None,
        code: Optional[str] = None,
    ):
        """Initialize TransportError.

        Args:
            message: Human-readable error message
            status_code: HTTP status code, or None for connection-level failures
            code: OData error code from the response body, if any
        """
        self.status_code = status_code
        self.code = code
        self.message = message
        prefix = f"HTTP {status_code}" if status_code is not None else "Transport failure"
        if code:
            prefix = f"{prefix} [{code}]"
        super().__init__(f"{prefix}: {message}")


class AuthExpired(ReviewSyncError):
    """Raised when the CSRF token is rejected even after the single retry.

    Also raised when a token cannot be obtained at all (fetch failed or the
    wait for an in-flight fetch timed out) and when the session itself is
    reported as unauthenticated (HTTP 401). Recoverable by re-invoking the
    operation once the hosting session is valid again.
    """


class PartialLoad(ReviewSyncError):
    """Raised when a composite form read only partially succeeded.

    The partially populated document is carried on the exception so the
    caller can continue with the affected sections absent.

    Attributes:
        document: Raw document containing whatever was loaded
        failures: One message per failed sub-fetch
    """

    def __init__(self, document: dict[str, Any], failures: list[str]):
        """Initialize PartialLoad.

        Args:
            document: Raw document containing whatever was loaded
            failures: One message per failed sub-fetch
        """
        self.document = document
        self.failures = failures
        super().__init__("Partial form load: " + "; ".join(failures))


class SaveFailed(ReviewSyncError):
    """Raised when the upsert transport reports a non-success entity status.

    Attributes:
        results: Per-entity results returned by the backend
    """

    def __init__(self, results: list[Any], message: str = "Upsert rejected by backend"):
        self.results = results
        super().__init__(message)


class ActionFailed(ReviewSyncError):
    """Raised when a workflow action (advance step, complete 360) does not succeed.

    Attributes:
        action: Name of the backend action
        status: Status value the backend returned
    """

    def __init__(self, action: str, status: Any):
        self.action = action
        self.status = status
        super().__init__(f"{action} did not succeed: {status!r}")


class SerializationContractError(RuntimeError):
    """Raised when an upsert document cannot be built from the given form.

    This signals a programming defect (missing form identity, section index
    or item id), not a condition a user can recover from.
    """
