"""Error taxonomy for food log synchronization."""

from enum import StrEnum


class ErrorCode(StrEnum):
    """Stable error codes surfaced to callers."""

    TOKEN_INVALID = "TOKEN_INVALID"
    RATE_LIMIT = "RATE_LIMIT"
    API_ERROR = "API_ERROR"
    INVALID_RESPONSE = "INVALID_RESPONSE"
    INTERNAL_ERROR = "INTERNAL_ERROR"
    PARTIAL_ERROR = "PARTIAL_ERROR"
    VALIDATION_ERROR = "VALIDATION_ERROR"


class FoodSyncError(Exception):
    """Base error; ``details`` is for diagnostics and never shown to users."""

    code: ErrorCode = ErrorCode.INTERNAL_ERROR
    default_message = "Food log synchronization failed"

    def __init__(
        self, message: str | None = None, details: dict[str, object] | None = None
    ) -> None:
        self.message = message or self.default_message
        self.details = details or {}
        super().__init__(self.message)


class TokenInvalidError(FoodSyncError):
    """The Fitbit token is missing or rejected; re-authorization is required."""

    code = ErrorCode.TOKEN_INVALID
    default_message = "Fitbit session expired. Please reconnect your Fitbit account."


class RateLimitError(FoodSyncError):
    """Fitbit kept rate limiting after all retries."""

    code = ErrorCode.RATE_LIMIT
    default_message = "Fitbit API rate limited. Please try again later."


class RemoteApiError(FoodSyncError):
    """Fitbit rejected the request or returned unusable data."""

    code = ErrorCode.API_ERROR
    default_message = "Fitbit API request failed"


class InvalidResponseError(FoodSyncError):
    """Fitbit returned a success status without a required field."""

    code = ErrorCode.INVALID_RESPONSE
    default_message = "Fitbit returned an unexpected response"


class LocalStoreError(FoodSyncError):
    """Local storage failed; any remote changes were rolled back."""

    code = ErrorCode.INTERNAL_ERROR
    default_message = "Failed to save food log"


class PartialSyncError(FoodSyncError):
    """Local storage failed and the remote rollback failed too."""

    code = ErrorCode.PARTIAL_ERROR
    default_message = (
        "Food saved in Fitbit but local save failed. Manual cleanup may be needed."
    )
    manual_cleanup_required = True


class RequestValidationError(FoodSyncError):
    """Caller input was rejected before any remote or local call."""

    code = ErrorCode.VALIDATION_ERROR
    default_message = "Missing or invalid required fields"


class NotFoundError(RequestValidationError):
    """The referenced entry or food does not exist for this owner."""

    default_message = "Not found"

