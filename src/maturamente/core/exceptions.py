"""Custom exception hierarchy for MaturaMente.

This module defines a consistent exception hierarchy that enables:
- Structured error responses with error codes
- Consistent HTTP status code mapping
- Machine-readable error handling for API consumers

Usage:
    from maturamente.core.exceptions import SimulationNotFoundError

    raise SimulationNotFoundError(slug="matematica-2024")
"""

from typing import Any


class MaturaMenteError(Exception):
    """Base exception for all MaturaMente errors.

    All custom exceptions should inherit from this class to enable
    consistent error handling and response formatting.

    Attributes:
        code: Machine-readable error code (e.g., "SIMULATION_NOT_FOUND")
        message: Human-readable error message
        status_code: HTTP status code to return
        details: Additional error details (optional)
    """

    code: str = "INTERNAL_ERROR"
    message: str = "An unexpected error occurred"
    status_code: int = 500

    def __init__(
        self,
        message: str | None = None,
        code: str | None = None,
        details: dict[str, Any] | None = None,
    ) -> None:
        """Initialize the exception.

        Args:
            message: Override default message
            code: Override default error code
            details: Additional error details
        """
        if message:
            self.message = message
        if code:
            self.code = code
        self.details = details or {}
        super().__init__(self.message)

    def to_dict(self, request_id: str | None = None) -> dict[str, Any]:
        """Convert exception to API error response format.

        Args:
            request_id: Request correlation ID

        Returns:
            Error response dictionary
        """
        error: dict[str, Any] = {
            "code": self.code,
            "message": self.message,
        }
        if request_id:
            error["request_id"] = request_id
        if self.details:
            error["details"] = self.details
        return {"error": error}


# =============================================================================
# Resource Not Found Errors (404)
# =============================================================================


class NotFoundError(MaturaMenteError):
    """Base class for resource not found errors."""

    code: str = "NOT_FOUND"
    message: str = "Resource not found"
    status_code: int = 404


class StudySessionNotFoundError(NotFoundError):
    """Raised when a study session is missing or owned by someone else."""

    code: str = "STUDY_SESSION_NOT_FOUND"
    message: str = "Study session not found or access denied"

    def __init__(self, session_id: str | None = None) -> None:
        details = {"session_id": session_id} if session_id else None
        super().__init__(details=details)


class SimulationNotFoundError(NotFoundError):
    """Raised when a simulation cannot be found."""

    code: str = "SIMULATION_NOT_FOUND"
    message: str = "Simulation not found"

    def __init__(self, slug: str | None = None) -> None:
        details = {"slug": slug} if slug else None
        super().__init__(details=details)


class NoteNotFoundError(NotFoundError):
    """Raised when a note cannot be found."""

    code: str = "NOTE_NOT_FOUND"
    message: str = "Note not found"


class TopicNotFoundError(NotFoundError):
    """Raised when a topic cannot be found."""

    code: str = "TOPIC_NOT_FOUND"
    message: str = "Topic not found"


class ExerciseNotFoundError(NotFoundError):
    """Raised when an exercise cannot be found."""

    code: str = "EXERCISE_NOT_FOUND"
    message: str = "Exercise not found"


class ExerciseCardNotFoundError(NotFoundError):
    """Raised when an exercise card has no exercises or does not exist."""

    code: str = "EXERCISE_CARD_NOT_FOUND"
    message: str = "No exercises found for this card"


class SubscriptionNotFoundError(NotFoundError):
    """Raised when the user has no subscription to act on."""

    code: str = "SUBSCRIPTION_NOT_FOUND"
    message: str = "No subscription found"


class PendingChangeNotFoundError(NotFoundError):
    """Raised when a plan change is missing or no longer pending."""

    code: str = "PENDING_CHANGE_NOT_FOUND"
    message: str = "Pending change not found or already processed"


class SubjectNotFoundError(NotFoundError):
    """Raised when a subject is missing or not unlocked for the user."""

    code: str = "SUBJECT_NOT_FOUND"
    message: str = "Subject not found"

    def __init__(self, slug: str | None = None) -> None:
        details = {"slug": slug} if slug else None
        super().__init__(details=details)


# =============================================================================
# Authentication & Authorization Errors (401, 403)
# =============================================================================


class AuthenticationError(MaturaMenteError):
    """Raised when the request carries no valid session."""

    code: str = "UNAUTHORIZED"
    message: str = "Unauthorized"
    status_code: int = 401


class AuthorizationError(MaturaMenteError):
    """Raised when user lacks permission for an action."""

    code: str = "FORBIDDEN"
    message: str = "You do not have permission to perform this action"
    status_code: int = 403


class SubjectAccessDeniedError(AuthorizationError):
    """Raised when the user has no access to a subject's content."""

    code: str = "SUBJECT_ACCESS_DENIED"
    message: str = "Access denied to this note"


# =============================================================================
# Validation Errors (400)
# =============================================================================


class ValidationError(MaturaMenteError):
    """Raised when input validation fails."""

    code: str = "VALIDATION_ERROR"
    message: str = "Validation error"
    status_code: int = 400

    def __init__(
        self,
        message: str | None = None,
        field: str | None = None,
        details: dict[str, Any] | None = None,
    ) -> None:
        """Initialize with optional field information."""
        if details is None:
            details = {}
        if field:
            details["field"] = field
        super().__init__(message=message, details=details if details else None)


class InvalidTokenError(ValidationError):
    """Raised when an unsubscribe token does not match the email."""

    code: str = "INVALID_TOKEN"
    message: str = "Invalid or missing token"


class IncompleteCardError(ValidationError):
    """Raised when a card is completed before every exercise is correct."""

    code: str = "CARD_NOT_COMPLETED"
    message: str = "Not all exercises are completed correctly"


class InvalidSignatureError(ValidationError):
    """Raised when a webhook payload fails signature verification."""

    code: str = "INVALID_SIGNATURE"
    message: str = "Invalid webhook signature"


class PaymentNotCompletedError(ValidationError):
    """Raised when a checkout session has not been paid."""

    code: str = "PAYMENT_NOT_COMPLETED"
    message: str = "Payment not completed"


# =============================================================================
# Conflict Errors (400, 409)
# =============================================================================


class ConflictError(MaturaMenteError):
    """Raised when the request conflicts with existing state."""

    code: str = "CONFLICT"
    message: str = "Request conflicts with current state"
    status_code: int = 400


class ActiveSubscriptionExistsError(ConflictError):
    """Raised when checking out while a subscription is already active."""

    code: str = "ACTIVE_SUBSCRIPTION_EXISTS"
    message: str = "You already have an active subscription"


class AlreadyOnWaitlistError(ConflictError):
    """Raised when an email is already subscribed to the waiting list."""

    code: str = "ALREADY_ON_WAITLIST"
    message: str = "Already on the list"
    status_code: int = 409


class UsernameTakenError(ConflictError):
    """Raised when another user already holds the requested username."""

    code: str = "USERNAME_TAKEN"
    message: str = "Username already taken"
    status_code: int = 409


class AccountHasActiveSubscriptionError(ConflictError):
    """Raised when deleting an account that is still being billed."""

    code: str = "ACTIVE_SUBSCRIPTION"
    message: str = "Cancel your subscription before deleting your account"


# =============================================================================
# External Service Errors (502)
# =============================================================================


class ExternalServiceError(MaturaMenteError):
    """Base class for external service errors."""

    code: str = "EXTERNAL_SERVICE_ERROR"
    message: str = "External service error"
    status_code: int = 502


class StorageServiceError(ExternalServiceError):
    """Raised when the storage provider cannot issue a signed URL."""

    code: str = "STORAGE_SERVICE_ERROR"
    message: str = "Failed to generate signed URL"


class BillingServiceError(ExternalServiceError):
    """Raised when a Stripe API call fails."""

    code: str = "BILLING_SERVICE_ERROR"
    message: str = "Failed to communicate with the payment provider"
