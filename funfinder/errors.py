from __future__ import annotations


class FunFinderError(Exception):
    """Base class for every failure the search pipeline classifies."""

    user_message = "Something went wrong while searching for activities"

    def __init__(self, message: str | None = None) -> None:
        super().__init__(message or self.user_message)


class NotFoundError(FunFinderError):
    user_message = "No matching location found"


class TransportError(FunFinderError):
    user_message = "Network error while contacting a remote service"


class ServiceError(FunFinderError):
    user_message = "Server error. Please try again later."

    def __init__(self, message: str | None = None, status_code: int | None = None) -> None:
        super().__init__(message)
        self.status_code = status_code


class RetryableServiceError(ServiceError):
    user_message = (
        "The AI service is temporarily unavailable. "
        "This usually resolves within a minute. Please try again shortly."
    )


class MalformedResponseError(FunFinderError):
    user_message = "Server returned an unexpected response format. Please try again."


class EmptyResultError(FunFinderError):
    user_message = "Invalid response from AI model"


class ValidationError(FunFinderError):
    """Schema violation in a generated payload, one issue per offending field."""

    def __init__(self, issues: list[str], context: str | None = None) -> None:
        self.issues = list(issues)
        self.context = context
        joined = ", ".join(self.issues)
        super().__init__(f"{context}: {joined}" if context else joined)

    def summary(self) -> str:
        return f"Validation failed for: {', '.join(self.issues)}"


def describe_error(exc: BaseException) -> str:
    if isinstance(exc, RetryableServiceError):
        return exc.user_message
    if isinstance(exc, FunFinderError):
        return str(exc) or exc.user_message
    return str(exc) or FunFinderError.user_message
