from typing import Optional, Any


class NutriPalError(Exception):
    """
    Base exception for NutriPal application.
    """
    def __init__(self, message: str, code: str = "INTERNAL_ERROR", status_code: int = 500, details: Optional[Any] = None):
        self.message = message
        self.code = code
        self.status_code = status_code
        self.details = details
        super().__init__(self.message)


class AuthenticationError(NutriPalError):
    """
    Raised when a webhook request fails the platform secret check.
    """
    def __init__(self, message: str = "Authentication failed", details: Optional[Any] = None):
        super().__init__(message, code="AUTHENTICATION_FAILED", status_code=401, details=details)


class ValidationError(NutriPalError):
    """
    Raised when user input is out of range or has the wrong shape.
    The step handler re-prompts the same step with `message`.
    """
    def __init__(self, message: str = "Validation error", details: Optional[Any] = None):
        super().__init__(message, code="VALIDATION_ERROR", status_code=422, details=details)


class CallbackDecodeError(ValidationError):
    """
    Raised when a button payload does not match any known domain format.
    """
    def __init__(self, raw: str, reason: str = "unrecognized callback payload"):
        self.raw = raw
        super().__init__(f"{reason}: {raw!r}", details={"raw": raw})
        self.code = "CALLBACK_DECODE_ERROR"


class CollaboratorTimeoutError(NutriPalError):
    """
    Raised when a collaborator call exceeds its time budget.
    The underlying operation is abandoned, not cancelled.
    """
    def __init__(self, operation: str, budget_ms: int):
        self.operation = operation
        self.budget_ms = budget_ms
        super().__init__(
            f"{operation} exceeded {budget_ms}ms",
            code="COLLABORATOR_TIMEOUT",
            status_code=504,
            details={"operation": operation, "budget_ms": budget_ms},
        )


class CollaboratorFailureError(NutriPalError):
    """
    Raised when an external service (Telegram, completion, store) fails.
    """
    def __init__(self, message: str = "External service error", details: Optional[Any] = None):
        super().__init__(message, code="COLLABORATOR_FAILURE", status_code=502, details=details)


class StaleReferenceError(NutriPalError):
    """
    Raised when a confirmation token or session slot is missing or expired.
    The dispatcher clears the flow's slot and asks the user to redo.
    """
    def __init__(self, flow: Optional[str] = None, message: str = "Stale reference"):
        self.flow = flow
        super().__init__(message, code="STALE_REFERENCE", status_code=409, details={"flow": flow})


class InternalInconsistencyError(NutriPalError):
    """
    Raised when stored state contradicts the flow tables, e.g. an edit
    slot naming a field that cannot be edited.
    """
    def __init__(self, flow: Optional[str] = None, message: str = "Internal inconsistency"):
        self.flow = flow
        super().__init__(message, code="INTERNAL_INCONSISTENCY", status_code=500, details={"flow": flow})
