"""
Custom exception classes and error handling.

Every engine error maps onto an HTTP-equivalent status so request handlers
can surface it unchanged:

- NotFound (404): activity absent, unowned or archived
- Conflict (409): already completed today / nothing to undo today
- Validation (422): malformed weight configuration, bad pillar pairing
- DataIntegrity (500): provisioning bug upstream (e.g. missing companion)
"""
from fastapi import HTTPException, status
from typing import Optional, Dict, Any


class APIException(HTTPException):
    """Base API exception with consistent structure."""

    def __init__(
        self,
        status_code: int,
        detail: str,
        error_code: Optional[str] = None,
        headers: Optional[Dict[str, Any]] = None
    ):
        super().__init__(status_code=status_code, detail=detail, headers=headers)
        self.error_code = error_code

    def __str__(self) -> str:
        return self.detail


class NotFoundError(APIException):
    """Resource not found."""

    def __init__(self, resource: str, identifier: str):
        super().__init__(
            status_code=status.HTTP_404_NOT_FOUND,
            detail=f"{resource} not found: {identifier}",
            error_code="NOT_FOUND"
        )
        self.resource = resource
        self.identifier = identifier


class ValidationError(APIException):
    """Validation error."""

    def __init__(self, detail: str, field: Optional[str] = None):
        error_code = f"VALIDATION_ERROR_{field.upper()}" if field else "VALIDATION_ERROR"
        super().__init__(
            status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
            detail=detail,
            error_code=error_code
        )
        self.field = field


class ConflictError(APIException):
    """Resource conflict (e.g., duplicate entry)."""

    def __init__(self, detail: str):
        super().__init__(
            status_code=status.HTTP_409_CONFLICT,
            detail=detail,
            error_code="CONFLICT"
        )


class DataIntegrityError(APIException):
    """Stored data violates an invariant the engine relies on."""

    def __init__(self, detail: str):
        super().__init__(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail=detail,
            error_code="INTEGRITY_ERROR"
        )


class ActivityNotFoundError(NotFoundError):
    """Activity missing, owned by someone else, or archived."""

    def __init__(self, activity_id: str):
        super().__init__("Activity", activity_id)
        self.activity_id = activity_id


class AlreadyCompletedTodayError(ConflictError):
    def __init__(self, activity_id: str):
        super().__init__(f"Activity already completed today: {activity_id}")
        self.activity_id = activity_id


class NoCompletionTodayError(ConflictError):
    def __init__(self, activity_id: str):
        super().__init__(f"No completion found today for activity: {activity_id}")
        self.activity_id = activity_id


class CompanionNotFoundError(DataIntegrityError):
    """Every user gets one companion per category at signup; absence is a bug."""

    def __init__(self, category: str):
        super().__init__(f"Habitanimal not found for category: {category}")
        self.category = category
