"""Custom exception classes for the classroom roster backend.

Every exception carries the HTTP status it maps to and a message that is
safe to show to the client. ``app.py`` registers a single handler for the
base class.
"""

from typing import Dict, List, Optional


class ClassroomError(Exception):
    """Base exception for all domain errors."""

    status_code = 500

    def __init__(self, message: str):
        """Initialize the exception.

        Args:
            message: Client-facing message.
        """
        self.message = message
        super().__init__(message)

    def to_payload(self) -> Dict[str, object]:
        return {"error": self.message}


class ValidationError(ClassroomError):
    """Raised when input is malformed or a business rule rejects it."""

    status_code = 400

    def __init__(
        self, message: str, errors: Optional[List[Dict[str, str]]] = None
    ):
        """Initialize the exception.

        Args:
            message: Client-facing summary.
            errors: Optional field-level errors as ``{"field", "message"}``.
        """
        self.errors = errors or []
        super().__init__(message)

    def to_payload(self) -> Dict[str, object]:
        if self.errors:
            return {"errors": self.errors}
        return {"error": self.message}


class ExpiredError(ValidationError):
    """Raised when a verification or join code is past its expiry."""

    pass


class NotFoundError(ClassroomError):
    """Raised when a referenced classroom, user or seat does not exist."""

    status_code = 404


class ConflictError(ClassroomError):
    """Raised on duplicate identities or a lost seat race."""

    status_code = 409


class AuthError(ClassroomError):
    """Raised on bad credentials or an invalid/expired token."""

    status_code = 401

    def to_payload(self) -> Dict[str, object]:
        return {"message": self.message}


class ForbiddenError(AuthError):
    """Raised when the caller is authenticated but not allowed."""

    status_code = 403


class InternalFault(ClassroomError):
    """Raised on persistence failures or invariant violations."""

    status_code = 500

    def to_payload(self) -> Dict[str, object]:
        return {"error": "Erreur interne du serveur"}


class InvalidClassroomReference(ValidationError):
    """Raised when a classroom id is malformed."""

    def __init__(self, class_id: str):
        self.class_id = class_id
        super().__init__("Identifiant de classe invalide")


class NoMatchingSeat(ValidationError):
    """Raised when no roster seat carries the claimed names."""

    def __init__(self):
        super().__init__(
            "Nom et prénom non reconnus pour ce code. Contactez votre professeur."
        )

    def to_payload(self) -> Dict[str, object]:
        return {"error": self.message, "redirect": True}


class SeatUnavailable(ConflictError):
    """Raised when the matched seat belongs to someone else."""

    def __init__(self):
        super().__init__(
            "Place déjà attribuée. Contactez votre professeur."
        )

    def to_payload(self) -> Dict[str, object]:
        return {"error": self.message, "redirect": True}


class InternalInconsistency(InternalFault):
    """Raised when a matched seat can be addressed by neither key nor index."""

    pass
