"""
Domain error taxonomy.

Services raise these; `talentree.main` maps each kind to an HTTP status with a
uniform error envelope.
"""
from fastapi import status


class DomainError(Exception):
    status_code = status.HTTP_400_BAD_REQUEST
    error_type = "domain_error"

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


class NotFoundError(DomainError):
    """Referenced test, question, response, answer or application does not exist."""

    status_code = status.HTTP_404_NOT_FOUND
    error_type = "not_found"

    @classmethod
    def for_entity(cls, entity: str, entity_id: str) -> "NotFoundError":
        return cls(f"{entity} with id {entity_id} not found")


class ConflictError(DomainError):
    """The request clashes with existing state; retrying it unchanged will fail again."""

    status_code = status.HTTP_409_CONFLICT
    error_type = "conflict"


class AlreadyCompletedError(ConflictError):
    error_type = "already_completed"


class DuplicateApplicationError(ConflictError):
    error_type = "duplicate_application"


class InvalidTransitionError(ConflictError):
    error_type = "invalid_transition"


class ValidationError(DomainError):
    status_code = status.HTTP_422_UNPROCESSABLE_ENTITY
    error_type = "validation_error"


class TransientError(DomainError):
    """Storage timeout or lost connection. The whole operation may be retried."""

    status_code = status.HTTP_503_SERVICE_UNAVAILABLE
    error_type = "transient_error"
