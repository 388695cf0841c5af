"""
Domain exceptions raised by the assignment graph and the audit recorder.

Authorization decisions are never raised; these cover the failures that are
not a verdict: concurrent edge mutation, missing edges, and audit storage
problems. `app.main` maps each one to an HTTP response.
"""
from fastapi import status


class PropertyAccessError(Exception):
    """Base class for errors surfaced to API callers."""
    status_code: int = status.HTTP_400_BAD_REQUEST
    retryable: bool = False

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


class ConflictError(PropertyAccessError):
    """
    An active edge already exists for the (subject, property) pair, or a
    concurrent assignment won the race. Reload and resubmit.
    """
    status_code = status.HTTP_409_CONFLICT
    retryable = True

    def __init__(self, subject_id: str, property_id: str, message: str | None = None):
        super().__init__(
            message or f"Subject {subject_id} already has an active assignment on property {property_id}"
        )
        self.subject_id = subject_id
        self.property_id = property_id


class EdgeNotFound(PropertyAccessError):
    """No active edge exists for the (subject, property) pair."""
    status_code = status.HTTP_404_NOT_FOUND

    def __init__(self, subject_id: str, property_id: str):
        super().__init__(f"No active assignment for subject {subject_id} on property {property_id}")
        self.subject_id = subject_id
        self.property_id = property_id


class RelationNotActive(PropertyAccessError):
    """The governing relation cited for an edge is ended, expired or unknown."""
    status_code = status.HTTP_409_CONFLICT

    def __init__(self, relation_id: str):
        super().__init__(f"Governing relation {relation_id} is not active")
        self.relation_id = relation_id


class AuditWriteFailure(PropertyAccessError):
    """
    An audit entry could not be durably written after all retries.

    Fatal for the enclosing request: the business mutation must not be
    reported as complete.
    """
    status_code = status.HTTP_503_SERVICE_UNAVAILABLE
    retryable = True

    def __init__(self, action: str, attempts: int):
        super().__init__(f"Audit entry for '{action}' could not be written after {attempts} attempts")
        self.action = action
        self.attempts = attempts
