from __future__ import annotations

from enum import StrEnum


class ErrorKind(StrEnum):
    NOT_FOUND = "not_found"
    VALIDATION = "validation"
    CONFLICT = "conflict"
    SYSTEM = "system"


class ConflictKind(StrEnum):
    HAS_SERVICES = "has_services"
    IN_USE_BY_COMPANIES = "in_use_by_companies"
    IN_USE = "in_use"
    DUPLICATE = "duplicate"
    INVALID_TRANSITION = "invalid_transition"
    INVALID_STATE = "invalid_state"


SYSTEM_ERROR_MESSAGE = "SYSTEM_ERROR: An unexpected error occurred, please try again or contact support"


class ServiceError(Exception):
    kind: ErrorKind = ErrorKind.SYSTEM

    @property
    def message(self) -> str:
        return str(self)


class NotFoundError(ServiceError):
    kind = ErrorKind.NOT_FOUND


class ValidationError(ServiceError):
    kind = ErrorKind.VALIDATION


class ConflictError(ServiceError):
    kind = ErrorKind.CONFLICT

    def __init__(self, message: str, conflict: ConflictKind = ConflictKind.DUPLICATE) -> None:
        super().__init__(message)
        self.conflict = conflict


def foreign_key_conflict(subject: str) -> ConflictError:
    return ConflictError(f"FOREIGN_KEY_ERROR: {subject}", ConflictKind.IN_USE)
