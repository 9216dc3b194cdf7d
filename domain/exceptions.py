"""Domain Exceptions

Every error the lifecycle engine raises carries a stable error code and the
HTTP status the API layer should surface it with. They subclass ValueError so
callers that only care about "the request was rejected" can keep catching
ValueError.
"""
from typing import Any, Dict, Optional


class DomainError(ValueError):
    """Base class for reservation/occupancy errors"""
    error_code = "DOMAIN_ERROR"
    status_code = 400

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None):
        self.message = message
        self.details = details or {}
        super().__init__(message)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "code": self.error_code,
            "message": self.message,
            "details": self.details,
        }


class InvalidTransition(DomainError):
    error_code = "INVALID_TRANSITION"
    status_code = 409


class PaymentNotVerified(InvalidTransition):
    error_code = "PAYMENT_NOT_VERIFIED"


class RoomNotFound(DomainError):
    error_code = "ROOM_NOT_FOUND"
    status_code = 404


class ReservationNotFound(DomainError):
    error_code = "RESERVATION_NOT_FOUND"
    status_code = 404


class DateOutOfRange(DomainError):
    error_code = "DATE_OUT_OF_RANGE"
    status_code = 400


class BedNotFound(DomainError):
    error_code = "BED_NOT_FOUND"
    status_code = 400


class RoomUnavailable(DomainError):
    error_code = "ROOM_NOT_AVAILABLE"
    status_code = 400


class ReconciliationConflict(DomainError):
    """Occupancy would exceed capacity or a bed is already held"""
    error_code = "RECONCILIATION_CONFLICT"
    status_code = 409
