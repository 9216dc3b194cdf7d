"""Domain Enums"""
from enum import Enum


class ReservationStatus(str, Enum):
    PENDING = "pending"
    CONFIRMED = "confirmed"
    CHECKED_IN = "checked-in"
    CHECKED_OUT = "checked-out"
    CANCELLED = "cancelled"
    AT_RISK = "at-risk"


class PaymentStatus(str, Enum):
    PENDING = "pending"
    PARTIAL = "partial"
    PAID = "paid"


class RoomType(str, Enum):
    PRIVATE = "private"
    DOUBLE_SHARING = "double-sharing"
    QUADRUPLE_SHARING = "quadruple-sharing"


class AccountRole(str, Enum):
    USER = "user"
    TENANT = "tenant"
    ADMIN = "admin"
    SUPER_ADMIN = "super_admin"


class TransitionTrigger(str, Enum):
    """Who is allowed to fire a status transition"""
    STATUS_UPDATE = "STATUS_UPDATE"
    RISK_SWEEP = "RISK_SWEEP"
    EXTENSION = "EXTENSION"
    RELEASE = "RELEASE"


class AuditAction(str, Enum):
    CREATE = "CREATE"
    STATUS_CHANGE = "STATUS_CHANGE"
    EXTEND = "EXTEND"
    RELEASE = "RELEASE"
    ARCHIVE = "ARCHIVE"
    RESTORE = "RESTORE"
    RECALCULATE = "RECALCULATE"
