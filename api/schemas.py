"""API Schemas - Request and Response DTOs"""
from pydantic import BaseModel, Field
from datetime import date, datetime
from uuid import UUID
from typing import List, Optional

from domain.enums import AccountRole, PaymentStatus, ReservationStatus, RoomType
from domain.time_policy import MAX_EXTENSION_DAYS


# ============================================================================
# RESERVATION SCHEMAS
# ============================================================================

class SelectedBedRequest(BaseModel):
    """Bed picked by the guest"""
    bed_id: str = Field(min_length=1)
    position: Optional[str] = None


class CreateReservationRequest(BaseModel):
    """Create reservation request DTO"""
    room_id: UUID
    target_move_in_date: date
    selected_bed: Optional[SelectedBedRequest] = None
    notes: str = Field(default="", max_length=1000)
    guest_id: Optional[UUID] = Field(default=None, description="Staff only: book on behalf of a guest")


class UpdateStatusRequest(BaseModel):
    """Status change request DTO"""
    status: ReservationStatus
    payment_verified: Optional[bool] = Field(
        default=None, description="Mark the payment as verified before confirming"
    )


class ExtendReservationRequest(BaseModel):
    """Move-in extension request DTO"""
    extension_days: Optional[int] = Field(default=None, ge=1, le=MAX_EXTENSION_DAYS)


class ReleaseReservationRequest(BaseModel):
    """Release (no-show) request DTO"""
    reason: str = "No-show after move-in grace period"


class ArchiveReservationRequest(BaseModel):
    """Archive request DTO"""
    reason: Optional[str] = None


class SelectedBedResponse(BaseModel):
    bed_id: str
    position: Optional[str] = None


class ReservationResponse(BaseModel):
    """Reservation response DTO"""
    reservation_id: UUID
    reservation_code: str
    guest_id: UUID
    room_id: UUID
    selected_bed: Optional[SelectedBedResponse] = None
    status: ReservationStatus
    target_move_in_date: date
    final_move_in_date: Optional[date] = None
    check_out_date: Optional[date] = None
    move_in_reminder_date: datetime
    move_in_reminder_sent: bool
    move_in_risk_date: datetime
    at_risk: bool
    payment_status: PaymentStatus
    payment_verified: bool
    release_reason: Optional[str] = None
    released_at: Optional[datetime] = None
    is_archived: bool
    archived_at: Optional[datetime] = None
    archive_reason: Optional[str] = None
    notes: str
    created_at: datetime
    modified_at: datetime
    created_by: str
    version: int


# ============================================================================
# ROOM SCHEMAS
# ============================================================================

class BedRequest(BaseModel):
    bed_id: str = Field(min_length=1)
    position: Optional[str] = None


class CreateRoomRequest(BaseModel):
    """Create room request DTO"""
    name: str = Field(min_length=1)
    room_number: str = Field(min_length=1)
    branch: str = Field(min_length=1)
    room_type: RoomType = RoomType.PRIVATE
    capacity: int = Field(ge=1)
    beds: List[BedRequest] = []


class AvailabilityOverrideRequest(BaseModel):
    """Force a room open/closed; null returns to capacity-based availability"""
    available: Optional[bool] = None


class BedOccupantResponse(BaseModel):
    guest_id: UUID
    reservation_id: UUID
    occupied_since: datetime


class BedResponse(BaseModel):
    bed_id: str
    position: Optional[str] = None
    available: bool
    occupied_by: Optional[BedOccupantResponse] = None


class RoomResponse(BaseModel):
    """Room response DTO"""
    room_id: UUID
    name: str
    room_number: str
    branch: str
    room_type: RoomType
    capacity: int
    current_occupancy: int
    beds: List[BedResponse]
    available: bool
    availability_override: Optional[bool] = None
    is_archived: bool
    last_updated: datetime
    version: int


class BedDriftResponse(BaseModel):
    bed_id: str
    cached_reservation_id: Optional[UUID] = None
    expected_reservation_id: Optional[UUID] = None


class OccupancyDriftResponse(BaseModel):
    """Cached vs recomputed occupancy of a room"""
    room_id: UUID
    cached_occupancy: int
    expected_occupancy: int
    has_drift: bool
    bed_drift: List[BedDriftResponse]


# ============================================================================
# MAINTENANCE SCHEMAS
# ============================================================================

class SweepErrorResponse(BaseModel):
    reservation_id: UUID
    error: str


class SweepReportResponse(BaseModel):
    """Outcome of one risk sweep pass"""
    started_at: datetime
    scanned: int
    reminders_sent: int
    reminders_failed: int
    flagged_at_risk: int
    errors: List[SweepErrorResponse]


# ============================================================================
# AUTH SCHEMAS
# ============================================================================

class Token(BaseModel):
    """Token response DTO"""
    access_token: str
    token_type: str

class TokenData(BaseModel):
    """Token payload DTO"""
    username: Optional[str] = None

class UserResponse(BaseModel):
    """User response DTO"""
    user_id: UUID
    username: str
    email: Optional[str] = None
    full_name: Optional[str] = None
    role: AccountRole
    branch: Optional[str] = None
    disabled: bool
