"""Domain Value Objects"""
from pydantic import BaseModel, Field
from datetime import datetime
from uuid import UUID
from typing import Optional, List, Tuple

from domain.enums import RoomType


class MoveInSchedule(BaseModel):
    """Reminder / at-risk deadlines derived from a move-in date"""
    reminder_date: datetime
    risk_date: datetime

    class Config:
        frozen = True


class SelectedBed(BaseModel):
    """Bed a guest picked when reserving"""
    bed_id: str = Field(min_length=1)
    position: Optional[str] = None

    class Config:
        frozen = True


class BedOccupant(BaseModel):
    """Who holds a bed and since when"""
    guest_id: UUID
    reservation_id: UUID
    occupied_since: datetime

    class Config:
        frozen = True


class BedDrift(BaseModel):
    bed_id: str
    cached_reservation_id: Optional[UUID] = None
    expected_reservation_id: Optional[UUID] = None

    class Config:
        frozen = True


class OccupancyDrift(BaseModel):
    """Difference between a room's cached occupancy and its source of truth"""
    room_id: UUID
    cached_occupancy: int
    expected_occupancy: int
    bed_drift: List[BedDrift] = []

    class Config:
        frozen = True

    @property
    def has_drift(self) -> bool:
        return self.cached_occupancy != self.expected_occupancy or bool(self.bed_drift)


class OccupiedBedView(BaseModel):
    bed_id: str
    position: Optional[str] = None
    guest_id: UUID
    reservation_id: UUID
    occupied_since: datetime


class AvailableBedView(BaseModel):
    bed_id: str
    position: Optional[str] = None


class RoomOccupancySnapshot(BaseModel):
    """Read model describing one room's occupancy"""
    room_id: UUID
    room_name: str
    room_type: RoomType
    branch: str
    capacity: int
    current_occupancy: int
    occupancy_rate: str
    is_available: bool
    total_beds: int
    occupied_beds: List[OccupiedBedView] = []
    available_beds: List[AvailableBedView] = []


class BranchOccupancyStats(BaseModel):
    branch: str
    total_rooms: int
    total_capacity: int
    total_occupancy: int
    overall_occupancy_rate: str
    rooms: List[RoomOccupancySnapshot] = []


class SweepReport(BaseModel):
    """Outcome of one risk sweep pass"""
    started_at: datetime
    scanned: int = 0  # distinct reservations
    reminders_sent: int = 0
    reminders_failed: int = 0
    flagged_at_risk: int = 0
    errors: List[Tuple[UUID, str]] = []
