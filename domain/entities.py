"""Domain Entities - Aggregates"""
import logging
import re
from pydantic import BaseModel, Field
from uuid import UUID, uuid4
from datetime import datetime, date, timedelta
from typing import Optional, List, Dict

from domain.enums import ReservationStatus, PaymentStatus, RoomType, TransitionTrigger
from domain.exceptions import (
    BedNotFound, DateOutOfRange, InvalidTransition, PaymentNotVerified, ReconciliationConflict,
)
from domain.state_machine import ACTIVE_STATUSES, ensure_transition, holds_slot
from domain.time_policy import MAX_EXTENSION_DAYS, booking_window, compute_schedule, utc_now
from domain.value_objects import BedOccupant, SelectedBed

logger = logging.getLogger(__name__)


class Reservation(BaseModel):
    """Reservation Aggregate Root Entity"""

    # Identity
    reservation_id: UUID = Field(default_factory=uuid4)
    reservation_code: str

    # References to other aggregates
    guest_id: UUID
    room_id: UUID
    selected_bed: Optional[SelectedBed] = None

    # Status
    status: ReservationStatus = ReservationStatus.PENDING
    risk_origin: Optional[ReservationStatus] = None

    # Dates
    target_move_in_date: date
    final_move_in_date: Optional[date] = None
    check_out_date: Optional[date] = None

    # Derived move-in schedule (cache of time_policy.compute_schedule)
    move_in_reminder_date: datetime
    move_in_reminder_sent: bool = False
    move_in_risk_date: datetime
    at_risk: bool = False

    # Payment
    payment_status: PaymentStatus = PaymentStatus.PENDING
    payment_verified: bool = False

    # Release / soft delete
    release_reason: Optional[str] = None
    released_at: Optional[datetime] = None
    is_archived: bool = False
    archived_at: Optional[datetime] = None
    archived_by: Optional[str] = None
    archive_reason: Optional[str] = None

    notes: str = ""

    # Metadata
    created_at: datetime = Field(default_factory=utc_now)
    modified_at: datetime = Field(default_factory=utc_now)
    created_by: str = "SYSTEM"
    version: int = 1

    class Config:
        from_attributes = True

    # ==================== FACTORY METHOD ====================
    @staticmethod
    def create(
        guest_id: UUID,
        room_id: UUID,
        target_move_in_date: date,
        selected_bed: Optional[SelectedBed] = None,
        notes: str = "",
        created_by: str = "SYSTEM",
        now: Optional[datetime] = None,
    ) -> "Reservation":
        """Create a pending reservation with its move-in schedule"""
        now = now or utc_now()
        Reservation._validate_move_in_date(target_move_in_date, now.date())

        reservation_id = uuid4()
        schedule = compute_schedule(target_move_in_date)

        return Reservation(
            reservation_id=reservation_id,
            reservation_code=Reservation._generate_reservation_code(reservation_id),
            guest_id=guest_id,
            room_id=room_id,
            selected_bed=selected_bed,
            status=ReservationStatus.PENDING,
            target_move_in_date=target_move_in_date,
            move_in_reminder_date=schedule.reminder_date,
            move_in_risk_date=schedule.risk_date,
            notes=notes,
            created_at=now,
            modified_at=now,
            created_by=created_by,
        )

    # ==================== QUERY PROPERTIES ====================
    @property
    def occupancy_status(self) -> ReservationStatus:
        """Status that decides occupancy; at-risk keeps what it had before"""
        if self.status == ReservationStatus.AT_RISK and self.risk_origin is not None:
            return self.risk_origin
        return self.status

    @property
    def holds_slot(self) -> bool:
        """Whether this record currently counts against its room"""
        return not self.is_archived and holds_slot(self.occupancy_status)

    @property
    def is_payment_verified(self) -> bool:
        return self.payment_verified or self.payment_status == PaymentStatus.PAID

    @property
    def bed_id(self) -> Optional[str]:
        return self.selected_bed.bed_id if self.selected_bed else None

    def is_extendable(self) -> bool:
        return self.status in ACTIVE_STATUSES or self.status == ReservationStatus.AT_RISK

    # ==================== STATE TRANSITION METHODS ====================
    def transition_to(
        self,
        new_status: ReservationStatus,
        trigger: TransitionTrigger = TransitionTrigger.STATUS_UPDATE,
        now: Optional[datetime] = None,
    ) -> ReservationStatus:
        """Move to `new_status` if the table allows it; returns the old status"""
        old_status = self.status
        ensure_transition(old_status, new_status, trigger)
        if old_status == new_status:
            return old_status

        now = now or utc_now()
        if new_status == ReservationStatus.CONFIRMED:
            self._confirm()
        elif new_status == ReservationStatus.CHECKED_IN:
            self.final_move_in_date = self.final_move_in_date or now.date()
        elif new_status == ReservationStatus.CHECKED_OUT:
            self.check_out_date = self.check_out_date or now.date()

        if old_status == ReservationStatus.AT_RISK:
            self.at_risk = False
            self.risk_origin = None

        self.status = new_status
        self._touch(now)
        return old_status

    def flag_at_risk(self, now: Optional[datetime] = None) -> None:
        """Mark as at-risk after the move-in grace period lapsed"""
        ensure_transition(self.status, ReservationStatus.AT_RISK, TransitionTrigger.RISK_SWEEP)
        if self.status == ReservationStatus.AT_RISK:
            return
        self.risk_origin = self.status
        self.status = ReservationStatus.AT_RISK
        self.at_risk = True
        self._touch(now)

    def mark_reminder_sent(self, now: Optional[datetime] = None) -> None:
        self.move_in_reminder_sent = True
        self._touch(now)

    def extend(self, extension_days: int, now: Optional[datetime] = None) -> None:
        """Push the move-in date back and restart the reminder/risk clock"""
        if not 1 <= extension_days <= MAX_EXTENSION_DAYS:
            raise DateOutOfRange(
                f"Extension must be between 1 and {MAX_EXTENSION_DAYS} days",
                details={"extension_days": extension_days},
            )
        if not self.is_extendable():
            raise InvalidTransition(
                f"Cannot extend reservation with status {self.status.value}",
                details={"status": self.status.value},
            )

        shift = timedelta(days=extension_days)
        self.target_move_in_date = self.target_move_in_date + shift
        if self.final_move_in_date is not None:
            self.final_move_in_date = self.final_move_in_date + shift
        self._apply_schedule()

        if self.status == ReservationStatus.AT_RISK:
            restored = (
                ReservationStatus.CONFIRMED if self.is_payment_verified
                else ReservationStatus.PENDING
            )
            ensure_transition(self.status, restored, TransitionTrigger.EXTENSION)
            self.status = restored
        self.risk_origin = None
        self._touch(now)

    def release(self, reason: str, now: Optional[datetime] = None) -> bool:
        """Cancel to free the slot; False when already cancelled"""
        if self.status == ReservationStatus.CANCELLED:
            return False
        ensure_transition(self.status, ReservationStatus.CANCELLED, TransitionTrigger.RELEASE)

        now = now or utc_now()
        self.status = ReservationStatus.CANCELLED
        self.at_risk = False
        self.risk_origin = None
        self.release_reason = reason
        self.released_at = now
        self._touch(now)
        return True

    def archive(self, archived_by: Optional[str], reason: Optional[str] = None,
                now: Optional[datetime] = None) -> bool:
        """Soft delete; returns False when already archived"""
        if self.is_archived:
            return False
        if self.status == ReservationStatus.CHECKED_IN:
            raise InvalidTransition(
                "Cannot archive a checked-in reservation; check the guest out first",
                details={"status": self.status.value},
            )

        now = now or utc_now()
        self.is_archived = True
        self.archived_at = now
        self.archived_by = archived_by
        self.archive_reason = reason
        self._touch(now)
        return True

    def restore(self, now: Optional[datetime] = None) -> bool:
        if not self.is_archived:
            return False
        self.is_archived = False
        self.archived_at = None
        self.archived_by = None
        self.archive_reason = None
        self._touch(now)
        return True

    def verify_payment(self) -> None:
        self.payment_verified = True

    # ==================== PRIVATE METHODS ====================
    def _confirm(self) -> None:
        if not self.is_payment_verified:
            raise PaymentNotVerified(
                "Payment must be verified before confirming",
                details={"payment_status": self.payment_status.value},
            )
        self.payment_status = PaymentStatus.PAID

    def _apply_schedule(self) -> None:
        schedule = compute_schedule(self.target_move_in_date)
        self.move_in_reminder_date = schedule.reminder_date
        self.move_in_risk_date = schedule.risk_date
        self.move_in_reminder_sent = False
        self.at_risk = False

    def _touch(self, now: Optional[datetime] = None) -> None:
        self.modified_at = now or utc_now()
        self.version += 1

    @staticmethod
    def _validate_move_in_date(move_in_date: date, today: date) -> None:
        earliest, latest = booking_window(today)
        if move_in_date < earliest:
            raise DateOutOfRange(
                "Target move-in date cannot be in the past",
                details={"earliest": earliest.isoformat()},
            )
        if move_in_date > latest:
            raise DateOutOfRange(
                "Target move-in date must be within 3 months",
                details={"latest": latest.isoformat()},
            )

    @staticmethod
    def _generate_reservation_code(reservation_id: UUID) -> str:
        """RES- followed by the first 3 and last 4 characters of the id"""
        normalized = re.sub(r"[^a-zA-Z0-9]", "", str(reservation_id))
        return f"RES-{normalized[:3]}{normalized[-4:]}".upper()


class Bed(BaseModel):
    """Child entity of Room: the finest allocatable unit"""
    bed_id: str = Field(min_length=1)
    position: Optional[str] = None
    available: bool = True
    occupied_by: Optional[BedOccupant] = None

    class Config:
        from_attributes = True

    def occupy(self, occupant: BedOccupant) -> None:
        self.available = False
        self.occupied_by = occupant

    def vacate(self) -> None:
        self.available = True
        self.occupied_by = None


class Room(BaseModel):
    """Room Inventory Aggregate Root Entity"""

    # Identity
    room_id: UUID = Field(default_factory=uuid4)
    name: str
    room_number: str
    branch: str
    room_type: RoomType = RoomType.PRIVATE

    # Capacity tracking
    capacity: int = Field(ge=1)
    current_occupancy: int = Field(ge=0, default=0)
    beds: List[Bed] = []

    # Availability
    available: bool = True
    availability_override: Optional[bool] = None

    # Soft delete
    is_archived: bool = False
    archived_at: Optional[datetime] = None
    archived_by: Optional[str] = None

    # Metadata
    last_updated: datetime = Field(default_factory=utc_now)
    version: int = 1

    class Config:
        from_attributes = True

    # ==================== FACTORY METHOD ====================
    @staticmethod
    def create(
        name: str,
        room_number: str,
        branch: str,
        room_type: RoomType,
        capacity: int,
        beds: Optional[List[Bed]] = None,
    ) -> "Room":
        beds = beds or []
        Room._validate_beds(beds, capacity)
        room = Room(
            name=name,
            room_number=room_number,
            branch=branch,
            room_type=room_type,
            capacity=capacity,
            beds=beds,
        )
        room.update_availability()
        return room

    # ==================== COMPUTED PROPERTIES ====================
    @property
    def available_slots(self) -> int:
        return max(0, self.capacity - self.current_occupancy)

    @property
    def is_full(self) -> bool:
        return self.current_occupancy >= self.capacity

    @property
    def occupied_bed_count(self) -> int:
        return sum(1 for bed in self.beds if not bed.available)

    @property
    def tracks_beds(self) -> bool:
        return bool(self.beds)

    # ==================== KEY METHODS ====================
    def find_bed(self, bed_id: str) -> Optional[Bed]:
        for bed in self.beds:
            if bed.bed_id == bed_id:
                return bed
        return None

    def require_bed(self, bed_id: str) -> Bed:
        bed = self.find_bed(bed_id)
        if bed is None:
            raise BedNotFound(
                f"Bed {bed_id} does not exist in room {self.name}",
                details={"room_id": str(self.room_id), "bed_id": bed_id},
            )
        return bed

    def increase_occupancy(self) -> None:
        """Take one slot; conflicts when the room is already full"""
        if self.is_full:
            raise ReconciliationConflict(
                f"Room {self.name} is at capacity ({self.current_occupancy}/{self.capacity})",
                details={
                    "room_id": str(self.room_id),
                    "capacity": self.capacity,
                    "current_occupancy": self.current_occupancy,
                },
            )
        self.current_occupancy += 1
        self._touch()

    def decrease_occupancy(self) -> None:
        if self.current_occupancy == 0:
            logger.warning("Room %s occupancy already 0, nothing to release", self.room_id)
            return
        self.current_occupancy -= 1
        self._touch()

    def occupy_bed(self, bed_id: str, occupant: BedOccupant) -> Bed:
        bed = self.require_bed(bed_id)
        holder = bed.occupied_by
        if not bed.available and holder is not None:
            if holder.reservation_id == occupant.reservation_id:
                return bed
            raise ReconciliationConflict(
                f"Bed {bed_id} in room {self.name} is already occupied",
                details={
                    "room_id": str(self.room_id),
                    "bed_id": bed_id,
                    "reservation_id": str(holder.reservation_id),
                },
            )
        bed.occupy(occupant)
        self._touch()
        return bed

    def vacate_bed(self, bed_id: str, reservation_id: UUID) -> bool:
        """Free the bed if `reservation_id` holds it (or nobody does)"""
        bed = self.require_bed(bed_id)
        holder = bed.occupied_by
        if holder is not None and holder.reservation_id != reservation_id:
            logger.warning(
                "Bed %s in room %s held by reservation %s, not %s; leaving it",
                bed_id, self.room_id, holder.reservation_id, reservation_id,
            )
            return False
        if bed.available:
            return False
        bed.vacate()
        self._touch()
        return True

    def reset_occupancy(self, occupancy: int, bed_occupants: Dict[str, BedOccupant]) -> None:
        """Overwrite the cached counters with a recomputed projection"""
        self.current_occupancy = occupancy
        for bed in self.beds:
            occupant = bed_occupants.get(bed.bed_id)
            if occupant is not None:
                bed.occupy(occupant)
            else:
                bed.vacate()
        self.update_availability()
        self._touch()

    def update_availability(self) -> None:
        if self.is_archived:
            self.available = False
        elif self.availability_override is not None:
            self.available = self.availability_override
        else:
            self.available = self.current_occupancy < self.capacity

    def set_availability_override(self, value: Optional[bool]) -> None:
        self.availability_override = value
        self.update_availability()
        self._touch()

    def archive(self, archived_by: Optional[str] = None, now: Optional[datetime] = None) -> None:
        self.is_archived = True
        self.archived_at = now or utc_now()
        self.archived_by = archived_by
        self.update_availability()
        self._touch(now)

    def restore(self, now: Optional[datetime] = None) -> None:
        self.is_archived = False
        self.archived_at = None
        self.archived_by = None
        self.update_availability()
        self._touch(now)

    # ==================== PRIVATE METHODS ====================
    def _touch(self, now: Optional[datetime] = None) -> None:
        self.last_updated = now or utc_now()
        self.version += 1

    @staticmethod
    def _validate_beds(beds: List[Bed], capacity: int) -> None:
        if len(beds) > capacity:
            raise ValueError("A room cannot have more beds than its capacity")
        bed_ids = [bed.bed_id for bed in beds]
        if len(set(bed_ids)) != len(bed_ids):
            raise ValueError("Bed ids must be unique within a room")
