"""Application Services - Business use cases"""
import logging
import math
from uuid import UUID
from datetime import date
from typing import Any, Dict, List, Optional, Tuple

from application.occupancy import OccupancyReconciler
from domain.collaborators import AuditSink, TenantAccounts
from domain.entities import Bed, Reservation, Room
from domain.enums import AuditAction, ReservationStatus, RoomType, TransitionTrigger
from domain.exceptions import (
    InvalidTransition, ReconciliationConflict, ReservationNotFound, RoomNotFound, RoomUnavailable,
)
from domain.repositories import (
    ReservationFilter, ReservationRepository, RoomFilter, RoomRepository,
)
from domain.time_policy import Clock, utc_now
from domain.value_objects import (
    AvailableBedView, BranchOccupancyStats, OccupancyDrift, OccupiedBedView,
    RoomOccupancySnapshot, SelectedBed,
)

logger = logging.getLogger(__name__)

DEFAULT_EXTENSION_DAYS = 3


def _image(entity) -> Dict[str, Any]:
    return entity.model_dump(mode="json")


def _format_rate(occupancy: int, capacity: int) -> str:
    if capacity <= 0:
        return "0%"
    return f"{math.floor(occupancy / capacity * 100 + 0.5)}%"


class ReservationService:
    """Lifecycle operations on reservations

    Each operation loads the record, works on a copy, and only persists once
    every validation has passed, so a rejected request leaves both the
    reservation and its room untouched. Room effects go through the
    OccupancyReconciler, which also saves the reservation.
    """

    def __init__(self,
                 repository: ReservationRepository,
                 room_repo: RoomRepository,
                 reconciler: OccupancyReconciler,
                 audit_sink: Optional[AuditSink] = None,
                 tenant_accounts: Optional[TenantAccounts] = None,
                 clock: Clock = utc_now,
                 default_extension_days: int = DEFAULT_EXTENSION_DAYS):
        self.repository = repository
        self.room_repo = room_repo
        self.reconciler = reconciler
        self.audit_sink = audit_sink
        self.tenant_accounts = tenant_accounts
        self.clock = clock
        self.default_extension_days = default_extension_days

    async def create_reservation(
        self,
        guest_id: UUID,
        room_id: UUID,
        target_move_in_date: date,
        selected_bed: Optional[SelectedBed] = None,
        notes: str = "",
        created_by: str = "SYSTEM"
    ) -> Reservation:
        """Create a pending reservation; the room is not occupied until confirmation"""
        room = await self.room_repo.find_by_id(room_id)
        if room is None or room.is_archived:
            raise RoomNotFound(f"Room {room_id} not found", details={"room_id": str(room_id)})
        if not room.available:
            raise RoomUnavailable(
                f"Room {room.name} is not available for reservation",
                details={"room_id": str(room_id)},
            )
        if selected_bed is not None:
            bed = room.require_bed(selected_bed.bed_id)
            if not bed.available:
                raise RoomUnavailable(
                    f"Bed {bed.bed_id} in room {room.name} is already taken",
                    details={"room_id": str(room_id), "bed_id": bed.bed_id},
                )
            if selected_bed.position is None and bed.position is not None:
                selected_bed = SelectedBed(bed_id=bed.bed_id, position=bed.position)

        reservation = Reservation.create(
            guest_id=guest_id,
            room_id=room_id,
            target_move_in_date=target_move_in_date,
            selected_bed=selected_bed,
            notes=notes,
            created_by=created_by,
            now=self.clock(),
        )
        await self.repository.save(reservation)
        await self._audit(AuditAction.CREATE, None, reservation,
                          note=f"Created reservation for room {room.name}", actor=created_by)

        logger.info("Reservation %s created for guest %s in room %s",
                    reservation.reservation_code, guest_id, room.name)
        return reservation

    async def get_reservation(self, reservation_id: UUID) -> Reservation:
        """Get reservation by ID"""
        reservation = await self.repository.find_by_id(reservation_id)
        if reservation is None:
            raise ReservationNotFound(
                f"Reservation {reservation_id} not found",
                details={"reservation_id": str(reservation_id)},
            )
        return reservation

    async def get_reservation_by_code(self, code: str) -> Reservation:
        """Get reservation by reservation code"""
        reservation = await self.repository.find_by_code(code)
        if reservation is None:
            raise ReservationNotFound(f"Reservation {code} not found", details={"code": code})
        return reservation

    async def list_reservations(
        self,
        guest_id: Optional[UUID] = None,
        branch: Optional[str] = None,
        statuses: Optional[List[ReservationStatus]] = None,
        include_archived: bool = False
    ) -> List[Reservation]:
        """List reservations, optionally restricted to one branch's rooms"""
        room_ids = None
        if branch is not None:
            rooms = await self.room_repo.find(RoomFilter(branch=branch, is_archived=None))
            room_ids = frozenset(room.room_id for room in rooms)

        criteria = ReservationFilter(
            room_ids=room_ids,
            guest_id=guest_id,
            statuses=frozenset(statuses) if statuses else None,
            is_archived=None if include_archived else False,
        )
        return await self.repository.find(criteria)

    async def update_status(
        self,
        reservation_id: UUID,
        new_status: ReservationStatus,
        payment_verified: Optional[bool] = None,
        actor: Optional[str] = None
    ) -> Reservation:
        """Move a reservation along the status table and reconcile its room"""
        before, working = await self._load_for_update(reservation_id)
        if working.status == new_status:
            return before

        if payment_verified:
            working.verify_payment()
        old_status = working.transition_to(new_status, TransitionTrigger.STATUS_UPDATE, now=self.clock())

        await self.reconciler.reconcile(working, old_status, held_before=before.holds_slot)

        await self._audit(AuditAction.STATUS_CHANGE, before, working,
                          note=f"{old_status.value} -> {new_status.value}", actor=actor)

        if new_status == ReservationStatus.CHECKED_IN:
            await self._promote(working)
        return working

    async def extend_reservation(
        self,
        reservation_id: UUID,
        extension_days: Optional[int] = None,
        actor: Optional[str] = None
    ) -> Reservation:
        """Shift the move-in date and restart the reminder/at-risk clock"""
        days = extension_days if extension_days is not None else self.default_extension_days
        before, working = await self._load_for_update(reservation_id)

        working.extend(days, now=self.clock())
        await self.reconciler.reconcile(working, before.status, held_before=before.holds_slot)

        await self._audit(AuditAction.EXTEND, before, working,
                          note=f"Extended move-in by {days} day(s) to {working.target_move_in_date.isoformat()}",
                          actor=actor)
        logger.info("Reservation %s extended by %d day(s), status %s",
                    working.reservation_code, days, working.status.value)
        return working

    async def release_reservation(
        self,
        reservation_id: UUID,
        reason: str,
        actor: Optional[str] = None
    ) -> Reservation:
        """Cancel a no-show and free its room/bed; no-op when already cancelled"""
        before, working = await self._load_for_update(reservation_id)
        if not working.release(reason, now=self.clock()):
            return before

        await self.reconciler.reconcile(working, before.status, held_before=before.holds_slot)

        await self._audit(AuditAction.RELEASE, before, working, note=reason, actor=actor)
        logger.info("Reservation %s released: %s", working.reservation_code, reason)
        return working

    async def archive_reservation(
        self,
        reservation_id: UUID,
        reason: Optional[str] = None,
        actor: Optional[str] = None
    ) -> Reservation:
        """Soft delete; a slot-holding record gives its slot back without a status change"""
        before = await self.get_reservation(reservation_id)
        working = before.model_copy(deep=True)
        if not working.archive(actor, reason, now=self.clock()):
            return before

        await self.reconciler.reconcile(working, before.status, held_before=before.holds_slot)

        await self._audit(AuditAction.ARCHIVE, before, working, note=reason, actor=actor)
        return working

    async def restore_reservation(self, reservation_id: UUID, actor: Optional[str] = None) -> Reservation:
        """Undo an archive; a slot-holding record takes its slot again"""
        before = await self.get_reservation(reservation_id)
        working = before.model_copy(deep=True)
        if not working.restore(now=self.clock()):
            return before

        await self.reconciler.reconcile(working, before.status, held_before=before.holds_slot)

        await self._audit(AuditAction.RESTORE, before, working, actor=actor)
        return working

    async def _load_for_update(self, reservation_id: UUID) -> Tuple[Reservation, Reservation]:
        before = await self.get_reservation(reservation_id)
        if before.is_archived:
            raise InvalidTransition(
                f"Reservation {before.reservation_code} is archived",
                details={"reservation_id": str(reservation_id)},
            )
        return before, before.model_copy(deep=True)

    async def _audit(self, action: AuditAction, before: Optional[Reservation],
                     after: Reservation, note: Optional[str] = None,
                     actor: Optional[str] = None) -> None:
        if self.audit_sink is None:
            return
        try:
            await self.audit_sink.record(
                action=action,
                entity_type="reservation",
                entity_id=after.reservation_id,
                before=_image(before) if before is not None else None,
                after=_image(after),
                note=note,
                actor=actor,
            )
        except Exception:
            # The change is already committed; a lost audit entry must not undo it.
            logger.exception("Audit sink failed for %s on reservation %s",
                             action.value, after.reservation_id)

    async def _promote(self, reservation: Reservation) -> None:
        if self.tenant_accounts is None:
            return
        try:
            await self.tenant_accounts.promote_to_tenant(reservation.guest_id)
        except Exception:
            logger.exception("Tenant promotion failed for guest %s after check-in of %s",
                             reservation.guest_id, reservation.reservation_code)


class RoomService:
    """Room inventory setup and occupancy reporting"""

    def __init__(self,
                 repository: RoomRepository,
                 reconciler: OccupancyReconciler,
                 audit_sink: Optional[AuditSink] = None,
                 clock: Clock = utc_now):
        self.repository = repository
        self.reconciler = reconciler
        self.audit_sink = audit_sink
        self.clock = clock

    async def create_room(
        self,
        name: str,
        room_number: str,
        branch: str,
        room_type: RoomType,
        capacity: int,
        beds: Optional[List[Bed]] = None
    ) -> Room:
        """Register a room and its bed layout"""
        room = Room.create(
            name=name,
            room_number=room_number,
            branch=branch,
            room_type=room_type,
            capacity=capacity,
            beds=beds,
        )
        return await self.repository.save(room)

    async def get_room(self, room_id: UUID) -> Room:
        room = await self.repository.find_by_id(room_id)
        if room is None:
            raise RoomNotFound(f"Room {room_id} not found", details={"room_id": str(room_id)})
        return room

    async def list_rooms(
        self,
        branch: Optional[str] = None,
        available: Optional[bool] = None,
        include_archived: bool = False
    ) -> List[Room]:
        return await self.repository.find(RoomFilter(
            branch=branch,
            available=available,
            is_archived=None if include_archived else False,
        ))

    async def set_availability_override(self, room_id: UUID, value: Optional[bool]) -> Room:
        """Force a room open/closed, or pass None to go back to capacity-based availability"""
        async with self.reconciler.room_lock(room_id):
            room = await self.get_room(room_id)
            room.set_availability_override(value)
            return await self.repository.save(room)

    async def archive_room(self, room_id: UUID, actor: Optional[str] = None) -> Room:
        """Retire a room; refused while reservations still hold slots in it"""
        async with self.reconciler.room_lock(room_id):
            room = await self.get_room(room_id)
            holders = await self.reconciler.reservation_repo.find(
                ReservationFilter(room_ids=frozenset({room_id}), holds_slot=True)
            )
            if holders:
                raise ReconciliationConflict(
                    f"Room {room.name} still has {len(holders)} active reservation(s)",
                    details={"room_id": str(room_id), "active_reservations": len(holders)},
                )
            room.archive(actor, now=self.clock())
            return await self.repository.save(room)

    async def recalculate_room(self, room_id: UUID, actor: Optional[str] = None) -> Room:
        """Repair a room's counters from the reservations that hold it"""
        before = await self.get_room(room_id)
        room = await self.reconciler.recalculate(room_id)
        if self.audit_sink is not None:
            try:
                await self.audit_sink.record(
                    action=AuditAction.RECALCULATE,
                    entity_type="room",
                    entity_id=room_id,
                    before=_image(before),
                    after=_image(room),
                    note=f"Occupancy {before.current_occupancy} -> {room.current_occupancy}",
                    actor=actor,
                )
            except Exception:
                logger.exception("Audit sink failed for recalculation of room %s", room_id)
        return room

    async def recalculate_branch(self, branch: Optional[str] = None) -> List[Room]:
        """Recalculate every non-archived room of a branch (or all)"""
        rooms = await self.reconciler.recalculate_all(branch)
        logger.info("Recalculated %d room(s) in %s", len(rooms), branch or "all branches")
        return rooms

    async def detect_drift(self, room_id: UUID) -> OccupancyDrift:
        return await self.reconciler.detect_drift(room_id)

    async def get_occupancy_status(self, room_id: UUID) -> RoomOccupancySnapshot:
        """Occupancy summary of one room, bed by bed"""
        room = await self.get_room(room_id)
        return self._snapshot(room)

    async def get_branch_occupancy_stats(self, branch: Optional[str] = None) -> BranchOccupancyStats:
        """Occupancy totals across the non-archived rooms of a branch (or all)"""
        rooms = await self.repository.find(RoomFilter(branch=branch))
        snapshots = [self._snapshot(room) for room in rooms]

        total_capacity = sum(s.capacity for s in snapshots)
        total_occupancy = sum(s.current_occupancy for s in snapshots)
        return BranchOccupancyStats(
            branch=branch or "all",
            total_rooms=len(snapshots),
            total_capacity=total_capacity,
            total_occupancy=total_occupancy,
            overall_occupancy_rate=_format_rate(total_occupancy, total_capacity),
            rooms=snapshots,
        )

    @staticmethod
    def _snapshot(room: Room) -> RoomOccupancySnapshot:
        occupied = [
            OccupiedBedView(
                bed_id=bed.bed_id,
                position=bed.position,
                guest_id=bed.occupied_by.guest_id,
                reservation_id=bed.occupied_by.reservation_id,
                occupied_since=bed.occupied_by.occupied_since,
            )
            for bed in room.beds if not bed.available and bed.occupied_by is not None
        ]
        available = [
            AvailableBedView(bed_id=bed.bed_id, position=bed.position)
            for bed in room.beds if bed.available
        ]
        return RoomOccupancySnapshot(
            room_id=room.room_id,
            room_name=room.name,
            room_type=room.room_type,
            branch=room.branch,
            capacity=room.capacity,
            current_occupancy=room.current_occupancy,
            occupancy_rate=_format_rate(room.current_occupancy, room.capacity),
            is_available=room.available,
            total_beds=len(room.beds),
            occupied_beds=occupied,
            available_beds=available,
        )
