"""Occupancy reconciliation

Keeps Room.current_occupancy and bed flags in agreement with the reservations
that hold a slot. Every room write goes through OccupancyReconciler, which
serializes writes per room with an asyncio.Lock and persists the room and the
triggering reservation while holding it. recalculate() rebuilds a room from
the reservation store and is the repair path for any drift.
"""
import asyncio
import logging
from collections import defaultdict
from contextlib import asynccontextmanager
from typing import Dict, List, Optional
from uuid import UUID

from domain.entities import Reservation, Room
from domain.enums import ReservationStatus
from domain.exceptions import BedNotFound, ReconciliationConflict, RoomNotFound
from domain.repositories import (
    ReservationFilter, ReservationRepository, RoomFilter, RoomRepository,
)
from domain.state_machine import holds_slot, occupancy_delta
from domain.value_objects import BedDrift, BedOccupant, OccupancyDrift

logger = logging.getLogger(__name__)


class OccupancyReconciler:
    """Single write path for room occupancy"""

    def __init__(self, room_repo: RoomRepository, reservation_repo: ReservationRepository):
        self.room_repo = room_repo
        self.reservation_repo = reservation_repo
        self._locks: Dict[UUID, asyncio.Lock] = defaultdict(asyncio.Lock)

    @asynccontextmanager
    async def room_lock(self, room_id: UUID):
        async with self._locks[room_id]:
            yield

    # ==================== INCREMENTAL PATH ====================
    async def reconcile(
        self,
        reservation: Reservation,
        old_status: Optional[ReservationStatus],
        *,
        held_before: Optional[bool] = None,
        persist_reservation: bool = True,
    ) -> Room:
        """Apply the occupancy consequence of `reservation` leaving `old_status`

        `old_status` None means the record is new and held nothing. Callers
        whose previous slot state is not implied by `old_status` alone (at-risk
        records, archive/restore) pass `held_before` explicitly.
        """
        if held_before is None:
            if old_status == reservation.status:
                held_before = reservation.holds_slot
            else:
                held_before = holds_slot(old_status)
        held_after = reservation.holds_slot
        delta = occupancy_delta(held_before, held_after)

        async with self.room_lock(reservation.room_id):
            # Freeing a slot is still allowed after the room was archived.
            room = await self._load_room(reservation.room_id, allow_archived=delta <= 0)

            if delta > 0:
                await self._take_slot(room, reservation)
            elif delta < 0:
                self._free_slot(room, reservation)

            if delta != 0:
                room.update_availability()
                await self.room_repo.save(room)
                logger.info(
                    "Occupancy %+d for room %s via reservation %s (%s -> %s): %d/%d",
                    delta, room.name, reservation.reservation_code,
                    old_status.value if old_status else None, reservation.status.value,
                    room.current_occupancy, room.capacity,
                )

            if persist_reservation:
                await self.reservation_repo.save(reservation)

        return room

    async def _take_slot(self, room: Room, reservation: Reservation) -> None:
        try:
            room.increase_occupancy()
        except ReconciliationConflict:
            # The cached counter may have drifted; re-read the source of truth once.
            expected = await self._apply_recalculation(room)
            if expected >= room.capacity:
                raise
            logger.warning("Room %s counter drifted, recalculated before retrying", room.name)
            room.increase_occupancy()

        bed_id = reservation.bed_id
        if bed_id is None:
            return
        occupant = BedOccupant(
            guest_id=reservation.guest_id,
            reservation_id=reservation.reservation_id,
            occupied_since=reservation.created_at,
        )
        try:
            room.occupy_bed(bed_id, occupant)
        except BedNotFound as exc:
            logger.warning("%s; counting reservation %s at room level only",
                           exc.message, reservation.reservation_code)
        except ReconciliationConflict:
            # Undo the counter so the room is left exactly as loaded.
            room.decrease_occupancy()
            raise

    def _free_slot(self, room: Room, reservation: Reservation) -> None:
        room.decrease_occupancy()
        bed_id = reservation.bed_id
        if bed_id is None:
            return
        try:
            room.vacate_bed(bed_id, reservation.reservation_id)
        except BedNotFound as exc:
            logger.warning("%s; released reservation %s at room level only",
                           exc.message, reservation.reservation_code)

    # ==================== RECOMPUTATION ====================
    async def recalculate(self, room_id: UUID) -> Room:
        """Rebuild occupancy and bed state from slot-holding reservations"""
        async with self.room_lock(room_id):
            room = await self._load_room(room_id, allow_archived=True)
            before = room.current_occupancy
            await self._apply_recalculation(room)
            await self.room_repo.save(room)

        logger.info("Recalculated room %s occupancy: %d -> %d/%d",
                    room.name, before, room.current_occupancy, room.capacity)
        return room

    async def recalculate_all(self, branch: Optional[str] = None) -> List[Room]:
        rooms = await self.room_repo.find(RoomFilter(branch=branch))
        return [await self.recalculate(room.room_id) for room in rooms]

    async def detect_drift(self, room_id: UUID) -> OccupancyDrift:
        """Compare the cached room state with the recomputed projection"""
        room = await self._load_room(room_id, allow_archived=True)
        holders = await self._slot_holders(room_id)
        expected_beds = self._bed_occupants(room, holders)

        bed_drift = []
        for bed in room.beds:
            cached = bed.occupied_by.reservation_id if bed.occupied_by else None
            expected = expected_beds[bed.bed_id].reservation_id if bed.bed_id in expected_beds else None
            if cached != expected or bed.available == (expected is not None):
                bed_drift.append(BedDrift(
                    bed_id=bed.bed_id,
                    cached_reservation_id=cached,
                    expected_reservation_id=expected,
                ))

        return OccupancyDrift(
            room_id=room.room_id,
            cached_occupancy=room.current_occupancy,
            expected_occupancy=len(holders),
            bed_drift=bed_drift,
        )

    async def _apply_recalculation(self, room: Room) -> int:
        holders = await self._slot_holders(room.room_id)
        if len(holders) > room.capacity:
            logger.error("Room %s has %d slot-holding reservations for capacity %d",
                         room.name, len(holders), room.capacity)
        room.reset_occupancy(len(holders), self._bed_occupants(room, holders))
        return len(holders)

    async def _slot_holders(self, room_id: UUID) -> List[Reservation]:
        return await self.reservation_repo.find(
            ReservationFilter(room_ids=frozenset({room_id}), is_archived=False, holds_slot=True)
        )

    @staticmethod
    def _bed_occupants(room: Room, holders: List[Reservation]) -> Dict[str, BedOccupant]:
        occupants: Dict[str, BedOccupant] = {}
        for reservation in holders:
            bed_id = reservation.bed_id
            if bed_id is None or room.find_bed(bed_id) is None or bed_id in occupants:
                continue
            occupants[bed_id] = BedOccupant(
                guest_id=reservation.guest_id,
                reservation_id=reservation.reservation_id,
                occupied_since=reservation.created_at,
            )
        return occupants

    async def _load_room(self, room_id: UUID, allow_archived: bool = False) -> Room:
        room = await self.room_repo.find_by_id(room_id)
        if room is None or (room.is_archived and not allow_archived):
            raise RoomNotFound(f"Room {room_id} not found", details={"room_id": str(room_id)})
        return room
