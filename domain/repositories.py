"""Domain Repository Interfaces"""
from abc import ABC, abstractmethod
from typing import Optional, List, FrozenSet
from uuid import UUID
from datetime import datetime

from pydantic import BaseModel

from domain.auth import UserInDB
from domain.entities import Reservation, Room
from domain.enums import ReservationStatus


class ReservationFilter(BaseModel):
    """Equality/range filter understood by every reservation store"""
    room_ids: Optional[FrozenSet[UUID]] = None
    guest_id: Optional[UUID] = None
    statuses: Optional[FrozenSet[ReservationStatus]] = None
    is_archived: Optional[bool] = False
    holds_slot: Optional[bool] = None
    at_risk: Optional[bool] = None
    reminder_sent: Optional[bool] = None
    reminder_due_before: Optional[datetime] = None
    risk_due_before: Optional[datetime] = None

    def matches(self, reservation: Reservation) -> bool:
        if self.room_ids is not None and reservation.room_id not in self.room_ids:
            return False
        if self.guest_id is not None and reservation.guest_id != self.guest_id:
            return False
        if self.statuses is not None and reservation.status not in self.statuses:
            return False
        if self.is_archived is not None and reservation.is_archived != self.is_archived:
            return False
        if self.holds_slot is not None and reservation.holds_slot != self.holds_slot:
            return False
        if self.at_risk is not None and reservation.at_risk != self.at_risk:
            return False
        if self.reminder_sent is not None and reservation.move_in_reminder_sent != self.reminder_sent:
            return False
        if self.reminder_due_before is not None and reservation.move_in_reminder_date > self.reminder_due_before:
            return False
        if self.risk_due_before is not None and reservation.move_in_risk_date > self.risk_due_before:
            return False
        return True


class RoomFilter(BaseModel):
    branch: Optional[str] = None
    is_archived: Optional[bool] = False
    available: Optional[bool] = None

    def matches(self, room: Room) -> bool:
        if self.branch is not None and room.branch != self.branch:
            return False
        if self.is_archived is not None and room.is_archived != self.is_archived:
            return False
        if self.available is not None and room.available != self.available:
            return False
        return True


class ReservationRepository(ABC):
    """Repository interface for Reservation Aggregate"""

    @abstractmethod
    async def save(self, reservation: Reservation) -> Reservation:
        """Insert or replace reservation"""
        pass

    @abstractmethod
    async def find_by_id(self, reservation_id: UUID) -> Optional[Reservation]:
        """Find reservation by ID"""
        pass

    @abstractmethod
    async def find_by_code(self, code: str) -> Optional[Reservation]:
        """Find reservation by reservation code"""
        pass

    @abstractmethod
    async def find(self, criteria: ReservationFilter) -> List[Reservation]:
        """Find reservations matching a filter"""
        pass


class RoomRepository(ABC):
    """Repository interface for Room Aggregate"""

    @abstractmethod
    async def save(self, room: Room) -> Room:
        """Insert or replace room"""
        pass

    @abstractmethod
    async def find_by_id(self, room_id: UUID) -> Optional[Room]:
        """Find room by ID"""
        pass

    @abstractmethod
    async def find(self, criteria: RoomFilter) -> List[Room]:
        """Find rooms matching a filter"""
        pass


class UserRepository(ABC):
    """Repository interface for user accounts"""

    @abstractmethod
    async def save(self, user: UserInDB) -> UserInDB:
        pass

    @abstractmethod
    async def find_by_id(self, user_id: UUID) -> Optional[UserInDB]:
        pass

    @abstractmethod
    async def find_by_username(self, username: str) -> Optional[UserInDB]:
        pass
