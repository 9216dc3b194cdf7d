"""In-Memory Repository Implementations

Stored aggregates are deep copies, so a caller mutating a loaded object has no
effect until it calls save(); this mirrors a real document store.
"""
from typing import Optional, List, Dict
from uuid import UUID

from domain.auth import UserInDB
from domain.entities import Reservation, Room
from domain.repositories import (
    ReservationFilter, ReservationRepository, RoomFilter, RoomRepository, UserRepository,
)


class InMemoryReservationRepository(ReservationRepository):
    """In-memory implementation of ReservationRepository"""

    def __init__(self):
        self._storage: Dict[UUID, Reservation] = {}

    async def save(self, reservation: Reservation) -> Reservation:
        """Save reservation to memory"""
        self._storage[reservation.reservation_id] = reservation.model_copy(deep=True)
        return reservation

    async def find_by_id(self, reservation_id: UUID) -> Optional[Reservation]:
        """Find reservation by ID"""
        stored = self._storage.get(reservation_id)
        return stored.model_copy(deep=True) if stored else None

    async def find_by_code(self, code: str) -> Optional[Reservation]:
        """Find reservation by reservation code"""
        for reservation in self._storage.values():
            if reservation.reservation_code == code:
                return reservation.model_copy(deep=True)
        return None

    async def find(self, criteria: ReservationFilter) -> List[Reservation]:
        """Find reservations matching a filter, oldest first"""
        matches = [r for r in self._storage.values() if criteria.matches(r)]
        matches.sort(key=lambda r: r.created_at)
        return [r.model_copy(deep=True) for r in matches]


class InMemoryRoomRepository(RoomRepository):
    """In-memory implementation of RoomRepository"""

    def __init__(self):
        self._storage: Dict[UUID, Room] = {}

    async def save(self, room: Room) -> Room:
        """Save room to memory"""
        self._storage[room.room_id] = room.model_copy(deep=True)
        return room

    async def find_by_id(self, room_id: UUID) -> Optional[Room]:
        """Find room by ID"""
        stored = self._storage.get(room_id)
        return stored.model_copy(deep=True) if stored else None

    async def find(self, criteria: RoomFilter) -> List[Room]:
        """Find rooms matching a filter, ordered by room number"""
        matches = [r for r in self._storage.values() if criteria.matches(r)]
        matches.sort(key=lambda r: r.room_number)
        return [r.model_copy(deep=True) for r in matches]


class InMemoryUserRepository(UserRepository):
    """In-memory implementation of UserRepository"""

    def __init__(self):
        self._storage: Dict[UUID, UserInDB] = {}

    async def save(self, user: UserInDB) -> UserInDB:
        self._storage[user.user_id] = user.model_copy(deep=True)
        return user

    async def find_by_id(self, user_id: UUID) -> Optional[UserInDB]:
        stored = self._storage.get(user_id)
        return stored.model_copy(deep=True) if stored else None

    async def find_by_username(self, username: str) -> Optional[UserInDB]:
        for user in self._storage.values():
            if user.username == username:
                return user.model_copy(deep=True)
        return None
