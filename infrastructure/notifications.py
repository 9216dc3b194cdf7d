"""In-process adapters for the engine's collaborator ports"""
import logging
from datetime import datetime
from typing import Any, Dict, List, Optional
from uuid import UUID

from pydantic import BaseModel, Field

from domain.collaborators import AuditSink, ReminderDispatcher, TenantAccounts
from domain.entities import Reservation
from domain.enums import AuditAction
from domain.repositories import UserRepository
from domain.time_policy import utc_now

logger = logging.getLogger(__name__)


class LoggingReminderDispatcher(ReminderDispatcher):
    """Writes reminders to the log instead of delivering them"""

    def __init__(self):
        self.sent: List[UUID] = []

    async def send_reminder(self, reservation: Reservation) -> bool:
        logger.info(
            "Move-in reminder for reservation %s (guest %s, move-in %s)",
            reservation.reservation_code,
            reservation.guest_id,
            reservation.target_move_in_date.isoformat(),
        )
        self.sent.append(reservation.reservation_id)
        return True


class AuditEntry(BaseModel):
    action: AuditAction
    entity_type: str
    entity_id: UUID
    before: Optional[Dict[str, Any]] = None
    after: Optional[Dict[str, Any]] = None
    note: Optional[str] = None
    actor: Optional[str] = None
    recorded_at: datetime = Field(default_factory=utc_now)


class InMemoryAuditSink(AuditSink):
    """Keeps audit entries in a list"""

    def __init__(self):
        self.entries: List[AuditEntry] = []

    async def record(
        self,
        action: AuditAction,
        entity_type: str,
        entity_id: UUID,
        before: Optional[Dict[str, Any]],
        after: Optional[Dict[str, Any]],
        note: Optional[str] = None,
        actor: Optional[str] = None,
    ) -> None:
        self.entries.append(AuditEntry(
            action=action,
            entity_type=entity_type,
            entity_id=entity_id,
            before=before,
            after=after,
            note=note,
            actor=actor,
        ))
        logger.debug("Audit %s %s %s by %s", action.value, entity_type, entity_id, actor)

    def for_entity(self, entity_id: UUID) -> List[AuditEntry]:
        return [e for e in self.entries if e.entity_id == entity_id]


class RepositoryTenantAccounts(TenantAccounts):
    """Promotes guests through the user repository"""

    def __init__(self, users: UserRepository):
        self.users = users

    async def promote_to_tenant(self, guest_id: UUID) -> bool:
        user = await self.users.find_by_id(guest_id)
        if user is None:
            logger.warning("Guest account %s not found, tenant promotion skipped", guest_id)
            return False
        if not user.promote_to_tenant():
            return False
        await self.users.save(user)
        logger.info("Guest %s promoted to tenant", user.username)
        return True
