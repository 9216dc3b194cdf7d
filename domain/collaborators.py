"""Ports for the collaborators the lifecycle engine calls out to"""
from abc import ABC, abstractmethod
from typing import Any, Dict, Optional
from uuid import UUID

from domain.entities import Reservation
from domain.enums import AuditAction


class ReminderDispatcher(ABC):
    """Delivers move-in reminders (email, SMS, ...)"""

    @abstractmethod
    async def send_reminder(self, reservation: Reservation) -> bool:
        """Return True when the reminder was handed off successfully"""
        pass


class AuditSink(ABC):
    """Persists before/after images of every lifecycle mutation"""

    @abstractmethod
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
        pass


class TenantAccounts(ABC):
    """Account-side effect of a guest moving in"""

    @abstractmethod
    async def promote_to_tenant(self, guest_id: UUID) -> bool:
        """Upgrade the guest's account; False when nothing changed"""
        pass
