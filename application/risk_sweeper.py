"""Move-in risk sweep

Periodic batch pass over active reservations: sends the move-in reminder once
its deadline has passed and flags no-shows as at-risk after the grace period.
Each record is re-read and written under its room's lock, so the sweep can
run alongside live status updates.
"""
import logging
from datetime import datetime
from typing import Optional

from application.occupancy import OccupancyReconciler
from domain.collaborators import AuditSink, ReminderDispatcher
from domain.entities import Reservation
from domain.enums import AuditAction
from domain.repositories import ReservationFilter, ReservationRepository
from domain.state_machine import ACTIVE_STATUSES
from domain.time_policy import Clock, is_reminder_due, is_risk_due, utc_now
from domain.value_objects import SweepReport

logger = logging.getLogger(__name__)


class RiskSweeper:
    """Applies the reminder / at-risk policy to every due reservation"""

    def __init__(self,
                 repository: ReservationRepository,
                 reconciler: OccupancyReconciler,
                 dispatcher: ReminderDispatcher,
                 audit_sink: Optional[AuditSink] = None,
                 clock: Clock = utc_now):
        self.repository = repository
        self.reconciler = reconciler
        self.dispatcher = dispatcher
        self.audit_sink = audit_sink
        self.clock = clock

    async def sweep(self, now: Optional[datetime] = None) -> SweepReport:
        """Run one pass; a failing record is logged and skipped"""
        now = now or self.clock()
        report = SweepReport(started_at=now)
        seen = set()

        due_reminders = await self.repository.find(ReservationFilter(
            statuses=ACTIVE_STATUSES,
            reminder_sent=False,
            reminder_due_before=now,
        ))
        for candidate in due_reminders:
            seen.add(candidate.reservation_id)
            report.scanned = len(seen)
            try:
                async with self.reconciler.room_lock(candidate.room_id):
                    await self._send_reminder(candidate, now, report)
            except Exception as exc:
                logger.exception("Reminder failed for reservation %s", candidate.reservation_code)
                report.errors.append((candidate.reservation_id, str(exc)))

        due_risk = await self.repository.find(ReservationFilter(
            statuses=ACTIVE_STATUSES,
            at_risk=False,
            risk_due_before=now,
        ))
        for candidate in due_risk:
            seen.add(candidate.reservation_id)
            report.scanned = len(seen)
            try:
                async with self.reconciler.room_lock(candidate.room_id):
                    await self._flag_at_risk(candidate, now, report)
            except Exception as exc:
                logger.exception("Risk flag failed for reservation %s", candidate.reservation_code)
                report.errors.append((candidate.reservation_id, str(exc)))

        logger.info(
            "Risk sweep done: %d scanned, %d reminders sent, %d failed, %d flagged at-risk, %d errors",
            report.scanned, report.reminders_sent, report.reminders_failed,
            report.flagged_at_risk, len(report.errors),
        )
        return report

    async def _send_reminder(self, candidate: Reservation, now: datetime, report: SweepReport) -> None:
        reservation = await self._reload(candidate)
        if reservation is None or reservation.move_in_reminder_sent:
            return
        if not is_reminder_due(reservation.move_in_reminder_date, now):
            return

        if not await self.dispatcher.send_reminder(reservation):
            logger.warning("Reminder for reservation %s not delivered, will retry next sweep",
                           reservation.reservation_code)
            report.reminders_failed += 1
            return

        reservation.mark_reminder_sent(now)
        await self.repository.save(reservation)
        report.reminders_sent += 1

    async def _flag_at_risk(self, candidate: Reservation, now: datetime, report: SweepReport) -> None:
        reservation = await self._reload(candidate)
        if reservation is None or reservation.at_risk:
            return
        if not is_risk_due(reservation.move_in_risk_date, now):
            return

        before = reservation.model_dump(mode="json")
        reservation.flag_at_risk(now)
        await self.repository.save(reservation)
        report.flagged_at_risk += 1
        logger.info("Reservation %s flagged at-risk (move-in %s)",
                    reservation.reservation_code, reservation.target_move_in_date.isoformat())

        if self.audit_sink is not None:
            try:
                await self.audit_sink.record(
                    action=AuditAction.STATUS_CHANGE,
                    entity_type="reservation",
                    entity_id=reservation.reservation_id,
                    before=before,
                    after=reservation.model_dump(mode="json"),
                    note="Move-in grace period elapsed",
                    actor="risk-sweep",
                )
            except Exception:
                logger.exception("Audit sink failed for at-risk flag on %s", reservation.reservation_code)

    async def _reload(self, candidate: Reservation) -> Optional[Reservation]:
        # Live updates may have moved the record since the scan.
        reservation = await self.repository.find_by_id(candidate.reservation_id)
        if reservation is None or reservation.is_archived:
            return None
        if reservation.status not in ACTIVE_STATUSES:
            return None
        return reservation
