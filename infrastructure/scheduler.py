"""Background risk sweep worker"""
import asyncio
import logging

from application.risk_sweeper import RiskSweeper

logger = logging.getLogger(__name__)


async def risk_sweep_worker(
    sweeper: RiskSweeper,
    interval_seconds: int = 3600,
    error_backoff_seconds: int = 60
) -> None:
    """Periodically run the risk sweep until cancelled."""
    logger.info("Risk sweep worker started (every %ds)", interval_seconds)
    while True:
        try:
            report = await sweeper.sweep()
            if report.reminders_sent or report.flagged_at_risk:
                logger.info("Risk sweep: %d reminders, %d at-risk",
                            report.reminders_sent, report.flagged_at_risk)
        except asyncio.CancelledError:
            logger.info("Risk sweep worker stopped")
            raise
        except Exception:
            logger.exception("Risk sweep pass failed")
            await asyncio.sleep(error_backoff_seconds)
            continue

        await asyncio.sleep(interval_seconds)
