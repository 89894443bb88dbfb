"""
Escalation scheduler.

Runs a sweep once when started and then on a fixed interval. A sweep asks the
escalation policy about every non-resolved doubt and commits each decision
through the lifecycle service's conditional transition, so several schedulers
(one per process) can sweep the same store without double-applying anything.
"""
import asyncio
import logging
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Dict, List, Optional

from config import settings
from services.doubt_service import DoubtService
from services.doubt_store import UpdateOutcome
from services.escalation_policy import evaluate
from utils.error_handler import DoubtServiceError

logger = logging.getLogger(__name__)


@dataclass
class SweepReport:
    """What one sweep pass did"""
    started_at: datetime
    finished_at: Optional[datetime] = None
    examined: int = 0
    transitioned: int = 0
    conflicts: int = 0
    failures: int = 0
    skipped: int = 0
    error: Optional[str] = None
    transitions: List[Dict[str, Any]] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "started_at": self.started_at.isoformat(),
            "finished_at": self.finished_at.isoformat() if self.finished_at else None,
            "examined": self.examined,
            "transitioned": self.transitioned,
            "conflicts": self.conflicts,
            "failures": self.failures,
            "skipped": self.skipped,
            "error": self.error,
            "transitions": self.transitions,
        }


class EscalationScheduler:

    def __init__(self, service: DoubtService, interval_seconds: Optional[float] = None):
        self.service = service
        self.interval_seconds = interval_seconds or settings.escalation_interval_seconds
        self.last_report: Optional[SweepReport] = None
        self._task: Optional[asyncio.Task] = None
        self._sweep_lock = asyncio.Lock()

    @property
    def is_running(self) -> bool:
        return self._task is not None and not self._task.done()

    def start(self):
        """Start the recurring sweep; the first pass runs immediately"""
        if self.is_running:
            return
        logger.info(f"Starting escalation scheduler (every {self.interval_seconds}s)")
        self._task = asyncio.create_task(self._run_loop(), name="escalation-scheduler")

    async def stop(self):
        if not self._task:
            return
        self._task.cancel()
        try:
            await self._task
        except asyncio.CancelledError:
            pass
        self._task = None
        logger.info("Escalation scheduler stopped")

    async def _run_loop(self):
        while True:
            try:
                await self.sweep()
            except Exception as e:
                logger.exception(f"Escalation sweep crashed: {e}")
            await asyncio.sleep(self.interval_seconds)

    async def sweep(self) -> Optional[SweepReport]:
        """Run one pass, or return None if this scheduler is already mid-sweep"""
        if self._sweep_lock.locked():
            logger.debug("Escalation sweep already in progress; skipping")
            return None
        async with self._sweep_lock:
            report = await self._sweep_once()
            self.last_report = report
            return report

    async def _sweep_once(self) -> SweepReport:
        now = self.service.clock()
        report = SweepReport(started_at=now)

        try:
            doubts = await self.service.list_active()
        except Exception as e:
            message = e.message if isinstance(e, DoubtServiceError) else str(e)
            logger.error(f"Escalation sweep could not read doubts: {message}")
            report.error = message
            report.failures += 1
            report.finished_at = self.service.clock()
            return report

        for doubt in doubts:
            report.examined += 1
            decision = evaluate(doubt, now, self.service.dwell)

            if decision.diagnostic:
                report.skipped += 1
                continue
            if not decision.is_transition:
                continue

            try:
                outcome = await self.service.apply_transition(doubt, decision.target, decision.cause)
            except DoubtServiceError as e:
                logger.error(f"Failed to escalate doubt {doubt.id}: {e.message}")
                report.failures += 1
                continue
            except Exception as e:
                logger.exception(f"Unexpected error escalating doubt {doubt.id}: {e}")
                report.failures += 1
                continue

            if outcome is UpdateOutcome.APPLIED:
                report.transitioned += 1
                report.transitions.append({
                    "doubt_id": doubt.id,
                    "from": decision.evaluated_status.value,
                    "to": decision.target.value,
                    "cause": decision.cause,
                })
            elif outcome is UpdateOutcome.CONFLICT:
                report.conflicts += 1

        report.finished_at = self.service.clock()
        if report.transitioned or report.failures or report.skipped:
            logger.info(
                f"Escalation sweep: {report.examined} examined, {report.transitioned} escalated, "
                f"{report.conflicts} conflicts, {report.failures} failures, {report.skipped} skipped")
        return report
