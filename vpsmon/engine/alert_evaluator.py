from __future__ import annotations

import asyncio
import logging
from datetime import datetime, timezone
from enum import StrEnum

from pydantic import BaseModel

from vpsmon.db import database as db
from vpsmon.engine.liveness import Clock, unix_now
from vpsmon.engine.notifier import Notifier
from vpsmon.engine.scheduler import PeriodicTask
from vpsmon.models import AlertDecision, AlertState, AlertStatus

logger = logging.getLogger(__name__)


def decide(
    state: AlertState,
    avg_cpu: float | None,
    now: int,
    cpu_threshold: float,
    cooldown_seconds: int,
) -> AlertDecision:
    """One step of the CPU alert state machine.

    No data in the window freezes the state, so a server that stops
    reporting mid-incident stays ACTIVE until it reports again.
    """
    if avg_cpu is None:
        return AlertDecision.NONE

    triggered = avg_cpu >= cpu_threshold
    cooldown_elapsed = now - state.last_email_ts >= cooldown_seconds

    if triggered and (state.status is AlertStatus.INACTIVE or cooldown_elapsed):
        return AlertDecision.NOTIFY
    if not triggered and state.status is AlertStatus.ACTIVE:
        return AlertDecision.RESOLVE
    return AlertDecision.NONE


class Outcome(StrEnum):
    NO_DATA = "no_data"
    UNCHANGED = "unchanged"
    NOTIFIED = "notified"
    NOTIFY_FAILED = "notify_failed"
    RESOLVED = "resolved"


class EvaluationReport(BaseModel):
    skipped: bool = False
    evaluated: int = 0
    no_data: int = 0
    notified: int = 0
    notify_failed: int = 0
    resolved: int = 0
    errors: int = 0


class AlertEvaluator(PeriodicTask):
    """Periodically checks every known server for sustained CPU overload.

    Owns the ``alert_state`` table. A notification that fails leaves the
    state untouched so the following cycle sends it again.
    """

    name = "alert_evaluator"

    def __init__(
        self,
        notifier: Notifier,
        cpu_threshold: float = 100.0,
        window_seconds: int = 300,
        cooldown_seconds: int = 2700,
        interval: float = 60.0,
        clock: Clock = unix_now,
    ) -> None:
        super().__init__(interval=interval)
        self.notifier = notifier
        self.cpu_threshold = cpu_threshold
        self.window_seconds = window_seconds
        self.cooldown_seconds = cooldown_seconds
        self._clock = clock
        self._cycle_lock = asyncio.Lock()
        self.last_report: EvaluationReport | None = None

    async def tick(self) -> None:
        await self.run_cycle()

    async def run_cycle(self, now: int | None = None) -> EvaluationReport:
        if self._cycle_lock.locked():
            logger.warning("Evaluation cycle still running, skipping this one")
            return EvaluationReport(skipped=True)

        async with self._cycle_lock:
            if now is None:
                now = self._clock()
            report = EvaluationReport()
            for server_id in await db.get_server_ids():
                try:
                    outcome = await self.evaluate_server(server_id, now)
                except Exception:
                    logger.exception("Alert evaluation failed for %s", server_id)
                    report.errors += 1
                    continue
                report.evaluated += 1
                if outcome is not Outcome.UNCHANGED:
                    setattr(report, outcome.value, getattr(report, outcome.value) + 1)

            self.last_report = report
            logger.debug("Evaluation cycle done: %s", report)
            return report

    async def evaluate_server(self, server_id: str, now: int) -> Outcome:
        """Run the state machine for one server and apply its decision."""
        await db.ensure_alert_state(server_id)

        avg_cpu = await db.get_cpu_average(server_id, now - self.window_seconds)
        if avg_cpu is None:
            return Outcome.NO_DATA

        state = await db.get_alert_state(server_id) or AlertState()
        decision = decide(state, avg_cpu, now, self.cpu_threshold, self.cooldown_seconds)

        if decision is AlertDecision.NOTIFY:
            subject, body = self._compose(server_id, avg_cpu, now)
            if not await self._dispatch(subject, body):
                logger.error("Alert for %s not delivered, will retry next cycle", server_id)
                return Outcome.NOTIFY_FAILED
            await db.update_alert_state(server_id, state.notified(now))
            logger.info("Sent alert: %s", subject)
            return Outcome.NOTIFIED

        if decision is AlertDecision.RESOLVE:
            await db.update_alert_state(server_id, state.resolved())
            logger.info("Resolved CPU alert for %s (avg %.1f%%)", server_id, avg_cpu)
            return Outcome.RESOLVED

        return Outcome.UNCHANGED

    # ── internals ───────────────────────────────────────

    async def _dispatch(self, subject: str, body: str) -> bool:
        try:
            return bool(await self.notifier.send(subject, body))
        except Exception:
            logger.exception("Notifier raised while sending %r", subject)
            return False

    def _compose(self, server_id: str, avg_cpu: float, now: int) -> tuple[str, str]:
        window = self._window_label()
        subject = f"ALERT: {server_id} CPU high ({avg_cpu:.1f}% avg / {window})"
        body = (
            f"Server: {server_id}\n"
            f"Avg CPU (last {window}): {avg_cpu:.1f}%\n"
            f"Threshold: {self.cpu_threshold:.1f}%\n"
            f"Time: {datetime.fromtimestamp(now, tz=timezone.utc).isoformat()}"
        )
        return subject, body

    def _window_label(self) -> str:
        if self.window_seconds % 60 == 0:
            return f"{self.window_seconds // 60}m"
        return f"{self.window_seconds}s"
