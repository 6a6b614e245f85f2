from __future__ import annotations

from enum import StrEnum

from pydantic import BaseModel


class AlertStatus(StrEnum):
    INACTIVE = "INACTIVE"
    ACTIVE = "ACTIVE"


class AlertDecision(StrEnum):
    NONE = "NONE"
    NOTIFY = "NOTIFY"
    RESOLVE = "RESOLVE"


class AlertState(BaseModel):
    """Persisted CPU alert state for one server.

    ``last_email_ts`` survives a resolve so the cooldown also applies to
    the next incident.
    """

    status: AlertStatus = AlertStatus.INACTIVE
    last_email_ts: int = 0

    @property
    def active(self) -> bool:
        return self.status is AlertStatus.ACTIVE

    def notified(self, now: int) -> AlertState:
        return AlertState(status=AlertStatus.ACTIVE, last_email_ts=now)

    def resolved(self) -> AlertState:
        return AlertState(status=AlertStatus.INACTIVE, last_email_ts=self.last_email_ts)
