from __future__ import annotations

from pydantic import BaseModel, ConfigDict, Field


class MetricSample(BaseModel):
    """One resource-usage observation pushed by an agent.

    ``ts`` is the agent's own clock in integer seconds. ``cpu`` may exceed
    100 on multi-core hosts.
    """

    model_config = ConfigDict(strict=True, frozen=True, allow_inf_nan=False)

    server_id: str = Field(min_length=1)
    ts: int
    cpu: float
    ram: float
    disk: float
    net_rx_bps: float = Field(ge=0)
    net_tx_bps: float = Field(ge=0)


class HostInfo(BaseModel):
    """Static host metadata reported out of band."""

    model_config = ConfigDict(allow_inf_nan=False)

    hostname: str | None = None
    os: str | None = None
    cpu_model: str | None = None
    cpu_cores: int | None = None
    ram_total_mb: int | None = None
    disk_total_gb: float | None = None
