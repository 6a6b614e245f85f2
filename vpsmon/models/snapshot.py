from __future__ import annotations

from pydantic import BaseModel

from .sample import HostInfo, MetricSample


class Liveness(BaseModel):
    online: bool
    last_seen_seconds: int


class ServerSnapshot(MetricSample):
    """Latest sample for a server joined with its liveness and host info."""

    online: bool
    last_seen_seconds: int
    info: HostInfo | None = None

    @classmethod
    def build(
        cls,
        sample: MetricSample,
        liveness: Liveness,
        info: HostInfo | None = None,
    ) -> ServerSnapshot:
        return cls(
            **sample.model_dump(),
            online=liveness.online,
            last_seen_seconds=liveness.last_seen_seconds,
            info=info,
        )
