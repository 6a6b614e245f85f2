from __future__ import annotations

from vpsmon.db import database as db
from vpsmon.engine.liveness import Clock, resolve_liveness, unix_now
from vpsmon.models import ServerSnapshot


class SnapshotAggregator:
    """Builds the per-server read view served to dashboards on load/reconnect."""

    def __init__(
        self,
        offline_threshold_seconds: int = 90,
        clock: Clock = unix_now,
    ) -> None:
        self.offline_threshold_seconds = offline_threshold_seconds
        self._clock = clock

    async def snapshot_all(self, now: int | None = None) -> list[ServerSnapshot]:
        if now is None:
            now = self._clock()
        samples = await db.get_latest_per_server()
        info_map = await db.get_host_info_map()
        return [
            ServerSnapshot.build(
                sample,
                resolve_liveness(sample.ts, now, self.offline_threshold_seconds),
                info_map.get(sample.server_id),
            )
            for sample in samples
        ]
