from __future__ import annotations

import time
from typing import Callable

from vpsmon.models import Liveness

Clock = Callable[[], int]


def unix_now() -> int:
    return int(time.time())


def resolve_liveness(last_ts: int, now: int, threshold: int) -> Liveness:
    """Online/offline for a server whose newest sample is stamped ``last_ts``.

    A timestamp ahead of ``now`` (agent clock drift) counts as just seen.
    """
    age = now - last_ts
    return Liveness(online=age <= threshold, last_seen_seconds=max(0, age))
