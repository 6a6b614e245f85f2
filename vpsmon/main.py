from __future__ import annotations

import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from vpsmon.api.routes import broadcast_sample, router
from vpsmon.config import settings
from vpsmon.db import database as db
from vpsmon.engine import AlertEvaluator, Broadcaster, SnapshotAggregator, build_notifier

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    # ── startup ───────────────────────────────────────
    await db.init_db()

    broadcaster = Broadcaster(broadcast_sample)
    await broadcaster.start()

    aggregator = SnapshotAggregator(
        offline_threshold_seconds=settings.offline_threshold_seconds,
    )
    alert_evaluator = AlertEvaluator(
        notifier=build_notifier(settings),
        cpu_threshold=settings.cpu_threshold,
        window_seconds=settings.window_seconds,
        cooldown_seconds=settings.email_cooldown_seconds,
        interval=settings.check_every,
    )
    await alert_evaluator.start()

    # Store on app.state for route access
    app.state.broadcaster = broadcaster
    app.state.aggregator = aggregator
    app.state.alert_evaluator = alert_evaluator

    if not settings.ingest_token:
        logger.warning("VPSMON_INGEST_TOKEN not set, all ingest requests will be rejected")
    logger.info("VPS monitor started, db=%s", settings.db_path)

    yield

    # ── shutdown ──────────────────────────────────────
    await alert_evaluator.stop()
    await broadcaster.stop()
    logger.info("VPS monitor shut down")


app = FastAPI(title=settings.app_name, lifespan=lifespan)

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

app.include_router(router)


def run() -> None:
    import uvicorn

    logging.basicConfig(
        level=logging.DEBUG if settings.debug else logging.INFO,
        format="%(asctime)s %(levelname)s [%(name)s] %(message)s",
    )
    uvicorn.run(app, host=settings.host, port=settings.port)


if __name__ == "__main__":
    run()
