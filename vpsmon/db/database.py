from __future__ import annotations

import time
from pathlib import Path

import aiosqlite

from vpsmon.config import settings
from vpsmon.models import AlertState, AlertStatus, HostInfo, MetricSample

_SCHEMA_PATH = Path(__file__).with_name("schema.sql")

_SAMPLE_COLUMNS = ("server_id", "ts", "cpu", "ram", "disk", "net_rx_bps", "net_tx_bps")
_INFO_COLUMNS = tuple(HostInfo.model_fields)


class StoreError(Exception):
    """Raised when a sample cannot be written to the store."""


async def init_db() -> None:
    """Create tables if they don't exist."""
    Path(settings.db_path).parent.mkdir(parents=True, exist_ok=True)
    schema = _SCHEMA_PATH.read_text()
    async with aiosqlite.connect(settings.db_path) as db:
        await db.execute("PRAGMA journal_mode=WAL")
        await db.executescript(schema)
        await db.commit()


# ── samples ─────────────────────────────────────────────

async def insert_sample(sample: MetricSample) -> None:
    try:
        async with aiosqlite.connect(settings.db_path) as db:
            await db.execute(
                """INSERT INTO metrics
                   (server_id, ts, cpu, ram, disk, net_rx_bps, net_tx_bps)
                   VALUES (?, ?, ?, ?, ?, ?, ?)""",
                tuple(getattr(sample, c) for c in _SAMPLE_COLUMNS),
            )
            await db.commit()
    except aiosqlite.Error as exc:
        raise StoreError(f"failed to store sample for {sample.server_id}") from exc


async def get_latest_per_server() -> list[MetricSample]:
    """Newest sample of every server, ordered by server_id.

    Ties on ``ts`` go to the row inserted last.
    """
    async with aiosqlite.connect(settings.db_path) as db:
        db.row_factory = aiosqlite.Row
        cursor = await db.execute(
            """SELECT server_id, ts, cpu, ram, disk, net_rx_bps, net_tx_bps
               FROM (
                   SELECT m.*, ROW_NUMBER() OVER (
                       PARTITION BY server_id ORDER BY ts DESC, id DESC
                   ) AS rn
                   FROM metrics m
               )
               WHERE rn = 1
               ORDER BY server_id"""
        )
        rows = await cursor.fetchall()
        return [_row_to_sample(r) for r in rows]


async def get_cpu_average(server_id: str, since_ts: int) -> float | None:
    """Mean cpu over samples with ``ts >= since_ts``; None when there are none."""
    async with aiosqlite.connect(settings.db_path) as db:
        cursor = await db.execute(
            "SELECT AVG(cpu) FROM metrics WHERE server_id = ? AND ts >= ?",
            (server_id, since_ts),
        )
        row = await cursor.fetchone()
        return row[0] if row else None


async def get_server_ids() -> list[str]:
    async with aiosqlite.connect(settings.db_path) as db:
        cursor = await db.execute(
            "SELECT DISTINCT server_id FROM metrics ORDER BY server_id"
        )
        rows = await cursor.fetchall()
        return [r[0] for r in rows]


async def get_samples(
    server_id: str,
    since_ts: int | None = None,
    until_ts: int | None = None,
    limit: int = 1000,
) -> list[MetricSample]:
    """Newest ``limit`` samples in range, returned oldest first."""
    query = """SELECT server_id, ts, cpu, ram, disk, net_rx_bps, net_tx_bps
               FROM metrics WHERE server_id = ?"""
    params: list = [server_id]
    if since_ts is not None:
        query += " AND ts >= ?"
        params.append(since_ts)
    if until_ts is not None:
        query += " AND ts <= ?"
        params.append(until_ts)
    query += " ORDER BY ts DESC, id DESC LIMIT ?"
    params.append(limit)

    async with aiosqlite.connect(settings.db_path) as db:
        db.row_factory = aiosqlite.Row
        cursor = await db.execute(query, params)
        rows = await cursor.fetchall()
        return [_row_to_sample(r) for r in reversed(rows)]


# ── alert state ─────────────────────────────────────────

async def ensure_alert_state(server_id: str) -> None:
    async with aiosqlite.connect(settings.db_path) as db:
        await db.execute(
            """INSERT OR IGNORE INTO alert_state
               (server_id, cpu_alert_active, cpu_last_email_ts)
               VALUES (?, 0, 0)""",
            (server_id,),
        )
        await db.commit()


async def get_alert_state(server_id: str) -> AlertState | None:
    async with aiosqlite.connect(settings.db_path) as db:
        db.row_factory = aiosqlite.Row
        cursor = await db.execute(
            "SELECT * FROM alert_state WHERE server_id = ?", (server_id,)
        )
        row = await cursor.fetchone()
        return _row_to_alert_state(row) if row else None


async def get_alert_states() -> dict[str, AlertState]:
    async with aiosqlite.connect(settings.db_path) as db:
        db.row_factory = aiosqlite.Row
        cursor = await db.execute("SELECT * FROM alert_state ORDER BY server_id")
        rows = await cursor.fetchall()
        return {r["server_id"]: _row_to_alert_state(r) for r in rows}


async def update_alert_state(server_id: str, state: AlertState) -> None:
    async with aiosqlite.connect(settings.db_path) as db:
        await db.execute(
            """UPDATE alert_state
               SET cpu_alert_active = ?, cpu_last_email_ts = ?
               WHERE server_id = ?""",
            (int(state.active), state.last_email_ts, server_id),
        )
        await db.commit()


# ── host info ───────────────────────────────────────────

async def upsert_host_info(server_id: str, info: HostInfo) -> None:
    columns = ", ".join(_INFO_COLUMNS)
    placeholders = ", ".join("?" for _ in _INFO_COLUMNS)
    updates = ", ".join(f"{c} = excluded.{c}" for c in _INFO_COLUMNS)
    async with aiosqlite.connect(settings.db_path) as db:
        await db.execute(
            f"""INSERT INTO host_info (server_id, {columns}, updated_at)
                VALUES (?, {placeholders}, ?)
                ON CONFLICT(server_id) DO UPDATE SET
                {updates}, updated_at = excluded.updated_at""",
            (server_id, *(getattr(info, c) for c in _INFO_COLUMNS), int(time.time())),
        )
        await db.commit()


async def get_host_info_map() -> dict[str, HostInfo]:
    async with aiosqlite.connect(settings.db_path) as db:
        db.row_factory = aiosqlite.Row
        cursor = await db.execute("SELECT * FROM host_info")
        rows = await cursor.fetchall()
        return {
            r["server_id"]: HostInfo(**{c: r[c] for c in _INFO_COLUMNS})
            for r in rows
        }


# ── helpers ─────────────────────────────────────────────

def _row_to_sample(row: aiosqlite.Row) -> MetricSample:
    return MetricSample(**dict(row))


def _row_to_alert_state(row: aiosqlite.Row) -> AlertState:
    status = AlertStatus.ACTIVE if row["cpu_alert_active"] else AlertStatus.INACTIVE
    return AlertState(status=status, last_email_ts=row["cpu_last_email_ts"] or 0)
