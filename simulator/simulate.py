"""Fake-agent traffic generator for the VPS monitor.

Pushes synthetic samples to a running server through ``/api/ingest`` so the
dashboard, realtime channel and CPU alerting can be exercised without real
agents.

Usage:
    python simulator/simulate.py --token secret              # run all scenarios
    python simulator/simulate.py --token secret --scenario cpu_overload
    python simulator/simulate.py --api http://localhost:5050 --token secret
"""

from __future__ import annotations

import argparse
import asyncio
import logging
import random
import time

import httpx

logging.basicConfig(level=logging.INFO, format="%(asctime)s [SIM] %(message)s")
logger = logging.getLogger("simulator")


def make_sample(server_id: str, cpu: float, ts: int | None = None) -> dict:
    return {
        "server_id": server_id,
        "ts": ts if ts is not None else int(time.time()),
        "cpu": round(cpu, 1),
        "ram": round(random.uniform(20, 80), 1),
        "disk": round(random.uniform(30, 60), 1),
        "net_rx_bps": round(random.uniform(1e3, 5e6), 1),
        "net_tx_bps": round(random.uniform(1e3, 2e6), 1),
    }


async def push(client: httpx.AsyncClient, sample: dict) -> None:
    resp = await client.post("/api/ingest", json=sample)
    if resp.status_code != 200:
        logger.warning("Ingest rejected (%d): %s", resp.status_code, resp.text)


# ── Scenario generators ──────────────────────────────


async def steady(client: httpx.AsyncClient, servers: int = 3, ticks: int = 5, delay: float = 1.0) -> None:
    """Several healthy servers reporting moderate load."""
    for tick in range(ticks):
        for i in range(servers):
            await push(client, make_sample(f"vps-{i + 1}", random.uniform(5, 60)))
        logger.info("Steady: tick %d/%d (%d servers)", tick + 1, ticks, servers)
        await asyncio.sleep(delay)


async def cpu_overload(client: httpx.AsyncClient, ticks: int = 6, delay: float = 1.0) -> None:
    """One server pinned above a full core, enough to trip the CPU alert."""
    for i in range(ticks):
        cpu = random.uniform(105, 180)
        await push(client, make_sample("vps-hot", cpu))
        logger.info("CPU overload: %.1f%% (tick %d/%d)", cpu, i + 1, ticks)
        await asyncio.sleep(delay)


async def backfill(client: httpx.AsyncClient, minutes: int = 10, step: int = 60) -> None:
    """History for one server with producer timestamps in the past."""
    now = int(time.time())
    for ts in range(now - minutes * 60, now, step):
        await push(client, make_sample("vps-backfill", random.uniform(10, 40), ts=ts))
    logger.info("Backfill: %d samples pushed", minutes * 60 // step)


async def host_info(client: httpx.AsyncClient) -> None:
    """Static metadata for the simulated servers."""
    for server_id in ("vps-1", "vps-2", "vps-3", "vps-hot"):
        resp = await client.post(
            f"/api/ingest/info/{server_id}",
            json={
                "hostname": f"{server_id}.example.net",
                "os": "Ubuntu 24.04",
                "cpu_model": "AMD EPYC 7543",
                "cpu_cores": random.choice([2, 4, 8]),
                "ram_total_mb": random.choice([2048, 4096, 8192]),
                "disk_total_gb": random.choice([40.0, 80.0, 160.0]),
            },
        )
        logger.info("Host info for %s: %d", server_id, resp.status_code)


SCENARIOS = {
    "host_info": host_info,
    "steady": steady,
    "backfill": backfill,
    "cpu_overload": cpu_overload,
}


# ── Main runner ──────────────────────────────────────


async def run_all(client: httpx.AsyncClient) -> None:
    """Run all scenarios sequentially with pauses between them."""
    for name, fn in SCENARIOS.items():
        logger.info("=== Starting scenario: %s ===", name)
        await fn(client)
        await asyncio.sleep(1)
    logger.info("=== All scenarios complete ===")


async def main() -> None:
    parser = argparse.ArgumentParser(description="VPS monitor agent simulator")
    parser.add_argument("--scenario", choices=list(SCENARIOS.keys()), help="Run a single scenario")
    parser.add_argument("--api", default="http://localhost:5050", help="Server base URL")
    parser.add_argument("--token", required=True, help="Ingest bearer token")
    args = parser.parse_args()

    headers = {"Authorization": f"Bearer {args.token}"}
    async with httpx.AsyncClient(base_url=args.api, headers=headers, timeout=10.0) as client:
        if args.scenario:
            logger.info("Running scenario: %s", args.scenario)
            await SCENARIOS[args.scenario](client)
        else:
            await run_all(client)

    logger.info("Simulator finished.")


if __name__ == "__main__":
    asyncio.run(main())
