"""Tests for vpsmon.engine.alert_evaluator: CPU overload state machine."""

from __future__ import annotations

import asyncio
from unittest.mock import AsyncMock, patch

import pytest

from vpsmon.db import database as db
from vpsmon.engine.alert_evaluator import AlertEvaluator, Outcome, decide
from vpsmon.models import AlertDecision, AlertState, AlertStatus, MetricSample

COOLDOWN = 2700


# ── fixtures ───────────────────────────────────────────


@pytest.fixture
async def _setup_db(tmp_path):
    with patch("vpsmon.db.database.settings") as mock_settings:
        mock_settings.db_path = str(tmp_path / "test.db")
        await db.init_db()
        yield


@pytest.fixture
def notifier() -> AsyncMock:
    n = AsyncMock()
    n.send.return_value = True
    return n


@pytest.fixture
def evaluator(notifier) -> AlertEvaluator:
    return AlertEvaluator(
        notifier,
        cpu_threshold=100.0,
        window_seconds=300,
        cooldown_seconds=COOLDOWN,
        interval=60.0,
    )


async def _insert(server_id: str, ts: int, cpu: float) -> None:
    await db.insert_sample(
        MetricSample(
            server_id=server_id, ts=ts, cpu=cpu, ram=10.0, disk=10.0, net_rx_bps=0.0, net_tx_bps=0.0
        )
    )


async def _overloaded_for_five_minutes(server_id: str = "s1") -> None:
    for ts in (0, 60, 120, 180, 240):
        await _insert(server_id, ts, 100.0)


# ── decide() ───────────────────────────────────────────


class TestDecide:
    def test_no_data_freezes(self):
        active = AlertState(status=AlertStatus.ACTIVE, last_email_ts=0)
        assert decide(active, None, 10_000, 100.0, COOLDOWN) is AlertDecision.NONE
        assert decide(AlertState(), None, 10_000, 100.0, COOLDOWN) is AlertDecision.NONE

    def test_inactive_triggered_notifies(self):
        assert decide(AlertState(), 100.0, 100, 100.0, COOLDOWN) is AlertDecision.NOTIFY

    def test_inactive_triggered_ignores_cooldown(self):
        state = AlertState(status=AlertStatus.INACTIVE, last_email_ts=90)
        assert decide(state, 150.0, 100, 100.0, COOLDOWN) is AlertDecision.NOTIFY

    def test_active_triggered_within_cooldown_is_quiet(self):
        state = AlertState(status=AlertStatus.ACTIVE, last_email_ts=100)
        assert decide(state, 120.0, 100 + COOLDOWN - 1, 100.0, COOLDOWN) is AlertDecision.NONE

    def test_active_triggered_after_cooldown_renotifies(self):
        state = AlertState(status=AlertStatus.ACTIVE, last_email_ts=100)
        assert decide(state, 120.0, 100 + COOLDOWN, 100.0, COOLDOWN) is AlertDecision.NOTIFY

    def test_active_below_threshold_resolves(self):
        state = AlertState(status=AlertStatus.ACTIVE, last_email_ts=100)
        assert decide(state, 99.9, 200, 100.0, COOLDOWN) is AlertDecision.RESOLVE

    def test_inactive_below_threshold_is_quiet(self):
        assert decide(AlertState(), 10.0, 200, 100.0, COOLDOWN) is AlertDecision.NONE


# ── scenarios ──────────────────────────────────────────


@pytest.mark.usefixtures("_setup_db")
class TestScenarios:
    @pytest.mark.asyncio
    async def test_sustained_overload_sends_one_alert(self, evaluator, notifier):
        await _overloaded_for_five_minutes()

        report = await evaluator.run_cycle(now=240)

        assert report.notified == 1
        notifier.send.assert_awaited_once()
        subject, body = notifier.send.call_args[0]
        assert subject == "ALERT: s1 CPU high (100.0% avg / 5m)"
        assert "Server: s1" in body
        state = await db.get_alert_state("s1")
        assert state.active is True
        assert state.last_email_ts == 240

    @pytest.mark.asyncio
    async def test_load_drop_resolves_silently(self, evaluator, notifier):
        await _overloaded_for_five_minutes()
        await evaluator.run_cycle(now=240)
        notifier.send.reset_mock()

        await _insert("s1", 300, 10.0)
        report = await evaluator.run_cycle(now=300)

        assert report.resolved == 1
        notifier.send.assert_not_awaited()
        state = await db.get_alert_state("s1")
        assert state.active is False
        assert state.last_email_ts == 240

    @pytest.mark.asyncio
    async def test_no_second_alert_until_cooldown_elapses(self, evaluator, notifier):
        await _overloaded_for_five_minutes()
        await evaluator.run_cycle(now=240)

        await _insert("s1", 300, 100.0)
        await evaluator.run_cycle(now=300)
        assert notifier.send.await_count == 1

        for ts in range(360, 240 + COOLDOWN + 1, 60):
            await _insert("s1", ts, 100.0)
        await evaluator.run_cycle(now=240 + COOLDOWN - 60)
        assert notifier.send.await_count == 1

        await evaluator.run_cycle(now=240 + COOLDOWN)
        assert notifier.send.await_count == 2
        state = await db.get_alert_state("s1")
        assert state.last_email_ts == 240 + COOLDOWN

    @pytest.mark.asyncio
    @pytest.mark.parametrize("tick", [60, 45, 100])
    async def test_one_alert_per_cooldown_regardless_of_tick(self, evaluator, notifier, tick):
        end = 240 + 2 * COOLDOWN
        for ts in range(0, end + 1, 60):
            await _insert("s1", ts, 100.0)

        sent_at: list[int] = []
        for now in range(240, end + 1, tick):
            report = await evaluator.run_cycle(now=now)
            if report.notified:
                sent_at.append(now)

        assert sent_at == [240, 240 + COOLDOWN, 240 + 2 * COOLDOWN]

    @pytest.mark.asyncio
    async def test_retrigger_after_resolve_notifies_again(self, evaluator, notifier):
        await _overloaded_for_five_minutes()
        await evaluator.run_cycle(now=240)

        # resolve, then overload again shortly after
        await _insert("s1", 300, 0.0)
        await evaluator.run_cycle(now=300)
        for ts in range(600, 901, 60):
            await _insert("s1", ts, 100.0)
        await evaluator.run_cycle(now=900)

        # an inactive server is notified again even inside the cooldown
        assert notifier.send.await_count == 2
        state = await db.get_alert_state("s1")
        assert state.active is True
        assert state.last_email_ts == 900


# ── failure handling ───────────────────────────────────


@pytest.mark.usefixtures("_setup_db")
class TestFailures:
    @pytest.mark.asyncio
    async def test_failed_send_leaves_state_and_retries(self, evaluator, notifier):
        notifier.send.side_effect = [False, True]
        await _overloaded_for_five_minutes()

        report = await evaluator.run_cycle(now=240)
        assert report.notify_failed == 1
        state = await db.get_alert_state("s1")
        assert state == AlertState()

        report = await evaluator.run_cycle(now=300)
        assert report.notified == 1
        state = await db.get_alert_state("s1")
        assert state.active is True
        assert state.last_email_ts == 300

    @pytest.mark.asyncio
    async def test_raising_notifier_counts_as_failure(self, evaluator, notifier):
        notifier.send.side_effect = ConnectionError("relay down")
        await _overloaded_for_five_minutes()

        report = await evaluator.run_cycle(now=240)

        assert report.notify_failed == 1
        assert report.errors == 0
        assert (await db.get_alert_state("s1")).active is False

    @pytest.mark.asyncio
    async def test_one_server_error_does_not_block_others(self, evaluator, notifier):
        await _overloaded_for_five_minutes("bad")
        await _overloaded_for_five_minutes("good")
        real_average = db.get_cpu_average

        async def flaky_average(server_id: str, since_ts: int):
            if server_id == "bad":
                raise RuntimeError("disk gone")
            return await real_average(server_id, since_ts)

        with patch("vpsmon.engine.alert_evaluator.db.get_cpu_average", side_effect=flaky_average):
            report = await evaluator.run_cycle(now=240)

        assert report.errors == 1
        assert report.notified == 1
        assert (await db.get_alert_state("good")).active is True

    @pytest.mark.asyncio
    async def test_offline_server_keeps_open_incident(self, evaluator, notifier):
        await _overloaded_for_five_minutes()
        await evaluator.run_cycle(now=240)
        notifier.send.reset_mock()

        report = await evaluator.run_cycle(now=240 + 10_000)

        assert report.no_data == 1
        notifier.send.assert_not_awaited()
        state = await db.get_alert_state("s1")
        assert state.active is True
        assert state.last_email_ts == 240

    @pytest.mark.asyncio
    async def test_state_created_lazily_even_without_window_data(self, evaluator):
        await _insert("s1", 0, 100.0)

        outcome = await evaluator.evaluate_server("s1", 10_000)

        assert outcome is Outcome.NO_DATA
        assert await db.get_alert_state("s1") == AlertState()


# ── scheduling ─────────────────────────────────────────


@pytest.mark.usefixtures("_setup_db")
class TestScheduling:
    @pytest.mark.asyncio
    async def test_overlapping_cycle_is_skipped(self, notifier):
        started = asyncio.Event()
        release = asyncio.Event()

        async def slow_send(subject: str, body: str) -> bool:
            started.set()
            await release.wait()
            return True

        notifier.send.side_effect = slow_send
        evaluator = AlertEvaluator(notifier, cooldown_seconds=COOLDOWN)
        await _overloaded_for_five_minutes()

        first = asyncio.create_task(evaluator.run_cycle(now=240))
        await asyncio.wait_for(started.wait(), timeout=5)
        second = await evaluator.run_cycle(now=240)
        release.set()
        first_report = await first

        assert second.skipped is True
        assert first_report.notified == 1
        assert notifier.send.await_count == 1

    @pytest.mark.asyncio
    async def test_periodic_loop_runs_cycles(self, notifier):
        evaluator = AlertEvaluator(notifier, interval=0.05, clock=lambda: 240)
        await _overloaded_for_five_minutes()

        await evaluator.start()
        await asyncio.sleep(0.5)
        await evaluator.stop()

        assert evaluator.running is False
        assert evaluator.last_report is not None
        # cooldown keeps repeated ticks at the same instant to a single alert
        assert notifier.send.await_count == 1

    @pytest.mark.asyncio
    async def test_window_label_in_subject(self, notifier):
        evaluator = AlertEvaluator(notifier, window_seconds=90)
        for ts in (200, 240):
            await _insert("s1", ts, 200.0)

        await evaluator.run_cycle(now=240)

        subject, _ = notifier.send.call_args[0]
        assert subject == "ALERT: s1 CPU high (200.0% avg / 90s)"
