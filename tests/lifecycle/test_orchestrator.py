import asyncio

import pytest

from browserwarden.core.state import CloseReason, SessionKind, TerminationScope
from browserwarden.lifecycle.orchestrator import CloseResult
from fakes import FakeHandle

async def launch(manager, *ids):
    for session_id in ids:
        await manager.launch_browser(session_id)

@pytest.mark.asyncio
async def test_idle_session_closed_on_tick(manager, driver, clock):
    await launch(manager, "s1")
    await manager.touch("s1")
    clock.advance(31 * 60)

    report = await manager.orchestrator.tick()

    assert report.idle_closed == ["s1"]
    assert "s1" not in manager.browsers
    assert driver.handles[0].close_calls == 1

@pytest.mark.asyncio
async def test_active_session_survives(manager, clock):
    await launch(manager, "s1", "s2")
    clock.advance(29 * 60)
    await manager.touch("s2")
    clock.advance(2 * 60)

    report = await manager.orchestrator.tick()

    assert report.idle_closed == ["s1"]
    assert manager.browsers.ids() == ["s2"]

@pytest.mark.asyncio
async def test_memory_pressure_closes_oldest_quarter(manager, inspector, driver, clock):
    for session_id in ("s1", "s2", "s3", "s4"):
        await manager.launch_browser(session_id)
        clock.advance(1)
    inspector.memory_mb = 3000

    report = await manager.orchestrator.tick()

    assert report.pressure_closed == ["s1"]
    assert sorted(manager.browsers.ids()) == ["s2", "s3", "s4"]
    assert driver.handles[0].close_calls == 1
    assert report.resident_mb == 3000

@pytest.mark.asyncio
async def test_idle_eviction_runs_before_memory_pressure(manager, inspector, clock):
    await launch(manager, "old")
    clock.advance(31 * 60)
    await launch(manager, "a", "b")
    inspector.memory_mb = 3000

    report = await manager.orchestrator.tick()

    assert report.idle_closed == ["old"]
    assert report.pressure_closed == ["a"]
    assert manager.browsers.ids() == ["b"]

@pytest.mark.asyncio
async def test_close_failure_does_not_stop_other_evictions(manager, driver, clock):
    await launch(manager, "s1", "s2")
    driver.handles[0].fail = True
    clock.advance(31 * 60)

    report = await manager.orchestrator.tick()

    assert sorted(report.idle_closed) == ["s1", "s2"]
    assert len(manager.browsers) == 0
    assert report.errors == ["s1: browser crashed"]

@pytest.mark.asyncio
async def test_introspection_failure_is_a_noop(manager, inspector, clock):
    await launch(manager, "s1")
    inspector.fail = True
    inspector.memory_mb = 10_000

    report = await manager.orchestrator.tick()

    assert report.resident_mb is None
    assert report.zombies is None
    assert manager.browsers.ids() == ["s1"]

@pytest.mark.asyncio
async def test_zombies_terminated_when_exceeding_slack(manager, inspector):
    await launch(manager, "s1")
    inspector.process_count = 3

    report = await manager.orchestrator.tick()

    assert report.zombies.exceeded
    assert inspector.terminated == [("headless_shell", TerminationScope.ORPHANED)]
    assert report.zombies_terminated == 1

@pytest.mark.asyncio
async def test_zombies_within_slack_left_alone(manager, inspector):
    await launch(manager, "s1")
    inspector.process_count = 2

    await manager.orchestrator.tick()

    assert inspector.terminated == []

@pytest.mark.asyncio
async def test_close_raced_by_client_is_skipped(manager, clock):
    await launch(manager, "s1")
    clock.advance(31 * 60)
    await manager.close_browser("s1")

    report = await manager.orchestrator.tick()

    assert report.idle_closed == []

@pytest.mark.asyncio
async def test_unexpected_close_error_is_isolated(manager, clock):
    calls = []

    async def close_session(kind, session_id, reason):
        calls.append(session_id)
        if session_id == "s1":
            raise RuntimeError("unexpected")
        return CloseResult(session_id, kind, reason)

    await launch(manager, "s1", "s2")
    clock.advance(31 * 60)
    manager.orchestrator.close_session = close_session

    report = await manager.orchestrator.tick()

    assert calls == ["s1", "s2"]
    assert report.idle_closed == ["s2"]
    assert report.errors == ["s1: unexpected"]

@pytest.mark.asyncio
async def test_electron_sessions_are_evicted_too(manager, clock):
    handle = FakeHandle()
    await manager.apps.create("app", handle)
    clock.advance(31 * 60)

    report = await manager.orchestrator.tick()

    assert report.idle_closed == ["app"]
    assert handle.close_calls == 1

@pytest.mark.asyncio
async def test_background_loop_ticks_and_stops(manager, settings, clock):
    settings.cleanup_interval_seconds = 0.01
    await launch(manager, "s1")
    clock.advance(31 * 60)

    manager.orchestrator.start()
    assert manager.orchestrator.running
    for _ in range(100):
        if "s1" not in manager.browsers:
            break
        await asyncio.sleep(0.01)
    await manager.orchestrator.stop()

    assert "s1" not in manager.browsers
    assert not manager.orchestrator.running

@pytest.mark.asyncio
async def test_close_reason_is_reported(manager, clock):
    await launch(manager, "s1")
    result = await manager.close_session(SessionKind.BROWSER, "s1", CloseReason.IDLE_TIMEOUT)
    assert result.ok
    assert result.reason is CloseReason.IDLE_TIMEOUT
    assert await manager.close_session(SessionKind.BROWSER, "s1") is None

@pytest.mark.asyncio
async def test_memory_pressure_orders_by_creation_across_kinds(manager, inspector):
    app = FakeHandle()
    await manager.apps.create("app", app)
    await manager.launch_browser("web")
    inspector.memory_mb = 3000

    report = await manager.orchestrator.tick()

    assert report.pressure_closed == ["app"]
    assert app.close_calls == 1
    assert manager.browsers.ids() == ["web"]
