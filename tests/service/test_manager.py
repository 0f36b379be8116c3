import asyncio
import json
from unittest.mock import AsyncMock

import pytest

from browserwarden.core.errors import ExternalFailure, PageNotFound, SessionExists, SessionNotFound, WardenError
from fakes import FakeHandle

@pytest.mark.asyncio
async def test_launch_and_close_browser(manager, driver):
    text = await manager.launch_browser("s1")
    assert text == "Browser launched with session ID: s1 (headless: True)"
    assert manager.browsers.ids() == ["s1"]

    session = await manager.browsers.get("s1")
    sink = session.log_sinks["main"]
    assert await manager.close_browser("s1") == "Browser session s1 closed"
    assert driver.handles[0].close_calls == 1
    assert sink.closed

@pytest.mark.asyncio
async def test_launch_duplicate_id(manager, driver):
    await manager.launch_browser("s1")
    with pytest.raises(SessionExists, match="Session s1 already exists"):
        await manager.launch_browser("s1")
    assert len(driver.handles) == 1

@pytest.mark.asyncio
async def test_concurrent_launch_same_id_leaks_nothing(manager, driver):
    results = await asyncio.gather(manager.launch_browser("s1"), manager.launch_browser("s1"),
                                   return_exceptions=True)
    assert sum(isinstance(r, SessionExists) for r in results) == 1
    assert len(manager.browsers) == 1
    # The loser's browser was closed, the winner's is still open
    assert sorted(h.close_calls for h in driver.handles) == [0, 1]

@pytest.mark.asyncio
async def test_launch_failure_registers_nothing(manager, driver):
    driver.fail_launch = True
    with pytest.raises(ExternalFailure):
        await manager.launch_browser("s1")
    assert len(manager.browsers) == 0

@pytest.mark.asyncio
async def test_close_unknown_session(manager):
    with pytest.raises(SessionNotFound, match="Session nope not found"):
        await manager.close_browser("nope")

@pytest.mark.asyncio
async def test_close_failure_still_removes_session(manager, driver):
    await manager.launch_browser("s1")
    driver.handles[0].fail = True
    text = await manager.close_browser("s1")
    assert "browser crashed" in text
    assert "s1" not in manager.browsers

@pytest.mark.asyncio
async def test_relaunch_waits_for_pending_close(manager, driver):
    await manager.launch_browser("s1")
    gate = asyncio.Event()
    driver.handles[0].block = gate

    closing = asyncio.ensure_future(manager.close_browser("s1"))
    await asyncio.sleep(0)
    relaunch = asyncio.ensure_future(manager.launch_browser("s1"))
    await asyncio.sleep(0.01)
    assert not relaunch.done()

    gate.set()
    await closing
    assert (await relaunch).startswith("Browser launched")
    assert len(driver.handles) == 2

@pytest.mark.asyncio
async def test_close_all(manager, driver, inspector):
    await manager.launch_browser("s1")
    await manager.launch_browser("s2")
    text = await manager.close_all()
    assert text == "Closed 2 browser sessions and 0 electron sessions. Cleaned up 2 zombie processes."
    assert len(manager.browsers) == 0
    assert all(h.close_calls == 1 for h in driver.handles)

@pytest.mark.asyncio
async def test_pages(manager):
    await manager.launch_browser("s1")
    assert await manager.new_page("s1", "second") == "Opened page second in session s1"
    with pytest.raises(WardenError, match="already exists"):
        await manager.new_page("s1", "second")
    with pytest.raises(PageNotFound):
        await manager.navigate("s1", "https://example.com", page_id="third")
    session = await manager.browsers.get("s1")
    assert set(session.log_sinks) == {"main", "second"}

@pytest.mark.asyncio
async def test_page_operations(manager, driver):
    await manager.launch_browser("s1")
    page = driver.pages[0]

    assert await manager.navigate("s1", "https://example.com") == "Navigated to https://example.com"
    assert await manager.click("s1", "#go") == "Clicked element: #go"
    assert await manager.fill("s1", "#q", "x") == "Filled #q with value"
    assert await manager.select("s1", "#lang", "en") == "Selected option en in #lang"
    assert await manager.press("s1", "Enter") == "Pressed key: Enter"
    assert await manager.wait_for_selector("s1", "#done") == "Element #done found"
    assert await manager.get_text("s1", "h1") == "text of h1"
    assert await manager.get_content("s1") == "<html></html>"
    assert json.loads(await manager.evaluate("s1", "1 + 1")) == {"script": "1 + 1"}

    assert page.calls[0] == ("goto", "https://example.com", "load")
    assert ("keyboard.press", "Enter") in page.calls

@pytest.mark.asyncio
async def test_screenshot_path(manager, settings):
    await manager.launch_browser("s1")
    text = await manager.screenshot("s1", filename="shot.png")
    assert text == f"Screenshot saved to {settings.screenshot_dir / 'shot.png'}"

@pytest.mark.asyncio
async def test_recording_flow(manager, settings):
    await manager.launch_browser("s1")
    assert await manager.start_recording("s1", "login") == 'Started recording test "login" for session s1'
    await manager.navigate("s1", "https://example.com/login")
    await manager.fill("s1", "#user", "ann")
    await manager.press("s1", "Enter", selector="#user")

    text = await manager.stop_recording("s1", format="jest")

    path = settings.test_dir / "login-jest.spec.js"
    assert text == f"Test recording stopped. Generated test script: {path}"
    script = path.read_text()
    assert "await page.goto('https://example.com/login');" in script
    assert "await page.type('#user', 'ann');" in script

    listing = await manager.list_recordings()
    assert "login-jest.spec.js" in listing

@pytest.mark.asyncio
async def test_generate_regression_and_suite(manager, driver):
    await manager.launch_browser("s1")
    driver.pages[0].visible = {"h1"}
    await manager.navigate("s1", "https://example.com")

    text = await manager.generate_regression("s1", "home")
    assert "home-regression.spec.js" in text
    assert "Included 4 assertions" in text

    await manager.start_recording("s1", "flow")
    await manager.stop_recording("s1")
    text = await manager.generate_suite("all", ["flow"])
    assert "Included 1 test cases" in text

@pytest.mark.asyncio
async def test_stats(manager, inspector, clock):
    await manager.launch_browser("s1")
    await manager.start_recording("s1", "left-behind")
    await manager.close_browser("s1")
    await manager.launch_browser("s2")
    inspector.process_count = 3
    clock.advance(10 * 60)

    stats = json.loads(await manager.session_stats())

    assert stats["browserSessions"] == 1
    assert stats["electronSessions"] == 0
    assert stats["memoryUsageMB"] == 100.0
    assert stats["sessionTimeout"] == "30 minutes"
    assert stats["zombieProcesses"] == 2
    assert stats["orphanedRecordings"] == 1
    assert stats["sessions"] == [{"id": "s2", "kind": "browser", "inactiveMinutes": 10}]

@pytest.mark.asyncio
async def test_stats_without_process_table(manager, inspector):
    inspector.fail = True
    stats = await manager.stats()
    assert stats["memoryUsageMB"] is None
    assert stats["zombieProcesses"] is None

@pytest.mark.asyncio
async def test_list_sessions(manager):
    assert await manager.list_sessions() == "Browser sessions: None\nElectron sessions: None"
    await manager.launch_browser("a")
    await manager.launch_browser("b")
    assert (await manager.list_sessions()).startswith("Browser sessions: a, b\n")

@pytest.mark.asyncio
async def test_electron_close_unknown(manager):
    with pytest.raises(SessionNotFound, match="Electron session app not found"):
        await manager.close_electron("app")

@pytest.mark.asyncio
async def test_electron_evaluate_main_returns_json(manager):
    handle = FakeHandle()
    handle.evaluate_main = AsyncMock(return_value={"platform": "linux"})
    await manager.apps.create("app", handle)

    text = await manager.electron_evaluate_main("app", "({platform: process.platform})")

    assert json.loads(text) == {"platform": "linux"}
    handle.evaluate_main.assert_awaited_once_with("({platform: process.platform})")

@pytest.mark.asyncio
async def test_start_recording_rejects_path_names(manager):
    await manager.launch_browser("s1")
    with pytest.raises(WardenError, match="Invalid test name"):
        await manager.start_recording("s1", "../escape")
