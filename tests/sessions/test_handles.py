import asyncio
from unittest.mock import AsyncMock, MagicMock

import pytest
from aiohttp import web
from aiohttp import test_utils

from browserwarden.core.errors import ExternalFailure
from browserwarden.sessions.driver import platform_env
from browserwarden.sessions.handles import BrowserHandle, ElectronHandle, main_result

def test_platform_env_linux_headless_without_display(monkeypatch):
    monkeypatch.delenv("DISPLAY", raising=False)
    env = platform_env(headless=True, system="Linux")
    assert env["DISPLAY"] == ":99"
    assert env["ELECTRON_NO_SANDBOX"] == "1"

def test_platform_env_linux_headed_keeps_display(monkeypatch):
    monkeypatch.setenv("DISPLAY", ":1")
    assert "DISPLAY" not in platform_env(headless=False, system="Linux")

def test_platform_env_other_systems():
    assert platform_env(system="Darwin")["ELECTRON_DISABLE_SECURITY_WARNINGS"] == "1"
    assert platform_env(system="Windows")["ELECTRON_NO_ATTACH_CONSOLE"] == "1"
    with pytest.raises(ValueError, match="Unsupported platform"):
        platform_env(system="plan9")

@pytest.mark.asyncio
async def test_browser_handle_close_wraps_errors():
    browser = MagicMock()
    browser.close = AsyncMock(side_effect=RuntimeError("gone"))
    with pytest.raises(ExternalFailure, match="Failed to close browser: gone"):
        await BrowserHandle(browser, MagicMock()).close()

def electron(returncode=None, wait=None, inspect_port=None):
    process = MagicMock()
    process.returncode = returncode
    process.pid = 4242
    process.wait = wait or AsyncMock(return_value=0)
    browser = MagicMock()
    browser.close = AsyncMock()
    return ElectronHandle(process, browser, "/opt/app/electron", inspect_port=inspect_port), process, browser

@pytest.mark.asyncio
async def test_electron_close_terminates_process():
    handle, process, browser = electron()
    await handle.close()
    browser.close.assert_awaited_once()
    process.terminate.assert_called_once()
    assert not process.kill.called

@pytest.mark.asyncio
async def test_electron_close_kills_after_grace(monkeypatch):
    monkeypatch.setattr("browserwarden.sessions.handles.TERMINATE_GRACE_SECONDS", 0.01)
    calls = []

    async def wait():
        calls.append("wait")
        if len(calls) == 1:
            await asyncio.sleep(1)
        return -9

    handle, process, _ = electron(wait=wait)
    await handle.close()
    process.kill.assert_called_once()

@pytest.mark.asyncio
async def test_electron_close_skips_exited_process():
    handle, process, browser = electron(returncode=0)
    browser.close.side_effect = RuntimeError("disconnected")
    with pytest.raises(ExternalFailure, match="disconnected"):
        await handle.close()
    assert not process.terminate.called

@pytest.mark.asyncio
async def test_electron_first_window_uses_existing_page():
    handle, _, browser = electron()
    window = MagicMock()
    context = MagicMock()
    context.pages = [window]
    browser.contexts = [context]
    assert await handle.first_window() is window
    assert await handle.new_page() is window

@pytest.mark.asyncio
async def test_electron_evaluate_without_window():
    handle, _, browser = electron()
    browser.contexts = []
    with pytest.raises(ExternalFailure, match="No window available"):
        await handle.evaluate("1")

def node_inspector(reply):
    """A stand-in for the Node inspector: one target and one evaluate reply."""
    calls = []

    async def targets(request):
        return web.json_response([
            {"id": "main", "type": "node", "webSocketDebuggerUrl": f"ws://{request.host}/main"},
        ])

    async def session(request):
        ws = web.WebSocketResponse()
        await ws.prepare(request)
        async for message in ws:
            call = message.json()
            calls.append(call)
            await ws.send_json({"method": "Runtime.executionContextCreated", "params": {}})
            await ws.send_json({"id": call["id"], **reply})
        return ws

    app = web.Application()
    app.router.add_get("/json/list", targets)
    app.router.add_get("/main", session)
    return test_utils.TestServer(app), calls

@pytest.mark.asyncio
async def test_electron_evaluate_main_over_inspector():
    server, calls = node_inspector({"result": {"result": {"type": "string", "value": "darwin"}}})
    await server.start_server()
    try:
        handle, _, _ = electron(inspect_port=server.port)
        assert await handle.evaluate_main("process.platform") == "darwin"
    finally:
        await server.close()
    assert calls[0]["method"] == "Runtime.evaluate"
    assert calls[0]["params"]["expression"] == "process.platform"
    assert calls[0]["params"]["returnByValue"] is True

@pytest.mark.asyncio
async def test_electron_evaluate_main_reports_script_errors():
    server, _ = node_inspector({"result": {
        "result": {"type": "object", "subtype": "error"},
        "exceptionDetails": {"text": "Uncaught", "exception": {"description": "ReferenceError: nope is not defined"}},
    }})
    await server.start_server()
    try:
        handle, _, _ = electron(inspect_port=server.port)
        with pytest.raises(ExternalFailure, match="ReferenceError: nope is not defined"):
            await handle.evaluate_main("nope")
    finally:
        await server.close()

@pytest.mark.asyncio
async def test_electron_evaluate_main_without_inspector():
    handle, _, _ = electron()
    with pytest.raises(ExternalFailure, match="inspector is not enabled"):
        await handle.evaluate_main("1")

def test_main_result_values():
    assert main_result({"id": 1, "result": {"result": {"type": "undefined"}}}) is None
    assert main_result({"id": 1, "result": {"result": {"type": "number", "value": 3}}}) == 3
    with pytest.raises(ExternalFailure, match="Method not found"):
        main_result({"id": 1, "error": {"code": -32601, "message": "Method not found"}})
