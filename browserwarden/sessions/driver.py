import asyncio
import os
import platform
import socket
import time
from typing import Any, Dict, List, Optional, Tuple
from playwright.async_api import async_playwright

from browserwarden.core.logging import log
from browserwarden.core.errors import ExternalFailure
from browserwarden.core.constants import (
    BROWSER_LAUNCH_ARGS,
    DEFAULT_USER_AGENT,
    DEFAULT_VIEWPORT,
    ELECTRON_CONNECT_TIMEOUT_SECONDS,
)
from browserwarden.sessions.handles import BrowserHandle, ElectronHandle


def platform_env(headless: bool = True, system: Optional[str] = None) -> Dict[str, str]:
    """Environment presets for launching Electron apps on each platform."""
    system = (system or platform.system()).lower()
    if system == "linux":
        no_display = not os.environ.get("DISPLAY") or os.environ.get("CI") == "true"
        env = {
            "ELECTRON_ENABLE_LOGGING": "1",
            "ELECTRON_NO_SANDBOX": "1",
            "ELECTRON_DISABLE_GPU": "1",
        }
        if headless:
            # Assumes an Xvfb server on :99 when there is no real display
            env["DISPLAY"] = ":99" if no_display else os.environ.get("DISPLAY", ":0")
        return env
    if system == "darwin":
        return {
            "ELECTRON_ENABLE_LOGGING": "1",
            "ELECTRON_DISABLE_SECURITY_WARNINGS": "1",
        }
    if system == "windows":
        return {
            "ELECTRON_ENABLE_LOGGING": "1",
            "ELECTRON_NO_ATTACH_CONSOLE": "1",
        }
    raise ValueError(f"Unsupported platform: {system}")


def _free_port() -> int:
    with socket.socket(socket.AF_INET, socket.SOCK_STREAM) as s:
        s.bind(("127.0.0.1", 0))
        return s.getsockname()[1]


class PlaywrightDriver:
    """
    Launches browsers and Electron apps through one shared Playwright instance.
    """

    def __init__(self):
        self.playwright = None
        self._lock = asyncio.Lock()

    async def start(self) -> None:
        """Start Playwright once; later calls are no-ops."""
        async with self._lock:
            if self.playwright is None:
                self.playwright = await async_playwright().start()
                log("Playwright driver started", level="debug")

    async def stop(self) -> None:
        async with self._lock:
            if self.playwright is not None:
                try:
                    await self.playwright.stop()
                finally:
                    self.playwright = None
                log("Playwright driver stopped", level="debug")

    async def launch_browser(
        self,
        headless: bool = True,
        viewport: Optional[Dict[str, int]] = None,
        user_agent: str = DEFAULT_USER_AGENT,
    ) -> Tuple[BrowserHandle, Any]:
        """Launch Chromium and open the main page. Returns (handle, page)."""
        await self.start()
        browser = None
        try:
            browser = await self.playwright.chromium.launch(
                headless=headless,
                args=BROWSER_LAUNCH_ARGS,
            )
            context = await browser.new_context(
                viewport=viewport or dict(DEFAULT_VIEWPORT),
                user_agent=user_agent,
            )
            page = await context.new_page()
        except Exception as e:
            if browser is not None:
                try:
                    await browser.close()
                except Exception as close_error:
                    log(f"Failed to close half-launched browser: {close_error}", level="warning")
            raise ExternalFailure(f"Browser launch failed: {e}") from e
        return BrowserHandle(browser, context), page

    async def launch_electron(
        self,
        executable_path: str,
        args: Optional[List[str]] = None,
        env: Optional[Dict[str, str]] = None,
        headless: bool = True,
        connect_timeout: float = ELECTRON_CONNECT_TIMEOUT_SECONDS,
    ) -> ElectronHandle:
        """Spawn an Electron app with remote debugging and attach to it over CDP."""
        await self.start()
        port = _free_port()
        inspect_port = _free_port()
        electron_env = {**os.environ, **platform_env(headless), **(env or {})}
        try:
            process = await asyncio.create_subprocess_exec(
                executable_path,
                f"--inspect={inspect_port}",
                f"--remote-debugging-port={port}",
                *(args or []),
                env=electron_env,
                stdout=asyncio.subprocess.DEVNULL,
                stderr=asyncio.subprocess.DEVNULL,
            )
        except OSError as e:
            raise ExternalFailure(f"Electron launch failed: {e}") from e

        endpoint = f"http://127.0.0.1:{port}"
        deadline = time.monotonic() + connect_timeout
        last_error: Optional[Exception] = None
        while time.monotonic() < deadline:
            if process.returncode is not None:
                raise ExternalFailure(f"Electron app exited early with code {process.returncode}")
            try:
                browser = await self.playwright.chromium.connect_over_cdp(endpoint)
                break
            except Exception as e:
                last_error = e
                await asyncio.sleep(0.5)
        else:
            process.kill()
            await process.wait()
            raise ExternalFailure(f"Could not attach to Electron app at {endpoint}: {last_error}")

        handle = ElectronHandle(process, browser, executable_path, inspect_port=inspect_port)
        await handle.first_window()
        log(f"Electron app attached on {endpoint}", level="debug", pid=process.pid)
        return handle
