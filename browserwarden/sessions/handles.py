import asyncio
from abc import ABC, abstractmethod
from typing import Any, Dict, Optional

import aiohttp

from browserwarden.core.errors import ExternalFailure
from browserwarden.core.logging import log
from browserwarden.core.constants import MAIN_EVALUATE_TIMEOUT_SECONDS, TERMINATE_GRACE_SECONDS


def main_result(reply: Dict[str, Any]) -> Any:
    """Value of a Runtime.evaluate reply, or ExternalFailure for protocol and script errors."""
    if "error" in reply:
        raise ExternalFailure(f"Main process evaluation failed: {reply['error'].get('message')}")
    result = reply.get("result", {})
    details = result.get("exceptionDetails")
    if details:
        text = details.get("exception", {}).get("description") or details.get("text")
        raise ExternalFailure(f"Main process evaluation failed: {text}")
    return result.get("result", {}).get("value")


class ResourceHandle(ABC):
    """Opaque reference to one externally owned automation process."""

    @abstractmethod
    async def close(self) -> None:
        """Release the external process. Raises ExternalFailure on error."""

    @abstractmethod
    async def new_page(self) -> Any:
        """Open a new page or window inside the process."""


class BrowserHandle(ResourceHandle):
    """A launched Chromium browser with its single browser context."""

    def __init__(self, browser: Any, context: Any):
        self.browser = browser
        self.context = context

    async def new_page(self) -> Any:
        try:
            return await self.context.new_page()
        except Exception as e:
            raise ExternalFailure(f"Failed to open page: {e}") from e

    async def close(self) -> None:
        try:
            await self.browser.close()
        except Exception as e:
            raise ExternalFailure(f"Failed to close browser: {e}") from e


class ElectronHandle(ResourceHandle):
    """An Electron application process attached over CDP."""

    def __init__(self, process: Any, browser: Any, executable_path: str,
                 main_window: Optional[Any] = None, inspect_port: Optional[int] = None):
        self.process = process
        self.browser = browser
        self.executable_path = executable_path
        self.main_window = main_window
        self.inspect_port = inspect_port

    async def first_window(self, timeout: float = 10.0) -> Optional[Any]:
        """Return the first renderer window, waiting for it to appear."""
        if self.main_window is not None:
            return self.main_window
        contexts = self.browser.contexts
        if not contexts:
            return None
        context = contexts[0]
        if context.pages:
            self.main_window = context.pages[0]
            return self.main_window
        try:
            self.main_window = await context.wait_for_event("page", timeout=timeout * 1000)
        except Exception as e:
            log(f"No window appeared for {self.executable_path}: {e}", level="warning")
            return None
        return self.main_window

    async def new_page(self) -> Any:
        window = await self.first_window()
        if window is None:
            raise ExternalFailure(f"No window available in {self.executable_path}")
        return window

    async def evaluate(self, expression: str) -> Any:
        window = await self.first_window()
        if window is None:
            raise ExternalFailure(f"No window available in {self.executable_path}")
        try:
            return await window.evaluate(expression)
        except Exception as e:
            raise ExternalFailure(f"Evaluation failed: {e}") from e

    async def evaluate_main(self, expression: str,
                            timeout: float = MAIN_EVALUATE_TIMEOUT_SECONDS) -> Any:
        """
        Evaluate an expression in the Electron main (Node) process.

        Goes through the Node inspector the app was started with
        (--inspect=<port>): the first target from /json/list, then one
        Runtime.evaluate call over its websocket.
        """
        if self.inspect_port is None:
            raise ExternalFailure(f"Main process inspector is not enabled for {self.executable_path}")
        params = {
            "expression": expression,
            "returnByValue": True,
            "awaitPromise": True,
            "includeCommandLineAPI": True,
        }
        try:
            async with aiohttp.ClientSession(timeout=aiohttp.ClientTimeout(total=timeout)) as http:
                async with http.get(f"http://127.0.0.1:{self.inspect_port}/json/list") as response:
                    targets = await response.json(content_type=None)
                if not targets:
                    raise ExternalFailure("Main process inspector reported no targets")
                async with http.ws_connect(targets[0]["webSocketDebuggerUrl"], receive_timeout=timeout) as ws:
                    await ws.send_json({"id": 1, "method": "Runtime.evaluate", "params": params})
                    async for message in ws:
                        if message.type != aiohttp.WSMsgType.TEXT:
                            continue
                        reply = message.json()
                        # Skip protocol events; only the reply carries our id
                        if reply.get("id") == 1:
                            return main_result(reply)
        except (aiohttp.ClientError, asyncio.TimeoutError, KeyError, ValueError) as e:
            raise ExternalFailure(f"Main process evaluation failed: {e}") from e
        raise ExternalFailure("Main process inspector closed the connection")

    async def window_state(self) -> Optional[Dict[str, Any]]:
        window = await self.first_window()
        if window is None:
            return None
        try:
            cdp = await window.context.new_cdp_session(window)
            target = await cdp.send("Browser.getWindowForTarget")
            await cdp.detach()
        except Exception as e:
            raise ExternalFailure(f"Failed to read window state: {e}") from e
        bounds = target.get("bounds", {})
        return {
            "windowId": target.get("windowId"),
            "bounds": {k: bounds.get(k) for k in ("left", "top", "width", "height")},
            "state": bounds.get("windowState"),
        }

    async def close(self) -> None:
        errors = []
        try:
            await self.browser.close()
        except Exception as e:
            errors.append(e)

        if self.process.returncode is None:
            try:
                self.process.terminate()
                try:
                    await asyncio.wait_for(self.process.wait(), TERMINATE_GRACE_SECONDS)
                except asyncio.TimeoutError:
                    self.process.kill()
                    await self.process.wait()
            except ProcessLookupError:
                pass
            except Exception as e:
                errors.append(e)

        if errors:
            raise ExternalFailure(f"Failed to close electron app: {errors[0]}") from errors[0]
