import functools
import inspect
import traceback
from typing import Any, Awaitable, Callable, Dict, List, Optional, Tuple

from browserwarden.core.errors import UnknownTool, WardenError
from browserwarden.core.logging import log
from browserwarden.service.manager import SessionManager

ToolHandler = Callable[..., Awaitable[str]]

# tool name -> (manager method, description)
TOOLS: Dict[str, Tuple[str, str]] = {
    "browser_launch": ("launch_browser", "Launch a new browser instance"),
    "browser_close": ("close_browser", "Close a browser session"),
    "browser_close_all": ("close_all", "Close all sessions and clean up zombie processes"),
    "page_new": ("new_page", "Open a named page in a browser session"),
    "page_navigate": ("navigate", "Navigate to a URL"),
    "page_screenshot": ("screenshot", "Take a screenshot of a page"),
    "page_click": ("click", "Click an element by selector or text"),
    "page_fill": ("fill", "Fill an input field"),
    "page_evaluate": ("evaluate", "Evaluate JavaScript in a page"),
    "page_wait_for_selector": ("wait_for_selector", "Wait for an element to appear"),
    "page_get_content": ("get_content", "Get the page HTML"),
    "page_get_text": ("get_text", "Get the text of an element"),
    "page_press": ("press", "Press a keyboard key"),
    "page_select": ("select", "Select an option in a dropdown"),
    "list_sessions": ("list_sessions", "List active sessions"),
    "session_stats": ("session_stats", "Resource usage and per-session idle time"),
    "electron_launch": ("launch_electron", "Launch an Electron application"),
    "electron_close": ("close_electron", "Close an Electron session"),
    "electron_evaluate": ("electron_evaluate", "Evaluate JavaScript in the Electron window"),
    "electron_evaluate_main": ("electron_evaluate_main", "Evaluate JavaScript in the Electron main process"),
    "electron_get_info": ("electron_info", "Describe an Electron application"),
    "electron_window_state": ("electron_window_state", "Bounds and state of the Electron window"),
    "electron_screenshot": ("electron_screenshot", "Screenshot of the Electron window"),
    "test_start_recording": ("start_recording", "Start recording actions as a test"),
    "test_stop_recording": ("stop_recording", "Stop recording and generate a test script"),
    "test_generate_regression": ("generate_regression", "Generate a regression test from page state"),
    "test_generate_suite": ("generate_suite", "Combine generated tests into a suite"),
    "test_list_recordings": ("list_recordings", "List active recordings and generated tests"),
}


def refreshes_activity(touch: Callable[[str], Awaitable[bool]]):
    """Refresh the session named by session_id before and after a successful call.

    Touching first keeps a long-running call from looking idle to the
    orchestrator.
    """

    def decorator(handler: ToolHandler) -> ToolHandler:
        @functools.wraps(handler)
        async def wrapper(**kwargs: Any) -> str:
            session_id = kwargs.get("session_id")
            if session_id:
                await touch(session_id)
            result = await handler(**kwargs)
            if session_id:
                await touch(session_id)
            return result

        return wrapper

    return decorator


class ToolDispatcher:
    """Routes named tool calls to the manager and always answers with text."""

    def __init__(self, manager: SessionManager):
        self.manager = manager
        activity = refreshes_activity(manager.touch)
        self.tools: Dict[str, ToolHandler] = {
            name: activity(getattr(manager, method)) for name, (method, _) in TOOLS.items()
        }

    def describe(self) -> List[Dict[str, Any]]:
        described = []
        for name, (method, description) in TOOLS.items():
            params = inspect.signature(getattr(self.manager, method)).parameters
            described.append({
                "name": name,
                "description": description,
                "required": [p for p, param in params.items() if param.default is inspect.Parameter.empty],
                "optional": [p for p, param in params.items() if param.default is not inspect.Parameter.empty],
            })
        return described

    async def call(self, name: str, args: Optional[Dict[str, Any]] = None) -> str:
        args = args or {}
        try:
            handler = self.tools.get(name)
            if handler is None:
                raise UnknownTool(name)
            try:
                inspect.signature(handler).bind(**args)
            except TypeError as e:
                raise WardenError(f"Invalid arguments for {name}: {e}") from e
            return await handler(**args)
        except WardenError as e:
            log(f"Tool {name} error: {e}", level="warning")
            return f"Error: {e}"
        except Exception as e:
            log(f"Tool {name} error: {traceback.format_exc()}", level="error")
            return f"Error: {e}"
