import asyncio
import json
import time
from typing import Any, Callable, Dict, List, Optional, Tuple

from playwright.async_api import Error as PlaywrightError

from browserwarden.core.config import LifecycleSettings, ConfigManager
from browserwarden.core.constants import MAIN_PAGE
from browserwarden.core.errors import (
    ExternalFailure,
    PolicyIntrospectionFailure,
    SessionExists,
    SessionNotFound,
    ShuttingDown,
    WardenError,
)
from browserwarden.core.logging import log
from browserwarden.core.state import CloseReason, SessionKind, TerminationScope
from browserwarden.lifecycle.orchestrator import CloseResult, LifecycleOrchestrator
from browserwarden.lifecycle.process import ProcessInspector, PsutilProcessInspector
from browserwarden.lifecycle.shutdown import ShutdownCoordinator, ShutdownReport
from browserwarden.recording.models import Action
from browserwarden.recording.recorder import Recorder, capture_metadata, find_visible_selectors
from browserwarden.sessions.driver import PlaywrightDriver
from browserwarden.sessions.handles import ElectronHandle, ResourceHandle
from browserwarden.sessions.page_logging import PageLogSink
from browserwarden.sessions.registry import CreationOrder, Session, SessionRegistry


class SessionManager:
    """
    Owns the registries, the periodic orchestrator and the shutdown path.

    Every public coroutine returns a short human readable string or raises
    a WardenError; the dispatcher turns errors into text.
    """

    def __init__(
        self,
        settings: Optional[LifecycleSettings] = None,
        driver: Optional[PlaywrightDriver] = None,
        inspector: Optional[ProcessInspector] = None,
        clock: Optional[Callable[[], float]] = None,
        on_shutdown: Optional[Callable[[ShutdownReport], None]] = None,
    ):
        self.settings = settings or ConfigManager.load_settings()
        self.driver = driver or PlaywrightDriver()
        self.inspector = inspector or PsutilProcessInspector()
        self.clock = clock or time.monotonic
        order = CreationOrder(self.clock)
        self.browsers = SessionRegistry(SessionKind.BROWSER, self.clock, order)
        self.apps = SessionRegistry(SessionKind.ELECTRON, self.clock, order)
        self.registries = {SessionKind.BROWSER: self.browsers, SessionKind.ELECTRON: self.apps}
        self.recorder = Recorder(self.settings.test_dir)
        self.orchestrator = LifecycleOrchestrator(
            self.registries, self.inspector, self.settings, self.close_session,
            clock=self.clock, recorder=self.recorder,
        )
        self.shutdown_coordinator = ShutdownCoordinator(
            self.registries, self.release, self.inspector, self.settings,
            orchestrator=self.orchestrator, recorder=self.recorder, on_complete=on_shutdown,
            pending_closes=self.pending_closes,
        )
        self._closing: Dict[Tuple[SessionKind, str], asyncio.Task] = {}

    # Lifecycle

    async def start(self, install_signal_handlers: bool = False) -> None:
        self.settings.ensure_dirs()
        self.orchestrator.start()
        if install_signal_handlers:
            installed = self.shutdown_coordinator.install_signal_handlers()
            log(f"Shutdown handlers installed for {', '.join(installed) or 'no signals'}", level="debug")
        else:
            self.shutdown_coordinator.install_exception_handler()
        log("BrowserWarden running with resource management")

    async def stop(self, reason: str = "stop") -> Optional[ShutdownReport]:
        report = await self.shutdown_coordinator.shutdown(reason)
        if report is None:
            # Someone else is draining; wait() returns at once if nothing runs
            return await self.shutdown_coordinator.wait()
        try:
            await self.driver.stop()
        except Exception as e:
            log(f"Error stopping driver: {e}", level="error")
        return report

    # Close path shared by clients, eviction and close-all

    async def release(self, session: Session) -> None:
        try:
            session.close_log_sinks()
        except OSError as e:
            log(f"Error closing log files of {session.session_id}: {e}", level="warning")
        await session.handle.close()

    async def close_session(self, kind: SessionKind, session_id: str,
                            reason: CloseReason = CloseReason.CLIENT) -> Optional[CloseResult]:
        """Detach and release one session. Returns None if it was already gone."""
        try:
            session = await self.registries[kind].remove(session_id)
        except SessionNotFound:
            return None

        # Shielded: cancelling the caller (an eviction tick stopped by shutdown)
        # leaves the release running until the drain collects it.
        key = (kind, session_id)
        closing = asyncio.ensure_future(self.release(session))
        self._closing[key] = closing
        closing.add_done_callback(lambda task: self._forget_close(key, task))

        result = CloseResult(session_id, kind, reason)
        try:
            await asyncio.shield(closing)
        except ExternalFailure as e:
            log(f"Error closing {kind.value} session {session_id}: {e}", level="error")
            result.error = str(e)
        log(f"Closed {kind.value} session {session_id}", level="debug", reason=reason.value)
        return result

    def _forget_close(self, key: Tuple[SessionKind, str], task: asyncio.Task) -> None:
        if self._closing.get(key) is task:
            del self._closing[key]
        if not task.cancelled():
            # Mark the outcome as seen; the awaiting caller may be gone.
            task.exception()

    def pending_closes(self) -> List[Tuple[str, asyncio.Task]]:
        """Releases still running, as (session id, task) pairs."""
        return [(session_id, task) for (_, session_id), task in self._closing.items() if not task.done()]

    async def _await_pending_close(self, kind: SessionKind, session_id: str) -> None:
        pending = self._closing.get((kind, session_id))
        if pending is not None:
            await asyncio.wait([pending])

    async def _discard_launch(self, handle: ResourceHandle, what: str) -> None:
        """Close a freshly launched handle that could not be registered."""
        try:
            await handle.close()
        except ExternalFailure as e:
            log(f"Error closing unregistered {what}: {e}", level="error")

    async def touch(self, session_id: str) -> bool:
        touched = False
        for registry in self.registries.values():
            touched = await registry.touch(session_id) or touched
        return touched

    async def _attach_page(self, session_id: str, page_id: str, page: Any) -> None:
        """Register a page and its console log file with the session."""
        sink = PageLogSink.open(self.settings.log_dir, session_id, page_id, page.url)
        try:
            await self.browsers.add_page(session_id, page_id, page, sink)
        except SessionNotFound:
            sink.close()
            raise
        sink.attach(page)

    async def _page(self, session_id: str, page_id: str) -> Any:
        return await self.browsers.get_page(session_id, page_id)

    def _record(self, session_id: str, action: Action) -> None:
        self.recorder.record(session_id, action)

    # Browser sessions

    async def launch_browser(self, session_id: str, headless: Optional[bool] = None,
                             viewport: Optional[Dict[str, int]] = None) -> str:
        await self._await_pending_close(SessionKind.BROWSER, session_id)
        if self.browsers.closed:
            raise ShuttingDown()
        if session_id in self.browsers:
            raise SessionExists(session_id)

        headless = self.settings.headless if headless is None else headless
        handle, page = await self.driver.launch_browser(
            headless=headless,
            viewport=viewport or self.settings.default_viewport,
            user_agent=self.settings.user_agent,
        )
        try:
            await self.browsers.create(session_id, handle, {MAIN_PAGE: page})
        except (SessionExists, ShuttingDown):
            # Lost a race with a concurrent launch of the same id, or with shutdown
            await self._discard_launch(handle, f"browser {session_id}")
            raise
        await self._attach_page(session_id, MAIN_PAGE, page)
        return f"Browser launched with session ID: {session_id} (headless: {headless})"

    async def close_browser(self, session_id: str) -> str:
        result = await self.close_session(SessionKind.BROWSER, session_id)
        if result is None:
            raise SessionNotFound(session_id)
        if not result.ok:
            return f"Browser session {session_id} closed (close reported: {result.error})"
        return f"Browser session {session_id} closed"

    async def close_all(self) -> str:
        counts = {}
        for kind, registry in self.registries.items():
            ids = registry.ids()
            results = await asyncio.gather(
                *(self.close_session(kind, i, CloseReason.CLOSE_ALL) for i in ids),
                return_exceptions=True,
            )
            for session_id, result in zip(ids, results):
                if isinstance(result, BaseException):
                    log(f"Error closing {kind.value} session {session_id}: {result}", level="error")
            counts[kind] = len(ids)

        terminated = 0
        for scope in (TerminationScope.OWNED, TerminationScope.ORPHANED):
            try:
                terminated += await asyncio.to_thread(
                    self.inspector.terminate, self.settings.zombie_kill_pattern, scope
                )
            except PolicyIntrospectionFailure as e:
                log(f"Zombie cleanup skipped: {e}", level="warning")

        return (f"Closed {counts[SessionKind.BROWSER]} browser sessions and "
                f"{counts[SessionKind.ELECTRON]} electron sessions. "
                f"Cleaned up {terminated} zombie processes.")

    async def new_page(self, session_id: str, page_id: str) -> str:
        session = await self.browsers.get(session_id)
        if page_id in session.pages:
            raise WardenError(f"Page {page_id} already exists in session {session_id}")
        page = await session.handle.new_page()
        await self._attach_page(session_id, page_id, page)
        return f"Opened page {page_id} in session {session_id}"

    async def list_sessions(self) -> str:
        browsers = self.browsers.ids()
        apps = self.apps.ids()
        return (f"Browser sessions: {', '.join(browsers) if browsers else 'None'}\n"
                f"Electron sessions: {', '.join(apps) if apps else 'None'}")

    async def stats(self) -> Dict[str, Any]:
        memory_mb = None
        try:
            memory_mb = await asyncio.to_thread(self.inspector.resident_memory_mb)
        except PolicyIntrospectionFailure as e:
            log(f"Memory usage unavailable: {e}", level="debug")

        zombies = None
        try:
            count = await asyncio.to_thread(self.inspector.count, self.settings.engine_process_pattern)
            zombies = max(0, count - len(self.browsers))
        except PolicyIntrospectionFailure as e:
            log(f"Process count unavailable: {e}", level="debug")

        now = self.clock()
        live = set(self.browsers.ids()) | set(self.apps.ids())
        sessions = []
        for registry in self.registries.values():
            for snap in await registry.snapshot():
                sessions.append({
                    "id": snap.session_id,
                    "kind": snap.kind.value,
                    "inactiveMinutes": round((now - snap.last_activity) / 60),
                })
        return {
            "browserSessions": len(self.browsers),
            "electronSessions": len(self.apps),
            "memoryUsageMB": round(memory_mb, 2) if memory_mb is not None else None,
            "maxMemoryMB": self.settings.max_memory_mb,
            "sessionTimeout": f"{self.settings.session_timeout_seconds / 60:g} minutes",
            "zombieProcesses": zombies,
            "orphanedRecordings": len(self.recorder.orphaned(live)),
            "sessions": sessions,
        }

    async def session_stats(self) -> str:
        return json.dumps(await self.stats(), indent=2)

    # Page pass-through

    async def _drive(self, what: str, call):
        try:
            return await call
        except PlaywrightError as e:
            raise ExternalFailure(f"{what} failed: {e}") from e

    async def navigate(self, session_id: str, url: str, page_id: str = MAIN_PAGE,
                       wait_until: str = "load") -> str:
        page = await self._page(session_id, page_id)
        await self._drive("Navigation", page.goto(url, wait_until=wait_until))
        self._record(session_id, Action.navigate(url))
        return f"Navigated to {url}"

    async def screenshot(self, session_id: str, page_id: str = MAIN_PAGE,
                         full_page: bool = False, filename: Optional[str] = None) -> str:
        page = await self._page(session_id, page_id)
        path = self.settings.screenshot_dir / (filename or f"screenshot-{int(time.time() * 1000)}.png")
        await self._drive("Screenshot", page.screenshot(path=str(path), full_page=full_page))
        return f"Screenshot saved to {path}"

    async def click(self, session_id: str, selector: str, page_id: str = MAIN_PAGE) -> str:
        page = await self._page(session_id, page_id)
        try:
            await page.click(selector)
        except PlaywrightError:
            # Fall back to matching by visible text
            await self._drive("Click", page.click(f"text={selector}"))
        self._record(session_id, Action.click(selector))
        return f"Clicked element: {selector}"

    async def fill(self, session_id: str, selector: str, value: str, page_id: str = MAIN_PAGE) -> str:
        page = await self._page(session_id, page_id)
        await self._drive("Fill", page.fill(selector, value))
        self._record(session_id, Action.fill(selector, value))
        return f"Filled {selector} with value"

    async def select(self, session_id: str, selector: str, value: str, page_id: str = MAIN_PAGE) -> str:
        page = await self._page(session_id, page_id)
        await self._drive("Select", page.select_option(selector, value))
        self._record(session_id, Action.select(selector, value))
        return f"Selected option {value} in {selector}"

    async def press(self, session_id: str, key: str, selector: Optional[str] = None,
                    page_id: str = MAIN_PAGE) -> str:
        page = await self._page(session_id, page_id)
        if selector:
            await self._drive("Key press", page.press(selector, key))
        else:
            await self._drive("Key press", page.keyboard.press(key))
        self._record(session_id, Action.press(key, selector))
        return f"Pressed key: {key}"

    async def wait_for_selector(self, session_id: str, selector: str, page_id: str = MAIN_PAGE,
                                timeout: int = 30000) -> str:
        page = await self._page(session_id, page_id)
        await self._drive("Wait", page.wait_for_selector(selector, timeout=timeout))
        self._record(session_id, Action.wait(selector))
        return f"Element {selector} found"

    async def evaluate(self, session_id: str, script: str, page_id: str = MAIN_PAGE) -> str:
        page = await self._page(session_id, page_id)
        result = await self._drive("Evaluation", page.evaluate(script))
        return json.dumps(result, indent=2, default=str)

    async def get_content(self, session_id: str, page_id: str = MAIN_PAGE) -> str:
        page = await self._page(session_id, page_id)
        return await self._drive("Content", page.content())

    async def get_text(self, session_id: str, selector: str, page_id: str = MAIN_PAGE) -> str:
        page = await self._page(session_id, page_id)
        return await self._drive("Text", page.inner_text(selector))

    # Electron sessions

    async def _app(self, session_id: str) -> ElectronHandle:
        return (await self.apps.get(session_id)).handle

    async def launch_electron(self, session_id: str, executable_path: str,
                              args: Optional[List[str]] = None, env: Optional[Dict[str, str]] = None,
                              headless: Optional[bool] = None) -> str:
        await self._await_pending_close(SessionKind.ELECTRON, session_id)
        if self.apps.closed:
            raise ShuttingDown()
        if session_id in self.apps:
            raise SessionExists(session_id, SessionKind.ELECTRON.label)

        headless = self.settings.headless if headless is None else headless
        handle = await self.driver.launch_electron(executable_path, args=args, env=env, headless=headless)
        pages = {MAIN_PAGE: handle.main_window} if handle.main_window is not None else {}
        try:
            await self.apps.create(session_id, handle, pages)
        except (SessionExists, ShuttingDown):
            await self._discard_launch(handle, f"electron app {session_id}")
            raise
        return f"Electron app launched with session {session_id}"

    async def close_electron(self, session_id: str) -> str:
        result = await self.close_session(SessionKind.ELECTRON, session_id)
        if result is None:
            raise SessionNotFound(session_id, SessionKind.ELECTRON.label)
        if not result.ok:
            return f"Electron session {session_id} closed (close reported: {result.error})"
        return f"Electron session {session_id} closed"

    async def electron_evaluate(self, session_id: str, expression: str) -> str:
        handle = await self._app(session_id)
        return json.dumps(await handle.evaluate(expression), indent=2, default=str)

    async def electron_evaluate_main(self, session_id: str, expression: str) -> str:
        handle = await self._app(session_id)
        return json.dumps(await handle.evaluate_main(expression), indent=2, default=str)

    async def electron_info(self, session_id: str) -> str:
        handle = await self._app(session_id)
        window = await handle.first_window()
        info = {
            "executablePath": handle.executable_path,
            "pid": handle.process.pid,
            "browserVersion": handle.browser.version,
            "windowTitle": await self._drive("Title", window.title()) if window else None,
            "windowUrl": window.url if window else None,
        }
        return json.dumps(info, indent=2)

    async def electron_window_state(self, session_id: str) -> str:
        handle = await self._app(session_id)
        return json.dumps(await handle.window_state(), indent=2)

    async def electron_screenshot(self, session_id: str, filename: Optional[str] = None) -> str:
        handle = await self._app(session_id)
        window = await handle.first_window()
        if window is None:
            raise ExternalFailure(f"No window available in session {session_id}")
        path = self.settings.screenshot_dir / (filename or f"electron-{int(time.time() * 1000)}.png")
        await self._drive("Screenshot", window.screenshot(path=str(path)))
        return f"Electron screenshot saved to {path}"

    # Recordings

    async def start_recording(self, session_id: str, test_name: str) -> str:
        page = await self._page(session_id, MAIN_PAGE)
        metadata = await self._drive("Metadata capture", capture_metadata(page))
        self.recorder.start(test_name, session_id, metadata)
        return f'Started recording test "{test_name}" for session {session_id}'

    async def stop_recording(self, session_id: str, format: str = "playwright") -> str:
        _, path = self.recorder.stop(session_id, format)
        return f"Test recording stopped. Generated test script: {path}"

    async def generate_regression(self, session_id: str, test_name: str, page_id: str = MAIN_PAGE,
                                  assertions: Optional[List[Dict[str, Any]]] = None) -> str:
        page = await self._page(session_id, page_id)
        title = await self._drive("Title", page.title())
        metadata = await self._drive("Metadata capture", capture_metadata(page))
        recording = self.recorder.snapshot_recording(
            test_name, session_id, page.url, title, metadata,
            visible_selectors=await find_visible_selectors(page),
            assertions=assertions or [],
        )
        path = self.recorder.write_regression(recording)
        return f"Regression test generated: {path}\nIncluded {len(recording.actions)} assertions"

    async def generate_suite(self, suite_name: str, test_cases: List[str], format: str = "playwright") -> str:
        path, count = self.recorder.write_suite(suite_name, test_cases, format)
        return f"Test suite generated: {path}\nIncluded {count} test cases"

    async def list_recordings(self) -> str:
        return (f"Active Recordings:\n{json.dumps(self.recorder.active(), indent=2)}\n\n"
                f"Generated Tests:\n" + "\n".join(self.recorder.generated()))
