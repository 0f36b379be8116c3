import asyncio
import signal
from dataclasses import dataclass, field
from typing import Awaitable, Callable, Dict, List, Optional, Tuple

from browserwarden.core.config import LifecycleSettings
from browserwarden.core.errors import PolicyIntrospectionFailure
from browserwarden.core.logging import log
from browserwarden.core.state import SessionKind, TerminationScope
from browserwarden.lifecycle.orchestrator import LifecycleOrchestrator
from browserwarden.lifecycle.process import ProcessInspector
from browserwarden.sessions.registry import Session, SessionRegistry

SHUTDOWN_SIGNALS = ("SIGINT", "SIGTERM", "SIGHUP", "SIGQUIT")


@dataclass
class ShutdownReport:
    reason: str
    closed: List[str] = field(default_factory=list)
    errors: List[str] = field(default_factory=list)
    timed_out: List[str] = field(default_factory=list)
    processes_terminated: int = 0
    recordings_discarded: int = 0

    @property
    def clean(self) -> bool:
        return not self.errors and not self.timed_out


class ShutdownCoordinator:
    """
    One-shot drain of every live session.

    The first trigger (signal, fatal loop error or explicit call) closes all
    sessions concurrently with a bounded wait; any later trigger returns
    None immediately.
    """

    def __init__(
        self,
        registries: Dict[SessionKind, SessionRegistry],
        release: Callable[[Session], Awaitable[None]],
        inspector: ProcessInspector,
        settings: LifecycleSettings,
        orchestrator: Optional[LifecycleOrchestrator] = None,
        recorder=None,
        on_complete: Optional[Callable[[ShutdownReport], None]] = None,
        pending_closes: Optional[Callable[[], List[Tuple[str, asyncio.Future]]]] = None,
    ):
        self.registries = registries
        self.release = release
        self.inspector = inspector
        self.settings = settings
        self.orchestrator = orchestrator
        self.recorder = recorder
        self.on_complete = on_complete
        self.pending_closes = pending_closes or list
        self.report: Optional[ShutdownReport] = None
        self._triggered = False
        self._done = asyncio.Event()
        self._pending_trigger: Optional[asyncio.Task] = None
        self._running: Optional[asyncio.Task] = None
        self._installed: List[int] = []

    @property
    def triggered(self) -> bool:
        return self._triggered

    async def wait(self) -> Optional[ShutdownReport]:
        """Report of the running shutdown. Returns at once when none is running."""
        running = self._running or self._pending_trigger
        if running is not None and not running.done():
            await self._done.wait()
        return self.report

    async def _settle(self, session_id: str, closing: Awaitable[None]) -> Optional[str]:
        try:
            await closing
        except Exception as e:
            log(f"Error closing session {session_id}: {e}", level="error")
            return str(e)
        return None

    async def _close_sessions(self, report: ShutdownReport) -> None:
        sessions: List[Session] = []
        for registry in self.registries.values():
            sessions += await registry.remove_all(close=True)

        # Closes already in flight (client calls, evictions cut short by
        # orchestrator.stop) count against the same deadline.
        tasks = {asyncio.ensure_future(self._settle(s.session_id, self.release(s))): s.session_id
                 for s in sessions}
        for session_id, closing in self.pending_closes():
            tasks[asyncio.ensure_future(self._settle(session_id, closing))] = session_id
        if not tasks:
            return

        done, pending = await asyncio.wait(tasks, timeout=self.settings.shutdown_timeout_seconds)
        for task in done:
            session_id = tasks[task]
            error = task.result()
            if error is None:
                report.closed.append(session_id)
            else:
                report.errors.append(f"{session_id}: {error}")
        for task in pending:
            task.cancel()
            report.timed_out.append(tasks[task])
        if pending:
            await asyncio.gather(*pending, return_exceptions=True)
            log(f"Gave up waiting on {len(pending)} sessions after "
                f"{self.settings.shutdown_timeout_seconds}s", level="error")

    async def _sweep_processes(self, report: ShutdownReport) -> None:
        for scope in (TerminationScope.OWNED, TerminationScope.ORPHANED):
            try:
                report.processes_terminated += await asyncio.to_thread(
                    self.inspector.terminate, self.settings.zombie_kill_pattern, scope
                )
            except PolicyIntrospectionFailure as e:
                log(f"Process sweep skipped: {e}", level="warning")

    async def shutdown(self, reason: str = "requested") -> Optional[ShutdownReport]:
        if self._triggered:
            log(f"Shutdown already in progress; ignoring {reason}", level="debug")
            return None
        self._triggered = True
        self._running = asyncio.current_task()
        log(f"Shutting down BrowserWarden ({reason})...", level="warning")

        report = ShutdownReport(reason=reason)
        try:
            if self.orchestrator is not None:
                await self.orchestrator.stop()
            await self._close_sessions(report)
            await self._sweep_processes(report)
            if self.recorder is not None:
                report.recordings_discarded = self.recorder.discard_all()
        finally:
            self.report = report
            self._done.set()

        log("Cleanup complete", level="info", closed=len(report.closed),
            errors=report.errors, timed_out=report.timed_out)
        if self.on_complete is not None:
            self.on_complete(report)
        return report

    def trigger(self, reason: str) -> None:
        """Schedule shutdown from synchronous code (signal or loop callbacks)."""
        if self._triggered or self._pending_trigger is not None:
            return
        loop = asyncio.get_running_loop()
        self._pending_trigger = loop.create_task(self.shutdown(reason))

    def install_signal_handlers(self, loop: Optional[asyncio.AbstractEventLoop] = None) -> List[str]:
        """Route termination signals and unhandled loop errors into shutdown."""
        loop = loop or asyncio.get_running_loop()
        installed = []
        for name in SHUTDOWN_SIGNALS:
            sig = getattr(signal, name, None)
            if sig is None:
                continue
            try:
                loop.add_signal_handler(sig, self.trigger, f"signal {name}")
            except (NotImplementedError, RuntimeError, ValueError):
                # Windows loops and non-main threads cannot install handlers
                continue
            self._installed.append(sig)
            installed.append(name)
        self.install_exception_handler(loop)
        return installed

    def install_exception_handler(self, loop: Optional[asyncio.AbstractEventLoop] = None) -> None:
        """Treat exceptions nobody handled on the loop as fatal."""
        (loop or asyncio.get_running_loop()).set_exception_handler(self._on_loop_exception)

    def remove_signal_handlers(self, loop: Optional[asyncio.AbstractEventLoop] = None) -> None:
        loop = loop or asyncio.get_running_loop()
        for sig in self._installed:
            loop.remove_signal_handler(sig)
        self._installed.clear()
        loop.set_exception_handler(None)

    def _on_loop_exception(self, loop: asyncio.AbstractEventLoop, context: dict) -> None:
        loop.default_exception_handler(context)
        log(f"Uncaught exception: {context.get('message')}", level="critical")
        self.trigger("fatal error")
