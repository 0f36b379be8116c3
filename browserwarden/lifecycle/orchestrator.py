import asyncio
import time
import traceback
from dataclasses import dataclass, field
from typing import Awaitable, Callable, Dict, List, Optional

from browserwarden.core.config import LifecycleSettings
from browserwarden.core.errors import PolicyIntrospectionFailure
from browserwarden.core.logging import log
from browserwarden.core.state import CloseReason, SessionKind, TerminationScope
from browserwarden.lifecycle.policies import (
    ZombieVerdict,
    idle_candidates,
    memory_pressure_candidates,
    zombie_verdict,
)
from browserwarden.lifecycle.process import ProcessInspector
from browserwarden.sessions.registry import SessionRegistry


@dataclass
class CloseResult:
    session_id: str
    kind: SessionKind
    reason: CloseReason
    error: Optional[str] = None

    @property
    def ok(self) -> bool:
        return self.error is None


CloseSession = Callable[[SessionKind, str, CloseReason], Awaitable[Optional[CloseResult]]]


@dataclass
class TickReport:
    idle_closed: List[str] = field(default_factory=list)
    pressure_closed: List[str] = field(default_factory=list)
    resident_mb: Optional[float] = None
    zombies: Optional[ZombieVerdict] = None
    zombies_terminated: int = 0
    errors: List[str] = field(default_factory=list)


class LifecycleOrchestrator:
    """
    Periodic driver of the eviction policies.

    Each tick runs idle eviction, then the memory check, then zombie
    reconciliation. A failure closing one session is logged and the rest
    of the candidates are still processed.
    """

    def __init__(
        self,
        registries: Dict[SessionKind, SessionRegistry],
        inspector: ProcessInspector,
        settings: LifecycleSettings,
        close_session: CloseSession,
        clock: Optional[Callable[[], float]] = None,
        recorder=None,
    ):
        self.registries = registries
        self.inspector = inspector
        self.settings = settings
        self.close_session = close_session
        self.clock = clock or time.monotonic
        self.recorder = recorder
        self._task: Optional[asyncio.Task] = None

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    def registry_size(self) -> int:
        return sum(len(r) for r in self.registries.values())

    def start(self) -> None:
        if self.running:
            return
        self._task = asyncio.get_running_loop().create_task(self._run(), name="browserwarden-lifecycle")
        log(f"Lifecycle orchestrator started (interval {self.settings.cleanup_interval_seconds}s, "
            f"idle timeout {self.settings.session_timeout_seconds}s)", level="debug")

    async def stop(self) -> None:
        task, self._task = self._task, None
        if task is None:
            return
        task.cancel()
        try:
            await task
        except asyncio.CancelledError:
            pass

    async def _run(self) -> None:
        while True:
            await asyncio.sleep(self.settings.cleanup_interval_seconds)
            try:
                await self.tick()
            except asyncio.CancelledError:
                raise
            except Exception:
                log(f"Lifecycle tick failed: {traceback.format_exc()}", level="error")

    async def _close_all(self, kind: SessionKind, ids: List[str], reason: CloseReason,
                         report: TickReport) -> List[str]:
        closed = []
        for session_id in ids:
            log(f"Closing {kind.value} session {session_id} ({reason.value})", level="warning")
            try:
                result = await self.close_session(kind, session_id, reason)
            except Exception as e:
                log(f"Error closing {kind.value} session {session_id}: {e}", level="error")
                report.errors.append(f"{session_id}: {e}")
                continue
            if result is None:
                continue  # closed concurrently by another path
            if not result.ok:
                report.errors.append(f"{session_id}: {result.error}")
            closed.append(session_id)
        return closed

    async def evict_idle(self, report: TickReport) -> None:
        now = self.clock()
        for kind, registry in self.registries.items():
            candidates = idle_candidates(await registry.snapshot(), now, self.settings.session_timeout_seconds)
            report.idle_closed += await self._close_all(kind, candidates, CloseReason.IDLE_TIMEOUT, report)

    async def relieve_memory_pressure(self, report: TickReport) -> None:
        try:
            resident_mb = await asyncio.to_thread(self.inspector.resident_memory_mb)
        except PolicyIntrospectionFailure as e:
            log(f"Memory check skipped: {e}", level="warning")
            return
        report.resident_mb = resident_mb
        if resident_mb <= self.settings.max_memory_mb:
            return

        log(f"High memory usage detected: {resident_mb:.2f}MB. Cleaning up old sessions...", level="warning")
        snapshots = []
        for registry in self.registries.values():
            snapshots += await registry.snapshot()
        candidates = memory_pressure_candidates(
            snapshots, resident_mb, self.settings.max_memory_mb, self.settings.memory_eviction_fraction
        )
        kinds = {s.session_id: s.kind for s in snapshots}
        for session_id in candidates:
            report.pressure_closed += await self._close_all(
                kinds[session_id], [session_id], CloseReason.MEMORY_PRESSURE, report
            )

    async def reconcile_zombies(self, report: TickReport) -> None:
        try:
            count = await asyncio.to_thread(self.inspector.count, self.settings.engine_process_pattern)
            verdict = zombie_verdict(count, self.registry_size(), self.settings.zombie_slack_factor)
            report.zombies = verdict
            if not verdict.exceeded:
                return
            log(f"Found {verdict.process_count} engine processes but only {verdict.registry_size} "
                f"active sessions. Cleaning zombies...", level="warning")
            report.zombies_terminated = await asyncio.to_thread(
                self.inspector.terminate, self.settings.zombie_kill_pattern, TerminationScope.ORPHANED
            )
        except PolicyIntrospectionFailure as e:
            log(f"Zombie check skipped: {e}", level="warning")

    def warn_orphaned_recordings(self) -> None:
        if self.recorder is None:
            return
        live = set()
        for registry in self.registries.values():
            live.update(registry.ids())
        orphaned = self.recorder.orphaned(live)
        if orphaned:
            # Recordings are never evicted; they are only dropped at shutdown.
            log(f"{len(orphaned)} active recordings reference closed sessions: {', '.join(orphaned)}",
                level="warning")

    async def tick(self) -> TickReport:
        report = TickReport()
        await self.evict_idle(report)
        await self.relieve_memory_pressure(report)
        await self.reconcile_zombies(report)
        self.warn_orphaned_recordings()
        log("Lifecycle tick complete", level="debug",
            idle_closed=report.idle_closed, pressure_closed=report.pressure_closed,
            zombies_terminated=report.zombies_terminated)
        return report
