import os
import re
from abc import ABC, abstractmethod
from typing import Iterator, List, Optional, Set

import psutil

from browserwarden.core.logging import log
from browserwarden.core.errors import PolicyIntrospectionFailure
from browserwarden.core.state import TerminationScope
from browserwarden.core.constants import TERMINATE_GRACE_SECONDS


class ProcessInspector(ABC):
    """Narrow view of the OS process table used by the eviction policies."""

    @abstractmethod
    def count(self, pattern: str) -> int:
        """Number of processes whose name or command line matches pattern."""

    @abstractmethod
    def resident_memory_mb(self, pid: Optional[int] = None) -> float:
        """Resident set size of pid (default: this process) in megabytes."""

    @abstractmethod
    def terminate(self, pattern: str, scope: TerminationScope) -> int:
        """Terminate matching processes within scope. Returns how many were signalled."""


class PsutilProcessInspector(ProcessInspector):
    """ProcessInspector backed by psutil."""

    def __init__(self, root_pid: Optional[int] = None, include_children: bool = False):
        self.root_pid = root_pid or os.getpid()
        self.include_children = include_children

    def _matching(self, pattern: str) -> Iterator[psutil.Process]:
        regex = re.compile(pattern)
        try:
            procs = list(psutil.process_iter(["pid", "name", "cmdline"]))
        except psutil.Error as e:
            raise PolicyIntrospectionFailure(f"Cannot read process table: {e}") from e
        for proc in procs:
            try:
                name = proc.info.get("name") or ""
                cmdline = " ".join(proc.info.get("cmdline") or [])
            except (psutil.NoSuchProcess, psutil.AccessDenied, KeyError):
                continue
            if proc.pid == self.root_pid:
                continue
            if regex.search(name) or regex.search(cmdline):
                yield proc

    def count(self, pattern: str) -> int:
        return sum(1 for _ in self._matching(pattern))

    def resident_memory_mb(self, pid: Optional[int] = None) -> float:
        try:
            proc = psutil.Process(pid or self.root_pid)
            rss = proc.memory_info().rss
            if self.include_children:
                for child in proc.children(recursive=True):
                    try:
                        rss += child.memory_info().rss
                    except (psutil.NoSuchProcess, psutil.AccessDenied):
                        continue
        except psutil.Error as e:
            raise PolicyIntrospectionFailure(f"Cannot read memory usage: {e}") from e
        return rss / (1024 * 1024)

    def _owned_pids(self) -> Set[int]:
        try:
            return {p.pid for p in psutil.Process(self.root_pid).children(recursive=True)}
        except psutil.Error as e:
            raise PolicyIntrospectionFailure(f"Cannot list child processes: {e}") from e

    def _is_orphaned(self, proc: psutil.Process) -> bool:
        try:
            ppid = proc.ppid()
        except (psutil.NoSuchProcess, psutil.AccessDenied):
            return False
        return ppid <= 1 or not psutil.pid_exists(ppid)

    def terminate(self, pattern: str, scope: TerminationScope) -> int:
        owned = self._owned_pids()
        targets: List[psutil.Process] = []
        for proc in self._matching(pattern):
            if scope is TerminationScope.OWNED and proc.pid in owned:
                targets.append(proc)
            elif scope is TerminationScope.ORPHANED and proc.pid not in owned and self._is_orphaned(proc):
                targets.append(proc)

        signalled = []
        for proc in targets:
            try:
                proc.terminate()
                signalled.append(proc)
            except (psutil.NoSuchProcess, psutil.AccessDenied) as e:
                log(f"Could not terminate pid {proc.pid}: {e}", level="debug")

        _, alive = psutil.wait_procs(signalled, timeout=TERMINATE_GRACE_SECONDS)
        for proc in alive:
            try:
                proc.kill()
            except psutil.NoSuchProcess:
                pass
            except psutil.AccessDenied as e:
                log(f"Could not kill pid {proc.pid}: {e}", level="warning")

        if signalled:
            log(f"Terminated {len(signalled)} {scope.value} engine processes", level="warning",
                pattern=pattern, pids=[p.pid for p in signalled])
        return len(signalled)
