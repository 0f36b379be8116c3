"""
Eviction policies.

Pure decision functions over registry snapshots. None of them touch the
registry or the process table; the orchestrator feeds them observations and
acts on the ids they return.
"""

import math
from dataclasses import dataclass
from typing import Iterable, List

from browserwarden.sessions.registry import SessionSnapshot


def idle_candidates(snapshots: Iterable[SessionSnapshot], now: float, timeout: float) -> List[str]:
    """Sessions idle for strictly longer than timeout."""
    return [s.session_id for s in snapshots if now - s.last_activity > timeout]


def eviction_count(total: int, fraction: float) -> int:
    """How many sessions memory pressure closes: floor(fraction * total), at least one."""
    if total <= 0:
        return 0
    return max(1, math.floor(fraction * total))


def memory_pressure_candidates(
    snapshots: Iterable[SessionSnapshot],
    resident_mb: float,
    max_mb: float,
    fraction: float = 0.25,
) -> List[str]:
    """Oldest sessions to close when resident memory exceeds max_mb.

    Ordering is by creation time with creation sequence breaking ties, so
    equal timestamps keep their creation order.
    """
    if resident_mb <= max_mb:
        return []
    ordered = sorted(snapshots, key=lambda s: (s.created_at, s.sequence))
    return [s.session_id for s in ordered[:eviction_count(len(ordered), fraction)]]


@dataclass(frozen=True)
class ZombieVerdict:
    process_count: int
    registry_size: int
    allowed: int

    @property
    def exceeded(self) -> bool:
        return self.process_count > self.allowed

    @property
    def excess(self) -> int:
        return max(0, self.process_count - self.allowed)

    @property
    def zombie_count(self) -> int:
        """Engine processes beyond one per registered session."""
        return max(0, self.process_count - self.registry_size)


def zombie_verdict(process_count: int, registry_size: int, slack_factor: int = 2) -> ZombieVerdict:
    """Compare observed engine processes against slack_factor times the registry size."""
    return ZombieVerdict(
        process_count=process_count,
        registry_size=registry_size,
        allowed=slack_factor * registry_size,
    )
