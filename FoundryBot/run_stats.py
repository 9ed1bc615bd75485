"""
RunStatsTracker — end-of-run construction metrics.

Accumulates what the executor did across a run and writes a formatted
summary to the log when the run ends. The summary is emitted as a
RUN_STATS plan event so it appears at PLAN level in the log file and is
easy to grep.

Tracked statistics
------------------
  sites_placed      Sites queued from the plan, per structure kind.
  heat_roads        Opportunistic road sites from traffic.
  roads_removed     Roads destroyed or cancelled to clear a structure tile.
  emergency_ticks   Ticks a room spent in emergency mode.
  throttled_ticks   Ticks the global ceiling left no budget at all.
  rejected          Sites the host refused.
  planning_failures Ticks a room could not find an anchor.
  built             Sites the host reports as finished.

Integration
-----------
    stats = RunStatsTracker()
    for result in planner.on_tick(snapshots).values():
        stats.record(result)
    stats.record_built(finished_sites)
    stats.finalize(end_tick)
"""

from __future__ import annotations

from collections import Counter
from typing import TYPE_CHECKING, Iterable, Optional

from FoundryBot.construction.tasks import FailureKind
from FoundryBot.logger import get_logger

log = get_logger()

if TYPE_CHECKING:
    from FoundryBot.colony_planner import RoomTickResult
    from FoundryBot.simulation import SimSite


class RunStatsTracker:

    def __init__(self) -> None:
        self.sites_placed: Counter = Counter()
        self.built: Counter = Counter()
        self.heat_roads: int = 0
        self.roads_removed: int = 0
        self.emergency_ticks: int = 0
        self.throttled_ticks: int = 0
        self.rejected: int = 0
        self.planning_failures: int = 0
        self.ticks: int = 0

    def record(self, result: "RoomTickResult") -> None:
        self.ticks += 1
        if result.failure is FailureKind.PLANNING_FAILURE:
            self.planning_failures += 1
        report = result.report
        if report is None:
            return
        for task in report.placed:
            self.sites_placed[task.kind.value] += 1
        self.heat_roads += len(report.heat_roads)
        self.roads_removed += len(report.removed)
        if report.emergency:
            self.emergency_ticks += 1
        if report.global_remaining <= 0 and not report.emergency:
            self.throttled_ticks += 1
        self.rejected += report.failures.get(FailureKind.PLACEMENT_REJECTED, 0)

    def record_built(self, sites: Iterable["SimSite"]) -> None:
        for site in sites:
            self.built[site.kind.value] += 1

    def finalize(self, end_tick: Optional[int] = None) -> str:
        placed = ", ".join(f"{k}={v}" for k, v in sorted(self.sites_placed.items())) or "none"
        built = ", ".join(f"{k}={v}" for k, v in sorted(self.built.items())) or "none"
        lines = [
            "",
            "═" * 52,
            "  RUN STATS",
            "═" * 52,
            f"  Room-ticks          {self.ticks}",
            f"  Sites placed        {sum(self.sites_placed.values())}  ({placed})",
            f"  Traffic roads       {self.heat_roads}",
            f"  Roads removed       {self.roads_removed}",
            f"  Built               {sum(self.built.values())}  ({built})",
            f"  Emergency ticks     {self.emergency_ticks}",
            f"  Throttled ticks     {self.throttled_ticks}",
            f"  Rejected by host    {self.rejected}",
            f"  Planning failures   {self.planning_failures}",
            "═" * 52,
        ]
        text = "\n".join(lines)
        log.plan_event("RUN_STATS", text, tick=end_tick)
        return text
