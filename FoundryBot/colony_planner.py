"""
ColonyPlanner — the per-tick loop that ties every stage together.

The core loop, once per tick:
  1. Record unit movement into each room's traffic map
  2. Honour operator replan requests
  3. Anchor  → Layout (cached) → Tasks → Plan → Executor, room by room

Rooms are processed sequentially. The only state shared between rooms is
the outstanding-site counter: it starts from the host's global count and
grows as each room places sites, so a later room sees the budget an earlier
room already spent.

A failure inside one room never stops the tick. Planning failures (no
anchor) are logged and the room waits for the next tick; anything
unexpected is logged with its traceback and the loop moves on.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Dict, Iterable, Optional

from FoundryBot.construction.executor import ConstructionExecutor, ExecutionReport, ExecutorConfig
from FoundryBot.construction.host import ConstructionHost
from FoundryBot.construction.task_generator import ConstructionTaskGenerator, TaskConfig
from FoundryBot.construction.tasks import ConstructionPlan, FailureKind
from FoundryBot.logger import get_logger
from FoundryBot.planning.anchor import AnchorConfig, AnchorSelector
from FoundryBot.planning.layout import LayoutConfig, LayoutGenerator, LayoutPlan
from FoundryBot.planning.path_cache import PathCache, PathCacheConfig
from FoundryBot.planning.traffic import TrafficConfig, TrafficTracker
from FoundryBot.room_state import RoomPosition, RoomSnapshot
from FoundryBot.storage import REPLAN_KEY, KeyValueRepository

log = get_logger()


@dataclass
class RoomTickResult:
    room: str
    anchor: Optional[RoomPosition] = None
    layout: Optional[LayoutPlan] = None
    plan: Optional[ConstructionPlan] = None
    report: Optional[ExecutionReport] = None
    failure: Optional[FailureKind] = None


def request_replan(repo: KeyValueRepository, room: str) -> None:
    """Operator hook: drop the room's anchor, layout and routes on its next tick."""
    repo.set(room, REPLAN_KEY, True)
    log.info("Replan requested for %s", room)


class ColonyPlanner:
    """
    Owns one instance of every planner stage. Inject the repository and
    host; every stage's config is optional.
    """

    def __init__(
        self,
        repo: KeyValueRepository,
        host: ConstructionHost,
        anchor_config: Optional[AnchorConfig] = None,
        layout_config: Optional[LayoutConfig] = None,
        path_config: Optional[PathCacheConfig] = None,
        traffic_config: Optional[TrafficConfig] = None,
        task_config: Optional[TaskConfig] = None,
        executor_config: Optional[ExecutorConfig] = None,
    ) -> None:
        self.repo = repo
        self.host = host
        self.anchors = AnchorSelector(repo, anchor_config)
        self.layouts = LayoutGenerator(repo, layout_config)
        self.paths = PathCache(repo, path_config)
        self.traffic = TrafficTracker(repo, traffic_config)
        self.tasks = ConstructionTaskGenerator(self.paths, task_config)
        self.executor = ConstructionExecutor(host, self.traffic, executor_config)

        self.last_results: Dict[str, RoomTickResult] = {}

    # ── Main loop ─────────────────────────────────────────────────────────────

    def on_tick(self, snapshots: Iterable[RoomSnapshot]) -> Dict[str, RoomTickResult]:
        outstanding = self.host.outstanding_sites()
        results: Dict[str, RoomTickResult] = {}

        for snapshot in snapshots:
            try:
                result = self.run_room(snapshot, outstanding)
            except Exception as exc:
                log.exception("Room %s failed this tick: %s", snapshot.name, exc, tick=snapshot.tick)
                continue
            if result.report is not None:
                outstanding += result.report.sites_placed
            results[snapshot.name] = result

        self.last_results.update(results)
        return results

    def run_room(self, snapshot: RoomSnapshot, outstanding_sites: int) -> RoomTickResult:
        result = RoomTickResult(room=snapshot.name)
        if snapshot.controller is None:
            return result

        self.traffic.update(snapshot)
        self._honour_replan(snapshot)

        anchor = self.anchors.select(snapshot)
        if anchor is None:
            result.failure = FailureKind.PLANNING_FAILURE
            return result
        result.anchor = anchor

        result.layout = self.layouts.get_or_generate(snapshot, anchor)
        result.plan = self.tasks.build_plan(snapshot, result.layout)
        result.report = self.executor.execute(snapshot, result.plan, outstanding_sites)
        return result

    # ── Operator helpers ──────────────────────────────────────────────────────

    def request_replan(self, room: str) -> None:
        request_replan(self.repo, room)

    def status(self, room: str) -> str:
        """One-line human summary of the last tick for a room."""
        result = self.last_results.get(room)
        if result is None:
            return f"{room}: not planned yet"
        if result.failure is not None:
            return f"{room}: {result.failure.name}"
        parts = [f"{room}: anchor={result.anchor}"]
        if result.layout is not None:
            parts.append(f"layout v{result.layout.version} @ tick {result.layout.generated_at}")
        if result.plan is not None:
            parts.append(f"tasks={result.plan.metrics.total_tasks}")
        if result.report is not None:
            parts.append(f"placed={result.report.sites_placed}")
            if result.report.emergency:
                parts.append("EMERGENCY")
        return " | ".join(parts)

    def _honour_replan(self, snapshot: RoomSnapshot) -> None:
        if not self.repo.get(snapshot.name, REPLAN_KEY):
            return
        self.anchors.forget(snapshot.name)
        self.layouts.invalidate(snapshot.name)
        self.paths.invalidate(snapshot.name)
        self.repo.delete(snapshot.name, REPLAN_KEY)
        log.plan_event("REPLAN", f"{snapshot.name} anchor, layout and routes cleared", tick=snapshot.tick)
