"""
Run script for the Foundry planner using config.py settings.

Plays a synthetic room forward tick by tick: the planner places sites,
the simulated host builds them, haulers walk their routes, and the
controller levels up on the schedule in config.py.
"""

import argparse
from pathlib import Path

from FoundryBot.colony_planner import ColonyPlanner
from FoundryBot.logger import get_logger
from FoundryBot.run_stats import RunStatsTracker
from FoundryBot.simulation import SimulatedHost, synthetic_room
from FoundryBot.storage import InMemoryRepository, JsonFileRepository
from config import (
    BUILD_PER_BUILDER,
    BUILDER_COUNT,
    ENERGY_FILL,
    ENERGY_STORED,
    LEVEL_SCHEDULE,
    NET_ENERGY_TREND,
    RENDER_LAYOUT,
    RENDER_PATH,
    ROOM_NAME,
    ROOM_SEED,
    STATE_FILE,
    STATUS_EVERY,
    THREAT_SCORE,
    TICKS,
)

log = get_logger()


def parse_args():
    parser = argparse.ArgumentParser(description="Play a synthetic room through the construction planner.")
    parser.add_argument("--ticks", type=int, default=TICKS)
    parser.add_argument("--seed", type=int, default=ROOM_SEED)
    parser.add_argument("--room", default=ROOM_NAME)
    parser.add_argument("--state", default=STATE_FILE, help="JSON file for planner state")
    parser.add_argument("--no-render", action="store_true", help="skip the layout PNG")
    return parser.parse_args()


def main():
    """Run a single simulated colony"""
    args = parse_args()

    log.info("=" * 50)
    log.info("Foundry planner: %s (seed %d, %d ticks)", args.room, args.seed, args.ticks)
    log.info("=" * 50)

    repo = JsonFileRepository(Path(args.state)) if args.state else InMemoryRepository()
    host = SimulatedHost(build_per_builder=BUILD_PER_BUILDER)
    room = host.add_room(synthetic_room(args.room, seed=args.seed))
    room.builder_count = BUILDER_COUNT
    room.energy_stored = ENERGY_STORED
    room.net_energy_trend = NET_ENERGY_TREND
    room.energy_fill = ENERGY_FILL
    room.threat_score = THREAT_SCORE

    planner = ColonyPlanner(repo, host)
    stats = RunStatsTracker()
    walkers_from = None

    for tick in range(args.ticks):
        if tick in LEVEL_SCHEDULE:
            room.controller_level = LEVEL_SCHEDULE[tick]
            log.plan_event("LEVEL", f"{room.name} reached level {room.controller_level}", tick=tick)

        results = planner.on_tick([host.snapshot(room.name, tick)])
        for result in results.values():
            stats.record(result)
            if result.anchor is not None and result.anchor != walkers_from:
                host.spawn_walkers(room.name, result.anchor)
                walkers_from = result.anchor

        stats.record_built(host.advance(room.name))

        if STATUS_EVERY and tick % STATUS_EVERY == 0:
            log.info(planner.status(room.name), tick=tick)

    stats.finalize(args.ticks)

    if isinstance(repo, JsonFileRepository):
        repo.flush()

    if RENDER_LAYOUT and not args.no_render:
        from FoundryBot.visuals import render_layout

        result = planner.last_results.get(room.name)
        if result is not None and result.layout is not None:
            render_layout(
                result.layout,
                host.snapshot(room.name, args.ticks),
                Path(RENDER_PATH),
                traffic=planner.traffic.grid(room.name),
            )

    log.info("Run finished!")


if __name__ == "__main__":
    try:
        main()
    except KeyboardInterrupt:
        log.info("Run stopped by user")
    except Exception as e:
        log.exception("Unexpected error in main: %s", e)
