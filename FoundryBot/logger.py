"""
FoundryBot Logger — one log stream per run, keyed by tick.

Every planner module logs through the adapter returned by get_logger().
Calls take an optional `tick=` keyword which lands in a fixed-width column,
so a placement can be lined up with the anchor choice, the layout rebuild
and the budget throttle that led to it.

Usage
-----
    from FoundryBot.logger import get_logger

    log = get_logger()
    log.debug("Budget for %s: %d", room, budget, tick=snapshot.tick)
    log.plan_event("LAYOUT", "W1N1 regenerated (version 3)", tick=1234)
    log.placement("W1N1", "extension", (27, 21), "OK", tick=1234)

Two levels sit beside the standard ones: PLAN for decisions that change
what a room is going to build, and PLACE for individual host calls (too
chatty for the console, kept in the file).

Output goes to logs/foundry_<timestamp>.log (rotating) and to stdout.
"""

from __future__ import annotations

import logging
import logging.handlers
import sys
from datetime import datetime
from pathlib import Path
from typing import Any, MutableMapping, Optional, Tuple


# ── Configuration ────────────────────────────────────────────────────────────

LOG_DIR          = Path("logs")          # relative to the working directory
FILE_LEVEL       = logging.DEBUG
CONSOLE_LEVEL    = logging.INFO
LOG_BACKUP_COUNT = 10
MAX_BYTES        = 5 * 1024 * 1024


# ── Planner levels ───────────────────────────────────────────────────────────

PLAN_EVENT_LEVEL = 25   # INFO < PLAN < WARNING
PLACEMENT_LEVEL  = 15   # DEBUG < PLACE < INFO

logging.addLevelName(PLAN_EVENT_LEVEL, "PLAN")
logging.addLevelName(PLACEMENT_LEVEL,  "PLACE")


class FoundryFormatter(logging.Formatter):
    """
    Example output:
        2026-10-19 21:14:03.412 | INFO    |        - | Run started
        2026-10-19 21:14:05.001 | PLAN    |     1280 | ANCHOR | W1N1 → (24, 26) score=9.4
        2026-10-19 21:14:05.002 | PLACE   |     1280 | W1N1 extension @ (27, 21) → OK
    """

    BASE_FMT = "%(asctime)s.%(msecs)03d | %(levelname)-7s | %(tick_col)8s | %(message)s"
    DATE_FMT = "%Y-%m-%d %H:%M:%S"

    def format(self, record: logging.LogRecord) -> str:
        tick = getattr(record, "tick", None)
        record.tick_col = "-" if tick is None else str(tick)
        return super().format(record)


class FoundryLogger(logging.LoggerAdapter):
    """Moves the `tick=` keyword into the record and adds the planner levels."""

    def process(self, msg: Any, kwargs: MutableMapping[str, Any]) -> Tuple[Any, MutableMapping[str, Any]]:
        tick = kwargs.pop("tick", None)
        extra = dict(kwargs.get("extra") or {})
        extra.setdefault("tick", tick)
        kwargs["extra"] = extra
        return msg, kwargs

    def plan_event(self, event_type: str, detail: str, tick: Optional[int] = None) -> None:
        """
        A decision that changes what a room builds: anchor choice, layout
        rebuild, emergency mode, level change, run summary.
        """
        self.log(PLAN_EVENT_LEVEL, "%s | %s", event_type.upper(), detail, tick=tick)

    def placement(
        self,
        room: str,
        kind: str,
        pos: Tuple[int, int],
        outcome: str,
        tick: Optional[int] = None,
        reason: Optional[str] = None,
    ) -> None:
        suffix = f" ({reason})" if reason else ""
        self.log(PLACEMENT_LEVEL, "%s %s @ (%d, %d) → %s%s",
                 room, kind, pos[0], pos[1], outcome, suffix, tick=tick)


# ── Factory ──────────────────────────────────────────────────────────────────

_instance: Optional[FoundryLogger] = None


def get_logger(name: str = "foundry") -> FoundryLogger:
    """Shared adapter; handlers are attached on the first call."""
    global _instance
    if _instance is None:
        base = logging.getLogger(name)
        base.setLevel(FILE_LEVEL)
        if not base.handlers:
            _attach_handlers(base)
        _instance = FoundryLogger(base, {})
    return _instance


def _attach_handlers(base: logging.Logger) -> None:
    LOG_DIR.mkdir(parents=True, exist_ok=True)
    log_file = LOG_DIR / f"foundry_{datetime.now():%Y%m%d_%H%M%S}.log"
    formatter = FoundryFormatter(fmt=FoundryFormatter.BASE_FMT, datefmt=FoundryFormatter.DATE_FMT)

    file_handler = logging.handlers.RotatingFileHandler(
        filename    = log_file,
        maxBytes    = MAX_BYTES,
        backupCount = LOG_BACKUP_COUNT,
        encoding    = "utf-8",
    )
    file_handler.setLevel(FILE_LEVEL)
    file_handler.setFormatter(formatter)

    console_handler = logging.StreamHandler(sys.stdout)
    console_handler.setLevel(CONSOLE_LEVEL)
    console_handler.setFormatter(formatter)

    base.addHandler(file_handler)
    base.addHandler(console_handler)
    base.info("Logging to %s", log_file.resolve(), extra={"tick": None})
