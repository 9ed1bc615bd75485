"""
Layout rendering — draw a LayoutPlan over room terrain as a PNG.

One marker style per structure category, terrain as a greyscale image
underneath, the anchor and strategic features highlighted, and optionally
the traffic heat as a translucent overlay. Useful for eyeballing a layout
after run.py; nothing in the planning path depends on it.
"""

from __future__ import annotations

from pathlib import Path
from typing import Dict, Optional, Tuple

import numpy as np

from FoundryBot.logger import get_logger
from FoundryBot.planning.layout import LayoutPlan
from FoundryBot.room_state import ROOM_SIZE, TERRAIN_SWAMP, TERRAIN_WALL, RoomSnapshot, StructureKind

log = get_logger()

# ── optional deps (graceful import) ──────────────────────────────────────────
try:
    import matplotlib
    matplotlib.use("Agg")
    import matplotlib.pyplot as plt
    HAS_MPL = True
except ImportError:
    HAS_MPL = False
    log.warning("matplotlib not installed – layout renders will be skipped.")

# kind → (marker, colour, size)
_STYLE: Dict[StructureKind, Tuple[str, str, int]] = {
    StructureKind.ROAD:        ("s", "#8c8c8c", 18),
    StructureKind.EXTENSION:   ("o", "#f2c14e", 30),
    StructureKind.SPAWN:       ("*", "#e4572e", 120),
    StructureKind.STORAGE:     ("D", "#4c956c", 80),
    StructureKind.TERMINAL:    ("D", "#2c6e49", 80),
    StructureKind.TOWER:       ("^", "#d1495b", 70),
    StructureKind.LAB:         ("h", "#7b2cbf", 50),
    StructureKind.LINK:        ("d", "#00a6fb", 50),
    StructureKind.FACTORY:     ("P", "#6c757d", 70),
    StructureKind.POWER_SPAWN: ("X", "#9d0208", 70),
    StructureKind.OBSERVER:    ("p", "#3a86ff", 60),
    StructureKind.NUKER:       ("v", "#000000", 70),
    StructureKind.RAMPART:     ("s", "#2a9d8f", 40),
    StructureKind.WALL:        ("s", "#264653", 40),
}


def render_layout(
    plan: LayoutPlan,
    snapshot: RoomSnapshot,
    out: Path,
    traffic: Optional[np.ndarray] = None,
) -> Optional[Path]:
    """Write the layout to `out` and return the path, or None without matplotlib."""
    if not HAS_MPL:
        return None

    grid = snapshot.terrain.grid
    image = np.full((ROOM_SIZE, ROOM_SIZE), 0.92)
    image[grid == TERRAIN_SWAMP] = 0.7
    image[grid == TERRAIN_WALL] = 0.15

    fig, ax = plt.subplots(figsize=(8, 8))
    ax.imshow(image, cmap="gray", vmin=0, vmax=1, origin="upper")
    if traffic is not None and np.any(traffic):
        ax.imshow(np.ma.masked_where(traffic <= 0, traffic), cmap="hot", alpha=0.45, origin="upper")

    by_kind: Dict[StructureKind, list] = {}
    for kind, pos in plan.placements():
        by_kind.setdefault(kind, []).append(pos)

    for kind, positions in by_kind.items():
        marker, colour, size = _STYLE.get(kind, ("o", "#444444", 30))
        ax.scatter([p.x for p in positions], [p.y for p in positions],
                   marker=marker, c=colour, s=size, label=f"{kind.value} ({len(positions)})")

    ax.scatter([plan.anchor.x], [plan.anchor.y], marker="+", c="#ff006e", s=200, label="anchor")
    for src in snapshot.sources:
        ax.scatter([src.pos.x], [src.pos.y], marker="o", c="#ffd60a", edgecolors="k", s=90)
    if snapshot.controller is not None:
        ax.scatter([snapshot.controller.x], [snapshot.controller.y], marker="o", c="#3a0ca3", s=90)

    ax.set_xlim(-0.5, ROOM_SIZE - 0.5)
    ax.set_ylim(ROOM_SIZE - 0.5, -0.5)
    ax.set_title(f"{snapshot.name} layout v{plan.version} (tick {plan.generated_at})")
    ax.legend(loc="upper left", bbox_to_anchor=(1.01, 1.0), fontsize=7)
    fig.tight_layout()

    out = Path(out)
    out.parent.mkdir(parents=True, exist_ok=True)
    fig.savefig(out, dpi=120)
    plt.close(fig)
    log.info("Layout render: %s", out)
    return out
