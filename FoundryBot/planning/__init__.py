"""
FoundryBot.planning — where things go.

Public API
----------
    from FoundryBot.planning import (
        AnchorSelector,
        LayoutGenerator,
        LayoutPlan,
        PathCache,
        TrafficTracker,
    )
"""

from FoundryBot.planning.anchor import AnchorConfig, AnchorSelector
from FoundryBot.planning.layout import (
    LAYOUT_SCHEMA_VERSION,
    LayoutConfig,
    LayoutGenerator,
    LayoutPlan,
)
from FoundryBot.planning.path_cache import PathCache, PathCacheConfig
from FoundryBot.planning.traffic import TrafficConfig, TrafficTracker

__all__ = [
    "AnchorConfig",
    "AnchorSelector",
    "LAYOUT_SCHEMA_VERSION",
    "LayoutConfig",
    "LayoutGenerator",
    "LayoutPlan",
    "PathCache",
    "PathCacheConfig",
    "TrafficConfig",
    "TrafficTracker",
]
