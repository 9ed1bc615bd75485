"""
FoundryBot.construction — what to build next, and actually queueing it.

Public API
----------
    from FoundryBot.construction import (
        ConstructionTask,
        ConstructionPlan,
        ConstructionTaskGenerator,
        ConstructionExecutor,
        ConstructionHost,
        PlacementResult,
    )
"""

from FoundryBot.construction.executor import (
    ConstructionExecutor,
    ExecutionReport,
    ExecutorConfig,
)
from FoundryBot.construction.host import ConstructionHost, PlacementResult
from FoundryBot.construction.task_generator import ConstructionTaskGenerator, TaskConfig
from FoundryBot.construction.tasks import (
    ConstructionPlan,
    ConstructionTask,
    DependencyKind,
    FailureKind,
    PriorityBucket,
)

__all__ = [
    "ConstructionExecutor",
    "ExecutionReport",
    "ExecutorConfig",
    "ConstructionHost",
    "PlacementResult",
    "ConstructionTaskGenerator",
    "TaskConfig",
    "ConstructionPlan",
    "ConstructionTask",
    "DependencyKind",
    "FailureKind",
    "PriorityBucket",
]
