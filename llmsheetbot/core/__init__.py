"""Core scheduling components for LLMSheetBot."""

from .answers import has_answer
from .lease import ClaimDecision, ExclusiveControlManager
from .markers import LeaseMarker
from .metrics import MetricsTracker
from .retry_manager import RetryManager, RetryPassResult
from .scheduler import GroupScheduler, RunOptions, SchedulerSettings, SchedulerStatus
from .shutdown import GracefulShutdown
from .slot_pool import ExecutionSlot, ExecutionSlotPool
from .structure import StructureAnalyzer
from .task_generator import TaskGenerator

__all__ = [
    "has_answer",
    "ClaimDecision",
    "ExclusiveControlManager",
    "LeaseMarker",
    "MetricsTracker",
    "RetryManager",
    "RetryPassResult",
    "GroupScheduler",
    "RunOptions",
    "SchedulerSettings",
    "SchedulerStatus",
    "GracefulShutdown",
    "ExecutionSlot",
    "ExecutionSlotPool",
    "StructureAnalyzer",
    "TaskGenerator",
]
