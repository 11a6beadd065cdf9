"""
Event bus module.

Typed events emitted by the engine: allocation changes, plan recalculation
and execution state changes.
"""
from .bus import (
    AllocationChanged,
    ContributionRecorded,
    EventBus,
    ExecutionStateChanged,
    PlanRecalculated,
)

__all__ = [
    "AllocationChanged",
    "ContributionRecorded",
    "EventBus",
    "ExecutionStateChanged",
    "PlanRecalculated",
]
