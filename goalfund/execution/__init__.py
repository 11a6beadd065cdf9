"""
Execution tracking.

Month lifecycle (draft, executing, closed) with undo windows, contribution
totals and the progress display.
"""

from .progress import ExecutionDisplay, ExecutionProgressView, GoalProgressRow
from .tracker import ExecutionTracker
from .transitions import ExecutionTransitionHandler, ExecutionTrigger

__all__ = [
    "ExecutionDisplay",
    "ExecutionProgressView",
    "ExecutionTracker",
    "ExecutionTransitionHandler",
    "ExecutionTrigger",
    "GoalProgressRow",
]
