"""
Logging configuration and utilities for the goal planning engine.
"""
from .config import (
    configure_logging,
    get_ledger_logger,
    get_logger,
    get_state_logger,
    log_allocation_change,
    log_state_transition,
)

__all__ = [
    "configure_logging",
    "get_logger",
    "get_ledger_logger",
    "get_state_logger",
    "log_allocation_change",
    "log_state_transition",
]
