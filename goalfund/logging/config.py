"""
Centralized logging configuration for the goal planning engine.

This module provides standardized logging configuration using structlog
for all components. All logging throughout the system should use this
configuration to ensure consistent formatting and structured logging.
"""
import logging
import sys
from typing import Any, Optional

import structlog
from structlog.types import FilteringBoundLogger


def configure_logging(
    level: str = "INFO",
    format_json: bool = False,
    include_timestamp: bool = True,
    include_caller: bool = False,
    extra_processors: Optional[list] = None
) -> None:
    """
    Configure structlog for the entire application.

    Args:
        level: Logging level (DEBUG, INFO, WARNING, ERROR, CRITICAL)
        format_json: If True, output JSON format; otherwise human-readable
        include_timestamp: Include timestamp in log output
        include_caller: Include caller information (filename, line number)
        extra_processors: Additional structlog processors to include
    """
    log_level = getattr(logging, level.upper())

    logging.basicConfig(
        level=log_level,
        stream=sys.stdout,
        format="%(message)s"  # structlog handles formatting
    )

    processors = [
        structlog.stdlib.filter_by_level,
        structlog.stdlib.add_logger_name,
        structlog.stdlib.add_log_level,
        structlog.stdlib.PositionalArgumentsFormatter(),
        structlog.processors.StackInfoRenderer(),
        structlog.processors.format_exc_info,
        structlog.processors.UnicodeDecoder(),
    ]

    if include_timestamp:
        processors.append(structlog.processors.TimeStamper(fmt="iso"))

    if include_caller:
        processors.append(structlog.processors.CallsiteParameterAdder(
            parameters=[structlog.processors.CallsiteParameter.FILENAME,
                        structlog.processors.CallsiteParameter.LINENO]
        ))

    if extra_processors:
        processors.extend(extra_processors)

    if format_json:
        processors.append(structlog.processors.JSONRenderer())
    else:
        processors.append(structlog.dev.ConsoleRenderer(colors=True))

    structlog.configure(
        processors=processors,
        wrapper_class=structlog.stdlib.BoundLogger,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )


def get_logger(name: str) -> FilteringBoundLogger:
    """
    Get a configured structlog logger instance.

    Args:
        name: Logger name (typically __name__)

    Returns:
        Configured structlog logger instance
    """
    return structlog.get_logger(name)


def get_ledger_logger(name: str) -> FilteringBoundLogger:
    """
    Get a logger for allocation ledger mutations.

    Every ledger mutation is part of the audit trail, so the logger is bound
    with the ledger subsystem and the audit flag.

    Args:
        name: Logger name (typically __name__)

    Returns:
        Configured structlog logger for ledger changes
    """
    return get_logger(name).bind(
        subsystem="ledger",
        audit_trail=True
    )


def get_state_logger(name: str) -> FilteringBoundLogger:
    """
    Get a logger for execution record state transitions.

    Args:
        name: Logger name (typically __name__)

    Returns:
        Configured structlog logger for state transitions
    """
    return get_logger(name).bind(
        subsystem="execution",
        audit_trail=True
    )


def log_allocation_change(
    logger: FilteringBoundLogger,
    asset_id: str,
    goal_id: str,
    old_amount: float,
    new_amount: float,
    operation: str,
    context: Optional[dict[str, Any]] = None
) -> None:
    """
    Log an allocation change with standardized format.

    Args:
        logger: Structlog logger instance
        asset_id: Asset whose balance is apportioned
        goal_id: Goal receiving the allocation
        old_amount: Amount before the change
        new_amount: Amount after the change
        operation: Ledger operation that produced the change
        context: Additional context data
    """
    bound_logger = logger.bind(
        asset_id=asset_id,
        goal_id=goal_id,
        old_amount=old_amount,
        new_amount=new_amount,
        operation=operation,
        event_type="allocation_change"
    )

    if context:
        bound_logger = bound_logger.bind(context=context)

    bound_logger.info("Allocation changed")


def log_state_transition(
    logger: FilteringBoundLogger,
    record_id: str,
    month_label: str,
    from_state: str,
    to_state: str,
    trigger: str,
    context: Optional[dict[str, Any]] = None
) -> None:
    """
    Log an execution record state transition with standardized format.

    Args:
        logger: Structlog logger instance
        record_id: ID of the execution record transitioning
        month_label: Month the record tracks
        from_state: Current state
        to_state: Target state
        trigger: What triggered the transition
        context: Additional context data
    """
    bound_logger = logger.bind(
        record_id=record_id,
        month_label=month_label,
        from_state=from_state,
        to_state=to_state,
        trigger=trigger,
        event_type="state_transition"
    )

    if context:
        bound_logger = bound_logger.bind(context=context)

    bound_logger.info("State transition")
