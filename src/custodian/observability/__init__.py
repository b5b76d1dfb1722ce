"""Observability module for Custodian.

Usage:
    from custodian.observability import observe_purge_cycle, record_transition

    record_transition(kind="warehouse", action="delete", outcome="applied")

    with observe_purge_cycle(dry_run=False) as ctx:
        report = await reaper.run_purge_cycle()
        ctx["purged"] = report.purged_by_kind()
"""

from .metrics import (
    LIFECYCLE_CONFLICTS,
    LIFECYCLE_TRANSITIONS,
    PURGE_CYCLE_DURATION,
    PURGE_CYCLE_IN_PROGRESS,
    PURGE_FAILURES,
    PURGED_COUNT,
    MetricsConfig,
    MetricsManager,
    create_metrics_manager,
    get_metrics,
    get_metrics_manager,
    observe_purge_cycle,
    record_conflict,
    record_transition,
)

__all__ = [
    "LIFECYCLE_CONFLICTS",
    "LIFECYCLE_TRANSITIONS",
    "PURGE_CYCLE_DURATION",
    "PURGE_CYCLE_IN_PROGRESS",
    "PURGE_FAILURES",
    "PURGED_COUNT",
    "MetricsConfig",
    "MetricsManager",
    "create_metrics_manager",
    "get_metrics",
    "get_metrics_manager",
    "observe_purge_cycle",
    "record_conflict",
    "record_transition",
]
