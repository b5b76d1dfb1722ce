"""Retention Reaper: scheduled purge of soft-deleted records.

Usage:
    from custodian.retention import RetentionReaper

    reaper = RetentionReaper(session_factory)
    preview = await reaper.run_purge_cycle(dry_run=True)
    report = await reaper.run_purge_cycle()
    for failure in report.failures:
        alert(failure)
"""

from .reaper import (
    ReaperConfig,
    RetentionReaper,
    get_retention_reaper,
    initialize_retention_reaper,
)
from .types import PurgedItem, PurgeFailure, PurgeReport, SkippedItem

__all__ = [
    "PurgedItem",
    "PurgeFailure",
    "PurgeReport",
    "ReaperConfig",
    "RetentionReaper",
    "SkippedItem",
    "get_retention_reaper",
    "initialize_retention_reaper",
]
