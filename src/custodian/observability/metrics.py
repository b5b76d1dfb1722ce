"""Prometheus metrics for Custodian.

This module provides Prometheus metrics for monitoring:
- Lifecycle transitions (applied/rejected/unchanged per kind and action)
- Optimistic-lock conflicts lost by the Transition Controller
- Retention purge cycles (duration, purged and failed instances)
"""

from __future__ import annotations

import time
from contextlib import contextmanager
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any

from prometheus_client import (
    REGISTRY,
    CollectorRegistry,
    Counter,
    Gauge,
    Histogram,
    generate_latest,
)

from custodian.config.settings import get_settings

if TYPE_CHECKING:
    from collections.abc import Generator

__all__ = [
    "MetricsConfig",
    "MetricsManager",
    "LIFECYCLE_TRANSITIONS",
    "LIFECYCLE_CONFLICTS",
    "PURGE_CYCLE_DURATION",
    "PURGE_CYCLE_IN_PROGRESS",
    "PURGED_COUNT",
    "PURGE_FAILURES",
    "record_transition",
    "record_conflict",
    "observe_purge_cycle",
    "get_metrics",
    "create_metrics_manager",
]


@dataclass
class MetricsConfig:
    """Configuration for Prometheus metrics.

    Attributes:
        enabled: Whether metrics collection is enabled.
        prefix: Prefix for all metric names.
    """

    enabled: bool = True
    prefix: str = "custodian"

    @classmethod
    def from_settings(cls) -> MetricsConfig:
        """Create configuration from application settings."""
        return cls(enabled=get_settings().metrics_enabled)


# Default configuration
_config = MetricsConfig()

# ============================================================================
# Lifecycle Metrics
# ============================================================================

LIFECYCLE_TRANSITIONS = Counter(
    f"{_config.prefix}_lifecycle_transitions_total",
    "Lifecycle transition requests by outcome",
    ["kind", "action", "outcome"],
)

LIFECYCLE_CONFLICTS = Counter(
    f"{_config.prefix}_lifecycle_conflicts_total",
    "Transitions that lost an optimistic-lock race",
    ["kind"],
)

# ============================================================================
# Retention Metrics
# ============================================================================

PURGE_CYCLE_DURATION = Histogram(
    f"{_config.prefix}_purge_cycle_duration_seconds",
    "Time to complete a retention purge cycle",
    ["dry_run"],
    buckets=(0.1, 0.5, 1.0, 5.0, 10.0, 30.0, 60.0, 300.0, 900.0, 3600.0),
)

PURGE_CYCLE_IN_PROGRESS = Gauge(
    f"{_config.prefix}_purge_cycle_in_progress",
    "Whether a retention purge cycle is currently running",
)

PURGED_COUNT = Counter(
    f"{_config.prefix}_purged_total",
    "Instances physically removed by the retention reaper",
    ["kind"],
)

PURGE_FAILURES = Counter(
    f"{_config.prefix}_purge_failures_total",
    "Instances whose purge cascade transaction failed",
    ["kind"],
)

class MetricsManager:
    """Manages Prometheus metrics configuration and export.

    This class handles:
    - Metrics configuration and export
    - Custom registry support for testing
    """

    def __init__(
        self,
        config: MetricsConfig | None = None,
        registry: CollectorRegistry | None = None,
    ) -> None:
        """Initialize the metrics manager.

        Args:
            config: Metrics configuration.
            registry: Optional custom registry for testing.
        """
        self.config = config or MetricsConfig()
        self.registry = registry or REGISTRY

    def get_metrics(self) -> bytes:
        """Generate metrics output in Prometheus format."""
        return generate_latest(self.registry)


# Global metrics manager
_metrics_manager: MetricsManager | None = None


def get_metrics_manager() -> MetricsManager:
    """Get the global metrics manager instance."""
    global _metrics_manager
    if _metrics_manager is None:
        _metrics_manager = MetricsManager(MetricsConfig.from_settings())
    return _metrics_manager


def create_metrics_manager(
    config: MetricsConfig | None = None,
    registry: CollectorRegistry | None = None,
) -> MetricsManager:
    """Create and register a new metrics manager."""
    global _metrics_manager
    _metrics_manager = MetricsManager(config, registry)
    return _metrics_manager


def get_metrics() -> bytes:
    """Get current metrics in Prometheus format."""
    return get_metrics_manager().get_metrics()


def _enabled() -> bool:
    return get_metrics_manager().config.enabled


# ============================================================================
# Convenience Functions for Recording Metrics
# ============================================================================


def record_transition(kind: str, action: str, outcome: str) -> None:
    """Record the outcome of a lifecycle transition request.

    Args:
        kind: Entity kind (customer, warehouse, ...).
        action: Requested action (delete, retire, deactivate, ...).
        outcome: applied, rejected, unchanged or invalid.
    """
    if _enabled():
        LIFECYCLE_TRANSITIONS.labels(kind=kind, action=action, outcome=outcome).inc()


def record_conflict(kind: str) -> None:
    """Record a lost optimistic-lock race."""
    if _enabled():
        LIFECYCLE_CONFLICTS.labels(kind=kind).inc()


@contextmanager
def observe_purge_cycle(dry_run: bool) -> Generator[dict[str, Any], None, None]:
    """Context manager for observing a purge cycle.

    Args:
        dry_run: Whether the cycle issues writes.

    Yields:
        Context dict; set ``purged`` and ``failures`` to per-kind count
        mappings before the block exits.
    """
    enabled = _enabled()
    context: dict[str, Any] = {"purged": {}, "failures": {}}
    if enabled:
        PURGE_CYCLE_IN_PROGRESS.set(1)
    start_time = time.perf_counter()

    try:
        yield context
    finally:
        if enabled:
            duration = time.perf_counter() - start_time
            PURGE_CYCLE_DURATION.labels(dry_run=str(dry_run).lower()).observe(duration)
            PURGE_CYCLE_IN_PROGRESS.set(0)
            if not dry_run:
                for kind, count in context.get("purged", {}).items():
                    PURGED_COUNT.labels(kind=kind).inc(count)
            for kind, count in context.get("failures", {}).items():
                PURGE_FAILURES.labels(kind=kind).inc(count)
