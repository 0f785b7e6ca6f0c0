"""
Exceptions raised by Story-Explorer.

Structural conditions met during traversal (dead ends, loop closures, budget
limits) are never signalled with exceptions; only the failures below are.
"""

from __future__ import annotations

from typing import Any, Optional


class StoryExplorerError(Exception):
    """Base exception for Story-Explorer errors."""

    pass


class ConfigError(StoryExplorerError):
    """Exception raised when the explorer configuration is invalid."""

    pass


class ObservationError(StoryExplorerError):
    """Raised by a driver when the current scene cannot be observed."""

    pass


class DriverError(StoryExplorerError):
    """Raised by a driver on an unrecoverable condition (browser gone, page closed)."""

    pass


class MetricsFinalizedError(StoryExplorerError):
    """Raised when a state is recorded after the metrics were finalized."""

    pass


class ExplorationAborted(StoryExplorerError):
    """A `DriverError` terminated the run.

    The partial `ExplorationResult` collected before the failure travels with
    the exception so callers can still persist it.
    """

    def __init__(self, cause: BaseException, result: Optional[Any] = None) -> None:
        super().__init__(f"exploration aborted: {cause}")
        self.cause = cause
        self.result = result
