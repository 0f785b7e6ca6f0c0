from __future__ import annotations

"""The exploration loop: depth-first traversal of a story with backtracking."""

import asyncio
import logging
import time
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Dict, List, Optional, TypeVar

from .driver import Observation, StoryDriver
from .exceptions import DriverError, ExplorationAborted, ObservationError
from .knowledge import ChoiceDescriptor, ExplorationBudgets, ExplorationSession, StateNode
from .metrics import MetricsAccumulator, MetricsReport
from .quality import QualityReport, QualityThresholds, assess_quality, compose_report
from .state_matcher import IdentityMode, StateMatcher

logger = logging.getLogger(__name__)

T = TypeVar("T")


@dataclass
class ExplorationResult:
    session: ExplorationSession
    metrics: MetricsReport
    quality: QualityReport
    report: Dict[str, Any]


class ExplorationAgent:
    """Single-threaded depth-first explorer over one `StoryDriver`.

    Every call to `explore()` starts a fresh `ExplorationSession`, so one agent
    can be reused for several runs without state leaking between them. The
    driver must not be touched by anything else while a run is in progress.
    """

    def __init__(
        self,
        driver: StoryDriver,
        budgets: Optional[ExplorationBudgets] = None,
        identity_mode: "str | IdentityMode" = IdentityMode.CONTENT_ONLY,
        thresholds: Optional[QualityThresholds] = None,
        snippet_length: int = 500,
        history_snippet_length: int = 200,
        cleanup_interval: int = 100,
        retain_full_content: bool = True,
        include_detailed: bool = True,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._driver = driver
        self._budgets = budgets or ExplorationBudgets()
        self._matcher = StateMatcher(identity_mode)
        self._thresholds = thresholds or QualityThresholds()
        self._snippet_length = snippet_length
        self._history_snippet_length = history_snippet_length
        self._cleanup_interval = cleanup_interval
        self._retain_full_content = retain_full_content
        self._include_detailed = include_detailed
        self._clock = clock

    @property
    def identity_mode(self) -> IdentityMode:
        return self._matcher.mode

    # ------------------------------------------------------------------
    async def explore(self) -> ExplorationResult:
        """Entry-point: explore everything reachable from the driver's current scene.

        Raises `ExplorationAborted` (carrying the partial result) when the
        driver fails unrecoverably.
        """
        session = ExplorationSession(
            budgets=self._budgets,
            metrics=MetricsAccumulator(clock=self._clock),
        )
        logger.info(
            "Starting exploration (identity=%s, max_depth=%d, max_states=%d)",
            self._matcher.mode.value,
            self._budgets.max_depth,
            self._budgets.max_states,
        )
        try:
            await self.explore_state(session, [])
        except DriverError as exc:
            logger.error("Driver failed, aborting exploration: %s", exc)
            raise ExplorationAborted(exc, self._finish(session)) from exc

        result = self._finish(session)
        logger.info(
            "Exploration finished: %d states, %d loops, %d dead ends, %d errors",
            result.metrics.total_states,
            result.metrics.loop_closures,
            result.metrics.dead_ends,
            result.metrics.error_states,
        )
        return result

    async def explore_state(
        self, session: ExplorationSession, path: List[str], via: Optional[str] = None
    ) -> None:
        """Explore the scene the driver currently shows, reached through `path`."""
        depth = len(path)
        if self._budget_exhausted(session, depth):
            session.metrics.record_truncation()
            logger.info("Budget reached at depth %d, branch truncated", depth)
            return

        try:
            observation: Observation = await self._bounded(self._driver.observe)
        except (ObservationError, asyncio.TimeoutError) as exc:
            logger.warning("Could not observe scene at depth %d: %s", depth, str(exc) or "timeout")
            session.metrics.record("", 0, depth, None, is_error=True)
            return

        fingerprint = self._matcher.signature(observation.content, observation.labels, path)
        logger.debug(
            "Scene at depth %d: %d choices (%s)", depth, len(observation.choices), fingerprint[:8]
        )
        if via is not None:
            session.graph.add_transition(path[-1], via, fingerprint)

        session.metrics.record(observation.content, len(observation.choices), depth, fingerprint)

        if session.is_visited(fingerprint):
            logger.info("Loop closure at depth %d (%s)", depth, fingerprint[:8])
            return

        node = StateNode(
            fingerprint=fingerprint,
            depth=depth,
            path=list(path),
            content_snippet=observation.content[: self._snippet_length],
            choices=[ChoiceDescriptor(label=c.label) for c in observation.choices],
            content=observation.content if self._retain_full_content else None,
        )
        session.register(node, history_snippet=self._history_snippet_length)
        self._maybe_cleanup(session, fingerprint)

        if not observation.choices:
            logger.info("Dead end at depth %d", depth)
            return

        if depth + 1 > self._budgets.max_depth:
            for _ in observation.choices:
                session.metrics.record_truncation()
            logger.info("Maximum depth %d reached, %d choices not followed", depth, len(observation.choices))
            return

        session.path_stack.append(fingerprint)
        try:
            await self._expand(session, path, node, observation)
        finally:
            session.path_stack.pop()

    async def _expand(
        self, session: ExplorationSession, path: List[str], node: StateNode, observation: Observation
    ) -> None:
        child_path = path + [node.fingerprint]
        child_depth = len(child_path)
        total = len(observation.choices)

        for index, (choice, descriptor) in enumerate(zip(observation.choices, node.choices), start=1):
            if self._budget_exhausted(session, child_depth):
                session.metrics.record_truncation()
                continue

            logger.debug("Choice %d/%d at depth %d: %r", index, total, node.depth, choice.label[:50])
            if not await self._commit(choice.handle):
                logger.warning("Could not commit choice %r at depth %d", choice.label, node.depth)
                session.metrics.record("", 0, child_depth, None, is_error=True)
                continue
            descriptor.committed = True

            await self._settle()
            await self.explore_state(session, child_path, via=choice.label)

            if not await self._revert():
                skipped = total - index
                logger.warning(
                    "Could not restore scene %s at depth %d, skipping %d remaining choice(s)",
                    node.fingerprint[:8],
                    node.depth,
                    skipped,
                )
                break

    # ------------------------------------------------------------------
    # driver calls ------------------------------------------------------

    async def _bounded(self, call: Callable[..., Awaitable[T]], *args: Any) -> T:
        return await asyncio.wait_for(call(*args), timeout=self._budgets.per_action_timeout_s)

    async def _commit(self, handle: Any) -> bool:
        try:
            return bool(await self._bounded(self._driver.commit, handle))
        except asyncio.TimeoutError:
            logger.warning("Commit timed out after %d ms", self._budgets.per_action_timeout)
            return False

    async def _settle(self) -> None:
        try:
            await self._bounded(self._driver.settle)
        except asyncio.TimeoutError:
            logger.warning("Timed out waiting for the scene to settle, continuing")

    async def _revert(self) -> bool:
        try:
            return bool(await self._bounded(self._driver.revert))
        except asyncio.TimeoutError:
            logger.warning("Revert timed out after %d ms", self._budgets.per_action_timeout)
            return False

    # ------------------------------------------------------------------
    # Helpers -----------------------------------------------------------

    def _budget_exhausted(self, session: ExplorationSession, depth: int) -> bool:
        return depth > self._budgets.max_depth or session.states_full()

    def _maybe_cleanup(self, session: ExplorationSession, current: str) -> None:
        if self._cleanup_interval <= 0:
            return
        if len(session.visited) % self._cleanup_interval == 0:
            pruned = session.prune_content(keep=(current,))
            logger.debug("Cleanup after %d states: dropped content of %d", len(session.visited), pruned)

    def _finish(self, session: ExplorationSession) -> ExplorationResult:
        metrics = session.metrics.finalize()
        quality = assess_quality(metrics, self._thresholds)
        report = compose_report(
            session.tree_to_json(),
            metrics,
            quality,
            history=session.history_to_json(),
            include_detailed=self._include_detailed,
        )
        report["transitions"] = session.graph.transitions_to_json()
        report["identity_mode"] = self._matcher.mode.value
        return ExplorationResult(session=session, metrics=metrics, quality=quality, report=report)
