import asyncio
from typing import Any, Dict, Iterable, List, Tuple

import pytest

from story_explorer.driver import Observation, ObservedChoice
from story_explorer.exceptions import DriverError, ObservationError
from story_explorer.knowledge import ExplorationBudgets

# scene id -> (text, [(choice label, target scene id), ...])
Story = Dict[str, Tuple[str, List[Tuple[str, str]]]]


class ScriptedStoryDriver:
    """In-memory story: a stack of scene ids stands in for browser history."""

    def __init__(
        self,
        scenes: Story,
        start: str = "start",
        fail_commit: Iterable[str] = (),
        fail_revert: Iterable[str] = (),
        unobservable: Iterable[str] = (),
        fatal_on: Iterable[str] = (),
        hang_on_commit: Iterable[str] = (),
        hang_on_observe: Iterable[str] = (),
        hang_on_settle: bool = False,
        fatal_on_settle: bool = False,
    ) -> None:
        self.scenes = scenes
        self.stack = [start]
        self.fail_commit = set(fail_commit)  # choice labels whose commit returns False
        self.fail_revert = set(fail_revert)  # scene ids that cannot be left via revert
        self.unobservable = set(unobservable)
        self.fatal_on = set(fatal_on)
        self.hang_on_commit = set(hang_on_commit)
        self.hang_on_observe = set(hang_on_observe)
        self.hang_on_settle = hang_on_settle
        self.fatal_on_settle = fatal_on_settle
        self.calls: List[Tuple[Any, ...]] = []

    @property
    def commits(self) -> List[str]:
        return [c[1] for c in self.calls if c[0] == "commit"]

    async def observe(self) -> Observation:
        scene = self.stack[-1]
        self.calls.append(("observe", scene))
        if scene in self.fatal_on:
            raise DriverError(f"browser crashed on {scene}")
        if scene in self.unobservable:
            raise ObservationError(f"cannot read {scene}")
        if scene in self.hang_on_observe:
            await asyncio.sleep(10)
        text, choices = self.scenes[scene]
        return Observation(
            content=text,
            choices=[ObservedChoice(label=label, handle=(label, target)) for label, target in choices],
        )

    async def commit(self, handle: Any) -> bool:
        label, target = handle
        self.calls.append(("commit", label))
        if label in self.hang_on_commit:
            await asyncio.sleep(10)
        if label in self.fail_commit:
            return False
        self.stack.append(target)
        return True

    async def settle(self) -> None:
        self.calls.append(("settle",))
        if self.fatal_on_settle:
            raise DriverError("page closed while settling")
        if self.hang_on_settle:
            await asyncio.sleep(10)

    async def revert(self) -> bool:
        left = self.stack.pop()
        self.calls.append(("revert", left))
        return left not in self.fail_revert

    async def current_location(self) -> str:
        return self.stack[-1]


@pytest.fixture
def fast_budgets():
    return ExplorationBudgets(max_depth=50, max_states=1000, per_action_timeout=200, inter_action_delay=0)


@pytest.fixture
def branching_story() -> Story:
    return {
        "start": ("You stand at a crossroads under a grey sky.", [("Go left", "left"), ("Go right", "right")]),
        "left": ("A quiet forest path winds between old trees.", [("Enter the cabin", "cabin")]),
        "cabin": ("The cabin is empty. Your journey ends here.", []),
        "right": ("A river blocks the way; the story ends.", []),
    }


@pytest.fixture
def driver_factory():
    return ScriptedStoryDriver
