from __future__ import annotations

"""Capability contract the exploration engine requires from an environment.

The engine never looks at selectors or DOM details; it only consumes what a
driver returns from `observe()` and hands the opaque choice handles back to
`commit()`. `story_browser.PlaywrightStoryDriver` is the browser-backed
implementation.
"""

from dataclasses import dataclass, field
from typing import Any, List, Protocol


@dataclass(frozen=True)
class ObservedChoice:
    label: str
    handle: Any = field(default=None, compare=False)  # opaque to the engine


@dataclass(frozen=True)
class Observation:
    content: str
    choices: List[ObservedChoice] = field(default_factory=list)

    @property
    def labels(self) -> List[str]:
        return [c.label for c in self.choices]


class StoryDriver(Protocol):
    """Environment driver as seen by `ExplorationAgent`.

    All methods are coroutines. Soft failures are reported through return
    values; `ObservationError` and `DriverError` are the only exceptions a
    driver is expected to raise.
    """

    async def observe(self) -> Observation:
        """Return the current scene; raise `ObservationError` if unreachable."""
        ...

    async def commit(self, handle: Any) -> bool:
        """Trigger a choice. False when the element was not actionable."""
        ...

    async def settle(self) -> None:
        """Wait until the environment is expected to be stable after a commit."""
        ...

    async def revert(self) -> bool:
        """Restore the scene observed before the last commit. False if unconfirmed."""
        ...

    async def current_location(self) -> str:
        """Diagnostic location string (e.g. page URL)."""
        ...
