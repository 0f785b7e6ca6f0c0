from __future__ import annotations

"""Playwright implementation of the `StoryDriver` contract."""

import logging
from dataclasses import dataclass
from typing import Any, List, Optional

from playwright.async_api import async_playwright, Browser, BrowserContext, Page, Playwright, Route
from playwright.async_api import Error as PlaywrightError
from playwright.async_api import TimeoutError as PlaywrightTimeoutError

from story_explorer.config import BrowserOptions
from story_explorer.driver import Observation, ObservedChoice
from story_explorer.exceptions import DriverError, ObservationError
from story_explorer.state_matcher import canonicalize

from .selectors import SelectorProfile, get_profile
from .utils.animation_utils import AnimationUtilsPlaywright

logger = logging.getLogger(__name__)

_BLOCKED_RESOURCES = ("image", "stylesheet", "font")

_EXTRACT_CONTENT_JS = """
(selectors) => {
    for (const selector of selectors) {
        const elements = document.querySelectorAll(selector);
        if (elements.length > 0) {
            return Array.from(elements).map(el => el.textContent.trim()).join(' ');
        }
    }
    // Fallback: every longer text node outside script/style
    const walker = document.createTreeWalker(document.body, NodeFilter.SHOW_TEXT, {
        acceptNode(node) {
            const parent = node.parentElement;
            if (!parent) return NodeFilter.FILTER_REJECT;
            if (['script', 'style', 'noscript'].includes(parent.tagName.toLowerCase())) {
                return NodeFilter.FILTER_REJECT;
            }
            return node.textContent.trim().length > 10 ? NodeFilter.FILTER_ACCEPT : NodeFilter.FILTER_REJECT;
        }
    });
    const texts = [];
    let node;
    while ((node = walker.nextNode())) texts.push(node.textContent.trim());
    return texts.join(' ');
}
"""

_FIND_CHOICES_JS = """
(selectors) => {
    for (const selector of selectors) {
        const found = [];
        const seen = {};
        for (const el of document.querySelectorAll(selector)) {
            const text = el.textContent.trim();
            if (text.length > 0 && text.length < 200) {
                const occurrence = seen[text] || 0;
                seen[text] = occurrence + 1;
                found.push({text, selector, occurrence});
            }
        }
        if (found.length > 0) return found;  // first selector that yields choices wins
    }
    return [];
}
"""

_CLICK_JS = """
([selector, text, occurrence]) => {
    let n = 0;
    for (const el of document.querySelectorAll(selector)) {
        if (el.textContent.trim() !== text) continue;
        if (n++ < occurrence) continue;
        if (typeof el.click === 'function') {
            el.click();
        } else {
            el.dispatchEvent(new MouseEvent('click', {bubbles: true, cancelable: true, view: window}));
        }
        return true;
    }
    return false;
}
"""


@dataclass(frozen=True)
class ChoiceHandle:
    selector: str
    text: str
    occurrence: int = 0


class PlaywrightStoryDriver:
    """Drives a single page of a browser-based story.

    Use as an async context manager; the page is opened on the start URL on
    entry and the browser is closed on exit.
    """

    def __init__(
        self,
        start_url: str,
        options: Optional[BrowserOptions] = None,
        profile: "str | SelectorProfile" = "generic",
        settle_delay: float = 1.0,
        action_timeout_ms: int = 30000,
    ) -> None:
        self.start_url = start_url
        self.options = options or BrowserOptions()
        self.profile = get_profile(profile) if isinstance(profile, str) else profile
        self.settle_delay = settle_delay
        self.action_timeout_ms = action_timeout_ms

        self._playwright: Optional[Playwright] = None
        self._browser: Optional[Browser] = None
        self._context: Optional[BrowserContext] = None
        self._page: Optional[Page] = None
        self._animator = AnimationUtilsPlaywright() if self.options.highlight_choices else None

        # back-tracking support ------------------------------------------------
        self._trail: List[ChoiceHandle] = []  # committed choices from the start page
        self._baselines: List[Observation] = []  # scene observed before each commit
        self._last_observed: Optional[Observation] = None

    # ------------------------------------------------------------------
    async def __aenter__(self) -> "PlaywrightStoryDriver":
        try:
            self._playwright = await async_playwright().start()
            self._browser = await self._playwright.chromium.launch(headless=self.options.headless)
            self._context = await self._browser.new_context(
                viewport={"width": self.options.viewport_width, "height": self.options.viewport_height},
                user_agent=self.options.user_agent,
            )
            page = await self._context.new_page()
            page.set_default_timeout(self.action_timeout_ms)
            page.set_default_navigation_timeout(self.action_timeout_ms)
            if self.options.block_resources:
                await page.route("**/*", self._route_filter)
            self._page = page
            logger.info("Loading %s", self.start_url)
            await page.goto(self.start_url, wait_until="domcontentloaded")
            # let client-side story engines render the first scene
            await page.wait_for_timeout(2000)
        except PlaywrightError as e:
            await self.close()
            raise DriverError(f"could not open {self.start_url}: {e}") from e
        return self

    async def __aexit__(self, *exc_info: Any) -> None:
        await self.close()

    async def close(self) -> None:
        try:
            if self._browser is not None:
                await self._browser.close()
        except PlaywrightError as e:
            logger.debug("Browser close failed: %s", e)
        finally:
            self._browser = None
            self._context = None
            self._page = None
            if self._playwright is not None:
                await self._playwright.stop()
                self._playwright = None

    @staticmethod
    async def _route_filter(route: Route) -> None:
        if route.request.resource_type in _BLOCKED_RESOURCES:
            await route.abort()
        else:
            await route.continue_()

    # ------------------------------------------------------------------
    # StoryDriver contract ----------------------------------------------

    async def observe(self) -> Observation:
        page = self._require_page()
        try:
            content = await page.evaluate(_EXTRACT_CONTENT_JS, list(self.profile.story))
            raw_choices = await page.evaluate(_FIND_CHOICES_JS, list(self.profile.choices))
        except PlaywrightError as e:
            self._raise_if_gone(e)
            raise ObservationError(f"could not read scene at {page.url}: {e}") from e

        observation = Observation(
            content=content or "",
            choices=[
                ObservedChoice(
                    label=c["text"],
                    handle=ChoiceHandle(selector=c["selector"], text=c["text"], occurrence=c.get("occurrence", 0)),
                )
                for c in raw_choices or []
            ],
        )
        self._last_observed = observation
        return observation

    async def commit(self, handle: Any) -> bool:
        page = self._require_page()
        if not isinstance(handle, ChoiceHandle):
            return False
        if self._animator is not None:
            await self._animator.highlight_choice(page, handle.selector, handle.text)
        try:
            clicked = await page.evaluate(_CLICK_JS, [handle.selector, handle.text, handle.occurrence])
        except PlaywrightError as e:
            self._raise_if_gone(e)
            logger.debug("Click on %r failed: %s", handle.text, e)
            return False
        if not clicked:
            return False
        self._trail.append(handle)
        self._baselines.append(self._last_observed or Observation(content=""))
        return True

    async def settle(self) -> None:
        page = self._require_page()
        try:
            await page.wait_for_timeout(self.settle_delay * 1000)
            await page.wait_for_load_state("domcontentloaded", timeout=self.action_timeout_ms)
        except PlaywrightTimeoutError:
            logger.debug("Timeout waiting for the page to settle")
        except PlaywrightError as e:
            self._raise_if_gone(e)
            logger.debug("Waiting for the page to settle failed: %s", e)
        if self._animator is not None:
            await self._animator.clear(page)

    async def revert(self) -> bool:
        page = self._require_page()
        if not self._trail:
            return False
        self._trail.pop()
        baseline = self._baselines.pop()

        try:
            await page.go_back(wait_until="domcontentloaded", timeout=5000)
            await page.wait_for_timeout(500)
            if await self._matches(baseline):
                return self._restored(baseline)
        except PlaywrightError as e:
            self._raise_if_gone(e)
            logger.debug("History back failed: %s", e)

        if not self.options.replay_on_revert:
            return False

        # Story engines without history support: reload and replay the trail.
        logger.info("Replaying %d choice(s) from the start page", len(self._trail))
        try:
            await page.goto(self.start_url, wait_until="domcontentloaded")
            await page.wait_for_timeout(self.settle_delay * 1000)
            for step in self._trail:
                clicked = await page.evaluate(_CLICK_JS, [step.selector, step.text, step.occurrence])
                if not clicked:
                    logger.warning("Replay lost the way at %r", step.text)
                    return False
                await self.settle()
        except PlaywrightError as e:
            self._raise_if_gone(e)
            logger.warning("Replay failed: %s", e)
            return False

        if await self._matches(baseline):
            return self._restored(baseline)
        return False

    async def current_location(self) -> str:
        return self._require_page().url

    # ------------------------------------------------------------------
    # Helpers -----------------------------------------------------------

    def _require_page(self) -> Page:
        if self._page is None or self._page.is_closed():
            raise DriverError("page is not open")
        return self._page

    @staticmethod
    def _raise_if_gone(e: PlaywrightError) -> None:
        if "closed" in str(e).lower():
            raise DriverError(str(e)) from e

    async def _matches(self, baseline: Observation) -> bool:
        try:
            current = await self.observe()
        except ObservationError:
            return False
        return canonicalize(current.content) == canonicalize(baseline.content) and current.labels == baseline.labels

    def _restored(self, baseline: Observation) -> bool:
        self._last_observed = baseline
        return True
