from typing import List, Tuple
from playwright.async_api import Page
from playwright.async_api import Error as PlaywrightError
import asyncio
import logging

logger = logging.getLogger(__name__)


class AnimationUtilsPlaywright:
    """
    Visual feedback for watched (non-headless) runs: outlines the choice about
    to be clicked so an observer can follow the traversal.
    """

    def __init__(self, pause: float = 0.3) -> None:
        self.pause = pause
        self.highlighted_choices: List[Tuple[str, str]] = []

    async def highlight_choice(self, page: Page, selector: str, text: str) -> None:
        """
        Outline the first element matching `selector` whose trimmed text equals `text`.

        Args:
            page (Page): The Playwright page object.
            selector (str): CSS selector the choice was discovered with.
            text (str): The choice label.
        """
        try:
            await page.evaluate(
                """
                ([selector, text]) => {
                    for (const elm of document.querySelectorAll(selector)) {
                        if (elm.textContent.trim() === text) {
                            elm.setAttribute('data-story-explorer-highlight', '1');
                            elm.style.transition = 'outline 0.3s ease-in-out';
                            elm.style.outline = '2px solid red';
                            return;
                        }
                    }
                }
                """,
                [selector, text],
            )
        except PlaywrightError as e:
            logger.debug("Highlight failed for %r: %s", text, e)
            return

        self.highlighted_choices.append((selector, text))
        # Give time for the outline transition
        await asyncio.sleep(self.pause)

    async def clear(self, page: Page) -> None:
        """Remove every outline added by `highlight_choice`."""
        try:
            await page.evaluate(
                """
                () => {
                    for (const elm of document.querySelectorAll('[data-story-explorer-highlight]')) {
                        elm.style.outline = '';
                        elm.removeAttribute('data-story-explorer-highlight');
                    }
                }
                """
            )
        except PlaywrightError as e:
            logger.debug("Clearing highlights failed: %s", e)
        self.highlighted_choices.clear()
