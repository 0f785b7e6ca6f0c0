"""Selector profiles used to find story text and choices on a page.

Each list is tried in order; the first selector that matches wins.
"""

from dataclasses import dataclass
from typing import Dict, Tuple

from story_explorer.exceptions import ConfigError


@dataclass(frozen=True)
class SelectorProfile:
    story: Tuple[str, ...]
    choices: Tuple[str, ...]


GENERIC_STORY = (
    ".story-text", ".game-text", ".content", ".main-text",
    '[class*="story"]', '[class*="text"]', '[class*="content"]',
    "main p", "article p", ".container p", "div p",
    "#game-content", "#story", "#text", ".narrative",
)

GENERIC_CHOICES = (
    "button", ".option", '[role="button"]', 'a[href*="#"]', "a[onclick]",
    ".choice", ".button", '[class*="option"]', '[class*="choice"]',
    '[class*="button"]', 'input[type="button"]', 'input[type="submit"]',
    ".game-choice", ".story-choice", ".narrative-choice",
)

PROFILES: Dict[str, SelectorProfile] = {
    "generic": SelectorProfile(story=GENERIC_STORY, choices=GENERIC_CHOICES),
    "twine": SelectorProfile(story=(".passage", "tw-passage"), choices=("tw-link", "a.internalLink")),
    "inform": SelectorProfile(story=("#gametext",), choices=("a.command",)),
    "physics-adventure": SelectorProfile(
        story=(".game-text", ".story-content", ".narrative"),
        choices=(".choice-btn", ".option-button", "button.choice", ".choice-button", ".game-option"),
    ),
}


def get_profile(name: str) -> SelectorProfile:
    try:
        return PROFILES[name]
    except KeyError:
        raise ConfigError(f"unknown selector profile {name!r} (known: {', '.join(sorted(PROFILES))})") from None
