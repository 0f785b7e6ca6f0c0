from __future__ import annotations

"""Run configuration: budgets, identity mode, quality thresholds and browser options.

Values are resolved as defaults < game profile < environment (``.env``
included) < explicit overrides from the command line.
"""

import os
from dataclasses import dataclass, field, replace
from typing import Any, Dict, Mapping, Optional

from dotenv import load_dotenv

from .exceptions import ConfigError
from .knowledge import ExplorationBudgets
from .quality import QualityThresholds
from .state_matcher import IdentityMode

ENV_PREFIX = "STORY_EXPLORER_"


@dataclass(frozen=True)
class BrowserOptions:
    headless: bool = False
    viewport_width: int = 1280
    viewport_height: int = 720
    block_resources: bool = True  # skip images, stylesheets and fonts
    user_agent: str = "StoryExplorer/2.0.0"
    replay_on_revert: bool = True
    highlight_choices: bool = False


@dataclass(frozen=True)
class ExplorerConfig:
    budgets: ExplorationBudgets = field(default_factory=ExplorationBudgets)
    identity_mode: IdentityMode = IdentityMode.CONTENT_ONLY
    thresholds: QualityThresholds = field(default_factory=QualityThresholds)
    browser: BrowserOptions = field(default_factory=BrowserOptions)
    selector_profile: str = "generic"
    snippet_length: int = 500
    history_snippet_length: int = 200
    cleanup_interval: int = 100
    output_dir: str = "run_artifacts"
    include_detailed: bool = True

    def validate(self) -> "ExplorerConfig":
        b = self.budgets
        if b.max_depth < 0:
            raise ConfigError("max_depth must be >= 0")
        if b.max_states <= 0:
            raise ConfigError("max_states must be > 0")
        if b.per_action_timeout <= 0:
            raise ConfigError("per_action_timeout must be > 0")
        if b.inter_action_delay < 0:
            raise ConfigError("inter_action_delay must be >= 0")
        if self.cleanup_interval < 0:
            raise ConfigError("cleanup_interval must be >= 0 (0 disables cleanup)")
        if self.snippet_length <= 0 or self.history_snippet_length <= 0:
            raise ConfigError("snippet lengths must be > 0")
        t = self.thresholds
        if t.branching_min > t.branching_max:
            raise ConfigError("branching_min must not exceed branching_max")
        return self

    # ------------------------------------------------------------------
    def with_overrides(self, **overrides: Any) -> "ExplorerConfig":
        """Return a copy with flat overrides applied; ``None`` values are ignored."""
        budget_keys = {"max_depth", "max_states", "per_action_timeout", "inter_action_delay"}
        browser_keys = set(BrowserOptions.__dataclass_fields__)
        budgets: Dict[str, Any] = {}
        browser: Dict[str, Any] = {}
        top: Dict[str, Any] = {}
        for key, value in overrides.items():
            if value is None:
                continue
            if key in budget_keys:
                budgets[key] = value
            elif key in browser_keys:
                browser[key] = value
            elif key == "identity_mode":
                top[key] = IdentityMode.parse(value)
            elif key in self.__dataclass_fields__:
                top[key] = value
            else:
                raise ConfigError(f"unknown configuration key: {key}")
        return replace(
            self,
            budgets=replace(self.budgets, **budgets),
            browser=replace(self.browser, **browser),
            **top,
        ).validate()

    @classmethod
    def for_profile(cls, name: Optional[str]) -> "ExplorerConfig":
        base = cls()
        if not name:
            return base
        if name not in GAME_PROFILES:
            raise ConfigError(f"unknown game profile {name!r} (known: {', '.join(sorted(GAME_PROFILES))})")
        return base.with_overrides(**GAME_PROFILES[name])

    @classmethod
    def from_env(
        cls,
        environ: Optional[Mapping[str, str]] = None,
        profile: Optional[str] = None,
        load_env_file: bool = True,
    ) -> "ExplorerConfig":
        if load_env_file:
            load_dotenv()
        env = os.environ if environ is None else environ
        cfg = cls.for_profile(profile or env.get(ENV_PREFIX + "PROFILE"))

        overrides: Dict[str, Any] = {}
        for key, conv in _ENV_KEYS.items():
            raw = env.get(ENV_PREFIX + key.upper())
            if raw is None or raw == "":
                continue
            try:
                overrides[key] = conv(raw)
            except ValueError as exc:
                raise ConfigError(f"invalid value for {ENV_PREFIX}{key.upper()}: {raw!r}") from exc
        cfg = cfg.with_overrides(**overrides)

        stage = env.get(ENV_PREFIX + "ENV", "").lower()
        if stage == "production":
            cfg = cfg.with_overrides(headless=True, cleanup_interval=50)
        elif stage == "development":
            cfg = cfg.with_overrides(max_states=min(cfg.budgets.max_states, 100))
        return cfg


def _as_bool(raw: str) -> bool:
    value = raw.strip().lower()
    if value in ("1", "true", "yes", "on"):
        return True
    if value in ("0", "false", "no", "off"):
        return False
    raise ValueError(raw)


_ENV_KEYS = {
    "max_depth": int,
    "max_states": int,
    "per_action_timeout": int,
    "inter_action_delay": int,
    "identity_mode": str,
    "cleanup_interval": int,
    "output_dir": str,
    "selector_profile": str,
    "headless": _as_bool,
    "block_resources": _as_bool,
    "replay_on_revert": _as_bool,
}

# Per-game overrides carried over from earlier tool versions.
GAME_PROFILES: Dict[str, Dict[str, Any]] = {
    "physics-adventure": {"max_depth": 20, "selector_profile": "physics-adventure"},
    "generic-twine": {"max_depth": 30, "selector_profile": "twine"},
}
