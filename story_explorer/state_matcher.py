from __future__ import annotations

"""Utilities for turning an observed scene into a stable fingerprint."""

import hashlib
import re
from enum import Enum
from typing import Sequence

from .exceptions import ConfigError

# ASCII unit / record separators never appear in rendered story text.
_FIELD_SEP = "\x1f"
_SECTION_SEP = "\x1e"
_WHITESPACE_RE = re.compile(r"\s+")


class IdentityMode(str, Enum):
    """How much of the traversal history takes part in a scene's identity."""

    CONTENT_ONLY = "content-only"  # graph: converging scenes are the same state
    PATH_SENSITIVE = "path-sensitive"  # tree: the route taken is part of the state

    @classmethod
    def parse(cls, value: "str | IdentityMode") -> "IdentityMode":
        if isinstance(value, cls):
            return value
        try:
            return cls(str(value).strip().lower())
        except ValueError:
            allowed = ", ".join(m.value for m in cls)
            raise ConfigError(f"unknown identity mode {value!r} (expected one of: {allowed})") from None


def canonicalize(content: str) -> str:
    """Lowercase, collapse whitespace runs to one space and trim."""
    if not content:
        return ""
    return _WHITESPACE_RE.sub(" ", content.lower()).strip()


def content_hash(content: str) -> str:
    """Hash of the canonical text alone, independent of the scene's choices."""
    return hashlib.sha256(canonicalize(content).encode("utf-8")).hexdigest()


class StateMatcher:
    """Computes scene fingerprints for one run.

    The identity mode is fixed at construction; one matcher is used for the
    whole run so every fingerprint is computed the same way.
    """

    def __init__(self, mode: "str | IdentityMode" = IdentityMode.CONTENT_ONLY) -> None:
        self._mode = IdentityMode.parse(mode)

    @property
    def mode(self) -> IdentityMode:
        return self._mode

    # ------------------------------------------------------------------
    def signature(self, content: str, choice_labels: Sequence[str], path: Sequence[str] = ()) -> str:
        """Return the SHA-256 fingerprint of a scene.

        Choice labels keep their observed order: the same text with reordered
        choices is a different scene. `path` is ignored in content-only mode.
        """
        labels = [label.strip() for label in choice_labels]
        parts = [canonicalize(content), str(len(labels)), _FIELD_SEP.join(labels)]
        if self._mode is IdentityMode.PATH_SENSITIVE:
            parts.append(_FIELD_SEP.join(path))
        combined = _SECTION_SEP.join(parts)
        return hashlib.sha256(combined.encode("utf-8")).hexdigest()
