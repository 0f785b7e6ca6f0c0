from __future__ import annotations

"""Running statistics collected while a story is explored.

`MetricsAccumulator.record()` is called once for every observed or attempted
scene in pre-order. Only raw counts and value lists are kept while recording;
every derived figure (averages, quartiles, variance) is computed in
`finalize()` so the result does not depend on rounding along the way.
"""

import math
import time
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List, Optional, Set

from .exceptions import MetricsFinalizedError
from .state_matcher import content_hash


def count_words(text: str) -> int:
    if not text:
        return 0
    return len(text.split())


def _pick(sorted_values: List[int], fraction: float) -> int:
    return sorted_values[int(len(sorted_values) * fraction)]


def _mean(values: List[int]) -> float:
    return math.fsum(values) / len(values) if values else 0.0


def _variance(values: List[int]) -> float:
    if not values:
        return 0.0
    mean = _mean(values)
    return math.fsum((v - mean) ** 2 for v in values) / len(values)


@dataclass(frozen=True)
class MetricsReport:
    """Immutable, finalized view of the accumulated metrics."""

    total_states: int
    total_choices: int
    total_paths: int
    max_depth: int
    avg_depth: float
    error_states: int
    dead_ends: int
    loop_closures: int
    single_choice_states: int
    duplicate_content: int
    truncated_branches: int
    branching_min: int
    branching_max: int
    branching_avg: float
    branching_distribution: Dict[int, int]
    total_words: int
    avg_words_per_state: float
    shortest_text: int
    longest_text: int
    elapsed_seconds: float
    avg_time_per_state_ms: float
    states_per_second: float
    path_distribution: Optional[Dict[str, int]] = None
    content_distribution: Optional[Dict[str, float]] = None
    depth_distribution: Dict[int, int] = field(default_factory=dict)

    # --- ratios used by the quality assessment ----------------------------
    @property
    def _denominator(self) -> int:
        return max(self.total_states, 1)

    @property
    def dead_end_ratio(self) -> float:
        return self.dead_ends / self._denominator

    @property
    def duplicate_ratio(self) -> float:
        return self.duplicate_content / self._denominator

    @property
    def single_choice_ratio(self) -> float:
        return self.single_choice_states / self._denominator

    @property
    def word_spread(self) -> int:
        return self.longest_text - self.shortest_text

    @property
    def exploration_completeness(self) -> float:
        return self.total_paths / self._denominator * 100.0

    # ------------------------------------------------------------------
    def to_dict(self) -> Dict[str, Any]:
        return {
            "summary": {
                "total_states": self.total_states,
                "total_paths": self.total_paths,
                "exploration_completeness": round(self.exploration_completeness, 1),
                "avg_depth": round(self.avg_depth, 1),
                "max_depth": self.max_depth,
                "error_states": self.error_states,
                "truncated_branches": self.truncated_branches,
            },
            "structure": {
                "branching_factor": {
                    "min": self.branching_min,
                    "max": self.branching_max,
                    "avg": round(self.branching_avg, 2),
                    "distribution": {str(k): v for k, v in self.branching_distribution.items()},
                },
                "dead_ends": self.dead_ends,
                "linear_states": self.single_choice_states,
                "loops": self.loop_closures,
            },
            "content": {
                "avg_words_per_state": round(self.avg_words_per_state, 1),
                "shortest_text": self.shortest_text,
                "longest_text": self.longest_text,
                "duplicate_states": self.duplicate_content,
                "total_words": self.total_words,
            },
            "performance": {
                "total_time_s": round(self.elapsed_seconds, 1),
                "avg_time_per_state_ms": round(self.avg_time_per_state_ms),
                "states_per_second": round(self.states_per_second, 1),
            },
            "detailed_analysis": {
                "path_distribution": self.path_distribution,
                "content_distribution": self.content_distribution,
                "depth_distribution": {str(k): v for k, v in self.depth_distribution.items()},
            },
        }


class MetricsAccumulator:
    """Collects counters and raw distributions for one run."""

    def __init__(self, clock: Callable[[], float] = time.monotonic) -> None:
        self._clock = clock
        self._started = clock()

        self.total_states = 0
        self.total_choices_seen = 0
        self.dead_ends = 0
        self.loop_closures = 0
        self.error_states = 0
        self.duplicate_content_count = 0
        self.states_with_single_choice = 0
        self.truncations = 0
        self.max_depth = 0

        self.branching_histogram: Dict[int, int] = {}
        self.path_lengths: List[int] = []  # depth at each dead end / loop closure
        self.word_counts: List[int] = []
        self.depth_counts: Dict[int, int] = {}
        self.total_words = 0
        self.min_words: Optional[int] = None
        self.max_words = 0

        self._content_hashes: Set[str] = set()
        self._seen_fingerprints: Set[str] = set()
        self._report: Optional[MetricsReport] = None

    @property
    def finalized(self) -> bool:
        return self._report is not None

    # ------------------------------------------------------------------
    def record(
        self,
        content: str,
        choice_count: int,
        depth: int,
        fingerprint: Optional[str],
        is_error: bool = False,
    ) -> bool:
        """Fold one observed (or failed) scene into the statistics.

        Returns True when the scene was counted as a new state, False for
        errors and for revisits of an already recorded fingerprint (which
        count as loop closures).
        """
        if self._report is not None:
            raise MetricsFinalizedError("cannot record after finalize()")

        if is_error:
            self.error_states += 1
            return False

        if fingerprint is not None and fingerprint in self._seen_fingerprints:
            self.loop_closures += 1
            self.path_lengths.append(depth)
            return False
        if fingerprint is not None:
            self._seen_fingerprints.add(fingerprint)

        self.total_states += 1
        self.total_choices_seen += choice_count
        self.max_depth = max(self.max_depth, depth)
        self.branching_histogram[choice_count] = self.branching_histogram.get(choice_count, 0) + 1
        self.depth_counts[depth] = self.depth_counts.get(depth, 0) + 1

        if choice_count == 0:
            self.dead_ends += 1
            self.path_lengths.append(depth)
        elif choice_count == 1:
            self.states_with_single_choice += 1

        words = count_words(content)
        self.word_counts.append(words)
        self.total_words += words
        self.min_words = words if self.min_words is None else min(self.min_words, words)
        self.max_words = max(self.max_words, words)

        digest = content_hash(content)
        if digest in self._content_hashes:
            self.duplicate_content_count += 1
        else:
            self._content_hashes.add(digest)
        return True

    def record_truncation(self) -> None:
        if self._report is not None:
            raise MetricsFinalizedError("cannot record after finalize()")
        self.truncations += 1

    # ------------------------------------------------------------------
    def finalize(self) -> MetricsReport:
        """Compute derived statistics. Later calls return the same report."""
        if self._report is not None:
            return self._report

        elapsed = max(self._clock() - self._started, 0.0)
        total = self.total_states
        branching_values = [k for k in self.branching_histogram if k > 0]

        self._report = MetricsReport(
            total_states=total,
            total_choices=self.total_choices_seen,
            total_paths=len(self.path_lengths),
            max_depth=self.max_depth,
            avg_depth=_mean(self.path_lengths),
            error_states=self.error_states,
            dead_ends=self.dead_ends,
            loop_closures=self.loop_closures,
            single_choice_states=self.states_with_single_choice,
            duplicate_content=self.duplicate_content_count,
            truncated_branches=self.truncations,
            branching_min=min(branching_values) if branching_values else 0,
            branching_max=max(branching_values) if branching_values else 0,
            branching_avg=self.total_choices_seen / total if total else 0.0,
            branching_distribution=dict(sorted(self.branching_histogram.items())),
            total_words=self.total_words,
            avg_words_per_state=self.total_words / total if total else 0.0,
            shortest_text=self.min_words or 0,
            longest_text=self.max_words,
            elapsed_seconds=elapsed,
            avg_time_per_state_ms=elapsed * 1000.0 / total if total else 0.0,
            states_per_second=total / elapsed if elapsed > 0 else 0.0,
            path_distribution=self._path_distribution(),
            content_distribution=self._content_distribution(),
            depth_distribution=dict(sorted(self.depth_counts.items())),
        )
        return self._report

    def _path_distribution(self) -> Optional[Dict[str, int]]:
        if not self.path_lengths:
            return None
        values = sorted(self.path_lengths)
        return {
            "median": _pick(values, 0.5),
            "q1": _pick(values, 0.25),
            "q3": _pick(values, 0.75),
            "min": values[0],
            "max": values[-1],
        }

    def _content_distribution(self) -> Optional[Dict[str, float]]:
        if not self.word_counts:
            return None
        values = sorted(self.word_counts)
        variance = _variance(values)
        return {
            "median": _pick(values, 0.5),
            "variance": variance,
            "standard_deviation": math.sqrt(variance),
        }
