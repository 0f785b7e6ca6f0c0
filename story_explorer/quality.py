from __future__ import annotations

"""Qualitative judgements and the overall score derived from finalized metrics.

Everything here is a pure function of a `MetricsReport` and a set of
`QualityThresholds`.
"""

from dataclasses import asdict, dataclass, field
from typing import Any, Dict, List, Optional

from .metrics import MetricsReport

TOO_FEW_CHOICES = "too few choices"
OVERLY_COMPLEX = "overly complex"
UNBALANCED = "unbalanced"
BALANCED = "balanced"
LOW_VARIETY = "low variety"
GOOD = "good"
LINEAR = "linear"
COMPLEX = "complex"


@dataclass(frozen=True)
class QualityThresholds:
    branching_min: float = 1.5
    branching_max: float = 4.0
    branching_ideal: float = 2.5
    dead_end_max_ratio: float = 0.3
    dead_end_warn_ratio: float = 0.2
    duplicate_max_ratio: float = 0.2
    duplicate_warn_ratio: float = 0.1
    min_word_spread: int = 50
    linear_max_ratio: float = 0.6
    linear_min_ratio: float = 0.2
    min_words_per_state: int = 30


@dataclass(frozen=True)
class QualityReport:
    balance: str
    content_variety: str
    navigation_flow: str
    overall_score: int
    recommendations: List[str] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


def assess_balance(m: MetricsReport, t: QualityThresholds) -> str:
    if m.branching_avg < t.branching_min:
        return TOO_FEW_CHOICES
    if m.branching_avg > t.branching_max:
        return OVERLY_COMPLEX
    if m.dead_end_ratio > t.dead_end_max_ratio:
        return UNBALANCED
    return BALANCED


def assess_content_variety(m: MetricsReport, t: QualityThresholds) -> str:
    if m.duplicate_ratio > t.duplicate_max_ratio:
        return LOW_VARIETY
    if m.word_spread < t.min_word_spread:
        return LOW_VARIETY
    return GOOD


def assess_navigation_flow(m: MetricsReport, t: QualityThresholds) -> str:
    if m.single_choice_ratio > t.linear_max_ratio:
        return LINEAR
    if m.single_choice_ratio < t.linear_min_ratio:
        return COMPLEX
    return BALANCED


def calculate_overall_score(m: MetricsReport, t: QualityThresholds) -> int:
    """Start at 100 and deduct for structural problems; never below 0."""
    score = 100

    if m.dead_end_ratio > t.dead_end_max_ratio:
        score -= 20
    elif m.dead_end_ratio > t.dead_end_warn_ratio:
        score -= 10

    if m.duplicate_ratio > t.duplicate_max_ratio:
        score -= 15
    elif m.duplicate_ratio > t.duplicate_warn_ratio:
        score -= 8

    if m.branching_avg < t.branching_min:
        score -= 15
    if m.branching_avg > t.branching_max:
        score -= 10

    score -= min(20, m.error_states * 5)
    return max(0, min(100, score))


def generate_recommendations(m: MetricsReport, t: QualityThresholds, score: int) -> List[str]:
    recs: List[str] = []
    if m.dead_end_ratio > t.dead_end_max_ratio:
        recs.append(f"Reduce the number of dead ends (more than {t.dead_end_max_ratio:.0%} of scenes end the story)")
    if m.branching_avg < t.branching_min:
        recs.append("Add more choices: the story is too linear")
    if m.duplicate_content > 0:
        recs.append(f"{m.duplicate_content} scene(s) repeat text already seen elsewhere")
    if m.total_states and m.avg_words_per_state < t.min_words_per_state:
        recs.append("Consider expanding the scene text: the average length is low")
    if m.error_states > 0:
        recs.append(f"Fix {m.error_states} choice(s) that could not be explored")
    if score < 70:
        recs.append("Overall score is low; focus on improving the story structure")
    if not recs:
        recs.append("The story looks well structured")
    return recs


def assess_quality(m: MetricsReport, thresholds: Optional[QualityThresholds] = None) -> QualityReport:
    t = thresholds or QualityThresholds()
    score = calculate_overall_score(m, t)
    return QualityReport(
        balance=assess_balance(m, t),
        content_variety=assess_content_variety(m, t),
        navigation_flow=assess_navigation_flow(m, t),
        overall_score=score,
        recommendations=generate_recommendations(m, t, score),
    )


def compose_report(
    story_tree: Dict[str, Any],
    metrics: MetricsReport,
    quality: QualityReport,
    history: Optional[List[Dict[str, Any]]] = None,
    include_detailed: bool = True,
) -> Dict[str, Any]:
    """Assemble the final report structure consumed by writers and the CLI."""
    metrics_dict = metrics.to_dict()
    detailed = metrics_dict.pop("detailed_analysis")
    metrics_dict["quality"] = quality.to_dict()
    if include_detailed:
        metrics_dict["detailed_analysis"] = detailed
    report: Dict[str, Any] = {"story_tree": story_tree, "metrics": metrics_dict}
    if history is not None:
        report["history"] = history
    return report
