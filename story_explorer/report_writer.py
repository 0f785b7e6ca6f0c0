from __future__ import annotations

"""Persist an exploration result as JSON, GraphML and plain-text summaries."""

import json
import logging
import os
from datetime import datetime
from typing import Any, Dict, List

import networkx as nx

from . import __version__
from .exploration_policy import ExplorationResult

logger = logging.getLogger(__name__)

RESULTS_FILE = "exploration_results.json"
METRICS_FILE = "metrics.json"
GRAPH_FILE = "story_graph.graphml"
REPORT_FILE = "exploration_report.txt"
SUMMARY_FILE = "metrics_summary.txt"


def save_results(result: ExplorationResult, output_dir: str) -> List[str]:
    """Write every artefact into `output_dir`; return the paths written.

    A failing artefact is logged and skipped so the others still get written.
    """
    os.makedirs(output_dir, exist_ok=True)
    written: List[str] = []
    report = result.report

    results_doc = {
        "story_tree": report["story_tree"],
        "history": report.get("history", []),
        "transitions": report.get("transitions", []),
        "summary": {
            "total_states": len(result.session.visited),
            "identity_mode": report.get("identity_mode"),
            "exploration_date": datetime.now().isoformat(),
            "version": __version__,
        },
    }
    for name, payload in ((RESULTS_FILE, results_doc), (METRICS_FILE, report["metrics"])):
        path = os.path.join(output_dir, name)
        try:
            with open(path, "w", encoding="utf-8") as fh:
                json.dump(payload, fh, indent=2, ensure_ascii=False)
            written.append(path)
        except OSError as e:
            logger.warning(f"Failed to write {name}: {e}")

    path = os.path.join(output_dir, GRAPH_FILE)
    try:
        nx.write_graphml(result.session.graph.to_graphml_graph(), path)
        written.append(path)
    except (OSError, nx.NetworkXError) as e:
        logger.warning(f"Failed to write GraphML: {e}")

    for name, text in (
        (REPORT_FILE, render_exploration_report(result)),
        (SUMMARY_FILE, render_metrics_summary(report["metrics"])),
    ):
        path = os.path.join(output_dir, name)
        try:
            with open(path, "w", encoding="utf-8") as fh:
                fh.write(text)
            written.append(path)
        except OSError as e:
            logger.warning(f"Failed to write {name}: {e}")
    return written


# ----------------------------------------------------------------------
# text renderers --------------------------------------------------------


def render_exploration_report(result: ExplorationResult) -> str:
    session = result.session
    lines = [
        "STORY EXPLORATION - FINAL REPORT",
        "================================",
        f"Date: {datetime.now():%Y-%m-%d %H:%M:%S}",
        f"Tool version: {__version__}",
        "",
        "BASIC STATISTICS:",
        f"- Distinct scenes explored: {len(session.visited)}",
        f"- Transitions recorded: {session.graph.edge_count()}",
        f"- Maximum depth reached: {result.metrics.max_depth}",
        "",
        "EXPLORED SCENES:",
    ]
    for i, item in enumerate(session.history[:10], start=1):
        lines.append(f'{i}. Depth {item.depth}, {item.choice_count} choices: "{item.content[:80]}..."')
    if len(session.history) > 10:
        lines.append(f"... and {len(session.history) - 10} more scenes")

    lines += ["", "STORY TREE:"]
    for fp, node in list(session.visited.items())[:5]:
        targets = ", ".join(f"{label!r} -> {dst[:8]}" for label, dst in session.graph.successors(fp))
        lines.append(f"- {fp[:8]}: {len(node.choices)} choices at depth {node.depth}" + (f" [{targets}]" if targets else ""))

    lines += ["", f"Full data is available in {RESULTS_FILE}", ""]
    return "\n".join(lines)


def render_metrics_summary(metrics: Dict[str, Any]) -> str:
    summary = metrics["summary"]
    structure = metrics["structure"]
    content = metrics["content"]
    perf = metrics["performance"]
    quality = metrics["quality"]
    branching = structure["branching_factor"]

    lines = [
        "STORY ANALYSIS - METRICS",
        "========================",
        f"Date: {datetime.now():%Y-%m-%d %H:%M:%S}",
        "",
        "SUMMARY:",
        f"- Total states: {summary['total_states']}",
        f"- Total paths: {summary['total_paths']}",
        f"- Exploration completeness: {summary['exploration_completeness']}%",
        f"- Average depth: {summary['avg_depth']}",
        f"- Maximum depth: {summary['max_depth']}",
        f"- Error states: {summary['error_states']}",
        f"- Truncated branches: {summary['truncated_branches']}",
        "",
        "STRUCTURE:",
        f"- Branching: {branching['min']}-{branching['max']} (average {branching['avg']})",
        f"- Dead ends: {structure['dead_ends']}",
        f"- Linear states: {structure['linear_states']}",
        f"- Loops: {structure['loops']}",
        f"- Choice distribution: {json.dumps(branching['distribution'])}",
        "",
        "CONTENT:",
        f"- Average words per state: {content['avg_words_per_state']}",
        f"- Text range: {content['shortest_text']} - {content['longest_text']} words",
        f"- Duplicate states: {content['duplicate_states']}",
        f"- Total words: {content['total_words']}",
        "",
        "PERFORMANCE:",
        f"- Total time: {perf['total_time_s']}s",
        f"- Average per state: {perf['avg_time_per_state_ms']}ms",
        f"- Throughput: {perf['states_per_second']} states/sec",
        "",
        "QUALITY:",
        f"- Balance: {quality['balance']}",
        f"- Content variety: {quality['content_variety']}",
        f"- Navigation flow: {quality['navigation_flow']}",
        f"- Overall score: {quality['overall_score']}/100",
    ]
    detailed = metrics.get("detailed_analysis")
    if detailed:
        lines += [
            "",
            "DETAILED ANALYSIS:",
            f"- Path length distribution: {json.dumps(detailed['path_distribution'])}",
            f"- Depth distribution: {json.dumps(detailed['depth_distribution'])}",
        ]
    lines += ["", "RECOMMENDATIONS:"]
    lines += [f"- {rec}" for rec in quality["recommendations"]]
    lines.append("")
    return "\n".join(lines)
