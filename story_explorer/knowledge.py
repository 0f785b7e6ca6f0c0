from __future__ import annotations

"""Data structures that hold everything learned about a story during one run.

A run owns exactly one `ExplorationSession`; nothing in this module is shared
between runs.
"""

from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Dict, Iterable, List, Optional, Tuple

import networkx as nx

from .metrics import MetricsAccumulator


def _utc_now() -> str:
    return datetime.now(timezone.utc).isoformat()


@dataclass
class ChoiceDescriptor:
    """A choice label as observed on a scene."""

    label: str
    committed: bool = False  # set once the choice was successfully triggered


@dataclass
class StateNode:
    """One observed scene, keyed by its fingerprint.

    `path` holds the fingerprints of the ancestors from the root down to (but
    excluding) this node, so ``len(path) == depth`` always holds.
    """

    fingerprint: str
    depth: int
    path: List[str]
    content_snippet: str
    choices: List[ChoiceDescriptor] = field(default_factory=list)
    first_seen_at: str = field(default_factory=_utc_now)
    # Full scene text; dropped by the periodic cleanup, never used for identity.
    content: Optional[str] = field(default=None, repr=False)

    def to_json(self) -> Dict[str, Any]:
        return {
            "content_snippet": self.content_snippet,
            "choices": [{"label": c.label, "committed": c.committed} for c in self.choices],
            "depth": self.depth,
            "path": list(self.path),
            "first_seen_at": self.first_seen_at,
        }


@dataclass(frozen=True)
class ExplorationBudgets:
    """Ceilings bounding the cost of a run. Timeouts are in milliseconds."""

    max_depth: int = 50
    max_states: int = 1000
    per_action_timeout: int = 30000
    inter_action_delay: int = 1000

    @property
    def per_action_timeout_s(self) -> float:
        return self.per_action_timeout / 1000.0

    @property
    def inter_action_delay_s(self) -> float:
        return self.inter_action_delay / 1000.0


class StoryGraph:
    """Directed multigraph connecting scenes via the choices that lead between them."""

    def __init__(self) -> None:
        self._g: nx.MultiDiGraph = nx.MultiDiGraph()

    # --- state helpers ----------------------------------------------------
    def add_state(self, node: StateNode) -> None:
        # the node may already exist as the target of the edge that reached it
        self._g.add_node(node.fingerprint, obj=node)

    def get_state(self, fingerprint: str) -> Optional[StateNode]:
        if fingerprint in self._g:
            return self._g.nodes[fingerprint].get("obj")
        return None

    # --- edge helpers -----------------------------------------------------
    def add_transition(self, src: str, label: str, dst: str) -> None:
        # dst may not be registered yet when the edge closes a loop
        self._g.add_edge(src, dst, key=label, label=label)

    def successors(self, fingerprint: str) -> List[Tuple[str, str]]:
        """Return ``(label, destination fingerprint)`` pairs leaving a scene."""
        if fingerprint not in self._g:
            return []
        return [(key, dst) for _, dst, key in self._g.out_edges(fingerprint, keys=True)]

    def edge_count(self) -> int:
        return self._g.number_of_edges()

    def transitions_to_json(self) -> List[Dict[str, str]]:
        return [{"from": u, "choice": k, "to": v} for u, v, k in self._g.edges(keys=True)]

    # convenience ----------------------------------------------------------
    def to_networkx(self) -> nx.MultiDiGraph:
        return self._g

    def to_graphml_graph(self) -> nx.MultiDiGraph:
        """Copy of the graph with only GraphML-serialisable attributes."""
        g_ml = nx.MultiDiGraph()
        for fp, data in self._g.nodes(data=True):
            node: Optional[StateNode] = data.get("obj")
            if node is None:
                g_ml.add_node(fp)
            else:
                g_ml.add_node(
                    fp,
                    depth=node.depth,
                    choices=len(node.choices),
                    snippet=node.content_snippet[:80],
                )
        for u, v, k in self._g.edges(keys=True):
            g_ml.add_edge(u, v, key=k, label=k)
        return g_ml


@dataclass
class HistoryItem:
    fingerprint: str
    depth: int
    choice_count: int
    content: str


@dataclass
class ExplorationSession:
    """Mutable state of a single run: visited scenes and the current traversal path."""

    budgets: ExplorationBudgets = field(default_factory=ExplorationBudgets)
    visited: Dict[str, StateNode] = field(default_factory=dict)
    # Mirrors the recursion: fingerprints from the root to the node being expanded.
    path_stack: List[str] = field(default_factory=list)
    graph: StoryGraph = field(default_factory=StoryGraph)
    history: List[HistoryItem] = field(default_factory=list)
    metrics: MetricsAccumulator = field(default_factory=MetricsAccumulator)
    started_at: str = field(default_factory=_utc_now)

    # --- CRUD helpers -----------------------------------------------------
    def is_visited(self, fingerprint: str) -> bool:
        return fingerprint in self.visited

    def register(self, node: StateNode, history_snippet: int = 200) -> None:
        if node.fingerprint in self.visited:
            raise ValueError(f"fingerprint already registered: {node.fingerprint}")
        self.visited[node.fingerprint] = node
        self.graph.add_state(node)
        self.history.append(
            HistoryItem(
                fingerprint=node.fingerprint,
                depth=node.depth,
                choice_count=len(node.choices),
                content=(node.content or node.content_snippet)[:history_snippet],
            )
        )

    def states_full(self) -> bool:
        return len(self.visited) >= self.budgets.max_states

    # ------------------------------------------------------------------
    # memory management ---------------------------------------------------

    def prune_content(self, keep: Iterable[str] = ()) -> int:
        """Drop full scene text from nodes that are not on the current path."""
        on_path = set(self.path_stack) | set(keep)
        pruned = 0
        for fp, node in self.visited.items():
            if fp in on_path or node.content is None:
                continue
            node.content = None
            pruned += 1
        return pruned

    # ------------------------------------------------------------------
    # persistence -------------------------------------------------------

    def tree_to_json(self) -> Dict[str, Any]:
        return {fp: node.to_json() for fp, node in self.visited.items()}

    def history_to_json(self) -> List[Dict[str, Any]]:
        return [
            {
                "fingerprint": h.fingerprint,
                "depth": h.depth,
                "choice_count": h.choice_count,
                "content": h.content,
            }
            for h in self.history
        ]
