"""
Centrality Engine

Structural-importance metrics over a graph snapshot:
- Degree: (in + out) / (N - 1)
- Closeness: (reachable - 1) / sum of shortest path lengths
- Betweenness: Brandes (networkx, one source at a time), normalized by
  (N - 1)(N - 2)
- Eigenvector: power iteration on the undirected adjacency matrix
- PageRank: power iteration with dangling-node redistribution

Raw values are scaled to [0, 100] by dividing by each metric's maximum and
combined into a weighted "strategic value". Iteration order is always
sorted by entity id so results are reproducible for a fixed snapshot.
"""

from dataclasses import dataclass
from typing import Callable, Dict, List, Optional, Tuple

import networkx as nx
import numpy as np
from loguru import logger

from context_graph.domain.architecture import normalize_token
from context_graph.exceptions import ConvergenceFailure, InvalidParameterError
from context_graph.graph_analysis.base import (
    CentralityMethod,
    CentralityReport,
    CentralityResult,
    ConnectionCounts,
    MetricScore,
)
from context_graph.graph_analysis.cancellation import CancellationToken, checkpoint
from context_graph.graph_analysis.config import CentralityConfig, validate_weights
from context_graph.graph_analysis.store import GraphSnapshot


@dataclass
class MetricOutcome:
    """Raw scores of one metric plus degradation info."""

    scores: Dict[str, float]
    partial: bool = False
    warning: Optional[str] = None


class CentralityEngine:
    """
    Computes centrality measures for architecture entities.

    Centrality helps identify:
    - Hub systems (high degree)
    - Integration bottlenecks (high betweenness)
    - Entities close to everything else (high closeness)
    - Entities connected to other important entities (high eigenvector)
    - Overall importance under random traversal (high PageRank)
    """

    def __init__(self, config: Optional[CentralityConfig] = None):
        self.config = config or CentralityConfig()

    # -------------------------------------------------------------------------
    # Individual metrics (raw values)
    # -------------------------------------------------------------------------

    def degree_centrality(self, snapshot: GraphSnapshot) -> Dict[str, float]:
        """
        Degree centrality counting every relationship, normalized by N - 1.

        High degree = many direct relationships.
        """
        n = snapshot.entity_count
        if n <= 1:
            return {eid: 0.0 for eid in snapshot.entity_ids()}
        scale = 1.0 / (n - 1)
        return {
            eid: (snapshot.in_degree(eid) + snapshot.out_degree(eid)) * scale
            for eid in snapshot.entity_ids()
        }

    def closeness_centrality(
        self,
        snapshot: GraphSnapshot,
        cancel_token: Optional[CancellationToken] = None,
    ) -> Dict[str, float]:
        """
        Closeness over reachable entities only.

        closeness = (reachable - 1) / sum(distances); 0 when nothing is
        reachable. Uses weakly connected reachability unless the config asks
        for directed ("outgoing") closeness.
        """
        directed = snapshot.to_networkx()
        if self.config.closeness_mode == "undirected":
            graph = _undirected(directed)
        else:
            graph = directed

        scores: Dict[str, float] = {}
        for node in sorted(graph):
            checkpoint(cancel_token)
            if self.config.weighted:
                lengths = nx.single_source_dijkstra_path_length(
                    graph, node, weight=_edge_distance
                )
            else:
                lengths = nx.single_source_shortest_path_length(graph, node)

            total = sum(lengths.values())
            reachable = len(lengths)
            scores[node] = (reachable - 1) / total if total > 0 else 0.0
        return scores

    def betweenness_centrality(
        self,
        snapshot: GraphSnapshot,
        cancel_token: Optional[CancellationToken] = None,
    ) -> Dict[str, float]:
        """
        Brandes betweenness on the directed graph.

        High betweenness = bridge between otherwise separate parts of the
        architecture. Normalized by (N - 1)(N - 2).
        """
        graph = snapshot.to_networkx()
        nodes = sorted(graph)
        n = len(nodes)
        if n <= 2:
            return dict.fromkeys(nodes, 0.0)

        weight = None
        if self.config.weighted:
            graph = _with_distances(graph)
            weight = "distance"

        # One source per call so cancellation is checked between sources
        betweenness = dict.fromkeys(nodes, 0.0)
        for source in nodes:
            checkpoint(cancel_token)
            partial = nx.betweenness_centrality_subset(
                graph, sources=[source], targets=nodes, normalized=False, weight=weight
            )
            for node, value in partial.items():
                betweenness[node] += value

        scale = 1.0 / ((n - 1) * (n - 2))
        return {v: b * scale for v, b in betweenness.items()}

    def eigenvector_centrality(
        self,
        snapshot: GraphSnapshot,
        cancel_token: Optional[CancellationToken] = None,
    ) -> Dict[str, float]:
        """
        Eigenvector centrality (connection to important entities).

        Returns the best-effort vector when iteration does not converge.
        """
        return self._eigenvector(snapshot, cancel_token).scores

    def pagerank(
        self,
        snapshot: GraphSnapshot,
        cancel_token: Optional[CancellationToken] = None,
    ) -> Dict[str, float]:
        """PageRank scores; they sum to 1.0 over the snapshot."""
        return self._pagerank(snapshot, cancel_token).scores

    def _eigenvector(
        self,
        snapshot: GraphSnapshot,
        cancel_token: Optional[CancellationToken] = None,
    ) -> MetricOutcome:
        graph = snapshot.to_networkx()
        nodes = sorted(graph)
        n = len(nodes)
        if n == 0:
            return MetricOutcome({})

        undirected = _undirected(graph)
        if graph.number_of_edges() == 0 or not nx.is_connected(undirected):
            message = "Eigenvector centrality needs a connected graph; using uniform scores"
            logger.warning(message)
            return MetricOutcome(
                dict.fromkeys(nodes, 1.0 / n), partial=True, warning=message
            )

        adjacency = nx.to_numpy_array(
            undirected,
            nodelist=nodes,
            weight="strength" if self.config.weighted else None,
        )
        # Shifting by the identity keeps the iteration from oscillating on
        # bipartite graphs without changing the eigenvector.
        matrix = adjacency + np.eye(n)
        try:
            vector = self._power_iterate(
                "eigenvector",
                nodes,
                lambda x: matrix @ x,
                norm=2,
                cancel_token=cancel_token,
            )
        except ConvergenceFailure as e:
            logger.warning(str(e))
            return MetricOutcome(e.scores, partial=True, warning=str(e))
        return MetricOutcome(dict(zip(nodes, vector.tolist())))

    def _pagerank(
        self,
        snapshot: GraphSnapshot,
        cancel_token: Optional[CancellationToken] = None,
    ) -> MetricOutcome:
        graph = snapshot.to_networkx()
        nodes = sorted(graph)
        n = len(nodes)
        if n == 0:
            return MetricOutcome({})

        adjacency = nx.to_numpy_array(
            graph,
            nodelist=nodes,
            weight="strength" if self.config.weighted else None,
        )
        out_weight = adjacency.sum(axis=1)
        dangling = out_weight == 0
        transition = np.divide(
            adjacency,
            out_weight[:, None],
            out=np.zeros_like(adjacency),
            where=~dangling[:, None],
        )
        damping = self.config.damping

        def step(x: np.ndarray) -> np.ndarray:
            leaked = x[dangling].sum() / n
            return damping * (x @ transition + leaked) + (1.0 - damping) / n

        try:
            vector = self._power_iterate(
                "pagerank", nodes, step, norm=1, cancel_token=cancel_token
            )
        except ConvergenceFailure as e:
            logger.warning(str(e))
            return MetricOutcome(e.scores, partial=True, warning=str(e))
        return MetricOutcome(dict(zip(nodes, vector.tolist())))

    def _power_iterate(
        self,
        algorithm: str,
        nodes: List[str],
        step: Callable[[np.ndarray], np.ndarray],
        norm: int,
        cancel_token: Optional[CancellationToken] = None,
    ) -> np.ndarray:
        """
        Iterate ``step`` from the uniform vector until the change in the
        given norm drops below ``tol``; the result is rescaled to unit norm.
        """
        n = len(nodes)
        x = np.full(n, 1.0 / n)
        for _ in range(self.config.max_iter):
            checkpoint(cancel_token)
            x_next = step(x)
            x_next = x_next / np.linalg.norm(x_next, ord=norm)
            delta = np.linalg.norm(x_next - x, ord=norm)
            x = x_next
            if delta < self.config.tol:
                return x
        raise ConvergenceFailure(
            algorithm, self.config.max_iter, dict(zip(nodes, x.tolist()))
        )

    # -------------------------------------------------------------------------
    # Combined report
    # -------------------------------------------------------------------------

    def compute_all(
        self,
        snapshot: GraphSnapshot,
        cancel_token: Optional[CancellationToken] = None,
    ) -> Dict[CentralityMethod, MetricOutcome]:
        """Raw outcomes of all five metrics."""
        return {
            CentralityMethod.DEGREE: MetricOutcome(self.degree_centrality(snapshot)),
            CentralityMethod.CLOSENESS: MetricOutcome(
                self.closeness_centrality(snapshot, cancel_token)
            ),
            CentralityMethod.BETWEENNESS: MetricOutcome(
                self.betweenness_centrality(snapshot, cancel_token)
            ),
            CentralityMethod.EIGENVECTOR: self._eigenvector(snapshot, cancel_token),
            CentralityMethod.PAGERANK: self._pagerank(snapshot, cancel_token),
        }

    def compute(
        self,
        snapshot: GraphSnapshot,
        weights: Optional[Dict[str, float]] = None,
        entity_type: Optional[str] = None,
        sort_by: Optional[str] = None,
        cancel_token: Optional[CancellationToken] = None,
    ) -> CentralityReport:
        """
        Compute every metric, ranks and the strategic value.

        Args:
            snapshot: Graph snapshot to analyze
            weights: Strategic-value weights per metric (None = config default)
            entity_type: Only return entities of this type (ranks stay global)
            sort_by: Metric name or "strategic_value" (default)
            cancel_token: Checked between outer-loop iterations

        Returns:
            CentralityReport; ``partial`` is set when a metric degraded
        """
        resolved_weights = (
            validate_weights(weights) if weights is not None else self.config.weights
        )
        order_key = self._resolve_sort_key(sort_by)

        report = CentralityReport(
            snapshot_version=snapshot.version, weights=resolved_weights
        )
        if snapshot.entity_count == 0:
            return report

        outcomes = self.compute_all(snapshot, cancel_token)
        scaled = {
            method: self._scale(outcome.scores) for method, outcome in outcomes.items()
        }
        ranks = {method: _rank(values) for method, values in scaled.items()}

        total_weight = sum(resolved_weights.values())
        strategic = {
            eid: round(
                sum(
                    resolved_weights[method.value] * scaled[method][eid]
                    for method in CentralityMethod
                )
                / total_weight,
                self.config.score_precision,
            )
            for eid in snapshot.entity_ids()
        }
        strategic_ranks = _rank(strategic)

        wanted_type = normalize_token(entity_type) if entity_type else None
        results: List[CentralityResult] = []
        for eid in snapshot.entity_ids():
            entity = snapshot.get_entity(eid)
            if wanted_type and entity.entity_type.value != wanted_type:
                continue
            inbound = snapshot.in_degree(eid)
            outbound = snapshot.out_degree(eid)
            metrics = {
                method.value: MetricScore(
                    score=scaled[method][eid],
                    raw=outcomes[method].scores[eid],
                    rank=ranks[method][eid],
                )
                for method in CentralityMethod
            }
            results.append(
                CentralityResult(
                    entity_id=eid,
                    entity_name=entity.name,
                    entity_type=entity.entity_type.value,
                    strategic_value=strategic[eid],
                    strategic_rank=strategic_ranks[eid],
                    connections=ConnectionCounts(
                        inbound=inbound, outbound=outbound, total=inbound + outbound
                    ),
                    **metrics,
                )
            )

        results.sort(key=order_key)
        report.results = results
        report.warnings = [o.warning for o in outcomes.values() if o.warning]
        report.partial = any(o.partial for o in outcomes.values())

        logger.info(
            f"Centrality computed for {snapshot.entity_count} entities "
            f"on snapshot v{snapshot.version}"
            + (" (partial)" if report.partial else "")
        )
        return report

    def _scale(self, scores: Dict[str, float]) -> Dict[str, float]:
        """Scale raw values to [0, 100] relative to the metric's maximum."""
        top = max(scores.values(), default=0.0)
        if top <= 0:
            return dict.fromkeys(scores, 0.0)
        precision = self.config.score_precision
        return {
            eid: min(100.0, max(0.0, round(value / top * 100.0, precision)))
            for eid, value in scores.items()
        }

    @staticmethod
    def _resolve_sort_key(
        sort_by: Optional[str],
    ) -> Callable[[CentralityResult], Tuple[float, str]]:
        if sort_by is None or sort_by == "strategic_value":
            return lambda r: (-r.strategic_value, r.entity_id)
        try:
            method = CentralityMethod(str(sort_by).lower())
        except ValueError:
            raise InvalidParameterError(f"Unknown sort metric: {sort_by!r}") from None
        return lambda r: (-r.metric(method).score, r.entity_id)


# =============================================================================
# HELPERS
# =============================================================================


def _edge_distance(u: str, v: str, data: dict) -> Optional[float]:
    """Strength read as inverse distance; zero-strength edges are skipped."""
    strength = data.get("strength", 0.0)
    return 100.0 / strength if strength > 0 else None


def _undirected(graph: nx.DiGraph) -> nx.Graph:
    """Undirected copy where a pair linked both ways keeps the stronger edge."""
    undirected = nx.Graph()
    undirected.add_nodes_from(graph.nodes(data=True))
    for u, v, data in graph.edges(data=True):
        strength = data.get("strength", 0.0)
        if undirected.has_edge(u, v):
            existing = undirected.edges[u, v]
            existing["strength"] = max(existing["strength"], strength)
        else:
            undirected.add_edge(u, v, strength=strength)
    return undirected


def _with_distances(graph: nx.DiGraph) -> nx.DiGraph:
    """Copy with a ``distance`` attribute (100 / strength); zero-strength edges dropped."""
    weighted = nx.DiGraph()
    weighted.add_nodes_from(graph)
    for u, v, data in graph.edges(data=True):
        distance = _edge_distance(u, v, data)
        if distance is not None:
            weighted.add_edge(u, v, distance=distance)
    return weighted


def _rank(scores: Dict[str, float]) -> Dict[str, int]:
    """1-based ranks, highest score first, ties broken by id ascending."""
    ordered = sorted(scores, key=lambda eid: (-scores[eid], eid))
    return {eid: position for position, eid in enumerate(ordered, start=1)}


def compute_centrality(
    snapshot: GraphSnapshot,
    weights: Optional[Dict[str, float]] = None,
) -> CentralityReport:
    """Convenience function for a full centrality report."""
    return CentralityEngine().compute(snapshot, weights=weights)
