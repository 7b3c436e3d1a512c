"""
High-level graph analysis interface.

This module provides the GraphAnalyzer facade that:
- Issues snapshots of the live graph store and keeps recent ones addressable
- Dispatches to the centrality, impact, query and recommendation engines
- Caches results per (snapshot version, algorithm, parameters)
- Applies accepted recommendations back to the store
"""

import threading
from collections import Counter, OrderedDict
from dataclasses import asdict
from datetime import datetime, timedelta
from typing import Any, Dict, List, Optional, Tuple

import networkx as nx
from loguru import logger

from context_graph.domain.architecture import Relationship, ensure_utc, utcnow
from context_graph.exceptions import ContextGraphError, NotFoundError
from context_graph.graph_analysis.base import (
    CentralityReport,
    GraphStats,
    ImpactReport,
    MutationResult,
    RecommendationAction,
    RelationshipRecommendation,
    RelationshipTypeStats,
)
from context_graph.graph_analysis.cache import ResultCache
from context_graph.graph_analysis.cancellation import CancellationToken
from context_graph.graph_analysis.centrality import CentralityEngine
from context_graph.graph_analysis.config import (
    CentralityConfig,
    ImpactConfig,
    RecommendationThresholds,
    validate_weights,
)
from context_graph.graph_analysis.impact import ImpactAnalyzer, coerce_change_type
from context_graph.graph_analysis.query import QueryEngine, QueryResult
from context_graph.graph_analysis.recommendations import RecommendationEngine
from context_graph.graph_analysis.store import GraphSnapshot, GraphStore


class GraphAnalyzer:
    """
    High-level interface for graph analysis operations.

    Manages:
    - Snapshot issuance and a bounded registry of recent snapshots
    - Result caching keyed by snapshot version
    - Algorithm execution via the analysis engines
    - Applying recommendations through the graph store

    Example usage:
        store = GraphStore()
        store.load(entities, relationships)
        analyzer = GraphAnalyzer(store)

        # Centrality analysis
        report = analyzer.compute_centrality(weights={"pagerank": 2, "betweenness": 1})

        # Blast radius of retiring a database
        impact = analyzer.analyze_impact("tech-postgres", "delete", max_hops=2)

        # Recommendations, then accept one
        recs = analyzer.get_recommendations()
        result = analyzer.apply_recommendation(recs[0].id)
    """

    DEFAULT_MAX_SNAPSHOTS = 16

    def __init__(
        self,
        store: Optional[GraphStore] = None,
        centrality_config: Optional[CentralityConfig] = None,
        impact_config: Optional[ImpactConfig] = None,
        thresholds: Optional[RecommendationThresholds] = None,
        max_snapshots: int = DEFAULT_MAX_SNAPSHOTS,
        cache_size: int = ResultCache.DEFAULT_MAX_SIZE,
        freshness_days: int = 90,
    ):
        """
        Initialize the GraphAnalyzer.

        Args:
            store: Live graph store (a new empty store if omitted)
            centrality_config: Centrality engine configuration
            impact_config: Impact analyzer configuration
            thresholds: Default recommendation thresholds
            max_snapshots: How many issued snapshots stay addressable by id
            cache_size: Maximum cached results
            freshness_days: Window used for the graph freshness statistic
        """
        self._store = store if store is not None else GraphStore()
        self._centrality = CentralityEngine(centrality_config)
        self._impact = ImpactAnalyzer(impact_config)
        self._query = QueryEngine()
        self._thresholds = thresholds or RecommendationThresholds()
        self._cache = ResultCache(max_size=cache_size)
        self._max_snapshots = max_snapshots
        self._freshness_days = freshness_days

        self._lock = threading.RLock()
        self._snapshots: "OrderedDict[int, GraphSnapshot]" = OrderedDict()
        # recommendation id -> (snapshot version, recommendation); entries go
        # away with their snapshot when the registry evicts it
        self._issued: Dict[str, Tuple[int, RelationshipRecommendation]] = {}

    @property
    def store(self) -> GraphStore:
        """Access the live graph store for mutations."""
        return self._store

    @property
    def cache(self) -> ResultCache:
        return self._cache

    # =========================================================================
    # SNAPSHOTS
    # =========================================================================

    def snapshot(self) -> GraphSnapshot:
        """Take (or reuse) the snapshot of the store's current version."""
        return self._register(self._store.snapshot())

    def _register(self, snap: GraphSnapshot) -> GraphSnapshot:
        with self._lock:
            self._snapshots[snap.version] = snap
            self._snapshots.move_to_end(snap.version)
            while len(self._snapshots) > self._max_snapshots:
                evicted, _ = self._snapshots.popitem(last=False)
                self._issued = {
                    rec_id: entry
                    for rec_id, entry in self._issued.items()
                    if entry[0] != evicted
                }
        return snap

    def get_snapshot(self, snapshot_id: Optional[int] = None) -> GraphSnapshot:
        """
        Resolve a snapshot id (its version) to a snapshot.

        ``None`` means the current version of the live store.

        Raises:
            NotFoundError: the id was never issued or has been evicted
        """
        if snapshot_id is None:
            return self.snapshot()
        with self._lock:
            snap = self._snapshots.get(snapshot_id)
        if snap is not None:
            return snap
        current = self._store.snapshot()
        if current.version == snapshot_id:
            return self._register(current)
        raise NotFoundError(f"Unknown snapshot: {snapshot_id}")

    def invalidate_cache(self) -> None:
        """Drop all cached results."""
        dropped = self._cache.clear()
        logger.debug(f"Invalidated {dropped} cached results")

    # =========================================================================
    # CENTRALITY
    # =========================================================================

    def compute_centrality(
        self,
        snapshot_id: Optional[int] = None,
        weights: Optional[Dict[str, float]] = None,
        entity_type: Optional[str] = None,
        sort_by: Optional[str] = None,
        cancel_token: Optional[CancellationToken] = None,
    ) -> CentralityReport:
        """
        Centrality metrics and strategic value for every entity.

        Args:
            snapshot_id: Snapshot version (None = current)
            weights: Strategic-value weights per metric
            entity_type: Only report entities of this type
            sort_by: Metric name or "strategic_value"
            cancel_token: Cooperative cancellation

        Returns:
            CentralityReport
        """
        snap = self.get_snapshot(snapshot_id)
        resolved = (
            validate_weights(weights) if weights is not None
            else self._centrality.config.weights
        )
        params = {"weights": resolved, "entity_type": entity_type, "sort_by": sort_by}

        cached = self._cache.get(snap.version, "centrality", **params)
        if cached is not None:
            return cached

        report = self._centrality.compute(
            snap,
            weights=resolved,
            entity_type=entity_type,
            sort_by=sort_by,
            cancel_token=cancel_token,
        )
        self._cache.set(snap.version, "centrality", report, **params)
        return report

    # =========================================================================
    # IMPACT
    # =========================================================================

    def analyze_impact(
        self,
        entity_id: str,
        change_type: Any,
        max_hops: Optional[int] = None,
        snapshot_id: Optional[int] = None,
        cancel_token: Optional[CancellationToken] = None,
    ) -> ImpactReport:
        """Blast radius of changing ``entity_id`` (see ImpactAnalyzer.analyze)."""
        snap = self.get_snapshot(snapshot_id)
        change = coerce_change_type(change_type)
        params = {"entity_id": entity_id, "change_type": change.value, "max_hops": max_hops}

        cached = self._cache.get(snap.version, "impact", **params)
        if cached is not None:
            return cached

        report = self._impact.analyze(snap, entity_id, change, max_hops, cancel_token)
        self._cache.set(snap.version, "impact", report, **params)
        return report

    # =========================================================================
    # QUERIES
    # =========================================================================

    def run_query(self, query: Any, snapshot_id: Optional[int] = None) -> QueryResult:
        """Run a pattern query; rows are produced lazily on iteration."""
        return self._query.run(self.get_snapshot(snapshot_id), query)

    def run_saved_query(self, name: str, snapshot_id: Optional[int] = None) -> QueryResult:
        return self._query.run_saved(self.get_snapshot(snapshot_id), name)

    # =========================================================================
    # RECOMMENDATIONS
    # =========================================================================

    def get_recommendations(
        self,
        snapshot_id: Optional[int] = None,
        thresholds: Optional[RecommendationThresholds] = None,
        now: Optional[datetime] = None,
    ) -> List[RelationshipRecommendation]:
        """
        Heuristic relationship recommendations for a snapshot.

        Args:
            snapshot_id: Snapshot version (None = current)
            thresholds: Override the default thresholds
            now: Reference time for staleness checks

        Returns:
            Recommendations, highest priority first
        """
        snap = self.get_snapshot(snapshot_id)
        thresholds = thresholds or self._thresholds
        params = {"thresholds": asdict(thresholds), "now": now.isoformat() if now else None}

        recs = self._cache.get(snap.version, "recommendations", **params)
        if recs is None:
            recs = RecommendationEngine(thresholds).recommend(snap, now=now)
            self._cache.set(snap.version, "recommendations", recs, **params)

        with self._lock:
            if snap.version in self._snapshots:
                for rec in recs:
                    self._issued[rec.id] = (snap.version, rec)
        return list(recs)

    def apply_recommendation(self, recommendation_id: str) -> MutationResult:
        """
        Apply a previously issued recommendation to the live store.

        Store errors (the edge already exists, the entity was removed, ...)
        come back as ``success=False`` with the error kind.

        Raises:
            NotFoundError: the recommendation id was never issued, or the
                snapshot it was issued for has been evicted
        """
        with self._lock:
            entry = self._issued.get(recommendation_id)
        if entry is None:
            raise NotFoundError(f"Unknown recommendation: {recommendation_id}")
        rec = entry[1]

        try:
            relationship_id = self._apply(rec)
        except ContextGraphError as e:
            logger.warning(
                f"Recommendation {rec.id} ({rec.action.value}) rejected: "
                f"{e.kind}: {e.message}"
            )
            return MutationResult(
                success=False,
                recommendation_id=rec.id,
                action=rec.action,
                relationship_id=rec.relationship_id,
                snapshot_version=self._store.version,
                error_kind=e.kind,
                error=e.message,
            )

        with self._lock:
            self._issued.pop(rec.id, None)
        logger.info(
            f"Applied recommendation {rec.id}: {rec.action.value} "
            f"{rec.source_id} -> {rec.target_id}"
        )
        return MutationResult(
            success=True,
            recommendation_id=rec.id,
            action=rec.action,
            relationship_id=relationship_id,
            snapshot_version=self._store.version,
        )

    def _apply(self, rec: RelationshipRecommendation) -> str:
        if rec.action == RecommendationAction.ADD:
            strength = rec.suggested_strength if rec.suggested_strength is not None else 50.0
            return self._store.add_relationship(
                Relationship(
                    source_id=rec.source_id,
                    target_id=rec.target_id,
                    relationship_type=rec.relationship_type,
                    strength=strength,
                    metadata={"origin": "recommendation", "recommendation_id": rec.id},
                )
            )
        if rec.action == RecommendationAction.STRENGTHEN:
            self._store.update_relationship(rec.relationship_id, strength=rec.suggested_strength)
            return rec.relationship_id
        self._store.remove_relationship(rec.relationship_id)
        return rec.relationship_id

    # =========================================================================
    # STATISTICS
    # =========================================================================

    def get_graph_stats(
        self,
        snapshot_id: Optional[int] = None,
        now: Optional[datetime] = None,
    ) -> GraphStats:
        """
        Summary statistics for a snapshot.

        ``connectivity`` is the percentage of entities with at least one
        relationship; ``freshness`` the percentage modified within the
        freshness window.
        """
        snap = self.get_snapshot(snapshot_id)
        now = ensure_utc(now or utcnow())
        entities = [snap.get_entity(eid) for eid in snap.entity_ids()]

        rel_types: Dict[str, List[float]] = {}
        for rel in snap.iter_relationships():
            rel_types.setdefault(rel.relationship_type.value, []).append(rel.strength)

        connected = sum(
            1 for e in entities if snap.in_degree(e.id) + snap.out_degree(e.id) > 0
        )
        window = timedelta(days=self._freshness_days)
        fresh = sum(1 for e in entities if now - e.modified_at <= window)
        total = len(entities)

        return GraphStats(
            snapshot_version=snap.version,
            entity_count=total,
            relationship_count=snap.relationship_count,
            entities_by_type=dict(sorted(Counter(e.entity_type.value for e in entities).items())),
            relationships_by_type={
                rel_type: RelationshipTypeStats(
                    count=len(strengths),
                    average_strength=round(sum(strengths) / len(strengths), 2),
                )
                for rel_type, strengths in sorted(rel_types.items())
            },
            lifecycle=dict(sorted(Counter(e.lifecycle_status.value for e in entities).items())),
            components=nx.number_weakly_connected_components(snap.to_networkx()),
            connectivity=round(100.0 * connected / total, 2) if total else 0.0,
            freshness=round(100.0 * fresh / total, 2) if total else 0.0,
        )
