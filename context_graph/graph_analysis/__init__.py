"""
Context Graph Analysis Module.

This module provides the analytics engine for the architecture context
graph: a copy-on-write graph store, centrality metrics, blast-radius impact
analysis, structured pattern queries and heuristic relationship
recommendations, all computed over immutable snapshots.
"""

from context_graph.graph_analysis.base import (
    AffectedEntity,
    CentralityMethod,
    CentralityReport,
    CentralityResult,
    ChangeType,
    GraphStats,
    ImpactLevel,
    ImpactReport,
    MutationResult,
    Priority,
    RecommendationAction,
    RelationshipRecommendation,
)
from context_graph.graph_analysis.cancellation import CancellationToken
from context_graph.graph_analysis.config import (
    CentralityConfig,
    ImpactConfig,
    RecommendationThresholds,
)
from context_graph.graph_analysis.store import GraphSnapshot, GraphStore
from context_graph.graph_analysis.centrality import CentralityEngine, compute_centrality
from context_graph.graph_analysis.impact import ImpactAnalyzer, analyze_impact
from context_graph.graph_analysis.query import (
    SAVED_QUERIES,
    PatternQuery,
    QueryEngine,
    QueryFilter,
    QueryMatch,
    QueryResult,
    run_query,
)
from context_graph.graph_analysis.recommendations import (
    RecommendationEngine,
    get_recommendations,
)
from context_graph.graph_analysis.cache import ResultCache
from context_graph.graph_analysis.analyzer import GraphAnalyzer

__all__ = [
    # Store and snapshots
    "GraphStore",
    "GraphSnapshot",
    "CancellationToken",
    # Configuration
    "CentralityConfig",
    "ImpactConfig",
    "RecommendationThresholds",
    # Result types
    "CentralityMethod",
    "CentralityResult",
    "CentralityReport",
    "ChangeType",
    "ImpactLevel",
    "AffectedEntity",
    "ImpactReport",
    "Priority",
    "RecommendationAction",
    "RelationshipRecommendation",
    "MutationResult",
    "GraphStats",
    # Engines
    "CentralityEngine",
    "ImpactAnalyzer",
    "QueryEngine",
    "PatternQuery",
    "QueryFilter",
    "QueryMatch",
    "QueryResult",
    "SAVED_QUERIES",
    "RecommendationEngine",
    # Convenience functions
    "compute_centrality",
    "analyze_impact",
    "run_query",
    "get_recommendations",
    # High-level interface
    "ResultCache",
    "GraphAnalyzer",
]
