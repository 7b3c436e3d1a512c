"""
Engine Settings

Process-wide settings for the context graph engine. Values come from
defaults or from ``CONTEXT_GRAPH_*`` environment variables, e.g.
``CONTEXT_GRAPH_DAMPING=0.9`` or ``CONTEXT_GRAPH_STALENESS_DAYS=30``, and
convert into the per-engine configuration dataclasses.
"""

import os
from typing import Literal, Mapping, Optional

from pydantic import BaseModel, Field

from context_graph.graph_analysis import (
    CentralityConfig,
    GraphAnalyzer,
    GraphStore,
    ImpactConfig,
    RecommendationThresholds,
)

ENV_PREFIX = "CONTEXT_GRAPH_"


class EngineSettings(BaseModel):
    """Tunable parameters for every analysis engine."""

    # Centrality
    damping: float = Field(0.85, description="PageRank damping factor")
    max_iter: int = Field(100, description="Power iteration cap")
    tol: float = Field(1e-6, description="Power iteration convergence tolerance")
    weighted: bool = Field(
        False, description="Use 100/strength as distance for path metrics"
    )
    closeness_mode: Literal["undirected", "outgoing"] = Field(
        "undirected", description="Reachability used for closeness"
    )
    score_precision: int = Field(6, description="Decimals kept on scaled scores")

    # Impact
    default_max_hops: int = Field(3, description="Default impact traversal depth")
    hours_per_day: float = Field(8.0, description="Hours in an effort day")

    # Recommendations
    pattern_frequency: float = Field(
        0.8, description="Share of a type that must follow a link pattern"
    )
    min_population: int = Field(3, description="Minimum entities of a type for patterns")
    strength_std_factor: float = Field(
        1.0, description="Standard deviations below median that count as weak"
    )
    high_usage_threshold: float = Field(100.0, description="Usage counter signal level")
    staleness_days: int = Field(90, description="Activity window for removal checks")

    # Facade
    max_snapshots: int = Field(16, description="Issued snapshots kept addressable")
    cache_size: int = Field(256, description="Maximum cached analytics results")
    freshness_days: int = Field(90, description="Window for the freshness statistic")

    @classmethod
    def from_env(cls, environ: Optional[Mapping[str, str]] = None) -> "EngineSettings":
        """
        Build settings from ``CONTEXT_GRAPH_*`` variables.

        Args:
            environ: Mapping to read instead of ``os.environ``
        """
        environ = os.environ if environ is None else environ
        values = {}
        for name in cls.model_fields:
            key = f"{ENV_PREFIX}{name.upper()}"
            if key in environ:
                values[name] = environ[key]
        return cls.model_validate(values)

    def centrality_config(self) -> CentralityConfig:
        return CentralityConfig(
            damping=self.damping,
            max_iter=self.max_iter,
            tol=self.tol,
            weighted=self.weighted,
            closeness_mode=self.closeness_mode,
            score_precision=self.score_precision,
        )

    def impact_config(self) -> ImpactConfig:
        return ImpactConfig(
            default_max_hops=self.default_max_hops,
            hours_per_day=self.hours_per_day,
        )

    def recommendation_thresholds(self) -> RecommendationThresholds:
        return RecommendationThresholds(
            pattern_frequency=self.pattern_frequency,
            min_population=self.min_population,
            strength_std_factor=self.strength_std_factor,
            high_usage_threshold=self.high_usage_threshold,
            staleness_days=self.staleness_days,
        )

    def create_analyzer(self, store: Optional[GraphStore] = None) -> GraphAnalyzer:
        """Build a GraphAnalyzer configured from these settings."""
        return GraphAnalyzer(
            store=store,
            centrality_config=self.centrality_config(),
            impact_config=self.impact_config(),
            thresholds=self.recommendation_thresholds(),
            max_snapshots=self.max_snapshots,
            cache_size=self.cache_size,
            freshness_days=self.freshness_days,
        )
