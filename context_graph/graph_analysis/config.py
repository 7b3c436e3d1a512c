"""
Graph Analysis Configuration

Per-engine configuration dataclasses. Each validates itself on construction
and raises ``InvalidParameterError`` for out-of-range values.
"""

from dataclasses import dataclass, field
from typing import Dict, Literal, Optional, Tuple

from context_graph.exceptions import InvalidParameterError
from context_graph.graph_analysis.base import CentralityMethod


# =============================================================================
# CENTRALITY
# =============================================================================


DEFAULT_WEIGHTS: Dict[str, float] = {m.value: 1.0 for m in CentralityMethod}


def validate_weights(weights: Optional[Dict[str, float]]) -> Dict[str, float]:
    """
    Resolve strategic-value weights.

    ``None`` means equal weights. Otherwise keys must be metric names, values
    non-negative and not all zero; metrics left out weigh 0.
    """
    if weights is None:
        return dict(DEFAULT_WEIGHTS)

    resolved = {m.value: 0.0 for m in CentralityMethod}
    for key, value in weights.items():
        name = key.value if isinstance(key, CentralityMethod) else str(key).lower()
        if name not in resolved:
            raise InvalidParameterError(f"Unknown centrality metric: {key!r}")
        if value is None or value < 0:
            raise InvalidParameterError(f"Weight for {name} must be >= 0")
        resolved[name] = float(value)

    if sum(resolved.values()) <= 0:
        raise InvalidParameterError("At least one centrality weight must be > 0")
    return resolved


@dataclass
class CentralityConfig:
    """Configuration for the centrality engine."""

    # PageRank damping factor (probability of following an edge vs teleporting)
    damping: float = 0.85

    # Iteration cap shared by eigenvector and PageRank power iterations
    max_iter: int = 100

    # Convergence tolerance (L2 change for eigenvector, L1 for PageRank)
    tol: float = 1e-6

    # Treat strength as inverse distance (100 / strength) for path metrics
    weighted: bool = False

    # "undirected": weakly connected reachability; "outgoing": directed
    closeness_mode: Literal["undirected", "outgoing"] = "undirected"

    # Default strategic-value weights (None = equal)
    weights: Optional[Dict[str, float]] = None

    # Decimal places kept on scaled [0, 100] scores
    score_precision: int = 6

    def __post_init__(self):
        if not 0 < self.damping < 1:
            raise InvalidParameterError("damping must be between 0 and 1")
        if self.max_iter < 1:
            raise InvalidParameterError("max_iter must be at least 1")
        if self.tol <= 0:
            raise InvalidParameterError("tol must be positive")
        if self.closeness_mode not in ("undirected", "outgoing"):
            raise InvalidParameterError(
                f"closeness_mode must be 'undirected' or 'outgoing', "
                f"got {self.closeness_mode!r}"
            )
        self.weights = validate_weights(self.weights)


# =============================================================================
# IMPACT
# =============================================================================


@dataclass
class ImpactConfig:
    """Configuration for blast-radius analysis."""

    default_max_hops: int = 3

    # Multiplier applied per change type
    severity_weights: Dict[str, float] = field(
        default_factory=lambda: {
            "delete": 1.5,
            "replace": 1.5,
            "deprecate": 1.0,
            "move": 1.0,
            "modify": 0.5,
        }
    )

    # Contribution of each affected entity to the aggregate score, by level
    level_weights: Dict[str, float] = field(
        default_factory=lambda: {
            "critical": 0.5,
            "high": 0.35,
            "medium": 0.2,
            "low": 0.1,
        }
    )

    # Remediation effort per affected entity, by level
    effort_hours: Dict[str, float] = field(
        default_factory=lambda: {
            "critical": 8.0,
            "high": 4.0,
            "medium": 2.0,
            "low": 1.0,
        }
    )

    hours_per_day: float = 8.0

    def __post_init__(self):
        if self.default_max_hops < 0:
            raise InvalidParameterError("default_max_hops must be >= 0")
        if any(w < 0 for w in self.severity_weights.values()):
            raise InvalidParameterError("severity weights must be >= 0")
        if self.hours_per_day <= 0:
            raise InvalidParameterError("hours_per_day must be positive")


# =============================================================================
# RECOMMENDATIONS
# =============================================================================


@dataclass
class RecommendationThresholds:
    """Thresholds for the heuristic recommendation rules."""

    # Share of a type's entities that must follow a link pattern
    pattern_frequency: float = 0.8

    # Minimum entities of a type before its patterns are trusted
    min_population: int = 3

    # Strengthen when strength < median - factor * std of the same type
    strength_std_factor: float = 1.0

    # Minimum relationships of a type before computing median/std
    min_relationships_for_stats: int = 3

    # Usage counter value that counts as "high usage"
    high_usage_threshold: float = 100.0

    # Metadata keys read as usage counters
    usage_keys: Tuple[str, ...] = (
        "usage_count",
        "call_count",
        "daily_calls",
        "daily_transactions",
    )

    # Metadata keys read as last-activity timestamps
    activity_keys: Tuple[str, ...] = (
        "last_activity_at",
        "last_used_at",
        "last_seen_at",
    )

    # Activity older than this many days counts as stale
    staleness_days: int = 90

    def __post_init__(self):
        if not 0 < self.pattern_frequency <= 1:
            raise InvalidParameterError("pattern_frequency must be in (0, 1]")
        if self.min_population < 1:
            raise InvalidParameterError("min_population must be at least 1")
        if self.strength_std_factor < 0:
            raise InvalidParameterError("strength_std_factor must be >= 0")
        if self.min_relationships_for_stats < 2:
            raise InvalidParameterError("min_relationships_for_stats must be at least 2")
        if self.staleness_days < 0:
            raise InvalidParameterError("staleness_days must be >= 0")
