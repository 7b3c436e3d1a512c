"""
Shared types for the graph analysis engines.

Enums for algorithm selectors plus the result records returned to callers.
All results are pydantic models so they serialize to JSON for the UI layer
with ``model_dump(mode="json")``.
"""

from enum import Enum
from typing import Dict, List, Optional

from pydantic import BaseModel, Field


class CentralityMethod(str, Enum):
    """Available centrality algorithms."""

    DEGREE = "degree"
    CLOSENESS = "closeness"
    BETWEENNESS = "betweenness"
    EIGENVECTOR = "eigenvector"
    PAGERANK = "pagerank"


class ChangeType(str, Enum):
    """Hypothetical changes evaluated by impact analysis."""

    DELETE = "delete"
    DEPRECATE = "deprecate"
    MODIFY = "modify"
    MOVE = "move"
    REPLACE = "replace"


class ImpactLevel(str, Enum):
    CRITICAL = "critical"
    HIGH = "high"
    MEDIUM = "medium"
    LOW = "low"


class RecommendationAction(str, Enum):
    ADD = "add"
    STRENGTHEN = "strengthen"
    REMOVE = "remove"


class Priority(str, Enum):
    HIGH = "high"
    MEDIUM = "medium"
    LOW = "low"


def bucket_score(score: float) -> ImpactLevel:
    """Map a [0, 100] score onto the four impact levels."""
    if score >= 75:
        return ImpactLevel.CRITICAL
    if score >= 50:
        return ImpactLevel.HIGH
    if score >= 25:
        return ImpactLevel.MEDIUM
    return ImpactLevel.LOW


# =============================================================================
# CENTRALITY RESULTS
# =============================================================================


class MetricScore(BaseModel):
    """One metric for one entity: scaled score, raw value and rank."""

    score: float = Field(..., ge=0.0, le=100.0)
    raw: float
    rank: int


class ConnectionCounts(BaseModel):
    inbound: int = 0
    outbound: int = 0
    total: int = 0


class CentralityResult(BaseModel):
    """Per-entity centrality record."""

    entity_id: str
    entity_name: str
    entity_type: str
    degree: MetricScore
    closeness: MetricScore
    betweenness: MetricScore
    eigenvector: MetricScore
    pagerank: MetricScore
    strategic_value: float
    strategic_rank: int
    connections: ConnectionCounts

    def metric(self, method: CentralityMethod) -> MetricScore:
        return getattr(self, CentralityMethod(method).value)


class CentralityReport(BaseModel):
    """Centrality results for a whole snapshot."""

    snapshot_version: int
    results: List[CentralityResult] = Field(default_factory=list)
    weights: Dict[str, float] = Field(default_factory=dict)
    partial: bool = False
    warnings: List[str] = Field(default_factory=list)

    def get(self, entity_id: str) -> Optional[CentralityResult]:
        for result in self.results:
            if result.entity_id == entity_id:
                return result
        return None

    def top(self, k: int) -> List[CentralityResult]:
        """Top-k entities by strategic value."""
        return sorted(self.results, key=lambda r: r.strategic_rank)[:k]


# =============================================================================
# IMPACT RESULTS
# =============================================================================


class AffectedEntity(BaseModel):
    entity_id: str
    entity_name: str
    entity_type: str
    hop_distance: int
    impact_level: ImpactLevel
    impact_score: float
    path_strength: float
    relationship_type: str
    via_entity_id: str
    reason: str
    estimated_effort_hours: float = 0.0
    suggested_actions: List[str] = Field(default_factory=list)


class RiskAssessment(BaseModel):
    probability: float = Field(0.0, ge=0.0, le=100.0)
    severity: str = "Low"
    technical_impact: List[str] = Field(default_factory=list)
    mitigation_strategies: List[str] = Field(default_factory=list)


class ImpactReport(BaseModel):
    """Blast radius of a hypothetical change to one entity."""

    snapshot_version: int
    target_id: str
    change_type: ChangeType
    max_hops: int
    affected_entities: List[AffectedEntity] = Field(default_factory=list)
    impact_score: float = 0.0
    impact_level: ImpactLevel = ImpactLevel.LOW
    blast_radius: float = 0.0
    risk: RiskAssessment = Field(default_factory=RiskAssessment)
    estimated_effort_hours: float = 0.0
    estimated_duration_days: int = 0
    parallelizable: bool = False

    def get(self, entity_id: str) -> Optional[AffectedEntity]:
        for affected in self.affected_entities:
            if affected.entity_id == entity_id:
                return affected
        return None


# =============================================================================
# RECOMMENDATIONS
# =============================================================================


class RecommendationImpact(BaseModel):
    strategic_value: float = 0.0
    completeness: float = 0.0
    consistency: float = 0.0

    @property
    def mean(self) -> float:
        return (self.strategic_value + self.completeness + self.consistency) / 3


class RelationshipRecommendation(BaseModel):
    """A proposed edge mutation; never applied automatically."""

    id: str
    action: RecommendationAction
    source_id: str
    target_id: str
    relationship_type: str
    suggested_strength: Optional[float] = None
    current_strength: Optional[float] = None
    relationship_id: Optional[str] = None
    confidence: float = Field(..., ge=0.0, le=100.0)
    priority: Priority = Priority.LOW
    impact: RecommendationImpact = Field(default_factory=RecommendationImpact)
    evidence: List[str] = Field(default_factory=list)
    algorithm: str
    title: str = ""


class MutationResult(BaseModel):
    """Outcome of applying a recommendation to the graph store."""

    success: bool
    recommendation_id: str
    action: RecommendationAction
    relationship_id: Optional[str] = None
    snapshot_version: int
    error_kind: Optional[str] = None
    error: Optional[str] = None


# =============================================================================
# GRAPH STATISTICS
# =============================================================================


class RelationshipTypeStats(BaseModel):
    count: int = 0
    average_strength: float = 0.0


class GraphStats(BaseModel):
    snapshot_version: int
    entity_count: int = 0
    relationship_count: int = 0
    entities_by_type: Dict[str, int] = Field(default_factory=dict)
    relationships_by_type: Dict[str, RelationshipTypeStats] = Field(
        default_factory=dict
    )
    lifecycle: Dict[str, int] = Field(default_factory=dict)
    components: int = 0
    connectivity: float = 0.0
    freshness: float = 0.0
