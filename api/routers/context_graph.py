import threading
from typing import Dict, List, Optional

from fastapi import APIRouter, Depends, HTTPException, Query
from loguru import logger
from pydantic import ValidationError

from api.models import (
    EntityCreate,
    EntityDeleteResponse,
    ImpactRequest,
    MutationResponse,
    QueryRequest,
    QueryResponse,
    QueryRow,
    RelationshipCreate,
)
from context_graph.config import EngineSettings
from context_graph.domain.architecture import Entity, Relationship
from context_graph.exceptions import ContextGraphError
from context_graph.graph_analysis import (
    CentralityReport,
    GraphAnalyzer,
    GraphStats,
    ImpactReport,
    MutationResult,
    RelationshipRecommendation,
)

router = APIRouter()

_analyzer: Optional[GraphAnalyzer] = None
_analyzer_lock = threading.Lock()


def get_analyzer() -> GraphAnalyzer:
    """Process-wide analyzer, configured from CONTEXT_GRAPH_* variables."""
    global _analyzer
    if _analyzer is None:
        with _analyzer_lock:
            if _analyzer is None:
                _analyzer = EngineSettings.from_env().create_analyzer()
    return _analyzer


def _parse_weights(raw: Optional[str]) -> Optional[Dict[str, float]]:
    """Parse ``"pagerank:2,betweenness:1"`` into a weight mapping."""
    if not raw:
        return None
    weights = {}
    for part in raw.split(","):
        name, sep, value = part.partition(":")
        try:
            weights[name.strip()] = float(value) if sep else 1.0
        except ValueError:
            raise HTTPException(status_code=400, detail=f"Invalid weight: {part!r}")
    return weights


@router.get("/graph/stats", response_model=GraphStats)
def get_graph_stats(
    snapshot_id: Optional[int] = None,
    analyzer: GraphAnalyzer = Depends(get_analyzer),
):
    """Get summary statistics for the graph."""
    try:
        return analyzer.get_graph_stats(snapshot_id)
    except ContextGraphError:
        raise
    except Exception as e:
        logger.error(f"Error computing graph stats: {str(e)}")
        raise HTTPException(status_code=500, detail=f"Error computing graph stats: {str(e)}")


@router.post("/graph/entities", response_model=MutationResponse, status_code=201)
def create_entity(
    entity_create: EntityCreate,
    analyzer: GraphAnalyzer = Depends(get_analyzer),
):
    """Add an entity to the live graph."""
    try:
        entity = Entity(**entity_create.model_dump(exclude_none=True))
    except ValidationError as e:
        raise HTTPException(
            status_code=422,
            detail=e.errors(include_url=False, include_context=False),
        )

    entity_id = analyzer.store.add_entity(entity)
    return MutationResponse(id=entity_id, snapshot_version=analyzer.store.version)


@router.post("/graph/relationships", response_model=MutationResponse, status_code=201)
def create_relationship(
    relationship_create: RelationshipCreate,
    analyzer: GraphAnalyzer = Depends(get_analyzer),
):
    """Add a relationship between two existing entities."""
    try:
        relationship = Relationship(**relationship_create.model_dump(exclude_none=True))
    except ValidationError as e:
        raise HTTPException(
            status_code=422,
            detail=e.errors(include_url=False, include_context=False),
        )

    relationship_id = analyzer.store.add_relationship(relationship)
    return MutationResponse(id=relationship_id, snapshot_version=analyzer.store.version)


@router.delete("/graph/entities/{entity_id}", response_model=EntityDeleteResponse)
def delete_entity(entity_id: str, analyzer: GraphAnalyzer = Depends(get_analyzer)):
    """Remove an entity and its relationships."""
    removed = analyzer.store.remove_entity(entity_id)
    return EntityDeleteResponse(
        id=entity_id,
        removed_relationships=removed,
        snapshot_version=analyzer.store.version,
    )


@router.get("/graph/centrality", response_model=CentralityReport)
def get_centrality(
    snapshot_id: Optional[int] = None,
    weights: Optional[str] = Query(None, description="e.g. pagerank:2,betweenness:1"),
    entity_type: Optional[str] = None,
    sort_by: Optional[str] = None,
    limit: Optional[int] = Query(None, ge=1),
    analyzer: GraphAnalyzer = Depends(get_analyzer),
):
    """Get centrality metrics and strategic value per entity."""
    try:
        report = analyzer.compute_centrality(
            snapshot_id=snapshot_id,
            weights=_parse_weights(weights),
            entity_type=entity_type,
            sort_by=sort_by,
        )
        if limit is not None:
            report = report.model_copy(update={"results": report.results[:limit]})
        return report
    except (ContextGraphError, HTTPException):
        raise
    except Exception as e:
        logger.error(f"Error computing centrality: {str(e)}")
        raise HTTPException(status_code=500, detail=f"Error computing centrality: {str(e)}")


@router.post("/graph/impact", response_model=ImpactReport)
def analyze_impact(
    impact_request: ImpactRequest,
    analyzer: GraphAnalyzer = Depends(get_analyzer),
):
    """Analyze the blast radius of a hypothetical change."""
    try:
        return analyzer.analyze_impact(
            impact_request.entity_id,
            impact_request.change_type,
            max_hops=impact_request.max_hops,
            snapshot_id=impact_request.snapshot_id,
        )
    except ContextGraphError:
        raise
    except Exception as e:
        logger.error(f"Error analyzing impact: {str(e)}")
        raise HTTPException(status_code=500, detail=f"Error analyzing impact: {str(e)}")


@router.post("/graph/query", response_model=QueryResponse)
def run_query(
    query_request: QueryRequest,
    analyzer: GraphAnalyzer = Depends(get_analyzer),
):
    """Run a structured pattern query or a saved query."""
    if query_request.saved_query:
        result = analyzer.run_saved_query(
            query_request.saved_query, snapshot_id=query_request.snapshot_id
        )
    elif query_request.query is not None:
        result = analyzer.run_query(query_request.query, snapshot_id=query_request.snapshot_id)
    else:
        raise HTTPException(status_code=400, detail="Provide either query or saved_query")

    rows = [
        QueryRow(source=match.source, relationship=match.relationship, target=match.target)
        for match in result
    ]
    return QueryResponse(
        snapshot_version=result.snapshot.version, count=len(rows), rows=rows
    )


@router.get("/graph/recommendations", response_model=List[RelationshipRecommendation])
def get_recommendations(
    snapshot_id: Optional[int] = None,
    min_confidence: float = Query(0.0, ge=0.0, le=100.0),
    analyzer: GraphAnalyzer = Depends(get_analyzer),
):
    """Get heuristic relationship recommendations."""
    try:
        recs = analyzer.get_recommendations(snapshot_id=snapshot_id)
        return [rec for rec in recs if rec.confidence >= min_confidence]
    except ContextGraphError:
        raise
    except Exception as e:
        logger.error(f"Error generating recommendations: {str(e)}")
        raise HTTPException(
            status_code=500, detail=f"Error generating recommendations: {str(e)}"
        )


@router.post(
    "/graph/recommendations/{recommendation_id}/apply", response_model=MutationResult
)
def apply_recommendation(
    recommendation_id: str,
    analyzer: GraphAnalyzer = Depends(get_analyzer),
):
    """Accept a recommendation and apply it to the live graph."""
    result = analyzer.apply_recommendation(recommendation_id)
    if not result.success:
        logger.error(
            f"Recommendation {recommendation_id} could not be applied: {result.error}"
        )
    return result
