from typing import Any, Dict, List, Optional

from pydantic import BaseModel, Field

from context_graph.domain.architecture import Entity, Relationship
from context_graph.graph_analysis.query import PatternQuery


# Graph mutation models
class EntityCreate(BaseModel):
    id: Optional[str] = Field(None, description="Entity id (generated if omitted)")
    entity_type: str = Field(..., description="Entity type, e.g. 'application'")
    name: str = Field(..., description="Display name")
    attributes: Dict[str, Any] = Field(default_factory=dict)
    lifecycle_status: str = Field("active", description="planned, active, deprecated or retired")


class RelationshipCreate(BaseModel):
    id: Optional[str] = Field(None, description="Relationship id (generated if omitted)")
    source_id: str
    target_id: str
    relationship_type: str = Field(..., description="Relationship type, e.g. 'depends-on'")
    strength: float = Field(50.0, description="Strength in [0, 100]")
    metadata: Dict[str, Any] = Field(default_factory=dict)


class MutationResponse(BaseModel):
    id: str
    snapshot_version: int


class EntityDeleteResponse(BaseModel):
    id: str
    removed_relationships: List[str]
    snapshot_version: int


# Analysis request models
class ImpactRequest(BaseModel):
    entity_id: str
    change_type: str = Field(..., description="delete, deprecate, modify, move or replace")
    max_hops: Optional[int] = Field(None, description="Traversal depth (default 3)")
    snapshot_id: Optional[int] = None


class QueryRequest(BaseModel):
    query: Optional[PatternQuery] = Field(None, description="Structured pattern query")
    saved_query: Optional[str] = Field(None, description="Name of a saved query to run")
    snapshot_id: Optional[int] = None


class QueryRow(BaseModel):
    source: Entity
    relationship: Relationship
    target: Entity


class QueryResponse(BaseModel):
    snapshot_version: int
    count: int
    rows: List[QueryRow]
