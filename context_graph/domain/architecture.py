"""
Architecture Graph Domain Models

Entities (capabilities, applications, technologies, teams, ...) and the
directed relationships between them. Both are immutable pydantic models;
the graph store replaces instances instead of mutating them so snapshots
never observe partial updates.
"""

import uuid
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator


# =============================================================================
# ENUMS
# =============================================================================


class EntityType(str, Enum):
    """Kinds of architecture elements held in the graph."""
    CAPABILITY = "capability"
    APPLICATION = "application"
    TECHNOLOGY = "technology"
    TEAM = "team"
    INITIATIVE = "initiative"
    SECURITY_CONTROL = "security-control"
    DATA = "data"
    PROCESS = "process"
    SERVICE = "service"
    OTHER = "other"


class RelationshipType(str, Enum):
    """Directed relationship kinds. ``A depends-on B`` reads source -> target."""
    DEPENDS_ON = "depends-on"
    SUPPORTS = "supports"
    USES = "uses"
    OWNS = "owns"
    IMPLEMENTS = "implements"
    SERVES = "serves"
    MANAGES = "manages"
    REALIZES = "realizes"


class LifecycleStatus(str, Enum):
    PLANNED = "planned"
    ACTIVE = "active"
    DEPRECATED = "deprecated"
    RETIRED = "retired"


# =============================================================================
# HELPER FUNCTIONS
# =============================================================================


def normalize_token(value: Any) -> str:
    """
    Normalize a type string for comparison.

    ``"DEPENDS_ON"``, ``"Depends On"`` and ``"depends-on"`` all become
    ``"depends-on"``.
    """
    if isinstance(value, Enum):
        value = value.value
    text = str(value).strip().lower()
    return "-".join(text.replace("_", " ").replace("-", " ").split())


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def ensure_utc(value: datetime) -> datetime:
    """Treat naive datetimes as UTC."""
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


def _new_id(prefix: str) -> str:
    return f"{prefix}-{uuid.uuid4().hex[:12]}"


# =============================================================================
# ENTITY MODEL
# =============================================================================


class Entity(BaseModel):
    """
    An architecture element (node) in the context graph.

    The id is stable for the lifetime of the entity. Attributes are a free
    form string-keyed map (owner, status, version, usage counters, ...).
    """

    model_config = ConfigDict(frozen=True)

    id: str = Field(default_factory=lambda: _new_id("entity"))
    entity_type: EntityType = Field(..., description="Type classification")
    name: str = Field(..., description="Display name")
    attributes: Dict[str, Any] = Field(default_factory=dict)
    lifecycle_status: LifecycleStatus = LifecycleStatus.ACTIVE
    created_at: datetime = Field(default_factory=utcnow)
    modified_at: datetime = Field(default_factory=utcnow)

    @field_validator("id")
    @classmethod
    def id_must_not_be_empty(cls, v):
        if not v or not v.strip():
            raise ValueError("Entity id cannot be empty")
        return v.strip()

    @field_validator("name")
    @classmethod
    def name_must_not_be_empty(cls, v):
        if not v or not v.strip():
            raise ValueError("Entity name cannot be empty")
        return v.strip()

    @field_validator("entity_type", mode="before")
    @classmethod
    def validate_entity_type(cls, v):
        if isinstance(v, str):
            return EntityType(normalize_token(v))
        return v

    @field_validator("lifecycle_status", mode="before")
    @classmethod
    def validate_lifecycle_status(cls, v):
        if isinstance(v, str):
            return LifecycleStatus(normalize_token(v))
        return v

    @field_validator("created_at", "modified_at")
    @classmethod
    def timestamps_are_utc(cls, v):
        return ensure_utc(v)

    @property
    def is_sunsetting(self) -> bool:
        """True for deprecated or retired entities."""
        return self.lifecycle_status in (
            LifecycleStatus.DEPRECATED,
            LifecycleStatus.RETIRED,
        )


# =============================================================================
# RELATIONSHIP MODEL
# =============================================================================


class Relationship(BaseModel):
    """
    A directed, typed edge between two entities.

    Strength is a [0, 100] confidence/criticality value. Several relationships
    may connect the same pair as long as their types differ.
    """

    model_config = ConfigDict(frozen=True)

    id: str = Field(default_factory=lambda: _new_id("rel"))
    source_id: str
    target_id: str
    relationship_type: RelationshipType
    strength: float = Field(50.0, ge=0.0, le=100.0)
    metadata: Dict[str, Any] = Field(default_factory=dict)
    created_at: datetime = Field(default_factory=utcnow)

    @field_validator("relationship_type", mode="before")
    @classmethod
    def validate_relationship_type(cls, v):
        if isinstance(v, str):
            return RelationshipType(normalize_token(v))
        return v

    @field_validator("created_at")
    @classmethod
    def created_at_is_utc(cls, v):
        return ensure_utc(v)

    @property
    def key(self) -> tuple:
        """Identity triple used to reject duplicate edges."""
        return (self.source_id, self.target_id, self.relationship_type.value)

    def other_end(self, entity_id: str) -> Optional[str]:
        if entity_id == self.source_id:
            return self.target_id
        if entity_id == self.target_id:
            return self.source_id
        return None
