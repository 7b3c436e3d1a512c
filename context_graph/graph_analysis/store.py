"""
In-memory graph store with copy-on-write snapshots.

The store owns entity identity and the forward/reverse adjacency indices.
Writers are serialized by a lock; readers work on ``GraphSnapshot`` objects
which share the store's dictionaries until the next write, at which point
the store copies them (copy-on-write). Taking a snapshot is therefore O(1),
and a snapshot keeps answering queries while the live store mutates.
"""

import threading
from types import MappingProxyType
from typing import Any, Dict, Iterable, Iterator, List, Mapping, Optional, Tuple

import networkx as nx
from loguru import logger
from pydantic import ValidationError

from context_graph.domain.architecture import (
    Entity,
    Relationship,
    normalize_token,
    utcnow,
)
from context_graph.exceptions import (
    DuplicateEdgeError,
    DuplicateIdError,
    InvalidParameterError,
    NotFoundError,
    SelfLoopError,
    UnknownEntityError,
)


# =============================================================================
# SNAPSHOT
# =============================================================================


class GraphSnapshot:
    """
    Immutable, versioned view of the graph.

    Never mutated after creation; the store guarantees the dictionaries it
    hands over are not written to again.
    """

    def __init__(
        self,
        version: int,
        entities: Dict[str, Entity],
        relationships: Dict[str, Relationship],
        outgoing: Dict[str, Tuple[str, ...]],
        incoming: Dict[str, Tuple[str, ...]],
    ):
        self._version = version
        self._entities = entities
        self._relationships = relationships
        self._outgoing = outgoing
        self._incoming = incoming
        self._nx_graph: Optional[nx.DiGraph] = None
        self._nx_lock = threading.Lock()

    def __repr__(self) -> str:
        return (
            f"GraphSnapshot(version={self._version}, "
            f"entities={len(self._entities)}, "
            f"relationships={len(self._relationships)})"
        )

    @property
    def version(self) -> int:
        return self._version

    @property
    def entities(self) -> Mapping[str, Entity]:
        return MappingProxyType(self._entities)

    @property
    def relationships(self) -> Mapping[str, Relationship]:
        return MappingProxyType(self._relationships)

    @property
    def entity_count(self) -> int:
        return len(self._entities)

    @property
    def relationship_count(self) -> int:
        return len(self._relationships)

    def has_entity(self, entity_id: str) -> bool:
        return entity_id in self._entities

    def get_entity(self, entity_id: str) -> Entity:
        try:
            return self._entities[entity_id]
        except KeyError:
            raise UnknownEntityError(entity_id) from None

    def get_relationship(self, relationship_id: str) -> Relationship:
        try:
            return self._relationships[relationship_id]
        except KeyError:
            raise NotFoundError(f"Unknown relationship: {relationship_id}") from None

    def entity_ids(self) -> List[str]:
        """All entity ids in ascending order."""
        return sorted(self._entities)

    def entities_of_type(self, entity_type: Any) -> List[Entity]:
        wanted = normalize_token(entity_type)
        return [
            self._entities[eid]
            for eid in self.entity_ids()
            if self._entities[eid].entity_type.value == wanted
        ]

    def iter_relationships(self) -> Iterator[Relationship]:
        """Relationships ordered by id."""
        for rel_id in sorted(self._relationships):
            yield self._relationships[rel_id]

    def outgoing(self, entity_id: str) -> List[Relationship]:
        return [self._relationships[r] for r in self._outgoing.get(entity_id, ())]

    def incoming(self, entity_id: str) -> List[Relationship]:
        return [self._relationships[r] for r in self._incoming.get(entity_id, ())]

    def in_degree(self, entity_id: str) -> int:
        return len(self._incoming.get(entity_id, ()))

    def out_degree(self, entity_id: str) -> int:
        return len(self._outgoing.get(entity_id, ()))

    def to_networkx(self) -> nx.DiGraph:
        """
        Collapsed directed graph for algorithm use.

        Parallel relationships between the same ordered pair become one edge
        carrying the maximum strength and the list of relationship types.
        Built once per snapshot; callers must not modify the returned graph.
        """
        with self._nx_lock:
            if self._nx_graph is None:
                self._nx_graph = self._build_networkx()
            return self._nx_graph

    def _build_networkx(self) -> nx.DiGraph:
        graph = nx.DiGraph()
        for entity_id in self.entity_ids():
            entity = self._entities[entity_id]
            graph.add_node(
                entity_id,
                name=entity.name,
                entity_type=entity.entity_type.value,
                lifecycle_status=entity.lifecycle_status.value,
            )
        for rel in self.iter_relationships():
            if graph.has_edge(rel.source_id, rel.target_id):
                data = graph.edges[rel.source_id, rel.target_id]
                data["strength"] = max(data["strength"], rel.strength)
                data["types"].append(rel.relationship_type.value)
            else:
                graph.add_edge(
                    rel.source_id,
                    rel.target_id,
                    strength=rel.strength,
                    types=[rel.relationship_type.value],
                )
        return graph

    def to_dict(self) -> Dict[str, Any]:
        """JSON-friendly dump of the snapshot."""
        return {
            "version": self._version,
            "entities": [
                self._entities[eid].model_dump(mode="json")
                for eid in self.entity_ids()
            ],
            "relationships": [
                rel.model_dump(mode="json") for rel in self.iter_relationships()
            ],
        }


# =============================================================================
# STORE
# =============================================================================


class GraphStore:
    """
    Mutable owner of the live graph.

    Example usage:
        store = GraphStore()
        store.add_entity(Entity(id="app-1", entity_type="application", name="Portal"))
        store.add_entity(Entity(id="tech-1", entity_type="technology", name="PostgreSQL"))
        store.add_relationship(
            Relationship(source_id="app-1", target_id="tech-1",
                         relationship_type="uses", strength=80)
        )
        snap = store.snapshot()
    """

    def __init__(self):
        self._lock = threading.RLock()
        self._entities: Dict[str, Entity] = {}
        self._relationships: Dict[str, Relationship] = {}
        self._outgoing: Dict[str, Tuple[str, ...]] = {}
        self._incoming: Dict[str, Tuple[str, ...]] = {}
        self._edge_keys: Dict[tuple, str] = {}
        self._version = 0
        self._snapshot: Optional[GraphSnapshot] = None
        # True while the dictionaries above are referenced by a snapshot
        self._shared = False

    @property
    def version(self) -> int:
        return self._version

    @property
    def entity_count(self) -> int:
        return len(self._entities)

    @property
    def relationship_count(self) -> int:
        return len(self._relationships)

    # -------------------------------------------------------------------------
    # Snapshots
    # -------------------------------------------------------------------------

    def snapshot(self) -> GraphSnapshot:
        """Return an immutable view of the current version."""
        with self._lock:
            if self._snapshot is None:
                self._snapshot = GraphSnapshot(
                    self._version,
                    self._entities,
                    self._relationships,
                    self._outgoing,
                    self._incoming,
                )
                self._shared = True
                logger.debug(f"Issued graph snapshot v{self._version}")
            return self._snapshot

    def _begin_write(self) -> None:
        if self._shared:
            self._entities = dict(self._entities)
            self._relationships = dict(self._relationships)
            self._outgoing = dict(self._outgoing)
            self._incoming = dict(self._incoming)
            self._shared = False

    def _commit(self) -> None:
        self._version += 1
        self._snapshot = None

    # -------------------------------------------------------------------------
    # Entities
    # -------------------------------------------------------------------------

    def get_entity(self, entity_id: str) -> Entity:
        with self._lock:
            if entity_id not in self._entities:
                raise UnknownEntityError(entity_id)
            return self._entities[entity_id]

    def has_entity(self, entity_id: str) -> bool:
        return entity_id in self._entities

    def add_entity(self, entity: Entity) -> str:
        with self._lock:
            self._check_entity(entity)
            self._begin_write()
            self._insert_entity(entity)
            self._commit()
        logger.debug(f"Added entity {entity.id} ({entity.entity_type.value})")
        return entity.id

    def update_entity(
        self,
        entity_id: str,
        name: Optional[str] = None,
        attributes: Optional[Dict[str, Any]] = None,
        lifecycle_status: Optional[Any] = None,
    ) -> Entity:
        """Replace an entity's mutable fields; id and type never change."""
        with self._lock:
            current = self.get_entity(entity_id)
            changes: Dict[str, Any] = {"modified_at": utcnow()}
            if name is not None:
                changes["name"] = name
            if attributes is not None:
                changes["attributes"] = dict(attributes)
            if lifecycle_status is not None:
                changes["lifecycle_status"] = lifecycle_status
            try:
                updated = Entity.model_validate({**current.model_dump(), **changes})
            except ValidationError as e:
                raise InvalidParameterError(str(e)) from e

            self._begin_write()
            self._entities[entity_id] = updated
            self._commit()
        return updated

    def remove_entity(self, entity_id: str) -> List[str]:
        """
        Remove an entity and every relationship touching it.

        Returns:
            Ids of the relationships removed by the cascade.
        """
        with self._lock:
            if entity_id not in self._entities:
                raise NotFoundError(f"Entity not found: {entity_id}")

            self._begin_write()
            cascaded = sorted(
                set(self._outgoing[entity_id]) | set(self._incoming[entity_id])
            )
            for rel_id in cascaded:
                self._detach_relationship(rel_id)
            del self._entities[entity_id]
            del self._outgoing[entity_id]
            del self._incoming[entity_id]
            self._commit()

        logger.debug(
            f"Removed entity {entity_id} with {len(cascaded)} relationships"
        )
        return cascaded

    def _check_entity(self, entity: Entity) -> None:
        if entity.id in self._entities:
            raise DuplicateIdError(f"Entity id already exists: {entity.id}")

    def _insert_entity(self, entity: Entity) -> None:
        self._entities[entity.id] = entity
        self._outgoing[entity.id] = ()
        self._incoming[entity.id] = ()

    # -------------------------------------------------------------------------
    # Relationships
    # -------------------------------------------------------------------------

    def get_relationship(self, relationship_id: str) -> Relationship:
        with self._lock:
            if relationship_id not in self._relationships:
                raise NotFoundError(f"Relationship not found: {relationship_id}")
            return self._relationships[relationship_id]

    def find_relationship(
        self, source_id: str, target_id: str, relationship_type: Any
    ) -> Optional[Relationship]:
        key = (source_id, target_id, normalize_token(relationship_type))
        with self._lock:
            rel_id = self._edge_keys.get(key)
            return self._relationships[rel_id] if rel_id else None

    def add_relationship(self, relationship: Relationship) -> str:
        with self._lock:
            self._check_relationship(relationship)
            self._begin_write()
            self._insert_relationship(relationship)
            self._commit()
        logger.debug(
            f"Added relationship {relationship.source_id} "
            f"-[{relationship.relationship_type.value}]-> {relationship.target_id}"
        )
        return relationship.id

    def update_relationship(
        self,
        relationship_id: str,
        strength: Optional[float] = None,
        metadata: Optional[Dict[str, Any]] = None,
    ) -> Relationship:
        with self._lock:
            current = self.get_relationship(relationship_id)
            changes: Dict[str, Any] = {}
            if strength is not None:
                changes["strength"] = strength
            if metadata is not None:
                changes["metadata"] = dict(metadata)
            try:
                updated = Relationship.model_validate(
                    {**current.model_dump(), **changes}
                )
            except ValidationError as e:
                raise InvalidParameterError(str(e)) from e

            self._begin_write()
            self._relationships[relationship_id] = updated
            self._commit()
        return updated

    def remove_relationship(self, relationship_id: str) -> None:
        with self._lock:
            if relationship_id not in self._relationships:
                raise NotFoundError(f"Relationship not found: {relationship_id}")
            self._begin_write()
            self._detach_relationship(relationship_id)
            self._commit()

    def _check_relationship(self, rel: Relationship) -> None:
        for endpoint in (rel.source_id, rel.target_id):
            if endpoint not in self._entities:
                raise UnknownEntityError(endpoint)
        if rel.source_id == rel.target_id:
            raise SelfLoopError(f"Self-loop rejected on entity {rel.source_id}")
        if rel.id in self._relationships:
            raise DuplicateIdError(f"Relationship id already exists: {rel.id}")
        if rel.key in self._edge_keys:
            raise DuplicateEdgeError(
                f"Relationship {rel.source_id} -[{rel.relationship_type.value}]-> "
                f"{rel.target_id} already exists"
            )

    def _insert_relationship(self, rel: Relationship) -> None:
        self._relationships[rel.id] = rel
        self._outgoing[rel.source_id] = self._outgoing[rel.source_id] + (rel.id,)
        self._incoming[rel.target_id] = self._incoming[rel.target_id] + (rel.id,)
        self._edge_keys[rel.key] = rel.id

    def _detach_relationship(self, rel_id: str) -> None:
        rel = self._relationships.pop(rel_id)
        self._outgoing[rel.source_id] = tuple(
            r for r in self._outgoing[rel.source_id] if r != rel_id
        )
        self._incoming[rel.target_id] = tuple(
            r for r in self._incoming[rel.target_id] if r != rel_id
        )
        del self._edge_keys[rel.key]

    # -------------------------------------------------------------------------
    # Bulk operations
    # -------------------------------------------------------------------------

    def load(
        self,
        entities: Iterable[Entity],
        relationships: Iterable[Relationship] = (),
    ) -> None:
        """
        Ingest entities and relationships atomically.

        Either everything is added (one version bump) or, on the first
        error, nothing is and the error propagates.
        """
        entities = list(entities)
        relationships = list(relationships)

        with self._lock:
            backup = (
                self._entities,
                self._relationships,
                self._outgoing,
                self._incoming,
                self._edge_keys,
                self._shared,
            )
            self._entities = dict(self._entities)
            self._relationships = dict(self._relationships)
            self._outgoing = dict(self._outgoing)
            self._incoming = dict(self._incoming)
            self._edge_keys = dict(self._edge_keys)
            self._shared = False
            try:
                for entity in entities:
                    if not isinstance(entity, Entity):
                        raise InvalidParameterError(
                            f"Expected an Entity, got {type(entity).__name__}"
                        )
                    self._check_entity(entity)
                    self._insert_entity(entity)
                for rel in relationships:
                    if not isinstance(rel, Relationship):
                        raise InvalidParameterError(
                            f"Expected a Relationship, got {type(rel).__name__}"
                        )
                    self._check_relationship(rel)
                    self._insert_relationship(rel)
            except Exception:
                (
                    self._entities,
                    self._relationships,
                    self._outgoing,
                    self._incoming,
                    self._edge_keys,
                    self._shared,
                ) = backup
                raise
            self._commit()

        logger.info(
            f"Loaded {len(entities)} entities and {len(relationships)} "
            f"relationships (graph v{self._version})"
        )

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "GraphStore":
        """Build a store from the structure produced by ``GraphSnapshot.to_dict``."""
        store = cls()
        store.load(
            [Entity.model_validate(e) for e in data.get("entities", [])],
            [Relationship.model_validate(r) for r in data.get("relationships", [])],
        )
        return store

