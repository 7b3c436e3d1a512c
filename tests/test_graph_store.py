"""
Tests for the Graph Store and domain models.

These tests verify:
1. Entity and relationship validation and type normalization
2. Mutation errors (duplicate ids, duplicate edges, self-loops, unknown endpoints)
3. Cascading entity removal
4. Copy-on-write snapshot isolation and versioning
5. Atomic bulk loading

Run with: pytest tests/test_graph_store.py -v
"""

import pytest
from pydantic import ValidationError

from context_graph.domain.architecture import (
    Entity,
    EntityType,
    LifecycleStatus,
    Relationship,
    RelationshipType,
    normalize_token,
)
from context_graph.exceptions import (
    DuplicateEdgeError,
    DuplicateIdError,
    InvalidParameterError,
    NotFoundError,
    SelfLoopError,
    UnknownEntityError,
)
from context_graph.graph_analysis import GraphStore


# =============================================================================
# TEST FIXTURES
# =============================================================================


@pytest.fixture
def store():
    """Store with a portal app depending on a database, owned by a team."""
    s = GraphStore()
    s.load(
        [
            Entity(id="app-portal", entity_type="application", name="Customer Portal"),
            Entity(id="tech-db", entity_type="technology", name="PostgreSQL"),
            Entity(id="team-web", entity_type="team", name="Web Team"),
        ],
        [
            Relationship(id="r1", source_id="app-portal", target_id="tech-db",
                         relationship_type="depends-on", strength=80),
            Relationship(id="r2", source_id="team-web", target_id="app-portal",
                         relationship_type="owns", strength=100),
        ],
    )
    return s


# =============================================================================
# DOMAIN MODEL TESTS
# =============================================================================


class TestDomainModels:
    """Tests for Entity and Relationship validation."""

    def test_normalize_token(self):
        """Test type strings normalize case and separators."""
        assert normalize_token("DEPENDS_ON") == "depends-on"
        assert normalize_token("Depends On") == "depends-on"
        assert normalize_token(RelationshipType.USES) == "uses"

    def test_entity_type_coercion(self):
        """Test entity type strings are coerced case-insensitively."""
        entity = Entity(entity_type="Security_Control", name="MFA")
        assert entity.entity_type == EntityType.SECURITY_CONTROL
        assert entity.lifecycle_status == LifecycleStatus.ACTIVE
        assert entity.id.startswith("entity-")

    def test_relationship_type_coercion(self):
        """Test relationship type strings are coerced."""
        rel = Relationship(source_id="a", target_id="b", relationship_type="DEPENDS_ON")
        assert rel.relationship_type == RelationshipType.DEPENDS_ON
        assert rel.strength == 50.0

    def test_invalid_values_rejected(self):
        """Test empty names, unknown types and out-of-range strength fail."""
        with pytest.raises(ValidationError):
            Entity(entity_type="application", name="  ")
        with pytest.raises(ValidationError):
            Entity(entity_type="spaceship", name="X")
        with pytest.raises(ValidationError):
            Relationship(source_id="a", target_id="b", relationship_type="uses", strength=101)

    def test_entities_are_immutable(self):
        """Test entities cannot be mutated in place."""
        entity = Entity(entity_type="team", name="Ops")
        with pytest.raises(ValidationError):
            entity.name = "Other"


# =============================================================================
# MUTATION TESTS
# =============================================================================


class TestMutations:
    """Tests for store mutation rules."""

    def test_add_and_get_entity(self, store):
        """Test adding and retrieving an entity."""
        store.add_entity(Entity(id="cap-1", entity_type="capability", name="Billing"))
        assert store.get_entity("cap-1").name == "Billing"
        assert store.entity_count == 4

    def test_duplicate_entity_id(self, store):
        """Test duplicate entity ids are rejected."""
        with pytest.raises(DuplicateIdError):
            store.add_entity(Entity(id="tech-db", entity_type="technology", name="Other"))

    def test_unknown_endpoint(self, store):
        """Test relationships to unknown entities are rejected."""
        with pytest.raises(UnknownEntityError) as exc_info:
            store.add_relationship(
                Relationship(source_id="app-portal", target_id="missing",
                             relationship_type="uses")
            )
        assert exc_info.value.entity_id == "missing"
        assert exc_info.value.kind == "UnknownEntity"

    def test_self_loop(self, store):
        """Test self-loops are rejected."""
        with pytest.raises(SelfLoopError):
            store.add_relationship(
                Relationship(source_id="tech-db", target_id="tech-db",
                             relationship_type="uses")
            )

    def test_duplicate_edge(self, store):
        """Test a second edge with the same endpoints and type is rejected."""
        with pytest.raises(DuplicateEdgeError):
            store.add_relationship(
                Relationship(source_id="app-portal", target_id="tech-db",
                             relationship_type="DEPENDS_ON", strength=10)
            )

    def test_parallel_edges_of_different_types(self, store):
        """Test the same pair may be linked by different relationship types."""
        store.add_relationship(
            Relationship(source_id="app-portal", target_id="tech-db",
                         relationship_type="uses")
        )
        assert len(store.snapshot().outgoing("app-portal")) == 2

    def test_duplicate_relationship_id(self, store):
        """Test duplicate relationship ids are rejected."""
        with pytest.raises(DuplicateIdError):
            store.add_relationship(
                Relationship(id="r1", source_id="team-web", target_id="tech-db",
                             relationship_type="manages")
            )

    def test_failed_mutation_leaves_version(self, store):
        """Test rejected mutations do not bump the version."""
        version = store.version
        with pytest.raises(SelfLoopError):
            store.add_relationship(
                Relationship(source_id="tech-db", target_id="tech-db",
                             relationship_type="uses")
            )
        assert store.version == version

    def test_remove_entity_cascades(self, store):
        """Test removing an entity removes all incident relationships."""
        removed = store.remove_entity("app-portal")

        assert removed == ["r1", "r2"]
        assert store.relationship_count == 0
        assert store.find_relationship("app-portal", "tech-db", "depends-on") is None
        assert store.snapshot().in_degree("tech-db") == 0

    def test_remove_missing_entity(self, store):
        """Test removing an unknown entity raises NotFoundError."""
        with pytest.raises(NotFoundError):
            store.remove_entity("nope")

    def test_update_relationship(self, store):
        """Test updating strength replaces the relationship."""
        updated = store.update_relationship("r1", strength=95)
        assert updated.strength == 95
        assert store.get_relationship("r1").strength == 95

    def test_update_relationship_invalid_strength(self, store):
        """Test out-of-range strength is rejected without changing state."""
        with pytest.raises(InvalidParameterError):
            store.update_relationship("r1", strength=150)
        assert store.get_relationship("r1").strength == 80

    def test_update_entity(self, store):
        """Test entity updates keep id and type."""
        updated = store.update_entity("tech-db", lifecycle_status="Deprecated")
        assert updated.lifecycle_status == LifecycleStatus.DEPRECATED
        assert updated.entity_type == EntityType.TECHNOLOGY


# =============================================================================
# SNAPSHOT TESTS
# =============================================================================


class TestSnapshots:
    """Tests for copy-on-write snapshots."""

    def test_snapshot_reused_until_write(self, store):
        """Test the same snapshot is returned while nothing changes."""
        assert store.snapshot() is store.snapshot()

    def test_snapshot_isolated_from_writes(self, store):
        """Test an existing snapshot never observes later mutations."""
        snap = store.snapshot()
        store.add_entity(Entity(id="cap-1", entity_type="capability", name="Billing"))
        store.remove_entity("app-portal")

        assert snap.entity_count == 3
        assert snap.has_entity("app-portal")
        assert not snap.has_entity("cap-1")
        assert [r.id for r in snap.outgoing("app-portal")] == ["r1"]

        fresh = store.snapshot()
        assert fresh.version > snap.version
        assert fresh.entity_count == 3
        assert not fresh.has_entity("app-portal")

    def test_snapshot_lookup_errors(self, store):
        """Test unknown ids raise typed errors on snapshots."""
        snap = store.snapshot()
        with pytest.raises(UnknownEntityError):
            snap.get_entity("missing")
        with pytest.raises(NotFoundError):
            snap.get_relationship("missing")

    def test_to_networkx_collapses_parallel_edges(self, store):
        """Test parallel relationships become one edge with max strength."""
        store.add_relationship(
            Relationship(source_id="app-portal", target_id="tech-db",
                         relationship_type="uses", strength=95)
        )
        graph = store.snapshot().to_networkx()

        assert graph.number_of_edges() == 2
        data = graph.edges["app-portal", "tech-db"]
        assert data["strength"] == 95
        assert sorted(data["types"]) == ["depends-on", "uses"]

    def test_round_trip_through_dict(self, store):
        """Test a store rebuilt from a snapshot dump has the same content."""
        rebuilt = GraphStore.from_dict(store.snapshot().to_dict())
        snap = rebuilt.snapshot()

        assert snap.entity_ids() == ["app-portal", "team-web", "tech-db"]
        assert snap.get_relationship("r2").relationship_type == RelationshipType.OWNS


# =============================================================================
# BULK LOAD TESTS
# =============================================================================


class TestLoad:
    """Tests for atomic bulk loading."""

    def test_load_bumps_version_once(self):
        """Test a bulk load is a single version step."""
        s = GraphStore()
        s.load(
            [Entity(id=f"e{i}", entity_type="application", name=f"App {i}") for i in range(5)]
        )
        assert s.version == 1
        assert s.entity_count == 5

    def test_load_is_atomic(self, store):
        """Test a failing load leaves the store unchanged."""
        version = store.version
        snap = store.snapshot()
        with pytest.raises(UnknownEntityError):
            store.load(
                [Entity(id="new-1", entity_type="team", name="New Team")],
                [Relationship(source_id="new-1", target_id="ghost",
                              relationship_type="owns")],
            )

        assert store.version == version
        assert not store.has_entity("new-1")
        assert store.snapshot() is snap

    def test_load_rejects_foreign_items(self, store):
        """Test a non-Entity item fails with a typed error and writes nothing."""
        version = store.version
        with pytest.raises(InvalidParameterError):
            store.load(
                [Entity(id="new-1", entity_type="team", name="New Team"), {"id": "z"}]
            )

        assert store.version == version
        assert not store.has_entity("new-1")

        store.add_entity(Entity(id="new-2", entity_type="team", name="Other Team"))
        assert not store.snapshot().has_entity("new-1")
        assert store.snapshot().has_entity("new-2")

    def test_load_rejects_foreign_relationships(self, store):
        """Test a non-Relationship item rolls back entities loaded before it."""
        with pytest.raises(InvalidParameterError):
            store.load(
                [Entity(id="new-1", entity_type="team", name="New Team")],
                [("new-1", "app-portal", "owns")],
            )
        assert not store.has_entity("new-1")
