"""
Tests for the context graph HTTP API.

These tests verify:
1. Graph mutation endpoints and their status codes
2. Analysis endpoints (stats, centrality, impact, query, recommendations)
3. Mapping of engine error kinds to HTTP statuses

Run with: pytest tests/test_api.py -v
"""

import threading
from concurrent.futures import ThreadPoolExecutor

import pytest
from fastapi.testclient import TestClient

from api.main import create_app
from api.routers import context_graph as context_graph_router
from api.routers.context_graph import get_analyzer
from context_graph.domain.architecture import Entity, Relationship
from context_graph.graph_analysis import GraphAnalyzer, GraphStore


# =============================================================================
# TEST FIXTURES
# =============================================================================


@pytest.fixture
def analyzer():
    """Analyzer over a small landscape: four of five apps on one database."""
    store = GraphStore()
    store.load(
        [
            Entity(id="tech-pg", entity_type="technology", name="PostgreSQL"),
            Entity(id="app-a", entity_type="application", name="Billing"),
            Entity(id="app-b", entity_type="application", name="CRM"),
            Entity(id="app-c", entity_type="application", name="Portal"),
            Entity(id="app-d", entity_type="application", name="Reporting"),
            Entity(id="app-e", entity_type="application", name="Hub"),
            Entity(id="team-x", entity_type="team", name="Platform"),
        ],
        [
            Relationship(id="r1", source_id="app-a", target_id="tech-pg",
                         relationship_type="uses", strength=80),
            Relationship(id="r2", source_id="app-b", target_id="tech-pg",
                         relationship_type="uses", strength=70),
            Relationship(id="r3", source_id="app-c", target_id="tech-pg",
                         relationship_type="uses", strength=75),
            Relationship(id="r5", source_id="app-e", target_id="tech-pg",
                         relationship_type="uses", strength=70),
            Relationship(id="r4", source_id="team-x", target_id="app-a",
                         relationship_type="owns", strength=100),
        ],
    )
    return GraphAnalyzer(store)


@pytest.fixture
def client(analyzer):
    app = create_app()
    app.dependency_overrides[get_analyzer] = lambda: analyzer
    return TestClient(app)


# =============================================================================
# MUTATION ENDPOINT TESTS
# =============================================================================


class TestMutations:
    """Tests for entity and relationship endpoints."""

    def test_health(self, client):
        """Test the health check."""
        response = client.get("/health")
        assert response.status_code == 200
        assert response.json() == {"status": "healthy"}

    def test_create_entity(self, client, analyzer):
        """Test creating an entity returns its id and the new version."""
        response = client.post(
            "/api/graph/entities",
            json={"id": "svc-auth", "entity_type": "Service", "name": "Auth"},
        )
        assert response.status_code == 201
        body = response.json()
        assert body["id"] == "svc-auth"
        assert body["snapshot_version"] == analyzer.store.version
        assert analyzer.store.get_entity("svc-auth").entity_type.value == "service"

    def test_create_entity_invalid_type(self, client):
        """Test unknown entity types are rejected with 422."""
        response = client.post(
            "/api/graph/entities", json={"entity_type": "spaceship", "name": "X"}
        )
        assert response.status_code == 422

    def test_create_duplicate_entity(self, client):
        """Test a duplicate id maps to 409."""
        response = client.post(
            "/api/graph/entities",
            json={"id": "app-a", "entity_type": "application", "name": "Again"},
        )
        assert response.status_code == 409
        assert response.json()["detail"]["kind"] == "DuplicateId"

    def test_create_relationship(self, client, analyzer):
        """Test creating a relationship between existing entities."""
        response = client.post(
            "/api/graph/relationships",
            json={"source_id": "app-d", "target_id": "tech-pg",
                  "relationship_type": "USES", "strength": 65},
        )
        assert response.status_code == 201
        created = analyzer.store.get_relationship(response.json()["id"])
        assert created.strength == 65

    def test_relationship_errors(self, client):
        """Test unknown endpoints, self loops and duplicate edges."""
        unknown = client.post(
            "/api/graph/relationships",
            json={"source_id": "app-a", "target_id": "ghost", "relationship_type": "uses"},
        )
        assert unknown.status_code == 404
        assert unknown.json()["detail"]["kind"] == "UnknownEntity"

        loop = client.post(
            "/api/graph/relationships",
            json={"source_id": "app-a", "target_id": "app-a", "relationship_type": "uses"},
        )
        assert loop.status_code == 400

        duplicate = client.post(
            "/api/graph/relationships",
            json={"source_id": "app-a", "target_id": "tech-pg", "relationship_type": "uses"},
        )
        assert duplicate.status_code == 409
        assert duplicate.json()["detail"]["kind"] == "DuplicateEdge"

    def test_delete_entity_cascades(self, client, analyzer):
        """Test deleting an entity reports the removed relationships."""
        response = client.delete("/api/graph/entities/app-a")
        assert response.status_code == 200
        assert sorted(response.json()["removed_relationships"]) == ["r1", "r4"]
        assert not analyzer.store.has_entity("app-a")

        assert client.delete("/api/graph/entities/app-a").status_code == 404


# =============================================================================
# ANALYSIS ENDPOINT TESTS
# =============================================================================


class TestAnalysis:
    """Tests for the analysis endpoints."""

    def test_stats(self, client):
        """Test graph statistics."""
        response = client.get("/api/graph/stats")
        assert response.status_code == 200
        body = response.json()
        assert body["entity_count"] == 7
        assert body["relationship_count"] == 5
        assert body["relationships_by_type"]["uses"]["count"] == 4
        assert body["components"] == 2

    def test_centrality(self, client):
        """Test centrality with weights and a limit."""
        response = client.get(
            "/api/graph/centrality", params={"weights": "degree:1", "limit": 2}
        )
        assert response.status_code == 200
        body = response.json()
        assert len(body["results"]) == 2
        assert body["results"][0]["entity_id"] == "tech-pg"
        assert body["weights"]["degree"] == 1.0

    def test_centrality_bad_weights(self, client):
        """Test malformed and unknown weights give 400."""
        assert client.get(
            "/api/graph/centrality", params={"weights": "degree:lots"}
        ).status_code == 400
        response = client.get("/api/graph/centrality", params={"weights": "fame:1"})
        assert response.status_code == 400
        assert response.json()["detail"]["kind"] == "InvalidParameter"

    def test_unknown_snapshot(self, client):
        """Test unknown snapshot ids give 404."""
        response = client.get("/api/graph/centrality", params={"snapshot_id": 999})
        assert response.status_code == 404

    def test_impact(self, client):
        """Test impact analysis of deleting the shared database."""
        response = client.post(
            "/api/graph/impact",
            json={"entity_id": "tech-pg", "change_type": "delete", "max_hops": 2},
        )
        assert response.status_code == 200
        body = response.json()
        affected = {a["entity_id"]: a for a in body["affected_entities"]}
        assert set(affected) == {"app-a", "app-b", "app-c", "app-e", "team-x"}
        assert affected["app-a"]["hop_distance"] == 1
        assert affected["team-x"]["hop_distance"] == 2

    def test_impact_errors(self, client):
        """Test unknown targets and change types."""
        assert client.post(
            "/api/graph/impact", json={"entity_id": "ghost", "change_type": "delete"}
        ).status_code == 404
        assert client.post(
            "/api/graph/impact", json={"entity_id": "tech-pg", "change_type": "explode"}
        ).status_code == 400

    def test_query(self, client):
        """Test a structured query with camelCase keys."""
        response = client.post(
            "/api/graph/query",
            json={
                "query": {
                    "relationshipType": "uses",
                    "filters": [{"field": "source.name", "op": "contains", "value": "r"}],
                }
            },
        )
        assert response.status_code == 200
        body = response.json()
        assert body["count"] == 2
        assert [row["source"]["id"] for row in body["rows"]] == ["app-b", "app-c"]

    def test_saved_query(self, client):
        """Test running a saved query by name."""
        response = client.post("/api/graph/query", json={"saved_query": "team-ownership"})
        assert response.status_code == 200
        assert response.json()["rows"][0]["relationship"]["id"] == "r4"

        assert client.post(
            "/api/graph/query", json={"saved_query": "nope"}
        ).status_code == 404

    def test_query_errors(self, client):
        """Test a missing query and an unsupported operator."""
        assert client.post("/api/graph/query", json={}).status_code == 400

        response = client.post(
            "/api/graph/query",
            json={"query": {"filters": [{"field": "strength", "op": "gt", "value": 1}]}},
        )
        assert response.status_code == 400
        assert response.json()["detail"]["kind"] == "UnsupportedOperator"


# =============================================================================
# RECOMMENDATION ENDPOINT TESTS
# =============================================================================


class TestRecommendations:
    """Tests for listing and applying recommendations."""

    def test_list_and_apply(self, client, analyzer):
        """Test the missing database link is suggested and can be applied."""
        response = client.get("/api/graph/recommendations")
        assert response.status_code == 200
        recs = response.json()
        assert len(recs) == 1
        rec = recs[0]
        assert rec["action"] == "add"
        assert (rec["source_id"], rec["target_id"]) == ("app-d", "tech-pg")

        applied = client.post(f"/api/graph/recommendations/{rec['id']}/apply")
        assert applied.status_code == 200
        assert applied.json()["success"] is True
        assert analyzer.store.find_relationship("app-d", "tech-pg", "uses") is not None

    def test_min_confidence(self, client):
        """Test the confidence filter."""
        response = client.get("/api/graph/recommendations", params={"min_confidence": 99})
        assert response.json() == []

    def test_apply_unknown(self, client):
        """Test applying an unknown id gives 404."""
        response = client.post("/api/graph/recommendations/rec-missing/apply")
        assert response.status_code == 404


# =============================================================================
# DEPENDENCY TESTS
# =============================================================================


class TestAnalyzerDependency:
    """Tests for the process-wide analyzer."""

    def test_concurrent_first_use_builds_one_analyzer(self, monkeypatch):
        """Test racing first requests share a single analyzer."""
        monkeypatch.setattr(context_graph_router, "_analyzer", None)
        barrier = threading.Barrier(8)

        def first_use(_):
            barrier.wait()
            return get_analyzer()

        with ThreadPoolExecutor(max_workers=8) as pool:
            analyzers = list(pool.map(first_use, range(8)))

        assert all(a is analyzers[0] for a in analyzers)
        assert context_graph_router._analyzer is analyzers[0]
