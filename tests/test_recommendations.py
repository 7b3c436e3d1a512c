"""
Tests for the Relationship Recommendation Engine.

These tests verify:
1. Missing-relationship detection from population patterns
2. Strengthen detection from strength outliers plus usage signals
3. Removal detection for sunsetting targets without recent activity
4. Priority, evidence, deterministic ids and ordering
5. Threshold validation

Run with: pytest tests/test_recommendations.py -v
"""

from datetime import datetime, timedelta, timezone

import pytest

from context_graph.domain.architecture import Entity, Relationship
from context_graph.exceptions import InvalidParameterError
from context_graph.graph_analysis import (
    GraphStore,
    Priority,
    RecommendationAction,
    RecommendationEngine,
    RecommendationThresholds,
    get_recommendations,
)

NOW = datetime(2026, 1, 1, tzinfo=timezone.utc)


# =============================================================================
# TEST FIXTURES
# =============================================================================


@pytest.fixture
def app_landscape():
    """Ten applications; nine use the same technology."""
    strengths = [50, 60, 70, 80, 90, 60, 70, 80, 70]
    store = GraphStore()
    store.load(
        [Entity(id="tech-java", entity_type="technology", name="Java")]
        + [
            Entity(id=f"app-{i:02d}", entity_type="Application", name=f"App {i:02d}")
            for i in range(1, 11)
        ],
        [
            Relationship(id=f"r{i}", source_id=f"app-{i:02d}", target_id="tech-java",
                         relationship_type="uses", strength=strengths[i - 1])
            for i in range(1, 10)
        ],
    )
    return store


@pytest.fixture
def payment_landscape():
    """Five applications depend on a payment service; one link is weak."""
    store = GraphStore()
    store.load(
        [Entity(id="svc-pay", entity_type="service", name="Payment Gateway")]
        + [
            Entity(id=f"app-{i}", entity_type="application", name=f"Order API {i}")
            for i in range(1, 6)
        ],
        [
            Relationship(id=f"r{i}", source_id=f"app-{i}", target_id="svc-pay",
                         relationship_type="depends-on", strength=80)
            for i in range(1, 5)
        ]
        + [
            Relationship(id="r5", source_id="app-5", target_id="svc-pay",
                         relationship_type="depends-on", strength=20,
                         metadata={"daily_transactions": 500}),
        ],
    )
    return store


@pytest.fixture
def sunset_landscape():
    """Relationships to deprecated and retired systems."""
    store = GraphStore()
    store.load(
        [
            Entity(id="app-orders", entity_type="application", name="Order API"),
            Entity(id="app-legacy", entity_type="application", name="Legacy Inventory",
                   lifecycle_status="deprecated"),
            Entity(id="app-old", entity_type="application", name="Old Billing",
                   lifecycle_status="retired"),
            Entity(id="app-busy", entity_type="application", name="Busy Legacy",
                   lifecycle_status="deprecated"),
        ],
        [
            Relationship(id="r-legacy", source_id="app-orders", target_id="app-legacy",
                         relationship_type="depends-on", strength=60),
            Relationship(id="r-old", source_id="app-orders", target_id="app-old",
                         relationship_type="depends-on", strength=60,
                         metadata={"last_used_at": (NOW - timedelta(days=200)).isoformat()}),
            Relationship(id="r-busy", source_id="app-orders", target_id="app-busy",
                         relationship_type="depends-on", strength=60,
                         metadata={"last_used_at": (NOW - timedelta(days=10)).isoformat()}),
        ],
    )
    return store


def by_algorithm(recs, algorithm):
    return [r for r in recs if r.algorithm == algorithm]


# =============================================================================
# MISSING RELATIONSHIP TESTS
# =============================================================================


class TestMissingRelationships:
    """Tests for pattern_matching recommendations."""

    def test_tenth_application_flagged(self, app_landscape):
        """Test the application without a technology link is flagged at ~90%."""
        recs = RecommendationEngine().recommend(app_landscape.snapshot(), now=NOW)

        assert len(recs) == 1
        rec = recs[0]
        assert rec.action == RecommendationAction.ADD
        assert rec.algorithm == "pattern_matching"
        assert rec.source_id == "app-10"
        assert rec.target_id == "tech-java"
        assert rec.relationship_type == "uses"
        assert rec.confidence == pytest.approx(90.0)
        assert rec.suggested_strength == pytest.approx(70.0)
        assert rec.priority == Priority.HIGH
        assert any("9 of 10" in line for line in rec.evidence)

    def test_frequency_threshold(self, app_landscape):
        """Test a stricter frequency threshold suppresses the suggestion."""
        thresholds = RecommendationThresholds(pattern_frequency=0.95)
        assert get_recommendations(app_landscape.snapshot(), thresholds) == []

    def test_min_population(self, app_landscape):
        """Test small populations are ignored."""
        thresholds = RecommendationThresholds(min_population=11)
        assert get_recommendations(app_landscape.snapshot(), thresholds) == []

    def test_complete_pattern_not_flagged(self, app_landscape):
        """Test nothing is suggested once every entity follows the pattern."""
        app_landscape.add_relationship(
            Relationship(source_id="app-10", target_id="tech-java", relationship_type="uses")
        )
        assert get_recommendations(app_landscape.snapshot()) == []


# =============================================================================
# STRENGTHEN TESTS
# =============================================================================


class TestStrengthen:
    """Tests for usage_analysis recommendations."""

    def test_weak_heavily_used_relationship(self, payment_landscape):
        """Test a weak but heavily used dependency is flagged."""
        recs = by_algorithm(
            RecommendationEngine().recommend(payment_landscape.snapshot(), now=NOW),
            "usage_analysis",
        )

        assert len(recs) == 1
        rec = recs[0]
        assert rec.action == RecommendationAction.STRENGTHEN
        assert rec.relationship_id == "r5"
        assert rec.current_strength == 20
        assert rec.suggested_strength == pytest.approx(80.0)
        assert rec.confidence == pytest.approx(95.0)
        assert any("daily_transactions" in line for line in rec.evidence)

    def test_no_signal_no_recommendation(self, payment_landscape):
        """Test a weak relationship without usage signals is left alone."""
        payment_landscape.update_relationship("r5", metadata={})
        recs = get_recommendations(payment_landscape.snapshot())
        assert by_algorithm(recs, "usage_analysis") == []

    def test_critical_endpoint_is_a_signal(self, payment_landscape):
        """Test a business-critical endpoint counts as a usage signal."""
        payment_landscape.update_relationship("r5", metadata={})
        payment_landscape.update_entity("svc-pay", attributes={"criticality": "Critical"})
        recs = by_algorithm(get_recommendations(payment_landscape.snapshot()), "usage_analysis")
        assert [r.relationship_id for r in recs] == ["r5"]


# =============================================================================
# REMOVAL TESTS
# =============================================================================


class TestRemoval:
    """Tests for lifecycle_analysis recommendations."""

    def test_stale_sunsetting_targets(self, sunset_landscape):
        """Test stale links to deprecated/retired targets are flagged."""
        recs = RecommendationEngine().recommend(sunset_landscape.snapshot(), now=NOW)
        removals = {r.relationship_id: r for r in by_algorithm(recs, "lifecycle_analysis")}

        assert set(removals) == {"r-legacy", "r-old"}
        assert removals["r-old"].confidence == 90.0
        assert removals["r-legacy"].confidence == 75.0
        assert all(r.action == RecommendationAction.REMOVE for r in removals.values())
        assert any("No activity" in line for line in removals["r-legacy"].evidence)
        assert any("200 days" in line for line in removals["r-old"].evidence)

    def test_staleness_window(self, sunset_landscape):
        """Test a window shorter than the recent activity flags it too."""
        thresholds = RecommendationThresholds(staleness_days=5)
        recs = RecommendationEngine(thresholds).recommend(sunset_landscape.snapshot(), now=NOW)
        assert "r-busy" in {r.relationship_id for r in recs}


# =============================================================================
# GENERAL TESTS
# =============================================================================


class TestGeneral:
    """Tests for ids, ordering, purity and validation."""

    def test_deterministic(self, sunset_landscape):
        """Test repeated runs give identical recommendations."""
        snapshot = sunset_landscape.snapshot()
        first = RecommendationEngine().recommend(snapshot, now=NOW)
        second = RecommendationEngine().recommend(snapshot, now=NOW)

        assert [r.model_dump() for r in first] == [r.model_dump() for r in second]
        assert all(r.id.startswith("rec-") for r in first)

    def test_ordering(self, sunset_landscape):
        """Test recommendations are ordered by priority then confidence."""
        order = {Priority.HIGH: 0, Priority.MEDIUM: 1, Priority.LOW: 2}
        recs = RecommendationEngine().recommend(sunset_landscape.snapshot(), now=NOW)
        keys = [(order[r.priority], -r.confidence) for r in recs]
        assert keys == sorted(keys)

    def test_never_mutates(self, payment_landscape):
        """Test the engine does not touch the store."""
        version = payment_landscape.version
        get_recommendations(payment_landscape.snapshot())
        assert payment_landscape.version == version

    def test_invalid_thresholds(self):
        """Test out-of-range thresholds are rejected."""
        with pytest.raises(InvalidParameterError):
            RecommendationThresholds(pattern_frequency=0)
        with pytest.raises(InvalidParameterError):
            RecommendationThresholds(staleness_days=-1)
