"""
Relationship Recommendation Engine

Deterministic, explainable heuristics that propose edge mutations:

- pattern_matching: most entities of type A link to a type-B entity, so the
  A entities that don't are flagged for an ``add``.
- usage_analysis: a relationship is unusually weak for its type while its
  metadata says it is heavily used, so it is flagged for ``strengthen``.
- lifecycle_analysis: a relationship points at a deprecated or retired
  entity and shows no recent activity, so it is flagged for ``remove``.

The engine only proposes; callers apply recommendations through the store.
"""

import hashlib
from collections import Counter, defaultdict
from datetime import datetime, timedelta
from typing import Any, Dict, List, Optional, Set

import numpy as np
from loguru import logger

from context_graph.domain.architecture import (
    Entity,
    LifecycleStatus,
    Relationship,
    ensure_utc,
    utcnow,
)
from context_graph.graph_analysis.base import (
    Priority,
    RecommendationAction,
    RecommendationImpact,
    RelationshipRecommendation,
)
from context_graph.graph_analysis.config import RecommendationThresholds
from context_graph.graph_analysis.store import GraphSnapshot


# =============================================================================
# HELPER FUNCTIONS
# =============================================================================


def recommendation_id(
    action: RecommendationAction,
    source_id: str,
    target_id: str,
    relationship_type: str,
) -> str:
    """Stable id: the same finding on any snapshot gets the same id."""
    key = f"{action.value}|{source_id}|{target_id}|{relationship_type}"
    return f"rec-{hashlib.md5(key.encode()).hexdigest()[:12]}"


def priority_for(impact: RecommendationImpact) -> Priority:
    mean = impact.mean
    if mean >= 75:
        return Priority.HIGH
    if mean >= 50:
        return Priority.MEDIUM
    return Priority.LOW


def _parse_timestamp(value: Any) -> Optional[datetime]:
    if isinstance(value, datetime):
        parsed = value
    elif isinstance(value, str):
        try:
            parsed = datetime.fromisoformat(value.strip().replace("Z", "+00:00"))
        except ValueError:
            logger.debug(f"Ignoring unparseable activity timestamp {value!r}")
            return None
    else:
        return None
    return ensure_utc(parsed)


def _numeric(value: Any) -> Optional[float]:
    if isinstance(value, bool):
        return None
    if isinstance(value, (int, float)):
        return float(value)
    if isinstance(value, str):
        try:
            return float(value)
        except ValueError:
            return None
    return None


def _is_critical(entity: Entity) -> bool:
    return str(entity.attributes.get("criticality", "")).strip().lower() == "critical"


# =============================================================================
# ENGINE
# =============================================================================


class RecommendationEngine:
    """
    Heuristic recommendation scoring over a snapshot.

    Example usage:
        engine = RecommendationEngine()
        for rec in engine.recommend(snapshot):
            print(rec.priority.value, rec.title, rec.confidence)
    """

    def __init__(self, thresholds: Optional[RecommendationThresholds] = None):
        self.thresholds = thresholds or RecommendationThresholds()

    def recommend(
        self,
        snapshot: GraphSnapshot,
        now: Optional[datetime] = None,
    ) -> List[RelationshipRecommendation]:
        """
        Run every rule and return recommendations, highest priority first.

        Args:
            snapshot: Graph snapshot to inspect (never modified)
            now: Reference time for staleness checks (default: current UTC)

        Returns:
            Recommendations ordered by priority, confidence (desc) and id
        """
        now = ensure_utc(now or utcnow())

        degrees = {
            eid: snapshot.in_degree(eid) + snapshot.out_degree(eid)
            for eid in snapshot.entity_ids()
        }
        max_degree = max(degrees.values(), default=0)

        found: Dict[str, RelationshipRecommendation] = {}
        rules = (
            self._missing_relationships(snapshot, degrees, max_degree),
            self._weak_relationships(snapshot, degrees, max_degree),
            self._stale_relationships(snapshot, degrees, max_degree, now),
        )
        for recs in rules:
            for rec in recs:
                found.setdefault(rec.id, rec)

        order = {Priority.HIGH: 0, Priority.MEDIUM: 1, Priority.LOW: 2}
        results = sorted(
            found.values(), key=lambda r: (order[r.priority], -r.confidence, r.id)
        )
        logger.info(
            f"Generated {len(results)} recommendations for graph v{snapshot.version}"
        )
        return results

    @staticmethod
    def _strategic_value(
        degrees: Dict[str, int], max_degree: int, source_id: str, target_id: str
    ) -> float:
        if max_degree == 0:
            return 0.0
        busiest = max(degrees.get(source_id, 0), degrees.get(target_id, 0))
        return round(100.0 * busiest / max_degree, 2)

    # -------------------------------------------------------------------------
    # pattern_matching
    # -------------------------------------------------------------------------

    def _missing_relationships(
        self,
        snapshot: GraphSnapshot,
        degrees: Dict[str, int],
        max_degree: int,
    ) -> List[RelationshipRecommendation]:
        population: Dict[str, List[Entity]] = defaultdict(list)
        for eid in snapshot.entity_ids():
            entity = snapshot.get_entity(eid)
            population[entity.entity_type.value].append(entity)

        recs: List[RelationshipRecommendation] = []
        for type_a in sorted(population):
            members = population[type_a]
            if len(members) < self.thresholds.min_population:
                continue
            for direction in ("out", "in"):
                # type B -> {A entity id -> relationships to B entities}
                links: Dict[str, Dict[str, List[Relationship]]] = defaultdict(
                    lambda: defaultdict(list)
                )
                for entity in members:
                    rels = (
                        snapshot.outgoing(entity.id)
                        if direction == "out"
                        else snapshot.incoming(entity.id)
                    )
                    for rel in rels:
                        other = snapshot.get_entity(rel.other_end(entity.id))
                        links[other.entity_type.value][entity.id].append(rel)

                for type_b in sorted(links):
                    linked = links[type_b]
                    share = len(linked) / len(members)
                    if share < self.thresholds.pattern_frequency or share >= 1.0:
                        continue
                    recs.extend(
                        self._suggest_links(
                            snapshot, members, linked, type_a, type_b,
                            direction, share, degrees, max_degree,
                        )
                    )
        return recs

    def _suggest_links(
        self,
        snapshot: GraphSnapshot,
        members: List[Entity],
        linked: Dict[str, List[Relationship]],
        type_a: str,
        type_b: str,
        direction: str,
        share: float,
        degrees: Dict[str, int],
        max_degree: int,
    ) -> List[RelationshipRecommendation]:
        peer_rels = [rel for rels in linked.values() for rel in rels]

        # B entity -> distinct peers linked to it
        popularity: Dict[str, Set[str]] = defaultdict(set)
        for peer_id, rels in linked.items():
            for rel in rels:
                popularity[rel.other_end(peer_id)].add(peer_id)

        type_counts = Counter(rel.relationship_type.value for rel in peer_rels)
        rel_type, type_count = min(type_counts.items(), key=lambda kv: (-kv[1], kv[0]))
        strength = round(float(np.median([rel.strength for rel in peer_rels])), 2)
        confidence = round(share * 100.0, 2)
        consistency = round(100.0 * type_count / len(peer_rels), 2)

        recs = []
        for entity in members:
            if entity.id in linked:
                continue
            candidates = [
                (len(peers), b_id)
                for b_id, peers in popularity.items()
                if b_id != entity.id
            ]
            if not candidates:
                continue
            peer_count, b_id = min(candidates, key=lambda c: (-c[0], c[1]))
            other = snapshot.get_entity(b_id)
            source, target = (entity, other) if direction == "out" else (other, entity)

            impact = RecommendationImpact(
                strategic_value=self._strategic_value(
                    degrees, max_degree, source.id, target.id
                ),
                completeness=confidence,
                consistency=consistency,
            )
            action = RecommendationAction.ADD
            recs.append(
                RelationshipRecommendation(
                    id=recommendation_id(action, source.id, target.id, rel_type),
                    action=action,
                    source_id=source.id,
                    target_id=target.id,
                    relationship_type=rel_type,
                    suggested_strength=strength,
                    confidence=confidence,
                    priority=priority_for(impact),
                    impact=impact,
                    evidence=[
                        f"{len(linked)} of {len(members)} {type_a} entities "
                        f"({confidence:g}%) have {'an outgoing' if direction == 'out' else 'an incoming'} "
                        f"relationship with a {type_b} entity",
                        f"{entity.name} has none",
                        f"{other.name} is linked by {peer_count} "
                        f"{type_a} {'entity' if peer_count == 1 else 'entities'}",
                        f"Most common relationship type among peers: {rel_type} "
                        f"({consistency:g}%)",
                    ],
                    algorithm="pattern_matching",
                    title=f"{source.name} should {rel_type.replace('-', ' ')} {target.name}",
                )
            )
        return recs

    # -------------------------------------------------------------------------
    # usage_analysis
    # -------------------------------------------------------------------------

    def _weak_relationships(
        self,
        snapshot: GraphSnapshot,
        degrees: Dict[str, int],
        max_degree: int,
    ) -> List[RelationshipRecommendation]:
        by_type: Dict[str, List[Relationship]] = defaultdict(list)
        for rel in snapshot.iter_relationships():
            by_type[rel.relationship_type.value].append(rel)

        recs = []
        for rel_type in sorted(by_type):
            rels = by_type[rel_type]
            if len(rels) < self.thresholds.min_relationships_for_stats:
                continue
            strengths = np.array([rel.strength for rel in rels], dtype=float)
            median = float(np.median(strengths))
            std = float(np.std(strengths))
            if std == 0:
                continue
            cutoff = median - self.thresholds.strength_std_factor * std

            for rel in rels:
                if rel.strength >= cutoff:
                    continue
                signals = self._usage_signals(snapshot, rel)
                if not signals:
                    continue
                z = (median - rel.strength) / std
                recs.append(
                    self._strengthen(
                        snapshot, rel, median, std, z, signals, degrees, max_degree
                    )
                )
        return recs

    def _usage_signals(self, snapshot: GraphSnapshot, rel: Relationship) -> List[str]:
        signals = []
        for key in self.thresholds.usage_keys:
            value = _numeric(rel.metadata.get(key))
            if value is not None and value >= self.thresholds.high_usage_threshold:
                signals.append(f"High usage: {key}={value:g}")
        for role, entity_id in (("Source", rel.source_id), ("Target", rel.target_id)):
            entity = snapshot.get_entity(entity_id)
            if _is_critical(entity):
                signals.append(f"{role} {entity.name} is business critical")
        return signals

    def _strengthen(
        self,
        snapshot: GraphSnapshot,
        rel: Relationship,
        median: float,
        std: float,
        z: float,
        signals: List[str],
        degrees: Dict[str, int],
        max_degree: int,
    ) -> RelationshipRecommendation:
        source = snapshot.get_entity(rel.source_id)
        target = snapshot.get_entity(rel.target_id)
        rel_type = rel.relationship_type.value
        confidence = max(0.0, min(100.0, 50.0 + 20.0 * (z - 1.0) + 15.0 * len(signals)))
        impact = RecommendationImpact(
            strategic_value=self._strategic_value(degrees, max_degree, source.id, target.id),
            completeness=50.0,
            consistency=round(min(100.0, 50.0 + 25.0 * z), 2),
        )
        action = RecommendationAction.STRENGTHEN
        return RelationshipRecommendation(
            id=recommendation_id(action, source.id, target.id, rel_type),
            action=action,
            source_id=source.id,
            target_id=target.id,
            relationship_type=rel_type,
            suggested_strength=round(median, 2),
            current_strength=rel.strength,
            relationship_id=rel.id,
            confidence=round(confidence, 2),
            priority=priority_for(impact),
            impact=impact,
            evidence=[
                f"Strength {rel.strength:g} is {z:.1f} standard deviations below "
                f"the {rel_type} median of {median:g} (std {std:.1f})",
                *signals,
            ],
            algorithm="usage_analysis",
            title=f"Increase strength of {source.name} -> {target.name} relationship",
        )

    # -------------------------------------------------------------------------
    # lifecycle_analysis
    # -------------------------------------------------------------------------

    def _stale_relationships(
        self,
        snapshot: GraphSnapshot,
        degrees: Dict[str, int],
        max_degree: int,
        now: datetime,
    ) -> List[RelationshipRecommendation]:
        window = timedelta(days=self.thresholds.staleness_days)
        recs = []
        for rel in snapshot.iter_relationships():
            target = snapshot.get_entity(rel.target_id)
            if not target.is_sunsetting:
                continue
            last_activity = self._last_activity(rel)
            if last_activity is not None and now - last_activity <= window:
                continue
            recs.append(
                self._remove(snapshot, rel, target, last_activity, now, degrees, max_degree)
            )
        return recs

    def _last_activity(self, rel: Relationship) -> Optional[datetime]:
        stamps = [
            _parse_timestamp(rel.metadata.get(key))
            for key in self.thresholds.activity_keys
        ]
        stamps = [s for s in stamps if s is not None]
        return max(stamps) if stamps else None

    def _remove(
        self,
        snapshot: GraphSnapshot,
        rel: Relationship,
        target: Entity,
        last_activity: Optional[datetime],
        now: datetime,
        degrees: Dict[str, int],
        max_degree: int,
    ) -> RelationshipRecommendation:
        source = snapshot.get_entity(rel.source_id)
        rel_type = rel.relationship_type.value
        retired = target.lifecycle_status == LifecycleStatus.RETIRED
        impact = RecommendationImpact(
            strategic_value=self._strategic_value(degrees, max_degree, source.id, target.id),
            completeness=60.0,
            consistency=100.0 if retired else 80.0,
        )
        if last_activity is None:
            activity = "No activity timestamp recorded on this relationship"
        else:
            idle_days = (now - last_activity).days
            activity = f"Last activity {idle_days} days ago (window {self.thresholds.staleness_days} days)"

        action = RecommendationAction.REMOVE
        return RelationshipRecommendation(
            id=recommendation_id(action, source.id, target.id, rel_type),
            action=action,
            source_id=source.id,
            target_id=target.id,
            relationship_type=rel_type,
            current_strength=rel.strength,
            relationship_id=rel.id,
            confidence=90.0 if retired else 75.0,
            priority=priority_for(impact),
            impact=impact,
            evidence=[
                f"{target.name} is marked {target.lifecycle_status.value}",
                activity,
            ],
            algorithm="lifecycle_analysis",
            title=f"Review {source.name} -> {target.name} relationship",
        )


def get_recommendations(
    snapshot: GraphSnapshot,
    thresholds: Optional[RecommendationThresholds] = None,
) -> List[RelationshipRecommendation]:
    """Convenience function for a one-off recommendation run."""
    return RecommendationEngine(thresholds).recommend(snapshot)
