"""
Impact Analyzer

Blast-radius analysis for a hypothetical change to one entity. A change to
an entity affects whatever depends on it, so the traversal walks incoming
relationships (dependents) breadth-first up to ``max_hops``.

Per affected entity:
    impact_score = severity(change_type) * avg_path_strength / hop_distance

bucketed into critical (>= 75), high (>= 50), medium (>= 25) and low.
"""

import math
from collections import Counter
from typing import Dict, List, Optional, Tuple

from loguru import logger

from context_graph.domain.architecture import Entity, Relationship
from context_graph.exceptions import InvalidParameterError, UnknownEntityError
from context_graph.graph_analysis.base import (
    AffectedEntity,
    ChangeType,
    ImpactLevel,
    ImpactReport,
    RiskAssessment,
    bucket_score,
)
from context_graph.graph_analysis.cancellation import CancellationToken, checkpoint
from context_graph.graph_analysis.config import ImpactConfig
from context_graph.graph_analysis.store import GraphSnapshot


_ACTIONS: Dict[ChangeType, List[str]] = {
    ChangeType.DELETE: ["Remove or replace the dependency", "Update integration tests"],
    ChangeType.REPLACE: ["Migrate to the replacement", "Test integration"],
    ChangeType.DEPRECATE: ["Plan migration away from the dependency"],
    ChangeType.MOVE: ["Update endpoints and configuration", "Verify connectivity"],
    ChangeType.MODIFY: ["Review compatibility of the change"],
}

_MITIGATIONS: Dict[ImpactLevel, List[str]] = {
    ImpactLevel.CRITICAL: [
        "Implement changes during maintenance window",
        "Prepare rollback plan",
        "Coordinate with owning teams of affected entities",
        "Monitor systems closely post-deployment",
    ],
    ImpactLevel.HIGH: [
        "Implement changes during maintenance window",
        "Prepare rollback plan",
        "Notify owning teams of affected entities",
    ],
    ImpactLevel.MEDIUM: [
        "Notify owning teams of affected entities",
        "Schedule regression testing",
    ],
    ImpactLevel.LOW: ["Communicate the change in release notes"],
}


class ImpactAnalyzer:
    """
    Pure blast-radius computation over a snapshot.

    Example usage:
        analyzer = ImpactAnalyzer()
        report = analyzer.analyze(snapshot, "tech-1", ChangeType.DELETE, max_hops=2)
        for affected in report.affected_entities:
            print(affected.entity_name, affected.impact_level)
    """

    def __init__(self, config: Optional[ImpactConfig] = None):
        self.config = config or ImpactConfig()

    def analyze(
        self,
        snapshot: GraphSnapshot,
        target_id: str,
        change_type,
        max_hops: Optional[int] = None,
        cancel_token: Optional[CancellationToken] = None,
    ) -> ImpactReport:
        """
        Compute the impact report for changing ``target_id``.

        Args:
            snapshot: Graph snapshot to analyze
            target_id: Entity being changed
            change_type: ChangeType or its string value
            max_hops: Traversal depth (default from config)
            cancel_token: Checked once per hop level

        Raises:
            UnknownEntityError: target not in the snapshot
            InvalidParameterError: negative max_hops or unknown change type
        """
        change = coerce_change_type(change_type)
        hops = self.config.default_max_hops if max_hops is None else max_hops
        if hops < 0:
            raise InvalidParameterError(f"max_hops must be >= 0, got {hops}")
        if not snapshot.has_entity(target_id):
            raise UnknownEntityError(target_id)

        severity = self.config.severity_weights.get(change.value, 1.0)
        affected = self._traverse(snapshot, target_id, change, severity, hops, cancel_token)
        affected.sort(key=lambda a: (a.hop_distance, -a.impact_score, a.entity_id))

        aggregate = min(
            100.0,
            sum(
                a.impact_score * self.config.level_weights.get(a.impact_level.value, 0.0)
                for a in affected
            ),
        )
        aggregate = round(aggregate, 2)
        level = bucket_score(aggregate)
        total_effort = sum(a.estimated_effort_hours for a in affected)
        hop_sizes = Counter(a.hop_distance for a in affected)
        others = snapshot.entity_count - 1

        report = ImpactReport(
            snapshot_version=snapshot.version,
            target_id=target_id,
            change_type=change,
            max_hops=hops,
            affected_entities=affected,
            impact_score=aggregate,
            impact_level=level,
            blast_radius=round(len(affected) / others, 4) if others > 0 else 0.0,
            risk=self._assess_risk(affected, level),
            estimated_effort_hours=total_effort,
            estimated_duration_days=math.ceil(total_effort / self.config.hours_per_day),
            parallelizable=any(size > 1 for size in hop_sizes.values()),
        )

        logger.info(
            f"Impact of {change.value} on {target_id}: {len(affected)} affected, "
            f"score {aggregate} ({level.value})"
        )
        return report

    def _traverse(
        self,
        snapshot: GraphSnapshot,
        target_id: str,
        change: ChangeType,
        severity: float,
        max_hops: int,
        cancel_token: Optional[CancellationToken],
    ) -> List[AffectedEntity]:
        """
        Level-by-level BFS over incoming relationships.

        Each discovered entity keeps the strongest of its shortest paths
        (greatest summed strength); the visited set stops cycles.
        """
        target = snapshot.get_entity(target_id)
        visited = {target_id}
        # entity id -> summed strength of its best path from the target
        frontier: Dict[str, float] = {target_id: 0.0}
        affected: List[AffectedEntity] = []

        for hop in range(1, max_hops + 1):
            checkpoint(cancel_token)
            discovered: Dict[str, Tuple[float, str, Relationship]] = {}
            for node_id in sorted(frontier):
                for rel in snapshot.incoming(node_id):
                    dependent = rel.source_id
                    if dependent in visited:
                        continue
                    total = frontier[node_id] + rel.strength
                    best = discovered.get(dependent)
                    if best is None or total > best[0]:
                        discovered[dependent] = (total, node_id, rel)

            if not discovered:
                break

            for dependent_id, (total, via_id, rel) in sorted(discovered.items()):
                avg_strength = total / hop
                score = round(min(100.0, severity * avg_strength / hop), 2)
                level = bucket_score(score)
                entity = snapshot.get_entity(dependent_id)
                affected.append(
                    AffectedEntity(
                        entity_id=dependent_id,
                        entity_name=entity.name,
                        entity_type=entity.entity_type.value,
                        hop_distance=hop,
                        impact_level=level,
                        impact_score=score,
                        path_strength=round(avg_strength, 2),
                        relationship_type=rel.relationship_type.value,
                        via_entity_id=via_id,
                        reason=_reason(entity, rel, target, snapshot.get_entity(via_id), hop),
                        estimated_effort_hours=self.config.effort_hours.get(level.value, 0.0),
                        suggested_actions=list(_ACTIONS[change]),
                    )
                )

            visited.update(discovered)
            frontier = {eid: info[0] for eid, info in discovered.items()}

        return affected

    def _assess_risk(
        self, affected: List[AffectedEntity], level: ImpactLevel
    ) -> RiskAssessment:
        if not affected:
            return RiskAssessment()

        untouched = 1.0
        for a in affected:
            untouched *= 1.0 - a.impact_score / 100.0
        probability = round(100.0 * (1.0 - untouched), 2)

        by_type = Counter(a.entity_type for a in affected)
        technical = [
            f"{n} {entity_type} {'entity requires' if n == 1 else 'entities require'} review"
            for entity_type, n in sorted(by_type.items())
        ]
        critical = sum(1 for a in affected if a.impact_level == ImpactLevel.CRITICAL)
        if critical:
            technical.append(f"{critical} critically affected dependents")

        return RiskAssessment(
            probability=min(100.0, probability),
            severity=level.value.capitalize(),
            technical_impact=technical,
            mitigation_strategies=list(_MITIGATIONS[level]),
        )


def coerce_change_type(value) -> ChangeType:
    if isinstance(value, ChangeType):
        return value
    try:
        return ChangeType(str(value).strip().lower())
    except ValueError:
        raise InvalidParameterError(f"Unknown change type: {value!r}") from None


def _reason(
    entity: Entity,
    rel: Relationship,
    target: Entity,
    via: Entity,
    hop: int,
) -> str:
    verb = rel.relationship_type.value.replace("-", " ")
    if hop == 1:
        return f"Directly {verb} {target.name} (strength {rel.strength:g})"
    return (
        f"{entity.name} {verb} {via.name}, which is affected "
        f"({hop} hops from {target.name})"
    )


def analyze_impact(
    snapshot: GraphSnapshot,
    target_id: str,
    change_type,
    max_hops: int = 3,
) -> ImpactReport:
    """Convenience function for a single impact analysis."""
    return ImpactAnalyzer().analyze(snapshot, target_id, change_type, max_hops)
