"""
Pattern Query Engine

Structured (not textual) queries over relationships:

    PatternQuery(
        source_type="application",
        relationship_type="DEPENDS_ON",
        filters=[QueryFilter(field="status", op="eq", value="Legacy")],
    )

matches every ``(source, relationship, target)`` triple whose types match
and whose filters all pass. Filter fields address ``source.<f>``,
``relationship.<f>`` (or ``rel.<f>``) and ``target.<f>``; an unprefixed
field addresses the target entity. Attribute/metadata maps are consulted
before built-in fields (id, name, type, lifecycle_status, strength).

The engine is read-only. Results are lazy and restartable: each iteration
re-evaluates the query against the same immutable snapshot.
"""

from dataclasses import dataclass
from enum import Enum
from typing import Any, Callable, Dict, Iterator, List, NamedTuple, Optional, Tuple

from loguru import logger
from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator
from pydantic.alias_generators import to_camel

from context_graph.domain.architecture import Entity, Relationship, normalize_token
from context_graph.exceptions import (
    InvalidParameterError,
    NotFoundError,
    UnsupportedOperatorError,
)
from context_graph.graph_analysis.store import GraphSnapshot


# =============================================================================
# QUERY MODELS
# =============================================================================


class FilterOperator(str, Enum):
    """Supported filter comparisons."""
    EQ = "eq"
    NEQ = "neq"
    CONTAINS = "contains"
    IS_NULL = "isNull"
    IS_NOT_NULL = "isNotNull"


# Keys are operator names with case, "_" and "-" stripped
_OPERATOR_ALIASES: Dict[str, FilterOperator] = {
    "eq": FilterOperator.EQ,
    "==": FilterOperator.EQ,
    "neq": FilterOperator.NEQ,
    "ne": FilterOperator.NEQ,
    "!=": FilterOperator.NEQ,
    "contains": FilterOperator.CONTAINS,
    "isnull": FilterOperator.IS_NULL,
    "isnotnull": FilterOperator.IS_NOT_NULL,
}


def parse_operator(op: Any) -> FilterOperator:
    """Resolve an operator name (``isNull``, ``is_null``, ``IS-NULL`` ...)."""
    if isinstance(op, FilterOperator):
        return op
    key = str(op).strip().lower().replace("_", "").replace("-", "").replace(" ", "")
    try:
        return _OPERATOR_ALIASES[key]
    except KeyError:
        raise UnsupportedOperatorError(str(op)) from None


class QueryFilter(BaseModel):
    """One ``(field, op, value)`` condition."""

    field: str = Field(..., description="Field path, e.g. 'target.status'")
    op: str = Field(..., description="eq, neq, contains, isNull or isNotNull")
    value: Any = None


class PatternQuery(BaseModel):
    """
    Structured pattern query.

    Accepts snake_case or camelCase keys (``relationship_type`` or
    ``relationshipType``). Filters may be given as ``(field, op, value)``
    tuples.
    """

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    source_type: Optional[str] = None
    relationship_type: Optional[str] = None
    target_type: Optional[str] = None
    filters: List[QueryFilter] = Field(default_factory=list)
    limit: Optional[int] = Field(None, ge=1)

    @field_validator("filters", mode="before")
    @classmethod
    def coerce_filter_tuples(cls, v):
        if v is None:
            return []
        coerced = []
        for item in v:
            if isinstance(item, (tuple, list)):
                if len(item) < 2:
                    raise ValueError(f"Filter needs at least a field and an operator: {item!r}")
                field, op, *rest = item
                coerced.append({"field": field, "op": op, "value": rest[0] if rest else None})
            else:
                coerced.append(item)
        return coerced


class QueryMatch(NamedTuple):
    """One result row."""

    source: Entity
    relationship: Relationship
    target: Entity

    def to_dict(self) -> Dict[str, Any]:
        return {
            "source": self.source.model_dump(mode="json"),
            "relationship": self.relationship.model_dump(mode="json"),
            "target": self.target.model_dump(mode="json"),
        }


@dataclass(frozen=True)
class SavedQuery:
    """Named query template from the query library."""

    name: str
    description: str
    category: str
    query: PatternQuery


SAVED_QUERIES: Dict[str, SavedQuery] = {
    saved.name: saved
    for saved in (
        SavedQuery(
            name="critical-legacy-dependencies",
            description="Applications that depend on legacy systems",
            category="risk",
            query=PatternQuery(
                source_type="application",
                relationship_type="depends-on",
                filters=[QueryFilter(field="target.status", op="eq", value="Legacy")],
            ),
        ),
        SavedQuery(
            name="capability-support",
            description="Applications supporting each business capability",
            category="analysis",
            query=PatternQuery(
                source_type="application",
                relationship_type="supports",
                target_type="capability",
            ),
        ),
        SavedQuery(
            name="technology-usage",
            description="Applications and the technologies they use",
            category="technology",
            query=PatternQuery(
                source_type="application",
                relationship_type="uses",
                target_type="technology",
            ),
        ),
        SavedQuery(
            name="team-ownership",
            description="Applications owned by each team",
            category="governance",
            query=PatternQuery(
                source_type="team",
                relationship_type="owns",
                target_type="application",
            ),
        ),
    )
}


def get_saved_query(name: str) -> SavedQuery:
    try:
        return SAVED_QUERIES[name]
    except KeyError:
        raise NotFoundError(f"Unknown saved query: {name}") from None


# =============================================================================
# FILTER EVALUATION
# =============================================================================


_MISSING = object()

_SCOPES = {
    "source": "source",
    "relationship": "relationship",
    "rel": "relationship",
    "target": "target",
}


def _entity_field(entity: Entity, name: str) -> Any:
    if name in entity.attributes:
        return entity.attributes[name]
    if name == "id":
        return entity.id
    if name == "name":
        return entity.name
    if name in ("type", "entity_type"):
        return entity.entity_type.value
    if name in ("status", "lifecycle_status"):
        return entity.lifecycle_status.value
    return _MISSING


def _relationship_field(rel: Relationship, name: str) -> Any:
    if name in rel.metadata:
        return rel.metadata[name]
    if name == "id":
        return rel.id
    if name in ("type", "relationship_type"):
        return rel.relationship_type.value
    if name == "strength":
        return rel.strength
    if name == "source_id":
        return rel.source_id
    if name == "target_id":
        return rel.target_id
    return _MISSING


def _is_number(value: Any) -> bool:
    return isinstance(value, (int, float)) and not isinstance(value, bool)


def _equals(actual: Any, expected: Any) -> bool:
    if actual is _MISSING or actual is None:
        return expected is None
    if _is_number(actual) and _is_number(expected):
        return float(actual) == float(expected)
    if isinstance(actual, str) or isinstance(expected, str):
        return str(actual).casefold() == str(expected).casefold()
    return actual == expected


def _contains(actual: Any, expected: Any) -> bool:
    if actual is _MISSING or actual is None:
        return False
    if isinstance(actual, str):
        return str(expected).casefold() in actual.casefold()
    if isinstance(actual, dict):
        return expected in actual
    if isinstance(actual, (list, tuple, set, frozenset)):
        return any(_equals(item, expected) for item in actual)
    return False


_COMPARATORS: Dict[FilterOperator, Callable[[Any, Any], bool]] = {
    FilterOperator.EQ: _equals,
    FilterOperator.NEQ: lambda actual, expected: not _equals(actual, expected),
    FilterOperator.CONTAINS: _contains,
    FilterOperator.IS_NULL: lambda actual, _: actual is _MISSING or actual is None,
    FilterOperator.IS_NOT_NULL: lambda actual, _: actual is not _MISSING and actual is not None,
}


@dataclass(frozen=True)
class _CompiledFilter:
    scope: str
    name: str
    compare: Callable[[Any, Any], bool]
    value: Any

    def matches(self, source: Entity, rel: Relationship, target: Entity) -> bool:
        if self.scope == "source":
            actual = _entity_field(source, self.name)
        elif self.scope == "relationship":
            actual = _relationship_field(rel, self.name)
        else:
            actual = _entity_field(target, self.name)
        return self.compare(actual, self.value)


def _compile(query_filter: QueryFilter) -> _CompiledFilter:
    op = parse_operator(query_filter.op)
    prefix, dot, rest = query_filter.field.partition(".")
    scope = _SCOPES.get(prefix.strip().lower()) if dot else None
    if scope is None:
        scope, name = "target", query_filter.field
    else:
        name = rest
    return _CompiledFilter(scope, name.strip(), _COMPARATORS[op], query_filter.value)


# =============================================================================
# QUERY EXECUTION
# =============================================================================


class QueryResult:
    """
    Lazy, restartable sequence of ``QueryMatch`` rows.

    Nothing is evaluated until iteration; every iteration produces the same
    rows in the same order because the snapshot never changes.
    """

    def __init__(
        self,
        snapshot: GraphSnapshot,
        query: PatternQuery,
        filters: List[_CompiledFilter],
    ):
        self.snapshot = snapshot
        self.query = query
        self._filters = filters

    def __iter__(self) -> Iterator[QueryMatch]:
        produced = 0
        for source, rel, target in self._candidates():
            if self.query.limit is not None and produced >= self.query.limit:
                return
            if all(f.matches(source, rel, target) for f in self._filters):
                produced += 1
                yield QueryMatch(source, rel, target)

    def _candidates(self) -> List[Tuple[Entity, Relationship, Entity]]:
        """Type-matching triples, ordered by source name, target name, type, id."""
        source_type = _wanted(self.query.source_type)
        rel_type = _wanted(self.query.relationship_type)
        target_type = _wanted(self.query.target_type)

        triples = []
        for rel in self.snapshot.iter_relationships():
            if rel_type is not None and rel.relationship_type.value != rel_type:
                continue
            source = self.snapshot.get_entity(rel.source_id)
            if source_type is not None and source.entity_type.value != source_type:
                continue
            target = self.snapshot.get_entity(rel.target_id)
            if target_type is not None and target.entity_type.value != target_type:
                continue
            triples.append((source, rel, target))

        triples.sort(
            key=lambda t: (
                t[0].name.casefold(),
                t[2].name.casefold(),
                t[1].relationship_type.value,
                t[1].id,
            )
        )
        return triples

    def to_list(self) -> List[QueryMatch]:
        return list(self)

    def count(self) -> int:
        return sum(1 for _ in self)

    def first(self) -> Optional[QueryMatch]:
        return next(iter(self), None)


def _wanted(type_name: Optional[str]) -> Optional[str]:
    return normalize_token(type_name) if type_name else None


class QueryEngine:
    """
    Executes ``PatternQuery`` objects against snapshots.

    Example usage:
        engine = QueryEngine()
        result = engine.run(snapshot, {"relationshipType": "DEPENDS_ON",
                                       "filters": [("status", "eq", "Legacy")]})
        for source, rel, target in result:
            print(source.name, "->", target.name)
    """

    def run(self, snapshot: GraphSnapshot, query) -> QueryResult:
        """
        Validate ``query`` and return its lazy result.

        Raises:
            InvalidParameterError: the query is malformed
            UnsupportedOperatorError: a filter uses an unknown operator
        """
        if not isinstance(query, PatternQuery):
            try:
                query = PatternQuery.model_validate(query)
            except ValidationError as e:
                raise InvalidParameterError(str(e)) from e
        compiled = [_compile(f) for f in query.filters]
        logger.debug(
            f"Query on v{snapshot.version}: source={query.source_type} "
            f"rel={query.relationship_type} target={query.target_type} "
            f"filters={len(compiled)}"
        )
        return QueryResult(snapshot, query, compiled)

    def run_saved(self, snapshot: GraphSnapshot, name: str) -> QueryResult:
        return self.run(snapshot, get_saved_query(name).query)


def run_query(snapshot: GraphSnapshot, query) -> List[QueryMatch]:
    """Convenience function: run a query and materialize its rows."""
    return QueryEngine().run(snapshot, query).to_list()
