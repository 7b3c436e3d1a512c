"""
Typed errors raised by the context graph engine.

Every error exposes a stable ``kind`` string so callers (and the HTTP layer)
can report failures without depending on the class hierarchy.
"""

from typing import Dict, Optional


class ContextGraphError(Exception):
    """Base class for all engine errors."""

    kind: str = "ContextGraphError"

    def __init__(self, message: str = ""):
        super().__init__(message)
        self.message = message

    def to_dict(self) -> Dict[str, str]:
        return {"kind": self.kind, "message": self.message}


class NotFoundError(ContextGraphError):
    """Requested entity, relationship, snapshot or recommendation is absent."""

    kind = "NotFound"


class UnknownEntityError(NotFoundError):
    """A referenced entity id does not exist in the graph."""

    kind = "UnknownEntity"

    def __init__(self, entity_id: str, message: Optional[str] = None):
        super().__init__(message or f"Unknown entity: {entity_id}")
        self.entity_id = entity_id


class DuplicateIdError(ContextGraphError):
    kind = "DuplicateId"


class DuplicateEdgeError(ContextGraphError):
    kind = "DuplicateEdge"


class SelfLoopError(ContextGraphError):
    kind = "SelfLoop"


class UnsupportedOperatorError(ContextGraphError):
    kind = "UnsupportedOperator"

    def __init__(self, operator: str):
        super().__init__(f"Unsupported filter operator: {operator!r}")
        self.operator = operator


class InvalidParameterError(ContextGraphError):
    kind = "InvalidParameter"


class OperationCancelledError(ContextGraphError):
    kind = "Cancelled"


class ConvergenceFailure(ContextGraphError):
    """
    An iterative algorithm hit its iteration cap before converging.

    Carries the best-effort scores so callers can degrade to a partial
    result instead of failing.
    """

    kind = "ConvergenceFailure"

    def __init__(
        self,
        algorithm: str,
        iterations: int,
        scores: Optional[Dict[str, float]] = None,
    ):
        super().__init__(
            f"{algorithm} did not converge after {iterations} iterations"
        )
        self.algorithm = algorithm
        self.iterations = iterations
        self.scores = scores or {}
