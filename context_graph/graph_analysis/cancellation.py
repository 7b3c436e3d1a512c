"""Cooperative cancellation for long-running graph computations."""

import threading
from typing import Optional

from context_graph.exceptions import OperationCancelledError


class CancellationToken:
    """
    Flag checked by algorithms between outer-loop iterations.

    Any thread may call ``cancel()``; the computing thread notices at its
    next checkpoint and raises ``OperationCancelledError``.
    """

    def __init__(self):
        self._event = threading.Event()
        self._reason: Optional[str] = None

    def cancel(self, reason: str = "cancelled by caller") -> None:
        self._reason = reason
        self._event.set()

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()

    def raise_if_cancelled(self) -> None:
        if self._event.is_set():
            raise OperationCancelledError(self._reason or "cancelled")


def checkpoint(token: Optional[CancellationToken]) -> None:
    """Raise if ``token`` has been cancelled; no-op for ``None``."""
    if token is not None:
        token.raise_if_cancelled()
