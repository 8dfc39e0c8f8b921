"""Security gate state machine.

One ``GateContext`` is created per request by the authentication middleware
(stage A) and advanced by the dispatch dependency (stage B)::

    UNAUTHENTICATED -> AUTHENTICATED -> DISPATCHED
    UNAUTHENTICATED -> REJECTED
    AUTHENTICATED   -> REJECTED

No state is revisited within one request.
"""

import enum
from typing import List, Optional

from dyncrud.core.exceptions import GateStateError


class GateState(str, enum.Enum):
    UNAUTHENTICATED = "UNAUTHENTICATED"
    AUTHENTICATED = "AUTHENTICATED"
    DISPATCHED = "DISPATCHED"
    REJECTED = "REJECTED"


_TRANSITIONS = {
    GateState.UNAUTHENTICATED: frozenset({GateState.AUTHENTICATED, GateState.REJECTED}),
    GateState.AUTHENTICATED: frozenset({GateState.DISPATCHED, GateState.REJECTED}),
    GateState.DISPATCHED: frozenset(),
    GateState.REJECTED: frozenset(),
}


class GateContext:
    """Tracks where one request is in the two-stage gate."""

    def __init__(self):
        self.state = GateState.UNAUTHENTICATED
        self.history: List[GateState] = [self.state]
        self.reason: Optional[str] = None

    def _advance(self, target: GateState) -> None:
        if target not in _TRANSITIONS[self.state]:
            raise GateStateError(f"Illegal gate transition {self.state.value} -> {target.value}")
        self.state = target
        self.history.append(target)

    def authenticate(self) -> None:
        self._advance(GateState.AUTHENTICATED)

    def dispatch(self) -> None:
        self._advance(GateState.DISPATCHED)

    def reject(self, reason: str) -> None:
        self._advance(GateState.REJECTED)
        self.reason = reason

    @property
    def is_terminal(self) -> bool:
        return not _TRANSITIONS[self.state]
