# Copyright (c) 2026 StoreGuard Contributors. All Rights Reserved.

"""
Request Lifecycle — Per-request isolation state machine.

    unauthenticated -[authenticate]-> authenticated -[resolve]-> scoped
    scoped -[query]-> scoped
    any non-terminal -[deny | violation]-> rejected

`rejected` is terminal: no later event is accepted and no partial
results may be returned for the request.
"""

from __future__ import annotations

import logging
from typing import Dict, List, Tuple

logger = logging.getLogger("storeguard.lifecycle")

UNAUTHENTICATED = "unauthenticated"
AUTHENTICATED = "authenticated"
SCOPED = "scoped"
REJECTED = "rejected"

AUTHENTICATE = "authenticate"
RESOLVE = "resolve"
QUERY = "query"
DENY = "deny"
VIOLATION = "violation"

STATES = [UNAUTHENTICATED, AUTHENTICATED, SCOPED, REJECTED]

TRANSITIONS = [
    {"from": UNAUTHENTICATED, "event": AUTHENTICATE, "to": AUTHENTICATED},
    {"from": UNAUTHENTICATED, "event": DENY, "to": REJECTED},
    {"from": AUTHENTICATED, "event": RESOLVE, "to": SCOPED},
    {"from": AUTHENTICATED, "event": DENY, "to": REJECTED},
    {"from": AUTHENTICATED, "event": VIOLATION, "to": REJECTED},
    {"from": SCOPED, "event": QUERY, "to": SCOPED},
    {"from": SCOPED, "event": DENY, "to": REJECTED},
    {"from": SCOPED, "event": VIOLATION, "to": REJECTED},
]


class InvalidTransitionError(Exception):
    """Raised when a lifecycle transition is not permitted."""
    pass


class RequestLifecycle:
    """Table-driven state machine tracking one request's isolation state."""

    def __init__(self, trace_id: str = "") -> None:
        self.trace_id = trace_id
        self._state = UNAUTHENTICATED
        self._lookup: Dict[Tuple[str, str], str] = {
            (t["from"], t["event"]): t["to"] for t in TRANSITIONS
        }

    @property
    def state(self) -> str:
        return self._state

    @property
    def is_scoped(self) -> bool:
        return self._state == SCOPED

    @property
    def is_rejected(self) -> bool:
        return self._state == REJECTED

    def get_valid_events(self) -> List[str]:
        return [event for (state, event) in self._lookup if state == self._state]

    def advance(self, event: str) -> str:
        """Apply an event and return the new state."""
        key = (self._state, event)
        if key not in self._lookup:
            raise InvalidTransitionError(
                f"No transition from state '{self._state}' on event '{event}'"
            )
        previous, self._state = self._state, self._lookup[key]
        if previous != self._state:
            logger.debug(
                "lifecycle %s -[%s]-> %s", previous, event, self._state,
                extra={"trace_id": self.trace_id or None},
            )
        return self._state
