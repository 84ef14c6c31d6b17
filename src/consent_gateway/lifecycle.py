"""Consent request state machine"""
from consent_gateway.errors import InvalidStateTransition
from consent_gateway.models import ConsentStatus


# EXPIRED edges are only taken by the expiry reconciler.
TRANSITIONS: dict[ConsentStatus, frozenset[ConsentStatus]] = {
    ConsentStatus.REQUESTED: frozenset({
        ConsentStatus.GRANTED, ConsentStatus.DENIED, ConsentStatus.EXPIRED,
    }),
    ConsentStatus.GRANTED: frozenset({ConsentStatus.REVOKED, ConsentStatus.EXPIRED}),
    ConsentStatus.DENIED: frozenset(),
    ConsentStatus.REVOKED: frozenset(),
    ConsentStatus.EXPIRED: frozenset(),
}


def can_transition(current: ConsentStatus, target: ConsentStatus) -> bool:
    return target in TRANSITIONS.get(current, frozenset())


def ensure_transition(current: ConsentStatus, target: ConsentStatus, entity_id: str | None = None):
    """Raise InvalidStateTransition unless current -> target is allowed."""
    if not can_transition(current, target):
        raise InvalidStateTransition(current, target, entity_id)


def is_terminal(status: ConsentStatus) -> bool:
    return not TRANSITIONS.get(status)
