"""Consent errors"""


class ConsentError(Exception):
    """Base class for consent errors."""
    status_code = 500


class NotFound(ConsentError):
    """Consent request or artefact does not exist."""
    status_code = 404


class ValidationError(ConsentError):
    """Input or current state violates a consent invariant."""
    status_code = 400


class InvalidStateTransition(ConsentError):
    """Lifecycle move not allowed from the current status."""
    status_code = 409

    def __init__(self, current, target, entity_id: str | None = None):
        self.current = current
        self.target = target
        self.entity_id = entity_id
        current_value = getattr(current, "value", current)
        target_value = getattr(target, "value", target)
        subject = f"consent request {entity_id}" if entity_id else "consent request"
        super().__init__(f"Cannot move {subject} from {current_value} to {target_value}")


class Conflict(ConsentError):
    """Concurrent modification persisted after retrying."""
    status_code = 409


class StaleWrite(Exception):
    """Store-level compare-and-swap failure. Handled inside the core."""
    pass
