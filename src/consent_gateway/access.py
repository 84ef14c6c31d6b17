"""
Access Validator - per-access consent enforcement

Decides whether an access attempt against a consent artefact is admitted
and keeps the usage ledger that backs frequency quotas.

Admission is all-or-nothing over the requested categories. A frequency
quota is a lifetime cap: once `repeats` accesses have been recorded the
artefact admits nothing more, even while its date range is open.
"""
from dataclasses import dataclass
from datetime import datetime
from typing import Iterable
import uuid
import structlog

from consent_gateway.clock import Clock
from consent_gateway.errors import NotFound, ValidationError
from consent_gateway.models import (
    AccessRecord, ConsentArtefact, ConsentRequest, DataCategory, allows_access_to,
    is_artefact_valid
)
from consent_gateway.observability.metrics import ConsentMetrics
from consent_gateway.retry import run_with_conflict_retry
from consent_gateway.store import ConsentStore


@dataclass
class AccessDecision:
    """Outcome of evaluating one access attempt."""
    allowed: bool
    reason: str
    remaining: int | None = None


def category_codes(categories: Iterable[DataCategory | str]) -> list[str]:
    codes = []
    for c in categories or ():
        if isinstance(c, DataCategory):
            codes.append(c.category)
        else:
            codes.append(getattr(c, "value", c))
    return codes


def remaining_quota(artefact: ConsentArtefact, used: int) -> int | None:
    """Accesses left under the artefact's frequency, None when unlimited."""
    if artefact.frequency is None:
        return None
    return max(artefact.frequency.repeats - used, 0)


def evaluate_access(
    artefact: ConsentArtefact,
    request: ConsentRequest | None,
    categories: list[str],
    used: int,
    now: datetime,
) -> AccessDecision:
    remaining = remaining_quota(artefact, used)
    if not categories:
        return AccessDecision(False, "no categories requested", remaining)
    if not is_artefact_valid(artefact, request, now):
        return AccessDecision(False, "consent artefact is not valid", remaining)
    missing = [c for c in categories if not allows_access_to(artefact, c)]
    if missing:
        return AccessDecision(False, f"categories not covered: {missing}", remaining)
    if remaining == 0:
        return AccessDecision(False, "access quota exhausted", remaining)
    return AccessDecision(True, "access permitted", remaining)


class AccessValidator:
    """Checks access attempts against consent artefacts and records usage."""

    def __init__(
        self,
        store: ConsentStore,
        clock: Clock,
        metrics: ConsentMetrics | None = None,
        logger=None,
        conflict_retries: int = 1,
    ):
        self._store = store
        self._clock = clock
        self._metrics = metrics or ConsentMetrics()
        self._logger = logger or structlog.get_logger(__name__).bind(component="consent_access")
        self._retries = conflict_retries

    def check_access(self, artefact_id: str, requested_categories: Iterable[DataCategory | str]) -> bool:
        """
        Decide whether the artefact currently admits the requested categories.

        Denial is reported as False, never as an exception.
        """
        decision = self.evaluate(artefact_id, requested_categories)
        return decision.allowed

    def evaluate(self, artefact_id: str, requested_categories: Iterable[DataCategory | str]) -> AccessDecision:
        """Like check_access but returns the reason as well."""
        categories = category_codes(requested_categories)
        artefact = self._store.get_artefact(artefact_id)
        if artefact is None:
            decision = AccessDecision(False, "consent artefact not found")
        else:
            request = self._store.get_request(artefact.consent_request_id)
            used = self._store.count_access(artefact_id)
            decision = evaluate_access(artefact, request, categories, used, self._clock.now())

        outcome = "allowed" if decision.allowed else "denied"
        self._metrics.access_checks.inc(labels={"outcome": outcome})
        if not decision.allowed:
            self._logger.info("Consent access denied",
                artefact_id=artefact_id,
                categories=categories,
                reason=decision.reason)
        return decision

    def record_access(
        self,
        artefact_id: str,
        categories: Iterable[DataCategory | str],
        accessed_by: str | None = None,
        purpose: str | None = None,
    ) -> AccessRecord:
        """
        Append an access to the artefact's ledger.

        The admission check and the append are one compare-and-swap on the
        ledger, so concurrent callers cannot overshoot the quota.

        Raises:
            NotFound: artefact does not exist
            ValidationError: artefact invalid, category not covered or quota exhausted
        """
        codes = category_codes(categories)

        def attempt() -> AccessRecord:
            artefact = self._get_artefact(artefact_id)
            request = self._store.get_request(artefact.consent_request_id)
            used = self._store.count_access(artefact_id)
            now = self._clock.now()

            decision = evaluate_access(artefact, request, codes, used, now)
            if not decision.allowed:
                raise ValidationError(f"Cannot record access on {artefact_id}: {decision.reason}")

            record = AccessRecord(
                id=str(uuid.uuid4()),
                artefact_id=artefact_id,
                timestamp=now,
                categories_accessed=tuple(codes),
                accessed_by=accessed_by,
                purpose=purpose,
            )
            self._store.append_access(record, used, artefact.version, request.version)
            return record

        try:
            record = run_with_conflict_retry(attempt, self._retries, self._metrics, name="record access")
        except ValidationError as e:
            self._logger.info("Consent access rejected", artefact_id=artefact_id, error=str(e))
            raise

        self._metrics.access_records.inc()
        self._logger.info("Consent access recorded",
            artefact_id=artefact_id,
            record_id=record.id,
            categories=codes,
            accessed_by=accessed_by)
        return record

    def get_remaining_access(self, artefact_id: str) -> int | None:
        """Accesses left, or None for an artefact without a frequency."""
        artefact = self._get_artefact(artefact_id)
        return remaining_quota(artefact, self._store.count_access(artefact_id))

    def access_history(self, artefact_id: str) -> list[AccessRecord]:
        self._get_artefact(artefact_id)
        return self._store.list_access(artefact_id)

    def _get_artefact(self, artefact_id: str) -> ConsentArtefact:
        artefact = self._store.get_artefact(artefact_id)
        if artefact is None:
            raise NotFound(f"Consent artefact not found: {artefact_id}")
        return artefact
