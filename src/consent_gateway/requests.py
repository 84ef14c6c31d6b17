"""Consent Request Manager - owns the consent request state machine"""
from dataclasses import replace
from datetime import datetime
import uuid
import structlog

from consent_gateway.clock import Clock, as_utc
from consent_gateway.directory import PatientDirectory
from consent_gateway.errors import InvalidStateTransition, NotFound, ValidationError
from consent_gateway.lifecycle import ensure_transition, is_terminal
from consent_gateway.models import (
    ConsentRequest, ConsentRequestMetadata, ConsentStatus, is_request_expired
)
from consent_gateway.observability.metrics import ConsentMetrics
from consent_gateway.retry import run_with_conflict_retry
from consent_gateway.store import ConsentStore

# Moves that carry side effects beyond the status flip have their own operations.
OWNED_TARGETS = {ConsentStatus.GRANTED, ConsentStatus.REVOKED, ConsentStatus.EXPIRED}


class ConsentRequestManager:
    """
    Creates consent requests and moves them through their lifecycle.

    REQUESTED -> GRANTED | DENIED | EXPIRED
    GRANTED   -> REVOKED | EXPIRED
    DENIED, REVOKED and EXPIRED are terminal.
    """

    def __init__(
        self,
        store: ConsentStore,
        patients: PatientDirectory,
        clock: Clock,
        metrics: ConsentMetrics | None = None,
        logger=None,
        conflict_retries: int = 1,
    ):
        self._store = store
        self._patients = patients
        self._clock = clock
        self._metrics = metrics or ConsentMetrics()
        self._logger = logger or structlog.get_logger(__name__).bind(component="consent_requests")
        self._retries = conflict_retries

    def create(
        self,
        patient_id: str,
        requester_id: str,
        purpose: str,
        hip_id: str,
        hiu_id: str,
        expiry_date: datetime,
        metadata: ConsentRequestMetadata | None = None,
    ) -> ConsentRequest:
        """Open a new consent request in REQUESTED state."""
        now = self._clock.now()
        expiry_date = as_utc(expiry_date)
        if expiry_date <= now:
            raise ValidationError("Consent request expiry date must be in the future")
        if not self._patients.exists(patient_id):
            raise NotFound(f"Patient not found: {patient_id}")

        request = ConsentRequest(
            id=str(uuid.uuid4()),
            patient_id=patient_id,
            requester_id=requester_id,
            purpose=purpose,
            hip_id=hip_id,
            hiu_id=hiu_id,
            request_date=now,
            expiry_date=expiry_date,
            status=ConsentStatus.REQUESTED,
            metadata=metadata,
            updated_at=now,
        )
        self._store.add_request(request)
        self._metrics.requests_created.inc()

        self._logger.info("Consent request created",
            request_id=request.id,
            patient_id=patient_id,
            hiu_id=hiu_id,
            hip_id=hip_id,
            purpose=purpose)
        return request

    def get(self, request_id: str) -> ConsentRequest:
        request = self._store.get_request(request_id)
        if request is None:
            raise NotFound(f"Consent request not found: {request_id}")
        return request

    def list_by_patient(
        self, patient_id: str, status: ConsentStatus | None = None
    ) -> list[ConsentRequest]:
        return self._store.list_requests_by_patient(patient_id, status)

    def deny(self, request_id: str, reason: str | None = None) -> ConsentRequest:
        """Deny a request that is still awaiting a decision."""
        request = self.transition(request_id, ConsentStatus.DENIED)
        self._metrics.denials.inc()
        self._logger.info("Consent request denied",
            request_id=request_id,
            patient_id=request.patient_id,
            reason=reason)
        return request

    def transition(self, request_id: str, target: ConsentStatus) -> ConsentRequest:
        """
        Move a request to `target` if the state machine allows it.

        GRANTED, REVOKED and EXPIRED are refused here; they are reached only
        through grant, revoke and expire, which keep the artefact in step.
        """

        def attempt() -> ConsentRequest:
            current = self.get(request_id)
            if target in OWNED_TARGETS:
                raise InvalidStateTransition(current.status, target, request_id)
            ensure_transition(current.status, target, request_id)
            updated = replace(current, status=target, updated_at=self._clock.now())
            return self._store.update_request(updated, current.version)

        return run_with_conflict_retry(
            attempt, self._retries, self._metrics, name=f"transition to {target.value}"
        )

    def expire(self, request_id: str, now: datetime | None = None) -> bool:
        """
        Expire an open request whose time window has lapsed.

        Returns False without raising when the request is missing, already
        terminal, or no longer eligible, so racing sweeps and revokes
        settle on whichever committed first.
        """
        now = as_utc(now) if now is not None else self._clock.now()

        def attempt() -> bool:
            current = self._store.get_request(request_id)
            if current is None or is_terminal(current.status):
                return False
            if not self._has_lapsed(current, now):
                return False
            updated = replace(current, status=ConsentStatus.EXPIRED, updated_at=now)
            self._store.update_request(updated, current.version)
            return True

        expired = run_with_conflict_retry(attempt, self._retries, self._metrics, name="expire")
        if expired:
            self._metrics.expirations.inc()
            self._logger.info("Consent request expired", request_id=request_id)
        return expired

    def _has_lapsed(self, request: ConsentRequest, now: datetime) -> bool:
        if is_request_expired(request, now):
            return True
        if request.status != ConsentStatus.GRANTED:
            return False
        artefact = self._store.get_artefact_by_request(request.id)
        return artefact is not None and artefact.date_range_to < now
