"""Consent Artefact Generator - grants, signs and revokes consent artefacts"""
from dataclasses import replace
from datetime import datetime
from typing import Iterable
import uuid
import structlog

from consent_gateway.clock import Clock, as_utc
from consent_gateway.errors import NotFound, ValidationError
from consent_gateway.lifecycle import ensure_transition
from consent_gateway.models import (
    AccessMode, ConsentArtefact, ConsentArtefactSummary, ConsentRequest, ConsentStatus,
    DataCategory, Frequency, is_artefact_valid, is_request_expired, normalize_categories,
    summarize
)
from consent_gateway.observability.metrics import ConsentMetrics
from consent_gateway.retry import run_with_conflict_retry
from consent_gateway.signing import SignatureProvider, canonical_payload
from consent_gateway.store import ConsentStore


class ConsentArtefactGenerator:
    """
    Turns a grantable consent request into a signed artefact.

    Creating the artefact and flipping the request to GRANTED is a single
    store write; a request can never end up with two artefacts.
    """

    def __init__(
        self,
        store: ConsentStore,
        signer: SignatureProvider,
        clock: Clock,
        metrics: ConsentMetrics | None = None,
        logger=None,
        conflict_retries: int = 1,
    ):
        self._store = store
        self._signer = signer
        self._clock = clock
        self._metrics = metrics or ConsentMetrics()
        self._logger = logger or structlog.get_logger(__name__).bind(component="consent_artefacts")
        self._retries = conflict_retries

    def grant(
        self,
        request_id: str,
        access_mode: AccessMode,
        date_range_from: datetime,
        date_range_to: datetime,
        data_categories: Iterable[DataCategory | str],
        frequency: Frequency | None = None,
    ) -> ConsentArtefact:
        """
        Grant a consent request.

        Raises:
            NotFound: request does not exist
            InvalidStateTransition: request is not REQUESTED
            ValidationError: request expired, bad date range or no categories
        """
        self._get_request(request_id)
        categories = normalize_categories(data_categories)
        if not categories:
            raise ValidationError("At least one data category is required")
        date_range_from = as_utc(date_range_from)
        date_range_to = as_utc(date_range_to)
        if date_range_from > date_range_to:
            raise ValidationError("Date range start must not be after its end")
        try:
            access_mode = AccessMode(access_mode)
        except ValueError as e:
            raise ValidationError(f"Unknown access mode: {access_mode}") from e

        def attempt() -> ConsentArtefact:
            request = self._get_request(request_id)
            ensure_transition(request.status, ConsentStatus.GRANTED, request_id)
            now = self._clock.now()
            if is_request_expired(request, now):
                raise ValidationError(f"Consent request {request_id} has expired")

            artefact = ConsentArtefact(
                id=str(uuid.uuid4()),
                consent_request_id=request.id,
                signature=self._signer.sign(self._payload(request, now)),
                access_mode=access_mode,
                date_range_from=date_range_from,
                date_range_to=date_range_to,
                data_categories=categories,
                created_at=now,
                frequency=frequency,
            )
            granted = replace(request, status=ConsentStatus.GRANTED, updated_at=now)
            _, saved = self._store.save_grant(granted, request.version, artefact)
            return saved

        artefact = run_with_conflict_retry(attempt, self._retries, self._metrics, name="grant")
        self._metrics.grants.inc(labels={"access_mode": access_mode.value})

        self._logger.info("Consent granted",
            request_id=request_id,
            artefact_id=artefact.id,
            access_mode=access_mode.value,
            categories=[dc.category for dc in categories],
            repeats=frequency.repeats if frequency else None)
        return artefact

    def revoke(self, artefact_id: str) -> ConsentArtefact:
        """
        Revoke an artefact by ending its date range now.

        The parent request moves to REVOKED in the same write. Fails with
        ValidationError if the artefact is already invalid. If an expiry
        sweep wins a concurrent race, the revoke becomes a no-op. Of two
        racing revokes only one succeeds; the other re-reads the REVOKED
        request and fails with ValidationError like a sequential repeat.
        """
        attempts = 0
        revoked = False

        def attempt() -> ConsentArtefact:
            nonlocal attempts, revoked
            attempts += 1
            artefact = self.get(artefact_id)
            request = self._store.get_request(artefact.consent_request_id)
            now = self._clock.now()

            if attempts > 1 and request is not None and request.status == ConsentStatus.EXPIRED:
                return artefact
            if not is_artefact_valid(artefact, request, now):
                raise ValidationError(f"Consent artefact {artefact_id} is already invalid")
            ensure_transition(request.status, ConsentStatus.REVOKED, request.id)

            revoked_artefact = replace(artefact, date_range_to=now, revoked_at=now)
            revoked_request = replace(request, status=ConsentStatus.REVOKED, updated_at=now)
            _, saved = self._store.save_revocation(
                revoked_artefact, artefact.version, revoked_request, request.version
            )
            revoked = True
            return saved

        artefact = run_with_conflict_retry(attempt, self._retries, self._metrics, name="revoke")
        if revoked:
            self._metrics.revocations.inc()
            self._logger.info("Consent revoked",
                artefact_id=artefact_id,
                request_id=artefact.consent_request_id)
        return artefact

    def get(self, artefact_id: str) -> ConsentArtefact:
        artefact = self._store.get_artefact(artefact_id)
        if artefact is None:
            raise NotFound(f"Consent artefact not found: {artefact_id}")
        return artefact

    def get_by_request(self, request_id: str) -> ConsentArtefact:
        artefact = self._store.get_artefact_by_request(request_id)
        if artefact is None:
            raise NotFound(f"No consent artefact for request: {request_id}")
        return artefact

    def list_valid_by_patient(self, patient_id: str) -> list[ConsentArtefactSummary]:
        """Summaries of the patient's artefacts that are valid right now."""
        now = self._clock.now()
        summaries = []
        for artefact in self._store.list_artefacts_by_patient(patient_id):
            request = self._store.get_request(artefact.consent_request_id)
            if is_artefact_valid(artefact, request, now):
                summaries.append(summarize(artefact))
        return summaries

    def verify_signature(self, artefact_id: str) -> bool:
        """Check the artefact signature against its request."""
        artefact = self.get(artefact_id)
        request = self._store.get_request(artefact.consent_request_id)
        if request is None:
            return False
        valid = self._signer.verify(artefact.signature, self._payload(request, artefact.created_at))
        if not valid:
            self._logger.warning("Consent artefact signature mismatch", artefact_id=artefact_id)
        return valid

    def _get_request(self, request_id: str) -> ConsentRequest:
        request = self._store.get_request(request_id)
        if request is None:
            raise NotFound(f"Consent request not found: {request_id}")
        return request

    @staticmethod
    def _payload(request: ConsentRequest, timestamp: datetime) -> dict:
        return canonical_payload(request.id, request.patient_id, request.hiu_id, request.hip_id, timestamp)
