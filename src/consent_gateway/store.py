"""
Consent Store - durable keyed storage for requests, artefacts and access records

Every write is a compare-and-swap on the stored version. A mismatch raises
StaleWrite; callers re-read and retry. Writes that touch a request, its
artefact or its access ledger are serialised on a per-consent lock, so
unrelated consents never contend.
"""
from abc import ABC, abstractmethod
from collections import defaultdict
from dataclasses import replace
from datetime import datetime
import threading

from consent_gateway.errors import StaleWrite
from consent_gateway.models import (
    AccessRecord, ConsentArtefact, ConsentRequest, ConsentStatus, OPEN_STATUSES
)


class ConsentStore(ABC):
    """Repository capability used by the consent components."""

    @abstractmethod
    def add_request(self, request: ConsentRequest) -> ConsentRequest:
        """Insert a new consent request."""
        pass

    @abstractmethod
    def get_request(self, request_id: str) -> ConsentRequest | None:
        pass

    @abstractmethod
    def list_requests_by_patient(
        self, patient_id: str, status: ConsentStatus | None = None
    ) -> list[ConsentRequest]:
        pass

    @abstractmethod
    def update_request(self, request: ConsentRequest, expected_version: int) -> ConsentRequest:
        """Replace a request if the stored version still equals expected_version."""
        pass

    @abstractmethod
    def save_grant(
        self, request: ConsentRequest, expected_version: int, artefact: ConsentArtefact
    ) -> tuple[ConsentRequest, ConsentArtefact]:
        """Insert the artefact and update its request as one unit."""
        pass

    @abstractmethod
    def save_revocation(
        self,
        artefact: ConsentArtefact,
        expected_artefact_version: int,
        request: ConsentRequest,
        expected_request_version: int,
    ) -> tuple[ConsentRequest, ConsentArtefact]:
        """Update an artefact and its request as one unit."""
        pass

    @abstractmethod
    def get_artefact(self, artefact_id: str) -> ConsentArtefact | None:
        pass

    @abstractmethod
    def get_artefact_by_request(self, request_id: str) -> ConsentArtefact | None:
        pass

    @abstractmethod
    def list_artefacts_by_patient(self, patient_id: str) -> list[ConsentArtefact]:
        pass

    @abstractmethod
    def find_expiring_requests(self, now: datetime) -> list[ConsentRequest]:
        """Open requests whose expiry date is before now."""
        pass

    @abstractmethod
    def find_lapsed_artefacts(self, now: datetime) -> list[ConsentArtefact]:
        """Artefacts of granted requests whose date range ended before now."""
        pass

    @abstractmethod
    def append_access(
        self,
        record: AccessRecord,
        expected_count: int,
        expected_artefact_version: int,
        expected_request_version: int,
    ) -> int:
        """Append to the ledger if nothing changed since the caller's read.

        Returns the ledger length after the append.
        """
        pass

    @abstractmethod
    def list_access(self, artefact_id: str) -> list[AccessRecord]:
        pass

    def count_access(self, artefact_id: str) -> int:
        return len(self.list_access(artefact_id))


class InMemoryConsentStore(ConsentStore):
    """Thread-safe in-memory store."""

    def __init__(self):
        self._requests: dict[str, ConsentRequest] = {}
        self._artefacts: dict[str, ConsentArtefact] = {}
        self._artefact_by_request: dict[str, str] = {}
        self._requests_by_patient: dict[str, list[str]] = defaultdict(list)
        self._access: dict[str, list[AccessRecord]] = defaultdict(list)

        self._index_lock = threading.Lock()
        self._locks: dict[str, threading.Lock] = {}

    def _lock_for(self, request_id: str) -> threading.Lock:
        with self._index_lock:
            lock = self._locks.get(request_id)
            if lock is None:
                lock = self._locks[request_id] = threading.Lock()
            return lock

    # -------------------------------------------------------------------------
    # Requests
    # -------------------------------------------------------------------------

    def add_request(self, request: ConsentRequest) -> ConsentRequest:
        with self._lock_for(request.id):
            if request.id in self._requests:
                raise StaleWrite(f"Consent request already exists: {request.id}")
            self._requests[request.id] = request
            with self._index_lock:
                self._requests_by_patient[request.patient_id].append(request.id)
        return request

    def get_request(self, request_id: str) -> ConsentRequest | None:
        return self._requests.get(request_id)

    def list_requests_by_patient(self, patient_id, status=None):
        with self._index_lock:
            ids = list(self._requests_by_patient.get(patient_id, []))
        requests = [self._requests[i] for i in ids]
        if status is not None:
            requests = [r for r in requests if r.status == status]
        return sorted(requests, key=lambda r: r.request_date)

    def update_request(self, request, expected_version):
        with self._lock_for(request.id):
            self._check_request_version(request.id, expected_version)
            stored = replace(request, version=expected_version + 1)
            self._requests[request.id] = stored
        return stored

    def _check_request_version(self, request_id: str, expected_version: int):
        current = self._requests.get(request_id)
        if current is None or current.version != expected_version:
            raise StaleWrite(f"Consent request {request_id} changed concurrently")

    # -------------------------------------------------------------------------
    # Artefacts
    # -------------------------------------------------------------------------

    def save_grant(self, request, expected_version, artefact):
        with self._lock_for(request.id):
            self._check_request_version(request.id, expected_version)
            if request.id in self._artefact_by_request:
                raise StaleWrite(f"Consent request {request.id} already has an artefact")
            if artefact.id in self._artefacts:
                raise StaleWrite(f"Consent artefact already exists: {artefact.id}")

            stored_request = replace(request, version=expected_version + 1)
            self._artefacts[artefact.id] = artefact
            self._artefact_by_request[request.id] = artefact.id
            self._requests[request.id] = stored_request
        return stored_request, artefact

    def save_revocation(self, artefact, expected_artefact_version, request, expected_request_version):
        with self._lock_for(request.id):
            self._check_request_version(request.id, expected_request_version)
            self._check_artefact_version(artefact.id, expected_artefact_version)

            stored_artefact = replace(artefact, version=expected_artefact_version + 1)
            stored_request = replace(request, version=expected_request_version + 1)
            self._artefacts[artefact.id] = stored_artefact
            self._requests[request.id] = stored_request
        return stored_request, stored_artefact

    def _check_artefact_version(self, artefact_id: str, expected_version: int):
        current = self._artefacts.get(artefact_id)
        if current is None or current.version != expected_version:
            raise StaleWrite(f"Consent artefact {artefact_id} changed concurrently")

    def get_artefact(self, artefact_id):
        return self._artefacts.get(artefact_id)

    def get_artefact_by_request(self, request_id):
        artefact_id = self._artefact_by_request.get(request_id)
        if artefact_id is None:
            return None
        return self._artefacts.get(artefact_id)

    def list_artefacts_by_patient(self, patient_id):
        artefacts = []
        for request in self.list_requests_by_patient(patient_id):
            artefact = self.get_artefact_by_request(request.id)
            if artefact is not None:
                artefacts.append(artefact)
        return artefacts

    # -------------------------------------------------------------------------
    # Expiry queries
    # -------------------------------------------------------------------------

    def find_expiring_requests(self, now):
        return [
            r for r in list(self._requests.values())
            if r.status in OPEN_STATUSES and r.expiry_date < now
        ]

    def find_lapsed_artefacts(self, now):
        lapsed = []
        for artefact in list(self._artefacts.values()):
            if artefact.date_range_to >= now:
                continue
            request = self._requests.get(artefact.consent_request_id)
            if request is not None and request.status == ConsentStatus.GRANTED:
                lapsed.append(artefact)
        return lapsed

    # -------------------------------------------------------------------------
    # Access ledger
    # -------------------------------------------------------------------------

    def append_access(self, record, expected_count, expected_artefact_version, expected_request_version):
        artefact = self._artefacts.get(record.artefact_id)
        if artefact is None:
            raise StaleWrite(f"Consent artefact {record.artefact_id} does not exist")

        with self._lock_for(artefact.consent_request_id):
            self._check_request_version(artefact.consent_request_id, expected_request_version)
            self._check_artefact_version(artefact.id, expected_artefact_version)
            ledger = self._access[artefact.id]
            if len(ledger) != expected_count:
                raise StaleWrite(f"Access ledger for {artefact.id} changed concurrently")
            ledger.append(record)
            return len(ledger)

    def list_access(self, artefact_id):
        with self._lock_for_artefact(artefact_id):
            return sorted(self._access.get(artefact_id, []), key=lambda r: r.timestamp)

    def count_access(self, artefact_id):
        with self._lock_for_artefact(artefact_id):
            return len(self._access.get(artefact_id, []))

    def _lock_for_artefact(self, artefact_id: str) -> threading.Lock:
        artefact = self._artefacts.get(artefact_id)
        key = artefact.consent_request_id if artefact else f"artefact:{artefact_id}"
        return self._lock_for(key)
