"""Patient directory - resolves patient identifiers before a request is accepted"""
from typing import Iterable, Protocol
import threading


class PatientDirectory(Protocol):
    def exists(self, patient_id: str) -> bool:
        ...


class InMemoryPatientDirectory:
    """Patient directory backed by a set of known identifiers."""

    def __init__(self, patient_ids: Iterable[str] = ()):
        self._patients: set[str] = set(patient_ids)
        self._lock = threading.Lock()

    def register(self, patient_id: str):
        with self._lock:
            self._patients.add(patient_id)

    def remove(self, patient_id: str):
        with self._lock:
            self._patients.discard(patient_id)

    def exists(self, patient_id: str) -> bool:
        with self._lock:
            return patient_id in self._patients
