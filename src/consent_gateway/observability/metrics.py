"""
Consent counters

Thread-safe labelled counters for the consent lifecycle. Instances are
created by the caller and handed to each component.
"""

from collections import defaultdict
from typing import Any, Dict
import json
import threading


class Counter:
    """
    A monotonically increasing counter.

    Usage:
        checks = Counter("consent_access_checks_total", "Access checks")
        checks.inc(labels={"outcome": "allowed"})
    """

    def __init__(self, name: str, description: str = ""):
        self.name = name
        self.description = description
        self._values: Dict[str, float] = defaultdict(float)
        self._lock = threading.Lock()

    def inc(self, value: float = 1.0, labels: Dict[str, str] = None):
        key = self._labels_key(labels)
        with self._lock:
            self._values[key] += value

    def get(self, labels: Dict[str, str] = None) -> float:
        key = self._labels_key(labels)
        with self._lock:
            return self._values.get(key, 0.0)

    def total(self) -> float:
        with self._lock:
            return sum(self._values.values())

    def _labels_key(self, labels: Dict[str, str] = None) -> str:
        if not labels:
            return ""
        return json.dumps(labels, sort_keys=True)

    def collect(self) -> Dict[str, float]:
        with self._lock:
            return dict(self._values)


class ConsentMetrics:
    """Counters shared by the consent components."""

    def __init__(self):
        self.requests_created = Counter("consent_requests_created_total", "Consent requests created")
        self.grants = Counter("consent_grants_total", "Consent artefacts granted")
        self.denials = Counter("consent_denials_total", "Consent requests denied")
        self.revocations = Counter("consent_revocations_total", "Consent artefacts revoked")
        self.access_checks = Counter("consent_access_checks_total", "Access checks by outcome")
        self.access_records = Counter("consent_access_records_total", "Accesses recorded")
        self.expirations = Counter("consent_expirations_total", "Requests expired by sweeps")
        self.conflicts = Counter("consent_conflicts_total", "Concurrent modification retries")

    def snapshot(self) -> Dict[str, Any]:
        counters = [
            self.requests_created, self.grants, self.denials, self.revocations,
            self.access_checks, self.access_records, self.expirations, self.conflicts,
        ]
        return {c.name: c.total() for c in counters}
