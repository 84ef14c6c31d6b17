"""Expiry Reconciler - closes out consents whose time window has lapsed"""
from datetime import datetime
import threading
import structlog

from consent_gateway.clock import Clock, as_utc
from consent_gateway.errors import Conflict
from consent_gateway.requests import ConsentRequestManager
from consent_gateway.store import ConsentStore


class ExpiryReconciler:
    """
    Idempotent sweep over open consent requests.

    A REQUESTED or GRANTED request expires when its expiry date has passed,
    and a GRANTED request also expires once its artefact's date range has
    ended. DENIED and REVOKED requests are never touched. Each transition
    is a conditional per-request update, so concurrent sweeps and revokes
    settle on whichever commits first.
    """

    def __init__(
        self,
        store: ConsentStore,
        requests: ConsentRequestManager,
        clock: Clock,
        logger=None,
    ):
        self._store = store
        self._requests = requests
        self._clock = clock
        self._logger = logger or structlog.get_logger(__name__).bind(component="consent_expiry")

    def sweep(self, now: datetime | None = None) -> int:
        """Expire every eligible request. Returns how many changed."""
        now = as_utc(now) if now is not None else self._clock.now()

        candidates = {r.id for r in self._store.find_expiring_requests(now)}
        candidates.update(a.consent_request_id for a in self._store.find_lapsed_artefacts(now))

        changed = 0
        for request_id in sorted(candidates):
            try:
                if self._requests.expire(request_id, now):
                    changed += 1
            except Conflict:
                # Left for the next sweep.
                self._logger.warning("Expiry skipped after conflict", request_id=request_id)

        if changed:
            self._logger.info("Expiry sweep completed", expired=changed, candidates=len(candidates))
        return changed

    def run_periodically(self, interval_seconds: float, stop_event: threading.Event):
        """Sweep every `interval_seconds` until `stop_event` is set."""
        self._logger.info("Expiry reconciler started", interval_seconds=interval_seconds)
        while not stop_event.is_set():
            try:
                self.sweep()
            except Exception as e:
                self._logger.error("Expiry sweep failed", error=str(e))
            stop_event.wait(interval_seconds)
        self._logger.info("Expiry reconciler stopped")

    def start_background(self, interval_seconds: float) -> tuple[threading.Thread, threading.Event]:
        """Run the periodic sweep on a daemon thread."""
        stop_event = threading.Event()
        thread = threading.Thread(
            target=self.run_periodically,
            args=(interval_seconds, stop_event),
            name="consent-expiry-reconciler",
            daemon=True,
        )
        thread.start()
        return thread, stop_event
