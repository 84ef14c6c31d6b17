"""Logging setup and consent counters"""
from consent_gateway.observability.logging import configure_logging
from consent_gateway.observability.metrics import ConsentMetrics, Counter

__all__ = ["configure_logging", "ConsentMetrics", "Counter"]
