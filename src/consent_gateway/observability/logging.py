"""
Structured logging setup

JSON (or console) structlog output routed through the standard library
logger, with patient identifiers masked before rendering.
"""
import logging
import sys

import structlog

from consent_gateway.config import Settings

PATIENT_KEYS = ("patient_id",)


def mask_identifier(value: str) -> str:
    """Keep the last four characters of an identifier."""
    if len(value) <= 4:
        return "*" * len(value)
    return "*" * (len(value) - 4) + value[-4:]


def patient_redaction_processor(logger, method_name, event_dict):
    """Mask patient identifiers in log events."""
    for key in PATIENT_KEYS:
        value = event_dict.get(key)
        if isinstance(value, str):
            event_dict[key] = mask_identifier(value)
    return event_dict


def configure_logging(settings: Settings):
    """Configure structlog and the root stdlib logger from settings."""
    level = getattr(logging, settings.consent.log_level.upper(), logging.INFO)
    logging.basicConfig(format="%(message)s", stream=sys.stdout, level=level)

    renderer = (
        structlog.processors.JSONRenderer()
        if settings.consent.log_json
        else structlog.dev.ConsoleRenderer()
    )
    structlog.configure(
        processors=[
            structlog.stdlib.filter_by_level,
            structlog.stdlib.add_logger_name,
            structlog.stdlib.add_log_level,
            structlog.processors.TimeStamper(fmt="iso"),
            patient_redaction_processor,
            renderer,
        ],
        wrapper_class=structlog.stdlib.BoundLogger,
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )
