"""
Verification telemetry.
Structured, PII-scrubbed event log for the verification pipeline. Events are
emitted as single-line JSON on the "medivision.telemetry" logger, formatted
for cloud logging drivers.
"""

import json
import logging
import re
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Protocol

logger = logging.getLogger("medivision.telemetry")

SERVICE_NAME = "medication-verifier"


class TelemetryEvent(str, Enum):
    VERIFICATION_START = "verification_start"
    VERIFICATION_COMPLETE = "verification_complete"
    CACHE_HIT = "cache_hit"
    CACHE_MISS = "cache_miss"
    RXNORM_API_ERROR = "rxnorm_api_error"
    STRENGTH_VALIDATION_FAIL = "strength_validation_fail"
    FALLBACK_RETRY = "fallback_retry"
    RE_READ_TRIGGER = "re_read_trigger"


# Keys that could carry a person or a free-text medication name.
_SENSITIVE_KEY_RE = re.compile(
    r"name|patient|doctor|prescriber|med|drug|dosage|strength|term|original|relaxed|refined|text|address",
    re.IGNORECASE,
)


def scrub_payload(payload: dict) -> dict:
    """Drop identifying keys; keep coarse fields (status, score, latency …)."""
    clean: dict[str, Any] = {}
    for key, value in (payload or {}).items():
        if _SENSITIVE_KEY_RE.search(str(key)):
            continue
        if isinstance(value, dict):
            value = scrub_payload(value)
        clean[key] = value
    return clean


class TelemetrySink(Protocol):
    def record(self, event: TelemetryEvent, payload: dict) -> None: ...


class NullTelemetrySink:
    """Discards every event."""

    def record(self, event, payload):
        return None


class LoggingTelemetrySink:
    """Writes scrubbed events as JSON lines. Never raises."""

    def __init__(self, log: logging.Logger = logger):
        self._log = log

    def record(self, event, payload):
        try:
            document = {
                "event": TelemetryEvent(event).value,
                "timestamp": datetime.now(timezone.utc).isoformat(),
                **scrub_payload(payload),
                "service": SERVICE_NAME,
            }
            self._log.info(json.dumps(document, default=str))
        except Exception as exc:
            logger.debug("Telemetry dropped: %s", exc)
