"""
Pytest configuration & fixtures for the MediVision verification backend.

Key design decisions:
  - No test touches the network: the RxNav HTTP session, the reference
    client and the optical re-read collaborator are all fakes.
  - Clocks and sleeps are injected so TTL, backoff and breaker cooldown
    tests run instantly.
  - The background scheduler is patched out before the app factory loads.
"""

import json
import os
import sys
import threading
from unittest import mock

import pytest

# ── 1. Ensure backend package is importable ──
sys.path.insert(0, os.path.join(os.path.dirname(__file__), ".."))

# ── 2. Set test environment BEFORE anything else ──
os.environ["APP_ENV"] = "testing"
os.environ["OPENAI_API_KEY"] = ""
os.environ["CACHE_DATABASE_URL"] = ""
os.environ["ENABLE_SCHEDULER"] = "false"
os.environ["VERIFY_RXNORM"] = "true"

# ── 3. Mock background scheduler so it never runs during tests ──
_noop = lambda *a, **kw: None
mock.patch("medivision.services.background_scheduler.init_scheduler", _noop).start()

# ── 4. NOW safe to import application modules ──
from medivision.main import create_app
from medivision.models.models import Interaction, RxNormCandidate
from medivision.services.drug_sources.base_source import ReferenceSource
from medivision.services.medication_verifier import MedicationVerifier
from medivision.services.verification_cache import InMemoryCacheStore, VerificationCache


# ═══════════════════════════════════════════
# FAKES
# ═══════════════════════════════════════════

class FakeClock:
    """Manually advanced clock, usable for time.time / time.monotonic."""

    def __init__(self, start: float = 1_000_000.0):
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


class FakeResponse:
    def __init__(self, status_code: int = 200, payload=None, text: str | None = None):
        self.status_code = status_code
        if text is None:
            text = json.dumps(payload) if payload is not None else ""
        self.text = text

    def json(self):
        return json.loads(self.text)


class FakeSession:
    """
    Stand-in for requests.Session. ``routes`` maps a URL suffix to a
    FakeResponse, an exception, or a list of those consumed in order.
    """

    def __init__(self, routes=None):
        self.routes = dict(routes or {})
        self.calls: list[tuple[str, dict]] = []

    def get(self, url, params=None, timeout=None):
        self.calls.append((url, dict(params or {})))
        for suffix, outcome in self.routes.items():
            if url.endswith(suffix):
                if isinstance(outcome, list):
                    outcome = outcome.pop(0) if len(outcome) > 1 else outcome[0]
                if isinstance(outcome, BaseException):
                    raise outcome
                return outcome
        return FakeResponse(404, text="Not found")

    def calls_to(self, suffix: str) -> int:
        return sum(1 for url, _ in self.calls if url.endswith(suffix))


class FakeReference(ReferenceSource):
    """Scripted reference client: search results keyed by normalized term."""

    def __init__(self, results=None, strength_valid=True, interactions=None, error=None, delay=0.0):
        self.results = results or {}
        self.strength_valid = strength_valid
        self.interactions = interactions or []
        self.error = error
        self.delay = delay
        self.search_terms: list[str] = []
        self.strength_checks: list[tuple[str, str]] = []
        self._lock = threading.Lock()
        self.in_flight = 0
        self.max_in_flight = 0

    @property
    def source_name(self) -> str:
        return "Fake RxNorm"

    def search_candidates(self, term):
        with self._lock:
            self.search_terms.append(term)
            self.in_flight += 1
            self.max_in_flight = max(self.max_in_flight, self.in_flight)
        try:
            if self.delay:
                threading.Event().wait(self.delay)
            if self.error is not None:
                raise self.error
            return [RxNormCandidate(*c) if isinstance(c, tuple) else c for c in self.results.get(term, [])]
        finally:
            with self._lock:
                self.in_flight -= 1

    def validate_strength(self, rxcui, dosage):
        self.strength_checks.append((rxcui, dosage))
        if isinstance(self.strength_valid, BaseException):
            raise self.strength_valid
        return self.strength_valid

    def get_interactions(self, rxcuis):
        return [Interaction(**ix) for ix in self.interactions] if len(rxcuis) >= 2 else []


class RecordingTelemetry:
    def __init__(self):
        self.events: list[tuple[str, dict]] = []
        self._lock = threading.Lock()

    def record(self, event, payload):
        with self._lock:
            self.events.append((getattr(event, "value", event), dict(payload)))

    def names(self) -> list[str]:
        return [name for name, _ in self.events]

    def count(self, name: str) -> int:
        return self.names().count(name)


class FakeReReader:
    def __init__(self, text="", error=None):
        self.text = text
        self.error = error
        self.calls: list[tuple[str, list]] = []

    def re_read_region(self, image_base64, bounding_box):
        self.calls.append((image_base64, list(bounding_box)))
        if self.error is not None:
            raise self.error
        return self.text


# ═══════════════════════════════════════════
# FIXTURES
# ═══════════════════════════════════════════

@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def telemetry():
    return RecordingTelemetry()


@pytest.fixture
def cache(clock):
    return VerificationCache(store=InMemoryCacheStore(), clock=clock)


@pytest.fixture
def make_verifier(cache, telemetry):
    """Factory: verifier around a scripted reference with isolated cache/telemetry."""

    def _make(reference, re_reader=None, **kwargs):
        return MedicationVerifier(
            reference=reference,
            cache=kwargs.pop("cache", cache),
            telemetry=telemetry,
            re_reader=re_reader,
            enabled=kwargs.pop("enabled", True),
            **kwargs,
        )

    return _make


@pytest.fixture
def reference():
    return FakeReference(
        results={"AMOXICILLIN": [("197361", "Amoxicillin", 98)]},
        interactions=[{"drugs": ["warfarin", "aspirin"], "description": "Bleeding risk.", "severity": "high"}],
    )


@pytest.fixture
def app(make_verifier, reference):
    """Create application for testing around a scripted verifier."""
    application = create_app(verifier=make_verifier(reference))
    application.config["TESTING"] = True
    return application


@pytest.fixture
def client(app):
    with app.test_client() as c:
        yield c
