"""
NIH RxNorm / RxNav API adapter for medication verification.
Sources:
  - RxNorm: https://rxnav.nlm.nih.gov/RxNormAPIs.html
Authority: National Library of Medicine (NLM) / NIH
Free, no API key required.

Every HTTP call goes through resilient_call (retry with exponential backoff
plus a shared circuit breaker) and is reported as a LookupOutcome, so
"not found" and "service down" never look alike to the caller.
"""

import concurrent.futures
import logging
import re
import time
from typing import Callable, Optional

import requests

from medivision.config import Config
from medivision.models.models import Interaction, RxNormCandidate, RXNORM_SOURCE
from medivision.services.drug_sources.base_source import LookupOutcome, OutcomeKind, ReferenceSource
from medivision.services.errors import (
    CircuitOpenError,
    ReferenceServiceError,
    RetriesExhaustedError,
    RetryableStatusError,
)
from medivision.services.resilience import CircuitBreaker, RetryPolicy, resilient_call

logger = logging.getLogger("medivision.rxnorm")

MIN_TERM_LENGTH = 3
MAX_CANDIDATES = 4
MIN_CANDIDATE_SCORE = 10
NAME_LOOKUP_ATTEMPTS = 2
UNKNOWN_DRUG_NAME = "Unknown Drug"

# Term types that carry an explicit strength: clinical drug / clinical drug form.
STRENGTH_TTYS = ("SCD", "SCDF")

# Matches "500", "0.5" and ".5".
_STRENGTH_TOKEN_RE = re.compile(r"\d*\.?\d+")


def extract_strength_token(dosage: str) -> Optional[str]:
    """First decimal-aware number in a dosage string, or None."""
    if not dosage:
        return None
    match = _STRENGTH_TOKEN_RE.search(dosage)
    return match.group(0) if match else None


def _parse_score(raw) -> Optional[int]:
    try:
        return int(float(raw))
    except (TypeError, ValueError):
        return None


class RxNormSource(ReferenceSource):
    """Resilient client for the RxNav approximate-term, properties, related and interaction APIs."""

    def __init__(
        self,
        base_url: Optional[str] = None,
        session: Optional[requests.Session] = None,
        retry_policy: Optional[RetryPolicy] = None,
        breaker: Optional[CircuitBreaker] = None,
        timeout: Optional[float] = None,
        sleep: Callable[[float], None] = time.sleep,
    ):
        self.base_url = (base_url or Config.RXNORM_BASE_URL).rstrip("/")
        self.session = session or requests.Session()
        self.retry_policy = retry_policy or RetryPolicy(
            max_attempts=Config.RETRY_MAX_ATTEMPTS,
            base_delay=Config.RETRY_BASE_DELAY,
            max_jitter=Config.RETRY_MAX_JITTER,
        )
        self.breaker = breaker or CircuitBreaker(
            threshold=Config.BREAKER_FAILURE_THRESHOLD,
            cooldown=Config.BREAKER_COOLDOWN,
        )
        self.timeout = timeout or Config.RXNORM_TIMEOUT
        self._sleep = sleep

    @property
    def source_name(self) -> str:
        return "NIH RxNorm / RxNav API"

    # ── transport ────────────────────────────────────────────────────

    def _fetch(self, path: str, params: Optional[dict] = None,
               max_attempts: Optional[int] = None) -> LookupOutcome:
        """GET ``path`` under the retry policy and breaker; never raises for HTTP faults."""
        url = f"{self.base_url}/{path}"
        policy = self.retry_policy
        if max_attempts is not None:
            policy = policy.with_attempts(max_attempts)

        def attempt():
            resp = self.session.get(url, params=params or {}, timeout=self.timeout)
            if resp.status_code == 429 or resp.status_code >= 500:
                raise RetryableStatusError(resp.status_code)
            return resp

        try:
            resp = resilient_call(attempt, policy, self.breaker, sleep=self._sleep)
        except CircuitOpenError as exc:
            return LookupOutcome.fatal(exc)
        except RetriesExhaustedError as exc:
            logger.error("RxNorm request to %s failed: %s", path.split("/")[0], exc)
            return LookupOutcome.transient(exc)
        except requests.RequestException as exc:
            logger.error("RxNorm request to %s cannot be sent: %s", path.split("/")[0], type(exc).__name__)
            return LookupOutcome.fatal(exc)

        # 404 and friends are answers, not faults.
        if not 200 <= resp.status_code < 300:
            return LookupOutcome.not_found(resp.status_code)

        text = resp.text or ""
        if not text.strip() or text.strip() == "Not found":
            return LookupOutcome.not_found(resp.status_code)
        try:
            data = resp.json()
        except ValueError:
            logger.warning("RxNorm returned malformed JSON for %s", path.split("/")[0])
            return LookupOutcome.not_found(resp.status_code)
        if not isinstance(data, dict):
            return LookupOutcome.not_found(resp.status_code)
        return LookupOutcome.found(data, resp.status_code)

    @staticmethod
    def _require(outcome: LookupOutcome) -> Optional[dict]:
        """Data for DATA, None for NOT_FOUND; raise for faults."""
        if outcome.kind == OutcomeKind.DATA:
            return outcome.data
        if outcome.kind == OutcomeKind.NOT_FOUND:
            return None
        if isinstance(outcome.cause, ReferenceServiceError):
            raise outcome.cause
        raise ReferenceServiceError(outcome.error) from outcome.cause

    # ── lookups ──────────────────────────────────────────────────────

    def search_candidates(self, term: str) -> list[RxNormCandidate]:
        """Approximate-term search; candidates keep RxNav's ranking."""
        term = (term or "").strip()
        if len(term) < MIN_TERM_LENGTH:
            return []

        data = self._require(self._fetch("approximateTerm.json", {
            "term": term,
            "maxEntries": MAX_CANDIDATES,
        }))
        if not data:
            return []

        group = data.get("approximateGroup") or {}
        raw_candidates = group.get("candidate") if isinstance(group, dict) else None
        if not isinstance(raw_candidates, list):
            return []

        scored: list[tuple[str, int]] = []
        seen: set[str] = set()
        for c in raw_candidates:
            if not isinstance(c, dict):
                continue
            rxcui = str(c.get("rxcui") or "")
            score = _parse_score(c.get("score"))
            if not rxcui or rxcui in seen or score is None or score <= MIN_CANDIDATE_SCORE:
                continue
            seen.add(rxcui)
            scored.append((rxcui, min(score, 100)))
        scored = scored[:MAX_CANDIDATES]
        if not scored:
            return []

        with concurrent.futures.ThreadPoolExecutor(max_workers=len(scored)) as pool:
            names = list(pool.map(self.resolve_name, [rxcui for rxcui, _ in scored]))

        return [
            RxNormCandidate(rxcui=rxcui, name=name, score=score, source=RXNORM_SOURCE)
            for (rxcui, score), name in zip(scored, names)
        ]

    def resolve_name(self, rxcui: str) -> str:
        """Canonical display name for a concept, or 'Unknown Drug'."""
        outcome = self._fetch(f"rxcui/{rxcui}/properties.json", max_attempts=NAME_LOOKUP_ATTEMPTS)
        if outcome.kind != OutcomeKind.DATA:
            return UNKNOWN_DRUG_NAME
        props = outcome.data.get("properties")
        if not isinstance(props, dict):
            return UNKNOWN_DRUG_NAME
        name = (props.get("name") or "").strip()
        return name or UNKNOWN_DRUG_NAME

    def validate_strength(self, rxcui: str, dosage: str) -> bool:
        """
        True when some SCD/SCDF formulation of ``rxcui`` names the dosage's
        numeric strength. Nothing to validate ("N/A", no number) is True.

        Fail-closed: transport faults, "not found", malformed payloads and
        missing concept groups all return False.
        """
        if not dosage or dosage.strip().upper() == "N/A":
            return True
        target = extract_strength_token(dosage)
        if target is None:
            return True

        try:
            outcome = self._fetch(f"rxcui/{rxcui}/allrelated.json")
        except Exception as exc:
            logger.error("Strength lookup crashed for rxcui %s: %s", rxcui, type(exc).__name__)
            return False
        if outcome.kind != OutcomeKind.DATA:
            logger.info("Strength lookup for rxcui %s gave %s; failing closed.", rxcui, outcome.kind.value)
            return False

        related = outcome.data.get("allRelatedGroup")
        groups = related.get("conceptGroup") if isinstance(related, dict) else None
        if not isinstance(groups, list):
            return False

        for group in groups:
            if not isinstance(group, dict) or group.get("tty") not in STRENGTH_TTYS:
                continue
            for prop in group.get("conceptProperties") or []:
                if isinstance(prop, dict) and target in (prop.get("name") or ""):
                    return True
        return False

    def get_interactions(self, rxcuis: list[str]) -> list[Interaction]:
        """Interaction pairs among the given concepts. Not safety-gating: fails empty."""
        ids = [str(r).strip() for r in rxcuis or [] if r and str(r).strip()]
        if len(ids) < 2:
            return []

        try:
            # requests encodes the spaces as '+', the separator RxNav expects.
            outcome = self._fetch("interaction/list.json", {"rxcuis": " ".join(ids)})
        except Exception as exc:
            logger.error("Interaction lookup crashed: %s", type(exc).__name__)
            return []
        if outcome.kind != OutcomeKind.DATA:
            return []

        interactions: list[Interaction] = []
        try:
            for group in outcome.data.get("fullInteractionTypeGroup") or []:
                for itype in group.get("fullInteractionType") or []:
                    drugs = [c.get("name", "") for c in itype.get("minConcept") or []]
                    pairs = itype.get("interactionPair") or [{}]
                    interactions.append(Interaction(
                        drugs=drugs,
                        description=pairs[0].get("description") or "No description available.",
                        severity=pairs[0].get("severity") or "N/A",
                    ))
        except (AttributeError, TypeError) as exc:
            logger.warning("Unexpected interaction payload shape: %s", exc)
            return []
        return interactions
