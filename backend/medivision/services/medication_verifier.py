"""
Medication verification service.
Turns one transcribed medication line into a graded verdict against RxNorm:

  normalize → cache → approximate search → relaxed fallback →
  optical re-read escalation → classify (+ strength check) → cache → return

Verification rules:
  1. Top score >= 95 is a database match, unless the stated strength is not a
     known formulation (invalid strength, fail-closed).
  2. Top score 70–94 is a tentative match (spelling variant suspected).
  3. Anything lower, or ink the re-read flags as illegible, is low confidence.
  4. No candidates at all leaves the AI transcription standing (gray).
  5. No exception ever leaves verify() or verify_batch(); an unreachable
     reference service degrades to the gray "needs human review" verdict.
"""

import concurrent.futures
import logging
import time
from datetime import timedelta
from typing import Callable, Optional

from medivision.config import Config
from medivision.models.models import Medicine, RxNormCandidate, VerificationResult, VerificationStatus
from medivision.services.drug_sources.base_source import ReferenceSource
from medivision.services.drug_sources.rxnorm_source import RxNormSource
from medivision.services.normalization import RELAXED, STRICT, normalize_medication_name
from medivision.services.optical_reread import ILLEGIBLE_SENTINEL, UNAVAILABLE, OpenAIRegionReReader, RegionReReader
from medivision.services.telemetry import LoggingTelemetrySink, NullTelemetrySink, TelemetryEvent, TelemetrySink
from medivision.services.verification_cache import VerificationCache, build_cache_store

logger = logging.getLogger("medivision.verifier")

DATABASE_MATCH_SCORE = 95
TENTATIVE_MATCH_SCORE = 70
RELAXED_FALLBACK_SCORE = 75
RE_READ_SCORE = 70
MIN_FALLBACK_KEY_LENGTH = 3

NOISE_FILTER_NOTE = "Clinical noise filtering applied."
REFINEMENT_NOTE = "AI Refinement pass performed."
ILLEGIBLE_NOTE = "Ambiguous ink: optical re-read flagged this region as illegible."
NOT_FOUND_NOTE = "Drug not found in RxNorm database."
STRENGTH_FAIL_NOTE = "Strength verification failed against RxNorm SCDF."
SPELLING_VARIANT_NOTE = "Spelling variant detected. Verify against original ink."
LOW_CONFIDENCE_NOTE = "Match confidence below clinical threshold."
UNAVAILABLE_NOTE = "Reference lookup unavailable; manual review required."
DISABLED_NOTE = "Automated RxNorm verification disabled; manual review required."


def _as_text(value) -> str:
    return "" if value is None else str(value)


def _strict_key(name) -> str:
    """Strict key for whatever the extraction step put in ``name``; "" when unusable."""
    try:
        return normalize_medication_name(_as_text(name), STRICT)
    except Exception as exc:
        logger.warning("Unusable medication name: %s", type(exc).__name__)
        return ""


def _top_score(candidates: list[RxNormCandidate]) -> Optional[int]:
    return candidates[0].score if candidates else None


def _improves(new: list[RxNormCandidate], current: list[RxNormCandidate]) -> bool:
    return bool(new) and (not current or new[0].score > current[0].score)


class MedicationVerifier:
    """Orchestrates one verdict per medication line; safe to share across threads."""

    def __init__(
        self,
        reference: ReferenceSource,
        cache: Optional[VerificationCache] = None,
        telemetry: Optional[TelemetrySink] = None,
        re_reader: Optional[RegionReReader] = None,
        concurrency: Optional[int] = None,
        enabled: Optional[bool] = None,
        clock: Callable[[], float] = time.perf_counter,
    ):
        self.reference = reference
        self.cache = cache if cache is not None else VerificationCache()
        self.telemetry = telemetry or NullTelemetrySink()
        self.re_reader = re_reader
        self.concurrency = concurrency or Config.BATCH_CONCURRENCY
        self.enabled = Config.VERIFY_RXNORM if enabled is None else enabled
        self._clock = clock

    # ── public API ───────────────────────────────────────────────────

    def verify(self, med: Medicine, image_base64: Optional[str] = None) -> VerificationResult:
        """Verdict for one medication line. Never raises."""
        start = self._clock()
        normalized = _strict_key(med.name)

        if not self.enabled:
            return VerificationResult(normalized_name=normalized, issues=[DISABLED_NOTE])

        self._emit(TelemetryEvent.VERIFICATION_START, {"has_image": bool(image_base64)})

        cached = self.cache.get(normalized)
        if cached is not None:
            self._emit(TelemetryEvent.CACHE_HIT, {"latency_ms": self._elapsed_ms(start)})
            return cached
        self._emit(TelemetryEvent.CACHE_MISS, {})

        try:
            result = self._run_pipeline(med, normalized, image_base64)
        except Exception as exc:
            logger.error("Verification absorbed a reference failure: %s", type(exc).__name__)
            self._emit(TelemetryEvent.RXNORM_API_ERROR, {
                "error_type": type(exc).__name__,
                "latency_ms": self._elapsed_ms(start),
            })
            return VerificationResult(normalized_name=normalized, issues=[UNAVAILABLE_NOTE])

        self.cache.put(result.normalized_name, result)
        self._emit(TelemetryEvent.VERIFICATION_COMPLETE, {
            "status": result.status.value,
            "color": result.color.value,
            "score": result.confidence_score,
            "latency_ms": self._elapsed_ms(start),
        })
        return result

    def verify_batch(self, medications: list[Medicine], image_base64: Optional[str] = None) -> list[Medicine]:
        """
        Verify every line with at most ``concurrency`` lookups in flight.
        Output order matches input order; each line comes back unconfirmed.
        """
        if not medications:
            return []
        workers = max(1, min(self.concurrency, len(medications)))
        with concurrent.futures.ThreadPoolExecutor(max_workers=workers) as pool:
            results = list(pool.map(lambda m: self._verify_safely(m, image_base64), medications))
        return [med.with_verification(result) for med, result in zip(medications, results)]

    # ── pipeline ─────────────────────────────────────────────────────

    def _run_pipeline(self, med: Medicine, normalized: str, image_base64: Optional[str]) -> VerificationResult:
        working_name = _as_text(med.name)
        issues: list[str] = []

        candidates = self.reference.search_candidates(normalized)

        # Relaxed pass: drop pharmacopoeia suffixes and trailing words.
        score = _top_score(candidates)
        if (score is None or score < RELAXED_FALLBACK_SCORE) and len(normalized) > MIN_FALLBACK_KEY_LENGTH:
            relaxed = normalize_medication_name(working_name, RELAXED)
            if relaxed and relaxed != normalized:
                self._emit(TelemetryEvent.FALLBACK_RETRY, {"previous_score": score})
                fallback = self.reference.search_candidates(relaxed)
                if _improves(fallback, candidates):
                    candidates, normalized = fallback, relaxed
                    issues.append(NOISE_FILTER_NOTE)

        # Optical escalation: re-read the ink inside the line's bounding box.
        illegible = False
        score = _top_score(candidates)
        box = med.bounding_box
        if (score is None or score < RE_READ_SCORE) and image_base64 and box and self.re_reader:
            self._emit(TelemetryEvent.RE_READ_TRIGGER, {"previous_score": score})
            refined = self._re_read(image_base64, box)
            if refined.lower() == ILLEGIBLE_SENTINEL.lower():
                illegible = True
                issues.append(ILLEGIBLE_NOTE)
            elif refined and refined.upper() != UNAVAILABLE and refined.lower() != working_name.strip().lower():
                refined_key = normalize_medication_name(refined, STRICT)
                refined_candidates = self.reference.search_candidates(refined_key)
                if _improves(refined_candidates, candidates):
                    candidates, normalized, working_name = refined_candidates, refined_key, refined
                    issues.append(REFINEMENT_NOTE)

        result = VerificationResult(normalized_name=normalized, candidates=candidates, issues=issues)
        self._classify(result, med, illegible)
        return result

    def _classify(self, result: VerificationResult, med: Medicine, illegible: bool) -> None:
        top = result.top_candidate
        if top is None:
            if illegible:
                result.status = VerificationStatus.LOW_CONFIDENCE
            else:
                result.status = VerificationStatus.AI_TRANSCRIPTION
                result.issues.append(NOT_FOUND_NOTE)
            return

        if top.score >= DATABASE_MATCH_SCORE:
            result.status = VerificationStatus.DATABASE_MATCH
            dosage = _as_text(med.dosage).strip()
            if dosage and dosage.upper() != "N/A" and not self._strength_confirmed(top.rxcui, dosage):
                result.status = VerificationStatus.INVALID_STRENGTH
                result.issues.append(STRENGTH_FAIL_NOTE)
                self._emit(TelemetryEvent.STRENGTH_VALIDATION_FAIL, {"rxcui": top.rxcui})
        elif top.score >= TENTATIVE_MATCH_SCORE:
            result.status = VerificationStatus.TENTATIVE_MATCH
            result.issues.append(SPELLING_VARIANT_NOTE)
        else:
            result.status = VerificationStatus.LOW_CONFIDENCE
            result.issues.append(LOW_CONFIDENCE_NOTE)

    # ── helpers ──────────────────────────────────────────────────────

    def _strength_confirmed(self, rxcui: str, dosage: str) -> bool:
        # An exception is as unconfirmed as a False answer.
        try:
            return bool(self.reference.validate_strength(rxcui, dosage))
        except Exception as exc:
            logger.warning("Strength validation raised %s; treating as invalid.", type(exc).__name__)
            return False

    def _re_read(self, image_base64: str, box: list[float]) -> str:
        """Collaborator output, or "" when it fails (no improvement)."""
        try:
            return (self.re_reader.re_read_region(image_base64, box) or "").strip()
        except Exception as exc:
            logger.warning("Optical re-read unavailable: %s", type(exc).__name__)
            return ""

    def _verify_safely(self, med: Medicine, image_base64: Optional[str]) -> VerificationResult:
        try:
            return self.verify(med, image_base64)
        except Exception as exc:
            logger.error("Batch verification error: %s", type(exc).__name__)
            return VerificationResult(
                normalized_name=_strict_key(med.name),
                issues=[UNAVAILABLE_NOTE],
            )

    def _emit(self, event: TelemetryEvent, payload: dict) -> None:
        try:
            self.telemetry.record(event, payload)
        except Exception as exc:
            logger.debug("Telemetry sink raised %s", type(exc).__name__)

    def _elapsed_ms(self, start: float) -> float:
        return round((self._clock() - start) * 1000, 1)


def build_verifier() -> MedicationVerifier:
    """Verifier wired from Config: RxNav client, configured cache, telemetry and re-reader."""
    cache = VerificationCache(
        store=build_cache_store(Config.CACHE_DATABASE_URL),
        ttl=timedelta(days=Config.CACHE_TTL_DAYS),
    )
    return MedicationVerifier(
        reference=RxNormSource(),
        cache=cache,
        telemetry=LoggingTelemetrySink() if Config.ENABLE_METRICS else NullTelemetrySink(),
        re_reader=OpenAIRegionReReader() if Config.OPENAI_API_KEY else None,
    )
