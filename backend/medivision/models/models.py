"""
Verification data model.
Plain dataclasses for the records that flow through the verification
pipeline, plus the SQLAlchemy table backing the durable verification cache.
"""

from dataclasses import dataclass, field, replace
from datetime import datetime, timezone
from enum import Enum
from typing import Optional

from sqlalchemy import Float, String, Text
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column

RXNORM_SOURCE = "RxNorm"


class VerificationStatus(str, Enum):
    AI_TRANSCRIPTION = "ai_transcription"
    TENTATIVE_MATCH = "tentative_match"
    DATABASE_MATCH = "database_match"
    INVALID_STRENGTH = "invalid_strength"
    LOW_CONFIDENCE = "low_confidence"


class VerificationColor(str, Enum):
    GRAY = "gray"
    AMBER = "amber"
    CYAN = "cyan"
    ROSE = "rose"
    EMERALD = "emerald"  # reserved for human sign-off in the review UI


# Fixed status → badge mapping. No other combination may occur.
STATUS_COLORS: dict[VerificationStatus, VerificationColor] = {
    VerificationStatus.AI_TRANSCRIPTION: VerificationColor.GRAY,
    VerificationStatus.TENTATIVE_MATCH: VerificationColor.AMBER,
    VerificationStatus.DATABASE_MATCH: VerificationColor.CYAN,
    VerificationStatus.INVALID_STRENGTH: VerificationColor.ROSE,
    VerificationStatus.LOW_CONFIDENCE: VerificationColor.ROSE,
}


def _utc_now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


def _text(value, default: str = "") -> str:
    """Free-text field as a string; JSON numbers become their digits."""
    if value is None or value == "":
        return default
    return str(value)


@dataclass(frozen=True)
class RxNormCandidate:
    """One reference-database concept match."""
    rxcui: str
    name: str
    score: int
    source: str = RXNORM_SOURCE

    def to_dict(self) -> dict:
        return {"rxcui": self.rxcui, "name": self.name, "score": self.score, "source": self.source}

    @classmethod
    def from_dict(cls, data: dict) -> "RxNormCandidate":
        return cls(
            rxcui=str(data["rxcui"]),
            name=data.get("name", ""),
            score=int(data.get("score", 0)),
            source=data.get("source", RXNORM_SOURCE),
        )


@dataclass
class Interaction:
    """A pairwise drug-drug interaction reported by the reference service."""
    drugs: list[str] = field(default_factory=list)
    description: str = "No description available."
    severity: str = "N/A"

    def to_dict(self) -> dict:
        return {"drugs": list(self.drugs), "description": self.description, "severity": self.severity}


@dataclass
class VerificationResult:
    """
    Verdict for one medication line.

    ``color`` is derived from ``status``; ``rxcui``, ``standard_name`` and
    ``confidence_score`` are derived from the top candidate, so the
    status/color and score/candidates invariants cannot drift.
    """
    normalized_name: str
    status: VerificationStatus = VerificationStatus.AI_TRANSCRIPTION
    candidates: list[RxNormCandidate] = field(default_factory=list)
    issues: list[str] = field(default_factory=list)
    last_checked: str = field(default_factory=_utc_now_iso)

    @property
    def color(self) -> VerificationColor:
        return STATUS_COLORS[self.status]

    @property
    def top_candidate(self) -> Optional[RxNormCandidate]:
        return self.candidates[0] if self.candidates else None

    @property
    def rxcui(self) -> Optional[str]:
        top = self.top_candidate
        return top.rxcui if top else None

    @property
    def standard_name(self) -> Optional[str]:
        top = self.top_candidate
        return top.name if top else None

    @property
    def confidence_score(self) -> int:
        top = self.top_candidate
        return top.score if top else 0

    def to_dict(self) -> dict:
        return {
            "status": self.status.value,
            "color": self.color.value,
            "normalized_name": self.normalized_name,
            "rxcui": self.rxcui,
            "standard_name": self.standard_name,
            "confidence_score": self.confidence_score,
            "candidates": [c.to_dict() for c in self.candidates],
            "issues": list(self.issues),
            "last_checked": self.last_checked,
        }

    @classmethod
    def from_dict(cls, data: dict) -> "VerificationResult":
        return cls(
            normalized_name=data.get("normalized_name", ""),
            status=VerificationStatus(data.get("status", VerificationStatus.AI_TRANSCRIPTION.value)),
            candidates=[RxNormCandidate.from_dict(c) for c in data.get("candidates", [])],
            issues=list(data.get("issues", [])),
            last_checked=data.get("last_checked") or _utc_now_iso(),
        )


@dataclass
class Medicine:
    """
    One prescribed drug line as handed over by the extraction step.
    Treated as read-only; every mutation helper returns a copy.
    """
    name: str
    dosage: str = "N/A"
    frequency: str = "N/A"
    route: Optional[str] = None
    duration: Optional[str] = None
    coordinates: Optional[list[float]] = None  # [ymin, xmin, ymax, xmax] in 0–1000 space
    verification: Optional[VerificationResult] = None
    human_confirmed: bool = False

    @property
    def bounding_box(self) -> Optional[list[float]]:
        if self.coordinates and len(self.coordinates) == 4:
            return list(self.coordinates)
        return None

    def with_verification(self, result: VerificationResult) -> "Medicine":
        return replace(self, verification=result, human_confirmed=False)

    def apply_edit(self, **changes) -> "Medicine":
        """Edit fields; a changed name or dosage invalidates verification and sign-off."""
        edited = replace(self, **changes)
        if edited.name != self.name or edited.dosage != self.dosage:
            edited = replace(edited, verification=None, human_confirmed=False)
        return edited

    def sign_off(self) -> "Medicine":
        return replace(self, human_confirmed=True)

    def to_dict(self) -> dict:
        return {
            "name": self.name,
            "dosage": self.dosage,
            "frequency": self.frequency,
            "route": self.route,
            "duration": self.duration,
            "coordinates": self.coordinates,
            "verification": self.verification.to_dict() if self.verification else None,
            "human_confirmed": self.human_confirmed,
        }

    @classmethod
    def from_dict(cls, data: dict) -> "Medicine":
        verification = data.get("verification")
        return cls(
            name=_text(data.get("name")),
            dosage=_text(data.get("dosage"), "N/A"),
            frequency=_text(data.get("frequency"), "N/A"),
            route=_text(data.get("route")) or None,
            duration=_text(data.get("duration")) or None,
            coordinates=data.get("coordinates"),
            verification=VerificationResult.from_dict(verification) if verification else None,
            human_confirmed=bool(data.get("human_confirmed", False)),
        )


# ═══════════════════════════════════════════
# DURABLE CACHE TABLE
# ═══════════════════════════════════════════

class Base(DeclarativeBase):
    pass


class VerificationCacheEntry(Base):
    __tablename__ = "verification_cache"

    normalized_name: Mapped[str] = mapped_column(String(255), primary_key=True)
    payload: Mapped[str] = mapped_column(Text, nullable=False)  # VerificationResult.to_dict() as JSON
    written_at: Mapped[float] = mapped_column(Float, nullable=False)  # epoch seconds
