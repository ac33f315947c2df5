"""
Base class for drug reference source adapters.
Every source must implement the standard lookup interface the medication
verifier depends on, and report raw HTTP results as a LookupOutcome.
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Optional

from medivision.models.models import Interaction, RxNormCandidate


class OutcomeKind(str, Enum):
    DATA = "data"
    NOT_FOUND = "not_found"
    TRANSIENT_ERROR = "transient_error"   # retries exhausted
    FATAL_ERROR = "fatal_error"           # circuit open, or a request that can never succeed


def _as_cause(error: Any) -> Optional[BaseException]:
    return error if isinstance(error, BaseException) else None


@dataclass(frozen=True)
class LookupOutcome:
    """Tagged result of one reference-service call: data, "not found", or a fault."""
    kind: OutcomeKind
    data: Optional[dict] = None
    status_code: Optional[int] = None
    error: str = ""
    cause: Optional[BaseException] = field(default=None, compare=False, repr=False)

    @property
    def is_fault(self) -> bool:
        return self.kind in (OutcomeKind.TRANSIENT_ERROR, OutcomeKind.FATAL_ERROR)

    @classmethod
    def found(cls, data: dict, status_code: int = 200) -> "LookupOutcome":
        return cls(OutcomeKind.DATA, data=data, status_code=status_code)

    @classmethod
    def not_found(cls, status_code: Optional[int] = None) -> "LookupOutcome":
        return cls(OutcomeKind.NOT_FOUND, status_code=status_code)

    @classmethod
    def transient(cls, error: Any) -> "LookupOutcome":
        return cls(OutcomeKind.TRANSIENT_ERROR, error=str(error), cause=_as_cause(error))

    @classmethod
    def fatal(cls, error: Any) -> "LookupOutcome":
        return cls(OutcomeKind.FATAL_ERROR, error=str(error), cause=_as_cause(error))


class ReferenceSource(ABC):
    """Abstract base class for drug-terminology reference APIs."""

    @property
    @abstractmethod
    def source_name(self) -> str:
        """Human-readable name of this data source."""
        ...

    @abstractmethod
    def search_candidates(self, term: str) -> list[RxNormCandidate]:
        """
        Approximate (typo-tolerant) search for a normalized drug name.
        Returns ranked candidates, or [] when nothing matches.
        Raises ReferenceServiceError when the service cannot answer.
        """
        ...

    @abstractmethod
    def validate_strength(self, rxcui: str, dosage: str) -> bool:
        """
        Check that the numeric strength in ``dosage`` exists for the concept.
        Fails closed: any uncertainty returns False.
        """
        ...

    @abstractmethod
    def get_interactions(self, rxcuis: list[str]) -> list[Interaction]:
        """Pairwise interactions for 2+ concepts; [] on any failure."""
        ...
