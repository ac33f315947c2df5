"""
Medication name normalization.
Turns a raw, possibly OCR-noisy drug name into the canonical comparison key
used for cache lookups and reference searches. Pure text transforms only.
"""

import re

STRICT = "strict"
RELAXED = "relaxed"

FORM_TERMS = [
    "TAB", "TABLET", "TABLETS", "TABS", "CAP", "CAPSULE", "CAPSULES", "CAPS",
    "INJ", "INJECTION", "SYP", "SYRUP", "OINT", "OINTMENT", "CRM", "CREAM",
    "SOL", "SOLUTION", "DROPS",
]
ROUTE_TERMS = ["ORAL", "TOPICAL", "IV", "IM", "SC", "PO", "SUBCUTANEOUS", "INTRAVENOUS", "INTRAMUSCULAR"]
CLINICAL_SUFFIXES = ["HCL", "IP", "USP", "BP", "EP", "PH.EUR", "ANHYDROUS"]

_SEPARATORS_RE = re.compile(r"[-–—,]")
_STRENGTH_RE = re.compile(r"\d+(?:\.\d+)?\s*(?:(?:MILLIGRAM|MICROGRAM|PERCENT|MCG|MG|ML|IU|G)\b|%)?")
_FORM_RE = re.compile(r"\b(?:%s)\b" % "|".join(FORM_TERMS))
_ROUTE_RE = re.compile(r"\b(?:%s)\b" % "|".join(ROUTE_TERMS))
# PH.EUR ends in a letter but starts a word, so \b works on both sides.
_SUFFIX_RE = re.compile(r"\b(?:%s)\b" % "|".join(re.escape(s) for s in CLINICAL_SUFFIXES))
_WHITESPACE_RE = re.compile(r"\s+")
_NON_KEY_CHARS_RE = re.compile(r"[^A-Z0-9 ]")

_UNIT_ALIASES = {
    "milligram": ("MG", "MILLIGRAM", "MILLIGRAMS"),
    "microgram": ("MCG", "MICROGRAM", "MICROGRAMS", "UG", "ΜG"),  # ΜG: upper-cased μg
    "gram": ("G", "GM", "GRAM", "GRAMS"),
    "milliliter": ("ML", "MILLILITER", "MILLILITERS"),
    "international unit": ("IU", "UNIT", "UNITS", "INTERNATIONAL UNITS", "INTERNATIONAL UNIT"),
    "milligram per milliliter": ("MG/ML", "MG PER ML", "MG/MILLILITER"),
}


def normalize_medication_name(raw_name: str, level: str = STRICT) -> str:
    """
    Build the canonical comparison key for a drug name.

    ``strict`` strips leaked strengths, dosage forms and routes.
    ``relaxed`` additionally drops pharmacopoeia suffixes (HCL, IP, USP …)
    and keeps only the first two words, where the active ingredient
    usually sits.

    The result may be empty for pure noise; callers must not send an
    empty key to the reference service.
    """
    if level not in (STRICT, RELAXED):
        raise ValueError(f"Unknown normalization level: {level!r}")
    if not raw_name:
        return ""

    # Dropping punctuation can join fragments into a strippable word
    # ("TA/BLET" -> "TABLET"), so run passes until the key is stable.
    # Every pass after the first only shortens the key, so this terminates.
    previous = None
    normalized = raw_name
    while normalized != previous:
        previous = normalized
        normalized = _normalize_once(previous, level)
    return normalized


def _normalize_once(raw_name: str, level: str) -> str:
    normalized = raw_name.upper()
    normalized = _SEPARATORS_RE.sub(" ", normalized)
    normalized = _STRENGTH_RE.sub(" ", normalized)
    normalized = _FORM_RE.sub(" ", normalized)
    normalized = _ROUTE_RE.sub(" ", normalized)

    if level == RELAXED:
        normalized = _SUFFIX_RE.sub(" ", normalized)
        words = normalized.split()
        if len(words) > 2:
            normalized = " ".join(words[:2])

    normalized = _WHITESPACE_RE.sub(" ", normalized).strip()
    normalized = _NON_KEY_CHARS_RE.sub("", normalized)
    # Dropping characters can leave doubled or edge spaces behind.
    return _WHITESPACE_RE.sub(" ", normalized).strip()


def normalize_unit(unit: str) -> str:
    """Map a dosage unit spelling onto the unit word RxNorm uses."""
    if not unit:
        return ""
    u = unit.strip().upper()
    for canonical, aliases in _UNIT_ALIASES.items():
        if u in aliases:
            return canonical
    return unit.strip().lower()
