"""Deterministic message analysis used when the language model is unavailable.

NO LLM. Uses regex and heuristics.
Security: NEVER log raw text (PII).
"""

import re

from jarvis.domain.models import AnalysisResult, Intent, LanguageCode

FALLBACK_CONFIDENCE = 0.6

# F + 7 digits + D, tolerant of spaces typed between the parts
_CONTRACT_PATTERN = re.compile(r"F\s*(?:\d\s*){7}D", re.IGNORECASE)

_ARABIC_PATTERN = re.compile(r"[\u0600-\u06FF]")
_FRENCH_DIACRITICS_PATTERN = re.compile(r"[éèêëàâäùûüôöîïç]", re.IGNORECASE)
_ASCII_ALNUM_PATTERN = re.compile(r"^[a-zA-Z0-9\s]+$")
_SYMBOLS_ONLY_PATTERN = re.compile(r"^[!@#$%^&*()]+$")

COMPLAINT_KEYWORDS: tuple[str, ...] = (
    "problème",
    "probleme",
    "problem",
    "plainte",
    "complaint",
    "réclamation",
    "reclamation",
    "مشكل",
    "شكاية",
    "retard",
    "delay",
    "annul",
    "cancel",
    "bloqué",
    "blocked",
)

SPAM_MIN_LENGTH = 3
SPAM_MAX_LENGTH = 500
SPAM_MAX_TOKENS = 50


def normalize_contract_number(value: str | None) -> str | None:
    """Strip whitespace and upper-case; None unless it is exactly F\\d{7}D."""
    if not value or not isinstance(value, str):
        return None
    normalized = re.sub(r"\s", "", value).upper()
    if re.fullmatch(r"F\d{7}D", normalized):
        return normalized
    return None


def extract_contract_number(text: str) -> str | None:
    """Find the first contract number in free text."""
    match = _CONTRACT_PATTERN.search(text)
    if not match:
        return None
    return normalize_contract_number(match.group(0))


def detect_language(text: str) -> LanguageCode:
    """Arabic script -> ar, French accents -> fr, plain ASCII -> en, else fr."""
    if _ARABIC_PATTERN.search(text):
        return "ar"
    if _FRENCH_DIACRITICS_PATTERN.search(text):
        return "fr"
    if _ASCII_ALNUM_PATTERN.match(text):
        return "en"
    return "fr"


def has_complaint_keyword(text: str) -> bool:
    lowered = text.lower()
    return any(keyword in lowered for keyword in COMPLAINT_KEYWORDS)


def is_spam(text: str) -> bool:
    """Too short, too long, symbols only, or too many tokens."""
    return (
        len(text) < SPAM_MIN_LENGTH
        or len(text) > SPAM_MAX_LENGTH
        or bool(_SYMBOLS_ONLY_PATTERN.match(text))
        or len(text.split(" ")) > SPAM_MAX_TOKENS
    )


def extract_with_fallback(text: str) -> AnalysisResult:
    """Analyze a message without the language model.

    Args:
        text: User message text. NEVER logged.

    Returns:
        AnalysisResult with used_fallback=True and fixed confidence.
    """
    contract_number = extract_contract_number(text)

    intent: Intent
    if has_complaint_keyword(text):
        intent = "complaint"
    elif contract_number:
        intent = "status_check"
    else:
        intent = "other"

    return AnalysisResult(
        language=detect_language(text),
        intent=intent,
        contract_number=contract_number,
        is_valid_format=contract_number is not None,
        is_spam=is_spam(text),
        confidence=FALLBACK_CONFIDENCE,
        used_fallback=True,
    )
