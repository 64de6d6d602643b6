"""Complaint detection, classification and lifecycle rules.

Detection is keyword based: each category counts how many of its keywords
occur in the lowercased text. NO LLM.
"""

from __future__ import annotations

import re
import uuid
from datetime import datetime

from jarvis.domain.errors import ComplaintTransitionError
from jarvis.domain.models import (
    PRIORITY_ORDER,
    Complaint,
    ComplaintDetection,
    ComplaintStatus,
    Priority,
)

# Category order is also the tie-break order
COMPLAINT_CATEGORIES: tuple[str, ...] = ("delay", "quality", "service", "billing", "general")

COMPLAINT_KEYWORDS: dict[str, dict[str, tuple[str, ...]]] = {
    "fr": {
        "delay": ("retard", "attendre", "délai", "longtemps", "depuis", "jours", "semaines"),
        "quality": (
            "mauvais",
            "qualité",
            "problème",
            "dysfonctionnement",
            "panne",
            "marche pas",
        ),
        "service": ("service", "technicien", "rdv", "rendez-vous", "absent", "venu"),
        "billing": ("facture", "paiement", "prix", "cher", "argent", "remboursement"),
        "general": ("réclamation", "plainte", "mécontent", "insatisfait", "inacceptable"),
    },
    "ar": {
        "delay": ("تأخير", "انتظار", "طويل", "أيام", "أسابيع"),
        "quality": ("سيء", "مشكل", "عطل", "لا يعمل"),
        "service": ("خدمة", "تقني", "موعد", "غائب"),
        "billing": ("فاتورة", "دفع", "ثمن", "غالي", "استرجاع"),
        "general": ("شكاية", "شكوى", "غير راضي"),
    },
}

HIGH_PRIORITY_KEYWORDS = ("urgent", "urgence", "immédiat", "عاجل", "فوري", "inacceptable", "scandale")
HIGH_PRIORITY_PATTERNS = (
    re.compile(r"depuis \d+ semaines", re.IGNORECASE),
    re.compile(r"\d+ jours sans", re.IGNORECASE),
    re.compile(r"منذ \d+ أسابيع"),
)
MEDIUM_PRIORITY_KEYWORDS = ("problème", "مشكل", "attendre", "انتظار")
MEDIUM_PRIORITY_PATTERNS = (
    re.compile(r"depuis \d+ jours", re.IGNORECASE),
    re.compile(r"منذ \d+ أيام"),
)

# Provider category for each complaint type
TICKET_CATEGORY: dict[str, str] = {
    "delay": "INSTALLATION_DELAY",
    "quality": "SERVICE_QUALITY",
    "service": "TECHNICIAN_ISSUE",
    "billing": "BILLING",
    "general": "OTHER",
}

ALLOWED_TRANSITIONS: dict[ComplaintStatus, frozenset[ComplaintStatus]] = {
    "open": frozenset({"assigned", "escalated", "resolved"}),
    "assigned": frozenset({"escalated", "resolved"}),
    "escalated": frozenset({"resolved"}),
    "resolved": frozenset(),
}

# Statuses the escalation sweep acts on
ACTIVE_STATUSES: tuple[ComplaintStatus, ...] = ("open", "assigned")


def determine_priority(text: str) -> Priority:
    """High indicators first, then medium, else low."""
    lowered = text.lower()
    if any(k in lowered for k in HIGH_PRIORITY_KEYWORDS):
        return "high"
    if any(p.search(text) for p in HIGH_PRIORITY_PATTERNS):
        return "high"
    if any(k in lowered for k in MEDIUM_PRIORITY_KEYWORDS):
        return "medium"
    if any(p.search(text) for p in MEDIUM_PRIORITY_PATTERNS):
        return "medium"
    return "low"


def detect_complaint(text: str, language: str) -> ComplaintDetection:
    """Decide whether text is a complaint and classify it.

    Args:
        text: Message text. NEVER logged.
        language: Detected language; anything but "ar" uses the French set.
    """
    keywords = COMPLAINT_KEYWORDS["ar" if language == "ar" else "fr"]
    lowered = text.lower()

    scores = {category: 0 for category in COMPLAINT_CATEGORIES}
    detected: list[str] = []
    for category in COMPLAINT_CATEGORIES:
        for keyword in keywords[category]:
            if keyword in lowered:
                scores[category] += 1
                detected.append(keyword)

    total = sum(scores.values())
    if total == 0:
        return ComplaintDetection(
            is_complaint=False, complaint_type=None, priority="low", confidence=0.0
        )

    # max() keeps the first maximal element, so ties follow COMPLAINT_CATEGORIES
    complaint_type = max(COMPLAINT_CATEGORIES, key=lambda c: scores[c])

    return ComplaintDetection(
        is_complaint=True,
        complaint_type=complaint_type,
        priority=determine_priority(text),
        confidence=min(total / 5, 1.0),
        detected_keywords=tuple(detected),
    )


def validate_transition(current: ComplaintStatus, target: ComplaintStatus) -> None:
    """Raise ComplaintTransitionError unless current -> target is allowed."""
    if target not in ALLOWED_TRANSITIONS.get(current, frozenset()):
        raise ComplaintTransitionError(f"cannot move complaint from {current} to {target}")


def next_priority(priority: Priority) -> Priority:
    """One step up; high stays high."""
    index = PRIORITY_ORDER.index(priority)
    return PRIORITY_ORDER[min(index + 1, len(PRIORITY_ORDER) - 1)]


def new_complaint(
    *,
    phone: str,
    contract_number: str,
    complaint_type: str,
    description: str,
    priority: Priority,
    now: datetime,
    contractor_name: str | None = None,
    message_id: str | None = None,
) -> Complaint:
    return Complaint(
        id=str(uuid.uuid4()),
        phone=phone,
        contract_number=contract_number,
        complaint_type=complaint_type,
        description=description,
        priority=priority,
        status="open",
        created_at=now,
        updated_at=now,
        contractor_name=contractor_name,
        message_id=message_id,
    )
