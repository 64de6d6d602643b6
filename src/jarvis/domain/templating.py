"""Bilingual (FR/AR) reply rendering.

Status replies come from templates keyed by (etat, sous_etat, sous_etat_2).
Lookup goes from most to least specific:

    (etat, sous_etat, sous_etat_2) -> (etat, sous_etat, None) -> (etat, None, None)

At each level persisted templates are checked first, then DEFAULT_TEMPLATES.
The FR and AR bodies are written independently; nothing is translated.
"""

from __future__ import annotations

import re
from dataclasses import dataclass
from typing import Protocol

from jarvis.domain.models import BilingualText, ContractStatus, ResponseTemplate
from jarvis.observability.logging import get_logger
from jarvis.observability.redaction import safe_log_context

logger = get_logger(__name__)


DEFAULT_TEMPLATES: tuple[ResponseTemplate, ...] = (
    ResponseTemplate(
        etat="En cours",
        sous_etat="Dossier incomplet",
        sous_etat_2=None,
        fr="Merci de ressaisir en complétant votre contrat",
        ar="يرجى إعادة تقديم المستندات",
        allow_complaint=False,
    ),
    ResponseTemplate(
        etat="Fermé",
        sous_etat=None,
        sous_etat_2=None,
        fr="Votre contrat a été installé ✅",
        ar="تم تثبيت عقدك ✅",
        allow_complaint=False,
    ),
    ResponseTemplate(
        etat="En cours",
        sous_etat="Activation lancée",
        sous_etat_2=None,
        fr="Votre contrat est toujours dans les délais, merci de patienter",
        ar="عقدك لا يزال ضمن المواعيد النهائية",
        allow_complaint=True,
    ),
    ResponseTemplate(
        etat="En cours",
        sous_etat="BO fixe",
        sous_etat_2=None,
        fr="Votre contrat est toujours dans les délais, merci de patienter",
        ar="عقدك لا يزال ضمن المواعيد النهائية",
        allow_complaint=True,
    ),
    ResponseTemplate(
        etat="En cours",
        sous_etat="BO prestataire",
        sous_etat_2=None,
        fr="Merci de vérifier que votre contrat a été envoyé à la validation",
        ar="يرجى التحقق من إرسال العقد",
        allow_complaint=True,
    ),
    ResponseTemplate(
        etat="Refusé",
        sous_etat="Refusé par BO",
        sous_etat_2=None,
        fr="Contrat refusé, resaisi",
        ar="العقد مرفوض",
        allow_complaint=False,
    ),
    ResponseTemplate(
        etat="En cours",
        sous_etat="En attente",
        sous_etat_2=None,
        fr="Votre contrat est en cours de traitement",
        ar="عقدك قيد المعالجة",
        allow_complaint=True,
    ),
    ResponseTemplate(
        etat="En cours",
        sous_etat="Planifié",
        sous_etat_2=None,
        fr="L'installation de votre contrat est planifiée",
        ar="تم تحديد موعد لتثبيت عقدك",
        allow_complaint=True,
    ),
    ResponseTemplate(
        etat="Annulé",
        sous_etat=None,
        sous_etat_2=None,
        fr="Votre contrat a été annulé",
        ar="تم إلغاء عقدك",
        allow_complaint=False,
    ),
)

# Fixed copy, one entry per user-facing situation
SYSTEM_MESSAGES: dict[str, BilingualText] = {
    "WELCOME": BilingualText(
        fr=(
            "Bienvenue sur JARVIS 🤖\n"
            "Envoyez votre numéro de contrat (ex: F0823846D) pour vérifier son statut."
        ),
        ar="مرحباً بك في جارفيس 🤖\nأرسل رقم عقدك (مثال: F0823846D) للتحقق من حالته.",
    ),
    "INVALID_FORMAT": BilingualText(
        fr="Format invalide. Exemple: F0823846D",
        ar="صيغة غير صحيحة. مثال: F0823846D",
    ),
    "CONTRACT_NOT_FOUND": BilingualText(
        fr="Contrat non trouvé. Vérifiez le numéro",
        ar="العقد غير موجود. يرجى التحقق من الرقم",
    ),
    "SPAM_DETECTED": BilingualText(
        fr="Message invalide. Envoyez numéro de contrat",
        ar="رسالة غير صحيحة. أرسل رقم العقد",
    ),
    "SERVICE_UNAVAILABLE": BilingualText(
        fr="Serveur indisponible, réessayez dans 1 min",
        ar="الخادم غير متاح، حاول مرة أخرى بعد دقيقة",
    ),
    "SYSTEM_ERROR": BilingualText(
        fr="Erreur système, veuillez réessayer",
        ar="خطأ في النظام، يرجى المحاولة مرة أخرى",
    ),
    "UNSUPPORTED_LANGUAGE": BilingualText(
        fr="Langue non supportée (FR/AR)",
        ar="اللغة غير مدعومة (FR/AR)",
    ),
    "COMPLAINT_PROMPT": BilingualText(
        fr=(
            'Si vous souhaitez déposer une réclamation, répondez "RECLAMATION" '
            "suivi de votre message."
        ),
        ar='إذا كنت ترغب في تقديم شكوى، أرسل "شكاية" متبوعة برسالتك.',
    ),
}


def system_message(key: str) -> BilingualText:
    """Fixed copy by key. Unknown keys get SYSTEM_ERROR."""
    return SYSTEM_MESSAGES.get(key, SYSTEM_MESSAGES["SYSTEM_ERROR"])


def format_bilingual(fr: str, ar: str) -> str:
    """Single outgoing message: French, blank line, Arabic."""
    return f"{fr}\n\n{ar}"


class TemplateSource(Protocol):
    """Persisted templates. find() is an exact, case-insensitive match."""

    def find(
        self, etat: str, sous_etat: str | None, sous_etat_2: str | None
    ) -> ResponseTemplate | None:
        ...


@dataclass(frozen=True)
class RenderedStatus:
    fr: str
    ar: str
    allow_complaint: bool
    template_id: str | None


def _fold(value: str | None) -> str | None:
    return value.lower() if value else None


def find_default_template(
    etat: str, sous_etat: str | None, sous_etat_2: str | None
) -> ResponseTemplate | None:
    key = (_fold(etat), _fold(sous_etat), _fold(sous_etat_2))
    for template in DEFAULT_TEMPLATES:
        if (_fold(template.etat), _fold(template.sous_etat), _fold(template.sous_etat_2)) == key:
            return template
    return None


def lookup_keys(
    etat: str, sous_etat: str | None, sous_etat_2: str | None
) -> list[tuple[str, str | None, str | None]]:
    """Lookup keys from most to least specific, without duplicates."""
    keys = [(etat, sous_etat or None, sous_etat_2 or None)]
    if sous_etat_2:
        keys.append((etat, sous_etat or None, None))
    if sous_etat:
        keys.append((etat, None, None))
    return keys


_PLACEHOLDERS = {
    "contract": re.compile(r"\{contract\}", re.IGNORECASE),
    "etat": re.compile(r"\{etat\}", re.IGNORECASE),
    "sous_etat": re.compile(r"\{sous_etat\}", re.IGNORECASE),
    "date": re.compile(r"\{date\}", re.IGNORECASE),
}


def fill_placeholders(body: str, contract_number: str, status: ContractStatus) -> str:
    values = {
        "contract": contract_number,
        "etat": status.etat,
        "sous_etat": status.sous_etat or "",
        "date": status.date_created or "",
    }
    for name, pattern in _PLACEHOLDERS.items():
        # Function replacement so backslashes in values are taken literally
        body = pattern.sub(lambda _m, v=values[name]: v, body)
    return body


def append_complaint_prompt(text: BilingualText, allow_complaint: bool) -> BilingualText:
    if not allow_complaint:
        return text
    prompt = SYSTEM_MESSAGES["COMPLAINT_PROMPT"]
    return BilingualText(fr=f"{text.fr}\n\n{prompt.fr}", ar=f"{text.ar}\n\n{prompt.ar}")


class ResponseTemplater:
    """Renders the status reply for a resolved contract."""

    def __init__(self, source: TemplateSource | None = None) -> None:
        self._source = source

    def find_template(self, status: ContractStatus) -> ResponseTemplate | None:
        for etat, sous_etat, sous_etat_2 in lookup_keys(
            status.etat, status.sous_etat, status.sous_etat_2
        ):
            template = self._find_persisted(etat, sous_etat, sous_etat_2)
            if template is None:
                template = find_default_template(etat, sous_etat, sous_etat_2)
            if template is not None:
                return template
        return None

    def render(self, status: ContractStatus, contract_number: str) -> RenderedStatus:
        """Reply body for a status, with the complaint prompt when allowed."""
        template = self.find_template(status)

        if template is None:
            logger.warning(
                "no template for status",
                extra={
                    "extra_fields": safe_log_context(
                        etat=status.etat,
                        sous_etat=status.sous_etat,
                        sous_etat_2=status.sous_etat_2,
                    )
                },
            )
            suffix = f" - {status.sous_etat}" if status.sous_etat else ""
            body = BilingualText(
                fr=f"Contrat {contract_number}: {status.etat}{suffix}",
                ar=f"العقد {contract_number}: {status.etat}{suffix}",
            )
            allow_complaint = True
            template_id = None
        else:
            body = BilingualText(
                fr=fill_placeholders(template.fr, contract_number, status),
                ar=fill_placeholders(template.ar, contract_number, status),
            )
            allow_complaint = template.allow_complaint
            template_id = template.id

        body = append_complaint_prompt(body, allow_complaint)
        return RenderedStatus(
            fr=body.fr, ar=body.ar, allow_complaint=allow_complaint, template_id=template_id
        )

    def _find_persisted(
        self, etat: str, sous_etat: str | None, sous_etat_2: str | None
    ) -> ResponseTemplate | None:
        if self._source is None:
            return None
        try:
            return self._source.find(etat, sous_etat, sous_etat_2)
        except Exception:
            # A broken template store must not block the reply
            logger.exception("template source lookup failed")
            return None
