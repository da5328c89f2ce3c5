"""Human-readable refusal texts returned when upstream declines to answer."""
from __future__ import annotations

NO_CANDIDATES_REASON = "no candidates returned"

SAFETY_REASONS = frozenset({"SAFETY", "BLOCKLIST", "PROHIBITED_CONTENT", "SPII"})
RECITATION_REASONS = frozenset({"RECITATION"})

DEFAULT_LOCALE = "en"

REFUSAL_MESSAGES: dict[str, dict[str, str]] = {
    "en": {
        "safety": "Sorry, I can't answer that. The request was blocked by the content safety policy.",
        "recitation": "Sorry, I can't answer that. The answer would repeat copyrighted material too closely.",
        "no_candidates": "Sorry, no answer was produced for this request. Please try rephrasing it.",
        "generic": "No answer was produced (reason: {{reason}}).",
    },
    "es": {
        "safety": "Lo siento, no puedo responder. La solicitud fue bloqueada por la política de seguridad de contenido.",
        "recitation": "Lo siento, no puedo responder. La respuesta repetiría demasiado material protegido.",
        "no_candidates": "Lo siento, no se generó ninguna respuesta. Intenta reformular la solicitud.",
        "generic": "No se generó ninguna respuesta (motivo: {{reason}}).",
    },
}


def render_message(template: str, **values: str) -> str:
    """
    Render values into a message template.

    Args:
        template: Template content containing {{name}} placeholders.
        values: Replacement for each placeholder.

    Returns:
        Rendered message.
    """
    for name, value in values.items():
        template = template.replace("{{" + name + "}}", value)
    return template


def refusal_message(reason: str, locale: str = DEFAULT_LOCALE) -> str:
    """
    Map an upstream block/finish reason to the text shown to the user.

    Unknown locales fall back to English; unknown reasons get the generic text
    with the raw reason embedded.
    """
    catalog = REFUSAL_MESSAGES.get(locale.lower(), REFUSAL_MESSAGES[DEFAULT_LOCALE])
    normalized = reason.strip().upper()
    if normalized in SAFETY_REASONS:
        return catalog["safety"]
    if normalized in RECITATION_REASONS:
        return catalog["recitation"]
    if reason == NO_CANDIDATES_REASON:
        return catalog["no_candidates"]
    return render_message(catalog["generic"], reason=reason)
