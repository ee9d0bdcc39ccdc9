# /chathub/config/strings.py

# This file contains all canned, user-facing replies produced by the
# conversation core, keyed by a stable name and then by language code.

from typing import Dict

DEFAULT_LANGUAGE = "en"

DEFAULT_OPTION_PROMPT = "Please choose one"
DEFAULT_END_MESSAGE = "Thank you, please wait for the agent to contact you"
INPUT_PATH_EXHAUSTED = "Thank you for your response. Our team will get back to you shortly."

STRINGS: Dict[str, Dict[str, str]] = {
    "GREETING": {
        "en": "Hi! What is your name?",
        "es": "¡Hola! ¿Cómo te llamas?",
        "fr": "Bonjour ! Comment vous appelez-vous ?",
        "de": "Hallo! Wie heißen Sie?",
    },
    "AI_HANDOFF": {
        "en": "Ok, I already transferred your message to the staff team, they will join this chat soon.",
        "es": "Ok, ya transferí tu mensaje al equipo, se unirán a este chat pronto.",
        "fr": "D'accord, j'ai transmis votre message à l'équipe, elle rejoindra bientôt cette conversation.",
        "de": "Ok, ich habe Ihre Nachricht an das Team weitergeleitet, es wird diesem Chat bald beitreten.",
    },
    "AI_ERROR": {
        "en": "Error processing your message with AI. Please try again or wait for staff assistance.",
        "es": "Error al procesar tu mensaje con IA. Inténtalo de nuevo o espera la ayuda del equipo.",
        "fr": "Erreur lors du traitement de votre message par l'IA. Réessayez ou attendez l'aide de l'équipe.",
        "de": "Fehler bei der Verarbeitung Ihrer Nachricht durch die KI. Bitte versuchen Sie es erneut oder warten Sie auf das Team.",
    },
    "TURN_ERROR": {
        "en": "Error processing your message. Please try again.",
        "es": "Error al procesar tu mensaje. Inténtalo de nuevo.",
        "fr": "Erreur lors du traitement de votre message. Veuillez réessayer.",
        "de": "Fehler bei der Verarbeitung Ihrer Nachricht. Bitte versuchen Sie es erneut.",
    },
    "NAME_CAPTURED": {
        "en": "Thank you, {name}! How can I help you today?",
        "es": "¡Gracias, {name}! ¿En qué puedo ayudarte hoy?",
        "fr": "Merci, {name} ! Comment puis-je vous aider aujourd'hui ?",
        "de": "Danke, {name}! Wie kann ich Ihnen heute helfen?",
    },
}


def get_string(key: str, language: str | None = None, **params: str) -> str:
    """Returns the localized text for ``key``, falling back to English."""
    variants = STRINGS[key]
    text = variants.get(language or DEFAULT_LANGUAGE) or variants[DEFAULT_LANGUAGE]
    return text.format(**params) if params else text
