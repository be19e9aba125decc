"""
AI Orchestrator - Response Language Forcing

Rewrites an outgoing conversation so the model answers in a given language.
The rewrite is a pure function of (messages, language): it is computed once
per call and the same message list is sent to every provider attempted.
"""

from typing import List, Optional, Tuple

from .models import ChatMessage, ChatOptions, OPTION_RESPONSE_LANGUAGE, Role


LANGUAGE_NAMES = {
    "ar": "Arabic",
    "de": "German",
    "en": "English",
    "es": "Spanish",
    "fr": "French",
    "hi": "Hindi",
    "it": "Italian",
    "ja": "Japanese",
    "ko": "Korean",
    "nl": "Dutch",
    "pl": "Polish",
    "pt": "Portuguese",
    "ru": "Russian",
    "sv": "Swedish",
    "tr": "Turkish",
    "uk": "Ukrainian",
    "vi": "Vietnamese",
    "zh": "Chinese",
}


def resolve_language_name(language: str) -> str:
    """
    Map a language code ("es", "pt-BR") or name ("french") to a display name.

    Unknown values are passed through with their first letter capitalised.
    """
    value = language.strip()
    base = value.lower().replace("_", "-").split("-")[0]
    if base in LANGUAGE_NAMES:
        return LANGUAGE_NAMES[base]
    return value[:1].upper() + value[1:]


def language_directive(language: str) -> str:
    return f"Always respond in {resolve_language_name(language)}."


def apply_response_language(
    messages: List[ChatMessage],
    language: Optional[str],
) -> List[ChatMessage]:
    """
    Return a copy of messages carrying the language directive.

    The directive is prefixed to the first system message if there is one,
    otherwise it becomes a new leading system message. The input list is
    never mutated.
    """
    if not language or not language.strip():
        return list(messages)

    directive = language_directive(language)
    result = list(messages)

    for index, message in enumerate(result):
        if message.role == Role.SYSTEM:
            result[index] = ChatMessage(
                role=Role.SYSTEM,
                content=f"{directive}\n\n{message.content}" if message.content else directive,
            )
            return result

    return [ChatMessage.system(directive)] + result


def split_language_option(
    options: Optional[ChatOptions],
) -> Tuple[Optional[str], ChatOptions]:
    """Pull response_language out of options; adapters never see it."""
    remaining = dict(options or {})
    language = remaining.pop(OPTION_RESPONSE_LANGUAGE, None)
    return language, remaining
