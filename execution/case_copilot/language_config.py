"""
Language Configuration for the Case Copilot

Per-tenant language settings: the language answers are written in, the
default model, and the jurisdiction hint used to filter retrieved sources.
German is the default; English is supported for international tenants.
"""

from dataclasses import dataclass
from typing import Optional

from .models import Jurisdiction


SUPPORTED_LANGUAGES = {
    "de": {
        "name": "Deutsch",
        "response_language": "Deutsch",
        "default_jurisdiction": Jurisdiction.DE,
    },
    "en": {
        "name": "English",
        "response_language": "English",
        "default_jurisdiction": None,
    },
}


@dataclass
class TenantLanguageConfig:
    """Per-tenant language and model configuration."""
    language: str = "de"
    response_language: str = "Deutsch"
    default_model_id: str = "gpt-4o-mini"
    default_provider_id: str = "openai"
    jurisdiction: Optional[Jurisdiction] = Jurisdiction.DE

    @classmethod
    def for_language(cls, language: str) -> "TenantLanguageConfig":
        """
        Factory method returning defaults for a given language.

        Args:
            language: ISO 639-1 code ("de" or "en"); unknown codes fall back to "de"

        Returns:
            TenantLanguageConfig with appropriate defaults
        """
        if language not in SUPPORTED_LANGUAGES:
            language = "de"
        settings = SUPPORTED_LANGUAGES[language]
        return cls(
            language=language,
            response_language=settings["response_language"],
            jurisdiction=settings["default_jurisdiction"],
        )
