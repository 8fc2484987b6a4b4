"""Localization capability injected into the pillars that produce user-facing text."""

import json
import logging
import re
from abc import ABC, abstractmethod
from importlib import resources
from typing import Any, Dict, Optional

from .config import DEFAULT_LANGUAGE, SUPPORTED_LANGUAGES

logger = logging.getLogger(__name__)

_PLACEHOLDER = re.compile(r"\{(\w+)\}")


def interpolate(template: str, values: Dict[str, Any]) -> str:
    """Replaces ``{name}`` placeholders that have a value; other braces are kept."""
    if not values:
        return template

    def _sub(match: "re.Match[str]") -> str:
        key = match.group(1)
        return str(values[key]) if key in values else match.group(0)

    return _PLACEHOLDER.sub(_sub, template)


class Translator(ABC):
    """Interface for resolving message keys to user-facing strings."""

    @property
    @abstractmethod
    def language(self) -> str:
        pass

    @abstractmethod
    def t(self, key: str, **values: Any) -> str:
        """Returns the localized string for a dotted key."""
        pass


class Catalog(Translator):
    """Translator backed by the JSON catalogs shipped in ``riskchat/locales``.

    Lookups fall back to the default language, then to the key itself.
    """

    def __init__(self, language: str = DEFAULT_LANGUAGE):
        if language not in SUPPORTED_LANGUAGES:
            logger.warning("Unsupported language '%s', using '%s'", language, DEFAULT_LANGUAGE)
            language = DEFAULT_LANGUAGE
        self._language = language
        self._messages = self._load(language)
        self._fallback = (
            self._messages if language == DEFAULT_LANGUAGE else self._load(DEFAULT_LANGUAGE)
        )

    @property
    def language(self) -> str:
        return self._language

    @staticmethod
    def _load(language: str) -> Dict[str, Any]:
        try:
            raw = resources.files("riskchat").joinpath(f"locales/{language}.json").read_text(
                encoding="utf-8"
            )
            return json.loads(raw)
        except (OSError, ValueError):
            logger.exception("Could not load message catalog for '%s'", language)
            return {}

    @staticmethod
    def _lookup(messages: Dict[str, Any], key: str) -> Optional[str]:
        node: Any = messages
        for part in key.split("."):
            if not isinstance(node, dict) or part not in node:
                return None
            node = node[part]
        return node if isinstance(node, str) else None

    def t(self, key: str, **values: Any) -> str:
        template = self._lookup(self._messages, key)
        if template is None:
            template = self._lookup(self._fallback, key)
        if template is None:
            template = key
        return interpolate(template, values)

