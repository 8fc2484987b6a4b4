"""Defensive parsing of provider output into typed analysis results."""

import json
import logging
import re
from typing import Any, List, Optional, Tuple

from pydantic import ValidationError

from .errors import ParseError
from .i18n import Translator
from .models import AnalysisResult, GroundingSource, RiskLevel

logger = logging.getLogger(__name__)

SNIPPET_LENGTH = 150
_FENCE = re.compile(r"^```(?:json)?\s*\n?(.*?)\n?\s*```$", re.DOTALL)


def snippet(text: str, limit: int = SNIPPET_LENGTH) -> str:
    return text[:limit] + ("..." if len(text) > limit else "")


def strip_fence(text: str) -> Tuple[str, bool]:
    """Returns the payload inside a surrounding code fence, and whether one was found."""
    match = _FENCE.match(text)
    if match and match.group(1):
        return match.group(1).strip(), True
    return text, False


class ResponseParser:
    """Turns raw provider text into an ``AnalysisResult``.

    ``parse`` never raises: every failure is downgraded to an ``UNKNOWN``
    verdict carrying diagnostic text.
    """

    def __init__(self, translator: Translator):
        self.translator = translator

    def parse(self, raw_text: Optional[str], citations: Optional[List[GroundingSource]] = None) -> AnalysisResult:
        result = self._parse(raw_text or "")
        if citations:
            result = result.model_copy(update={"grounding_sources": list(citations)})
        return result

    def conversational(self, citations: Optional[List[GroundingSource]]) -> Optional[AnalysisResult]:
        """Citation carrier for a follow-up answer, or None without citations."""
        if not citations:
            return None
        return AnalysisResult(risk_level=None, grounding_sources=list(citations))

    def _parse(self, raw_text: str) -> AnalysisResult:
        t = self.translator
        trimmed = raw_text.strip()
        candidate, fenced = strip_fence(trimmed)

        try:
            data = self._decode(candidate)
        except ParseError:
            logger.warning("Provider output is not valid JSON: %r", snippet(trimmed))
            if not fenced and not trimmed.startswith(("{", "[")):
                return AnalysisResult(
                    risk_level=RiskLevel.UNKNOWN,
                    explanation=trimmed,
                    suggestions=[
                        t.t("gemini.suggestionProvideMoreDetails"),
                        t.t("gemini.suggestionRetryClearer"),
                    ],
                )
            return AnalysisResult(
                risk_level=RiskLevel.UNKNOWN,
                explanation=t.t("gemini.errorParseResponseGeneric", responseText=snippet(trimmed)),
                suggestions=[
                    t.t("gemini.suggestionRetryLater"),
                    t.t("gemini.suggestionCheckInput"),
                ],
            )

        result = self._coerce(data)
        if result is not None:
            return result

        logger.warning("Provider JSON lacks the verdict fields: %r", snippet(trimmed))
        return AnalysisResult(
            risk_level=RiskLevel.UNKNOWN,
            explanation=t.t(
                "gemini.errorAIResponseFormatInvalidContent", responseText=snippet(trimmed)
            ),
            suggestions=[
                t.t("gemini.suggestionRetryClearer"),
                t.t("gemini.suggestionEnsureJsonFormatUser"),
            ],
        )

    @staticmethod
    def _decode(candidate: str) -> Any:
        try:
            return json.loads(candidate)
        except (ValueError, RecursionError) as exc:
            raise ParseError(str(exc)) from exc

    @staticmethod
    def _coerce(data: Any) -> Optional[AnalysisResult]:
        if not isinstance(data, dict):
            return None
        risk_level = data.get("riskLevel")
        explanation = data.get("explanation")
        suggestions = data.get("suggestions")
        if not risk_level or explanation is None or not isinstance(suggestions, list):
            return None
        try:
            return AnalysisResult(
                risk_level=RiskLevel(str(risk_level).upper()),
                explanation=str(explanation),
                suggestions=[str(s) for s in suggestions],
            )
        except (ValueError, ValidationError):
            # Unrecognized verdicts keep the explanation but are not trusted.
            return AnalysisResult(
                risk_level=RiskLevel.UNKNOWN,
                explanation=str(explanation),
                suggestions=[str(s) for s in suggestions],
            )
