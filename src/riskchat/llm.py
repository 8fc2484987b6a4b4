"""Concrete implementations for LLM providers."""

import base64
import json
import logging
from abc import ABC, abstractmethod
from typing import Any, Dict, List, Optional

from .config import KNOWN_INVALID_API_KEYS, get_settings
from .errors import AuthMissing, NetworkFailure, ProviderRejected, ProviderTimeout
from .models import (
    GroundingSource,
    InlineDataPart,
    Part,
    ProviderRequest,
    ProviderResponse,
    RequestMode,
    TextPart,
)

logger = logging.getLogger(__name__)


def _resolve_api_key(api_key: Optional[str]) -> Optional[str]:
    key = api_key if api_key is not None else get_settings().effective_api_key
    if key is None or key in KNOWN_INVALID_API_KEYS:
        return None
    return key


def _turn_text(parts: List[Part]) -> str:
    return "\n".join(p.text for p in parts if isinstance(p, TextPart))


class LLM(ABC):
    """Abstract Base Class for all LLM providers."""

    def generate(self, request: ProviderRequest) -> ProviderResponse:
        """Runs one generation call and normalizes the result.

        Raises
        ------
        ProviderError
            ``AuthMissing``, ``NetworkFailure`` or ``ProviderRejected``.
        """
        response = self.generate_response(request)
        return self.extract_content(response)

    @abstractmethod
    def generate_response(self, request: ProviderRequest) -> Any:
        """Generates a response from the LLM provider.

        This method should return the provider's native, rich response object
        directly from their SDK, translating SDK failures into
        ``ProviderError`` subclasses.

        Parameters
        ----------
        request : ProviderRequest
            Guidance, replayed history and the parts of the current turn.

        Returns
        -------
        Any
            The provider's native, rich response object.
        """
        pass

    @abstractmethod
    def extract_content(self, response: Any) -> ProviderResponse:
        """Extracts the text and citations from the provider's native response object.

        Parameters
        ----------
        response : Any
            The provider's native response object from generate_response.

        Returns
        -------
        ProviderResponse
            The answer text and any grounding citations.
        """
        pass


class Gemini(LLM):
    """Google Gemini with Google Search grounding."""

    def __init__(self, default_model: Optional[str] = None, api_key: Optional[str] = None):
        from google import genai

        self.model = default_model or get_settings().model_name
        self.api_key = _resolve_api_key(api_key)
        # Without a usable key every call raises AuthMissing.
        self._client = genai.Client(api_key=self.api_key) if self.api_key else None

    def _to_parts(self, parts: List[Part]) -> List[Any]:
        from google.genai import types

        converted = []
        for part in parts:
            if isinstance(part, InlineDataPart):
                converted.append(
                    types.Part(
                        inline_data=types.Blob(
                            mime_type=part.inline_data.mime_type,
                            data=base64.b64decode(part.inline_data.data),
                        )
                    )
                )
            else:
                converted.append(types.Part(text=part.text))
        return converted

    def build_contents(self, request: ProviderRequest) -> List[Any]:
        from google.genai import types

        contents = []
        if request.mode == RequestMode.FOLLOW_UP and request.history:
            for turn in request.history:
                contents.append(types.Content(role=turn.role, parts=self._to_parts(turn.parts)))
        contents.append(types.Content(role="user", parts=self._to_parts(request.current_turn_parts)))
        return contents

    def generate_response(self, request: ProviderRequest) -> Any:
        from google.genai import errors, types

        if self._client is None:
            logger.error("Gemini API key is not configured or is a placeholder. Aborting API call.")
            raise AuthMissing("Gemini API key is not configured")

        config = types.GenerateContentConfig(
            system_instruction=request.system_guidance,
            tools=[types.Tool(google_search=types.GoogleSearch())],
        )
        try:
            return self._client.models.generate_content(
                model=self.model, contents=self.build_contents(request), config=config
            )
        except errors.ClientError as exc:
            if exc.code in (401, 403):
                raise AuthMissing(str(exc)) from exc
            raise ProviderRejected(str(exc)) from exc
        except errors.APIError as exc:
            raise NetworkFailure(str(exc)) from exc
        except Exception as exc:
            logger.error("Error during Gemini call (mode: %s): %s", request.mode.value, exc)
            raise NetworkFailure(str(exc)) from exc

    def extract_content(self, response: Any) -> ProviderResponse:
        citations: List[GroundingSource] = []
        candidates = getattr(response, "candidates", None) or []
        metadata = getattr(candidates[0], "grounding_metadata", None) if candidates else None
        for chunk in getattr(metadata, "grounding_chunks", None) or []:
            web = getattr(chunk, "web", None)
            if web is not None and getattr(web, "uri", None):
                citations.append(GroundingSource(uri=web.uri, title=web.title or web.uri))
        return ProviderResponse(text=response.text or "", citations=citations or None)


class OpenAI(LLM):
    """OpenAI chat completions; images, PDFs and wav/mp3 audio are sent inline."""

    AUDIO_FORMATS = {"audio/wav": "wav", "audio/x-wav": "wav", "audio/mpeg": "mp3", "audio/mp3": "mp3"}

    def __init__(self, default_model: str = "gpt-4o", api_key: Optional[str] = None):
        from openai import OpenAI

        self.client = OpenAI(api_key=api_key) if api_key else OpenAI()
        self.model = default_model

    def _to_content(self, parts: List[Part]) -> List[Dict[str, Any]]:
        content: List[Dict[str, Any]] = []
        for part in parts:
            if isinstance(part, TextPart):
                content.append({"type": "text", "text": part.text})
                continue
            mime_type = part.inline_data.mime_type
            data = part.inline_data.data
            if mime_type.startswith("image/"):
                content.append(
                    {"type": "image_url", "image_url": {"url": f"data:{mime_type};base64,{data}"}}
                )
            elif mime_type == "application/pdf":
                content.append(
                    {
                        "type": "file",
                        "file": {
                            "filename": "attachment.pdf",
                            "file_data": f"data:{mime_type};base64,{data}",
                        },
                    }
                )
            elif mime_type in self.AUDIO_FORMATS:
                content.append(
                    {
                        "type": "input_audio",
                        "input_audio": {"data": data, "format": self.AUDIO_FORMATS[mime_type]},
                    }
                )
            else:
                logger.warning("OpenAI provider cannot send %s inline; omitting it", mime_type)
                content.append({"type": "text", "text": f"[{mime_type} attachment omitted]"})
        return content

    def build_messages(self, request: ProviderRequest) -> List[Dict[str, Any]]:
        messages: List[Dict[str, Any]] = [{"role": "system", "content": request.system_guidance}]
        for turn in request.history or []:
            messages.append(
                {
                    "role": "user" if turn.role == "user" else "assistant",
                    "content": _turn_text(turn.parts),
                }
            )
        messages.append({"role": "user", "content": self._to_content(request.current_turn_parts)})
        return messages

    def generate_response(self, request: ProviderRequest) -> Any:
        import openai

        kwargs: Dict[str, Any] = {}
        if request.mode == RequestMode.ANALYSIS:
            kwargs["response_format"] = {"type": "json_object"}
        try:
            return self.client.chat.completions.create(
                messages=self.build_messages(request), model=self.model, **kwargs
            )
        except openai.AuthenticationError as exc:
            raise AuthMissing(str(exc)) from exc
        except openai.APITimeoutError as exc:
            raise ProviderTimeout(str(exc)) from exc
        except openai.APIConnectionError as exc:
            raise NetworkFailure(str(exc)) from exc
        except openai.APIStatusError as exc:
            raise ProviderRejected(str(exc)) from exc

    def extract_content(self, response: Any) -> ProviderResponse:
        return ProviderResponse(text=response.choices[0].message.content or "")


class Anthropic(LLM):
    """Anthropic messages API; images and PDFs are sent as base64 blocks."""

    def __init__(
        self,
        default_model: str = "claude-3-5-sonnet-20241022",
        api_key: Optional[str] = None,
        max_tokens: int = 4096,
    ):
        from anthropic import Anthropic

        self.client = Anthropic(api_key=api_key) if api_key else Anthropic()
        self.model = default_model
        self.max_tokens = max_tokens

    def _to_content(self, parts: List[Part]) -> List[Dict[str, Any]]:
        content: List[Dict[str, Any]] = []
        for part in parts:
            if isinstance(part, TextPart):
                content.append({"type": "text", "text": part.text})
                continue
            source = {
                "type": "base64",
                "media_type": part.inline_data.mime_type,
                "data": part.inline_data.data,
            }
            if part.inline_data.mime_type.startswith("image/"):
                content.append({"type": "image", "source": source})
            elif part.inline_data.mime_type == "application/pdf":
                content.append({"type": "document", "source": source})
            else:
                logger.warning(
                    "Anthropic provider cannot send %s inline; omitting it", part.inline_data.mime_type
                )
                content.append({"type": "text", "text": f"[{part.inline_data.mime_type} attachment omitted]"})
        return content

    def build_messages(self, request: ProviderRequest) -> List[Dict[str, Any]]:
        messages = [
            {"role": "user" if turn.role == "user" else "assistant", "content": _turn_text(turn.parts)}
            for turn in request.history or []
        ]
        messages.append({"role": "user", "content": self._to_content(request.current_turn_parts)})
        return messages

    def generate_response(self, request: ProviderRequest) -> Any:
        import anthropic

        try:
            return self.client.messages.create(
                model=self.model,
                system=request.system_guidance,
                messages=self.build_messages(request),
                max_tokens=self.max_tokens,
            )
        except anthropic.AuthenticationError as exc:
            raise AuthMissing(str(exc)) from exc
        except anthropic.APITimeoutError as exc:
            raise ProviderTimeout(str(exc)) from exc
        except anthropic.APIConnectionError as exc:
            raise NetworkFailure(str(exc)) from exc
        except anthropic.APIStatusError as exc:
            raise ProviderRejected(str(exc)) from exc

    def extract_content(self, response: Any) -> ProviderResponse:
        text = "".join(
            block.text for block in response.content if getattr(block, "type", None) == "text"
        )
        return ProviderResponse(text=text)


class Ollama(LLM):
    """Local models served by Ollama; only images are sent alongside the text."""

    def __init__(self, default_model: str = "llama3.1", host: Optional[str] = None):
        from ollama import Client

        self.client = Client(host=host) if host else Client()
        self.model = default_model

    def build_messages(self, request: ProviderRequest) -> List[Dict[str, Any]]:
        messages: List[Dict[str, Any]] = [{"role": "system", "content": request.system_guidance}]
        for turn in request.history or []:
            messages.append(
                {"role": "user" if turn.role == "user" else "assistant", "content": _turn_text(turn.parts)}
            )
        current: Dict[str, Any] = {"role": "user", "content": _turn_text(request.current_turn_parts)}
        images = [
            p.inline_data.data
            for p in request.current_turn_parts
            if isinstance(p, InlineDataPart) and p.inline_data.mime_type.startswith("image/")
        ]
        if images:
            current["images"] = images
        messages.append(current)
        return messages

    def generate_response(self, request: ProviderRequest) -> Any:
        import ollama

        kwargs: Dict[str, Any] = {}
        if request.mode == RequestMode.ANALYSIS:
            kwargs["format"] = "json"
        try:
            return self.client.chat(model=self.model, messages=self.build_messages(request), **kwargs)
        except ollama.ResponseError as exc:
            raise ProviderRejected(str(exc)) from exc
        except Exception as exc:
            logger.error("Error during Ollama call (mode: %s): %s", request.mode.value, exc)
            raise NetworkFailure(str(exc)) from exc

    def extract_content(self, response: Any) -> ProviderResponse:
        return ProviderResponse(text=response["message"]["content"] or "")


class Echo(LLM):
    """Offline provider that answers from the request itself, for testing."""

    def __init__(self, default_model: str = "echo-v1"):
        self.model = default_model

    def generate_response(self, request: ProviderRequest) -> Any:
        prompt = " ".join(
            p.text for p in request.current_turn_parts if isinstance(p, TextPart)
        ).strip() or "No message provided"
        if request.mode == RequestMode.ANALYSIS:
            content = json.dumps(
                {
                    "riskLevel": "UNKNOWN",
                    "explanation": f"Echo LLM - static analysis for: {prompt}",
                    "suggestions": [],
                }
            )
        else:
            content = f"**Echo LLM - static response for testing**\n\n_Your prompt:_\n\n{prompt}"
        return {"content": content}

    def extract_content(self, response: Any) -> ProviderResponse:
        if isinstance(response, dict) and "content" in response:
            return ProviderResponse(text=response["content"])
        return ProviderResponse(text=str(response))
