"""Tests for the LLM provider pillar."""

import base64
import json
from types import SimpleNamespace
from unittest.mock import MagicMock

import pytest
from riskchat.errors import AuthMissing, NetworkFailure, ProviderRejected
from riskchat.llm import LLM, Echo
from riskchat.models import (
    InlineData,
    InlineDataPart,
    ProviderRequest,
    ProviderResponse,
    RequestMode,
    TextPart,
    Turn,
)

PNG_B64 = base64.b64encode(b"\x89PNG\r\n\x1a\n").decode("ascii")


def make_request(mode=RequestMode.ANALYSIS, text="Is this a scam?", history=None, extra_parts=()):
    return ProviderRequest(
        mode=mode,
        system_guidance="guidance",
        history=history,
        current_turn_parts=[TextPart(text=text), *extra_parts],
    )


class TestLLMInterface:
    def test_llm_is_abstract(self):
        with pytest.raises(TypeError):
            LLM()

    def test_generate_chains_response_and_extraction(self):
        class Fixed(LLM):
            def generate_response(self, request):
                return {"raw": request.system_guidance}

            def extract_content(self, response):
                return ProviderResponse(text=response["raw"])

        assert Fixed().generate(make_request()).text == "guidance"


class TestEcho:
    def test_analysis_returns_parseable_json(self):
        response = Echo().generate(make_request())
        payload = json.loads(response.text)
        assert payload["riskLevel"] == "UNKNOWN"
        assert "Is this a scam?" in payload["explanation"]
        assert payload["suggestions"] == []

    def test_follow_up_returns_markdown(self):
        response = Echo().generate(make_request(mode=RequestMode.FOLLOW_UP, text="And now?"))
        assert response.text.startswith("**Echo LLM")
        assert response.text.endswith("And now?")
        assert response.citations is None

    def test_extract_content_from_plain_value(self):
        assert Echo().extract_content("raw").text == "raw"


@pytest.fixture
def gemini():
    pytest.importorskip("google.genai")
    from riskchat.llm import Gemini

    return Gemini(default_model="gemini-2.5-flash", api_key="test-key")


class TestGemini:
    def test_placeholder_key_raises_auth_missing(self):
        pytest.importorskip("google.genai")
        from riskchat.llm import Gemini

        llm = Gemini(default_model="gemini-2.5-flash", api_key="MISSING_API_KEY_PLACEHOLDER")
        assert llm.api_key is None
        with pytest.raises(AuthMissing):
            llm.generate(make_request())

    def test_build_contents_analysis(self, gemini):
        request = make_request(
            extra_parts=[InlineDataPart(inline_data=InlineData(mime_type="image/png", data=PNG_B64))]
        )
        contents = gemini.build_contents(request)

        assert len(contents) == 1
        assert contents[0].role == "user"
        assert contents[0].parts[0].text == "Is this a scam?"
        assert contents[0].parts[1].inline_data.mime_type == "image/png"
        assert contents[0].parts[1].inline_data.data == b"\x89PNG\r\n\x1a\n"

    def test_build_contents_follow_up_replays_history(self, gemini):
        history = [
            Turn(role="user", parts=[TextPart(text="first")]),
            Turn(role="model", parts=[TextPart(text="answer")]),
        ]
        contents = gemini.build_contents(make_request(RequestMode.FOLLOW_UP, "next", history))
        assert [c.role for c in contents] == ["user", "model", "user"]
        assert contents[-1].parts[0].text == "next"

    def test_generate_uses_search_grounding(self, gemini):
        gemini._client = MagicMock()
        gemini._client.models.generate_content.return_value = SimpleNamespace(
            text="ok", candidates=[]
        )

        response = gemini.generate(make_request())

        kwargs = gemini._client.models.generate_content.call_args.kwargs
        assert kwargs["model"] == "gemini-2.5-flash"
        assert kwargs["config"].system_instruction == "guidance"
        assert kwargs["config"].tools[0].google_search is not None
        assert response.text == "ok"

    def test_sdk_client_error_mapping(self, gemini):
        from google.genai import errors

        gemini._client = MagicMock()
        gemini._client.models.generate_content.side_effect = errors.ClientError(
            403, {"error": {"code": 403, "message": "denied", "status": "PERMISSION_DENIED"}}
        )
        with pytest.raises(AuthMissing):
            gemini.generate(make_request())

        gemini._client.models.generate_content.side_effect = errors.ClientError(
            400, {"error": {"code": 400, "message": "bad", "status": "INVALID_ARGUMENT"}}
        )
        with pytest.raises(ProviderRejected):
            gemini.generate(make_request())

    def test_unexpected_errors_are_network_failures(self, gemini):
        gemini._client = MagicMock()
        gemini._client.models.generate_content.side_effect = ConnectionError("reset")
        with pytest.raises(NetworkFailure):
            gemini.generate(make_request())

    def test_extract_grounding_citations(self, gemini):
        chunks = [
            SimpleNamespace(web=SimpleNamespace(uri="https://a.example", title="A")),
            SimpleNamespace(web=SimpleNamespace(uri="https://b.example", title=None)),
            SimpleNamespace(web=None),
        ]
        response = SimpleNamespace(
            text="answer",
            candidates=[SimpleNamespace(grounding_metadata=SimpleNamespace(grounding_chunks=chunks))],
        )

        result = gemini.extract_content(response)

        assert result.text == "answer"
        assert [(c.uri, c.title) for c in result.citations] == [
            ("https://a.example", "A"),
            ("https://b.example", "https://b.example"),
        ]

    def test_extract_without_metadata(self, gemini):
        result = gemini.extract_content(SimpleNamespace(text=None, candidates=None))
        assert result.text == ""
        assert result.citations is None


@pytest.fixture
def openai_llm():
    pytest.importorskip("openai")
    from riskchat.llm import OpenAI

    return OpenAI(api_key="sk-test")


class TestOpenAI:
    def test_build_messages(self, openai_llm):
        history = [
            Turn(role="user", parts=[TextPart(text="first")]),
            Turn(role="model", parts=[TextPart(text="answer")]),
        ]
        request = make_request(
            RequestMode.FOLLOW_UP,
            "next",
            history,
            extra_parts=[InlineDataPart(inline_data=InlineData(mime_type="image/png", data=PNG_B64))],
        )
        messages = openai_llm.build_messages(request)

        assert [m["role"] for m in messages] == ["system", "user", "assistant", "user"]
        assert messages[0]["content"] == "guidance"
        assert messages[2]["content"] == "answer"
        assert messages[3]["content"][0] == {"type": "text", "text": "next"}
        assert messages[3]["content"][1]["image_url"]["url"] == f"data:image/png;base64,{PNG_B64}"

    def test_content_conversion(self, openai_llm):
        parts = [
            InlineDataPart(inline_data=InlineData(mime_type="application/pdf", data="AAE=")),
            InlineDataPart(inline_data=InlineData(mime_type="audio/mpeg", data="AAE=")),
            InlineDataPart(inline_data=InlineData(mime_type="video/mp4", data="AAE=")),
        ]
        content = openai_llm._to_content(parts)
        assert content[0]["type"] == "file"
        assert content[1] == {"type": "input_audio", "input_audio": {"data": "AAE=", "format": "mp3"}}
        assert content[2]["type"] == "text"

    def test_analysis_requests_json(self, openai_llm):
        openai_llm.client = MagicMock()
        openai_llm.client.chat.completions.create.return_value = SimpleNamespace(
            choices=[SimpleNamespace(message=SimpleNamespace(content='{"riskLevel": "LOW"}'))]
        )

        response = openai_llm.generate(make_request())

        kwargs = openai_llm.client.chat.completions.create.call_args.kwargs
        assert kwargs["response_format"] == {"type": "json_object"}
        assert response.text == '{"riskLevel": "LOW"}'

    def test_connection_error_mapping(self, openai_llm):
        import httpx
        import openai

        openai_llm.client = MagicMock()
        openai_llm.client.chat.completions.create.side_effect = openai.APIConnectionError(
            request=httpx.Request("POST", "https://api.openai.com/v1/chat/completions")
        )
        with pytest.raises(NetworkFailure):
            openai_llm.generate(make_request(RequestMode.FOLLOW_UP))


@pytest.fixture
def anthropic_llm():
    pytest.importorskip("anthropic")
    from riskchat.llm import Anthropic

    return Anthropic(api_key="sk-ant-test")


class TestAnthropic:
    def test_build_messages(self, anthropic_llm):
        history = [
            Turn(role="user", parts=[TextPart(text="first")]),
            Turn(role="model", parts=[TextPart(text="answer")]),
        ]
        request = make_request(
            RequestMode.FOLLOW_UP,
            "next",
            history,
            extra_parts=[InlineDataPart(inline_data=InlineData(mime_type="application/pdf", data="AAE="))],
        )
        messages = anthropic_llm.build_messages(request)

        assert [m["role"] for m in messages] == ["user", "assistant", "user"]
        assert messages[2]["content"][1] == {
            "type": "document",
            "source": {"type": "base64", "media_type": "application/pdf", "data": "AAE="},
        }

    def test_system_guidance_is_separate(self, anthropic_llm):
        anthropic_llm.client = MagicMock()
        anthropic_llm.client.messages.create.return_value = SimpleNamespace(
            content=[SimpleNamespace(type="text", text='{"riskLevel": "SAFE"}')]
        )

        response = anthropic_llm.generate(make_request())

        kwargs = anthropic_llm.client.messages.create.call_args.kwargs
        assert kwargs["system"] == "guidance"
        assert kwargs["max_tokens"] == 4096
        assert response.text == '{"riskLevel": "SAFE"}'


@pytest.fixture
def ollama_llm():
    pytest.importorskip("ollama")
    from riskchat.llm import Ollama

    return Ollama()


class TestOllama:
    def test_images_travel_with_the_user_message(self, ollama_llm):
        request = make_request(
            extra_parts=[
                InlineDataPart(inline_data=InlineData(mime_type="image/png", data=PNG_B64)),
                InlineDataPart(inline_data=InlineData(mime_type="audio/webm", data="AAE=")),
            ]
        )
        messages = ollama_llm.build_messages(request)

        assert messages[0] == {"role": "system", "content": "guidance"}
        assert messages[-1] == {"role": "user", "content": "Is this a scam?", "images": [PNG_B64]}

    def test_analysis_requests_json_format(self, ollama_llm):
        ollama_llm.client = MagicMock()
        ollama_llm.client.chat.return_value = {"message": {"content": "{}"}}

        response = ollama_llm.generate(make_request())

        assert ollama_llm.client.chat.call_args.kwargs["format"] == "json"
        assert response.text == "{}"

    def test_unreachable_server(self, ollama_llm):
        ollama_llm.client = MagicMock()
        ollama_llm.client.chat.side_effect = ConnectionError("refused")
        with pytest.raises(NetworkFailure):
            ollama_llm.generate(make_request(RequestMode.FOLLOW_UP))
