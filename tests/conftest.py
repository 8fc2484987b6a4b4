"""
Core pytest configuration and fixtures for RiskChat testing.

This module provides shared test fixtures, configuration, and utilities
that support the pillar-based testing architecture.
"""

import base64
import json
import tempfile
from pathlib import Path
from typing import List
from unittest.mock import MagicMock

import pytest
from riskchat.attachments import AttachmentStager, RawFile
from riskchat.engine import Orchestrator
from riskchat.history import ConversationHistory
from riskchat.i18n import Catalog
from riskchat.models import (
    AI_SENDER,
    USER_SENDER,
    AnalysisResult,
    AttachmentRef,
    Conversation,
    Message,
    ProviderResponse,
    RiskLevel,
)
from riskchat.store import InMemory

PNG_BYTES = b"\x89PNG\r\n\x1a\n" + b"\x00" * 32

# ===== TEST DATA FIXTURES =====


@pytest.fixture
def translator() -> Catalog:
    """English catalog, so assertions can use readable strings."""
    return Catalog("en")


@pytest.fixture
def seed_message(translator) -> Message:
    return Message.seed(translator.t("chat.initialSystemMessage"))


@pytest.fixture
def image_attachment() -> AttachmentRef:
    return AttachmentRef(
        name="photo.png",
        mime_type="image/png",
        inline_data=base64.b64encode(PNG_BYTES).decode("ascii"),
        preview_ref="blob:riskchat/1234",
    )


@pytest.fixture
def text_attachment() -> AttachmentRef:
    return AttachmentRef(name="notes.txt", mime_type="text/plain", text_content="call me back")


@pytest.fixture
def sample_messages(seed_message) -> List[Message]:
    """A finished two-turn exchange after the seed greeting."""
    return [
        seed_message,
        Message(sender=USER_SENDER, text="Is this SMS from my bank real?"),
        Message(
            sender=AI_SENDER,
            analysis=AnalysisResult(
                risk_level=RiskLevel.HIGH,
                explanation="The link points to a look-alike domain.",
                suggestions=["Do not click the link."],
            ),
        ),
        Message(sender=USER_SENDER, text="What should I do now?"),
        Message(sender=AI_SENDER, text="Call your bank using the number on your card."),
    ]


@pytest.fixture
def sample_conversation(sample_messages) -> Conversation:
    return Conversation(id="conv-001", turn_count=2, messages=sample_messages)


@pytest.fixture
def safe_verdict_json() -> str:
    return json.dumps(
        {"riskLevel": "SAFE", "explanation": "Nothing suspicious.", "suggestions": []}
    )


# ===== DIRECTORY FIXTURES =====


@pytest.fixture
def temp_dir():
    """Temporary directory for file-based tests."""
    with tempfile.TemporaryDirectory() as tmpdir:
        yield Path(tmpdir)


# ===== PILLAR FIXTURES =====


@pytest.fixture
def memory_store() -> InMemory:
    return InMemory()


@pytest.fixture
def history(memory_store, translator) -> ConversationHistory:
    return ConversationHistory(memory_store, translator, max_saved=10)


@pytest.fixture
def mock_llm(safe_verdict_json):
    """Mock provider answering every call with a SAFE verdict."""
    mock = MagicMock()
    mock.generate.return_value = ProviderResponse(text=safe_verdict_json)
    return mock


@pytest.fixture
def orchestrator(mock_llm, history, translator) -> Orchestrator:
    return Orchestrator(
        user_id="test_user",
        llm=mock_llm,
        history=history,
        translator=translator,
        stager=AttachmentStager(translator),
    )


@pytest.fixture
def png_file() -> RawFile:
    return RawFile("photo.png", "image/png", data=PNG_BYTES)


@pytest.fixture
def all_store_implementations(temp_dir):
    """All store implementations for contract testing."""
    from riskchat import store

    return [
        ("InMemory", store.InMemory()),
        ("File", store.File(str(temp_dir / "file_store"))),
        ("SQLite", store.SQLite(str(temp_dir / "test.db"))),
    ]


# ===== CONFIGURATION =====


def pytest_configure(config):
    """Pytest configuration."""
    config.addinivalue_line("markers", "integration: marks tests as integration tests")
    config.addinivalue_line("markers", "slow: marks tests as slow-running")


def pytest_collection_modifyitems(config, items):
    """Automatically mark tests based on location."""
    for item in items:
        if "integration" in str(item.fspath):
            item.add_marker(pytest.mark.integration)
