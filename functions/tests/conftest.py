"""Pytest configuration and shared fixtures for Myers Construct tests."""

import os
import sys
import pytest
from unittest.mock import AsyncMock, MagicMock


# ============================================================================
# Ensure local imports work (agents/, models/, services/, config/)
# ============================================================================
#
# The codebase uses absolute imports like `from models...` / `from agents...`,
# so `functions/` must be importable as the top-level module root.
PROJECT_ROOT = os.path.abspath(os.path.join(os.path.dirname(__file__), ".."))
if PROJECT_ROOT not in sys.path:
    sys.path.insert(0, PROJECT_ROOT)


from tests.fixtures.mock_estimate_data import HARBOR_RENO_PROJECT  # noqa: E402
from tests.fixtures.stub_generation import StubGenerationProvider  # noqa: E402


# ============================================================================
# Firebase Mocks
# ============================================================================

@pytest.fixture
def mock_firestore_client():
    """Mock Firestore client."""
    client = MagicMock()

    # Mock collection and document methods
    collection_mock = MagicMock()
    document_mock = MagicMock()

    # Set up chain: client.collection().document()
    client.collection.return_value = collection_mock
    collection_mock.document.return_value = document_mock
    document_mock.id = "est-generated-id"

    # Mock async methods
    document_mock.get = AsyncMock(return_value=MagicMock(
        exists=True,
        id="est-123",
        to_dict=lambda: {"userId": "user-123", "status": "draft"}
    ))
    document_mock.set = AsyncMock()
    document_mock.update = AsyncMock()

    # Query chain: collection().where().where().order_by().limit().get()
    query_mock = MagicMock()
    collection_mock.where.return_value = query_mock
    query_mock.where.return_value = query_mock
    query_mock.order_by.return_value = query_mock
    query_mock.limit.return_value = query_mock
    query_mock.start_after.return_value = query_mock
    query_mock.get = AsyncMock(return_value=[])

    return client


@pytest.fixture
def mock_firestore_service(mock_firestore_client):
    """FirestoreService with mocked client."""
    from services.firestore_service import FirestoreService

    return FirestoreService(db=mock_firestore_client)


# ============================================================================
# LLM Mocks
# ============================================================================

@pytest.fixture
def mock_chat_openai():
    """Mock ChatOpenAI client."""
    mock = MagicMock()
    mock.ainvoke = AsyncMock(return_value=MagicMock(
        content="Mock response content",
        usage_metadata={"total_tokens": 100},
        response_metadata={"token_usage": {"total_tokens": 100}}
    ))
    mock.bind_tools.return_value = mock
    return mock


@pytest.fixture
def mock_llm_service(mock_chat_openai):
    """LLMService with a mocked ChatOpenAI client."""
    from services.llm_service import LLMService

    service = LLMService(model="gpt-4o", temperature=0.2, api_key="test-api-key", max_tokens=8192)
    service._client = mock_chat_openai
    return service


@pytest.fixture
def stub_provider():
    """Stub provider returning the Harbor Reno estimate."""
    return StubGenerationProvider()


# ============================================================================
# Collaborator Mocks
# ============================================================================

@pytest.fixture
def mock_market_client():
    """Market client that finds nothing."""
    mock = MagicMock()
    mock.ground_materials = AsyncMock(return_value=[])
    return mock


@pytest.fixture
def mock_history_service():
    """History service whose ledger read yields no won bids."""
    from services.history_service import HistoryService

    service = HistoryService(ledger=MagicMock())
    service.fetch_won_bids = AsyncMock(return_value=[])
    return service


@pytest.fixture
def test_settings():
    """Settings with short timeouts for pipeline tests."""
    from config.settings import Settings

    return Settings(
        llm_model="gpt-4o",
        enable_web_search=False,
        identification_timeout_seconds=1.0,
        market_timeout_seconds=1.0,
        history_timeout_seconds=1.0,
        synthesis_timeout_seconds=1.0,
        _openai_api_key="test-api-key",
        _serp_api_key="test-serp-key",
    )


# ============================================================================
# Sample Data Fixtures
# ============================================================================

@pytest.fixture
def sample_project_request():
    """Harbor Reno project request, no attachment."""
    from models.project import ProjectRequest

    return ProjectRequest(**HARBOR_RENO_PROJECT)


# ============================================================================
# Environment Setup
# ============================================================================

@pytest.fixture(autouse=True)
def emulator_environment(monkeypatch):
    """Keep secret lookups on environment variables and start without a shared SerpAPI client."""
    from config.secrets import clear_secret_cache

    monkeypatch.setenv("FUNCTIONS_EMULATOR", "true")
    monkeypatch.delenv("SERP_API_KEY", raising=False)
    monkeypatch.delenv("SERPAPI_KEY", raising=False)
    monkeypatch.setattr("services.serpapi_service._default_service", None)
    clear_secret_cache()
    yield
    clear_secret_cache()

