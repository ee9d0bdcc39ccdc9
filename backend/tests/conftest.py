import json

import pytest
from fastapi.testclient import TestClient
from dotenv import load_dotenv
from unittest.mock import AsyncMock

# Load the test environment FIRST, before any chathub imports, so the
# module-level Settings instance sees it.
load_dotenv(dotenv_path="backend/.env.test")

from chathub.main import app  # noqa: E402
from chathub.models.conversation import BOT, Chat, ChatMessage  # noqa: E402
from chathub.models.tenant import TenantContext  # noqa: E402
from chathub.models.workflow import WorkflowGraph  # noqa: E402


def _graph_dict(blocks, connections):
    return {
        "blocks": blocks,
        "connections": [
            {"from": c[0], "to": c[1], **({"fromOptionIndex": c[2]} if len(c) > 2 else {})}
            for c in connections
        ],
    }


@pytest.fixture
def make_graph():
    """
    Build a WorkflowGraph from block dicts and (from, to[, optionIndex]) tuples.
    """
    def _make(blocks, connections=()):
        return WorkflowGraph.model_validate(_graph_dict(blocks, connections))
    return _make


@pytest.fixture
def sales_support_workflow():
    """start -> ask -> (Sales|Support) -> end blocks, stored the way the editor saves it."""
    return json.dumps(_graph_dict(
        [
            {"id": "start", "type": "start", "message": "Welcome!"},
            {"id": "ask", "type": "userResponse"},
            {"id": "menu", "type": "option", "message": "Please choose one", "options": ["Sales", "Support"]},
            {"id": "sales_end", "type": "end", "message": "Sales will contact you."},
            {"id": "support_end", "type": "end", "message": "Support will contact you."},
        ],
        [("start", "ask"), ("ask", "menu"), ("menu", "sales_end", 0), ("menu", "support_end", 1)],
    ))


@pytest.fixture
def make_tenant():
    def _make(**overrides):
        fields = {
            "id": "t1",
            "name": "Acme",
            "link": "https://acme.example.com",
            "chatbot_code": "acme-bot",
            "workflow_raw": None,
            "plan_allows_ai": True,
            "credit_count": 10,
            "daily_token_limit": None,
            "preferences_allow_ai": True,
            "language": "en",
            "owner_id": "owner1",
            "owner_notify_telegram": True,
            "staff_ids": ["staff1", "staff2"],
        }
        fields.update(overrides)
        return TenantContext(**fields)
    return _make


@pytest.fixture
def make_chat():
    def _make(**overrides):
        fields = {
            "id": "chat1",
            "tenant_id": "t1",
            "email": "jane@example.com",
            "name": "jane",
            "messages": [ChatMessage(sender=BOT, text="Hi! What is your name?")],
            "ai_enabled": True,
        }
        fields.update(overrides)
        return Chat(**fields)
    return _make


@pytest.fixture(scope="function")
def test_client(mocker):
    """
    Provides a TestClient for API integration tests without touching
    MongoDB, Redis or any outbound service during startup and shutdown.
    """
    mocker.patch("chathub.utils.lifecycle.db_service.create_indexes", new_callable=AsyncMock)
    mocker.patch("chathub.utils.lifecycle.runtime_config.refresh", new_callable=AsyncMock)
    mocker.patch("chathub.utils.lifecycle.notification_service.cleanup", new_callable=AsyncMock)
    mocker.patch("chathub.utils.lifecycle.ai_service.cleanup", new_callable=AsyncMock)
    mocker.patch("chathub.utils.lifecycle.usage_service.cleanup", new_callable=AsyncMock)
    mocker.patch("chathub.utils.lifecycle.cache_service.close", new_callable=AsyncMock)
    mocker.patch("chathub.utils.lifecycle.db_service.client")

    # The app's lifespan (startup/shutdown events) is managed by the TestClient
    with TestClient(app) as client:
        yield client
