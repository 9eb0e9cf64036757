"""Pytest fixtures for API tests."""

import pytest
from fastapi.testclient import TestClient

from clientlink.config import get_settings
from clientlink.linking.state_machine import get_state_machine
from clientlink.main import app
from clientlink.models import LinkingStatus
from clientlink.storage.memory import InMemoryLinkingStore


@pytest.fixture
def store(clients, make_document) -> InMemoryLinkingStore:
    """Store seeded with one unmatched and one escalated document."""
    return InMemoryLinkingStore(
        clients=clients,
        documents=[
            make_document("doc-1", participants=["someone@gmail.com"], title="Kickoff"),
            make_document(
                "doc-2",
                participants=["bob@northwind.net"],
                title="Northwind planning",
            ),
            make_document(
                "doc-escalated",
                title="Mystery call",
                linking_status=LinkingStatus.NEEDS_HUMAN,
            ),
        ],
    )


@pytest.fixture
def machine(make_machine):
    return make_machine()


@pytest.fixture
def client(machine, configured_settings):
    """Test client with the state machine and settings overridden."""
    app.dependency_overrides[get_state_machine] = lambda: machine
    app.dependency_overrides[get_settings] = lambda: configured_settings
    with TestClient(app) as test_client:
        yield test_client
    app.dependency_overrides.clear()
