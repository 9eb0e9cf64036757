"""Tests for the ``clientlink link`` commands."""

import json
from unittest.mock import AsyncMock

import pytest
from click.testing import CliRunner

from clientlink.cli import main
from clientlink.models import LinkingStatus
from clientlink.storage.memory import InMemoryLinkingStore


@pytest.fixture
def store(clients, make_document) -> InMemoryLinkingStore:
    return InMemoryLinkingStore(
        clients=clients,
        documents=[
            make_document("doc-1", participants=["someone@gmail.com"], title="Kickoff"),
            make_document("doc-2", participants=["bob@northwind.net"], title="Planning"),
        ],
    )


@pytest.fixture
def runner(monkeypatch, make_machine, configured_settings) -> CliRunner:
    """CLI runner wired to an in-memory state machine."""
    machine = make_machine()
    monkeypatch.setattr("clientlink.cli.link.get_state_machine", lambda: machine)
    monkeypatch.setattr("clientlink.cli.link.close_state_machine", AsyncMock())
    monkeypatch.setattr("clientlink.cli.link.close_db", AsyncMock())
    monkeypatch.setattr("clientlink.cli.link.get_settings", lambda: configured_settings)
    monkeypatch.setattr("clientlink.logging.setup_logging", lambda: None)
    return CliRunner()


class TestResolveCommand:
    """Tests for ``link resolve``."""

    def test_resolves_and_escalates(self, runner, telegram):
        result = runner.invoke(main, ["link", "resolve", "doc-1"])

        assert result.exit_code == 0
        assert "needs_human" in result.output
        assert "Escalation: sent" in result.output
        assert len(telegram.sent) == 1

    def test_missing_document_exits_1(self, runner):
        result = runner.invoke(main, ["link", "resolve", "missing"])

        assert result.exit_code == 1
        assert "Document not found: missing" in result.output


class TestShowCommand:
    """Tests for ``link show``."""

    def test_prints_history(self, runner):
        runner.invoke(main, ["link", "resolve", "doc-2"])

        result = runner.invoke(main, ["link", "show", "doc-2"])

        assert result.exit_code == 0
        payload = json.loads(result.output)
        assert payload["clientId"] == "client-northwind"
        assert payload["linkingStatus"] == LinkingStatus.AUTO_LINKED.value


class TestReconcileCommand:
    """Tests for ``link reconcile``."""

    def test_dry_run(self, runner, store):
        result = runner.invoke(main, ["link", "reconcile", "--owner", "owner@acme.com"])

        assert result.exit_code == 0
        assert "dry run" in result.output
        assert "Total: 2  Matched: 1  Unmatched: 1  Executed: 0" in result.output

    def test_execute(self, runner, store):
        result = runner.invoke(
            main,
            ["link", "reconcile", "--owner", "owner@acme.com", "--execute", "--strategy", "participants_email"],
        )

        assert result.exit_code == 0
        assert "Executed: 1" in result.output

    def test_rejects_unknown_strategy(self, runner):
        result = runner.invoke(
            main, ["link", "reconcile", "--owner", "owner@acme.com", "--strategy", "magic"]
        )

        assert result.exit_code == 2
