"""CLI commands for client linking.

Usage:
    clientlink link resolve DOC_ID
    clientlink link escalate DOC_ID
    clientlink link show DOC_ID
    clientlink link reconcile --owner EMAIL [--execute] [--strategy S] [--limit N]
"""

import asyncio
import json
import sys
from typing import Any, Awaitable, Callable

import click

from ..config import get_settings
from ..db import close_db
from ..errors import LinkingError, NotFoundError
from ..linking.index import CandidateIndex
from ..linking.reconcile import BatchReconciler, MatchingStrategy, ReconcileMode
from ..linking.state_machine import (
    LinkingStateMachine,
    close_state_machine,
    get_state_machine,
)


def _run(operation: Callable[[LinkingStateMachine], Awaitable[Any]]) -> Any:
    """Run ``operation`` against the configured state machine, then clean up."""

    async def _main():
        machine = get_state_machine()
        try:
            return await operation(machine)
        finally:
            await close_state_machine()
            await close_db()

    try:
        return asyncio.run(_main())
    except LinkingError as e:
        click.echo(f"Error: {e}", err=True)
        sys.exit(1)


@click.group(name="link")
def cli():
    """Client linking commands."""
    pass


@cli.command(name="resolve")
@click.argument("document_id")
def resolve_command(document_id: str):
    """Run deterministic, AI and escalation tiers for one document."""
    outcome = _run(lambda machine: machine.resolve(document_id))

    click.echo(f"Document: {outcome.document_id}")
    click.echo("  Status: ", nl=False)
    click.secho(outcome.status.value, fg="green" if outcome.client_id else "yellow")
    if outcome.client_id:
        click.echo(f"  Client: {outcome.client_id}")
    if outcome.confidence is not None:
        click.echo(f"  Confidence: {outcome.confidence:.2f}")
    if outcome.reason:
        click.echo(f"  Reason: {outcome.reason}")
    if outcome.escalation is not None:
        click.echo(f"  Escalation: {outcome.escalation.status.value} ({outcome.escalation.reason})")


@cli.command(name="escalate")
@click.argument("document_id")
def escalate_command(document_id: str):
    """Send the Telegram alert for one document."""
    outcome = _run(lambda machine: machine.escalate(document_id))
    click.echo(f"{outcome.status.value}: {outcome.reason}")


@cli.command(name="show")
@click.argument("document_id")
def show_command(document_id: str):
    """Print a document's linking status and history as JSON."""

    async def _show(machine: LinkingStateMachine):
        document = await machine.store.get_document(document_id)
        if document is None:
            raise NotFoundError(document_id)
        return document

    document = _run(_show)
    payload = document.model_dump(
        mode="json",
        by_alias=True,
        include={"id", "title", "linking_status", "client_id", "last_link_attempt_at", "linking_history"},
    )
    click.echo(json.dumps(payload, indent=2))


@cli.command(name="reconcile")
@click.option("--owner", "owner_email", required=True, help="Account owner email")
@click.option(
    "--execute",
    is_flag=True,
    help="Apply the matches (default is a dry run)",
)
@click.option(
    "--strategy",
    type=click.Choice([s.value for s in MatchingStrategy]),
    default=MatchingStrategy.BOTH.value,
    help="Evidence used for matching",
)
@click.option(
    "--limit",
    type=int,
    default=None,
    help="Maximum documents to evaluate",
)
def reconcile_command(owner_email: str, execute: bool, strategy: str, limit: int | None):
    """Match an owner's unlinked documents against their clients.

    Examples:

        # Preview matches
        clientlink link reconcile --owner owner@example.com

        # Apply email-based matches only
        clientlink link reconcile --owner owner@example.com --execute --strategy participants_email
    """
    settings = get_settings()
    batch_limit = settings.clamp_batch_limit(limit)

    async def _reconcile(machine: LinkingStateMachine):
        documents = await machine.store.list_unlinked(owner_email, batch_limit)
        clients = await machine.store.list_clients(owner_email)
        reconciler = BatchReconciler(owner_email, matcher=machine.matcher)
        return await reconciler.reconcile(
            documents,
            CandidateIndex.build(clients),
            mode=ReconcileMode.EXECUTE if execute else ReconcileMode.DRY_RUN,
            strategy=MatchingStrategy(strategy),
            apply=machine.apply_batch_match,
        )

    report = _run(_reconcile)

    click.echo(f"\nBatch Reconciliation ({'dry run' if report.dry_run else 'execute'})")
    click.echo("=" * 70)

    for match in report.matched:
        click.echo(f"\n{match.document_title} [{match.document_id}]")
        click.echo(f"  -> {match.client_name or match.client_id} ({match.label}, {match.confidence:.2f})")
        click.echo(f"  {match.reason}")

    if report.unmatched:
        click.echo("\nUnmatched:")
        for doc in report.unmatched:
            click.echo(f"  {doc.title} [{doc.id}]")

    for result in report.execution_results or []:
        if not result.success:
            click.secho(f"  Failed {result.id}: {result.error}", fg="red")

    summary = report.summary
    click.echo("\n" + "=" * 70)
    click.echo(
        f"Total: {summary.total}  Matched: {summary.matched}  "
        f"Unmatched: {summary.unmatched}  Executed: {summary.executed}"
    )
