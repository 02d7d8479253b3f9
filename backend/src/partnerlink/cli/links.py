"""CLI commands for partner links.

Usage:
    partnerlink links import-agents FILE [--partner-id ID]
    partnerlink links show PARTNER_ID (--agent ID | --client ID)
    partnerlink links pending [--partner-id ID] [--limit N]
"""

import asyncio
import csv
import sys

import click

from ..api.deps import get_link_store, get_resolver
from ..linking import LinkingError

REQUIRED_COLUMNS = {"partner_agent_id", "email", "first_name", "last_name"}


@click.group(name="links")
def cli():
    """Partner link commands."""
    pass


@cli.command(name="import-agents")
@click.argument("csv_file", type=click.Path(exists=True, dir_okay=False))
@click.option(
    "--partner-id",
    type=str,
    default=None,
    help="Partner for rows without a partner_id column",
)
@click.option("--verbose", "-v", is_flag=True, help="Print every row outcome")
def import_agents(csv_file: str, partner_id: str | None, verbose: bool):
    """Link partner agents in bulk from a CSV file.

    Columns: partner_id (optional with --partner-id), partner_agent_id,
    email, first_name, last_name. Rows already linked are left as they
    are, so the import can be re-run safely.

    Examples:

        partnerlink links import-agents agents.csv --partner-id acme
    """
    with open(csv_file, newline="", encoding="utf-8") as f:
        reader = csv.DictReader(f)
        columns = set(reader.fieldnames or [])
        missing = REQUIRED_COLUMNS - columns
        if "partner_id" not in columns and partner_id is None:
            missing.add("partner_id")
        if missing:
            click.echo(f"Error: missing columns: {', '.join(sorted(missing))}", err=True)
            sys.exit(1)
        rows = list(reader)

    async def _import():
        resolver = get_resolver()
        counts = {"created": 0, "existing": 0, "failed": 0}
        for line_no, row in enumerate(rows, start=2):
            row_partner = (row.get("partner_id") or partner_id or "").strip()
            agent_id = (row.get("partner_agent_id") or "").strip()
            if not row_partner or not agent_id or not (row.get("email") or "").strip():
                counts["failed"] += 1
                click.echo(f"  line {line_no}: missing partner, agent id or email", err=True)
                continue
            try:
                result = await resolver.link_agent(
                    row_partner,
                    agent_id,
                    email=row["email"],
                    first_name=row["first_name"],
                    last_name=row["last_name"],
                )
            except LinkingError as e:
                counts["failed"] += 1
                click.echo(f"  line {line_no}: {e.code}: {e.message}", err=True)
                continue

            counts["existing" if result.existing_account else "created"] += 1
            if verbose:
                click.echo(
                    f"  {row_partner}/{agent_id} -> {result.outfit_user_id}"
                    f"{' (existing)' if result.existing_account else ''}"
                )
        return counts

    counts = asyncio.run(_import())
    click.echo(
        f"Imported {len(rows)} rows: {counts['created']} new accounts, "
        f"{counts['existing']} existing accounts, {counts['failed']} failed"
    )
    if counts["failed"]:
        sys.exit(1)


@cli.command(name="show")
@click.argument("partner_id")
@click.option("--agent", "partner_agent_id", default=None, help="Partner agent id")
@click.option("--client", "partner_client_id", default=None, help="Partner client id")
def show_link(partner_id: str, partner_agent_id: str | None, partner_client_id: str | None):
    """Show how a partner agent or client is linked."""
    if (partner_agent_id is None) == (partner_client_id is None):
        click.echo("Error: pass exactly one of --agent or --client", err=True)
        sys.exit(1)

    async def _show():
        store = get_link_store()
        if partner_agent_id is not None:
            return await store.get_agent_link(partner_id, partner_agent_id)
        return await store.get_client_link(partner_id, partner_client_id)

    link = asyncio.run(_show())
    if link is None:
        click.echo("Not linked.")
        sys.exit(1)

    if partner_agent_id is not None:
        click.echo(f"Agent {partner_id}/{link.partner_agent_id}")
        click.echo(f"  Account: {link.internal_account_id}")
        click.echo(f"  Existing account: {'yes' if link.existing_account else 'no'}")
        click.echo(f"  Linked at: {link.created_at.isoformat()}")
        return

    click.echo(f"Client {partner_id}/{link.partner_client_id} (agent {link.partner_agent_id})")
    click.echo("  Status: ", nl=False)
    click.secho(link.status.value, fg="green" if link.is_linked else "yellow")
    if link.is_linked:
        click.echo(f"  Account: {link.internal_account_id}")
        click.echo(f"  Action: {link.action.value}")
        click.echo(f"  Confidence: {link.confidence:.4f}")
    else:
        _echo_candidates(link.candidates)


@cli.command(name="pending")
@click.option("--partner-id", type=str, default=None, help="Filter by partner")
@click.option("--limit", type=int, default=50, help="Maximum links to show")
def list_pending(partner_id: str | None, limit: int):
    """List clients awaiting disambiguation."""
    links = asyncio.run(get_link_store().list_pending_clients(partner_id, limit=limit))
    if not links:
        click.echo("No pending disambiguations.")
        return

    click.echo(f"\nPending disambiguations ({len(links)} found)")
    click.echo("=" * 70)
    for link in links:
        info = link.client_info
        click.echo(f"\n{link.partner_id}/{link.partner_client_id}: {info.first_name} {info.last_name}")
        click.echo(f"  Since: {link.created_at.isoformat()}")
        _echo_candidates(link.candidates)


def _echo_candidates(candidates) -> None:
    click.echo(f"  Candidates ({len(candidates)}):")
    for candidate in candidates:
        click.echo(
            f"    {candidate.match_confidence:.4f}  {candidate.internal_account_id}  "
            f"{candidate.first_name} {candidate.last_name}"
            f"{'  <' + candidate.email + '>' if candidate.email else ''}"
        )
