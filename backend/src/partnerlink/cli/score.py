"""CLI command for scoring a client profile against the directory.

Usage:
    partnerlink score --first-name NAME --last-name NAME [--email EMAIL]

Read-only: nothing is linked or created.
"""

import asyncio

import click
from pydantic import ValidationError

from ..api.deps import get_link_store
from ..config import get_settings
from ..linking import ConfidenceScorer
from ..models import ClientInfo


@click.command(name="score")
@click.option("--first-name", required=True, help="Client first name")
@click.option("--last-name", required=True, help="Client last name")
@click.option("--email", default=None, help="Client email")
@click.option("--verbose", "-v", is_flag=True, help="Show scoring signals")
def score(first_name: str, last_name: str, email: str | None, verbose: bool):
    """Show which accounts a client profile would match.

    Runs the same blocking and scoring pass as verify-customer and
    prints the decision it would make.

    Examples:

        partnerlink score --first-name John --last-name Doe --email john@example.com
    """
    try:
        info = ClientInfo(first_name=first_name, last_name=last_name, email=email)
    except ValidationError as e:
        raise click.BadParameter(str(e)) from e

    scorer = ConfidenceScorer.from_settings(get_settings())

    async def _score():
        accounts = await get_link_store().find_candidate_accounts(info)
        return accounts, scorer.rank(info, accounts)

    accounts, candidates = asyncio.run(_score())
    decision = scorer.decide(candidates)

    click.echo(f"Scored {len(accounts)} accounts, {len(candidates)} above threshold")
    click.echo("Decision: ", nl=False)
    click.secho(
        decision.value,
        fg={"auto_link": "green", "disambiguate": "yellow", "create": "blue"}[decision.value],
    )
    for candidate in candidates:
        click.echo(
            f"  {candidate.match_confidence:.4f}  {candidate.internal_account_id}  "
            f"{candidate.first_name} {candidate.last_name}"
        )
        if verbose:
            for key, value in candidate.signals.items():
                click.echo(f"      {key}: {value}")
