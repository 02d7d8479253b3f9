"""CLI entry points for partnerlink.

Provides command-line tools for:
- Bulk agent linking and link inspection
- Scoring a client profile against the account directory
- Running the API server
"""

import click

from .. import __version__
from .links import cli as links_cli
from .score import score as score_cmd
from .serve import serve


@click.group()
@click.version_option(version=__version__, prog_name="partnerlink")
def main():
    """partnerlink - partner identity linking.

    Command-line tools for managing partner agent and client links.
    """
    pass


main.add_command(links_cli, name="links")
main.add_command(score_cmd, name="score")
main.add_command(serve, name="serve")


if __name__ == "__main__":
    main()
