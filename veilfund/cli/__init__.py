"""
veilfund/cli/__init__.py

VeilFund CLI: root Click command group.

Registered in pyproject.toml as:

    [project.scripts]
    veilfund = "veilfund.cli:cli"
"""

import click

from veilfund.cli.simulate import simulate_command
from veilfund.cli.verify import verify_command


@click.group()
@click.version_option(package_name="veilfund")
def cli() -> None:
    """
    VeilFund: confidential index-fund settlement engine.

    \b
    Commands:
      verify    Verify a fund event ledger (chain, signatures, schema).
      simulate  Run a scripted scenario against an in-memory fund.

    \b
    Quick start:
      veilfund simulate examples/two_depositors.yaml --ledger .veilfund
      veilfund verify .veilfund/fund-1/events.jsonl
      veilfund verify events.jsonl --quiet && echo "clean"
    """
    pass


cli.add_command(verify_command)
cli.add_command(simulate_command)
