"""
veilfund/cli/simulate.py

veilfund simulate: build an in-memory fund from a scenario file, run its
steps and print the resulting state.

Exit codes:
    0  Every step succeeded
    1  At least one step was rejected
    2  Configuration error
"""

import json
import logging
import sys
from typing import Optional

import click

from veilfund.config import load_config
from veilfund.core.crypto import SigningKey
from veilfund.core.exceptions import ConfigurationError
from veilfund.simulation import Simulation, build_environment


@click.command(name="simulate")
@click.argument("scenario", type=click.Path(exists=False))
@click.option(
    "--ledger",
    "ledger_root",
    type=click.Path(),
    default=None,
    metavar="DIR",
    help="Write each fund's signed events to DIR/<fund_id>/events.jsonl.",
)
@click.option(
    "--key",
    "key_path",
    type=click.Path(exists=True, dir_okay=False),
    default=None,
    metavar="PEM",
    help="Ed25519 private key that signs fund events (default: a fresh key).",
)
@click.option(
    "--log-level",
    type=click.Choice(["DEBUG", "INFO", "WARNING", "ERROR"], case_sensitive=False),
    default="WARNING",
    show_default=True,
)
def simulate_command(
    scenario:    str,
    ledger_root: Optional[str],
    key_path:    Optional[str],
    log_level:   str,
) -> None:
    """
    Run SCENARIO (a YAML file) against an in-memory fund.
    """
    logging.basicConfig(
        level=  getattr(logging, log_level.upper()),
        format= "%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    try:
        config = load_config(scenario)
        key = SigningKey.from_file(key_path) if key_path else None
        env = build_environment(config, ledger_root=ledger_root, signing_key=key)
    except (ConfigurationError, ValueError) as e:
        click.echo(f"\n  ERROR: {e}\n", err=True)
        sys.exit(2)

    simulation = Simulation(env)
    results = simulation.run(config.steps)
    click.echo(json.dumps(simulation.report(), indent=2, sort_keys=True))
    sys.exit(0 if all(r.ok for r in results) else 1)
