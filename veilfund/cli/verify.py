"""
veilfund/cli/verify.py

veilfund verify: check a fund event ledger.

Exit codes:
    0  Ledger fully valid (chain + signatures + schema)
    1  Ledger has violations
    2  Error (file missing, malformed JSON)
"""

import json
import sys
from pathlib import Path

import click

from veilfund.core.exceptions import LedgerError
from veilfund.events.replay import ReplaySummary, replay_events


@click.command(name="verify")
@click.argument("ledger", type=click.Path(exists=False))
@click.option(
    "--format", "fmt",
    type=click.Choice(["human", "json"], case_sensitive=False),
    default="human",
    show_default=True,
    help="Output format.",
)
@click.option(
    "--quiet",
    is_flag=True,
    default=False,
    help="Suppress all output. Use exit code only (0=valid, 1=invalid, 2=error).",
)
def verify_command(ledger: str, fmt: str, quiet: bool) -> None:
    """
    Verify a fund event ledger.

    LEDGER is the path to an events.jsonl file.
    """
    ledger_path = Path(ledger)
    if not ledger_path.exists():
        _emit_error(f"Ledger not found: {ledger}", fmt, quiet)
        sys.exit(2)

    try:
        summary = replay_events(ledger_path)
    except LedgerError as e:
        _emit_error(str(e), fmt, quiet)
        sys.exit(2)

    if not quiet:
        if fmt == "json":
            click.echo(json.dumps({"veilfund_verify": {"ledger": str(ledger_path), **summary.to_dict()}}, indent=2))
        else:
            _output_human(summary, ledger_path)

    sys.exit(0 if summary.chain_valid else 1)


def _output_human(summary: ReplaySummary, ledger_path: Path) -> None:
    bar = "─" * 60
    click.echo()
    click.echo(f"  Ledger       {ledger_path}")
    click.echo(f"  Events       {summary.total_events:,}")
    click.echo(f"  Funds        {', '.join(summary.fund_ids) or '-'}")
    click.echo(f"  Signatures   {summary.valid_signatures:,} valid, {summary.invalid_signatures:,} invalid")
    if summary.by_type:
        counts = "  ".join(f"{k}: {v}" for k, v in sorted(summary.by_type.items()))
        click.echo(f"  Event types  {counts}")
    click.echo()

    if summary.violations:
        click.echo(f"  {bar}")
        for v in summary.violations:
            click.echo(f"  {v.at_sequence:>6}  {v.violation_type:<18}  {v.detail}")
        click.echo(f"  {bar}")
        click.echo(f"  INVALID  ·  {len(summary.violations)} violation(s)")
    else:
        click.echo("  VALID  ·  0 violations")
    click.echo()


def _emit_error(msg: str, fmt: str, quiet: bool) -> None:
    if quiet:
        return
    if fmt == "json":
        click.echo(json.dumps({"veilfund_verify": {"error": msg, "chain_valid": False}}))
    else:
        click.echo(f"\n  ERROR: {msg}\n", err=True)
