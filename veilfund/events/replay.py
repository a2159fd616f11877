"""
veilfund/events/replay.py

Offline verification of a JSONL event ledger.

Checks, per event, in order: schema, sequence, causal hash, signature.
All events of one file must belong to one fund.
"""

import json
from dataclasses import dataclass, field
from pathlib import Path
from typing import Dict, List

from veilfund.core.exceptions import LedgerError
from veilfund.events.models import FundEvent


@dataclass
class Violation:
    at_sequence:    int
    event_id:       str
    violation_type: str   # "schema" | "sequence_gap" | "chain_break" | "invalid_signature" | "fund_mismatch"
    detail:         str


@dataclass
class ReplaySummary:
    total_events:       int
    fund_ids:           List[str]
    valid_signatures:   int
    invalid_signatures: int
    violations:         List[Violation] = field(default_factory=list)
    by_type:            Dict[str, int]  = field(default_factory=dict)

    @property
    def chain_valid(self) -> bool:
        return not self.violations

    def to_dict(self) -> dict:
        return {
            "total_events":       self.total_events,
            "fund_ids":           self.fund_ids,
            "valid_signatures":   self.valid_signatures,
            "invalid_signatures": self.invalid_signatures,
            "chain_valid":        self.chain_valid,
            "by_type":            self.by_type,
            "violations": [
                {
                    "at_sequence":    v.at_sequence,
                    "event_id":       v.event_id,
                    "violation_type": v.violation_type,
                    "detail":         v.detail,
                }
                for v in self.violations
            ],
        }


def load_events(path: Path) -> List[FundEvent]:
    """Parse a JSONL event file. Raises LedgerError on malformed lines."""
    path = Path(path)
    if not path.exists():
        raise LedgerError("Ledger file not found", {"path": str(path)})

    events: List[FundEvent] = []
    with open(path, "r", encoding="utf-8") as f:
        for line_num, line in enumerate(f, 1):
            line = line.strip()
            if not line:
                continue
            try:
                events.append(FundEvent.from_dict(json.loads(line)))
            except (json.JSONDecodeError, KeyError) as exc:
                raise LedgerError(
                    f"Malformed event at line {line_num}", {"error": str(exc)}
                ) from exc
    return events


def replay_events(path: Path) -> ReplaySummary:
    """Load and verify a ledger file. Violations are reported, not raised."""
    events = load_events(path)

    violations: List[Violation] = []
    by_type: Dict[str, int] = {}
    fund_ids: List[str] = []
    valid_sigs = 0

    prev = None
    for i, event in enumerate(events):
        by_type[event.event_type] = by_type.get(event.event_type, 0) + 1
        if event.fund_id not in fund_ids:
            fund_ids.append(event.fund_id)

        schema = event.validate_schema()
        if not schema:
            violations.append(
                Violation(i, event.event_id, "schema", "; ".join(schema.errors))
            )
        if event.sequence != i:
            violations.append(
                Violation(i, event.event_id, "sequence_gap",
                          f"expected sequence {i}, got {event.sequence}")
            )
        if not event.verify_chain(prev):
            violations.append(
                Violation(i, event.event_id, "chain_break",
                          "causal_hash does not match previous event")
            )
        if event.verify_signature():
            valid_sigs += 1
        else:
            violations.append(
                Violation(i, event.event_id, "invalid_signature",
                          "signature does not verify")
            )
        if fund_ids and event.fund_id != fund_ids[0]:
            violations.append(
                Violation(i, event.event_id, "fund_mismatch",
                          f"event belongs to {event.fund_id}, ledger to {fund_ids[0]}")
            )
        prev = event

    return ReplaySummary(
        total_events=       len(events),
        fund_ids=           fund_ids,
        valid_signatures=   valid_sigs,
        invalid_signatures= len(events) - valid_sigs,
        violations=         violations,
        by_type=            by_type,
    )
