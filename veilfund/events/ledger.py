"""
veilfund/events/ledger.py

Append-only, signed, hash-chained record of everything a fund did.

emit() MUST, in this exact order:
  1. Acquire lock
  2. FundEvent.create(..., prev=last_event)
  3. event.sign(key)
  4. Append to JSONL file (when the ledger is file-backed)
  5. Advance sequence and last_event, only after the write succeeded
  6. Return the signed event
"""

import json
import threading
import warnings
from pathlib import Path
from typing import Any, Dict, List, Optional

from veilfund.core.crypto import SigningKey
from veilfund.core.exceptions import LedgerError
from veilfund.events.models import GENESIS_HASH, FundEvent


LEDGER_FILENAME = "events.jsonl"


class EventLedger:
    """
    Event ledger for one fund.

    With ledger_path=None events are only kept in memory. With a directory,
    each event is also appended to <ledger_path>/events.jsonl and state is
    restored from that file on construction.
    """

    def __init__(
        self,
        key:         SigningKey,
        fund_id:     str,
        ledger_path: Optional[str] = None,
    ) -> None:
        self.key     = key
        self.fund_id = fund_id

        self._lock:       threading.Lock      = threading.Lock()
        self._events:     List[FundEvent]     = []
        self._sequence:   int                 = 0
        self._last_event: Optional[FundEvent] = None

        self._ledger_file: Optional[Path] = None
        if ledger_path is not None:
            ledger_dir = Path(ledger_path)
            ledger_dir.mkdir(parents=True, exist_ok=True)
            self._ledger_file = ledger_dir / LEDGER_FILENAME
            self._restore_state()

    # ── Public API ────────────────────────────────────────────

    def emit(self, event_type: str, payload: Dict[str, Any]) -> FundEvent:
        """
        Emit one signed event. Raises LedgerError if the write fails;
        the sequence does not advance in that case.
        """
        with self._lock:
            event = FundEvent.create(
                event_type=        event_type,
                fund_id=           self.fund_id,
                signer_public_key= self.key.public_key_hex,
                sequence=          self._sequence,
                payload=           payload,
                prev=              self._last_event,
            ).sign(self.key)

            if self._ledger_file is not None:
                self._append_to_file(event)

            self._events.append(event)
            self._sequence   += 1
            self._last_event  = event
            return event

    @property
    def events(self) -> List[FundEvent]:
        return list(self._events)

    def events_of_type(self, event_type: str) -> List[FundEvent]:
        return [e for e in self._events if e.event_type == event_type]

    def last(self, event_type: Optional[str] = None) -> Optional[FundEvent]:
        for event in reversed(self._events):
            if event_type is None or event.event_type == event_type:
                return event
        return None

    def verify_chain(self) -> bool:
        """
        Re-check sequence, causal hash and signature of every event held
        in memory. Returns False on the first violation.
        """
        prev = None
        for i, event in enumerate(self._events):
            if event.sequence != i:
                return False
            if not event.verify_chain(prev):
                return False
            if not event.verify_signature():
                return False
            prev = event
        return True

    def get_stats(self) -> Dict[str, Any]:
        by_type: Dict[str, int] = {}
        for event in self._events:
            by_type[event.event_type] = by_type.get(event.event_type, 0) + 1
        return {
            "fund_id":          self.fund_id,
            "next_sequence":    self._sequence,
            "last_causal_hash": (
                self._last_event.causal_hash if self._last_event else GENESIS_HASH
            ),
            "by_type":          by_type,
            "ledger_file":      str(self._ledger_file) if self._ledger_file else None,
        }

    # ── Internal ──────────────────────────────────────────────

    def _restore_state(self) -> None:
        """
        Reload events from an existing file. A corrupted line stops the
        restore with a RuntimeWarning; the ledger keeps what it read so far.
        """
        if not self._ledger_file.exists():
            return

        with open(self._ledger_file, "r", encoding="utf-8") as f:
            for line_num, line in enumerate(f, 1):
                line = line.strip()
                if not line:
                    continue
                try:
                    event = FundEvent.from_dict(json.loads(line))
                    schema = event.validate_schema()
                    if not schema:
                        raise ValueError(f"schema violation: {schema.errors}")
                except (ValueError, KeyError) as exc:
                    warnings.warn(
                        f"EventLedger: could not restore line {line_num} of "
                        f"{self._ledger_file}: {exc}",
                        RuntimeWarning,
                        stacklevel=3,
                    )
                    return
                self._events.append(event)
                self._sequence   = event.sequence + 1
                self._last_event = event

    def _append_to_file(self, event: FundEvent) -> None:
        try:
            with open(self._ledger_file, "a", encoding="utf-8") as f:
                f.write(json.dumps(event.to_dict()) + "\n")
        except OSError as exc:
            raise LedgerError(
                "Failed to write event", {"path": str(self._ledger_file), "error": str(exc)}
            ) from exc
