"""
VeilFund Events - signed, hash-chained record of fund activity.
"""

from veilfund.events.ledger import EventLedger
from veilfund.events.models import GENESIS_HASH, EventType, FundEvent
from veilfund.events.replay import ReplaySummary, replay_events

__all__ = [
    "EventLedger",
    "EventType",
    "FundEvent",
    "GENESIS_HASH",
    "ReplaySummary",
    "replay_events",
]
