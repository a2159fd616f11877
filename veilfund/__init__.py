"""
veilfund/__init__.py

VeilFund: confidential index-fund settlement engine.

Users deposit and redeem with encrypted amounts. An asynchronous decryption
oracle resolves those amounts; callbacks then allocate them across the
index, batch swaps across independent users and mint or burn fund shares.
Every fund event is signed and hash-chained in an EventLedger.
"""

__version__ = "0.3.0"

from veilfund.config import ScenarioConfig, load_config
from veilfund.core.crypto import SigningKey
from veilfund.core.exceptions import VeilFundError
from veilfund.events.ledger import EventLedger
from veilfund.events.models import EventType, FundEvent
from veilfund.factory import IndexFundFactory
from veilfund.fund.state import FactoryTerms, FundState
from veilfund.settlement.engine import ConfidentialIndexFund

__all__ = [
    # Engine
    "ConfidentialIndexFund",
    "IndexFundFactory",
    "FundState",
    "FactoryTerms",
    # Events
    "EventLedger",
    "EventType",
    "FundEvent",
    "SigningKey",
    # Configuration
    "ScenarioConfig",
    "load_config",
    # Errors
    "VeilFundError",
]
