"""
veilfund/core/time.py

THE ONLY CLOCK IN VEILFUND.

Event wire format: YYYY-MM-DDTHH:MM:SS.mmmZ
                   (milliseconds, explicit Z, no +00:00, no microseconds)

Deadlines (swap deadlines, decryption request deadlines) are plain integer
unix seconds, the way the collaborators consume them.
"""

import time
from datetime import datetime, timezone


def event_timestamp() -> str:
    """
    Return current UTC time in event wire format.
    Format: YYYY-MM-DDTHH:MM:SS.mmmZ  (exactly 3 fractional digits, Z suffix)
    """
    now = datetime.now(timezone.utc)
    ms  = now.microsecond // 1000
    return now.strftime("%Y-%m-%dT%H:%M:%S.") + f"{ms:03d}Z"


class Clock:
    """
    Source of unix-second timestamps for deadlines.

    The fund, the oracle and the swap venue share one clock so tests can
    move time forward with advance() instead of sleeping.
    """

    def __init__(self, start: int = None) -> None:
        self._offset = 0
        self._fixed  = start

    def now(self) -> int:
        if self._fixed is not None:
            return self._fixed + self._offset
        return int(time.time()) + self._offset

    def advance(self, seconds: int) -> int:
        """Move the clock forward. Returns the new time."""
        if seconds < 0:
            raise ValueError(f"cannot move clock backwards ({seconds})")
        self._offset += seconds
        return self.now()
