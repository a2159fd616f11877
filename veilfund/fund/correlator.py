"""
Pending decryption requests, keyed by oracle request id.

consume() removes the context before returning it, so a request id can
drive at most one callback.
"""

from dataclasses import dataclass, field
from enum import Enum
from typing import Dict, Iterator, List, Optional

from veilfund.confidential.ciphertext import Ciphertext
from veilfund.core.exceptions import RequestNotFound, ValidationError


class RequestKind(Enum):
    MINT = "mint"
    BURN = "burn"


@dataclass
class PendingRequest:
    request_id: int
    user:       str
    kind:       RequestKind
    deadline:   int
    # encrypted amount that actually reached the fund; returned on rejection
    refund:     Ciphertext
    error_id:   int


@dataclass
class RequestCorrelator:
    _pending: Dict[int, PendingRequest] = field(default_factory=dict)

    def register(self, request: PendingRequest) -> None:
        if request.request_id in self._pending:
            raise ValidationError(
                "Request id already registered", {"request_id": request.request_id}
            )
        self._pending[request.request_id] = request

    def consume(self, request_id: int, kind: Optional[RequestKind] = None) -> PendingRequest:
        request = self._pending.get(request_id)
        if request is None or (kind is not None and request.kind is not kind):
            raise RequestNotFound("No matching pending request", {"request_id": request_id})
        del self._pending[request_id]
        return request

    def peek(self, request_id: int) -> PendingRequest:
        try:
            return self._pending[request_id]
        except KeyError:
            raise RequestNotFound("No matching pending request", {"request_id": request_id})

    def expired(self, now: int) -> List[PendingRequest]:
        return [r for r in self._pending.values() if now > r.deadline]

    def for_user(self, user: str) -> List[PendingRequest]:
        return [r for r in self._pending.values() if r.user == user]

    def __contains__(self, request_id: int) -> bool:
        return request_id in self._pending

    def __len__(self) -> int:
        return len(self._pending)

    def __iter__(self) -> Iterator[PendingRequest]:
        return iter(list(self._pending.values()))
