"""
veilfund/confidential/oracle.py

In-memory decryption oracle.

request_decryption() queues ciphertexts with a callback and a deadline and
returns immediately. Nothing blocks: the requesting call ends, and some
later fulfill() decrypts and invokes the callback exactly once, passing
caller=<oracle address> so the receiver can authenticate it.
"""

import logging
import threading
from collections import OrderedDict
from dataclasses import dataclass
from typing import Callable, List, Optional, Sequence

from veilfund.confidential.ciphertext import Ciphertext, FheContext
from veilfund.core.exceptions import RequestNotFound
from veilfund.core.time import Clock


log = logging.getLogger(__name__)

ORACLE_ADDRESS = "oracle:decryption"


@dataclass
class DecryptionRequest:
    request_id:  int
    ciphertexts: List[Ciphertext]
    callback:    Callable
    gas_limit:   int
    deadline:    int
    trusted:     bool


class DecryptionOracle:
    """Queue of pending decryption requests, fulfilled on demand."""

    def __init__(self, fhe: FheContext, clock: Clock, address: str = ORACLE_ADDRESS) -> None:
        self.fhe     = fhe
        self.clock   = clock
        self.address = address
        self._lock   = threading.Lock()
        self._next_id = 1
        self._pending: "OrderedDict[int, DecryptionRequest]" = OrderedDict()

    def request_decryption(
        self,
        ciphertexts: Sequence[Ciphertext],
        callback:    Callable,
        gas_limit:   int,
        deadline:    int,
        trusted:     bool = False,
    ) -> int:
        with self._lock:
            request_id = self._next_id
            self._next_id += 1
            self._pending[request_id] = DecryptionRequest(
                request_id=  request_id,
                ciphertexts= list(ciphertexts),
                callback=    callback,
                gas_limit=   gas_limit,
                deadline=    deadline,
                trusted=     trusted,
            )
        log.debug("decryption request %d queued (%d values)", request_id, len(ciphertexts))
        return request_id

    @property
    def pending_ids(self) -> List[int]:
        return list(self._pending)

    def fulfill(self, request_id: int) -> bool:
        """
        Decrypt and deliver one request. Returns False when the request had
        already passed its deadline (it is dropped, the callback never runs).

        If the callback raises, the request is put back so it can be
        delivered again, and the exception propagates.
        """
        with self._lock:
            request = self._pending.pop(request_id, None)
        if request is None:
            raise RequestNotFound("No pending decryption request", {"request_id": request_id})

        if self.clock.now() > request.deadline:
            log.warning("decryption request %d expired at %d, dropped", request_id, request.deadline)
            return False

        values = [self.fhe.decrypt(ct) for ct in request.ciphertexts]
        try:
            request.callback(request_id, *values, caller=self.address)
        except Exception:
            with self._lock:
                self._pending[request_id] = request
                self._pending.move_to_end(request_id, last=False)
            raise
        return True

    def fulfill_all(self, order: Optional[Sequence[int]] = None) -> int:
        """
        Deliver every pending request, in submission order unless `order`
        is given. Returns how many callbacks ran.
        """
        delivered = 0
        for request_id in list(order if order is not None else self._pending):
            if self.fulfill(request_id):
                delivered += 1
        return delivered
