"""
Entry-point guard for fund methods.

One guarded call runs per fund at a time (other threads wait on the fund
lock, the same thread re-entering is refused). Each call runs inside a
transaction(): if it raises, the fund's accounting, every token ledger the
fund moves value through and the venue's permits are put back to how they
were on entry.

transaction() holds the ledger locks for its whole duration, taken in
address order. Funds sharing a stablecoin therefore settle one at a time.
"""

import contextlib
import functools
import threading

from veilfund.core.exceptions import ReentrancyError


@contextlib.contextmanager
def transaction(fund):
    """
    All-or-nothing block over fund state and its ledgers. Nests: an inner
    transaction that fails is rolled back and its error re-raised to the
    enclosing one.
    """
    ledgers = sorted(fund.ledgers(), key=lambda ledger: ledger.address)
    with contextlib.ExitStack() as stack:
        for ledger in ledgers:
            stack.enter_context(ledger.lock)
        state_snapshot  = fund.state.snapshot()
        ledger_snapshot = [ledger.snapshot() for ledger in ledgers]
        venue_snapshot  = fund.swap_venue.snapshot()
        try:
            yield
        except Exception:
            fund.state.restore(state_snapshot)
            for ledger, snapshot in zip(ledgers, ledger_snapshot):
                ledger.restore(snapshot)
            fund.swap_venue.restore(venue_snapshot)
            raise


def guarded(method):
    @functools.wraps(method)
    def wrapper(fund, *args, **kwargs):
        me = threading.get_ident()
        if fund._active_thread == me:
            raise ReentrancyError(
                f"Reentrant call to {method.__name__}", {"fund_id": fund.fund_id}
            )
        with fund._call_lock:
            fund._active_thread = me
            try:
                with transaction(fund):
                    return method(fund, *args, **kwargs)
            finally:
                fund._active_thread = None
    return wrapper
