"""Reconciliation: fold the backend's cumulative totals into the local ledger.

The backend is the source of truth for totals (it tracks pause/resume across
logouts and toggles made from other devices); the local ledger only exists to
tick smoothly between polls.  Backend totals include the segment that is still
open, so that segment is taken back out of the accumulator before it's
stored, otherwise the live tick would count it twice.
"""

from dataclasses import dataclass

from at.common.logger import log
from at.core import guard
from at.core.clock import elapsed_seconds
from at.core.ledger import Status


@dataclass(frozen=True)
class WorkingHours:
    total_online_seconds: int
    total_offline_seconds: int
    is_currently_online: bool | None = None

    @classmethod
    def from_payload(cls, data):
        data = data or {}
        online = data.get("total_online_seconds") or data.get("total_seconds") or 0
        offline = data.get("total_offline_seconds") or 0
        is_online = data.get("is_currently_online")
        return cls(
            total_online_seconds=max(0, int(online)),
            total_offline_seconds=max(0, int(offline)),
            is_currently_online=None if is_online is None else bool(is_online),
        )


# Whether a sync should even be requested right now. No open session, or still inside the fresh window, means no.
def should_sync(ledger, check_in_time, now, window=guard.FRESH_WINDOW):
    if not ledger.is_open:
        return False
    return not guard.is_active(check_in_time, now, window)


def reconcile(ledger, hours: WorkingHours, now):
    """Apply one backend snapshot to ``ledger`` as of ``now``.

    Returns True when the local online/offline state was flipped to match the
    backend.  A ledger that is already closed is left alone.
    """
    if not ledger.is_open:
        return False

    flipped = False
    if hours.is_currently_online is not None:
        remote_state = Status.from_flag(hours.is_currently_online)
        if remote_state != ledger.current_state:
            log.info(f"Backend reports {remote_state.value} while local state is {ledger.current_state.value}, adopting backend state")
            ledger.adopt_remote_state(remote_state, now)
            flipped = True

    live = elapsed_seconds(ledger.state.since, now)
    online = hours.total_online_seconds
    offline = hours.total_offline_seconds
    if ledger.current_state == Status.ONLINE:
        online = max(0, online - live)
    else:
        offline = max(0, offline - live)
    ledger.set_accumulated(online, offline)

    log.debug(f"Reconciled: backend online={hours.total_online_seconds}s offline={hours.total_offline_seconds}s, "
              f"live segment={live}s, banked online={online}s offline={offline}s")
    return flipped
