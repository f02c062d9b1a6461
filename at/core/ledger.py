"""Status ledger: online/offline accounting for one open attendance session.

The open segment is held as a tagged state (``Online``, ``Offline`` or
``Closed``) carrying its own start time, so "exactly one of the two start
times is present while open" can't be violated by construction.  Banked time
from closed segments lives in the two accumulators.
"""

from dataclasses import dataclass
from datetime import datetime
from enum import Enum

from at.common.logger import log
from at.core.clock import elapsed_seconds
from at.core.errors import NoActiveSessionError


class Status(str, Enum):
    ONLINE = "online"
    OFFLINE = "offline"

    @classmethod
    def from_flag(cls, is_online):
        return cls.ONLINE if is_online else cls.OFFLINE


@dataclass(frozen=True)
class Online:
    since: datetime
    status = Status.ONLINE


@dataclass(frozen=True)
class Offline:
    since: datetime
    status = Status.OFFLINE


@dataclass(frozen=True)
class Closed:
    since = None
    status = None


CLOSED = Closed()


def _open_state(status, since):
    return Online(since) if status == Status.ONLINE else Offline(since)


class StatusLedger:

    def __init__(self):
        self.state = CLOSED
        self.accumulated_online_seconds = 0
        self.accumulated_offline_seconds = 0
        self.last_status_change_time = None

    # Convenience views over the tagged state, matching the field names the rest of the app talks in.
    @property
    def is_open(self):
        return not isinstance(self.state, Closed)

    @property
    def current_state(self):
        return self.state.status

    @property
    def online_start_time(self):
        return self.state.since if isinstance(self.state, Online) else None

    @property
    def offline_start_time(self):
        return self.state.since if isinstance(self.state, Offline) else None

    # Fresh check-in: online from the check-in time, nothing banked yet.
    def initialize(self, check_in_time):
        self.state = Online(check_in_time)
        self.accumulated_online_seconds = 0
        self.accumulated_offline_seconds = 0
        self.last_status_change_time = check_in_time
        log.debug(f"Ledger initialized online at {check_in_time.isoformat()}")

    def toggle(self, new_state, now):
        """Close the current segment into its accumulator and open ``new_state`` at ``now``.

        Returns False (and changes nothing) when ``new_state`` is already the
        current state.  Callers are expected to have confirmed the change with
        the backend first.
        """
        if not self.is_open:
            raise NoActiveSessionError("Cannot change status without an open session")
        new_state = Status(new_state)
        if new_state == self.current_state:
            return False

        closed_seconds = elapsed_seconds(self.state.since, now)
        if isinstance(self.state, Online):
            self.accumulated_online_seconds += closed_seconds
        else:
            self.accumulated_offline_seconds += closed_seconds
        self.state = _open_state(new_state, now)
        self.last_status_change_time = now
        log.debug(f"Ledger toggled to {new_state.value} at {now.isoformat()}, banked {closed_seconds}s")
        return True

    # Seconds in the segment that's currently open (the live part not yet in any accumulator).
    def current_segment_seconds(self, now):
        if not self.is_open:
            return 0
        return elapsed_seconds(self.state.since, now)

    def current_display_seconds(self, now):
        """(working seconds, offline seconds) as of ``now``.

        Each is the banked total plus the live segment when that state is the
        open one.  Read-only, safe to call on every tick.
        """
        online = self.accumulated_online_seconds
        offline = self.accumulated_offline_seconds
        if isinstance(self.state, Online):
            online += elapsed_seconds(self.state.since, now)
        elif isinstance(self.state, Offline):
            offline += elapsed_seconds(self.state.since, now)
        return online, offline

    # Client restart: the backend says which state we're in and since when. Accumulators are zeroed on purpose,
    # only the backend knows the true totals and the next reconciliation fills them in.
    def resume_from_backend(self, state, last_change_time, now):
        since = last_change_time or now
        self.state = _open_state(Status(state), since)
        self.accumulated_online_seconds = 0
        self.accumulated_offline_seconds = 0
        self.last_status_change_time = since
        log.debug(f"Ledger resumed {Status(state).value} since {since.isoformat()}")

    # Adopts a state change that already happened remotely (another device toggled). Keeps accumulators, those are
    # overwritten by the reconciliation that detected the change.
    def adopt_remote_state(self, state, now):
        self.state = _open_state(Status(state), now)
        self.last_status_change_time = now

    def set_accumulated(self, online_seconds, offline_seconds):
        self.accumulated_online_seconds = max(0, int(online_seconds))
        self.accumulated_offline_seconds = max(0, int(offline_seconds))

    def teardown(self):
        self.state = CLOSED
        self.accumulated_online_seconds = 0
        self.accumulated_offline_seconds = 0
        self.last_status_change_time = None
        log.debug("Ledger torn down")

    def to_dict(self):
        return {
            "state": self.current_state.value if self.is_open else "closed",
            "since": self.state.since.isoformat() if self.is_open else None,
            "accumulated_online_seconds": self.accumulated_online_seconds,
            "accumulated_offline_seconds": self.accumulated_offline_seconds,
            "last_status_change": self.last_status_change_time.isoformat() if self.last_status_change_time else None,
        }

    @classmethod
    def from_dict(cls, data):
        ledger = cls()
        if not data or data.get("state") not in (Status.ONLINE.value, Status.OFFLINE.value) or not data.get("since"):
            return ledger
        since = datetime.fromisoformat(data["since"])
        ledger.state = _open_state(Status(data["state"]), since)
        ledger.set_accumulated(data.get("accumulated_online_seconds", 0), data.get("accumulated_offline_seconds", 0))
        last_change = data.get("last_status_change")
        ledger.last_status_change_time = datetime.fromisoformat(last_change) if last_change else since
        return ledger
