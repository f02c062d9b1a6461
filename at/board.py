import threading

from PySide6.QtCore import QObject, QTimer, Signal

from at.common.logger import log
from at.core.errors import ApiError


# Everyone's online flag for managerial views, polled on its own timer. Independent of any one user's ledger.
class OnlineStatusBoard(QObject):

    changed = Signal(dict)
    _fetched = Signal(object)

    def __init__(self, api, interval_seconds=15, parent=None):
        super().__init__(parent)
        self.api = api
        self.statuses = {}
        self._timer = QTimer(self)
        self._timer.setInterval(int(interval_seconds) * 1000)
        self._timer.timeout.connect(self._poll_in_background)
        self._fetched.connect(self._apply)

    def start(self):
        self._timer.start()
        self._poll_in_background()

    def stop(self):
        self._timer.stop()

    def is_online(self, user_id):
        return self.statuses.get(str(user_id), False)

    # Synchronous poll. Returns the new statuses, or None if the backend couldn't be reached (old ones are kept).
    def refresh(self):
        try:
            statuses = self.api.get_current_online_status()
        except ApiError as exc:
            log.warning(f"Online status board poll failed, keeping previous statuses: {exc}")
            return None
        self._apply(statuses)
        return statuses

    def _poll_in_background(self):
        threading.Thread(target=self._fetch, daemon=True).start()

    # Runs on a worker thread.
    def _fetch(self):
        try:
            statuses = self.api.get_current_online_status()
        except ApiError as exc:
            log.warning(f"Online status board poll failed, keeping previous statuses: {exc}")
            return
        self._fetched.emit(statuses)

    def _apply(self, statuses):
        if statuses == self.statuses:
            return
        self.statuses = dict(statuses)
        log.debug(f"Online status board updated, {sum(self.statuses.values())}/{len(self.statuses)} online")
        self.changed.emit(self.statuses)
