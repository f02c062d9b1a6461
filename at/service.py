"""SessionTimerService: the one owner of the online/offline ledger.

Views never keep their own timers.  They ``subscribe()`` and get a
``TimerDisplay`` on every tick, while this object runs the three Qt timers
(display tick, backend sync, day rollover), talks to the backend for status
changes, and folds backend totals back into the ledger.

Network calls made by the timers run on short-lived worker threads and hand
their results back through queued signals, so the Qt thread never blocks on
the network and all ledger writes happen on the Qt thread.
"""

import threading
from dataclasses import dataclass
from datetime import timedelta

from PySide6.QtCore import QObject, QTimer, Signal

from at.common.logger import log
from at.core import config, guard
from at.core.display import format_clock, format_hours
from at.core.errors import ApiError, NoActiveSessionError, ToggleInFlightError, ValidationError
from at.core.ledger import Status, StatusLedger
from at.core.reconcile import reconcile, should_sync
from at.core.session import AttendanceSession, find_wfh_approval, WorkLocation
from at.util.misc import app_timezone, now_utc


@dataclass(frozen=True)
class TimerDisplay:
    online_seconds: int
    offline_seconds: int
    working_hours: str
    offline_time: str
    current_break: str
    is_online: bool
    is_fresh: bool
    session_open: bool


class SessionTimerService(QObject):

    updated = Signal(object)
    toggled = Signal(object)
    toggle_failed = Signal(str)
    session_closed = Signal(object)

    # Worker thread -> Qt thread hand-offs
    _hours_ready = Signal(object, int, object)
    _toggle_done = Signal(object, object)
    _toggle_error = Signal(object, str)
    _resume_ready = Signal(object, int)
    _resume_failed = Signal()
    _rollover_ready = Signal(object, object)
    _rollover_failed = Signal()

    def __init__(self, api, settings=None, clock=now_utc, state=None, persist=True, parent=None):
        super().__init__(parent)
        self.api = api
        self._state = state if state is not None else config.load_state()
        self.settings = settings if settings is not None else config.effective_settings(self._state)
        self._clock = clock
        self._persist_enabled = persist
        self.tz = app_timezone(self.settings.get("timezone"))
        self.fresh_window = timedelta(seconds=int(self.settings.get("fresh_window_seconds", 300)))

        self.session = None
        self.ledger = StatusLedger()
        self._started = False
        self._resumed = False
        self._toggle_in_flight = False
        self._resume_in_flight = False
        self._rollover_in_flight = False
        # Bumped whenever the ledger's state is changed by something other than a sync, so a sync that was already
        # in the air when that happened can be recognised as stale and dropped.
        self._generation = 0
        self._restore_cached()

        self._tick_timer = QTimer(self)
        self._tick_timer.setInterval(int(self.settings.get("tick_interval_ms", 1000)))
        self._tick_timer.timeout.connect(self.tick)
        self._sync_timer = QTimer(self)
        self._sync_timer.setInterval(int(self.settings.get("sync_interval_seconds", 10)) * 1000)
        self._sync_timer.timeout.connect(self._on_sync_timer)
        self._rollover_timer = QTimer(self)
        self._rollover_timer.setInterval(int(self.settings.get("rollover_check_seconds", 60)) * 1000)
        self._rollover_timer.timeout.connect(self._on_rollover_timer)

        self._hours_ready.connect(self._on_hours_ready)
        self._toggle_done.connect(self._on_toggle_done)
        self._toggle_error.connect(self._on_toggle_error)
        self._resume_ready.connect(self._on_resume_ready)
        self._resume_failed.connect(self._on_resume_failed)
        self._rollover_ready.connect(self._on_rollover_ready)
        self._rollover_failed.connect(self._on_rollover_failed)

    #region === Lifecycle ===

    def start(self):
        self._started = True
        # Starts the timers itself when there's a session, or when it failed and the sync timer has to retry.
        self.resume()
        log.info("Session timer service started")
        self.tick()

    def stop(self):
        self._started = False
        self._stop_timers()
        self._persist()
        log.info("Session timer service stopped")

    @property
    def is_running(self):
        return self._started

    @property
    def timers_active(self):
        return self._tick_timer.isActive()

    # Timers only run between start() and stop(), and are paused while no session is open.
    def _start_timers(self):
        if not self._started:
            return
        for timer in (self._tick_timer, self._sync_timer, self._rollover_timer):
            if not timer.isActive():
                timer.start()

    def _stop_timers(self):
        for timer in (self._tick_timer, self._sync_timer, self._rollover_timer):
            timer.stop()

    # Registers a listener for TimerDisplay updates and hands back a callable that removes it again.
    def subscribe(self, listener):
        self.updated.connect(listener)
        return lambda: self.updated.disconnect(listener)

    #endregion === Lifecycle ===

    #region === Display ===

    def is_fresh(self, now=None):
        if self.session is None:
            return False
        return guard.is_active(self.session.check_in_time, now or self._clock(), self.fresh_window)

    def display(self, now=None):
        now = now or self._clock()
        online, offline = self.ledger.current_display_seconds(now)
        on_break = self.ledger.current_state == Status.OFFLINE
        return TimerDisplay(
            online_seconds=online,
            offline_seconds=offline,
            working_hours=format_hours(online),
            offline_time=format_hours(offline),
            current_break=format_clock(self.ledger.current_segment_seconds(now) if on_break else 0),
            is_online=self.ledger.current_state == Status.ONLINE,
            is_fresh=self.is_fresh(now),
            session_open=self.ledger.is_open,
        )

    # The 1 second tick. Reads the ledger and tells subscribers, never writes anything.
    def tick(self, now=None):
        current = self.display(now)
        self.updated.emit(current)
        return current

    #endregion === Display ===

    #region === Resume ===

    def resume(self, now=None):
        """Rebuild the ledger from the backend after a restart.

        A session checked in less than the fresh window ago starts at zero from
        its check-in time.  Anything older is resumed from the backend's
        current status and last change time, then synced straight away.  On
        failure whatever was cached locally keeps showing and the next sync
        tick tries again.
        """
        now = now or self._clock()
        try:
            snapshot = self._fetch_resume(now)
        except ApiError:
            self._resume_lost()
            return False
        self._apply_resume(snapshot, now)
        return True

    # Backend reads only, safe on a worker thread. Returns (session, online status, working hours); the last two are
    # None when they weren't needed or, for the hours, couldn't be read.
    def _fetch_resume(self, now):
        try:
            session = self.api.get_attendance_status()
        except ApiError as exc:
            log.warning(f"Could not load today's attendance, keeping cached state and retrying later: {exc}")
            raise
        if session is None or not session.is_open or guard.is_active(session.check_in_time, now, self.fresh_window):
            return session, None, None

        user_id = self.settings.get("user_id") or session.user_id
        try:
            status = self.api.get_user_online_status(user_id)
        except ApiError as exc:
            log.warning(f"Could not load online status for user {user_id}, keeping cached state and retrying later: {exc}")
            raise
        if not status.has_open_session:
            return session, status, None
        try:
            hours = self.api.get_working_hours(session.session_id)
        except ApiError as exc:
            log.warning(f"Working hours sync failed, keeping local values: {exc}")
            hours = None
        return session, status, hours

    def _apply_resume(self, snapshot, now):
        session, status, hours = snapshot
        self._resumed = True
        if session is None or not session.is_open:
            if self.session is not None:
                log.info("Backend reports no open attendance session, clearing local session")
                self._close_session(now, archive=True)
            return

        self.session = session
        if status is None:
            self.ledger.initialize(session.check_in_time)
            log.info(f"Fresh check-in detected ({int((now - session.check_in_time).total_seconds())}s ago), starting from zero")
        elif not status.has_open_session:
            log.info("Backend reports the user as not checked in, clearing local session")
            self._close_session(now, archive=False)
            return
        else:
            self.ledger.resume_from_backend(Status.from_flag(status.is_online), status.last_status_change, now)
            log.info(f"Resumed {'online' if status.is_online else 'offline'} session {session.session_id} "
                     f"from last status change at {self.ledger.last_status_change_time.isoformat()}")

        self._generation += 1
        self._start_timers()
        self._persist()
        if hours is not None:
            self._apply_hours(hours, self._generation, session.session_id, now)

    # The sync timer keeps running so the next tick retries.
    def _resume_lost(self):
        self._resumed = False
        self._start_timers()

    def _resume_in_background(self):
        if self._resume_in_flight:
            return
        self._resume_in_flight = True
        threading.Thread(target=self._fetch_resume_async, args=(self._generation, self._clock()), daemon=True).start()

    # Runs on a worker thread.
    def _fetch_resume_async(self, generation, now):
        try:
            snapshot = self._fetch_resume(now)
        except ApiError:
            self._resume_failed.emit()
            return
        self._resume_ready.emit(snapshot, generation)

    def _on_resume_ready(self, snapshot, generation):
        self._resume_in_flight = False
        if generation != self._generation:
            log.debug("Dropping resume read, the local session changed while it was in the air")
            return
        self._apply_resume(snapshot, self._clock())

    def _on_resume_failed(self):
        self._resume_in_flight = False
        self._resume_lost()

    def _restore_cached(self):
        session_data = self._state.get("session")
        if not session_data:
            return
        try:
            session = AttendanceSession.from_dict(session_data)
            ledger = StatusLedger.from_dict(self._state.get("ledger"))
        except (KeyError, ValueError, TypeError):
            log.warning("Cached session in state.json is unreadable, ignoring it", exc_info=True)
            return
        if session.is_open and ledger.is_open:
            self.session = session
            self.ledger = ledger
            log.info(f"Restored cached session {session.session_id} ({ledger.current_state.value})")

    #endregion === Resume ===

    #region === Reconciliation ===

    def sync(self, now=None):
        """One synchronous reconciliation pass.  Returns True if backend totals were applied."""
        now = now or self._clock()
        if self.session is None or not should_sync(self.ledger, self.session.check_in_time, now, self.fresh_window):
            return False
        generation = self._generation
        try:
            hours = self.api.get_working_hours(self.session.session_id)
        except ApiError as exc:
            log.warning(f"Working hours sync failed, keeping local values: {exc}")
            return False
        return self._apply_hours(hours, generation, self.session.session_id, now)

    def _on_sync_timer(self):
        if not self._resumed:
            self._resume_in_background()
            return
        if self._toggle_in_flight:
            log.debug("Skipping sync, status change in flight")
            return
        now = self._clock()
        if self.session is None or not should_sync(self.ledger, self.session.check_in_time, now, self.fresh_window):
            return
        generation = self._generation
        session_id = self.session.session_id
        threading.Thread(target=self._fetch_hours, args=(session_id, generation), daemon=True).start()

    # Runs on a worker thread.
    def _fetch_hours(self, session_id, generation):
        try:
            hours = self.api.get_working_hours(session_id)
        except ApiError as exc:
            log.warning(f"Working hours sync failed, keeping local values: {exc}")
            return
        self._hours_ready.emit(hours, generation, session_id)

    def _on_hours_ready(self, hours, generation, session_id):
        if not self._started:
            log.debug("Dropping working hours read that landed after the service stopped")
            return
        self._apply_hours(hours, generation, session_id, self._clock())

    def _apply_hours(self, hours, generation, session_id, now):
        if self.session is None or session_id != self.session.session_id or generation != self._generation:
            log.debug("Dropping working hours read that predates the latest status change")
            return False
        if self._toggle_in_flight:
            log.debug("Dropping working hours read, status change in flight")
            return False
        if reconcile(self.ledger, hours, now):
            self._generation += 1
        self._persist()
        return True

    #endregion === Reconciliation ===

    #region === Status changes ===

    def go_online(self, now=None):
        return self.toggle(Status.ONLINE, now=now)

    def go_offline(self, reason, now=None):
        return self.toggle(Status.OFFLINE, reason=reason, now=now)

    def toggle(self, new_state, reason=None, now=None):
        """Change online/offline status, backend first.

        Raises ``ApiError`` if the backend refuses, in which case the ledger is
        untouched.  Returns False when already in ``new_state``.
        """
        new_state = self._begin_toggle(new_state, reason)
        if new_state is None:
            return False
        try:
            self.api.update_online_status(self.session.session_id, new_state == Status.ONLINE, reason)
        except ApiError:
            self._toggle_in_flight = False
            log.warning(f"Status change to {new_state.value} rejected, ledger unchanged", exc_info=True)
            raise
        self._finish_toggle(new_state, now or self._clock())
        return True

    # Same as toggle() but the backend call happens off the Qt thread; the outcome arrives as toggled/toggle_failed.
    def request_toggle(self, new_state, reason=None):
        new_state = self._begin_toggle(new_state, reason)
        if new_state is None:
            return False
        session_id = self.session.session_id
        threading.Thread(target=self._send_toggle, args=(session_id, new_state, reason), daemon=True).start()
        return True

    # Runs on a worker thread.
    def _send_toggle(self, session_id, new_state, reason):
        try:
            self.api.update_online_status(session_id, new_state == Status.ONLINE, reason)
        except ApiError as exc:
            self._toggle_error.emit(session_id, str(exc))
            return
        self._toggle_done.emit(session_id, new_state)

    def _on_toggle_done(self, session_id, new_state):
        if self.session is None or self.session.session_id != session_id:
            log.info(f"Dropping confirmed status change for session {session_id}, it is no longer the open session")
            return
        self._finish_toggle(new_state, self._clock())

    def _on_toggle_error(self, session_id, message):
        if self.session is None or self.session.session_id != session_id:
            log.debug(f"Dropping failed status change for session {session_id}, it is no longer the open session")
            return
        self._toggle_in_flight = False
        log.warning(f"Status change rejected, ledger unchanged: {message}")
        self.toggle_failed.emit(message)

    def _begin_toggle(self, new_state, reason):
        if self.session is None or not self.ledger.is_open:
            raise NoActiveSessionError("No active attendance record")
        if self._toggle_in_flight:
            raise ToggleInFlightError("A status change is already in progress")
        new_state = Status(new_state)
        if new_state == self.ledger.current_state:
            return None
        if new_state == Status.OFFLINE and self.settings.get("require_offline_reason", True):
            min_length = int(self.settings.get("min_offline_reason_length", 10))
            if not reason or len(reason.strip()) < min_length:
                raise ValidationError(f"Please provide a reason (minimum {min_length} characters).")
        self._toggle_in_flight = True
        return new_state

    def _finish_toggle(self, new_state, now):
        self.ledger.toggle(new_state, now)
        self._generation += 1
        self._toggle_in_flight = False
        self._persist()
        log.info(f"Status changed to {new_state.value} at {now.isoformat()}")
        self.toggled.emit(new_state)
        self.tick(now)

    @property
    def toggle_in_flight(self):
        return self._toggle_in_flight

    #endregion === Status changes ===

    #region === Check-in / check-out ===

    def check_in(self, location, selfie, wfh_requests=None, now=None):
        if self.session is not None and self.session.is_open:
            raise ValidationError("Already checked in today")
        user_id = self.settings.get("user_id")
        today = (now or self._clock()).astimezone(self.tz).date()
        if wfh_requests is None:
            try:
                wfh_requests = self.api.get_my_wfh_requests()
            except ApiError as exc:
                log.warning(f"Could not load WFH requests, checking in as office: {exc}")
                wfh_requests = []
        approved, wfh_request_id = find_wfh_approval(wfh_requests, today)
        work_location = WorkLocation.WORK_FROM_HOME if approved else WorkLocation.OFFICE

        response = self.api.check_in(user_id=user_id, location=location, selfie=selfie,
                                     work_location=work_location, wfh_request_id=wfh_request_id)
        now = now or self._clock()
        try:
            session = AttendanceSession.from_record(response or {}, self.tz)
        except ValueError:
            session = self.api.get_attendance_status()
            if session is None:
                raise ApiError("Check-in succeeded but no attendance record came back")

        self.session = session
        self.ledger.initialize(session.check_in_time)
        self._generation += 1
        self._resumed = True
        self._start_timers()
        self._persist()
        log.info(f"Checked in, session {session.session_id} at {work_location.value}, timers start from zero")
        self.tick(now)
        return session

    def check_out(self, location, selfie, work_summary, task_deadline_reason=None, work_report=None, now=None):
        if self.session is None or not self.session.is_open:
            raise NoActiveSessionError("No active attendance record")
        if self._toggle_in_flight:
            raise ToggleInFlightError("Wait for the status change to finish before checking out")
        if not work_summary or not work_summary.strip():
            raise ValidationError("Please provide today's work summary before checking out.")
        self.api.check_out(user_id=self.settings.get("user_id") or self.session.user_id, location=location,
                           selfie=selfie, work_summary=work_summary.strip(),
                           task_deadline_reason=(task_deadline_reason or "").strip() or None, work_report=work_report)
        now = now or self._clock()
        closed = self._close_session(now, archive=True)
        log.info(f"Checked out of session {closed.session_id}, all timers reset")
        return closed

    def _close_session(self, now, archive):
        closed = self.session.closed_at(now) if self.session is not None else None
        if archive and closed is not None and self._persist_enabled:
            try:
                config.save_completed_session(self._snapshot_state(), now)
            except OSError:
                log.warning("Could not archive completed session", exc_info=True)
        self.session = None
        self.ledger.teardown()
        self._generation += 1
        self._stop_timers()
        self._toggle_in_flight = False
        self._persist()
        if closed is not None:
            self.session_closed.emit(closed)
        self.tick(now)
        return closed

    #endregion === Check-in / check-out ===

    #region === Day rollover ===

    def check_rollover(self, now=None):
        """Handle a session left open across midnight.

        Once the calendar day has moved past the check-in day, the backend is
        asked again; if it no longer reports this session open, it's archived
        and torn down locally.  Returns True when the local session changed.
        """
        now = now or self._clock()
        if not self._day_changed(now):
            return False
        try:
            current = self.api.get_attendance_status()
        except ApiError as exc:
            log.warning(f"Day rollover check failed, will retry: {exc}")
            return False
        if not self._close_rolled_over(current, self.session.session_id, now):
            return False
        if current is not None and current.is_open:
            self.resume(now)
        return True

    def _day_changed(self, now):
        return self.session is not None and now.astimezone(self.tz).date() != self.session.check_in_day(self.tz)

    def _close_rolled_over(self, current, session_id, now):
        if self.session is None or self.session.session_id != session_id:
            return False
        if current is not None and current.is_open and current.session_id == session_id:
            return False
        log.info(f"Day changed since check-in of session {session_id}, closing it locally")
        self._close_session(now, archive=True)
        return True

    # Timer version of check_rollover(): the backend read runs on a worker and any new session is resumed the same way.
    def _on_rollover_timer(self):
        if self._rollover_in_flight or not self._day_changed(self._clock()):
            return
        self._rollover_in_flight = True
        threading.Thread(target=self._fetch_rollover, args=(self.session.session_id,), daemon=True).start()

    # Runs on a worker thread.
    def _fetch_rollover(self, session_id):
        try:
            current = self.api.get_attendance_status()
        except ApiError as exc:
            log.warning(f"Day rollover check failed, will retry: {exc}")
            self._rollover_failed.emit()
            return
        self._rollover_ready.emit(current, session_id)

    def _on_rollover_ready(self, current, session_id):
        self._rollover_in_flight = False
        if self._close_rolled_over(current, session_id, self._clock()) and current is not None and current.is_open:
            self._resume_in_background()

    def _on_rollover_failed(self):
        self._rollover_in_flight = False

    #endregion === Day rollover ===

    #region === Persistence ===

    def _snapshot_state(self):
        self._state["session"] = self.session.to_dict() if self.session is not None else None
        self._state["ledger"] = self.ledger.to_dict() if self.ledger.is_open else None
        return self._state

    def _persist(self):
        state = self._snapshot_state()
        if not self._persist_enabled:
            return
        try:
            config.save_state(state)
        except OSError:
            log.warning("Could not save state.json", exc_info=True)

    #endregion === Persistence ===


_SHARED = {}

# One service per user for the whole process, whoever asks first builds it.
def shared_service(user_id, factory):
    if user_id not in _SHARED:
        _SHARED[user_id] = factory()
    return _SHARED[user_id]
