import argparse
import logging
import signal
import sys
from pathlib import Path

from PySide6.QtCore import QCoreApplication, QTimer

from at.api.client import AttendanceApi
from at.api.models import GeoLocation
from at.board import OnlineStatusBoard
from at.common.logger import enable_console, log
from at.core import config
from at.core.errors import AttendanceError
from at.core.ledger import Status
from at.core.selfie import compress_selfie
from at.service import SessionTimerService, shared_service
from at.util.misc import app_timezone


#region === Setup helpers ===

def build_api(settings):
    return AttendanceApi(
        settings["api_base_url"],
        token=settings.get("api_token") or None,
        timeout=int(settings.get("request_timeout_seconds", 10)),
        tz=app_timezone(settings.get("timezone")),
    )

# Command line flags win over state.json and environment, for this run only.
def apply_overrides(settings, args):
    if args.api_url:
        settings["api_base_url"] = args.api_url
    if args.token:
        settings["api_token"] = args.token
    if args.user_id is not None:
        settings["user_id"] = args.user_id
    return settings

def build_service(args):
    state = config.load_state()
    settings = apply_overrides(config.effective_settings(state), args)
    return shared_service(settings.get("user_id"),
                          lambda: SessionTimerService(build_api(settings), settings=settings, state=state))

def qt_app():
    app = QCoreApplication.instance() or QCoreApplication(sys.argv[:1])
    # Ctrl+C quits the event loop. The no-op timer gives the interpreter a chance to run the handler.
    signal.signal(signal.SIGINT, lambda *_: app.quit())
    wakeup = QTimer(app)
    wakeup.timeout.connect(lambda: None)
    wakeup.start(250)
    return app

def read_location(args):
    return GeoLocation(latitude=args.lat, longitude=args.lon, accuracy=args.accuracy, address=args.address or "")

def read_selfie(path):
    return compress_selfie(Path(path).read_bytes())

def print_display(display):
    state = "ONLINE" if display.is_online else "OFFLINE" if display.session_open else "NOT CHECKED IN"
    line = f"[{state}] working {display.working_hours} | offline {display.offline_time}"
    if display.session_open and not display.is_online:
        line += f" | break {display.current_break}"
    print(line, flush=True)

#endregion === Setup helpers ===

#region === Commands ===

def cmd_watch(args):
    app = qt_app()
    service = build_service(args)
    service.subscribe(print_display)
    service.start()
    try:
        return app.exec()
    finally:
        service.stop()

def cmd_status(args):
    service = build_service(args)
    service.resume()
    print_display(service.display())
    if service.session is not None:
        print(f"Session {service.session.session_id}, checked in {service.session.check_in_time.astimezone(service.tz):%Y-%m-%d %H:%M:%S}"
              f" ({service.session.work_location.value})")
    return 0

def cmd_check_in(args):
    qt_app()
    service = build_service(args)
    service.resume()
    session = service.check_in(read_location(args), read_selfie(args.selfie))
    print(f"Checked in, session {session.session_id} ({session.work_location.value})")
    return 0

def cmd_check_out(args):
    qt_app()
    service = build_service(args)
    service.resume()
    closed = service.check_out(read_location(args), read_selfie(args.selfie), args.summary,
                               task_deadline_reason=args.deadline_reason, work_report=args.report)
    print(f"Checked out of session {closed.session_id}")
    return 0

def cmd_online(args):
    service = build_service(args)
    service.resume()
    if not service.go_online():
        print("Already online")
    print_display(service.display())
    return 0

def cmd_offline(args):
    service = build_service(args)
    service.resume()
    if not service.go_offline(args.reason):
        print("Already offline")
    print_display(service.display())
    return 0

def cmd_history(args):
    service = build_service(args)
    service.resume()
    if service.session is None:
        print("No open attendance session")
        return 1
    for change in service.api.get_status_history(service.session.session_id):
        when = change.timestamp.astimezone(service.tz).strftime("%H:%M:%S") if change.timestamp else "?"
        state = Status.from_flag(change.is_online).value
        print(f"{when}  {state:<7}  {change.reason or ''}".rstrip())
    return 0

def cmd_board(args):
    app = qt_app()
    state = config.load_state()
    settings = apply_overrides(config.effective_settings(state), args)
    board = OnlineStatusBoard(build_api(settings), interval_seconds=settings["board_interval_seconds"])

    def show(statuses):
        online = sorted(uid for uid, flag in statuses.items() if flag)
        print(f"{len(online)}/{len(statuses)} online: {', '.join(online) or '-'}", flush=True)

    board.changed.connect(show)
    board.start()
    try:
        return app.exec()
    finally:
        board.stop()

#endregion === Commands ===

def build_parser():
    parser = argparse.ArgumentParser(prog="attendance-timer", description="Attendance online/offline time tracker")
    parser.add_argument("--api-url", help="Backend base URL")
    parser.add_argument("--token", help="Bearer token")
    parser.add_argument("--user-id", type=int, help="Your user id")
    parser.add_argument("-v", "--verbose", action="store_true", help="Log to the console too")
    sub = parser.add_subparsers(dest="command", required=True)

    sub.add_parser("watch", help="Run the live timer and print every tick").set_defaults(func=cmd_watch)
    sub.add_parser("status", help="Print current totals once").set_defaults(func=cmd_status)

    for name, func, help_text in (("check-in", cmd_check_in, "Check in for today"),
                                  ("check-out", cmd_check_out, "Check out and reset the timers")):
        p = sub.add_parser(name, help=help_text)
        p.add_argument("--lat", type=float, required=True)
        p.add_argument("--lon", type=float, required=True)
        p.add_argument("--accuracy", type=float)
        p.add_argument("--address")
        p.add_argument("--selfie", required=True, help="Path to a photo")
        if name == "check-out":
            p.add_argument("--summary", required=True, help="Today's work summary")
            p.add_argument("--deadline-reason", help="Why a task missed its deadline")
            p.add_argument("--report", help="Work report text")
        p.set_defaults(func=func)

    sub.add_parser("online", help="Go online").set_defaults(func=cmd_online)
    p = sub.add_parser("offline", help="Go offline")
    p.add_argument("reason", help="Why you're going offline")
    p.set_defaults(func=cmd_offline)
    sub.add_parser("history", help="Show today's status changes").set_defaults(func=cmd_history)
    sub.add_parser("board", help="Watch everyone's online status").set_defaults(func=cmd_board)
    return parser

def main(argv=None):
    args = build_parser().parse_args(argv)
    if args.verbose:
        enable_console(logging.INFO)
    log.info(f"Running command '{args.command}'")
    try:
        return args.func(args)
    except (AttendanceError, ValueError, OSError) as exc:
        log.warning(f"Command '{args.command}' failed: {exc}")
        print(f"Error: {exc}", file=sys.stderr)
        return 1
