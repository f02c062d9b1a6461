"""Attendance session record, as the backend reports it."""

from dataclasses import dataclass, replace
from datetime import date, datetime, timezone
from enum import Enum

from at.util.misc import parse_timestamp


class WorkLocation(str, Enum):
    OFFICE = "office"
    WORK_FROM_HOME = "work_from_home"

    @classmethod
    def parse(cls, value):
        """Normalizes the handful of spellings the backend has used over time."""
        if value is None:
            return cls.OFFICE
        if str(value).strip().lower() in ("work_from_home", "wfh", "work from home"):
            return cls.WORK_FROM_HOME
        return cls.OFFICE


@dataclass(frozen=True)
class AttendanceSession:
    """One check-in to check-out span for one employee on one day.

    ``check_in_time`` and ``work_location`` are fixed when the session is
    created; only ``check_out_time`` ever changes, and its presence makes the
    session terminal.
    """

    session_id: int
    user_id: int | None
    check_in_time: datetime
    check_out_time: datetime | None = None
    work_location: WorkLocation = WorkLocation.OFFICE

    @property
    def is_open(self):
        return self.check_out_time is None

    def closed_at(self, when):
        return replace(self, check_out_time=when)

    def check_in_day(self, tz=timezone.utc):
        return self.check_in_time.astimezone(tz).date()

    @classmethod
    def from_record(cls, record, tz=timezone.utc):
        session_id = record.get("attendance_id", record.get("id"))
        if session_id is None or not record.get("check_in"):
            raise ValueError("Attendance record has no id or check-in time")
        user_id = record.get("user_id")
        return cls(
            session_id=int(session_id),
            user_id=int(user_id) if user_id is not None else None,
            check_in_time=parse_timestamp(record["check_in"], tz),
            check_out_time=parse_timestamp(record.get("check_out"), tz),
            work_location=WorkLocation.parse(record.get("work_location") or record.get("workLocation")),
        )

    def to_dict(self):
        return {
            "session_id": self.session_id,
            "user_id": self.user_id,
            "check_in": self.check_in_time.isoformat(),
            "check_out": self.check_out_time.isoformat() if self.check_out_time else None,
            "work_location": self.work_location.value,
        }

    @classmethod
    def from_dict(cls, data):
        return cls.from_record({
            "attendance_id": data["session_id"],
            "user_id": data.get("user_id"),
            "check_in": data["check_in"],
            "check_out": data.get("check_out"),
            "work_location": data.get("work_location"),
        })


# Looks through the user's WFH requests for an approved one covering `day`. Returns (approved, request_id).
def find_wfh_approval(wfh_requests, day: date):
    for req in wfh_requests or []:
        if str(req.get("status", "")).lower() != "approved":
            continue
        try:
            start = date.fromisoformat(str(req["start_date"])[:10])
            end = date.fromisoformat(str(req.get("end_date") or req["start_date"])[:10])
        except (KeyError, ValueError):
            continue
        if start <= day <= end:
            return True, req.get("id", req.get("wfh_id"))
    return False, None
