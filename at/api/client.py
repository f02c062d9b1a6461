"""HTTP client for the attendance backend.

Thin wrapper around a ``requests.Session``: bearer token on every call, JSON
in and out, one timeout for everything.  Every failure, network or HTTP,
comes out as ``ApiError`` so callers only have one thing to catch.
"""

from datetime import timezone

import requests

from at.api.models import StatusChange, UserOnlineStatus
from at.common.logger import log
from at.core.errors import ApiError
from at.core.reconcile import WorkingHours
from at.core.session import AttendanceSession
from at.util.misc import now_utc


# Pulls a readable message out of an error response: `detail` (string, list of validation items, or anything else),
# then `message`, then the status text.
def extract_error_message(response):
    fallback = f"HTTP error! status: {response.status_code}"
    try:
        data = response.json()
    except ValueError:
        return response.reason or fallback
    if not isinstance(data, dict):
        return response.reason or fallback
    detail = data.get("detail")
    if detail:
        if isinstance(detail, list):
            return ", ".join(
                item if isinstance(item, str) else str(item.get("msg", item)) if isinstance(item, dict) else str(item)
                for item in detail
            )
        return detail if isinstance(detail, str) else str(detail)
    if data.get("message"):
        return str(data["message"])
    return fallback


class AttendanceApi:

    def __init__(self, base_url, token=None, timeout=10, tz=timezone.utc, session=None):
        self.base_url = base_url.rstrip("/")
        self.token = token
        self.timeout = timeout
        self.tz = tz
        self._session = session or requests.Session()

    def _headers(self):
        headers = {"Content-Type": "application/json"}
        if self.token:
            headers["Authorization"] = f"Bearer {self.token}"
        return headers

    def _request(self, method, endpoint, payload=None):
        url = f"{self.base_url}{endpoint}"
        try:
            response = self._session.request(method, url, json=payload, headers=self._headers(), timeout=self.timeout)
        except requests.exceptions.Timeout as exc:
            raise ApiError(f"Request to {endpoint} timed out after {self.timeout}s") from exc
        except requests.exceptions.RequestException as exc:
            raise ApiError(f"Request to {endpoint} failed: {exc}") from exc

        if not response.ok:
            message = extract_error_message(response)
            if response.status_code in (401, 403):
                log.warning(f"API returned {response.status_code} for {method} {endpoint}: {message}")
            raise ApiError(message, status=response.status_code)

        if response.status_code == 204 or not response.content:
            return None
        try:
            return response.json()
        except ValueError as exc:
            raise ApiError(f"Response from {endpoint} was not valid JSON", status=response.status_code) from exc

    #region === Attendance session ===

    # Today's attendance record for the logged in user, or None when there isn't one.
    def get_attendance_status(self):
        data = self._request("GET", "/attendance/status")
        if not data:
            return None
        record = data.get("attendance", data) if isinstance(data, dict) else None
        if not isinstance(record, dict) or not record.get("check_in"):
            return None
        return AttendanceSession.from_record(record, self.tz)

    def check_in(self, *, user_id, location, selfie, work_location, wfh_request_id=None, when=None):
        when = when or now_utc()
        location_payload = location.to_payload(when)
        is_wfh = work_location.value == "work_from_home"
        payload = {
            "user_id": user_id,
            "gps_location": location_payload,
            "location_data": {"check_in": location_payload},
            "selfie": selfie,
            "check_in_type": "wfh" if is_wfh else "office",
            "work_location": work_location.value,
            "has_wfh_approval": is_wfh,
            "wfh_request_id": wfh_request_id,
        }
        return self._request("POST", "/attendance/check-in/json", payload)

    def check_out(self, *, user_id, location, selfie, work_summary, task_deadline_reason=None, work_report=None, when=None):
        when = when or now_utc()
        location_payload = location.to_payload(when)
        payload = {
            "user_id": user_id,
            "gps_location": location_payload,
            "location_data": {"check_out": location_payload},
            "selfie": selfie,
            "work_summary": work_summary,
            "task_deadline_reason": task_deadline_reason,
            "work_report": work_report,
        }
        return self._request("POST", "/attendance/check-out/json", payload)

    #endregion === Attendance session ===

    #region === Online status ===

    def update_online_status(self, attendance_id, is_online, reason=None):
        payload = {"attendance_id": int(attendance_id), "is_online": bool(is_online), "reason": reason or None}
        return self._request("POST", "/attendance/online-status", payload)

    def get_working_hours(self, attendance_id):
        return WorkingHours.from_payload(self._request("GET", f"/attendance/working-hours/{attendance_id}"))

    def get_user_online_status(self, user_id):
        return UserOnlineStatus.from_payload(self._request("GET", f"/attendance/user-online-status/{user_id}"), self.tz)

    def get_status_history(self, attendance_id):
        data = self._request("GET", f"/attendance/online-status/{attendance_id}") or {}
        return [StatusChange.from_payload(item, self.tz) for item in data.get("status_history", [])]

    # Everyone's online flag, keyed by user id. Used by the managerial board only.
    def get_current_online_status(self):
        data = self._request("GET", "/attendance/current-online-status") or {}
        return {str(user_id): bool((entry or {}).get("is_online")) for user_id, entry in data.items()}

    #endregion === Online status ===

    def get_my_wfh_requests(self):
        data = self._request("GET", "/wfh/my-requests")
        if isinstance(data, dict):
            return data.get("data") or data.get("requests") or []
        return data or []
