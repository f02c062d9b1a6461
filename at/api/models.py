"""Typed views over the attendance backend's JSON responses."""

from dataclasses import dataclass
from datetime import datetime, timezone

from at.util.misc import parse_timestamp


@dataclass(frozen=True)
class UserOnlineStatus:
    is_checked_in: bool
    checked_out: bool
    is_online: bool
    last_status_change: datetime | None

    @property
    def has_open_session(self):
        return self.is_checked_in and not self.checked_out

    @classmethod
    def from_payload(cls, data, tz=timezone.utc):
        data = data or {}
        return cls(
            is_checked_in=bool(data.get("is_checked_in")),
            checked_out=bool(data.get("checked_out")),
            is_online=bool(data.get("is_online")),
            last_status_change=parse_timestamp(data.get("last_status_change"), tz),
        )


@dataclass(frozen=True)
class StatusChange:
    is_online: bool
    timestamp: datetime | None
    reason: str | None = None

    @classmethod
    def from_payload(cls, data, tz=timezone.utc):
        return cls(
            is_online=bool(data.get("is_online")),
            timestamp=parse_timestamp(data.get("timestamp"), tz),
            reason=data.get("reason") or None,
        )


@dataclass(frozen=True)
class GeoLocation:
    latitude: float
    longitude: float
    accuracy: float | None = None
    address: str = ""

    def to_payload(self, timestamp):
        return {
            "latitude": self.latitude,
            "longitude": self.longitude,
            "accuracy": self.accuracy,
            "address": self.address,
            "timestamp": timestamp.isoformat(),
        }
