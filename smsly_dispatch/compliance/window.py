"""
Sending Window
==============
Quiet-hours check in the recipient's local time.
"""

from dataclasses import dataclass
from datetime import datetime, time, timezone
from typing import Dict, Optional
from zoneinfo import ZoneInfo

from smsly_dispatch.config import TimezoneSource
from smsly_dispatch.messaging import nanp_area_code

# Representative NANP area codes per zone; unknown codes fall back to the
# account timezone.
NANP_TIMEZONES: Dict[str, str] = {
    # Eastern
    "201": "America/New_York", "202": "America/New_York", "212": "America/New_York",
    "215": "America/New_York", "305": "America/New_York", "404": "America/New_York",
    "412": "America/New_York", "617": "America/New_York", "646": "America/New_York",
    "718": "America/New_York", "786": "America/New_York", "917": "America/New_York",
    "313": "America/Detroit",
    "317": "America/Indiana/Indianapolis",
    # Central
    "214": "America/Chicago", "312": "America/Chicago", "469": "America/Chicago",
    "504": "America/Chicago", "512": "America/Chicago", "612": "America/Chicago",
    "713": "America/Chicago", "773": "America/Chicago", "816": "America/Chicago",
    # Mountain
    "303": "America/Denver", "385": "America/Denver", "505": "America/Denver",
    "720": "America/Denver", "801": "America/Denver",
    "480": "America/Phoenix", "602": "America/Phoenix",
    # Pacific
    "206": "America/Los_Angeles", "213": "America/Los_Angeles", "310": "America/Los_Angeles",
    "415": "America/Los_Angeles", "503": "America/Los_Angeles", "510": "America/Los_Angeles",
    "619": "America/Los_Angeles", "650": "America/Los_Angeles", "702": "America/Los_Angeles",
    "818": "America/Los_Angeles",
    # Alaska / Hawaii
    "907": "America/Anchorage",
    "808": "Pacific/Honolulu",
}


@dataclass(frozen=True)
class SendWindow:
    """Permitted local sending hours, [start, end)."""
    start: time = time(8, 0)
    end: time = time(21, 0)

    def contains(self, local: datetime) -> bool:
        return self.start <= local.time() < self.end


class TimezoneResolver:
    """Chooses the timezone a recipient's sending window is evaluated in."""

    def __init__(
        self,
        source: TimezoneSource = TimezoneSource.ACCOUNT,
        account_timezone: str = "America/New_York",
        area_codes: Optional[Dict[str, str]] = None,
    ):
        self.source = source
        self.account_timezone = ZoneInfo(account_timezone)
        self._area_codes = NANP_TIMEZONES if area_codes is None else area_codes

    def resolve(self, phone: str) -> ZoneInfo:
        if self.source == TimezoneSource.RECIPIENT:
            area_code = nanp_area_code(phone)
            if area_code and area_code in self._area_codes:
                return ZoneInfo(self._area_codes[area_code])
        return self.account_timezone


class QuietHoursPolicy:
    """Decides whether a send time falls inside the recipient's window."""

    def __init__(
        self,
        window: Optional[SendWindow] = None,
        resolver: Optional[TimezoneResolver] = None,
    ):
        self.window = window or SendWindow()
        self.resolver = resolver or TimezoneResolver()

    def permits(self, phone: str, send_at: datetime) -> bool:
        if send_at.tzinfo is None:
            send_at = send_at.replace(tzinfo=timezone.utc)
        local = send_at.astimezone(self.resolver.resolve(phone))
        return self.window.contains(local)
