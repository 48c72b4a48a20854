# Copyright 2026 The Matrix.org Foundation C.I.C.
#
# Licensed under the Apache License, Version 2.0 (the "License");
# you may not use this file except in compliance with the License.
# You may obtain a copy of the License at
#
#     http://www.apache.org/licenses/LICENSE-2.0
#
# Unless required by applicable law or agreed to in writing, software
# distributed under the License is distributed on an "AS IS" BASIS,
# WITHOUT WARRANTIES OR CONDITIONS OF ANY KIND, either express or implied.
# See the License for the specific language governing permissions and
# limitations under the License.

import json
from datetime import datetime, timezone
from typing import Any


def _reject_invalid_json(val: Any) -> None:
    """Do not allow Infinity, -Infinity, or NaN values in JSON."""
    raise ValueError("Invalid JSON value: '%s'" % val)


# A custom JSON encoder which:
#   * produces valid JSON (no NaNs etc)
#   * reduces redundant whitespace
json_encoder = json.JSONEncoder(allow_nan=False, separators=(",", ":"))

# Create a custom decoder to reject Python extensions to JSON.
json_decoder = json.JSONDecoder(parse_constant=_reject_invalid_json)


_WEEKDAYS = ("Mon", "Tue", "Wed", "Thu", "Fri", "Sat", "Sun")
_MONTHS = (
    "Jan",
    "Feb",
    "Mar",
    "Apr",
    "May",
    "Jun",
    "Jul",
    "Aug",
    "Sep",
    "Oct",
    "Nov",
    "Dec",
)


def format_rfc1123(ts: datetime) -> str:
    """Formats a timestamp as RFC1123, eg "Mon, 02 Jan 2006 15:04:05 UTC".

    The zone is rendered as its abbreviation, which is what recipients parse.
    Naive timestamps are taken to be UTC. Day and month names are always
    English, whatever the locale.

    Args:
        ts: the timestamp to format

    Returns:
        the formatted timestamp
    """
    if ts.tzinfo is None:
        ts = ts.replace(tzinfo=timezone.utc)

    zone = ts.tzname() or "UTC"
    return "%s, %02d %s %04d %02d:%02d:%02d %s" % (
        _WEEKDAYS[ts.weekday()],
        ts.day,
        _MONTHS[ts.month - 1],
        ts.year,
        ts.hour,
        ts.minute,
        ts.second,
        zone,
    )


def format_rfc3339(ts: datetime) -> str:
    """Formats a timestamp as RFC3339, as used in JSON:API attributes."""
    if ts.tzinfo is None:
        ts = ts.replace(tzinfo=timezone.utc)
    text = ts.isoformat()
    if text.endswith("+00:00"):
        text = text[: -len("+00:00")] + "Z"
    return text


def parse_rfc3339(text: str) -> datetime:
    """Parses a timestamp written by `format_rfc3339`.

    Raises:
        ValueError: if the text is not such a timestamp
    """
    if text.endswith("Z"):
        text = text[:-1] + "+00:00"
    ts = datetime.fromisoformat(text)
    if ts.tzinfo is None:
        ts = ts.replace(tzinfo=timezone.utc)
    return ts
