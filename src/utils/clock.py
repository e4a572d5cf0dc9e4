"""UTC time helpers.

Timestamps are stored naive in UTC so that SQLite and Postgres compare
them the same way.
"""

from datetime import datetime, timedelta

import pytz


def utcnow() -> datetime:
    return datetime.now(pytz.utc).replace(tzinfo=None)


def minutes_from_now(minutes: int) -> datetime:
    return utcnow() + timedelta(minutes=minutes)
