import datetime as dt

from sqlalchemy.orm import DeclarativeBase


class Base(DeclarativeBase):
    pass


def utcnow() -> dt.datetime:
    """Naive UTC timestamp, matching what ``CURRENT_TIMESTAMP`` stores."""
    return dt.datetime.now(dt.UTC).replace(tzinfo=None)
