# Copyright (c) 2026 Pyry Haulos
#
# This software is released under the MIT License.
# https://opensource.org/licenses/MIT

"""AWS timestamp formatting (ISO 8601 basic format, always UTC)."""

from datetime import UTC, datetime


REQUEST_TIME_FORMAT = "%Y%m%dT%H%M%SZ"
DATE_STAMP_FORMAT = "%Y%m%d"


def as_utc(value: datetime) -> datetime:
    """Return *value* as an aware UTC datetime.

    Naive datetimes are taken to already be in UTC.
    """
    if value.tzinfo is None:
        return value.replace(tzinfo=UTC)
    return value.astimezone(UTC)


def to_request_time(value: datetime) -> str:
    """Format as ``YYYYMMDDTHHMMSSZ`` (the ``x-amz-date`` format)."""
    return as_utc(value).strftime(REQUEST_TIME_FORMAT)


def to_date_stamp(value: datetime) -> str:
    """Format as ``YYYYMMDD`` (the credential scope date)."""
    return as_utc(value).strftime(DATE_STAMP_FORMAT)


def from_request_time(value: str) -> datetime:
    """Parse an ``x-amz-date`` value.

    Raises:
        ValueError: If the value is not in ``YYYYMMDDTHHMMSSZ`` format.
    """
    return datetime.strptime(value, REQUEST_TIME_FORMAT).replace(tzinfo=UTC)
