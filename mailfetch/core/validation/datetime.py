"""Datetime parsing utilities."""

import email.utils
from datetime import datetime, timezone
from typing import Optional

from dateutil import parser as dateutil_parser

from mailfetch.utils.logging import get_logger

logger = get_logger(__name__)


class DateTimeParser:
    """Parse mail header dates into ISO-8601 strings"""

    @staticmethod
    def parse_header_date(value: Optional[str]) -> Optional[datetime]:
        """Parse an RFC 5322 date, falling back to a lenient parse.

        Naive results are taken to be UTC.
        """
        if not value or not value.strip():
            return None

        value = value.strip()

        try:
            parsed = email.utils.parsedate_to_datetime(value)
        except (TypeError, ValueError, IndexError):
            parsed = None

        if parsed is None:
            try:
                parsed = dateutil_parser.parse(value)
            except (ValueError, OverflowError) as e:
                logger.debug(f"Unparsable date {value!r}: {e}")
                return None

        if parsed.tzinfo is None:
            parsed = parsed.replace(tzinfo=timezone.utc)

        return parsed

    @staticmethod
    def to_iso(value: Optional[str], *fallbacks: Optional[str]) -> str:
        """ISO-8601 form of the first parsable value, or now if none parse."""
        for candidate in (value, *fallbacks):
            parsed = DateTimeParser.parse_header_date(candidate)
            if parsed is not None:
                return parsed.isoformat()

        return datetime.now(timezone.utc).isoformat()
