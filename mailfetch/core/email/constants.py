"""Shared constants for IMAP retrieval.

Centralised configuration for:
- IMAP completion statuses and flags
- Default timeouts
- Mailbox selection limits

The defaults here are what ``IMAPSettings`` starts from; deployments
tune them through the config file rather than by editing this module.
"""

from enum import Enum


class IMAPResponse(str, Enum):
    """IMAP tagged completion statuses."""

    OK = "OK"
    NO = "NO"
    BAD = "BAD"


class IMAPFlags:
    """Standard IMAP flags."""

    SEEN = "\\Seen"
    UNSEEN = "\\Unseen"
    FLAGGED = "\\Flagged"
    DELETED = "\\Deleted"
    ANSWERED = "\\Answered"
    DRAFT = "\\Draft"
    RECENT = "\\Recent"


class Timeouts:
    """Timeout settings for IMAP operations (in seconds)."""

    IMAP_CONNECT = 30.0
    IMAP_COMMAND = 30.0
    IMAP_LOGOUT = 5.0
    INVOCATION_DEADLINE = 120.0


class MailboxLimits:
    """How many sequence numbers a single invocation may fetch."""

    RECENT_FALLBACK = 20  # when SEARCH RECENT is empty and we fall back to ALL
    MAX_MESSAGES = 50


# Ports on which TLS is negotiated immediately after connecting
SECURE_PORTS = frozenset({993, 465})

DEFAULT_MAILBOX = "INBOX"

FETCH_ITEMS = "(FLAGS ENVELOPE BODY.PEEK[HEADER] BODY.PEEK[TEXT] BODY.PEEK[1])"
BODY_ITEMS = "(BODY.PEEK[TEXT] BODY.PEEK[1])"
