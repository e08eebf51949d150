"""Mail retrieval domain models"""

from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, List, Mapping, Optional

from mailfetch.utils.errors import InvalidRequestError, MissingCredentialsError


@dataclass(frozen=True)
class ConnectionConfig:
    """Where and how to log in for one invocation. Never persisted."""

    host: str
    port: int
    user: str
    password: str = field(repr=False)

    @classmethod
    def from_dict(cls, data: Optional[Mapping[str, Any]]) -> "ConnectionConfig":
        """Build from the request's ``imap_config`` object.

        Accepts both ``{host, port, user, pass}`` and the older
        ``{server, port, email, password}`` key names.

        Raises:
            MissingCredentialsError: If user or password is missing or blank
            InvalidRequestError: If host is missing or port is not a valid port
        """
        data = data or {}

        user = data.get("user", data.get("email"))
        password = data.get("pass", data.get("password"))
        if not isinstance(user, str) or not user.strip():
            raise MissingCredentialsError("IMAP user is missing or blank")
        if not isinstance(password, str) or not password.strip():
            raise MissingCredentialsError("IMAP password is missing or blank")

        host = data.get("host", data.get("server"))
        if not isinstance(host, str) or not host.strip():
            raise InvalidRequestError("IMAP host is missing", details={"field": "host"})

        port = data.get("port", 993)
        try:
            port = int(port)
        except (TypeError, ValueError):
            raise InvalidRequestError(
                f"IMAP port is not a number: {port!r}", details={"field": "port"}
            )
        if not 0 < port < 65536:
            raise InvalidRequestError(
                f"IMAP port out of range: {port}", details={"field": "port"}
            )

        return cls(host=host.strip(), port=port, user=user.strip(), password=password)


@dataclass
class MailMessage:
    """A normalized inbox message as returned to the caller."""

    id: str
    sender: str
    recipient: str
    subject: str
    body: str
    date: str
    read: bool = False
    starred: bool = False
    has_attachments: bool = False
    html_body: Optional[str] = None

    def to_dict(self) -> dict:
        """Wire representation (camelCase keys)."""
        data = {
            "id": self.id,
            "from": self.sender,
            "to": self.recipient,
            "subject": self.subject,
            "body": self.body,
            "date": self.date,
            "read": self.read,
            "starred": self.starred,
            "hasAttachments": self.has_attachments,
        }
        if self.html_body is not None:
            data["htmlBody"] = self.html_body
        return data


@dataclass
class Envelope:
    """The parts of an IMAP ENVELOPE we care about."""

    date: Optional[str] = None
    subject: Optional[str] = None
    sender: Optional[str] = None
    recipient: Optional[str] = None


@dataclass
class MailboxStatus:
    """Counters reported by SELECT."""

    exists: Optional[int] = None
    recent: Optional[int] = None
    uidvalidity: Optional[int] = None
    uidnext: Optional[int] = None


@dataclass
class FetchBatch:
    """Result of one retrieval run."""

    messages: List[MailMessage] = field(default_factory=list)
    attempted: int = 0
    status: MailboxStatus = field(default_factory=MailboxStatus)

    @property
    def count(self) -> int:
        return len(self.messages)

    @property
    def dropped(self) -> int:
        return self.attempted - len(self.messages)


def make_message_id(sequence: int, batch_timestamp: datetime) -> str:
    """Deterministic id from the sequence number and the batch timestamp."""
    millis = int(batch_timestamp.timestamp() * 1000)
    return f"{sequence}-{millis}"


def utc_now() -> datetime:
    return datetime.now(timezone.utc)
