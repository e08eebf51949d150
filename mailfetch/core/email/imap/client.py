"""IMAP client - mailbox session and per-message fetch loop."""

import time
from datetime import datetime
from enum import Enum
from typing import List, Optional, Tuple

from mailfetch.core.email.constants import BODY_ITEMS, FETCH_ITEMS
from mailfetch.core.email.imap.connection import IMAPConnection, open_connection
from mailfetch.core.email.imap.protocol import IMAPProtocol
from mailfetch.core.email.parser import (
    fetch_attributes,
    find_fetch_item,
    looks_like_html,
    parse_fetch_response,
)
from mailfetch.core.models.email import (
    ConnectionConfig,
    FetchBatch,
    MailboxStatus,
    MailMessage,
    utc_now,
)
from mailfetch.utils.config_manager import IMAPSettings
from mailfetch.utils.errors import (
    AuthenticationError,
    IMAPConnectionError,
    IMAPError,
    InvalidCredentialsError,
    MailfetchError,
)
from mailfetch.utils.logging import get_logger, log_event

logger = get_logger(__name__)


class SessionState(Enum):
    """Lifecycle of one IMAP session."""

    DISCONNECTED = "disconnected"
    CONNECTED = "connected"
    AUTHENTICATED = "authenticated"
    SELECTED = "selected"
    FETCHING = "fetching"
    CLOSED = "closed"


def most_recent(numbers: List[int], limit: int) -> List[int]:
    """The ``limit`` numerically highest sequence numbers, ascending."""
    if limit <= 0:
        return []
    return sorted(numbers)[-limit:]


class IMAPClient:
    """One invocation's connection to an inbox.

    Use as an async context manager; the connection is logged out and
    closed on exit whatever happened inside.

        async with IMAPClient(config) as client:
            batch = await client.fetch_inbox()
    """

    def __init__(self, config: ConnectionConfig, settings: Optional[IMAPSettings] = None):
        self.config = config
        self.settings = settings or IMAPSettings()
        self.state = SessionState.DISCONNECTED
        self._connection: Optional[IMAPConnection] = None
        self._protocol: Optional[IMAPProtocol] = None

    @property
    def protocol(self) -> IMAPProtocol:
        if self._protocol is None:
            raise IMAPConnectionError("IMAP client is not connected")
        return self._protocol

    def _transition(self, state: SessionState) -> None:
        logger.debug(f"IMAP session {self.state.value} -> {state.value}")
        self.state = state

    def _authentication_failure(self, message: str, cause: Optional[Exception] = None):
        details = {"server": self.config.host, "username": self.config.user}
        if cause is not None:
            details["cause"] = type(cause).__name__
        return InvalidCredentialsError(message, details=details)

    ## Connection lifecycle

    async def connect(self) -> None:
        """Open the transport and read the server greeting.

        Raises:
            IMAPConnectionError: If the server cannot be reached
            InvalidCredentialsError: If the connected server fails before login
        """
        self._connection = await open_connection(
            self.config,
            timeout=self.settings.connect_timeout,
            secure_ports=self.settings.secure_ports,
        )
        if self._connection is None:
            raise IMAPConnectionError(
                f"Failed to connect to IMAP server {self.config.host}:{self.config.port}",
                details={"server": self.config.host, "port": self.config.port},
            )

        self._protocol = IMAPProtocol(
            self._connection, command_timeout=self.settings.command_timeout
        )
        self._transition(SessionState.CONNECTED)

        # __aexit__ does not run when __aenter__ fails
        try:
            await self._protocol.read_greeting()
        except (MailfetchError, OSError) as e:
            await self.close()
            raise self._authentication_failure(
                f"IMAP server failed before authentication: {e}", e
            ) from e
        except BaseException:
            await self.close()
            raise

    async def close(self) -> None:
        """Log out if possible and close the connection exactly once."""
        if self.state == SessionState.CLOSED:
            return

        try:
            if self._protocol is not None and self.state != SessionState.DISCONNECTED:
                await self._protocol.logout()
        finally:
            if self._connection is not None:
                await self._connection.close()
            self._transition(SessionState.CLOSED)

    async def __aenter__(self):
        await self.connect()
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        await self.close()

    ## Session steps

    async def login(self) -> None:
        """Authenticate.

        Until the session is authenticated every failure is reported as an
        authentication failure, including the server hanging up or timing out.

        Raises:
            InvalidCredentialsError: If the server rejects the credentials
        """
        try:
            authenticated = await self.protocol.login(self.config.user, self.config.password)
        except AuthenticationError:
            raise
        except (MailfetchError, OSError) as e:
            raise self._authentication_failure(
                f"IMAP server failed during login: {e}", e
            ) from e

        if not authenticated:
            raise self._authentication_failure("IMAP authentication failed")
        self._transition(SessionState.AUTHENTICATED)

    async def select_mailbox(self, mailbox: Optional[str] = None) -> MailboxStatus:
        status = await self.protocol.select(mailbox or self.settings.mailbox)
        self._transition(SessionState.SELECTED)
        return status

    async def select_sequence_numbers(self) -> List[int]:
        """Pick which messages to fetch.

        Recent messages if there are any, otherwise the newest
        ``recent_fallback_limit`` of all messages; never more than
        ``max_messages``.
        """
        numbers = await self.protocol.search("RECENT")

        if not numbers:
            all_numbers = await self.protocol.search("ALL")
            numbers = most_recent(all_numbers, self.settings.recent_fallback_limit)
            logger.debug(
                "No recent messages, falling back to newest of ALL",
                extra={"total": len(all_numbers), "selected": len(numbers)},
            )

        if len(numbers) > self.settings.max_messages:
            numbers = most_recent(numbers, self.settings.max_messages)

        return numbers

    def _connection_lost(self) -> bool:
        return self._connection is None or self._connection.reader.at_eof()

    async def fetch_messages(
        self, numbers: List[int], batch_timestamp: Optional[datetime] = None
    ) -> List[MailMessage]:
        """FETCH and parse each message in turn.

        A message that fails to fetch, times out or does not parse is logged
        and skipped. Losing the connection ends the whole run.
        """
        batch_timestamp = batch_timestamp or utc_now()
        messages: List[MailMessage] = []
        self._transition(SessionState.FETCHING)

        for sequence in numbers:
            try:
                response = await self.protocol.fetch(sequence, FETCH_ITEMS)
                messages.append(parse_fetch_response(response, sequence, batch_timestamp))

            except Exception as e:
                if self._connection_lost():
                    raise
                logger.warning(
                    f"Skipping message {sequence}: {e}",
                    extra={"sequence": sequence, "error_type": type(e).__name__},
                )

        return messages

    async def fetch_inbox(self) -> FetchBatch:
        """Log in, select the inbox and fetch the chosen messages."""
        start_time = time.time()

        await self.login()
        status = await self.select_mailbox()
        numbers = await self.select_sequence_numbers()

        batch = FetchBatch(attempted=len(numbers), status=status)
        if numbers:
            batch.messages = await self.fetch_messages(numbers)

        log_event(
            "imap_fetch",
            "Fetched inbox batch",
            server=self.config.host,
            attempted=batch.attempted,
            fetched=batch.count,
            dropped=batch.dropped,
            exists=status.exists,
            duration_seconds=round(time.time() - start_time, 2),
        )
        return batch

    async def fetch_body(
        self, sequence: int, mailbox: Optional[str] = None
    ) -> Tuple[str, Optional[str]]:
        """Fetch the text and first body part of one message on demand.

        Returns:
            (plain text body, HTML body or None)

        Raises:
            IMAPError: If the message cannot be fetched
        """
        await self.login()
        await self.select_mailbox(mailbox)
        self._transition(SessionState.FETCHING)

        response = await self.protocol.fetch(sequence, BODY_ITEMS)
        attributes = fetch_attributes(find_fetch_item(response, sequence))

        text = str(attributes.get("BODY[TEXT]") or "").strip()
        first_part = str(attributes.get("BODY[1]") or "").strip()

        if not text and not first_part:
            raise IMAPError(
                f"Message {sequence} has no body", details={"sequence": sequence}
            )

        html = first_part if first_part and looks_like_html(first_part) else None
        if not text and html is None:
            text = first_part
        return text, html
