"""IMAP protocol operations - low-level tagged command interface."""

import asyncio
import re
from typing import List, Optional, Union

from mailfetch.core.email.constants import (
    DEFAULT_MAILBOX,
    IMAPResponse,
    Timeouts,
)
from mailfetch.core.email.imap.connection import IMAPConnection
from mailfetch.core.email.imap.responses import (
    CommandResponse,
    ContinuationRequest,
    Literal,
    TaggedCompletion,
    UntaggedResponse,
    literal_size,
)
from mailfetch.core.models.email import MailboxStatus
from mailfetch.utils.errors import (
    IMAPConnectionError,
    IMAPError,
    IMAPProtocolError,
    NetworkTimeoutError,
)
from mailfetch.utils.logging import async_log_call, get_logger

logger = get_logger(__name__)

Argument = Union[str, Literal]

_ATOM_SPECIALS = frozenset("(){ %*\"\\]")
_SEARCH_RE = re.compile(r"^\*\s+SEARCH\b(.*)$", re.IGNORECASE)
_LOGIN_FAILURE_MARKERS = ("AUTHENTICATIONFAILED", "LOGIN FAILED")
_LOGIN_SUCCESS_MARKER = "LOGIN COMPLETED"


class TagGenerator:
    """Monotonic per-session command tags: A001, A002, ..."""

    def __init__(self, prefix: str = "A", start: int = 1):
        self.prefix = prefix
        self._next = start

    def next(self) -> str:
        tag = f"{self.prefix}{self._next:03d}"
        self._next += 1
        return tag


def quote_string(value: str) -> Argument:
    """Render a value as an IMAP quoted string, or a literal when it must be.

    Quoted strings cannot carry CR, LF, NUL or 8-bit data; those go out as
    literals instead.
    """
    if any(c in value for c in "\r\n\x00") or not value.isascii():
        return Literal(value.encode("utf-8"))
    escaped = value.replace("\\", "\\\\").replace('"', '\\"')
    return f'"{escaped}"'


def mailbox_name(name: str) -> Argument:
    """Mailbox names go out bare when they are plain atoms, quoted otherwise."""
    if name and name.isascii() and name.isprintable() and not _ATOM_SPECIALS & set(name):
        return name
    return quote_string(name)


def parse_search_line(line: str) -> List[int]:
    """Sequence numbers from a ``* SEARCH n1 n2 ...`` line.

    >>> parse_search_line("* SEARCH 3 7 9")
    [3, 7, 9]
    >>> parse_search_line("* SEARCH")
    []
    """
    match = _SEARCH_RE.match(line.strip())
    if match is None:
        return []
    return [int(token) for token in match.group(1).split() if token.isdigit()]


def parse_select_status(response: CommandResponse) -> MailboxStatus:
    """Pull EXISTS/RECENT/UIDVALIDITY/UIDNEXT out of a SELECT response."""
    status = MailboxStatus()
    for item in response.untagged:
        head = item.head
        tokens = head.split()
        if len(tokens) >= 2 and tokens[0].isdigit():
            if tokens[1].upper() == "EXISTS":
                status.exists = int(tokens[0])
            elif tokens[1].upper() == "RECENT":
                status.recent = int(tokens[0])
            continue

        match = re.search(r"\[UIDVALIDITY (\d+)\]", head, re.IGNORECASE)
        if match:
            status.uidvalidity = int(match.group(1))
        match = re.search(r"\[UIDNEXT (\d+)\]", head, re.IGNORECASE)
        if match:
            status.uidnext = int(match.group(1))
    return status


def classify_login(response: CommandResponse) -> bool:
    """Decide whether a LOGIN response means we are authenticated.

    Explicit failure markers win; anything not recognised as success is
    treated as failure.
    """
    text = response.text.upper()

    if any(marker in text for marker in _LOGIN_FAILURE_MARKERS):
        return False
    if response.status in (IMAPResponse.NO.value, IMAPResponse.BAD.value):
        return False
    if response.ok or _LOGIN_SUCCESS_MARKER in text:
        return True
    return False


class IMAPProtocol:
    """Tagged command/response engine over one IMAPConnection.

    Commands are strictly sequential: each waits for its tagged completion
    before the next is written.
    """

    def __init__(
        self,
        connection: IMAPConnection,
        command_timeout: float = Timeouts.IMAP_COMMAND,
        tags: Optional[TagGenerator] = None,
    ):
        self.connection = connection
        self.command_timeout = command_timeout
        self.tags = tags or TagGenerator()
        self.preauthenticated = False

    ## Reading

    async def _readline(self) -> bytes:
        line = await self.connection.readline()
        if not line:
            raise IMAPProtocolError(
                "Connection closed by server",
                details={"server": self.connection.host},
            )
        return line

    async def _read_untagged(self, first_line: bytes) -> UntaggedResponse:
        """Read one ``*`` response including every literal it announces."""
        item = UntaggedResponse()
        line = first_line

        while True:
            size = literal_size(line)
            item.parts.append(line.decode("utf-8", errors="replace").rstrip("\r\n"))
            if size is None:
                return item

            try:
                data = await self.connection.readexactly(size)
            except asyncio.IncompleteReadError as e:
                raise IMAPProtocolError(
                    "Connection closed inside a literal",
                    details={"expected": size, "received": len(e.partial)},
                ) from e

            item.parts.append(Literal(data))
            line = await self._readline()

    async def _read_item(self):
        line = await self._readline()

        if line.startswith(b"* "):
            return await self._read_untagged(line)

        if line.startswith(b"+"):
            return ContinuationRequest(line[1:].decode("utf-8", errors="replace").strip())

        text = line.decode("utf-8", errors="replace").rstrip("\r\n")
        tag, _, rest = text.partition(" ")
        status, _, detail = rest.partition(" ")
        return TaggedCompletion(tag=tag, status=status.upper(), text=detail)

    async def _read_response(self, response: CommandResponse) -> CommandResponse:
        while True:
            item = await self._read_item()

            if isinstance(item, UntaggedResponse):
                response.untagged.append(item)
            elif isinstance(item, TaggedCompletion):
                if item.tag == response.tag:
                    response.completion = item
                    return response
                logger.warning(
                    "Ignoring completion for unexpected tag",
                    extra={"expected": response.tag, "received": item.tag},
                )
            else:
                logger.debug("Ignoring unsolicited continuation request")

    async def _with_timeout(self, coro, what: str):
        try:
            return await asyncio.wait_for(coro, timeout=self.command_timeout)
        except asyncio.TimeoutError as e:
            raise NetworkTimeoutError(
                f"IMAP {what} timed out after {self.command_timeout}s",
                details={"server": self.connection.host, "command": what},
            ) from e

    async def read_greeting(self) -> UntaggedResponse:
        """Consume the server greeting sent right after connecting.

        Raises:
            IMAPConnectionError: If the server greets with BYE
            IMAPProtocolError: If the greeting is not an untagged response
        """
        item = await self._with_timeout(self._read_item(), "greeting")

        if not isinstance(item, UntaggedResponse):
            raise IMAPProtocolError("Server did not send a greeting")

        kind = item.kind()
        if kind == "BYE":
            raise IMAPConnectionError(
                "Server refused the connection",
                details={"server": self.connection.host, "greeting": item.head},
            )
        self.preauthenticated = kind == "PREAUTH"

        logger.debug("IMAP greeting received", extra={"greeting": item.head[:80]})
        return item

    ## Writing

    async def _send(self, tag: str, args: List[Argument]) -> CommandResponse:
        response = CommandResponse(tag=tag)
        buffer = tag

        for arg in args:
            if isinstance(arg, Literal):
                await self.connection.write(
                    f"{buffer} {{{len(arg.data)}}}\r\n".encode("utf-8")
                )
                while True:
                    item = await self._read_item()
                    if isinstance(item, ContinuationRequest):
                        break
                    if isinstance(item, TaggedCompletion) and item.tag == tag:
                        # server refused the literal
                        response.completion = item
                        return response
                    if isinstance(item, UntaggedResponse):
                        response.untagged.append(item)
                await self.connection.write(arg.data)
                buffer = ""
            else:
                buffer = f"{buffer} {arg}"

        await self.connection.write(f"{buffer}\r\n".encode("utf-8"))
        return await self._read_response(response)

    async def send(self, command: str, *args: Argument) -> CommandResponse:
        """Send one tagged command and read its full response.

        Args:
            command: Command name, e.g. "SELECT"
            *args: Pre-formatted atoms, or Literal values sent as literals

        Returns:
            CommandResponse ending in the command's tagged completion
        """
        tag = self.tags.next()
        logger.debug(f"IMAP -> {tag} {command}")

        response = await self._with_timeout(self._send(tag, [command, *args]), command)

        logger.debug(
            f"IMAP <- {tag} {response.status}",
            extra={"untagged": len(response.untagged)},
        )
        return response

    ## Commands

    @async_log_call
    async def login(self, user: str, password: str) -> bool:
        """Authenticate with LOGIN.

        Returns:
            True if the server accepted the credentials
        """
        if self.preauthenticated:
            return True

        response = await self.send("LOGIN", quote_string(user), quote_string(password))
        authenticated = classify_login(response)

        if authenticated:
            logger.info("IMAP login succeeded", extra={"server": self.connection.host})
        else:
            logger.warning(
                "IMAP login rejected",
                extra={
                    "server": self.connection.host,
                    "response": response.completion.text if response.completion else "",
                },
            )
        return authenticated

    async def select(self, mailbox: str = DEFAULT_MAILBOX) -> MailboxStatus:
        """Select a mailbox.

        Raises:
            IMAPError: If the server does not complete SELECT with OK
        """
        response = await self.send("SELECT", mailbox_name(mailbox))
        if not response.ok:
            raise IMAPError(
                f"Failed to select mailbox: {mailbox}",
                details={"mailbox": mailbox, "response": response.status},
            )

        status = parse_select_status(response)
        logger.debug(
            f"Selected IMAP mailbox: {mailbox}",
            extra={"exists": status.exists, "recent": status.recent},
        )
        return status

    async def search(self, criteria: str) -> List[int]:
        """Run SEARCH and return the sequence numbers, in server order.

        Raises:
            IMAPError: If the search fails
        """
        response = await self.send("SEARCH", criteria)
        if not response.ok:
            raise IMAPError(
                f"Search failed: {criteria}",
                details={"criteria": criteria, "response": response.status},
            )

        numbers: List[int] = []
        for item in response.of_kind("SEARCH"):
            numbers.extend(parse_search_line(item.render()))

        logger.debug(
            "Search completed", extra={"criteria": criteria, "count": len(numbers)}
        )
        return numbers

    async def fetch(self, sequence: int, items: str) -> CommandResponse:
        """FETCH data items for one message.

        Raises:
            IMAPError: If the server answers NO or BAD
        """
        response = await self.send("FETCH", str(sequence), items)
        if not response.ok:
            raise IMAPError(
                f"FETCH failed for message {sequence}",
                details={"sequence": sequence, "response": response.status},
            )
        return response

    async def logout(self) -> None:
        """Send LOGOUT. Errors are logged, never raised."""
        if self.connection.closed:
            return
        try:
            await asyncio.wait_for(self.send("LOGOUT"), timeout=Timeouts.IMAP_LOGOUT)
        except Exception as e:
            logger.debug(f"LOGOUT failed: {e}")
