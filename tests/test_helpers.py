"""
Test helper functions and utilities for reducing duplicate code across test modules
"""
import asyncio
from typing import Dict, Iterable, List, Optional
from unittest.mock import AsyncMock, MagicMock

from mailfetch.core.email.imap.connection import IMAPConnection
from mailfetch.core.email.imap.protocol import IMAPProtocol
from mailfetch.core.email.imap.responses import (
    CommandResponse,
    Literal,
    TaggedCompletion,
    UntaggedResponse,
)
from mailfetch.core.models.email import ConnectionConfig


class IMAPTestHelper:
    """Helper methods for building IMAP wire data"""

    DEFAULT_ENVELOPE = (
        '("Mon, 01 Jan 2024 10:00:00 +0000" "Envelope subject" '
        '(("Alice" NIL "alice" "example.com")) (("Alice" NIL "alice" "example.com")) '
        '(("Alice" NIL "alice" "example.com")) ((NIL NIL "bob" "example.com")) '
        'NIL NIL NIL "<msg@example.com>")'
    )

    @staticmethod
    def create_header(
        subject: Optional[str] = "Test Subject",
        sender: Optional[str] = "sender@example.com",
        to: Optional[str] = "recipient@example.com",
        date: Optional[str] = "Tue, 02 Jan 2024 09:30:00 +0100",
        content_type: str = "text/plain; charset=utf-8",
    ) -> str:
        """Create a header block; pass None to leave a field out"""
        lines = []
        if date is not None:
            lines.append(f"Date: {date}")
        if sender is not None:
            lines.append(f"From: {sender}")
        if to is not None:
            lines.append(f"To: {to}")
        if subject is not None:
            lines.append(f"Subject: {subject}")
        lines.append(f"Content-Type: {content_type}")
        return "\r\n".join(lines) + "\r\n\r\n"

    @staticmethod
    def create_fetch_response(
        sequence: int,
        flags: str = "\\Seen",
        header: Optional[str] = None,
        text: str = "Test body",
        first_part: Optional[str] = None,
        envelope: Optional[str] = None,
    ) -> bytes:
        """Create an untagged FETCH response with literal body sections"""
        header = IMAPTestHelper.create_header() if header is None else header
        envelope = IMAPTestHelper.DEFAULT_ENVELOPE if envelope is None else envelope
        first_part = text if first_part is None else first_part

        def literal(value: str) -> bytes:
            data = value.encode("utf-8")
            return b"{" + str(len(data)).encode() + b"}\r\n" + data

        return (
            f"* {sequence} FETCH (FLAGS ({flags}) ENVELOPE {envelope} BODY[HEADER] ".encode()
            + literal(header)
            + b" BODY[TEXT] "
            + literal(text)
            + b" BODY[1] "
            + literal(first_part)
            + b")\r\n"
        )

    @staticmethod
    def create_untagged(*parts) -> UntaggedResponse:
        """Create an UntaggedResponse from str and bytes (literal) parts"""
        return UntaggedResponse(
            parts=[Literal(p) if isinstance(p, bytes) else p for p in parts]
        )

    @staticmethod
    def create_response(
        untagged: Iterable[UntaggedResponse] = (),
        status: str = "OK",
        text: str = "completed",
        tag: str = "A001",
    ) -> CommandResponse:
        """Create a CommandResponse with a tagged completion"""
        return CommandResponse(
            tag=tag,
            untagged=list(untagged),
            completion=TaggedCompletion(tag=tag, status=status, text=text),
        )

    @staticmethod
    def create_stream_protocol(data: bytes = b"", eof: bool = True, command_timeout: float = 2):
        """Create an IMAPProtocol reading prepared server bytes.

        Must be called from a running event loop.

        Returns:
            (protocol, writer mock); written bytes are in writer.write calls
        """
        reader = asyncio.StreamReader()
        if data:
            reader.feed_data(data)
        if eof:
            reader.feed_eof()

        writer = MagicMock()
        writer.drain = AsyncMock()
        writer.wait_closed = AsyncMock()

        connection = IMAPConnection(reader, writer, "imap.test.com", 143, False)
        return IMAPProtocol(connection, command_timeout=command_timeout), writer

    @staticmethod
    def written(writer) -> bytes:
        """Everything the protocol wrote to a writer mock"""
        return b"".join(call.args[0] for call in writer.write.call_args_list)


class FakeIMAPServer:
    """Scripted IMAP server on localhost.

    Answers LOGIN, SELECT, SEARCH, FETCH and LOGOUT from canned data and
    records every command line it receives. A reply of None hangs up; an
    empty reply leaves the command unanswered and reads the next one.
    """

    def __init__(
        self,
        messages: Optional[Dict[int, bytes]] = None,
        recent: Iterable[int] = (),
        all_numbers: Optional[Iterable[int]] = None,
        greeting: str = "* OK [CAPABILITY IMAP4rev1] Fake server ready",
        login_ok: bool = True,
        select_ok: bool = True,
        search_ok: bool = True,
        exists: Optional[int] = None,
        drop_on_fetch: Optional[int] = None,
        drop_on_login: bool = False,
        stall_on_fetch: Optional[int] = None,
    ):
        self.messages = messages or {}
        self.recent = list(recent)
        self.all_numbers = (
            sorted(self.messages) if all_numbers is None else list(all_numbers)
        )
        self.greeting = greeting
        self.login_ok = login_ok
        self.select_ok = select_ok
        self.search_ok = search_ok
        self.exists = len(self.all_numbers) if exists is None else exists
        self.drop_on_fetch = drop_on_fetch
        self.drop_on_login = drop_on_login
        self.stall_on_fetch = stall_on_fetch

        self.commands: List[str] = []
        self.login_args: List[str] = []
        self.connections = 0
        self.port: Optional[int] = None
        self._server: Optional[asyncio.AbstractServer] = None

    async def start(self) -> "FakeIMAPServer":
        self._server = await asyncio.start_server(self._handle, "127.0.0.1", 0)
        self.port = self._server.sockets[0].getsockname()[1]
        return self

    async def stop(self) -> None:
        if self._server is not None:
            self._server.close()
            await self._server.wait_closed()

    async def __aenter__(self):
        return await self.start()

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        await self.stop()

    def config(self, user: str = "test@example.com", password: str = "testpass") -> ConnectionConfig:
        """Credentials pointing at this server"""
        return ConnectionConfig(host="127.0.0.1", port=self.port, user=user, password=password)

    def payload(self, user: str = "test@example.com", password: str = "testpass") -> dict:
        """Request body pointing at this server"""
        return {
            "imap_config": {
                "host": "127.0.0.1",
                "port": self.port,
                "user": user,
                "pass": password,
            }
        }

    @property
    def fetched(self) -> List[int]:
        """Sequence numbers FETCH was called with, in order"""
        return [
            int(cmd.split()[2]) for cmd in self.commands if cmd.split()[1].upper() == "FETCH"
        ]

    async def _read_command(self, reader, writer) -> Optional[str]:
        """Read one command line, answering literal continuations"""
        line = await reader.readline()
        if not line:
            return None

        text = line.decode("utf-8").rstrip("\r\n")
        while text.endswith("}") and "{" in text:
            head, _, size = text[:-1].rpartition("{")
            writer.write(b"+ Ready for literal data\r\n")
            await writer.drain()
            data = await reader.readexactly(int(size))
            rest = await reader.readline()
            text = head + '"' + data.decode("utf-8") + '"' + rest.decode("utf-8").rstrip("\r\n")
        return text

    async def _handle(self, reader, writer):
        self.connections += 1
        writer.write(self.greeting.encode() + b"\r\n")
        await writer.drain()

        try:
            while True:
                command = await self._read_command(reader, writer)
                if command is None:
                    break
                self.commands.append(command)

                tag, _, rest = command.partition(" ")
                name, _, args = rest.partition(" ")
                reply = self._reply(tag, name.upper(), args)
                if reply is None:
                    break
                writer.write(reply)
                await writer.drain()
                if name.upper() == "LOGOUT":
                    break
        finally:
            writer.close()

    def _reply(self, tag: str, name: str, args: str) -> Optional[bytes]:
        ok = f"{tag} OK {name} completed\r\n".encode()

        if name == "LOGIN":
            self.login_args.append(args)
            if self.drop_on_login:
                return None
            if self.login_ok:
                return ok
            return f"{tag} NO [AUTHENTICATIONFAILED] Invalid credentials\r\n".encode()

        if name == "SELECT":
            if not self.select_ok:
                return f"{tag} NO Mailbox does not exist\r\n".encode()
            return (
                f"* {self.exists} EXISTS\r\n"
                f"* {len(self.recent)} RECENT\r\n"
                f"* OK [UIDVALIDITY 1700000000] UIDs valid\r\n"
                f"* OK [UIDNEXT {self.exists + 1}] Predicted next UID\r\n"
                f"{tag} OK [READ-WRITE] SELECT completed\r\n"
            ).encode()

        if name == "SEARCH":
            if not self.search_ok:
                return f"{tag} BAD Search failed\r\n".encode()
            numbers = self.recent if args.strip().upper() == "RECENT" else self.all_numbers
            line = " ".join(["* SEARCH"] + [str(n) for n in numbers])
            return line.encode() + b"\r\n" + ok

        if name == "FETCH":
            sequence = int(args.split()[0])
            if sequence == self.drop_on_fetch:
                return None
            if sequence == self.stall_on_fetch:
                return b""
            if sequence not in self.messages:
                return f"{tag} NO No such message\r\n".encode()
            return self.messages[sequence] + ok

        if name == "LOGOUT":
            return b"* BYE Logging out\r\n" + ok

        return f"{tag} BAD Unknown command\r\n".encode()


def closed_port() -> int:
    """A localhost port with nothing listening on it"""
    import socket

    with socket.socket(socket.AF_INET, socket.SOCK_STREAM) as sock:
        sock.bind(("127.0.0.1", 0))
        return sock.getsockname()[1]
