"""IMAP transport - opens the socket, negotiates TLS, owns the byte stream."""

import asyncio
import ssl
import time
from typing import Iterable, Optional

from mailfetch.core.email.constants import SECURE_PORTS, Timeouts
from mailfetch.core.models.email import ConnectionConfig
from mailfetch.utils.logging import get_logger

logger = get_logger(__name__)

# Large enough for FETCH lines that carry quoted bodies instead of literals
STREAM_LIMIT = 4 * 1024 * 1024


class IMAPConnection:
    """A connected (optionally TLS) stream to an IMAP server."""

    def __init__(
        self,
        reader: asyncio.StreamReader,
        writer: asyncio.StreamWriter,
        host: str,
        port: int,
        secure: bool,
    ):
        self.reader = reader
        self.writer = writer
        self.host = host
        self.port = port
        self.secure = secure
        self._closed = False

    @property
    def closed(self) -> bool:
        return self._closed

    async def write(self, data: bytes) -> None:
        self.writer.write(data)
        await self.writer.drain()

    async def readline(self) -> bytes:
        return await self.reader.readline()

    async def readexactly(self, size: int) -> bytes:
        return await self.reader.readexactly(size)

    async def close(self) -> None:
        """Close the stream. Safe to call more than once."""
        if self._closed:
            return
        self._closed = True

        try:
            self.writer.close()
            await asyncio.wait_for(self.writer.wait_closed(), timeout=Timeouts.IMAP_LOGOUT)
            logger.debug("IMAP connection closed", extra={"server": self.host})

        except (OSError, ssl.SSLError, asyncio.TimeoutError) as e:
            logger.debug(f"Error closing IMAP connection: {str(e)}")

    ## Context Manager Helpers

    async def __aenter__(self):
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        await self.close()


def is_secure_port(port: int, secure_ports: Optional[Iterable[int]] = None) -> bool:
    """Whether TLS is negotiated right after connecting on this port."""
    ports = SECURE_PORTS if secure_ports is None else set(secure_ports)
    return port in ports


async def open_connection(
    config: ConnectionConfig,
    timeout: float = Timeouts.IMAP_CONNECT,
    secure_ports: Optional[Iterable[int]] = None,
    ssl_context: Optional[ssl.SSLContext] = None,
) -> Optional[IMAPConnection]:
    """Connect to ``config.host:config.port``.

    TLS is negotiated on implicit-TLS ports using the host name for
    certificate validation.

    Returns:
        The connection, or None if the connect or handshake failed
    """
    secure = is_secure_port(config.port, secure_ports)
    start_time = time.time()

    logger.info(
        "Connecting to IMAP server",
        extra={"server": config.host, "port": config.port, "tls": secure},
    )

    try:
        if secure:
            context = ssl_context or ssl.create_default_context()
            reader, writer = await asyncio.wait_for(
                asyncio.open_connection(
                    config.host,
                    config.port,
                    ssl=context,
                    server_hostname=config.host,
                    limit=STREAM_LIMIT,
                ),
                timeout=timeout,
            )
        else:
            reader, writer = await asyncio.wait_for(
                asyncio.open_connection(config.host, config.port, limit=STREAM_LIMIT),
                timeout=timeout,
            )

    except asyncio.TimeoutError:
        logger.error(
            f"IMAP connection timed out after {time.time() - start_time:.2f}s",
            extra={"server": config.host, "port": config.port},
        )
        return None

    except (OSError, ssl.SSLError) as e:
        logger.error(
            f"IMAP connection failed: {str(e)}",
            extra={"server": config.host, "port": config.port},
        )
        return None

    logger.info(
        "IMAP connection established",
        extra={
            "server": config.host,
            "duration_seconds": round(time.time() - start_time, 2),
        },
    )
    return IMAPConnection(reader, writer, config.host, config.port, secure)
