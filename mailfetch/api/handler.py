"""Request handling for mail retrieval.

Validates the request, runs the IMAP pipeline under the invocation
deadline and turns the outcome into a status code and JSON body.

Failure policy:
- Authentication failures (blank or rejected credentials, or the server
  failing before login completes) -> 401, never replaced with sample data
- Malformed requests (no host, bad port, unreadable body) -> 400. This
  status is an addition to the 200/401/500 set: such a request never
  reached a server, so it is neither a retrieval failure nor fallback material
- Anything else -> the fallback batch with 200, or in strict mode the
  error itself (502 for network/IMAP failures, 500 otherwise)
"""

import asyncio
import time
from dataclasses import dataclass
from typing import Any, Callable, Dict, Optional

from pydantic import ValidationError as SchemaValidationError

from mailfetch.core.email.fallback import mock_batch
from mailfetch.core.email.imap import IMAPClient
from mailfetch.core.models.email import ConnectionConfig, FetchBatch
from mailfetch.utils.config_manager import IMAPSettings, get_config_manager
from mailfetch.utils.errors import (
    AuthenticationError,
    ErrorHandler,
    InvalidRequestError,
    MailfetchError,
    NetworkError,
    NetworkTimeoutError,
    ValidationError,
    format_error_message,
)
from mailfetch.utils.logging import get_logger, log_event

from .schemas import (
    FetchBodyRequest,
    FetchBodyResponse,
    FetchEmailsRequest,
    FetchEmailsResponse,
)

logger = get_logger(__name__)

ClientFactory = Callable[[ConnectionConfig, IMAPSettings], IMAPClient]


@dataclass
class FetchResult:
    """Status code and JSON body for one request."""

    status_code: int
    body: Dict[str, Any]


def _request_error(error: SchemaValidationError) -> InvalidRequestError:
    fields = [".".join(str(p) for p in e["loc"]) for e in error.errors()]
    return InvalidRequestError(
        "Malformed request body", details={"fields": fields or ["body"]}
    )


class _Service:
    """Shared settings and deadline handling."""

    def __init__(
        self,
        settings: Optional[IMAPSettings] = None,
        client_factory: ClientFactory = IMAPClient,
    ):
        self.settings = settings or get_config_manager().config.imap
        self.client_factory = client_factory

    async def _within_deadline(self, coro):
        try:
            return await asyncio.wait_for(coro, timeout=self.settings.deadline)
        except asyncio.TimeoutError as e:
            raise NetworkTimeoutError(
                f"Mail retrieval exceeded the {self.settings.deadline}s deadline",
                details={"deadline": self.settings.deadline},
            ) from e


class FetchEmailsService(_Service):
    """``POST /fetch-emails``."""

    async def _run(self, config: ConnectionConfig) -> FetchBatch:
        async with self.client_factory(config, self.settings) as client:
            return await client.fetch_inbox()

    def _auth_failure(self, error: AuthenticationError) -> FetchResult:
        ErrorHandler.handle(error, "Mail retrieval authentication failed", log_traceback=False)
        body = FetchEmailsResponse(success=False, error=error.message, authError=True)
        return FetchResult(401, body.to_body())

    def _invalid(self, error: ValidationError) -> FetchResult:
        ErrorHandler.handle(error, "Rejected mail retrieval request", log_traceback=False)
        body = FetchEmailsResponse(success=False, error=error.message)
        return FetchResult(400, body.to_body())

    def _degrade(self, error: Exception, config: ConnectionConfig) -> FetchResult:
        """Fallback batch, or the error itself in strict mode."""
        ErrorHandler.handle(
            error,
            "Mail retrieval failed",
            log_traceback=not isinstance(error, MailfetchError),
        )

        if self.settings.strict_mode:
            status_code = 502 if isinstance(error, NetworkError) else 500
            body = FetchEmailsResponse(success=False, error=format_error_message(error))
            return FetchResult(status_code, body.to_body())

        emails = [message.to_dict() for message in mock_batch(recipient=config.user)]
        log_event(
            "fallback_served",
            "Served fallback batch after retrieval failure",
            server=config.host,
            error_type=type(error).__name__,
        )
        body = FetchEmailsResponse(success=True, emails=emails, count=len(emails))
        return FetchResult(200, body.to_body())

    async def fetch(self, payload: Any) -> FetchResult:
        """Handle one fetch request.

        Args:
            payload: Decoded JSON body, ``{"imap_config": {...}}``

        Returns:
            FetchResult with the HTTP status code and response body
        """
        try:
            request = FetchEmailsRequest.model_validate(payload or {})
        except SchemaValidationError as e:
            return self._invalid(_request_error(e))

        try:
            config = ConnectionConfig.from_dict(request.imap_config)
        except AuthenticationError as e:
            return self._auth_failure(e)
        except ValidationError as e:
            return self._invalid(e)

        start_time = time.time()
        try:
            batch = await self._within_deadline(self._run(config))

        except AuthenticationError as e:
            return self._auth_failure(e)

        except Exception as e:
            return self._degrade(e, config)

        emails = [message.to_dict() for message in batch.messages]
        log_event(
            "fetch_emails",
            "Mail retrieval completed",
            server=config.host,
            count=batch.count,
            dropped=batch.dropped,
            duration_seconds=round(time.time() - start_time, 2),
        )
        body = FetchEmailsResponse(success=True, emails=emails, count=len(emails))
        return FetchResult(200, body.to_body())


class FetchBodyService(_Service):
    """``POST /fetch-body``: one message's body, fetched on demand."""

    def _failure(self, status_code: int, error: MailfetchError, **extra) -> FetchResult:
        body = FetchBodyResponse(success=False, error=error.message, **extra)
        return FetchResult(status_code, body.to_body())

    async def _run(self, config: ConnectionConfig, sequence: int, folder: Optional[str]):
        async with self.client_factory(config, self.settings) as client:
            return await client.fetch_body(sequence, folder)

    async def fetch_body(self, payload: Any) -> FetchResult:
        try:
            request = FetchBodyRequest.model_validate(payload or {})
            if request.sequence is None:
                raise InvalidRequestError(
                    "Message sequence number is required", details={"field": "seq"}
                )
            config = ConnectionConfig.from_dict(request.imap_config)

        except SchemaValidationError as e:
            error = _request_error(e)
            ErrorHandler.handle(error, "Rejected body request", log_traceback=False)
            return self._failure(400, error)

        except AuthenticationError as e:
            ErrorHandler.handle(e, "Body request authentication failed", log_traceback=False)
            return self._failure(401, e, authError=True)

        except ValidationError as e:
            ErrorHandler.handle(e, "Rejected body request", log_traceback=False)
            return self._failure(400, e)

        try:
            text, html = await self._within_deadline(
                self._run(config, request.sequence, request.folder)
            )

        except AuthenticationError as e:
            ErrorHandler.handle(e, "Body request authentication failed", log_traceback=False)
            return self._failure(401, e, authError=True)

        except MailfetchError as e:
            ErrorHandler.handle(e, "Body fetch failed", log_traceback=False)
            return self._failure(502 if isinstance(e, NetworkError) else 500, e)

        except Exception as e:
            ErrorHandler.handle(e, "Body fetch failed")
            body = FetchBodyResponse(success=False, error=format_error_message(e))
            return FetchResult(500, body.to_body())

        body = FetchBodyResponse(success=True, body=text, html_body=html)
        return FetchResult(200, body.to_body())
