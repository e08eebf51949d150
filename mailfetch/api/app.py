"""FastAPI application exposing mail retrieval over HTTP."""

import json
from typing import Optional

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from mailfetch import __version__
from mailfetch.utils.config_manager import AppConfig, get_config_manager
from mailfetch.utils.logging import get_logger, init_logging

from .handler import FetchBodyService, FetchEmailsService, FetchResult
from .schemas import HealthResponse

logger = get_logger(__name__)


async def _read_payload(request: Request):
    """Decoded JSON body, or None when the body is empty or not JSON."""
    raw = await request.body()
    if not raw.strip():
        return {}
    try:
        return json.loads(raw)
    except (UnicodeDecodeError, json.JSONDecodeError):
        return None


def _respond(result: FetchResult) -> JSONResponse:
    return JSONResponse(status_code=result.status_code, content=result.body)


def create_app(config: Optional[AppConfig] = None) -> FastAPI:
    """Build the application.

    Args:
        config: Settings to use; the process-wide config when omitted
    """
    config = config or get_config_manager().config

    log_manager = init_logging()
    log_manager.set_level(config.logging.log_level)
    log_manager.set_console_level(config.logging.console_level)

    app = FastAPI(title="mailfetch", version=__version__)

    app.add_middleware(
        CORSMiddleware,
        allow_origins=config.server.cors_origins,
        allow_methods=["POST", "GET", "OPTIONS"],
        allow_headers=config.server.cors_headers,
    )

    emails_service = FetchEmailsService(settings=config.imap)
    body_service = FetchBodyService(settings=config.imap)

    # Handlers are reached through app.state so tests can swap in fakes
    app.state.emails_service = emails_service
    app.state.body_service = body_service

    @app.post("/fetch-emails")
    async def fetch_emails(request: Request) -> JSONResponse:
        payload = await _read_payload(request)
        if payload is None:
            return JSONResponse(
                status_code=400,
                content={"success": False, "emails": [], "count": 0, "error": "Request body is not valid JSON"},
            )
        return _respond(await request.app.state.emails_service.fetch(payload))

    @app.post("/fetch-body")
    async def fetch_body(request: Request) -> JSONResponse:
        payload = await _read_payload(request)
        if payload is None:
            return JSONResponse(
                status_code=400,
                content={"success": False, "error": "Request body is not valid JSON"},
            )
        return _respond(await request.app.state.body_service.fetch_body(payload))

    @app.get("/health", response_model=HealthResponse)
    async def health() -> HealthResponse:
        return HealthResponse(version=__version__)

    logger.info("HTTP application created", extra={"cors_origins": config.server.cors_origins})
    return app
