"""HTTP surface: the fetch services and the FastAPI application."""

from .app import create_app
from .handler import FetchBodyService, FetchEmailsService, FetchResult

__all__ = ["create_app", "FetchBodyService", "FetchEmailsService", "FetchResult"]
