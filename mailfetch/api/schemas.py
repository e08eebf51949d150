"""Request and response bodies for the HTTP surface."""

from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field


class FetchEmailsRequest(BaseModel):
    """``POST /fetch-emails`` body.

    ``imap_config`` is kept loose here; ``ConnectionConfig.from_dict`` does the
    field checks so blank credentials map to 401 rather than a schema error.
    """

    model_config = ConfigDict(extra="ignore")

    imap_config: Optional[Dict[str, Any]] = None


class FetchBodyRequest(FetchEmailsRequest):
    """``POST /fetch-body`` body."""

    seq: Optional[int] = Field(default=None, ge=1)
    uid: Optional[int] = Field(default=None, ge=1)
    folder: Optional[str] = None

    @property
    def sequence(self) -> Optional[int]:
        return self.seq if self.seq is not None else self.uid


class FetchEmailsResponse(BaseModel):
    success: bool
    emails: List[Dict[str, Any]] = Field(default_factory=list)
    count: int = 0
    error: Optional[str] = None
    authError: Optional[bool] = None

    def to_body(self) -> Dict[str, Any]:
        # error/authError appear only when set
        return self.model_dump(exclude_none=True)


class FetchBodyResponse(BaseModel):
    success: bool
    body: Optional[str] = None
    html_body: Optional[str] = None
    error: Optional[str] = None
    authError: Optional[bool] = None

    def to_body(self) -> Dict[str, Any]:
        data = self.model_dump(exclude_none=True)
        if self.success:
            data.setdefault("html_body", None)
        return data


class HealthResponse(BaseModel):
    status: str = "ok"
    version: str
