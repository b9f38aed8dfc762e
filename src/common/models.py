"""Response envelopes shared by the storefront HTTP surfaces."""

from pydantic import BaseModel


class HealthResponse(BaseModel):
    """Liveness probe payload."""

    status: str = "healthy"
    service: str
    version: str
    environment: str = "development"


class ErrorResponse(BaseModel):
    """Body returned for handled errors (4xx conflicts, bad ids) and crashes."""

    error: str
    detail: str | None = None
    status_code: int = 500
    path: str | None = None
