"""
Common schema types used across the API.
"""

from typing import Optional

from pydantic import BaseModel


class ErrorResponse(BaseModel):
    """Standard error response."""

    detail: str
    request_id: Optional[str] = None


class OkResponse(BaseModel):
    """Acknowledgement for flows that reveal nothing else."""

    ok: bool = True
    message: Optional[str] = None
    dev_token: Optional[str] = None


class HealthResponse(BaseModel):
    """Health check response."""

    status: str = "ok"
    version: str
    environment: str
