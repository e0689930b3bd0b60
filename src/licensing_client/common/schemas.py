"""Pydantic schemas for licensing server responses.

Server payloads are parsed once at the client boundary. Unknown fields are
kept in ``model_extra`` so callers can still reach server-specific data.
"""

from typing import Optional

from pydantic import BaseModel, ConfigDict


class ServerResponse(BaseModel):
    model_config = ConfigDict(extra="allow")


class TokenResponse(ServerResponse):
    """Response of the activate and refresh endpoints."""

    token: Optional[str] = None


class HeartbeatResponse(ServerResponse):
    success: bool = False
    token: Optional[str] = None
    error: str = ""


class DeactivationResponse(ServerResponse):
    success: bool = False


class ValidationResponse(ServerResponse):
    valid: bool = False


class HealthResponse(ServerResponse):
    status: str = ""

    @property
    def healthy(self) -> bool:
        return self.status == "healthy"
