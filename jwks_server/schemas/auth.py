from datetime import datetime
from typing import Any, Dict, List

from pydantic import BaseModel, ConfigDict, Field

class HealthResponse(BaseModel):
    status: str = "ok"

class JWKSResponse(BaseModel):
    keys: List[Dict[str, Any]]

class TokenResponse(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    token: str
    kid: str
    expires_at: datetime = Field(..., alias="expiresAt")
    expired: bool

class ErrorResponse(BaseModel):
    error: str
