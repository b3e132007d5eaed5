from pydantic import BaseModel
from typing import Optional, Any, Dict, Literal


class ErrorResponse(BaseModel):
    """
    Standard error response structure.
    """
    error: str
    code: str
    details: Optional[Any] = None


class WebhookAck(BaseModel):
    """
    Body returned to Telegram. "ignored" means the update was valid but
    carries nothing the bot handles.
    """
    status: Literal["accepted", "ignored"]


class HealthResponse(BaseModel):
    status: Literal["ok", "degraded"]
    timestamp: float
    environment: str
    version: str
    checks: Dict[str, str]
    last_probe_at: Optional[float] = None
