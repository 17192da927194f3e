"""
app/schemas/response.py

Purpose: Response bodies shared by the HTTP surface
"""

from pydantic import BaseModel
from typing import Optional, Any


class ErrorResponse(BaseModel):
    """
    Standard error response structure.
    """
    error: str
    code: str
    details: Optional[Any] = None


class WebhookAck(BaseModel):
    """Every webhook event gets this, whatever happens to it afterwards."""
    received: bool = True


class SetupSubmitResult(BaseModel):
    success: Optional[bool] = None
    error: Optional[str] = None
