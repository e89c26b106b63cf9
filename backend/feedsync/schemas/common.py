from pydantic import BaseModel
from typing import Any, Optional


class ActionResult(BaseModel):
    """Outcome of a user-initiated action, reported back to the user"""
    success: bool
    message: str
    data: Optional[Any] = None


class BadgeResponse(BaseModel):
    count: int
    text: str
    color: str
