from pydantic import BaseModel
from typing import Optional, Any


class ErrorResponse(BaseModel):
    """
    Standard error envelope returned by every failing route.
    """
    success: bool = False
    error: str
    code: str
    details: Optional[Any] = None
