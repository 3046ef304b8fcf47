"""
Synchronous healing schemas.
"""

from typing import Optional
from pydantic import BaseModel, Field


class HealRequest(BaseModel):
    """A single failure report to heal immediately."""

    selector: str = Field(..., description="Selector that failed", json_schema_extra={"examples": ["#submit-btn"]})
    htmlContext: Optional[str] = Field(default=None, description="DOM snapshot around the failure")
    testName: Optional[str] = Field(default=None, description="Name of the failing test")
    errorMessage: Optional[str] = Field(default=None, description="Error reported by the test runner")


class HealResponse(BaseModel):
    """Suggested replacement selector."""

    fixed_selector: str
    confidence: float = Field(..., ge=0.0, le=1.0)
    selector_type: str
    explanation: str
    needs_review: bool
