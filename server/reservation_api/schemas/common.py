"""Common Pydantic schemas."""

from typing import List, Optional

from pydantic import BaseModel, Field


class Violation(BaseModel):
    """Validation error violation."""

    path: str = Field(..., description="Path to the invalid field")
    message: str = Field(..., description="Validation error message")


class Problem(BaseModel):
    """RFC 9457 Problem Details response."""

    type: Optional[str] = Field(None, description="Problem type URI")
    title: str = Field(..., description="Short human-readable summary")
    status: int = Field(..., description="HTTP status code")
    detail: Optional[str] = Field(None, description="Human-readable explanation")
    instance: Optional[str] = Field(None, description="URI reference for this occurrence")
    code: Optional[str] = Field(None, description="Application-specific error code")
    retryable: Optional[bool] = Field(None, description="Whether the operation can be retried")
    violations: Optional[List[Violation]] = Field(None, description="Validation errors")


# Shared OpenAPI error documentation for routers
PROBLEM_RESPONSES = {
    400: {"model": Problem, "description": "Validation or policy error"},
    401: {"model": Problem, "description": "Missing, invalid or expired credential"},
    403: {"model": Problem, "description": "Role not allowed"},
    404: {"model": Problem, "description": "Resource not found"},
    409: {"model": Problem, "description": "Conflict with current state"},
}
