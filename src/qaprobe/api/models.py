"""
Pydantic models for qaprobe API requests and responses.
This module defines the request and response schemas used by the qaprobe API.
"""

from typing import (
    Any,
    Dict,
    List,
    Optional,
)

from pydantic import (
    BaseModel,
    Field,
)

from qaprobe.core.schema import LogEvent


# ---------------------------------------------------------------------------
# Pydantic request / response schema
# ---------------------------------------------------------------------------
class RunRequest(BaseModel):
    """Start an agent run."""

    url: str = Field(..., description="Address of the web application to test")
    schema_text: Optional[str] = Field(
        None, alias="schema", description="Optional Swagger/OpenAPI document for context"
    )
    max_iterations: Optional[int] = Field(None, ge=1, description="Override the iteration bound")


class RunResponse(BaseModel):
    """Outcome of a finished run plus the events it emitted."""

    success: bool
    message: Optional[str] = None
    test_files: Optional[List[str]] = None
    error: Optional[str] = None
    logs: List[LogEvent] = Field(default_factory=list)


class TestFilesResponse(BaseModel):
    """Generated test files on disk."""

    __test__ = False  # not a pytest class

    files: List[str]


class RunHistoryResponse(BaseModel):
    """Previously recorded runs, oldest first."""

    runs: List[Dict[str, Any]]
