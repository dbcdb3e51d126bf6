"""
Pydantic models for the Melita API.
"""
from __future__ import annotations

from enum import Enum
from typing import Literal, Optional

from pydantic import BaseModel, ConfigDict, Field


class CancelReason(str, Enum):
    """Why an in-flight analysis was cancelled."""

    STOP = "stop"
    TIMEOUT = "timeout"
    OFFLINE = "offline"
    SUPERSEDED = "superseded"


class AnalysisResult(BaseModel):
    """Flowchart, complexity estimates and explanation for one piece of code."""

    model_config = ConfigDict(frozen=True)

    explanation: str = Field(default="", description="Markdown summary of the code")
    mermaidGraph: str = Field(default="", description="Mermaid flowchart source")
    timeComplexity: str = Field(default="Unknown", description="Big-O time complexity")
    spaceComplexity: str = Field(default="Unknown", description="Big-O space complexity")
    optimizationTip: str = Field(default="", description="Short optimization tip")


class AnalysisState(BaseModel):
    """What the client should currently display."""

    result: Optional[AnalysisResult] = None
    error: Optional[str] = None
    is_analyzing: bool = False
    request_id: Optional[int] = None


class HistoryItem(BaseModel):
    """A completed analysis."""

    id: str
    timestamp: int = Field(..., description="Completion time, epoch milliseconds")
    code: str
    response: AnalysisResult


class AnalyzeRequest(BaseModel):
    """Request payload for code analysis."""
    code: str = Field(..., min_length=1, max_length=50_000, description="Source code to analyze")


class AnalyzeResponse(BaseModel):
    """API response wrapper."""
    success: bool = Field(default=True)
    result: AnalysisResult
    model: str = Field(..., description="Model used for analysis")


class ErrorResponse(BaseModel):
    """Error response."""
    success: bool = Field(default=False)
    error: str = Field(..., description="User-facing error message")
    category: str = Field(default="unexpected", description="Error category")


class ExtractResponse(BaseModel):
    success: bool = Field(default=True)
    code: str


class RenderRequest(BaseModel):
    diagram: str = Field(..., min_length=1, description="Mermaid source")


class RenderResponse(BaseModel):
    success: bool = Field(default=True)
    svg: Optional[str] = None
    width: Optional[float] = None
    height: Optional[float] = None
    zoom: float = Field(default=1.0)
    error: Optional[str] = None


class ZoomRequest(BaseModel):
    action: Literal["in", "out", "reset"]
