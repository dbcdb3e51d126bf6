"""
Exception types raised across Melita.
"""
from __future__ import annotations

from typing import Optional

from melita.models import CancelReason


class MelitaError(Exception):
    """Base exception carrying a user-facing message."""

    category = "unexpected"
    status_code = 500

    def __init__(self, message: str, status_code: Optional[int] = None):
        self.message = message
        if status_code is not None:
            self.status_code = status_code
        super().__init__(message)


class AnalysisError(MelitaError):
    """Unclassified failure while running an analysis."""


class ConnectivityError(MelitaError):
    """Network unreachable before start or lost mid-request."""

    category = "connectivity"
    status_code = 503


class AnalysisTimeoutError(MelitaError):
    """The upstream call exceeded the analysis time budget."""

    category = "timeout"
    status_code = 504


class AnalysisCancelled(MelitaError):
    """The request was cancelled by the user or superseded by a newer one."""

    category = "cancelled"
    status_code = 409

    def __init__(self, reason: CancelReason):
        self.reason = reason
        super().__init__(f"Analysis cancelled ({reason.value})")


class ResponseParseError(MelitaError):
    """The model reply could not be decoded as JSON."""


class CodeExtractionError(MelitaError):
    """OCR of an uploaded image failed."""

    category = "extraction"
    status_code = 502


class RenderError(MelitaError):
    """Mermaid source could not be rendered to SVG."""

    category = "render"


class DiagramNotReadyError(MelitaError):
    """Export requested before a drawing exists."""

    category = "render"
    status_code = 409


class RasterizationBlockedError(MelitaError):
    """The SVG could not be rasterized (external resources, missing backend)."""

    category = "export"


class InvalidUploadError(MelitaError):
    """Uploaded file is not a usable image."""

    category = "upload"
    status_code = 400
