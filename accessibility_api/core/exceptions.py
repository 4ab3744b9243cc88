"""
Error taxonomy for the analysis pipeline and the handlers that render it.

Caller-input errors map to 400, missing reports to 404, and everything that
goes wrong while acquiring or analyzing a page maps to 500. Acquisition and
rule-engine failures stay separate classes so operators can tell
"couldn't get the page" apart from "couldn't analyze the page".
"""

from typing import Optional

import structlog
from fastapi import Request, status
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

logger = structlog.get_logger(__name__)

URL_FAILURE_PREFIX = "Failed to analyze URL. "


class AnalysisError(Exception):
    """Base class for every error the pipeline surfaces to callers."""

    status_code = status.HTTP_500_INTERNAL_SERVER_ERROR
    default_message = "Analysis failed."

    def __init__(self, message: Optional[str] = None, detail: Optional[str] = None):
        self.message = message or self.default_message
        self.detail = detail
        super().__init__(self.message)


# Caller input (400)

class InvalidUrl(AnalysisError):
    status_code = status.HTTP_400_BAD_REQUEST
    default_message = "Invalid URL format"


class InvalidMarkup(AnalysisError):
    status_code = status.HTTP_400_BAD_REQUEST
    default_message = "Please provide valid HTML content"


# Acquisition (500)

class AcquisitionError(AnalysisError):
    default_message = URL_FAILURE_PREFIX + "Please check if the URL is accessible and try again."


class NavigationTimeout(AcquisitionError):
    default_message = URL_FAILURE_PREFIX + "The page took too long to load."


class NetworkUnreachable(AcquisitionError):
    default_message = URL_FAILURE_PREFIX + "Network error occurred."


class BrowserLaunchFailed(AcquisitionError):
    """
    ``local`` is False when the browser that failed is not the in-process
    Chromium, e.g. an unconfigured remote rendering service.
    """

    default_message = URL_FAILURE_PREFIX + "The rendering browser could not be started."

    def __init__(self, message: Optional[str] = None, detail: Optional[str] = None, local: bool = True):
        super().__init__(message, detail)
        self.local = local


class ResponseTooLarge(AcquisitionError):
    default_message = URL_FAILURE_PREFIX + "The page is too large to analyze."


class PageLoadFailed(AcquisitionError):
    default_message = URL_FAILURE_PREFIX + "The page could not be loaded properly."


# Analysis (500)

class RuleEngineFailure(AnalysisError):
    default_message = "Accessibility analysis failed while evaluating the page."


# Store (404)

class ReportNotFound(AnalysisError):
    status_code = status.HTTP_404_NOT_FOUND
    default_message = "Report not found"


async def analysis_exception_handler(request: Request, exc: AnalysisError) -> JSONResponse:
    log = logger.warning if exc.status_code < 500 else logger.error
    log(
        "Analysis error",
        path=request.url.path,
        error_type=type(exc).__name__,
        error=exc.message,
        detail=exc.detail,
    )
    return JSONResponse(status_code=exc.status_code, content={"error": exc.message})


async def http_exception_handler(request: Request, exc: StarletteHTTPException) -> JSONResponse:
    return JSONResponse(status_code=exc.status_code, content={"error": str(exc.detail)})


async def validation_exception_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    logger.warning("Validation error", path=request.url.path, errors=exc.errors())
    return JSONResponse(
        status_code=status.HTTP_400_BAD_REQUEST,
        content={"error": "Invalid request body"},
    )


async def general_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    logger.error(
        "Unhandled server error",
        path=request.url.path,
        method=request.method,
        error=str(exc),
        error_type=type(exc).__name__,
        exc_info=exc,
    )
    return JSONResponse(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        content={"error": "Internal server error"},
    )
