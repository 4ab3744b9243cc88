import time
from contextlib import asynccontextmanager
from datetime import datetime, timezone
from typing import Optional

import structlog
import uvicorn
from fastapi import Depends, FastAPI, Query, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from pymongo.errors import PyMongoError
from starlette.exceptions import HTTPException as StarletteHTTPException

from accessibility_api.core.config import get_settings
from accessibility_api.core.exceptions import (
    AnalysisError,
    ReportNotFound,
    analysis_exception_handler,
    general_exception_handler,
    http_exception_handler,
    validation_exception_handler,
)
from accessibility_api.core.logging import setup_logging
from accessibility_api.models import (
    AnalyzeHtmlRequest,
    AnalyzeUrlRequest,
    HtmlAnalysisRequest,
    UrlAnalysisRequest,
)
from accessibility_api.services.analysis import AccessibilityAnalyzer
from accessibility_api.services.rendering import build_coordinator
from accessibility_api.services.report_store import MongoReportStore
from accessibility_api.services.rule_engine import AxeRuleEngine, AxeScriptSource

logger = structlog.get_logger(__name__)

STARTED_AT = time.monotonic()

HTML_FAILURE_MESSAGE = "Failed to analyze HTML content. Please check your HTML and try again."


@asynccontextmanager
async def lifespan(app: FastAPI):
    settings = get_settings()
    setup_logging(settings.log_level)

    store = None
    if settings.mongodb_uri:
        store = MongoReportStore(
            uri=settings.mongodb_uri,
            database=settings.mongodb_database,
            timeout_ms=settings.mongodb_timeout_ms,
            stored_input_max_chars=settings.stored_input_max_chars,
        )
        await store.connect()
    else:
        logger.info("No MONGODB_URI provided, running without MongoDB connection")

    coordinator = build_coordinator(settings)
    engine = AxeRuleEngine(
        AxeScriptSource(settings.axe_script_path, settings.axe_script_url),
        timeout_seconds=settings.rule_engine_timeout_ms / 1000,
    )
    analyzer = AccessibilityAnalyzer(coordinator, engine, store)
    app.state.store = store
    app.state.analyzer = analyzer

    logger.info(
        "Server running",
        port=settings.port,
        environment=settings.environment,
        mongodb_connected=bool(store and store.connected),
    )
    yield

    await analyzer.drain()
    await coordinator.close()
    if store is not None:
        await store.close()
    logger.info("Server stopped")


def get_analyzer(request: Request) -> AccessibilityAnalyzer:
    return request.app.state.analyzer


def get_store(request: Request) -> Optional[MongoReportStore]:
    return getattr(request.app.state, "store", None)


def create_app() -> FastAPI:
    settings = get_settings()
    app = FastAPI(title="Accessibility Analyzer API", version=settings.app_version, lifespan=lifespan)

    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins,
        allow_credentials=True,
        allow_methods=["GET", "POST", "PUT", "DELETE", "OPTIONS"],
        allow_headers=["Content-Type", "Authorization", "Origin", "Accept"],
    )

    @app.middleware("http")
    async def log_requests(request: Request, call_next):
        logger.info("Request", method=request.method, path=request.url.path)
        return await call_next(request)

    app.add_exception_handler(AnalysisError, analysis_exception_handler)
    app.add_exception_handler(StarletteHTTPException, http_exception_handler)
    app.add_exception_handler(RequestValidationError, validation_exception_handler)
    app.add_exception_handler(Exception, general_exception_handler)

    register_routes(app)
    return app


def register_routes(app: FastAPI) -> None:
    @app.get("/")
    async def root():
        return {
            "message": "Accessibility Analyzer API is running",
            "status": "OK",
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "version": app.version,
            "endpoints": {
                "health": "/api/health",
                "analyzeUrl": "/api/analyze-url",
                "analyzeHtml": "/api/analyze-html",
                "history": "/api/analysis-history",
                "report": "/api/analysis/{report_id}",
            },
        }

    @app.get("/api/health")
    async def health(store: Optional[MongoReportStore] = Depends(get_store)):
        """Liveness plus report store connectivity."""
        return {
            "status": "OK",
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "uptime": round(time.monotonic() - STARTED_AT, 3),
            "database": "connected" if store is not None and store.connected else "disconnected",
        }

    @app.post("/api/analyze-url")
    async def analyze_url(body: AnalyzeUrlRequest, analyzer: AccessibilityAnalyzer = Depends(get_analyzer)):
        """Render a live page and check it against WCAG 2.0 A/AA and 2.1 AA."""
        url = (body.url or "").strip()
        logger.info("Analyzing URL", url=url)
        report = await analyzer.analyze(UrlAnalysisRequest(url=url))
        return {"success": True, "data": report.to_response()}

    @app.post("/api/analyze-html")
    async def analyze_html(body: AnalyzeHtmlRequest, analyzer: AccessibilityAnalyzer = Depends(get_analyzer)):
        """Check pasted markup. Scripts in it are never executed."""
        logger.info("Analyzing HTML content", length=len(body.html_content or ""))
        try:
            report = await analyzer.analyze(HtmlAnalysisRequest(markup=body.html_content or ""))
        except AnalysisError as e:
            if e.status_code >= 500:
                e.message = HTML_FAILURE_MESSAGE
            raise
        return {"success": True, "data": report.to_response()}

    @app.get("/api/analysis-history")
    async def analysis_history(
        page: int = Query(1, ge=1),
        limit: int = Query(10, ge=1, le=100),
        kind: Optional[str] = Query(None, alias="type", pattern="^(url|html)$"),
        store: Optional[MongoReportStore] = Depends(get_store),
    ):
        if store is None or not store.connected:
            return {
                "success": True,
                "message": "Database not connected - no history available",
                "data": {
                    "analyses": [],
                    "pagination": {"page": 1, "limit": 10, "total": 0, "pages": 0},
                },
            }
        try:
            data = await store.list_reports(page=page, limit=limit, kind=kind)
        except PyMongoError as e:
            raise AnalysisError("Failed to fetch analysis history", detail=str(e)) from e
        return {"success": True, "data": data}

    @app.get("/api/analysis/{report_id}")
    async def get_analysis(report_id: str, store: Optional[MongoReportStore] = Depends(get_store)):
        if store is None or not store.connected:
            raise ReportNotFound("Report store is not available")
        try:
            report = await store.get_report(report_id)
        except PyMongoError as e:
            raise AnalysisError("Failed to fetch report", detail=str(e)) from e
        if report is None:
            raise ReportNotFound()
        return {"success": True, "data": report}


app = create_app()


def run() -> None:
    settings = get_settings()
    uvicorn.run("accessibility_api.main:app", host=settings.host, port=settings.port)


if __name__ == "__main__":
    run()
