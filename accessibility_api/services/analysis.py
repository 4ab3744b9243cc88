import asyncio
from typing import Optional, Set

import structlog

from accessibility_api.models import AnalysisRequest, Report
from accessibility_api.services.report_store import MongoReportStore
from accessibility_api.services.rendering import RenderingCoordinator
from accessibility_api.services.rule_engine import AxeRuleEngine
from accessibility_api.services.scoring import build_report

logger = structlog.get_logger(__name__)


class AccessibilityAnalyzer:
    """Runs one request through render -> rule engine -> report."""

    def __init__(
        self,
        coordinator: RenderingCoordinator,
        engine: AxeRuleEngine,
        store: Optional[MongoReportStore] = None,
    ):
        self.coordinator = coordinator
        self.engine = engine
        self.store = store
        self._pending_saves: Set[asyncio.Task] = set()

    async def analyze(self, request: AnalysisRequest) -> Report:
        # The page is released before scoring starts.
        async with self.coordinator.acquire(request) as document:
            findings = await self.engine.run(document.page)
            analysis_method = document.analysis_method

        report = build_report(findings, request, analysis_method)
        self._schedule_save(report, request)
        return report

    def _schedule_save(self, report: Report, request: AnalysisRequest) -> None:
        if self.store is None or not self.store.connected:
            logger.info("Skipping database save: MongoDB not connected")
            return
        task = asyncio.create_task(self._save(report, request))
        self._pending_saves.add(task)
        task.add_done_callback(self._pending_saves.discard)

    async def _save(self, report: Report, request: AnalysisRequest) -> None:
        try:
            await self.store.save(report, request)
        except Exception as e:
            # A lost history entry never fails the analysis that produced it.
            logger.error(
                "Failed to save analysis to database",
                report_id=report.report_id,
                error=str(e),
                error_type=type(e).__name__,
            )

    async def drain(self) -> None:
        """Wait for in-flight saves, used on shutdown."""
        if self._pending_saves:
            await asyncio.gather(*self._pending_saves, return_exceptions=True)
