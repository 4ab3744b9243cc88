"""
Adapter around axe-core, the accessibility rule engine.

The engine runs inside the page it is given; nothing is bound to process
state, so any number of analyses can evaluate their own pages concurrently.
The WCAG tag selection is fixed here and nowhere else.
"""

import asyncio
from pathlib import Path
from typing import Optional, Tuple

import requests
import structlog
from playwright.async_api import Error as PlaywrightError
from playwright.async_api import Page
from pydantic import ValidationError

from accessibility_api.core.exceptions import RuleEngineFailure
from accessibility_api.models import RawFindings

logger = structlog.get_logger(__name__)

WCAG_TAGS: Tuple[str, ...] = ("wcag2a", "wcag2aa", "wcag21aa")

# Only the fields the report uses cross the browser boundary.
AXE_RUN_SCRIPT = """
async (options) => {
    const slim = (items) => items.map((r) => ({
        id: r.id,
        description: r.description,
        help: r.help,
        helpUrl: r.helpUrl,
        tags: r.tags,
        impact: r.impact,
        nodes: r.nodes.map((n) => ({ html: n.html, target: n.target })),
    }));
    const results = await axe.run(document, options);
    return {
        violations: slim(results.violations),
        passes: slim(results.passes),
        incomplete: slim(results.incomplete),
    };
}
"""


class AxeScriptSource:
    """Loads the axe-core bundle once, from disk or over HTTP, and caches it."""

    def __init__(self, path: Optional[str], url: str, timeout_seconds: float = 30):
        self.path = path
        self.url = url
        self.timeout_seconds = timeout_seconds
        self._source: Optional[str] = None
        self._lock = asyncio.Lock()

    def _load(self) -> str:
        if self.path:
            return Path(self.path).read_text(encoding="utf-8")
        res = requests.get(self.url, timeout=self.timeout_seconds)
        res.raise_for_status()
        return res.text

    async def get(self) -> str:
        async with self._lock:
            if self._source is None:
                try:
                    self._source = await asyncio.to_thread(self._load)
                except (OSError, requests.RequestException) as e:
                    raise RuleEngineFailure(detail=f"Could not load axe-core: {e}") from e
                logger.info("Loaded axe-core", source=self.path or self.url, size=len(self._source))
            return self._source


class AxeRuleEngine:
    def __init__(self, script: AxeScriptSource, timeout_seconds: float):
        self.script = script
        self.timeout_seconds = timeout_seconds

    @property
    def run_options(self) -> dict:
        return {"runOnly": {"type": "tag", "values": list(WCAG_TAGS)}}

    async def run(self, page: Page) -> RawFindings:
        """Evaluate the WCAG 2.0 A/AA and 2.1 AA rules against ``page``."""
        source = await self.script.get()
        logger.info("Starting axe analysis", tags=list(WCAG_TAGS))
        try:
            await page.add_script_tag(content=source)
            raw = await asyncio.wait_for(
                page.evaluate(AXE_RUN_SCRIPT, self.run_options),
                self.timeout_seconds,
            )
        except asyncio.TimeoutError as e:
            raise RuleEngineFailure(detail=f"axe.run exceeded {self.timeout_seconds}s") from e
        except PlaywrightError as e:
            raise RuleEngineFailure(detail=str(e)) from e

        try:
            findings = RawFindings.model_validate(raw)
        except ValidationError as e:
            raise RuleEngineFailure(detail=f"Unexpected axe result shape: {e}") from e

        logger.info(
            "Axe analysis completed",
            violations=len(findings.violations),
            passes=len(findings.passes),
            incomplete=len(findings.incomplete),
        )
        return findings
