"""
Unit tests for the axe-core adapter.
"""

import asyncio
from unittest.mock import AsyncMock, MagicMock, patch

import pytest
import requests
from playwright.async_api import Error as PlaywrightError

from accessibility_api.core.exceptions import RuleEngineFailure
from accessibility_api.services.rule_engine import (
    WCAG_TAGS,
    AxeRuleEngine,
    AxeScriptSource,
)

AXE_RESULT = {
    "violations": [
        {
            "id": "image-alt",
            "description": "Ensures <img> elements have alternate text",
            "help": "Images must have alternate text",
            "helpUrl": "https://dequeuniversity.com/rules/axe/4.9/image-alt",
            "tags": ["cat.text-alternatives", "wcag2a", "wcag111"],
            "impact": "critical",
            "nodes": [{"html": '<img src="a.png">', "target": ["img"]}],
        }
    ],
    "passes": [
        {"id": "document-title", "description": "Has a title", "help": "", "helpUrl": None,
         "tags": ["wcag2a"], "impact": None, "nodes": []},
    ],
    "incomplete": [],
}


def make_source(text="window.axe = {};"):
    source = AxeScriptSource(path=None, url="https://cdn.example.com/axe.min.js")
    source.get = AsyncMock(return_value=text)
    return source


def make_page(result=AXE_RESULT, error=None):
    page = MagicMock()
    page.add_script_tag = AsyncMock()
    if error is not None:
        page.evaluate = AsyncMock(side_effect=error)
    else:
        page.evaluate = AsyncMock(return_value=result)
    return page


@pytest.mark.unit
class TestAxeRuleEngine:

    @pytest.mark.asyncio
    async def test_runs_fixed_wcag_tags_against_given_page(self):
        page = make_page()
        engine = AxeRuleEngine(make_source("AXE SOURCE"), timeout_seconds=5)

        findings = await engine.run(page)

        page.add_script_tag.assert_awaited_once_with(content="AXE SOURCE")
        _, options = page.evaluate.await_args.args
        assert options == {"runOnly": {"type": "tag", "values": ["wcag2a", "wcag2aa", "wcag21aa"]}}
        assert WCAG_TAGS == ("wcag2a", "wcag2aa", "wcag21aa")

        assert [v.id for v in findings.violations] == ["image-alt"]
        assert findings.violations[0].impact == "critical"
        assert findings.violations[0].nodes[0].selector == "img"
        assert findings.violations[0].help_url.endswith("image-alt")
        assert [p.id for p in findings.passes] == ["document-title"]
        assert findings.incomplete == []

    @pytest.mark.asyncio
    async def test_same_options_every_run(self):
        engine = AxeRuleEngine(make_source(), timeout_seconds=5)
        first, second = make_page(), make_page()
        await engine.run(first)
        await engine.run(second)
        assert first.evaluate.await_args.args[1] == second.evaluate.await_args.args[1]

    @pytest.mark.asyncio
    async def test_engine_exception_becomes_rule_engine_failure(self):
        engine = AxeRuleEngine(make_source(), timeout_seconds=5)
        page = make_page(error=PlaywrightError("TypeError: Cannot read properties of null"))

        with pytest.raises(RuleEngineFailure) as exc_info:
            await engine.run(page)
        assert "Cannot read properties" in exc_info.value.detail

    @pytest.mark.asyncio
    async def test_malformed_result_is_not_silently_empty(self):
        engine = AxeRuleEngine(make_source(), timeout_seconds=5)
        with pytest.raises(RuleEngineFailure):
            await engine.run(make_page(result=None))

    @pytest.mark.asyncio
    async def test_slow_engine_times_out(self):
        async def hang(*args):
            await asyncio.sleep(5)

        page = make_page()
        page.evaluate = AsyncMock(side_effect=hang)
        engine = AxeRuleEngine(make_source(), timeout_seconds=0.05)

        with pytest.raises(RuleEngineFailure):
            await engine.run(page)

    @pytest.mark.asyncio
    async def test_nested_targets_are_joined(self):
        result = {
            "violations": [
                {"id": "frame-title", "tags": [], "impact": "serious",
                 "nodes": [{"html": "<b>", "target": [["iframe#pay", "b.total"]]}]},
            ],
            "passes": [],
            "incomplete": [],
        }
        findings = await AxeRuleEngine(make_source(), timeout_seconds=5).run(make_page(result=result))
        assert findings.violations[0].nodes[0].selector == "iframe#pay b.total"


@pytest.mark.unit
class TestAxeScriptSource:

    @pytest.mark.asyncio
    async def test_reads_local_file_once(self, tmp_path):
        script = tmp_path / "axe.min.js"
        script.write_text("/* axe */", encoding="utf-8")
        source = AxeScriptSource(path=str(script), url="unused")

        assert await source.get() == "/* axe */"
        script.write_text("changed", encoding="utf-8")
        assert await source.get() == "/* axe */"

    @pytest.mark.asyncio
    async def test_downloads_when_no_path(self):
        response = MagicMock()
        response.text = "/* from cdn */"
        response.raise_for_status = MagicMock()
        source = AxeScriptSource(path=None, url="https://cdn.example.com/axe.min.js")

        with patch("accessibility_api.services.rule_engine.requests.get", return_value=response) as mock_get:
            assert await source.get() == "/* from cdn */"
        mock_get.assert_called_once()

    @pytest.mark.asyncio
    async def test_load_failure_is_rule_engine_failure(self):
        source = AxeScriptSource(path=None, url="https://cdn.example.com/axe.min.js")
        with patch(
            "accessibility_api.services.rule_engine.requests.get",
            side_effect=requests.ConnectionError("offline"),
        ):
            with pytest.raises(RuleEngineFailure):
                await source.get()

    @pytest.mark.asyncio
    async def test_missing_file_is_rule_engine_failure(self, tmp_path):
        source = AxeScriptSource(path=str(tmp_path / "missing.js"), url="unused")
        with pytest.raises(RuleEngineFailure):
            await source.get()
