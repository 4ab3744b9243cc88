from datetime import datetime
from enum import Enum
from typing import Any, List, Literal, Optional, Union

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel


# Request bodies

class AnalyzeUrlRequest(BaseModel):
    url: Optional[str] = None


class AnalyzeHtmlRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    html_content: Optional[str] = Field(default=None, alias="htmlContent")


# What the pipeline is asked to analyze

class UrlAnalysisRequest(BaseModel):
    model_config = ConfigDict(frozen=True)

    kind: Literal["url"] = "url"
    url: str


class HtmlAnalysisRequest(BaseModel):
    model_config = ConfigDict(frozen=True)

    kind: Literal["html"] = "html"
    markup: str


AnalysisRequest = Union[UrlAnalysisRequest, HtmlAnalysisRequest]


# Raw rule engine output (axe-core result shape)

class RawNode(BaseModel):
    model_config = ConfigDict(extra="ignore", frozen=True)

    html: str = ""
    # Entries are CSS selectors, or selector lists for nodes inside iframes / shadow roots.
    target: List[Any] = Field(default_factory=list)

    @property
    def selector(self) -> Optional[str]:
        if not self.target:
            return None
        first = self.target[0]
        if isinstance(first, list):
            return " ".join(str(part) for part in first)
        return str(first)


class RawFinding(BaseModel):
    model_config = ConfigDict(extra="ignore", populate_by_name=True, frozen=True)

    id: str
    description: str = ""
    help: str = ""
    help_url: Optional[str] = Field(default=None, alias="helpUrl")
    tags: List[str] = Field(default_factory=list)
    impact: Optional[str] = None
    nodes: List[RawNode] = Field(default_factory=list)


class RawFindings(BaseModel):
    model_config = ConfigDict(extra="ignore", frozen=True)

    violations: List[RawFinding] = Field(default_factory=list)
    passes: List[RawFinding] = Field(default_factory=list)
    incomplete: List[RawFinding] = Field(default_factory=list)


# Public report

class Severity(str, Enum):
    CRITICAL = "CRITICAL"
    SERIOUS = "SERIOUS"
    MODERATE = "MODERATE"
    MINOR = "MINOR"


class ReportModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, frozen=True)


class Resource(ReportModel):
    title: str
    url: str


class FixInstructions(ReportModel):
    summary: str
    steps: List[str]
    code_example: Optional[str] = None
    priority: str
    estimated_effort: str
    resources: List[Resource] = Field(default_factory=list)


class ElementInfo(ReportModel):
    selector: str
    line_number: str = "N/A"
    html: str


class MappedViolation(ReportModel):
    id: str
    rule_id: str
    description: str
    severity: Severity
    wcag_reference: str
    wcag_level: str
    user_impact: str
    affected_groups: List[str]
    element: ElementInfo
    fix_instructions: FixInstructions


class MappedCheck(ReportModel):
    id: str
    description: str
    wcag_reference: str


class CategoryShare(ReportModel):
    name: str
    value: int
    color: str


class SeverityCount(ReportModel):
    name: Severity
    count: int
    color: str


class Report(ReportModel):
    report_id: str
    type: Literal["url", "html"]
    input: str
    timestamp: datetime
    analysis_method: str
    compliance_score: int
    total_issues: int
    pages_scanned: int = 1
    total_pages_found: int = 1
    accessibility_impact_score: int
    violations: List[MappedViolation]
    passes: List[MappedCheck]
    incomplete: List[MappedCheck]
    issue_distribution: List[CategoryShare]
    severity_breakdown: List[SeverityCount]

    def to_response(self) -> dict:
        return self.model_dump(by_alias=True, mode="json")
