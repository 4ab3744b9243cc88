"""
Turns raw rule engine findings into the public report.

Everything here is pure: identical findings always give identical scores,
breakdowns and remediation text. Only ``reportId`` and ``timestamp`` change
between two builds of the same findings.
"""

import math
import uuid
from datetime import datetime, timezone
from typing import Dict, Iterable, List, Optional, Sequence

import structlog

from accessibility_api.models import (
    AnalysisRequest,
    CategoryShare,
    ElementInfo,
    FixInstructions,
    MappedCheck,
    MappedViolation,
    RawFinding,
    RawFindings,
    Report,
    Resource,
    Severity,
    SeverityCount,
)

logger = structlog.get_logger(__name__)

SEVERITY_BY_IMPACT = {
    "critical": Severity.CRITICAL,
    "serious": Severity.SERIOUS,
    "moderate": Severity.MODERATE,
    "minor": Severity.MINOR,
}
DEFAULT_SEVERITY = Severity.MODERATE

PRIORITY_BY_IMPACT = {
    "critical": "High",
    "serious": "High",
    "moderate": "Medium",
    "minor": "Low",
}
DEFAULT_PRIORITY = "Medium"

EFFORT_BY_IMPACT = {
    "critical": "2-4 hours",
    "serious": "1-3 hours",
    "moderate": "30 minutes - 1 hour",
    "minor": "15-30 minutes",
}
DEFAULT_EFFORT = "1 hour"

SEVERITY_COLORS = {
    Severity.CRITICAL: "#dc2626",
    Severity.SERIOUS: "#ea580c",
    Severity.MODERATE: "#d97706",
    Severity.MINOR: "#0891b2",
}

CATEGORY_COLORS = {
    "Visual": "#ef4444",
    "Navigation": "#f97316",
    "Forms": "#eab308",
    "ARIA": "#06b6d4",
}
DEFAULT_COLOR = "#6b7280"

# Checked in order, first match wins. Untagged violations land in Visual.
CATEGORY_RULES = (
    ("Visual", ("cat.color", "cat.images")),
    ("Navigation", ("cat.keyboard", "cat.navigation")),
    ("Forms", ("cat.forms",)),
    ("ARIA", ("cat.aria",)),
)
DEFAULT_CATEGORY = "Visual"

AFFECTED_GROUPS = (
    ("cat.keyboard", "Keyboard users"),
    ("cat.images", "Screen reader users"),
    ("cat.color", "Users with color blindness"),
    ("cat.forms", "All users interacting with forms"),
)
DEFAULT_GROUP = "All users"

# Canned illustrations keyed by a rule id substring. They do not reflect the
# violating markup.
CODE_EXAMPLES = (
    (
        "color-contrast",
        '<!-- Ensure sufficient color contrast -->\n'
        '<div style="color: #000; background: #fff;">Good contrast</div>',
    ),
    ("alt-text", '<img src="image.jpg" alt="Descriptive alt text for the image">'),
    ("heading", "<h1>Main heading</h1>\n<h2>Subheading</h2>"),
)
PLACEHOLDER_EXAMPLE = "<!-- Review the element and apply appropriate accessibility fixes -->"

NOT_AVAILABLE = "N/A"
DEFAULT_WCAG_LEVEL = "A"
HTML_INPUT_LABEL = "HTML Content"


def round_half_up(value: float) -> int:
    return int(math.floor(value + 0.5))


def calculate_compliance_score(violations: int, passes: int, incomplete: int) -> int:
    """Percentage of passing checks, with incomplete checks earning half credit."""
    total_checks = violations + passes + incomplete
    if total_checks == 0:
        return 100
    return round_half_up(100 * (passes + 0.5 * incomplete) / total_checks)


def calculate_accessibility_impact(violations: Sequence[RawFinding]) -> int:
    """
    Coarse blast-radius heuristic on a 0-100 scale.

    Weights critical and serious findings above the rest. It is a rough
    ranking aid, not a statistically validated measure of user impact.
    """
    critical = sum(1 for v in violations if v.impact == "critical")
    serious = sum(1 for v in violations if v.impact == "serious")
    impact = critical * 15 + serious * 8 + len(violations) * 2
    return min(round_half_up(impact), 100)


def map_severity(impact: Optional[str]) -> Severity:
    return SEVERITY_BY_IMPACT.get(impact, DEFAULT_SEVERITY)


def map_priority(impact: Optional[str]) -> str:
    return PRIORITY_BY_IMPACT.get(impact, DEFAULT_PRIORITY)


def estimate_effort(impact: Optional[str]) -> str:
    return EFFORT_BY_IMPACT.get(impact, DEFAULT_EFFORT)


def wcag_reference_suffix(tags: Iterable[str]) -> str:
    """First tag mentioning ``wcag`` with that prefix removed, else ``N/A``."""
    tag = next((t for t in tags if "wcag" in t), None)
    if tag is None:
        return NOT_AVAILABLE
    return tag.replace("wcag", "", 1) or NOT_AVAILABLE


def wcag_reference(tags: Iterable[str]) -> str:
    return f"WCAG 2.1 SC {wcag_reference_suffix(tags)}"


def wcag_level(tags: Iterable[str]) -> str:
    """Level from a tag carrying both ``wcag`` and ``level``, else ``A``."""
    tag = next((t for t in tags if "wcag" in t and "level" in t), None)
    if tag is None:
        return DEFAULT_WCAG_LEVEL
    return tag.replace("wcag", "", 1).replace("level", "", 1) or DEFAULT_WCAG_LEVEL


def affected_groups(tags: Sequence[str]) -> List[str]:
    groups = [label for tag, label in AFFECTED_GROUPS if tag in tags]
    return groups or [DEFAULT_GROUP]


def categorize(tags: Sequence[str]) -> str:
    for category, category_tags in CATEGORY_RULES:
        if any(tag in tags for tag in category_tags):
            return category
    return DEFAULT_CATEGORY


def generate_code_example(rule_id: str) -> str:
    for pattern, snippet in CODE_EXAMPLES:
        if pattern in rule_id:
            return snippet
    return PLACEHOLDER_EXAMPLE


def build_fix_instructions(finding: RawFinding) -> FixInstructions:
    selector = finding.nodes[0].selector if finding.nodes else None
    steps = [
        f"Identify the element: {selector or 'the affected element'}",
        (
            "Follow the detailed guidance in the provided resource"
            if finding.help_url
            else "Review accessibility guidelines"
        ),
        "Test the fix with assistive technologies",
    ]
    resources = []
    if finding.help_url:
        resources.append(Resource(title="Detailed Fix Guide", url=finding.help_url))

    return FixInstructions(
        summary=finding.help,
        steps=steps,
        code_example=generate_code_example(finding.id),
        priority=map_priority(finding.impact),
        estimated_effort=estimate_effort(finding.impact),
        resources=resources,
    )


def map_violation(index: int, finding: RawFinding) -> MappedViolation:
    node = finding.nodes[0] if finding.nodes else None
    return MappedViolation(
        id=f"violation-{index}",
        rule_id=finding.id,
        description=finding.description,
        severity=map_severity(finding.impact),
        wcag_reference=wcag_reference(finding.tags),
        wcag_level=wcag_level(finding.tags),
        user_impact=finding.help,
        affected_groups=affected_groups(finding.tags),
        element=ElementInfo(
            selector=(node.selector if node else None) or "Unknown",
            html=(node.html if node else None) or NOT_AVAILABLE,
        ),
        fix_instructions=build_fix_instructions(finding),
    )


def map_check(finding: RawFinding) -> MappedCheck:
    return MappedCheck(
        id=finding.id,
        description=finding.description,
        wcag_reference=wcag_reference(finding.tags),
    )


def severity_counts(violations: Sequence[RawFinding]) -> Dict[Severity, int]:
    """Counts for every severity, zeros included, in canonical order."""
    counts = {severity: 0 for severity in Severity}
    for violation in violations:
        counts[map_severity(violation.impact)] += 1
    return counts


def calculate_severity_breakdown(violations: Sequence[RawFinding]) -> List[SeverityCount]:
    return [
        SeverityCount(name=severity, count=count, color=SEVERITY_COLORS.get(severity, DEFAULT_COLOR))
        for severity, count in severity_counts(violations).items()
        if count > 0
    ]


def calculate_issue_distribution(violations: Sequence[RawFinding]) -> List[CategoryShare]:
    counts = {category: 0 for category, _ in CATEGORY_RULES}
    for violation in violations:
        counts[categorize(violation.tags)] += 1

    total = sum(counts.values())
    return [
        CategoryShare(
            name=category,
            value=round_half_up(count / total * 100) if total > 0 else 0,
            color=CATEGORY_COLORS.get(category, DEFAULT_COLOR),
        )
        for category, count in counts.items()
    ]


def build_report(
    findings: RawFindings,
    request: AnalysisRequest,
    analysis_method: str,
    report_id: Optional[str] = None,
    timestamp: Optional[datetime] = None,
) -> Report:
    violations = findings.violations
    logger.info(
        "Mapping rule engine results",
        violations=len(violations),
        passes=len(findings.passes),
        incomplete=len(findings.incomplete),
    )
    for index, violation in enumerate(violations):
        logger.debug("Violation", index=index, impact=violation.impact, rule_id=violation.id)

    severity_breakdown = calculate_severity_breakdown(violations)
    logger.info(
        "Severity breakdown",
        breakdown={entry.name.value: entry.count for entry in severity_breakdown},
    )

    return Report(
        report_id=report_id or uuid.uuid4().hex,
        type=request.kind,
        input=request.url if request.kind == "url" else HTML_INPUT_LABEL,
        timestamp=timestamp or datetime.now(timezone.utc),
        analysis_method=analysis_method,
        compliance_score=calculate_compliance_score(
            len(violations), len(findings.passes), len(findings.incomplete)
        ),
        total_issues=len(violations),
        accessibility_impact_score=calculate_accessibility_impact(violations),
        violations=[map_violation(i, v) for i, v in enumerate(violations)],
        passes=[map_check(p) for p in findings.passes],
        incomplete=[map_check(i) for i in findings.incomplete],
        issue_distribution=calculate_issue_distribution(violations),
        severity_breakdown=severity_breakdown,
    )
