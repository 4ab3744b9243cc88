"""
Shared fixtures.

Nothing here launches a browser, opens a socket or talks to MongoDB.
"""

import pytest

from accessibility_api.core.config import Settings
from accessibility_api.models import RawFinding, RawFindings, RawNode


def make_finding(
    rule_id="image-alt",
    impact=None,
    tags=None,
    help_url="https://dequeuniversity.com/rules/axe/4.9/image-alt",
    selector="img.hero",
    html='<img src="hero.png">',
    nodes=True,
):
    return RawFinding(
        id=rule_id,
        description=f"Checks {rule_id}",
        help=f"Fix {rule_id}",
        helpUrl=help_url,
        tags=tags if tags is not None else ["cat.text-alternatives", "wcag2a", "wcag111"],
        impact=impact,
        nodes=[RawNode(html=html, target=[selector])] if nodes else [],
    )


def make_findings(violations=(), passes=0, incomplete=0):
    return RawFindings(
        violations=list(violations),
        passes=[make_finding(rule_id=f"pass-{i}") for i in range(passes)],
        incomplete=[make_finding(rule_id=f"incomplete-{i}") for i in range(incomplete)],
    )


@pytest.fixture
def finding_factory():
    return make_finding


@pytest.fixture
def findings_factory():
    return make_findings


@pytest.fixture
def settings():
    return Settings(
        _env_file=None,
        mongodb_uri=None,
        browser_pool_size=2,
        navigation_timeout_ms=5000,
        settle_delay_ms=0,
        post_load_delay_ms=0,
    )
