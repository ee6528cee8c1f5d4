import pytest

from conftest import FakeRuleEngine, make_finding

from accessaudit.features.scan.schemas.scan import ScanMode
from accessaudit.features.scan.services.engine.escalation import (
    MAIN_CONTENT_SELECTORS,
    MINIMAL_RULES,
    SAFE_RULES,
    TOO_COMPLEX_WARNING,
    OutcomeKind,
    escalate,
)
from accessaudit.platform.exceptions import RuleEngineError, SessionFailureError


class TestEscalate:
    def test_full_scan_succeeds(self):
        engine = FakeRuleEngine([[make_finding("color-contrast"), make_finding("image-alt")]])

        outcome = escalate(engine)

        assert outcome.kind == OutcomeKind.full
        assert outcome.scan_mode == ScanMode.full
        assert [f.rule_id for f in outcome.findings] == ["color-contrast", "image-alt"]
        assert outcome.warning is None
        assert engine.calls == [(None, None)]

    def test_findings_never_trigger_escalation(self):
        engine = FakeRuleEngine([[make_finding(f"rule-{i}", "critical") for i in range(100)]])

        outcome = escalate(engine)

        assert outcome.kind == OutcomeKind.full
        assert len(engine.calls) == 1

    def test_full_fails_safe_succeeds(self):
        engine = FakeRuleEngine([
            RuleEngineError("Maximum call stack size exceeded"),
            [make_finding("image-alt"), make_finding("color-contrast")],
        ])

        outcome = escalate(engine)

        assert outcome.kind == OutcomeKind.safe
        assert outcome.scan_mode == ScanMode.safe
        assert engine.calls[1] == (None, SAFE_RULES)
        # Only findings for rules the stage asked for are kept
        assert [f.rule_id for f in outcome.findings] == ["image-alt"]

    def test_falls_through_to_minimal_on_main_content(self):
        engine = FakeRuleEngine([
            RuleEngineError("boom"),
            RuleEngineError("boom again"),
            [make_finding("link-name")],
        ])

        outcome = escalate(engine)

        assert outcome.kind == OutcomeKind.minimal
        assert engine.calls[2] == (MAIN_CONTENT_SELECTORS, MINIMAL_RULES)
        assert [f.rule_id for f in outcome.findings] == ["link-name"]

    def test_all_stages_fail_gives_empty_with_warning(self):
        engine = FakeRuleEngine([RuleEngineError("No content container found")])

        outcome = escalate(engine)

        assert outcome.kind == OutcomeKind.empty
        assert outcome.findings == []
        assert outcome.warning == TOO_COMPLEX_WARNING
        assert outcome.scan_mode == ScanMode.minimal
        assert len(engine.calls) == 3

    def test_session_failure_is_not_absorbed(self):
        engine = FakeRuleEngine([SessionFailureError("browser went away")])

        with pytest.raises(SessionFailureError):
            escalate(engine)

        assert len(engine.calls) == 1

    def test_minimal_rules_are_a_subset_of_safe(self):
        assert set(MINIMAL_RULES) <= set(SAFE_RULES)
