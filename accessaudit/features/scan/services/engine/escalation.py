"""
Scan escalation: Full -> Safe -> Minimal -> Empty-with-warning.

Strictly one-directional. A stage is abandoned only when the rule engine
itself throws; findings are data, never a reason to escalate. Session
failures are not caught here and end the scan attempt.
"""
from enum import Enum
from typing import List, NamedTuple, Optional, Sequence, Tuple

from pydantic import BaseModel

from accessaudit.features.scan.schemas.scan import Finding, ScanMode
from accessaudit.features.scan.services.engine.axe_engine import RuleEngine
from accessaudit.platform.exceptions import RuleEngineError
from accessaudit.platform.logger import get_logger

logger = get_logger(__name__)

# Stable rules that skip colour analysis and deep DOM traversal, the usual
# crash sources on heavy pages
SAFE_RULES: Tuple[str, ...] = (
    # Images
    "image-alt",
    "image-redundant-alt",
    "input-image-alt",
    "area-alt",
    # Forms
    "label",
    "form-field-multiple-labels",
    "select-name",
    "input-button-name",
    # Links & buttons
    "link-name",
    "button-name",
    # Document structure
    "document-title",
    "html-has-lang",
    "html-lang-valid",
    "valid-lang",
    "page-has-heading-one",
    "bypass",
    # Tables
    "td-headers-attr",
    "th-has-data-cells",
    "table-fake-caption",
    # Semantic structure
    "landmark-one-main",
    "region",
    "heading-order",
    "empty-heading",
    "duplicate-id",
    "duplicate-id-active",
    "duplicate-id-aria",
    # ARIA
    "aria-allowed-attr",
    "aria-hidden-body",
    "aria-hidden-focus",
    "aria-required-attr",
    "aria-required-children",
    "aria-required-parent",
    "aria-roles",
    "aria-valid-attr",
    "aria-valid-attr-value",
    # Focus & keyboard
    "tabindex",
    "focus-order-semantics",
    # Media
    "video-caption",
    "audio-caption",
    # Misc
    "meta-viewport",
    "meta-refresh",
    "blink",
    "marquee",
    "server-side-image-map",
)

MINIMAL_RULES: Tuple[str, ...] = (
    "image-alt",
    "link-name",
    "button-name",
    "label",
    "document-title",
)

MAIN_CONTENT_SELECTORS: Tuple[str, ...] = ("main", "article", "#content", "#main")

TOO_COMPLEX_WARNING = (
    "Site too complex for automated scanning. No issues could be checked, "
    "so this is not a clean result."
)


class OutcomeKind(str, Enum):
    full = "full"
    safe = "safe"
    minimal = "minimal"
    empty = "empty"


class EscalationStage(NamedTuple):
    kind: OutcomeKind
    root_selectors: Optional[Tuple[str, ...]]
    rules: Optional[Tuple[str, ...]]


ESCALATION_STAGES: Tuple[EscalationStage, ...] = (
    EscalationStage(OutcomeKind.full, None, None),
    EscalationStage(OutcomeKind.safe, None, SAFE_RULES),
    EscalationStage(OutcomeKind.minimal, MAIN_CONTENT_SELECTORS, MINIMAL_RULES),
)


class ScanOutcome(BaseModel):
    """Full(findings) | Safe(findings) | Minimal(findings) | Empty(warning)"""
    kind: OutcomeKind
    findings: List[Finding] = []
    warning: Optional[str] = None

    @property
    def scan_mode(self) -> ScanMode:
        # Empty reports the deepest mode it attempted
        if self.kind == OutcomeKind.empty:
            return ScanMode.minimal
        return ScanMode(self.kind.value)


def run_stage(engine: RuleEngine, stage: EscalationStage) -> ScanOutcome:
    findings = engine.evaluate(stage.root_selectors, stage.rules)
    if stage.rules:
        findings = [f for f in findings if f.rule_id in stage.rules]
    return ScanOutcome(kind=stage.kind, findings=findings)


def escalate(
    engine: RuleEngine,
    stages: Sequence[EscalationStage] = ESCALATION_STAGES,
) -> ScanOutcome:
    for stage in stages:
        try:
            outcome = run_stage(engine, stage)
        except RuleEngineError as e:
            logger.warning(f"{stage.kind.value.capitalize()} scan failed ({e}), escalating")
            continue

        if stage.kind != OutcomeKind.full:
            logger.info(f"Scan completed in {stage.kind.value} mode with {len(outcome.findings)} findings")
        return outcome

    logger.error("All scan stages failed; returning empty result with warning")
    return ScanOutcome(kind=OutcomeKind.empty, warning=TOO_COMPLEX_WARNING)
