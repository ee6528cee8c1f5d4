"""
Scan Schemas

Data model of one scan attempt: the request, raw rule-engine findings,
derived counts/grade, and the bounded result handed to the caller.
"""
import base64
from enum import Enum
from typing import Any, List, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field


# ============================================================================
# Findings (rule-engine output)
# ============================================================================

class Severity(str, Enum):
    critical = "critical"
    serious = "serious"
    moderate = "moderate"
    minor = "minor"


class Occurrence(BaseModel):
    """One concrete element on the page matching a rule."""
    model_config = ConfigDict(extra="allow", populate_by_name=True)

    html: Optional[str] = None
    target: Optional[List[Any]] = None
    failure_summary: Optional[str] = Field(default=None, alias="failureSummary")


class Finding(BaseModel):
    """One violated rule. Field aliases follow the rule engine's JSON."""
    model_config = ConfigDict(extra="allow", populate_by_name=True)

    rule_id: str = Field(alias="id")
    impact: Optional[str] = None
    description: Optional[str] = None
    help: Optional[str] = None
    help_url: Optional[str] = Field(default=None, alias="helpUrl")
    tags: List[str] = Field(default_factory=list)
    occurrences: List[Occurrence] = Field(default_factory=list, alias="nodes")

    @property
    def severity(self) -> Severity:
        # Unknown or missing impact counts as minor
        try:
            return Severity(self.impact)
        except ValueError:
            return Severity.minor

    def to_payload(self) -> dict:
        return self.model_dump(mode="json", by_alias=True, exclude_none=True)


# ============================================================================
# Derived aggregates
# ============================================================================

class ViolationCounts(BaseModel):
    critical: int = 0
    serious: int = 0
    moderate: int = 0
    minor: int = 0
    total: int = 0


class GradeResult(BaseModel):
    score: int
    grade: Literal["A", "B", "C", "D", "F"]


# ============================================================================
# Scan request / result
# ============================================================================

class ScanMode(str, Enum):
    full = "full"
    safe = "safe"
    minimal = "minimal"


class ScanRequest(BaseModel):
    """Immutable input to one scan attempt."""
    model_config = ConfigDict(frozen=True)

    target_url: str
    wants_screenshot: bool = False
    remote_endpoint: Optional[str] = None
    caller_id: Optional[str] = None


class ScanResult(BaseModel):
    counts: ViolationCounts
    grade: GradeResult
    grading_version: int
    findings: str
    page_title: str = ""
    scan_mode: ScanMode = ScanMode.full
    truncated: bool = False
    screenshot: Optional[bytes] = None
    screenshot_warning: Optional[str] = None
    warning: Optional[str] = None
    platform: Optional[str] = None

    @property
    def safe_mode(self) -> bool:
        return self.scan_mode != ScanMode.full


# ============================================================================
# API
# ============================================================================

class ScanStartRequest(BaseModel):
    """Request body for a single-page accessibility scan."""
    url: str
    capture_screenshot: bool = False

    model_config = ConfigDict(
        json_schema_extra={
            "example": {
                "url": "https://example.com",
                "capture_screenshot": True,
            }
        }
    )


class ScanResponse(BaseModel):
    violations: ViolationCounts
    score: int
    letter_grade: str
    grading_version: int
    raw_violations: str
    page_title: str
    scan_mode: ScanMode
    safe_mode: bool
    truncated: bool
    warning: Optional[str] = None
    screenshot: Optional[str] = None
    screenshot_warning: Optional[str] = None
    platform: Optional[str] = None
    platform_label: Optional[str] = None

    @classmethod
    def from_result(cls, result: ScanResult, platform_label: Optional[str] = None) -> "ScanResponse":
        screenshot = None
        if result.screenshot is not None:
            screenshot = base64.b64encode(result.screenshot).decode("ascii")

        return cls(
            violations=result.counts,
            score=result.grade.score,
            letter_grade=result.grade.grade,
            grading_version=result.grading_version,
            raw_violations=result.findings,
            page_title=result.page_title,
            scan_mode=result.scan_mode,
            safe_mode=result.safe_mode,
            truncated=result.truncated,
            warning=result.warning,
            screenshot=screenshot,
            screenshot_warning=result.screenshot_warning,
            platform=result.platform,
            platform_label=platform_label,
        )
