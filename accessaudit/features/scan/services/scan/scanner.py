"""
Single-page accessibility scan.

validate -> admit -> navigate -> detect block -> screenshot/platform ->
escalate -> reduce -> release. Stages run strictly in order; the
concurrency slot is released on every exit path.
"""
from typing import Callable, Optional

from selenium.common.exceptions import WebDriverException

from accessaudit.features.scan.schemas.scan import ScanRequest, ScanResult
from accessaudit.features.scan.services.admission.admission_controller import AdmissionController
from accessaudit.features.scan.services.analysis.grading import GRADING_VERSION, calculate_grade
from accessaudit.features.scan.services.analysis.result_reducer import (
    count_violations,
    truncate_violations,
)
from accessaudit.features.scan.services.browser.screenshot import ScreenshotCapture, ScreenshotCapturer
from accessaudit.features.scan.services.browser.session import (
    BrowserSession,
    BrowserSessionManager,
    NavigationResponse,
)
from accessaudit.features.scan.services.detection.block_detector import BLOCKED_MESSAGE, BlockDetector
from accessaudit.features.scan.services.detection.platform_detector import detect_platform
from accessaudit.features.scan.services.engine.axe_engine import AxeRuleEngine
from accessaudit.features.scan.services.engine.escalation import ScanOutcome, escalate
from accessaudit.platform.config import Settings, settings as default_settings
from accessaudit.platform.exceptions import InvalidTargetError, ScanBlockedError
from accessaudit.platform.logger import get_logger
from accessaudit.platform.utils.url_validator import UrlValidationResult, validate_url

logger = get_logger(__name__)


class Scanner:
    def __init__(
        self,
        config: Optional[Settings] = None,
        admission: Optional[AdmissionController] = None,
        session_manager: Optional[BrowserSessionManager] = None,
        block_detector: Optional[BlockDetector] = None,
        engine_factory: Optional[Callable[[BrowserSession, Settings], AxeRuleEngine]] = None,
        validator: Callable[[str, Settings], UrlValidationResult] = validate_url,
    ):
        self.config = config or default_settings
        self.admission = admission or AdmissionController.from_settings(self.config)
        self.session_manager = session_manager or BrowserSessionManager(self.config)
        self.block_detector = block_detector or BlockDetector.from_settings(self.config)
        self.engine_factory = engine_factory or AxeRuleEngine
        self.validator = validator

    def scan(self, request: ScanRequest) -> ScanResult:
        """
        Run one scan attempt.

        Raises:
            InvalidTargetError, RateLimitedError, AtCapacityError: before any
                browser resource is allocated
            ScanBlockedError: the target served a block/challenge page
            SessionFailureError: navigation/evaluation timed out or the
                automation endpoint was unreachable
        """
        validation = self.validator(request.target_url, self.config)
        if not validation.ok:
            logger.info(f"Rejected scan target {request.target_url!r}: {validation.reason}")
            raise InvalidTargetError(validation.reason)

        self.admission.enforce_rate_limit(request.caller_id or "unknown")

        with self.admission.concurrency_slot():
            return self._scan_page(validation.url, request)

    def _scan_page(self, url: str, request: ScanRequest) -> ScanResult:
        with self.session_manager.session(request.remote_endpoint) as session:
            response = session.navigate(url)
            page_title = session.title()

            body_text = session.body_text(self.config.BODY_SAMPLE_CHARS)
            classification = self.block_detector.classify(response.status, page_title, body_text)
            if classification.blocked:
                logger.warning(f"Scan of {url} blocked: {classification.reason}")
                raise ScanBlockedError(BLOCKED_MESSAGE, page_title, response.status)

            capture = None
            if request.wants_screenshot:
                capture = ScreenshotCapturer(session, self.config).capture()

            platform = self._detect_platform(session)

            engine = self.engine_factory(session, self.config)
            engine.inject()
            outcome = escalate(engine)

        return self._build_result(outcome, page_title, response, capture, platform)

    def _detect_platform(self, session: BrowserSession) -> Optional[str]:
        try:
            return detect_platform(session.content())
        except WebDriverException as e:
            logger.warning(f"[Platform] Detection failed: {e}")
            return None

    def _build_result(
        self,
        outcome: ScanOutcome,
        page_title: str,
        response: NavigationResponse,
        capture: Optional[ScreenshotCapture],
        platform: Optional[str],
    ) -> ScanResult:
        counts = count_violations(outcome.findings)
        findings, truncated = truncate_violations(
            outcome.findings,
            max_chars=self.config.MAX_FINDINGS_CHARS,
            max_passes=self.config.MAX_TRUNCATION_PASSES,
        )

        warnings = [outcome.warning]
        if response.rewritten:
            warnings.append(
                f"URL rewritten from localhost to {self.config.DOCKER_HOST_ALIAS} for Docker-based browser."
            )
        warning = " ".join(w for w in warnings if w) or None

        return ScanResult(
            counts=counts,
            grade=calculate_grade(counts),
            grading_version=GRADING_VERSION,
            findings=findings,
            page_title=page_title,
            scan_mode=outcome.scan_mode,
            truncated=truncated,
            screenshot=capture.data if capture else None,
            screenshot_warning=capture.warning if capture else None,
            warning=warning,
            platform=platform,
        )
