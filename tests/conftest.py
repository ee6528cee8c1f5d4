"""
Test configuration and fixtures for the Access Audit API.

The browser, the rule engine and the shared counter store are replaced by
in-process fakes, so the whole scan pipeline runs without Chrome or Redis.
"""
import ipaddress
from contextlib import contextmanager
from typing import Generator, List, Optional

import pytest
from fastapi.testclient import TestClient

from accessaudit.features.scan.routes.scan import get_scanner
from accessaudit.features.scan.schemas.scan import Finding
from accessaudit.features.scan.services.admission.admission_controller import AdmissionController
from accessaudit.features.scan.services.admission.counter_store import InMemoryCounterStore
from accessaudit.features.scan.services.browser.session import NavigationResponse
from accessaudit.features.scan.services.detection.block_detector import BlockDetector
from accessaudit.features.scan.services.engine.axe_engine import RuleEngine
from accessaudit.features.scan.services.scan.scanner import Scanner
from accessaudit.platform.config import Settings

PUBLIC_IP = "93.184.216.34"


class FakeClock:
    """Manually advanced replacement for time.time."""

    def __init__(self, now: float = 1_700_000_000.0):
        self.now = now

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


def make_finding(
    rule_id: str = "image-alt",
    impact: Optional[str] = "serious",
    nodes: int = 1,
    html_size: int = 20,
) -> Finding:
    """A rule-engine violation shaped like axe-core output."""
    return Finding.model_validate({
        "id": rule_id,
        "impact": impact,
        "description": f"Ensures {rule_id} passes",
        "help": f"{rule_id} must pass",
        "helpUrl": f"https://dequeuniversity.com/rules/axe/4.8/{rule_id}",
        "tags": ["wcag2a", "wcag111"],
        "nodes": [
            {
                "html": f'<div id="n{i}">{"x" * html_size}</div>',
                "target": [f"#n{i}"],
                "failureSummary": "Fix any of the following: element has no text",
            }
            for i in range(nodes)
        ],
    })


class FakeBrowserSession:
    """Stands in for BrowserSession; records what the scan asked of it."""

    def __init__(
        self,
        status: int = 200,
        title: str = "Example Domain",
        body: str = "Example Domain. This domain is for use in examples.",
        html: str = "<html><body><main>Example</main></body></html>",
        screenshots: Optional[List[bytes]] = None,
        rewritten: bool = False,
    ):
        self.status = status
        self.page_title = title
        self.body = body
        self.html = html
        self.screenshots = list(screenshots or [b"\xff" * 50_000])
        self.rewritten = rewritten
        self.navigated: List[str] = []
        self.waits: List[float] = []
        self.screenshot_calls = 0
        self.closed = False

    def navigate(self, url: str, timeout: Optional[int] = None) -> NavigationResponse:
        self.navigated.append(url)
        return NavigationResponse(url=url, status=self.status, rewritten=self.rewritten)

    def title(self) -> str:
        return self.page_title

    def body_text(self, limit: int) -> str:
        return self.body[:limit]

    def content(self) -> str:
        return self.html

    def screenshot(self, quality: Optional[int] = None) -> bytes:
        self.screenshot_calls += 1
        if len(self.screenshots) > 1:
            return self.screenshots.pop(0)
        return self.screenshots[0]

    def wait(self, seconds: float) -> None:
        self.waits.append(seconds)

    def close(self) -> None:
        self.closed = True


class FakeSessionManager:
    def __init__(self, browser_session: Optional[FakeBrowserSession] = None, error: Optional[Exception] = None):
        self.browser_session = browser_session or FakeBrowserSession()
        self.error = error
        self.opened = 0

    @contextmanager
    def session(self, remote_endpoint: Optional[str] = None):
        if self.error is not None:
            raise self.error
        self.opened += 1
        try:
            yield self.browser_session
        finally:
            self.browser_session.close()


class FakeRuleEngine(RuleEngine):
    """
    Scripted engine. Each call consumes the next step: a list of findings to
    return or an exception to raise. The last step repeats.
    """

    def __init__(self, steps=None):
        self.steps = list(steps if steps is not None else [[]])
        self.calls = []
        self.injected = False

    def inject(self) -> None:
        self.injected = True

    def evaluate(self, root_selectors=None, rules=None) -> List[Finding]:
        self.calls.append((root_selectors, rules))
        step = self.steps.pop(0) if len(self.steps) > 1 else self.steps[0]
        if isinstance(step, Exception):
            raise step
        return list(step)


@pytest.fixture
def test_settings() -> Settings:
    return Settings(
        _env_file=None,
        ENVIRONMENT="local",
        ALLOW_PRIVATE_TARGETS=False,
        REDIS_URL=None,
        RATE_LIMIT_ENABLED=True,
        RATE_LIMIT_MAX_REQUESTS=3,
        RATE_LIMIT_WINDOW_SECONDS=3600,
        MAX_CONCURRENT_SCANS=2,
        BROWSER_REMOTE_URL=None,
    )


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def memory_store(clock) -> InMemoryCounterStore:
    return InMemoryCounterStore(clock=clock)


@pytest.fixture
def admission(memory_store, test_settings, clock) -> AdmissionController:
    return AdmissionController(store=memory_store, config=test_settings, clock=clock)


@pytest.fixture
def resolve_public(monkeypatch):
    """Every hostname resolves to one public address; no real DNS."""
    calls = []

    def fake_resolve(hostname, timeout):
        calls.append(hostname)
        return [ipaddress.ip_address(PUBLIC_IP)]

    monkeypatch.setattr(
        "accessaudit.platform.utils.url_validator.resolve_hostname", fake_resolve
    )
    return calls


@pytest.fixture
def browser_session() -> FakeBrowserSession:
    return FakeBrowserSession()


@pytest.fixture
def session_manager(browser_session) -> FakeSessionManager:
    return FakeSessionManager(browser_session)


@pytest.fixture
def rule_engine() -> FakeRuleEngine:
    return FakeRuleEngine([[make_finding("image-alt", "critical", nodes=2)]])


@pytest.fixture
def scanner(test_settings, admission, session_manager, rule_engine, resolve_public) -> Scanner:
    return Scanner(
        config=test_settings,
        admission=admission,
        session_manager=session_manager,
        block_detector=BlockDetector.from_settings(test_settings),
        engine_factory=lambda session, config: rule_engine,
    )


@pytest.fixture(scope="session")
def test_app():
    """Create FastAPI test application."""
    from accessaudit.main import app

    return app


@pytest.fixture(scope="function")
def client(test_app, scanner) -> Generator[TestClient, None, None]:
    """
    Test client whose scan route runs against the faked scanner.
    The override is removed again after each test.
    """
    test_app.dependency_overrides[get_scanner] = lambda: scanner
    with TestClient(test_app) as test_client:
        yield test_client
    test_app.dependency_overrides.pop(get_scanner, None)
