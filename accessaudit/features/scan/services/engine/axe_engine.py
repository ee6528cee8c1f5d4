"""
axe-core rule engine, injected into the page through the browser session.

The rest of the scan only sees the narrow ``RuleEngine.evaluate`` capability,
so the engine can be swapped or faked in tests.
"""
from abc import ABC, abstractmethod
from pathlib import Path
from threading import Lock
from typing import Callable, List, Optional, Sequence

import httpx
from pydantic import ValidationError
from selenium.common.exceptions import (
    JavascriptException,
    TimeoutException,
    WebDriverException,
)

from accessaudit.features.scan.schemas.scan import Finding
from accessaudit.features.scan.services.browser.session import BrowserSession
from accessaudit.platform.config import Settings, settings as default_settings
from accessaudit.platform.exceptions import RuleEngineError, SessionFailureError
from accessaudit.platform.logger import get_logger

logger = get_logger(__name__)

_cached_cdn_source: Optional[str] = None
_cache_lock = Lock()

AXE_PRESENT_SCRIPT = "return typeof window.axe !== 'undefined' && typeof window.axe.run === 'function';"

AXE_DISCARD_SCRIPT = "try { delete window.axe; } catch (e) { window.axe = undefined; }"

AXE_RUN_SCRIPT = """
var rootSelectors = arguments[0];
var rules = arguments[1];
var done = arguments[arguments.length - 1];
function fail(e) { done({ error: String((e && e.message) || e) }); }
try {
    if (typeof window.axe === 'undefined') { fail('axe-core is not loaded'); return; }
    var root = document.body || document;
    if (rootSelectors && rootSelectors.length) {
        root = null;
        for (var i = 0; i < rootSelectors.length && !root; i++) {
            root = document.querySelector(rootSelectors[i]);
        }
        if (!root) { fail('No content container found (' + rootSelectors.join(', ') + ')'); return; }
    }
    var options = { resultTypes: ['violations'] };
    if (rules && rules.length) {
        options.runOnly = { type: 'rule', values: rules };
        options.elementRef = false;
    }
    window.axe.reset();
    window.axe.run(root, options).then(function (results) {
        done({ violations: JSON.parse(JSON.stringify(results.violations)) });
    }).catch(fail);
} catch (e) {
    fail(e);
}
"""


def load_axe_source(config: Optional[Settings] = None) -> str:
    """
    The axe-core script to inject.

    Primary: a local copy at AXE_SOURCE_PATH. Fallback: download from the
    configured CDN URLs, cached for the life of the process.
    """
    global _cached_cdn_source
    config = config or default_settings

    if config.AXE_SOURCE_PATH:
        try:
            source = Path(config.AXE_SOURCE_PATH).read_text(encoding="utf-8")
            if source.strip():
                return source
            logger.warning(f"axe-core source at {config.AXE_SOURCE_PATH} is empty")
        except OSError as e:
            logger.warning(f"Could not read axe-core source at {config.AXE_SOURCE_PATH}: {e}")

    with _cache_lock:
        if _cached_cdn_source:
            return _cached_cdn_source

        for cdn_url in config.AXE_CDN_URLS:
            try:
                response = httpx.get(cdn_url, timeout=config.AXE_DOWNLOAD_TIMEOUT_SECONDS, follow_redirects=True)
                response.raise_for_status()
            except httpx.HTTPError as e:
                logger.warning(f"Failed to download axe-core from {cdn_url}: {e}")
                continue
            if response.text.strip():
                _cached_cdn_source = response.text
                logger.info(f"Loaded axe-core from {cdn_url}")
                return _cached_cdn_source

    raise SessionFailureError(
        "Failed to load axe-core: no local source and all CDN fallbacks failed"
    )


def clear_source_cache() -> None:
    global _cached_cdn_source
    with _cache_lock:
        _cached_cdn_source = None


class RuleEngine(ABC):

    @abstractmethod
    def evaluate(
        self,
        root_selectors: Optional[Sequence[str]] = None,
        rules: Optional[Sequence[str]] = None,
    ) -> List[Finding]:
        """
        Run the rules against the first present root (whole document when None).

        Raises:
            RuleEngineError: the engine itself threw; the caller may escalate
            SessionFailureError: the browser session is gone
        """


class AxeRuleEngine(RuleEngine):
    def __init__(
        self,
        session: BrowserSession,
        config: Optional[Settings] = None,
        source_loader: Callable[[Settings], str] = load_axe_source,
    ):
        self.session = session
        self.config = config or default_settings
        self._source_loader = source_loader
        # A timed-out run keeps axe busy in the page; the next run needs a fresh copy
        self._stale = False

    def inject(self) -> None:
        """Evaluate the engine source in page context (unaffected by page CSP)."""
        source = self._source_loader(self.config)
        try:
            self.session.evaluate(AXE_DISCARD_SCRIPT)
            self.session.evaluate(source)
            present = self.session.evaluate(AXE_PRESENT_SCRIPT)
        except TimeoutException:
            raise SessionFailureError("Timed out injecting the accessibility engine")
        except WebDriverException as e:
            raise SessionFailureError(f"Could not inject the accessibility engine: {e.msg}")
        if not present:
            raise SessionFailureError("Accessibility engine did not initialise on the page")
        self._stale = False

    def evaluate(
        self,
        root_selectors: Optional[Sequence[str]] = None,
        rules: Optional[Sequence[str]] = None,
    ) -> List[Finding]:
        if self._stale:
            logger.info("Re-injecting accessibility engine after a timed-out run")
            self.inject()

        try:
            result = self.session.evaluate_async(
                AXE_RUN_SCRIPT,
                list(root_selectors) if root_selectors else None,
                list(rules) if rules else None,
            )
        except TimeoutException:
            self._stale = True
            raise RuleEngineError(
                f"Rule engine exceeded {self.config.SCRIPT_TIMEOUT_SECONDS}s script timeout"
            )
        except JavascriptException as e:
            raise RuleEngineError(e.msg)
        except WebDriverException as e:
            raise SessionFailureError(f"Browser session lost during evaluation: {e.msg}")

        if not isinstance(result, dict):
            raise RuleEngineError(f"Unexpected rule engine result: {type(result).__name__}")
        if result.get("error"):
            raise RuleEngineError(str(result["error"]))

        try:
            return [Finding.model_validate(item) for item in result.get("violations") or []]
        except ValidationError as e:
            raise RuleEngineError(f"Malformed rule engine output: {e}")
