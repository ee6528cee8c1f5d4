import base64
import re
import time
from contextlib import contextmanager
from typing import Any, Callable, Iterator, Optional, Tuple
from urllib.parse import parse_qsl, urlencode, urlparse, urlunparse

from pydantic import BaseModel
from selenium import webdriver
from selenium.common.exceptions import TimeoutException, WebDriverException
from selenium.webdriver.chrome.options import Options
from selenium.webdriver.chrome.service import Service
from selenium.webdriver.remote.webdriver import WebDriver
from selenium.webdriver.support.ui import WebDriverWait
from urllib3.exceptions import HTTPError as Urllib3HTTPError

from accessaudit.platform.config import Settings, settings as default_settings
from accessaudit.platform.exceptions import SessionFailureError
from accessaudit.platform.logger import get_logger

logger = get_logger(__name__)

LOCALHOST_RE = re.compile(r"^(localhost|127(?:\.\d+){3}|\[?::1\]?)$", re.IGNORECASE)

# Masks the most common automation tells before any page script runs
STEALTH_SCRIPT = """
Object.defineProperty(navigator, 'webdriver', { get: () => false });
Object.defineProperty(navigator, 'plugins', { get: () => [1, 2, 3, 4, 5] });
Object.defineProperty(navigator, 'languages', { get: () => ['en-US', 'en'] });
window.chrome = window.chrome || { runtime: {} };
"""

NAVIGATION_STATUS_SCRIPT = """
var entries = performance.getEntriesByType('navigation');
if (entries.length && entries[0].responseStatus) { return entries[0].responseStatus; }
return null;
"""

BODY_TEXT_SCRIPT = """
return document.body && document.body.innerText
    ? document.body.innerText.substring(0, arguments[0])
    : '';
"""

CLIENT_HINT_HEADERS = {
    "Sec-CH-UA": '"Not_A Brand";v="8", "Chromium";v="120", "Google Chrome";v="120"',
    "Sec-CH-UA-Mobile": "?0",
    "Sec-CH-UA-Platform": '"macOS"',
}

# Raised by the HTTP layer under selenium when the automation endpoint or
# chromedriver process goes away mid-session
TRANSPORT_ERRORS = (Urllib3HTTPError, OSError)


class NavigationResponse(BaseModel):
    url: str
    status: int = 200
    rewritten: bool = False


# ---------------------------------------------------------------------------
# Docker localhost rewriting
# ---------------------------------------------------------------------------

def is_local_endpoint(endpoint: Optional[str]) -> bool:
    if not endpoint:
        return False
    try:
        hostname = urlparse(re.sub(r"^ws(s?):", r"http\1:", endpoint)).hostname
    except ValueError:
        return False
    return bool(hostname) and bool(LOCALHOST_RE.match(hostname))


def rewrite_localhost_for_docker(
    target_url: str,
    remote_endpoint: Optional[str],
    host_alias: str = "host.docker.internal",
) -> Tuple[str, bool]:
    """
    Point loopback targets at the container-to-host alias when the remote
    browser itself runs in a local container. Other targets and non-local
    endpoints are returned unchanged.
    """
    if not is_local_endpoint(remote_endpoint):
        return target_url, False

    try:
        parsed = urlparse(target_url)
        hostname = parsed.hostname
        port = parsed.port
    except ValueError:
        return target_url, False

    if not hostname or not LOCALHOST_RE.match(hostname):
        return target_url, False

    netloc = host_alias if port is None else f"{host_alias}:{port}"
    return urlunparse(parsed._replace(netloc=netloc)), True


# ---------------------------------------------------------------------------
# Driver construction
# ---------------------------------------------------------------------------

def build_chrome_options(config: Settings) -> Options:
    chrome_options = Options()
    chrome_options.add_argument("--headless=new")
    chrome_options.add_argument("--disable-gpu")
    chrome_options.add_argument("--no-sandbox")
    chrome_options.add_argument("--disable-dev-shm-usage")
    chrome_options.add_argument("--disable-blink-features=AutomationControlled")
    chrome_options.add_argument(f"--window-size={config.VIEWPORT_WIDTH},{config.VIEWPORT_HEIGHT}")
    chrome_options.add_argument(f"--user-agent={config.USER_AGENT}")
    chrome_options.add_argument("--lang=en-US")
    chrome_options.add_experimental_option("excludeSwitches", ["enable-automation"])
    chrome_options.add_experimental_option("useAutomationExtension", False)

    # Return at DOMContentLoaded: busy pages never reach network idle
    chrome_options.page_load_strategy = "eager"
    # Auditing accessibility, not TLS configuration
    chrome_options.accept_insecure_certs = True
    return chrome_options


def remote_command_executor(endpoint: str, token: Optional[str] = None) -> str:
    """WebDriver endpoints are HTTP; ws/wss aliases are mapped to http/https."""
    url = re.sub(r"^ws(s?):", r"http\1:", endpoint)
    if not token:
        return url
    parsed = urlparse(url)
    query = dict(parse_qsl(parsed.query))
    query.setdefault("token", token)
    return urlunparse(parsed._replace(query=urlencode(query)))


def build_driver(config: Settings, remote_endpoint: Optional[str] = None) -> WebDriver:
    chrome_options = build_chrome_options(config)

    if remote_endpoint:
        executor = remote_command_executor(remote_endpoint, config.BROWSER_REMOTE_TOKEN)
        return webdriver.Remote(command_executor=executor, options=chrome_options)

    if config.CHROMEDRIVER_PATH:
        driver_service = Service(executable_path=config.CHROMEDRIVER_PATH)
        return webdriver.Chrome(service=driver_service, options=chrome_options)

    if config.USE_WEBDRIVER_MANAGER:
        from webdriver_manager.chrome import ChromeDriverManager

        driver_service = Service(ChromeDriverManager().install())
        return webdriver.Chrome(service=driver_service, options=chrome_options)

    return webdriver.Chrome(options=chrome_options)


# ---------------------------------------------------------------------------
# Session
# ---------------------------------------------------------------------------

class BrowserSession:
    """Page-level primitives over one WebDriver instance."""

    def __init__(
        self,
        driver: WebDriver,
        config: Optional[Settings] = None,
        remote_endpoint: Optional[str] = None,
        sleep: Callable[[float], None] = time.sleep,
    ):
        self.driver = driver
        self.config = config or default_settings
        self.remote_endpoint = remote_endpoint
        self._sleep = sleep
        self._closed = False

    @property
    def is_remote(self) -> bool:
        return bool(self.remote_endpoint)

    @contextmanager
    def _driver_call(self, action: str) -> Iterator[None]:
        try:
            yield
        except TRANSPORT_ERRORS as e:
            raise SessionFailureError(f"Browser automation endpoint unreachable while {action}: {e}")

    def _cdp(self, cmd: str, params: dict) -> Optional[dict]:
        """Chrome DevTools command; None when the driver cannot relay CDP."""
        try:
            if hasattr(self.driver, "execute_cdp_cmd"):
                return self.driver.execute_cdp_cmd(cmd, params)
            response = self.driver.execute("executeCdpCommand", {"cmd": cmd, "params": params})
            return response.get("value") if isinstance(response, dict) else None
        except (WebDriverException, KeyError) as e:
            logger.debug(f"CDP command {cmd} unavailable: {e}")
            return None

    def prepare(self) -> None:
        """Timeouts, viewport, headers and stealth patches. Runs before any navigation."""
        with self._driver_call("configuring the session"):
            self.driver.set_page_load_timeout(self.config.NAVIGATION_TIMEOUT_SECONDS)
            self.driver.set_script_timeout(self.config.SCRIPT_TIMEOUT_SECONDS)
            self.driver.set_window_size(self.config.VIEWPORT_WIDTH, self.config.VIEWPORT_HEIGHT)

            self._cdp("Page.addScriptToEvaluateOnNewDocument", {"source": STEALTH_SCRIPT})
            self._cdp("Network.enable", {})
            self._cdp(
                "Network.setExtraHTTPHeaders",
                {"headers": {"Accept-Language": self.config.ACCEPT_LANGUAGE, **CLIENT_HINT_HEADERS}},
            )
            self._cdp(
                "Emulation.setEmulatedMedia",
                {"features": [{"name": "prefers-color-scheme", "value": "light"}]},
            )

    def navigate(self, url: str, timeout: Optional[int] = None) -> NavigationResponse:
        timeout = timeout or self.config.NAVIGATION_TIMEOUT_SECONDS
        effective_url, rewritten = rewrite_localhost_for_docker(
            url, self.remote_endpoint, self.config.DOCKER_HOST_ALIAS
        )
        if rewritten:
            logger.info(f"Rewrote {url} -> {effective_url} for containerised browser")

        with self._driver_call(f"loading URL {url}"):
            self.driver.set_page_load_timeout(timeout)
            try:
                logger.info(f"Navigating to {effective_url}")
                self.driver.get(effective_url)
            except TimeoutException:
                raise SessionFailureError(f"Page load timeout after {timeout} seconds for URL: {url}")
            except WebDriverException as e:
                raise SessionFailureError(f"WebDriver error loading URL {url}: {e.msg}")

            self._wait_for_load_state()
            self._sleep(
                self.config.REMOTE_SETTLE_DELAY_SECONDS if self.is_remote else self.config.SETTLE_DELAY_SECONDS
            )

            return NavigationResponse(
                url=effective_url,
                status=self._navigation_status(),
                rewritten=rewritten,
            )

    def _wait_for_load_state(self) -> None:
        try:
            WebDriverWait(self.driver, self.config.LOAD_STATE_TIMEOUT_SECONDS).until(
                lambda d: d.execute_script("return document.readyState") == "complete"
            )
        except TimeoutException:
            # Proceed with whatever has rendered
            logger.info("Load event did not fire in time, continuing with DOM-ready page")

    def _navigation_status(self) -> int:
        try:
            status = self.driver.execute_script(NAVIGATION_STATUS_SCRIPT)
        except WebDriverException:
            return 200
        return int(status) if status else 200

    def title(self) -> str:
        with self._driver_call("reading the page title"):
            try:
                return self.driver.title or ""
            except WebDriverException:
                return ""

    def body_text(self, limit: int) -> str:
        with self._driver_call("reading the page text"):
            try:
                return self.driver.execute_script(BODY_TEXT_SCRIPT, limit) or ""
            except WebDriverException:
                return ""

    def content(self) -> str:
        with self._driver_call("reading the page source"):
            return self.driver.page_source

    def screenshot(self, quality: Optional[int] = None) -> bytes:
        """Viewport-only capture; JPEG through CDP when available, else PNG."""
        quality = quality or self.config.SCREENSHOT_JPEG_QUALITY
        with self._driver_call("capturing a screenshot"):
            result = self._cdp(
                "Page.captureScreenshot",
                {"format": "jpeg", "quality": quality, "captureBeyondViewport": False},
            )
            if isinstance(result, dict) and result.get("data"):
                return base64.b64decode(result["data"])
            return self.driver.get_screenshot_as_png()

    def evaluate(self, script: str, *args: Any) -> Any:
        with self._driver_call("running a page script"):
            return self.driver.execute_script(script, *args)

    def evaluate_async(self, script: str, *args: Any) -> Any:
        with self._driver_call("running a page script"):
            return self.driver.execute_async_script(script, *args)

    def wait(self, seconds: float) -> None:
        self._sleep(seconds)

    def close(self) -> None:
        if self._closed:
            return
        self._closed = True
        try:
            self.driver.quit()
        except (WebDriverException, *TRANSPORT_ERRORS) as e:
            logger.warning(f"Error closing browser session: {e}")


class BrowserSessionManager:
    """Launches a local browser or attaches to a remote automation endpoint."""

    def __init__(
        self,
        config: Optional[Settings] = None,
        driver_factory: Optional[Callable[[Settings, Optional[str]], WebDriver]] = None,
        sleep: Callable[[float], None] = time.sleep,
    ):
        self.config = config or default_settings
        self._driver_factory = driver_factory or build_driver
        self._sleep = sleep

    def resolve_endpoint(self, remote_endpoint: Optional[str] = None) -> Optional[str]:
        return remote_endpoint or self.config.BROWSER_REMOTE_URL

    def open(self, remote_endpoint: Optional[str] = None) -> BrowserSession:
        endpoint = self.resolve_endpoint(remote_endpoint)
        try:
            driver = self._driver_factory(self.config, endpoint)
        except (WebDriverException, *TRANSPORT_ERRORS) as e:
            where = "remote browser" if endpoint else "local browser"
            raise SessionFailureError(f"Could not start {where} session: {e}")

        session = BrowserSession(driver, self.config, remote_endpoint=endpoint, sleep=self._sleep)
        try:
            session.prepare()
        except WebDriverException as e:
            session.close()
            raise SessionFailureError(f"Could not configure browser session: {e.msg}")
        except SessionFailureError:
            session.close()
            raise
        return session

    @contextmanager
    def session(self, remote_endpoint: Optional[str] = None) -> Iterator[BrowserSession]:
        browser_session = self.open(remote_endpoint)
        try:
            yield browser_session
        finally:
            browser_session.close()
