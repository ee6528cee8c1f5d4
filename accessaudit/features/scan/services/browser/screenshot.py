from typing import Optional

from pydantic import BaseModel
from selenium.common.exceptions import WebDriverException

from accessaudit.features.scan.services.browser.session import BrowserSession
from accessaudit.platform.config import Settings, settings as default_settings
from accessaudit.platform.logger import get_logger

logger = get_logger(__name__)

BLANK_SCREENSHOT_WARNING = (
    "Screenshot appears blank. The page may not have fully rendered "
    "(e.g. client-side JS still loading, auth wall, or empty page)."
)


class ScreenshotCapture(BaseModel):
    data: bytes
    warning: Optional[str] = None


PNG_SIGNATURE = b"\x89PNG\r\n\x1a\n"


def is_likely_blank(image: bytes, threshold_bytes: Optional[int]) -> bool:
    """
    A near-uniform page compresses far better than real content at the same
    quality, so a tiny file is a cheap blank-render signal. Not a pixel decode:
    false positives and negatives are expected. No threshold means no check.
    """
    if threshold_bytes is None:
        return False
    return len(image) < threshold_bytes


class ScreenshotCapturer:
    """Viewport snapshot taken after navigation settles, before the rule engine is injected."""

    def __init__(self, session: BrowserSession, config: Optional[Settings] = None):
        self.session = session
        self.config = config or default_settings

    def _blank_threshold(self, image: bytes) -> Optional[int]:
        if image.startswith(PNG_SIGNATURE):
            return self.config.SCREENSHOT_PNG_BLANK_THRESHOLD_BYTES
        return self.config.SCREENSHOT_BLANK_THRESHOLD_BYTES

    def capture(self) -> Optional[ScreenshotCapture]:
        try:
            image = self.session.screenshot()
            if not is_likely_blank(image, self._blank_threshold(image)):
                return ScreenshotCapture(data=image)

            logger.info(
                f"Screenshot looks blank ({len(image)} bytes), retrying in "
                f"{self.config.SCREENSHOT_RETRY_DELAY_SECONDS}s"
            )
            self.session.wait(self.config.SCREENSHOT_RETRY_DELAY_SECONDS)
            retry = self.session.screenshot()
            if not is_likely_blank(retry, self._blank_threshold(retry)):
                return ScreenshotCapture(data=retry)

            return ScreenshotCapture(data=retry, warning=BLANK_SCREENSHOT_WARNING)
        except WebDriverException as e:
            # A missing screenshot never fails the scan
            logger.warning(f"Screenshot capture failed: {e}")
            return None
