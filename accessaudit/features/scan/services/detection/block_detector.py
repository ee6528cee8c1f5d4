"""
Block/challenge page detection.

Decides whether the browser is looking at the real target or at a WAF,
anti-bot or challenge interstitial. Pattern tables come from settings so
they can be tuned without code changes.
"""
import re
from typing import Iterable, Optional

from pydantic import BaseModel

from accessaudit.platform.config import Settings, settings as default_settings
from accessaudit.platform.logger import get_logger

logger = get_logger(__name__)

BLOCKED_MESSAGE = (
    "This site's firewall blocked our scanner. The results would not reflect the real page."
)


class BlockClassification(BaseModel):
    blocked: bool
    reason: Optional[str] = None


def _compile(patterns: Iterable[str]) -> Optional[re.Pattern]:
    patterns = [p for p in patterns if p]
    if not patterns:
        return None
    return re.compile("|".join(re.escape(p) for p in patterns), re.IGNORECASE)


class BlockDetector:
    def __init__(
        self,
        blocked_statuses: Iterable[int],
        title_patterns: Iterable[str],
        body_patterns: Iterable[str],
        body_max_chars: int,
    ):
        self.blocked_statuses = set(blocked_statuses)
        self.title_re = _compile(title_patterns)
        self.body_re = _compile(body_patterns)
        self.body_max_chars = body_max_chars

    @classmethod
    def from_settings(cls, config: Optional[Settings] = None) -> "BlockDetector":
        config = config or default_settings
        return cls(
            blocked_statuses=config.BLOCKED_STATUS_CODES,
            title_patterns=config.BLOCKED_TITLE_PATTERNS,
            body_patterns=config.BLOCKED_BODY_PATTERNS,
            body_max_chars=config.BLOCKED_BODY_MAX_CHARS,
        )

    def classify(self, http_status: int, page_title: str, body_text: str) -> BlockClassification:
        if http_status in self.blocked_statuses:
            return BlockClassification(blocked=True, reason=f"HTTP {http_status}")

        if self.title_re is not None:
            match = self.title_re.search(page_title or "")
            if match:
                return BlockClassification(blocked=True, reason=f'title matched "{match.group(0)}"')

        body_text = body_text or ""
        # Vendor names on a long page are just content, not a challenge
        if self.body_re is not None and len(body_text) < self.body_max_chars:
            match = self.body_re.search(body_text)
            if match:
                return BlockClassification(blocked=True, reason=f'short body matched "{match.group(0)}"')

        return BlockClassification(blocked=False)
