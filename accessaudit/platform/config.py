from pathlib import Path
from typing import List, Literal, Optional

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    # ── App ─────────────────────────────────────
    APP_NAME: str = "Access Audit"
    ENVIRONMENT: Literal["local", "staging", "production"] = "local"
    DEBUG: bool = True

    # Private/reserved targets are rejected in production unless overridden here
    ALLOW_PRIVATE_TARGETS: Optional[bool] = None
    DNS_TIMEOUT_SECONDS: float = 5.0

    # ── Logging ─────────────────────────────────
    LOG_LEVEL: str = "INFO"
    LOG_TO_FILE: bool = True
    LOG_DIR: str = "logs"
    LOG_FILE_NAME: str = "access_audit.log"
    LOG_MAX_BYTES: int = 10_000_000
    LOG_BACKUP_COUNT: int = 5

    # ── Admission (Redis) ───────────────────────
    REDIS_URL: Optional[str] = None
    FORCE_IN_MEMORY_COUNTER_STORE: bool = False

    RATE_LIMIT_ENABLED: bool = False
    RATE_LIMIT_MAX_REQUESTS: int = 20
    RATE_LIMIT_WINDOW_SECONDS: int = 3600
    RATE_LIMIT_PREFIX: str = "scan-ratelimit"

    MAX_CONCURRENT_SCANS: int = 10
    CONCURRENCY_KEY: str = "scan:active-count"
    CONCURRENCY_TTL_SECONDS: int = 120

    # ── Browser ─────────────────────────────────
    BROWSER_REMOTE_URL: Optional[str] = None
    BROWSER_REMOTE_TOKEN: Optional[str] = None
    CHROMEDRIVER_PATH: Optional[str] = None
    USE_WEBDRIVER_MANAGER: bool = False

    VIEWPORT_WIDTH: int = 1920
    VIEWPORT_HEIGHT: int = 1080
    USER_AGENT: str = (
        "Mozilla/5.0 (Macintosh; Intel Mac OS X 10_15_7) AppleWebKit/537.36 "
        "(KHTML, like Gecko) Chrome/120.0.0.0 Safari/537.36"
    )
    ACCEPT_LANGUAGE: str = "en-US,en;q=0.9"

    NAVIGATION_TIMEOUT_SECONDS: int = 30
    LOAD_STATE_TIMEOUT_SECONDS: int = 15
    SETTLE_DELAY_SECONDS: float = 2.0
    REMOTE_SETTLE_DELAY_SECONDS: float = 3.0
    SCRIPT_TIMEOUT_SECONDS: int = 45
    DOCKER_HOST_ALIAS: str = "host.docker.internal"

    # ── Block / blank-render heuristics ─────────
    BLOCKED_STATUS_CODES: List[int] = [403, 503]
    BLOCKED_TITLE_PATTERNS: List[str] = [
        "access denied",
        "attention required",
        "just a moment",
        "checking your browser",
        "robot check",
        "blocked",
        "pardon our interruption",
        "please verify",
        "security check",
        "one more step",
    ]
    BLOCKED_BODY_PATTERNS: List[str] = [
        "captcha",
        "cf-browser-verification",
        "challenge-platform",
        "akamai",
        "perimeterx",
        "datadome",
        "cloudflare",
        "enable javascript and cookies",
        "unusual traffic",
    ]
    BLOCKED_BODY_MAX_CHARS: int = 5000
    BODY_SAMPLE_CHARS: int = 2000

    SCREENSHOT_BLANK_THRESHOLD_BYTES: int = 30_000
    # PNG fallback compresses differently; unset skips the blank check for it
    SCREENSHOT_PNG_BLANK_THRESHOLD_BYTES: Optional[int] = None
    SCREENSHOT_RETRY_DELAY_SECONDS: float = 4.0
    SCREENSHOT_JPEG_QUALITY: int = 75

    # ── Rule engine ─────────────────────────────
    AXE_SOURCE_PATH: Optional[str] = None
    AXE_CDN_URLS: List[str] = [
        "https://cdnjs.cloudflare.com/ajax/libs/axe-core/4.11.1/axe.min.js",
        "https://unpkg.com/axe-core@4.11.1/axe.min.js",
    ]
    AXE_DOWNLOAD_TIMEOUT_SECONDS: float = 15.0

    # ── Result ──────────────────────────────────
    MAX_FINDINGS_CHARS: int = 500_000
    MAX_TRUNCATION_PASSES: int = 50

    model_config = SettingsConfigDict(
        env_file=str(Path(__file__).parent.parent.parent / ".env"),
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    @property
    def is_production(self) -> bool:
        return self.ENVIRONMENT == "production"

    @property
    def private_targets_allowed(self) -> bool:
        if self.ALLOW_PRIVATE_TARGETS is not None:
            return self.ALLOW_PRIVATE_TARGETS
        return not self.is_production

    @property
    def rate_limit_active(self) -> bool:
        return self.is_production or self.RATE_LIMIT_ENABLED


settings = Settings()
