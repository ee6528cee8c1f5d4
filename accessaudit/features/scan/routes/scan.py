from functools import lru_cache

from fastapi import APIRouter, Depends, Request, status

from accessaudit.features.scan.schemas.scan import ScanRequest, ScanResponse, ScanStartRequest
from accessaudit.features.scan.services.detection.platform_detector import platform_label
from accessaudit.features.scan.services.scan.scanner import Scanner
from accessaudit.platform.config import settings
from accessaudit.platform.logger import get_logger
from accessaudit.platform.response import api_response
from accessaudit.platform.utils.device import get_client_ip

logger = get_logger(__name__)

router = APIRouter(prefix="/scan", tags=["scan"])


@lru_cache
def get_scanner() -> Scanner:
    return Scanner(settings)


@router.post("")
def start_scan(
    payload: ScanStartRequest,
    request: Request,
    scanner: Scanner = Depends(get_scanner),
):
    """
    Scan one page for accessibility violations.

    Runs synchronously in the worker thread pool; errors from the scan are
    rendered by the registered ScanError handlers.
    """
    config = scanner.config
    if config.is_production and not config.BROWSER_REMOTE_URL:
        logger.error("Scan requested in production without BROWSER_REMOTE_URL configured")
        return api_response(
            message=(
                "Server misconfiguration: BROWSER_REMOTE_URL is not set. "
                "A remote browser service is required in production."
            ),
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        )

    caller_id = get_client_ip(request)
    logger.info(f"Scan request: url={payload.url}, caller={caller_id}")

    result = scanner.scan(
        ScanRequest(
            target_url=payload.url,
            wants_screenshot=payload.capture_screenshot,
            caller_id=caller_id,
        )
    )

    return api_response(
        data=ScanResponse.from_result(result, platform_label(result.platform)),
        message="Scan completed" if not result.safe_mode else "Scan completed with reduced coverage",
    )
