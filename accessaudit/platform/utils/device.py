from fastapi import Request

from accessaudit.platform.logger import get_logger

logger = get_logger(__name__)


def get_client_ip(request: Request) -> str:
    """
    Caller identity used for rate limiting.

    First hop of X-Forwarded-For, then X-Real-IP, then the socket peer.
    """
    forwarded_for = request.headers.get("x-forwarded-for")
    if forwarded_for:
        first_hop = forwarded_for.split(",")[0].strip()
        if first_hop:
            return first_hop

    real_ip = request.headers.get("x-real-ip")
    if real_ip:
        return real_ip.strip()

    if request.client and request.client.host:
        return request.client.host

    logger.debug("No client address on request, using 'unknown' as caller id")
    return "unknown"
