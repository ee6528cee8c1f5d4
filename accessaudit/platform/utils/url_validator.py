import errno
import ipaddress
import re
import socket
from concurrent.futures import ThreadPoolExecutor, TimeoutError as FutureTimeoutError
from typing import List, NamedTuple, Optional, Tuple, Union
from urllib.parse import urlparse, urlunparse

from accessaudit.platform.config import Settings, settings as default_settings
from accessaudit.platform.logger import get_logger

logger = get_logger(__name__)

IPAddress = Union[ipaddress.IPv4Address, ipaddress.IPv6Address]

ALLOWED_SCHEMES = ("http", "https")

PRIVATE_IPV4_NETWORKS = [
    ipaddress.ip_network(cidr)
    for cidr in (
        "0.0.0.0/8",        # "this" network
        "10.0.0.0/8",       # RFC 1918
        "100.64.0.0/10",    # carrier-grade NAT
        "127.0.0.0/8",      # loopback
        "169.254.0.0/16",   # link-local
        "172.16.0.0/12",    # RFC 1918
        "192.0.0.0/24",     # IETF protocol assignments
        "192.0.2.0/24",     # TEST-NET-1
        "192.88.99.0/24",   # 6to4 relay anycast
        "192.168.0.0/16",   # RFC 1918
        "198.18.0.0/15",    # benchmarking
        "198.51.100.0/24",  # TEST-NET-2
        "203.0.113.0/24",   # TEST-NET-3
        "224.0.0.0/4",      # multicast
        "240.0.0.0/4",      # reserved / broadcast
    )
]

PRIVATE_IPV6_NETWORKS = [
    ipaddress.ip_network(cidr)
    for cidr in (
        "::/128",     # unspecified
        "::1/128",    # loopback
        "fc00::/7",   # unique local
        "fe80::/10",  # link-local
        "ff00::/8",   # multicast
    )
]

# getaddrinfo codes that mean "this name does not exist"
_NOT_FOUND_CODES = {
    code
    for code in (
        getattr(socket, "EAI_NONAME", None),
        getattr(socket, "EAI_NODATA", None),
    )
    if code is not None
}

# Bare "host:port", optionally followed by a path, query or fragment
_HOST_PORT_RE = re.compile(r"^[^/:@?#]+:\d+(?:[/?#]|$)")

_dns_executor = ThreadPoolExecutor(max_workers=4, thread_name_prefix="dns")


class UrlValidationResult(NamedTuple):
    ok: bool
    url: str
    reason: str = ""


def normalize_url(url: str) -> Tuple[str, bool]:
    url = url.strip()

    if "://" in url:
        return url, False

    # "localhost:3000" parses with scheme "localhost"; only a real scheme such
    # as "mailto:" is left for the scheme check to reject
    if urlparse(url).scheme and not _HOST_PORT_RE.match(url):
        return url, False

    return f"https://{url}", True


def is_private_ip(ip: IPAddress) -> bool:
    if isinstance(ip, ipaddress.IPv6Address):
        if ip.ipv4_mapped is not None:
            return is_private_ip(ip.ipv4_mapped)
        return any(ip in network for network in PRIVATE_IPV6_NETWORKS)
    return any(ip in network for network in PRIVATE_IPV4_NETWORKS)


def _parse_ip_literal(hostname: str) -> Optional[IPAddress]:
    try:
        return ipaddress.ip_address(hostname.strip("[]"))
    except ValueError:
        return None


def resolve_hostname(hostname: str, timeout: float) -> List[IPAddress]:
    """
    Resolve a hostname to every address the system resolver returns.

    Raises:
        socket.gaierror: resolver failure (caller decides whether it is fatal)
        concurrent.futures.TimeoutError: resolution exceeded ``timeout``
    """
    future = _dns_executor.submit(socket.getaddrinfo, hostname, None)
    infos = future.result(timeout=timeout)

    addresses: List[IPAddress] = []
    for _, _, _, _, sockaddr in infos:
        try:
            ip = ipaddress.ip_address(sockaddr[0].split("%", 1)[0])
        except ValueError:
            continue
        if ip not in addresses:
            addresses.append(ip)
    return addresses


def _is_not_found(exc: socket.gaierror) -> bool:
    return exc.errno in _NOT_FOUND_CODES or exc.errno == errno.ENOENT


def _canonical_url(parsed) -> str:
    hostname = parsed.hostname or ""
    host = f"[{hostname}]" if ":" in hostname else hostname
    netloc = host if parsed.port is None else f"{host}:{parsed.port}"
    if parsed.username is not None:
        userinfo = parsed.username
        if parsed.password is not None:
            userinfo = f"{userinfo}:{parsed.password}"
        netloc = f"{userinfo}@{netloc}"

    return urlunparse((
        parsed.scheme.lower(),
        netloc,
        parsed.path or "/",
        parsed.params,
        parsed.query,
        parsed.fragment,
    ))


def validate_url(raw_url: str, config: Optional[Settings] = None) -> UrlValidationResult:
    """
    Validate a user-supplied URL before any browser resource is spent on it.

    1. Rejects non-http(s) schemes and URLs without a hostname
    2. Resolves the hostname (advisory: only "not found" is fatal)
    3. When private targets are not allowed, rejects any address in a
       private/reserved range, IPv4-mapped IPv6 included
    4. Returns the canonical URL (lower-cased scheme and host)
    """
    config = config or default_settings

    if not raw_url or not raw_url.strip():
        return UrlValidationResult(False, "", "Invalid URL.")

    normalized_url, _ = normalize_url(raw_url)

    try:
        parsed = urlparse(normalized_url)
        # Accessing .port validates it
        parsed.port
    except ValueError:
        return UrlValidationResult(False, normalized_url, "Invalid URL.")

    scheme = parsed.scheme.lower()
    if scheme not in ALLOWED_SCHEMES:
        return UrlValidationResult(
            False,
            normalized_url,
            f"Only http and https URLs are allowed (got {scheme}).",
        )

    hostname = parsed.hostname
    if not hostname:
        return UrlValidationResult(False, normalized_url, "URL is missing a hostname.")

    canonical = _canonical_url(parsed)

    literal = _parse_ip_literal(hostname)
    if literal is not None:
        addresses = [literal]
    else:
        try:
            addresses = resolve_hostname(hostname, config.DNS_TIMEOUT_SECONDS)
        except socket.gaierror as exc:
            if _is_not_found(exc):
                return UrlValidationResult(
                    False,
                    normalized_url,
                    f'Could not resolve hostname "{hostname}". Check the URL and try again.',
                )
            # Let the browser fail later with a clearer error
            logger.warning(f"DNS lookup for {hostname} failed ({exc}); letting it through")
            return UrlValidationResult(True, canonical)
        except FutureTimeoutError:
            logger.warning(f"DNS lookup for {hostname} timed out; letting it through")
            return UrlValidationResult(True, canonical)

    if not config.private_targets_allowed:
        if any(is_private_ip(ip) for ip in addresses):
            logger.warning(f"Rejected private/reserved target {hostname} -> {addresses}")
            return UrlValidationResult(
                False,
                normalized_url,
                "This URL resolves to a private or reserved IP address and cannot be scanned.",
            )

    return UrlValidationResult(True, canonical)
