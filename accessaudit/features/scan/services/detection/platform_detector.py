from typing import Dict, List, Optional, Tuple

from accessaudit.platform.logger import get_logger

logger = get_logger(__name__)

PLATFORM_LABELS: Dict[str, str] = {
    "wordpress": "WordPress",
    "squarespace": "Squarespace",
    "shopify": "Shopify",
    "wix": "Wix",
    "webflow": "Webflow",
    "drupal": "Drupal",
    "joomla": "Joomla",
    "ghost": "Ghost",
    "hubspot": "HubSpot",
    "weebly": "Weebly",
}

# Checked in order; the first platform with any matching signal wins.
# Managed hosting often strips the obvious markers, so each platform lists
# several weaker signals too.
PLATFORM_SIGNATURES: List[Tuple[str, List[str]]] = [
    ("wordpress", [
        'content="wordpress', "wp-content/", "wp-includes/",
        "wp-json", "wp-emoji", "wp-block-",
        "wordpress.com", "wpvip.com", "wordpress vip",
        "powered by wordpress",
    ]),
    ("drupal", [
        'content="drupal', "drupal.js", "/sites/default/files",
        "drupal.org", "drupal.settings", "data-drupal-",
        "/core/misc/drupal.js", "/modules/system/",
        "views-row", "field-name-",
    ]),
    ("joomla", [
        'content="joomla', "/media/jui/", "/media/system/js/",
        "/components/com_", "/modules/mod_",
        "joomla!", "task=",
    ]),
    ("ghost", [
        'content="ghost', "ghost.org", "ghost.io",
        "/ghost/api/", "ghost-portal", "ghost-search",
        "data-ghost-", "gh-head", "gh-portal",
        "powered by ghost",
    ]),
    ("squarespace", [
        "squarespace.com", "squarespace-cdn.com", "sqsp.net",
        "data-squarespace", "sqs-block", "sqs-layout",
        "sqs-announcement-bar", "sqs-slide-wrapper",
        "this is squarespace",
    ]),
    ("shopify", [
        "cdn.shopify.com", "myshopify.com",
        "shopify.theme", "shopify-section",
        "shopify-payment", "shopify-features",
        "data-shopify", "shopify-app",
    ]),
    ("wix", [
        "static.wixstatic.com", "parastorage.com",
        "wix.com", "wixsite.com",
        "x-wix-", "data-mesh-id",
        "wixui-", "wix-thunderbolt",
    ]),
    ("webflow", [
        "webflow.com", "website-files.com",
        "wf-design", "w-webflow-badge",
        "data-wf-site", "data-wf-page",
    ]),
    ("hubspot", [
        "js.hs-scripts.com", "hs-banner.com",
        ".hubspot.com", "hs-script-loader",
        "hubspot-topic", "hs-menu-wrapper",
        "data-hs-", "hs_cos_wrapper",
        "powered by hubspot",
    ]),
    ("weebly", [
        "weebly.com", "editmysite.com",
        "wsite-", "weebly-",
        "data-wsite-", "weeblycloud.com",
        "powered by weebly",
    ]),
]


def detect_platform(
    html: str,
    signatures: Optional[List[Tuple[str, List[str]]]] = None,
) -> Optional[str]:
    """
    Identify the CMS/platform behind a rendered page. Informational only.

    Returns:
        Platform id (a key of PLATFORM_LABELS) or None
    """
    html = (html or "").lower()

    for platform, patterns in signatures or PLATFORM_SIGNATURES:
        signal = next((p for p in patterns if p in html), None)
        if signal:
            logger.info(f"[Platform] Detected: {platform} (matched \"{signal}\")")
            return platform

    logger.info(f"[Platform] None detected. HTML starts with: {html[:300]}...")
    return None


def platform_label(platform: Optional[str]) -> Optional[str]:
    if not platform:
        return None
    return PLATFORM_LABELS.get(platform, platform)
