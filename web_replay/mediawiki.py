"""MediaWiki sites load most of their styling through load.php bundles the
browser requests late or lazily; fetch the usual ones explicitly."""
import logging
import re
from typing import Awaitable, Callable, Dict, List, Optional
from urllib.parse import urlparse

from .models import CapturedResource
from .shims import load_asset
from .urls import resolve_reference

SIGNATURES = ("mw.config", "wgServer", "/load.php", "mediawiki", "wgScriptPath")

SCRIPT_PATH_RE = re.compile(r"wgScriptPath[\"']\s*:\s*[\"']([^\"']+)[\"']")
SERVER_RE = re.compile(r"wgServer[\"']\s*:\s*[\"']([^\"']+)[\"']")
RESOURCE_BASE_RE = re.compile(r"wgResourceBasePath[\"']\s*:\s*[\"']([^\"']+)[\"']")
LOAD_PHP_RE = re.compile(
    r"(?<![\w/.-])(?:(?:https?:)?//[^/\"'\s]+)?(?:/[\w.-]+)*/load\.php\?[^\"'\s)<>]+"
)

LOAD_MODULES = [
    "modules=site.styles&only=styles",
    "modules=ext.cite.styles&only=styles",
    "modules=ext.uls.pt&only=styles",
    "modules=skins.vector.styles.legacy&only=styles",
    "modules=skins.vector.styles&only=styles",
    "modules=startup&only=scripts",
    "modules=jquery%2Cmediawiki.base&only=scripts",
    "modules=ext.gadget.mainpage-styling&only=styles",
    "modules=ext.visualEditor.desktopArticleTarget.noscript&only=styles",
]
SKIN_IMAGES = [
    "arrow-down.svg",
    "external-link-ltr-icon.svg",
    "file-type-generic.svg",
]

FALLBACK_CSS_FILE = "mediawiki_fallback.css"

Fetch = Callable[[str], Awaitable[Optional[CapturedResource]]]


def detect(html: str) -> bool:
    return any(sig in html for sig in SIGNATURES)


def _config_value(pattern: "re.Pattern[str]", html: str) -> Optional[str]:
    m = pattern.search(html)
    return m.group(1) if m else None


def enhance(html: str, base_url: str) -> List[str]:
    p = urlparse(base_url)
    script_path = _config_value(SCRIPT_PATH_RE, html) or "/w"
    server = _config_value(SERVER_RE, html) or f"{p.scheme}://{p.netloc}"
    resource_base = _config_value(RESOURCE_BASE_RE, html) or script_path

    candidates = [f"{server}{resource_base}/load.php?lang=en&{m}" for m in LOAD_MODULES]
    candidates += [
        f"{server}{script_path}/skins/Vector/resources/common/images/{name}"
        for name in SKIN_IMAGES
    ]
    candidates += [m.group(0).replace("&amp;", "&") for m in LOAD_PHP_RE.finditer(html)]

    urls: List[str] = []
    for c in candidates:
        absu = resolve_reference(c, base_url)
        if absu and absu not in urls:
            urls.append(absu)
    return urls


def fallback_css() -> str:
    return load_asset(FALLBACK_CSS_FILE)


async def augment(
    resources: Dict[str, CapturedResource], html: str, base_url: str, fetch: Fetch
) -> int:
    """Fetch the catalog for a detected wiki and merge what is missing."""
    urls = enhance(html, base_url)
    logging.info("detected MediaWiki site, %d candidate resources", len(urls))
    added = 0
    for u in urls:
        if u in resources:
            continue
        try:
            res = await fetch(u)
        except Exception as e:
            logging.warning("failed to fetch additional resource %s: %s", u, e)
            continue
        if res is not None:
            resources[u] = res
            added += 1
            logging.debug("fetched additional resource: %s", u)
    return added
