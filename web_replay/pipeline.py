"""Capture one URL end to end.

The fallback chain is: browser capture (which may itself degrade to a partial
or emergency save) -> plain HTTP fetch of the page and its assets -> failure.
Whatever method produced the page, the same rewrite/shim/publish step writes
it into the cache.
"""
import asyncio
import logging
from typing import Dict, Optional

import requests

from . import mediawiki
from .browser import CaptureSession
from .config import Settings
from .errors import CaptureFailed, InvalidInput, ReplayError
from .extract import (
    bs4_parse,
    effective_base_url,
    extract_from_css,
    extract_from_html,
    extract_from_js,
    extract_title,
)
from .fetcher import build_session, download, download_all
from .models import Capture, CapturedResource, CaptureOutcome, PageCapture
from .rewrite import rewrite
from .shims import inject_shims
from .store import CacheStore
from .urls import is_http_url

# -------------------- Browser --------------------


async def _browser_capture(url: str, settings: Settings) -> PageCapture:
    async with CaptureSession(settings) as session:
        page = await session.capture(url)
        # the page is still open here, so in-page fetches carry its cookies
        if mediawiki.detect(page.html):
            added = await mediawiki.augment(
                page.resources, page.html, page.base_url, session.fetch_in_page
            )
            logging.info("added %d MediaWiki resources", added)
        return page


def capture_with_browser(url: str, settings: Settings) -> PageCapture:
    return asyncio.run(_browser_capture(url, settings))


# -------------------- Plain fetch --------------------


def _fallback_assets(
    session: requests.Session, html: str, url: str, settings: Settings
) -> Dict[str, CapturedResource]:
    limit = settings.fallback_max_assets
    urls = extract_from_html(html, url)
    urls.discard(url)
    resources = download_all(session, sorted(urls)[:limit], url, settings)

    # one pass over downloaded CSS/JS for the assets they pull in
    deps = set()
    for res in resources.values():
        if res.is_css:
            deps |= extract_from_css(res.text(), res.url)
        elif res.is_js:
            deps |= extract_from_js(res.text(), res.url)
    deps -= set(resources)
    deps.discard(url)
    room = limit - len(resources)
    if deps and room > 0:
        resources.update(download_all(session, sorted(deps)[:room], url, settings))
    return resources


def fallback_capture(url: str, settings: Settings) -> PageCapture:
    session = build_session()
    logging.info("GET %s", url)
    result = download(url, url, session=session, timeout=settings.fetch_timeout)
    if result.is_binary or not result.content:
        raise CaptureFailed()
    html = result.as_bytes().decode("utf-8", errors="replace")
    resources: Dict[str, CapturedResource] = {}
    if settings.fallback_assets:
        resources = _fallback_assets(session, html, url, settings)
    logging.info("fallback fetched %d assets for %s", len(resources), url)
    return PageCapture(
        url=url,
        base_url=url,
        html=html,
        title=extract_title(html) or url,
        resources=resources,
        method="fallback",
    )


# -------------------- Publish --------------------


def publish(page: PageCapture, store: CacheStore, settings: Settings) -> Capture:
    """Write ``page`` into the cache with every captured reference made local."""
    with store.stage(page.url) as staged:
        for res in page.resources.values():
            staged.allocate(res)
        url_map = staged.url_map

        for res in page.resources.values():
            body = res.content
            if (res.is_css and settings.rewrite_css) or (res.is_js and settings.rewrite_js):
                text = res.text()
                new_text = rewrite(text, url_map, res.url)
                if new_text != text:
                    body = new_text.encode("utf-8")
            staged.write(res.url, body)

        base = effective_base_url(bs4_parse(page.html), page.base_url)
        html = rewrite(page.html, url_map, base)
        extra_css = mediawiki.fallback_css() if mediawiki.detect(page.html) else None
        staged.write_index(inject_shims(html, store.serve_prefix, extra_css))

    capture = store.get(page.url)
    if capture is None:
        raise CaptureFailed(details="capture directory missing after publish")
    return capture


def _note(page: PageCapture) -> Optional[str]:
    if page.method == "playwright-partial":
        return "Partial capture, degraded phases: " + ", ".join(page.degraded)
    if page.method == "playwright-emergency":
        return "Emergency save after a critical error, content may be incomplete"
    return None


# -------------------- Entry point --------------------


def capture_website(
    url: Optional[str],
    store: CacheStore,
    settings: Settings,
    force_refresh: bool = False,
) -> CaptureOutcome:
    if not url or not isinstance(url, str):
        raise InvalidInput("URL is required")
    url = url.strip()
    if not is_http_url(url):
        raise InvalidInput("Invalid URL format")

    if not force_refresh:
        cached = store.get(url)
        if cached is not None:
            logging.info("using cached capture %s", cached.dir_id)
            return CaptureOutcome(
                success=True, path=cached.dir_id, cached=True, title=cached.title
            )

    browser_error: Optional[str] = None
    page: Optional[PageCapture] = None
    try:
        page = capture_with_browser(url, settings)
    except ReplayError as e:
        browser_error = e.details or e.message
        logging.error("browser capture failed for %s: %s", url, browser_error)
    except Exception as e:
        browser_error = str(e)
        logging.error("unexpected browser failure for %s: %s", url, e)

    if page is None:
        logging.info("falling back to plain fetch for %s", url)
        try:
            page = fallback_capture(url, settings)
        except CaptureFailed as e:
            if browser_error and not e.details:
                e.details = browser_error
            raise

    capture = publish(page, store, settings)
    logging.info(
        "captured %s -> %s (%s, %d resources)",
        url,
        capture.dir_id,
        page.method,
        len(page.resources),
    )
    return CaptureOutcome(
        success=True,
        path=capture.dir_id,
        cached=False,
        title=page.title,
        resource_count=len(page.resources),
        method=page.method,
        note=_note(page),
    )
