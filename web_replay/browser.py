"""Headless-browser capture of a single page.

One ``CaptureSession`` owns one browser and one page for the lifetime of one
capture. The phases run in a fixed order::

    IDLE -> LAUNCHING -> NAVIGATING -> SETTLING -> HARVEST -> DONE
                                  \\__________________/
                                   -> EMERGENCY_SAVE
                             (every path) -> CLOSED

Navigation only waits for commit, and every wait after that has its own
timeout that degrades to "continue with what we have". Use the session as an
async context manager so the browser is closed on every exit path.
"""
import asyncio
import base64
import enum
import logging
from typing import Any, List, Optional

from playwright.async_api import Error as PlaywrightError
from playwright.async_api import async_playwright

from .collector import ResourceCollector
from .config import BROWSER_USER_AGENT, Settings
from .errors import BrowserLaunchError, CriticalCaptureError
from .extract import extract_title
from .models import CapturedResource, PageCapture

EXTRA_HEADERS = {
    "Accept": "text/html,application/xhtml+xml,application/xml;q=0.9,image/webp,*/*;q=0.8",
    "Accept-Language": "en-US,en;q=0.5",
    "DNT": "1",
    "Upgrade-Insecure-Requests": "1",
}

IN_PAGE_FETCH_JS = """
async (url) => {
  try {
    const resp = await fetch(url, { credentials: 'include' });
    if (!resp.ok) return null;
    const bytes = new Uint8Array(await resp.arrayBuffer());
    let bin = '';
    for (let i = 0; i < bytes.length; i += 0x8000) {
      bin += String.fromCharCode.apply(null, bytes.subarray(i, i + 0x8000));
    }
    return {
      body: btoa(bin),
      contentType: resp.headers.get('content-type') || 'application/octet-stream',
    };
  } catch (e) {
    return null;
  }
}
"""


class CaptureState(enum.Enum):
    IDLE = "idle"
    LAUNCHING = "launching"
    NAVIGATING = "navigating"
    SETTLING = "settling"
    HARVEST = "harvest"
    DONE = "done"
    EMERGENCY_SAVE = "emergency-save"
    CLOSED = "closed"


class CaptureSession:
    def __init__(self, settings: Settings):
        self.settings = settings
        self.state = CaptureState.IDLE
        self.page: Any = None
        self.collector: Optional[ResourceCollector] = None
        self.early_html: Optional[str] = None
        self.navigation_failed = False
        self.degraded: List[str] = []
        self._pl: Any = None
        self._browser: Any = None
        self._collector_task: Optional["asyncio.Task[Any]"] = None

    async def __aenter__(self) -> "CaptureSession":
        await self.launch()
        return self

    async def __aexit__(self, *exc_info: Any) -> None:
        await self.close()

    def _enter(self, state: CaptureState) -> None:
        logging.debug("capture state %s -> %s", self.state.value, state.value)
        self.state = state

    # -------------------- Launching --------------------

    async def launch(self) -> None:
        self._enter(CaptureState.LAUNCHING)
        s = self.settings
        try:
            self._pl = await async_playwright().start()
            self._browser = await self._pl.chromium.launch(
                headless=s.headless, args=list(s.browser_args), timeout=s.launch_timeout_ms
            )
            page = await self._browser.new_page(
                viewport={"width": s.viewport_width, "height": s.viewport_height},
                user_agent=BROWSER_USER_AGENT,
                extra_http_headers=EXTRA_HEADERS,
            )
        except Exception as e:
            await self.close()
            raise BrowserLaunchError(details=str(e)) from e
        logging.info("browser launched")
        self.attach(page)

    def attach(self, page: Any) -> None:
        """Bind a page and start collecting its responses."""
        self.page = page
        self.collector = ResourceCollector(
            max_bytes=self.settings.max_resource_bytes,
            read_timeout=self.settings.body_read_timeout,
            capacity=self.settings.channel_capacity,
        )
        page.on("response", self.collector.offer)
        self._collector_task = asyncio.ensure_future(self.collector.run())

    # -------------------- Capture --------------------

    async def capture(self, url: str) -> PageCapture:
        if self.page is None:
            raise CriticalCaptureError("capture session has no page")
        self._enter(CaptureState.NAVIGATING)
        loop = asyncio.get_running_loop()
        started = loop.time()
        nav = asyncio.ensure_future(self._commit(url))
        early = asyncio.ensure_future(self._early_snapshot())
        try:
            await asyncio.wait({nav, early}, return_when=asyncio.FIRST_COMPLETED)
            if not nav.done():
                budget = self.settings.commit_timeout_ms / 1000.0 - (loop.time() - started)
                await asyncio.wait({nav}, timeout=max(0.0, budget))
            if not nav.done():
                nav.cancel()
                logging.warning("navigation to %s did not commit in time", url)
                self._navigation_failed()
            self._enter(CaptureState.SETTLING)
            await self._settle()
            self._enter(CaptureState.HARVEST)
            await asyncio.wait({early})
            html, title = await self._final_content(url)
            resources = await self.harvest()
            self._enter(CaptureState.DONE)
            method = "playwright-partial" if self.degraded else "playwright"
            return PageCapture(
                url=url,
                base_url=self._page_url(url),
                html=html,
                title=title,
                resources=self._without_document(resources, url),
                method=method,
                degraded=list(self.degraded),
            )
        except Exception as exc:
            return await self._emergency_save(url, exc)
        finally:
            for task in (nav, early):
                if not task.done():
                    task.cancel()

    async def _commit(self, url: str) -> None:
        try:
            await self.page.goto(
                url, wait_until="commit", timeout=self.settings.commit_timeout_ms
            )
        except Exception as e:
            logging.warning("navigation commit failed for %s: %s", url, e)
            self._navigation_failed()

    def _navigation_failed(self) -> None:
        if not self.navigation_failed:
            self.navigation_failed = True
            self.degraded.append("navigation")

    async def _early_snapshot(self) -> Optional[str]:
        await asyncio.sleep(self.settings.early_snapshot_delay_ms / 1000.0)
        if not self._on_http_page():
            logging.debug("early snapshot skipped, navigation has not committed")
            return None
        try:
            content = await self.page.content()
        except Exception as e:
            logging.warning("early content capture failed: %s", e)
            return None
        if content and len(content) > self.settings.early_snapshot_min_chars:
            logging.info("early content captured (%d chars)", len(content))
            self.early_html = content
            return content
        return None

    async def _settle(self) -> None:
        s = self.settings
        try:
            await self.page.wait_for_load_state(
                "domcontentloaded", timeout=s.dom_ready_timeout_ms
            )
        except PlaywrightError:
            logging.warning("DOM ready timed out, continuing with early content")
            self.degraded.append("dom-ready")
        try:
            await self.page.wait_for_load_state(
                "networkidle", timeout=s.network_idle_timeout_ms
            )
        except PlaywrightError:
            logging.warning("network did not reach idle, using captured content")
            self.degraded.append("network-idle")
        try:
            await self.page.wait_for_timeout(s.settle_delay_ms)
        except PlaywrightError:
            logging.warning("settle wait interrupted, continuing")

    async def _final_content(self, url: str) -> "tuple[str, str]":
        early = self.early_html
        try:
            final = await self.page.content()
            page_title = await self.page.title()
        except PlaywrightError:
            if not early:
                raise
            logging.warning("final capture failed, using early content")
            self.degraded.append("early-snapshot")
            return early, extract_title(early) or url
        if early and len(early) > len(final):
            logging.info("using early captured HTML (%d chars)", len(early))
            self.degraded.append("early-snapshot")
            return early, extract_title(early) or page_title or url
        if self.navigation_failed and (
            len(final) <= self.settings.early_snapshot_min_chars or not self._on_http_page()
        ):
            raise CriticalCaptureError("navigation failed and no content was rendered")
        logging.info("using final HTML content (%d chars)", len(final))
        return final, page_title or extract_title(final) or url

    async def harvest(self) -> dict:
        if self.collector is None or self._collector_task is None:
            return {}
        # later responses are refused by the closed channel
        await self.collector.close()
        try:
            return await asyncio.wait_for(
                asyncio.shield(self._collector_task), self.settings.body_read_timeout + 5
            )
        except asyncio.TimeoutError:
            logging.warning("resource harvest timed out, keeping what was read")
            return dict(self.collector.resources)

    # -------------------- Emergency save --------------------

    async def _emergency_save(self, url: str, exc: BaseException) -> PageCapture:
        self._enter(CaptureState.EMERGENCY_SAVE)
        logging.error("critical error during capture of %s: %s", url, exc)
        content: Optional[str] = None
        title: Optional[str] = None
        try:
            content = await self.page.content()
            title = await self.page.title()
        except Exception as e:
            logging.warning("emergency read of page failed: %s", e)
        if (
            not content
            or len(content) <= self.settings.emergency_min_chars
            or not self._on_http_page()
        ):
            content = self.early_html
        if content and len(content) > self.settings.emergency_min_chars:
            logging.info("saving emergency content despite critical error")
            resources = dict(self.collector.resources) if self.collector else {}
            return PageCapture(
                url=url,
                base_url=self._page_url(url),
                html=content,
                title=title or extract_title(content) or url,
                resources=self._without_document(resources, url),
                method="playwright-emergency",
                degraded=self.degraded + ["critical-error"],
            )
        if isinstance(exc, CriticalCaptureError):
            raise exc
        raise CriticalCaptureError(details=str(exc)) from exc

    # -------------------- In-page fetch --------------------

    async def fetch_in_page(self, url: str) -> Optional[CapturedResource]:
        try:
            result = await self.page.evaluate(IN_PAGE_FETCH_JS, url)
        except PlaywrightError as e:
            logging.warning("in-page fetch failed for %s: %s", url, e)
            return None
        if not result:
            return None
        body = base64.b64decode(result["body"])
        if not body or len(body) > self.settings.max_resource_bytes:
            return None
        return CapturedResource(url, body, result["contentType"])

    # -------------------- Closing --------------------

    async def close(self) -> None:
        if self._collector_task is not None and not self._collector_task.done():
            self._collector_task.cancel()
        if self._browser is not None:
            try:
                await self._browser.close()
                logging.info("browser closed")
            except Exception as e:
                logging.warning("error closing browser: %s", e)
        if self._pl is not None:
            try:
                await self._pl.stop()
            except Exception as e:
                logging.warning("error stopping playwright: %s", e)
        self._browser = None
        self._pl = None
        self._enter(CaptureState.CLOSED)

    # -------------------- Helpers --------------------

    def _on_http_page(self) -> bool:
        try:
            u = self.page.url
        except Exception:
            return False
        return isinstance(u, str) and u.startswith(("http://", "https://"))

    def _page_url(self, fallback: str) -> str:
        return self.page.url if self._on_http_page() else fallback

    def _without_document(self, resources: dict, url: str) -> dict:
        doc_urls = {url, self._page_url(url)}
        return {u: r for u, r in resources.items() if u not in doc_urls}
