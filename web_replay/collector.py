"""Network-response channel and the collector that drains it.

The browser driver is the only producer: its response listener offers each
response to a bounded queue and returns immediately. The collector is the
only consumer: it filters responses, reads bodies concurrently with a
bounded wait, and owns the resulting url -> resource map. A ``None`` on the
channel tells the collector that no more responses will come.
"""
import asyncio
import logging
from typing import Any, Dict, Iterable, Optional, Set

from .errors import ResourceTooLarge
from .models import CapturedResource


class ResourceCollector:
    def __init__(
        self,
        *,
        max_bytes: int,
        read_timeout: float,
        capacity: int = 5000,
        skip_urls: Iterable[str] = (),
    ):
        self.channel: "asyncio.Queue[Optional[Any]]" = asyncio.Queue(maxsize=capacity)
        self.max_bytes = max_bytes
        self.read_timeout = read_timeout
        self.resources: Dict[str, CapturedResource] = {}
        self._claimed: Set[str] = set()
        self._skip: Set[str] = set(skip_urls)
        self._pending: Set["asyncio.Task[None]"] = set()
        self._closed = False

    # producer side

    def offer(self, response: Any) -> bool:
        if self._closed:
            return False
        try:
            self.channel.put_nowait(response)
            return True
        except asyncio.QueueFull:
            logging.warning("response channel full, dropping %s", response.url)
            return False

    async def close(self) -> None:
        if not self._closed:
            self._closed = True
            await self.channel.put(None)

    # consumer side

    def accepts(self, response: Any) -> bool:
        url = response.url
        status = response.status
        if url.startswith("data:") or url in self._claimed or url in self._skip:
            return False
        if status >= 400 or status == 204:
            return False
        if 300 <= status < 400:
            logging.debug("skipping redirect: %s (%s)", url, status)
            return False
        return True

    async def run(self) -> Dict[str, CapturedResource]:
        while True:
            response = await self.channel.get()
            if response is None:
                break
            if not self.accepts(response):
                continue
            self._claimed.add(response.url)
            task = asyncio.ensure_future(self._read(response))
            self._pending.add(task)
            task.add_done_callback(self._pending.discard)
        if self._pending:
            await asyncio.gather(*list(self._pending), return_exceptions=True)
        return self.resources

    async def _read(self, response: Any) -> None:
        url = response.url
        try:
            body = await asyncio.wait_for(response.body(), self.read_timeout)
        except asyncio.TimeoutError:
            logging.warning("body read timed out: %s", url)
            return
        except Exception as e:
            logging.debug("failed to read body of %s: %s", url, e)
            return
        try:
            self.add(url, body, response.headers.get("content-type"))
        except ResourceTooLarge as e:
            logging.warning("%s: %s (%d bytes)", e.message, url, len(body))

    def add(self, url: str, body: bytes, content_type: Optional[str]) -> bool:
        if len(body) > self.max_bytes:
            raise ResourceTooLarge()
        if not body:
            return False
        self.resources[url] = CapturedResource(
            url, bytes(body), content_type or "application/octet-stream"
        )
        logging.debug("captured: %s (%d bytes)", url, len(body))
        return True
