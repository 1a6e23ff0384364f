import logging
from concurrent.futures import ThreadPoolExecutor, as_completed
from dataclasses import dataclass
from typing import Dict, Iterable, Optional, Set, Union
from urllib.parse import urljoin

import requests
from requests.adapters import HTTPAdapter
from urllib3.util.retry import Retry

from .config import DEFAULT_HEADERS, PROBE_USER_AGENT, Settings
from .models import CapturedResource
from .urls import is_http_url

BINARY_TYPE_MARKERS = (
    "image/",
    "video/",
    "audio/",
    "font/",
    "application/font",
    "application/vnd.ms-fontobject",
    "application/octet-stream",
)


@dataclass(frozen=True)
class FetchResult:
    content: Union[bytes, str]
    content_type: str
    is_binary: bool

    def as_bytes(self) -> bytes:
        if isinstance(self.content, bytes):
            return self.content
        return self.content.encode("utf-8")


EMPTY_RESULT = FetchResult(content="", content_type="text/plain", is_binary=False)


def is_binary_type(content_type: Optional[str]) -> bool:
    ct = (content_type or "").lower()
    return any(marker in ct for marker in BINARY_TYPE_MARKERS)


def build_session(headers: Optional[Dict[str, str]] = None) -> requests.Session:
    s = requests.Session()
    retry = Retry(
        total=3,
        backoff_factor=0.5,
        status_forcelist=[429, 500, 502, 503, 504],
        allowed_methods={"GET", "HEAD"},
        raise_on_status=False,
        respect_retry_after_header=True,
    )
    adapter = HTTPAdapter(max_retries=retry, pool_connections=32, pool_maxsize=32)
    s.mount("http://", adapter)
    s.mount("https://", adapter)
    s.headers.update(DEFAULT_HEADERS if headers is None else headers)
    return s


def download(
    url: str,
    referer_base_url: str,
    *,
    session: Optional[requests.Session] = None,
    timeout: float = 15.0,
) -> FetchResult:
    """Fetch one resource. Never raises: failures come back as an empty text result."""
    session = session or build_session()
    try:
        absolute_url = urljoin(referer_base_url, url)
        r = session.get(absolute_url, timeout=timeout)
        if r.status_code >= 400:
            logging.warning("failed %s -> HTTP %s", absolute_url, r.status_code)
            return EMPTY_RESULT
        content_type = r.headers.get("Content-Type") or "text/plain"
        if is_binary_type(content_type):
            return FetchResult(r.content, content_type, True)
        if not r.encoding:
            r.encoding = r.apparent_encoding or "utf-8"
        return FetchResult(r.text, content_type, False)
    except (requests.RequestException, ValueError) as e:
        logging.warning("error downloading %s: %s", url, e)
        return EMPTY_RESULT


def download_all(
    session: requests.Session,
    urls: Iterable[str],
    base_url: str,
    settings: Settings,
) -> Dict[str, CapturedResource]:
    url_set: Set[str] = set(urls)
    result: Dict[str, CapturedResource] = {}
    if not url_set:
        return result
    with ThreadPoolExecutor(max_workers=max(1, settings.fallback_workers)) as pool:
        future_map = {
            pool.submit(
                download, u, base_url, session=session, timeout=settings.fetch_timeout
            ): u
            for u in url_set
        }
        for fut in as_completed(future_map):
            u = future_map[fut]
            fr = fut.result()
            body = fr.as_bytes()
            if not body:
                continue
            if len(body) > settings.max_resource_bytes:
                logging.warning("skip large file %s (%d bytes)", u, len(body))
                continue
            result[u] = CapturedResource(u, body, fr.content_type)
            logging.debug("downloaded asset: %s", u)
    return result


def check_reachable(url: str, timeout: float = 10.0) -> bool:
    if not is_http_url(url):
        return False
    try:
        r = requests.head(
            url,
            headers={"User-Agent": PROBE_USER_AGENT},
            timeout=timeout,
            allow_redirects=True,
        )
        return r.ok
    except requests.RequestException as e:
        logging.warning("reachability check failed for %s: %s", url, e)
        return False
