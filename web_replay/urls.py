import hashlib
import re
from typing import Optional
from urllib.parse import urljoin, urlparse, urlunparse

from requests.utils import requote_uri

UNSAFE_FILENAME_RE = re.compile(r"[^A-Za-z0-9._-]")
NON_ALNUM_RE = re.compile(r"[^a-zA-Z0-9]")

SKIP_PREFIXES = ("#", "data:", "javascript:", "mailto:", "tel:", "blob:", "about:")


def can_fetch_url(u: Optional[str]) -> bool:
    if not u:
        return False
    u = u.strip()
    if not u or u.lower().startswith(SKIP_PREFIXES):
        return False
    return True


def resolve_reference(ref: Optional[str], base_url: str) -> Optional[str]:
    """Resolve ``ref`` against ``base_url`` the way a browser would key it.

    Returns None for references that never map to a capturable resource
    (``data:`` URIs, fragments, pseudo-schemes) or that fail to parse.
    """
    if not can_fetch_url(ref):
        return None
    ref = ref.strip()
    if ref.startswith("//"):
        ref = (urlparse(base_url).scheme or "https") + ":" + ref
    try:
        absu = urljoin(base_url, ref)
        p = urlparse(absu)
    except ValueError:
        return None
    if p.scheme not in ("http", "https") or not p.netloc:
        return None
    path = p.path or "/"
    return requote_uri(urlunparse((p.scheme, p.netloc, path, p.params, p.query, "")))


def is_http_url(u: Optional[str]) -> bool:
    if not u or not isinstance(u, str):
        return False
    try:
        p = urlparse(u.strip())
    except ValueError:
        return False
    return p.scheme in ("http", "https") and bool(p.netloc)


def sanitize_filename(name: str) -> str:
    name = UNSAFE_FILENAME_RE.sub("_", name).replace("..", "_")
    name = name or "file"
    if name.startswith("."):
        name = "_" + name[1:]
    return name


def short_h(url: str) -> str:
    return hashlib.md5(url.encode("utf-8")).hexdigest()[:8]
