import logging
import mimetypes
import os
import shutil
import tempfile
import uuid
from contextlib import contextmanager
from pathlib import Path
from typing import Dict, Iterator, Mapping, Optional, Set, Union
from urllib.parse import urlparse

from .errors import NotFound, PathTraversal
from .extract import extract_title
from .models import Capture, CapturedResource
from .urls import NON_ALNUM_RE, UNSAFE_FILENAME_RE, sanitize_filename, short_h

INDEX_FILE = "index.html"
MAX_STEM = 120
MAX_FILENAME = 100
# server-side extensions say nothing about what the response body is
REPLACEABLE_EXTS = {".php", ".asp", ".aspx", ".jsp", ".jspx", ".cgi", ".pl", ".cfm", ".html", ".htm"}

# checked in order, first substring hit wins
TYPE_EXTENSIONS = [
    ("text/html", ".html"),
    ("text/css", ".css"),
    ("javascript", ".js"),
    ("image/png", ".png"),
    ("image/jpg", ".jpg"),
    ("image/jpeg", ".jpg"),
    ("image/gif", ".gif"),
    ("image/svg", ".svg"),
    ("image/webp", ".webp"),
    ("image/avif", ".avif"),
    ("image/ico", ".ico"),
    ("image/x-icon", ".ico"),
    ("image/vnd.microsoft.icon", ".ico"),
    ("font/woff2", ".woff2"),
    ("font/woff", ".woff"),
    ("font/ttf", ".ttf"),
    ("font/otf", ".otf"),
    ("application/json", ".json"),
    ("application/manifest+json", ".webmanifest"),
]


def extension_for_type(content_type: Optional[str]) -> Optional[str]:
    ct = (content_type or "").lower()
    for marker, ext in TYPE_EXTENSIONS:
        if marker in ct:
            return ext
    if ct:
        return mimetypes.guess_extension(ct.split(";")[0].strip())
    return None


def safe_file_name(url: str, content_type: Optional[str] = None) -> str:
    path = urlparse(url).path or "/"
    if path.endswith("/"):
        path += INDEX_FILE
    name = os.path.basename(path) or "index"
    stem, ext = os.path.splitext(name)
    type_ext = extension_for_type(content_type)
    if type_ext and (not ext or (ext.lower() in REPLACEABLE_EXTS and type_ext != ext.lower())):
        ext = type_ext
    stem = sanitize_filename(stem)
    ext = UNSAFE_FILENAME_RE.sub("_", ext)
    if len(stem) + len(ext) > MAX_FILENAME:
        stem = stem[: MAX_FILENAME - len(ext)]
    return stem + ext


def unique_file_name(base_name: str, existing: Set[str]) -> str:
    name = base_name
    stem, ext = os.path.splitext(base_name)
    counter = 1
    while name in existing:
        name = f"{stem}_{counter}{ext}"
        counter += 1
    existing.add(name)
    return name


# -------------------- Staging --------------------


class StagedCapture:
    """A capture being written. Nothing is visible until the store publishes it."""

    def __init__(self, dir_id: str, path: Path, serve_prefix: str):
        self.dir_id = dir_id
        self.path = path
        self.serve_prefix = serve_prefix.rstrip("/")
        self.names: Set[str] = {INDEX_FILE}
        self.files: Dict[str, str] = {}
        self.url_map: Dict[str, str] = {}

    def local_path(self, name: str) -> str:
        return f"{self.serve_prefix}/{self.dir_id}/{name}"

    def allocate(self, resource: CapturedResource) -> str:
        name = unique_file_name(
            safe_file_name(resource.url, resource.content_type), self.names
        )
        self.files[resource.url] = name
        self.url_map[resource.url] = self.local_path(name)
        return self.url_map[resource.url]

    def write(self, url: str, content: bytes) -> None:
        (self.path / self.files[url]).write_bytes(content)

    def write_index(self, html: str) -> None:
        (self.path / INDEX_FILE).write_text(html, encoding="utf-8")


# -------------------- Store --------------------


class CacheStore:
    def __init__(self, root: Union[str, Path], serve_prefix: str = "/api/serve-website"):
        self.root = Path(root).resolve()
        self.serve_prefix = serve_prefix

    def key_for(self, url: str) -> str:
        p = urlparse(url)
        host = NON_ALNUM_RE.sub("_", p.hostname or "")
        path = NON_ALNUM_RE.sub("_", p.path or "/")
        return f"{(host + path)[:MAX_STEM]}_{short_h(url)}"

    def directory(self, dir_id: str) -> Path:
        return self.root / dir_id

    def get(self, url: str) -> Optional[Capture]:
        return self.load(self.key_for(url), fallback_title=url)

    def load(self, dir_id: str, fallback_title: str = "") -> Optional[Capture]:
        d = self.directory(dir_id)
        index = d / INDEX_FILE
        if not index.is_file():
            return None
        try:
            title = extract_title(index.read_text(encoding="utf-8", errors="ignore"))
        except OSError as e:
            logging.warning("could not read title from %s: %s", index, e)
            title = None
        count = sum(1 for f in d.iterdir() if f.is_file()) - 1
        return Capture(dir_id, d, title or fallback_title, max(0, count))

    @contextmanager
    def stage(self, url: str) -> Iterator[StagedCapture]:
        dir_id = self.key_for(url)
        self.root.mkdir(parents=True, exist_ok=True)
        staging = Path(tempfile.mkdtemp(prefix=".staging-", dir=self.root))
        try:
            yield StagedCapture(dir_id, staging, self.serve_prefix)
        except BaseException:
            shutil.rmtree(staging, ignore_errors=True)
            raise
        self._publish(staging, self.directory(dir_id))

    def _publish(self, staging: Path, final: Path) -> None:
        trash: Optional[Path] = None
        if final.exists():
            trash = final.with_name(f".trash-{uuid.uuid4().hex[:12]}")
            try:
                os.replace(final, trash)
            except FileNotFoundError:
                trash = None
        try:
            os.replace(staging, final)
            logging.info("published capture %s", final.name)
        except OSError as e:
            logging.warning("capture %s was published concurrently: %s", final.name, e)
            shutil.rmtree(staging, ignore_errors=True)
        if trash is not None:
            shutil.rmtree(trash, ignore_errors=True)

    def put(
        self, url: str, html: str, resources: Mapping[str, CapturedResource]
    ) -> Capture:
        with self.stage(url) as staged:
            for res in resources.values():
                staged.allocate(res)
                staged.write(res.url, res.content)
            staged.write_index(html)
        capture = self.get(url)
        if capture is None:
            raise NotFound(f"capture for {url} vanished after publish")
        return capture

    def evict(self, url: str) -> bool:
        d = self.directory(self.key_for(url))
        if not d.exists():
            return False
        shutil.rmtree(d)
        return True

    def resolve(self, dir_id: str, file_path: str) -> Path:
        if ".." in dir_id or ".." in file_path:
            raise PathTraversal()
        if not dir_id or dir_id.startswith(".") or not file_path:
            raise NotFound()
        target = (self.root / dir_id / file_path).resolve()
        try:
            target.relative_to(self.root)
        except ValueError:
            raise PathTraversal("Access denied")
        if not target.is_file():
            raise NotFound()
        return target
