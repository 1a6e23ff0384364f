import re
from typing import List, Optional, Pattern, Set

from bs4 import BeautifulSoup

from .urls import can_fetch_url, resolve_reference

# Every pattern exposes the reference as group "u".
CSS_PATTERNS: List[Pattern[str]] = [
    re.compile(r"url\s*\(\s*(['\"]?)(?P<u>[^'\")\s]+)\1\s*\)", re.I),
    re.compile(
        r"@import\s+(?:url\s*\(\s*)?(['\"]?)(?P<u>[^'\")\s;]+)\1(?:\s*\))?[^;]*;", re.I
    ),
    re.compile(r"(--[\w-]+)\s*:\s*url\s*\(\s*(['\"]?)(?P<u>[^'\")\s]+)\2\s*\)", re.I),
    re.compile(
        r"background\s*:[^;]*?url\s*\(\s*(['\"]?)(?P<u>[^'\")\s]+)\1\s*\)", re.I
    ),
    re.compile(r"filter\s*:[^;]*?url\s*\(\s*(['\"]?)(?P<u>[^'\")\s]+)\1\s*\)", re.I),
    re.compile(
        r"mask(?:-image)?\s*:[^;]*?url\s*\(\s*(['\"]?)(?P<u>[^'\")\s]+)\1\s*\)", re.I
    ),
    re.compile(
        r"list-style-image\s*:\s*url\s*\(\s*(['\"]?)(?P<u>[^'\")\s]+)\1\s*\)", re.I
    ),
    re.compile(
        r"border-image\s*:[^;]*?url\s*\(\s*(['\"]?)(?P<u>[^'\")\s]+)\1\s*\)", re.I
    ),
    re.compile(r"content\s*:[^;]*?url\s*\(\s*(['\"]?)(?P<u>[^'\")\s]+)\1\s*\)", re.I),
    re.compile(r"cursor\s*:[^;]*?url\s*\(\s*(['\"]?)(?P<u>[^'\")\s]+)\1\s*\)", re.I),
]

_Q = "['\"`]"
_NQ = "[^'\"`]"
JS_PATTERNS: List[Pattern[str]] = [
    # absolute and protocol-relative URLs in string literals
    re.compile(_Q + r"(?P<u>" + _NQ + r"*(?:https?://|//)" + _NQ + r"+)" + _Q),
    # root-relative resource paths
    re.compile(
        _Q
        + r"(?P<u>/"
        + _NQ
        + r"*\.(?:css|js|jsx|ts|tsx|png|jpg|jpeg|gif|svg|webp|ico|woff|woff2|ttf|otf"
        r"|eot|mp3|mp4|webm|ogg|pdf|json|xml|wasm)"
        + _NQ
        + r"*)"
        + _Q
    ),
    # static import/export ... from "x"
    re.compile(
        r"(?:import|export)(?:\s+[^'\"]{0,200})?(?:\s+from)?\s+" + _Q + r"(?P<u>" + _NQ + r"+)" + _Q
    ),
    # dynamic import("x")
    re.compile(r"import\s*\(\s*" + _Q + r"(?P<u>" + _NQ + r"+)" + _Q + r"\s*\)"),
    re.compile(
        r"(?:fetch|axios\.get|axios\.post|xhr\.open)\s*\(\s*"
        + _Q
        + r"(?P<u>"
        + _NQ
        + r"+)"
        + _Q
    ),
    re.compile(
        r"\.open\s*\(\s*" + _Q + _NQ + r"*" + _Q + r"\s*,\s*" + _Q + r"(?P<u>" + _NQ + r"+)" + _Q
    ),
    re.compile(
        r"\$\.(?:load|get|post|ajax)\s*\(\s*" + _Q + r"(?P<u>" + _NQ + r"+)" + _Q
    ),
    re.compile(r"src\s*[:=]\s*" + _Q + r"(?P<u>" + _NQ + r"+)" + _Q),
    re.compile(
        r"(?:import|require)\s*\(\s*" + _Q + r"(?P<u>" + _NQ + r"*\.css" + _NQ + r"*)" + _Q + r"\s*\)"
    ),
    re.compile(
        r"(?:import|require)\s*\(\s*"
        + _Q
        + r"(?P<u>"
        + _NQ
        + r"*\.(?:png|jpg|jpeg|gif|svg|webp)"
        + _NQ
        + r"*)"
        + _Q
        + r"\s*\)"
    ),
    re.compile(r"new\s+URL\s*\(\s*" + _Q + r"(?P<u>" + _NQ + r"+)" + _Q),
    re.compile(
        _Q + r"(?P<u>" + _NQ + r"*/" + _NQ + r"*\.(?:js|mjs|ts|tsx|jsx)" + _NQ + r"*)" + _Q
    ),
    re.compile(
        _Q
        + r"(?P<u>(?:https?:)?//(?:cdn\.|unpkg\.|jsdelivr\.|cdnjs\.|fonts\.googleapis\.)"
        + _NQ
        + r"+)"
        + _Q
    ),
    # key/value pairs in config objects and attribute-like assignments
    re.compile(
        r"(?:url|src|href|path|file|asset|image|icon|background|stylesheet)\s*[:=]\s*"
        + _Q
        + r"(?P<u>"
        + _NQ
        + r"+)"
        + _Q
    ),
    # MediaWiki
    re.compile(r"wgServer\s*\+\s*" + _Q + r"(?P<u>" + _NQ + r"+)" + _Q),
    re.compile(r"wgScriptPath\s*\+\s*" + _Q + r"(?P<u>" + _NQ + r"+)" + _Q),
    re.compile(r"wgLoadScript\s*\+\s*" + _Q + r"(?P<u>" + _NQ + r"+)" + _Q),
    re.compile(r"wgResourceBasePath\s*\+\s*" + _Q + r"(?P<u>" + _NQ + r"+)" + _Q),
    re.compile(r"(?<![\w/.-])(?P<u>(?:/[\w.-]+)*/load\.php\?[^'\"`\s]+)"),
    re.compile(r"(?<![\w/.-])(?P<u>(?:/[\w.-]+)*/api\.php\?[^'\"`\s]+)"),
    re.compile(r"(?<![\w/.-])(?P<u>(?:/[\w.-]+)*/skins/[^'\"`\s]+\.(?:css|js|png|jpg|svg))"),
    re.compile(r"(?<![\w/.-])(?P<u>(?:/[\w.-]+)*/extensions/[^'\"`\s]+\.(?:css|js|png|jpg|svg))"),
]

JS_RESOURCE_RE = re.compile(
    r"\.(css|js|png|jpg|jpeg|gif|svg|webp|ico|woff|woff2|ttf|otf|eot|mp3|mp4|webm|ogg"
    r"|pdf|json|xml|wasm)(\?|#|$)",
    re.I,
)
JS_RESOURCE_MARKERS = ("/api/", "/load.php", "/index.php")

SRCSET_SPLIT_RE = re.compile(r"\s*,\s*")
WS_RE = re.compile(r"\s+")


# -------------------- CSS / JS --------------------


def extract_from_css(text: str, base_url: str) -> Set[str]:
    urls: Set[str] = set()
    for pattern in CSS_PATTERNS:
        for m in pattern.finditer(text):
            absu = resolve_reference(m.group("u"), base_url)
            if absu:
                urls.add(absu)
    return urls


def _js_candidate(u: Optional[str]) -> bool:
    if not u or len(u) > 500:
        return False
    if "{{" in u or "<%" in u or "${" in u:
        return False
    return u.startswith(("http", "//", "/"))


def extract_from_js(text: str, base_url: str) -> Set[str]:
    urls: Set[str] = set()
    for pattern in JS_PATTERNS:
        for m in pattern.finditer(text):
            u = m.group("u")
            if not _js_candidate(u):
                continue
            absu = resolve_reference(u, base_url)
            if not absu:
                continue
            if JS_RESOURCE_RE.search(absu) or any(k in absu for k in JS_RESOURCE_MARKERS):
                urls.add(absu)
    return urls


# -------------------- HTML --------------------


def bs4_parse(html: str) -> BeautifulSoup:
    try:
        return BeautifulSoup(html, "lxml")
    except Exception:
        return BeautifulSoup(html, "html.parser")


def effective_base_url(soup: BeautifulSoup, fallback: str) -> str:
    tag = soup.find("base", href=True)
    if tag and tag.get("href"):
        return resolve_reference(tag["href"], fallback) or fallback
    return fallback


def extract_title(html: str) -> Optional[str]:
    if not html:
        return None
    soup = bs4_parse(html)
    if soup.title and soup.title.string:
        title = soup.title.string.strip()
        return title or None
    return None


def parse_srcset(v: str) -> List[str]:
    urls: List[str] = []
    if not v:
        return urls
    for cand in SRCSET_SPLIT_RE.split(v.strip()):
        if not cand:
            continue
        parts = WS_RE.split(cand.strip())
        if parts:
            urls.append(parts[0])
    return urls


def extract_from_html(html: str, base_url: str, *, skip_js: bool = False) -> Set[str]:
    soup = bs4_parse(html)
    base = effective_base_url(soup, base_url)
    found: Set[str] = set()

    def add(ref: Optional[str]) -> None:
        absu = resolve_reference(ref, base)
        if absu:
            found.add(absu)

    for link in soup.select("link[href]"):
        rels = {r.lower() for r in (link.get("rel") or [])}
        if {"stylesheet", "icon", "apple-touch-icon", "manifest"} & rels:
            add(link.get("href"))
        elif "preload" in rels and (link.get("as") or "").lower() in {
            "style",
            "image",
            "font",
        }:
            add(link.get("href"))
    for tag in soup.select(
        "img[src], source[src], video[src], audio[src], track[src], input[type=image][src]"
    ):
        add(tag.get("src"))
    for tag in soup.select("video[poster]"):
        add(tag.get("poster"))
    for tag in soup.select("img[srcset], source[srcset]"):
        for u in parse_srcset(tag.get("srcset", "")):
            add(u)
    for tag in soup.select("[style]"):
        found |= extract_from_css(tag.get("style") or "", base)
    for style in soup.find_all("style"):
        found |= extract_from_css(style.string or "", base)
    if not skip_js:
        for tag in soup.select("script[src]"):
            if can_fetch_url(tag.get("src")):
                add(tag.get("src"))
    return found
