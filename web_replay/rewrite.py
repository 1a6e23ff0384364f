"""Rewrite resource references in HTML, CSS and JS text to local replay paths.

Each pass handles one syntactic form and only touches a match whose resolved
absolute URL is present in the url map; everything else is left byte for
byte. Passes run in order on the output of the previous one, so the generic
quoted-URL pass at the end only ever sees references the specific passes
did not already turn into local paths.
"""
import html as html_lib
import re
from typing import Callable, List, Mapping, Optional, Tuple

from .urls import resolve_reference

Lookup = Callable[[str, bool], Optional[str]]

HTML_ATTR_RE = re.compile(
    r"(?P<attr>\b(?:src|href|action|poster|data|content|background))\s*=\s*"
    r"(?P<q>['\"])(?P<u>[^'\"]+)(?P=q)",
    re.I,
)
SRCSET_RE = re.compile(r"(?P<attr>\bsrcset)\s*=\s*(?P<q>['\"])(?P<v>[^'\"]*)(?P=q)", re.I)
CSS_URL_RE = re.compile(r"url\s*\(\s*(['\"]?)(?P<u>[^'\")\s]+)\1\s*\)", re.I)
CSS_IMPORT_RE = re.compile(
    r"@import\s+(?:url\s*\(\s*)?(['\"]?)(?P<u>[^'\")\s;]+)\1(?:\s*\))?(?P<rest>[^;]*);",
    re.I,
)
CSS_VAR_RE = re.compile(
    r"(?P<prop>--[\w-]+)\s*:\s*url\s*\(\s*(['\"]?)(?P<u>[^'\")\s]+)\2\s*\)", re.I
)
CSS_PROP_RE = re.compile(
    r"(?P<prop>background-image|background|list-style-image|border-image|mask-image"
    r"|mask|content|cursor)\s*:\s*url\s*\(\s*(['\"]?)(?P<u>[^'\")\s]+)\2\s*\)",
    re.I,
)
ES_IMPORT_RE = re.compile(
    r"\b(?:import|export)\s+[^'\"`;]{0,200}?\bfrom\s*(['\"`])(?P<u>[^'\"`]+)\1"
)
ES_BARE_IMPORT_RE = re.compile(r"\bimport\s*(['\"])(?P<u>[^'\"]+)\1")
DYNAMIC_IMPORT_RE = re.compile(r"\bimport\s*\(\s*(['\"`])(?P<u>[^'\"`]+)\1\s*\)")
FETCH_RE = re.compile(r"\bfetch\s*\(\s*(['\"`])(?P<u>[^'\"`]+)\1")
XHR_OPEN_RE = re.compile(
    r"\.open\s*\(\s*(['\"`])[^'\"`]*\1\s*,\s*(['\"`])(?P<u>[^'\"`]+)\2"
)
DATA_ATTR_RE = re.compile(
    r"(?P<attr>\bdata-[\w-]*)\s*=\s*(?P<q>['\"])(?P<u>[^'\"]*(?:https?://|/)[^'\"]*)(?P=q)",
    re.I,
)
GENERIC_URL_RE = re.compile(
    r"(?P<q>['\"])(?P<u>[^'\"]*(?:https?://|/)[^'\"]*\.[a-z0-9]{2,5}(?:/[^'\"]*)?)(?P=q)",
    re.I,
)
RESOURCE_EXT_RE = re.compile(
    r"\.(?:css|js|mjs|png|jpe?g|gif|svg|webp|avif|ico|woff2?|ttf|otf|eot|json|xml)(?:[?#]|$)",
    re.I,
)
SRCSET_SPLIT_RE = re.compile(r"\s*,\s*")
WS_RE = re.compile(r"\s+")


def _splice(m: "re.Match[str]", group: str, new: str) -> str:
    start, end = m.span(group)
    off = m.start()
    whole = m.group(0)
    return whole[: start - off] + new + whole[end - off :]


def _make_lookup(url_map: Mapping[str, str], base_url: str) -> Lookup:
    normalized = {}
    for k, v in url_map.items():
        normalized[resolve_reference(k, k) or k] = v

    def lookup(ref: str, unescape: bool = False) -> Optional[str]:
        _, hash_, fragment = ref.strip().partition("#")
        if unescape:
            ref = html_lib.unescape(ref)
        absu = resolve_reference(ref, base_url)
        if absu is None:
            return None
        local = normalized.get(absu)
        if local is None:
            return None
        # sprite and filter references keep their #fragment
        return local + hash_ + fragment

    return lookup


# -------------------- Passes --------------------


def _html_attr(text: str, lookup: Lookup) -> str:
    def repl(m: "re.Match[str]") -> str:
        local = lookup(m.group("u"), True)
        return _splice(m, "u", local) if local else m.group(0)

    return HTML_ATTR_RE.sub(repl, text)


def _srcset(text: str, lookup: Lookup) -> str:
    def repl(m: "re.Match[str]") -> str:
        value = m.group("v")
        parts: List[Tuple[str, str]] = []
        changed = False
        for cand in SRCSET_SPLIT_RE.split(value.strip()):
            if not cand:
                continue
            comp = WS_RE.split(cand.strip())
            url_part, desc = comp[0], " ".join(comp[1:])
            local = lookup(url_part, True)
            if local:
                changed = True
            parts.append((local or url_part, desc))
        if not changed:
            return m.group(0)
        new_value = ", ".join(f"{u} {d}".strip() for u, d in parts)
        return _splice(m, "v", new_value)

    return SRCSET_RE.sub(repl, text)


def _css_url(text: str, lookup: Lookup) -> str:
    def repl(m: "re.Match[str]") -> str:
        local = lookup(m.group("u"))
        return f'url("{local}")' if local else m.group(0)

    return CSS_URL_RE.sub(repl, text)


def _css_import(text: str, lookup: Lookup) -> str:
    def repl(m: "re.Match[str]") -> str:
        local = lookup(m.group("u"))
        return f'@import "{local}"{m.group("rest")};' if local else m.group(0)

    return CSS_IMPORT_RE.sub(repl, text)


def _css_property(pattern: "re.Pattern[str]") -> Callable[[str, Lookup], str]:
    def rewrite_pass(text: str, lookup: Lookup) -> str:
        def repl(m: "re.Match[str]") -> str:
            local = lookup(m.group("u"))
            return f'{m.group("prop")}: url("{local}")' if local else m.group(0)

        return pattern.sub(repl, text)

    return rewrite_pass


def _splicing(pattern: "re.Pattern[str]", unescape: bool = False) -> Callable[[str, Lookup], str]:
    def rewrite_pass(text: str, lookup: Lookup) -> str:
        def repl(m: "re.Match[str]") -> str:
            local = lookup(m.group("u"), unescape)
            return _splice(m, "u", local) if local else m.group(0)

        return pattern.sub(repl, text)

    return rewrite_pass


def _generic(text: str, lookup: Lookup) -> str:
    def repl(m: "re.Match[str]") -> str:
        u = m.group("u")
        if not RESOURCE_EXT_RE.search(u):
            return m.group(0)
        local = lookup(u)
        return _splice(m, "u", local) if local else m.group(0)

    return GENERIC_URL_RE.sub(repl, text)


PASSES: List[Callable[[str, Lookup], str]] = [
    _html_attr,
    _srcset,
    _css_url,
    _css_import,
    _css_property(CSS_VAR_RE),
    _css_property(CSS_PROP_RE),
    _splicing(ES_IMPORT_RE),
    _splicing(ES_BARE_IMPORT_RE),
    _splicing(DYNAMIC_IMPORT_RE),
    _splicing(FETCH_RE),
    _splicing(XHR_OPEN_RE),
    _splicing(DATA_ATTR_RE, unescape=True),
    _generic,
]


def rewrite(text: str, url_map: Mapping[str, str], base_url: str) -> str:
    if not text or not url_map:
        return text
    lookup = _make_lookup(url_map, base_url)
    for rewrite_pass in PASSES:
        text = rewrite_pass(text, lookup)
    return text
