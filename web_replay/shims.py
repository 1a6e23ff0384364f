import re
from functools import lru_cache
from pathlib import Path
from typing import Optional

ASSETS_DIR = Path(__file__).resolve().parent / "assets"
SHIM_FILE = "runtime_shim.js"
PREFIX_TOKEN = "__SERVE_PREFIX__"

HEAD_OPEN_RE = re.compile(r"<head(?:\s[^>]*)?>", re.I)
HEAD_CLOSE_RE = re.compile(r"</head\s*>", re.I)
HTML_OPEN_RE = re.compile(r"<html(?:\s[^>]*)?>", re.I)


@lru_cache(maxsize=None)
def load_asset(name: str) -> str:
    return (ASSETS_DIR / name).read_text(encoding="utf-8")


def shim_block(serve_prefix: str) -> str:
    script = load_asset(SHIM_FILE).replace(PREFIX_TOKEN, serve_prefix.rstrip("/"))
    return f"<script>\n{script}</script>"


def insert_at_head_start(html: str, block: str) -> str:
    m = HEAD_OPEN_RE.search(html)
    if m:
        return html[: m.end()] + block + html[m.end() :]
    m = HTML_OPEN_RE.search(html)
    if m:
        return html[: m.end()] + "<head>" + block + "</head>" + html[m.end() :]
    return "<head>" + block + "</head>" + html


def insert_at_head_end(html: str, block: str) -> str:
    m = HEAD_CLOSE_RE.search(html)
    if m:
        return html[: m.start()] + block + html[m.start() :]
    return insert_at_head_start(html, block)


def inject_shims(html: str, serve_prefix: str, extra_css: Optional[str] = None) -> str:
    """Put the runtime shim before anything else in <head>, optional CSS at its end."""
    html = insert_at_head_start(html, shim_block(serve_prefix))
    if extra_css:
        html = insert_at_head_end(html, f"<style>\n{extra_css}</style>")
    return html
