"""Inline preview of a page with everything interactive taken out."""
from typing import Optional

from bs4 import BeautifulSoup

from .extract import bs4_parse, extract_title
from .urls import resolve_reference

IFRAME_PLACEHOLDER = "Embedded content removed for security"
PLACEHOLDER_STYLE = (
    "background: #f0f0f0; border: 1px solid #ccc; padding: 20px; "
    "text-align: center; color: #666;"
)
INERT_STYLE = "pointer-events: none;"
KEEP_HREF_PREFIXES = ("#", "mailto:", "tel:")
PREVIEW_SKELETON = "<!DOCTYPE html><html><head></head><body></body></html>"

PREVIEW_CSS = """
.replay-container {
  width: 100vw; height: 100vh; max-width: 1280px; max-height: 800px;
  overflow: hidden; position: relative; background: white;
  margin: 0; padding: 0; border: none; box-shadow: none;
}
.replay-content {
  width: 100%; height: 100%; overflow: auto; position: relative;
}
body, html { margin: 0 !important; padding: 0 !important; overflow: hidden !important; }
.replay-content img, .replay-content video, .replay-content embed,
.replay-content object { max-width: 100%; height: auto; }
.replay-content * {
  max-width: 100%; box-sizing: border-box;
  pointer-events: none !important; user-select: none !important;
}
.replay-content a { pointer-events: auto !important; cursor: pointer !important; }
"""


def sanitize_html(soup: BeautifulSoup) -> BeautifulSoup:
    for tag in soup.find_all("script"):
        tag.decompose()
    for tag in soup.find_all("iframe"):
        placeholder = soup.new_tag("div", style=PLACEHOLDER_STYLE)
        placeholder.string = IFRAME_PLACEHOLDER
        tag.replace_with(placeholder)
    for tag in soup.find_all(True):
        for attr in list(tag.attrs):
            value = tag.attrs[attr]
            if attr.lower().startswith("on"):
                del tag.attrs[attr]
            elif isinstance(value, str) and value.strip().lower().startswith("javascript:"):
                tag.attrs[attr] = "#"
    for form in soup.find_all("form"):
        form.name = "div"
        form["data-was-form"] = "true"
    for tag in soup.find_all(["input", "textarea", "select", "button"]):
        tag["disabled"] = ""
        if tag.name in ("input", "textarea"):
            tag["readonly"] = ""
        tag["style"] = INERT_STYLE
    return soup


def make_urls_absolute(soup: BeautifulSoup, base_url: str) -> BeautifulSoup:
    for tag in soup.find_all(src=True):
        absu = resolve_reference(tag["src"], base_url)
        if absu:
            tag["src"] = absu
    for tag in soup.find_all(href=True):
        href = tag["href"].strip()
        if href.startswith(KEEP_HREF_PREFIXES):
            continue
        absu = resolve_reference(href, base_url)
        if absu:
            tag["href"] = absu
            if tag.name == "a":
                tag["target"] = "_blank"
    return soup


def build_preview(html: str, url: str, title: Optional[str] = None) -> str:
    """Wrap the sanitized page in a fixed-size preview container."""
    soup = make_urls_absolute(sanitize_html(bs4_parse(html)), url)
    title = title or extract_title(html) or "Untitled Page"

    out = BeautifulSoup(PREVIEW_SKELETON, "html.parser")
    out.head.append(out.new_tag("meta", charset="UTF-8"))
    out.head.append(
        out.new_tag(
            "meta",
            attrs={"name": "viewport", "content": "width=device-width, initial-scale=1.0"},
        )
    )
    title_tag = out.new_tag("title")
    title_tag.string = title
    out.head.append(title_tag)
    if soup.head:
        for child in list(soup.head.children):
            if getattr(child, "name", None) != "title":
                out.head.append(child.extract())
    style = out.new_tag("style")
    style.string = PREVIEW_CSS
    out.head.append(style)

    container = out.new_tag("div", attrs={"class": "replay-container"})
    content = out.new_tag("div", attrs={"class": "replay-content"})
    container.append(content)
    out.body.append(container)
    source = soup.body if soup.body else soup
    for child in list(source.children):
        if getattr(child, "name", None) in ("html", "head"):
            continue
        content.append(child.extract())
    return str(out)
