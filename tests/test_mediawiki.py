import asyncio

from web_replay import mediawiki
from web_replay.models import CapturedResource

WIKI_HTML = """<html><head>
<script>RLCONF={"wgServer":"//wiki.example.org","wgScriptPath":"/w"};</script>
<link rel="stylesheet" href="/w/load.php?lang=en&amp;modules=ext.custom&amp;only=styles">
</head><body></body></html>"""
BASE = "https://wiki.example.org/wiki/Main_Page"


class TestDetect:
    def test_wiki(self):
        assert mediawiki.detect(WIKI_HTML)

    def test_other_site(self):
        assert not mediawiki.detect("<html><head><title>Shop</title></head></html>")


class TestEnhance:
    def test_catalog_uses_config_values(self):
        urls = mediawiki.enhance(WIKI_HTML, BASE)
        assert (
            "https://wiki.example.org/w/load.php?lang=en&modules=site.styles&only=styles"
            in urls
        )
        assert (
            "https://wiki.example.org/w/skins/Vector/resources/common/images/arrow-down.svg"
            in urls
        )

    def test_load_php_links_in_html(self):
        urls = mediawiki.enhance(WIKI_HTML, BASE)
        assert "https://wiki.example.org/w/load.php?lang=en&modules=ext.custom&only=styles" in urls

    def test_defaults_without_config(self):
        urls = mediawiki.enhance("<html>mediawiki</html>", "https://w.example.com/wiki/X")
        assert urls[0].startswith("https://w.example.com/w/load.php?lang=en&modules=")

    def test_deduplicated(self):
        urls = mediawiki.enhance(WIKI_HTML + WIKI_HTML, BASE)
        assert len(urls) == len(set(urls))


class TestAugment:
    def test_merges_missing_resources(self):
        urls = mediawiki.enhance(WIKI_HTML, BASE)
        already = urls[0]
        failing = urls[1]
        resources = {already: CapturedResource(already, b"old", "text/css")}
        fetched = []

        async def fetch(u):
            fetched.append(u)
            if u == failing:
                raise RuntimeError("in-page fetch failed")
            if u.endswith(".svg"):
                return None
            return CapturedResource(u, b"new", "text/css")

        added = asyncio.run(mediawiki.augment(resources, WIKI_HTML, BASE, fetch))

        assert already not in fetched
        assert resources[already].content == b"old"
        assert failing not in resources
        assert not any(u.endswith(".svg") for u in resources)
        assert added == len(resources) - 1

    def test_fallback_css(self):
        assert ".mw-body" in mediawiki.fallback_css()
