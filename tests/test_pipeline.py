import pytest

from web_replay import pipeline
from web_replay.errors import BrowserLaunchError, CaptureFailed, CriticalCaptureError, InvalidInput
from web_replay.fetcher import FetchResult
from web_replay.models import CapturedResource, PageCapture

URL = "https://example.com/"
HTML = (
    "<html><head><title>Example</title>"
    '<link rel="stylesheet" href="/css/site.css"></head>'
    '<body><img src="/img/a.png"><img src="https://other.example/b.png"></body></html>'
)
CSS = b"body { background: url('/img/bg.png') }"


def page_capture(method="playwright", degraded=None, html=HTML):
    resources = {
        "https://example.com/css/site.css": CapturedResource(
            "https://example.com/css/site.css", CSS, "text/css"
        ),
        "https://example.com/img/a.png": CapturedResource(
            "https://example.com/img/a.png", b"PNG-A", "image/png"
        ),
        "https://example.com/img/bg.png": CapturedResource(
            "https://example.com/img/bg.png", b"PNG-BG", "image/png"
        ),
    }
    return PageCapture(
        url=URL,
        base_url=URL,
        html=html,
        title="Example",
        resources=resources,
        method=method,
        degraded=degraded or [],
    )


@pytest.fixture
def browser_calls(monkeypatch):
    calls = []

    def fake(url, settings):
        calls.append(url)
        return page_capture()

    monkeypatch.setattr(pipeline, "capture_with_browser", fake)
    return calls


class TestCaptureWebsite:
    def test_first_capture_then_cached(self, store, settings, browser_calls):
        first = pipeline.capture_website(URL, store, settings)
        assert first.to_dict() == {
            "success": True,
            "path": store.key_for(URL),
            "cached": False,
            "title": "Example",
            "resourceCount": 3,
            "method": "playwright",
        }
        assert (store.directory(first.path) / "index.html").is_file()

        second = pipeline.capture_website(URL, store, settings)
        assert second.to_dict() == {
            "success": True,
            "path": first.path,
            "cached": True,
            "title": "Example",
        }
        assert browser_calls == [URL]

    def test_force_refresh_recaptures(self, store, settings, browser_calls):
        pipeline.capture_website(URL, store, settings)
        again = pipeline.capture_website(URL, store, settings, force_refresh=True)
        assert again.cached is False
        assert browser_calls == [URL, URL]

    @pytest.mark.parametrize("url", [None, "", "   ", "example.com", "ftp://example.com/"])
    def test_invalid_url(self, store, settings, browser_calls, url):
        with pytest.raises(InvalidInput):
            pipeline.capture_website(url, store, settings)
        assert browser_calls == []

    def test_partial_capture_has_note(self, store, settings, monkeypatch):
        monkeypatch.setattr(
            pipeline,
            "capture_with_browser",
            lambda url, s: page_capture("playwright-partial", ["network-idle"]),
        )
        outcome = pipeline.capture_website(URL, store, settings)
        assert outcome.success is True
        assert outcome.method == "playwright-partial"
        assert "network-idle" in outcome.note

    @pytest.mark.parametrize(
        "error", [BrowserLaunchError(details="no chromium"), CriticalCaptureError(), OSError("x")]
    )
    def test_browser_failure_falls_back(self, store, settings, monkeypatch, error):
        def broken(url, s):
            raise error

        monkeypatch.setattr(pipeline, "capture_with_browser", broken)
        monkeypatch.setattr(
            pipeline, "fallback_capture", lambda url, s: page_capture(method="fallback")
        )
        outcome = pipeline.capture_website(URL, store, settings)
        assert outcome.method == "fallback"
        assert outcome.cached is False

    def test_everything_fails(self, store, settings, monkeypatch):
        def broken(url, s):
            raise BrowserLaunchError(details="no chromium")

        def no_page(url, s):
            raise CaptureFailed()

        monkeypatch.setattr(pipeline, "capture_with_browser", broken)
        monkeypatch.setattr(pipeline, "fallback_capture", no_page)
        with pytest.raises(CaptureFailed) as exc:
            pipeline.capture_website(URL, store, settings)
        assert exc.value.details == "no chromium"
        assert store.get(URL) is None


class TestPublish:
    def test_rewrites_html_and_css(self, store, settings):
        capture = pipeline.publish(page_capture(), store, settings)
        local = f"/api/serve-website/{capture.dir_id}"
        index = (capture.path / "index.html").read_text(encoding="utf-8")
        assert f'href="{local}/site.css"' in index
        assert f'src="{local}/a.png"' in index
        assert 'src="https://other.example/b.png"' in index
        assert index.index("web-replay runtime shim") < index.index("<title>")

        css = (capture.path / "site.css").read_bytes()
        assert css == f'body {{ background: url("{local}/bg.png") }}'.encode()
        assert (capture.path / "a.png").read_bytes() == b"PNG-A"

    def test_css_rewrite_can_be_disabled(self, store, settings):
        settings.rewrite_css = False
        capture = pipeline.publish(page_capture(), store, settings)
        assert (capture.path / "site.css").read_bytes() == CSS

    def test_mediawiki_fallback_css(self, store, settings):
        html = "<html><head><script>var wgServer = 1;</script></head><body></body></html>"
        capture = pipeline.publish(page_capture(html=html), store, settings)
        index = (capture.path / "index.html").read_text(encoding="utf-8")
        assert ".mw-body" in index


class TestFallbackCapture:
    def test_page_and_assets(self, settings, monkeypatch):
        bodies = {
            URL: FetchResult(HTML, "text/html", False),
            "https://example.com/css/site.css": FetchResult(CSS.decode(), "text/css", False),
            "https://example.com/img/a.png": FetchResult(b"A", "image/png", True),
            "https://example.com/img/bg.png": FetchResult(b"BG", "image/png", True),
            "https://other.example/b.png": FetchResult(b"B", "image/png", True),
        }

        def fake_download(url, base, session=None, timeout=15.0):
            return bodies.get(url, FetchResult("", "text/plain", False))

        monkeypatch.setattr(pipeline, "download", fake_download)
        monkeypatch.setattr("web_replay.fetcher.download", fake_download)
        page = pipeline.fallback_capture(URL, settings)
        assert page.method == "fallback"
        assert page.title == "Example"
        assert set(page.resources) == {
            "https://example.com/css/site.css",
            "https://example.com/img/a.png",
            "https://example.com/img/bg.png",
            "https://other.example/b.png",
        }

    def test_asset_ceiling(self, settings, monkeypatch):
        settings.fallback_max_assets = 1
        monkeypatch.setattr(
            pipeline, "download", lambda *a, **k: FetchResult(HTML, "text/html", False)
        )
        monkeypatch.setattr(
            "web_replay.fetcher.download", lambda *a, **k: FetchResult(b"x", "image/png", True)
        )
        page = pipeline.fallback_capture(URL, settings)
        assert len(page.resources) == 1

    def test_page_unavailable(self, settings, monkeypatch):
        monkeypatch.setattr(
            pipeline, "download", lambda *a, **k: FetchResult("", "text/plain", False)
        )
        with pytest.raises(CaptureFailed):
            pipeline.fallback_capture(URL, settings)
