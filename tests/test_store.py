import os

import pytest

from web_replay.errors import NotFound, PathTraversal
from web_replay.models import CapturedResource
from web_replay.store import CacheStore, safe_file_name, unique_file_name

URL = "https://example.com/"
PAGE = "<html><head><title>Example Domain</title></head><body>hi</body></html>"


def res(url, body=b"data", content_type="image/png"):
    return CapturedResource(url, body, content_type)


# ---------------------------------------------------------------------------
# key_for
# ---------------------------------------------------------------------------
class TestKeyFor:
    def test_deterministic(self, store):
        assert store.key_for(URL) == store.key_for(URL)

    def test_shape(self, store):
        key = store.key_for("https://example.com/docs/a.html")
        stem, digest = key.rsplit("_", 1)
        assert stem == "example_com_docs_a_html"
        assert len(digest) == 8

    def test_root_path(self, store):
        assert store.key_for(URL).startswith("example_com__")

    def test_query_changes_hash_only(self, store):
        a = store.key_for("https://example.com/p?x=1")
        b = store.key_for("https://example.com/p?x=2")
        assert a != b
        assert a.rsplit("_", 1)[0] == b.rsplit("_", 1)[0]

    def test_host_and_path_are_part_of_key(self, store):
        a = store.key_for("https://a.example.com/x")
        b = store.key_for("https://b.example.com/x")
        assert a.rsplit("_", 1)[0] != b.rsplit("_", 1)[0]

    def test_long_path_truncated(self, store):
        key = store.key_for("https://example.com/" + "a" * 500)
        assert len(key) == 120 + 1 + 8


# ---------------------------------------------------------------------------
# file names
# ---------------------------------------------------------------------------
class TestFileNames:
    def test_plain(self):
        assert safe_file_name("https://example.com/css/site.css", "text/css") == "site.css"

    def test_missing_extension_from_type(self):
        assert safe_file_name("https://example.com/font", "font/woff2") == "font.woff2"

    def test_dynamic_extension_replaced(self):
        url = "https://wiki.example.org/w/load.php?modules=site.styles&only=styles"
        assert safe_file_name(url, "text/css; charset=utf-8") == "load.css"

    def test_directory_url(self):
        assert safe_file_name("https://example.com/sub/", "text/html") == "index.html"

    def test_unsafe_characters(self):
        name = safe_file_name("https://example.com/a%20b:c.png", "image/png")
        assert name == "a_20b_c.png"
        assert ".." not in safe_file_name("https://example.com/x..y.png", "image/png")

    def test_unique_suffixes(self):
        existing = {"index.html"}
        names = [unique_file_name("logo.png", existing) for _ in range(3)]
        assert names == ["logo.png", "logo_1.png", "logo_2.png"]
        assert unique_file_name("index.html", existing) == "index_1.html"


# ---------------------------------------------------------------------------
# put / get
# ---------------------------------------------------------------------------
class TestPutGet:
    def test_miss(self, store):
        assert store.get(URL) is None

    def test_put_then_get(self, store):
        capture = store.put(
            URL,
            PAGE,
            {
                "https://example.com/a/logo.png": res("https://example.com/a/logo.png"),
                "https://cdn.example.net/logo.png": res("https://cdn.example.net/logo.png"),
            },
        )
        assert capture.dir_id == store.key_for(URL)
        assert capture.title == "Example Domain"
        assert capture.resource_count == 2
        files = sorted(os.listdir(capture.path))
        assert files == ["index.html", "logo.png", "logo_1.png"]

        again = store.get(URL)
        assert again.title == "Example Domain"
        assert again.resource_count == 2

    def test_title_falls_back_to_url(self, store):
        store.put(URL, "<html><body>untitled</body></html>", {})
        assert store.get(URL).title == URL

    def test_resource_named_index_is_renamed(self, store):
        capture = store.put(
            URL, PAGE, {"https://example.com/sub/": res("https://example.com/sub/", b"x", "text/html")}
        )
        assert (capture.path / "index_1.html").read_bytes() == b"x"
        assert (capture.path / "index.html").read_text(encoding="utf-8") == PAGE


# ---------------------------------------------------------------------------
# staging and publish
# ---------------------------------------------------------------------------
class TestPublish:
    def test_no_leftovers(self, store):
        store.put(URL, PAGE, {})
        store.put(URL, PAGE, {})
        assert os.listdir(store.root) == [store.key_for(URL)]

    def test_republish_replaces_old_files(self, store):
        store.put(URL, PAGE, {"https://example.com/old.png": res("https://example.com/old.png")})
        capture = store.put(URL, PAGE, {"https://example.com/new.png": res("https://example.com/new.png")})
        assert sorted(os.listdir(capture.path)) == ["index.html", "new.png"]

    def test_nothing_visible_until_published(self, store):
        with store.stage(URL) as staged:
            staged.write_index(PAGE)
            assert store.get(URL) is None
            assert staged.path.name.startswith(".staging-")
        assert store.get(URL) is not None

    def test_failed_stage_discarded(self, store):
        with pytest.raises(RuntimeError):
            with store.stage(URL) as staged:
                staged.write_index(PAGE)
                raise RuntimeError("boom")
        assert store.get(URL) is None
        assert os.listdir(store.root) == []

    def test_allocate_builds_local_paths(self, store):
        with store.stage(URL) as staged:
            local = staged.allocate(res("https://example.com/img/a.png"))
            assert local == f"/api/serve-website/{store.key_for(URL)}/a.png"
            assert staged.url_map == {"https://example.com/img/a.png": local}
            staged.write_index(PAGE)

    def test_evict(self, store):
        store.put(URL, PAGE, {})
        assert store.evict(URL) is True
        assert store.get(URL) is None
        assert store.evict(URL) is False


# ---------------------------------------------------------------------------
# resolve
# ---------------------------------------------------------------------------
class TestResolve:
    def test_existing_file(self, store):
        capture = store.put(URL, PAGE, {})
        path = store.resolve(capture.dir_id, "index.html")
        assert path == capture.path / "index.html"

    def test_missing_file(self, store):
        capture = store.put(URL, PAGE, {})
        with pytest.raises(NotFound):
            store.resolve(capture.dir_id, "nope.css")

    @pytest.mark.parametrize(
        "dir_id,file_path",
        [("abc", "../../etc/passwd"), ("..", "etc/passwd"), ("abc", "x/../../y")],
    )
    def test_dotdot_rejected(self, store, dir_id, file_path):
        with pytest.raises(PathTraversal):
            store.resolve(dir_id, file_path)

    def test_absolute_file_path_rejected(self, store):
        store.put(URL, PAGE, {})
        with pytest.raises(PathTraversal):
            store.resolve(store.key_for(URL), "/etc/passwd")

    def test_symlink_escape_rejected(self, store, tmp_path):
        secret = tmp_path / "secret.txt"
        secret.write_text("s")
        capture = store.put(URL, PAGE, {})
        os.symlink(secret, capture.path / "link.txt")
        with pytest.raises(PathTraversal):
            store.resolve(capture.dir_id, "link.txt")

    def test_dangling_symlink_escape_rejected(self, store, tmp_path):
        capture = store.put(URL, PAGE, {})
        os.symlink(tmp_path / "missing.txt", capture.path / "gone.txt")
        with pytest.raises(PathTraversal):
            store.resolve(capture.dir_id, "gone.txt")

    def test_hidden_directory_not_served(self, store):
        with pytest.raises(NotFound):
            store.resolve(".staging-abc", "index.html")


def test_root_accepts_str(tmp_path):
    store = CacheStore(str(tmp_path / "c"))
    assert store.root == (tmp_path / "c").resolve()
