import logging
import os
import secrets
from typing import Callable, Optional

from flask import Flask, jsonify, request, send_file, session
from werkzeug.exceptions import HTTPException

from .config import Settings
from .errors import InvalidInput, PathTraversal, ReplayError, Unauthorized
from .extract import extract_title
from .fetcher import build_session, check_reachable, download
from .pipeline import capture_website
from .sanitize import build_preview
from .store import CacheStore
from .urls import is_http_url

MIME_TYPES = {
    ".html": "text/html",
    ".htm": "text/html",
    ".css": "text/css",
    ".js": "application/javascript",
    ".mjs": "application/javascript",
    ".json": "application/json",
    ".webmanifest": "application/manifest+json",
    ".xml": "application/xml",
    ".png": "image/png",
    ".jpg": "image/jpeg",
    ".jpeg": "image/jpeg",
    ".gif": "image/gif",
    ".svg": "image/svg+xml",
    ".ico": "image/x-icon",
    ".webp": "image/webp",
    ".avif": "image/avif",
    ".bmp": "image/bmp",
    ".tiff": "image/tiff",
    ".woff": "font/woff",
    ".woff2": "font/woff2",
    ".ttf": "font/ttf",
    ".otf": "font/otf",
    ".eot": "application/vnd.ms-fontobject",
    ".mp4": "video/mp4",
    ".webm": "video/webm",
    ".ogv": "video/ogg",
    ".mp3": "audio/mpeg",
    ".ogg": "audio/ogg",
    ".wav": "audio/wav",
    ".pdf": "application/pdf",
    ".txt": "text/plain",
    ".zip": "application/zip",
    ".tar": "application/x-tar",
    ".gz": "application/gzip",
}


def mime_type_for(path: str) -> str:
    return MIME_TYPES.get(os.path.splitext(path)[1].lower(), "application/octet-stream")


def replay_headers(mime: str, max_age: int) -> dict:
    headers = {"Content-Type": mime, "Cache-Control": f"public, max-age={max_age}"}
    if mime == "text/html":
        headers.update(
            {
                "Content-Type": "text/html; charset=utf-8",
                "X-Frame-Options": "SAMEORIGIN",
                "Content-Security-Policy": "frame-ancestors 'self'",
                "Access-Control-Allow-Origin": "*",
                "Access-Control-Allow-Methods": "GET, POST, OPTIONS",
                "Access-Control-Allow-Headers": "Content-Type, Authorization",
            }
        )
    elif mime in ("text/css", "application/javascript"):
        headers.update(
            {"Access-Control-Allow-Origin": "*", "Access-Control-Allow-Methods": "GET"}
        )
    return headers


def default_session_check() -> bool:
    return bool(session.get("user"))


def _json_body() -> dict:
    data = request.get_json(silent=True)
    if data is None:
        data = {}
    if not isinstance(data, dict):
        raise InvalidInput("Invalid JSON data")
    return data


def create_app(
    settings: Optional[Settings] = None,
    store: Optional[CacheStore] = None,
    session_check: Optional[Callable[[], bool]] = None,
) -> Flask:
    settings = settings or Settings()
    store = store or CacheStore(settings.cache_path, settings.serve_prefix)
    session_check = session_check or default_session_check

    app = Flask(__name__)
    if settings.secret_key:
        app.secret_key = settings.secret_key
    else:
        logging.warning("no secret_key configured, sessions will not survive a restart")
        app.secret_key = secrets.token_hex(32)
    app.config["REPLAY_SETTINGS"] = settings
    app.config["REPLAY_STORE"] = store

    # -------------------- Errors --------------------

    @app.errorhandler(ReplayError)
    def replay_error(e: ReplayError):
        if e.status >= 500:
            logging.error("%s: %s", e.message, e.details)
        return jsonify(e.to_dict()), e.status

    @app.errorhandler(HTTPException)
    def http_error(e: HTTPException):
        return jsonify({"error": e.description or e.name}), e.code

    @app.errorhandler(Exception)
    def unexpected_error(e: Exception):
        logging.exception("unhandled error: %s", e)
        return jsonify({"error": "Internal server error"}), 500

    # -------------------- Capture --------------------

    @app.route("/api/fetch-website", methods=["POST"])
    def fetch_website():
        if not session_check():
            raise Unauthorized()
        data = _json_body()
        outcome = capture_website(
            data.get("url"), store, settings, force_refresh=bool(data.get("forceRefresh"))
        )
        return jsonify(outcome.to_dict())

    # -------------------- Replay --------------------

    @app.route(settings.serve_prefix.rstrip("/") + "/<path:subpath>", methods=["GET"])
    def serve_website(subpath: str):
        segments = subpath.split("/")
        if len(segments) < 2:
            raise PathTraversal()
        dir_id, file_name = segments[0], "/".join(segments[1:])
        path = store.resolve(dir_id, file_name)
        mime = mime_type_for(path.name)
        resp = send_file(path, mimetype=mime, conditional=False)
        resp.headers.update(replay_headers(mime, settings.cache_max_age))
        return resp

    # -------------------- URL tools --------------------

    @app.route("/api/validate-url", methods=["POST"])
    def validate_url():
        data = _json_body()
        url = data.get("url")
        if not url or not isinstance(url, str):
            return jsonify(
                {
                    "success": False,
                    "message": "URL is required",
                    "isValidFormat": False,
                    "isReachable": False,
                }
            ), 400
        url = url.strip()
        if not is_http_url(url):
            return jsonify(
                {
                    "success": False,
                    "message": "Please input a valid URL format (e.g., https://example.com)",
                    "isValidFormat": False,
                    "isReachable": False,
                }
            ), 400
        if not check_reachable(url, timeout=settings.probe_timeout):
            return jsonify(
                {
                    "success": False,
                    "message": "The URL is not reachable. Please check the URL and try again.",
                    "isValidFormat": True,
                    "isReachable": False,
                }
            ), 400
        return jsonify(
            {
                "success": True,
                "message": "URL is valid and reachable",
                "isValidFormat": True,
                "isReachable": True,
                "url": url,
            }
        )

    @app.route("/api/crawl-page", methods=["POST"])
    def crawl_page():
        data = _json_body()
        url = data.get("url")
        if not url or not isinstance(url, str):
            return jsonify({"success": False, "message": "URL is required"}), 400
        url = url.strip()
        result = download(url, url, session=build_session(), timeout=settings.fetch_timeout)
        if result.is_binary or not result.content:
            return jsonify(
                {
                    "success": False,
                    "message": "Failed to crawl the page",
                    "error": f"Failed to fetch page: {url}",
                }
            ), 500
        html = result.as_bytes().decode("utf-8", errors="replace")
        return jsonify(
            {
                "success": True,
                "message": "Page crawled successfully (fetch mode)",
                "html": build_preview(html, url),
                "title": extract_title(html) or "Untitled Page",
                "url": url,
            }
        )

    return app