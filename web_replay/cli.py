import argparse
import json
import logging
import sys
from typing import List, Optional

from .config import flatten_config, load_config_file, load_settings
from .errors import ReplayError
from .store import CacheStore
from .urls import is_http_url


def build_arg_parser() -> argparse.ArgumentParser:
    p = argparse.ArgumentParser(
        prog="web-replay",
        description="Capture web pages into a local cache and replay them.",
    )
    p.add_argument("--config", type=str, help="path to config.toml|.yaml", default=None)
    p.add_argument("--cache-root", type=str, default=None, help="capture cache directory")
    p.add_argument("--verbose", action="store_true", help="debug logging")

    sub = p.add_subparsers(dest="command", required=True)

    cap = sub.add_parser("capture", help="capture one URL and print the outcome")
    cap.add_argument("url", help="http(s) URL")
    cap.add_argument("--force", action="store_true", help="re-capture even if cached")

    srv = sub.add_parser("serve", help="run the capture/replay web app")
    srv.add_argument("--host", type=str, default=None, help="bind address")
    srv.add_argument("--port", type=int, default=None, help="bind port")
    return p


def parse_args(argv: Optional[List[str]] = None) -> argparse.Namespace:
    parser = build_arg_parser()
    preliminary, _ = parser.parse_known_args(argv)
    if preliminary.config:
        cfg = load_config_file(preliminary.config)
        flat = flatten_config(cfg)
        # only the flags the parser knows; the rest goes to Settings
        known = {"cache_root", "verbose"}
        parser.set_defaults(**{k: v for k, v in flat.items() if k in known})
    return parser.parse_args(argv)


def run_capture(args: argparse.Namespace) -> int:
    from .pipeline import capture_website

    if not is_http_url(args.url):
        print("Invalid URL. Use http:// or https://")
        return 1
    settings = load_settings(args.config, cache_root=args.cache_root)
    store = CacheStore(settings.cache_path, settings.serve_prefix)
    try:
        outcome = capture_website(args.url, store, settings, force_refresh=args.force)
    except ReplayError as e:
        print(json.dumps({"success": False, **e.to_dict()}, indent=2))
        return 1
    print(json.dumps(outcome.to_dict(), indent=2))
    print(f"Saved to: {store.directory(outcome.path)}")
    return 0


def run_serve(args: argparse.Namespace) -> int:
    from .server import create_app

    settings = load_settings(
        args.config, cache_root=args.cache_root, host=args.host, port=args.port
    )
    app = create_app(settings)
    logging.info("serving captures from %s", settings.cache_path)
    app.run(host=settings.host, port=settings.port, debug=False)
    return 0


def main(argv: Optional[List[str]] = None) -> None:
    args = parse_args(argv)
    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.INFO,
        format="%(levelname)s: %(message)s",
    )
    if args.command == "capture":
        sys.exit(run_capture(args))
    sys.exit(run_serve(args))
