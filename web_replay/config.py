import logging
from dataclasses import dataclass, field, fields
from pathlib import Path
from typing import Any, Dict, List, Mapping, Optional

# -------------------- Defaults --------------------

DEFAULT_HEADERS = {
    "User-Agent": "Mozilla/5.0 (Windows NT 10.0; Win64; x64) "
    "AppleWebKit/537.36 (KHTML, like Gecko) "
    "Chrome/124.0.0.0 Safari/537.36",
    "Accept": "text/html,application/xhtml+xml,application/xml;q=0.9,*/*;q=0.8",
    "Accept-Language": "en-US,en;q=0.7",
}

BROWSER_USER_AGENT = (
    "Mozilla/5.0 (Macintosh; Intel Mac OS X 10_15_7) "
    "AppleWebKit/537.36 (KHTML, like Gecko) "
    "Chrome/124.0.0.0 Safari/537.36"
)

PROBE_USER_AGENT = "web-replay-bot/1.0"

CONFIG_GROUPS = ("browser", "capture", "cache", "server", "fallback", "general")


# -------------------- Settings --------------------


@dataclass
class Settings:
    # Cache / replay
    cache_root: str = "websites_images"
    serve_prefix: str = "/api/serve-website"
    cache_max_age: int = 3600

    # Browser
    headless: bool = True
    viewport_width: int = 1600
    viewport_height: int = 800
    launch_timeout_ms: int = 60000
    browser_args: List[str] = field(
        default_factory=lambda: [
            "--no-sandbox",
            "--disable-setuid-sandbox",
            "--disable-dev-shm-usage",
            "--disable-web-security",
        ]
    )

    # Capture phases
    commit_timeout_ms: int = 30000
    early_snapshot_delay_ms: int = 2000
    early_snapshot_min_chars: int = 500
    dom_ready_timeout_ms: int = 15000
    network_idle_timeout_ms: int = 10000
    settle_delay_ms: int = 5000
    body_read_timeout: float = 30.0
    max_resource_bytes: int = 50 * 1024 * 1024
    emergency_min_chars: int = 1000
    channel_capacity: int = 5000

    # Rewriting
    rewrite_css: bool = True
    rewrite_js: bool = True

    # Plain HTTP
    fetch_timeout: float = 15.0
    probe_timeout: float = 10.0
    fallback_assets: bool = True
    fallback_workers: int = 8
    fallback_max_assets: int = 300

    # Server
    host: str = "127.0.0.1"
    port: int = 3000
    secret_key: Optional[str] = None

    @property
    def cache_path(self) -> Path:
        return Path(self.cache_root).resolve()

    @classmethod
    def from_mapping(cls, data: Mapping[str, Any]) -> "Settings":
        known = {f.name for f in fields(cls)}
        kwargs: Dict[str, Any] = {}
        for k, v in flatten_config(data).items():
            key = k.replace("-", "_")
            if key not in known:
                logging.warning("ignoring unknown setting: %s", k)
                continue
            kwargs[key] = v
        return cls(**kwargs)


# -------------------- Config loader --------------------


def flatten_config(cfg: Mapping[str, Any]) -> Dict[str, Any]:
    flat = {k: v for k, v in cfg.items() if k not in CONFIG_GROUPS}
    for g in CONFIG_GROUPS:
        if isinstance(cfg.get(g), dict):
            flat.update(cfg[g])
    return flat


def load_config_file(path: str) -> Dict[str, Any]:
    p = Path(path)
    suf = p.suffix.lower()
    if suf in {".toml", ".tml"}:
        try:
            import tomllib  # py311+
        except ImportError:
            import tomli as tomllib  # backport
        with open(p, "rb") as f:
            return tomllib.load(f) or {}
    elif suf in {".yaml", ".yml"}:
        import yaml

        with open(p, "r", encoding="utf-8") as f:
            data = yaml.safe_load(f) or {}
            if not isinstance(data, dict):
                raise RuntimeError("Top-level YAML must be a mapping")
            return data
    else:
        raise RuntimeError("Unsupported config format. Use .toml or .yaml")


def load_settings(path: Optional[str] = None, **overrides: Any) -> Settings:
    data: Dict[str, Any] = {}
    if path:
        data = flatten_config(load_config_file(path))
    data.update({k: v for k, v in overrides.items() if v is not None})
    return Settings.from_mapping(data)
