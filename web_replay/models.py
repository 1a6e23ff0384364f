from dataclasses import asdict, dataclass, field
from pathlib import Path
from typing import Dict, List, Optional


@dataclass(frozen=True)
class CapturedResource:
    url: str
    content: bytes
    content_type: str

    @property
    def mime(self) -> str:
        return self.content_type.split(";")[0].strip().lower()

    @property
    def is_css(self) -> bool:
        return self.mime == "text/css"

    @property
    def is_js(self) -> bool:
        return "javascript" in self.mime or self.mime == "text/ecmascript"

    def text(self) -> str:
        return self.content.decode("utf-8", errors="replace")


@dataclass
class PageCapture:
    """Output of one capture method, before it is written to the cache."""

    url: str
    base_url: str
    html: str
    title: str
    resources: Dict[str, CapturedResource] = field(default_factory=dict)
    method: str = "playwright"
    degraded: List[str] = field(default_factory=list)


@dataclass
class Capture:
    """A published capture directory."""

    dir_id: str
    path: Path
    title: str
    resource_count: int


@dataclass
class CaptureOutcome:
    success: bool
    path: str
    cached: bool
    title: str
    resource_count: Optional[int] = None
    method: Optional[str] = None
    note: Optional[str] = None

    def to_dict(self) -> dict:
        data = {k: v for k, v in asdict(self).items() if v is not None}
        if "resource_count" in data:
            data["resourceCount"] = data.pop("resource_count")
        return data
