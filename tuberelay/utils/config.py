from __future__ import annotations

import json
import os
import tempfile
import threading
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any


CONFIG_PATH = Path(__file__).resolve().parent.parent.parent / "config.json"

_config_lock = threading.Lock()

DEFAULT_USER_AGENTS = [
    "Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36 (KHTML, like Gecko) Chrome/124.0.0.0 Safari/537.36",
    "Mozilla/5.0 (Macintosh; Intel Mac OS X 10_15_7) AppleWebKit/537.36 (KHTML, like Gecko) Chrome/124.0.0.0 Safari/537.36",
    "Mozilla/5.0 (X11; Linux x86_64) AppleWebKit/537.36 (KHTML, like Gecko) Chrome/124.0.0.0 Safari/537.36",
]

SUPPORTED_CONTAINERS = {"mp4", "webm"}


@dataclass
class AppConfig:
    # --- Catalog ---
    # mp4 | webm
    target_container: str = "mp4"
    min_height: int = 144

    # --- Upstream resolution ---
    resolve_timeout_sec: float = 30.0
    resolve_retries: int = 3
    # Delay before retry n is retry_backoff_sec * 2**n
    retry_backoff_sec: float = 1.0
    # One is picked per extraction
    user_agents: list[str] = field(default_factory=list)
    # Netscape cookie file handed to yt-dlp (optional)
    cookies_file: str = ""

    # --- Network ---
    use_proxy: bool = False
    # Example: http://127.0.0.1:7890
    proxy_url: str = ""
    connect_timeout_sec: float = 15.0
    chunk_size: int = 64 * 1024

    # --- Merging ---
    # If empty, a "tuberelay" directory under the system temp dir.
    scratch_dir: str = ""
    ffmpeg_path: str = "ffmpeg"
    merge_audio_bitrate: str = "192k"

    # --- Response ---
    filename_max_length: int = 100

    def __post_init__(self) -> None:
        self.target_container = str(self.target_container or "").strip().lower()
        if self.target_container not in SUPPORTED_CONTAINERS:
            self.target_container = "mp4"

        try:
            self.min_height = max(0, int(self.min_height))
        except (TypeError, ValueError):
            self.min_height = 144

        try:
            self.resolve_timeout_sec = float(self.resolve_timeout_sec)
        except (TypeError, ValueError):
            self.resolve_timeout_sec = 30.0
        if self.resolve_timeout_sec <= 0:
            self.resolve_timeout_sec = 30.0

        try:
            self.resolve_retries = max(1, min(int(self.resolve_retries), 10))
        except (TypeError, ValueError):
            self.resolve_retries = 3

        if not isinstance(self.user_agents, list):
            self.user_agents = []
        self.user_agents = [str(ua).strip() for ua in self.user_agents if str(ua).strip()]
        if not self.user_agents:
            self.user_agents = list(DEFAULT_USER_AGENTS)

        try:
            self.chunk_size = max(4096, int(self.chunk_size))
        except (TypeError, ValueError):
            self.chunk_size = 64 * 1024

        try:
            self.filename_max_length = max(1, int(self.filename_max_length))
        except (TypeError, ValueError):
            self.filename_max_length = 100

        self.ffmpeg_path = str(self.ffmpeg_path or "").strip() or "ffmpeg"

    @property
    def scratch_path(self) -> Path:
        if self.scratch_dir:
            return Path(os.path.expanduser(self.scratch_dir))
        return Path(tempfile.gettempdir()) / "tuberelay"

    def to_dict(self) -> dict[str, Any]:
        """Convert config to dictionary for serialization."""
        return {k: v for k, v in self.__dict__.items()}


def load_config() -> AppConfig:
    with _config_lock:
        if not CONFIG_PATH.exists():
            return AppConfig()
        try:
            data = json.loads(CONFIG_PATH.read_text(encoding="utf-8"))
        except Exception:
            return AppConfig()

    if not isinstance(data, dict):
        return AppConfig()

    cfg = AppConfig()
    for k, v in data.items():
        if hasattr(cfg, k):
            setattr(cfg, k, v)
    # Re-normalize after applying persisted values.
    cfg.__post_init__()
    return cfg


def save_config(cfg: AppConfig) -> None:
    payload = json.dumps(cfg.to_dict(), ensure_ascii=False, indent=4)
    with _config_lock:
        CONFIG_PATH.parent.mkdir(parents=True, exist_ok=True)
        fd, tmp_path = tempfile.mkstemp(dir=str(CONFIG_PATH.parent), prefix=".config-", suffix=".json")
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as f:
                f.write(payload)
            os.replace(tmp_path, CONFIG_PATH)
        except BaseException:
            if os.path.exists(tmp_path):
                os.unlink(tmp_path)
            raise
