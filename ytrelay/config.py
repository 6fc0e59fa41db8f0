import os
import sys
from dataclasses import dataclass, field
from pathlib import Path
from typing import List, Optional

from dotenv import load_dotenv

load_dotenv()

IS_WINDOWS = sys.platform == "win32"

# ---------------------- Defaults ----------------------
DEFAULT_HOST = "0.0.0.0"
DEFAULT_PORT = 5000
DEFAULT_LOG_FILE = "logs.txt"

REQUEST_TIMEOUT = 300      # wall-clock limit for one streamed download (5 min)
INFO_TIMEOUT = 60          # bounded wait for one --dump-json attempt
RETRY_DELAY = 1.0          # pause between info attempts
HTTP_TIMEOUT = 15          # outbound metadata requests
CHUNK_SIZE = 64 * 1024

NOEMBED_URL = "https://noembed.com/embed"
WATCH_URL = "https://www.youtube.com/watch?v={video_id}"
MIRROR_URL = "https://www.yewtu.be/watch?v={video_id}"
CLEANUP_PATTERN = "*-player-script.js"


def _default_ytdlp_path() -> str:
    if IS_WINDOWS:
        return str(Path.cwd() / "yt-dlp.exe")
    return "yt-dlp"


def _default_cookies_path() -> str:
    return "cookies.txt" if IS_WINDOWS else "/etc/secrets/cookies.txt"


def _split_origins(value: Optional[str]) -> List[str]:
    if not value:
        return []
    return [origin.strip() for origin in value.split(",") if origin.strip()]


@dataclass
class Settings:
    host: str = DEFAULT_HOST
    port: int = DEFAULT_PORT
    ytdlp_path: str = field(default_factory=_default_ytdlp_path)
    cookies_path: str = field(default_factory=_default_cookies_path)
    cors_origins: List[str] = field(default_factory=list)
    environment: str = "production"
    log_file: str = DEFAULT_LOG_FILE
    request_timeout: float = REQUEST_TIMEOUT
    info_timeout: float = INFO_TIMEOUT
    retry_delay: float = RETRY_DELAY
    http_timeout: float = HTTP_TIMEOUT
    chunk_size: int = CHUNK_SIZE
    cleanup_dir: str = field(default_factory=os.getcwd)
    debug: bool = False

    @classmethod
    def from_env(cls) -> "Settings":
        env = os.environ
        return cls(
            host=env.get("HOST", DEFAULT_HOST),
            port=int(env.get("PORT", DEFAULT_PORT)),
            ytdlp_path=env.get("YT_DLP_PATH") or _default_ytdlp_path(),
            cookies_path=env.get("COOKIES_PATH") or _default_cookies_path(),
            cors_origins=_split_origins(env.get("CORS_ORIGIN")),
            environment=env.get("APP_ENV", "production"),
            log_file=env.get("LOG_FILE", DEFAULT_LOG_FILE),
            request_timeout=float(env.get("REQUEST_TIMEOUT", REQUEST_TIMEOUT)),
            info_timeout=float(env.get("INFO_TIMEOUT", INFO_TIMEOUT)),
            retry_delay=float(env.get("RETRY_DELAY", RETRY_DELAY)),
            http_timeout=float(env.get("HTTP_TIMEOUT", HTTP_TIMEOUT)),
            cleanup_dir=env.get("CLEANUP_DIR") or os.getcwd(),
        )

    @property
    def is_development(self) -> bool:
        return self.environment == "development"

    def has_cookies(self) -> bool:
        return os.path.exists(self.cookies_path)


settings = Settings.from_env()
