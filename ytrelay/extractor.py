"""
yt-dlp command line operations: metadata dumps and streamed downloads.
"""

import json
import logging
import re
from typing import List, Optional

from . import strategies
from .chain import classify, last_lines, run_chain
from .config import settings
from .errors import StrategyFailed
from .runner import ProcessStream, run_process
from .strategies import Strategy

logger = logging.getLogger(__name__)

DEFAULT_VIDEO_FORMAT = "bestvideo[ext=mp4]+bestaudio[ext=m4a]/best[ext=mp4]/best"
AUDIO_FORMAT = "bestaudio[ext=m4a]/bestaudio"

MEDIA_TYPES = {
    "video": ("video/mp4", "mp4"),
    "audio": ("audio/mpeg", "mp3"),
}


def tool_args(*args) -> List[str]:
    return [settings.ytdlp_path, *args]


def safe_title(title: Optional[str]) -> str:
    cleaned = re.sub(r"[^\w\s]", "", title or "")
    cleaned = re.sub(r"\s+", "_", cleaned.strip())
    return cleaned or "video"


def format_selector(quality: Optional[str]) -> str:
    """
    Map a UI quality label such as "720p" onto a yt-dlp format selector.
    Anything that isn't "<digits>p" falls back to the best mp4 available.
    """
    match = re.fullmatch(r"(\d{2,4})p", (quality or "").strip().lower())
    if not match:
        return DEFAULT_VIDEO_FORMAT
    height = match.group(1)
    return (
        f"bestvideo[height<={height}][ext=mp4]+bestaudio[ext=m4a]"
        f"/best[height<={height}][ext=mp4]/best[height<={height}]"
    )


def parse_duration(text: str) -> Optional[int]:
    parts = (text or "").strip().split(":")
    if not parts or not all(p.isdigit() for p in parts) or len(parts) > 3:
        return None
    seconds = 0
    for part in parts:
        seconds = seconds * 60 + int(part)
    return seconds


def summarize(info: dict) -> dict:
    return {
        "title": info.get("title"),
        "thumbnail": info.get("thumbnail"),
        "duration": info.get("duration"),
        "author": info.get("uploader"),
        "formats": info.get("formats") or [],
    }


# ---------------------- Metadata ----------------------
async def fetch_info(url: str, strategy: Strategy) -> dict:
    args = tool_args("--dump-json", *strategies.base_args(strategy), url)
    result = await run_process(args, settings.info_timeout)

    if not result.ok:
        detail = last_lines(result.stderr) or "no diagnostic output"
        raise StrategyFailed(f"Exit code {result.returncode}: {detail}", fatal=classify(result.stderr))

    try:
        info = json.loads(result.stdout.decode("utf-8", "replace"))
    except ValueError as e:
        raise StrategyFailed(f"JSON parse failed: {e}")
    if not isinstance(info, dict):
        raise StrategyFailed("JSON parse failed: expected an object")
    return summarize(info)


async def fetch_info_chain(url: str) -> dict:
    strategy, info = await run_chain(
        strategies.usable(strategies.INFO_STRATEGIES),
        lambda s: fetch_info(url, s),
        delay=settings.retry_delay,
    )
    info["method"] = strategy.name
    return info


async def fetch_duration(url: str) -> Optional[int]:
    args = tool_args(
        "--get-duration",
        *strategies.base_args(strategies.WITHOUT_COOKIES),
        url,
    )
    try:
        result = await run_process(args, settings.info_timeout)
    except StrategyFailed as e:
        logger.info(f"Duration fetch failed: {e.reason}")
        return None
    if not result.ok:
        return None
    return parse_duration(result.stdout.decode("utf-8", "replace"))


async def tool_version():
    return await run_process(tool_args("--version"), settings.info_timeout)


# ---------------------- Downloads ----------------------
def download_args(kind: str, quality: Optional[str], strategy: Strategy) -> List[str]:
    args = ["-o", "-", "--newline"]
    if kind == "audio":
        # post-processors do not run when writing to stdout, so the bytes are the
        # m4a/webm source even though the response is labelled mp3
        args += [
            "-f", AUDIO_FORMAT,
            "--extract-audio",
            "--audio-format", "mp3",
            "--audio-quality", "0",
        ]
    else:
        args += ["-f", format_selector(quality), "--merge-output-format", "mp4"]
    return args + strategies.base_args(strategy)


async def start_download(url: str, kind: str, quality: Optional[str], strategy: Strategy) -> ProcessStream:
    args = tool_args(*download_args(kind, quality, strategy), url)
    logger.debug(f"Download args: {' '.join(args)}")
    stream = ProcessStream(args, settings.request_timeout, settings.chunk_size)
    await stream.start()
    return stream


async def open_download(url: str, kind: str, quality: Optional[str] = None):
    """Returns (strategy, stream) for the first strategy that produced data."""
    return await run_chain(
        strategies.usable(strategies.DOWNLOAD_STRATEGIES),
        lambda s: start_download(url, kind, quality, s),
    )
