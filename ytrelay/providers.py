"""
Metadata and media sources that don't go through the yt-dlp binary:
noembed, the public watch page, the in-process yt_dlp library and the
mirror front-end links.
"""

import asyncio
import logging
import re
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass
from typing import Callable, Optional

import requests
import yt_dlp
from yt_dlp.utils import DownloadError
from bs4 import BeautifulSoup

from .chain import classify, run_chain
from .config import MIRROR_URL, NOEMBED_URL, WATCH_URL, settings
from .errors import StrategyFailed
from .logs import YTDLPLogger
from .strategies import DESKTOP_UA

logger = logging.getLogger(__name__)

executor = ThreadPoolExecutor(max_workers=3)

VIDEO_ID_RE = re.compile(
    r"(?:youtube\.com/watch\?(?:.*&)?v=|youtu\.be/|youtube\.com/embed/|youtube\.com/shorts/)"
    r"([A-Za-z0-9_-]{11})"
)
ISO_DURATION_RE = re.compile(r"^P(?:(\d+)D)?T?(?:(\d+)H)?(?:(\d+)M)?(?:(\d+)S)?$")


async def in_thread(func, *args):
    return await asyncio.get_event_loop().run_in_executor(executor, func, *args)


def extract_video_id(url: Optional[str]) -> Optional[str]:
    match = VIDEO_ID_RE.search(url or "")
    return match.group(1) if match else None


def require_video_id(url: str) -> str:
    video_id = extract_video_id(url)
    if not video_id:
        raise StrategyFailed("Invalid YouTube URL", fatal=True)
    return video_id


def parse_iso_duration(value: Optional[str]) -> Optional[int]:
    match = ISO_DURATION_RE.match(value or "")
    if not match or not any(match.groups()):
        return None
    days, hours, minutes, seconds = (int(g or 0) for g in match.groups())
    return ((days * 24 + hours) * 60 + minutes) * 60 + seconds


# ---------------------- noembed ----------------------
def noembed_info(url: str) -> dict:
    video_id = require_video_id(url)
    try:
        response = requests.get(
            NOEMBED_URL,
            params={"url": WATCH_URL.format(video_id=video_id)},
            timeout=settings.http_timeout,
        )
        response.raise_for_status()
        data = response.json()
    except (requests.RequestException, ValueError) as e:
        raise StrategyFailed(f"Noembed failed: {e}")

    if data.get("error"):
        raise StrategyFailed(f"Noembed failed: {data['error']}")

    return {
        "title": data.get("title") or "Unknown Title",
        "thumbnail": data.get("thumbnail_url") or "",
        "author": data.get("author_name") or "Unknown Channel",
        "duration": None,
        "formats": [],
    }


# ---------------------- Watch page ----------------------
def parse_watch_page(html: str) -> dict:
    soup = BeautifulSoup(html, "html.parser")

    def meta(attr, key):
        tag = soup.find("meta", attrs={attr: key})
        return tag.get("content") if tag else None

    title = meta("property", "og:title") or meta("name", "title")
    if not title:
        raise StrategyFailed("Watch page carried no metadata")

    author_tag = soup.select_one('[itemprop="author"] [itemprop="name"]')
    author = author_tag.get("content") if author_tag else None

    return {
        "title": title,
        "thumbnail": meta("property", "og:image") or "",
        "author": author or "Unknown Channel",
        "duration": parse_iso_duration(meta("itemprop", "duration")),
        "formats": [],
    }


def watch_page_info(url: str) -> dict:
    video_id = require_video_id(url)
    headers = {"User-Agent": DESKTOP_UA, "Accept-Language": "en-US,en;q=0.9"}
    try:
        response = requests.get(WATCH_URL.format(video_id=video_id), headers=headers, timeout=settings.http_timeout)
        response.raise_for_status()
    except requests.RequestException as e:
        raise StrategyFailed(f"Watch page failed: {e}")
    return parse_watch_page(response.text)


@dataclass(frozen=True)
class Provider:
    name: str
    fetch: Callable[[str], dict]


METADATA_PROVIDERS = (
    Provider("noembed", noembed_info),
    Provider("watch page", watch_page_info),
)


async def metadata_chain(url: str) -> dict:
    provider, info = await run_chain(METADATA_PROVIDERS, lambda p: in_thread(p.fetch, url))
    info["method"] = provider.name
    return info


# ---------------------- yt_dlp library ----------------------
def library_extract(url: str) -> dict:
    ydl_opts = {
        "noplaylist": True,
        "cookiefile": settings.cookies_path if settings.has_cookies() else None,
        "http_headers": {"User-Agent": DESKTOP_UA},
        "logger": YTDLPLogger(),
        "quiet": not settings.debug,
        "verbose": settings.debug,
    }
    try:
        with yt_dlp.YoutubeDL(ydl_opts) as ydl:
            info = ydl.extract_info(url, download=False)
    except DownloadError as e:
        raise StrategyFailed(str(e), fatal=classify(str(e)))
    if not info:
        raise StrategyFailed("yt-dlp returned no information")
    return info


async def library_info(url: str) -> dict:
    info = await in_thread(library_extract, url)
    thumbnails = info.get("thumbnails") or [{}]
    return {
        "title": info.get("title"),
        "thumbnail": info.get("thumbnail") or thumbnails[-1].get("url"),
        "duration": int(info["duration"]) if info.get("duration") else None,
        "author": info.get("uploader") or info.get("channel"),
        "method": "library",
    }


def _has(codec) -> bool:
    return codec not in (None, "none")


def pick_format(formats, kind: str) -> Optional[dict]:
    """Best directly fetchable format: audio-only by bitrate, muxed video by height."""
    formats = [f for f in formats or [] if f.get("url") and f.get("protocol", "https").startswith("http")]
    if kind == "audio":
        candidates = [f for f in formats if _has(f.get("acodec")) and not _has(f.get("vcodec"))]
        return max(candidates, key=lambda f: f.get("abr") or 0, default=None)
    candidates = [f for f in formats if _has(f.get("acodec")) and _has(f.get("vcodec"))]
    return max(candidates, key=lambda f: (f.get("ext") == "mp4", f.get("height") or 0), default=None)


def media_type_for(fmt: dict, kind: str) -> str:
    ext = fmt.get("ext") or ("m4a" if kind == "audio" else "mp4")
    if kind == "audio":
        return "audio/mp4" if ext == "m4a" else f"audio/{ext}"
    return f"video/{ext}"


def open_media(fmt: dict) -> requests.Response:
    headers = fmt.get("http_headers") or {"User-Agent": DESKTOP_UA}
    try:
        response = requests.get(fmt["url"], headers=headers, stream=True, timeout=settings.http_timeout)
    except requests.RequestException as e:
        raise StrategyFailed(f"Media request failed: {e}")
    if not response.ok:
        response.close()
        raise StrategyFailed(f"Media request failed: HTTP {response.status_code}")
    return response


async def iter_media(response: requests.Response, chunk_size: int):
    """Relay the upstream body; the response is closed however the consumer stops."""
    chunks = response.iter_content(chunk_size=chunk_size)
    try:
        while True:
            chunk = await in_thread(next, chunks, None)
            if chunk is None:
                break
            if chunk:
                yield chunk
    finally:
        response.close()
        logger.info("Library stream closed")


async def library_stream(url: str, kind: str):
    """Returns (info, format, open response) for a direct library download."""
    info = await in_thread(library_extract, url)
    fmt = pick_format(info.get("formats"), kind)
    if fmt is None:
        raise StrategyFailed(f"No directly downloadable {kind} format found")
    logger.info(f"Library stream using format {fmt.get('format_id')} ({fmt.get('ext')})")
    response = await in_thread(open_media, fmt)
    return info, fmt, response


# ---------------------- Mirror links ----------------------
def mirror_link(url: str, kind: str) -> Optional[dict]:
    video_id = extract_video_id(url)
    if not video_id:
        return None
    if kind == "audio":
        return {
            "message": "Direct audio download link generated",
            "downloadUrl": MIRROR_URL.format(video_id=video_id) + "&format=mp3",
            "note": "Open this link in browser to download audio",
        }
    return {
        "message": "Direct download link generated",
        "downloadUrl": MIRROR_URL.format(video_id=video_id),
        "note": "Open this link in browser to download video",
    }
