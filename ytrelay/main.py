"""
YouTube Downloader API using FastAPI + yt-dlp

Every route takes a JSON (or form encoded) body with a `url` and, for video
downloads, an optional `quality` such as "720p". Metadata and downloads go
through yt-dlp with a chain of fallback strategies; a few secondary routes
use noembed, the watch page, the yt_dlp library or a mirror site instead.
"""

import argparse
import asyncio
import os
import shutil
import subprocess
import sys
import traceback
from contextlib import asynccontextmanager, suppress
from typing import Optional
from urllib.parse import quote

from fastapi import Depends, FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse, StreamingResponse
from pydantic import BaseModel, ValidationError
from starlette.exceptions import HTTPException as StarletteHTTPException

from . import __version__, extractor, providers
from .cleanup import cleanup_loop, cleanup_player_scripts
from .config import IS_WINDOWS, settings
from .errors import ApiError, ChainFailed, StrategyFailed, ToolMissing
from .logs import setup_logging
from .runner import run_process

logger = setup_logging(settings.log_file, settings.debug)

RETRY_SUGGESTION = "Try again later or use a different video"
TROUBLESHOOTING = [
    "Make sure the video is public and not region-restricted",
    "Try a different YouTube video",
    "The service might be temporarily unavailable",
]


# ---------------------- FastAPI Setup ----------------------
@asynccontextmanager
async def lifespan(app: FastAPI):
    logger.info("========== YT-RELAY STARTED ==========")
    logger.info(f"Environment: {settings.environment}")
    logger.info(f"CORS origins: {', '.join(settings.cors_origins) or 'Allow All (*)'}")
    logger.info(f"Cookies path: {settings.cookies_path} ({'found' if settings.has_cookies() else 'missing'})")
    cleanup_task = asyncio.create_task(cleanup_loop())
    yield
    cleanup_task.cancel()
    with suppress(asyncio.CancelledError):
        await cleanup_task
    logger.info("========== YT-RELAY SHUTTING DOWN ==========")


app = FastAPI(title="YouTube Downloader API", version=__version__, lifespan=lifespan)

if settings.cors_origins:
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )
else:
    # reflect whatever origin asks, credentials included
    app.add_middleware(
        CORSMiddleware,
        allow_origin_regex=".*",
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )


@app.middleware("http")
async def log_requests(request: Request, call_next):
    origin = request.headers.get("origin", "none")
    logger.info(f"{request.method} {request.url.path} (origin: {origin})")
    return await call_next(request)


@app.exception_handler(ApiError)
async def api_error_handler(request: Request, exc: ApiError):
    return JSONResponse(status_code=exc.status, content=exc.payload())


@app.exception_handler(StarletteHTTPException)
async def http_error_handler(request: Request, exc: StarletteHTTPException):
    if exc.status_code == 404:
        return JSONResponse(status_code=404, content={"error": "Route not found"})
    return JSONResponse(status_code=exc.status_code, content={"error": str(exc.detail)})


@app.exception_handler(Exception)
async def unhandled_error_handler(request: Request, exc: Exception):
    logger.error(f"Unhandled error on {request.method} {request.url.path}: {exc}", exc_info=True)
    content = {"error": str(exc) or "Internal Server Error"}
    if settings.is_development:
        content["stack"] = traceback.format_exception(type(exc), exc, exc.__traceback__)
    return JSONResponse(status_code=500, content=content)


# ---------------------- Utility Functions ----------------------
class MediaRequest(BaseModel):
    url: Optional[str] = None
    quality: Optional[str] = None


FORM_TYPES = ("application/x-www-form-urlencoded", "multipart/form-data")


async def read_media_request(request: Request) -> MediaRequest:
    """Bind a JSON or form body onto MediaRequest."""
    content_type = request.headers.get("content-type", "")
    try:
        if content_type.startswith(FORM_TYPES):
            form = await request.form()
            data = {key: value for key, value in form.items() if isinstance(value, str)}
        elif (await request.body()).strip():
            data = await request.json()
        else:
            data = {}
    except ValueError:
        raise ApiError(400, "Request body must be JSON")

    if not isinstance(data, dict):
        return MediaRequest()
    try:
        return MediaRequest(**data)
    except ValidationError as e:
        raise ApiError(400, "Invalid request body", details=str(e))


def require_url(body: MediaRequest) -> str:
    url = (body.url or "").strip()
    if not url:
        raise ApiError(400, "YouTube URL is required")
    return url


def require_youtube_url(body: MediaRequest) -> str:
    url = require_url(body)
    if not providers.extract_video_id(url):
        raise ApiError(400, "Invalid YouTube URL")
    return url


def chain_error(exc: ChainFailed, error: str) -> ApiError:
    if isinstance(exc.__cause__, ToolMissing):
        return ApiError(500, "yt-dlp is not available on this server", details=exc.reason)
    if exc.fatal:
        return ApiError(
            400,
            "Video not available",
            details=exc.reason,
            suggestion="This video is private, deleted, region-restricted or not a supported URL",
            methods=exc.tried,
        )
    return ApiError(500, error, details=exc.reason, suggestion=RETRY_SUGGESTION, methods=exc.tried)


def attachment(title: str, ext: str) -> str:
    ascii_name = title.encode("ascii", "ignore").decode("ascii") or "video"
    return f"attachment; filename=\"{ascii_name}.{ext}\"; filename*=UTF-8''{quote(title)}.{ext}"


async def resolve_title(url: str) -> Optional[str]:
    """Title for the download filename: yt-dlp first, then the metadata providers."""
    try:
        info = await extractor.fetch_info_chain(url)
        return info.get("title")
    except ChainFailed as e:
        if e.fatal:
            raise chain_error(e, "Failed to fetch video details")
        logger.warning(f"yt-dlp info failed before download, trying providers: {e.reason}")

    try:
        info = await providers.metadata_chain(url)
        return info.get("title")
    except ChainFailed as e:
        logger.warning(f"No title available for {url}: {e.reason}")
        return None


async def stream_download(body: MediaRequest, kind: str):
    url = require_url(body)
    quality = body.quality if kind == "video" else None
    logger.info(f"Starting {kind} download with yt-dlp: {url} (quality: {quality or 'auto'})")

    title = extractor.safe_title(await resolve_title(url))
    try:
        strategy, stream = await extractor.open_download(url, kind, quality)
    except ChainFailed as e:
        raise chain_error(e, "Download failed")

    media_type, ext = extractor.MEDIA_TYPES[kind]
    logger.info(f"Streaming {kind} '{title}' using method: {strategy.name}")
    return StreamingResponse(
        stream.chunks(),
        media_type=media_type,
        headers={
            "Content-Disposition": attachment(title, ext),
            "X-Download-Method": strategy.name,
        },
    )


async def library_download(body: MediaRequest, kind: str):
    url = require_url(body)
    logger.info(f"Downloading {kind} with the yt_dlp library: {url}")
    try:
        info, fmt, response = await providers.library_stream(url, kind)
    except StrategyFailed as e:
        logger.error(f"Library {kind} download failed for {url}: {e.reason}")
        raise ApiError(400 if e.fatal else 500, f"Failed to download {kind}", details=e.reason)

    title = extractor.safe_title(info.get("title"))
    return StreamingResponse(
        providers.iter_media(response, settings.chunk_size),
        media_type=providers.media_type_for(fmt, kind),
        headers={"Content-Disposition": attachment(title, fmt.get("ext") or "bin")},
    )


def mirror_download(body: MediaRequest, kind: str):
    url = require_url(body)
    logger.info(f"Generating mirror {kind} link for: {url}")
    link = providers.mirror_link(url, kind)
    if link is None:
        raise ApiError(400, "Invalid YouTube URL")
    return link


async def first_line(args) -> str:
    try:
        result = await run_process(args, 15)
    except StrategyFailed as e:
        return f"Error: {e.reason}"
    output = result.stdout.decode("utf-8", "replace").strip()
    if not result.ok:
        return f"Error: exit code {result.returncode}"
    return output.splitlines()[0] if output else ""


# ---------------------- API Routes ----------------------
@app.get("/", summary="Health check")
async def health():
    return {
        "message": "YouTube Downloader API is running",
        "version": __version__,
        "endpoints": {
            "info": "POST /api/info",
            "downloadVideo": "POST /api/download/video",
            "downloadAudio": "POST /api/download/audio",
        },
    }


@app.post("/api/info", summary="Video info via yt-dlp with fallbacks")
async def get_info(body: MediaRequest = Depends(read_media_request)):
    url = require_url(body)
    logger.info(f"Fetching video info with yt-dlp: {url}")
    try:
        return await extractor.fetch_info_chain(url)
    except ChainFailed as e:
        raise chain_error(e, "Unable to fetch video information")


@app.post("/api/info-universal", summary="noembed info enriched by yt-dlp")
async def get_info_universal(body: MediaRequest = Depends(read_media_request)):
    url = require_youtube_url(body)
    logger.info(f"Universal video info fetch for: {url}")

    try:
        backup = await providers.in_thread(providers.noembed_info, url)
    except StrategyFailed as e:
        logger.error(f"Noembed failed for {url}: {e.reason}")
        raise ApiError(
            500,
            "Unable to fetch video information",
            details=e.reason,
            suggestion="Please check the URL and try again",
            troubleshooting=TROUBLESHOOTING,
        )
    backup["method"] = "noembed"

    try:
        detailed = await extractor.fetch_info_chain(url)
    except ChainFailed as e:
        logger.info("yt-dlp failed, using noembed only")
        result = dict(backup)
        result["duration"] = backup["duration"] or await extractor.fetch_duration(url)
        result["warning"] = "Limited functionality - using basic info only"
        result["ytDlpError"] = e.reason
        return result

    merged = {
        key: detailed.get(key) or backup.get(key)
        for key in ("title", "thumbnail", "duration", "author", "formats")
    }
    merged["method"] = detailed["method"]
    merged["fallbackAvailable"] = True
    merged["noembedBackup"] = backup
    return merged


@app.post("/api/info-fallback", summary="Basic info from metadata providers")
@app.post("/api/info-simple", summary="Basic info from metadata providers")
async def get_info_fallback(body: MediaRequest = Depends(read_media_request)):
    url = require_youtube_url(body)
    logger.info(f"Fetching video info with metadata providers: {url}")
    try:
        return await providers.metadata_chain(url)
    except ChainFailed as e:
        raise ApiError(500, "Failed to fetch video information", details=e.reason, methods=e.tried)


@app.post("/api/info-library", summary="Video info via the yt_dlp library")
async def get_info_library(body: MediaRequest = Depends(read_media_request)):
    url = require_url(body)
    logger.info(f"Fetching video info with the yt_dlp library: {url}")
    try:
        return await providers.library_info(url)
    except StrategyFailed as e:
        logger.error(f"Library info failed for {url}: {e.reason}")
        raise ApiError(400 if e.fatal else 500, "Failed to fetch video information", details=e.reason)


@app.post("/api/download/video", summary="Stream a video through yt-dlp")
async def download_video(body: MediaRequest = Depends(read_media_request)):
    return await stream_download(body, "video")


@app.post("/api/download/audio", summary="Stream mp3 audio through yt-dlp")
async def download_audio(body: MediaRequest = Depends(read_media_request)):
    return await stream_download(body, "audio")


@app.post("/api/download/video-library", summary="Stream a muxed video format via the yt_dlp library")
async def download_video_library(body: MediaRequest = Depends(read_media_request)):
    return await library_download(body, "video")


@app.post("/api/download/audio-library", summary="Stream an audio format via the yt_dlp library")
async def download_audio_library(body: MediaRequest = Depends(read_media_request)):
    return await library_download(body, "audio")


@app.post("/api/download/video-simple", summary="Mirror link for a video")
async def download_video_simple(body: MediaRequest = Depends(read_media_request)):
    return mirror_download(body, "video")


@app.post("/api/download/audio-simple", summary="Mirror link for audio")
async def download_audio_simple(body: MediaRequest = Depends(read_media_request)):
    return mirror_download(body, "audio")


@app.get("/api/debug-yt", summary="yt-dlp binary check")
async def debug_yt():
    try:
        result = await extractor.tool_version()
    except StrategyFailed as e:
        return {"path": settings.ytdlp_path, "version": "", "error": e.reason, "platform": sys.platform, "code": None}
    return {
        "path": settings.ytdlp_path,
        "version": result.stdout.decode("utf-8", "replace").strip(),
        "error": result.stderr,
        "platform": sys.platform,
        "code": result.returncode,
    }


@app.get("/api/diag", summary="Server diagnostics")
async def diag(request: Request):
    ytdlp_path = settings.ytdlp_path
    return {
        "status": "online",
        "platform": sys.platform,
        "env": settings.environment,
        "corsOrigin": settings.cors_origins or None,
        "detectedOrigin": request.headers.get("origin", "no origin header"),
        "ffmpeg": await first_line(["ffmpeg", "-version"]),
        "ytDlp": {
            "path": ytdlp_path,
            "exists": bool(shutil.which(ytdlp_path)) or os.path.exists(ytdlp_path),
            "version": await first_line([ytdlp_path, "--version"]),
            "isWindows": IS_WINDOWS,
        },
        "cookiesFolder": {
            "path": settings.cookies_path,
            "exists": settings.has_cookies(),
        },
    }


# ---------------------- yt-dlp Updater ----------------------
def update_yt_dlp(channel: str):
    if channel == "nightly":
        url = "https://github.com/yt-dlp/yt-dlp-nightly-builds/releases/latest/download/yt-dlp.tar.gz"
    elif channel == "master":
        url = "git+https://github.com/yt-dlp/yt-dlp.git"
    else:
        url = "yt-dlp"

    result = subprocess.run([sys.executable, "-m", "pip", "install", "--upgrade", "--force-reinstall", url])
    if result.returncode != 0:
        logger.error(f"yt-dlp {channel} update failed with exit code {result.returncode}")
        sys.exit(result.returncode)
    logger.info(f"yt-dlp updated to {channel} build. Restarting...")
    os.execv(sys.executable, [sys.executable] + sys.argv)


# ---------------------- CLI ----------------------
def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="yt-relay")
    parser.add_argument("--u", "--update", dest="update",
                        choices=["n", "s", "m", "nightly", "stable", "master"],
                        help="Update yt-dlp build")
    parser.add_argument("--v", "--version", action="store_true", dest="version",
                        help="Show yt-dlp version")
    parser.add_argument("--d", "--debug", action="store_true", dest="debug",
                        help="Enable verbose debug logging")
    parser.add_argument("--host", default=settings.host, help="Interface to bind")
    parser.add_argument("--port", type=int, default=settings.port, help="Port to listen on")
    parser.add_argument("--cleanup", action="store_true",
                        help="Delete leftover player scripts now and exit")
    return parser


def main(argv=None):
    parsed = build_parser().parse_args(argv)

    if parsed.debug:
        settings.debug = True
        setup_logging(settings.log_file, debug=True)

    if parsed.version:
        from yt_dlp import version as ytdlp_version
        print(f"\n>>> yt-dlp version: {ytdlp_version.__version__}\n")
        sys.exit(0)

    if parsed.update:
        channel_map = {"n": "nightly", "s": "stable", "m": "master"}
        update_yt_dlp(channel_map.get(parsed.update, parsed.update))

    if parsed.cleanup:
        cleanup_player_scripts()
        sys.exit(0)

    import uvicorn
    uvicorn.run(app, host=parsed.host, port=parsed.port, timeout_keep_alive=int(settings.request_timeout))


if __name__ == "__main__":
    main()
