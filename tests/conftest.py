import os
import stat
import sys
import tempfile
import textwrap

import pytest
import requests

_scratch = tempfile.mkdtemp(prefix="ytrelay-tests-")
os.environ["LOG_FILE"] = os.path.join(_scratch, "logs.txt")
os.environ["COOKIES_PATH"] = os.path.join(_scratch, "no-cookies.txt")
os.environ["CLEANUP_DIR"] = _scratch
os.environ["RETRY_DELAY"] = "0"
os.environ["APP_ENV"] = "test"
os.environ.pop("CORS_ORIGIN", None)

from ytrelay.config import settings  # noqa: E402

FAKE_YTDLP = """\
#!{python}
import json
import os
import sys
import time

args = sys.argv[1:]

log = os.environ.get("FAKE_YTDLP_LOG")
if log:
    with open(log, "a") as f:
        f.write(" ".join(args) + "\\n")

if "--version" in args:
    print("2099.01.01")
    sys.exit(0)

ua = args[args.index("--user-agent") + 1] if "--user-agent" in args else ""
fail_for = [s for s in os.environ.get("FAKE_FAIL_UA", "").split("|") if s]
failing = any(s in ua for s in fail_for)
if os.environ.get("FAKE_NEED_COOKIES") == "1" and "--cookies" not in args:
    failing = True

if failing:
    sys.stderr.write(os.environ.get("FAKE_ERROR", "ERROR: Sign in to confirm you're not a bot") + "\\n")
    sys.exit(1)

if "--dump-json" in args:
    print(json.dumps({{
        "title": "Fake Video: Test!",
        "thumbnail": "https://i.ytimg.com/vi/dQw4w9WgXcQ/hq.jpg",
        "duration": 212,
        "uploader": "Fake Channel",
        "formats": [{{"format_id": "18", "ext": "mp4"}}],
    }}))
    sys.exit(0)

if "--get-duration" in args:
    print("3:32")
    sys.exit(0)

if "-o" in args:
    sys.stderr.write("[download]  50.0% of 3.00KiB\\r[download] 100% of 3.00KiB\\n")
    sys.stderr.flush()
    for _ in range(int(os.environ.get("FAKE_CHUNKS", "3"))):
        sys.stdout.buffer.write(b"x" * 1000)
        sys.stdout.buffer.flush()
        time.sleep(float(os.environ.get("FAKE_CHUNK_DELAY", "0")))
    sys.exit(int(os.environ.get("FAKE_EXIT", "0")))

sys.exit(2)
"""


@pytest.fixture(autouse=True)
def no_network(monkeypatch):
    def refuse(*args, **kwargs):
        raise requests.ConnectionError("network disabled in tests")

    monkeypatch.setattr(requests, "get", refuse)


@pytest.fixture
def fake_ytdlp(tmp_path, monkeypatch):
    script = tmp_path / "yt-dlp"
    script.write_text(textwrap.dedent(FAKE_YTDLP.format(python=sys.executable)))
    script.chmod(script.stat().st_mode | stat.S_IXUSR | stat.S_IXGRP | stat.S_IXOTH)
    monkeypatch.setattr(settings, "ytdlp_path", str(script))
    monkeypatch.setenv("FAKE_YTDLP_LOG", str(tmp_path / "calls.log"))
    return script


@pytest.fixture
def calls(tmp_path):
    def read():
        path = tmp_path / "calls.log"
        return path.read_text().splitlines() if path.exists() else []

    return read


@pytest.fixture
def cookie_file(tmp_path, monkeypatch):
    path = tmp_path / "cookies.txt"
    path.write_text("# Netscape HTTP Cookie File\n")
    monkeypatch.setattr(settings, "cookies_path", str(path))
    return path


class FakeResponse:
    def __init__(self, status_code=200, json_data=None, text="", chunks=()):
        self.status_code = status_code
        self._json = json_data
        self.text = text
        self.chunks = list(chunks)
        self.ok = status_code < 400
        self.closed = False

    def iter_content(self, chunk_size=1):
        yield from self.chunks

    def close(self):
        self.closed = True

    def json(self):
        if self._json is None:
            raise ValueError("No JSON object could be decoded")
        return self._json

    def raise_for_status(self):
        if not self.ok:
            raise requests.HTTPError(f"{self.status_code} Error")


@pytest.fixture
def fake_response():
    return FakeResponse
