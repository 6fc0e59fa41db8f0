import asyncio
import signal
import sys

import pytest

from ytrelay import runner
from ytrelay.errors import ProcessTimeout, StrategyFailed, ToolMissing
from ytrelay.runner import ProcessStream, run_process

PY = sys.executable

WRITE_THEN_HANG = (
    "import sys, time\n"
    "sys.stdout.buffer.write(b'a' * 10)\n"
    "sys.stdout.buffer.flush()\n"
    "time.sleep(30)\n"
)


async def collect(stream):
    return b"".join([chunk async for chunk in stream.chunks()])


def test_run_process_captures_output():
    script = "import sys; print('hello'); sys.stderr.write('warn\\n'); sys.exit(4)"
    result = asyncio.run(run_process([PY, "-c", script], timeout=10))

    assert result.returncode == 4
    assert not result.ok
    assert result.stdout.strip() == b"hello"
    assert result.stderr.strip() == "warn"


def test_run_process_times_out():
    with pytest.raises(ProcessTimeout) as excinfo:
        asyncio.run(run_process([PY, "-c", "import time; time.sleep(30)"], timeout=0.5))
    assert not excinfo.value.fatal


def test_run_process_kills_child_when_cancelled(monkeypatch):
    spawned = []
    real_spawn = runner._spawn

    async def spawn(args):
        process = await real_spawn(args)
        spawned.append(process)
        return process

    monkeypatch.setattr(runner, "_spawn", spawn)

    async def scenario():
        task = asyncio.create_task(run_process([PY, "-c", "import time; time.sleep(30)"], timeout=60))
        while not spawned:
            await asyncio.sleep(0.01)
        task.cancel()
        with pytest.raises(asyncio.CancelledError):
            await task
        return await asyncio.wait_for(spawned[0].wait(), 5)

    assert asyncio.run(scenario()) == -signal.SIGKILL


def test_missing_binary_is_fatal():
    with pytest.raises(ToolMissing) as excinfo:
        asyncio.run(run_process(["/nonexistent/yt-dlp", "--version"], timeout=5))
    assert excinfo.value.fatal


def test_stream_relays_everything_and_finishes():
    script = (
        "import sys\n"
        "for i in range(3):\n"
        "    sys.stdout.buffer.write(bytes([65 + i]) * 5)\n"
        "    sys.stdout.buffer.flush()\n"
    )

    async def scenario():
        stream = ProcessStream([PY, "-c", script], timeout=10, chunk_size=4)
        first = await stream.start()
        body = await collect(stream)
        return stream, first, body

    stream, first, body = asyncio.run(scenario())

    assert 1 <= len(first) <= 4
    assert body.startswith(first)
    assert body == b"AAAAABBBBBCCCCC"
    assert stream.finished
    assert not stream.killed
    assert stream.bytes_sent == 15


def test_stream_without_output_is_a_failed_attempt():
    script = "import sys; sys.stderr.write('ERROR: Sign in to confirm you are not a bot\\n'); sys.exit(3)"
    stream = ProcessStream([PY, "-c", script], timeout=10)

    with pytest.raises(StrategyFailed) as excinfo:
        asyncio.run(stream.start())

    assert "Exit code 3" in excinfo.value.reason
    assert "Sign in to confirm" in excinfo.value.reason
    assert not excinfo.value.fatal


def test_unavailable_video_without_output_is_fatal():
    script = "import sys; sys.stderr.write('ERROR: [youtube] x: Video unavailable\\n'); sys.exit(1)"
    stream = ProcessStream([PY, "-c", script], timeout=10)

    with pytest.raises(StrategyFailed) as excinfo:
        asyncio.run(stream.start())
    assert excinfo.value.fatal


def test_closing_the_stream_kills_the_child():
    async def scenario():
        stream = ProcessStream([PY, "-c", WRITE_THEN_HANG], timeout=20)
        await stream.start()
        chunks = stream.chunks()
        first = await chunks.__anext__()
        await chunks.aclose()
        code = await asyncio.wait_for(stream.process.wait(), 5)
        return stream, first, code

    stream, first, code = asyncio.run(scenario())

    assert first == b"a" * 10
    assert stream.killed
    assert not stream.finished
    assert code != 0


def test_deadline_kills_a_stalled_stream():
    async def scenario():
        stream = ProcessStream([PY, "-c", WRITE_THEN_HANG], timeout=1)
        await stream.start()
        body = await asyncio.wait_for(collect(stream), 10)
        await asyncio.wait_for(stream.process.wait(), 5)
        return stream, body

    stream, body = asyncio.run(scenario())

    assert body == b"a" * 10
    assert stream.killed
    assert not stream.finished


def test_stderr_tail_is_kept():
    script = (
        "import sys\n"
        "for i in range(30):\n"
        "    sys.stderr.write('line %d\\r' % i)\n"
        "sys.stderr.flush()\n"
        "sys.stdout.buffer.write(b'ok')\n"
    )

    async def scenario():
        stream = ProcessStream([PY, "-c", script], timeout=10)
        await stream.start()
        await collect(stream)
        return stream

    stream = asyncio.run(scenario())

    assert len(stream.stderr_lines) == 20
    assert stream.stderr_lines[-1] == "line 29"
