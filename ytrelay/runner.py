"""
Child process lifecycle for the external tool.

run_process() is for short captured runs (--dump-json, --version).
ProcessStream is for downloads: it pipes stdout to the caller chunk by chunk,
enforces a wall-clock deadline and kills the child as soon as the consumer
goes away.
"""

import asyncio
import contextlib
import logging
import re
from collections import deque
from dataclasses import dataclass
from typing import List, Optional

from .chain import classify
from .config import CHUNK_SIZE
from .errors import ProcessTimeout, StrategyFailed, ToolMissing

logger = logging.getLogger(__name__)

STDERR_TAIL = 20


@dataclass
class ProcessResult:
    returncode: int
    stdout: bytes
    stderr: str

    @property
    def ok(self) -> bool:
        return self.returncode == 0


async def _spawn(args: List[str]):
    try:
        return await asyncio.create_subprocess_exec(
            *args,
            stdout=asyncio.subprocess.PIPE,
            stderr=asyncio.subprocess.PIPE,
        )
    except (FileNotFoundError, PermissionError) as e:
        logger.error(f"Failed to start process {args[0]}: {e}")
        raise ToolMissing(args[0], str(e)) from e


def _kill(process):
    if process is not None and process.returncode is None:
        with contextlib.suppress(ProcessLookupError):
            process.kill()


async def run_process(args: List[str], timeout: float) -> ProcessResult:
    process = await _spawn(args)
    try:
        stdout, stderr = await asyncio.wait_for(process.communicate(), timeout)
    except asyncio.TimeoutError:
        logger.warning(f"{args[0]} did not finish within {timeout:g}s, killing it")
        _kill(process)
        await process.wait()
        raise ProcessTimeout(timeout)
    except BaseException:
        # cancelled by the caller
        _kill(process)
        raise
    return ProcessResult(process.returncode, stdout, stderr.decode("utf-8", "replace"))


class ProcessStream:
    def __init__(self, args: List[str], timeout: float, chunk_size: int = CHUNK_SIZE):
        self.args = args
        self.timeout = timeout
        self.chunk_size = chunk_size
        self.process = None
        self.stderr_lines = deque(maxlen=STDERR_TAIL)
        self.bytes_sent = 0
        self.killed = False
        self.finished = False
        self._first = b""
        self._deadline = None
        self._stderr_task = None

    @property
    def stderr_tail(self) -> str:
        return "\n".join(self.stderr_lines)

    def remaining(self) -> float:
        return max(0.0, self._deadline - asyncio.get_running_loop().time())

    async def start(self) -> bytes:
        """Spawn the child and wait for its first chunk of output."""
        self._deadline = asyncio.get_running_loop().time() + self.timeout
        self.process = await _spawn(self.args)
        self._stderr_task = asyncio.create_task(self._drain_stderr())

        try:
            chunk = await self._read()
        except BaseException:
            self.kill()
            raise

        if not chunk:
            code = await self._wait_exit()
            detail = self.stderr_tail or "Process exited with no output"
            self.kill()
            raise StrategyFailed(f"Exit code {code}: {detail}", fatal=classify(detail))

        logger.info("First data chunk received")
        self._first = chunk
        return chunk

    async def chunks(self):
        try:
            if self._first:
                chunk, self._first = self._first, b""
                self.bytes_sent += len(chunk)
                yield chunk
            while True:
                chunk = await self._read()
                if not chunk:
                    break
                self.bytes_sent += len(chunk)
                yield chunk

            code = await self._wait_exit()
            self.finished = True
            if code == 0:
                logger.info(f"Download completed successfully ({self.bytes_sent} bytes)")
            else:
                logger.error(f"yt-dlp exited with code {code} mid-stream: {self.stderr_tail}")
        except ProcessTimeout:
            logger.error("Download timeout, killing process")
        finally:
            if not self.finished and not self.killed:
                logger.info("Client disconnected, killing yt-dlp process")
            self.kill()

    def kill(self):
        if self.process is not None and self.process.returncode is None:
            self.killed = True
        _kill(self.process)
        if self._stderr_task is not None and not self._stderr_task.done():
            self._stderr_task.cancel()

    async def _read(self) -> bytes:
        try:
            return await asyncio.wait_for(self.process.stdout.read(self.chunk_size), self.remaining())
        except asyncio.TimeoutError:
            self.kill()
            raise ProcessTimeout(self.timeout)

    async def _wait_exit(self) -> Optional[int]:
        try:
            code = await asyncio.wait_for(self.process.wait(), self.remaining())
        except asyncio.TimeoutError:
            self.kill()
            raise ProcessTimeout(self.timeout)
        # let the stderr reader catch the tail end of the output
        await asyncio.wait({self._stderr_task}, timeout=1)
        return code

    async def _drain_stderr(self):
        pending = ""
        while True:
            data = await self.process.stderr.read(4096)
            if not data:
                break
            pending += data.decode("utf-8", "replace")
            *lines, pending = re.split(r"[\r\n]", pending)
            for line in lines:
                self._keep(line)
        self._keep(pending)

    def _keep(self, line: str):
        line = line.strip()
        if line:
            self.stderr_lines.append(line)
            logger.debug(f"yt-dlp stderr: {line}")
