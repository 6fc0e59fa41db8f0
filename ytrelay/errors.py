"""Exceptions shared by the fallback chains and the HTTP layer."""

from typing import List, Optional


class ApiError(Exception):
    """An error that maps straight onto a JSON response."""

    def __init__(self, status: int, error: str, **extra):
        super().__init__(error)
        self.status = status
        self.error = error
        self.extra = extra

    def payload(self) -> dict:
        body = {"error": self.error}
        body.update({k: v for k, v in self.extra.items() if v is not None})
        return body


class StrategyFailed(Exception):
    """One attempt failed. Fatal failures stop the chain."""

    def __init__(self, reason: str, fatal: bool = False):
        super().__init__(reason)
        self.reason = reason
        self.fatal = fatal


class ChainFailed(Exception):
    def __init__(self, reason: str, tried: List[str], fatal: bool = False):
        super().__init__(reason)
        self.reason = reason
        self.tried = tried
        self.fatal = fatal


class ToolMissing(StrategyFailed):
    def __init__(self, path: str, detail: Optional[str] = None):
        super().__init__(f"Failed to start {path}: {detail or 'executable not found'}", fatal=True)
        self.path = path


class ProcessTimeout(StrategyFailed):
    def __init__(self, timeout: float):
        super().__init__(f"Timed out after {timeout:g}s")
        self.timeout = timeout
