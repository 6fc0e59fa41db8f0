"""How yt-dlp is invoked on each attempt: cookies and user agent."""

from dataclasses import dataclass
from typing import List

from .config import settings

DESKTOP_UA = (
    "Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36 "
    "(KHTML, like Gecko) Chrome/91.0.4472.124 Safari/537.36"
)
ALT_DESKTOP_UA = (
    "Mozilla/5.0 (Macintosh; Intel Mac OS X 10_15_7) AppleWebKit/537.36 "
    "(KHTML, like Gecko) Chrome/120.0.0.0 Safari/537.36"
)
MOBILE_UA = (
    "Mozilla/5.0 (iPhone; CPU iPhone OS 17_0 like Mac OS X) AppleWebKit/605.1.15 "
    "(KHTML, like Gecko) Version/17.0 Mobile/15E148 Safari/604.1"
)


@dataclass(frozen=True)
class Strategy:
    name: str
    use_cookies: bool = False
    user_agent: str = DESKTOP_UA


WITH_COOKIES = Strategy("with cookies", use_cookies=True)
WITHOUT_COOKIES = Strategy("without cookies")
DIFFERENT_UA = Strategy("different UA", user_agent=ALT_DESKTOP_UA)
MOBILE = Strategy("mobile UA", user_agent=MOBILE_UA)

INFO_STRATEGIES = (WITH_COOKIES, WITHOUT_COOKIES, DIFFERENT_UA, MOBILE)
DOWNLOAD_STRATEGIES = (WITH_COOKIES, WITHOUT_COOKIES, DIFFERENT_UA)


def usable(strategies) -> List[Strategy]:
    """Drop cookie strategies when there is no cookie file to hand over."""
    have_cookies = settings.has_cookies()
    return [s for s in strategies if have_cookies or not s.use_cookies]


def base_args(strategy: Strategy) -> List[str]:
    args = ["--no-playlist", "--no-check-certificate", "--user-agent", strategy.user_agent]
    if strategy.use_cookies and settings.has_cookies():
        args += ["--cookies", settings.cookies_path]
    return args
