"""Pool of realistic desktop browser User-Agent strings."""

from __future__ import annotations

from typing import Iterable, List

DEFAULT_USER_AGENT = (
    "Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36 "
    "(KHTML, like Gecko) Chrome/120.0.0.0 Safari/537.36"
)

BROWSER_USER_AGENTS = (
    DEFAULT_USER_AGENT,
    "Mozilla/5.0 (Macintosh; Intel Mac OS X 10_15_7) AppleWebKit/537.36 "
    "(KHTML, like Gecko) Chrome/120.0.0.0 Safari/537.36",
    "Mozilla/5.0 (Windows NT 10.0; Win64; x64; rv:121.0) Gecko/20100101 Firefox/121.0",
)


class UserAgentPool:
    """Hand out browser user agents; county sites reject obvious bots."""

    def __init__(self, user_agents: Iterable[str] | None = None) -> None:
        self._uas: List[str] = [ua.strip() for ua in (user_agents or ()) if ua.strip()]
        if not self._uas:
            self._uas = list(BROWSER_USER_AGENTS)

    def preferred(self) -> str:
        """Stable Windows Chrome agent when one is configured, else the first entry."""

        return next((ua for ua in self._uas if "Windows NT" in ua), self._uas[0])


__all__ = ["BROWSER_USER_AGENTS", "DEFAULT_USER_AGENT", "UserAgentPool"]
