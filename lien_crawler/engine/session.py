"""Browser sessions used to drive county search forms."""

from __future__ import annotations

from threading import Lock
from typing import Protocol

from playwright.sync_api import Error as PlaywrightError
from playwright.sync_api import TimeoutError as PlaywrightTimeoutError

from ..config import JurisdictionProfile
from ..errors import PageLoadTimeout, SelectorNotFound, TransientNetworkError
from ..infra import UserAgentPool
from .browser import BrowserHost

_NETWORK_MARKERS = ("net::", "NS_ERROR", "ECONNRESET", "ECONNREFUSED", "ERR_")


class SearchSession(Protocol):
    """Stateful page the search engine drives.

    Implementations raise ``PageLoadTimeout`` when navigation times out,
    ``TransientNetworkError`` on connection failures and ``SelectorNotFound``
    when an element cannot be located.
    """

    def open(self, url: str) -> None:
        """Navigate to ``url`` and wait for the page to load."""

    def fill(self, selector: str, value: str) -> None:
        """Replace the content of an input."""

    def select(self, selector: str, value: str) -> None:
        """Choose an option of a <select> by value or label."""

    def click(self, selector: str) -> None:
        """Click an element and wait for any navigation it triggers."""

    def exists(self, selector: str) -> bool:
        """Return whether an element matching ``selector`` is present."""

    def wait(self, milliseconds: int) -> None:
        """Pause inside the session without issuing requests."""

    def content(self) -> str:
        """Return the current page HTML."""

    def cookies(self) -> dict[str, str]:
        """Return cookies established so far."""

    def close(self) -> None:
        """Release browser resources."""


def _translate(exc: Exception, url_or_selector: str) -> Exception:
    if isinstance(exc, PlaywrightTimeoutError):
        return PageLoadTimeout(f"Timed out on {url_or_selector}: {exc}")
    message = str(exc)
    if any(marker in message for marker in _NETWORK_MARKERS):
        return TransientNetworkError(f"{url_or_selector}: {message}")
    return exc


class PlaywrightSearchSession:
    """One browser context and page taken from a shared ``BrowserHost``."""

    def __init__(
        self,
        profile: JurisdictionProfile,
        host: BrowserHost,
        ua_pool: UserAgentPool | None = None,
    ) -> None:
        self._profile = profile
        self._host = host
        self._user_agent = (ua_pool or UserAgentPool()).preferred()
        self._lock = Lock()
        self._context = None
        self._page = None

    def _ensure_started(self) -> None:
        if self._page is not None:
            return
        self._context = self._host.new_context(
            user_agent=self._user_agent,
            viewport={"width": 1920, "height": 1080},
            accept_downloads=True,
        )
        try:
            if self._profile.headers:
                self._context.set_extra_http_headers(dict(self._profile.headers))
            self._page = self._context.new_page()
        except PlaywrightError:
            context, self._context = self._context, None
            self._host.release(context)
            raise

    # ------------------------------------------------------------------
    def open(self, url: str) -> None:
        with self._lock:
            try:
                self._ensure_started()
                self._page.goto(url, wait_until="domcontentloaded")
            except PlaywrightError as exc:
                raise _translate(exc, url) from exc

    def fill(self, selector: str, value: str) -> None:
        with self._lock:
            locator = self._require(selector)
            locator.fill(value)

    def select(self, selector: str, value: str) -> None:
        with self._lock:
            locator = self._require(selector)
            try:
                locator.select_option(value=value)
            except PlaywrightError:
                locator.select_option(label=value)

    def click(self, selector: str) -> None:
        with self._lock:
            locator = self._require(selector)
            try:
                locator.click()
                self._page.wait_for_load_state("domcontentloaded")
            except PlaywrightError as exc:
                raise _translate(exc, selector) from exc

    def exists(self, selector: str) -> bool:
        with self._lock:
            self._ensure_started()
            return self._page.locator(selector).count() > 0

    def wait(self, milliseconds: int) -> None:
        with self._lock:
            self._ensure_started()
            self._page.wait_for_timeout(milliseconds)

    def content(self) -> str:
        with self._lock:
            self._ensure_started()
            return self._page.content()

    def cookies(self) -> dict[str, str]:
        with self._lock:
            if self._context is None:
                return {}
            return {cookie["name"]: cookie["value"] for cookie in self._context.cookies()}

    def close(self) -> None:
        with self._lock:
            if self._page is not None:
                self._page.close()
                self._page = None
            if self._context is not None:
                context, self._context = self._context, None
                self._host.release(context)

    # ------------------------------------------------------------------
    def _require(self, selector: str):
        self._ensure_started()
        locator = self._page.locator(selector).first
        try:
            locator.wait_for(state="attached", timeout=self._host.config.timeout_ms)
        except PlaywrightTimeoutError as exc:
            raise SelectorNotFound(selector, self._page.url) from exc
        return locator


__all__ = ["PlaywrightSearchSession", "SearchSession"]
