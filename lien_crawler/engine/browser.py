"""Shared Chromium instance for every browser context opened on a thread."""

from __future__ import annotations

import threading
from dataclasses import dataclass
from typing import Any, Callable

import structlog
from playwright.sync_api import sync_playwright

from ..config import BrowserConfig

Launcher = Callable[[BrowserConfig], tuple[Any, Any]]

_LAUNCH_ARGS = ["--disable-blink-features=AutomationControlled"]


def launch_chromium(config: BrowserConfig) -> tuple[Any, Any]:
    """Start the sync Playwright driver and a Chromium browser on it."""

    playwright = sync_playwright().start()
    try:
        browser = playwright.chromium.launch(headless=config.headless, args=_LAUNCH_ARGS)
    except Exception:
        playwright.stop()
        raise
    return playwright, browser


@dataclass
class _ThreadBrowser:
    playwright: Any = None
    browser: Any = None
    open_contexts: int = 0


class BrowserHost:
    """Own one Playwright driver and Chromium per thread.

    The sync API allows a single live driver per thread, so search sessions,
    detail sessions and the capture strategy all take isolated contexts from
    here. The browser stops once the last context on its thread is released.
    """

    def __init__(
        self,
        config: BrowserConfig | None = None,
        launcher: Launcher | None = None,
        logger: structlog.BoundLogger | None = None,
    ) -> None:
        self.config = config or BrowserConfig()
        self._launcher = launcher or launch_chromium
        self._local = threading.local()
        self.logger = logger or structlog.get_logger("lien_crawler.browser")

    def _current(self) -> _ThreadBrowser:
        state = getattr(self._local, "state", None)
        if state is None:
            state = _ThreadBrowser()
            self._local.state = state
        return state

    @property
    def is_started(self) -> bool:
        return self._current().browser is not None

    def new_context(self, **options: Any):
        state = self._current()
        if state.browser is None:
            state.playwright, state.browser = self._launcher(self.config)
            self.logger.info("browser_started", headless=self.config.headless)
        context = state.browser.new_context(**options)
        context.set_default_timeout(self.config.timeout_ms)
        state.open_contexts += 1
        return context

    def release(self, context) -> None:
        state = self._current()
        try:
            context.close()
        finally:
            state.open_contexts = max(state.open_contexts - 1, 0)
            if state.open_contexts == 0:
                self._stop(state)

    def _stop(self, state: _ThreadBrowser) -> None:
        browser, playwright = state.browser, state.playwright
        state.browser = None
        state.playwright = None
        try:
            if browser is not None:
                browser.close()
        finally:
            if playwright is not None:
                playwright.stop()
                self.logger.info("browser_stopped")


__all__ = ["BrowserHost", "launch_chromium"]
