"""Concrete document fetch strategies and a factory building the default chain."""

from __future__ import annotations

from typing import Callable

import httpx
import structlog
from playwright.sync_api import Error as PlaywrightError

from ...config import GlobalConfig, JurisdictionProfile
from ..browser import BrowserHost
from .chain import DocumentFetchStrategy, FetchContext, StrategyFailed

ClientFactory = Callable[[], httpx.Client]


def _default_client(timeout: float = 30.0) -> httpx.Client:
    return httpx.Client(follow_redirects=True, timeout=timeout)


class DirectFetchStrategy:
    """Plain GET with browser-like headers."""

    name = "direct"

    def __init__(self, client: httpx.Client | None = None) -> None:
        self._client = client or _default_client()

    def applies_to(self, profile: JurisdictionProfile) -> bool:
        return True

    def fetch(self, context: FetchContext) -> bytes | None:
        response = self._client.get(context.url, headers=context.document_headers())
        if not response.is_success:
            raise StrategyFailed(f"HTTP {response.status_code}")
        return response.content

    def close(self) -> None:
        self._client.close()


class SessionFetchStrategy:
    """Visit the recording's detail page first so its cookies ride along."""

    name = "session"

    def __init__(self, client_factory: ClientFactory | None = None) -> None:
        self._client_factory = client_factory or _default_client

    def applies_to(self, profile: JurisdictionProfile) -> bool:
        return profile.urls.detail_url_template is not None

    def fetch(self, context: FetchContext) -> bytes | None:
        detail_url = context.profile.urls.detail_url(context.recording_number)
        headers = context.document_headers()
        with self._client_factory() as client:
            landing = client.get(
                detail_url,
                headers={**headers, "Accept": "text/html,application/xhtml+xml,*/*"},
            )
            if not landing.is_success:
                raise StrategyFailed(f"detail page HTTP {landing.status_code}")
            context.pace()
            response = client.get(context.url, headers={**headers, "Referer": detail_url})
            if not response.is_success:
                raise StrategyFailed(f"HTTP {response.status_code} with session cookies")
            return response.content

    def close(self) -> None:
        return None


class BrowserCaptureStrategy:
    """Load the PDF in Chromium and keep the bytes seen on the network.

    Each attempt uses a fresh context from the host, so it shares the browser
    already running for the search session on the same thread.
    """

    name = "browser"

    def __init__(
        self,
        host: BrowserHost,
        logger: structlog.BoundLogger | None = None,
    ) -> None:
        self._host = host
        self.logger = logger or structlog.get_logger("lien_crawler.documents.browser")

    def applies_to(self, profile: JurisdictionProfile) -> bool:
        return True

    def fetch(self, context: FetchContext) -> bytes | None:
        try:
            browser_context = self._host.new_context(
                user_agent=context.user_agent, accept_downloads=True
            )
        except PlaywrightError as exc:
            raise StrategyFailed(f"browser unavailable: {exc}") from exc
        try:
            return self._capture(browser_context, context)
        except PlaywrightError as exc:
            raise StrategyFailed(f"browser capture failed: {exc}") from exc
        finally:
            self._host.release(browser_context)

    def _capture(self, browser_context, context: FetchContext) -> bytes | None:
        page = browser_context.new_page()
        pdf_responses = []
        page.on(
            "response",
            lambda response: pdf_responses.append(response)
            if "application/pdf" in response.headers.get("content-type", "").lower()
            else None,
        )
        try:
            try:
                page.goto(context.url, wait_until="load", referer=context.profile.urls.base_url)
            except PlaywrightError as exc:
                # Chromium aborts the navigation when the PDF turns into a download.
                if "Download is starting" not in str(exc):
                    raise
            page.wait_for_timeout(context.profile.pacing.document_load_wait_ms)
            for response in reversed(pdf_responses):
                body = response.body()
                if body:
                    return body
            self.logger.debug("browser_capture_fallback", url=context.url)
            context.pace()
            fallback = browser_context.request.get(
                context.url, headers={"Accept": "application/pdf,*/*"}
            )
            if not fallback.ok:
                raise StrategyFailed(f"browser request HTTP {fallback.status}")
            return fallback.body()
        finally:
            page.close()

    def close(self) -> None:
        return None


def build_strategies(
    global_config: GlobalConfig, host: BrowserHost | None = None
) -> list[DocumentFetchStrategy]:
    """Return the default strategies in fallback order."""

    host = host or BrowserHost(global_config.browser)
    return [
        DirectFetchStrategy(),
        SessionFetchStrategy(),
        BrowserCaptureStrategy(host),
    ]


__all__ = [
    "BrowserCaptureStrategy",
    "DirectFetchStrategy",
    "SessionFetchStrategy",
    "build_strategies",
]
