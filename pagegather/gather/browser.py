"""Connecting to an already running Chromium over its remote debugging port."""

import logging
from typing import Optional

from playwright.async_api import Browser, Page, Playwright, async_playwright

logger = logging.getLogger(__name__)

DEFAULT_HOSTNAME = "127.0.0.1"
DEFAULT_PORT = 9222


class BrowserConnection:
    """Owns the Playwright handle and page opened for a run without a caller page."""

    def __init__(self, hostname: str = DEFAULT_HOSTNAME, port: int = DEFAULT_PORT):
        """Initialize browser connection.

        Args:
            hostname: Host the browser's debugging endpoint listens on
            port: Remote debugging port
        """
        self.hostname = hostname
        self.port = port
        self.playwright: Optional[Playwright] = None
        self.browser: Optional[Browser] = None
        self.page: Optional[Page] = None

    @property
    def endpoint(self) -> str:
        return f"http://{self.hostname}:{self.port}"

    async def start(self) -> Page:
        """Connect to the browser and open a new page."""
        if self.page is not None:
            return self.page

        logger.info(f"Connecting to browser at {self.endpoint}")
        try:
            self.playwright = await async_playwright().start()
            self.browser = await self.playwright.chromium.connect_over_cdp(self.endpoint)

            if self.browser.contexts:
                context = self.browser.contexts[0]
            else:
                context = await self.browser.new_context()
            self.page = await context.new_page()

        except Exception as e:
            logger.error(f"Failed to connect to browser: {e}")
            await self.stop()
            raise

        return self.page

    async def stop(self) -> None:
        """Close the page and disconnect. The browser itself keeps running."""
        try:
            if self.page is not None:
                await self.page.close()
                self.page = None

            if self.browser is not None:
                await self.browser.close()
                self.browser = None

            if self.playwright is not None:
                await self.playwright.stop()
                self.playwright = None

        except Exception as e:
            logger.error(f"Error disconnecting from browser: {e}")
