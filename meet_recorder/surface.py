"""
Automation surface: the capabilities the session needs from a remote page.

``AutomationSurface`` is the protocol the rest of the package is written
against. ``PlaywrightSurface`` implements it with a Chromium page and turns
every Playwright failure into an ``AutomationSurfaceError`` subclass, so callers
never see driver-specific exceptions.
"""

import logging
from typing import Any, Awaitable, Callable, Optional, Protocol, runtime_checkable

from meet_recorder.debug_tools import setup_network_logging
from meet_recorder.errors import (
    AutomationSurfaceError,
    BrowserClosedError,
    SurfaceTimeoutError,
    is_browser_closed_error,
)

logger = logging.getLogger(__name__)

# Chromium flags for a recorded, unattended meeting tab
BROWSER_ARGS = [
    "--incognito",
    "--no-sandbox",
    "--disable-setuid-sandbox",
    "--disable-features=IsolateOrigins,site-per-process",
    "--disable-infobars",
    "--use-fake-ui-for-media-stream",  # auto-grant camera/mic prompts
    "--use-file-for-fake-video-capture=/dev/null",
    "--use-file-for-fake-audio-capture=/dev/null",
    "--autoplay-policy=no-user-gesture-required",
    "--enable-audio-output",
]

VIEWPORT = {"width": 1280, "height": 720}


@runtime_checkable
class AutomationSurface(Protocol):
    """Query/click/fill/evaluate/observe operations against the meeting page."""

    # Whether the participant observer needs the People panel opened first
    requires_people_panel: bool

    async def open(self, url: str) -> None:
        ...

    async def is_present(self, selector: str) -> bool:
        ...

    async def is_visible(self, selector: str, timeout_ms: int = 500) -> bool:
        ...

    async def is_hidden(self, selector: str, timeout_ms: int = 500) -> bool:
        ...

    async def click(self, selector: str, timeout_ms: Optional[int] = None) -> None:
        ...

    async def fill(self, selector: str, text: str) -> None:
        ...

    async def wait_for_selector(self, selector: str, timeout_ms: int, state: str = "visible") -> None:
        ...

    async def evaluate(self, script: str, arg: Any = None) -> Any:
        ...

    async def expose_function(self, name: str, callback: Callable[..., Awaitable[Any]]) -> None:
        ...

    async def content(self) -> str:
        ...

    async def close(self) -> None:
        ...


class PlaywrightSurface:
    """Chromium page driven through Playwright's async API."""

    def __init__(
        self,
        headless: bool = False,
        requires_people_panel: bool = True,
        debug: bool = False,
        browser_args: Optional[list[str]] = None,
    ):
        self.headless = headless
        self.requires_people_panel = requires_people_panel
        self.debug = debug
        self.browser_args = browser_args or list(BROWSER_ARGS)
        self._playwright = None
        self.browser = None
        self.context = None
        self.page = None

    def _require_page(self):
        if self.page is None:
            raise AutomationSurfaceError("Page is not open")
        if self.page.is_closed():
            raise BrowserClosedError("Page has been closed")
        return self.page

    async def _guard(self, action: str, awaitable: Awaitable[Any]) -> Any:
        from playwright.async_api import Error as PlaywrightError
        from playwright.async_api import TimeoutError as PlaywrightTimeoutError

        try:
            return await awaitable
        except PlaywrightTimeoutError as e:
            raise SurfaceTimeoutError(f"{action} timed out: {e}") from e
        except PlaywrightError as e:
            if is_browser_closed_error(e):
                raise BrowserClosedError(f"{action} failed, browser closed: {e}") from e
            raise AutomationSurfaceError(f"{action} failed: {e}") from e

    async def open(self, url: str) -> None:
        """Launch Chromium and navigate to ``url``."""
        from playwright.async_api import async_playwright

        logger.info(f"Launching browser (headless={self.headless})")
        self._playwright = await async_playwright().start()
        self.browser = await self._guard(
            "launch",
            self._playwright.chromium.launch(headless=self.headless, args=self.browser_args),
        )
        self.context = await self._guard(
            "new context",
            self.browser.new_context(permissions=["camera", "microphone"], viewport=VIEWPORT),
        )
        self.page = await self._guard("new page", self.context.new_page())
        self.page.on("console", lambda msg: logger.debug(f"[BrowserConsole][{msg.type}] {msg.text}"))
        if self.debug:
            setup_network_logging(self.page)

        await self._guard(f"goto {url}", self.page.goto(url, wait_until="networkidle"))
        await self._guard("bring to front", self.page.bring_to_front())

    async def is_present(self, selector: str) -> bool:
        page = self._require_page()
        return await self._guard(f"count {selector}", page.locator(selector).count()) > 0

    async def is_visible(self, selector: str, timeout_ms: int = 500) -> bool:
        page = self._require_page()
        try:
            await self._guard(
                f"visible {selector}",
                page.locator(selector).first.wait_for(state="visible", timeout=timeout_ms),
            )
        except SurfaceTimeoutError:
            return False
        return True

    async def is_hidden(self, selector: str, timeout_ms: int = 500) -> bool:
        return not await self.is_visible(selector, timeout_ms=timeout_ms)

    async def click(self, selector: str, timeout_ms: Optional[int] = None) -> None:
        page = self._require_page()
        await self._guard(f"click {selector}", page.click(selector, timeout=timeout_ms))

    async def fill(self, selector: str, text: str) -> None:
        page = self._require_page()
        await self._guard(f"fill {selector}", page.fill(selector, text))

    async def wait_for_selector(self, selector: str, timeout_ms: int, state: str = "visible") -> None:
        page = self._require_page()
        await self._guard(
            f"wait for {selector}",
            page.wait_for_selector(selector, timeout=timeout_ms, state=state),
        )

    async def evaluate(self, script: str, arg: Any = None) -> Any:
        page = self._require_page()
        return await self._guard("evaluate", page.evaluate(script, arg))

    async def expose_function(self, name: str, callback: Callable[..., Awaitable[Any]]) -> None:
        page = self._require_page()
        await self._guard(f"expose {name}", page.expose_function(name, callback))

    async def content(self) -> str:
        page = self._require_page()
        return await self._guard("content", page.content())

    async def close(self) -> None:
        """Close the browser and stop Playwright. Never raises."""
        if self.browser:
            try:
                await self.browser.close()
                logger.info("Closed browser.")
            except Exception as e:
                logger.warning(f"Error closing browser: {e}")
            self.browser = None
        if self._playwright:
            try:
                await self._playwright.stop()
            except Exception as e:
                logger.debug(f"Suppressed error stopping Playwright: {e}")
            self._playwright = None
        self.context = None
        self.page = None
