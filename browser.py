import logging
from enum import Enum
from contextlib import AsyncExitStack
from playwright.async_api import async_playwright
from playwright_stealth import Stealth
from config import settings
from errors import StartupFailure

logger = logging.getLogger(__name__)

DEFAULT_USER_AGENT = "Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36 (KHTML, like Gecko) Chrome/126.0.0.0 Safari/537.36"

LAUNCH_ARGS = [
    "--no-sandbox",
    "--disable-setuid-sandbox",
    "--disable-dev-shm-usage",
    "--disable-blink-features=AutomationControlled",
]


class SessionState(str, Enum):
    UNINITIALIZED = "uninitialized"
    STARTING = "starting"
    READY = "ready"
    FAILED = "failed"


class BrowserManager:
    """Owns the single authenticated browser context for the process lifetime."""

    def __init__(self):
        self.playwright = None
        self.context = None
        self.exit_stack = AsyncExitStack()
        self.state = SessionState.UNINITIALIZED
        self.error = None
        self.current_ua = None
        self._page = None

    @property
    def page(self):
        if self.state is not SessionState.READY or self._page is None:
            return None
        if self._page.is_closed():
            return None
        return self._page

    @property
    def is_ready(self) -> bool:
        return self.page is not None

    def _get_user_agent(self):
        if settings.USER_AGENT and settings.USER_AGENT.strip():
            logger.info("Using custom User-Agent from config")
            return settings.USER_AGENT.strip()

        return DEFAULT_USER_AGENT

    async def init_browser(self, bridge):
        if self.is_ready:
            return

        self.state = SessionState.STARTING
        self.error = None
        try:
            await self._launch()
            await bridge.install(self.context)
            page = self.context.pages[0] if self.context.pages else await self.context.new_page()
            await self._navigate_and_wait(page)
        except Exception as e:
            self.state = SessionState.FAILED
            self.error = e
            logger.error(f"Browser startup failed: {e}")
            await self.close()
            raise StartupFailure(f"Could not start the browser session: {e}") from e

        self._page = page
        self.state = SessionState.READY
        logger.info("Page loaded and session ready")

    async def _launch(self):
        self.current_ua = self._get_user_agent()

        stealth_ctx = Stealth().use_async(async_playwright())
        self.playwright = await self.exit_stack.enter_async_context(stealth_ctx)

        settings.USER_DATA_DIR.mkdir(parents=True, exist_ok=True)
        logger.info(f"Launching browser with profile {settings.USER_DATA_DIR}")
        self.context = await self.playwright.chromium.launch_persistent_context(
            str(settings.USER_DATA_DIR),
            executable_path=settings.BROWSER_EXECUTABLE_PATH or None,
            headless=settings.HEADLESS,
            args=LAUNCH_ARGS + [f"--user-agent={self.current_ua}"],
            user_agent=self.current_ua,
            viewport={"width": settings.VIEWPORT_WIDTH, "height": settings.VIEWPORT_HEIGHT},
            locale="en-US",
        )

    async def _navigate_and_wait(self, page):
        logger.info(f"Navigating to {settings.TARGET_URL}...")
        await page.goto(
            settings.TARGET_URL,
            wait_until="networkidle",
            timeout=settings.NAVIGATION_TIMEOUT_MS,
        )

        # The prompt box only renders once the challenge and anonymous sign-up have finished.
        await page.wait_for_selector(settings.READY_SELECTOR, timeout=settings.READY_TIMEOUT_MS)

        try:
            is_webdriver = await page.evaluate("navigator.webdriver")
            logger.info(f"Stealth Status - navigator.webdriver: {is_webdriver}")
        except Exception as e:
            logger.debug(f"Could not read navigator.webdriver: {e}")

    async def close(self):
        self._page = None
        context, self.context = self.context, None
        try:
            if context:
                await context.close()
        except Exception as e:
            logger.warning(f"Error closing browser context: {e}")
        finally:
            await self.exit_stack.aclose()
            self.playwright = None
        if self.state is SessionState.READY:
            self.state = SessionState.UNINITIALIZED
