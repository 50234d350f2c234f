"""Browser session management using patchright.

One authenticated browser per account, launched on first use and reused by
every later job bound to that account. Hard rules:
  - headless=False always (no config override)
  - Cookie auth only (no login flow)
  - patchright, not vanilla playwright
"""

import asyncio
import json
import logging
from typing import Any

from patchright.async_api import Browser, BrowserContext, Playwright, async_playwright
from patchright.async_api import Error as PlaywrightError
from patchright.async_api import TimeoutError as PlaywrightTimeoutError

from harvester.browser.actions import scroll_until_stable
from harvester.core.config import BrowserConfig
from harvester.core.errors import CookieError, NavigationError
from harvester.core.schemas import PageCapture, ProxyConfig

logger = logging.getLogger(__name__)

LAUNCH_ARGS: tuple[str, ...] = (
    "--disable-blink-features=AutomationControlled",
    "--disable-dev-shm-usage",
    "--no-first-run",
    "--disable-background-timer-throttling",
    "--disable-backgrounding-occluded-windows",
    "--disable-renderer-backgrounding",
)

# Runs before any page script in every page of the context.
STEALTH_INIT_SCRIPT = """
Object.defineProperty(navigator, 'webdriver', { get: () => undefined });
Object.defineProperty(navigator, 'languages', { get: () => ['en-US', 'en'] });
Object.defineProperty(navigator, 'plugins', { get: () => [1, 2, 3, 4, 5] });
window.chrome = window.chrome || { runtime: {} };
"""

_REQUIRED_COOKIE_KEYS = ("name", "value")


def parse_cookies(payload: str | list[Any]) -> list[dict[str, Any]]:
    """Validate a cookie payload (JSON text or list) for context.add_cookies.

    Raises CookieError on anything the browser would reject: invalid JSON,
    non-list payloads, entries without name/value, or entries with neither
    a url nor a domain.
    """
    if isinstance(payload, str):
        try:
            data = json.loads(payload)
        except json.JSONDecodeError as e:
            msg = f"cookie payload is not valid JSON: {e}"
            raise CookieError(msg) from e
    else:
        data = payload

    if not isinstance(data, list):
        msg = "cookie payload must be a JSON array"
        raise CookieError(msg)
    if not data:
        msg = "cookie payload is empty"
        raise CookieError(msg)

    cookies: list[dict[str, Any]] = []
    for i, entry in enumerate(data):
        if not isinstance(entry, dict):
            msg = f"cookie #{i} is not an object"
            raise CookieError(msg)
        missing = [k for k in _REQUIRED_COOKIE_KEYS if not entry.get(k)]
        if missing:
            msg = f"cookie #{i} missing {', '.join(missing)}"
            raise CookieError(msg)
        if not entry.get("url") and not entry.get("domain"):
            msg = f"cookie '{entry['name']}' needs a url or a domain"
            raise CookieError(msg)
        cookie = dict(entry)
        if cookie.get("domain") and not cookie.get("path"):
            cookie["path"] = "/"
        cookies.append(cookie)
    return cookies


class BrowserSession:
    """A live browser + context owned by one account."""

    def __init__(
        self,
        account_id: int,
        browser: Browser,
        context: BrowserContext,
        config: BrowserConfig,
    ) -> None:
        self.account_id = account_id
        self._browser = browser
        self._context = context
        self._config = config
        self.closed = False

    @property
    def alive(self) -> bool:
        """False once closed or once the browser process went away."""
        return not self.closed and self._browser.is_connected()

    async def capture(
        self,
        url: str,
        *,
        scroll_selectors: tuple[str, ...] = (),
        timeout_ms: int | None = None,
    ) -> PageCapture:
        """Open a page, navigate, and return its final URL, title and HTML.

        Timeouts and network failures raise NavigationError. When
        scroll_selectors is given the page is scrolled until the item count
        settles before the HTML is read.
        """
        timeout = timeout_ms or self._config.timeout_ms
        page = await self._context.new_page()
        try:
            await page.goto(url, timeout=timeout, wait_until="domcontentloaded")
            if scroll_selectors:
                await scroll_until_stable(page, item_selectors=scroll_selectors)
            return PageCapture(
                url=page.url,
                title=await page.title(),
                content=await page.content(),
            )
        except PlaywrightTimeoutError as e:
            raise NavigationError(url, f"timeout after {timeout}ms") from e
        except PlaywrightError as e:
            raise NavigationError(url, str(e).splitlines()[0] if str(e) else "error") from e
        finally:
            try:
                await page.close()
            except PlaywrightError:
                logger.debug("Page close failed for %s", url, exc_info=True)

    async def close(self) -> None:
        if self.closed:
            return
        self.closed = True
        try:
            await self._context.close()
        finally:
            await self._browser.close()


class SessionRegistry:
    """Owns one BrowserSession per account for the lifetime of the service.

    Usage::

        registry = SessionRegistry(settings.browser)
        session = await registry.get_or_create_session(account.id, account.cookies)
        ...
        await registry.close_all()
    """

    def __init__(
        self,
        config: BrowserConfig,
        playwright_factory: Any = async_playwright,
    ) -> None:
        self._config = config
        self._playwright_factory = playwright_factory
        self._playwright: Playwright | None = None
        self._sessions: dict[int, BrowserSession] = {}
        self._locks: dict[int, asyncio.Lock] = {}

    def __contains__(self, account_id: int) -> bool:
        return account_id in self._sessions

    def __len__(self) -> int:
        return len(self._sessions)

    def account_ids(self) -> list[int]:
        return list(self._sessions)

    async def get_or_create_session(
        self,
        account_id: int,
        cookies: str | list[Any],
        proxy: ProxyConfig | None = None,
    ) -> BrowserSession:
        """Return the account's live session, launching one if there is none.

        Cookies and proxy only apply at creation; a live session is returned
        unchanged. A session whose browser disconnected is dropped and
        relaunched. Creation is single-flight per account.
        """
        session = self._sessions.get(account_id)
        if session is not None and session.alive:
            return session

        lock = self._locks.setdefault(account_id, asyncio.Lock())
        async with lock:
            session = self._sessions.get(account_id)
            if session is not None:
                if session.alive:
                    return session
                logger.warning("Session for account %d is dead, relaunching", account_id)
                await self._discard(account_id)
            session = await self._launch(account_id, cookies, proxy)
            self._sessions[account_id] = session
            return session

    async def invalidate(self, account_id: int) -> None:
        """Close and forget one account's session (e.g. after credential rotation)."""
        session = self._sessions.pop(account_id, None)
        if session is not None:
            await session.close()
            logger.info("Closed session for account %d", account_id)

    async def close_all(self) -> None:
        """Close every session and stop patchright."""
        for account_id in list(self._sessions):
            await self._discard(account_id)
        if self._playwright is not None:
            playwright, self._playwright = self._playwright, None
            try:
                await playwright.stop()
            except PlaywrightError:
                logger.warning("Error stopping patchright", exc_info=True)

    async def _discard(self, account_id: int) -> None:
        try:
            await self.invalidate(account_id)
        except PlaywrightError:
            logger.warning("Error closing session for account %d", account_id, exc_info=True)

    async def _launch(
        self,
        account_id: int,
        cookies: str | list[Any],
        proxy: ProxyConfig | None,
    ) -> BrowserSession:
        parsed = parse_cookies(cookies)

        if self._playwright is None:
            self._playwright = await self._playwright_factory().start()

        launch_kwargs: dict[str, Any] = {"headless": False, "args": list(LAUNCH_ARGS)}
        if proxy is not None:
            launch_kwargs["proxy"] = proxy.to_launch_option()
        browser = await self._playwright.chromium.launch(**launch_kwargs)

        try:
            context = await browser.new_context(
                user_agent=self._config.user_agent,
                viewport={
                    "width": self._config.viewport_width,
                    "height": self._config.viewport_height,
                },
                locale=self._config.locale,
                timezone_id=self._config.timezone_id,
            )
            await context.add_init_script(STEALTH_INIT_SCRIPT)
            context.set_default_timeout(self._config.timeout_ms)
            try:
                await context.add_cookies(parsed)
            except PlaywrightError as e:
                msg = f"browser rejected cookies for account {account_id}: {e}"
                raise CookieError(msg) from e
        except BaseException:
            await browser.close()
            raise

        logger.info(
            "Launched session for account %d (%d cookies, proxy=%s)",
            account_id, len(parsed), proxy.server if proxy else "none",
        )
        return BrowserSession(account_id, browser, context, self._config)
