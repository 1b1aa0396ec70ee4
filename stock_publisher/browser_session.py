"""
Authenticated browser sessions built from exported cookie files.
"""

import json
from typing import List, Dict, Any, Callable

from playwright.sync_api import sync_playwright

from .config import AppConfig, UploadTargetConfig
from .logging_setup import get_logger

logger = get_logger(__name__)

COOKIE_FIELDS = ('name', 'value', 'url', 'domain', 'path', 'expires', 'httpOnly', 'secure', 'sameSite')
SAME_SITE_VALUES = {
    'strict': 'Strict',
    'lax': 'Lax',
    'none': 'None',
    'no_restriction': 'None',
}


def normalize_cookie(cookie: Dict[str, Any]) -> Dict[str, Any]:
    """
    Convert a Puppeteer or browser-extension cookie export into Playwright's shape.

    Args:
        cookie: Cookie object as read from the export file

    Returns:
        Cookie dictionary accepted by BrowserContext.add_cookies
    """
    cookie = dict(cookie)
    if 'expires' not in cookie and 'expirationDate' in cookie:
        cookie['expires'] = cookie['expirationDate']
    if cookie.get('session'):
        cookie.pop('expires', None)

    same_site = str(cookie.get('sameSite', '')).lower()
    if same_site in SAME_SITE_VALUES:
        cookie['sameSite'] = SAME_SITE_VALUES[same_site]
    else:
        cookie.pop('sameSite', None)

    normalized = {key: cookie[key] for key in COOKIE_FIELDS if key in cookie}
    if 'url' not in normalized:
        normalized.setdefault('path', '/')
    return normalized


def load_cookies(cookies_file: str) -> List[Dict[str, Any]]:
    """
    Read a JSON array of cookies.

    Raises:
        RuntimeError: If the file is missing or not a JSON array
    """
    try:
        with open(cookies_file, 'r') as f:
            cookies = json.load(f)
    except (json.JSONDecodeError, IOError) as e:
        raise RuntimeError(f"Failed to load cookies from {cookies_file}: {str(e)}")

    if not isinstance(cookies, list):
        raise RuntimeError(f"Cookie file {cookies_file} must contain a JSON array")

    return [normalize_cookie(cookie) for cookie in cookies]


class BrowserSession:
    """Chromium page carrying a target's stored cookies, usable as a context manager."""

    def __init__(self, config: AppConfig, target: UploadTargetConfig,
                 playwright_factory: Callable = sync_playwright):
        """
        Initialize the session.

        Args:
            config: Application configuration
            target: Upload target whose cookie file is loaded
            playwright_factory: Callable returning a Playwright context manager
        """
        self.config = config
        self.target = target
        self._playwright_factory = playwright_factory
        self._playwright = None
        self.browser = None
        self.context = None
        self.page = None

    def open(self) -> 'BrowserSession':
        cookies = load_cookies(self.target.cookies_file)

        self._playwright = self._playwright_factory().start()
        try:
            self.browser = self._playwright.chromium.launch(headless=self.config.headless)
            self.context = self.browser.new_context(no_viewport=True)
            self.context.add_cookies(cookies)
            self.page = self.context.new_page()
            self.page.set_default_timeout(self.target.step_timeout_ms)
        except Exception as e:
            logger.error(f"Could not open browser session for {self.target.target_type}: {str(e)}")
            self.close()
            raise

        logger.info(f"Opened browser session for {self.target.target_type} with {len(cookies)} cookies")
        return self

    def close(self) -> None:
        if self.context is not None:
            self.context.close()
        if self.browser is not None:
            self.browser.close()
        if self._playwright is not None:
            self._playwright.stop()
        self.page = self.context = self.browser = self._playwright = None

    def __enter__(self) -> 'BrowserSession':
        return self.open()

    def __exit__(self, exc_type, exc_value, traceback) -> None:
        self.close()
