"""
Browser session management and portal login.

One BrowserSession serves one mini-batch: it connects to Browserless over
CDP (or launches a local Chromium), logs into the B2B portal, then hands
out one page at a time to the extractor.
"""

from typing import Optional, Sequence

from playwright.sync_api import Browser, BrowserContext, Page, Playwright
from playwright.sync_api import Error as PlaywrightError
from playwright.sync_api import TimeoutError as PlaywrightTimeoutError
from playwright.sync_api import sync_playwright

import settings
from page_accessor import PlaywrightPage, ScraperError


class AuthenticationError(ScraperError):
    """Login could not be completed; terminal for the session."""


REGION_PROMPT_TEXT = "Please select your region"
REGION_BUTTON_TEXT = "United States"

LOGIN_FORM_SELECTOR = 'input[type="password"]'

USERNAME_SELECTORS = [
    'input[type="email"]',
    'input[name="username"]',
    'input[name="email"]',
    'input[autocomplete="username"]',
    'input[id*="user" i]',
    'input[id*="email" i]',
]

PASSWORD_SELECTORS = [
    'input[type="password"]',
    'input[name="password"]',
    'input[id*="pass" i]',
]

SUBMIT_SELECTORS = [
    'button[type="submit"]',
    'input[type="submit"]',
    'button:has-text("Sign In")',
    'button:has-text("Log In")',
    'button:has-text("Login")',
]

LOGIN_URL_MARKERS = ('login', 'signin', 'sign-in')
LOGIN_TITLE_MARKERS = ('login', 'log in', 'sign in')

USER_AGENT = ('Mozilla/5.0 (Macintosh; Intel Mac OS X 10_15_7) AppleWebKit/537.36 '
              '(KHTML, like Gecko) Chrome/120.0.0.0 Safari/537.36')


# =============================================================================
# Login flow
# =============================================================================

def still_on_login(url: str, title: str) -> bool:
    """True if the url or title still looks like the login page."""
    url = (url or '').lower()
    title = (title or '').lower()
    return (any(marker in url for marker in LOGIN_URL_MARKERS) or
            any(marker in title for marker in LOGIN_TITLE_MARKERS))


def dismiss_region_prompt(page: Page) -> bool:
    """Pick United States on the region interstitial, if it is showing."""
    if page.get_by_text(REGION_PROMPT_TEXT, exact=False).count() == 0:
        return False

    button = page.locator('button', has_text=REGION_BUTTON_TEXT).first
    if button.count() == 0:
        print("  Region prompt shown but no United States button", flush=True)
        return False

    button.click()
    page.wait_for_load_state('domcontentloaded')
    print("  Selected region: United States", flush=True)
    return True


def fill_first(page: Page, selectors: Sequence[str], value: str) -> Optional[str]:
    """Fill the first selector that matches; return it, or None."""
    for selector in selectors:
        try:
            field = page.locator(selector).first
            if field.count() > 0:
                field.fill(value)
                return selector
        except PlaywrightError:
            continue
    return None


def click_submit(page: Page) -> Optional[str]:
    """Click the first visible submit-like button; return its selector, or None."""
    for selector in SUBMIT_SELECTORS:
        try:
            button = page.locator(selector).first
            if button.count() > 0 and button.is_visible():
                button.click()
                return selector
        except PlaywrightError:
            continue
    return None


def authenticate(page: Page, username: Optional[str], password: Optional[str],
                 login_url: str = settings.LOGIN_URL,
                 timeout_ms: int = settings.NAVIGATION_TIMEOUT_MS) -> None:
    """
    Log into the portal on page. Raises AuthenticationError on any failure.

    Selector lists are tried in priority order; there is no retry beyond that.
    """
    if not username or not password:
        raise AuthenticationError("Missing credentials: set ASICS_USERNAME and ASICS_PASSWORD")

    print(f"  Navigating to {login_url}", flush=True)
    try:
        page.goto(login_url, wait_until='domcontentloaded', timeout=timeout_ms)
    except PlaywrightError as e:
        raise AuthenticationError(f"Could not load login page: {e}") from e

    dismiss_region_prompt(page)

    try:
        page.wait_for_selector(LOGIN_FORM_SELECTOR, timeout=timeout_ms)
    except PlaywrightTimeoutError as e:
        raise AuthenticationError("Login form did not render") from e

    if not fill_first(page, USERNAME_SELECTORS, username):
        raise AuthenticationError("Could not find username field")
    if not fill_first(page, PASSWORD_SELECTORS, password):
        raise AuthenticationError("Could not find password field")

    selector = click_submit(page)
    if not selector:
        raise AuthenticationError("Could not find submit button")
    print(f"  Clicked submit button ({selector})", flush=True)

    try:
        page.wait_for_load_state('networkidle', timeout=timeout_ms)
    except PlaywrightTimeoutError:
        print("  Post-login page still busy, checking anyway", flush=True)

    if still_on_login(page.url, page.title()):
        raise AuthenticationError(f"Still on login page after submit ({page.url})")

    print("  Logged in successfully", flush=True)


# =============================================================================
# Session
# =============================================================================

class BrowserSession:
    """
    Authenticated browser for one mini-batch.

    Usage:
        with BrowserSession(username, password) as session:
            page = session.new_page()
            ...
            page.close()
    """

    def __init__(self, username: Optional[str], password: Optional[str],
                 endpoint: Optional[str] = settings.BROWSERLESS_ENDPOINT,
                 headless: bool = settings.HEADLESS,
                 login_url: str = settings.LOGIN_URL,
                 timeout_ms: int = settings.NAVIGATION_TIMEOUT_MS):
        self.username = username
        self.password = password
        self.endpoint = endpoint
        self.headless = headless
        self.login_url = login_url
        self.timeout_ms = timeout_ms
        self._playwright: Optional[Playwright] = None
        self._browser: Optional[Browser] = None
        self._context: Optional[BrowserContext] = None

    def start(self) -> None:
        """Connect or launch the browser and open a fresh context."""
        self._playwright = sync_playwright().start()
        if self.endpoint:
            print(f"  Connecting to Browserless at {self.endpoint}", flush=True)
            self._browser = self._playwright.chromium.connect_over_cdp(self.endpoint)
        else:
            self._browser = self._playwright.chromium.launch(
                headless=self.headless,
                args=[
                    '--disable-blink-features=AutomationControlled',
                    '--disable-dev-shm-usage',
                    '--no-sandbox',
                ],
            )

        self._context = self._browser.new_context(
            viewport={'width': 1440, 'height': 900},
            user_agent=USER_AGENT,
            locale='en-US',
            timezone_id='America/New_York',
        )
        self._context.set_default_timeout(self.timeout_ms)

    def login(self) -> None:
        """Authenticate in the session's context. Session cookies carry over to later pages."""
        page = self._context.new_page()
        try:
            authenticate(page, self.username, self.password, self.login_url, self.timeout_ms)
        finally:
            page.close()

    def new_page(self) -> PlaywrightPage:
        return PlaywrightPage(self._context.new_page())

    def close(self) -> None:
        """Close context, browser and driver; safe to call more than once."""
        for closer in (self._context, self._browser):
            if closer is None:
                continue
            try:
                closer.close()
            except PlaywrightError as e:
                print(f"  Browser close error: {e}", flush=True)
        if self._playwright is not None:
            self._playwright.stop()
        self._context = None
        self._browser = None
        self._playwright = None

    def __enter__(self) -> "BrowserSession":
        self.start()
        try:
            self.login()
        except Exception:
            self.close()
            raise
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.close()
