"""
Page accessors used by the inventory extractor.

The extractor never runs its own code inside the browser. It asks a page
accessor for structured query results (trimmed text of matched elements,
text grouped by a parent element, text with its on-screen top coordinate),
so the same extraction logic runs against a live Playwright page or a
recorded HTML snapshot.
"""

from typing import List, Tuple

from bs4 import BeautifulSoup
from playwright.sync_api import Error as PlaywrightError
from playwright.sync_api import Page
from playwright.sync_api import TimeoutError as PlaywrightTimeoutError


class ScraperError(Exception):
    """Base class for errors surfaced to the batch orchestrator."""


class NavigationError(ScraperError):
    """A page failed to load within its timeout."""


class PageAccessor:
    """
    Capability interface consumed by the extraction core.

    Implementations return plain, serializable Python values. Query methods
    return an empty list when nothing matches.
    """

    @property
    def url(self) -> str:
        raise NotImplementedError

    def goto(self, url: str, timeout_ms: int) -> None:
        """Navigate and wait until the page settles. Raises NavigationError."""
        raise NotImplementedError

    def wait_for_selector(self, selector: str, timeout_ms: int) -> bool:
        """Return True once selector matches, False on timeout."""
        raise NotImplementedError

    def title(self) -> str:
        raise NotImplementedError

    def texts(self, selector: str) -> List[str]:
        """Trimmed text content of every element matching selector."""
        raise NotImplementedError

    def grouped_texts(self, selector: str, child_selector: str) -> List[List[str]]:
        """For each element matching selector, trimmed texts of its matching descendants."""
        raise NotImplementedError

    def text_positions(self, selector: str) -> List[Tuple[str, float]]:
        """(text, top) pairs for every rendered element matching selector."""
        raise NotImplementedError

    def close(self) -> None:
        pass


# =============================================================================
# Live browser page
# =============================================================================

_TEXTS_JS = "els => els.map(e => (e.textContent || '').trim())"

_GROUPED_JS = """
(els, child) => els.map(e =>
    Array.from(e.querySelectorAll(child)).map(c => (c.textContent || '').trim())
)
"""

_POSITIONS_JS = """
els => els
    .map(e => {
        const r = e.getBoundingClientRect();
        if (r.width === 0 && r.height === 0) return null;
        return [(e.textContent || '').trim(), r.top + window.scrollY];
    })
    .filter(x => x !== null)
"""


class PlaywrightPage(PageAccessor):
    """PageAccessor backed by a Playwright sync Page."""

    def __init__(self, page: Page):
        self._page = page

    @property
    def url(self) -> str:
        return self._page.url

    def goto(self, url: str, timeout_ms: int) -> None:
        try:
            response = self._page.goto(url, wait_until="networkidle", timeout=timeout_ms)
        except PlaywrightTimeoutError as e:
            raise NavigationError(f"Timed out loading {url} after {timeout_ms}ms") from e
        except PlaywrightError as e:
            raise NavigationError(f"Failed to load {url}: {e}") from e

        if response is not None and response.status >= 400:
            raise NavigationError(f"HTTP {response.status} loading {url}")

    def wait_for_selector(self, selector: str, timeout_ms: int) -> bool:
        try:
            self._page.wait_for_selector(selector, timeout=timeout_ms)
            return True
        except PlaywrightTimeoutError:
            return False

    def title(self) -> str:
        return self._page.title()

    def texts(self, selector: str) -> List[str]:
        return self._page.eval_on_selector_all(selector, _TEXTS_JS)

    def grouped_texts(self, selector: str, child_selector: str) -> List[List[str]]:
        return self._page.eval_on_selector_all(selector, _GROUPED_JS, child_selector)

    def text_positions(self, selector: str) -> List[Tuple[str, float]]:
        return [(text, float(top)) for text, top in
                self._page.eval_on_selector_all(selector, _POSITIONS_JS)]

    def close(self) -> None:
        try:
            self._page.close()
        except PlaywrightError as e:
            print(f"    Page close error: {e}", flush=True)


# =============================================================================
# Recorded HTML snapshot
# =============================================================================

class HtmlSnapshotPage(PageAccessor):
    """
    PageAccessor over a saved HTML document.

    A snapshot has no layout, so text_positions() is always empty and the
    geometric quantity strategy never fires against it.
    """

    def __init__(self, html: str, url: str = ""):
        self._soup = BeautifulSoup(html, "html.parser")
        self._url = url

    @classmethod
    def from_file(cls, path: str, url: str = "") -> "HtmlSnapshotPage":
        with open(path, "r", encoding="utf-8") as f:
            return cls(f.read(), url=url)

    @property
    def url(self) -> str:
        return self._url

    def goto(self, url: str, timeout_ms: int) -> None:
        # The snapshot is the recorded state of this url
        self._url = url

    def wait_for_selector(self, selector: str, timeout_ms: int) -> bool:
        return self._soup.select_one(selector) is not None

    def title(self) -> str:
        if self._soup.title and self._soup.title.string:
            return self._soup.title.string.strip()
        return ""

    def texts(self, selector: str) -> List[str]:
        return [el.get_text().strip() for el in self._soup.select(selector)]

    def grouped_texts(self, selector: str, child_selector: str) -> List[List[str]]:
        return [
            [child.get_text().strip() for child in el.select(child_selector)]
            for el in self._soup.select(selector)
        ]

    def text_positions(self, selector: str) -> List[Tuple[str, float]]:
        return []
