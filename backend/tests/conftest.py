"""
Pytest fixtures and test infrastructure for extractor, database and API tests.
"""
import pytest
import os
import sys

# Add parent directory to path for imports
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))


PRODUCT_URL = 'https://b2b.asics.com/products/1011B548?colorCode=001'

# Two colors, three sizes, quantity rows [5, 0, 12+] and [-, 3, 0]
PRODUCT_HTML = '''
<html>
<head><title>GEL-KAYANO 31 | ASICS B2B</title></head>
<body>
  <h1>GEL-KAYANO 31</h1>
  <ul class="colors">
    <li><div class="flex"><div class="flex">
      <span>001</span><span>-</span><span>BLACK/WHITE</span>
    </div></div></li>
    <li><div class="flex"><div class="flex">
      <span>400</span><span>-</span><span>BLUE EXPANSE</span>
    </div></div></li>
  </ul>
  <div class="grid grid-flow-col">
    <div class="text-center font-bold">9</div>
    <div class="text-center font-bold">9.5</div>
    <div class="text-center font-bold">10</div>
  </div>
  <div class="grid grid-flow-col"><div>5</div><div>0</div><div>12+</div></div>
  <div class="grid grid-flow-col"><div>-</div><div>3</div><div>0</div></div>
</body>
</html>
'''

TABLE_HTML = '''
<html>
<head><title>GT-2000 13 | ASICS B2B</title></head>
<body>
  <div class="product-title">GT-2000 13</div>
  <p>001 - BLACK</p>
  <p>020 - SHEET ROCK/WHITE</p>
  <table>
    <tr><th>Color</th><th>8</th><th>8½</th><th>9</th><th>16</th></tr>
    <tr><td>BLACK</td><td>4</td><td>0</td><td>3</td><td>2</td></tr>
    <tr><td>SHEET ROCK</td><td>1</td><td>20+</td><td>0</td><td>0</td></tr>
    <tr><td>Total</td><td>5</td><td>30</td></tr>
  </table>
</body>
</html>
'''

SPARSE_HTML = '''
<html>
<head><title>Order 55012 | ASICS B2B</title></head>
<body>
  <h1>Order Detail</h1>
  <div><span>Qty</span><span>1200</span><span>42</span></div>
</body>
</html>
'''


class FakePage:
    """
    In-memory PageAccessor: canned answers per selector.

    texts / grouped / positions map a selector to its results; unknown
    selectors return empty lists.
    """

    def __init__(self, url='', title='', texts=None, grouped=None, positions=None,
                 ready=True, goto_error=None):
        self._url = url
        self._title = title
        self._texts = texts or {}
        self._grouped = grouped or {}
        self._positions = positions or {}
        self._ready = ready
        self._goto_error = goto_error
        self.visited = []
        self.closed = False

    @property
    def url(self):
        return self._url

    def goto(self, url, timeout_ms):
        self.visited.append(url)
        if self._goto_error is not None:
            raise self._goto_error
        self._url = url

    def wait_for_selector(self, selector, timeout_ms):
        return self._ready

    def title(self):
        return self._title

    def texts(self, selector):
        return list(self._texts.get(selector, []))

    def grouped_texts(self, selector, child_selector):
        return [list(g) for g in self._grouped.get(selector, [])]

    def text_positions(self, selector):
        return list(self._positions.get(selector, []))

    def close(self):
        self.closed = True


class FakeSession:
    """
    Stand-in for BrowserSession used by batch runner tests.

    pages maps url -> html (served through HtmlSnapshotPage) or an exception
    instance to raise on navigation.
    """

    def __init__(self, pages, login_error=None, on_page=None):
        self.pages = pages
        self.login_error = login_error
        self.on_page = on_page
        self.started = False
        self.logged_in = False
        self.closed = False
        self.opened = 0

    def start(self):
        self.started = True

    def login(self):
        if self.login_error is not None:
            raise self.login_error
        self.logged_in = True

    def new_page(self):
        from page_accessor import HtmlSnapshotPage, NavigationError

        self.opened += 1
        session = self

        class _Page(HtmlSnapshotPage):
            def goto(self, url, timeout_ms):
                if session.on_page is not None:
                    session.on_page(url)
                content = session.pages.get(url)
                if isinstance(content, Exception):
                    raise content
                if content is None:
                    raise NavigationError(f"HTTP 404 loading {url}")
                HtmlSnapshotPage.__init__(self, content, url)

        return _Page('')

    def close(self):
        self.closed = True


@pytest.fixture
def sqlite_conn():
    """In-memory SQLite database with the full schema."""
    from inventory_db import init_sqlite_database

    conn = init_sqlite_database(':memory:')
    yield conn
    conn.close()


@pytest.fixture
def sqlite_path(tmp_path, monkeypatch):
    """File-backed SQLite path; DatabaseConnection.connect() will use it even if DATABASE_URL is set."""
    import settings

    monkeypatch.setattr(settings, 'USE_POSTGRES', False)
    return str(tmp_path / 'inventory_test.db')


@pytest.fixture
def product_page():
    """Recorded product page with a full grid."""
    from page_accessor import HtmlSnapshotPage

    return HtmlSnapshotPage(PRODUCT_HTML, url=PRODUCT_URL)


@pytest.fixture
def extractor():
    """Extractor with no settle delay and quiet output."""
    from inventory_extractor import InventoryExtractor

    return InventoryExtractor(settle_delay=0, verbose=False)


# Helper functions for tests
def make_record(style_id='1011B548', color_code='001', size_us='9', quantity=5,
                raw_quantity=None, color_name='BLACK/WHITE', product_name='GEL-KAYANO 31',
                extracted_at='2024-06-01T10:00:00', url=PRODUCT_URL):
    """Helper to build an InventoryRecord for testing."""
    from inventory_extractor import InventoryRecord

    return InventoryRecord(
        product_name=product_name,
        style_id=style_id,
        color_code=color_code,
        color_name=color_name,
        size_us=size_us,
        quantity=quantity,
        raw_quantity=raw_quantity if raw_quantity is not None else str(quantity),
        extracted_at=extracted_at,
        url=url,
    )
