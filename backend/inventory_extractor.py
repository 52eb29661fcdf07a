"""
ASICS B2B Inventory Extractor

Turns a rendered product or order page into (style x color x size -> quantity)
records. The portal ships no API and changes its markup without notice, so
every signal is located by a short list of strategies tried in priority
order; the first strategy with a non-empty result wins and results are
never merged.

Pipeline:
    page -> product info, colors, sizes, quantity matrix
         -> assemble_inventory() -> List[InventoryRecord]

Order pages and product pages go through the same extract_inventory() call.
"""

import re
import time
from dataclasses import asdict, dataclass
from datetime import datetime
from typing import Callable, Dict, List, Optional, Sequence, Tuple
from urllib.parse import parse_qs, urlparse

from page_accessor import PageAccessor


# =============================================================================
# Configuration
# =============================================================================

# Selectors (tracks the portal's current Tailwind markup)
PRODUCT_NAME_SELECTORS = [
    "h1",
    '[data-testid="product-name"], .product-name, .product-title',
]
COLOR_ITEM_SELECTOR = "li"
COLOR_SPAN_SELECTOR = "div.flex div.flex > span"
SIZE_LABEL_SELECTOR = "div.text-center.font-bold"
SIZE_SCAN_SELECTOR = "td, th, span, div, label, button"
GRID_ROW_SELECTOR = f"div.grid.grid-flow-col:not(:has({SIZE_LABEL_SELECTOR}))"
GRID_CELL_SELECTOR = ":scope > *"
TABLE_ROW_SELECTOR = "table tr"
TABLE_CELL_SELECTOR = "td, th"
LEAF_SELECTOR = "body *:not(:has(*))"
ALL_ELEMENTS_SELECTOR = "body *"
MATRIX_READY_SELECTOR = f"{GRID_ROW_SELECTOR}, {TABLE_ROW_SELECTOR}"

# Patterns
QUANTITY_PATTERN = re.compile(r'^\d+\+?$')
GRID_QUANTITY_PATTERN = re.compile(r'^(?:\d+\+?|-)$')  # grid rows also render "-" for none
COLOR_CODE_PATTERN = re.compile(r'^\d{3}$')
COLOR_TEXT_PATTERN = re.compile(r'^(\d{3})\s*-\s*([A-Z/\s]+)$')
SIZE_LABEL_PATTERN = re.compile(r'^\d+\.?\d*$')
SIZE_SCAN_PATTERN = re.compile(r'^(\d{1,2}(?:\.\d)?|\d{1,2}½)$')
STYLE_ID_PATTERN = re.compile(r'(\d{4}[A-Z]\d{3})', re.IGNORECASE)
DIGITS_PATTERN = re.compile(r'^[0-9]+$')
WHOLE_NUMBER_TOKEN_PATTERN = re.compile(r'(?<![0-9.])([0-9]+)(?![0-9]|\.[0-9])')

# Heuristic thresholds
MIN_SIZE = 6.0
MAX_SIZE = 15.0
ROW_TOLERANCE_PX = 10.0   # Same row when consecutive tops differ by less than this
MIN_ROW_CELLS = 3         # Table and geometric rows need MORE than this many cells
FALLBACK_MAX_QUANTITY = 999

STANDARD_US_SIZES = [
    '6', '6.5', '7', '7.5', '8', '8.5', '9', '9.5', '10', '10.5',
    '11', '11.5', '12', '12.5', '13', '13.5', '14', '14.5', '15',
]

UNKNOWN_STYLE = "Unknown"
UNKNOWN_PRODUCT = "Unknown Product"
FALLBACK_COLOR_CODE = "000"
FALLBACK_SIZE = "Various"


# =============================================================================
# Data Model
# =============================================================================

@dataclass(frozen=True)
class ProductInfo:
    """Product identity for one page visit."""
    product_name: str
    style_id: str


@dataclass(frozen=True)
class ColorVariant:
    """A colorway: 3-digit code plus display name."""
    code: str
    name: str


@dataclass
class InventoryRecord:
    """One (style, color, size) stock reading. Natural key: style_id, color_code, size_us."""
    product_name: str
    style_id: str
    color_code: str
    color_name: str
    size_us: str
    quantity: int
    raw_quantity: str
    extracted_at: str
    url: str

    @property
    def key(self) -> Tuple[str, str, str]:
        return (self.style_id, self.color_code, self.size_us)

    def to_dict(self) -> Dict:
        return asdict(self)


# =============================================================================
# Quantity Normalizer
# =============================================================================

def parse_quantity(text: Optional[str]) -> int:
    """
    Map a displayed stock string to an integer.

    "12+" means "at least 12" and collapses to 12, so callers must treat
    the result as a floor. Empty, "-", None and anything that is not plain
    ASCII digits (signs, underscores, decimals) are 0.
    """
    if text is None:
        return 0
    text = str(text).strip()
    if text in ('', '-'):
        return 0
    if '+' in text:
        text = text.replace('+', '').strip()
    if not DIGITS_PATTERN.match(text):
        return 0
    return int(text)


def size_value(label: str) -> Optional[float]:
    """Numeric value of a size label ("9.5", "10½"), or None."""
    label = label.strip()
    if label.endswith('½'):
        label = label[:-1] + '.5'
    try:
        return float(label)
    except ValueError:
        return None


def normalize_size_label(label: str) -> str:
    """Write half sizes as "10.5" rather than "10½"."""
    label = label.strip()
    if label.endswith('½'):
        return label[:-1] + '.5'
    return label


# =============================================================================
# URL helpers
# =============================================================================

def extract_style_id(url: str) -> str:
    """Pull the style id (e.g. 1011B548) out of the URL path; "Unknown" if absent."""
    if not url:
        return UNKNOWN_STYLE
    match = STYLE_ID_PATTERN.search(urlparse(url).path)
    return match.group(1).upper() if match else UNKNOWN_STYLE


def extract_color_code_param(url: str) -> Optional[str]:
    """Value of the colorCode query parameter, if present and non-empty."""
    if not url:
        return None
    values = parse_qs(urlparse(url).query).get('colorCode')
    if values and values[0].strip():
        return values[0].strip()
    return None


# =============================================================================
# Field Locators
# =============================================================================

def run_strategies(label: str, strategies: Sequence[Tuple[str, Callable[[], list]]],
                   verbose: bool = False) -> list:
    """
    Return the first non-empty strategy result, or [] if every strategy comes up empty.

    A strategy that raises is treated the same as one that found nothing.
    """
    for name, strategy in strategies:
        try:
            result = strategy()
        except Exception as e:
            print(f"    {label}: {name} strategy failed ({e})", flush=True)
            continue
        if result:
            if verbose:
                print(f"    {label}: {len(result)} via {name}", flush=True)
            return result
    if verbose:
        print(f"    {label}: nothing found", flush=True)
    return []


# --- product identity --------------------------------------------------------

def _first_text(page: PageAccessor, selector: str) -> List[str]:
    for text in page.texts(selector):
        if text:
            return [text]
    return []


def _title_text(page: PageAccessor) -> List[str]:
    title = (page.title() or '').split('|')[0].strip()
    return [title] if title else []


def locate_product_info(page: PageAccessor, url: str, verbose: bool = False) -> ProductInfo:
    """Product name from the heading, a named element, or the document title."""
    strategies = [(f"selector {sel!r}", lambda sel=sel: _first_text(page, sel))
                  for sel in PRODUCT_NAME_SELECTORS]
    strategies.append(("title", lambda: _title_text(page)))

    found = run_strategies("product", strategies, verbose)
    product_name = ' '.join(found[0].split()) if found else UNKNOWN_PRODUCT
    return ProductInfo(product_name=product_name, style_id=extract_style_id(url))


# --- colors ------------------------------------------------------------------

def colors_from_structure(page: PageAccessor) -> List[ColorVariant]:
    """List items whose nested flex row reads: code, "-", name."""
    colors: List[ColorVariant] = []
    seen = set()
    for spans in page.grouped_texts(COLOR_ITEM_SELECTOR, COLOR_SPAN_SELECTOR):
        if len(spans) < 3:
            continue
        code, separator, name = spans[0], spans[1], spans[2]
        if not COLOR_CODE_PATTERN.match(code) or separator != '-':
            continue
        if code in seen:
            continue
        seen.add(code)
        colors.append(ColorVariant(code=code, name=name.strip()))
    return colors


def colors_from_url(page: PageAccessor) -> List[ColorVariant]:
    """Single color synthesized from the colorCode query parameter."""
    code = extract_color_code_param(page.url)
    if not code:
        return []
    return [ColorVariant(code=code, name=f"Color {code}")]


def colors_from_text(page: PageAccessor) -> List[ColorVariant]:
    """Any element whose whole text reads like "300 - BLACK/WHITE"."""
    colors: List[ColorVariant] = []
    seen = set()
    for text in page.texts(ALL_ELEMENTS_SELECTOR):
        match = COLOR_TEXT_PATTERN.match(text)
        if not match or match.group(1) in seen:
            continue
        seen.add(match.group(1))
        colors.append(ColorVariant(code=match.group(1), name=match.group(2).strip()))
    return colors


def locate_colors(page: PageAccessor, verbose: bool = False) -> List[ColorVariant]:
    return run_strategies("colors", [
        ("structure", lambda: colors_from_structure(page)),
        ("url", lambda: colors_from_url(page)),
        ("text", lambda: colors_from_text(page)),
    ], verbose)


# --- sizes -------------------------------------------------------------------

def sizes_from_structure(page: PageAccessor) -> List[str]:
    """Size header cells, in column order."""
    sizes: List[str] = []
    for text in page.texts(SIZE_LABEL_SELECTOR):
        if SIZE_LABEL_PATTERN.match(text) and text not in sizes:
            sizes.append(text)
    return sizes


def sizes_from_scan(page: PageAccessor, min_size: float = MIN_SIZE,
                    max_size: float = MAX_SIZE) -> List[str]:
    """Any cell-like element holding a plausible US shoe size, sorted ascending."""
    found = set()
    for text in page.texts(SIZE_SCAN_SELECTOR):
        if not SIZE_SCAN_PATTERN.match(text):
            continue
        value = size_value(text)
        if value is not None and min_size <= value <= max_size:
            found.add(normalize_size_label(text))
    return sorted(found, key=size_value)


def locate_sizes(page: PageAccessor, min_size: float = MIN_SIZE,
                 max_size: float = MAX_SIZE, verbose: bool = False) -> List[str]:
    return run_strategies("sizes", [
        ("structure", lambda: sizes_from_structure(page)),
        ("scan", lambda: sizes_from_scan(page, min_size, max_size)),
        ("standard ladder", lambda: list(STANDARD_US_SIZES)),
    ], verbose)


# --- quantity matrix ---------------------------------------------------------

def quantities_from_grid(page: PageAccessor) -> List[List[str]]:
    """Grid-layout rows, one per color; cells in size order."""
    rows = []
    for cells in page.grouped_texts(GRID_ROW_SELECTOR, GRID_CELL_SELECTOR):
        row = [cell for cell in cells if GRID_QUANTITY_PATTERN.match(cell)]
        if row:
            rows.append(row)
    return rows


def quantities_from_tables(page: PageAccessor, min_cells: int = MIN_ROW_CELLS) -> List[List[str]]:
    """Table rows with more than min_cells quantity-looking cells."""
    rows = []
    for cells in page.grouped_texts(TABLE_ROW_SELECTOR, TABLE_CELL_SELECTOR):
        row = [cell for cell in cells if QUANTITY_PATTERN.match(cell)]
        if len(row) > min_cells:
            rows.append(row)
    return rows


def group_by_position(positioned: Sequence[Tuple[str, float]],
                      tolerance: float = ROW_TOLERANCE_PX,
                      min_cells: int = MIN_ROW_CELLS) -> List[List[str]]:
    """
    Cluster (text, top) pairs into rows.

    Sorted by top; a new row starts wherever the gap to the previous item
    is at least tolerance. Rows with min_cells or fewer members are dropped.
    Best-effort: wrapped layouts can split or merge rows.
    """
    ordered = sorted(positioned, key=lambda item: item[1])
    groups: List[List[str]] = []
    current: List[str] = []
    previous_top: Optional[float] = None

    for text, top in ordered:
        if previous_top is not None and abs(top - previous_top) >= tolerance:
            groups.append(current)
            current = []
        current.append(text)
        previous_top = top
    if current:
        groups.append(current)

    return [group for group in groups if len(group) > min_cells]


def quantities_from_positions(page: PageAccessor, tolerance: float = ROW_TOLERANCE_PX,
                              min_cells: int = MIN_ROW_CELLS) -> List[List[str]]:
    """Quantity-looking leaf elements grouped into rows by on-screen position."""
    positioned = [(text, top) for text, top in page.text_positions(LEAF_SELECTOR)
                  if QUANTITY_PATTERN.match(text)]
    return group_by_position(positioned, tolerance, min_cells)


def locate_quantity_matrix(page: PageAccessor, tolerance: float = ROW_TOLERANCE_PX,
                           min_cells: int = MIN_ROW_CELLS,
                           verbose: bool = False) -> List[List[str]]:
    return run_strategies("quantities", [
        ("grid", lambda: quantities_from_grid(page)),
        ("table", lambda: quantities_from_tables(page, min_cells)),
        ("position", lambda: quantities_from_positions(page, tolerance, min_cells)),
    ], verbose)


# =============================================================================
# Inventory Assembler
# =============================================================================

def first_whole_number(texts: Sequence[str], max_value: int = FALLBACK_MAX_QUANTITY) -> Optional[str]:
    """
    First whole-number token in [0, max_value] across the element texts.

    "Available: 7 pairs" yields "7". Digits that are part of a decimal
    ("3.5") are not tokens; out-of-range tokens are skipped.
    """
    for text in texts:
        for match in WHOLE_NUMBER_TOKEN_PATTERN.finditer(text):
            if int(match.group(1)) <= max_value:
                return match.group(1)
    return None


def fallback_record(product: ProductInfo, url: str, page_texts: Sequence[str],
                    extracted_at: str) -> InventoryRecord:
    """Single best-guess record for pages without usable color/size signals."""
    color_code = extract_color_code_param(url)
    color_name = f"Color {color_code}" if color_code else "Unknown"
    raw = first_whole_number(page_texts)

    return InventoryRecord(
        product_name=product.product_name,
        style_id=product.style_id,
        color_code=color_code or FALLBACK_COLOR_CODE,
        color_name=color_name,
        size_us=FALLBACK_SIZE,
        quantity=parse_quantity(raw),
        raw_quantity=raw if raw is not None else '0',
        extracted_at=extracted_at,
        url=url,
    )


def assemble_inventory(product: ProductInfo, colors: Sequence[ColorVariant],
                       sizes: Sequence[str], quantity_matrix: Sequence[Sequence[str]],
                       url: str, fallback_texts: Sequence[str] = (),
                       extracted_at: Optional[str] = None) -> List[InventoryRecord]:
    """
    Cross colors with sizes into one record per pair.

    Matrix rows line up with colors and columns with sizes, both by
    discovery order. A missing row or cell reads as "0", so the result
    always has len(colors) * len(sizes) records. With no colors or no sizes
    the result is a single fallback record built from fallback_texts.
    """
    extracted_at = extracted_at or datetime.now().isoformat()

    if not colors or not sizes:
        return [fallback_record(product, url, fallback_texts, extracted_at)]

    records = []
    for color_index, color in enumerate(colors):
        row = quantity_matrix[color_index] if color_index < len(quantity_matrix) else []
        for size_index, size in enumerate(sizes):
            raw = row[size_index] if size_index < len(row) else '0'
            records.append(InventoryRecord(
                product_name=product.product_name,
                style_id=product.style_id,
                color_code=color.code,
                color_name=color.name,
                size_us=size,
                quantity=parse_quantity(raw),
                raw_quantity=raw,
                extracted_at=extracted_at,
                url=url,
            ))
    return records


# =============================================================================
# Page-level extraction
# =============================================================================

class InventoryExtractor:
    """
    Runs the full locate-and-assemble pipeline against one page.

    The heuristic thresholds are instance settings so a deployment can tune
    them without code changes.
    """

    def __init__(self, navigation_timeout_ms: int = 60000, selector_timeout_ms: int = 15000,
                 settle_delay: float = 3.0, row_tolerance: float = ROW_TOLERANCE_PX,
                 min_row_cells: int = MIN_ROW_CELLS, min_size: float = MIN_SIZE,
                 max_size: float = MAX_SIZE, verbose: bool = True):
        self.navigation_timeout_ms = navigation_timeout_ms
        self.selector_timeout_ms = selector_timeout_ms
        self.settle_delay = settle_delay
        self.row_tolerance = row_tolerance
        self.min_row_cells = min_row_cells
        self.min_size = min_size
        self.max_size = max_size
        self.verbose = verbose

    def extract(self, page: PageAccessor, url: str) -> List[InventoryRecord]:
        """Navigate to url and extract its inventory. NavigationError propagates."""
        page.goto(url, self.navigation_timeout_ms)
        self.wait_for_matrix(page)
        return self.extract_loaded(page, url)

    def wait_for_matrix(self, page: PageAccessor) -> None:
        """Wait for the quantity grid; fall back to a fixed delay if it never shows."""
        try:
            ready = page.wait_for_selector(MATRIX_READY_SELECTOR, self.selector_timeout_ms)
        except Exception as e:
            print(f"    Matrix wait failed ({e})", flush=True)
            ready = False
        if not ready and self.settle_delay > 0:
            time.sleep(self.settle_delay)

    def extract_loaded(self, page: PageAccessor, url: str) -> List[InventoryRecord]:
        """Extract from a page that is already loaded."""
        product = locate_product_info(page, url, self.verbose)
        colors = locate_colors(page, self.verbose)
        sizes = locate_sizes(page, self.min_size, self.max_size, self.verbose)
        matrix = locate_quantity_matrix(page, self.row_tolerance, self.min_row_cells,
                                        self.verbose)

        fallback_texts: List[str] = []
        if not colors or not sizes:
            if self.verbose:
                print("    Missing colors or sizes, using fallback extraction", flush=True)
            try:
                fallback_texts = page.texts(ALL_ELEMENTS_SELECTOR)
            except Exception as e:
                print(f"    Fallback text scan failed ({e})", flush=True)

        return assemble_inventory(product, colors, sizes, matrix, url, fallback_texts)


def extract_inventory(page: PageAccessor, url: str,
                      extractor: Optional[InventoryExtractor] = None) -> List[InventoryRecord]:
    """Shared entry point for product-page and order-page scraping."""
    return (extractor or InventoryExtractor()).extract(page, url)


def format_records(records: Sequence[InventoryRecord]) -> str:
    """Render records as an indented color x size table for console output."""
    if not records:
        return ""

    lines = []
    sizes: List[str] = []
    by_color: Dict[Tuple[str, str], Dict[str, str]] = {}
    for record in records:
        if record.size_us not in sizes:
            sizes.append(record.size_us)
        by_color.setdefault((record.color_code, record.color_name), {})[record.size_us] = record.raw_quantity

    first = records[0]
    lines.append(f"      {first.style_id} | {first.product_name}")
    header = f"      {'Color':<24}" + "".join(f"{s:>6}" for s in sizes)
    lines.append(header)
    lines.append("      " + "-" * (len(header) - 6))
    for (code, name), cells in by_color.items():
        label = f"{code} {name}"[:23]
        lines.append(f"      {label:<24}" + "".join(f"{cells.get(s, ''):>6}" for s in sizes))
    return "\n".join(lines)
