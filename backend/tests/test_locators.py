"""
Tests for the field locators: product identity, colors, sizes and the quantity matrix.
Each signal has prioritized strategies; the first non-empty one wins.
"""
import pytest

from conftest import FakePage


class TestRunStrategies:
    """First non-empty result wins; raising strategies count as empty."""

    def test_first_non_empty_wins(self):
        from inventory_extractor import run_strategies

        calls = []

        def strategy(name, result):
            def run():
                calls.append(name)
                return result
            return (name, run)

        result = run_strategies("test", [strategy("a", []), strategy("b", [1]), strategy("c", [2])])
        assert result == [1]
        assert calls == ["a", "b"]

    def test_raising_strategy_is_skipped(self):
        from inventory_extractor import run_strategies

        def boom():
            raise RuntimeError("selector timed out")

        assert run_strategies("test", [("boom", boom), ("ok", lambda: ["x"])]) == ["x"]

    def test_all_empty(self):
        from inventory_extractor import run_strategies

        assert run_strategies("test", [("a", lambda: []), ("b", lambda: [])]) == []


class TestProductInfo:

    def test_heading_preferred(self):
        from inventory_extractor import locate_product_info

        page = FakePage(title="Other | ASICS", texts={"h1": ["  GEL-KAYANO\n 31 "]})
        info = locate_product_info(page, "https://b2b.asics.com/products/1011B548")
        assert info.product_name == "GEL-KAYANO 31"
        assert info.style_id == "1011B548"

    def test_named_element_when_no_heading(self):
        from inventory_extractor import PRODUCT_NAME_SELECTORS, locate_product_info

        page = FakePage(texts={"h1": [""], PRODUCT_NAME_SELECTORS[1]: ["NOVABLAST 5"]})
        assert locate_product_info(page, "").product_name == "NOVABLAST 5"

    def test_title_prefix(self):
        from inventory_extractor import locate_product_info

        page = FakePage(title="GT-2000 13 | ASICS B2B")
        assert locate_product_info(page, "").product_name == "GT-2000 13"

    def test_unknown_product(self):
        from inventory_extractor import locate_product_info

        info = locate_product_info(FakePage(), "https://b2b.asics.com/orders/1")
        assert info.product_name == "Unknown Product"
        assert info.style_id == "Unknown"


class TestColorLocator:

    def test_structure_strategy(self):
        from inventory_extractor import COLOR_ITEM_SELECTOR, ColorVariant, locate_colors

        page = FakePage(grouped={COLOR_ITEM_SELECTOR: [
            ["300", "-", "Black/White"],
            ["3X0", "-", "Bad"],           # code is not three digits
            ["401", "/", "Blue"],          # separator is not "-"
            ["020"],                       # fewer than three spans
            ["300", "-", "Duplicate"],
        ]})
        assert locate_colors(page) == [ColorVariant("300", "Black/White")]

    def test_url_strategy(self):
        from inventory_extractor import ColorVariant, locate_colors

        page = FakePage(url="https://b2b.asics.com/products/1011B548?colorCode=750")
        assert locate_colors(page) == [ColorVariant("750", "Color 750")]

    def test_text_strategy(self):
        from inventory_extractor import ALL_ELEMENTS_SELECTOR, ColorVariant, locate_colors

        page = FakePage(texts={ALL_ELEMENTS_SELECTOR: [
            "Colors", "001 - BLACK", "020 - SHEET ROCK/WHITE", "001 - BLACK", "001 - black",
        ]})
        assert locate_colors(page) == [
            ColorVariant("001", "BLACK"),
            ColorVariant("020", "SHEET ROCK/WHITE"),
        ]

    def test_structure_beats_url(self):
        from inventory_extractor import COLOR_ITEM_SELECTOR, locate_colors

        page = FakePage(
            url="https://b2b.asics.com/products/1011B548?colorCode=750",
            grouped={COLOR_ITEM_SELECTOR: [["001", "-", "BLACK"], ["400", "-", "BLUE"]]},
        )
        assert [c.code for c in locate_colors(page)] == ["001", "400"]

    def test_no_colors(self):
        from inventory_extractor import locate_colors

        assert locate_colors(FakePage()) == []


class TestSizeLocator:

    def test_structure_keeps_column_order(self):
        from inventory_extractor import SIZE_LABEL_SELECTOR, locate_sizes

        page = FakePage(texts={SIZE_LABEL_SELECTOR: ["10", "9", "9.5", "Size", "9"]})
        assert locate_sizes(page) == ["10", "9", "9.5"]

    def test_scan_filters_range_and_sorts(self):
        from inventory_extractor import SIZE_SCAN_SELECTOR, sizes_from_scan

        page = FakePage(texts={SIZE_SCAN_SELECTOR: ["10", "16", "9", "5", "9.5", "9", "abc", "100"]})
        assert sizes_from_scan(page) == ["9", "9.5", "10"]

    def test_scan_normalizes_half_glyph(self):
        from inventory_extractor import SIZE_SCAN_SELECTOR, sizes_from_scan

        page = FakePage(texts={SIZE_SCAN_SELECTOR: ["8½", "8", "8.5"]})
        assert sizes_from_scan(page) == ["8", "8.5"]

    def test_scan_custom_range(self):
        from inventory_extractor import SIZE_SCAN_SELECTOR, sizes_from_scan

        page = FakePage(texts={SIZE_SCAN_SELECTOR: ["4", "5", "16"]})
        assert sizes_from_scan(page, min_size=4, max_size=16) == ["4", "5", "16"]

    def test_standard_ladder_last_resort(self):
        from inventory_extractor import STANDARD_US_SIZES, locate_sizes

        sizes = locate_sizes(FakePage())
        assert sizes == STANDARD_US_SIZES
        assert len(sizes) == 19
        assert sizes[0] == "6" and sizes[-1] == "15"


class TestQuantityMatrix:

    def test_grid_rows(self):
        from inventory_extractor import GRID_ROW_SELECTOR, locate_quantity_matrix

        page = FakePage(grouped={GRID_ROW_SELECTOR: [
            ["5", "0", "12+"],
            ["-", "3", "0"],
            ["", "Total"],                 # no quantity cells, dropped
        ]})
        assert locate_quantity_matrix(page) == [["5", "0", "12+"], ["-", "3", "0"]]

    def test_table_rows_need_more_than_min_cells(self):
        from inventory_extractor import TABLE_ROW_SELECTOR, quantities_from_tables

        page = FakePage(grouped={TABLE_ROW_SELECTOR: [
            ["Color", "8", "9", "10"],     # three numeric cells: not enough
            ["BLACK", "4", "0", "3", "2"],
            ["BLUE", "1", "20+", "-", "0", "0"],
        ]})
        assert quantities_from_tables(page) == [["4", "0", "3", "2"], ["1", "20+", "0", "0"]]

    def test_table_used_when_grid_empty(self):
        from inventory_extractor import TABLE_ROW_SELECTOR, locate_quantity_matrix

        page = FakePage(grouped={TABLE_ROW_SELECTOR: [["1", "2", "3", "4"]]})
        assert locate_quantity_matrix(page) == [["1", "2", "3", "4"]]

    def test_position_fallback(self):
        from inventory_extractor import LEAF_SELECTOR, locate_quantity_matrix

        page = FakePage(positions={LEAF_SELECTOR: [
            ("3", 200.0), ("1", 100.0), ("2", 104.0), ("4", 100.5), ("5", 108.0),
            ("7", 203.0), ("8", 201.0), ("9", 205.0),
            ("Total", 300.0), ("12", 300.0),
        ]})
        rows = locate_quantity_matrix(page)
        assert rows == [["1", "4", "2", "5"], ["3", "8", "7", "9"]]


class TestGroupByPosition:
    """Geometric row clustering used when neither grid nor table is present."""

    def test_gap_starts_new_row(self):
        from inventory_extractor import group_by_position

        items = [("a", 0), ("b", 1), ("c", 2), ("d", 3),
                 ("e", 50), ("f", 51), ("g", 52), ("h", 53)]
        assert group_by_position(items, tolerance=10, min_cells=3) == [
            ["a", "b", "c", "d"], ["e", "f", "g", "h"],
        ]

    def test_small_groups_dropped(self):
        from inventory_extractor import group_by_position

        items = [("a", 0), ("b", 1), ("c", 2), ("x", 40), ("y", 41), ("z", 42), ("w", 43)]
        assert group_by_position(items, tolerance=10, min_cells=3) == [["x", "y", "z", "w"]]

    def test_gap_equal_to_tolerance_splits(self):
        from inventory_extractor import group_by_position

        items = [("a", 0), ("b", 10), ("c", 20), ("d", 30)]
        assert group_by_position(items, tolerance=10, min_cells=0) == [["a"], ["b"], ["c"], ["d"]]

    def test_chained_small_gaps_stay_together(self):
        """Gaps are measured between consecutive items, so a slow drift stays one row."""
        from inventory_extractor import group_by_position

        items = [("a", 0), ("b", 9), ("c", 18), ("d", 27)]
        assert group_by_position(items, tolerance=10, min_cells=3) == [["a", "b", "c", "d"]]

    def test_empty(self):
        from inventory_extractor import group_by_position

        assert group_by_position([]) == []
