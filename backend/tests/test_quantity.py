"""
Tests for quantity normalization and URL/size helpers.
"""
import pytest


class TestParseQuantity:
    """parse_quantity maps displayed stock strings to integers."""

    @pytest.mark.parametrize("text,expected", [
        ("5", 5),
        ("0", 0),
        ("150", 150),
        (" 7 ", 7),
    ])
    def test_plain_numbers(self, text, expected):
        from inventory_extractor import parse_quantity

        assert parse_quantity(text) == expected

    def test_plus_suffix_collapses_to_floor(self):
        """'12+' means at least 12 and is stored as 12."""
        from inventory_extractor import parse_quantity

        assert parse_quantity("12+") == 12
        assert parse_quantity("99+") == 99

    @pytest.mark.parametrize("text", [None, "", "   ", "-"])
    def test_empty_and_dash_are_zero(self, text):
        from inventory_extractor import parse_quantity

        assert parse_quantity(text) == 0

    @pytest.mark.parametrize("text", ["N/A", "abc", "1.5", "Sold out"])
    def test_non_numeric_is_zero(self, text):
        from inventory_extractor import parse_quantity

        assert parse_quantity(text) == 0

    @pytest.mark.parametrize("text", ["-3", "1_000", "٣", "+-2", "0x10"])
    def test_signed_or_odd_digits_are_zero(self, text):
        """Only plain ASCII digits count; stock is never negative or exotic."""
        from inventory_extractor import parse_quantity

        assert parse_quantity(text) == 0

    def test_bare_plus_is_zero(self):
        """A plus with no digits left after stripping is non-numeric."""
        from inventory_extractor import parse_quantity

        assert parse_quantity("+") == 0


class TestSizeHelpers:
    """Size label parsing and normalization."""

    def test_size_value_decimal(self):
        from inventory_extractor import size_value

        assert size_value("9.5") == 9.5
        assert size_value("10") == 10.0

    def test_size_value_half_glyph(self):
        from inventory_extractor import size_value

        assert size_value("10½") == 10.5

    def test_size_value_not_a_size(self):
        from inventory_extractor import size_value

        assert size_value("Various") is None
        assert size_value("XL") is None

    def test_normalize_half_glyph(self):
        from inventory_extractor import normalize_size_label

        assert normalize_size_label("8½") == "8.5"
        assert normalize_size_label(" 9 ") == "9"


class TestUrlHelpers:
    """Style id and color code come from the product URL."""

    def test_style_id_from_path(self):
        from inventory_extractor import extract_style_id

        assert extract_style_id("https://b2b.asics.com/products/1011B548") == "1011B548"

    def test_style_id_uppercased(self):
        from inventory_extractor import extract_style_id

        assert extract_style_id("https://b2b.asics.com/p/1012b675/detail") == "1012B675"

    def test_style_id_ignores_query(self):
        from inventory_extractor import extract_style_id

        assert extract_style_id("https://b2b.asics.com/orders/view?ref=1011B548") == "Unknown"

    def test_style_id_missing(self):
        from inventory_extractor import extract_style_id

        assert extract_style_id("https://b2b.asics.com/orders/55012") == "Unknown"
        assert extract_style_id("") == "Unknown"

    def test_color_code_param(self):
        from inventory_extractor import extract_color_code_param

        assert extract_color_code_param(
            "https://b2b.asics.com/products/1011B548?colorCode=001&tab=stock") == "001"

    def test_color_code_param_absent_or_empty(self):
        from inventory_extractor import extract_color_code_param

        assert extract_color_code_param("https://b2b.asics.com/products/1011B548") is None
        assert extract_color_code_param("https://b2b.asics.com/products/1011B548?colorCode=") is None
