"""Tests for mask synthesis and region parsing."""

import numpy as np
import pytest

from novelagent.errors import InvalidRegionError
from novelagent.masks import RegionRect, invert_mask, parse_region, synthesize, validate_region


def _pixels(image):
    return np.asarray(image.convert("L"))


class TestParseRegion:
    """Tests for x,y,w,h flag parsing."""

    def test_parse(self):
        """Test a well-formed region."""
        assert parse_region("100,200,300,400") == RegionRect(100, 200, 300, 400)

    def test_whitespace_and_whole_floats(self):
        """Test that spaces and .0 suffixes are tolerated."""
        assert parse_region(" 1, 2.0 ,3,4 ") == RegionRect(1, 2, 3, 4)

    @pytest.mark.parametrize("text", ["1,2,3", "1,2,3,4,5", "a,b,c,d", "1.5,2,3,4", "nan,0,1,1", "-1,0,5,5"])
    def test_invalid(self, text):
        """Test that malformed regions raise InvalidRegionError."""
        with pytest.raises(InvalidRegionError):
            parse_region(text)

    def test_invalid_region_is_value_error(self):
        """Test that callers catching ValueError still see region errors."""
        with pytest.raises(ValueError):
            parse_region("x")


class TestValidateRegion:
    """Tests for rectangle validation."""

    def test_returns_ints(self):
        """Test that whole floats are converted to ints."""
        rect = validate_region((1.0, 2.0, 3.0, 4.0))
        assert rect == RegionRect(1, 2, 3, 4)
        assert all(isinstance(value, int) for value in rect)

    def test_negative_rejected(self):
        """Test that negative sizes are rejected."""
        with pytest.raises(InvalidRegionError, match="width"):
            validate_region((0, 0, -5, 5))

    def test_infinite_rejected(self):
        """Test that non-finite coordinates are rejected."""
        with pytest.raises(InvalidRegionError, match="not a number"):
            validate_region((0, float("inf"), 5, 5))


class TestSynthesize:
    """Tests for mask rendering."""

    def test_empty_is_all_white(self):
        """Test that no regions means regenerate everything."""
        mask = synthesize(64, 32, [])
        assert mask.size == (64, 32)
        assert (_pixels(mask) == 255).all()

    def test_full_rect_equals_empty(self):
        """Test that a canvas-sized region matches the empty mask."""
        full = synthesize(64, 32, [RegionRect(0, 0, 64, 32)])
        assert np.array_equal(_pixels(full), _pixels(synthesize(64, 32, [])))

    def test_region_painted_white(self):
        """Test that only the region is white."""
        pixels = _pixels(synthesize(100, 100, [RegionRect(10, 20, 30, 40)]))
        assert pixels[20, 10] == 255
        assert pixels[59, 39] == 255
        assert pixels[60, 40] == 0
        assert pixels[19, 10] == 0
        assert int((pixels == 255).sum()) == 30 * 40

    def test_overlapping_regions(self):
        """Test that overlapping regions are a union."""
        pixels = _pixels(synthesize(50, 50, [RegionRect(0, 0, 20, 20), RegionRect(10, 10, 20, 20)]))
        assert int((pixels == 255).sum()) == 20 * 20 * 2 - 10 * 10

    def test_out_of_bounds_region_is_clipped(self):
        """Test that regions past the edge are silently clipped."""
        pixels = _pixels(synthesize(50, 50, [RegionRect(40, 40, 100, 100), RegionRect(200, 200, 5, 5)]))
        assert int((pixels == 255).sum()) == 10 * 10

    def test_invert(self):
        """Test that invert swaps black and white."""
        plain = _pixels(synthesize(40, 40, [RegionRect(0, 0, 10, 10)]))
        inverted = _pixels(synthesize(40, 40, [RegionRect(0, 0, 10, 10)], invert=True))
        assert np.array_equal(inverted, 255 - plain)

    def test_double_inversion_is_identity(self):
        """Test that inverting twice restores the mask."""
        mask = synthesize(40, 40, [RegionRect(5, 5, 10, 10)])
        assert np.array_equal(_pixels(invert_mask(invert_mask(mask))), _pixels(mask))

    def test_output_is_rgb(self):
        """Test that masks are three-channel images."""
        assert synthesize(8, 8, []).mode == "RGB"

    def test_bad_canvas(self):
        """Test that an empty canvas is rejected."""
        with pytest.raises(InvalidRegionError):
            synthesize(0, 10, [])
