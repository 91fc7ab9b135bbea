"""
Tests for the MSER detection driver.
"""

import json

import cv2
import numpy as np
import pytest

from mser_regions import MserRegions


def make_square_image():
    """Helper: 40x40 bright background with a dark 10x10 square."""
    image = np.full((40, 40), 200, dtype=np.uint8)
    image[10:20, 10:20] = 50
    return image


class TestDetectRegions:
    """Test detection on synthetic images."""

    def test_dark_square_detected(self):
        regions = MserRegions().detect_regions(make_square_image(), dark_to_bright=True)

        assert len(regions) == 1
        region = regions[0]
        assert region['size'] == 100
        assert region['score'] == 0.0
        assert region['value'] == 199
        assert region['bbox'] == (10, 19, 10, 19)
        expected = np.flatnonzero(make_square_image() == 50)
        assert np.array_equal(region['indices'], expected)

    def test_bright_square_reports_gray_value(self):
        """Bright-to-dark regions report the gray threshold, not the inverted level."""
        image = np.full((40, 40), 50, dtype=np.uint8)
        image[10:20, 10:20] = 200

        regions = MserRegions().detect_regions(image, dark_to_bright=False)

        assert len(regions) == 1
        assert regions[0]['level'] == 149
        assert regions[0]['value'] == 51
        assert regions[0]['bbox'] == (10, 19, 10, 19)

    def test_dark_square_value_is_level(self):
        region = MserRegions().detect_regions(make_square_image(), dark_to_bright=True)[0]

        assert region['value'] == region['level']

    def test_background_too_large(self):
        regions = MserRegions().detect_regions(make_square_image(), dark_to_bright=False)

        assert regions == []

    def test_process_image_both_polarities(self):
        rects = MserRegions().process_image(make_square_image())

        assert rects == [(10, 10, 10, 10)]

    def test_get_regions_from_bgr(self):
        bgr = cv2.cvtColor(make_square_image(), cv2.COLOR_GRAY2BGR)

        assert MserRegions().get_regions(bgr) == [(10, 10, 10, 10)]


class TestPreprocessing:
    """Test resizing and format conversion."""

    def test_downscale(self):
        image = np.zeros((1200, 300), dtype=np.uint8)
        resized, factor = MserRegions(max_dim=600).preprocess_image(image)

        assert factor == 0.5
        assert resized.shape == (600, 150)

    def test_non_uint8_stretched(self):
        image = np.array([[0, 1000], [500, 1000]], dtype=np.uint16)
        resized, factor = MserRegions().preprocess_image(image)

        assert factor == 1.0
        assert resized.dtype == np.uint8
        assert resized.min() == 0
        assert resized.max() == 255

    def test_resize_rects(self):
        rects = MserRegions().resize_rects([(10, 20, 30, 40)], 0.5)

        assert rects == [(20, 40, 60, 80)]

    def test_convert_bbox_format(self):
        assert MserRegions()._convert_bbox_format([(10, 19, 5, 7)]) == [(5, 10, 3, 10)]


class TestConfiguration:
    """Invalid parameters are rejected at construction."""

    @pytest.mark.parametrize("kwargs", [
        {'delta': -1},
        {'min_size': -5},
        {'max_size_ratio': 0},
        {'max_size_ratio': 1.5},
        {'max_variation': -0.1},
        {'max_dim': 0},
    ])
    def test_invalid(self, kwargs):
        with pytest.raises(ValueError):
            MserRegions(**kwargs)


class TestProcessFolder:
    """Test batch processing to JSON."""

    def test_writes_regions_json(self, tmp_path):
        input_folder = tmp_path / "img"
        input_folder.mkdir()
        cv2.imwrite(str(input_folder / "square.png"), make_square_image())

        result = MserRegions().process_folder(str(input_folder), str(tmp_path / "out"), num_workers=1)

        with open(tmp_path / "out" / "regions.json") as f:
            saved = json.load(f)
        assert saved == {"square.png": [{"x": 10, "y": 10, "w": 10, "h": 10}]}
        assert result == saved

    def test_empty_folder(self, tmp_path):
        assert MserRegions().process_folder(str(tmp_path), str(tmp_path / "out"), num_workers=1) == {}
