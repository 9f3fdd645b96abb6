from __future__ import annotations

import pytest

from convert_compress.preview_estimator import PreviewEstimator
from convert_compress.resize_math import PixelSize


@pytest.fixture
def estimator(catalog) -> PreviewEstimator:
    return PreviewEstimator(catalog)


def test_missing_base_size_returns_unknown(estimator: PreviewEstimator) -> None:
    info = estimator.estimate(None, "percent", resize_percent=0.5)
    assert info.target_pixel_size == PixelSize(0, 0)
    assert info.estimated_output_bytes is None


def test_percent_preview_never_upscales(estimator: PreviewEstimator) -> None:
    assert estimator.estimate(PixelSize(400, 300), "percent", resize_percent=0.5).target_pixel_size == PixelSize(200, 150)
    assert estimator.estimate(PixelSize(400, 300), "percent", resize_percent=3.0).target_pixel_size == PixelSize(400, 300)


def test_pixel_preview_keeps_aspect_and_clamps(estimator: PreviewEstimator) -> None:
    info = estimator.estimate(PixelSize(400, 300), "pixels", width_text="200")
    assert info.target_pixel_size == PixelSize(200, 150)

    info = estimator.estimate(PixelSize(400, 300), "pixels", width_text="800")
    assert info.target_pixel_size == PixelSize(400, 300)


def test_unparsable_pixel_text_means_no_resize(estimator: PreviewEstimator) -> None:
    info = estimator.estimate(PixelSize(400, 300), "pixels", width_text="wide", height_text="")
    assert info.target_pixel_size == PixelSize(400, 300)


def test_restricted_format_forces_square(estimator: PreviewEstimator, catalog) -> None:
    info = estimator.estimate(PixelSize(300, 200), "percent", selected_format=catalog.get("ico"))
    assert info.target_pixel_size == PixelSize(200, 200)


def test_restricted_format_applies_max_side(estimator: PreviewEstimator, catalog) -> None:
    info = estimator.estimate(PixelSize(4000, 3000), "percent", selected_format=catalog.get("ico"))
    assert info.target_pixel_size == PixelSize(256, 256)


def test_compression_level_does_not_change_size(estimator: PreviewEstimator, catalog) -> None:
    a = estimator.estimate(PixelSize(400, 300), "percent", compression_level=0.1, selected_format=catalog.get("jpeg"))
    b = estimator.estimate(PixelSize(400, 300), "percent", compression_level=0.9, selected_format=catalog.get("jpeg"))
    assert a == b


def test_non_positive_percent_means_no_resize(estimator: PreviewEstimator) -> None:
    info = estimator.estimate(PixelSize(400, 300), "percent", width_text="10", resize_percent=0)
    assert info.target_pixel_size == PixelSize(400, 300)
