from __future__ import annotations

import pytest

from convert_compress.resize_math import (
    PercentResize,
    PixelResize,
    PixelSize,
    round_half_away,
    target_size,
)


def test_percent_rounds_each_axis() -> None:
    assert target_size(PixelSize(1000, 500), PercentResize(0.5)) == PixelSize(500, 250)
    assert target_size(PixelSize(3, 5), PercentResize(0.5)) == PixelSize(2, 3)


def test_percent_upscale_is_clamped_only_with_no_upscale() -> None:
    base = PixelSize(100, 80)
    assert target_size(base, PercentResize(2.0)) == PixelSize(200, 160)
    assert target_size(base, PercentResize(2.0), no_upscale=True) == base


def test_width_only_keeps_aspect_ratio() -> None:
    assert target_size(PixelSize(100, 50), PixelResize(width=50)) == PixelSize(50, 25)
    assert target_size(PixelSize(1000, 500), PixelResize(width=200)) == PixelSize(200, 100)


def test_height_only_keeps_aspect_ratio() -> None:
    assert target_size(PixelSize(1000, 500), PixelResize(height=100)) == PixelSize(200, 100)


def test_both_dimensions_are_used_verbatim() -> None:
    assert target_size(PixelSize(1000, 500), PixelResize(width=300, height=300)) == PixelSize(300, 300)


def test_neither_dimension_returns_base() -> None:
    assert target_size(PixelSize(640, 480), PixelResize()) == PixelSize(640, 480)


@pytest.mark.parametrize("base", [PixelSize(0, 0), PixelSize(0, 50), PixelSize(50, 0)])
def test_zero_base_dimension_falls_back_to_square(base: PixelSize) -> None:
    assert target_size(base, PixelResize(width=100)) == PixelSize(100, 100)
    assert target_size(base, PixelResize(height=64)) == PixelSize(64, 64)


def test_no_upscale_clamps_each_axis_independently() -> None:
    base = PixelSize(100, 50)
    assert target_size(base, PixelResize(width=400, height=20), no_upscale=True) == PixelSize(100, 20)
    assert target_size(base, PixelResize(width=400), no_upscale=True) == PixelSize(100, 50)


def test_no_upscale_never_exceeds_base() -> None:
    base = PixelSize(321, 123)
    inputs = [
        PercentResize(0.3),
        PercentResize(1.7),
        PixelResize(width=1000),
        PixelResize(height=7),
        PixelResize(width=50, height=500),
    ]
    for resize_input in inputs:
        result = target_size(base, resize_input, no_upscale=True)
        assert result.width <= base.width
        assert result.height <= base.height


def test_round_half_away_from_zero() -> None:
    assert round_half_away(0.5) == 1
    assert round_half_away(2.5) == 3
    assert round_half_away(-2.5) == -3
    assert round_half_away(2.4999) == 2


def test_invalid_resize_inputs_are_rejected() -> None:
    with pytest.raises(ValueError):
        PercentResize(0)
    with pytest.raises(ValueError):
        PixelResize(width=0)
    with pytest.raises(ValueError):
        PixelSize(-1, 10)


def test_pixel_size_helpers() -> None:
    assert PixelSize(0, 0).is_unknown
    assert not PixelSize(1, 0).is_unknown
    assert str(PixelSize(1920, 1080)) == "1920x1080"
    assert PixelSize.of((4, 3)).as_tuple() == (4, 3)
