"""プレビュー表示用に出力ピクセルサイズを見積もる。"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Optional

from .format_catalog import FormatCapabilities, ImageFormat
from .pipeline_builder import SizeUnit, parse_dimension
from .resize_math import PercentResize, PixelResize, PixelSize, ResizeInput, round_half_away, target_size


@dataclass(frozen=True)
class PreviewInfo:
    target_pixel_size: PixelSize
    # バイト数はここでは見積もらない（エンコードは行わない）
    estimated_output_bytes: Optional[int] = None


class PreviewEstimator:
    def __init__(self, catalog: FormatCapabilities) -> None:
        self.catalog = catalog

    def estimate(
        self,
        base_size: Optional[PixelSize],
        resize_mode: SizeUnit,
        width_text: str = "",
        height_text: str = "",
        compression_level: Optional[float] = None,
        selected_format: Optional[ImageFormat] = None,
        resize_percent: float = 1.0,
    ) -> PreviewInfo:
        """プレビューでは拡大しない前提で目標サイズを返す。"""
        if base_size is None:
            return PreviewInfo(PixelSize(0, 0))

        resize_input: ResizeInput
        if resize_mode == "percent":
            resize_input = PercentResize(resize_percent) if resize_percent > 0 else PixelResize()
        else:
            resize_input = PixelResize(parse_dimension(width_text), parse_dimension(height_text))
        size = target_size(base_size, resize_input, no_upscale=True)

        restriction = None
        if selected_format is not None:
            restriction = self.catalog.size_restriction(selected_format)
        if restriction is not None:
            width, height = size.width, size.height
            if restriction.forced_square:
                width = height = min(width, height)
            if restriction.max_side is not None and max(width, height) > restriction.max_side:
                longer = max(width, height)
                width = round_half_away(width * restriction.max_side / longer)
                height = round_half_away(height * restriction.max_side / longer)
            size = PixelSize(width, height)
        return PreviewInfo(size)
