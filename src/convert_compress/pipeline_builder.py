"""UIの入力値から ``Pipeline`` を組み立てる。

操作の順序は常に リサイズ → サイズ制約 → 上下反転 → 背景除去 で固定。
数値として解釈できない幅・高さはエラーにせず「指定なし」として扱う。
"""

from __future__ import annotations

import math
import re
from dataclasses import dataclass
from pathlib import Path
from typing import List, Literal, Optional

from loguru import logger

from .encoders import EncoderRegistry
from .format_catalog import ImageFormat
from .operations import ConstrainSize, FlipVertical, Operation, RemoveBackground, Resize
from .pipeline import Pipeline
from .resize_math import PercentResize, PixelResize, ResizeInput
from .segmentation import Segmenter

SizeUnit = Literal["percent", "pixels"]

_DIMENSION_PATTERN = re.compile(r"[0-9]+")


@dataclass(frozen=True)
class PipelineOptions:
    size_unit: SizeUnit = "percent"
    resize_percent: float = 1.0
    resize_width: str = ""
    resize_height: str = ""
    target_format: Optional[ImageFormat] = None
    compression_level: Optional[float] = None
    flip_vertical: bool = False
    remove_background: bool = False
    remove_metadata: bool = False
    export_directory: Optional[Path] = None


def parse_dimension(text: Optional[str]) -> Optional[int]:
    """幅・高さの文字列を正の整数にする。解釈できなければ None。"""
    if text is None:
        return None
    stripped = str(text).strip()
    if not _DIMENSION_PATTERN.fullmatch(stripped):
        return None
    value = int(stripped)
    return value if value > 0 else None


def clamp_compression_level(value: Optional[float]) -> Optional[float]:
    if value is None:
        return None
    try:
        level = float(value)
    except (TypeError, ValueError):
        logger.warning(f"圧縮レベルを解釈できないため既定値を使います: {value!r}")
        return None
    if math.isnan(level):
        return None
    return max(0.0, min(1.0, level))


def resize_input_from_options(
    size_unit: SizeUnit,
    resize_percent: float,
    resize_width: Optional[str],
    resize_height: Optional[str],
) -> Optional[ResizeInput]:
    """リサイズ指定を返す。リサイズ不要なら None。"""
    if size_unit == "percent":
        if resize_percent == 1.0:
            return None
        if not resize_percent > 0:
            logger.warning(f"倍率が正の値ではないためリサイズしません: {resize_percent}")
            return None
        return PercentResize(float(resize_percent))

    width = parse_dimension(resize_width)
    height = parse_dimension(resize_height)
    if width is None and height is None:
        return None
    return PixelResize(width=width, height=height)


class PipelineBuilder:
    """ユーザー設定から ``Pipeline`` を作る。"""

    def __init__(self, encoders: EncoderRegistry, segmenter: Optional[Segmenter] = None) -> None:
        self.encoders = encoders
        self.segmenter = segmenter

    @property
    def catalog(self):
        return self.encoders.catalog

    def build(self, options: PipelineOptions) -> Pipeline:
        operations: List[Operation] = []

        resize_input = resize_input_from_options(
            options.size_unit,
            options.resize_percent,
            options.resize_width,
            options.resize_height,
        )
        if resize_input is not None:
            operations.append(Resize(resize_input))

        target_format = options.target_format
        if target_format is not None and self.catalog.size_restriction(target_format) is not None:
            operations.append(ConstrainSize(target_format, self.catalog))

        if options.flip_vertical:
            operations.append(FlipVertical())

        if options.remove_background:
            operations.append(RemoveBackground(self.segmenter))

        pipeline = Pipeline(
            operations=tuple(operations),
            encoders=self.encoders,
            final_format=target_format,
            compression_level=clamp_compression_level(options.compression_level),
            remove_metadata=options.remove_metadata,
            export_directory=options.export_directory,
        )
        logger.debug(
            f"パイプラインを構築しました: ops=[{', '.join(str(op) for op in pipeline.operations)}] "
            f"format={target_format or '元の形式'} compression={pipeline.compression_level} "
            f"remove_metadata={pipeline.remove_metadata}"
        )
        return pipeline


def build_pipeline(
    options: PipelineOptions,
    encoders: EncoderRegistry,
    segmenter: Optional[Segmenter] = None,
) -> Pipeline:
    return PipelineBuilder(encoders, segmenter).build(options)
