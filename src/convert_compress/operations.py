"""ピクセルバッファに対する個々の変換操作。

各操作は ``apply`` で新しい ``DecodedImage`` を返し、入力は変更しない。
失敗は ``OperationError`` として送出する。
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Optional

from loguru import logger
from PIL import Image, ImageOps

from .errors import OperationError, SegmentationUnavailable
from .format_catalog import FormatCapabilities, ImageFormat
from .image_buffer import DecodedImage
from .resize_math import PixelSize, ResizeInput, round_half_away, target_size
from .segmentation import Segmenter

RESAMPLE_FILTER = Image.Resampling.LANCZOS


class Operation(ABC):
    """ピクセルバッファ変換の基底クラス。"""

    name = "operation"

    @abstractmethod
    def apply(self, image: DecodedImage) -> DecodedImage:
        ...

    def __str__(self) -> str:
        return self.name


def _resample(img: Image.Image, size: PixelSize) -> Image.Image:
    # Pillow は幅・高さ0の画像へのリサイズを受け付けない
    width, height = max(1, size.width), max(1, size.height)
    if img.size == (width, height):
        return img.copy()
    try:
        return img.resize((width, height), RESAMPLE_FILTER)
    except (OSError, ValueError) as e:
        raise OperationError(f"リサイズに失敗しました ({img.size[0]}x{img.size[1]} -> {width}x{height}): {e}") from e


@dataclass(frozen=True)
class Resize(Operation):
    mode: ResizeInput
    name = "resize"

    def target_for(self, base: PixelSize) -> PixelSize:
        return target_size(base, self.mode, no_upscale=False)

    def apply(self, image: DecodedImage) -> DecodedImage:
        target = self.target_for(image.size)
        logger.debug(f"リサイズ: {image.size} -> {target} ({self.mode})")
        return image.with_pixels(_resample(image.pixels, target))


@dataclass(frozen=True)
class ConstrainSize(Operation):
    """出力形式のサイズ制約（正方形強制・最大辺）に合わせる。

    正方形強制は中央で切り抜き、最大辺は縦横比を保って縮小する。両方ある場合は
    切り抜きを先に行う。制約のない形式では何もしない。
    """

    target_format: ImageFormat
    catalog: FormatCapabilities = field(compare=False, repr=False)
    name = "constrain_size"

    def target_for(self, base: PixelSize) -> PixelSize:
        restriction = self.catalog.size_restriction(self.target_format)
        if restriction is None:
            return base
        width, height = base.width, base.height
        if restriction.forced_square:
            width = height = min(width, height)
        max_side = restriction.max_side
        if max_side is not None and max(width, height) > max_side:
            longer = max(width, height)
            width = max_side if width == longer else round_half_away(width * max_side / longer)
            height = max_side if height == longer else round_half_away(height * max_side / longer)
        return PixelSize(width, height)

    def apply(self, image: DecodedImage) -> DecodedImage:
        restriction = self.catalog.size_restriction(self.target_format)
        if restriction is None:
            return image

        pixels = image.pixels
        width, height = pixels.size
        if restriction.forced_square and width != height:
            side = min(width, height)
            left = (width - side) // 2
            top = (height - side) // 2
            try:
                pixels = pixels.crop((left, top, left + side, top + side))
            except (OSError, ValueError) as e:
                raise OperationError(f"正方形への切り抜きに失敗しました: {e}") from e
            logger.debug(f"{self.target_format} 向けに中央を切り抜き: {width}x{height} -> {side}x{side}")

        target = self.target_for(image.size)
        if pixels.size != target.as_tuple():
            logger.debug(f"{self.target_format} の最大辺に合わせて縮小: {pixels.size} -> {target}")
            pixels = _resample(pixels, target)
        return image.with_pixels(pixels)


@dataclass(frozen=True)
class FlipVertical(Operation):
    name = "flip_vertical"

    def apply(self, image: DecodedImage) -> DecodedImage:
        try:
            return image.with_pixels(ImageOps.flip(image.pixels))
        except (OSError, ValueError) as e:
            raise OperationError(f"上下反転に失敗しました: {e}") from e


@dataclass(frozen=True)
class RemoveBackground(Operation):
    """背景を透過にする。処理自体は注入された ``Segmenter`` に委ねる。"""

    segmenter: Optional[Segmenter] = field(default=None, compare=False, repr=False)
    name = "remove_background"

    def apply(self, image: DecodedImage) -> DecodedImage:
        if self.segmenter is None:
            raise SegmentationUnavailable("背景除去の機能が設定されていません")
        try:
            result = self.segmenter.segment(image.pixels)
        except SegmentationUnavailable:
            raise
        except Exception as e:
            raise SegmentationUnavailable(f"背景除去に失敗しました: {e}") from e
        if result.size != image.pixels.size:
            raise OperationError(
                f"背景除去の結果サイズが一致しません: {image.size} -> {result.size[0]}x{result.size[1]}"
            )
        return image.with_pixels(result)
