"""リサイズ後のピクセルサイズを計算する純粋関数群。

プレビュー（拡大なし）とパイプライン本体（明示的な拡大を許可）の両方から使う。
"""

from __future__ import annotations

import math
from dataclasses import dataclass
from typing import Optional, Union


@dataclass(frozen=True)
class PixelSize:
    """幅と高さ。``(0, 0)`` はサイズ不明を表す。"""

    width: int
    height: int

    def __post_init__(self) -> None:
        if self.width < 0 or self.height < 0:
            raise ValueError(f"サイズは0以上である必要があります: {self.width}x{self.height}")

    @classmethod
    def of(cls, size: tuple[int, int]) -> "PixelSize":
        return cls(int(size[0]), int(size[1]))

    @property
    def is_unknown(self) -> bool:
        return self.width == 0 and self.height == 0

    def as_tuple(self) -> tuple[int, int]:
        return (self.width, self.height)

    def __str__(self) -> str:
        return f"{self.width}x{self.height}"


@dataclass(frozen=True)
class PercentResize:
    """倍率指定（1.0 = 等倍）。"""

    factor: float

    def __post_init__(self) -> None:
        if not self.factor > 0:
            raise ValueError(f"倍率は正の値である必要があります: {self.factor}")


@dataclass(frozen=True)
class PixelResize:
    """ピクセル指定。片方だけの場合は縦横比を維持する。"""

    width: Optional[int] = None
    height: Optional[int] = None

    def __post_init__(self) -> None:
        for name, value in (("width", self.width), ("height", self.height)):
            if value is not None and value <= 0:
                raise ValueError(f"{name} は正の整数である必要があります: {value}")

    @property
    def is_empty(self) -> bool:
        return self.width is None and self.height is None


ResizeInput = Union[PercentResize, PixelResize]


def round_half_away(value: float) -> int:
    """0.5 を0から遠い方へ丸める（Python標準の round は偶数丸め）。"""
    if value >= 0:
        return int(math.floor(value + 0.5))
    return -int(math.floor(-value + 0.5))


def target_size(base: PixelSize, resize_input: ResizeInput, no_upscale: bool = False) -> PixelSize:
    """リサイズ指定から目標サイズを計算する。

    Args:
        base: 元画像のサイズ
        resize_input: 倍率またはピクセル指定
        no_upscale: True の場合、各辺を元のサイズ以下に抑える

    Returns:
        PixelSize: 目標サイズ（各辺0以上）
    """
    if isinstance(resize_input, PercentResize):
        factor = resize_input.factor
        if no_upscale and factor > 1:
            factor = 1.0
        return PixelSize(
            max(0, round_half_away(base.width * factor)),
            max(0, round_half_away(base.height * factor)),
        )

    width, height = resize_input.width, resize_input.height
    if width is None and height is None:
        return base

    if width is not None and height is not None:
        result = PixelSize(width, height)
    elif base.width == 0 or base.height == 0:
        # 縦横比が計算できないので正方形として扱う
        side = width if width is not None else height
        result = PixelSize(side, side)
    elif width is not None:
        result = PixelSize(width, max(0, round_half_away(width * base.height / base.width)))
    else:
        result = PixelSize(max(0, round_half_away(height * base.width / base.height)), height)

    if no_upscale:
        result = PixelSize(min(result.width, base.width), min(result.height, base.height))
    return result
