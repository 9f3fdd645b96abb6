"""デコード済み画像とエンコード結果のデータ型。"""

from __future__ import annotations

import io
from dataclasses import dataclass, field, replace
from pathlib import Path
from typing import Optional, Union

from loguru import logger
from PIL import Image, ImageOps, UnidentifiedImageError

from .errors import DecodeError
from .format_catalog import FormatCapabilities, ImageFormat
from .resize_math import PixelSize


@dataclass(frozen=True)
class SourceMetadata:
    """元画像から引き継げるメタデータ。"""

    exif: Optional[bytes] = None
    icc_profile: Optional[bytes] = None

    @property
    def is_empty(self) -> bool:
        return not self.exif and not self.icc_profile


@dataclass(frozen=True)
class DecodedImage:
    """ピクセルバッファ本体と付随情報。

    操作は常に新しい ``DecodedImage`` を返し、受け取ったバッファは変更しない。
    """

    pixels: Image.Image
    source_format: Optional[ImageFormat] = None
    metadata: SourceMetadata = field(default_factory=SourceMetadata)
    source_path: Optional[Path] = None

    @property
    def size(self) -> PixelSize:
        return PixelSize.of(self.pixels.size)

    @property
    def pixel_format(self) -> str:
        return self.pixels.mode

    def with_pixels(self, pixels: Image.Image) -> "DecodedImage":
        return replace(self, pixels=pixels)


@dataclass(frozen=True)
class EncodeResult:
    data: bytes
    pixel_size: PixelSize
    image_format: ImageFormat

    @property
    def byte_count(self) -> int:
        return len(self.data)


def decode_image(
    source: Union[str, Path, bytes],
    catalog: FormatCapabilities,
) -> DecodedImage:
    """ファイルまたはバイト列を読み込み、向きを正規化した ``DecodedImage`` を返す。

    Raises:
        DecodeError: 画像として読み込めない場合
    """
    source_path = None if isinstance(source, bytes) else Path(source)
    try:
        if source_path is None:
            opened = Image.open(io.BytesIO(source))
        else:
            opened = Image.open(source_path)
        with opened as img:
            img.load()
            pil_format = img.format
            metadata = SourceMetadata(
                exif=img.info.get("exif") or None,
                icc_profile=img.info.get("icc_profile") or None,
            )
            # EXIFの向き情報をピクセルに反映してから扱う
            pixels = ImageOps.exif_transpose(img)
            if pixels is img:
                pixels = img.copy()
    except UnidentifiedImageError as e:
        raise DecodeError(f"画像ファイルとして認識できません: {source_path or '<bytes>'}") from e
    except (OSError, ValueError, Image.DecompressionBombError) as e:
        raise DecodeError(f"画像の読み込みに失敗しました: {source_path or '<bytes>'}: {e}") from e

    source_format = catalog.format_for_pillow(pil_format)
    logger.debug(
        f"デコード完了: {source_path or '<bytes>'} format={pil_format} "
        f"size={pixels.size[0]}x{pixels.size[1]} mode={pixels.mode}"
    )
    return DecodedImage(
        pixels=pixels,
        source_format=source_format,
        metadata=metadata,
        source_path=source_path,
    )
