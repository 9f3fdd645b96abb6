"""
pytest設定ファイル
共通のフィクスチャやテスト設定を定義
"""

from __future__ import annotations

import io
from pathlib import Path
from typing import List, Optional

import pytest
from PIL import Image

from convert_compress.encoders import EncoderRegistry
from convert_compress.format_catalog import (
    FormatCapabilities,
    FormatCapability,
    ImageFormat,
    SizeRestriction,
    default_format_catalog,
)
from convert_compress.image_buffer import DecodedImage
from convert_compress.usage_events import InMemoryEventSink


@pytest.fixture
def catalog() -> FormatCapabilities:
    return default_format_catalog()


@pytest.fixture
def registry(catalog: FormatCapabilities) -> EncoderRegistry:
    return EncoderRegistry(catalog)


@pytest.fixture
def square_catalog() -> FormatCapabilities:
    """最大辺のない正方形強制形式を含む小さなカタログ"""
    return FormatCapabilities(
        [
            (ImageFormat("png", "PNG"), FormatCapability(writable=True, pil_format="PNG", extension=".png")),
            (ImageFormat("jpeg", "JPEG"), FormatCapability(writable=True, pil_format="JPEG", extension=".jpg")),
            (
                ImageFormat("square", "Square PNG"),
                FormatCapability(
                    writable=True,
                    pil_format="PNG",
                    extension=".sq.png",
                    size_restriction=SizeRestriction(forced_square=True),
                ),
            ),
        ]
    )


@pytest.fixture
def event_sink() -> InMemoryEventSink:
    return InMemoryEventSink()


def _make_image(
    catalog: FormatCapabilities,
    size=(300, 200),
    mode: str = "RGB",
    color=(200, 40, 40),
    source_format: Optional[str] = "png",
    source_path: Optional[Path] = None,
) -> DecodedImage:
    """メモリ上にテスト用の DecodedImage を作る"""
    pixels = Image.new(mode, size, color)
    return DecodedImage(
        pixels=pixels,
        source_format=catalog.get(source_format) if source_format else None,
        source_path=source_path,
    )


@pytest.fixture
def make_image(catalog: FormatCapabilities):
    def factory(**kwargs) -> DecodedImage:
        return _make_image(kwargs.pop("catalog", catalog), **kwargs)

    return factory


@pytest.fixture
def sample_image(make_image) -> DecodedImage:
    return make_image()


@pytest.fixture
def sample_files(tmp_path: Path) -> List[Path]:
    """ディスク上のサンプル画像（JPEG/PNG）"""
    files = []
    jpeg_path = tmp_path / "input" / "photo.jpg"
    jpeg_path.parent.mkdir(parents=True)
    Image.new("RGB", (640, 480), (255, 0, 0)).save(jpeg_path, "JPEG", quality=95)
    files.append(jpeg_path)

    png_path = tmp_path / "input" / "nested" / "logo.png"
    png_path.parent.mkdir(parents=True)
    Image.new("RGBA", (200, 100), (0, 255, 0, 128)).save(png_path, "PNG")
    files.append(png_path)
    return files


@pytest.fixture
def decode_bytes():
    def decode(data: bytes) -> Image.Image:
        with Image.open(io.BytesIO(data)) as img:
            img.load()
            return img.copy()

    return decode
