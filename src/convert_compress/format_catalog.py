"""出力形式のメタデータを保持する読み取り専用のカタログ。

形式ごとの書き込み可否・サイズ制約（正方形強制・最大辺）・Pillow上の形式名を
まとめて扱う。カタログは起動時に1度だけ構築し、以降は変更しない。
"""

from __future__ import annotations

from dataclasses import dataclass, field
from types import MappingProxyType
from typing import Dict, Iterable, Mapping, Optional, Tuple

from PIL import Image, features

try:
    import pillow_avif  # noqa: F401
except ImportError:
    pass

CATALOG_VERSION = 2

# 一覧表示で先頭に並べる形式
_DISPLAY_PRIORITY: Dict[str, int] = {
    "jpeg": 0,
    "png": 1,
    "heic": 2,
    "tiff": 3,
    "bmp": 4,
    "gif": 5,
}


@dataclass(frozen=True)
class ImageFormat:
    """出力形式。等価性は identifier のみで判定する。"""

    identifier: str
    display_name: str = field(default="", compare=False)
    capability_key: str = field(default="", compare=False)

    @property
    def key(self) -> str:
        return self.capability_key or self.identifier

    def __str__(self) -> str:
        return self.display_name or self.identifier


@dataclass(frozen=True)
class SizeRestriction:
    forced_square: bool = False
    max_side: Optional[int] = None


@dataclass(frozen=True)
class FormatCapability:
    writable: bool
    pil_format: str
    extension: str
    size_restriction: Optional[SizeRestriction] = None
    supports_quality: bool = False
    supports_metadata: bool = False


class FormatCapabilities:
    """形式IDをキーにした能力テーブル。"""

    def __init__(self, entries: Iterable[Tuple[ImageFormat, FormatCapability]]) -> None:
        formats: Dict[str, ImageFormat] = {}
        capabilities: Dict[str, FormatCapability] = {}
        for image_format, capability in entries:
            formats[image_format.identifier] = image_format
            capabilities[image_format.key] = capability
        self._formats: Mapping[str, ImageFormat] = MappingProxyType(formats)
        self._capabilities: Mapping[str, FormatCapability] = MappingProxyType(capabilities)

    def __contains__(self, image_format: object) -> bool:
        return isinstance(image_format, ImageFormat) and image_format.identifier in self._formats

    def get(self, identifier: str) -> Optional[ImageFormat]:
        """ID（大文字小文字・jpg表記ゆれを吸収）から形式を引く。"""
        normalized = identifier.strip().lower()
        if normalized == "jpg":
            normalized = "jpeg"
        elif normalized == "tif":
            normalized = "tiff"
        return self._formats.get(normalized)

    def capability(self, image_format: ImageFormat) -> Optional[FormatCapability]:
        registered = self._formats.get(image_format.identifier)
        if registered is None:
            return None
        return self._capabilities.get(registered.key)

    def size_restriction(self, image_format: ImageFormat) -> Optional[SizeRestriction]:
        capability = self.capability(image_format)
        if capability is None:
            return None
        return capability.size_restriction

    def writable_formats(self) -> frozenset[ImageFormat]:
        return frozenset(
            fmt for fmt in self._formats.values() if self._capabilities[fmt.key].writable
        )

    def formats(self) -> list[ImageFormat]:
        """表示用に安定した順序で全形式を返す。"""
        return sorted(
            self._formats.values(),
            key=lambda fmt: (
                _DISPLAY_PRIORITY.get(fmt.identifier, len(_DISPLAY_PRIORITY)),
                str(fmt).lower(),
            ),
        )

    def format_for_pillow(self, pil_format: Optional[str]) -> Optional[ImageFormat]:
        """Pillow の ``Image.format`` から対応する形式を返す。"""
        if not pil_format:
            return None
        target = pil_format.upper()
        if target == "MPO":
            # マルチピクチャJPEG
            target = "JPEG"
        for fmt in self._formats.values():
            if self._capabilities[fmt.key].pil_format.upper() == target:
                return fmt
        return None


def default_format_catalog() -> FormatCapabilities:
    """実行環境のPillowに合わせた標準カタログを返す。"""
    webp_enabled = feature_enabled("webp") or registered_format("WEBP")
    avif_enabled = feature_enabled("avif") or registered_format("AVIF")
    return FormatCapabilities(
        [
            (
                ImageFormat("jpeg", "JPEG"),
                FormatCapability(
                    writable=True,
                    pil_format="JPEG",
                    extension=".jpg",
                    supports_quality=True,
                    supports_metadata=True,
                ),
            ),
            (
                ImageFormat("png", "PNG"),
                FormatCapability(writable=True, pil_format="PNG", extension=".png", supports_metadata=True),
            ),
            (
                ImageFormat("heic", "HEIC"),
                FormatCapability(writable=False, pil_format="HEIF", extension=".heic", supports_quality=True),
            ),
            (
                ImageFormat("tiff", "TIFF"),
                FormatCapability(writable=True, pil_format="TIFF", extension=".tiff"),
            ),
            (
                ImageFormat("bmp", "BMP"),
                FormatCapability(writable=True, pil_format="BMP", extension=".bmp"),
            ),
            (
                ImageFormat("gif", "GIF"),
                FormatCapability(writable=True, pil_format="GIF", extension=".gif"),
            ),
            (
                ImageFormat("webp", "WebP"),
                FormatCapability(
                    writable=webp_enabled,
                    pil_format="WEBP",
                    extension=".webp",
                    supports_quality=True,
                    supports_metadata=True,
                ),
            ),
            (
                ImageFormat("avif", "AVIF"),
                FormatCapability(
                    writable=avif_enabled,
                    pil_format="AVIF",
                    extension=".avif",
                    supports_quality=True,
                    supports_metadata=True,
                ),
            ),
            (
                ImageFormat("ico", "ICO (Windows Icon)"),
                FormatCapability(
                    writable=True,
                    pil_format="ICO",
                    extension=".ico",
                    size_restriction=SizeRestriction(forced_square=True, max_side=256),
                ),
            ),
            (
                ImageFormat("icns", "ICNS (Apple Icon)"),
                FormatCapability(
                    writable=True,
                    pil_format="ICNS",
                    extension=".icns",
                    size_restriction=SizeRestriction(forced_square=True, max_side=1024),
                ),
            ),
        ]
    )


def feature_enabled(feature_name: str) -> bool:
    """Pillow のビルドが機能を備えているかを返す。不明な機能名は False。"""
    try:
        return bool(features.check(feature_name))
    except Exception:
        return False


def registered_format(name: str) -> bool:
    """拡張子テーブルに Pillow 形式名が登録されているかを返す。"""
    try:
        return any(v.upper() == name for v in Image.registered_extensions().values())
    except Exception:
        return False
