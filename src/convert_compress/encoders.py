"""出力形式ごとのエンコーダと、その選択を行うレジストリ。

品質（0.0-1.0）・メタデータ除去の指定を Pillow の保存オプションへ変換する。
カスタムエンコーダは登録順に ``can_encode`` を問い合わせ、最初に応答したものを使う。
どれも該当しない場合はカタログ上で書き込み可能な形式に限り Pillow 標準の保存処理を使う。
"""

from __future__ import annotations

import io
import math
from typing import Any, Dict, Iterable, Optional, Protocol, Tuple

from loguru import logger
from PIL import Image

from .errors import CatalogError, EncodeError, UnsupportedFormat
from .format_catalog import FormatCapabilities, FormatCapability, ImageFormat, feature_enabled, registered_format
from .image_buffer import DecodedImage, SourceMetadata
from .resize_math import round_half_away

DEFAULT_LOSSY_QUALITY = 0.9

_EXIF_TAG_ORIENTATION = 0x0112
# 保存時に Pillow が im.info から拾ってしまうメタデータ
_METADATA_INFO_KEYS = ("exif", "icc_profile", "xmp", "XML:com.adobe.xmp", "comment", "photoshop", "iptc")
_FLATTEN_ALPHA_FORMATS = {"jpeg", "avif", "bmp"}


class Encoder(Protocol):
    def can_encode(self, image_format: ImageFormat) -> bool: ...

    def encode(
        self,
        image: DecodedImage,
        image_format: ImageFormat,
        quality: Optional[float],
        strip_metadata: bool,
    ) -> bytes: ...


def normalize_quality(quality: Optional[float], default: Optional[float] = None) -> Optional[int]:
    """0.0-1.0 の品質を Pillow の 1-100 に変換する。

    Raises:
        EncodeError: 範囲外または数値でない場合
    """
    if quality is None:
        if default is None:
            return None
        quality = default
    try:
        value = float(quality)
    except (TypeError, ValueError) as e:
        raise EncodeError(f"無効な品質値です: {quality!r}") from e
    if math.isnan(value) or not 0.0 <= value <= 1.0:
        raise EncodeError(f"品質値は0.0から1.0の範囲で指定してください: {quality}")
    return max(1, min(100, round_half_away(value * 100)))


def flatten_alpha(img: Image.Image) -> Image.Image:
    """透過を持つ画像を白背景に合成して RGB にする。"""
    rgba = img.convert("RGBA")
    background = Image.new("RGBA", rgba.size, (255, 255, 255, 255))
    background.alpha_composite(rgba)
    return background.convert("RGB")


def _has_alpha(img: Image.Image) -> bool:
    return img.mode in {"RGBA", "LA", "PA"} or (img.mode == "P" and "transparency" in img.info)


def prepare_mode(img: Image.Image, identifier: str) -> Image.Image:
    """出力形式が受け付けるカラーモードへ変換する。"""
    if identifier in _FLATTEN_ALPHA_FORMATS:
        if _has_alpha(img):
            return flatten_alpha(img)
        if img.mode not in {"RGB", "L"}:
            return img.convert("RGB")
        return img
    if identifier in {"webp", "ico", "icns"}:
        if img.mode in {"RGB", "RGBA"}:
            return img
        return img.convert("RGBA" if _has_alpha(img) or identifier != "webp" else "RGB")
    if img.mode == "CMYK" and identifier != "tiff":
        return img.convert("RGB")
    return img


def build_exif_bytes(metadata: SourceMetadata) -> Optional[bytes]:
    """元EXIFを向き=1に直して返す。ピクセルはデコード時に正規化済み。"""
    if not metadata.exif:
        return None
    try:
        exif = Image.Exif()
        exif.load(metadata.exif)
        if _EXIF_TAG_ORIENTATION in exif:
            exif[_EXIF_TAG_ORIENTATION] = 1
        return exif.tobytes()
    except Exception as e:
        logger.warning(f"EXIFの再構築に失敗したためメタデータなしで保存します: {e}")
        return None


def _detach_metadata(img: Image.Image, original: Image.Image) -> Image.Image:
    if not any(key in img.info for key in _METADATA_INFO_KEYS):
        return img
    # 呼び出し元のバッファを書き換えないよう複製してから落とす
    detached = img.copy() if img is original else img
    for key in _METADATA_INFO_KEYS:
        detached.info.pop(key, None)
    return detached


class PillowEncoder:
    """Pillow の保存処理でバイト列を作るエンコーダ。"""

    def __init__(self, catalog: FormatCapabilities) -> None:
        self._catalog = catalog

    def can_encode(self, image_format: ImageFormat) -> bool:
        capability = self._catalog.capability(image_format)
        return capability is not None and capability.writable

    def build_save_kwargs(
        self,
        image_format: ImageFormat,
        capability: FormatCapability,
        quality: Optional[float],
        img: Image.Image,
    ) -> Dict[str, Any]:
        """形式に応じた保存オプションを返す。"""
        identifier = image_format.identifier
        kwargs: Dict[str, Any] = {"format": capability.pil_format}
        if identifier == "jpeg":
            kwargs.update(
                quality=normalize_quality(quality, DEFAULT_LOSSY_QUALITY),
                optimize=True,
                progressive=True,
            )
        elif identifier == "png":
            # PNGはロスレスのため品質指定は使わない
            kwargs.update(optimize=True, compress_level=9)
        elif identifier == "tiff":
            kwargs.update(compression="tiff_lzw")
        elif identifier == "ico":
            kwargs.update(sizes=[img.size])
        elif capability.supports_quality:
            pil_quality = normalize_quality(quality, DEFAULT_LOSSY_QUALITY)
            if pil_quality is not None:
                kwargs["quality"] = pil_quality
        return kwargs

    def encode(
        self,
        image: DecodedImage,
        image_format: ImageFormat,
        quality: Optional[float],
        strip_metadata: bool,
    ) -> bytes:
        capability = self._catalog.capability(image_format)
        if capability is None or not capability.writable:
            raise UnsupportedFormat(image_format.identifier)

        # 画像に触る前に品質値を検証する
        normalize_quality(quality)
        save_img = prepare_mode(image.pixels, image_format.identifier)
        save_img = _detach_metadata(save_img, image.pixels)
        save_kwargs = self.build_save_kwargs(image_format, capability, quality, save_img)

        if not strip_metadata and capability.supports_metadata:
            exif_bytes = build_exif_bytes(image.metadata)
            if exif_bytes is not None:
                save_kwargs["exif"] = exif_bytes
            if image.metadata.icc_profile:
                save_kwargs["icc_profile"] = image.metadata.icc_profile

        logged_options = {k: v for k, v in save_kwargs.items() if k not in ("exif", "icc_profile")}
        logger.debug(
            f"エンコード: format={image_format.identifier} size={save_img.size[0]}x{save_img.size[1]} "
            f"mode={save_img.mode} strip_metadata={strip_metadata} options={logged_options}"
        )
        buffer = io.BytesIO()
        try:
            save_img.save(buffer, **save_kwargs)
        except (OSError, ValueError, KeyError, TypeError) as e:
            raise EncodeError(f"{image_format} へのエンコードに失敗しました: {e}") from e
        return buffer.getvalue()


class WebPEncoder(PillowEncoder):
    """WebP専用エンコーダ。"""

    def __init__(self, catalog: FormatCapabilities, method: int = 6, lossless: bool = False) -> None:
        super().__init__(catalog)
        self.method = max(0, min(6, int(method)))
        self.lossless = lossless

    def can_encode(self, image_format: ImageFormat) -> bool:
        if image_format.identifier != "webp":
            return False
        return feature_enabled("webp") or registered_format("WEBP")

    def build_save_kwargs(
        self,
        image_format: ImageFormat,
        capability: FormatCapability,
        quality: Optional[float],
        img: Image.Image,
    ) -> Dict[str, Any]:
        return {
            "format": "WEBP",
            "quality": normalize_quality(quality, DEFAULT_LOSSY_QUALITY),
            "method": self.method,
            "lossless": bool(self.lossless),
        }


class AvifEncoder(PillowEncoder):
    """AVIF専用エンコーダ（Pillow 11.3+ または pillow-avif-plugin）。"""

    def __init__(self, catalog: FormatCapabilities, speed: int = 6) -> None:
        super().__init__(catalog)
        self.speed = max(0, min(10, int(speed)))

    def can_encode(self, image_format: ImageFormat) -> bool:
        if image_format.identifier != "avif":
            return False
        return feature_enabled("avif") or registered_format("AVIF")

    def build_save_kwargs(
        self,
        image_format: ImageFormat,
        capability: FormatCapability,
        quality: Optional[float],
        img: Image.Image,
    ) -> Dict[str, Any]:
        return {
            "format": "AVIF",
            "quality": normalize_quality(quality, DEFAULT_LOSSY_QUALITY),
            "speed": self.speed,
        }


class EncoderRegistry:
    """出力形式からエンコーダを選ぶ。

    選択順:
        1. ``custom_encoders`` を登録順に問い合わせ、最初に ``can_encode`` が真になったもの
        2. カタログ上で書き込み可能な形式なら Pillow 標準の保存処理
        3. どちらもなければ ``None``（``encode`` では ``UnsupportedFormat``）
    """

    def __init__(
        self,
        catalog: FormatCapabilities,
        custom_encoders: Optional[Iterable[Encoder]] = None,
    ) -> None:
        self._catalog = catalog
        if custom_encoders is None:
            custom_encoders = (WebPEncoder(catalog), AvifEncoder(catalog))
        self._custom: Tuple[Encoder, ...] = tuple(custom_encoders)
        self._native = PillowEncoder(catalog)

    @property
    def catalog(self) -> FormatCapabilities:
        return self._catalog

    @property
    def custom_encoders(self) -> Tuple[Encoder, ...]:
        return self._custom

    def encoder_for(self, image_format: ImageFormat) -> Optional[Encoder]:
        for encoder in self._custom:
            if encoder.can_encode(image_format):
                return encoder
        if self._native.can_encode(image_format):
            return self._native
        return None

    def encode(
        self,
        image: DecodedImage,
        image_format: ImageFormat,
        quality: Optional[float],
        strip_metadata: bool,
    ) -> bytes:
        encoder = self.encoder_for(image_format)
        if encoder is None:
            raise UnsupportedFormat(image_format.identifier)
        return encoder.encode(image, image_format, quality, strip_metadata)

    def validate(self) -> list[ImageFormat]:
        """書き出せる形式の一覧を返す。1つもなければ ``CatalogError``。"""
        encodable = [fmt for fmt in self._catalog.formats() if self.encoder_for(fmt) is not None]
        if not encodable:
            raise CatalogError("書き込み可能な出力形式がありません。Pillowのインストールを確認してください")
        return encodable
