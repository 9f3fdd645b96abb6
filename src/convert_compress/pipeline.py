"""操作列と最終エンコード設定をまとめた処理パイプライン。"""

from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path
from typing import Optional, Tuple

from loguru import logger

from .encoders import EncoderRegistry
from .errors import OperationError, PipelineError, UnsupportedFormat
from .format_catalog import ImageFormat
from .image_buffer import DecodedImage, EncodeResult
from .operations import ConstrainSize, Operation


@dataclass(frozen=True)
class Pipeline:
    """画像1枚に適用する処理。

    構築後は変更しないため、同じバッチ内の複数画像・複数スレッドで共有できる。

    Attributes:
        operations: 適用順に並んだ操作
        encoders: 最終エンコードに使うレジストリ
        final_format: 出力形式（None の場合は元画像の形式）
        compression_level: 0.0-1.0 の圧縮品質（None はエンコーダの既定値）
        remove_metadata: True の場合はEXIF/ICCを書き出さない
        export_directory: 出力先（None の場合は元ファイルと同じ場所）
    """

    operations: Tuple[Operation, ...]
    encoders: EncoderRegistry
    final_format: Optional[ImageFormat] = None
    compression_level: Optional[float] = None
    remove_metadata: bool = False
    export_directory: Optional[Path] = None

    def __post_init__(self) -> None:
        object.__setattr__(self, "operations", tuple(self.operations))
        if self.compression_level is not None and not 0.0 <= self.compression_level <= 1.0:
            raise ValueError(f"compression_level は0.0から1.0の範囲で指定してください: {self.compression_level}")
        for op in self.operations:
            if isinstance(op, ConstrainSize) and op.target_format != self.final_format:
                raise ValueError(
                    f"サイズ制約の対象形式 {op.target_format} が出力形式 {self.final_format} と一致しません"
                )

    @property
    def is_identity(self) -> bool:
        return not self.operations and self.final_format is None and self.compression_level is None

    def plan_format(self, image: DecodedImage) -> ImageFormat:
        """処理を行わずに書き出し形式を決める。"""
        chosen = self.final_format or image.source_format
        if chosen is None:
            raise UnsupportedFormat("unknown", "出力形式を決定できません（元画像の形式が不明です）")
        return chosen

    def run_operations(self, image: DecodedImage) -> DecodedImage:
        """全操作を順に適用する。途中で失敗した場合は部分結果を返さない。"""
        current = image
        for index, op in enumerate(self.operations, 1):
            try:
                current = op.apply(current)
            except OperationError as e:
                logger.error(f"操作 {index}/{len(self.operations)} ({op}) に失敗しました: {e}")
                raise
            except Exception as e:
                logger.error(f"操作 {index}/{len(self.operations)} ({op}) で予期しないエラー: {e}")
                raise OperationError(f"{op} の適用中にエラーが発生しました: {e}") from e
        return current

    def apply(self, image: DecodedImage) -> EncodeResult:
        """操作を適用してからエンコードする。

        Raises:
            OperationError: いずれかの操作が失敗した場合
            UnsupportedFormat: 出力形式に対応するエンコーダがない場合
            EncodeError: エンコードに失敗した場合
        """
        target_format = self.plan_format(image)
        processed = self.run_operations(image)
        try:
            data = self.encoders.encode(
                processed,
                target_format,
                self.compression_level,
                self.remove_metadata,
            )
        except PipelineError:
            raise
        except Exception as e:
            raise PipelineError(f"{target_format} の書き出し中に予期しないエラー: {e}") from e
        return EncodeResult(data=data, pixel_size=processed.size, image_format=target_format)
