"""パイプライン処理で送出する例外の定義。

画像1枚ごとの失敗は ``PipelineError`` の派生として扱い、バッチ全体は止めない。
起動時の設定不整合だけは ``CatalogError`` として別系統にしている。
"""

from __future__ import annotations

from typing import Optional


class PipelineError(Exception):
    """画像1枚の処理失敗を表す基底例外。"""


class OperationError(PipelineError):
    """操作（リサイズ・反転など）が入力を変換できなかった。"""


class SegmentationUnavailable(OperationError):
    """背景除去の機能が利用できない、または入力を処理できない。"""


class DecodeError(OperationError):
    """画像バッファの読み込みに失敗した。"""


class UnsupportedFormat(PipelineError):
    """出力形式に対応するエンコーダが存在しない。"""

    def __init__(self, identifier: str, message: Optional[str] = None) -> None:
        self.identifier = identifier
        super().__init__(message or f"サポートされていない出力形式です: {identifier}")


class EncodeError(PipelineError):
    """エンコーダが形式を受け付けたが、バイト列の生成に失敗した。"""


class WriteError(PipelineError):
    """出力ファイルの書き込みに失敗した。

    Attributes:
        category: 失敗の分類（``permission_denied`` / ``no_space`` など）
        retryable: 再試行で解決する可能性があるか
        guidance: 利用者向けの対処方法
    """

    def __init__(
        self,
        message: str,
        *,
        error_code: Optional[int] = None,
        category: str = "unknown",
        retryable: bool = False,
        guidance: str = "",
    ) -> None:
        super().__init__(message)
        self.error_code = error_code
        self.category = category
        self.retryable = retryable
        self.guidance = guidance


class CatalogError(Exception):
    """書き込み可能な形式が1つもないなど、起動時に検出すべき設定不整合。"""
