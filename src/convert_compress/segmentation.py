"""背景除去の外部機能とのインターフェース。

アルゴリズム自体はこのパッケージでは持たず、``Segmenter`` として注入する。
"""

from __future__ import annotations

import threading
from typing import Any, Optional, Protocol

from loguru import logger
from PIL import Image

from .errors import SegmentationUnavailable


class Segmenter(Protocol):
    def segment(self, image: Image.Image) -> Image.Image:
        """背景を透過にした同サイズの画像を返す。処理できなければ ``SegmentationUnavailable``。"""
        ...


class RembgSegmenter:
    """rembg を使う背景除去。``pip install convert-compress[background]`` が必要。"""

    SUPPORTED_MODES = {"RGB", "RGBA", "L", "LA", "P"}

    def __init__(self, model_name: str = "u2net") -> None:
        self.model_name = model_name
        self._session: Optional[Any] = None
        self._lock = threading.Lock()

    def _get_session(self) -> Any:
        with self._lock:
            if self._session is None:
                try:
                    from rembg import new_session
                except ImportError as e:
                    raise SegmentationUnavailable(
                        "背景除去には rembg が必要です: pip install convert-compress[background]"
                    ) from e
                logger.info(f"背景除去モデルを読み込みます: {self.model_name}")
                self._session = new_session(self.model_name)
            return self._session

    def segment(self, image: Image.Image) -> Image.Image:
        if image.mode not in self.SUPPORTED_MODES:
            raise SegmentationUnavailable(f"背景除去に対応していないピクセル形式です: {image.mode}")
        session = self._get_session()
        from rembg import remove

        try:
            result = remove(image.convert("RGBA"), session=session)
        except Exception as e:
            raise SegmentationUnavailable(f"背景除去に失敗しました: {e}") from e
        if not isinstance(result, Image.Image):
            raise SegmentationUnavailable("背景除去の結果が画像ではありません")
        return result
