"""エンコード結果をファイルへ書き出す。

保存先は「出力フォルダ指定 → 元ファイルと同じ場所 → ダウンロードフォルダ」の順で決める。
書き込みは同一ディレクトリの一時ファイル経由で置換し、壊れた最終ファイルを残さない。
"""

from __future__ import annotations

import os
import time
import uuid
from pathlib import Path
from typing import Optional, Protocol, Tuple

from loguru import logger

from .errors import WriteError
from .format_catalog import FormatCapabilities
from .image_buffer import EncodeResult

_WINDOWS_LONG_PATH_PREFIX = 260

_WINDOWS_RETRYABLE_CODES = {32, 33}
_WINDOWS_UNSUPPORTED_CODES = {2, 3, 80, 123, 206, 995, 1088}


class FileWriter(Protocol):
    def write(
        self,
        result: EncodeResult,
        source_path: Optional[Path],
        export_directory: Optional[Path],
    ) -> Path: ...


def _normalize_windows_long_path(path: Path) -> Path:
    """Windowsの長いパス向けに `\\?\\` プレフィックスを付与する。"""
    if os.name != "nt":
        return path

    path_str = os.path.abspath(str(path))
    if path_str.startswith("\\\\?\\"):
        return Path(path_str)

    if len(path_str) < _WINDOWS_LONG_PATH_PREFIX - 4:
        return Path(path_str)

    if path_str.startswith("\\\\"):
        return Path("\\\\?\\UNC\\" + path_str[2:])

    return Path("\\\\?\\" + path_str)


def _build_temp_save_path(target_path: Path) -> Path:
    """同一ディレクトリ内の一時保存パスを作る。"""
    base_name = target_path.name or "convert_output"
    token = f"{os.getpid()}_{time.time_ns()}_{uuid.uuid4().hex[:10]}"
    return target_path.with_name(f".{base_name}.{token}.tmp")


def analyze_file_error(error: BaseException) -> Tuple[Optional[int], str, bool, str]:
    """ファイル保存に使えるエラー分類を返す。

    Returns:
        (error_code, error_category, retryable, guidance)
    """
    if not isinstance(error, OSError):
        return None, "unknown", False, "再試行しても解決しない場合は保存先の権限を確認してください。"

    win_error = getattr(error, "winerror", None)
    errno = getattr(error, "errno", None)

    if os.name == "nt" and win_error:
        code = int(win_error)
        if code in _WINDOWS_RETRYABLE_CODES:
            return (
                code,
                "sharing_violation",
                True,
                "他のアプリによるロックが疑われます。数秒後に再試行するか、関連アプリを閉じてください。",
            )
        if code == 206:
            return code, "path_too_long", False, "保存先のパスが長すぎる可能性があります。保存先を短いパスに変更してください。"
        if code == 5:
            return code, "permission_denied", False, "保存先のアクセス権限が不足しています。書き込み権限を確認してください。"
        if code in {28, 122, 112}:
            return code, "no_space", False, "保存先の空き容量不足が疑われます。空き容量を確認してください。"
        return code, "windows_os_error", False, "Windows側のI/Oエラーが発生しました。保存先を変更して再試行してください。"

    code = None
    if isinstance(errno, int):
        code = int(errno)
        if code in _WINDOWS_UNSUPPORTED_CODES:
            return code, "path_invalid", False, "ファイル名・パス文字列を確認してください（予約語/不正文字が含まれる可能性）。"
        if code in {28, 122, 112}:
            return code, "no_space", False, "保存先の空き容量不足が疑われます。空き容量を確認してください。"
        if code == 36:
            return code, "path_too_long", False, "ファイル名が長すぎます。保存先を短いパスに変更してください。"

    if code in {13, 5, 30, 1}:
        return code, "permission_denied", False, "権限設定をご確認ください。"

    return code, "unknown", False, "再試行しても解決しない場合は保存先を変更してください。"


def default_downloads_dir() -> Path:
    downloads = Path.home() / "Downloads"
    return downloads if downloads.is_dir() else Path.home()


class AtomicFileWriter:
    """一時ファイル→置換で保存するライター。既存ファイルは上書きする。"""

    def __init__(self, catalog: FormatCapabilities, fallback_dir: Optional[Path] = None) -> None:
        self.catalog = catalog
        self.fallback_dir = fallback_dir

    def destination_for(
        self,
        result: EncodeResult,
        source_path: Optional[Path],
        export_directory: Optional[Path],
    ) -> Path:
        capability = self.catalog.capability(result.image_format)
        extension = capability.extension if capability else f".{result.image_format.identifier}"
        stem = source_path.stem if source_path is not None else "image"
        if export_directory is not None:
            directory = Path(export_directory)
        elif source_path is not None:
            directory = source_path.parent
        else:
            directory = self.fallback_dir or default_downloads_dir()
        return directory / f"{stem}{extension}"

    def write(
        self,
        result: EncodeResult,
        source_path: Optional[Path],
        export_directory: Optional[Path],
    ) -> Path:
        final_path = self.destination_for(result, source_path, export_directory)
        write_target = _normalize_windows_long_path(final_path)
        tmp_path = _build_temp_save_path(write_target)
        try:
            write_target.parent.mkdir(parents=True, exist_ok=True)
            tmp_path.write_bytes(result.data)
            os.replace(str(tmp_path), str(write_target))
        except OSError as e:
            error_code, category, retryable, guidance = analyze_file_error(e)
            raise WriteError(
                f"保存に失敗しました: {final_path}: {e}",
                error_code=error_code,
                category=category,
                retryable=retryable,
                guidance=guidance,
            ) from e
        finally:
            if tmp_path.exists():
                try:
                    tmp_path.unlink()
                except OSError:
                    logger.warning(f"一時保存ファイルの削除に失敗: {tmp_path}")
        logger.debug(f"保存しました: {final_path} ({result.byte_count} bytes)")
        return final_path
