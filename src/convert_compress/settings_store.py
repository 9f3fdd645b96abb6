"""パイプライン設定の永続化ストア。"""

from __future__ import annotations

import json
import os
from pathlib import Path
from typing import Any, Iterable, Mapping, Optional

from loguru import logger

from .format_catalog import FormatCapabilities
from .pipeline_builder import PipelineOptions

SCHEMA_VERSION = 1
_SETTINGS_FILENAME = "settings.json"
_LEGACY_FILENAME = "convert_compress_settings.json"
_APP_DIR_NAME = "ConvertCompress"


def default_pipeline_settings() -> dict[str, Any]:
    """設定のデフォルト値を返す。"""
    return {
        "schema_version": SCHEMA_VERSION,
        "size_unit": "percent",
        "resize_percent": 1.0,
        "resize_width": "",
        "resize_height": "",
        "output_format": "original",
        "compression_level": None,
        "flip_vertical": False,
        "remove_background": False,
        "remove_metadata": False,
        "export_directory": "",
        "max_workers": 0,
    }


def options_from_settings(settings: Mapping[str, Any], catalog: FormatCapabilities) -> PipelineOptions:
    """設定辞書を ``PipelineOptions`` に変換する。不正な値はデフォルトに戻す。"""
    merged = default_pipeline_settings()
    merged.update(dict(settings))

    size_unit = str(merged.get("size_unit", "percent")).lower()
    if size_unit not in ("percent", "pixels"):
        logger.warning(f"不明なサイズ単位のため percent を使います: {size_unit}")
        size_unit = "percent"

    try:
        resize_percent = float(merged.get("resize_percent", 1.0))
    except (TypeError, ValueError):
        logger.warning(f"倍率を解釈できないため 1.0 を使います: {merged.get('resize_percent')!r}")
        resize_percent = 1.0

    output_format_name = str(merged.get("output_format") or "original")
    target_format = None
    if output_format_name.lower() not in ("original", "auto"):
        target_format = catalog.get(output_format_name)
        if target_format is None:
            logger.warning(f"不明な出力形式のため元の形式を使います: {output_format_name}")

    compression = merged.get("compression_level")
    if compression in ("", None):
        compression_level = None
    else:
        try:
            compression_level = float(compression)
        except (TypeError, ValueError):
            logger.warning(f"圧縮レベルを解釈できないため既定値を使います: {compression!r}")
            compression_level = None

    export_directory = str(merged.get("export_directory") or "").strip()
    return PipelineOptions(
        size_unit=size_unit,  # type: ignore[arg-type]
        resize_percent=resize_percent,
        resize_width=str(merged.get("resize_width") or ""),
        resize_height=str(merged.get("resize_height") or ""),
        target_format=target_format,
        compression_level=compression_level,
        flip_vertical=_read_flag(merged, "flip_vertical"),
        remove_background=_read_flag(merged, "remove_background"),
        remove_metadata=_read_flag(merged, "remove_metadata"),
        export_directory=Path(export_directory) if export_directory else None,
    )


_TRUE_TEXTS = ("true", "1")
_FALSE_TEXTS = ("false", "0")


def _read_flag(settings: Mapping[str, Any], key: str) -> bool:
    default = bool(default_pipeline_settings()[key])
    value = settings.get(key, default)
    if isinstance(value, bool):
        return value
    if isinstance(value, str):
        text = value.strip().lower()
        if text in _TRUE_TEXTS:
            return True
        if text in _FALSE_TEXTS:
            return False
    elif isinstance(value, int) and value in (0, 1):
        return bool(value)
    logger.warning(f"{key} を解釈できないため既定値を使います: {value!r}")
    return default


def settings_from_options(options: PipelineOptions) -> dict[str, Any]:
    """``PipelineOptions`` を保存用の辞書にする。"""
    settings = default_pipeline_settings()
    settings.update(
        {
            "size_unit": options.size_unit,
            "resize_percent": options.resize_percent,
            "resize_width": options.resize_width,
            "resize_height": options.resize_height,
            "output_format": options.target_format.identifier if options.target_format else "original",
            "compression_level": options.compression_level,
            "flip_vertical": options.flip_vertical,
            "remove_background": options.remove_background,
            "remove_metadata": options.remove_metadata,
            "export_directory": str(options.export_directory) if options.export_directory else "",
        }
    )
    return settings


class PipelineSettingsStore:
    """設定のロード/保存を行う。"""

    def __init__(
        self,
        settings_path: Optional[Path] = None,
        legacy_paths: Optional[Iterable[Path]] = None,
    ) -> None:
        self.settings_path = settings_path or self._build_default_settings_path()
        if legacy_paths is None:
            self.legacy_paths = [Path.cwd() / _LEGACY_FILENAME]
        else:
            self.legacy_paths = list(legacy_paths)

    def load(self) -> dict[str, Any]:
        """設定を読み込む。必要なら旧設定ファイルから移行する。"""
        defaults = default_pipeline_settings()

        loaded_current = self._read_json(self.settings_path)
        if loaded_current is not None:
            defaults.update(loaded_current)
            defaults["schema_version"] = SCHEMA_VERSION
            return defaults

        for legacy_path in self.legacy_paths:
            loaded_legacy = self._read_json(legacy_path)
            if loaded_legacy is None:
                continue
            logger.info(f"旧設定ファイルから移行します: {legacy_path}")
            defaults.update(loaded_legacy)
            defaults["schema_version"] = SCHEMA_VERSION
            self.save(defaults)
            return defaults

        return defaults

    def save(self, settings: Mapping[str, Any]) -> None:
        """設定を保存する。"""
        payload = default_pipeline_settings()
        payload.update(dict(settings))
        payload["schema_version"] = SCHEMA_VERSION

        self.settings_path.parent.mkdir(parents=True, exist_ok=True)
        tmp_path = self.settings_path.with_suffix(f"{self.settings_path.suffix}.tmp")
        with tmp_path.open("w", encoding="utf-8") as fh:
            json.dump(payload, fh, ensure_ascii=False, indent=2)
        tmp_path.replace(self.settings_path)

    @staticmethod
    def _read_json(path: Path) -> Optional[dict[str, Any]]:
        if not path.exists():
            return None
        try:
            with path.open("r", encoding="utf-8") as fh:
                data = json.load(fh)
        except (OSError, ValueError) as e:
            logger.warning(f"設定ファイルを読み込めません: {path}: {e}")
            return None
        if not isinstance(data, dict):
            return None
        return data

    @staticmethod
    def _build_default_settings_path() -> Path:
        if os.name == "nt":
            app_data = os.environ.get("APPDATA")
            if app_data:
                return Path(app_data) / _APP_DIR_NAME / _SETTINGS_FILENAME
            return Path.home() / ".convertcompress" / _SETTINGS_FILENAME

        config_home = os.environ.get("XDG_CONFIG_HOME")
        if config_home:
            return Path(config_home) / "convertcompress" / _SETTINGS_FILENAME
        return Path.home() / ".config" / "convertcompress" / _SETTINGS_FILENAME
