"""convert-compress コマンドラインツール。"""

from __future__ import annotations

import argparse
import json
import signal
import sys
import threading
import time
from dataclasses import replace
from pathlib import Path
from typing import Any, Iterable, List, Optional, Sequence

from loguru import logger
from tqdm import tqdm

from . import __version__
from .batch import BatchItem, BatchReport, BatchRunner
from .encoders import EncoderRegistry
from .errors import CatalogError
from .file_writer import AtomicFileWriter
from .format_catalog import FormatCapabilities, default_format_catalog
from .pipeline_builder import PipelineBuilder, PipelineOptions
from .progress_tracker import BatchProgress
from .runtime_logging import create_run_log_artifacts, setup_logging, write_run_summary
from .segmentation import RembgSegmenter
from .settings_store import PipelineSettingsStore, options_from_settings, settings_from_options
from .usage_events import InMemoryEventSink

EXIT_OK = 0
EXIT_FAILED = 1
EXIT_USAGE = 2

DEFAULT_EXTENSIONS = [".bmp", ".gif", ".heic", ".jpeg", ".jpg", ".png", ".tif", ".tiff", ".webp"]


def _build_arg_parser() -> argparse.ArgumentParser:
    p = argparse.ArgumentParser(
        prog="convert-compress",
        description="画像をリサイズ・形式変換・圧縮するコマンドラインツール",
        formatter_class=argparse.ArgumentDefaultsHelpFormatter,
    )
    p.add_argument("sources", nargs="+", help="入力ファイルまたはフォルダー")
    p.add_argument(
        "-r",
        "--recursive",
        action=argparse.BooleanOptionalAction,
        default=True,
        help="フォルダー指定時にサブフォルダーも探索する",
    )
    p.add_argument("--extensions", default=",".join(DEFAULT_EXTENSIONS), help="探索する拡張子 (カンマ区切り)")
    p.add_argument("--unit", choices=["percent", "pixels"], default=None, help="リサイズ指定の単位")
    p.add_argument("-p", "--percent", type=float, default=None, help="倍率 (1.0 でリサイズなし)")
    p.add_argument("-W", "--width", default=None, help="幅(px)")
    p.add_argument("-H", "--height", default=None, help="高さ(px)")
    p.add_argument("-f", "--format", dest="output_format", default=None, help="出力形式 (original で元の形式)")
    p.add_argument("-c", "--compression", type=float, default=None, help="圧縮レベル (0.0-1.0)")
    p.add_argument("--flip", action="store_true", default=None, help="上下反転する")
    p.add_argument("--remove-bg", action="store_true", default=None, help="背景を除去する (rembg が必要)")
    p.add_argument("--strip-metadata", action="store_true", default=None, help="EXIF/ICC を削除する")
    p.add_argument("-o", "--export-dir", default=None, help="出力フォルダー (省略時は元ファイルと同じ場所)")
    p.add_argument("-j", "--workers", type=int, default=None, help="並列数")
    p.add_argument("--settings", default=None, help="設定ファイルのパス")
    p.add_argument("--save-settings", action="store_true", help="今回の指定を設定ファイルへ保存する")
    p.add_argument("--dry-run", action="store_true", help="ファイルを出力せずに処理をシミュレート")
    p.add_argument("--log-dir", default=None, help="実行ログの保存先")
    p.add_argument(
        "--log-level",
        default="INFO",
        choices=["TRACE", "DEBUG", "INFO", "SUCCESS", "WARNING", "ERROR"],
        help="コンソールのログレベル",
    )
    p.add_argument("--json", action="store_true", help="結果の summary を JSON で標準出力に出す")
    p.add_argument("--no-progress", action="store_true", help="進捗バーを表示しない")
    p.add_argument("--version", action="version", version=f"%(prog)s {__version__}")
    return p


def _normalize_cli_extensions(raw: str) -> List[str]:
    extensions = set()
    for part in raw.split(","):
        ext = part.strip().lower()
        if not ext:
            continue
        if not ext.startswith("."):
            ext = f".{ext}"
        extensions.add(ext)
    return sorted(extensions)


def _discover_cli_image_paths(root: Path, *, recursive: bool, extensions: Sequence[str]) -> List[Path]:
    allowed = {ext.lower() for ext in extensions}
    iterator = root.rglob("*") if recursive else root.glob("*")
    return sorted(path for path in iterator if path.is_file() and path.suffix.lower() in allowed)


def _collect_sources(sources: Iterable[str], *, recursive: bool, extensions: Sequence[str]) -> List[Path]:
    """ファイル/フォルダー指定を画像パスの一覧に展開する。重複は除く。"""
    collected: List[Path] = []
    seen = set()
    for raw in sources:
        path = Path(raw)
        if path.is_dir():
            found = _discover_cli_image_paths(path, recursive=recursive, extensions=extensions)
        elif path.is_file():
            found = [path]
        else:
            logger.warning(f"入力が見つかりません: {path}")
            continue
        for item in found:
            key = item.resolve()
            if key in seen:
                continue
            seen.add(key)
            collected.append(item)
    return collected


def _apply_cli_overrides(
    options: PipelineOptions,
    args: argparse.Namespace,
    catalog: FormatCapabilities,
) -> PipelineOptions:
    """コマンドライン引数で設定値を上書きする。"""
    changes: dict[str, Any] = {}
    if args.unit is not None:
        changes["size_unit"] = args.unit
    if args.percent is not None:
        changes["resize_percent"] = args.percent
        changes.setdefault("size_unit", "percent")
    if args.width is not None or args.height is not None:
        changes["resize_width"] = args.width or ""
        changes["resize_height"] = args.height or ""
        changes.setdefault("size_unit", "pixels")
    if args.output_format is not None:
        if args.output_format.lower() in ("original", "auto"):
            changes["target_format"] = None
        else:
            target = catalog.get(args.output_format)
            if target is None:
                raise ValueError(f"不明な出力形式です: {args.output_format}")
            changes["target_format"] = target
    if args.compression is not None:
        if not 0.0 <= args.compression <= 1.0:
            raise ValueError(f"圧縮レベルは 0.0-1.0 で指定してください: {args.compression}")
        changes["compression_level"] = args.compression
    if args.flip:
        changes["flip_vertical"] = True
    if args.remove_bg:
        changes["remove_background"] = True
    if args.strip_metadata:
        changes["remove_metadata"] = True
    if args.export_dir is not None:
        changes["export_directory"] = Path(args.export_dir)
    return replace(options, **changes) if changes else options


def _build_cli_summary(
    *,
    status: str,
    sources: Sequence[str],
    total_files: int,
    processed_count: int,
    failed_count: int,
    cancelled_count: int,
    dry_run: bool,
    options: PipelineOptions,
    elapsed_seconds: float,
    outputs: List[dict[str, Any]],
    failed_files: List[dict[str, Any]],
    message: str,
) -> dict[str, Any]:
    return {
        "status": status,
        "sources": [str(s) for s in sources],
        "total_files": total_files,
        "processed_count": processed_count,
        "failed_count": failed_count,
        "cancelled_count": cancelled_count,
        "dry_run": dry_run,
        "options": {
            "size_unit": options.size_unit,
            "resize_percent": options.resize_percent,
            "width": options.resize_width,
            "height": options.resize_height,
            "format": options.target_format.identifier if options.target_format else "original",
            "compression_level": options.compression_level,
            "flip_vertical": options.flip_vertical,
            "remove_background": options.remove_background,
            "remove_metadata": options.remove_metadata,
            "export_directory": str(options.export_directory) if options.export_directory else "",
        },
        "elapsed_seconds": round(elapsed_seconds, 3),
        "outputs": outputs,
        "failed_files": failed_files,
        "message": message,
    }


def _summarize_report(report: BatchReport) -> tuple[List[dict[str, Any]], List[dict[str, Any]]]:
    outputs = []
    failed = []
    for outcome in report.outcomes:
        name = str(outcome.item.source_path) if outcome.item.source_path else outcome.item.display_name
        if outcome.success and outcome.result is not None:
            outputs.append(
                {
                    "file": name,
                    "output": str(outcome.output_path) if outcome.output_path else "",
                    "format": outcome.result.image_format.identifier,
                    "size": str(outcome.result.pixel_size),
                    "bytes": outcome.result.byte_count,
                }
            )
        elif outcome.status == "failed":
            failed.append({"file": name, "error": str(outcome.error)})
    return outputs, failed


def _exit_code_for(report: BatchReport) -> int:
    return EXIT_OK if report.all_succeeded else EXIT_FAILED


def main(argv: Optional[Sequence[str]] = None) -> int:
    """CLI のエントリーポイント。終了コードを返す。"""
    parser = _build_arg_parser()
    args = parser.parse_args(argv)

    run_artifacts = create_run_log_artifacts(Path(args.log_dir) if args.log_dir else None)
    setup_logging(console_level=args.log_level, log_file=run_artifacts.run_log_path, run_id=run_artifacts.run_id)
    logger.info(f"convert-compress {__version__} を起動しました。ログファイル: {run_artifacts.run_log_path}")
    logger.debug(f"引数: {args}")

    catalog = default_format_catalog()
    registry = EncoderRegistry(catalog)
    try:
        writable = registry.validate()
    except CatalogError as e:
        logger.error(f"出力形式の設定が不正です: {e}")
        return EXIT_USAGE
    logger.debug(f"出力可能な形式: {', '.join(fmt.identifier for fmt in writable)}")

    store = PipelineSettingsStore(Path(args.settings)) if args.settings else PipelineSettingsStore()
    settings = store.load()
    try:
        options = _apply_cli_overrides(options_from_settings(settings, catalog), args, catalog)
    except ValueError as e:
        logger.error(str(e))
        return EXIT_USAGE

    if args.save_settings:
        payload = settings_from_options(options)
        payload["max_workers"] = args.workers or settings.get("max_workers", 0)
        store.save(payload)
        logger.info(f"設定を保存しました: {store.settings_path}")

    extensions = _normalize_cli_extensions(args.extensions)
    paths = _collect_sources(args.sources, recursive=args.recursive, extensions=extensions)
    if not paths:
        logger.warning("処理対象の画像ファイルが見つかりませんでした。")
        return EXIT_USAGE

    segmenter = RembgSegmenter() if options.remove_background else None
    pipeline = PipelineBuilder(registry, segmenter).build(options)

    workers = args.workers or int(settings.get("max_workers") or 0) or None
    writer = None if args.dry_run else AtomicFileWriter(catalog)
    event_sink = InMemoryEventSink()
    runner = BatchRunner(catalog, writer=writer, event_sink=event_sink, max_workers=workers)

    cancel_event = threading.Event()

    def _handle_sigint(sig, frame):
        if cancel_event.is_set():
            raise KeyboardInterrupt
        logger.warning("中断を受け付けました。処理中の画像が終わり次第停止します（もう一度 Ctrl+C で強制終了）")
        cancel_event.set()

    previous_handler = signal.signal(signal.SIGINT, _handle_sigint)

    logger.info(f"{'【ドライラン】' if args.dry_run else ''}処理を開始します: {len(paths)}件")
    start_time = time.time()
    progress_lock = threading.Lock()
    try:
        with tqdm(total=len(paths), desc="画像処理中", unit="files", disable=args.no_progress) as progress:
            last_processed = [0]

            def _on_progress(snapshot: BatchProgress) -> None:
                with progress_lock:
                    delta = snapshot.processed_files - last_processed[0]
                    if delta > 0:
                        progress.update(delta)
                        last_processed[0] = snapshot.processed_files

            report = runner.run(
                pipeline,
                [BatchItem(source_path=path) for path in paths],
                cancel_event=cancel_event,
                progress_callback=_on_progress,
            )
    finally:
        signal.signal(signal.SIGINT, previous_handler)
    elapsed = time.time() - start_time

    outputs, failed_files = _summarize_report(report)
    cancelled_count = report.progress.cancelled_files
    if report.cancelled:
        status, message = "cancelled", "ユーザーにより中断されました"
    elif report.all_succeeded:
        status, message = "success", "すべての画像を処理しました"
    else:
        status, message = "partial_failure", f"{len(failed_files)} 件の画像が失敗しました"

    summary = _build_cli_summary(
        status=status,
        sources=args.sources,
        total_files=len(paths),
        processed_count=len(report.succeeded),
        failed_count=len(report.failed),
        cancelled_count=cancelled_count,
        dry_run=args.dry_run,
        options=options,
        elapsed_seconds=elapsed,
        outputs=outputs,
        failed_files=failed_files,
        message=message,
    )
    summary["usage"] = {
        "image_conversions": event_sink.total_image_conversions,
        "pipeline_applications": event_sink.total_pipeline_applications,
    }
    summary = write_run_summary(run_artifacts, summary)

    if args.json:
        print(json.dumps(summary, ensure_ascii=False, indent=2))
    elif report.all_succeeded:
        logger.success(f"{message} ({elapsed:.2f}秒)")
    else:
        logger.warning(f"{message} ({elapsed:.2f}秒)")

    return _exit_code_for(report)


if __name__ == "__main__":
    sys.exit(main())
