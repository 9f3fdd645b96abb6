"""実行ごとのログファイルと summary JSON の管理、および loguru の設定。

1 回の実行は ``run_<YYYYmmdd_HHMMSS>`` という実行 ID を持ち、ログファイルと
summary JSON はその ID を共有する。保持ポリシーは実行単位で適用されるため、
ログだけが消えて summary が残るということはない。
"""

from __future__ import annotations

import json
import os
import re
import sys
from dataclasses import dataclass
from datetime import datetime, timedelta
from pathlib import Path
from typing import Any, Dict, List, Mapping, Optional

from loguru import logger

DEFAULT_APP_NAME = "ConvertCompress"
DEFAULT_RETENTION_DAYS = 30
DEFAULT_MAX_RUNS = 50
LOG_DIR_ENV = "CONVERT_COMPRESS_LOG_DIR"

_RUN_ID_FORMAT = "%Y%m%d_%H%M%S"
_RUN_FILE_RE = re.compile(r"^run_(?P<run_id>\d{8}_\d{6})(?:\.log|_summary\.json)$")

CONSOLE_FORMAT = (
    "<green>{time:YYYY-MM-DD HH:mm:ss}</green> | <level>{level: <8}</level> | "
    "<cyan>{function}</cyan>: <white>{message}</white>"
)
FILE_FORMAT = (
    "{time:YYYY-MM-DD HH:mm:ss} | {level: <8} | run={extra[run_id]} | {thread.name} | "
    "{module}:{function}:{line} - {message}"
)


@dataclass(frozen=True)
class RunLogArtifacts:
    run_id: str
    log_dir: Path

    @property
    def run_log_path(self) -> Path:
        return self.log_dir / f"run_{self.run_id}.log"

    @property
    def summary_path(self) -> Path:
        return self.log_dir / f"run_{self.run_id}_summary.json"


def resolve_log_dir(
    explicit: Optional[Path] = None,
    *,
    os_name: Optional[str] = None,
    env: Optional[Mapping[str, str]] = None,
    home: Optional[Path] = None,
) -> Path:
    """ログの保存先を決める。

    優先順位は ``explicit``（``--log-dir``）、環境変数 ``CONVERT_COMPRESS_LOG_DIR``、
    OS 標準の場所の順。Windows は ``%LOCALAPPDATA%``、それ以外は XDG の state
    ディレクトリを使う。
    """
    if explicit is not None:
        return Path(explicit).expanduser()

    resolved_env = os.environ if env is None else env
    override = resolved_env.get(LOG_DIR_ENV)
    if override:
        return Path(override).expanduser()

    resolved_home = home or Path.home()
    if (os_name or os.name) == "nt":
        app_data = resolved_env.get("LOCALAPPDATA") or resolved_env.get("APPDATA")
        if app_data:
            return Path(app_data) / DEFAULT_APP_NAME / "logs"
        return resolved_home / f".{DEFAULT_APP_NAME.lower()}" / "logs"

    state_home = resolved_env.get("XDG_STATE_HOME")
    base = Path(state_home) if state_home else resolved_home / ".local" / "state"
    return base / DEFAULT_APP_NAME.lower() / "logs"


def setup_logging(
    console_level: str = "INFO",
    file_level: str = "DEBUG",
    log_file: Optional[Path] = None,
    run_id: Optional[str] = None,
) -> None:
    """loguru のシンクを設定する（標準エラー出力 + 任意でファイル）。

    ファイル側の各行には実行 ID が入る。
    """
    logger.remove()
    logger.configure(extra={"run_id": run_id or "-"})
    logger.add(
        sys.stderr,
        format=CONSOLE_FORMAT,
        colorize=True,
        level=console_level,
    )
    if log_file is not None:
        logger.add(
            str(log_file),
            format=FILE_FORMAT,
            level=file_level,
            rotation="10 MB",
            encoding="utf-8",
            enqueue=True,
        )


def create_run_log_artifacts(
    log_dir: Optional[Path] = None,
    *,
    retention_days: int = DEFAULT_RETENTION_DAYS,
    max_runs: int = DEFAULT_MAX_RUNS,
    now: Optional[datetime] = None,
) -> RunLogArtifacts:
    """保存先を用意し、古い実行を整理してから今回の実行 ID を払い出す。"""
    now_dt = now or datetime.now()
    resolved_dir = resolve_log_dir(log_dir)
    resolved_dir.mkdir(parents=True, exist_ok=True)
    prune_runs(resolved_dir, retention_days=retention_days, max_runs=max_runs, now=now_dt)
    return RunLogArtifacts(run_id=now_dt.strftime(_RUN_ID_FORMAT), log_dir=resolved_dir)


def prune_runs(
    log_dir: Path,
    *,
    retention_days: int = DEFAULT_RETENTION_DAYS,
    max_runs: int = DEFAULT_MAX_RUNS,
    now: Optional[datetime] = None,
) -> List[Path]:
    """保持日数を過ぎた実行と、新しい方から ``max_runs`` 件を超える実行を削除する。

    実行の日時はファイルの mtime ではなく実行 ID から判断する。``max_runs`` が
    0 以下なら件数では削除しない。削除できたファイルの一覧を返す。
    """
    now_dt = now or datetime.now()
    cutoff = now_dt - timedelta(days=max(0, retention_days))
    runs = _collect_runs(log_dir)

    # 実行 ID は時刻順にソートできる
    ordered = sorted(runs)
    doomed = [run_id for run_id in ordered if _parse_run_id(run_id) < cutoff]
    kept = [run_id for run_id in ordered if run_id not in doomed]
    if max_runs > 0 and len(kept) > max_runs:
        doomed.extend(kept[: len(kept) - max_runs])

    removed: List[Path] = []
    for run_id in doomed:
        for path in runs[run_id]:
            try:
                path.unlink(missing_ok=True)
            except OSError as e:
                logger.warning(f"古い実行ログを削除できません: {path}: {e}")
                continue
            removed.append(path)
    if removed:
        logger.debug(f"古い実行ログを {len(removed)} 件削除しました: {log_dir}")
    return removed


def write_run_summary(artifacts: RunLogArtifacts, payload: Mapping[str, Any]) -> Dict[str, Any]:
    """実行 ID とログファイルを添えた summary JSON をアトミックに保存して返す。"""
    summary: Dict[str, Any] = {
        "run_id": artifacts.run_id,
        "log_file": str(artifacts.run_log_path),
        **payload,
    }
    path = artifacts.summary_path
    path.parent.mkdir(parents=True, exist_ok=True)
    tmp_path = path.with_name(f".{path.name}.tmp")
    # Path などは文字列として書き出す
    tmp_path.write_text(json.dumps(summary, ensure_ascii=False, indent=2, default=str), encoding="utf-8")
    os.replace(str(tmp_path), str(path))
    return summary


def _collect_runs(log_dir: Path) -> Dict[str, List[Path]]:
    runs: Dict[str, List[Path]] = {}
    try:
        entries = list(log_dir.iterdir())
    except OSError:
        return runs
    for path in entries:
        match = _RUN_FILE_RE.match(path.name)
        if match is None or not path.is_file():
            continue
        run_id = match.group("run_id")
        try:
            _parse_run_id(run_id)
        except ValueError:
            continue
        runs.setdefault(run_id, []).append(path)
    return runs


def _parse_run_id(run_id: str) -> datetime:
    return datetime.strptime(run_id, _RUN_ID_FORMAT)
