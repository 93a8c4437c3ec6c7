"""エンジンの結果を終了コードに変換する。0: 成功 / 1: 何らかの失敗。"""

from __future__ import annotations

from collections.abc import Sequence
from pathlib import Path

from exec_staged.errors import RevertFailureError
from exec_staged.git_ops import GitRepo
from exec_staged.logging_setup import StageLog
from exec_staged.recovery import recover_repository
from exec_staged.stage import Stage
from exec_staged.tasks import TaskSpec

EXIT_OK = 0
EXIT_FAILURE = 1


def exec_staged(cwd: Path, tasks: Sequence[TaskSpec | str], *, quiet: bool = False) -> int:
    log = StageLog(quiet=quiet)
    stage = Stage(cwd, log=log)
    try:
        stage.exec(tasks)
    except Exception as e:  # noqa: BLE001
        _report_failure(log, e)
        return EXIT_FAILURE
    return EXIT_OK


def recover(cwd: Path, *, quiet: bool = False) -> int:
    log = StageLog(quiet=quiet)
    try:
        if not Path(cwd).is_dir():
            log.warn(f"Working directory does not exist: {cwd}")
            return EXIT_FAILURE
        recover_repository(GitRepo(Path(cwd), log=log), log=log)
    except Exception as e:  # noqa: BLE001
        _report_failure(log, e)
        return EXIT_FAILURE
    return EXIT_OK


def _report_failure(log: StageLog, error: Exception) -> None:
    log.debug(f"error: {error!r}")
    log.log(f"❌ {error}", style="red")
    if isinstance(error, RevertFailureError):
        log.log(
            "Your original changes may only be reachable through `git stash list`.  "
            "Try `exec-staged recover` before making further changes.",
            style="red",
        )
    log.log(f"Debug log: {log.debug_path}", style="dim")
