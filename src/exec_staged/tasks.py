"""タスク（フォーマッタ / リンタ / 任意のコマンド）の実行。

- コマンド文字列は shlex で分割し、`{FILES}` トークンの位置にマッチしたパスを差し込む
- 対象パスは diff フィルタ（index 側のステータス文字）と glob の両方でしぼる
- `{FILES}` があってマッチが0件ならタスク自体をスキップ（エラーではない）
- 非ゼロ終了 / 起動失敗は即座に `TaskError`。後続タスクは実行しない
"""

from __future__ import annotations

import contextlib
import fnmatch
import os
import shlex
import shutil
import subprocess
from dataclasses import dataclass
from pathlib import Path

from exec_staged.constants import DEFAULT_DIFF_FILTER, DEFAULT_GLOB_FILTER, INTERPOLATION_IDENTIFIER
from exec_staged.errors import TaskError
from exec_staged.logging_setup import StageLog
from exec_staged.status import StatusEntry, StatusSnapshot

# diff フィルタに使える文字。status エントリの index 側（＝タスクが見るステージ済みの側）と比較する。
# rename 検出を切ったスナップショットなので R / C は実際には現れず、rename は D + A になる。
# `{FILES}` には実行前のスナップショットのパスを渡す。D のパスと `?` のパス（run 中は stash に
# 隠れている）は作業ツリーに存在しない。
DIFF_FILTER_LETTERS = {
    "A": "added",
    "C": "copied",
    "D": "deleted",
    "M": "modified",
    "R": "renamed",
    "T": "type changed",
    "?": "untracked",
}

# プロジェクト内の実行ファイルを PATH より優先する
LOCAL_BIN_DIRS = (".venv/bin", "node_modules/.bin")


@dataclass(frozen=True)
class TaskSpec:
    command: str
    diff: str = DEFAULT_DIFF_FILTER
    glob: str = DEFAULT_GLOB_FILTER


def invalid_diff_letters(diff: str) -> list[str]:
    return [c for c in diff if c not in DIFF_FILTER_LETTERS]


def matches_diff(entry: StatusEntry, diff: str) -> bool:
    if entry.untracked:
        return "?" in diff
    return entry.index in diff and entry.index != " "


def matches_glob(path: str, pattern: str) -> bool:
    """`/` を含まないパターンはファイル名に、含むものはパス全体にマッチさせる。ドットファイルも対象。"""

    if "/" not in pattern:
        return fnmatch.fnmatchcase(path.rsplit("/", 1)[-1], pattern)
    return fnmatch.fnmatchcase(path, pattern)


def select_paths(task: TaskSpec, snapshot: StatusSnapshot) -> list[str]:
    return sorted(
        e.path
        for e in snapshot.entries.values()
        if matches_diff(e, task.diff) and matches_glob(e.path, task.glob)
    )


def interpolate(argv: list[str], paths: list[str]) -> list[str]:
    """最初の `{FILES}` トークンをパス列で置き換える。"""

    try:
        i = argv.index(INTERPOLATION_IDENTIFIER)
    except ValueError:
        return list(argv)
    return [*argv[:i], *paths, *argv[i + 1 :]]


def local_path(cwd: Path) -> str:
    dirs = [str(cwd / d) for d in LOCAL_BIN_DIRS if (cwd / d).is_dir()]
    return os.pathsep.join([*dirs, os.environ.get("PATH", "")])


class TaskRunner:
    def __init__(self, cwd: Path, *, log: StageLog) -> None:
        self.cwd = cwd
        self.log = log
        self.current: subprocess.Popen | None = None

    def build_argv(self, task: TaskSpec, snapshot: StatusSnapshot) -> list[str] | None:
        """実行する argv。`{FILES}` があってマッチ0件なら None。"""

        try:
            argv = shlex.split(task.command)
        except ValueError as e:
            raise TaskError(task.command, message=f"task command could not be parsed: {task.command} ({e})") from e
        if INTERPOLATION_IDENTIFIER in argv:
            paths = select_paths(task, snapshot)
            if not paths:
                return None
            argv = interpolate(argv, paths)
        return argv

    def run(self, task: TaskSpec, snapshot: StatusSnapshot) -> None:
        argv = self.build_argv(task, snapshot)
        if argv is None:
            self.log.log(f"↪️ Skipping task with no matching files: `{task.command}`")
            return
        if not argv:
            raise TaskError(task.command, message=f"empty task command: {task.command!r}")

        search_path = local_path(self.cwd)
        executable = shutil.which(argv[0], path=search_path) or argv[0]
        self.log.debug(f"task: {' '.join(f'[{a}]' for a in argv)}")

        try:
            self.current = subprocess.Popen(
                [executable, *argv[1:]],
                cwd=self.cwd,
                env={**os.environ, "PATH": search_path},
            )
        except OSError as e:
            raise TaskError(task.command, message=f"task could not be started: {task.command} ({e})") from e

        try:
            returncode = self.current.wait()
        finally:
            self.current = None

        if returncode < 0:
            raise TaskError(task.command, returncode, f"task was terminated by signal {-returncode}: {task.command}")
        if returncode != 0:
            raise TaskError(task.command, returncode)

    def run_all(self, tasks: list[TaskSpec], snapshot: StatusSnapshot) -> None:
        for i, task in enumerate(tasks, start=1):
            self.log.log(f"➡️ Running task {i} of {len(tasks)}: `{task.command}`...")
            try:
                self.run(task, snapshot)
            except TaskError:
                self.log.warn(f"Error running task: `{task.command}`!")
                raise

    def kill(self) -> None:
        proc = self.current
        if proc is None or proc.returncode is not None:
            return
        proc.kill()
        # シグナルハンドラからは Popen.wait のロックを取れないので直接回収する
        with contextlib.suppress(ChildProcessError):
            os.waitpid(proc.pid, 0)
