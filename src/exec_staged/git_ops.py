"""git 操作ユーティリティ。

方針:
- すべて同期実行。シグナルハンドラ/終了処理からのロールバックが
  プロセス終了前に完了している必要があるため
- 非ゼロ終了は `GitCommandError`、git 自体が無ければ `GitEnvironmentError`
- 実行したコマンドと出力は詳細ログへ
"""

from __future__ import annotations

import os
import re
import subprocess
from dataclasses import dataclass
from pathlib import Path

from exec_staged.errors import GitCommandError, GitEnvironmentError
from exec_staged.logging_setup import StageLog

_VERSION_RE = re.compile(r"git version (\d+)\.(\d+)(?:\.(\d+))?")

# 1回の git 呼び出しに渡すパス引数の合計文字数。Windows のコマンドライン長制限に収まる値
MAX_PATH_ARGS_CHARS = 30_000


def chunk_paths(paths: list[str], limit: int = MAX_PATH_ARGS_CHARS) -> list[list[str]]:
    """コマンドライン長の制限を超えないようにパス列を分割する。"""

    chunks: list[list[str]] = []
    current: list[str] = []
    size = 0
    for path in paths:
        cost = len(path) + 1
        if current and size + cost > limit:
            chunks.append(current)
            current, size = [], 0
        current.append(path)
        size += cost
    if current:
        chunks.append(current)
    return chunks


@dataclass
class GitRepo:
    path: Path
    log: StageLog | None = None
    env: dict[str, str] | None = None

    def run(self, args: list[str]) -> str:
        """git を実行して stdout をそのまま返す（末尾改行も含む）。"""

        self._debug("git: " + " ".join(f"[{a}]" for a in args))
        try:
            proc = subprocess.run(
                ["git", *args],
                cwd=self.path,
                capture_output=True,
                check=False,
                text=True,
                encoding="utf-8",
                errors="surrogateescape",
                env=self._environ(),
            )
        except FileNotFoundError as e:
            raise GitEnvironmentError("git installation not found") from e
        except OSError as e:
            raise GitCommandError(args, str(e)) from e

        if self.log is not None:
            self.log.output(proc.stdout)
            if proc.stderr:
                self.log.output(proc.stderr)

        if proc.returncode < 0:
            raise GitCommandError(args, f"terminated by signal {-proc.returncode}", proc.returncode)
        if proc.returncode != 0:
            raise GitCommandError(args, proc.stderr, proc.returncode)
        return proc.stdout

    def run_paths(self, args: list[str], paths: list[str]) -> None:
        """`git <args> -- <paths>` を長さ制限内に分けて実行する。パスは glob として解釈しない。"""

        for chunk in chunk_paths(paths, MAX_PATH_ARGS_CHARS):
            self.run(["--literal-pathspecs", *args, "--", *chunk])

    def version(self) -> tuple[int, int, int] | None:
        m = _VERSION_RE.search(self.run(["--version"]))
        if m is None:
            return None
        return int(m.group(1)), int(m.group(2)), int(m.group(3) or 0)

    def toplevel(self) -> Path:
        return Path(self.run(["rev-parse", "--show-toplevel"]).strip())

    def git_dir(self) -> Path:
        return Path(self.run(["rev-parse", "--absolute-git-dir"]).strip())

    def head(self) -> str | None:
        """HEAD のコミットID。まだコミットが無ければ None。"""

        try:
            return self.run(["rev-parse", "--verify", "--quiet", "HEAD"]).strip() or None
        except GitCommandError:
            return None

    def head_subject(self) -> str:
        return self.run(["log", "-1", "--format=%s"]).strip()

    def find_stash(self, message: str) -> str | None:
        """メッセージで stash を探す。位置 0 だとは仮定しない。"""

        for line in self.run(["stash", "list"]).splitlines():
            ref, _, rest = line.partition(": ")
            if message in rest:
                return ref
        return None

    def add_all(self) -> None:
        self.run(["add", "-A"])

    def reset_hard(self, ref: str) -> None:
        self.run(["reset", "--hard", "--quiet", ref])

    def commit(self, message: str, *, allow_empty: bool = False) -> None:
        args = ["-c", "commit.gpgsign=false", "commit", "--no-verify", "--quiet", "-m", message]
        if allow_empty:
            args.append("--allow-empty")
        self.run(args)

    def _environ(self) -> dict[str, str] | None:
        if self.env is None:
            return None
        return {**os.environ, **self.env}

    def _debug(self, message: str) -> None:
        if self.log is not None:
            self.log.debug(message)
