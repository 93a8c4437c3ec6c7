"""未ステージ変更のパッチ化。

手順:
1. untracked のパスを一時的に index に登録（`add --intent-to-add`）して diff に載せる。
   パスが多い場合はコマンドライン長の制限に収まるよう分けて渡す
2. バイナリ対応・rename 無効・コンテキスト0 の diff を `.git/` 配下に書き出す。
   削除は除外（タスクの編集後にも当たる形で表現できないため、merge 時に消し直す）
3. 一時登録を解除して index を元に戻す
"""

from __future__ import annotations

from dataclasses import dataclass, field
from pathlib import Path

from exec_staged.constants import PATCH_FILENAME
from exec_staged.errors import CaptureError, GitCommandError
from exec_staged.git_ops import GitRepo
from exec_staged.status import StatusSnapshot

DIFF_ARGS = [
    "diff",
    "--binary",
    "--unified=0",
    "--no-color",
    "--no-ext-diff",
    "--src-prefix=a/",
    "--dst-prefix=b/",
    "--patch",
    "--submodule=short",
    "--no-renames",
    "--diff-filter=d",
]

APPLY_ARGS = ["apply", "-v", "--whitespace=nowarn", "--recount", "--unidiff-zero"]


def patch_path(git_dir: Path) -> Path:
    return git_dir / PATCH_FILENAME


@dataclass
class PatchCapture:
    path: Path
    registered_untracked: list[str] = field(default_factory=list)

    @property
    def empty(self) -> bool:
        return not self.path.exists() or self.path.stat().st_size == 0

    def apply(self, repo: GitRepo) -> None:
        """パッチを当てる。素直に当たらなければ 3-way で再試行。空なら何もしない。"""

        if self.empty:
            return
        try:
            repo.run([*APPLY_ARGS, str(self.path)])
        except GitCommandError:
            repo.run([*APPLY_ARGS, "--3way", str(self.path)])

    def remove(self) -> None:
        self.path.unlink(missing_ok=True)


def capture_unstaged_patch(repo: GitRepo, snapshot: StatusSnapshot, *, git_dir: Path) -> PatchCapture:
    capture = PatchCapture(path=patch_path(git_dir), registered_untracked=snapshot.untracked())
    untracked = capture.registered_untracked

    try:
        if untracked:
            repo.run_paths(["add", "--intent-to-add"], untracked)
        try:
            repo.run([*DIFF_ARGS, f"--output={capture.path}"])
        finally:
            if untracked:
                repo.run_paths(["reset", "--quiet"], untracked)
    except GitCommandError as e:
        capture.remove()
        raise CaptureError(f"failed to capture unstaged changes: {e}") from e

    return capture
