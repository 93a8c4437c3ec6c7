"""例外の分類。

すべて `ExecStagedError`（RuntimeError 派生）を根に持つ。
`exec()` の最上位でまとめて扱い、run/merge 由来なら revert を試みる。
"""

from __future__ import annotations


class ExecStagedError(RuntimeError):
    pass


class GitCommandError(ExecStagedError):
    """git が非ゼロ終了、またはシグナルで終了した。"""

    def __init__(self, args: list[str], stderr: str = "", returncode: int | None = None) -> None:
        self.git_args = list(args)
        self.stderr = stderr
        self.returncode = returncode
        detail = stderr.strip() or f"exit code {returncode}"
        super().__init__(f"git {' '.join(args)} failed: {detail}")


class GitEnvironmentError(ExecStagedError):
    """git が見つからない / バージョンが古い。"""


class RepositoryStateError(ExecStagedError):
    """cwd がリポジトリのルートでない、.git が危険なシンボリックリンク等。"""


class PriorRunArtifactError(ExecStagedError):
    """前回の中断された実行の残骸（stash / commit / .bak）がある。"""


class CaptureError(ExecStagedError):
    pass


class StashError(ExecStagedError):
    pass


class TaskError(ExecStagedError):
    def __init__(self, command: str, returncode: int | None = None, message: str = "") -> None:
        self.command = command
        self.returncode = returncode
        super().__init__(message or f"task failed with exit code {returncode}: {command}")


class MergeReconciliationError(ExecStagedError):
    pass


class RevertFailureError(ExecStagedError):
    """ロールバック自体に失敗した。元の状態は stash list にしか残っていない可能性がある。"""


class ConfigError(ExecStagedError):
    pass
