"""Stage: ステージ済みの内容だけに対してタスクを走らせるライフサイクル。

check -> prepare -> run -> merge（成功時） / revert（run・merge の失敗時）

- check: 何も変更しない。環境・リポジトリ・前回の残骸を検査
- prepare: HEAD と status を記録し、マージ状態を退避、未ステージ変更をパッチ化、
  keep-index + include-untracked で stash して作業ツリーをステージ済みの内容だけにする
- run: タスクを順番に1つずつ実行
- merge: タスクの出力を index に入れ、未ステージ変更をパッチで戻す。HEAD は動かさない
- revert: すべて捨てて HEAD に戻し、backup stash から元の状態を復元

実行中の永続状態はすべてリポジトリ側（stash / .git 配下のパッチ / .bak）にある。
プロセスが落ちても別プロセスの `recover` で後始末できる。
"""

from __future__ import annotations

from collections.abc import Sequence
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path

from exec_staged import teardown
from exec_staged.constants import (
    BACKUP_STASH_MESSAGE,
    MIN_GIT_VERSION,
    STAGE_LIFECYCLE_MESSAGES,
    STAGED_CHANGES_COMMIT_MESSAGE,
)
from exec_staged.errors import (
    ExecStagedError,
    GitCommandError,
    GitEnvironmentError,
    MergeReconciliationError,
    PriorRunArtifactError,
    RepositoryStateError,
    RevertFailureError,
    StashError,
)
from exec_staged.git_ops import GitRepo
from exec_staged.logging_setup import StageLog
from exec_staged.merge_status import MergeStatusBackup
from exec_staged.patch import PatchCapture, capture_unstaged_patch, patch_path
from exec_staged.status import StatusSnapshot, capture_status
from exec_staged.tasks import TaskRunner, TaskSpec

# index に何も無いリポジトリで `stash push --keep-index` が返すエラー。stash 自体は作られている
NO_FILES_KNOWN = "did not match any file(s) known to git"


class Phase(str, Enum):
    IDLE = "idle"
    CHECKED = "checked"
    PREPARING = "preparing"
    PREPARED = "prepared"
    RAN = "ran"
    MERGED = "merged"
    REVERTING = "reverting"
    REVERTED = "reverted"


@dataclass
class RunState:
    head_commit: str | None = None
    snapshot: StatusSnapshot | None = None
    stashed: bool = False
    patch: PatchCapture | None = None
    merge_backup: set[str] = field(default_factory=set)


def as_task(task: TaskSpec | str) -> TaskSpec:
    return TaskSpec(command=task) if isinstance(task, str) else task


class Stage:
    def __init__(
        self,
        cwd: Path,
        *,
        quiet: bool = False,
        log: StageLog | None = None,
        git: GitRepo | None = None,
    ) -> None:
        self.cwd = Path(cwd)
        self.log = log or StageLog(quiet=quiet)
        self.git = git or GitRepo(self.cwd, log=self.log)
        self.runner = TaskRunner(self.cwd, log=self.log)
        self.state = RunState()
        self.phase = Phase.IDLE
        self._git_dir: Path | None = None

    def exec(self, tasks: Sequence[TaskSpec | str]) -> None:
        self.state = RunState()
        teardown.register(self._teardown)
        try:
            self.check()
            self.prepare()
            try:
                self.run(tasks)
                self.merge()
            except Exception as error:
                self.log.debug(f"error: {error!r}")
                self.revert()
                raise
        finally:
            teardown.unregister(self._teardown)
            self.phase = Phase.IDLE

    # ── check ──

    def check(self) -> None:
        self.log.log(STAGE_LIFECYCLE_MESSAGES["check"])

        if not self.cwd.is_dir():
            self.log.warn("Working directory does not exist!")
            raise RepositoryStateError(f"cwd does not exist: {self.cwd}")

        try:
            version = self.git.version()
        except (GitEnvironmentError, GitCommandError) as e:
            self.log.warn("Git installation not found!")
            raise GitEnvironmentError("git installation not found") from e

        if version is None or version[:2] < MIN_GIT_VERSION:
            self.log.warn("Unsupported git version!")
            found = ".".join(map(str, version)) if version else "unknown"
            required = ".".join(map(str, MIN_GIT_VERSION))
            raise GitEnvironmentError(f"unsupported git version: {found} (requires {required} or newer)")

        try:
            toplevel = self.git.toplevel()
        except GitCommandError as e:
            self.log.warn("Not a git repository!")
            raise RepositoryStateError(f"cwd is not a git repository: {self.cwd}") from e

        root = self.cwd.resolve()
        if toplevel.resolve() != root:
            self.log.warn("Not the root directory of a git repository!")
            raise RepositoryStateError(f"cwd is not a git repository root directory: {self.cwd}")

        dot_git = self.cwd / ".git"
        if dot_git.is_symlink():
            target = dot_git.resolve()
            if target == root or root in target.parents:
                self.log.warn("Unsafe git directory symlink!")
                raise RepositoryStateError(
                    "git directory is a symlink pointing to a location within the repository"
                )

        if self.git.find_stash(BACKUP_STASH_MESSAGE) is not None:
            self.log.warn("Found unexpected backup stash!")
            self.log.log("It must be left over from a previous failed run.  Run `exec-staged recover` before proceeding.")
            raise PriorRunArtifactError("unexpected backup stash from a previous run")

        if self.git.head() is not None and self.git.head_subject() == STAGED_CHANGES_COMMIT_MESSAGE:
            self.log.warn("Found unexpected temporary commit!")
            self.log.log("It must be left over from a previous failed run.  Run `exec-staged recover` before proceeding.")
            raise PriorRunArtifactError("unexpected temporary commit from a previous run")

        leftovers = self._merge_status().leftover_backups()
        if leftovers:
            self.log.warn("Found unexpected merge status backup!")
            raise PriorRunArtifactError(f"unexpected merge status backup: {', '.join(leftovers)}")

        self.phase = Phase.CHECKED

    # ── prepare ──

    def prepare(self) -> None:
        self.log.log(STAGE_LIFECYCLE_MESSAGES["prepare"])
        self.phase = Phase.PREPARING

        self.state.head_commit = self.git.head()
        snapshot = capture_status(self.git)
        self.state.snapshot = snapshot

        # index にも作業ツリーにも何も無ければ隠すものも戻すものも無い
        if snapshot.empty:
            self.log.debug("➡️ ➡️ No changes in index or working tree, nothing to hide")
            self.phase = Phase.PREPARED
            return

        if self.state.head_commit is None:
            # stash はコミットが無いと作れない
            self.log.warn("Changes cannot be saved before the first commit!")
            raise RepositoryStateError("repository has no commits, cannot save changes before the first commit")

        unmerged = snapshot.unmerged()
        if unmerged:
            self.log.warn("Unmerged paths must be resolved before running tasks!")
            raise StashError(f"unmerged paths: {', '.join(unmerged)}")

        try:
            self.log.debug("➡️ ➡️ Backing up merge status...")
            self.state.merge_backup = self._merge_status().backup()
            self.log.debug("➡️ ➡️ Saving unstaged changes as patch...")
            self.state.patch = capture_unstaged_patch(self.git, snapshot, git_dir=self.git_dir)
            self._create_backup_stash()
        except ExecStagedError:
            if not self.state.stashed:
                self._discard_preparation()
            raise

        self.phase = Phase.PREPARED

    def _create_backup_stash(self) -> None:
        self.log.debug("➡️ ➡️ Creating backup stash and hiding unstaged changes...")
        try:
            self.git.run(
                [
                    "stash",
                    "push",
                    "--keep-index",
                    "--include-untracked",
                    "--message",
                    BACKUP_STASH_MESSAGE,
                ]
            )
        except GitCommandError as e:
            created = self.git.find_stash(BACKUP_STASH_MESSAGE) is not None
            if created and NO_FILES_KNOWN in e.stderr:
                self.log.debug("➡️ ➡️ No files known to git yet, backup stash was created")
                self.state.stashed = True
                return
            self.log.warn("Error creating backup stash!")
            if created:
                # 作られたかどうか確信が持てない stash は消さずに残す
                self.state.stashed = True
                raise StashError(
                    f"failed to create backup stash, it was left in place for `exec-staged recover`: {e}"
                ) from e
            raise StashError(f"failed to create backup stash: {e}") from e

        self.state.stashed = True

    def _discard_preparation(self) -> None:
        self._patch().remove()
        self._merge_status().restore(self.state.merge_backup)
        self.state.merge_backup = set()

    # ── run ──

    def run(self, tasks: Sequence[TaskSpec | str]) -> None:
        self.log.log(STAGE_LIFECYCLE_MESSAGES["run"])
        snapshot = self.state.snapshot or StatusSnapshot()
        self.runner.run_all([as_task(t) for t in tasks], snapshot)
        self.phase = Phase.RAN

    # ── merge ──

    def merge(self) -> None:
        self.log.log(STAGE_LIFECYCLE_MESSAGES["merge"])

        if self.state.stashed:
            # 壊す操作の前に stash があることを確かめる
            self._require_backup_stash(MergeReconciliationError)

        try:
            self.log.debug("➡️ ➡️ Adding changes made by tasks...")
            self.git.add_all()
        except GitCommandError as e:
            self.log.warn("Error adding new changes!")
            raise MergeReconciliationError(f"failed to add changes made by tasks: {e}") from e

        if not self.state.stashed:
            self.phase = Phase.MERGED
            return

        head = self.state.head_commit or "HEAD"
        snapshot = self.state.snapshot or StatusSnapshot()
        patch = self._patch()

        try:
            self.log.debug("➡️ ➡️ Committing staged changes temporarily...")
            self.git.commit(STAGED_CHANGES_COMMIT_MESSAGE, allow_empty=True)

            self.log.debug("➡️ ➡️ Restoring unstaged changes from patch...")
            patch.apply(self.git)

            for path in snapshot.unstaged_deletions():
                (self.cwd / path).unlink(missing_ok=True)

            self.log.debug("➡️ ➡️ Resetting temporary commit...")
            self.git.run(["reset", "--quiet"])
            self.git.run(["reset", "--quiet", "--soft", head])
        except (GitCommandError, OSError) as e:
            self.log.warn("Error restoring unstaged changes!")
            raise MergeReconciliationError(f"failed to restore unstaged changes: {e}") from e

        # ここから先で落ちても stash は残るので `recover` で戻せる
        self.phase = Phase.MERGED

        patch.remove()
        self._drop_backup_stash()
        self.state.stashed = False
        self._merge_status().restore(self.state.merge_backup)

    # ── revert ──

    def revert(self) -> None:
        self.log.log(STAGE_LIFECYCLE_MESSAGES["revert"])
        self.phase = Phase.REVERTING

        try:
            stash = self.git.find_stash(BACKUP_STASH_MESSAGE)
        except GitCommandError as e:
            self.log.warn("Failed to restore state from backup stash!")
            raise RevertFailureError(f"failed to list stashes: {e}") from e

        if self.state.stashed and stash is None:
            self.log.warn("Failed to restore state from backup stash!")
            raise RevertFailureError("missing backup stash, check `git stash list` for your changes")

        try:
            # untracked なタスク出力も hard reset で消えるよう先に index へ入れる
            self.git.add_all()
            head = self.state.head_commit or self.git.head()
            if head is None:
                # 最初のコミット前なので、タスクが作ったものを消して空に戻す
                self.git.run(["rm", "-r", "-f", "--quiet", "--ignore-unmatch", "--", "."])
            else:
                self.git.reset_hard(head)

            if stash is not None:
                self.log.debug("➡️ ➡️ Restoring state from backup stash...")
                self.git.run(["stash", "apply", "--quiet", "--index", stash])
                self._drop_backup_stash()
                self.state.stashed = False

            self._patch().remove()
            self._merge_status().restore()
        except (ExecStagedError, OSError) as e:
            self.log.warn("Failed to restore state from backup stash!")
            raise RevertFailureError(f"failed to restore saved state: {e}") from e

        self.phase = Phase.REVERTED

    # ── helpers ──

    @property
    def git_dir(self) -> Path:
        if self._git_dir is None:
            self._git_dir = self.git.git_dir()
        return self._git_dir

    def _merge_status(self) -> MergeStatusBackup:
        return MergeStatusBackup(self.git_dir)

    def _patch(self) -> PatchCapture:
        return self.state.patch or PatchCapture(path=patch_path(self.git_dir))

    def _require_backup_stash(self, error: type[ExecStagedError]) -> str:
        stash = self.git.find_stash(BACKUP_STASH_MESSAGE)
        if stash is None:
            self.log.warn("Backup stash not found!")
            raise error("missing backup stash, check `git stash list` for your changes")
        return stash

    def _drop_backup_stash(self) -> None:
        stash = self._require_backup_stash(StashError)
        try:
            self.git.run(["stash", "drop", "--quiet", stash])
        except GitCommandError as e:
            self.log.warn("Failed to drop backup stash!")
            raise StashError(f"failed to drop backup stash: {e}") from e

    def _teardown(self) -> None:
        """シグナル等でプロセスが終わる時の後始末。"""

        self.runner.kill()
        if self.phase == Phase.PREPARING:
            if self.git.find_stash(BACKUP_STASH_MESSAGE) is not None:
                self.revert()
            else:
                self._discard_preparation()
        elif self.phase in (Phase.PREPARED, Phase.RAN):
            self.revert()
        self.phase = Phase.IDLE
