"""中断された実行からの復旧（`exec-staged recover`）。

メモリ上の状態は使わず、リポジトリに残った印だけを手がかりにする:
- backup stash（固定メッセージ）
- HEAD にある一時コミット（固定メッセージ）
- `.git/` 配下のパッチファイルと `.bak`

何も無ければ何もしない。
"""

from __future__ import annotations

from exec_staged.constants import BACKUP_STASH_MESSAGE, STAGE_LIFECYCLE_MESSAGES, STAGED_CHANGES_COMMIT_MESSAGE
from exec_staged.errors import GitCommandError, RevertFailureError
from exec_staged.git_ops import GitRepo
from exec_staged.logging_setup import StageLog
from exec_staged.merge_status import MergeStatusBackup
from exec_staged.patch import PatchCapture, patch_path


def recover_repository(repo: GitRepo, *, log: StageLog) -> bool:
    """復旧した場合 True、何も残っていなかった場合 False。"""

    log.log(STAGE_LIFECYCLE_MESSAGES["recover"])

    git_dir = repo.git_dir()
    merge_status = MergeStatusBackup(git_dir)
    patch = PatchCapture(path=patch_path(git_dir))

    stash = repo.find_stash(BACKUP_STASH_MESSAGE)
    marker = repo.head() is not None and repo.head_subject() == STAGED_CHANGES_COMMIT_MESSAGE
    leftovers = merge_status.leftover_backups()

    if stash is None and not marker and not leftovers and not patch.path.exists():
        log.log("Nothing to recover.")
        return False

    try:
        target = "HEAD"
        if marker:
            log.debug("➡️ ➡️ Found temporary commit")
            target = repo.run(["rev-parse", "--verify", "HEAD^1"]).strip()

        if stash is not None:
            log.debug("➡️ ➡️ Restoring state from backup stash...")
            repo.add_all()
            repo.reset_hard(target)
            repo.run(["stash", "apply", "--quiet", "--index", stash])
            # apply の後で位置が変わっていないとは限らない
            dropped = repo.find_stash(BACKUP_STASH_MESSAGE)
            if dropped is not None:
                repo.run(["stash", "drop", "--quiet", dropped])
        elif marker:
            repo.run(["reset", "--quiet", "--soft", target])

        patch.remove()
        merge_status.restore()
    except (GitCommandError, OSError) as e:
        log.warn("Failed to recover from interrupted run!")
        raise RevertFailureError(f"recovery failed: {e}") from e

    log.log("Recovered state from interrupted run.")
    return True
