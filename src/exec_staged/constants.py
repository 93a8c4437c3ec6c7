"""定数。

マーカー文字列はバージョンをまたいで固定。別プロセスの `recover` が
前回の実行の stash / commit をこの文字列で探すため、変更しないこと。
"""

from __future__ import annotations

PACKAGE_NAME = "exec-staged"

BACKUP_STASH_MESSAGE = f"💾 {PACKAGE_NAME} backup stash"
STAGED_CHANGES_COMMIT_MESSAGE = f"💾 {PACKAGE_NAME} staged changes"

# .git/ 配下に置くパッチファイル
PATCH_FILENAME = "exec_staged_unstaged.patch"

# マージ進行中に git が保持するファイル
MERGE_STATUS_FILES = ("MERGE_HEAD", "MERGE_MODE", "MERGE_MSG")
BACKUP_SUFFIX = ".bak"

INTERPOLATION_IDENTIFIER = "{FILES}"

DEFAULT_DIFF_FILTER = "ACMR"
DEFAULT_GLOB_FILTER = "*"

# `git status --no-renames` は 2.18 から
MIN_GIT_VERSION = (2, 18)

CONFIG_FILENAMES = (".exec-staged.yml", ".exec-staged.yaml")
PYPROJECT_TABLE = "exec-staged"

PREFIX = "➡️ "

STAGE_LIFECYCLE_MESSAGES = {
    "check": f"{PREFIX}Checking environment...",
    "prepare": f"{PREFIX}Preparing repository...",
    "run": f"{PREFIX}Running tasks...",
    "merge": f"{PREFIX}Merging new changes with saved state...",
    "revert": f"{PREFIX}Reverting to saved state...",
    "recover": f"{PREFIX}Recovering from interrupted run...",
}
