"""マージ進行中の状態ファイル（MERGE_HEAD / MERGE_MODE / MERGE_MSG）の退避と復元。

stash は内部で hard reset するため、解決途中のマージ状態が消える。
実行前に `.bak` へコピーし、終了時に rename で戻す（ファイル単位でアトミック）。
"""

from __future__ import annotations

import shutil
from dataclasses import dataclass
from pathlib import Path

from exec_staged.constants import BACKUP_SUFFIX, MERGE_STATUS_FILES
from exec_staged.errors import CaptureError


@dataclass
class MergeStatusBackup:
    git_dir: Path

    def backup_path(self, name: str) -> Path:
        return self.git_dir / f"{name}{BACKUP_SUFFIX}"

    def leftover_backups(self) -> list[str]:
        return [name for name in MERGE_STATUS_FILES if self.backup_path(name).exists()]

    def backup(self) -> set[str]:
        copied: set[str] = set()
        try:
            for name in MERGE_STATUS_FILES:
                original = self.git_dir / name
                if original.exists():
                    shutil.copy2(original, self.backup_path(name))
                    copied.add(name)
        except OSError as e:
            self.discard(copied)
            raise CaptureError(f"failed to back up merge status: {e}") from e
        return copied

    def restore(self, names: set[str] | None = None) -> None:
        """`.bak` を元の名前に戻す。バックアップが無いものは何もしない。"""

        for name in names if names is not None else MERGE_STATUS_FILES:
            bak = self.backup_path(name)
            if bak.exists():
                bak.replace(self.git_dir / name)

    def discard(self, names: set[str]) -> None:
        for name in names:
            self.backup_path(name).unlink(missing_ok=True)
