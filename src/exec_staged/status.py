"""`git status --porcelain` のスナップショット。

rename 検出は無効（`--no-renames`）。rename は削除 + 追加の2エントリとして現れ、
それぞれが自分のステータスを持つのでパッチへの出し入れも個別に正しく扱える。
"""

from __future__ import annotations

from dataclasses import dataclass, field

from exec_staged.git_ops import GitRepo

UNMERGED_CODES = frozenset({"DD", "AU", "UD", "UA", "DU", "AA", "UU"})


@dataclass(frozen=True)
class StatusEntry:
    path: str
    index: str  # index 側の1文字
    worktree: str  # worktree 側の1文字

    @property
    def code(self) -> str:
        return self.index + self.worktree

    @property
    def untracked(self) -> bool:
        return self.code == "??"

    @property
    def unmerged(self) -> bool:
        return self.code in UNMERGED_CODES

    @property
    def unstaged_deletion(self) -> bool:
        return self.worktree == "D" and not self.unmerged


@dataclass(frozen=True)
class StatusSnapshot:
    entries: dict[str, StatusEntry] = field(default_factory=dict)

    @property
    def empty(self) -> bool:
        return not self.entries

    def untracked(self) -> list[str]:
        return [e.path for e in self.entries.values() if e.untracked]

    def unmerged(self) -> list[str]:
        return [e.path for e in self.entries.values() if e.unmerged]

    def unstaged_deletions(self) -> list[str]:
        return [e.path for e in self.entries.values() if e.unstaged_deletion]


def parse_status(output: str) -> dict[str, StatusEntry]:
    """`status --porcelain -z --no-renames` の出力をパースする。"""

    entries: dict[str, StatusEntry] = {}
    for record in output.split("\0"):
        if len(record) < 4:
            continue
        entry = StatusEntry(path=record[3:], index=record[0], worktree=record[1])
        entries[entry.path] = entry
    return entries


def capture_status(repo: GitRepo) -> StatusSnapshot:
    out = repo.run(["status", "--porcelain", "-z", "--no-renames", "--untracked-files=all"])
    return StatusSnapshot(entries=parse_status(out))
