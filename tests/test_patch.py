"""未ステージ変更のパッチ化のテスト。"""

from __future__ import annotations

from exec_staged.git_ops import GitRepo
from exec_staged.patch import capture_unstaged_patch, patch_path
from exec_staged.status import capture_status


def _capture(repo):
    git = GitRepo(repo.path)
    snapshot = capture_status(git)
    return git, capture_unstaged_patch(git, snapshot, git_dir=git.git_dir())


def test_patch_contains_unstaged_and_untracked(repo) -> None:
    repo.write("README.md", "# changed\n")
    repo.write("untracked.txt", "new file\n")
    _, capture = _capture(repo)

    text = capture.path.read_text(encoding="utf-8")
    assert "README.md" in text
    assert "untracked.txt" in text
    assert capture.registered_untracked == ["untracked.txt"]


def test_intent_to_add_is_undone(repo) -> None:
    repo.write("untracked.txt", "new file\n")
    _capture(repo)
    assert repo.porcelain() == "?? untracked.txt"


def test_deletions_are_excluded(repo) -> None:
    repo.rm("README.md")
    _, capture = _capture(repo)
    assert capture.empty


def test_staged_only_is_empty(repo) -> None:
    repo.write("README.md", "# staged\n")
    repo.git("add", "README.md")
    _, capture = _capture(repo)
    assert capture.empty
    assert capture.path.name == patch_path(repo.path / ".git").name


def test_apply_restores_changes(repo) -> None:
    repo.write("README.md", "# changed\n")
    git, capture = _capture(repo)
    repo.git("checkout", "--", "README.md")
    assert repo.read("README.md") == "# test\n"

    capture.apply(git)
    assert repo.read("README.md") == "# changed\n"


def test_remove_is_idempotent(repo) -> None:
    repo.write("README.md", "# changed\n")
    _, capture = _capture(repo)
    capture.remove()
    capture.remove()
    assert not capture.path.exists()
