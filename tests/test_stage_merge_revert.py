"""Stage.merge / Stage.revert のテスト。"""

from __future__ import annotations

import pytest

from exec_staged.constants import BACKUP_STASH_MESSAGE, PATCH_FILENAME
from exec_staged.errors import MergeReconciliationError, RevertFailureError
from exec_staged.stage import Phase


def _prepared(repo):
    stage = repo.stage()
    stage.check()
    stage.prepare()
    return stage


def _drop_stash(repo) -> None:
    ref = next(line.split(": ")[0] for line in repo.stash_list().splitlines() if BACKUP_STASH_MESSAGE in line)
    repo.git("stash", "drop", "--quiet", ref)


def test_merge_restores_unstaged_changes(repo) -> None:
    repo.write("README.md", "staged\n")
    repo.git("add", "README.md")
    repo.write("README.md", "staged\nunstaged\n")
    repo.write("untracked.txt", "u\n")
    head = repo.git("rev-parse", "HEAD").strip()

    stage = _prepared(repo)
    stage.run([])
    stage.merge()

    assert stage.phase == Phase.MERGED
    assert repo.read("README.md") == "staged\nunstaged\n"
    assert repo.read("untracked.txt") == "u\n"
    assert repo.git("show", ":README.md") == "staged\n"
    assert repo.git("rev-parse", "HEAD").strip() == head
    assert repo.stash_list() == ""
    assert not (repo.path / ".git" / PATCH_FILENAME).exists()


def test_merge_adds_task_output(repo, cmd) -> None:
    repo.write("a.txt", "before\n")
    repo.git("add", "a.txt")
    repo.write("other.txt", "unstaged\n")
    formatter = f"{cmd.python} -c \"open('a.txt', 'w').write('after\\n')\""

    stage = _prepared(repo)
    stage.run([formatter])
    stage.merge()

    assert repo.git("show", ":a.txt") == "after\n"
    assert repo.read("other.txt") == "unstaged\n"
    assert repo.porcelain() == "A  a.txt\n?? other.txt"


def test_merge_keeps_unstaged_deletion(repo, cmd) -> None:
    repo.write("test-MD.txt", "committed\n")
    repo.commit("add file", "test-MD.txt")
    repo.write("test-MD.txt", "staged\n")
    repo.git("add", "test-MD.txt")
    repo.rm("test-MD.txt")
    formatter = f"{cmd.python} -c \"open('test-MD.txt', 'w').write('formatted\\n')\""

    stage = _prepared(repo)
    stage.run([formatter])
    stage.merge()

    assert repo.porcelain() == "MD test-MD.txt"
    assert repo.git("show", ":test-MD.txt") == "formatted\n"
    assert not repo.exists("test-MD.txt")


def test_merge_without_stash_stages_task_output(repo, cmd) -> None:
    creator = f"{cmd.python} -c \"open('created.txt', 'w').write('x')\""
    stage = _prepared(repo)
    stage.run([creator])
    stage.merge()
    assert repo.porcelain() == "A  created.txt"


def test_merge_requires_backup_stash(repo) -> None:
    repo.write("README.md", "staged\n")
    repo.git("add", "README.md")
    repo.write("README.md", "unstaged\n")
    stage = _prepared(repo)
    stage.run([])
    _drop_stash(repo)
    before = repo.status_z()

    with pytest.raises(MergeReconciliationError, match="missing backup stash"):
        stage.merge()
    assert repo.status_z() == before


def test_merge_restores_merge_status(repo) -> None:
    repo.start_conflicting_merge()
    repo.write("test.txt", "resolved\n")
    repo.git("add", "test.txt")
    merge_head = (repo.path / ".git" / "MERGE_HEAD").read_text(encoding="utf-8")

    stage = _prepared(repo)
    stage.run([])
    stage.merge()

    assert (repo.path / ".git" / "MERGE_HEAD").read_text(encoding="utf-8") == merge_head
    assert not (repo.path / ".git" / "MERGE_HEAD.bak").exists()


def test_revert_restores_original_state(repo, state_of, cmd) -> None:
    repo.write("README.md", "staged\n")
    repo.git("add", "README.md")
    repo.write("README.md", "unstaged\n")
    repo.write("untracked.txt", "u\n")
    before = state_of(repo, "README.md", "untracked.txt", "junk.txt")

    stage = _prepared(repo)
    stage.run([f"{cmd.python} -c \"open('junk.txt', 'w').write('x')\""])
    stage.revert()

    assert stage.phase == Phase.REVERTED
    assert state_of(repo, "README.md", "untracked.txt", "junk.txt") == before
    assert repo.stash_list() == ""
    assert not (repo.path / ".git" / PATCH_FILENAME).exists()


def test_revert_restores_merge_status(repo) -> None:
    repo.start_conflicting_merge()
    repo.write("test.txt", "resolved\n")
    repo.git("add", "test.txt")
    merge_head = (repo.path / ".git" / "MERGE_HEAD").read_text(encoding="utf-8")

    stage = _prepared(repo)
    stage.revert()

    assert (repo.path / ".git" / "MERGE_HEAD").read_text(encoding="utf-8") == merge_head
    assert repo.git("show", ":test.txt") == "resolved\n"


def test_revert_requires_backup_stash(repo) -> None:
    repo.write("README.md", "staged\n")
    repo.git("add", "README.md")
    repo.write("README.md", "unstaged\n")
    stage = _prepared(repo)
    _drop_stash(repo)

    with pytest.raises(RevertFailureError, match="missing backup stash"):
        stage.revert()
