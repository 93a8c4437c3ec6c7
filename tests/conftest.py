from __future__ import annotations

import shlex
import shutil
import subprocess
import sys
from dataclasses import dataclass
from pathlib import Path
from types import SimpleNamespace

import pytest

from exec_staged.constants import INTERPOLATION_IDENTIFIER
from exec_staged.stage import Stage

PY = shlex.quote(sys.executable)

TASK_EXIT_0 = f'{PY} -c "raise SystemExit(0)"'
TASK_EXIT_1 = f'{PY} -c "raise SystemExit(1)"'
TASK_RM_FILES = f"rm {INTERPOLATION_IDENTIFIER}"
TASK_ASSERT_CHANGES = """bash -c 'test -n "$(git status --porcelain)"'"""
TASK_ASSERT_NO_CHANGES = """bash -c 'test -z "$(git status --porcelain)"'"""
TASK_ASSERT_NO_UNSTAGED_CHANGES = """bash -c 'test -z "$(git status --porcelain | grep "^.[^ ]")"'"""


@dataclass
class Repo:
    """テスト用の git リポジトリ操作。"""

    path: Path

    def git(self, *args: str) -> str:
        proc = subprocess.run(
            ["git", *args],
            cwd=self.path,
            capture_output=True,
            text=True,
            encoding="utf-8",
            check=False,
        )
        if proc.returncode != 0:
            raise RuntimeError(proc.stderr.strip() or f"git {args} failed")
        return proc.stdout

    def porcelain(self, *extra: str) -> str:
        return self.git("status", "--porcelain", *extra).rstrip("\n")

    def status_z(self) -> str:
        return self.git("status", "-z")

    def stash_list(self) -> str:
        return self.git("stash", "list")

    def commit(self, message: str, *paths: str) -> None:
        if paths:
            self.git("add", "--", *paths)
        self.git("commit", "-q", "-m", message)

    def write(self, rel: str, contents: str = "") -> None:
        p = self.path / rel
        p.parent.mkdir(parents=True, exist_ok=True)
        p.write_text(contents, encoding="utf-8")

    def read(self, rel: str) -> str:
        return (self.path / rel).read_text(encoding="utf-8")

    def exists(self, rel: str) -> bool:
        return (self.path / rel).exists()

    def rm(self, rel: str) -> None:
        p = self.path / rel
        if p.is_dir() and not p.is_symlink():
            shutil.rmtree(p)
        else:
            p.unlink(missing_ok=True)

    def rename(self, old: str, new: str) -> None:
        (self.path / old).rename(self.path / new)

    def stage(self) -> Stage:
        return Stage(self.path, quiet=True)

    def start_conflicting_merge(self) -> None:
        """test.txt が衝突した状態のマージを作る。"""

        base = self.git("rev-parse", "--abbrev-ref", "HEAD").strip()
        self.git("checkout", "-q", "-b", "their-branch")
        self.write("test.txt", "incoming contents")
        self.commit("add file", "test.txt")
        self.git("checkout", "-q", base)
        self.write("test.txt", "current contents")
        self.commit("add file", "test.txt")
        with pytest.raises(RuntimeError):
            self.git("merge", "their-branch")


def init_repo(path: Path, *, initial_file: bool = True) -> Repo:
    path.mkdir(parents=True, exist_ok=True)
    repo = Repo(path)
    repo.git("init", "-q")
    repo.git("config", "user.name", "exec-staged tests")
    repo.git("config", "user.email", "tests@example.invalid")
    repo.git("config", "commit.gpgsign", "false")
    if initial_file:
        repo.write("README.md", "# test\n")
        repo.commit("initial commit", "README.md")
    else:
        repo.git("commit", "-q", "--allow-empty", "-m", "initial commit")
    return repo


@pytest.fixture(autouse=True)
def isolated_git(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    """ユーザーの git 設定やフックの影響を受けないようにする。"""

    home = tmp_path / "home"
    home.mkdir()
    monkeypatch.setenv("HOME", str(home))
    monkeypatch.setenv("GIT_CONFIG_NOSYSTEM", "1")
    monkeypatch.setenv("GIT_CEILING_DIRECTORIES", str(tmp_path))
    for key in ("GIT_DIR", "GIT_WORK_TREE", "GIT_INDEX_FILE"):
        monkeypatch.delenv(key, raising=False)


@pytest.fixture()
def repo(tmp_path: Path) -> Repo:
    return init_repo(tmp_path / "repo")


@pytest.fixture()
def stage(repo: Repo) -> Stage:
    return repo.stage()


@pytest.fixture()
def cmd() -> SimpleNamespace:
    """テストで使うタスクのコマンド文字列。"""

    return SimpleNamespace(
        exit_0=TASK_EXIT_0,
        exit_1=TASK_EXIT_1,
        rm_files=TASK_RM_FILES,
        assert_changes=TASK_ASSERT_CHANGES,
        assert_no_changes=TASK_ASSERT_NO_CHANGES,
        assert_no_unstaged_changes=TASK_ASSERT_NO_UNSTAGED_CHANGES,
        python=PY,
    )


@pytest.fixture()
def make_repo(tmp_path: Path):
    """`repo` 以外のリポジトリが要るテスト用。"""

    def factory(name: str, *, initial_file: bool = True) -> Repo:
        return init_repo(tmp_path / name, initial_file=initial_file)

    return factory


def worktree_state(repo: Repo, *paths: str) -> tuple[str, str, dict[str, str | None]]:
    """status と指定ファイルの中身。実行前後の比較用。"""

    contents = {p: repo.read(p) if repo.exists(p) else None for p in paths}
    return repo.status_z(), repo.git("diff", "--cached"), contents


@pytest.fixture()
def state_of():
    return worktree_state


@pytest.fixture()
def fresh_repo(tmp_path: Path) -> Repo:
    """`git init` しただけのコミットが無いリポジトリ。"""

    path = tmp_path / "fresh"
    path.mkdir()
    repo = Repo(path)
    repo.git("init", "-q")
    repo.git("config", "user.name", "exec-staged tests")
    repo.git("config", "user.email", "tests@example.invalid")
    return repo
