"""設定ファイルのロードと検証。

cwd で次の順に探し、最初に見つかったものを使う:
- `.exec-staged.yml` / `.exec-staged.yaml`（リスト、または `tasks:` を持つマッピング）
- `pyproject.toml` の `[tool.exec-staged]` テーブルの `tasks`

各エントリはコマンド文字列、または `task` / `diff` / `glob` を持つマッピング。
"""

from __future__ import annotations

from pathlib import Path
from typing import Any

import yaml

from exec_staged.constants import CONFIG_FILENAMES, DEFAULT_DIFF_FILTER, DEFAULT_GLOB_FILTER, PYPROJECT_TABLE
from exec_staged.errors import ConfigError
from exec_staged.logging_setup import StageLog
from exec_staged.tasks import TaskSpec, invalid_diff_letters

try:
    import tomllib
except ModuleNotFoundError:  # Python < 3.11
    import tomli as tomllib  # type: ignore[no-redef]


def find_config(cwd: Path) -> Path | None:
    for name in CONFIG_FILENAMES:
        p = cwd / name
        if p.is_file():
            return p
    pyproject = cwd / "pyproject.toml"
    if pyproject.is_file() and PYPROJECT_TABLE in _read_pyproject(pyproject).get("tool", {}):
        return pyproject
    return None


def load_config(cwd: Path, *, log: StageLog | None = None) -> list[Any]:
    """ユーザー設定（未解決のエントリ列）を返す。見つからなければ空。"""

    path = find_config(cwd)
    if path is None:
        if log is not None:
            log.log("No config found")
        return []

    if path.name == "pyproject.toml":
        table = _read_pyproject(path)["tool"][PYPROJECT_TABLE]
        raw = table.get("tasks") if isinstance(table, dict) else None
    else:
        try:
            raw = yaml.safe_load(path.read_text(encoding="utf-8"))
        except yaml.YAMLError as e:
            raise ConfigError(f"invalid config: {path}: {e}") from e
        if isinstance(raw, dict):
            raw = raw.get("tasks")
        elif raw is None:
            raw = []

    if log is not None:
        log.log(f"Config loaded from {path}")

    validate_user_config(raw)
    return raw


def validate_user_config(user_config: Any) -> None:
    if not isinstance(user_config, list):
        raise ConfigError("invalid config: expected a list of tasks")
    for i, entry in enumerate(user_config):
        problem = _entry_problem(entry)
        if problem:
            raise ConfigError(f"invalid config: entry {i}: {problem}")


def _entry_problem(entry: Any) -> str | None:
    if isinstance(entry, str):
        return None
    if not isinstance(entry, dict):
        return "expected a string or a mapping"
    if not isinstance(entry.get("task"), str):
        return "`task` must be a string"
    for key in ("diff", "glob"):
        if key in entry and not isinstance(entry[key], str):
            return f"`{key}` must be a string"
    bad = invalid_diff_letters(entry.get("diff", ""))
    if bad:
        return f"unknown diff filter letters: {''.join(bad)}"
    unknown = set(entry) - {"task", "diff", "glob"}
    if unknown:
        return f"unknown keys: {', '.join(sorted(unknown))}"
    return None


def resolve_config(user_config: list[Any]) -> list[TaskSpec]:
    tasks: list[TaskSpec] = []
    for entry in user_config:
        if isinstance(entry, str):
            tasks.append(TaskSpec(command=entry))
        else:
            tasks.append(
                TaskSpec(
                    command=entry["task"],
                    diff=entry.get("diff", DEFAULT_DIFF_FILTER),
                    glob=entry.get("glob", DEFAULT_GLOB_FILTER),
                )
            )
    return tasks


def _read_pyproject(path: Path) -> dict[str, Any]:
    try:
        return tomllib.loads(path.read_text(encoding="utf-8"))
    except tomllib.TOMLDecodeError as e:
        raise ConfigError(f"invalid config: {path}: {e}") from e
