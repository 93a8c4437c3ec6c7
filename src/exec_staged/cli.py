"""exec-staged CLI エントリポイント。

- `exec-staged [TASK...]` / `exec-staged run [TASK...]`: ステージ済みの内容に対してタスクを実行
- `exec-staged recover`: 中断された実行の後始末
"""

from __future__ import annotations

from pathlib import Path

import click
import typer
from rich.console import Console
from typer.core import TyperGroup

from exec_staged import runner
from exec_staged.config import load_config, resolve_config
from exec_staged.errors import ConfigError
from exec_staged.logging_setup import StageLog
from exec_staged.tasks import TaskSpec

APP_HELP = "💾 Run tasks against the staged contents of a git repository, then merge or revert."

# 値を取るグローバルオプション
_OPTIONS_WITH_VALUE = {"--cwd"}


class DefaultRunGroup(TyperGroup):
    """最初の位置引数がコマンド名でなければ `run` を補う。"""

    def parse_args(self, ctx: click.Context, args: list[str]) -> list[str]:
        args = list(args)
        i = 0
        while i < len(args):
            arg = args[i]
            if arg == "--":
                break
            if arg in _OPTIONS_WITH_VALUE:
                i += 2
                continue
            if arg.startswith("-"):
                i += 1
                continue
            break

        if i >= len(args):
            if not any(a in ("--help", "-h") for a in args):
                args.append("run")
        elif args[i] not in self.commands:
            args.insert(i, "run")
        return super().parse_args(ctx, args)


app = typer.Typer(add_completion=False, help=APP_HELP, cls=DefaultRunGroup)
console = Console()


@app.callback()
def options(
    ctx: typer.Context,
    quiet: bool = typer.Option(
        False, "--quiet", "-q", help="Suppress progress output (the debug log is still written)"
    ),
    cwd: Path = typer.Option(Path("."), "--cwd", help="Repository root to run in"),
) -> None:
    ctx.obj = {"quiet": quiet, "cwd": (Path.cwd() / cwd).resolve()}


@app.command()
def run(
    ctx: typer.Context,
    tasks: list[str] | None = typer.Argument(
        None, help="Task commands. Overrides configured tasks when given."
    ),
) -> None:
    """Run tasks against staged changes (default command)."""
    quiet: bool = ctx.obj["quiet"]
    cwd: Path = ctx.obj["cwd"]

    if tasks:
        specs = [TaskSpec(command=t) for t in tasks]
    else:
        try:
            specs = resolve_config(load_config(cwd, log=StageLog(quiet=quiet)))
        except ConfigError as e:
            if not quiet:
                console.print(f"❌ {e}", style="red", markup=False)
            raise typer.Exit(code=runner.EXIT_FAILURE) from e

    raise typer.Exit(code=runner.exec_staged(cwd, specs, quiet=quiet))


@app.command()
def recover(ctx: typer.Context) -> None:
    """Restore the repository after an interrupted run."""
    raise typer.Exit(code=runner.recover(ctx.obj["cwd"], quiet=ctx.obj["quiet"]))


def main() -> None:
    app(prog_name="exec-staged")
