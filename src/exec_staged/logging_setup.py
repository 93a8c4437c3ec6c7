"""logging の初期化と進捗表示。

- 詳細ログ: `<tempdir>/exec-staged/debug-<epoch-ms>.txt`（git コマンドと出力をすべて記録）
- 人間向けの進捗: rich Console（`--quiet` で抑制、詳細ログには常に残る）
"""

from __future__ import annotations

import logging
import tempfile
import time
from pathlib import Path

from rich.console import Console

from exec_staged.constants import PACKAGE_NAME

LOGGER_NAME = "exec_staged"


def setup_debug_log(*, directory: Path | None = None) -> Path:
    """詳細ログのファイルハンドラを付ける。プロセスにつき1回だけ。"""

    existing = getattr(setup_debug_log, "_path", None)
    if existing is not None:
        return existing

    if directory is None:
        directory = Path(tempfile.gettempdir()) / PACKAGE_NAME
    directory.mkdir(parents=True, exist_ok=True)
    log_path = directory / f"debug-{int(time.time() * 1000)}.txt"

    handler = logging.FileHandler(log_path, encoding="utf-8")
    handler.setFormatter(
        logging.Formatter(
            fmt="%(asctime)s %(levelname)s %(name)s: %(message)s",
            datefmt="%Y-%m-%d %H:%M:%S",
        )
    )

    logger = logging.getLogger(LOGGER_NAME)
    logger.setLevel(logging.DEBUG)
    logger.addHandler(handler)
    logger.debug("%s log: %s", PACKAGE_NAME, time.strftime("%Y-%m-%d %H:%M:%S"))

    setup_debug_log._path = log_path  # type: ignore[attr-defined]
    return log_path


class StageLog:
    """進捗行はコンソールと詳細ログへ、debug は詳細ログのみへ。"""

    def __init__(self, *, quiet: bool = False, console: Console | None = None) -> None:
        self.quiet = quiet
        self.console = console or Console(highlight=False)
        self.logger = logging.getLogger(LOGGER_NAME)
        self.debug_path = setup_debug_log()

    def log(self, message: str, *, style: str | None = None) -> None:
        self.logger.info(message)
        if not self.quiet:
            self.console.print(message, style=style, markup=False)

    def warn(self, message: str) -> None:
        self.log(f"⚠️ {message}", style="yellow")

    def debug(self, message: str) -> None:
        self.logger.debug(message)

    def output(self, text: str) -> None:
        if not text:
            return
        self.logger.debug("\n".join(f"> {line}" for line in text.rstrip("\n").split("\n")))
