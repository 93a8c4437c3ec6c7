"""exec-staged: git のステージ済みの内容だけに対してタスク（フォーマッタ / リンタ等）を実行する。

未ステージの変更はタスクから見えないように隠し、成功したらタスクの出力を index に取り込み、
失敗したら実行前と区別できない状態に戻す。

主な入口
- `exec_staged.runner.exec_staged(cwd, tasks)` -> 終了コード
- `exec_staged.runner.recover(cwd)` -> 終了コード
- `exec_staged.stage.Stage`: check / prepare / run / merge / revert を個別に呼べるエンジン
"""

from __future__ import annotations

__all__ = ["__version__"]

__version__ = "0.1.0"
