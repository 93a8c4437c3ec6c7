"""プロセス終了時の後始末フック。

実行中のエンジンがコールバックを登録し、終了時に外す。
SIGINT / SIGTERM / SIGHUP を受けたら登録済みコールバックを同期的にすべて実行してから
終了コード 1 で抜ける。ハンドラはコールバックがある間だけ差し替え、空になったら元に戻す。
各コールバックは何度呼ばれても安全であること。
"""

from __future__ import annotations

import atexit
import logging
import signal
import threading
from collections.abc import Callable

logger = logging.getLogger("exec_staged.teardown")

Callback = Callable[[], None]

_callbacks: list[Callback] = []
_previous_handlers: dict[int, object] = {}
_lock = threading.RLock()


def _signals() -> list[int]:
    names = ("SIGINT", "SIGTERM", "SIGHUP")
    return [getattr(signal, n) for n in names if hasattr(signal, n)]


def register(callback: Callback) -> None:
    with _lock:
        if callback in _callbacks:
            return
        _callbacks.append(callback)
        if len(_callbacks) == 1:
            _install()


def unregister(callback: Callback) -> None:
    with _lock:
        if callback in _callbacks:
            _callbacks.remove(callback)
        if not _callbacks:
            _uninstall()


def registered() -> list[Callback]:
    return list(_callbacks)


def drain() -> None:
    """登録済みコールバックを新しい順に実行して空にする。"""

    with _lock:
        pending = list(reversed(_callbacks))
        _callbacks.clear()
        _uninstall()

    for cb in pending:
        try:
            cb()
        except Exception:  # noqa: BLE001
            logger.exception("teardown callback failed: %r", cb)


def _handle_signal(signum: int, frame: object) -> None:
    logger.debug("received signal %s", signum)
    drain()
    raise SystemExit(1)


def _install() -> None:
    if threading.current_thread() is not threading.main_thread():
        return
    for sig in _signals():
        _previous_handlers[sig] = signal.signal(sig, _handle_signal)


def _uninstall() -> None:
    if threading.current_thread() is not threading.main_thread():
        return
    for sig, previous in list(_previous_handlers.items()):
        # Python 以外で設定されたハンドラは None になる
        signal.signal(sig, previous if previous is not None else signal.SIG_DFL)  # type: ignore[arg-type]
        del _previous_handlers[sig]


atexit.register(drain)
