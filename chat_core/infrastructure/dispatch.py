"""后台执行与回调投递。

阻塞的 Transport 调用通过 Runner 执行；结果经由 Dispatcher 投递回控制线程，
保证编排器的状态只在同一个控制上下文中被修改。
"""

from __future__ import annotations

import queue
import threading
from typing import Callable, Protocol


Callback = Callable[[], None]


class Runner(Protocol):
    def submit(self, fn: Callback) -> None:
        ...


class Dispatcher(Protocol):
    def post(self, fn: Callback) -> None:
        ...


class ThreadRunner:
    """每个任务在独立的守护线程中执行。"""

    def submit(self, fn: Callback) -> None:
        threading.Thread(target=fn, daemon=True).start()


class InlineRunner:
    """在调用线程中立即执行任务（测试、脚本）。"""

    def submit(self, fn: Callback) -> None:
        fn()


class ImmediateDispatcher:
    """在投递回调的线程中直接执行。

    只有在 Runner 也是同步执行时才安全。
    """

    def post(self, fn: Callback) -> None:
        fn()


class QueueDispatcher:
    """回调先入队，由控制线程调用 run_pending() 统一执行。"""

    def __init__(self) -> None:
        self._queue: "queue.Queue[Callback]" = queue.Queue()

    def post(self, fn: Callback) -> None:
        self._queue.put(fn)

    def run_pending(self, timeout: float | None = None) -> int:
        """按先进先出顺序执行队列中的回调，返回执行的数量。

        指定 timeout 时，最多等待这么久以取得第一个回调。
        """

        ran = 0
        if timeout is not None:
            try:
                fn = self._queue.get(timeout=timeout)
            except queue.Empty:
                return 0
            fn()
            ran += 1
        while True:
            try:
                fn = self._queue.get_nowait()
            except queue.Empty:
                return ran
            fn()
            ran += 1

    @property
    def pending(self) -> int:
        return self._queue.qsize()
