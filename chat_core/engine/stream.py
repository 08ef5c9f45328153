"""流聚合器：负责单次提问的完整流式生命周期。

StreamAggregator 是一次性的：一个实例只对应一次提问，
重新生成需要构造新实例。start() 产出 (序号, 快照)，
序号从 1 开始严格递增，快照是截至目前的完整助手消息。

cancel() 可以在任意线程调用：它会立即关闭已打开的通道，
使阻塞在网络读取上的消费线程尽快退出。
"""

import inspect
import threading
from typing import Any, Iterator, Optional, Tuple

from chat_core.domain.models import Message, PromptRequest
from chat_core.transport.base import ChatTransport


class StreamAggregator:
    def __init__(self, transport: ChatTransport, conversation_id: str):
        self._transport = transport
        self._conversation_id = conversation_id
        self._cancel_token = threading.Event()
        self._lock = threading.Lock()
        self._channel: Optional[Any] = None
        self._started = False
        self._finished = False
        self._last_sequence = 0

    @property
    def conversation_id(self) -> str:
        return self._conversation_id

    @property
    def cancelled(self) -> bool:
        return self._cancel_token.is_set()

    @property
    def finished(self) -> bool:
        return self._finished

    @property
    def last_sequence(self) -> int:
        return self._last_sequence

    def start(self, request: PromptRequest) -> Iterator[Tuple[int, Message]]:
        """打开流式通道并逐条产出快照。

        正常结束即表示生成完成；Transport 抛出的异常原样向上传播，
        由调用方分类处理。取消后不再产出任何快照。
        """

        if self._started:
            raise RuntimeError("StreamAggregator is single-use")
        self._started = True
        return self._run(request)

    def cancel(self) -> None:
        """置位取消标记并立即关闭底层通道。"""

        self._cancel_token.set()
        with self._lock:
            channel = self._channel
        if channel is None:
            return
        if inspect.isgenerator(channel) and channel.gi_running:
            # 正在执行的生成器不能跨线程关闭，由消费线程在 finally 中关闭
            return
        self._close(channel)

    def _run(self, request: PromptRequest) -> Iterator[Tuple[int, Message]]:
        channel: Optional[Any] = None
        try:
            if self.cancelled:
                return
            channel = iter(self._transport.open_prompt_stream(self._conversation_id, request))
            with self._lock:
                self._channel = channel
            try:
                for snapshot in channel:
                    if self.cancelled:
                        return
                    self._last_sequence += 1
                    yield self._last_sequence, snapshot
            except Exception:
                # 取消时通道被强制关闭，随之而来的读取错误不再上报
                if self.cancelled:
                    return
                raise
        finally:
            self._finished = True
            if channel is not None:
                self._close(channel)

    @staticmethod
    def _close(channel: Any) -> None:
        close = getattr(channel, "close", None)
        if callable(close):
            close()
