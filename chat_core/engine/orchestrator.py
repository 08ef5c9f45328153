"""会话编排器核心模块。

负责单个会话的完整生命周期：按需创建会话、构造提问请求、驱动唯一的
StreamAggregator、在首个快照到达后刷新会话、处理完成/取消/失败。

线程模型：
- 所有 Transport 调用都通过 Runner 在后台执行；
- 所有结果都通过 Dispatcher 投递回编排器所在的控制线程后才修改状态，
  因此 conversation / state / error 只会在同一个控制上下文中被修改；
- 命令（send_prompt / stop_generating / reset / refresh_active_model）
  也必须在该控制线程中调用。

每个关注点只持有一个具名句柄（_stream、_model_fetch、_conversation_create、
_conversation_refresh）；回调到达时先按身份比较句柄，过期结果直接丢弃。
"""

import logging
from dataclasses import dataclass, replace
from functools import partial
from typing import Any, Callable, Dict, List, Optional

from chat_core.config.settings import settings
from chat_core.domain.models import (
    ActiveModel,
    Conversation,
    ConversationState,
    ErrorState,
    Message,
    PromptRequest,
)
from chat_core.engine.errors import Operation, classify_error, missing_model_error
from chat_core.engine.stream import StreamAggregator
from chat_core.infrastructure.dispatch import Dispatcher, ImmediateDispatcher, InlineRunner, Runner
from chat_core.infrastructure.logging.logger import logger
from chat_core.infrastructure.session import SessionState
from chat_core.transport.base import ChatTransport


@dataclass(frozen=True)
class OrchestratorSnapshot:
    """每次状态迁移后发布给订阅者的只读快照。"""

    state: ConversationState
    conversation: Optional[Conversation]
    message: Optional[Message]
    error: Optional[ErrorState]
    is_interacting: bool


Subscriber = Callable[[OrchestratorSnapshot], None]


class ConversationOrchestrator:
    def __init__(
        self,
        transport: ChatTransport,
        session: SessionState,
        dispatcher: Optional[Dispatcher] = None,
        runner: Optional[Runner] = None,
        web_search: Optional[Callable[[], bool]] = None,
    ):
        self._transport = transport
        self._session = session
        self._dispatcher = dispatcher or ImmediateDispatcher()
        self._runner = runner or InlineRunner()
        # 联网搜索开关在构造请求时读取，不做缓存
        self._web_search = web_search or (lambda: settings.use_web_search)

        self._state = ConversationState.NONE
        self._conversation: Optional[Conversation] = None
        self._message: Optional[Message] = None
        self._error: Optional[ErrorState] = None
        self._is_interacting = False
        self._model: Optional[ActiveModel] = None

        self._stream: Optional[StreamAggregator] = None
        self._applied_sequence = 0
        self._model_fetch: Optional[object] = None
        self._conversation_create: Optional[object] = None
        self._conversation_refresh: Optional[object] = None

        self._subscribers: List[Subscriber] = []

    # ---- 只读状态 ----

    @property
    def state(self) -> ConversationState:
        return self._state

    @property
    def conversation(self) -> Optional[Conversation]:
        return self._conversation

    @property
    def message(self) -> Optional[Message]:
        """当前正在生成（或最近一次生成）的助手消息。"""
        return self._message

    @property
    def error(self) -> Optional[ErrorState]:
        return self._error

    @property
    def is_interacting(self) -> bool:
        return self._is_interacting

    @property
    def active_model(self) -> Optional[ActiveModel]:
        return self._model

    def snapshot(self) -> OrchestratorSnapshot:
        return OrchestratorSnapshot(
            state=self._state,
            conversation=self._conversation,
            message=self._message,
            error=self._error,
            is_interacting=self._is_interacting,
        )

    def subscribe(self, callback: Subscriber) -> Callable[[], None]:
        """订阅状态变化，返回取消订阅函数。"""

        self._subscribers.append(callback)

        def unsubscribe() -> None:
            if callback in self._subscribers:
                self._subscribers.remove(callback)

        return unsubscribe

    # ---- 命令 ----

    def send_prompt(self, text: str) -> None:
        """提交一次提问。

        - 去除首尾空白后为空：不做任何事；
        - 正在生成或会话创建中：拒绝（单飞）；
        - 没有会话：先用当前模型创建会话，再以同一文本作为首个提问提交。
        """

        text = (text or "").strip()
        if not text:
            return
        if self._stream is not None or self._conversation_create is not None:
            self._log(logging.INFO, "Rejected prompt while busy", state=self._state.value)
            return
        if self._conversation is None:
            self._create_conversation_and_send(text)
            return
        self._submit_prompt(text)

    def stop_generating(self) -> None:
        """取消当前流并回到 LOADED；没有进行中的流时什么也不做。"""

        aggregator = self._stream
        if aggregator is None:
            return
        # cancel() 会立即关闭底层连接，消费线程随之退出
        aggregator.cancel()
        self._stream = None
        self._is_interacting = False
        self._log(logging.INFO, "Stopped generating", conversation_id=aggregator.conversation_id)
        self._transition(ConversationState.LOADED)

    def reset(self) -> None:
        """丢弃当前会话并回到 EMPTY，同时重新拉取模型。"""

        if self._stream is not None:
            self._stream.cancel()
        self._stream = None
        self._applied_sequence = 0
        self._model_fetch = None
        self._conversation_create = None
        self._conversation_refresh = None
        self._conversation = None
        self._message = None
        self._is_interacting = False
        self._session.current_conversation_id = ""
        self._transition(ConversationState.EMPTY)
        self.refresh_active_model()

    def refresh_active_model(self) -> None:
        token = object()
        self._model_fetch = token

        def job() -> None:
            try:
                model = self._transport.get_active_model()
            except Exception as exc:
                self._dispatcher.post(partial(self._on_model_failed, token, exc))
                return
            self._dispatcher.post(partial(self._on_model_loaded, token, model))

        self._runner.submit(job)

    # ---- 会话创建 / 刷新 ----

    def _create_conversation_and_send(self, text: str) -> None:
        model = self._model
        if model is None:
            self._fail(missing_model_error())
            return
        token = object()
        self._conversation_create = token
        self._transition(ConversationState.LOADED)
        self._log(logging.INFO, "Creating conversation", model=model.id)

        def job() -> None:
            try:
                conversation = self._transport.create_conversation(model)
            except Exception as exc:
                self._dispatcher.post(partial(self._on_operation_failed, token, Operation.CREATE_CONVERSATION, exc))
                return
            self._dispatcher.post(partial(self._on_conversation_created, token, conversation, text))

        self._runner.submit(job)

    def _on_conversation_created(self, token: object, conversation: Conversation, text: str) -> None:
        if token is not self._conversation_create:
            return
        self._conversation_create = None
        self._set_conversation(conversation)
        self._log(logging.INFO, "Created conversation", conversation_id=conversation.id)
        self._submit_prompt(text)

    def _refresh_conversation(self, conversation_id: str) -> None:
        token = object()
        self._conversation_refresh = token

        def job() -> None:
            try:
                conversation = self._transport.get_conversation(conversation_id)
            except Exception as exc:
                self._dispatcher.post(partial(self._on_operation_failed, token, Operation.REFRESH_CONVERSATION, exc))
                return
            self._dispatcher.post(partial(self._on_conversation_refreshed, token, conversation))

        self._runner.submit(job)

    def _on_conversation_refreshed(self, token: object, conversation: Conversation) -> None:
        if token is not self._conversation_refresh:
            return
        self._conversation_refresh = None
        if self._conversation is None or self._conversation.id != conversation.id:
            return
        self._set_conversation(conversation)
        self._notify()

    def _set_conversation(self, conversation: Conversation) -> None:
        # 会话整体替换，不做局部合并；并同步到进程级会话槽位
        self._conversation = conversation
        self._session.current_conversation_id = conversation.id

    # ---- 流式提问 ----

    def _submit_prompt(self, text: str) -> None:
        conversation = self._conversation
        request = PromptRequest(
            previous_message_id=conversation.last_message_id,
            input_text=text,
            web_search=bool(self._web_search()),
        )
        aggregator = StreamAggregator(self._transport, conversation.id)
        self._stream = aggregator
        self._applied_sequence = 0
        self._message = None
        self._is_interacting = True
        self._log(
            logging.INFO,
            "Submitting prompt",
            conversation_id=conversation.id,
            previous_message_id=request.previous_message_id,
            input_text=request.input_text,
            web_search=request.web_search,
        )
        self._transition(ConversationState.GENERATING)
        self._runner.submit(partial(self._consume_stream, aggregator, request))

    def _consume_stream(self, aggregator: StreamAggregator, request: PromptRequest) -> None:
        """在 Runner 线程中消费快照，并逐条投递回控制线程。"""

        stream = aggregator.start(request)
        try:
            for seq, snapshot in stream:
                if aggregator.cancelled:
                    break
                self._dispatcher.post(partial(self._on_snapshot, aggregator, seq, snapshot))
        except Exception as exc:
            self._dispatcher.post(partial(self._on_stream_failed, aggregator, exc))
            return
        finally:
            stream.close()
        self._dispatcher.post(partial(self._on_stream_completed, aggregator))

    def _on_snapshot(self, aggregator: StreamAggregator, seq: int, snapshot: Message) -> None:
        # 已取消或已被替换的流，其迟到的快照直接丢弃
        if aggregator is not self._stream:
            return
        if seq <= self._applied_sequence:
            return
        self._applied_sequence = seq
        self._message = snapshot
        self._notify()
        if seq == 1:
            # 首个快照到达时服务端已生成权威消息 ID，刷新一次完整会话
            self._refresh_conversation(aggregator.conversation_id)

    def _on_stream_completed(self, aggregator: StreamAggregator) -> None:
        if aggregator is not self._stream:
            return
        self._stream = None
        self._is_interacting = False
        if self._message is not None and not self._message.is_complete:
            self._message = replace(self._message, is_complete=True)
        self._log(
            logging.INFO,
            "Message reception completed",
            conversation_id=aggregator.conversation_id,
            deltas=aggregator.last_sequence,
        )
        self._transition(ConversationState.LOADED)

    def _on_stream_failed(self, aggregator: StreamAggregator, exc: Exception) -> None:
        if aggregator is not self._stream:
            return
        self._fail(classify_error(exc, Operation.STREAM))

    # ---- 模型 ----

    def _on_model_loaded(self, token: object, model: ActiveModel) -> None:
        if token is not self._model_fetch:
            return
        self._model_fetch = None
        self._model = model
        self._log(logging.INFO, "Active model loaded", model=model.id)
        if self._state is ConversationState.NONE:
            self._transition(ConversationState.EMPTY)
        else:
            self._notify()

    def _on_model_failed(self, token: object, exc: Exception) -> None:
        if token is not self._model_fetch:
            return
        self._model_fetch = None
        self._fail(classify_error(exc, Operation.ACTIVE_MODEL))

    # ---- 失败与状态迁移 ----

    def _on_operation_failed(self, token: object, operation: Operation, exc: Exception) -> None:
        if operation is Operation.CREATE_CONVERSATION:
            if token is not self._conversation_create:
                return
            self._conversation_create = None
        else:
            if token is not self._conversation_refresh:
                return
            self._conversation_refresh = None
        self._fail(classify_error(exc, operation))

    def _fail(self, error: ErrorState) -> None:
        if self._stream is not None:
            self._stream.cancel()
            self._stream = None
        self._is_interacting = False
        self._error = error
        self._log(
            logging.ERROR,
            "Conversation failed",
            kind=error.kind.value,
            detail=error.detail,
            conversation_id=self._conversation.id if self._conversation else None,
        )
        self._transition(ConversationState.ERROR)

    def _transition(self, state: ConversationState) -> OrchestratorSnapshot:
        """迁移到新状态并发布快照；除 ERROR 外的迁移都会清除错误。"""

        previous = self._state
        self._state = state
        if state is not ConversationState.ERROR:
            self._error = None
        if previous is not state:
            self._log(logging.INFO, "State changed", previous=previous.value, state=state.value)
        return self._notify()

    def _notify(self) -> OrchestratorSnapshot:
        snap = self.snapshot()
        for callback in list(self._subscribers):
            try:
                callback(snap)
            except Exception as exc:
                # 订阅者的异常不影响编排器状态，也不影响其他订阅者
                self._log(
                    logging.ERROR,
                    "Subscriber failed",
                    subscriber=getattr(callback, "__qualname__", repr(callback)),
                    error=f"{type(exc).__name__}: {exc}",
                    state=snap.state.value,
                )
        return snap

    @staticmethod
    def _log(level: int, message: str, **fields: Any) -> None:
        payload: Dict[str, Any] = dict(fields)
        logger.log(level, message, extra={"extra": payload})
