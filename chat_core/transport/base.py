"""Transport 抽象接口。

上层 ConversationOrchestrator 不直接依赖具体的 HTTP 协议，而是依赖此协议：

- 每种远端服务实现一个 ChatTransport（如 HttpChatTransport）。
- 负责：将领域模型转成具体 API 请求，并把响应 JSON 解析回领域模型。
- 所有失败都以 domain.exceptions 中的 BusinessError 子类抛出。

这样可以在不改编排器代码的前提下替换后端，测试中也可以直接注入假实现。
"""

from typing import Iterable, Protocol

from chat_core.domain.models import ActiveModel, Conversation, Message, PromptRequest


class ChatTransport(Protocol):
    """远端对话服务的客户端协议。"""

    def create_conversation(self, model: ActiveModel) -> Conversation:
        """用指定模型创建新会话，返回带有根消息的完整会话。"""

        ...

    def get_conversation(self, conversation_id: str) -> Conversation:
        ...

    def get_active_model(self) -> ActiveModel:
        ...

    def open_prompt_stream(self, conversation_id: str, request: PromptRequest) -> Iterable[Message]:
        """提交提问并以流的形式逐步产出助手消息快照。

        每个快照都是截至目前的完整消息内容。返回的迭代器若提供 close()，
        取消时会被调用以关闭底层连接；调用可能来自迭代线程以外的线程，
        因此 close() 必须是线程安全的，并能让阻塞中的读取尽快结束。
        """

        ...
