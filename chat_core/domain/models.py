"""统一的会话与流式结果数据模型。

本模块定义了编排器、流聚合器与 Transport 之间共享的标准数据结构：

- Message: 一条会话消息；流式生成中的助手消息（MessageSnapshot）也用它表示。
- Conversation: 服务端会话的完整快照，每次刷新时整体替换。
- PromptRequest: 一次提交给服务端的提问请求。
- ActiveModel: 当前会话所使用的远端模型。
- ErrorState: 面向用户的错误状态。

所有 Transport 实现都必须只依赖这些模型，
并负责在各自的 API JSON 和这些模型之间做转换。
"""

import enum
from dataclasses import dataclass, field
from typing import List, Literal, Optional


# 消息角色（与服务端 "from" 字段对应；新会话会带一条 system 根消息）
Role = Literal["system", "user", "assistant"]


class ConversationState(enum.Enum):
    """编排器的全局状态，任意时刻只有一个取值。"""

    NONE = "none"
    EMPTY = "empty"
    LOADED = "loaded"
    LOADING = "loading"
    GENERATING = "generating"
    ERROR = "error"


class ErrorKind(enum.Enum):
    """领域错误类型（封闭集合）。"""

    RATE_LIMITED = "rate_limited"
    CONNECTIVITY = "connectivity"
    GENERIC = "generic"


@dataclass
class Message:
    """一条会话消息。

    - id: 服务端分配的消息 ID；流式生成中的助手消息使用本地临时 ID。
    - role: 消息角色。
    - content: 文本内容，流式生成期间不断累积。
    - is_complete: 是否已生成完毕。
    """

    id: str
    role: Role
    content: str = ""
    is_complete: bool = True


# 流式生成中的助手消息行：每个快照都是“截至目前”的完整内容，而不是增量
MessageSnapshot = Message


@dataclass
class Conversation:
    """服务端会话快照。

    messages 按时间正序排列（最旧在前），只会在尾部追加，不会重排；
    最后一条消息的 id 是下一次提问的锚点。
    """

    id: str
    messages: List[Message] = field(default_factory=list)
    title: str = ""
    model_id: Optional[str] = None

    @property
    def last_message_id(self) -> Optional[str]:
        if not self.messages:
            return None
        return self.messages[-1].id


@dataclass(frozen=True)
class PromptRequest:
    """一次提问请求，构造后即提交，提交后丢弃。"""

    previous_message_id: Optional[str]
    input_text: str
    web_search: bool = False


@dataclass(frozen=True)
class ActiveModel:
    """当前会话背后的远端模型。每个会话周期拉取一次，只按引用持有。"""

    id: str
    name: str = ""
    preprompt: str = ""


@dataclass(frozen=True)
class ErrorState:
    """面向用户的错误状态。

    - kind: 错误类型。
    - message: 可直接展示给用户的提示文案。
    - detail: 技术细节，仅用于日志与调试。
    - retry_after: 限流时服务端建议的等待秒数（若有）。
    """

    kind: ErrorKind
    message: str
    detail: str = ""
    retry_after: Optional[float] = None

    @property
    def retry_advised(self) -> bool:
        """仅连接类错误建议用户直接重试；限流错误不建议立即重试。"""

        return self.kind is ErrorKind.CONNECTIVITY
