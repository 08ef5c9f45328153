"""远端对话服务集成层。

该包下的模块负责：
- 定义 Transport 抽象接口 (base)。
- 提供具体实现 (http_client)。
"""

from typing import Optional

from chat_core.config.settings import settings
from chat_core.transport.base import ChatTransport
from chat_core.transport.http_client import HttpChatTransport


def create_transport(cfg: Optional[object] = None) -> ChatTransport:
    """根据配置创建 Transport 实例，默认使用全局 settings。"""

    return HttpChatTransport(cfg or settings)


__all__ = ["ChatTransport", "HttpChatTransport", "create_transport"]
