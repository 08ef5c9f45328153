"""Chat Core 顶层包。

该包提供单会话对话编排与流式响应引擎的核心实现，
包括配置加载、领域模型、Transport 适配、流聚合器、
错误分类与会话编排器等能力。
"""

from chat_core.engine import ConversationOrchestrator, OrchestratorSnapshot, StreamAggregator

__all__ = ["ConversationOrchestrator", "OrchestratorSnapshot", "StreamAggregator"]
