"""对话引擎：流聚合器、错误分类器与会话编排器。"""

from chat_core.engine.errors import Operation, classify_error
from chat_core.engine.orchestrator import ConversationOrchestrator, OrchestratorSnapshot
from chat_core.engine.stream import StreamAggregator

__all__ = [
    "ConversationOrchestrator",
    "Operation",
    "OrchestratorSnapshot",
    "StreamAggregator",
    "classify_error",
]
