"""进程级会话状态。

进程启动时创建一个 SessionState 并以引用方式注入编排器；
编排器是唯一的写入方，其余组件只读。除“最后写入者生效”外没有其他一致性要求。
"""

import threading


class SessionState:
    """保存当前会话 ID 的共享槽位（空字符串表示没有会话）。"""

    def __init__(self, current_conversation_id: str = ""):
        self._lock = threading.Lock()
        self._current_conversation_id = current_conversation_id

    @property
    def current_conversation_id(self) -> str:
        with self._lock:
            return self._current_conversation_id

    @current_conversation_id.setter
    def current_conversation_id(self, value: str) -> None:
        with self._lock:
            self._current_conversation_id = value or ""
