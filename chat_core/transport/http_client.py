"""HuggingChat 风格 HTTP Transport 适配器。

本模块负责：

1. 接收统一的 ActiveModel / PromptRequest。
2. 将其转换为对话服务的 HTTP API 请求格式。
3. 调用 HTTP 接口并处理网络/限流/服务端异常。
4. 将响应 JSON（以及逐行 JSON 的流式更新）解析为 Conversation / Message。

接口约定：
- GET  {base}/api/models                  模型列表
- POST {base}/conversation                创建会话，返回 conversationId
- GET  {base}/api/conversation/{id}       会话详情（含全部消息）
- POST {base}/conversation/{id}           提问，响应为逐行 JSON 的更新流
- 认证: Cookie hf-chat=<session_token>（可选）
"""

import json
import socket
import threading
from typing import Any, Dict, Iterator, List, Optional
from uuid import uuid4

import httpx

from chat_core.config.settings import settings
from chat_core.domain.exceptions import ApiError, NetworkError, RateLimitError
from chat_core.domain.models import ActiveModel, Conversation, Message, PromptRequest


def _parse_retry_after(headers) -> Optional[float]:
    """解析 Retry-After 头（仅支持秒数形式）。"""

    if not headers:
        return None
    raw = headers.get("Retry-After")
    if raw is None:
        return None
    try:
        value = float(raw)
    except (TypeError, ValueError):
        return None
    return max(0.0, value)


class HttpChatTransport:
    """对话服务 HTTP 客户端实现。"""

    name = "hf-chat"

    def __init__(self, cfg=settings):
        # Settings 里包含 base_url、session token、超时等配置
        self._settings = cfg

    # ---- 模型 ----

    def get_active_model(self) -> ActiveModel:
        data = self._request("GET", "/api/models")
        if not isinstance(data, list):
            raise ApiError(code="BAD_PAYLOAD", message="Model list is not an array")
        models = [self._parse_model(item) for item in data if isinstance(item, dict) and not item.get("unlisted")]
        if not models:
            raise ApiError(code="NO_MODEL", message="No model available")
        wanted = getattr(self._settings, "active_model_id", None)
        if wanted:
            for model in models:
                if model.id == wanted:
                    return model
            raise ApiError(code="NO_MODEL", message=f"Model {wanted!r} not found")
        return models[0]

    # ---- 会话 ----

    def create_conversation(self, model: ActiveModel) -> Conversation:
        """创建会话后立即拉取详情，以便拿到服务端生成的根消息 ID。"""

        data = self._request(
            "POST",
            "/conversation",
            json={"model": model.id, "preprompt": model.preprompt},
        )
        conversation_id = (data or {}).get("conversationId") if isinstance(data, dict) else None
        if not conversation_id:
            raise ApiError(code="BAD_PAYLOAD", message="conversationId missing in response")
        return self.get_conversation(conversation_id)

    def get_conversation(self, conversation_id: str) -> Conversation:
        data = self._request("GET", f"/api/conversation/{conversation_id}")
        if not isinstance(data, dict):
            raise ApiError(code="BAD_PAYLOAD", message="Conversation is not an object")
        return self._parse_conversation(data, conversation_id)

    # ---- 流式提问 ----

    def open_prompt_stream(self, conversation_id: str, request: PromptRequest) -> "PromptStream":
        """提交提问，返回逐步产出完整助手消息的 PromptStream。

        连接在第一次迭代时才建立。
        """

        payload = {
            "inputs": request.input_text,
            "id": request.previous_message_id,
            "is_retry": False,
            "is_continue": False,
            "web_search": request.web_search,
            "files": [],
        }
        return PromptStream(self, self._url(f"/conversation/{conversation_id}"), payload)

    # ---- 辅助方法 ----

    def _parse_line(self, message: Message, line: str) -> Optional[Message]:
        line = line.strip()
        if not line:
            return None
        if line.startswith("data:"):
            line = line[5:].strip()
        try:
            update = json.loads(line)
        except json.JSONDecodeError:
            return None
        if not isinstance(update, dict):
            return None
        return self._apply_update(message, update)

    def _apply_update(self, message: Message, update: Dict[str, Any]) -> Optional[Message]:
        """把一条流式更新合并到消息上，返回新的快照；与内容无关的更新返回 None。"""

        kind = update.get("type")
        if kind == "stream":
            # 服务端会用 NUL 字符填充 token
            token = str(update.get("token") or "").replace("\u0000", "")
            if not token:
                return None
            message.content += token
            return Message(id=message.id, role="assistant", content=message.content, is_complete=False)
        if kind == "finalAnswer":
            text = update.get("text")
            if isinstance(text, str):
                message.content = text
            message.is_complete = True
            return Message(id=message.id, role="assistant", content=message.content, is_complete=True)
        if kind == "status" and update.get("status") == "error":
            raise ApiError(code="STREAM_ERROR", message=str(update.get("message") or "Generation failed"))
        # webSearch / title / status / keepAlive 等更新不影响消息内容
        return None

    def _request(self, method: str, path: str, **kwargs) -> Any:
        try:
            with httpx.Client(timeout=self._settings.http_timeout, trust_env=False, cookies=self._cookies()) as client:
                resp = client.request(
                    method,
                    self._url(path),
                    headers=self._headers(),
                    **kwargs,
                )
        except httpx.RequestError as e:
            # 网络错误：DNS 失败、连接超时等
            raise NetworkError(code="NETWORK_ERROR", message=str(e))
        self._check_status(resp)
        try:
            return resp.json()
        except ValueError as e:
            raise ApiError(code="BAD_PAYLOAD", message=str(e), http_status=resp.status_code)

    @staticmethod
    def _check_status(resp) -> None:
        if resp.status_code == 429:
            raise RateLimitError(
                code="RATE_LIMIT",
                message="Too many requests",
                retry_after=_parse_retry_after(getattr(resp, "headers", None)),
            )
        if resp.status_code >= 400:
            # 其他 HTTP 错误统一包装为 ApiError
            raise ApiError(code="API_ERROR", message=resp.text, http_status=resp.status_code)

    def _url(self, path: str) -> str:
        base = getattr(self._settings, "base_url", None) or "https://huggingface.co/chat"
        return f"{base.rstrip('/')}{path}"

    @staticmethod
    def _headers() -> Dict[str, str]:
        return {"Accept": "application/json", "Content-Type": "application/json"}

    def _cookies(self) -> Dict[str, str]:
        token = getattr(self._settings, "session_token", None)
        if not token:
            return {}
        return {"hf-chat": token}

    @staticmethod
    def _parse_model(data: Dict[str, Any]) -> ActiveModel:
        model_id = data.get("id") or data.get("name")
        if not model_id:
            raise ApiError(code="BAD_PAYLOAD", message="Model entry without id")
        return ActiveModel(
            id=str(model_id),
            name=str(data.get("displayName") or data.get("name") or model_id),
            preprompt=str(data.get("preprompt") or ""),
        )

    @staticmethod
    def _parse_conversation(data: Dict[str, Any], fallback_id: str) -> Conversation:
        messages: List[Message] = []
        for raw in data.get("messages") or []:
            if not isinstance(raw, dict) or not raw.get("id"):
                continue
            role = raw.get("from") or raw.get("role") or "assistant"
            if role not in ("system", "user", "assistant"):
                continue
            messages.append(
                Message(
                    id=str(raw["id"]),
                    role=role,
                    content=str(raw.get("content") or ""),
                    is_complete=not raw.get("interrupted", False),
                )
            )
        return Conversation(
            id=str(data.get("id") or fallback_id),
            messages=messages,
            title=str(data.get("title") or ""),
            model_id=data.get("model"),
        )


class PromptStream:
    """一次提问的流式响应。

    迭代只能在一个消费线程中进行；close() 可以在任意线程调用，
    会立即断开底层连接，让阻塞在读取上的消费线程结束迭代。
    连接资源始终由持有读锁的一方释放。
    """

    def __init__(self, transport: HttpChatTransport, url: str, payload: Dict[str, Any]):
        self._transport = transport
        self._url = url
        self._payload = payload
        self._message = Message(id=f"m-{uuid4().hex}", role="assistant", content="", is_complete=False)
        self._client: Optional[httpx.Client] = None
        self._response: Optional[httpx.Response] = None
        self._lines: Optional[Iterator[str]] = None
        self._done = False
        self._closed = threading.Event()
        self._read_lock = threading.Lock()

    @property
    def closed(self) -> bool:
        return self._closed.is_set()

    def __iter__(self) -> "PromptStream":
        return self

    def __next__(self) -> Message:
        with self._read_lock:
            try:
                snapshot = self._read_snapshot()
            except BaseException:
                self._release()
                raise
            if snapshot is None or self._closed.is_set():
                self._release()
                raise StopIteration
            if snapshot.is_complete:
                self._done = True
            return snapshot

    def close(self) -> None:
        self._closed.set()
        self._interrupt()
        # 消费线程正在读取时由它自己释放连接
        if self._read_lock.acquire(blocking=False):
            try:
                self._release()
            finally:
                self._read_lock.release()

    def _read_snapshot(self) -> Optional[Message]:
        if self._done or self._closed.is_set():
            return None
        try:
            if self._lines is None:
                self._open()
                if self._closed.is_set():
                    return None
            for line in self._lines:
                snapshot = self._transport._parse_line(self._message, line)
                if snapshot is not None:
                    return snapshot
            return None
        except httpx.RequestError as e:
            if self._closed.is_set():
                return None
            raise NetworkError(code="NETWORK_ERROR", message=str(e))

    def _open(self) -> None:
        settings_ = self._transport._settings
        self._client = httpx.Client(timeout=settings_.http_timeout, trust_env=False, cookies=self._transport._cookies())
        request = self._client.build_request("POST", self._url, json=self._payload, headers=self._transport._headers())
        self._response = self._client.send(request, stream=True)
        if self._response.status_code >= 400:
            self._response.read()
        self._transport._check_status(self._response)
        self._lines = self._response.iter_lines()

    def _interrupt(self) -> None:
        """关闭底层 socket 的读写，唤醒阻塞在 recv 上的消费线程。"""

        response = self._response
        if response is None:
            return
        network_stream = response.extensions.get("network_stream")
        sock = network_stream.get_extra_info("socket") if network_stream is not None else None
        if sock is None:
            return
        try:
            sock.shutdown(socket.SHUT_RDWR)
        except OSError:
            # 连接已经断开
            return

    def _release(self) -> None:
        response, client = self._response, self._client
        self._response = None
        self._client = None
        self._lines = None
        self._done = True
        if response is not None:
            response.close()
        if client is not None:
            client.close()
