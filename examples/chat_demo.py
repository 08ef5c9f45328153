"""会话编排器的最小控制台示例。

命令：/stop、/reset、/web on|off、/quit；其余输入作为提问发送。
"""

import sys
import threading

from chat_core.config.settings import settings
from chat_core.domain.models import ConversationState
from chat_core.engine import ConversationOrchestrator
from chat_core.infrastructure.dispatch import QueueDispatcher, ThreadRunner
from chat_core.infrastructure.session import SessionState
from chat_core.transport import create_transport


def main() -> None:
    dispatcher = QueueDispatcher()
    orch = ConversationOrchestrator(
        create_transport(),
        SessionState(),
        dispatcher=dispatcher,
        runner=ThreadRunner(),
    )
    printed = {"len": 0}

    def render(snap):
        if snap.message is not None:
            text = snap.message.content
            sys.stdout.write(text[printed["len"]:])
            sys.stdout.flush()
            printed["len"] = len(text)
        if snap.state is ConversationState.ERROR and snap.error is not None:
            print(f"\n[错误] {snap.error.message}")

    orch.subscribe(render)
    orch.refresh_active_model()

    lines = []
    ready = threading.Event()

    def read_input():
        for line in sys.stdin:
            lines.append(line)
            ready.set()
        lines.append(None)
        ready.set()

    threading.Thread(target=read_input, daemon=True).start()
    print("输入问题开始对话（/stop /reset /web on|off /quit）")
    while True:
        dispatcher.run_pending(timeout=0.05)
        if not ready.is_set():
            continue
        ready.clear()
        while lines:
            line = lines.pop(0)
            if line is None or line.strip() == "/quit":
                orch.stop_generating()
                return
            cmd = line.strip()
            if cmd == "/stop":
                orch.stop_generating()
            elif cmd == "/reset":
                orch.reset()
                print("[系统] 新会话")
            elif cmd.startswith("/web"):
                settings.use_web_search = cmd.endswith("on")
                print(f"[系统] 联网搜索: {settings.use_web_search}")
            else:
                printed["len"] = 0
                print("助手: ", end="")
                orch.send_prompt(cmd)


if __name__ == "__main__":
    main()
