import threading

from chat_core.domain.models import Conversation, Message
from chat_core.infrastructure.dispatch import QueueDispatcher, ThreadRunner
from chat_core.infrastructure.session import SessionState


def test_queue_dispatcher_runs_on_owner_thread():
    dispatcher = QueueDispatcher()
    owner = threading.get_ident()
    seen = []

    def worker():
        dispatcher.post(lambda: seen.append(threading.get_ident()))

    ThreadRunner().submit(worker)
    ran = dispatcher.run_pending(timeout=5.0)
    assert ran == 1
    assert seen == [owner]


def test_queue_dispatcher_preserves_order():
    dispatcher = QueueDispatcher()
    seen = []
    for i in range(5):
        dispatcher.post(lambda i=i: seen.append(i))
    assert dispatcher.pending == 5
    assert dispatcher.run_pending() == 5
    assert seen == [0, 1, 2, 3, 4]
    assert dispatcher.run_pending(timeout=0.01) == 0


def test_session_state_last_writer_wins():
    session = SessionState()
    assert session.current_conversation_id == ""
    session.current_conversation_id = "c1"
    session.current_conversation_id = "c2"
    assert session.current_conversation_id == "c2"
    session.current_conversation_id = None
    assert session.current_conversation_id == ""


def test_conversation_anchor():
    conv = Conversation(id="c1")
    assert conv.last_message_id is None
    conv = Conversation(id="c1", messages=[Message(id="m1", role="user", content="hi"), Message(id="m2", role="assistant")])
    assert conv.last_message_id == "m2"
