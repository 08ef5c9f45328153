import pytest

from chat_core.domain.exceptions import RateLimitError
from chat_core.domain.models import Message, PromptRequest
from chat_core.engine.stream import StreamAggregator


class FakeChannel:
    def __init__(self, contents, error=None):
        self._contents = list(contents)
        self._error = error
        self.closed = False

    def __iter__(self):
        return self

    def __next__(self):
        if self._contents:
            content = self._contents.pop(0)
            return Message(id="m-live", role="assistant", content=content, is_complete=False)
        if self._error is not None:
            raise self._error
        raise StopIteration

    def close(self):
        self.closed = True


class FakeTransport:
    def __init__(self, channel):
        self.channel = channel
        self.opened = []

    def open_prompt_stream(self, conversation_id, request):
        self.opened.append((conversation_id, request))
        return self.channel


REQ = PromptRequest(previous_message_id="root", input_text="hi")


def test_stream_numbers_snapshots_from_one():
    transport = FakeTransport(FakeChannel(["H", "He", "Hey"]))
    agg = StreamAggregator(transport, "c1")
    items = list(agg.start(REQ))
    assert [seq for seq, _ in items] == [1, 2, 3]
    assert items[-1][1].content == "Hey"
    assert transport.opened == [("c1", REQ)]
    assert agg.finished
    assert agg.last_sequence == 3
    assert transport.channel.closed


def test_stream_is_single_use():
    agg = StreamAggregator(FakeTransport(FakeChannel(["a"])), "c1")
    list(agg.start(REQ))
    with pytest.raises(RuntimeError):
        agg.start(REQ)


def test_cancel_stops_further_snapshots():
    channel = FakeChannel(["a", "ab", "abc"])
    agg = StreamAggregator(FakeTransport(channel), "c1")
    stream = agg.start(REQ)
    assert next(stream)[0] == 1
    agg.cancel()
    assert channel.closed
    assert list(stream) == []
    assert agg.cancelled
    assert channel.closed


def test_cancel_before_start_never_opens_channel():
    transport = FakeTransport(FakeChannel(["a"]))
    agg = StreamAggregator(transport, "c1")
    agg.cancel()
    assert list(agg.start(REQ)) == []
    assert transport.opened == []


def test_cancel_after_completion_is_noop():
    agg = StreamAggregator(FakeTransport(FakeChannel(["a"])), "c1")
    list(agg.start(REQ))
    agg.cancel()
    agg.cancel()
    assert agg.finished


def test_transport_failure_propagates():
    channel = FakeChannel(["a"], error=RateLimitError(code="RATE_LIMIT", message="slow down"))
    agg = StreamAggregator(FakeTransport(channel), "c1")
    stream = agg.start(REQ)
    assert next(stream)[1].content == "a"
    with pytest.raises(RateLimitError):
        next(stream)
    assert channel.closed


def test_read_error_after_cancel_is_not_reported():
    channel = FakeChannel(["a"], error=ConnectionResetError("socket shut down"))
    agg = StreamAggregator(FakeTransport(channel), "c1")
    stream = agg.start(REQ)
    assert next(stream)[0] == 1
    agg.cancel()
    assert list(stream) == []
    assert agg.finished


def test_cancel_leaves_running_generator_to_consumer():
    agg = None
    seen = []

    class GeneratorTransport:
        def open_prompt_stream(self, conversation_id, request):
            yield Message(id="m-live", role="assistant", content="a")
            # 在生成器执行期间取消，由消费方在结束时关闭
            agg.cancel()
            seen.append("after-cancel")
            yield Message(id="m-live", role="assistant", content="ab")

    agg = StreamAggregator(GeneratorTransport(), "c1")
    assert [seq for seq, _ in agg.start(REQ)] == [1]
    assert seen == ["after-cancel"]
    assert agg.cancelled
