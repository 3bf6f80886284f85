import queue
import threading

import pytest

from sitools.sikafka.consumer import CgConsumer, ConsumerGroup, select_balance_strategy
from sitools.sikafka.kafka_error import ConsumerGroupClosedError


class RecordingHandler:
    def __init__(self, failing=()):
        self.seen = []
        self.failing = set(failing)

    def handle(self, msg):
        self.seen.append(msg)
        if msg in self.failing:
            raise ValueError(msg)


class FakeSession:
    def __init__(self, done=None):
        self.done = done if done is not None else threading.Event()
        self.marked = []

    def mark_message(self, message, metadata):
        self.marked.append((message, metadata))


class FakeClaim:
    def __init__(self, items):
        self.messages = queue.Queue()
        for item in items:
            self.messages.put(item)


class FakeGroup:
    def __init__(self, consume_errors=(), close_error=None, early_returns=0):
        self.consume_errors = list(consume_errors)
        self.close_error = close_error
        self.early_returns = early_returns
        self.consume_calls = 0
        self.paused = 0
        self.resumed = 0
        self.closed = False
        self.topics_seen = []

    def consume(self, stop, topics, handler):
        self.consume_calls += 1
        self.topics_seen.append(list(topics))
        if self.consume_errors:
            raise self.consume_errors.pop(0)
        session = FakeSession(stop)
        handler.setup(session)
        if self.early_returns > 0:
            self.early_returns -= 1
            handler.cleanup(session)
            return
        stop.wait()
        handler.cleanup(session)

    def pause_all(self):
        self.paused += 1

    def resume_all(self):
        self.resumed += 1

    def close(self):
        self.closed = True
        if self.close_error is not None:
            raise self.close_error


def run_in_thread(cg, loaded):
    outcome = {}

    def target():
        try:
            outcome["result"] = cg.start_with(loaded)
        except BaseException as exc:
            outcome["error"] = exc

    thread = threading.Thread(target=target, daemon=True)
    thread.start()
    return thread, outcome


def test_select_balance_strategy_accepts_known_names():
    assert select_balance_strategy("sticky") == "sticky"
    assert select_balance_strategy("roundrobin") == "roundrobin"
    assert select_balance_strategy("range") == "range"


def test_select_balance_strategy_rejects_unknown():
    with pytest.raises(ValueError, match="invalid assignor bogus"):
        select_balance_strategy("bogus")


def test_setup_signals_readiness():
    consumer = CgConsumer(RecordingHandler())
    assert consumer.wait_ready(0) is False
    consumer.setup(FakeSession())
    assert consumer.wait_ready(0) is True


def test_make_ready_resets_readiness():
    consumer = CgConsumer(RecordingHandler())
    consumer.close_ready()
    consumer.make_ready()
    assert consumer.wait_ready(0) is False


def test_close_ready_twice_raises():
    consumer = CgConsumer(RecordingHandler())
    consumer.close_ready()
    with pytest.raises(RuntimeError):
        consumer.close_ready()


def test_consume_claim_marks_handled_messages_until_stream_ends():
    handler = RecordingHandler(failing={"bad"})
    consumer = CgConsumer(handler)
    session = FakeSession()
    consumer.consume_claim(session, FakeClaim(["a", "bad", "b", None, "after"]))
    assert handler.seen == ["a", "bad", "b"]
    assert session.marked == [("a", ""), ("b", "")]


def test_consume_claim_returns_when_session_done():
    handler = RecordingHandler()
    consumer = CgConsumer(handler)
    session = FakeSession()
    session.done.set()
    consumer.consume_claim(session, FakeClaim(["a"]))
    assert handler.seen == []
    assert session.marked == []


def test_cleanup_leaves_readiness_unchanged():
    consumer = CgConsumer(RecordingHandler())
    consumer.setup(FakeSession())
    consumer.cleanup(FakeSession())
    assert consumer.wait_ready(0) is True


def test_finish_before_start_raises():
    cg = ConsumerGroup(FakeGroup(), CgConsumer(RecordingHandler()), ["topic"])
    with pytest.raises(RuntimeError, match="has not been started"):
        cg.finish()
    with pytest.raises(RuntimeError, match="has not been started"):
        cg.stop()


def test_toggle_pauses_then_resumes():
    group = FakeGroup()
    cg = ConsumerGroup(group, CgConsumer(RecordingHandler()), ["topic"])
    cg.toggle()
    assert cg.is_paused is True
    assert (group.paused, group.resumed) == (1, 0)
    cg.toggle()
    assert cg.is_paused is False
    assert (group.paused, group.resumed) == (1, 1)


def test_start_with_runs_until_finished():
    group = FakeGroup()
    consumer = CgConsumer(RecordingHandler())
    cg = ConsumerGroup(group, consumer, ["topic-a", "topic-b"])
    loaded = queue.Queue(maxsize=1)
    thread, outcome = run_in_thread(cg, loaded)
    assert loaded.get(timeout=5) is True
    assert consumer.wait_ready(0) is True
    cg.finish()
    thread.join(timeout=5)
    assert not thread.is_alive()
    assert outcome == {"result": None}
    assert group.closed is True
    assert group.topics_seen[0] == ["topic-a", "topic-b"]


def test_start_with_accepts_event_and_stop():
    group = FakeGroup()
    cg = ConsumerGroup(group, CgConsumer(RecordingHandler()), ["topic"])
    loaded = threading.Event()
    thread, outcome = run_in_thread(cg, loaded)
    assert loaded.wait(5) is True
    cg.stop()
    thread.join(timeout=5)
    assert outcome == {"result": None}
    assert group.closed is True


def test_session_restarted_after_rebalance():
    group = FakeGroup(early_returns=1)
    cg = ConsumerGroup(group, CgConsumer(RecordingHandler()), ["topic"])
    loaded = queue.Queue(maxsize=1)
    thread, outcome = run_in_thread(cg, loaded)
    assert loaded.get(timeout=5) is True
    deadline = threading.Event()
    for _ in range(100):
        if group.consume_calls >= 2:
            break
        deadline.wait(0.02)
    cg.finish()
    thread.join(timeout=5)
    assert outcome == {"result": None}
    assert group.consume_calls == 2


def test_closed_group_error_stops_immediately():
    group = FakeGroup(consume_errors=[ConsumerGroupClosedError()] * 3)
    cg = ConsumerGroup(group, CgConsumer(RecordingHandler()), ["topic"])
    cg.retry_delay = 0
    loaded = queue.Queue(maxsize=1)
    thread, outcome = run_in_thread(cg, loaded)
    assert loaded.get(timeout=5) is True
    thread.join(timeout=5)
    assert isinstance(outcome.get("error"), ConsumerGroupClosedError)
    assert group.consume_calls == 1
    assert group.closed is True


def test_other_errors_are_retried_up_to_retry_max():
    errors = [RuntimeError(f"boom {n}") for n in range(10)]
    group = FakeGroup(consume_errors=errors)
    cg = ConsumerGroup(group, CgConsumer(RecordingHandler()), ["topic"])
    cg.retry_delay = 0
    loaded = queue.Queue(maxsize=1)
    thread, outcome = run_in_thread(cg, loaded)
    thread.join(timeout=5)
    assert isinstance(outcome.get("error"), RuntimeError)
    assert group.consume_calls == cg.retry_max
    assert str(outcome["error"]) == f"boom {cg.retry_max - 1}"


def test_close_error_is_raised_when_nothing_else_failed():
    group = FakeGroup(close_error=OSError("cannot close"))
    cg = ConsumerGroup(group, CgConsumer(RecordingHandler()), ["topic"])
    loaded = queue.Queue(maxsize=1)
    thread, outcome = run_in_thread(cg, loaded)
    assert loaded.get(timeout=5) is True
    cg.finish()
    thread.join(timeout=5)
    assert isinstance(outcome.get("error"), OSError)
    assert str(outcome["error"]) == "cannot close"


def test_consume_error_takes_precedence_over_close_error():
    group = FakeGroup(consume_errors=[ConsumerGroupClosedError()],
                      close_error=OSError("cannot close"))
    cg = ConsumerGroup(group, CgConsumer(RecordingHandler()), ["topic"])
    loaded = queue.Queue(maxsize=1)
    thread, outcome = run_in_thread(cg, loaded)
    thread.join(timeout=5)
    assert isinstance(outcome.get("error"), ConsumerGroupClosedError)
    assert group.closed is True