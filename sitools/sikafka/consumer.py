"""Kafka consumer groups: a message-handling consumer and a group runner."""

from __future__ import annotations

import logging
import queue
import signal
import threading
from typing import Any, Iterable, Protocol, runtime_checkable

from sitools.sikafka.kafka_error import ConsumerGroupClosedError

_log = logging.getLogger(__name__)

BALANCE_STRATEGIES = frozenset({"sticky", "roundrobin", "range"})
DEFAULT_RETRY_MAX = 5
DEFAULT_RETRY_DELAY = 3.0
_POLL_INTERVAL = 0.05


def select_balance_strategy(assignor: str) -> str:
    """Return the rebalance strategy named by assignor.

    Raises ValueError for anything but "sticky", "roundrobin" or "range".
    """
    if assignor not in BALANCE_STRATEGIES:
        raise ValueError("invalid assignor " + assignor)
    return assignor


@runtime_checkable
class MessageHandler(Protocol):
    """Handles one consumed message; raising leaves the message unmarked."""

    def handle(self, msg: Any) -> None:
        ...


class CgConsumer:
    """A consumer-group handler that passes every claimed message to a MessageHandler.

    A session exposes ``done`` (a threading.Event) and
    ``mark_message(message, metadata)``; a claim exposes ``messages``, a
    queue.Queue in which ``None`` marks the end of the stream.
    """

    def __init__(self, msg_handler: MessageHandler) -> None:
        self._ready = threading.Event()
        self.make_ready()
        self.msg_handler = msg_handler
        self.session: Any = None

    def setup(self, session: Any) -> None:
        """Run at the start of a session: remember it and mark the consumer as ready."""
        self.session = session
        self.close_ready()

    def cleanup(self, session: Any) -> None:
        """Run at the end of a session: forget it if it is the current one."""
        if self.session is session:
            self.session = None

    def consume_claim(self, session: Any, claim: Any) -> None:
        """Handle claimed messages until the stream ends or the session is done."""
        done: threading.Event = session.done
        messages: queue.Queue = claim.messages
        while not done.is_set():
            try:
                message = messages.get(timeout=_POLL_INTERVAL)
            except queue.Empty:
                continue
            if message is None:
                _log.info("message channel was closed")
                return
            try:
                self.msg_handler.handle(message)
            except Exception:
                _log.debug("message handler failed", exc_info=True)
                continue
            session.mark_message(message, "")

    def make_ready(self) -> None:
        """Reset readiness so that the next session can signal it again."""
        self._ready = threading.Event()

    def wait_ready(self, timeout: float | None = None) -> bool:
        """Wait until a session has been set up; return whether it was."""
        return self._ready.wait(timeout)

    def close_ready(self) -> None:
        """Signal readiness; it may be signalled once per make_ready."""
        if self._ready.is_set():
            raise RuntimeError("consumer readiness already signalled")
        self._ready.set()


class ConsumerGroup:
    """Runs a consumer over topics through a group client.

    The group client provides ``consume(stop, topics, consumer)``, which runs
    one session and returns when it ends, ``pause_all()``, ``resume_all()``
    and ``close()``.
    """

    def __init__(self, group: Any, consumer: CgConsumer, topics: Iterable[str]) -> None:
        self.group = group
        self.consumer = consumer
        self.topics = list(topics)
        self.is_paused = False
        self.retry_max = DEFAULT_RETRY_MAX
        self.retry_delay = DEFAULT_RETRY_DELAY
        self._stop: threading.Event | None = None
        self._wake = threading.Event()
        self._lock = threading.Lock()
        self._pending_toggles = 0

    def toggle(self) -> None:
        """Pause consumption if running, resume it if paused."""
        self._toggle_consumption_flow()

    def start_with(self, loaded: Any) -> None:
        """Consume until finished, signalled or failed.

        ``loaded`` is told once the consumer is up (or has given up): an
        Event is set, anything else receives ``put(True)``. Raises the error
        that ended consumption, or the error from closing the group.
        """
        wake = threading.Event()
        stop = threading.Event()
        self._wake = wake
        self._stop = stop
        errors: list[BaseException] = []

        worker = threading.Thread(target=self._run, args=(stop, errors), daemon=True)
        worker.start()

        while worker.is_alive() and not self.consumer.wait_ready(_POLL_INTERVAL):
            pass
        if self.consumer.wait_ready(0):
            _log.info("consumer group is up and running")
        self._notify_loaded(loaded)

        previous = self._install_signals()
        try:
            while True:
                wake.wait(0.5)
                wake.clear()
                with self._lock:
                    toggles, self._pending_toggles = self._pending_toggles, 0
                for _ in range(toggles):
                    self._toggle_consumption_flow()
                if stop.is_set():
                    _log.info("terminating: stopped")
                    break
        finally:
            self._restore_signals(previous)
            self._cancel()
            worker.join()

        error = errors[0] if errors else None
        try:
            self.group.close()
        except Exception as exc:
            _log.error("consumer error: failed to close client: %s", exc)
            if error is None:
                error = exc
        if error is not None:
            raise error

    def start(self) -> None:
        """Consume until finished, signalled or failed."""
        self.start_with(queue.Queue(maxsize=1))

    def finish(self) -> None:
        """Ask a running group to stop."""
        if self._stop is None:
            raise RuntimeError("ConsumerGroup has not been started")
        self._cancel()

    def stop(self) -> None:
        """Ask a running group to stop."""
        self.finish()

    def _cancel(self) -> None:
        if self._stop is not None:
            self._stop.set()
        self._wake.set()

    def _run(self, stop: threading.Event, errors: list[BaseException]) -> None:
        attempts = 0
        while True:
            attempts += 1
            _log.info("consumer group: trying to consume...")
            try:
                self.group.consume(stop, self.topics, self.consumer)
            except Exception as exc:
                if isinstance(exc, ConsumerGroupClosedError) or attempts >= self.retry_max:
                    _log.error("consumer error: %s", exc)
                    errors.append(exc)
                    self._cancel()
                    return
                if stop.is_set():
                    self._cancel()
                    return
                _log.warning("consumer error: retrying: %s", exc)
                stop.wait(self.retry_delay)
                continue
            if stop.is_set():
                self._cancel()
                return
            self.consumer.make_ready()
            attempts = 0

    def _toggle_consumption_flow(self) -> None:
        if self.is_paused:
            self.group.resume_all()
            _log.info("Resuming consumption")
        else:
            self.group.pause_all()
            _log.info("Pausing consumption")
        self.is_paused = not self.is_paused

    def _request_toggle(self, signum: int, frame: Any) -> None:
        with self._lock:
            self._pending_toggles += 1
        self._wake.set()

    def _terminate(self, signum: int, frame: Any) -> None:
        _log.info("terminating: via signal")
        self._cancel()

    @staticmethod
    def _notify_loaded(loaded: Any) -> None:
        if loaded is None:
            return
        if isinstance(loaded, threading.Event):
            loaded.set()
        else:
            loaded.put(True)

    def _install_signals(self) -> dict[int, Any]:
        if threading.current_thread() is not threading.main_thread():
            return {}
        handlers = {signal.SIGINT: self._terminate, signal.SIGTERM: self._terminate}
        sigusr1 = getattr(signal, "SIGUSR1", None)
        if sigusr1 is not None:
            handlers[sigusr1] = self._request_toggle
        previous = {}
        for signum, handler in handlers.items():
            previous[signum] = signal.signal(signum, handler)
        return previous

    @staticmethod
    def _restore_signals(previous: dict[int, Any]) -> None:
        for signum, handler in previous.items():
            signal.signal(signum, handler if handler is not None else signal.SIG_DFL)