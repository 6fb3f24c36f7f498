"""Tests for notify_sync.services.connection_manager (stream lifecycle, retries, backgrounding)."""
import pytest

from conftest import FakeStream, FakeStreamTransport, frame, settle

from notify_sync.domain.common.errors import TransportError
from notify_sync.domain.stream.backoff import BackoffPolicy
from notify_sync.domain.stream.state import ConnectionState
from notify_sync.infra.realtime.visibility import ManualVisibility
from notify_sync.services.connection_manager import ConnectionManager
from notify_sync.services.event_dispatcher import EventDispatcher


class Harness:
    def __init__(self, transport, scheduler, visibility=None, **kwargs):
        self.transport = transport
        self.scheduler = scheduler
        self.visibility = visibility or ManualVisibility()
        self.dispatcher = EventDispatcher()
        self.manager = ConnectionManager(
            transport,
            self.dispatcher,
            scheduler=scheduler,
            visibility=self.visibility,
            **kwargs,
        )
        self.states = []
        self.restored = 0
        self.gave_up = 0
        self.manager.state.subscribe(self.states.append)
        self.manager.connectivity_restored.connect(self._on_restored)
        self.manager.gave_up_signal.connect(self._on_gave_up)

    def _on_restored(self):
        self.restored += 1

    def _on_gave_up(self):
        self.gave_up += 1

    @property
    def state(self):
        return self.manager.state.value


@pytest.fixture
async def make(scheduler):
    harnesses = []

    def _make(*scripts, **kwargs):
        h = Harness(FakeStreamTransport(*scripts), scheduler, **kwargs)
        harnesses.append(h)
        return h

    yield _make
    for h in harnesses:
        await h.manager.aclose()


async def test_connect_opens_stream(make):
    h = make(FakeStream())
    h.manager.connect("student")
    assert h.state == ConnectionState.CONNECTING
    await settle()
    assert h.state == ConnectionState.CONNECTED
    assert h.manager.connected
    assert h.restored == 1
    assert h.manager.retry.value.attempt_count == 0


async def test_connect_is_idempotent_while_live(make):
    h = make(FakeStream())
    h.manager.connect("student")
    h.manager.connect("student")
    await settle()
    h.manager.connect("student")
    await settle()
    assert h.transport.open_calls == 1
    assert h.manager.open_count == 1


async def test_failures_retry_with_backoff_then_reset(make, scheduler):
    h = make(TransportError("down"), TransportError("down"), FakeStream())
    h.manager.connect("teacher")
    await settle()

    assert h.state == ConnectionState.RECONNECTING
    assert h.manager.retry.value.attempt_count == 1
    assert h.manager.retry.value.last_delay_ms == 3000

    scheduler.advance(2.9)
    await settle()
    assert h.transport.open_calls == 1
    scheduler.advance(0.1)
    await settle()
    assert h.transport.open_calls == 2
    assert h.manager.retry.value.attempt_count == 2
    assert h.manager.retry.value.last_delay_ms == 6000

    scheduler.advance(6)
    await settle()
    assert h.state == ConnectionState.CONNECTED
    assert h.manager.retry.value.attempt_count == 0
    assert h.restored == 1


async def test_at_most_one_retry_pending(make, scheduler):
    h = make(*[TransportError("down") for _ in range(6)])
    h.manager.connect("student")
    for _ in range(6):
        await settle()
        assert len(scheduler.pending) <= 1
        # A manual connect while waiting replaces the pending retry instead of adding one.
        h.manager.connect("student")
        await settle()
        assert len(scheduler.pending) <= 1
        scheduler.advance(60)
    await settle()
    assert len(scheduler.pending) <= 1


async def test_gives_up_after_max_attempts(make, scheduler):
    h = make(
        TransportError("down"),
        TransportError("down"),
        TransportError("down"),
        backoff=BackoffPolicy(max_attempts=3),
    )
    h.manager.connect("student")
    await settle()
    scheduler.advance(3)
    await settle()
    scheduler.advance(6)
    await settle()

    assert h.state == ConnectionState.DISCONNECTED
    assert h.manager.gave_up
    assert h.gave_up == 1
    assert h.manager.retry.value.attempt_count == 3
    assert scheduler.pending == []

    scheduler.advance(600)
    await settle()
    assert h.transport.open_calls == 3


async def test_manual_reconnect_after_give_up(make, scheduler):
    h = make(TransportError("down"), backoff=BackoffPolicy(max_attempts=1))
    h.manager.connect("teacher")
    await settle()
    assert h.manager.gave_up

    h.manager.reconnect()
    await settle()
    assert h.state == ConnectionState.CONNECTED
    assert not h.manager.gave_up
    assert h.manager.retry.value.attempt_count == 0


async def test_clean_stream_end_is_retried(make):
    stream = FakeStream()
    stream.close()
    h = make(stream)
    h.manager.connect("student")
    await settle()
    assert h.state == ConnectionState.RECONNECTING
    assert h.manager.retry.value.attempt_count == 1


async def test_stream_error_after_open_is_retried(make):
    h = make(FakeStream())
    h.manager.connect("student")
    await settle()
    h.transport.current.fail(TransportError("reset by peer"))
    await settle()
    assert h.state == ConnectionState.RECONNECTING
    assert h.manager.retry_pending


async def test_disconnect_cancels_pending_retry(make, scheduler):
    h = make(TransportError("down"))
    h.manager.connect("student")
    await settle()
    assert h.manager.retry_pending

    h.manager.disconnect()
    h.manager.disconnect()
    assert h.state == ConnectionState.DISCONNECTED
    assert scheduler.pending == []
    scheduler.advance(60)
    await settle()
    assert h.transport.open_calls == 1


async def test_disconnect_closes_open_stream(make):
    h = make(FakeStream())
    h.manager.connect("student")
    await settle()
    h.manager.disconnect()
    await settle()
    assert h.transport.current.exited
    assert h.state == ConnectionState.DISCONNECTED
    assert not h.manager.retry_pending


async def test_hidden_past_grace_suspends_and_resumes_on_foreground(make, scheduler):
    h = make(FakeStream(), FakeStream())
    h.manager.connect("student")
    await settle()

    h.visibility.set_hidden(True)
    scheduler.advance(29)
    await settle()
    assert h.state == ConnectionState.CONNECTED

    scheduler.advance(1)
    await settle()
    assert h.state == ConnectionState.SUSPENDED
    assert h.transport.streams[0].exited

    h.visibility.set_hidden(False)
    await settle()
    assert h.state == ConnectionState.CONNECTED
    assert h.transport.open_calls == 2
    assert h.restored == 2


async def test_foreground_within_grace_keeps_stream(make, scheduler):
    h = make(FakeStream())
    h.manager.connect("student")
    await settle()

    h.visibility.set_hidden(True)
    scheduler.advance(10)
    h.visibility.set_hidden(False)
    await settle()
    scheduler.advance(60)
    await settle()

    assert h.state == ConnectionState.CONNECTED
    assert h.transport.open_calls == 1
    assert not h.manager.visibility.grace_pending


async def test_error_while_hidden_defers_retry_until_foreground(make, scheduler):
    h = make(FakeStream(), FakeStream())
    h.manager.connect("student")
    await settle()

    h.visibility.set_hidden(True)
    h.transport.current.fail(TransportError("network lost"))
    await settle()
    assert h.state == ConnectionState.SUSPENDED
    assert not h.manager.retry_pending

    scheduler.advance(300)
    await settle()
    assert h.transport.open_calls == 1

    h.visibility.set_hidden(False)
    await settle()
    assert h.state == ConnectionState.CONNECTED
    assert h.manager.retry.value.attempt_count == 0


async def test_connect_while_hidden_is_deferred(make):
    visibility = ManualVisibility(hidden=True)
    h = make(FakeStream(), visibility=visibility)
    h.manager.connect("student")
    await settle()
    assert h.state == ConnectionState.SUSPENDED
    assert h.transport.open_calls == 0

    visibility.set_hidden(False)
    await settle()
    assert h.state == ConnectionState.CONNECTED


async def test_no_resume_after_intentional_disconnect(make, scheduler):
    h = make(FakeStream())
    h.manager.connect("student")
    await settle()
    h.visibility.set_hidden(True)
    h.manager.disconnect()
    scheduler.advance(60)
    h.visibility.set_hidden(False)
    await settle()
    assert h.state == ConnectionState.DISCONNECTED
    assert h.transport.open_calls == 1


async def test_replaced_frame_stops_auto_retry(make, scheduler):
    h = make(FakeStream(frame("replaced", reason="new_connection")))
    h.manager.connect("student")
    await settle()
    assert h.state == ConnectionState.DISCONNECTED
    assert not h.manager.gave_up
    assert scheduler.pending == []
    assert h.transport.open_calls == 1


async def test_heartbeat_recorded(make, scheduler):
    h = make(FakeStream())
    h.manager.connect("student")
    await settle()
    scheduler.advance(12)
    h.transport.current.push(frame("heartbeat", timestamp=1))
    await settle()
    assert h.manager.last_heartbeat_at == 12


async def test_frames_reach_dispatcher_in_order(make):
    h = make(FakeStream(frame("teacher_joined", lessonId=1, teacherName="A"), frame("teacher_joined", lessonId=2, teacherName="B")))
    seen = []
    h.dispatcher.register("teacher_joined", lambda e: seen.append(e.payload.lesson_id))
    h.manager.connect("student")
    await settle()
    assert seen == [1, 2]
    assert h.state == ConnectionState.CONNECTED


async def test_disconnect_from_restored_listener_closes_stream(make):
    h = make(FakeStream(frame("teacher_joined", lessonId=1, teacherName="A")))
    seen = []
    h.dispatcher.register("teacher_joined", lambda e: seen.append(e.payload.lesson_id))
    h.manager.connectivity_restored.connect(h.manager.disconnect)
    h.manager.connect("student")
    await settle()
    assert h.state == ConnectionState.DISCONNECTED
    assert h.transport.current.exited
    assert seen == []
    assert not h.manager.retry_pending
