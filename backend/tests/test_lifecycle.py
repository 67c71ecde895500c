"""Tests for client reconnection, backoff and room re-join."""

import asyncio

import pytest

from shuttle.client.lifecycle import BackoffPolicy, ConnectionLifecycle, ConnectionState
from shuttle.core.errors import ConnectionFailedError


class FakeTransport:
    def __init__(self, fail_connect: bool = False) -> None:
        self.fail_connect = fail_connect
        self.fail_send = False
        self.sent: list[tuple] = []
        self.closed = False

    async def connect(self) -> None:
        if self.fail_connect:
            raise OSError("connection refused")

    async def send(self, event, payload) -> None:
        if self.fail_send:
            raise ConnectionResetError("socket dropped")
        self.sent.append((event, payload))

    async def close(self) -> None:
        self.closed = True


class Factory:
    """Hands out transports; the first ``failures`` of them refuse to connect."""

    def __init__(self, failures: int = 0) -> None:
        self.failures = failures
        self.made: list[FakeTransport] = []

    def __call__(self) -> FakeTransport:
        t = FakeTransport(fail_connect=len(self.made) < self.failures)
        self.made.append(t)
        return t


class RecordingSleep:
    def __init__(self) -> None:
        self.delays: list[float] = []

    async def __call__(self, seconds: float) -> None:
        self.delays.append(seconds)


def make_lifecycle(factory, policy=None):
    sleep = RecordingSleep()
    states = []
    lc = ConnectionLifecycle(
        factory,
        policy or BackoffPolicy(base_delay=1.0, step=2.0, max_delay=10.0, max_attempts=5),
        sleep=sleep,
        on_state_change=states.append,
    )
    return lc, sleep, states


@pytest.mark.parametrize("retry,expected", [(0, 1.0), (1, 3.0), (2, 5.0), (3, 7.0), (4, 9.0), (5, 10.0), (9, 10.0)])
def test_backoff_grows_by_fixed_step_and_caps(retry, expected):
    assert BackoffPolicy().delay(retry) == expected


@pytest.mark.asyncio
async def test_connects_after_failed_attempts():
    factory = Factory(failures=2)
    lc, sleep, states = make_lifecycle(factory)
    await lc.connect()

    assert lc.connected
    assert sleep.delays == [1.0, 3.0]
    assert [t.closed for t in factory.made] == [True, True, False]
    assert states == [ConnectionState.CONNECTING, ConnectionState.CONNECTED]


@pytest.mark.asyncio
async def test_gives_up_after_max_attempts():
    factory = Factory(failures=99)
    lc, sleep, states = make_lifecycle(factory)

    with pytest.raises(ConnectionFailedError):
        await lc.connect()

    assert len(factory.made) == 5
    assert sleep.delays == [1.0, 3.0, 5.0, 7.0]
    assert lc.state is ConnectionState.FAILED
    assert states[-1] is ConnectionState.FAILED


@pytest.mark.asyncio
async def test_attempt_timeout_counts_as_failure():
    class Hanging(FakeTransport):
        async def connect(self):
            await asyncio.sleep(10)

    made = []

    def factory():
        t = Hanging() if not made else FakeTransport()
        made.append(t)
        return t

    lc, _, _ = make_lifecycle(factory, BackoffPolicy(max_attempts=2, attempt_timeout=0.01))
    await lc.connect()
    assert lc.connected
    assert len(made) == 2


@pytest.mark.asyncio
async def test_rooms_are_rejoined_after_reconnect():
    factory = Factory()
    lc, _, _ = make_lifecycle(factory)
    await lc.connect()
    await lc.join_service("svc1")
    await lc.join_service("svc2")
    await lc.join_service("svc1")
    assert lc.rooms == ["svc1", "svc2"]

    factory.made[0].fail_send = True
    sent = await lc.send_location("svc1", {"latitude": 41.0, "longitude": 29.0})
    assert sent is False
    await lc._reconnect_task

    fresh = factory.made[-1]
    assert lc.connected
    assert fresh.sent == [
        ("joinService", "svc1"),
        ("joinService", "svc2"),
        ("sendLocation", {"serviceId": "svc1", "location": {"latitude": 41.0, "longitude": 29.0}}),
    ]


@pytest.mark.asyncio
async def test_only_latest_location_is_kept_while_disconnected():
    factory = Factory()
    lc, _, _ = make_lifecycle(factory)
    lc.rooms.append("svc1")

    assert await lc.send_location("svc1", {"latitude": 1, "longitude": 1}) is False
    assert await lc.send_location("svc1", {"latitude": 2, "longitude": 2}) is False
    assert await lc.emit("stopService", {"serviceId": "svc1"}) is False

    await lc.connect()
    assert factory.made[0].sent == [
        ("joinService", "svc1"),
        ("sendLocation", {"serviceId": "svc1", "location": {"latitude": 2, "longitude": 2}}),
    ]


@pytest.mark.asyncio
async def test_leaving_a_room_stops_rejoining_it():
    factory = Factory()
    lc, _, _ = make_lifecycle(factory)
    await lc.connect()
    await lc.join_service("svc1")
    await lc.leave_service("svc1")
    assert factory.made[0].sent[-1] == ("leaveService", {"serviceId": "svc1"})
    assert lc.rooms == []


@pytest.mark.asyncio
async def test_background_keeps_connection_and_foreground_resyncs():
    factory = Factory()
    lc, _, _ = make_lifecycle(factory)
    await lc.connect()
    await lc.join_service("svc1")

    lc.enter_background()
    assert lc.backgrounded
    assert lc.connected
    assert await lc.send_location("svc1", {"latitude": 1, "longitude": 1})

    assert lc.enter_foreground() is None

    # Socket dropped while in background
    lc.enter_background()
    lc.on_connection_lost()
    await lc._reconnect_task
    assert lc.connected
    assert len(factory.made) == 2
    assert factory.made[1].sent == [("joinService", "svc1")]


@pytest.mark.asyncio
async def test_foreground_reconnects_when_disconnected():
    factory = Factory()
    lc, _, _ = make_lifecycle(factory)
    lc.rooms.append("svc1")
    task = lc.enter_foreground()
    await task
    assert lc.connected
    assert factory.made[0].sent == [("joinService", "svc1")]


@pytest.mark.asyncio
async def test_close_resets_state():
    factory = Factory()
    lc, _, _ = make_lifecycle(factory)
    await lc.connect()
    await lc.join_service("svc1")
    await lc.close()
    assert factory.made[0].closed
    assert lc.rooms == []
    assert lc.state is ConnectionState.DISCONNECTED


@pytest.mark.asyncio
async def test_late_drop_of_replaced_transport_is_ignored():
    factory = Factory()
    lc, _, _ = make_lifecycle(factory)
    await lc.connect()
    await lc.join_service("svc1")

    old = factory.made[0]
    old.fail_send = True
    await lc.send_location("svc1", {"latitude": 41.0, "longitude": 29.0})
    await lc._reconnect_task
    assert lc.connected
    assert len(factory.made) == 2
    assert old.closed

    # The old socket's reader reports its close only now
    assert lc.on_connection_lost(old) is None
    assert lc.connected
    assert len(factory.made) == 2
    assert factory.made[1].closed is False


@pytest.mark.asyncio
async def test_drop_of_current_transport_closes_it_and_reconnects():
    factory = Factory()
    lc, _, _ = make_lifecycle(factory)
    await lc.connect()
    current = factory.made[0]

    await lc.on_connection_lost(current)
    assert current.closed
    assert lc.connected
    assert len(factory.made) == 2
