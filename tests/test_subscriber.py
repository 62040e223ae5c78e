import asyncio
from unittest.mock import MagicMock

import pytest
from paho.mqtt.enums import CallbackAPIVersion

from climadash.shared.exceptions import BrokerConnectionError
from climadash.shared.mqtt import MQTTConfig
from climadash.telemetry.subscriber import ConnectionState, TelemetrySubscriber


async def wait_until(predicate, timeout=2.0):
    loop = asyncio.get_running_loop()
    deadline = loop.time() + timeout
    while not predicate():
        if loop.time() > deadline:
            raise AssertionError("condition not met in time")
        await asyncio.sleep(0.01)


@pytest.fixture
def mqtt_config():
    return MQTTConfig(
        broker="broker.test",
        port=8883,
        topic="/class/idgs09/device",
        diagnostic_topic="/class/idgs09/+",
        reconnect_delay=0,
    )


@pytest.fixture
def clients():
    return []


@pytest.fixture
def subscriber(mqtt_config, clients):
    received = []
    sub = TelemetrySubscriber(mqtt_config, on_message=lambda t, p: received.append((t, p)))
    sub.received = received

    def factory():
        client = MagicMock()
        clients.append(client)
        return client

    sub._create_client = factory
    return sub


@pytest.mark.asyncio
async def test_subscribes_to_all_topics_on_connect(subscriber, clients):
    task = asyncio.create_task(subscriber.run())
    try:
        await wait_until(lambda: clients and clients[0].loop_start.called)
        assert subscriber.state is ConnectionState.CONNECTING

        subscriber._on_connect(clients[0], None, None, 0, None)

        assert subscriber.is_connected
        assert subscriber.connected_since is not None
        topics = [c.args[0] for c in clients[0].subscribe.call_args_list]
        assert topics == ["/class/idgs09/device", "/class/idgs09/+"]
        clients[0].connect.assert_called_once_with("broker.test", 8883, 60)
    finally:
        subscriber.stop()
        await asyncio.wait_for(task, timeout=2)

    assert subscriber.state is ConnectionState.DISCONNECTED
    clients[0].disconnect.assert_called_once()
    clients[0].loop_stop.assert_called_once()


@pytest.mark.asyncio
async def test_reconnects_after_disconnect(subscriber, clients):
    task = asyncio.create_task(subscriber.run())
    try:
        await wait_until(lambda: clients and clients[0].loop_start.called)
        subscriber._on_connect(clients[0], None, None, 0, None)

        subscriber._on_disconnect(clients[0], None, None, 7, None)

        await wait_until(lambda: len(clients) == 2 and clients[1].loop_start.called)
        assert subscriber.reconnect_attempts == 1
        assert not subscriber.is_connected
        assert subscriber.connected_since is None
        clients[0].loop_stop.assert_called_once()
    finally:
        subscriber.stop()
        await asyncio.wait_for(task, timeout=2)


@pytest.mark.asyncio
async def test_retries_when_broker_unreachable(mqtt_config):
    attempts = []
    sub = TelemetrySubscriber(mqtt_config, on_message=lambda t, p: None)

    def factory():
        client = MagicMock()
        client.connect.side_effect = OSError("connection refused")
        attempts.append(client)
        return client

    sub._create_client = factory

    task = asyncio.create_task(sub.run())
    try:
        await wait_until(lambda: sub.reconnect_attempts >= 3)
        assert sub.state is not ConnectionState.CONNECTED
        assert not any(c.loop_start.called for c in attempts)
    finally:
        sub.stop()
        await asyncio.wait_for(task, timeout=2)


@pytest.mark.asyncio
async def test_refused_connection_triggers_reconnect(subscriber, clients):
    task = asyncio.create_task(subscriber.run())
    try:
        await wait_until(lambda: clients and clients[0].loop_start.called)

        subscriber._on_connect(clients[0], None, None, 5, None)

        assert subscriber.state is ConnectionState.DISCONNECTED
        clients[0].subscribe.assert_not_called()
        await wait_until(lambda: len(clients) >= 2)
        assert subscriber.reconnect_attempts >= 1
    finally:
        subscriber.stop()
        await asyncio.wait_for(task, timeout=2)


def test_messages_are_forwarded(subscriber):
    msg = MagicMock(topic="/class/idgs09/device", payload=b'{"temperatura": "21"}')

    subscriber._on_message(None, None, msg)

    assert subscriber.received == [("/class/idgs09/device", b'{"temperatura": "21"}')]


def test_callback_errors_do_not_escape(mqtt_config):
    def explode(topic, payload):
        raise RuntimeError("handler failed")

    sub = TelemetrySubscriber(mqtt_config, on_message=explode)
    msg = MagicMock(topic="t", payload=b"{}")

    sub._on_message(None, None, msg)

    assert sub.state is ConnectionState.DISCONNECTED


def test_client_uses_credentials_and_tls(monkeypatch):
    fake_client_cls = MagicMock()
    monkeypatch.setattr("climadash.telemetry.subscriber.mqtt.Client", fake_client_cls)
    config = MQTTConfig(
        broker="broker.test",
        client_id="dash-1",
        username="user",
        password="secret",
        tls=True,
        tls_insecure=True,
    )

    sub = TelemetrySubscriber(config, on_message=lambda t, p: None)
    client = sub._create_client()

    fake_client_cls.assert_called_once_with(
        callback_api_version=CallbackAPIVersion.VERSION2,
        client_id="dash-1",
        reconnect_on_failure=False,
    )
    client.username_pw_set.assert_called_once_with("user", "secret")
    client.tls_set.assert_called_once()
    client.tls_insecure_set.assert_called_once_with(True)
    assert client.on_message == sub._on_message


def test_client_without_credentials(monkeypatch):
    fake_client_cls = MagicMock()
    monkeypatch.setattr("climadash.telemetry.subscriber.mqtt.Client", fake_client_cls)

    client = TelemetrySubscriber(MQTTConfig(), on_message=lambda t, p: None)._create_client()

    client.username_pw_set.assert_not_called()
    client.tls_set.assert_not_called()


def test_topics_deduplicated():
    config = MQTTConfig(topic="a/b", diagnostic_topic="a/b")

    assert config.topics == ["a/b"]


@pytest.mark.asyncio
async def test_connect_error_is_reported_as_broker_error(mqtt_config):
    sub = TelemetrySubscriber(mqtt_config, on_message=lambda t, p: None)
    client = MagicMock()
    client.connect.side_effect = OSError("no route to host")
    sub._create_client = lambda: client

    with pytest.raises(BrokerConnectionError) as exc_info:
        await sub._connect_once()

    assert "broker.test:8883" in exc_info.value.message
    client.loop_start.assert_not_called()
