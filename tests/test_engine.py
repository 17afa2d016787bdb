"""Protocol-level tests for the Bayeux engine."""

import asyncio

import pytest

from bayeux.core.dispatcher import UNHANDLED, BroadcastHandler, ChannelHandler
from bayeux.core.engine import Engine
from bayeux.core.long_poll import PendingPoll
from bayeux.core.settings import Settings
from bayeux.models.message import Message


class FailingHandler(ChannelHandler):
    """Handler that blows up on /boom and ignores everything else."""

    def handle(self, message, client):
        if message.channel == "/boom":
            raise RuntimeError("handler bug")
        return UNHANDLED


class EchoHandler(ChannelHandler):
    """Handler answering /echo with the request's data."""

    def handle(self, message, client):
        if message.channel != "/echo":
            return UNHANDLED
        return Message(channel="/ignored", data=message.data, fields={"successful": True})


@pytest.fixture
def settings():
    return Settings(poll_interval=5, long_poll_interval=30)


@pytest.fixture
def bare_engine(settings):
    """Engine without any application-channel handlers."""
    return Engine(settings)


@pytest.fixture
def engine(settings):
    """Engine that broadcasts application-channel messages."""
    engine = Engine(settings)
    engine.dispatcher.add_handler(BroadcastHandler(engine.router))
    return engine


def handshake(engine, **kwargs):
    [response] = engine.receive({"channel": "/meta/handshake", "version": "1.0", "minimumVersion": "1.0"}, **kwargs)
    return response


def subscribe(engine, client_id, subscription, request_id="s"):
    return engine.receive({
        "channel": "/meta/subscribe",
        "clientId": client_id,
        "subscription": subscription,
        "id": request_id,
    })


def connect(engine, client_id, request_id="c"):
    return engine.receive({
        "channel": "/meta/connect",
        "clientId": client_id,
        "connectionType": "long-polling",
        "id": request_id,
    })


def test_handshake_response(bare_engine):
    """Test the fields of a successful handshake."""
    response = handshake(bare_engine).to_dict()

    assert response["channel"] == "/meta/handshake"
    assert response["successful"] is True
    assert response["version"] == "1.0"
    assert response["supportedConnectionTypes"] == ["long-polling", "callback-polling"]
    assert response["advice"] == {"reconnect": "retry", "interval": 30000}
    assert response["minimumVersion"] == "1.0"
    assert response["clientId"] in bare_engine.clients


def test_jsonp_handshake_uses_poll_interval(bare_engine):
    """Test that callback-polling clients are told to repoll sooner."""
    response = handshake(bare_engine, jsonp=True)
    assert response.get("advice") == {"reconnect": "retry", "interval": 5000}


def test_handshake_ids_are_distinct(bare_engine):
    """Test that sequential handshakes never reuse an id."""
    ids = [handshake(bare_engine).client_id for _ in range(50)]
    assert len(set(ids)) == 50


def test_handshake_announced_on_status_channel(bare_engine):
    """Test that status subscribers observe handshakes."""
    watcher = handshake(bare_engine).client_id
    subscribe(bare_engine, watcher, "/cometd/meta")

    handshake(bare_engine)

    actions = [m.get("action") for m in bare_engine.clients.lookup(watcher).outbox]
    assert actions == ["handshake", "connect"]


def test_handshake_must_be_alone(bare_engine):
    """Test that a handshake inside a batch is refused."""
    client_id = handshake(bare_engine).client_id
    clients_before = len(bare_engine.clients)

    responses = bare_engine.receive([
        {"channel": "/meta/handshake", "clientId": client_id},
        {"channel": "/service/ping", "clientId": client_id},
    ])

    assert responses[0].get("successful") is False
    assert responses[1].get("successful") is True
    assert len(bare_engine.clients) == clients_before


def test_unknown_client_is_told_to_handshake(bare_engine):
    """Test reconnect advice for an unregistered client id."""
    [response] = connect(bare_engine, "not-a-client")

    assert response.get("successful") is False
    assert response.get("advice") == {"reconnect": "handshake"}


def test_subscribe_to_meta_is_refused(bare_engine):
    """Test the negative acknowledgement for meta subscriptions."""
    client_id = handshake(bare_engine).client_id

    [response] = subscribe(bare_engine, client_id, "/meta/connect")

    assert response.to_dict() == {
        "channel": "/meta/subscribe",
        "clientId": client_id,
        "id": "s",
        "successful": False,
        "error": "500",
        "subscription": "/meta/connect",
    }
    assert bare_engine.clients.lookup(client_id).subscribed_channels == set()


def test_subscription_churn_is_published(bare_engine):
    """Test that subscribe and unsubscribe requests reach the channel's subscribers."""
    watcher = handshake(bare_engine).client_id
    subscribe(bare_engine, watcher, "/foo")
    joiner = handshake(bare_engine).client_id

    subscribe(bare_engine, joiner, "/foo")
    bare_engine.receive({"channel": "/meta/unsubscribe", "clientId": joiner, "subscription": "/foo"})

    queued = bare_engine.clients.lookup(watcher).outbox
    assert [(m.channel, m.client_id) for m in queued] == [
        ("/meta/subscribe", joiner),
        ("/meta/unsubscribe", joiner),
    ]


def test_unrecognized_meta_channel(bare_engine):
    """Test that unknown meta channels are rejected."""
    client_id = handshake(bare_engine).client_id

    [response] = bare_engine.receive({"channel": "/meta/reboot", "clientId": client_id, "id": "1"})

    assert response.to_dict() == {"channel": "/meta/reboot", "clientId": client_id, "id": "1", "successful": False}


def test_application_channel_unhandled(bare_engine):
    """Test that application channels without a handler are unhandled."""
    client_id = handshake(bare_engine).client_id

    outcome = bare_engine.receive({"channel": "/chat", "clientId": client_id, "data": "hi"})

    assert outcome is UNHANDLED


def test_handler_response_is_stamped(bare_engine):
    """Test that extension responses carry the request envelope."""
    bare_engine.dispatcher.add_handler(EchoHandler())
    client_id = handshake(bare_engine).client_id

    [response] = bare_engine.receive({"channel": "/echo", "clientId": client_id, "id": "4", "data": "hi"})

    assert response.to_dict() == {
        "channel": "/echo",
        "clientId": client_id,
        "id": "4",
        "data": "hi",
        "successful": True,
    }


def test_failure_is_isolated_within_batch(engine):
    """Test that one failing message does not stop the rest of the batch."""
    engine.dispatcher.handlers.insert(0, FailingHandler())
    client_id = handshake(engine).client_id

    responses = engine.receive([
        {"channel": "/boom", "clientId": client_id, "id": "1"},
        {"channel": "/service/ping", "clientId": client_id, "id": "2"},
    ])

    assert [(m.id, m.get("successful")) for m in responses] == [("2", True)]


def test_malformed_input_yields_empty_reply(bare_engine):
    """Test that unusable payloads produce an empty response set."""
    assert bare_engine.receive(None) == []
    assert bare_engine.receive("garbage") == []
    assert bare_engine.receive([{"clientId": "x"}]) == []


def test_scenario_queued_message_delivered_on_connect(engine):
    """Test that a published message is returned behind the connect acknowledgement."""
    a1 = handshake(engine).client_id
    b1 = handshake(engine).client_id
    subscribe(engine, a1, "/foo")

    [ack] = engine.receive({"channel": "/foo", "clientId": b1, "data": {"x": 1}, "id": "p"})
    assert ack.get("successful") is True

    response = connect(engine, a1)

    assert [(m.channel, m.client_id) for m in response] == [("/meta/connect", a1), ("/foo", b1)]
    assert response[1].data == {"x": 1}


def test_scenario_service_channel_not_fanned_out(engine):
    """Test that service channel publishes only reach the server."""
    subscriber = handshake(engine).client_id
    sender = handshake(engine).client_id
    subscribe(engine, subscriber, "/service/ping")

    [ack] = engine.receive({"channel": "/service/ping", "clientId": sender, "data": "ping"})

    assert ack.to_dict() == {"channel": "/service/ping", "clientId": sender, "successful": True}
    assert engine.clients.lookup(subscriber).outbox == []


def test_scenario_connect_parks_until_release(engine):
    """Test that an idle connect parks and is torn down on close."""
    client_id = handshake(engine).client_id

    poll = connect(engine, client_id)

    assert isinstance(poll, PendingPoll)
    assert not poll.done
    client = engine.clients.lookup(client_id)
    assert client.pending_wait is poll

    engine.release(poll)

    assert poll.done
    assert client.pending_wait is None


def test_scenario_second_connect_resolves_first(engine):
    """Test that a second connect forces the parked one to finish."""
    client_id = handshake(engine).client_id
    first = connect(engine, client_id, request_id="1")

    second = connect(engine, client_id, request_id="2")

    assert first.done
    assert [(m.channel, m.id) for m in first.messages] == [("/meta/connect", "1")]
    assert [(m.channel, m.id) for m in second] == [("/meta/connect", "2")]


@pytest.mark.asyncio
async def test_parked_connect_wakes_on_publish(engine):
    """Test that a publish delivers to a suspended connect."""
    reader = handshake(engine).client_id
    writer = handshake(engine).client_id
    subscribe(engine, reader, "/foo")

    poll = connect(engine, reader)
    waiter = asyncio.create_task(poll.wait())
    await asyncio.sleep(0)
    assert not waiter.done()

    engine.receive({"channel": "/foo", "clientId": writer, "data": {"x": 1}})
    messages = await asyncio.wait_for(waiter, timeout=1)

    assert [m.channel for m in messages] == ["/meta/connect", "/foo"]
    assert engine.clients.lookup(reader).pending_wait is None


def test_connect_in_batch_with_other_responses(engine):
    """Test that a parked connect is answered by responses queued in the same batch."""
    client_id = handshake(engine).client_id

    outcome = engine.receive([
        {"channel": "/meta/connect", "clientId": client_id, "id": "1"},
        {"channel": "/service/ping", "clientId": client_id, "id": "2"},
    ])

    assert [(m.channel, m.id) for m in outcome] == [("/meta/connect", "1"), ("/service/ping", "2")]
    assert engine.clients.lookup(client_id).pending_wait is None


def test_disconnect_cleans_up(engine):
    """Test that disconnect removes the client from every channel and the registry."""
    client_id = handshake(engine).client_id
    watcher = handshake(engine).client_id
    for name in ("/foo", "/bar"):
        subscribe(engine, client_id, name)
        subscribe(engine, watcher, name)
    engine.clients.lookup(watcher).drain()

    flushed = engine.receive({"channel": "/meta/disconnect", "clientId": client_id, "id": "d"})

    assert flushed[-1].to_dict() == {
        "channel": "/meta/disconnect",
        "clientId": client_id,
        "id": "d",
        "successful": True,
    }
    assert flushed[-2].channel == "/cometd/meta"
    assert engine.clients.lookup(client_id) is None
    assert client_id not in engine.channels.subscribers("/foo")
    assert client_id not in engine.channels.subscribers("/bar")
    announced = engine.clients.lookup(watcher).outbox
    assert sorted(m.subscription for m in announced) == ["/bar", "/foo"]
    assert all(m.channel == "/meta/unsubscribe" for m in announced)


def test_disconnect_resolves_parked_poll(engine):
    """Test that disconnect delivers the final status message to a parked poll."""
    client_id = handshake(engine).client_id
    poll = connect(engine, client_id)

    engine.receive({"channel": "/meta/disconnect", "clientId": client_id})

    assert poll.done
    assert [m.channel for m in poll.messages] == ["/meta/connect", "/cometd/meta"]
    assert poll.messages[1].get("successful") is False


def test_disconnect_unknown_client(engine):
    """Test that disconnecting an unknown id has no side effects."""
    client_id = handshake(engine).client_id

    [response] = engine.dispatcher.deliver(Message(channel="/meta/disconnect", client_id="ghost"))

    assert response.get("successful") is False
    assert client_id in engine.clients


def test_server_originated_publish(bare_engine):
    """Test that the server can publish to subscribers without a request."""
    client_id = handshake(bare_engine).client_id
    subscribe(bare_engine, client_id, "/news")

    delivered = bare_engine.publish(Message(channel="/updates", data={"headline": "up"}), channel="/news")
    response = connect(bare_engine, client_id)

    assert delivered == 1
    assert [(m.channel, m.data) for m in response[1:]] == [("/updates", {"headline": "up"})]
