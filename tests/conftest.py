"""Shared fixtures and in-memory fakes for the sync client tests."""

import asyncio
import json

import pytest

from ninetynine.config import Config
from ninetynine.core.exceptions import NotConnectedError
from ninetynine.core.session import GameSession
from ninetynine.core.stomp import Frame, decode_frames, encode_frame
from ninetynine.models.action import Action, ActionType

CONNECTED = encode_frame(Frame("CONNECTED", {"version": "1.2", "heart-beat": "0,0"}))


class TestConfig(Config):
    __test__ = False
    WS_MODE = 'local'
    WS_URL_LOCAL = 'http://broker.test'
    RECONNECT_DELAY_SEC = 0.01
    MAX_RECONNECT_DELAY_SEC = 0.02
    HANDSHAKE_TIMEOUT_SEC = 0.5
    HEARTBEAT_MS = 0
    COUNTDOWN_START = 5
    COUNTDOWN_INTERVAL_SEC = 0.01
    AUTO_GUESS_DELAY_SEC = 0.05
    JOIN_TIMEOUT_SEC = 0.05
    FINISHED_RESTART_SEC = 0


class FakeSocket:
    """In-memory stand-in for a WebSocket client connection."""

    def __init__(self, reply=CONNECTED):
        self.reply = reply
        self.sent = []
        self.closed = False
        self.broken = None
        self.inbox = asyncio.Queue()

    async def send(self, data):
        if self.broken is not None:
            raise self.broken
        self.sent.append(data)
        for frame in decode_frames(data):
            if frame.command == "CONNECT" and self.reply is not None:
                await self.inbox.put(self.reply)

    async def recv(self):
        item = await self.inbox.get()
        if isinstance(item, Exception):
            raise item
        return item

    async def close(self):
        self.closed = True

    def frames(self, command=None):
        result = []
        for data in self.sent:
            result.extend(f for f in decode_frames(data) if command is None or f.command == command)
        return result

    def subscription_id(self, destination):
        live = {}
        for frame in self.frames():
            if frame.command == "SUBSCRIBE":
                live[frame.headers["id"]] = frame.headers["destination"]
            elif frame.command == "UNSUBSCRIBE":
                live.pop(frame.headers["id"], None)
        for sub_id, dest in live.items():
            if dest == destination:
                return sub_id
        return None

    async def deliver(self, destination, payload, sub_id=None):
        body = payload if isinstance(payload, str) else json.dumps(payload)
        sub_id = sub_id or self.subscription_id(destination) or "missing"
        await self.inbox.put(encode_frame(Frame("MESSAGE", {
            "destination": destination,
            "subscription": sub_id,
            "message-id": "1",
        }, body)))

    async def drop(self):
        await self.inbox.put(ConnectionResetError("connection reset by peer"))


class SocketFactory:
    """Hands out prepared sockets in order; refuses once they run out."""

    def __init__(self, *sockets):
        self.sockets = list(sockets)
        self.urls = []

    async def __call__(self, url):
        self.urls.append(url)
        if not self.sockets:
            raise OSError("connection refused")
        return self.sockets.pop(0)


class FakeConnector:
    """Records subscriptions and sends without any socket."""

    def __init__(self):
        self.registry = {}
        self.sent = []
        self.unsubscribed = []
        self.connected = True
        self.on_connected = None
        self.on_connection_lost = None

    async def subscribe(self, topic, handler):
        if not self.connected:
            raise NotConnectedError("WebSocket not connected")
        self.registry.setdefault(topic, handler)
        return self.registry[topic]

    async def unsubscribe(self, topic):
        if self.registry.pop(topic, None) is not None:
            self.unsubscribed.append(topic)

    async def send(self, destination, payload):
        if not self.connected:
            raise NotConnectedError("WebSocket not connected")
        self.sent.append((destination, payload))

    def sent_to(self, destination):
        return [payload for dest, payload in self.sent if dest == destination]


async def settle(rounds=10):
    for _ in range(rounds):
        await asyncio.sleep(0)


def room_payload(room_id=42, host_id="h1", players=(("h1", "Alice", True),), state="WAITING",
                 min_range=1, max_range=99, current=0, **extra):
    data = {
        "roomId": room_id,
        "hostId": host_id,
        "players": [{"id": pid, "name": name, "isHost": host} for pid, name, host in players],
        "currentPlayerIndex": current,
        "minRange": min_range,
        "maxRange": max_range,
        "state": state,
    }
    data.update(extra)
    return data


TWO_PLAYERS = (("h1", "Alice", True), ("p2", "Bob", False))


@pytest.fixture
def fake_connector():
    return FakeConnector()


@pytest.fixture
def session(fake_connector):
    """Session wired to a fake connector, already marked connected."""
    game = GameSession(TestConfig, connector=fake_connector)
    game.machine.dispatch(Action(ActionType.SET_CONNECTED, True))
    return game
