"""STOMP-over-WebSocket session with an idempotent subscription registry."""

import asyncio
import itertools
import json
import logging
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Dict, Optional

import websockets

from ninetynine.core.exceptions import ConnectionFailedError, DecodeError, NotConnectedError, TransportError
from ninetynine.core.stomp import EOL, Frame, decode_frame, decode_frames, encode_frame, topic_destination
from ninetynine.models.messages import decode_message

logger = logging.getLogger(__name__)

Handler = Callable[[Any], Awaitable[None]]


@dataclass
class Subscription:
    """Live handle for one topic."""

    topic: str
    id: str
    destination: str
    handler: Handler


async def _default_socket_factory(url: str):
    return await websockets.connect(url, subprotocols=["v12.stomp"])


class TransportConnector:
    """
    Owns one pub/sub session: connect/disconnect, the subscription
    registry, payload (de)serialization and sending.

    All handlers run on the read loop, one message at a time, so messages
    on a topic are handled in the order the broker delivered them.
    """

    def __init__(self, url: str, socket_factory: Callable[[str], Awaitable[Any]] = None,
                 decoder: Callable[[str], Any] = decode_message, *,
                 reconnect_delay: float = 5.0, max_reconnect_delay: float = 30.0,
                 heartbeat_ms: int = 10000, handshake_timeout: float = 10.0,
                 auto_reconnect: bool = True):
        """
        Args:
            url: WebSocket endpoint of the broker
            socket_factory: Coroutine returning an object with send/recv/close
            decoder: Turns a MESSAGE body into the value handed to handlers
        """
        self.url = url
        self.decoder = decoder
        self.reconnect_delay = reconnect_delay
        self.max_reconnect_delay = max_reconnect_delay
        self.heartbeat_ms = heartbeat_ms
        self.handshake_timeout = handshake_timeout
        self.auto_reconnect = auto_reconnect
        self.registry: Dict[str, Subscription] = {}
        self.connected = False
        self.on_connected: Optional[Callable[[], Awaitable[None]]] = None
        self.on_connection_lost: Optional[Callable[[], Awaitable[None]]] = None

        self._socket_factory = socket_factory or _default_socket_factory
        self._socket = None
        self._ids = itertools.count(1)
        self._by_id: Dict[str, Subscription] = {}
        self._reader: Optional[asyncio.Task] = None
        self._heartbeat: Optional[asyncio.Task] = None
        self._reconnector: Optional[asyncio.Task] = None
        self._closing = False

    async def connect(self) -> None:
        """
        Open the socket and complete the STOMP handshake.

        Raises:
            ConnectionFailedError: If the socket or the handshake fails
        """
        self._closing = False
        await self._open()
        logger.info(f"Connected to {self.url}")

    async def _open(self) -> None:
        socket = None
        try:
            socket = await self._socket_factory(self.url)
            await socket.send(encode_frame(Frame("CONNECT", {
                "accept-version": "1.2",
                "host": "/",
                "heart-beat": f"{self.heartbeat_ms},{self.heartbeat_ms}",
            })))
            reply = decode_frame(await asyncio.wait_for(socket.recv(), self.handshake_timeout))
        except Exception as e:
            if socket is not None:
                await self._close_quietly(socket)
            raise ConnectionFailedError(f"Failed to connect to {self.url}: {str(e)}") from e

        if reply.command != "CONNECTED":
            await self._close_quietly(socket)
            reason = reply.header("message") or reply.command
            raise ConnectionFailedError(f"STOMP handshake rejected: {reason}")

        self._socket = socket
        self.connected = True
        self._reader = asyncio.create_task(self._read_loop(socket))
        interval = self._heartbeat_interval(reply.header("heart-beat", "0,0"))
        if interval:
            self._heartbeat = asyncio.create_task(self._heartbeat_loop(socket, interval))

    def _heartbeat_interval(self, server_value: str) -> float:
        try:
            _, server_wants = (int(part) for part in server_value.split(","))
        except ValueError:
            return 0
        if not self.heartbeat_ms or not server_wants:
            return 0
        return max(self.heartbeat_ms, server_wants) / 1000.0

    async def subscribe(self, topic: str, handler: Handler) -> Subscription:
        """
        Subscribe a handler to a topic.

        Idempotent: a topic that is already registered returns its
        existing handle and the new handler is ignored.

        Raises:
            NotConnectedError: If no session is active
        """
        if not self.connected:
            raise NotConnectedError("WebSocket not connected")

        existing = self.registry.get(topic)
        if existing is not None:
            logger.info(f"Already subscribed to {topic}, skipping duplicate subscription")
            return existing

        subscription = Subscription(topic, f"sub-{next(self._ids)}", topic_destination(topic), handler)
        # Registered before the frame goes out so a concurrent subscribe sees it.
        self.registry[topic] = subscription
        self._by_id[subscription.id] = subscription
        try:
            await self._write(Frame("SUBSCRIBE", {
                "id": subscription.id,
                "destination": subscription.destination,
                "ack": "auto",
            }))
        except Exception:
            self.registry.pop(topic, None)
            self._by_id.pop(subscription.id, None)
            raise
        logger.info(f"Subscribed to {subscription.destination}")
        return subscription

    async def unsubscribe(self, topic: str) -> None:
        """Release a topic's subscription. No-op if it is not registered."""
        subscription = self.registry.pop(topic, None)
        if subscription is None:
            return
        self._by_id.pop(subscription.id, None)
        if self.connected:
            try:
                await self._write(Frame("UNSUBSCRIBE", {"id": subscription.id}))
            except Exception as e:
                logger.warning(f"Failed to send UNSUBSCRIBE for {topic}: {str(e)}")
        logger.info(f"Unsubscribed from {subscription.destination}")

    async def send(self, destination: str, payload: Any) -> None:
        """
        Serialize and publish a payload.

        Raises:
            NotConnectedError: If no session is active; nothing is written
        """
        if not self.connected:
            raise NotConnectedError("WebSocket not connected")
        body = json.dumps(payload)
        logger.info(f"Sending to {destination}: {body}")
        await self._write(Frame("SEND", {"destination": destination, "content-type": "application/json"}, body))

    async def disconnect(self) -> None:
        """Release all subscriptions and close the session."""
        self._closing = True
        for task in (self._reconnector, self._heartbeat, self._reader):
            if task is not None and task is not asyncio.current_task():
                task.cancel()
        self._reconnector = self._heartbeat = self._reader = None

        socket, self._socket = self._socket, None
        if socket is not None:
            if self.connected:
                try:
                    await socket.send(encode_frame(Frame("DISCONNECT")))
                except Exception as e:
                    logger.debug(f"DISCONNECT not delivered: {str(e)}")
            await self._close_quietly(socket)
        self.connected = False
        self._clear_registry()
        logger.info(f"Disconnected from {self.url}")

    async def _write(self, frame: Frame) -> None:
        logger.debug(f">>> {frame.command} {frame.headers}")
        try:
            await self._socket.send(encode_frame(frame))
        except Exception as e:
            # The read loop may not have seen the drop yet.
            raise TransportError(f"Failed to write {frame.command} frame: {str(e)}") from e

    async def _read_loop(self, socket) -> None:
        try:
            while True:
                raw = await socket.recv()
                try:
                    frames = decode_frames(raw)
                except DecodeError as e:
                    logger.warning(f"Dropping malformed frame: {str(e)}")
                    continue
                for frame in frames:
                    await self._handle_frame(frame)
        except asyncio.CancelledError:
            raise
        except Exception as e:
            logger.warning(f"Connection to {self.url} lost: {str(e)}")
        await self._connection_lost()

    async def _handle_frame(self, frame: Frame) -> None:
        if frame.command == "MESSAGE":
            subscription = self._by_id.get(frame.header("subscription", ""))
            if subscription is None:
                logger.debug(f"Dropping message for released subscription on {frame.header('destination')}")
                return
            try:
                message = self.decoder(frame.body)
            except DecodeError as e:
                logger.warning(f"Error parsing message on {subscription.destination}: {str(e)}")
                return
            try:
                await subscription.handler(message)
            except Exception as e:
                logger.error(f"Handler for {subscription.destination} failed: {str(e)}")
        elif frame.command == "ERROR":
            logger.error(f"STOMP error: {frame.header('message')} {frame.body}")
        elif frame.command == "RECEIPT":
            logger.debug(f"Receipt {frame.header('receipt-id')}")
        else:
            logger.warning(f"Unexpected {frame.command} frame from broker")

    async def _heartbeat_loop(self, socket, interval: float) -> None:
        while True:
            await asyncio.sleep(interval)
            try:
                await socket.send(EOL)
            except Exception as e:
                logger.debug(f"Heart-beat failed: {str(e)}")
                return

    async def _connection_lost(self) -> None:
        self.connected = False
        if self._heartbeat is not None:
            self._heartbeat.cancel()
            self._heartbeat = None
        if self._socket is not None:
            await self._close_quietly(self._socket)
            self._socket = None
        # Subscriptions die with the session; callers resubscribe.
        self._clear_registry()
        if self.on_connection_lost is not None:
            await self.on_connection_lost()
        if self.auto_reconnect and not self._closing:
            self._reconnector = asyncio.create_task(self._reconnect_loop())

    async def _reconnect_loop(self) -> None:
        attempt = 0
        while not self._closing:
            delay = min(self.reconnect_delay * (2 ** attempt), self.max_reconnect_delay)
            logger.info(f"Reconnecting to {self.url} in {delay:.1f}s")
            await asyncio.sleep(delay)
            try:
                await self._open()
            except ConnectionFailedError as e:
                logger.warning(str(e))
                attempt += 1
                continue
            logger.info(f"Reconnected to {self.url}")
            self._reconnector = None
            if self.on_connected is not None:
                await self.on_connected()
            return

    def _clear_registry(self) -> None:
        self.registry.clear()
        self._by_id.clear()

    @staticmethod
    async def _close_quietly(socket) -> None:
        try:
            await socket.close()
        except Exception as e:
            logger.debug(f"Socket close failed: {str(e)}")
